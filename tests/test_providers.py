from __future__ import annotations

import pytest

from mcp_auth_scaffold.dependencies import dependency_declarations
from mcp_auth_scaffold.errors import ValidationFailure
from mcp_auth_scaffold.generators import find_placeholders, generate_provider_files
from mcp_auth_scaffold.platforms import CLOUDFLARE, VERCEL
from mcp_auth_scaffold.providers import (
    ProviderDescriptor,
    get_provider,
    list_providers,
    register_provider,
)


def test_builtin_providers() -> None:
    ids = [p.id for p in list_providers()]
    for expected in ("auth0", "stytch", "workos"):
        assert expected in ids
    stytch = get_provider("stytch")
    assert stytch.required_config_keys == ("STYTCH_PROJECT_ID", "STYTCH_SECRET", "STYTCH_ENV")
    assert stytch.class_name == "StytchProvider"


def test_unknown_provider_has_hint() -> None:
    with pytest.raises(ValidationFailure) as exc:
        get_provider("okta")
    assert exc.value.code == "unknown_provider"
    assert exc.value.hint


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"id": "Bad_Id"}, "Invalid provider id"),
        ({"env_prefix": "alpha_"}, "Invalid env prefix"),
        ({"required_config_keys": ()}, "declares no config keys"),
        ({"required_config_keys": ("OTHER_KEY",)}, "must start with"),
    ],
)
def test_descriptor_validation(kwargs: dict[str, object], message: str) -> None:
    base: dict[str, object] = {
        "id": "alpha",
        "display_name": "Alpha",
        "env_prefix": "ALPHA_",
        "required_config_keys": ("ALPHA_ID",),
    }
    base.update(kwargs)
    with pytest.raises(ValidationFailure) as exc:
        ProviderDescriptor(**base)  # type: ignore[arg-type]
    assert message in str(exc.value)
    assert exc.value.code == "invalid_provider"


def test_register_provider_refuses_duplicates(alpha_provider: ProviderDescriptor) -> None:
    with pytest.raises(ValidationFailure) as exc:
        register_provider(alpha_provider)
    assert exc.value.code == "duplicate_provider"
    register_provider(alpha_provider, replace=True)
    assert get_provider("alpha") is alpha_provider


def test_config_and_env_values() -> None:
    auth0 = get_provider("auth0")
    assert auth0.config_values(CLOUDFLARE)["AUTH0_DOMAIN"] == ""
    assert auth0.config_values(VERCEL)["AUTH0_DOMAIN"] == "@auth0_domain"
    assert auth0.env_values()["AUTH0_DOMAIN"] == "your-tenant.auth0.com"


def test_dependency_declarations_merge_platform_and_shared() -> None:
    workos = get_provider("workos")
    assert dependency_declarations(workos, CLOUDFLARE) == {
        "@workos-inc/node": "^7.0.0",
        "@cloudflare/workers-oauth-provider": "^0.0.12",
    }
    assert dependency_declarations(workos, VERCEL) == {"@workos-inc/node": "^7.0.0"}


@pytest.mark.parametrize("provider_id", ["stytch", "auth0", "workos"])
def test_generated_files_have_no_placeholders(provider_id: str) -> None:
    descriptor = get_provider(provider_id)
    files = generate_provider_files(descriptor)

    assert sorted(files) == sorted(descriptor.generated_file_set())
    for text in files.values():
        assert find_placeholders(text) == []
    assert "export function registerAuth(" in files["src/auth/config.ts"]
    assert f'from "./providers/{provider_id}.js"' in files["src/auth/config.ts"]


def test_generic_template_for_registered_provider(alpha_provider: ProviderDescriptor) -> None:
    files = generate_provider_files(alpha_provider)
    provider_file = files["src/auth/providers/alpha.ts"]
    assert "export class AlphaProvider" in provider_file
    assert '"ALPHA_CLIENT_ID", "ALPHA_SECRET"' in provider_file
    assert find_placeholders(provider_file) == []


def test_find_placeholders() -> None:
    assert find_placeholders("a __FOO__ b __BAR_2__ __FOO__ __lower__") == ["__BAR_2__", "__FOO__"]
