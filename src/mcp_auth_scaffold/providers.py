from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from mcp_auth_scaffold.errors import ValidationFailure
from mcp_auth_scaffold.platforms import CLOUDFLARE, VERCEL

_PROVIDER_ID_RE = re.compile(r"^[a-z][a-z0-9]*(?:-[a-z0-9]+)*$")
_ENV_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]*_$")

AUTH_DIR = "src/auth"
PROVIDERS_DIR = f"{AUTH_DIR}/providers"

# Any platform.
ALL_PLATFORMS = "*"


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    Static metadata for an authentication provider.

    Parameters
    ----------
    id
        Lowercase slug, used for file names and CLI selection.
    display_name
        Human name; also the env template section header.
    env_prefix
        Prefix every config key must carry (for example `STYTCH_`).
    required_config_keys
        Keys merged into the platform config and the env template.
    secret_reference
        Per-platform value template for config entries. `{key}` and `{key_lower}` are
        substituted.
    dependencies
        npm declarations per platform id; `*` applies to every platform.
    example_values
        Sample values written to the env template.
    """

    id: str
    display_name: str
    env_prefix: str
    required_config_keys: tuple[str, ...]
    secret_reference: Mapping[str, str] = field(default_factory=dict)
    dependencies: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    example_values: Mapping[str, str] = field(default_factory=dict)
    docs_url: str = ""
    setup_steps: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not _PROVIDER_ID_RE.match(self.id):
            raise ValidationFailure(
                f"Invalid provider id {self.id!r}: expected a lowercase slug.",
                code="invalid_provider",
            )
        if not _ENV_PREFIX_RE.match(self.env_prefix):
            raise ValidationFailure(
                f"Invalid env prefix {self.env_prefix!r} for provider {self.id!r}.",
                code="invalid_provider",
            )
        if not self.required_config_keys:
            raise ValidationFailure(
                f"Provider {self.id!r} declares no config keys.", code="invalid_provider"
            )
        foreign = [k for k in self.required_config_keys if not k.startswith(self.env_prefix)]
        if foreign:
            raise ValidationFailure(
                f"Config keys for provider {self.id!r} must start with {self.env_prefix!r}: "
                + ", ".join(foreign),
                code="invalid_provider",
                details={"keys": foreign},
            )

    @property
    def class_name(self) -> str:
        return "".join(part.capitalize() for part in self.id.split("-")) + "Provider"

    def provider_file(self) -> str:
        return f"{PROVIDERS_DIR}/{self.id}.ts"

    def generated_file_set(self) -> tuple[str, ...]:
        return (f"{AUTH_DIR}/types.ts", f"{AUTH_DIR}/config.ts", self.provider_file())

    def secret_reference_for(self, platform: str, key: str) -> str:
        template = self.secret_reference.get(platform, "")
        return template.format(key=key, key_lower=key.lower())

    def config_values(self, platform: str) -> dict[str, str]:
        return {key: self.secret_reference_for(platform, key) for key in self.required_config_keys}

    def env_values(self) -> dict[str, str]:
        return {key: self.example_values.get(key, "") for key in self.required_config_keys}


_DEFAULT_SECRET_REFERENCE: dict[str, str] = {CLOUDFLARE: "", VERCEL: "@{key_lower}"}
_WORKERS_OAUTH = {CLOUDFLARE: {"@cloudflare/workers-oauth-provider": "^0.0.12"}}

_BUILTIN: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        id="stytch",
        display_name="Stytch",
        env_prefix="STYTCH_",
        required_config_keys=("STYTCH_PROJECT_ID", "STYTCH_SECRET", "STYTCH_ENV"),
        secret_reference=_DEFAULT_SECRET_REFERENCE,
        dependencies=_WORKERS_OAUTH,
        example_values={
            "STYTCH_PROJECT_ID": "project-test-00000000-0000-0000-0000-000000000000",
            "STYTCH_SECRET": "secret-test-xxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx",
            "STYTCH_ENV": "test",
        },
        docs_url="https://stytch.com/docs/guides/connected-apps/mcp-servers",
        setup_steps=(
            "Create a Stytch account at https://stytch.com",
            'Create a new "Consumer Authentication" project',
            "Go to API Keys and copy your Project ID and Secret",
            'Enable "Allow dynamic client registration" in Connected Apps settings',
        ),
    ),
    ProviderDescriptor(
        id="auth0",
        display_name="Auth0",
        env_prefix="AUTH0_",
        required_config_keys=(
            "AUTH0_DOMAIN",
            "AUTH0_CLIENT_ID",
            "AUTH0_CLIENT_SECRET",
            "AUTH0_AUDIENCE",
        ),
        secret_reference=_DEFAULT_SECRET_REFERENCE,
        dependencies={**_WORKERS_OAUTH, ALL_PLATFORMS: {"auth0": "^4.0.0"}},
        example_values={
            "AUTH0_DOMAIN": "your-tenant.auth0.com",
            "AUTH0_CLIENT_ID": "xxxxxxxxxxxxxxxxxxxx",
            "AUTH0_CLIENT_SECRET": "yyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyy",
            "AUTH0_AUDIENCE": "https://your-api.example.com",
        },
        docs_url="https://auth0.com/docs",
        setup_steps=(
            "Create an Auth0 account at https://auth0.com",
            "Create a new application (Machine to Machine or Regular Web App)",
            "Copy your Domain, Client ID, and Client Secret",
            "Set your API Audience (API identifier)",
        ),
    ),
    ProviderDescriptor(
        id="workos",
        display_name="WorkOS",
        env_prefix="WORKOS_",
        required_config_keys=("WORKOS_API_KEY", "WORKOS_CLIENT_ID"),
        secret_reference=_DEFAULT_SECRET_REFERENCE,
        dependencies={**_WORKERS_OAUTH, ALL_PLATFORMS: {"@workos-inc/node": "^7.0.0"}},
        example_values={
            "WORKOS_API_KEY": "sk_test_xxxxxxxxxxxxxxxxxxxx",
            "WORKOS_CLIENT_ID": "client_xxxxxxxxxxxxxxxxxxxx",
        },
        docs_url="https://workos.com/docs",
        setup_steps=(
            "Create a WorkOS account at https://workos.com",
            "Create a new API key under API Keys in the dashboard",
            "Copy your Client ID from the application settings",
        ),
    ),
)

_REGISTRY: dict[str, ProviderDescriptor] = {p.id: p for p in _BUILTIN}


def register_provider(descriptor: ProviderDescriptor, *, replace: bool = False) -> None:
    if descriptor.id in _REGISTRY and not replace:
        raise ValidationFailure(
            f"Provider already registered: {descriptor.id!r}", code="duplicate_provider"
        )
    _REGISTRY[descriptor.id] = descriptor


def unregister_provider(provider_id: str) -> None:
    _REGISTRY.pop(provider_id, None)


def get_provider(provider_id: str) -> ProviderDescriptor:
    descriptor = _REGISTRY.get(provider_id)
    if descriptor is None:
        known = ", ".join(sorted(_REGISTRY))
        raise ValidationFailure(
            f"Unknown auth provider: {provider_id!r}. Known providers: {known}.",
            code="unknown_provider",
            details={"provider": provider_id},
            hint="Run `mcp-auth-scaffold providers` to list supported providers.",
        )
    return descriptor


def list_providers() -> list[ProviderDescriptor]:
    return [_REGISTRY[k] for k in sorted(_REGISTRY)]
