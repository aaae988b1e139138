from __future__ import annotations

import importlib.resources
import re

from mcp_auth_scaffold.providers import AUTH_DIR, ProviderDescriptor

PLACEHOLDER_RE = re.compile(r"__[A-Z][A-Z0-9_]*__")

_TEMPLATE_PACKAGE = "mcp_auth_scaffold"
_TEMPLATE_DIR = "templates"
_GENERIC_PROVIDER_TEMPLATE = "provider.ts.tmpl"


def _template(name: str) -> importlib.resources.abc.Traversable:
    return importlib.resources.files(_TEMPLATE_PACKAGE).joinpath(_TEMPLATE_DIR).joinpath(name)


def _read_template(name: str) -> str:
    return _template(name).read_text(encoding="utf-8")


def _has_template(name: str) -> bool:
    return _template(name).is_file()


def _substitute(text: str, substitutions: dict[str, str]) -> str:
    for token, replacement in substitutions.items():
        text = text.replace(token, replacement)
    return text


def substitutions_for(descriptor: ProviderDescriptor) -> dict[str, str]:
    return {
        "__PROVIDER_ID__": descriptor.id,
        "__PROVIDER_CLASS__": descriptor.class_name,
        "__PROVIDER_NAME__": descriptor.display_name,
        "__REQUIRED_KEYS__": ", ".join(f'"{k}"' for k in descriptor.required_config_keys),
        "__DOCS_URL__": descriptor.docs_url or "https://modelcontextprotocol.io",
    }


def generate_provider_files(descriptor: ProviderDescriptor) -> dict[str, str]:
    """Render the auth source files for a provider, keyed by project-relative path."""
    substitutions = substitutions_for(descriptor)
    provider_template = f"{descriptor.id}.ts.tmpl"
    if not _has_template(provider_template):
        provider_template = _GENERIC_PROVIDER_TEMPLATE

    return {
        f"{AUTH_DIR}/types.ts": _substitute(_read_template("types.ts.tmpl"), substitutions),
        f"{AUTH_DIR}/config.ts": _substitute(_read_template("config.ts.tmpl"), substitutions),
        descriptor.provider_file(): _substitute(_read_template(provider_template), substitutions),
    }


def find_placeholders(text: str) -> list[str]:
    return sorted(set(PLACEHOLDER_RE.findall(text)))
