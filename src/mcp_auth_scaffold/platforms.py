from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mcp_auth_scaffold.errors import ValidationFailure

logger = logging.getLogger(__name__)

CLOUDFLARE = "cloudflare"
VERCEL = "vercel"
UNKNOWN = "unknown"

WRANGLER_CONFIGS: tuple[str, ...] = ("wrangler.jsonc", "wrangler.json", "wrangler.toml")
NEXT_CONFIGS: tuple[str, ...] = ("next.config.js", "next.config.mjs", "next.config.ts")

_CLOUDFLARE_DEPENDENCIES: frozenset[str] = frozenset({"agents"})
_CLOUDFLARE_DEV_DEPENDENCIES: frozenset[str] = frozenset({"wrangler"})
_VERCEL_DEPENDENCIES: frozenset[str] = frozenset({"next", "@vercel/mcp-adapter"})


@dataclass(frozen=True)
class PlatformProfile:
    """
    Static description of how a hosting platform lays out a generated MCP server.

    Parameters
    ----------
    id
        Platform identifier (`cloudflare` or `vercel`).
    entry_point
        Project-relative path of the bootstrap source file that gets patched.
    config_candidates
        Project-relative config files, highest priority first.
    config_section
        Section in the platform config that receives provider keys.
    init_routine_pattern
        Regex matching the opening of the initialization routine, up to and including `{`.
    import_prefix
        Module prefix used by imports of project modules from the entry point.
    import_suffix
        Extension appended to project module imports (`.js` under ESM on Workers).
    server_expr, env_expr
        Expressions passed to the registration call inside the initialization routine.
    create_config_if_missing
        Whether the first config candidate is created when no candidate exists.
    """

    id: str
    entry_point: str
    config_candidates: tuple[str, ...]
    config_section: str
    init_routine_pattern: str
    import_prefix: str
    import_suffix: str
    server_expr: str
    env_expr: str
    create_config_if_missing: bool

    def module_path(self, relative_module: str) -> str:
        return f"{self.import_prefix}{relative_module}{self.import_suffix}"


_PROFILES: dict[str, PlatformProfile] = {
    CLOUDFLARE: PlatformProfile(
        id=CLOUDFLARE,
        entry_point="src/index.ts",
        config_candidates=WRANGLER_CONFIGS,
        config_section="vars",
        init_routine_pattern=r"\basync\s+init\s*\([^)]*\)\s*(?::\s*[^{]+)?\{",
        import_prefix="./",
        import_suffix=".js",
        server_expr="this.server",
        env_expr="this.env",
        create_config_if_missing=False,
    ),
    VERCEL: PlatformProfile(
        id=VERCEL,
        entry_point="app/api/mcp/route.ts",
        config_candidates=("vercel.json",),
        config_section="env",
        init_routine_pattern=(
            r"\bcreateMcpHandler\s*\(\s*(?:async\s*)?\(\s*server\b[^)]*\)\s*(?::\s*[^=]+)?=>\s*\{"
        ),
        import_prefix="@/",
        import_suffix="",
        server_expr="server",
        env_expr="process.env",
        create_config_if_missing=True,
    ),
}


def supported_platforms() -> tuple[str, ...]:
    return tuple(_PROFILES)


def get_profile(platform: str) -> PlatformProfile:
    profile = _PROFILES.get(platform)
    if profile is None:
        supported = ", ".join(sorted(_PROFILES))
        raise ValidationFailure(
            f"Unsupported platform: {platform!r}. Supported: {supported}.",
            code="unsupported_platform",
            details={"platform": platform},
        )
    return profile


def all_config_candidates() -> tuple[str, ...]:
    """Every config path any platform may touch, in a stable order."""
    out: list[str] = []
    for profile in _PROFILES.values():
        for rel in profile.config_candidates:
            if rel not in out:
                out.append(rel)
    return tuple(out)


def find_platform_config(root: Path, profile: PlatformProfile) -> Path | None:
    for rel in profile.config_candidates:
        candidate = root / rel
        if candidate.is_file():
            return candidate
    return None


def _read_manifest(root: Path) -> dict[str, Any] | None:
    path = root / "package.json"
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(raw, dict):
        return None
    return raw


def _dependency_names(manifest: dict[str, Any], field: str) -> set[str]:
    section = manifest.get(field)
    if not isinstance(section, dict):
        return set()
    return {str(name) for name in section}


def detect_platform(root: Path) -> str:
    """
    Classify the hosting platform of a project.

    Parameters
    ----------
    root
        Project root directory.

    Returns
    -------
    str
        `cloudflare`, `vercel`, or `unknown`. Config file presence wins over manifest
        dependencies; an unreadable or invalid `package.json` is ignored.
    """

    if any((root / rel).is_file() for rel in WRANGLER_CONFIGS):
        return CLOUDFLARE
    if (root / "vercel.json").is_file() or any((root / rel).is_file() for rel in NEXT_CONFIGS):
        return VERCEL

    manifest = _read_manifest(root)
    if manifest is None:
        logger.debug("No usable package.json under %s", root)
        return UNKNOWN

    deps = _dependency_names(manifest, "dependencies")
    dev_deps = _dependency_names(manifest, "devDependencies")
    if deps & _CLOUDFLARE_DEPENDENCIES or dev_deps & _CLOUDFLARE_DEV_DEPENDENCIES:
        return CLOUDFLARE
    if (deps | dev_deps) & _VERCEL_DEPENDENCIES:
        return VERCEL
    return UNKNOWN

