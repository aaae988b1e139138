from __future__ import annotations

from pathlib import Path

from mcp_auth_scaffold.config_merge import ConfigMerger, MergeResult
from mcp_auth_scaffold.providers import ALL_PLATFORMS, ProviderDescriptor

MANIFEST = "package.json"
DEPENDENCY_SECTION = "dependencies"


def dependency_declarations(provider: ProviderDescriptor, platform: str) -> dict[str, str]:
    """npm packages (name -> version range) the generated code needs on `platform`."""
    declarations: dict[str, str] = {}
    for key in (ALL_PLATFORMS, platform):
        declarations.update(provider.dependencies.get(key, {}))
    return declarations


def record_dependencies(
    root: Path,
    provider: ProviderDescriptor,
    platform: str,
    *,
    merger: ConfigMerger | None = None,
) -> MergeResult:
    """Add missing declarations to `package.json`; existing version ranges are left alone."""
    merger = merger or ConfigMerger()
    declarations = dependency_declarations(provider, platform)
    manifest = root / MANIFEST
    if not declarations:
        return MergeResult(success=True, modified=False, path=manifest)
    return merger.merge_keys(manifest, DEPENDENCY_SECTION, declarations, create=False)
