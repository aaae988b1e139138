from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version

from mcp_auth_scaffold.config_merge import ConfigMerger, MergeResult
from mcp_auth_scaffold.entry_point import (
    EntryPointEdit,
    EntryPointPatcher,
    PatchResult,
    auth_edit_for,
)
from mcp_auth_scaffold.errors import (
    ConflictFailure,
    IOFailure,
    PostValidationFailure,
    ScaffoldError,
    TransformFailure,
    ValidationFailure,
)
from mcp_auth_scaffold.orchestrator import (
    AddAuthRequest,
    AuthScaffolder,
    ScaffoldResult,
    Stage,
)
from mcp_auth_scaffold.platforms import detect_platform, get_profile, supported_platforms
from mcp_auth_scaffold.providers import (
    ProviderDescriptor,
    get_provider,
    list_providers,
    register_provider,
    unregister_provider,
)
from mcp_auth_scaffold.snapshot import Snapshot, SnapshotManager
from mcp_auth_scaffold.validation_gate import GateReport, GateRequest, ValidationGate


def _resolve_version() -> str:
    for distribution_name in ("mcp-auth-scaffold", "mcp_auth_scaffold"):
        try:
            return package_version(distribution_name)
        except PackageNotFoundError:
            continue
    return "0+unknown"


__version__ = _resolve_version()

__all__ = [
    "__version__",
    "AddAuthRequest",
    "AuthScaffolder",
    "ConfigMerger",
    "ConflictFailure",
    "EntryPointEdit",
    "EntryPointPatcher",
    "GateReport",
    "GateRequest",
    "IOFailure",
    "MergeResult",
    "PatchResult",
    "PostValidationFailure",
    "ProviderDescriptor",
    "ScaffoldError",
    "ScaffoldResult",
    "Snapshot",
    "SnapshotManager",
    "Stage",
    "TransformFailure",
    "ValidationFailure",
    "ValidationGate",
    "auth_edit_for",
    "detect_platform",
    "get_profile",
    "get_provider",
    "list_providers",
    "register_provider",
    "supported_platforms",
    "unregister_provider",
]
