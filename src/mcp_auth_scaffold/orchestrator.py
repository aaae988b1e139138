from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from mcp_auth_scaffold.config_merge import ConfigMerger, MergeResult
from mcp_auth_scaffold.dependencies import MANIFEST, record_dependencies
from mcp_auth_scaffold.entry_point import EntryPointPatcher, auth_edit_for
from mcp_auth_scaffold.errors import (
    ConflictFailure,
    IOFailure,
    PostValidationFailure,
    ScaffoldError,
    TransformFailure,
    ValidationFailure,
)
from mcp_auth_scaffold.generators import generate_provider_files
from mcp_auth_scaffold.platforms import (
    UNKNOWN,
    PlatformProfile,
    all_config_candidates,
    detect_platform,
    find_platform_config,
    get_profile,
)
from mcp_auth_scaffold.providers import AUTH_DIR, PROVIDERS_DIR, ProviderDescriptor, get_provider
from mcp_auth_scaffold.settings import ScaffoldSettings, load_settings
from mcp_auth_scaffold.snapshot import SnapshotManager
from mcp_auth_scaffold.validation_gate import (
    ConfigExpectation,
    GateRequest,
    ValidationGate,
)

logger = logging.getLogger(__name__)

DRY_RUN_WARNING = "DRY RUN: No changes will be made"
OVERWRITE_WARNING = "Overwriting existing authentication configuration"
BACKUP_DISABLED_WARNING = "Backups disabled: a failure may leave the project partially modified"
NO_SNAPSHOT_WARNING = "No snapshot was taken; the project may be partially modified"


class Stage(str, Enum):
    IDLE = "idle"
    VALIDATING_PROJECT = "validating_project"
    DETECTING_PLATFORM = "detecting_platform"
    CHECKING_EXISTING = "checking_existing"
    BACKING_UP = "backing_up"
    GENERATING_FILES = "generating_files"
    RECORDING_DEPENDENCIES = "recording_dependencies"
    PATCHING_ENTRY_POINT = "patching_entry_point"
    MERGING_CONFIG = "merging_config"
    RUNNING_VALIDATION_GATE = "running_validation_gate"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"
    DONE = "done"


@dataclass(frozen=True)
class AddAuthRequest:
    """
    Parameters
    ----------
    project_root
        Root of an existing generated MCP server project.
    provider
        Provider id (`stytch`, `auth0`, `workos`, or any registered provider).
    platform
        Force a platform instead of detecting it.
    force
        Overwrite an existing auth setup of the same provider.
    dry_run
        Validate pre-conditions and report what would be created, without writing.
    backup
        Snapshot before mutating. `None` defers to the project settings (default on).
    """

    project_root: Path
    provider: str
    platform: str | None = None
    force: bool = False
    dry_run: bool = False
    backup: bool | None = None


@dataclass
class ScaffoldResult:
    success: bool
    provider: str
    platform: str | None = None
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    hint: str | None = None
    snapshot_id: str | None = None
    failed_stage: Stage | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider": self.provider,
            "platform": self.platform,
            "files_created": list(self.files_created),
            "files_modified": list(self.files_modified),
            "warnings": list(self.warnings),
            "error": self.error,
            "error_code": self.error_code,
            "hint": self.hint,
            "snapshot_id": self.snapshot_id,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
        }


@dataclass
class _Run:
    root: Path
    snapshots: SnapshotManager | None = None
    snapshot_id: str | None = None
    stage: Stage = Stage.IDLE


def capture_paths(profile: PlatformProfile, settings: ScaffoldSettings) -> list[str]:
    """Every project path the pipeline may create, modify or delete."""
    paths = [
        MANIFEST,
        profile.entry_point,
        *all_config_candidates(),
        settings.env_template,
        AUTH_DIR,
    ]
    out: list[str] = []
    for rel in paths:
        if rel not in out:
            out.append(rel)
    return out


class AuthScaffolder:
    """
    Runs the add-auth saga against a project root.

    Collaborators are injectable so tests can substitute failing generators, gates or snapshot
    managers. Nothing raised inside `add_auth` escapes it; every outcome is a `ScaffoldResult`.
    """

    def __init__(
        self,
        *,
        snapshots: SnapshotManager | None = None,
        patcher: EntryPointPatcher | None = None,
        merger: ConfigMerger | None = None,
        gate: ValidationGate | None = None,
        generator: Callable[[ProviderDescriptor], dict[str, str]] = generate_provider_files,
        detector: Callable[[Path], str] = detect_platform,
        settings_loader: Callable[[Path], ScaffoldSettings] = load_settings,
    ) -> None:
        self._snapshots = snapshots
        self.patcher = patcher or EntryPointPatcher()
        self.merger = merger or ConfigMerger()
        self.gate = gate or ValidationGate()
        self.generator = generator
        self.detector = detector
        self.settings_loader = settings_loader

    def _enter(self, run: _Run, stage: Stage) -> None:
        run.stage = stage
        logger.info("add-auth [%s]: %s", run.root.name, stage.value)

    def add_auth(self, request: AddAuthRequest) -> ScaffoldResult:
        result = ScaffoldResult(success=False, provider=request.provider, platform=request.platform)
        run = _Run(root=Path(request.project_root).resolve())
        try:
            self._run(request, result, run)
        except ScaffoldError as e:
            self._fail(result, run, e)
        except OSError as e:
            self._fail(result, run, IOFailure(f"Filesystem error: {e}", details={"error": str(e)}))
        except Exception as e:  # noqa: BLE001
            logger.exception("Unexpected failure while adding auth")
            self._fail(result, run, IOFailure(f"Unexpected error: {type(e).__name__}: {e}"))
        self._enter(run, Stage.DONE)
        return result

    def _run(self, request: AddAuthRequest, result: ScaffoldResult, run: _Run) -> None:
        root = run.root

        self._enter(run, Stage.VALIDATING_PROJECT)
        if not root.is_dir():
            raise ValidationFailure(f"Project root not found: {root}", code="project_missing")
        if not (root / MANIFEST).is_file():
            raise ValidationFailure(
                "No package.json found. Is this an MCP project?",
                code="manifest_missing",
                hint="Run from the root of a generated MCP server project.",
            )
        if not (root / "src").is_dir():
            raise ValidationFailure(
                "No src directory found. Is this an MCP project?", code="source_tree_missing"
            )
        provider = get_provider(request.provider)
        settings = self.settings_loader(root)

        self._enter(run, Stage.DETECTING_PLATFORM)
        platform = request.platform or self.detector(root)
        if platform == UNKNOWN:
            raise ValidationFailure(
                "Could not detect platform. Please specify --platform cloudflare or "
                "--platform vercel",
                code="platform_unknown",
                hint="Pass --platform explicitly.",
            )
        profile = get_profile(platform)
        result.platform = platform
        edit = auth_edit_for(profile)
        generated = self.generator(provider)

        if request.dry_run:
            result.warnings.append(DRY_RUN_WARNING)
            result.warnings.extend(f"Would create: {root / rel}" for rel in generated)
            result.success = True
            return

        self._enter(run, Stage.CHECKING_EXISTING)
        entry = root / profile.entry_point
        self._check_existing(root, provider, entry, edit.symbol, request.force, result)

        backup = settings.backup if request.backup is None else request.backup
        if backup:
            self._enter(run, Stage.BACKING_UP)
            run.snapshots = self._snapshots or SnapshotManager(storage_dir=settings.snapshot_dir)
            snapshot = run.snapshots.capture(root, capture_paths(profile, settings))
            run.snapshot_id = snapshot.id
            result.snapshot_id = snapshot.id
        else:
            result.warnings.append(BACKUP_DISABLED_WARNING)

        self._enter(run, Stage.GENERATING_FILES)
        generated_paths: list[Path] = []
        for rel, text in generated.items():
            path = root / rel
            existed = path.exists()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(text.encode("utf-8"))
            generated_paths.append(path)
            (result.files_modified if existed else result.files_created).append(str(path))

        self._enter(run, Stage.RECORDING_DEPENDENCIES)
        merge = record_dependencies(root, provider, platform, merger=self.merger)
        self._track(merge, result, what="record dependencies in")

        self._enter(run, Stage.PATCHING_ENTRY_POINT)
        patch = self.patcher.apply(entry, edit, force=request.force)
        if patch.modified:
            result.files_modified.append(str(entry))

        self._enter(run, Stage.MERGING_CONFIG)
        expectations = self._merge_config(root, provider, profile, settings, request.force, result)

        self._enter(run, Stage.RUNNING_VALIDATION_GATE)
        report = self.gate.run(
            GateRequest(
                root=root,
                created_files=tuple(generated_paths),
                entry_point=entry,
                import_statement=edit.import_statement,
                init_call=edit.init_call,
                allow_duplicates=request.force,
                config_expectations=tuple(expectations),
            )
        )
        if not report.passed:
            raise PostValidationFailure(
                "Validation failed: " + "; ".join(report.errors),
                details={"failed_checks": list(report.failed_checks)},
            )
        result.warnings.extend(report.warnings)
        result.warnings.append("✓ Validation passed: " + ", ".join(report.passed_checks))

        self._enter(run, Stage.COMMITTING)
        self._commit(run, settings, result)
        result.success = True

    def _check_existing(
        self,
        root: Path,
        provider: ProviderDescriptor,
        entry: Path,
        symbol: str,
        force: bool,
        result: ScaffoldResult,
    ) -> None:
        providers_dir = root / PROVIDERS_DIR
        if providers_dir.is_dir():
            others = sorted(
                p.stem for p in providers_dir.glob("*.ts") if p.is_file() and p.stem != provider.id
            )
            if others:
                raise ConflictFailure(
                    f"Project already uses auth provider(s): {', '.join(others)}. "
                    "Combining auth providers is not supported.",
                    code="provider_conflict",
                    details={"existing": others, "requested": provider.id},
                )

        configured = (
            self.patcher.has_symbol(entry, symbol) or (root / AUTH_DIR / "config.ts").exists()
        )
        if not configured:
            return
        if not force:
            raise ConflictFailure(
                "Authentication is already configured. Use --force to overwrite.",
                code="already_configured",
            )
        result.warnings.append(OVERWRITE_WARNING)

    def _track(self, merge: MergeResult, result: ScaffoldResult, *, what: str) -> None:
        if not merge.success:
            raise TransformFailure(
                f"Failed to {what} {merge.path.name}: {merge.error}",
                code="config_merge_failed",
                details={"path": str(merge.path)},
            )
        if merge.created:
            result.files_created.append(str(merge.path))
        elif merge.modified:
            result.files_modified.append(str(merge.path))

    def _merge_config(
        self,
        root: Path,
        provider: ProviderDescriptor,
        profile: PlatformProfile,
        settings: ScaffoldSettings,
        force: bool,
        result: ScaffoldResult,
    ) -> list[ConfigExpectation]:
        expectations: list[ConfigExpectation] = []
        keys = provider.required_config_keys

        config_path = find_platform_config(root, profile)
        if config_path is None and profile.create_config_if_missing:
            config_path = root / profile.config_candidates[0]
        if config_path is None:
            result.warnings.append(
                f"No {' / '.join(profile.config_candidates)} found; add {', '.join(keys)} to "
                f"[{profile.config_section}] manually"
            )
        else:
            merge = self.merger.merge_keys(
                config_path,
                profile.config_section,
                provider.config_values(profile.id),
                overwrite=force,
            )
            self._track(merge, result, what="update")
            expectations.append(ConfigExpectation(config_path, profile.config_section, keys))

        env_path = root / settings.env_template
        merge = self.merger.merge_keys(
            env_path, provider.display_name, provider.env_values(), overwrite=force
        )
        self._track(merge, result, what="update")
        expectations.append(ConfigExpectation(env_path, provider.display_name, keys))
        return expectations

    def _commit(self, run: _Run, settings: ScaffoldSettings, result: ScaffoldResult) -> None:
        if run.snapshots is None:
            return
        if run.snapshot_id is not None:
            try:
                run.snapshots.remove(run.snapshot_id, root=run.root)
            except (ScaffoldError, OSError) as e:
                result.warnings.append(f"Failed to remove snapshot {run.snapshot_id}: {e}")
        if settings.keep_snapshots is not None:
            try:
                run.snapshots.prune(run.root, keep=settings.keep_snapshots)
            except (ScaffoldError, OSError) as e:
                result.warnings.append(f"Failed to prune snapshots: {e}")

    def _fail(self, result: ScaffoldResult, run: _Run, error: ScaffoldError) -> None:
        logger.error("add-auth failed during %s: %s", run.stage.value, error)
        result.success = False
        result.error = str(error)
        result.error_code = error.code
        result.hint = error.hint
        result.failed_stage = run.stage

        if run.snapshots is None or run.snapshot_id is None:
            if run.stage not in {
                Stage.IDLE,
                Stage.VALIDATING_PROJECT,
                Stage.DETECTING_PLATFORM,
                Stage.CHECKING_EXISTING,
                Stage.BACKING_UP,
            }:
                result.warnings.append(NO_SNAPSHOT_WARNING)
            return

        self._enter(run, Stage.ROLLING_BACK)
        try:
            run.snapshots.restore(run.snapshot_id, run.root)
        except (ScaffoldError, OSError) as e:
            result.warnings.append(f"Rollback incomplete: {e}")
        else:
            result.files_created.clear()
            result.files_modified.clear()
        finally:
            try:
                run.snapshots.remove(run.snapshot_id, root=run.root)
            except (ScaffoldError, OSError) as e:
                result.warnings.append(f"Failed to remove snapshot {run.snapshot_id}: {e}")
