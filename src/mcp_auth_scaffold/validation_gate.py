from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from mcp_auth_scaffold.config_merge import ConfigMerger
from mcp_auth_scaffold.generators import find_placeholders

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigExpectation:
    path: Path
    section: str
    keys: tuple[str, ...]


@dataclass(frozen=True)
class GateRequest:
    """
    Post-mutation state to check.

    Parameters
    ----------
    root
        Project root.
    created_files
        Absolute paths of files the pipeline generated (created or overwritten).
    entry_point
        Patched entry-point file.
    import_statement, init_call
        Text the entry point must contain.
    allow_duplicates
        When True (forced runs), the entry point may contain the insertions more than once.
    config_expectations
        Config files and sections that must hold the provider keys.
    """

    root: Path
    created_files: tuple[Path, ...]
    entry_point: Path
    import_statement: str
    init_call: str
    allow_duplicates: bool = False
    config_expectations: tuple[ConfigExpectation, ...] = ()


@dataclass(frozen=True)
class GateCheck:
    name: str
    description: str
    run: Callable[[GateRequest], str | None]
    critical: bool = True


@dataclass(frozen=True)
class GateReport:
    passed: bool
    errors: tuple[str, ...] = ()
    passed_checks: tuple[str, ...] = ()
    failed_checks: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


def _check_created_files(request: GateRequest) -> str | None:
    missing = [str(p) for p in request.created_files if not p.is_file()]
    if missing:
        return "Generated files missing: " + ", ".join(missing)
    return None


def _count_in_entry_point(request: GateRequest, needle: str, label: str) -> str | None:
    try:
        text = request.entry_point.read_text(encoding="utf-8")
    except OSError as e:
        return f"Cannot read entry point {request.entry_point}: {e}"
    count = text.count(needle)
    if count == 0:
        return f"Entry point is missing the {label}: {needle}"
    if count > 1 and not request.allow_duplicates:
        return f"Entry point contains the {label} {count} times (expected once): {needle}"
    return None


def _check_entry_import(request: GateRequest) -> str | None:
    return _count_in_entry_point(request, request.import_statement, "auth import")


def _check_entry_init_call(request: GateRequest) -> str | None:
    return _count_in_entry_point(request, request.init_call, "auth initialization call")


def _check_no_placeholders(request: GateRequest) -> str | None:
    problems: list[str] = []
    for path in request.created_files:
        if not path.is_file():
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            problems.append(f"{path}: unreadable ({e})")
            continue
        tokens = find_placeholders(text)
        if tokens:
            problems.append(f"{path}: {', '.join(tokens)}")
    if problems:
        return "Unresolved template placeholders: " + "; ".join(problems)
    return None


def _check_config_keys(request: GateRequest) -> str | None:
    merger = ConfigMerger()
    missing: list[str] = []
    for expectation in request.config_expectations:
        present = merger.has_keys(expectation.path, expectation.section, expectation.keys)
        absent = [key for key, ok in present.items() if not ok]
        if absent:
            missing.append(f"{expectation.path.name} [{expectation.section}]: {', '.join(absent)}")
    if missing:
        return "Config keys missing: " + "; ".join(missing)
    return None


DEFAULT_CHECKS: tuple[GateCheck, ...] = (
    GateCheck("created-files-exist", "Generated files exist on disk", _check_created_files),
    GateCheck("entry-import", "Entry point imports the auth module once", _check_entry_import),
    GateCheck("entry-init-call", "Entry point registers auth once", _check_entry_init_call),
    GateCheck("no-placeholders", "No template placeholders remain", _check_no_placeholders),
    GateCheck("config-keys", "Provider keys present in config files", _check_config_keys),
)


class ValidationGate:
    """Fast, non-type-checking consistency checks run after all mutations."""

    def __init__(self, checks: Sequence[GateCheck] | None = None) -> None:
        self.checks: tuple[GateCheck, ...] = tuple(checks) if checks is not None else DEFAULT_CHECKS

    def run(self, request: GateRequest) -> GateReport:
        errors: list[str] = []
        warnings: list[str] = []
        passed_checks: list[str] = []
        failed_checks: list[str] = []
        for check in self.checks:
            try:
                problem = check.run(request)
            except Exception as e:  # noqa: BLE001
                problem = f"{check.name} raised {type(e).__name__}: {e}"
            if problem is None:
                passed_checks.append(check.name)
                continue
            failed_checks.append(check.name)
            if check.critical:
                errors.append(problem)
            else:
                warnings.append(problem)
            logger.debug("Gate check %s failed: %s", check.name, problem)

        return GateReport(
            passed=not errors,
            errors=tuple(errors),
            passed_checks=tuple(passed_checks),
            failed_checks=tuple(failed_checks),
            warnings=tuple(warnings),
        )

