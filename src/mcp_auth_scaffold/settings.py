from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from mcp_auth_scaffold.errors import ValidationFailure
from mcp_auth_scaffold.snapshot import DEFAULT_SNAPSHOT_DIR

SETTINGS_FILE = ".mcp-auth.yaml"
DEFAULT_ENV_TEMPLATE = ".env.example"

SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "backup": {"type": "boolean"},
        "snapshot_dir": {"type": "string", "minLength": 1},
        "env_template": {"type": "string", "minLength": 1},
        "keep_snapshots": {"type": ["integer", "null"], "minimum": 0},
    },
}


@dataclass(frozen=True)
class ScaffoldSettings:
    backup: bool = True
    snapshot_dir: str = DEFAULT_SNAPSHOT_DIR
    env_template: str = DEFAULT_ENV_TEMPLATE
    keep_snapshots: int | None = None
    source_path: Path | None = None


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ValidationFailure(f"Failed to read {path}: {e}", code="settings_invalid") from e
    except yaml.YAMLError as e:
        raise ValidationFailure(
            f"Failed to parse YAML in {path}: {e}", code="settings_invalid"
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationFailure(
            f"Expected a YAML mapping in {path}, got {type(raw).__name__}.",
            code="settings_invalid",
        )
    return raw


def validate_settings(data: Any) -> list[str]:
    validator = Draft202012Validator(SETTINGS_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: str(e.path))
    formatted: list[str] = []
    for error in errors:
        path = "$"
        for part in error.path:
            path += f"[{part!r}]" if isinstance(part, int) else f".{part}"
        formatted.append(f"{path}: {error.message}")
    return formatted


def _project_relative(value: str, *, field: str, path: Path) -> str:
    pure = PurePosixPath(value.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts:
        raise ValidationFailure(
            f"{field} in {path} must be a path inside the project: {value!r}",
            code="settings_invalid",
        )
    return pure.as_posix()


def load_settings(root: Path) -> ScaffoldSettings:
    """Read `<root>/.mcp-auth.yaml`; a missing file yields the defaults."""
    path = root / SETTINGS_FILE
    if not path.is_file():
        return ScaffoldSettings()

    data = _load_yaml_mapping(path)
    errors = validate_settings(data)
    if errors:
        raise ValidationFailure(
            f"Invalid settings in {path}: " + "; ".join(errors),
            code="settings_invalid",
            details={"path": str(path), "errors": errors},
        )

    defaults = ScaffoldSettings()
    return ScaffoldSettings(
        backup=bool(data.get("backup", defaults.backup)),
        snapshot_dir=_project_relative(
            str(data.get("snapshot_dir", defaults.snapshot_dir)), field="snapshot_dir", path=path
        ),
        env_template=_project_relative(
            str(data.get("env_template", defaults.env_template)), field="env_template", path=path
        ),
        keep_snapshots=data.get("keep_snapshots"),
        source_path=path,
    )
