from __future__ import annotations

import hashlib
import json
import logging
import re
import secrets
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from mcp_auth_scaffold.errors import IOFailure, ValidationFailure

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_DIR = ".mcp-auth/snapshots"
MANIFEST_NAME = "snapshot.json"
BLOBS_DIR = "files"

_SCHEMA_VERSION = 1
_ID_PREFIX = "auth-"
_ID_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%f"
_ID_RE = re.compile(r"^auth-(?P<ts>\d{8}T\d{12})Z-(?P<nonce>[0-9a-f]{6})$")

KIND_FILE = "file"
KIND_DIR = "dir"
KIND_ABSENT = "absent"


@dataclass(frozen=True)
class SnapshotEntry:
    path: str
    kind: str
    sha256: str | None = None
    size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "kind": self.kind, "sha256": self.sha256, "size": self.size}


@dataclass(frozen=True)
class Snapshot:
    """
    A captured set of project paths.

    Parameters
    ----------
    id
        Snapshot identifier; embeds the UTC capture time.
    root
        Project root the relative paths refer to.
    created_at
        UTC capture time.
    requested
        Project-relative paths passed to `capture`. Directories among them are restored as whole
        subtrees.
    entries
        Every captured path, including nested files and directories and absent paths.
    storage_dir
        Directory holding the manifest and file blobs.
    created_storage_dirs
        Storage parent directories that the capture created, deepest first.
    """

    id: str
    root: Path
    created_at: datetime
    requested: tuple[str, ...]
    entries: tuple[SnapshotEntry, ...]
    storage_dir: Path
    created_storage_dirs: tuple[str, ...] = ()

    def entry_map(self) -> dict[str, SnapshotEntry]:
        return {e.path: e for e in self.entries}


@dataclass(frozen=True)
class RestoreReport:
    snapshot_id: str
    restored: tuple[str, ...]
    deleted: tuple[str, ...]


def new_snapshot_id(now: datetime | None = None) -> str:
    ts = (now or datetime.now(tz=timezone.utc)).strftime(_ID_TIMESTAMP_FORMAT)
    return f"{_ID_PREFIX}{ts}Z-{secrets.token_hex(3)}"


def parse_snapshot_timestamp(snapshot_id: str) -> datetime | None:
    match = _ID_RE.match(snapshot_id)
    if match is None:
        return None
    try:
        parsed = datetime.strptime(match.group("ts"), _ID_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def _normalize_rel(path: str | Path) -> str:
    raw = str(path).replace("\\", "/").strip()
    pure = PurePosixPath(raw)
    if not raw or pure.is_absolute() or ".." in pure.parts:
        raise ValidationFailure(
            f"Snapshot paths must be project-relative: {path!r}", code="invalid_snapshot_path"
        )
    normalized = pure.as_posix()
    if normalized == ".":
        raise ValidationFailure(
            "Refusing to snapshot the project root itself.", code="invalid_snapshot_path"
        )
    return normalized


def _is_within(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class SnapshotManager:
    """Captures and restores a fixed set of project paths under `<root>/<storage_dir>/<id>/`."""

    def __init__(self, *, storage_dir: str = DEFAULT_SNAPSHOT_DIR) -> None:
        self.storage_dir = _normalize_rel(storage_dir)
        self._known_roots: dict[str, Path] = {}

    def storage_root(self, root: Path) -> Path:
        return root / self.storage_dir

    def _snapshot_dir(self, snapshot_id: str, root: Path) -> Path:
        if _ID_RE.match(snapshot_id) is None:
            raise ValidationFailure(
                f"Invalid snapshot id: {snapshot_id!r}", code="invalid_snapshot_id"
            )
        return self.storage_root(root) / snapshot_id

    def capture(self, root: Path, paths: Iterable[str | Path]) -> Snapshot:
        root = root.resolve()
        requested: list[str] = []
        for raw in paths:
            rel = _normalize_rel(raw)
            if rel not in requested:
                requested.append(rel)

        storage_root = self.storage_root(root)
        for rel in requested:
            if _is_within(storage_root, root / rel):
                raise ValidationFailure(
                    f"Snapshot storage {self.storage_dir!r} lies inside captured path {rel!r}.",
                    code="invalid_snapshot_path",
                )

        created_dirs: list[str] = []
        cursor = storage_root
        while cursor != root and not cursor.exists():
            created_dirs.append(cursor.relative_to(root).as_posix())
            cursor = cursor.parent

        snapshot_id = new_snapshot_id()
        snapshot_dir = storage_root / snapshot_id
        created_at = parse_snapshot_timestamp(snapshot_id) or datetime.now(tz=timezone.utc)
        try:
            snapshot_dir.mkdir(parents=True)
            entries = self._capture_entries(root, requested, snapshot_dir / BLOBS_DIR)
            snapshot = Snapshot(
                id=snapshot_id,
                root=root,
                created_at=created_at,
                requested=tuple(requested),
                entries=tuple(entries),
                storage_dir=snapshot_dir,
                created_storage_dirs=tuple(created_dirs),
            )
            self._write_manifest(snapshot)
        except OSError as e:
            self._discard_storage(root, snapshot_dir, created_dirs)
            raise ValidationFailure(
                f"Failed to capture snapshot: {e}",
                code="snapshot_capture_failed",
                details={"root": str(root), "error": str(e)},
            ) from e

        self._known_roots[snapshot_id] = root
        logger.debug(
            "Captured snapshot %s (%d entries) at %s", snapshot_id, len(entries), snapshot_dir
        )
        return snapshot

    def _capture_entries(
        self, root: Path, requested: list[str], blobs: Path
    ) -> list[SnapshotEntry]:
        entries: list[SnapshotEntry] = []
        seen: set[str] = set()

        def add_file(rel: str) -> None:
            data = (root / rel).read_bytes()
            target = blobs / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            entries.append(SnapshotEntry(rel, KIND_FILE, _sha256_bytes(data), len(data)))

        for rel in requested:
            if rel in seen:
                continue
            seen.add(rel)
            path = root / rel
            if path.is_dir():
                entries.append(SnapshotEntry(rel, KIND_DIR))
                for child in sorted(path.rglob("*")):
                    child_rel = child.relative_to(root).as_posix()
                    if child_rel in seen:
                        continue
                    seen.add(child_rel)
                    if child.is_dir():
                        entries.append(SnapshotEntry(child_rel, KIND_DIR))
                    else:
                        add_file(child_rel)
            elif path.exists():
                add_file(rel)
            else:
                entries.append(SnapshotEntry(rel, KIND_ABSENT))
        return entries

    def _write_manifest(self, snapshot: Snapshot) -> None:
        payload = {
            "schema_version": _SCHEMA_VERSION,
            "id": snapshot.id,
            "created_at": snapshot.created_at.isoformat(),
            "requested": list(snapshot.requested),
            "created_storage_dirs": list(snapshot.created_storage_dirs),
            "entries": [e.to_dict() for e in snapshot.entries],
        }
        (snapshot.storage_dir / MANIFEST_NAME).write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def load(self, snapshot_id: str, root: Path) -> Snapshot:
        root = root.resolve()
        snapshot_dir = self._snapshot_dir(snapshot_id, root)
        manifest_path = snapshot_dir / MANIFEST_NAME
        try:
            raw = json.loads(manifest_path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise IOFailure(
                f"Snapshot not found: {snapshot_id}",
                code="snapshot_not_found",
                details={"path": str(manifest_path)},
            ) from e
        except (OSError, ValueError) as e:
            raise IOFailure(f"Failed to read snapshot manifest {manifest_path}: {e}") from e

        if not isinstance(raw, dict) or raw.get("schema_version") != _SCHEMA_VERSION:
            raise IOFailure(f"Unsupported snapshot manifest: {manifest_path}")

        entries = tuple(
            SnapshotEntry(
                path=str(item["path"]),
                kind=str(item["kind"]),
                sha256=item.get("sha256"),
                size=item.get("size"),
            )
            for item in raw.get("entries", [])
        )
        created_at = parse_snapshot_timestamp(snapshot_id) or datetime.now(tz=timezone.utc)
        return Snapshot(
            id=snapshot_id,
            root=root,
            created_at=created_at,
            requested=tuple(str(p) for p in raw.get("requested", [])),
            entries=entries,
            storage_dir=snapshot_dir,
            created_storage_dirs=tuple(str(p) for p in raw.get("created_storage_dirs", [])),
        )

    def restore(self, snapshot_id: str, root: Path) -> RestoreReport:
        """
        Return every captured path to its captured state.

        Files get their captured bytes back, absent paths are deleted, and captured directories
        lose anything created after the capture. Work continues past individual failures; all of
        them are reported in a single `IOFailure` at the end.
        """

        snapshot = self.load(snapshot_id, root)
        root = snapshot.root
        blobs = snapshot.storage_dir / BLOBS_DIR
        entries = snapshot.entry_map()
        restored: list[str] = []
        deleted: list[str] = []
        errors: list[str] = []

        for rel in snapshot.requested:
            entry = entries.get(rel)
            if entry is None:
                continue
            path = root / rel
            try:
                if entry.kind == KIND_ABSENT:
                    if path.exists() or path.is_symlink():
                        _remove_path(path)
                        deleted.append(rel)
                elif entry.kind == KIND_FILE:
                    self._restore_file(path, blobs / rel)
                    restored.append(rel)
                else:
                    deleted.extend(self._restore_subtree(root, rel, entries, blobs, errors))
                    restored.append(rel)
            except OSError as e:
                errors.append(f"{rel}: {e}")

        if errors:
            raise IOFailure(
                f"Snapshot {snapshot_id} restored with errors: " + "; ".join(errors),
                code="snapshot_restore_failed",
                details={"errors": errors},
            )
        logger.debug(
            "Restored snapshot %s (%d restored, %d deleted)",
            snapshot_id,
            len(restored),
            len(deleted),
        )
        return RestoreReport(
            snapshot_id=snapshot_id, restored=tuple(restored), deleted=tuple(deleted)
        )

    @staticmethod
    def _restore_file(path: Path, blob: Path) -> None:
        data = blob.read_bytes()
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _restore_subtree(
        self,
        root: Path,
        rel: str,
        entries: dict[str, SnapshotEntry],
        blobs: Path,
        errors: list[str],
    ) -> list[str]:
        base = root / rel
        deleted: list[str] = []
        if base.exists() and not base.is_dir():
            base.unlink()
            deleted.append(rel)

        if base.is_dir():
            # Deepest first so directories are empty before their parents are checked.
            extras = sorted(base.rglob("*"), key=lambda p: len(p.parts), reverse=True)
            for child in extras:
                child_rel = child.relative_to(root).as_posix()
                captured = entries.get(child_rel)
                kind = KIND_DIR if child.is_dir() else KIND_FILE
                if captured is not None and captured.kind == kind:
                    continue
                try:
                    _remove_path(child)
                    deleted.append(child_rel)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    errors.append(f"{child_rel}: {e}")

        prefix = f"{rel}/"
        subtree = sorted(
            (e for e in entries.values() if e.path == rel or e.path.startswith(prefix)),
            key=lambda e: len(PurePosixPath(e.path).parts),
        )
        for entry in subtree:
            target = root / entry.path
            try:
                if entry.kind == KIND_DIR:
                    target.mkdir(parents=True, exist_ok=True)
                elif entry.kind == KIND_FILE:
                    self._restore_file(target, blobs / entry.path)
            except OSError as e:
                errors.append(f"{entry.path}: {e}")
        return deleted

    def remove(self, snapshot_id: str, *, root: Path | None = None) -> bool:
        """Delete a snapshot's storage. Unknown snapshots are ignored."""
        base = root.resolve() if root is not None else self._known_roots.get(snapshot_id)
        if base is None:
            return False
        snapshot_dir = self._snapshot_dir(snapshot_id, base)
        if not snapshot_dir.exists():
            self._known_roots.pop(snapshot_id, None)
            return False

        created_dirs: list[str] = []
        try:
            raw = json.loads((snapshot_dir / MANIFEST_NAME).read_text(encoding="utf-8"))
            if isinstance(raw, dict) and isinstance(raw.get("created_storage_dirs"), list):
                created_dirs = [str(p) for p in raw["created_storage_dirs"]]
        except (OSError, ValueError):
            created_dirs = []

        try:
            self._discard_storage(base, snapshot_dir, created_dirs)
        except OSError as e:
            raise IOFailure(
                f"Failed to remove snapshot {snapshot_id}: {e}",
                code="snapshot_remove_failed",
                details={"path": str(snapshot_dir)},
            ) from e
        self._known_roots.pop(snapshot_id, None)
        logger.debug("Removed snapshot %s", snapshot_id)
        return True

    @staticmethod
    def _discard_storage(root: Path, snapshot_dir: Path, created_dirs: Iterable[str]) -> None:
        if snapshot_dir.exists():
            shutil.rmtree(snapshot_dir)
        for rel in created_dirs:
            candidate = root / rel
            if candidate.is_dir() and not any(candidate.iterdir()):
                candidate.rmdir()

    def list(self, root: Path) -> list[str]:
        """Snapshot ids under `root`, newest first."""
        storage_root = self.storage_root(root.resolve())
        if not storage_root.is_dir():
            return []
        dated: list[tuple[datetime, str]] = []
        for child in storage_root.iterdir():
            if not child.is_dir():
                continue
            ts = parse_snapshot_timestamp(child.name)
            if ts is None:
                continue
            dated.append((ts, child.name))
        dated.sort(reverse=True)
        return [snapshot_id for _, snapshot_id in dated]

    def prune(self, root: Path, *, keep: int) -> list[str]:
        if keep < 0:
            raise ValidationFailure(f"keep must be >= 0, got {keep}", code="invalid_prune")
        removed: list[str] = []
        for snapshot_id in self.list(root)[keep:]:
            if self.remove(snapshot_id, root=root):
                removed.append(snapshot_id)
        return removed
