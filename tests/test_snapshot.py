from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from mcp_auth_scaffold.errors import IOFailure, ValidationFailure
from mcp_auth_scaffold.snapshot import (
    DEFAULT_SNAPSHOT_DIR,
    KIND_ABSENT,
    KIND_DIR,
    KIND_FILE,
    MANIFEST_NAME,
    SnapshotManager,
    new_snapshot_id,
    parse_snapshot_timestamp,
)


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    _write(root / "package.json", '{"name": "demo"}\n')
    _write(root / "src" / "index.ts", "export {};\n")
    _write(root / "src" / "auth" / "types.ts", "export type A = 1;\n")
    return root


def test_snapshot_ids_embed_utc_timestamp() -> None:
    now = datetime(2026, 1, 2, 3, 4, 5, 600000, tzinfo=timezone.utc)
    snapshot_id = new_snapshot_id(now)
    assert snapshot_id.startswith("auth-20260102T030405600000Z-")
    assert parse_snapshot_timestamp(snapshot_id) == now
    assert parse_snapshot_timestamp("not-a-snapshot") is None


def test_capture_records_files_dirs_and_absent_paths(tmp_path: Path) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()

    snapshot = manager.capture(root, ["package.json", "src/auth", "wrangler.toml"])

    kinds = {e.path: e.kind for e in snapshot.entries}
    assert kinds == {
        "package.json": KIND_FILE,
        "src/auth": KIND_DIR,
        "src/auth/types.ts": KIND_FILE,
        "wrangler.toml": KIND_ABSENT,
    }
    assert snapshot.storage_dir == root.resolve() / DEFAULT_SNAPSHOT_DIR / snapshot.id
    manifest = json.loads((snapshot.storage_dir / MANIFEST_NAME).read_text(encoding="utf-8"))
    assert manifest["requested"] == ["package.json", "src/auth", "wrangler.toml"]
    assert manifest["created_storage_dirs"] == [".mcp-auth/snapshots", ".mcp-auth"]


def test_restore_returns_tree_to_captured_state(
    tmp_path: Path, tree_digest: Callable[[Path], dict[str, bytes]]
) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()
    paths = ["package.json", "src/index.ts", "src/auth", "wrangler.toml"]
    snapshot = manager.capture(root, paths)
    before = {k: v for k, v in tree_digest(root).items() if not k.startswith(".mcp-auth")}

    _write(root / "package.json", '{"name": "changed"}\n')
    (root / "src" / "index.ts").unlink()
    _write(root / "src" / "auth" / "providers" / "alpha.ts", "export {};\n")
    _write(root / "src" / "auth" / "types.ts", "changed\n")
    _write(root / "wrangler.toml", 'name = "x"\n')

    report = manager.restore(snapshot.id, root)

    after = {k: v for k, v in tree_digest(root).items() if not k.startswith(".mcp-auth")}
    assert after == before
    assert "wrangler.toml" in report.deleted
    assert "src/auth/providers/alpha.ts" in report.deleted
    assert "src/auth/providers" in report.deleted


def test_restore_removes_directory_that_did_not_exist(tmp_path: Path) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()
    snapshot = manager.capture(root, ["src/new"])
    _write(root / "src" / "new" / "file.ts", "x\n")

    manager.restore(snapshot.id, root)

    assert not (root / "src" / "new").exists()


def test_remove_cleans_storage_and_created_parents(tmp_path: Path) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()
    snapshot = manager.capture(root, ["package.json"])

    assert manager.remove(snapshot.id, root=root)

    assert not (root / ".mcp-auth").exists()
    assert not manager.remove(snapshot.id, root=root)


def test_remove_keeps_parents_with_other_snapshots(tmp_path: Path) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()
    first = manager.capture(root, ["package.json"])
    second = manager.capture(root, ["package.json"])

    manager.remove(second.id)

    assert manager.list(root) == [first.id]
    assert (root / DEFAULT_SNAPSHOT_DIR / first.id).is_dir()


def test_list_and_prune_newest_first(tmp_path: Path) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()
    ids = [manager.capture(root, ["package.json"]).id for _ in range(3)]

    listed = manager.list(root)
    assert sorted(listed) == sorted(ids)
    assert listed == sorted(listed, reverse=True)

    removed = manager.prune(root, keep=1)

    assert len(removed) == 2
    assert manager.list(root) == listed[:1]
    with pytest.raises(ValidationFailure):
        manager.prune(root, keep=-1)


def test_load_unknown_snapshot(tmp_path: Path) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()
    with pytest.raises(IOFailure) as exc:
        manager.restore(new_snapshot_id(), root)
    assert exc.value.code == "snapshot_not_found"
    with pytest.raises(ValidationFailure):
        manager.restore("../../etc", root)


@pytest.mark.parametrize("bad", ["/etc/passwd", "../outside", "."])
def test_capture_rejects_paths_outside_project(tmp_path: Path, bad: str) -> None:
    root = _project(tmp_path)
    with pytest.raises(ValidationFailure):
        SnapshotManager().capture(root, [bad])


def test_capture_rejects_storage_inside_captured_path(tmp_path: Path) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager(storage_dir="src/auth/.snapshots")
    with pytest.raises(ValidationFailure):
        manager.capture(root, ["src/auth"])
    assert not (root / "src" / "auth" / ".snapshots").exists()


def test_capture_failure_cleans_up(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = _project(tmp_path)
    manager = SnapshotManager()

    def boom(self: Path) -> bytes:
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "read_bytes", boom)
    with pytest.raises(ValidationFailure) as exc:
        manager.capture(root, ["package.json"])

    monkeypatch.undo()
    assert exc.value.code == "snapshot_capture_failed"
    assert not (root / ".mcp-auth").exists()
