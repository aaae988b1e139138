from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from mcp_auth_scaffold.cli import build_parser, main
from mcp_auth_scaffold.log import configure_logging
from mcp_auth_scaffold.providers import ProviderDescriptor
from mcp_auth_scaffold.snapshot import SnapshotManager


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return int(exc.value.code or 0)


def test_providers_lists_builtins(capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(["providers"]) == 0
    out = capsys.readouterr().out
    assert "stytch\tStytch\tSTYTCH_PROJECT_ID, STYTCH_SECRET, STYTCH_ENV" in out

    assert _run(["providers", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert {"auth0", "stytch", "workos"} <= {p["id"] for p in payload}


def test_add_auth_json_success(
    cloudflare_project: Path,
    alpha_provider: ProviderDescriptor,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = _run(["add-auth", "--provider", "alpha", "--cwd", str(cloudflare_project), "--json"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is True
    assert payload["platform"] == "cloudflare"
    assert len(payload["files_created"]) == 3


def test_add_auth_human_summary_lists_next_steps(
    cloudflare_project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = _run(["add-auth", "--provider", "stytch", "--cwd", str(cloudflare_project)])

    assert code == 0
    out = capsys.readouterr().out
    assert "✓ Added stytch authentication (cloudflare)" in out
    assert "Created:" in out
    assert "Next steps:" in out
    assert "Docs: https://stytch.com/docs/guides/connected-apps/mcp-servers" in out


def test_add_auth_failure_exits_one(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = _run(["add-auth", "--provider", "stytch", "--cwd", str(tmp_path)])

    assert code == 1
    out = capsys.readouterr().out
    assert "✗ Failed to add stytch authentication: No package.json found." in out
    assert "Hint:" in out


def test_add_auth_dry_run(
    cloudflare_project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = _run(
        ["add-auth", "--provider", "workos", "--dry-run", "--cwd", str(cloudflare_project)]
    )

    assert code == 0
    out = capsys.readouterr().out
    assert "DRY RUN: No changes will be made" in out
    assert "Next steps:" not in out
    assert not (cloudflare_project / "src" / "auth").exists()


def test_usage_errors_exit_two(capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(["add-auth"]) == 2
    assert _run(["add-auth", "--provider", "stytch", "--platform", "netlify"]) == 2
    assert _run([]) == 2
    capsys.readouterr()


def test_no_backup_flag_is_tristate() -> None:
    parser = build_parser()
    assert parser.parse_args(["add-auth", "--provider", "x"]).backup is None
    assert parser.parse_args(["add-auth", "--provider", "x", "--no-backup"]).backup is False


def test_snapshots_list_restore_prune(
    cloudflare_project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    root = cloudflare_project
    cwd = ["--cwd", str(root)]

    assert _run(["snapshots", "list", *cwd]) == 0
    assert "No snapshots." in capsys.readouterr().out

    manager = SnapshotManager()
    snapshot = manager.capture(root, ["wrangler.jsonc"])
    (root / "wrangler.jsonc").write_text("{}\n", encoding="utf-8")

    assert _run(["snapshots", "list", "--json", *cwd]) == 0
    assert json.loads(capsys.readouterr().out) == [snapshot.id]

    assert _run(["snapshots", "restore", snapshot.id, *cwd]) == 0
    assert f"Restored snapshot {snapshot.id}" in capsys.readouterr().out
    assert '"compatibility_date"' in (root / "wrangler.jsonc").read_text(encoding="utf-8")

    assert _run(["snapshots", "prune", "--keep", "0", *cwd]) == 0
    assert "Removed 1 snapshot(s)." in capsys.readouterr().out
    assert not (root / ".mcp-auth").exists()


def test_snapshots_restore_unknown_id(
    cloudflare_project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = _run(["snapshots", "restore", "auth-nope", "--cwd", str(cloudflare_project)])
    assert code == 1
    assert "Invalid snapshot id" in capsys.readouterr().err


def test_configure_logging_is_idempotent() -> None:
    logger = logging.getLogger("mcp_auth_scaffold")
    saved = list(logger.handlers)
    for handler in saved:
        logger.removeHandler(handler)
    try:
        configure_logging(verbose=True)
        configure_logging(verbose=True)
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        assert logger.propagate is False
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        for handler in saved:
            logger.addHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
