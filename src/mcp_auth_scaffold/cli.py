from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from mcp_auth_scaffold.errors import ScaffoldError
from mcp_auth_scaffold.log import configure_logging
from mcp_auth_scaffold.orchestrator import AddAuthRequest, AuthScaffolder, ScaffoldResult
from mcp_auth_scaffold.platforms import supported_platforms
from mcp_auth_scaffold.providers import get_provider, list_providers
from mcp_auth_scaffold.settings import load_settings
from mcp_auth_scaffold.snapshot import SnapshotManager, parse_snapshot_timestamp


def _add_cwd_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cwd",
        type=Path,
        default=Path("."),
        help="Project root to operate on (default: current directory).",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the mcp-auth-scaffold CLI argument parser."""
    parser = argparse.ArgumentParser(prog="mcp-auth-scaffold")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log pipeline stages and details to stderr."
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    add_p = sub.add_parser(
        "add-auth", help="Add an authentication provider to an existing MCP server project."
    )
    add_p.add_argument("--provider", required=True, help="Provider id (see `providers`).")
    add_p.add_argument(
        "--platform",
        choices=list(supported_platforms()),
        help="Hosting platform (auto-detected by default).",
    )
    add_p.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing auth setup for the same provider.",
    )
    add_p.add_argument(
        "--dry-run",
        action="store_true",
        help="Check pre-conditions and list the files that would be created.",
    )
    add_p.add_argument(
        "--no-backup",
        dest="backup",
        action="store_const",
        const=False,
        default=None,
        help="Skip the snapshot; a failure may leave the project partially modified.",
    )
    add_p.add_argument("--json", action="store_true", help="Print the result as JSON.")
    _add_cwd_argument(add_p)

    providers_p = sub.add_parser("providers", help="List supported auth providers.")
    providers_p.add_argument("--json", action="store_true", help="Print providers as JSON.")

    snapshots_p = sub.add_parser("snapshots", help="Inspect and restore pre-mutation snapshots.")
    snapshots_sub = snapshots_p.add_subparsers(dest="snapshots_cmd", required=True)

    list_p = snapshots_sub.add_parser("list", help="List snapshots, newest first.")
    list_p.add_argument("--json", action="store_true", help="Print snapshot ids as JSON.")
    _add_cwd_argument(list_p)

    restore_p = snapshots_sub.add_parser(
        "restore", help="Return the project to the state captured by a snapshot."
    )
    restore_p.add_argument("snapshot_id", help="Snapshot id (see `snapshots list`).")
    restore_p.add_argument(
        "--remove",
        action="store_true",
        help="Delete the snapshot after a successful restore.",
    )
    _add_cwd_argument(restore_p)

    prune_p = snapshots_sub.add_parser("prune", help="Delete all but the newest snapshots.")
    prune_p.add_argument(
        "--keep", type=int, default=0, help="Number of newest snapshots to keep (default: 0)."
    )
    _add_cwd_argument(prune_p)

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_result(result: ScaffoldResult) -> None:
    if result.success:
        print(f"✓ Added {result.provider} authentication ({result.platform or 'unknown'})")
    else:
        print(f"✗ Failed to add {result.provider} authentication: {result.error}")
        if result.hint:
            print(f"  Hint: {result.hint}")

    if result.files_created:
        print("Created:")
        for path in result.files_created:
            print(f"- {path}")
    if result.files_modified:
        print("Modified:")
        for path in result.files_modified:
            print(f"- {path}")
    if result.warnings:
        print("Notes:")
        for warning in result.warnings:
            print(f"- {warning}")

    if not result.success or not (result.files_created or result.files_modified):
        return
    try:
        descriptor = get_provider(result.provider)
    except ScaffoldError:
        return
    if descriptor.setup_steps:
        print("Next steps:")
        for idx, step in enumerate(descriptor.setup_steps, start=1):
            print(f"{idx}. {step}")
    if descriptor.docs_url:
        print(f"Docs: {descriptor.docs_url}")


def _cmd_add_auth(args: argparse.Namespace) -> int:
    request = AddAuthRequest(
        project_root=args.cwd,
        provider=args.provider,
        platform=args.platform,
        force=args.force,
        dry_run=args.dry_run,
        backup=args.backup,
    )
    result = AuthScaffolder().add_auth(request)
    if args.json:
        _print_json(result.to_dict())
    else:
        _print_result(result)
    return 0 if result.success else 1


def _cmd_providers(args: argparse.Namespace) -> int:
    providers = list_providers()
    if args.json:
        _print_json(
            [
                {
                    "id": p.id,
                    "display_name": p.display_name,
                    "required_config_keys": list(p.required_config_keys),
                    "docs_url": p.docs_url or None,
                }
                for p in providers
            ]
        )
        return 0
    for p in providers:
        print(f"{p.id}\t{p.display_name}\t{', '.join(p.required_config_keys)}")
    return 0


def _snapshot_manager(root: Path) -> SnapshotManager:
    settings = load_settings(root)
    return SnapshotManager(storage_dir=settings.snapshot_dir)


def _cmd_snapshots_list(args: argparse.Namespace) -> int:
    root = args.cwd.resolve()
    try:
        ids = _snapshot_manager(root).list(root)
    except ScaffoldError as e:
        print(str(e), file=sys.stderr)
        return 1
    if args.json:
        _print_json(ids)
        return 0
    if not ids:
        print("No snapshots.")
        return 0
    for snapshot_id in ids:
        ts = parse_snapshot_timestamp(snapshot_id)
        print(f"{snapshot_id}\t{ts.isoformat() if ts else '-'}")
    return 0


def _cmd_snapshots_restore(args: argparse.Namespace) -> int:
    root = args.cwd.resolve()
    try:
        manager = _snapshot_manager(root)
        report = manager.restore(args.snapshot_id, root)
        if args.remove:
            manager.remove(args.snapshot_id, root=root)
    except ScaffoldError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(
        f"Restored snapshot {report.snapshot_id} "
        f"({len(report.restored)} restored, {len(report.deleted)} deleted)"
    )
    return 0


def _cmd_snapshots_prune(args: argparse.Namespace) -> int:
    root = args.cwd.resolve()
    try:
        removed = _snapshot_manager(root).prune(root, keep=args.keep)
    except ScaffoldError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"Removed {len(removed)} snapshot(s).")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Run the CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        configure_logging(verbose=True)
    if args.cmd == "add-auth":
        raise SystemExit(_cmd_add_auth(args))
    if args.cmd == "providers":
        raise SystemExit(_cmd_providers(args))
    if args.cmd == "snapshots":
        if args.snapshots_cmd == "list":
            raise SystemExit(_cmd_snapshots_list(args))
        if args.snapshots_cmd == "restore":
            raise SystemExit(_cmd_snapshots_restore(args))
        if args.snapshots_cmd == "prune":
            raise SystemExit(_cmd_snapshots_prune(args))
        raise SystemExit(2)
    raise SystemExit(2)


if __name__ == "__main__":
    main()
