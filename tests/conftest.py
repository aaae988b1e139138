from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from mcp_auth_scaffold.providers import ProviderDescriptor, register_provider, unregister_provider

CLOUDFLARE_INDEX = """\
import { McpAgent } from "agents/mcp";
import { McpServer } from "@modelcontextprotocol/sdk/server/mcp.js";
import { registerTools } from "./tools/index.js";

export class DemoMCP extends McpAgent {
\tserver = new McpServer({ name: "demo", version: "1.0.0" });

\tasync init() {
\t\tregisterTools(this.server);
\t}
}

export default DemoMCP.serve("/mcp");
"""

WRANGLER_JSONC = """\
{
  // Worker settings
  "name": "demo",
  "main": "src/index.ts",
  "compatibility_date": "2025-01-01"
}
"""

VERCEL_ROUTE = """\
import { createMcpHandler } from "@vercel/mcp-adapter";
import { registerEcho } from "@/tools/echo";

const handler = createMcpHandler(
  (server) => {
    registerEcho(server);
  },
  {},
  { basePath: "/api" },
);

export { handler as GET, handler as POST };
"""


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _write_manifest(root: Path, payload: dict[str, object]) -> None:
    _write(root / "package.json", json.dumps(payload, indent=2) + "\n")


@pytest.fixture
def cloudflare_project(tmp_path: Path) -> Path:
    root = tmp_path / "cf-project"
    _write_manifest(
        root,
        {
            "name": "demo",
            "dependencies": {"agents": "^0.0.100"},
            "devDependencies": {"wrangler": "^4.0.0"},
        },
    )
    _write(root / "src" / "index.ts", CLOUDFLARE_INDEX)
    _write(root / "src" / "tools" / "index.ts", "export function registerTools() {}\n")
    _write(root / "wrangler.jsonc", WRANGLER_JSONC)
    _write(root / ".env.example", "# App\nPORT=8787\n")
    return root


@pytest.fixture
def vercel_project(tmp_path: Path) -> Path:
    root = tmp_path / "vercel-project"
    _write_manifest(
        root,
        {"name": "demo", "dependencies": {"next": "^15.0.0", "@vercel/mcp-adapter": "^1.0.0"}},
    )
    _write(root / "app" / "api" / "mcp" / "route.ts", VERCEL_ROUTE)
    _write(root / "src" / "tools" / "echo.ts", "export function registerEcho() {}\n")
    return root


@pytest.fixture
def alpha_provider() -> Iterator[ProviderDescriptor]:
    descriptor = ProviderDescriptor(
        id="alpha",
        display_name="Alpha",
        env_prefix="ALPHA_",
        required_config_keys=("ALPHA_CLIENT_ID", "ALPHA_SECRET"),
        example_values={"ALPHA_CLIENT_ID": "alpha-client", "ALPHA_SECRET": "alpha-secret"},
    )
    register_provider(descriptor, replace=True)
    try:
        yield descriptor
    finally:
        unregister_provider("alpha")


@pytest.fixture
def tree_digest() -> Callable[[Path], dict[str, bytes]]:
    """Snapshot of every file (path -> bytes) and directory (path -> b"<dir>") under a root."""

    def _digest(root: Path) -> dict[str, bytes]:
        out: dict[str, bytes] = {}
        for path in sorted(root.rglob("*")):
            rel = path.relative_to(root).as_posix()
            out[rel] = b"<dir>" if path.is_dir() else path.read_bytes()
        return out

    return _digest
