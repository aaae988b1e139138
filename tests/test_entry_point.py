from __future__ import annotations

from pathlib import Path

import pytest

from mcp_auth_scaffold.entry_point import (
    IMPORT_BLOCK,
    INIT_BLOCK,
    EntryPointPatcher,
    auth_edit_for,
    plan,
)
from mcp_auth_scaffold.errors import TransformFailure
from mcp_auth_scaffold.platforms import CLOUDFLARE, VERCEL, get_profile

CF_EDIT = auth_edit_for(get_profile(CLOUDFLARE))
VERCEL_EDIT = auth_edit_for(get_profile(VERCEL))

IMPORT = 'import { registerAuth } from "./auth/config.js";'
INIT = "registerAuth(this.server, this.env);"


def _agent(imports: str, body: str) -> str:
    return (
        f"{imports}"
        "\n"
        "export class DemoMCP extends McpAgent {\n"
        "\tasync init() {\n"
        f"{body}"
        "\t}\n"
        "}\n"
    )


def test_auth_edit_for_platforms() -> None:
    assert CF_EDIT.import_statement == IMPORT
    assert CF_EDIT.init_call == INIT
    assert CF_EDIT.import_category == "./auth/"
    assert VERCEL_EDIT.import_statement == 'import { registerAuth } from "@/auth/config";'
    assert VERCEL_EDIT.init_call == "registerAuth(server, process.env);"


def test_import_after_same_category_without_comment() -> None:
    text = _agent(
        'import { McpAgent } from "agents/mcp";\nimport { helpers } from "./auth/helpers.js";\n',
        "\t\tregisterTools(this.server);\n",
    )
    result = plan(text, CF_EDIT)

    assert result.import_anchor is not None
    assert result.import_anchor.kind == IMPORT_BLOCK
    assert result.import_anchor.strategy == "same-category"
    assert f'import {{ helpers }} from "./auth/helpers.js";\n{IMPORT}\n' in result.text
    assert "// Authentication\nimport" not in result.text


def test_import_after_related_category_with_section_comment() -> None:
    text = _agent(
        'import { McpAgent } from "agents/mcp";\n'
        'import { registerTools } from "./tools/index.js";\n'
        'import { z } from "zod";\n',
        "\t\tregisterTools(this.server);\n",
    )
    result = plan(text, CF_EDIT)

    assert result.import_anchor is not None
    assert result.import_anchor.strategy == "related-category"
    assert (
        'import { registerTools } from "./tools/index.js";\n\n// Authentication\n'
        f"{IMPORT}\n"
        'import { z } from "zod";\n'
    ) in result.text


def test_import_after_last_import_when_no_category_matches() -> None:
    text = _agent(
        'import { McpAgent } from "agents/mcp";\nimport { z } from "zod";\n',
        "\t\tconsole.log(z);\n",
    )
    result = plan(text, CF_EDIT)

    assert result.import_anchor is not None
    assert result.import_anchor.strategy == "last-import"
    assert f'import {{ z }} from "zod";\n\n// Authentication\n{IMPORT}\n' in result.text


def test_import_at_top_of_file_without_imports() -> None:
    text = _agent("", "\t\tthis.ready = true;\n")
    result = plan(text, CF_EDIT)

    assert result.import_anchor is not None
    assert result.import_anchor.strategy == "top-of-file"
    assert result.text.startswith(f"// Authentication\n{IMPORT}\n\n")


def test_import_inside_comment_or_string_is_ignored() -> None:
    text = _agent(
        '/*\nimport { old } from "./tools/old.js";\n*/\nimport { z } from "zod";\n',
        "\t\tconsole.log(z);\n",
    )
    result = plan(text, CF_EDIT)
    assert result.import_anchor is not None
    assert result.import_anchor.strategy == "last-import"


def test_init_call_after_open_brace_with_section_comment() -> None:
    text = _agent('import { z } from "zod";\n', "\t\tregisterTools(this.server);\n")
    result = plan(text, CF_EDIT)

    assert result.init_anchor is not None
    assert result.init_anchor.kind == INIT_BLOCK
    assert result.init_anchor.strategy == "after-open-brace"
    assert (
        "\tasync init() {\n"
        "\t\t// Authentication\n"
        f"\t\t{INIT}\n"
        "\t\tregisterTools(this.server);\n"
    ) in result.text


def test_init_call_after_same_kind_call() -> None:
    text = _agent(
        'import { z } from "zod";\n',
        "\t\tregisterGithubAuth(this.server, {\n\t\t\tscopes: [],\n\t\t});\n\t\tregisterTools();\n",
    )
    result = plan(text, CF_EDIT)

    assert result.init_anchor is not None
    assert result.init_anchor.strategy == "same-kind-call"
    assert f"\t\t}});\n\t\t{INIT}\n\t\tregisterTools();\n" in result.text


def test_init_call_into_empty_single_line_body() -> None:
    text = 'import { z } from "zod";\n\nclass A {\n  async init() {}\n}\n'
    result = plan(text, CF_EDIT)
    assert "  async init() {\n    // Authentication\n    " + INIT + "\n  }\n" in result.text


def test_vercel_handler_callback_is_patched() -> None:
    text = (
        'import { createMcpHandler } from "@vercel/mcp-adapter";\n'
        'import { registerEcho } from "@/tools/echo";\n'
        "\n"
        "const handler = createMcpHandler(\n"
        "  (server) => {\n"
        "    registerEcho(server);\n"
        "  },\n"
        ");\n"
    )
    result = plan(text, VERCEL_EDIT)

    assert result.modified
    assert result.import_anchor is not None
    assert result.import_anchor.strategy == "related-category"
    assert "    registerAuth(server, process.env);\n    registerEcho(server);" in result.text


def test_missing_init_routine_is_a_transform_failure() -> None:
    with pytest.raises(TransformFailure) as exc:
        plan('import { z } from "zod";\nexport default {};\n', CF_EDIT)
    assert exc.value.code == "init_routine_not_found"


def test_unbalanced_init_routine_is_a_transform_failure() -> None:
    with pytest.raises(TransformFailure) as exc:
        plan("class A {\n  async init() {\n    doThing();\n", CF_EDIT)
    assert exc.value.code == "init_routine_unbalanced"


def test_apply_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "src" / "index.ts"
    path.parent.mkdir(parents=True)
    path.write_text(_agent('import { z } from "zod";\n', "\t\tconsole.log(z);\n"), "utf-8")
    patcher = EntryPointPatcher()

    first = patcher.apply(path, CF_EDIT)
    after_first = path.read_bytes()
    second = patcher.apply(path, CF_EDIT)

    assert first.modified and not first.already_present
    assert not second.modified and second.already_present
    assert path.read_bytes() == after_first
    text = after_first.decode("utf-8")
    assert text.count(IMPORT) == 1
    assert text.count(INIT) == 1


def test_force_reinserts_markers(tmp_path: Path) -> None:
    path = tmp_path / "index.ts"
    path.write_text(_agent('import { z } from "zod";\n', "\t\tconsole.log(z);\n"), "utf-8")
    patcher = EntryPointPatcher()
    patcher.apply(path, CF_EDIT)

    forced = patcher.apply(path, CF_EDIT, force=True)

    assert forced.modified and forced.already_present
    text = path.read_text(encoding="utf-8")
    assert text.count(IMPORT) == 2
    assert text.count(INIT) == 2


def test_symbol_match_respects_identifier_boundaries(tmp_path: Path) -> None:
    path = tmp_path / "index.ts"
    path.write_text(
        _agent('import { registerAuthLegacy } from "./legacy.js";\n', "\t\tconsole.log(1);\n"),
        "utf-8",
    )
    patcher = EntryPointPatcher()
    assert not patcher.has_symbol(path, "registerAuth")
    assert patcher.apply(path, CF_EDIT).modified


def test_crlf_line_endings_are_preserved(tmp_path: Path) -> None:
    path = tmp_path / "index.ts"
    text = _agent('import { z } from "zod";\n', "\t\tconsole.log(z);\n").replace("\n", "\r\n")
    path.write_bytes(text.encode("utf-8"))

    EntryPointPatcher().apply(path, CF_EDIT)

    patched = path.read_bytes().decode("utf-8")
    assert f"{IMPORT}\r\n" in patched
    assert "\n" not in patched.replace("\r\n", "")


def test_missing_entry_point(tmp_path: Path) -> None:
    patcher = EntryPointPatcher()
    missing = tmp_path / "src" / "index.ts"
    assert not patcher.has_symbol(missing, "registerAuth")
    with pytest.raises(TransformFailure) as exc:
        patcher.apply(missing, CF_EDIT)
    assert exc.value.code == "entry_point_missing"
    assert str(exc.value) == f"Entry point not found: {missing}"
