from __future__ import annotations

import bisect
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from mcp_auth_scaffold.errors import TransformFailure
from mcp_auth_scaffold.platforms import PlatformProfile

logger = logging.getLogger(__name__)

IMPORT_BLOCK = "import-block"
INIT_BLOCK = "init-block"

RELATED_CATEGORIES: tuple[str, ...] = ("tools", "prompts", "resources", "bindings")

_IMPORT_RE = re.compile(
    r"^[ \t]*import\s+(?:type\s+)?(?:[\w*{}\s,$]+?\s+from\s+)?"
    r"[\"'](?P<module>[^\"']+)[\"'][ \t]*;?",
    re.MULTILINE,
)
_LINE_TAIL_RE = re.compile(r"[ \t]*(?://.*|/\*.*?\*/)?[ \t]*")
_INDENTED_LINE_RE = re.compile(r"^([ \t]+)\S", re.MULTILINE)


@dataclass(frozen=True)
class EntryPointAnchor:
    """A located insertion point in the original entry-point text."""

    start: int
    end: int
    kind: str
    strategy: str


@dataclass(frozen=True)
class EntryPointEdit:
    """
    The two insertions applied to an entry point.

    Parameters
    ----------
    symbol
        Identifier whose presence marks the edit as already applied.
    import_statement
        Full import line to insert.
    import_category
        Module prefix of imports of the same category (for example `./auth/`).
    related_categories
        Module prefixes of already-scaffolded capability imports, in no particular order.
    init_call
        Statement inserted into the initialization routine.
    call_kind_pattern
        Regex matching calls of the same registration kind, ending at the opening parenthesis.
    init_routine_pattern
        Regex matching the start of the initialization routine, ending at its opening brace.
    section_label
        Text of the section comment placed before insertions that start a new group.
    """

    symbol: str
    import_statement: str
    import_category: str
    related_categories: tuple[str, ...]
    init_call: str
    call_kind_pattern: str
    init_routine_pattern: str
    section_label: str = "Authentication"


@dataclass(frozen=True)
class PatchPlan:
    text: str
    modified: bool
    already_present: bool
    import_anchor: EntryPointAnchor | None = None
    init_anchor: EntryPointAnchor | None = None


@dataclass(frozen=True)
class PatchResult:
    path: Path
    modified: bool
    already_present: bool
    import_anchor: EntryPointAnchor | None = None
    init_anchor: EntryPointAnchor | None = None


def auth_edit_for(profile: PlatformProfile, *, symbol: str = "registerAuth") -> EntryPointEdit:
    module = profile.module_path("auth/config")
    return EntryPointEdit(
        symbol=symbol,
        import_statement=f'import {{ {symbol} }} from "{module}";',
        import_category=f"{profile.import_prefix}auth/",
        related_categories=tuple(f"{profile.import_prefix}{c}/" for c in RELATED_CATEGORIES),
        init_call=f"{symbol}({profile.server_expr}, {profile.env_expr});",
        call_kind_pattern=r"\bregister\w*Auth\w*\s*\(",
        init_routine_pattern=profile.init_routine_pattern,
    )


def _non_code_spans(text: str) -> list[tuple[int, int]]:
    """Spans of comments and string/template literals, in order."""
    spans: list[tuple[int, int]] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if text.startswith("//", i):
            j = text.find("\n", i)
            j = n if j == -1 else j
        elif text.startswith("/*", i):
            j = text.find("*/", i + 2)
            j = n if j == -1 else j + 2
        elif ch in "\"'`":
            j = i + 1
            while j < n and text[j] != ch:
                if text[j] == "\\":
                    j += 2
                    continue
                if ch != "`" and text[j] == "\n":
                    break
                j += 1
            j = min(j + 1, n)
        else:
            i += 1
            continue
        spans.append((i, j))
        i = j
    return spans


class _Source:
    def __init__(self, text: str) -> None:
        self.text = text
        self.newline = "\r\n" if "\r\n" in text else "\n"
        self.spans = _non_code_spans(text)
        self._span_starts = [s for s, _ in self.spans]
        self._span_ends = dict(self.spans)
        match = _INDENTED_LINE_RE.search(text)
        self.unit = "\t" if match is None or match.group(1).startswith("\t") else match.group(1)

    def in_non_code(self, pos: int) -> bool:
        idx = bisect.bisect_right(self._span_starts, pos) - 1
        return idx >= 0 and self.spans[idx][0] <= pos < self.spans[idx][1]

    def match_close(self, open_idx: int, open_ch: str, close_ch: str) -> int | None:
        depth = 0
        i = open_idx
        while i < len(self.text):
            skip_to = self._span_ends.get(i)
            if skip_to is not None:
                i = skip_to
                continue
            ch = self.text[i]
            if ch == open_ch:
                depth += 1
            elif ch == close_ch:
                depth -= 1
                if depth == 0:
                    return i
            i += 1
        return None

    def line_indent(self, pos: int) -> str:
        line_start = self.text.rfind("\n", 0, pos) + 1
        match = re.match(r"[ \t]*", self.text[line_start:])
        return match.group() if match else ""

    def line_end_after(self, pos: int) -> int:
        """End of the line at `pos` when only whitespace or a comment follows, else `pos`."""
        nl = self.text.find("\n", pos)
        line_end = len(self.text) if nl == -1 else nl
        if line_end > pos and self.text[line_end - 1] == "\r":
            line_end -= 1
        if _LINE_TAIL_RE.fullmatch(self.text, pos, line_end):
            return line_end
        return pos


@dataclass(frozen=True)
class _Import:
    start: int
    end: int
    module: str


def _imports(src: _Source) -> list[_Import]:
    out: list[_Import] = []
    for match in _IMPORT_RE.finditer(src.text):
        start = match.start() + (len(match.group()) - len(match.group().lstrip()))
        if src.in_non_code(start):
            continue
        out.append(_Import(start, match.end(), match.group("module")))
    return out


def _after_same_category(
    imports: Sequence[_Import], edit: EntryPointEdit
) -> tuple[_Import, bool] | None:
    same = [imp for imp in imports if imp.module.startswith(edit.import_category)]
    return (same[-1], False) if same else None


def _after_related_category(
    imports: Sequence[_Import], edit: EntryPointEdit
) -> tuple[_Import, bool] | None:
    related = [imp for imp in imports if imp.module.startswith(edit.related_categories)]
    return (related[-1], True) if related else None


def _after_last_import(
    imports: Sequence[_Import], edit: EntryPointEdit
) -> tuple[_Import, bool] | None:
    return (imports[-1], True) if imports else None


# Each strategy returns (anchor import, needs section comment), or None when it does not apply.
IMPORT_STRATEGIES: tuple[
    tuple[str, Callable[[Sequence[_Import], EntryPointEdit], tuple[_Import, bool] | None]], ...
] = (
    ("same-category", _after_same_category),
    ("related-category", _after_related_category),
    ("last-import", _after_last_import),
)


def _plan_import(src: _Source, edit: EntryPointEdit) -> tuple[int, str, EntryPointAnchor]:
    nl = src.newline
    comment = f"// {edit.section_label}"
    imports = _imports(src)
    for name, strategy in IMPORT_STRATEGIES:
        found = strategy(imports, edit)
        if found is None:
            continue
        anchor_import, needs_comment = found
        pos = src.line_end_after(anchor_import.end)
        if needs_comment:
            insertion = f"{nl}{nl}{comment}{nl}{edit.import_statement}"
        else:
            insertion = f"{nl}{edit.import_statement}"
        anchor = EntryPointAnchor(anchor_import.start, anchor_import.end, IMPORT_BLOCK, name)
        return pos, insertion, anchor

    insertion = f"{comment}{nl}{edit.import_statement}{nl}{nl}"
    return 0, insertion, EntryPointAnchor(0, 0, IMPORT_BLOCK, "top-of-file")


def _find_routine(src: _Source, edit: EntryPointEdit) -> re.Match[str] | None:
    for match in re.finditer(edit.init_routine_pattern, src.text):
        if not src.in_non_code(match.start()):
            return match
    return None


def _plan_init(src: _Source, edit: EntryPointEdit) -> tuple[int, str, EntryPointAnchor]:
    text = src.text
    nl = src.newline
    routine = _find_routine(src, edit)
    if routine is None:
        raise TransformFailure(
            "Could not locate the initialization routine in the entry point.",
            code="init_routine_not_found",
            details={"pattern": edit.init_routine_pattern},
        )
    open_idx = routine.end() - 1
    close_idx = src.match_close(open_idx, "{", "}")
    if close_idx is None:
        raise TransformFailure(
            "Unbalanced braces in the initialization routine of the entry point.",
            code="init_routine_unbalanced",
        )

    last_call: tuple[int, int] | None = None
    for match in re.finditer(edit.call_kind_pattern, text[open_idx + 1 : close_idx]):
        start = open_idx + 1 + match.start()
        if src.in_non_code(start):
            continue
        paren_close = src.match_close(open_idx + 1 + match.end() - 1, "(", ")")
        if paren_close is None or paren_close > close_idx:
            continue
        end = paren_close + 1
        if text.startswith(";", end):
            end += 1
        last_call = (start, end)

    if last_call is not None:
        start, end = last_call
        indent = src.line_indent(start)
        pos = src.line_end_after(end)
        anchor = EntryPointAnchor(start, end, INIT_BLOCK, "same-kind-call")
        return pos, f"{nl}{indent}{edit.init_call}", anchor

    routine_indent = src.line_indent(routine.start())
    body = text[open_idx + 1 : close_idx]
    body_lines = [line for line in body.splitlines() if line.strip()]
    if body_lines:
        first = body_lines[0]
        indent = first[: len(first) - len(first.lstrip())] or routine_indent + src.unit
    else:
        indent = routine_indent + src.unit
    block = f"{nl}{indent}// {edit.section_label}{nl}{indent}{edit.init_call}"
    anchor = EntryPointAnchor(open_idx, open_idx + 1, INIT_BLOCK, "after-open-brace")
    if "\n" not in body:
        # Single-line body: continue it on its own line.
        tail = indent if body.strip() else routine_indent
        return open_idx + 1, f"{block}{nl}{tail}", anchor
    return src.line_end_after(open_idx + 1), block, anchor


def _has_symbol(text: str, symbol: str) -> bool:
    return re.search(rf"(?<![\w$]){re.escape(symbol)}(?![\w$])", text) is not None


def plan(text: str, edit: EntryPointEdit, *, force: bool = False) -> PatchPlan:
    """Compute the patched text without touching the filesystem."""
    if _has_symbol(text, edit.symbol) and not force:
        return PatchPlan(text=text, modified=False, already_present=True)

    src = _Source(text)
    init_pos, init_text, init_anchor = _plan_init(src, edit)
    import_pos, import_text, import_anchor = _plan_import(src, edit)

    edits = sorted(
        [(import_pos, import_text), (init_pos, init_text)], key=lambda e: e[0], reverse=True
    )
    patched = text
    for pos, insertion in edits:
        patched = patched[:pos] + insertion + patched[pos:]
    return PatchPlan(
        text=patched,
        modified=patched != text,
        already_present=_has_symbol(text, edit.symbol),
        import_anchor=import_anchor,
        init_anchor=init_anchor,
    )


class EntryPointPatcher:
    """Idempotent, anchor-based edits of a project's bootstrap source file."""

    def _read(self, path: Path) -> str:
        if not path.is_file():
            raise TransformFailure(
                f"Entry point not found: {path}",
                code="entry_point_missing",
                details={"path": str(path)},
            )
        try:
            return path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TransformFailure(f"Failed to read entry point {path}: {e}") from e

    def has_symbol(self, path: Path, symbol: str) -> bool:
        if not path.is_file():
            return False
        return _has_symbol(self._read(path), symbol)

    def apply(self, path: Path, edit: EntryPointEdit, *, force: bool = False) -> PatchResult:
        text = self._read(path)
        result = plan(text, edit, force=force)
        if result.already_present and not result.modified:
            logger.info("Entry point %s already references %s; skipping", path, edit.symbol)
        if result.modified:
            path.write_bytes(result.text.encode("utf-8"))
            logger.debug(
                "Patched %s (import: %s, init: %s)",
                path,
                result.import_anchor.strategy if result.import_anchor else None,
                result.init_anchor.strategy if result.init_anchor else None,
            )
        return PatchResult(
            path=path,
            modified=result.modified,
            already_present=result.already_present,
            import_anchor=result.import_anchor,
            init_anchor=result.init_anchor,
        )
