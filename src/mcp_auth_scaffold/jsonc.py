"""
Minimal-diff editing of JSON-with-comments documents.

`JsoncDocument` keeps the original text and a span tree of the parsed values. Every edit is a
small text splice (insert a member, replace a value, drop a member) followed by a re-parse, so
comments, key order and formatting outside the touched members survive untouched.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>[ \t\r\n]+)
    |(?P<line_comment>//[^\n]*)
    |(?P<block_comment>/\*.*?\*/)
    |(?P<string>"(?:[^"\\\n]|\\.)*")
    |(?P<punct>[{}\[\]:,])
    |(?P<literal>[^\s{}\[\]:,"/]+)
    """,
    re.VERBOSE | re.DOTALL,
)
_SKIPPED = frozenset({"ws", "line_comment", "block_comment"})
_LINE_TAIL_RE = re.compile(r"[ \t]*(?://.*|/\*.*?\*/)?[ \t]*")
_INDENT_RE = re.compile(r"^([ \t]+)\S", re.MULTILINE)
_DEFAULT_INDENT = "  "


class JsoncError(ValueError):
    def __init__(self, message: str, *, offset: int | None = None, text: str | None = None) -> None:
        if offset is not None and text is not None:
            line = text.count("\n", 0, offset) + 1
            column = offset - (text.rfind("\n", 0, offset) + 1) + 1
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)
        self.offset = offset


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    start: int
    end: int


@dataclass
class ScalarNode:
    start: int
    end: int
    value: Any

    def to_python(self) -> Any:
        return self.value


@dataclass
class ArrayNode:
    start: int
    end: int
    items: list[Node] = field(default_factory=list)

    def to_python(self) -> list[Any]:
        return [item.to_python() for item in self.items]


@dataclass
class Member:
    key: str
    key_start: int
    value: Node
    comma_start: int | None = None
    comma_end: int | None = None

    @property
    def end(self) -> int:
        return self.comma_end if self.comma_end is not None else self.value.end


@dataclass
class ObjectNode:
    start: int
    end: int
    members: list[Member] = field(default_factory=list)

    def index_of(self, key: str) -> int | None:
        for idx in range(len(self.members) - 1, -1, -1):
            if self.members[idx].key == key:
                return idx
        return None

    def get(self, key: str) -> Member | None:
        idx = self.index_of(key)
        return None if idx is None else self.members[idx]

    def to_python(self) -> dict[str, Any]:
        return {m.key: m.value.to_python() for m in self.members}


Node = ScalarNode | ArrayNode | ObjectNode


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise JsoncError(f"Unexpected character {text[pos]!r}", offset=pos, text=text)
        kind = match.lastgroup or ""
        if kind not in _SKIPPED:
            tokens.append(_Token(kind, match.group(), match.start(), match.end()))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self, expected: str) -> _Token:
        tok = self._peek()
        if tok is None:
            raise JsoncError(f"Unexpected end of document, expected {expected}")
        self.pos += 1
        return tok

    def _error(self, message: str, tok: _Token) -> JsoncError:
        return JsoncError(message, offset=tok.start, text=self.text)

    def parse_document(self) -> Node:
        if not self.tokens:
            raise JsoncError("Empty document")
        node = self._parse_value()
        extra = self._peek()
        if extra is not None:
            raise self._error(f"Unexpected content {extra.text!r} after document", extra)
        return node

    def _parse_value(self) -> Node:
        tok = self._next("a value")
        if tok.kind == "punct" and tok.text == "{":
            return self._parse_object(tok)
        if tok.kind == "punct" and tok.text == "[":
            return self._parse_array(tok)
        if tok.kind in {"string", "literal"}:
            try:
                value = json.loads(tok.text)
            except ValueError as e:
                raise self._error(f"Invalid value {tok.text!r}", tok) from e
            return ScalarNode(tok.start, tok.end, value)
        raise self._error(f"Unexpected {tok.text!r}", tok)

    def _parse_object(self, open_tok: _Token) -> ObjectNode:
        node = ObjectNode(start=open_tok.start, end=open_tok.end)
        while True:
            tok = self._next("'}'")
            if tok.kind == "punct" and tok.text == "}":
                node.end = tok.end
                return node
            if tok.kind != "string":
                raise self._error(f"Expected a string key, got {tok.text!r}", tok)
            colon = self._next("':'")
            if colon.text != ":":
                raise self._error(f"Expected ':' after key, got {colon.text!r}", colon)
            key = json.loads(tok.text)
            member = Member(key=key, key_start=tok.start, value=self._parse_value())
            node.members.append(member)
            sep = self._next("',' or '}'")
            if sep.kind == "punct" and sep.text == ",":
                member.comma_start, member.comma_end = sep.start, sep.end
                continue
            if sep.kind == "punct" and sep.text == "}":
                node.end = sep.end
                return node
            raise self._error(f"Expected ',' or '}}', got {sep.text!r}", sep)

    def _parse_array(self, open_tok: _Token) -> ArrayNode:
        node = ArrayNode(start=open_tok.start, end=open_tok.end)
        while True:
            tok = self._peek()
            if tok is not None and tok.kind == "punct" and tok.text == "]":
                self.pos += 1
                node.end = tok.end
                return node
            node.items.append(self._parse_value())
            sep = self._next("',' or ']'")
            if sep.kind == "punct" and sep.text == "]":
                node.end = sep.end
                return node
            if not (sep.kind == "punct" and sep.text == ","):
                raise self._error(f"Expected ',' or ']', got {sep.text!r}", sep)


def parse_jsonc(text: str) -> Any:
    """Parse JSON with `//` and `/* */` comments and trailing commas into Python values."""
    return _Parser(text).parse_document().to_python()


def split_section(section: str | Sequence[str]) -> list[str]:
    if isinstance(section, str):
        return [part for part in section.split(".") if part] if section else []
    return list(section)


class JsoncDocument:
    def __init__(self, text: str) -> None:
        self.text = text
        self._root = self._parse_root(text)
        self._unit = self._detect_indent_unit(text)
        self._newline = "\r\n" if "\r\n" in text else "\n"

    @classmethod
    def empty(cls) -> JsoncDocument:
        return cls("{}\n")

    @staticmethod
    def _parse_root(text: str) -> ObjectNode:
        root = _Parser(text).parse_document()
        if not isinstance(root, ObjectNode):
            raise JsoncError("Top-level value must be an object")
        return root

    @staticmethod
    def _detect_indent_unit(text: str) -> str:
        match = _INDENT_RE.search(text)
        if match is None:
            return _DEFAULT_INDENT
        ws = match.group(1)
        return "\t" if ws.startswith("\t") else ws

    @property
    def data(self) -> dict[str, Any]:
        return self._root.to_python()

    def dumps(self) -> str:
        return self.text

    def _object_at(self, path: Sequence[str]) -> ObjectNode | None:
        node: ObjectNode = self._root
        for part in path:
            member = node.get(part)
            if member is None:
                return None
            if not isinstance(member.value, ObjectNode):
                raise JsoncError(f"{'.'.join(path)!r} is not an object (at {part!r})")
            node = member.value
        return node

    def section(self, section: str | Sequence[str]) -> dict[str, Any] | None:
        node = self._object_at(split_section(section))
        return None if node is None else node.to_python()

    def set_keys(
        self,
        section: str | Sequence[str],
        updates: Mapping[str, Any],
        *,
        overwrite: bool = False,
    ) -> list[str]:
        """Add (or with `overwrite`, replace) keys in a section; return the keys that changed."""
        path = split_section(section)
        depth = 0
        node = self._root
        while depth < len(path):
            member = node.get(path[depth])
            if member is None:
                break
            if not isinstance(member.value, ObjectNode):
                raise JsoncError(f"{'.'.join(path[: depth + 1])!r} is not an object")
            node = member.value
            depth += 1

        if depth < len(path):
            if not updates:
                return []
            value: Any = dict(updates)
            for part in reversed(path[depth + 1 :]):
                value = {part: value}
            self._insert_member(node, path[depth], value)
            return list(updates)

        changed: list[str] = []
        for key, value in updates.items():
            target = self._object_at(path)
            assert target is not None
            existing = target.get(key)
            if existing is None:
                self._insert_member(target, key, value)
                changed.append(key)
            elif overwrite and existing.value.to_python() != value:
                indent = self._line_indent(existing.key_start)
                inline = "\n" not in self.text[target.start : target.end]
                rendered = self._render(value, indent, inline=inline)
                self._apply([(existing.value.start, existing.value.end, rendered)])
                changed.append(key)
        return changed

    def remove_keys(self, section: str | Sequence[str], keys: Sequence[str]) -> list[str]:
        """Remove keys from a section, dropping the section once it ends up empty."""
        path = split_section(section)
        if self._object_at(path) is None:
            return []
        removed: list[str] = []
        for key in keys:
            target = self._object_at(path)
            assert target is not None
            idx = target.index_of(key)
            if idx is None:
                continue
            self._remove_member(target, idx)
            removed.append(key)

        if removed and path:
            target = self._object_at(path)
            parent = self._object_at(path[:-1])
            if target is not None and not target.members and parent is not None:
                idx = parent.index_of(path[-1])
                if idx is not None:
                    self._remove_member(parent, idx)
        return removed

    def _apply(self, edits: list[tuple[int, int, str]]) -> None:
        text = self.text
        for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
            text = text[:start] + replacement + text[end:]
        self._root = self._parse_root(text)
        self.text = text

    def _line_indent(self, offset: int) -> str:
        line_start = self.text.rfind("\n", 0, offset) + 1
        match = re.match(r"[ \t]*", self.text[line_start:])
        return match.group() if match else ""

    def _line_tail(self, pos: int) -> int | None:
        """End of the line at `pos` when only whitespace or a comment follows, else None."""
        nl = self.text.find("\n", pos)
        line_end = len(self.text) if nl == -1 else nl
        if line_end > pos and self.text[line_end - 1] == "\r":
            line_end -= 1
        if _LINE_TAIL_RE.fullmatch(self.text, pos, line_end):
            return line_end
        return None

    def _render(self, value: Any, indent: str, *, inline: bool = False) -> str:
        if isinstance(value, (dict, list)) and value and not inline:
            rendered = json.dumps(value, indent=self._unit, ensure_ascii=False)
        else:
            rendered = json.dumps(value, ensure_ascii=False)
        return rendered.replace("\n", self._newline + indent)

    def _insert_member(self, obj: ObjectNode, key: str, value: Any) -> None:
        text = self.text
        nl = self._newline
        key_text = json.dumps(key, ensure_ascii=False)

        if obj.members:
            last = obj.members[-1]
            multiline = "\n" in text[obj.start : obj.members[0].key_start]
            if multiline:
                indent = self._line_indent(last.key_start)
                member_text = f"{key_text}: {self._render(value, indent)}"
                anchor = last.end
                pos = self._line_tail(anchor)
                pos = anchor if pos is None else pos
                if last.comma_end is not None:
                    self._apply([(pos, pos, f"{nl}{indent}{member_text},")])
                else:
                    # Same-offset edits apply in list order, so the comma must come last.
                    self._apply(
                        [
                            (pos, pos, f"{nl}{indent}{member_text}"),
                            (last.value.end, last.value.end, ","),
                        ]
                    )
                return
            member_text = f"{key_text}: {self._render(value, '', inline=True)}"
            if last.comma_end is not None:
                self._apply([(last.comma_end, last.comma_end, f" {member_text},")])
            else:
                self._apply([(last.value.end, last.value.end, f", {member_text}")])
            return

        obj_indent = self._line_indent(obj.start)
        indent = obj_indent + self._unit
        member_text = f"{key_text}: {self._render(value, indent)}"
        inner = text[obj.start + 1 : obj.end - 1]
        if "\n" in inner:
            pos = self._line_tail(obj.start + 1)
            pos = obj.start + 1 if pos is None else pos
            self._apply([(pos, pos, f"{nl}{indent}{member_text}")])
        elif not inner.strip():
            self._apply([(obj.start, obj.end, f"{{{nl}{indent}{member_text}{nl}{obj_indent}}}")])
        else:
            member_text = f"{key_text}: {self._render(value, '', inline=True)}"
            self._apply([(obj.end - 1, obj.end - 1, f" {member_text} ")])

    def _remove_member(self, obj: ObjectNode, idx: int) -> None:
        text = self.text
        member = obj.members[idx]
        edits: list[tuple[int, int, str]] = []
        prev_comma_end: int | None = None
        if idx == len(obj.members) - 1 and member.comma_end is None and idx > 0:
            prev = obj.members[idx - 1]
            if prev.comma_start is not None and prev.comma_end is not None:
                edits.append((prev.comma_start, prev.comma_end, ""))
                prev_comma_end = prev.comma_end

        start, end = member.key_start, member.end
        line_start = text.rfind("\n", 0, start) + 1
        tail = self._line_tail(end)
        if not text[line_start:start].strip() and tail is not None:
            start = line_start
            end = tail
            if text.startswith("\r\n", end):
                end += 2
            elif text.startswith("\n", end):
                end += 1
        elif prev_comma_end is not None and not text[prev_comma_end:start].strip(" \t"):
            # Last member on a shared line: take the gap after the dropped comma with it.
            start = prev_comma_end
        else:
            while end < len(text) and text[end] in " \t":
                end += 1
        edits.append((start, end, ""))
        self._apply(edits)
