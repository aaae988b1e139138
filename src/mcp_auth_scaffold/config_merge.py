from __future__ import annotations

import logging
import re
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import tomlkit
from tomlkit.exceptions import TOMLKitError

from mcp_auth_scaffold.jsonc import JsoncDocument, split_section

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    """
    Outcome of a config edit.

    Parameters
    ----------
    success
        False when the file could not be read, parsed or written. Never raised.
    modified
        True when the file content changed on disk.
    path
        The config file.
    changed_keys
        Keys that were added, replaced or removed.
    created
        True when the file did not exist before the edit.
    error
        Human-readable failure reason when `success` is False.
    """

    success: bool
    modified: bool
    path: Path
    changed_keys: tuple[str, ...] = ()
    created: bool = False
    error: str | None = None


class _Format(Protocol):
    name: str

    def empty(self) -> Any: ...

    def load(self, text: str) -> Any: ...

    def dumps(self, doc: Any) -> str: ...

    def section(self, doc: Any, section: str) -> Mapping[str, Any] | None: ...

    def set_keys(
        self, doc: Any, section: str, updates: Mapping[str, Any], overwrite: bool
    ) -> list[str]: ...

    def remove_keys(self, doc: Any, section: str, keys: Sequence[str]) -> list[str]: ...


class _TomlFormat:
    name = "toml"

    def empty(self) -> tomlkit.TOMLDocument:
        return tomlkit.document()

    def load(self, text: str) -> tomlkit.TOMLDocument:
        return tomlkit.parse(text)

    def dumps(self, doc: tomlkit.TOMLDocument) -> str:
        return tomlkit.dumps(doc)

    def _table(
        self, doc: tomlkit.TOMLDocument, parts: list[str]
    ) -> MutableMapping[str, Any] | None:
        node: MutableMapping[str, Any] = doc
        for idx, part in enumerate(parts):
            child = node.get(part)
            if child is None:
                return None
            if not isinstance(child, MutableMapping):
                raise ValueError(f"[{'.'.join(parts[: idx + 1])}] is not a table")
            node = child
        return node

    def section(self, doc: tomlkit.TOMLDocument, section: str) -> Mapping[str, Any] | None:
        return self._table(doc, split_section(section))

    def set_keys(
        self,
        doc: tomlkit.TOMLDocument,
        section: str,
        updates: Mapping[str, Any],
        overwrite: bool,
    ) -> list[str]:
        parts = split_section(section)
        node: MutableMapping[str, Any] = doc
        for idx, part in enumerate(parts):
            child = node.get(part)
            if child is None:
                if not updates:
                    return []
                child = tomlkit.table()
                node[part] = child
                child = node[part]
            elif not isinstance(child, MutableMapping):
                raise ValueError(f"[{'.'.join(parts[: idx + 1])}] is not a table")
            node = child

        changed: list[str] = []
        for key, value in updates.items():
            if key not in node:
                node[key] = value
                changed.append(key)
            elif overwrite and _plain(node[key]) != value:
                node[key] = value
                changed.append(key)
        return changed

    def remove_keys(
        self, doc: tomlkit.TOMLDocument, section: str, keys: Sequence[str]
    ) -> list[str]:
        parts = split_section(section)
        table = self._table(doc, parts)
        if table is None:
            return []
        removed = [key for key in keys if key in table]
        for key in removed:
            del table[key]
        if removed and parts and len(table) == 0:
            parent = self._table(doc, parts[:-1])
            if parent is not None:
                del parent[parts[-1]]
        return removed


def _plain(value: Any) -> Any:
    unwrap = getattr(value, "unwrap", None)
    return unwrap() if callable(unwrap) else value


class _JsoncFormat:
    name = "jsonc"

    def empty(self) -> JsoncDocument:
        return JsoncDocument.empty()

    def load(self, text: str) -> JsoncDocument:
        return JsoncDocument(text)

    def dumps(self, doc: JsoncDocument) -> str:
        return doc.dumps()

    def section(self, doc: JsoncDocument, section: str) -> Mapping[str, Any] | None:
        return doc.section(section)

    def set_keys(
        self, doc: JsoncDocument, section: str, updates: Mapping[str, Any], overwrite: bool
    ) -> list[str]:
        return doc.set_keys(section, updates, overwrite=overwrite)

    def remove_keys(self, doc: JsoncDocument, section: str, keys: Sequence[str]) -> list[str]:
        return doc.remove_keys(section, keys)


_ENV_ASSIGN_RE = re.compile(r"^\s*(?:export\s+)?(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*=(?P<value>.*)$")
_ENV_UNQUOTED_SAFE_RE = re.compile(r"^[^\s#'\"]*$")
_ENV_DOUBLE_QUOTED_RE = re.compile(r'"(?P<inner>(?:[^"\\]|\\.)*)"')
_ENV_SINGLE_QUOTED_RE = re.compile(r"'(?P<inner>[^']*)'")


class EnvDocument:
    """
    Line model of a dotenv file.

    Keys are global; `section` names a `# <Section>` header comment that groups related keys.
    New keys land at the end of their section block, and a missing block is appended to the file.
    """

    def __init__(self, text: str) -> None:
        self.newline = "\r\n" if "\r\n" in text else "\n"
        self.trailing_newline = text.endswith("\n") or not text
        self.lines: list[str] = text.splitlines()
        for lineno, line in enumerate(self.lines, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if _ENV_ASSIGN_RE.match(line) is None:
                raise ValueError(f"Invalid dotenv line {lineno}: {line!r}")

    def dumps(self) -> str:
        if not self.lines:
            return ""
        text = self.newline.join(self.lines)
        return text + self.newline if self.trailing_newline else text

    @staticmethod
    def _unquote(raw: str) -> str:
        value = raw.strip()
        quoted = _ENV_DOUBLE_QUOTED_RE.match(value) or _ENV_SINGLE_QUOTED_RE.match(value)
        if quoted is not None:
            rest = value[quoted.end() :].strip()
            if not rest or rest.startswith("#"):
                inner = quoted.group("inner")
                if value[0] == '"':
                    inner = re.sub(r"\\(.)", r"\1", inner)
                return inner
        comment = value.find(" #")
        if comment != -1:
            value = value[:comment].rstrip()
        return value

    @staticmethod
    def _format_value(value: Any) -> str:
        text = "" if value is None else str(value)
        if _ENV_UNQUOTED_SAFE_RE.match(text):
            return text
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'

    def _key_index(self, key: str) -> int | None:
        for idx in range(len(self.lines) - 1, -1, -1):
            match = _ENV_ASSIGN_RE.match(self.lines[idx])
            if match is not None and match.group("key") == key:
                return idx
        return None

    def values(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for line in self.lines:
            match = _ENV_ASSIGN_RE.match(line)
            if match is not None:
                out[match.group("key")] = self._unquote(match.group("value"))
        return out

    def _header_index(self, section: str) -> int | None:
        header = re.compile(rf"^#\s*{re.escape(section)}\s*$")
        for idx, line in enumerate(self.lines):
            if header.match(line.strip()):
                return idx
        return None

    def _block_end(self, header_idx: int) -> int:
        end = header_idx + 1
        while end < len(self.lines) and self.lines[end].strip():
            end += 1
        return end

    def set_keys(self, section: str, updates: Mapping[str, Any], overwrite: bool) -> list[str]:
        changed: list[str] = []
        pending: list[str] = []
        for key, value in updates.items():
            line = f"{key}={self._format_value(value)}"
            idx = self._key_index(key)
            if idx is None:
                pending.append(line)
                changed.append(key)
            elif overwrite and self.values().get(key) != ("" if value is None else str(value)):
                self.lines[idx] = line
                changed.append(key)
        if not pending:
            return changed

        header_idx = self._header_index(section) if section else None
        if header_idx is not None:
            end = self._block_end(header_idx)
            self.lines[end:end] = pending
            return changed

        block = [f"# {section}", *pending] if section else pending
        if self.lines and self.lines[-1].strip():
            block.insert(0, "")
        self.lines.extend(block)
        return changed

    def remove_keys(self, section: str, keys: Sequence[str]) -> list[str]:
        removed: list[str] = []
        for key in keys:
            idx = self._key_index(key)
            if idx is None:
                continue
            del self.lines[idx]
            removed.append(key)
        if not removed or not section:
            return removed

        header_idx = self._header_index(section)
        if header_idx is None:
            return removed
        end = self._block_end(header_idx)
        block = self.lines[header_idx:end]
        if any(_ENV_ASSIGN_RE.match(line) for line in block):
            return removed
        start = header_idx
        if start > 0 and not self.lines[start - 1].strip():
            start -= 1
        del self.lines[start:end]
        return removed


class _EnvFormat:
    name = "dotenv"

    def empty(self) -> EnvDocument:
        return EnvDocument("")

    def load(self, text: str) -> EnvDocument:
        return EnvDocument(text)

    def dumps(self, doc: EnvDocument) -> str:
        return doc.dumps()

    def section(self, doc: EnvDocument, section: str) -> Mapping[str, Any] | None:
        return doc.values()

    def set_keys(
        self, doc: EnvDocument, section: str, updates: Mapping[str, Any], overwrite: bool
    ) -> list[str]:
        return doc.set_keys(section, updates, overwrite)

    def remove_keys(self, doc: EnvDocument, section: str, keys: Sequence[str]) -> list[str]:
        return doc.remove_keys(section, keys)


def config_format(path: Path) -> _Format | None:
    name = path.name.lower()
    if name.endswith(".toml"):
        return _TomlFormat()
    if name.endswith((".json", ".jsonc")):
        return _JsoncFormat()
    if name == ".env" or name.startswith(".env.") or name.endswith(".env"):
        return _EnvFormat()
    return None


def _read_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8")


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))


class ConfigMerger:
    """Format-aware, add-only (or explicit remove) key merging into config files."""

    def _load(self, path: Path, fmt: _Format) -> Any:
        return fmt.load(_read_text(path))

    def merge_keys(
        self,
        path: Path,
        section: str,
        updates: Mapping[str, Any],
        *,
        overwrite: bool = False,
        create: bool = True,
    ) -> MergeResult:
        fmt = config_format(path)
        if fmt is None:
            return MergeResult(False, False, path, error=f"Unsupported config format: {path.name}")

        created = not path.exists()
        if created and not create:
            return MergeResult(False, False, path, error=f"Config file not found: {path}")
        try:
            doc = fmt.empty() if created else self._load(path, fmt)
            changed = fmt.set_keys(doc, section, updates, overwrite)
            if not changed:
                return MergeResult(True, False, path)
            _write_text(path, fmt.dumps(doc))
        except (OSError, UnicodeDecodeError) as e:
            return MergeResult(False, False, path, error=f"Failed to update {path}: {e}")
        except (ValueError, TOMLKitError) as e:
            return MergeResult(False, False, path, error=f"Failed to parse {path}: {e}")

        logger.debug("Merged %s into %s [%s]", ", ".join(changed), path, section)
        return MergeResult(True, True, path, changed_keys=tuple(changed), created=created)

    def remove_keys(self, path: Path, section: str, keys: Sequence[str]) -> MergeResult:
        fmt = config_format(path)
        if fmt is None:
            return MergeResult(False, False, path, error=f"Unsupported config format: {path.name}")
        if not path.exists():
            return MergeResult(True, False, path)
        try:
            doc = self._load(path, fmt)
            removed = fmt.remove_keys(doc, section, keys)
            if not removed:
                return MergeResult(True, False, path)
            _write_text(path, fmt.dumps(doc))
        except (OSError, UnicodeDecodeError) as e:
            return MergeResult(False, False, path, error=f"Failed to update {path}: {e}")
        except (ValueError, TOMLKitError) as e:
            return MergeResult(False, False, path, error=f"Failed to parse {path}: {e}")

        logger.debug("Removed %s from %s [%s]", ", ".join(removed), path, section)
        return MergeResult(True, True, path, changed_keys=tuple(removed))

    def _section(self, path: Path, section: str) -> Mapping[str, Any] | None:
        fmt = config_format(path)
        if fmt is None or not path.is_file():
            return None
        try:
            return fmt.section(self._load(path, fmt), section)
        except (OSError, UnicodeDecodeError, ValueError, TOMLKitError):
            return None

    def has_keys(self, path: Path, section: str, keys: Sequence[str]) -> dict[str, bool]:
        values = self._section(path, section)
        return {key: values is not None and key in values for key in keys}

    def get_value(self, path: Path, section: str, key: str, default: Any = None) -> Any:
        values = self._section(path, section)
        if values is None or key not in values:
            return default
        return _plain(values[key])
