"""TOML persistence for arena battles and statistics.

Battles and statistics live in two documents under the state directory.  Writes
are atomic (temporary file, ``fsync``, ``os.replace``) so a crash mid-save leaves
the previous document intact.  Any I/O failure is logged and swallowed: the
in-memory registry stays authoritative until the next successful save.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import re
import tempfile
import time
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

import tomllib

from .models import Battle, ModelValidationError, load_model
from .tracking import ArenaStats

log = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
STATE_FILE = "arena-state.toml"
STATS_FILE = "arena-stats.toml"
SCHEMA_VERSION = 1

_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


def resolve_state_dir(explicit: str | os.PathLike[str] | None = None) -> Path:
    """Directory holding the persisted documents.

    An explicit path wins, then ``ARENA_STATE_DIR``, then ``STATE_DIR``, then
    ``.state`` relative to the working directory.
    """

    override = explicit or os.getenv("ARENA_STATE_DIR") or os.getenv("STATE_DIR")
    return Path(override or DEFAULT_STATE_DIR).expanduser().resolve()


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def _normalize_for_toml(value: Any) -> Any:
    if isinstance(value, MappingProxyType):
        value = dict(value)
    if isinstance(value, Mapping):
        normalized: Dict[str, Any] = {}
        for key, item in value.items():
            if item is None:
                continue
            normalized[str(key)] = _normalize_for_toml(item)
        return normalized
    if isinstance(value, (set, frozenset)):
        items = [_normalize_for_toml(item) for item in value if item is not None]
        return sorted(items, key=lambda item: repr(item))
    if isinstance(value, (list, tuple)):
        return [_normalize_for_toml(item) for item in value if item is not None]
    if isinstance(value, Enum):
        enum_value = value.value
        if isinstance(enum_value, (str, bool)):
            return enum_value
        return value.name.lower()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (str, int, bool)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0.0
        return value
    if isinstance(value, bytes):
        return value.decode("utf8", "replace")
    return str(value)


def _quote_string(value: str) -> str:
    replacements = {
        "\\": "\\\\",
        '"': '\\"',
        "\b": "\\b",
        "\t": "\\t",
        "\n": "\\n",
        "\f": "\\f",
        "\r": "\\r",
    }

    def _escape_char(char: str) -> str:
        if char in replacements:
            return replacements[char]
        code = ord(char)
        if code < 0x20 or code == 0x7F:
            return f"\\u{code:04x}"
        return char

    return '"' + "".join(_escape_char(char) for char in value) + '"'


def _format_key(key: str) -> str:
    return key if _BARE_KEY.match(key) else _quote_string(key)


def _format_inline_table(value: Mapping[str, Any]) -> str:
    items = ", ".join(
        f"{_format_key(key)} = {_format_toml_value(item)}"
        for key, item in sorted(value.items())
    )
    return "{" + items + "}" if items else "{}"


def _format_toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return _quote_string(value)
    if isinstance(value, list):
        return "[" + ", ".join(_format_toml_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        return _format_inline_table(value)
    return _quote_string(str(value))


def _is_table_array(value: Any) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(item, Mapping) for item in value)
    )


def _serialize_table(
    data: Mapping[str, Any],
    *,
    parent: tuple[str, ...] = (),
    output: List[str],
) -> None:
    simple_items: list[tuple[str, Any]] = []
    tables: list[tuple[str, Mapping[str, Any]]] = []
    array_tables: list[tuple[str, list[Mapping[str, Any]]]] = []

    for key, value in data.items():
        if isinstance(value, Mapping):
            tables.append((key, value))
        elif _is_table_array(value):
            array_tables.append((key, value))
        else:
            simple_items.append((key, value))

    simple_items.sort(key=lambda item: item[0])
    tables.sort(key=lambda item: item[0])
    array_tables.sort(key=lambda item: item[0])

    for key, value in simple_items:
        output.append(f"{_format_key(key)} = {_format_toml_value(value)}")

    for key, value in tables:
        path = (*parent, key)
        if output and output[-1] != "":
            output.append("")
        output.append("[" + ".".join(_format_key(part) for part in path) + "]")
        _serialize_table(value, parent=path, output=output)

    for key, items in array_tables:
        path = (*parent, key)
        header = ".".join(_format_key(part) for part in path)
        for item in items:
            if output and output[-1] != "":
                output.append("")
            output.append(f"[[{header}]]")
            _serialize_table(item, parent=path, output=output)


def _toml_dumps(data: Mapping[str, Any]) -> str:
    normalized = _normalize_for_toml(data)
    if not isinstance(normalized, Mapping):
        raise TypeError("Top level TOML document must be a mapping")
    output: List[str] = []
    _serialize_table(normalized, output=output)
    return "\n".join(output) + "\n"


def _read_toml(path: Path) -> Any:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        return None
    except (tomllib.TOMLDecodeError, OSError):
        log.exception("Could not read %s", path)
        return None


def _write_toml(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    data = _toml_dumps(payload)
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf8", dir=path.parent, delete=False
        ) as handle:
            temp_path = Path(handle.name)
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
        temp_path = None
    finally:
        if temp_path is not None:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass


def _schema_supported(payload: Mapping[str, Any], path: Path) -> bool:
    version = payload.get("schema_version", SCHEMA_VERSION)
    if not isinstance(version, int) or version > SCHEMA_VERSION:
        log.error(
            "%s has schema version %r; this build understands up to %d",
            path,
            version,
            SCHEMA_VERSION,
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ArenaStore:
    """Asynchronous access to the arena documents, one writer at a time."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._lock = asyncio.Lock()

    @property
    def state_path(self) -> Path:
        return self.root / STATE_FILE

    @property
    def stats_path(self) -> Path:
        return self.root / STATS_FILE

    async def save_battles(
        self, battles: Iterable[Battle], *, now: Optional[float] = None
    ) -> bool:
        snapshot = [battle.to_mapping() for battle in battles]
        payload = {
            "schema_version": SCHEMA_VERSION,
            "saved_at": time.time() if now is None else now,
            "battles": snapshot,
        }
        async with self._lock:
            try:
                _write_toml(self.state_path, payload)
            except Exception:
                log.exception("Failed to save arena state to %s", self.state_path)
                return False
        log.info("Saved %d battle(s) to %s", len(snapshot), self.state_path)
        return True

    async def load_battles(self) -> List[Battle]:
        async with self._lock:
            payload = _read_toml(self.state_path)
        if not isinstance(payload, Mapping):
            log.info("No saved arena state at %s", self.state_path)
            return []
        if not _schema_supported(payload, self.state_path):
            return []

        raw_battles = payload.get("battles", [])
        if not isinstance(raw_battles, list):
            log.error("Ignoring malformed battles entry in %s", self.state_path)
            return []
        battles: List[Battle] = []
        for index, raw in enumerate(raw_battles):
            try:
                battles.append(load_model(Battle, raw))
            except (ModelValidationError, ValueError, KeyError, TypeError) as exc:
                log.error("Skipping saved battle %d: %s", index, exc)
        log.info("Loaded %d battle(s) from %s", len(battles), self.state_path)
        return battles

    async def load_stats(self) -> ArenaStats:
        async with self._lock:
            payload = _read_toml(self.stats_path)
        if not isinstance(payload, Mapping):
            log.info("No existing stats at %s, starting fresh", self.stats_path)
            return ArenaStats()
        if not _schema_supported(payload, self.stats_path):
            return ArenaStats()
        return ArenaStats.from_mapping(payload)

    async def save_stats(self, stats: ArenaStats) -> bool:
        payload = {"schema_version": SCHEMA_VERSION, **stats.to_mapping()}
        async with self._lock:
            try:
                _write_toml(self.stats_path, payload)
            except Exception:
                log.exception("Failed to save arena stats to %s", self.stats_path)
                return False
        log.debug("Saved arena stats to %s", self.stats_path)
        return True


__all__ = [
    "ArenaStore",
    "DEFAULT_STATE_DIR",
    "SCHEMA_VERSION",
    "STATE_FILE",
    "STATS_FILE",
    "resolve_state_dir",
]
