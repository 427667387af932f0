"""PostgreSQL access: placeholders, identifier quoting and a connection wrapper."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

logger = logging.getLogger(__name__)

ENCODING_UTF8 = "UTF8"
LOCALE_C = "C"
LOCALE_POSIX = "POSIX"

# Session parameters the server connection is expected to use.
RUNTIME_PARAMS = {
    "timezone": "UTC",
    "application_name": "ferretpg",
    "search_path": "",
}

_PARAMSTYLES = ("format", "pyformat", "qmark", "numeric")

# Quoted literals and identifiers are skipped; "$n" placeholders and bare "%" are rewritten.
_SINGLE_QUOTED = r"'(?:[^']|'')*'"
_DOUBLE_QUOTED = r'"(?:[^"]|"")*"'
_NUMBERED = r"\$(\d+)"
_PERCENT = "%"
_LEXEME_PATTERN = re.compile("|".join((_SINGLE_QUOTED, _DOUBLE_QUOTED, _NUMBERED, _PERCENT)))

_ENCODING_SETTINGS = ("server_encoding", "client_encoding")
_LOCALE_SETTINGS = ("lc_collate", "lc_ctype")


@dataclass
class Placeholder:
    """Generates numbered query placeholders: $1, $2, ..."""

    value: int = 0

    def next(self) -> str:
        self.value += 1
        return f"${self.value}"


def quote_identifier(*args: str) -> str:
    """Quote a possibly qualified identifier, e.g. ("db", "coll") -> "db"."coll"."""
    parts = []
    for part in args:
        cleaned = part.replace("\x00", "")
        parts.append('"' + cleaned.replace('"', '""') + '"')
    return ".".join(parts)


def _translate(sql: str, args: Sequence[Any], paramstyle: str) -> tuple[str, tuple[Any, ...]]:
    ordered: list[Any] = []

    def replace(match: re.Match[str]) -> str:
        number = match.group(1)
        if number is not None:
            index = int(number)
            if not 1 <= index <= len(args):
                raise ValueError(f"placeholder ${index} has no argument ({len(args)} given)")
            if paramstyle == "numeric":
                return f":{index}"
            ordered.append(args[index - 1])
            return "?" if paramstyle == "qmark" else "%s"
        text = match.group(0)
        if paramstyle in ("format", "pyformat"):
            return text.replace("%", "%%")
        return text

    translated = _LEXEME_PATTERN.sub(replace, sql)
    if paramstyle == "numeric":
        return translated, tuple(args)
    return translated, tuple(ordered)


class Pool:
    """Runs SQL written with $n placeholders on a DB-API 2.0 connection.

    The connection is expected to be in autocommit mode.
    """

    def __init__(self, connection: Any, paramstyle: str = "format") -> None:
        if paramstyle not in _PARAMSTYLES:
            raise ValueError(f"unsupported paramstyle {paramstyle!r}")
        self._connection = connection
        self._paramstyle = paramstyle
        self._lock = threading.Lock()

    def _run(self, sql: str, args: Sequence[Any]) -> tuple[list[str], list[Sequence[Any]], int]:
        text, params = _translate(sql, args, self._paramstyle)
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute(text, params)
                if cursor.description:
                    columns = [column[0] for column in cursor.description]
                    rows = list(cursor.fetchall())
                else:
                    columns, rows = [], []
                return columns, rows, cursor.rowcount
            finally:
                cursor.close()

    def query(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """Return all result rows as dicts keyed by column name, in column order."""
        columns, rows, _ = self._run(sql, args)
        return [dict(zip(columns, row)) for row in rows]

    def query_row(self, sql: str, *args: Any) -> tuple[Any, ...]:
        """Return the first result row; raise LookupError if there is none."""
        _, rows, _ = self._run(sql, args)
        if not rows:
            raise LookupError("no rows in result set")
        return tuple(rows[0])

    def execute(self, sql: str, *args: Any) -> int:
        """Run a statement and return the number of rows it affected."""
        _, _, count = self._run(sql, args)
        return max(count, 0)


def valid_utf8_locale(setting: str) -> bool:
    """Whether the locale is one of the supported en_US UTF-8 spellings."""
    lowered = setting.lower()
    return lowered in ("en_us.utf8", "en_us.utf-8")


def check_settings(settings: Iterable[Sequence[Any]]) -> dict[str, str]:
    """Validate server settings rows (name, setting, ...); return the checked ones."""
    checked: dict[str, str] = {}
    for row in settings:
        name, setting = row[0], row[1]
        if name in _ENCODING_SETTINGS:
            if setting != ENCODING_UTF8:
                raise ValueError(f"{name!r} is {setting!r}, want {ENCODING_UTF8!r}")
        elif name in _LOCALE_SETTINGS:
            if setting not in (LOCALE_C, LOCALE_POSIX) and not valid_utf8_locale(setting):
                raise ValueError(f"{name!r} is {setting!r}")
        else:
            continue
        logger.debug("PostgreSQL setting %s = %s", name, setting)
        checked[name] = setting
    return checked


def check_connection(pool: Pool) -> dict[str, str]:
    """Check that the server uses a supported encoding and locale."""
    rows = pool.query("SHOW ALL")
    return check_settings(tuple(row.values()) for row in rows)