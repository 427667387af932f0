"""Handlers for commands shared by all storages: drop, listing and logs."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable

from ferretpg.errors import ErrorCode, ProtocolError
from ferretpg.pg import quote_identifier

STARTUP_WARNINGS = "startupWarnings"


def _command(document: dict[str, Any]) -> str:
    try:
        return next(iter(document))
    except StopIteration:
        raise ValueError("command document is empty") from None


def _string(document: dict[str, Any], key: str) -> str:
    value = document.get(key)
    if not isinstance(value, str):
        raise TypeError(f"{key!r} must be a string, got {type(value).__name__}")
    return value


def _db(document: dict[str, Any]) -> str:
    db = document.get("$db")
    if not isinstance(db, str):
        raise ValueError("no db")
    return db


def _quoted(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return repr(value)


def _first_value(row: dict[str, Any]) -> Any:
    try:
        return next(iter(row.values()))
    except StopIteration:
        raise ValueError("result row has no columns") from None


def _format_time(moment: datetime) -> str:
    """Format as UTC with up to millisecond precision, trailing zeros dropped."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    millis = moment.microsecond // 1000
    if millis:
        text += f".{millis:03d}".rstrip("0")
    return text + "Z"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SharedHandler:
    """Handles commands that work the same way for every storage."""

    def __init__(
        self,
        pool: Any,
        peer_addr: str,
        version: str = "unknown",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.pool = pool
        self.peer_addr = peer_addr
        self.version = version
        self.clock = clock

    def msg_drop(self, document: dict[str, Any]) -> dict[str, Any]:
        """Drop a collection."""
        collection = _string(document, _command(document))
        db = _string(document, "$db")

        try:
            self.pool.execute(f"DROP TABLE {quote_identifier(db, collection)} CASCADE")
        except Exception as err:
            raise ProtocolError(ErrorCode.NAMESPACE_NOT_FOUND, f"MsgDrop: ns not found: {err}") from err

        return {"nIndexesWas": 0, "ns": f"{db}.{collection}", "ok": 1.0}

    def msg_drop_database(self, document: dict[str, Any]) -> dict[str, Any]:
        """Drop the current database together with all its collections."""
        db = _db(document)
        self.pool.execute(f"DROP SCHEMA IF EXISTS {quote_identifier(db)} CASCADE")
        return {"dropped": db, "ok": 1.0}

    def msg_get_log(self, document: dict[str, Any]) -> dict[str, Any]:
        """Return the startup warnings log."""
        value = document.get("getLog")
        if value != STARTUP_WARNINGS:
            raise ProtocolError(
                ErrorCode.NOT_IMPLEMENTED,
                f"MsgGetLog: unhandled getLog value {_quoted(value)}",
            )

        server_version = str(self.pool.query_row("SHOW server_version")[0]).split(" ")[0]

        lines = (
            f"Powered by 🥭 FerretDB {self.version} and PostgreSQL {server_version}.",
            "Please star us on GitHub.",
        )
        timestamp = _format_time(self.clock())
        log = [
            json.dumps(
                {
                    "msg": line,
                    "tags": [STARTUP_WARNINGS],
                    "s": "I",
                    "c": "STORAGE",
                    "id": 42000,
                    "ctx": "initandlisten",
                    "t": {"$date": timestamp},
                },
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
            )
            for line in lines
        ]

        return {"totalLinesWritten": len(log), "log": log, "ok": 1.0}

    def msg_list_collections(self, document: dict[str, Any]) -> dict[str, Any]:
        """List the collections of the current database, sorted by name."""
        filter = document.get("filter")
        if isinstance(filter, dict) and filter:
            raise ProtocolError(ErrorCode.NOT_IMPLEMENTED, "MsgListCollections: filter is not supported")

        cursor = document.get("cursor")
        if isinstance(cursor, dict) and cursor:
            raise ProtocolError(ErrorCode.NOT_IMPLEMENTED, "MsgListCollections: cursor is not supported")

        name_only = document.get("nameOnly")
        if isinstance(name_only, bool) and not name_only:
            raise ProtocolError(
                ErrorCode.NOT_IMPLEMENTED, "MsgListCollections: nameOnly=false is not supported"
            )

        db = _db(document)

        rows = self.pool.query(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = $1", db
        )
        names = sorted(str(_first_value(row)) for row in rows)

        return {
            "cursor": {
                "id": 0,
                "ns": f"{db}.$cmd.listCollections",
                "firstBatch": [{"name": name, "type": "collection"} for name in names],
            },
            "ok": 1.0,
        }

    def _database_size(self, database: str) -> int:
        rows = self.pool.query(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = $1", database
        )
        return sum(
            int(self.pool.query_row("SELECT pg_total_relation_size($1)", f"{database}.{_first_value(row)}")[0])
            for row in rows
        )

    def msg_list_databases(self, document: dict[str, Any]) -> dict[str, Any]:
        """List databases with their on-disk sizes."""
        rows = self.pool.query("SELECT schema_name FROM information_schema.schemata ORDER BY schema_name")
        names = [
            name
            for name in (str(_first_value(row)) for row in rows)
            if not name.startswith("pg_") and name != "information_schema"
        ]

        databases = []
        for name in names:
            size = self._database_size(name)
            databases.append({"name": name, "sizeOnDisk": size, "empty": size == 0})

        total_size = int(self.pool.query_row("SELECT pg_database_size(current_database())")[0])

        return {
            "databases": databases,
            "totalSize": total_size,
            "totalSizeMb": total_size // 1024 // 1024,
            "ok": 1.0,
        }