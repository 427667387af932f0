"""Replies to informational commands that need no storage access."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from ferretpg.errors import ErrorCode, ProtocolError

# Reported to clients that check the server version.
VERSION = "5.0.42"
VERSION_ARRAY = (5, 0, 42, 0)

MAX_DOCUMENT_LEN = 16 * 1024 * 1024
MAX_MSG_LEN = 48_000_000
MAX_WRITE_BATCH_SIZE = 100_000
WIRE_VERSION = 13


def _command(document: dict[str, Any]) -> str:
    return next(iter(document), "").lower()


def build_info() -> dict[str, Any]:
    """Reply to buildInfo."""
    return {
        "version": VERSION,
        "versionArray": list(VERSION_ARRAY),
        "maxBsonObjectSize": MAX_DOCUMENT_LEN,
        "ok": 1.0,
    }


def get_cmd_line_opts() -> dict[str, Any]:
    """Reply to getCmdLineOpts."""
    return {
        "argv": ["ferretdb"],
        "parsed": {},
        "ok": 1.0,
    }


def get_parameter() -> dict[str, Any]:
    """Reply to getParameter."""
    return {"version": VERSION, "ok": 1.0}


def is_master() -> dict[str, Any]:
    """Reply to isMaster, describing this instance's role and limits."""
    return {
        "ismaster": True,
        "maxBsonObjectSize": MAX_DOCUMENT_LEN,
        "maxMessageSizeBytes": MAX_MSG_LEN,
        "maxWriteBatchSize": MAX_WRITE_BATCH_SIZE,
        "localTime": datetime.now(timezone.utc),
        "minWireVersion": WIRE_VERSION,
        "maxWireVersion": WIRE_VERSION,
        "readOnly": False,
        "ok": 1.0,
    }


def ping() -> dict[str, Any]:
    """Reply to ping."""
    return {"ok": 1.0}


def server_status() -> dict[str, Any]:
    """Reply to serverStatus."""
    return {"version": VERSION, "ok": 1.0}


def whats_my_uri(peer_addr: str) -> dict[str, Any]:
    """Reply to whatsmyuri with the client's address."""
    return {"you": peer_addr, "ok": 1.0}


def query_cmd(query: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the reply documents for a legacy query on admin.$cmd."""
    cmd = _command(query)
    if cmd == "ismaster":
        return [is_master()]
    raise ProtocolError(ErrorCode.NOT_IMPLEMENTED, f"QueryCmd: unhandled command {json.dumps(cmd)}")