"""Top-level request handler: routes wire protocol messages to command handlers."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable

from ferretpg import info
from ferretpg.common import Storage
from ferretpg.errors import ErrorCode, ProtocolError, protocol_error
from ferretpg.metrics import Metrics
from ferretpg.pg import quote_identifier
from ferretpg.shared import SharedHandler

_STORAGE_COMMANDS = frozenset({"delete", "find", "count", "insert", "update"})

_TABLE_EXISTS_SQL = (
    "SELECT COUNT(*) > 0 FROM information_schema.tables WHERE table_schema = $1 AND table_name = $2"
)
_JSONB_EXISTS_SQL = (
    "SELECT COUNT(*) > 0 FROM information_schema.columns "
    "WHERE column_name = $1 AND table_schema = $2 AND table_name = $3"
)


class OpCode(IntEnum):
    """Wire protocol operation code."""

    OP_REPLY = 1
    OP_UPDATE = 2001
    OP_INSERT = 2002
    OP_GET_BY_OID = 2003
    OP_QUERY = 2004
    OP_GET_MORE = 2005
    OP_DELETE = 2006
    OP_KILL_CURSORS = 2007
    OP_COMPRESSED = 2012
    OP_MSG = 2013


@dataclass
class Response:
    """A reply to one request."""

    op_code: OpCode
    request_id: int
    response_to: int
    documents: list[dict[str, Any]] = field(default_factory=list)
    close_conn: bool = False

    @property
    def document(self) -> dict[str, Any]:
        """The first (for OP_MSG, the only) reply document."""
        return self.documents[0]


class _DebugPanic(RuntimeError):
    """Raised on purpose to drop the connection without a reply."""


def _command(document: dict[str, Any]) -> str:
    try:
        return next(iter(document)).lower()
    except StopIteration:
        raise ValueError("command document is empty") from None


def _first_key(document: dict[str, Any]) -> str:
    try:
        return next(iter(document))
    except StopIteration:
        raise ValueError("command document is empty") from None


def _string(document: dict[str, Any], key: str) -> str:
    value = document.get(key)
    if not isinstance(value, str):
        raise TypeError(f"{key!r} must be a string, got {type(value).__name__}")
    return value


class Handler:
    """Handles client requests for one connection."""

    def __init__(
        self,
        *,
        pool: Any,
        shared: SharedHandler,
        sql_storage: Storage | None,
        jsonb_storage: Storage | None,
        metrics: Metrics | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.pool = pool
        self.shared = shared
        self.sql_storage = sql_storage
        self.jsonb_storage = jsonb_storage
        self.metrics = metrics if metrics is not None else Metrics()
        self.logger = logger or logging.getLogger(__name__)
        self._last_request_id = 0
        self._lock = threading.Lock()

    def _next_request_id(self) -> int:
        with self._lock:
            self._last_request_id += 1
            return self._last_request_id

    def handle(self, op_code: OpCode | int, request_id: int, body: Any) -> Response:
        """Handle one message.

        For OP_MSG the body is the command document; for OP_QUERY it is a pair
        (full collection name, query document). Protocol errors from OP_MSG commands
        are returned as error documents; other errors there are returned as
        InternalError with close_conn set. Anything else raises, which should end
        the connection without a reply.
        """
        try:
            code: OpCode | None = OpCode(op_code)
        except ValueError:
            code = None

        if code is OpCode.OP_MSG:
            res_code = OpCode.OP_MSG
            close_conn = False
            try:
                documents = [self.handle_op_msg(body)]
            except _DebugPanic:
                raise
            except Exception as err:
                proto, recoverable = protocol_error(err)
                close_conn = not recoverable
                if not recoverable:
                    self.logger.error("Internal error: %s", err)
                documents = [proto.document()]
        elif code is OpCode.OP_QUERY:
            res_code = OpCode.OP_REPLY
            close_conn = False
            full_collection_name, query = body
            documents = self.handle_op_query(full_collection_name, query)
        else:
            label = code if code is not None else str(op_code)
            self.metrics.inc(label, "")
            name = code.name if code is not None else str(op_code)
            raise ValueError(f"unexpected OpCode {name}")

        return Response(
            op_code=res_code,
            request_id=self._next_request_id(),
            response_to=request_id,
            documents=documents,
            close_conn=close_conn,
        )

    def handle_op_msg(self, document: dict[str, Any]) -> dict[str, Any]:
        """Run an OP_MSG command and return its reply document."""
        cmd = _command(document)
        self.metrics.inc(OpCode.OP_MSG, cmd)

        simple: dict[str, Callable[[], dict[str, Any]]] = {
            "buildinfo": info.build_info,
            "getcmdlineopts": info.get_cmd_line_opts,
            "getparameter": info.get_parameter,
            "ismaster": info.is_master,
            "ping": info.ping,
            "serverstatus": info.server_status,
            "whatsmyuri": lambda: info.whats_my_uri(self.shared.peer_addr),
        }
        if cmd in simple:
            return simple[cmd]()

        shared: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "drop": self.shared.msg_drop,
            "dropdatabase": self.shared.msg_drop_database,
            "getlog": self.shared.msg_get_log,
            "listcollections": self.shared.msg_list_collections,
            "listdatabases": self.shared.msg_list_databases,
        }
        if cmd in shared:
            return shared[cmd](document)

        if cmd in _STORAGE_COMMANDS:
            storage = self.msg_storage(document)
            if cmd == "delete":
                return storage.msg_delete(document)
            if cmd in ("find", "count"):
                return storage.msg_find_or_count(document)
            if cmd == "insert":
                return storage.msg_insert(document)
            return storage.msg_update(document)

        if cmd == "debug_panic":
            raise _DebugPanic("debug_panic")
        if cmd == "debug_error":
            raise RuntimeError("debug_error")

        raise ProtocolError(ErrorCode.COMMAND_NOT_FOUND, f"no such command: '{cmd}'")

    def handle_op_query(self, full_collection_name: str, query: dict[str, Any]) -> list[dict[str, Any]]:
        """Run a legacy OP_QUERY command and return the reply documents."""
        cmd = _command(query)
        self.metrics.inc(OpCode.OP_QUERY, cmd)

        if full_collection_name == "admin.$cmd":
            return info.query_cmd(query)

        raise ProtocolError(
            ErrorCode.NOT_IMPLEMENTED,
            f"handleOpQuery: unhandled collection {json.dumps(full_collection_name)}",
        )

    def msg_storage(self, document: dict[str, Any]) -> Storage:
        """Pick the storage for a data command by looking at the target table."""
        key = _first_key(document)
        command = key.lower()
        collection = _string(document, key)
        db = _string(document, "$db")

        table_exists = bool(self.pool.query_row(_TABLE_EXISTS_SQL, db, collection)[0])
        jsonb_exists = bool(self.pool.query_row(_JSONB_EXISTS_SQL, "_jsonb", db, collection)[0])

        if command not in _STORAGE_COMMANDS:
            raise ValueError(f"unhandled command {json.dumps(command)}")

        if jsonb_exists:
            return self._require(self.jsonb_storage, "jsonb1")

        if command == "insert" and not table_exists:
            sql = f"CREATE TABLE {quote_identifier(db, collection)} (_jsonb jsonb)"
            try:
                self.pool.execute(sql)
            except Exception as err:
                self.logger.warning(
                    "Failed to create jsonb1 table. schema=%s table=%s error=%s", db, collection, err
                )
            else:
                self.logger.info("Created jsonb1 table. schema=%s table=%s", db, collection)
            return self._require(self.jsonb_storage, "jsonb1")

        return self._require(self.sql_storage, "sql")

    @staticmethod
    def _require(storage: Storage | None, name: str) -> Storage:
        if storage is None:
            raise RuntimeError(f"{name} storage is not configured")
        return storage