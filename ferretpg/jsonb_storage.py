"""Storage for collections kept as jsonb documents in a single _jsonb column."""

from __future__ import annotations

import logging
from typing import Any

from ferretpg.common import ObjectId, Storage
from ferretpg.errors import ErrorCode, ProtocolError
from ferretpg.jsonb import decode_document, encode_document, encode_object_id
from ferretpg.jsonb_where import where
from ferretpg.pg import Placeholder, quote_identifier


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


def _int(value: Any) -> int:
    """Return value if it is an integer (not a bool), otherwise 0."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _document(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{what} must be a document, got {type(value).__name__}")
    return value


def _array(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _first_value(row: dict[str, Any]) -> Any:
    try:
        return next(iter(row.values()))
    except StopIteration:
        raise ValueError("result row has no columns") from None


def _text(data: bytes) -> str:
    return data.decode("utf-8")


class JSONB1Storage(Storage):
    """Runs data commands against tables with a single jsonb column."""

    def __init__(self, pool: Any, logger: logging.Logger | None = None) -> None:
        self.pool = pool
        self.logger = logger or logging.getLogger(__name__)

    def _select(self, table: str, filter: dict[str, Any] | None) -> list[dict[str, Any]]:
        where_sql, args = where(filter, Placeholder())
        rows = self.pool.query(f"SELECT _jsonb FROM {table}{where_sql}", *args)
        return [decode_document(_first_value(row)) for row in rows]

    def msg_delete(self, document: dict[str, Any]) -> dict[str, Any]:
        """Delete the documents matching each delete statement."""
        collection = _string(document, _command(document))
        db = _string(document, "$db")
        table = quote_identifier(db, collection)

        deleted = 0
        for statement in _array(document.get("deletes")):
            statement = _document(statement, "delete statement")
            query = _document(statement.get("q"), "'q'")

            where_sql, args = where(query, Placeholder())
            sql = f"DELETE FROM {table}"
            if _int(statement.get("limit")):
                sql += f" WHERE _jsonb->'_id' IN (SELECT _jsonb->'_id' FROM {table}{where_sql} LIMIT 1)"
            else:
                sql += where_sql

            try:
                deleted += self.pool.execute(sql, *args)
            except Exception as err:
                raise ProtocolError(ErrorCode.NAMESPACE_NOT_FOUND, f"MsgDelete: ns not found: {err}") from err

        return {"n": deleted, "ok": 1.0}

    def msg_find_or_count(self, document: dict[str, Any]) -> dict[str, Any]:
        """Return matching documents for find, or their number for count."""
        is_find = isinstance(document.get("find"), str)
        db = _string(document, "$db")

        projection = document.get("projection")
        if isinstance(projection, dict) and projection:
            raise ProtocolError(ErrorCode.NOT_IMPLEMENTED, "MsgFind: projection is not supported")

        if is_find:
            collection = _string(document, "find")
            filter = document.get("filter")
            sql = f"SELECT _jsonb FROM {quote_identifier(db, collection)}"
        else:
            collection = _string(document, "count")
            filter = document.get("query")
            sql = f"SELECT COUNT(*) FROM {quote_identifier(db, collection)}"
        if not isinstance(filter, dict):
            filter = None

        sort = document.get("sort")
        if not isinstance(sort, dict):
            sort = {}
        limit = _int(document.get("limit"))

        placeholder = Placeholder()
        where_sql, args = where(filter, placeholder)
        sql += where_sql

        if sort:
            orders = []
            for key, order in sort.items():
                if isinstance(order, bool) or not isinstance(order, int):
                    raise TypeError(f"sort order for {key!r} must be an integer")
                orders.append(f" _jsonb->{placeholder.next()} {'ASC' if order > 0 else 'DESC'}")
                args.append(key)
            sql += " ORDER BY" + ",".join(orders)

        if limit > 0:
            sql += f" LIMIT {placeholder.next()}"
            args.append(limit)
        elif limit < 0:
            raise ProtocolError(ErrorCode.NOT_IMPLEMENTED, "MsgFind: negative limit values are not supported")

        rows = self.pool.query(sql, *args)

        if is_find:
            docs = [decode_document(_first_value(row)) for row in rows]
            return {
                "cursor": {
                    "firstBatch": docs,
                    "id": 0,
                    "ns": f"{db}.{collection}",
                },
                "ok": 1.0,
            }

        count = 0
        for row in rows:
            count = int(_first_value(row))
        # COUNT(*) ignores LIMIT, so find().limit(n).count() is capped here.
        if limit and count > limit:
            count = limit
        return {"n": count, "ok": 1.0}

    def msg_insert(self, document: dict[str, Any]) -> dict[str, Any]:
        """Insert each document as one row."""
        collection = _string(document, _command(document))
        db = _string(document, "$db")
        sql = f"INSERT INTO {quote_identifier(db, collection)} (_jsonb) VALUES ($1)"

        inserted = 0
        for doc in _array(document.get("documents")):
            doc = _document(doc, "inserted value")
            self.pool.execute(sql, _text(encode_document(doc)))
            inserted += 1

        return {"n": inserted, "ok": 1.0}

    def msg_update(self, document: dict[str, Any]) -> dict[str, Any]:
        """Apply $set updates to the documents matching each update statement."""
        collection = _string(document, "update")
        db = _string(document, "$db")
        table = quote_identifier(db, collection)
        update_sql = f"UPDATE {table} SET _jsonb = $1 WHERE _jsonb->'_id' = $2"

        selected = updated = 0
        for statement in _array(document.get("updates")):
            statement = _document(statement, "update statement")
            query = _document(statement.get("q"), "'q'")
            changes = _document(statement.get("u"), "'u'")

            docs = self._select(table, query)
            selected += len(docs)

            for doc in docs:
                for op, value in changes.items():
                    if op != "$set":
                        raise ValueError(f"unhandled operation {op!r}")
                    doc.update(_document(value, "$set"))

            for doc in docs:
                object_id = doc.get("_id")
                if not isinstance(object_id, ObjectId):
                    raise TypeError(f"'_id' must be an ObjectId, got {type(object_id).__name__}")
                updated += self.pool.execute(
                    update_sql,
                    _text(encode_document(doc)),
                    _text(encode_object_id(object_id)),
                )

        return {"n": selected, "nModified": updated, "ok": 1.0}