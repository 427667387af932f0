"""Storage for plain SQL tables, where each document field is a column."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ferretpg.common import Storage
from ferretpg.errors import ErrorCode, ProtocolError
from ferretpg.pg import Placeholder, quote_identifier
from ferretpg.sql_where import where


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


def row_to_document(row: Mapping[str, Any]) -> dict[str, Any]:
    """Turn a result row keyed by column name into a document with the same field order."""
    return {str(name): value for name, value in row.items()}


class SQLStorage(Storage):
    """Runs data commands against ordinary tables, one column per field."""

    def __init__(self, pool: Any, logger: logging.Logger | None = None) -> None:
        self.pool = pool
        self.logger = logger or logging.getLogger(__name__)

    def msg_delete(self, document: dict[str, Any]) -> dict[str, Any]:
        """Delete the rows matching each delete statement."""
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
                sql += f" WHERE ctid IN (SELECT ctid FROM {table}{where_sql} LIMIT 1)"
            else:
                sql += where_sql

            try:
                deleted += self.pool.execute(sql, *args)
            except Exception as err:
                raise ProtocolError(ErrorCode.NAMESPACE_NOT_FOUND, f"MsgDelete: ns not found: {err}") from err

        return {"n": deleted, "ok": 1.0}

    def msg_find_or_count(self, document: dict[str, Any]) -> dict[str, Any]:
        """Return matching rows as documents for find, or their number for count."""
        is_find = isinstance(document.get("find"), str)
        db = _string(document, "$db")

        projection = document.get("projection")
        if isinstance(projection, dict) and projection:
            raise ProtocolError(ErrorCode.NOT_IMPLEMENTED, "MsgFind: projection is not supported")

        if is_find:
            collection = _string(document, "find")
            filter = document.get("filter")
            sql = f"SELECT * FROM {quote_identifier(db, collection)}"
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
                orders.append(f" {quote_identifier(key)} {'ASC' if order > 0 else 'DESC'}")
            sql += " ORDER BY" + ",".join(orders)

        if limit > 0:
            sql += f" LIMIT {placeholder.next()}"
            args.append(limit)
        elif limit < 0:
            raise ProtocolError(ErrorCode.NOT_IMPLEMENTED, "MsgFind: negative limit values are not supported")

        rows = self.pool.query(sql, *args)

        if is_find:
            return {
                "cursor": {
                    "firstBatch": [row_to_document(row) for row in rows],
                    "id": 0,
                    "ns": f"{db}.{collection}",
                },
                "ok": 1.0,
            }

        count = 0
        for row in rows:
            count = int(next(iter(row.values())))
        # COUNT(*) ignores LIMIT, so find().limit(n).count() is capped here.
        if limit and count > limit:
            count = limit
        return {"n": count, "ok": 1.0}

    def msg_insert(self, document: dict[str, Any]) -> dict[str, Any]:
        """Insert each document as one row; fields other than _id become columns."""
        collection = _string(document, _command(document))
        db = _string(document, "$db")
        table = quote_identifier(db, collection)

        inserted = 0
        for doc in _array(document.get("documents")):
            doc = _document(doc, "inserted value")
            fields = {key: value for key, value in doc.items() if key != "_id"}

            if fields:
                placeholder = Placeholder()
                columns = ", ".join(quote_identifier(key) for key in fields)
                values = ", ".join(placeholder.next() for _ in fields)
                sql = f"INSERT INTO {table} ({columns}) VALUES ({values})"
            else:
                sql = f"INSERT INTO {table} DEFAULT VALUES"

            self.pool.execute(sql, *fields.values())
            inserted += 1

        return {"n": inserted, "ok": 1.0}

    def msg_update(self, document: dict[str, Any]) -> dict[str, Any]:
        """Apply $set updates to the rows matching each update statement."""
        collection = _string(document, "update")
        db = _string(document, "$db")
        table = quote_identifier(db, collection)

        matched = 0
        for statement in _array(document.get("updates")):
            statement = _document(statement, "update statement")
            query = _document(statement.get("q"), "'q'")
            changes = _document(statement.get("u"), "'u'")

            assignments: dict[str, Any] = {}
            for op, value in changes.items():
                if op != "$set":
                    raise ValueError(f"unhandled operation {op!r}")
                assignments.update(_document(value, "$set"))
            if not assignments:
                continue

            placeholder = Placeholder()
            set_sql = ", ".join(f"{quote_identifier(key)} = {placeholder.next()}" for key in assignments)
            where_sql, where_args = where(query, placeholder)
            sql = f"UPDATE {table} SET {set_sql}{where_sql}"
            matched += self.pool.execute(sql, *assignments.values(), *where_args)

        return {"n": matched, "nModified": matched, "ok": 1.0}