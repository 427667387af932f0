"""WHERE clause builder for plain SQL tables, where each field is a column."""

from __future__ import annotations

import json
from typing import Any

from ferretpg.common import Regex, in_array, logic_expr
from ferretpg.errors import ErrorCode, ProtocolError
from ferretpg.pg import Placeholder, quote_identifier

_SUPPORTED_REGEX_OPTIONS = frozenset("i")

_COMPARISONS = {
    "$eq": " =",
    "$ne": " <>",
    "$lt": " <",
    "$lte": " <=",
    "$gt": " >",
    "$gte": " >=",
}

_MEMBERSHIP = {
    "$in": " IN",
    "$nin": " NOT IN",
}


def _regex_argument(regex: Regex) -> str:
    for option in regex.options:
        if option not in _SUPPORTED_REGEX_OPTIONS:
            raise ValueError(f"unhandled regex option {option!r} in {regex!r}")
    if regex.options:
        return f"(?{regex.options}){regex.pattern}"
    return regex.pattern


def scalar(value: Any, placeholder: Placeholder) -> tuple[str, list[Any]]:
    """Build a placeholder and its argument for a single value compared with a column."""
    sql = placeholder.next()
    if isinstance(value, Regex):
        return sql, [_regex_argument(value)]
    return sql, [value]


def _regex_value(expr: dict[str, Any], value: Any) -> Regex:
    options = ""
    if "$options" in expr:
        options = expr["$options"]
        if not isinstance(options, str):
            raise ProtocolError(ErrorCode.BAD_VALUE, "$options has to be a string")

    if isinstance(value, str):
        return Regex(value, options)
    if isinstance(value, Regex):
        if options:
            if value.options:
                raise ProtocolError(ErrorCode.REGEX_OPTIONS, "options set in both $regex and $options")
            return Regex(value.pattern, options)
        return value
    raise ProtocolError(ErrorCode.BAD_VALUE, "$regex has to be a string")


def field_expr(field: str, expr: dict[str, Any], placeholder: Placeholder) -> tuple[str, list[Any]]:
    """Build SQL for {field: {expr}}."""
    sql = ""
    args: list[Any] = []

    for op, value in expr.items():
        if op == "$options":
            # consumed by $regex
            continue

        if sql:
            sql += " AND"

        if op == "$not":
            if not isinstance(value, dict):
                raise TypeError(f"$not expects a document, got {type(value).__name__}")
            if sql:
                sql += " "
            inner_sql, inner_args = field_expr(field, value, placeholder)
            sql += f"NOT({inner_sql})"
            args.extend(inner_args)
            continue

        if sql:
            sql += " "
        sql += quote_identifier(field)

        if op in _MEMBERSHIP:
            if not isinstance(value, (list, tuple)):
                raise TypeError(f"{op} expects an array, got {type(value).__name__}")
            sql += _MEMBERSHIP[op]
            value_sql, value_args = in_array(value, placeholder, scalar)
        elif op in _COMPARISONS:
            sql += _COMPARISONS[op]
            value_sql, value_args = scalar(value, placeholder)
        elif op == "$regex":
            regex = _regex_value(expr, value)
            sql += " ~"
            value_sql, value_args = scalar(regex, placeholder)
        else:
            raise ValueError(f"unhandled {{{json.dumps(op)}: {value!r}}}")

        sql += " " + value_sql
        args.extend(value_args)

    return sql, args


def where_pair(key: str, value: Any, placeholder: Placeholder) -> tuple[str, list[Any]]:
    """Build SQL for one filter member: a logical operator, a field expression or a field value."""
    if key.startswith("$"):
        if not isinstance(value, (list, tuple)):
            raise TypeError(f"{key} expects an array, got {type(value).__name__}")
        return logic_expr(key, value, placeholder, where_pair)

    if isinstance(value, dict):
        return field_expr(key, value, placeholder)

    value_sql, value_args = scalar(value, placeholder)
    operator = " ~ " if isinstance(value, Regex) else " = "
    return quote_identifier(key) + operator + value_sql, value_args


def where(filter: dict[str, Any] | None, placeholder: Placeholder) -> tuple[str, list[Any]]:
    """Build a WHERE clause for a filter document; empty when the filter is empty."""
    if not filter:
        return "", []

    sql = " WHERE"
    args: list[Any] = []
    for i, (key, value) in enumerate(filter.items()):
        if i:
            sql += " AND"
        pair_sql, pair_args = where_pair(key, value, placeholder)
        sql += f" ({pair_sql})"
        args.extend(pair_args)
    return sql, args