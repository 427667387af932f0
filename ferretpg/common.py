"""Value types, the storage interface and shared WHERE clause builders."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ferretpg.pg import Placeholder

WherePair = Callable[[str, Any, Placeholder], "tuple[str, list[Any]]"]
Scalar = Callable[[Any, Placeholder], "tuple[str, list[Any]]"]

_JOINERS = {"$or": " OR", "$nor": " OR", "$and": " AND"}


@dataclass(frozen=True)
class Regex:
    """A regular expression value with its option letters."""

    pattern: str
    options: str = ""


@dataclass(frozen=True)
class ObjectId:
    """A 12-byte document identifier."""

    data: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.data, (bytes, bytearray)) or len(self.data) != 12:
            raise ValueError("ObjectId must be exactly 12 bytes")
        object.__setattr__(self, "data", bytes(self.data))

    def __str__(self) -> str:
        return self.data.hex()


class Storage(ABC):
    """Backend for data commands; each takes a command document and returns a reply document."""

    @abstractmethod
    def msg_delete(self, document: dict[str, Any]) -> dict[str, Any]:
        """Delete documents."""

    @abstractmethod
    def msg_find_or_count(self, document: dict[str, Any]) -> dict[str, Any]:
        """Find or count documents."""

    @abstractmethod
    def msg_insert(self, document: dict[str, Any]) -> dict[str, Any]:
        """Insert documents."""

    @abstractmethod
    def msg_update(self, document: dict[str, Any]) -> dict[str, Any]:
        """Update documents."""


def logic_expr(
    op: str,
    exprs: Iterable[Any],
    placeholder: Placeholder,
    where_pair: WherePair,
) -> tuple[str, list[Any]]:
    """Build SQL for {$or|$and|$nor: [{expr1}, {expr2}, ...]}."""
    if op not in _JOINERS:
        raise ValueError(f"unhandled logical operator {op!r}")
    joiner = _JOINERS[op]

    sql = "NOT (" if op == "$nor" else ""
    args: list[Any] = []
    for i, expr in enumerate(exprs):
        if not isinstance(expr, dict):
            raise TypeError(f"{op} expects documents, got {type(expr).__name__}")
        if i:
            sql += joiner
        for j, (key, value) in enumerate(expr.items()):
            if j:
                sql += " AND"
            expr_sql, expr_args = where_pair(key, value, placeholder)
            if sql:
                sql += " "
            sql += f"({expr_sql})"
            args.extend(expr_args)

    if op == "$nor":
        sql += ")"
    return sql, args


def in_array(
    values: Iterable[Any],
    placeholder: Placeholder,
    scalar: Scalar,
) -> tuple[str, list[Any]]:
    """Build a parenthesised SQL list of scalars for IN / NOT IN."""
    parts: list[str] = []
    args: list[Any] = []
    for value in values:
        value_sql, value_args = scalar(value, placeholder)
        parts.append(value_sql)
        args.extend(value_args)
    return "(" + ", ".join(parts) + ")", args