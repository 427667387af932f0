"""Wire protocol errors."""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Wire protocol error code."""

    INTERNAL_ERROR = 1
    BAD_VALUE = 2
    NAMESPACE_NOT_FOUND = 26
    COMMAND_NOT_FOUND = 59
    NOT_IMPLEMENTED = 238
    REGEX_OPTIONS = 51075

    @property
    def code_name(self) -> str:
        return _CODE_NAMES[self]


_CODE_NAMES = {
    ErrorCode.INTERNAL_ERROR: "InternalError",
    ErrorCode.BAD_VALUE: "BadValue",
    ErrorCode.NAMESPACE_NOT_FOUND: "NamespaceNotFound",
    ErrorCode.COMMAND_NOT_FOUND: "CommandNotFound",
    ErrorCode.NOT_IMPLEMENTED: "NotImplemented",
    ErrorCode.REGEX_OPTIONS: "Location51075",
}


class ProtocolError(Exception):
    """An error that is reported to the client as a wire protocol error document."""

    def __init__(self, code: ErrorCode | int, message: str) -> None:
        code = ErrorCode(code)
        if not message:
            raise ValueError("message is empty")
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.code_name} ({int(self.code)}): {self.message}"

    def document(self) -> dict[str, Any]:
        return {
            "ok": 0.0,
            "errmsg": self.message,
            "code": int(self.code),
            "codeName": self.code.code_name,
        }


def protocol_error(err: BaseException) -> tuple[ProtocolError, bool]:
    """Convert any exception to a protocol error.

    A ProtocolError, raised directly or as an explicit cause, is returned with True;
    anything else is wrapped as InternalError and returned with False.
    """
    if err is None:
        raise TypeError("err is None")

    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        if isinstance(current, ProtocolError):
            return current, True
        seen.add(id(current))
        current = current.__cause__

    internal = ProtocolError(ErrorCode.INTERNAL_ERROR, str(err) or type(err).__name__)
    internal.__cause__ = err
    return internal, False