"""Handler request metrics."""

from __future__ import annotations

import threading
from collections import Counter
from enum import Enum
from typing import Any, Iterator

NAMESPACE = "ferretdb"
SUBSYSTEM = "handler"
REQUESTS_TOTAL = f"{NAMESPACE}_{SUBSYSTEM}_requests_total"


def _label(value: Any) -> str:
    if isinstance(value, Enum):
        return value.name
    return str(value)


class Metrics:
    """Counts requests by opcode and command."""

    name = REQUESTS_TOTAL
    help = "Total number of requests."
    label_names = ("opcode", "command")

    def __init__(self) -> None:
        self._counts: Counter[tuple[str, str]] = Counter()
        self._lock = threading.Lock()

    def inc(self, opcode: Any, command: str) -> None:
        with self._lock:
            self._counts[(_label(opcode), command)] += 1

    def value(self, opcode: Any, command: str) -> int:
        with self._lock:
            return self._counts[(_label(opcode), command)]

    def collect(self) -> Iterator[tuple[str, dict[str, str], int]]:
        """Yield (metric name, labels, count) for every label combination seen."""
        with self._lock:
            snapshot = list(self._counts.items())
        for (opcode, command), count in snapshot:
            yield self.name, {"opcode": opcode, "command": command}, count