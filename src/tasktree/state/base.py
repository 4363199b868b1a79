"""
Core enums and value types for the action-tree engine.

- Lifecycle: per-instance node lifecycle (IDLE, ACTIVE, DONE)
- NodeType: classification of node behavior (COMPOSITE, DECORATOR, LEAF)
- TickOutcome: what a node reports back to its parent after a tick
- UNBOUND / TRIGGER: sentinel values used by the variable store
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Union


class Lifecycle(IntEnum):
    """Lifecycle of a node instance.

    IDLE -> ACTIVE on start, ACTIVE -> DONE on completion or stop.
    DONE is terminal; a repeating subtree gets a fresh instance instead.
    """

    IDLE = 0
    ACTIVE = 1
    DONE = 2

    def is_done(self) -> bool:
        return self == Lifecycle.DONE

    def is_active(self) -> bool:
        return self == Lifecycle.ACTIVE


class NodeType(str, Enum):
    """Classification of node behavior.

    - COMPOSITE: any number of children (seq, par, layouts)
    - DECORATOR: exactly one child (timeout, delayed, repeat, until, ...)
    - LEAF: no children, does actual work
    """

    COMPOSITE = "composite"
    DECORATOR = "decorator"
    LEAF = "leaf"


@dataclass(frozen=True)
class TickOutcome:
    """Result of ticking a node once."""

    done: bool = False
    redraw_requested: bool = False

    def merge(self, other: "TickOutcome") -> "TickOutcome":
        """Combine child outcomes: redraw is sticky, done is taken from self."""
        return TickOutcome(
            done=self.done,
            redraw_requested=self.redraw_requested or other.redraw_requested,
        )


class _Unbound:
    """Marker for a declared line that has never been written."""

    _instance = None

    def __new__(cls) -> "_Unbound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNBOUND"

    def __bool__(self) -> bool:
        return False


class _Trigger:
    """Value-less marker written to a line to signal 'something happened'."""

    _instance = None

    def __new__(cls) -> "_Trigger":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TRIGGER"


UNBOUND = _Unbound()
TRIGGER = _Trigger()

Value = Union[bool, int, float, str, _Trigger]

# Time comparisons tolerate accumulated float error from summed frame deltas.
TIME_EPSILON = 1e-9


def time_reached(now: float, deadline: float) -> bool:
    """True once ``now`` has reached ``deadline`` (within TIME_EPSILON)."""
    return now + TIME_EPSILON >= deadline


__all__ = [
    "Lifecycle",
    "NodeType",
    "TickOutcome",
    "TIME_EPSILON",
    "TRIGGER",
    "UNBOUND",
    "Value",
    "time_reached",
]
