"""
State management for the action-tree engine.

Core enums (base.py):
- Lifecycle: IDLE, ACTIVE, DONE
- NodeType: COMPOSITE, DECORATOR, LEAF
- TickOutcome: done / redraw flags returned by a tick

Variable store (store.py):
- VariableStore: per-run integer line ids to typed values
"""

from .base import (
    TIME_EPSILON,
    TRIGGER,
    UNBOUND,
    Lifecycle,
    NodeType,
    TickOutcome,
    Value,
    time_reached,
)
from .store import VariableStore, coerce_line_id

__all__ = [
    "Lifecycle",
    "NodeType",
    "TickOutcome",
    "TIME_EPSILON",
    "TRIGGER",
    "UNBOUND",
    "Value",
    "VariableStore",
    "coerce_line_id",
    "time_reached",
]
