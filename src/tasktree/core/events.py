"""
Input events delivered to the tree.

Producers (keyboard, pointer, serial devices, a test script) hand events to
Scheduler.submit() from any thread; the scheduler delivers them to nodes at
the start of the next tick.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class EventKind(str, Enum):
    """Well-known event kinds. Other strings are accepted as custom kinds."""

    KEY_DOWN = "key_down"
    KEY_UP = "key_up"
    CLICK = "click"
    MOVE = "move"
    RELEASE = "release"
    MESSAGE = "message"


@dataclass(frozen=True)
class InputEvent:
    """A timestamped input from an external source.

    Attributes:
        timestamp: Run time (seconds since block start) of the input.
        group: Routing group; nodes only see events of the groups they name.
        kind: What happened (see EventKind).
        payload: Source-specific details (key name, pointer position, ...).
    """

    timestamp: float
    group: str
    kind: str = EventKind.KEY_DOWN.value
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def key(cls, timestamp: float, key: str, group: str = "keypress") -> "InputEvent":
        return cls(timestamp, group, EventKind.KEY_DOWN.value, {"key": key})

    @classmethod
    def click(
        cls,
        timestamp: float,
        x: float,
        y: float,
        group: str = "pointer",
        hit: bool = False,
    ) -> "InputEvent":
        return cls(timestamp, group, EventKind.CLICK.value, {"x": x, "y": y, "hit": hit})

    @property
    def key_name(self) -> Optional[str]:
        return self.payload.get("key")

    @property
    def position(self) -> Optional[tuple]:
        if "x" in self.payload and "y" in self.payload:
            return (self.payload["x"], self.payload["y"])
        return None

    def matches(self, group: str, kinds: Optional[tuple] = None, keys: Optional[tuple] = None) -> bool:
        if self.group != group:
            return False
        if kinds and self.kind not in kinds:
            return False
        if keys and self.key_name not in keys:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "group": self.group,
            "kind": self.kind,
            "payload": dict(self.payload),
        }


__all__ = ["EventKind", "InputEvent"]
