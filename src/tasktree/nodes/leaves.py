"""
Basic leaf nodes.

- Nil: done as soon as it starts
- Wait: done a fixed duration after it starts
"""

from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

from ..errors import TimingError
from ..state.base import TickOutcome, time_reached
from .base import LeafAction

if TYPE_CHECKING:
    from ..core.context import TickContext


def check_duration(node_id: str, field: str, value: Any, allow_none: bool = False) -> Optional[float]:
    """Validate a duration-like field.

    Raises:
        TimingError: If the value is not a positive number (E6001).
    """
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TimingError(
            f"Node '{node_id}': {field} must be a number, got {value!r}",
            code="E6002",
        )
    if value <= 0:
        raise TimingError(
            f"Node '{node_id}': {field} must be positive, got {value}",
            code="E6001",
        )
    return float(value)


class Nil(LeafAction):
    """Does nothing and is immediately done. Stands in for missing branches."""

    kind = "nil"

    def _start(self, ctx: "TickContext") -> None:
        self._complete(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        return TickOutcome(done=True)


class Wait(LeafAction):
    """Done `duration` seconds after start."""

    kind = "wait"

    def __init__(self, id: str, duration: float, **kwargs: Any) -> None:
        super().__init__(id, **kwargs)
        self.duration = check_duration(id, "duration", duration)
        self._deadline: Optional[float] = None

    def _start(self, ctx: "TickContext") -> None:
        self._deadline = ctx.now + self.duration

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        return TickOutcome(done=time_reached(ctx.now, self._deadline))

    def deadline(self) -> Optional[float]:
        return self._deadline if self.is_active else None

    def config(self) -> Dict[str, Any]:
        return {"duration": self.duration}


__all__ = ["Nil", "Wait", "check_duration"]
