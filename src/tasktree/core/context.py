"""
TickContext - Execution context passed to every node on start, tick and stop.

Carries the run clock, the variable store, this tick's input events, the
log sink and asset resolver, plus path tracking for error reporting and an
optional trace of lifecycle transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from .events import InputEvent

if TYPE_CHECKING:
    from ..assets import AssetResolver
    from ..sinks import LogSink
    from ..state.store import VariableStore


@dataclass
class TickContext:
    """Execution context for tree ticks.

    Attributes:
        store: Variable store of the run.
        now: Run time in seconds at the current tick.
        dt: Time advanced by the current tick.
        tick_count: Number of ticks processed (0 during start).
        events: Input events delivered in the current tick.
        sink: Destination for logger node records (optional).
        assets: Resolver for external assets (optional).
        flush_every: Logger nodes flush after this many buffered records.
        parent_path: Ids of the nodes currently being entered.
        trace_enabled: Whether lifecycle transitions are recorded.
    """

    store: "VariableStore"
    now: float = 0.0
    dt: float = 0.0
    tick_count: int = 0
    events: List[InputEvent] = field(default_factory=list)
    sink: Optional["LogSink"] = None
    assets: Optional["AssetResolver"] = None
    flush_every: int = 64

    # Debugging
    parent_path: List[str] = field(default_factory=list)
    trace_enabled: bool = False

    # Set by nodes whose presentation changed during this tick
    redraw_requested: bool = False

    _trace_log: List[dict] = field(default_factory=list, repr=False)

    # =========================================================================
    # Input events
    # =========================================================================

    def events_in(
        self,
        group: str,
        kinds: Optional[Tuple[str, ...]] = None,
        keys: Optional[Tuple[str, ...]] = None,
    ) -> List[InputEvent]:
        """Events of this tick routed to a group, optionally filtered."""
        return [event for event in self.events if event.matches(group, kinds, keys)]

    def request_redraw(self) -> None:
        self.redraw_requested = True

    # =========================================================================
    # Path Management
    # =========================================================================

    def push_path(self, node_id: str) -> None:
        self.parent_path.append(node_id)

    def pop_path(self) -> Optional[str]:
        if self.parent_path:
            return self.parent_path.pop()
        return None

    def get_current_path(self) -> str:
        """Current path as "root > child > leaf"."""
        return " > ".join(self.parent_path)

    # =========================================================================
    # Tracing
    # =========================================================================

    def trace(self, node_id: str, event: str, **details: Any) -> None:
        """Record a lifecycle transition if tracing is enabled.

        Args:
            node_id: ID of the node generating the trace.
            event: "start", "done" or "stop".
            **details: Additional event details.
        """
        if self.trace_enabled:
            self._trace_log.append({
                "time": self.now,
                "tick": self.tick_count,
                "node_id": node_id,
                "path": list(self.parent_path),
                "event": event,
                **details,
            })

    def get_trace_log(self) -> List[dict]:
        return list(self._trace_log)

    def trace_events(self, event: str, node_id: Optional[str] = None) -> List[dict]:
        """Trace entries of one kind, optionally for a single node."""
        return [
            entry for entry in self._trace_log
            if entry["event"] == event and (node_id is None or entry["node_id"] == node_id)
        ]

    def clear_trace_log(self) -> None:
        self._trace_log.clear()

    def debug_info(self) -> Dict[str, Any]:
        return {
            "now": self.now,
            "dt": self.dt,
            "tick_count": self.tick_count,
            "events": [event.to_dict() for event in self.events],
            "parent_path": list(self.parent_path),
            "trace_enabled": self.trace_enabled,
        }


__all__ = ["TickContext"]
