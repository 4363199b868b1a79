"""
Scheduler - Drives an ActionTree tick by tick.

One tick:
1. Advance the run clock by dt
2. Drain input events queued by other threads (plus any passed in)
3. Walk the tree once, depth-first, left to right
4. Clear the store's dirty flags
5. Present the new frame if any node asked for a redraw

Any engine error raised during a tick stops the whole tree (depth-first,
so loggers flush) and is re-raised once, with the failing node's path.
Any other exception raised by a node is wrapped in a TaskTreeError (E3005)
first, so it ends the run the same way.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Generator, Iterable, List, Optional, TYPE_CHECKING

from ..errors import TaskTreeError, TimingError
from ..render import Frame, Renderer
from .context import TickContext
from .events import InputEvent
from .tree import TreeStatus

if TYPE_CHECKING:
    from ..assets import AssetResolver
    from ..sinks import LogSink
    from ..state.store import VariableStore
    from .tree import ActionTree


logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """
    Result of one tick.

    Attributes:
        time: Run time after the tick.
        tick_count: Ticks processed so far (0 for the start pass).
        done: Whether the tree is finished.
        redraw_requested: Whether the presentation changed.
        events: Number of input events delivered.
        duration_ms: Wall-clock duration of the walk.
        warnings: Non-fatal conditions recorded during the tick.
        frame: Presentation after the tick, when a redraw was requested.
    """

    time: float
    tick_count: int
    done: bool
    redraw_requested: bool = False
    events: int = 0
    duration_ms: float = 0.0
    warnings: List[str] = field(default_factory=list)
    frame: Optional[Frame] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "tick_count": self.tick_count,
            "done": self.done,
            "redraw_requested": self.redraw_requested,
            "events": self.events,
            "duration_ms": self.duration_ms,
            "warnings": list(self.warnings),
            "frame": self.frame.to_dict() if self.frame else None,
        }


class Scheduler:
    """
    Runs one tree instance against one variable store.

    Single-threaded: start(), tick() and abort() must be called from the
    same thread. Other threads may only call submit().

    Example:
        >>> scheduler = Scheduler(tree, store)
        >>> scheduler.start()
        >>> while not scheduler.done:
        ...     scheduler.tick(1 / 60)
    """

    def __init__(
        self,
        tree: "ActionTree",
        store: "VariableStore",
        sink: Optional["LogSink"] = None,
        assets: Optional["AssetResolver"] = None,
        renderer: Optional[Renderer] = None,
        flush_every: int = 64,
        trace_enabled: bool = False,
    ) -> None:
        self.tree = tree
        self.store = store
        self.renderer = renderer
        self.ctx = TickContext(
            store=store,
            sink=sink,
            assets=assets,
            flush_every=flush_every,
            trace_enabled=trace_enabled,
        )
        self._queue: Deque[InputEvent] = deque()
        self._lock = threading.Lock()
        self._tick_in_progress = False
        self._error: Optional[TaskTreeError] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def now(self) -> float:
        return self.ctx.now

    @property
    def done(self) -> bool:
        return self.tree.status.is_terminal()

    @property
    def error(self) -> Optional[TaskTreeError]:
        return self._error

    @property
    def is_tick_in_progress(self) -> bool:
        return self._tick_in_progress

    # =========================================================================
    # Input
    # =========================================================================

    def submit(self, event: InputEvent) -> None:
        """Queue an input event for the next tick. Safe from any thread."""
        with self._lock:
            self._queue.append(event)

    def _drain(self) -> List[InputEvent]:
        with self._lock:
            events = list(self._queue)
            self._queue.clear()
        return events

    @property
    def pending_events(self) -> int:
        with self._lock:
            return len(self._queue)

    # =========================================================================
    # Execution
    # =========================================================================

    @contextmanager
    def tick_scope(self) -> Generator[None, None, None]:
        """
        Bracket one walk of the tree.

        Stops the tree on engine errors and always ends the store's tick.
        """
        if self._tick_in_progress:
            raise TaskTreeError("Re-entrant tick", code="E3003")
        self._tick_in_progress = True
        self.ctx.redraw_requested = False
        try:
            yield
        except TaskTreeError as e:
            self._abort_with(e)
            raise
        except Exception as e:
            error = TaskTreeError(f"{type(e).__name__}: {e}", code="E3005")
            logger.error(f"Node raised {type(e).__name__} during tick", exc_info=True)
            self._abort_with(error)
            raise error from e
        finally:
            self.store.clear_dirty()
            self._tick_in_progress = False

    def _abort_with(self, error: TaskTreeError) -> None:
        error.attach_path(self.ctx.get_current_path())
        self.ctx.parent_path.clear()
        logger.error(f"Run aborted by error: {error}")
        self._error = error
        self._shutdown(f"error: {error.code}")

    def start(self) -> TickResult:
        """Start the root at t=0."""
        if self.tree.status != TreeStatus.IDLE:
            raise TaskTreeError(
                f"Tree '{self.tree.id}' already started ({self.tree.status.value})",
                code="E3004",
            )
        self.ctx.now = 0.0
        self.ctx.dt = 0.0
        self.ctx.events = self._drain()
        wall_start = time.perf_counter()

        self.tree._set_status(TreeStatus.RUNNING)
        with self.tick_scope():
            self.tree.root.start(self.ctx)
            warnings = self.store.drain_warnings()

        return self._finish_tick(wall_start, redraw=True, warnings=warnings)

    def tick(self, dt: float, events: Iterable[InputEvent] = ()) -> TickResult:
        """Advance the run by dt seconds and walk the tree once.

        Raises:
            TimingError: If dt is not positive (E6004).
            TaskTreeError: The terminal error of a failing node.
        """
        if dt <= 0:
            raise TimingError(f"Tick delta must be positive, got {dt}", code="E6004")
        if self.tree.status == TreeStatus.IDLE:
            raise TaskTreeError(f"Tree '{self.tree.id}' not started", code="E3004")
        if self.done:
            return TickResult(time=self.ctx.now, tick_count=self.ctx.tick_count, done=True)

        for event in events:
            self.submit(event)

        self.ctx.now += dt
        self.ctx.dt = dt
        self.ctx.tick_count += 1
        self.ctx.events = sorted(self._drain(), key=lambda event: event.timestamp)
        wall_start = time.perf_counter()

        with self.tick_scope():
            outcome = self.tree.root.tick(self.ctx)
            warnings = self.store.drain_warnings()

        return self._finish_tick(wall_start, redraw=outcome.redraw_requested, warnings=warnings)

    def _finish_tick(self, wall_start: float, redraw: bool, warnings: List[str]) -> TickResult:
        events = len(self.ctx.events)
        self.ctx.events = []

        if self.tree.root.is_done and self.tree.status == TreeStatus.RUNNING:
            self.tree._set_status(TreeStatus.COMPLETED)
            logger.info(f"Tree '{self.tree.id}' completed at t={self.ctx.now:.3f}")

        redraw = redraw or self.ctx.redraw_requested
        frame = None
        if redraw:
            frame = self.tree.root.presentation()
            if self.renderer is not None:
                visible_at = self.renderer.present(frame, self.ctx.now)
                if visible_at is not None:
                    self.mark_presented(visible_at)

        return TickResult(
            time=self.ctx.now,
            tick_count=self.ctx.tick_count,
            done=self.done,
            redraw_requested=redraw,
            events=events,
            duration_ms=(time.perf_counter() - wall_start) * 1000,
            warnings=warnings,
            frame=frame,
        )

    def next_deadline(self) -> Optional[float]:
        """Earliest pending timer of the active tree, if any."""
        if not self.tree.root.is_active:
            return None
        return self.tree.root.deadline()

    def mark_presented(self, timestamp: float) -> None:
        """Renderer feedback: record when active stimuli became visible."""
        for node in self.tree.active_nodes():
            node.mark_presented(timestamp)

    def abort(self, reason: str = "interrupted") -> None:
        """Stop the whole tree now. Safe to call more than once."""
        if self.done:
            return
        logger.info(f"Aborting tree '{self.tree.id}' at t={self.ctx.now:.3f}: {reason}")
        self._shutdown(reason)

    def _shutdown(self, reason: str) -> None:
        self.tree._set_status(TreeStatus.ABORTED)
        try:
            self.tree.root.stop(self.ctx)
        except TaskTreeError as e:
            # The first error is the terminal one; later ones are only logged.
            logger.error(f"Error while stopping tree after '{reason}': {e}")
        self.ctx.parent_path.clear()

    def debug_info(self) -> Dict[str, Any]:
        return {
            "time": self.ctx.now,
            "tick_count": self.ctx.tick_count,
            "tick_in_progress": self._tick_in_progress,
            "pending_events": self.pending_events,
            "next_deadline": self.next_deadline(),
            "tree": self.tree.debug_info(),
            "store": self.store.debug_info(),
        }


__all__ = ["Scheduler", "TickResult"]
