"""
Shared fixtures for tasktree tests.

Most node tests build a small tree by hand, wrap it in a Scheduler and
drive it with fixed frame deltas:

    scheduler = make_scheduler(Sequence("root", [Wait("a", 1.0)]))
    scheduler.start()
    run_until(scheduler, 2.0)
"""

from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

from tasktree.core import ActionTree, InputEvent, Scheduler
from tasktree.nodes import Action
from tasktree.render import RecordingRenderer
from tasktree.sinks import MemorySink
from tasktree.state import TIME_EPSILON, VariableStore


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def make_scheduler(sink: MemorySink) -> Callable[..., Scheduler]:
    """Factory: root node (+ initial state) -> unstarted Scheduler with tracing."""

    def factory(
        root: Action,
        state: Optional[Dict[int, Any]] = None,
        declared: Iterable[int] = (),
        trace: bool = True,
        **kwargs: Any,
    ) -> Scheduler:
        tree = ActionTree(id="test", name="test", root=root)
        store = VariableStore.from_snapshot(state, declared=list(tree.bound_lines()) + list(declared))
        return Scheduler(tree, store, sink=sink, trace_enabled=trace, **kwargs)

    return factory


@pytest.fixture
def run_until() -> Callable[..., List[float]]:
    """Driver: tick a started scheduler with a fixed dt until a time is reached.

    Scripted events are delivered in the first tick whose end time is at or
    past their timestamp. Returns the end time of every tick.
    """

    def run(
        scheduler: Scheduler,
        until: float,
        dt: float = 0.1,
        events: Iterable[InputEvent] = (),
        stop_when_done: bool = True,
    ) -> List[float]:
        pending = sorted(events, key=lambda event: event.timestamp)
        times: List[float] = []
        while scheduler.now + TIME_EPSILON < until:
            if stop_when_done and scheduler.done:
                break
            end = scheduler.now + dt
            due = [event for event in pending if event.timestamp <= end + TIME_EPSILON]
            pending = pending[len(due):]
            scheduler.tick(dt, due)
            times.append(scheduler.now)
        return times

    return run
