"""
Decorator Nodes - Nodes that wrap and control a single child.

- Timeout: child raced against a deadline
- Delayed: child started after a delay
- Repeat: child re-instantiated every time it is done
- Until: child raced against an input event or a line write
- Switch: one of several branches, chosen from a control line at start

Error codes:
- E6001/E6002: Invalid duration (build time)
- E4003: Invalid until configuration
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from ..errors import ConfigError
from ..render import Frame
from ..state.base import TickOutcome, time_reached
from .base import Action, CompositeAction, DecoratorAction, PresentationOnset
from .leaves import Nil, check_duration

if TYPE_CHECKING:
    from ..core.context import TickContext

logger = logging.getLogger(__name__)


class Timeout(PresentationOnset, DecoratorAction):
    """Run the child for at most `duration` seconds.

    The deadline counts from the node's start, or from when the frame of
    its start tick became visible if the renderer reports that. The child
    is ticked before the deadline is checked, so a child that completes
    exactly at the deadline completes naturally. Otherwise the child is
    stopped at the deadline and the timeout is done.
    """

    kind = "timeout"

    def __init__(self, id: str, duration: float, child: Optional[Action] = None, **kwargs: Any) -> None:
        super().__init__(id, child=child, **kwargs)
        self.duration = check_duration(id, "duration", duration)
        self._deadline: Optional[float] = None
        self.timed_out = False

    def _start(self, ctx: "TickContext") -> None:
        self._begin_onset(ctx)
        self._deadline = self._onset + self.duration
        self.timed_out = False
        self.child.start(ctx)
        if self.child.is_done:
            self._complete(ctx)

    def _onset_moved(self) -> None:
        self._deadline = self._onset + self.duration

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        self._end_onset_window()
        outcome = self.child.tick(ctx)
        if outcome.done:
            return TickOutcome(done=True, redraw_requested=outcome.redraw_requested)

        if time_reached(ctx.now, self._deadline):
            logger.debug(f"Timeout '{self._id}' expired at t={ctx.now:.3f}")
            self.timed_out = True
            self.child.stop(ctx)
            return TickOutcome(done=True, redraw_requested=outcome.redraw_requested)

        return TickOutcome(redraw_requested=outcome.redraw_requested)

    def deadline(self) -> Optional[float]:
        if not self.is_active:
            return None
        child_deadline = self.child.deadline()
        if child_deadline is None:
            return self._deadline
        return min(child_deadline, self._deadline)

    def config(self) -> Dict[str, Any]:
        return {"duration": self.duration}


class Delayed(DecoratorAction):
    """Start the child `duration` seconds after this node starts.

    Done when the child is done.
    """

    kind = "delayed"

    def __init__(self, id: str, duration: float, child: Optional[Action] = None, **kwargs: Any) -> None:
        super().__init__(id, child=child, **kwargs)
        self.duration = check_duration(id, "duration", duration)
        self._start_at: Optional[float] = None

    def _start(self, ctx: "TickContext") -> None:
        self._start_at = ctx.now + self.duration

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        child = self.child
        if child.is_idle:
            if time_reached(ctx.now, self._start_at):
                child.start(ctx)
            return TickOutcome(done=child.is_done)

        outcome = child.tick(ctx)
        return TickOutcome(done=outcome.done, redraw_requested=outcome.redraw_requested)

    def deadline(self) -> Optional[float]:
        if not self.is_active:
            return None
        if self.child.is_idle:
            return self._start_at
        return self.child.deadline()

    def config(self) -> Dict[str, Any]:
        return {"duration": self.duration}


class Repeat(DecoratorAction):
    """Run a fresh instance of the child every time the previous one is done.

    The declared child is kept as a pristine template and is never started;
    each iteration runs a deep copy. Lines the child writes persist in the
    store across iterations. Never done on its own unless `count` is set.

    An instance that is done as soon as it starts is replaced on the next
    tick, never within the same one.
    """

    kind = "repeat"

    def __init__(self, id: str, child: Optional[Action] = None, count: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(id, child=child, **kwargs)
        if count is not None and (isinstance(count, bool) or int(count) != count or count <= 0):
            raise ConfigError(
                f"Node '{id}': count must be a positive integer, got {count!r}",
                code="E4003",
            )
        self.count = int(count) if count is not None else None
        self.iterations = 0
        self._current: Optional[Action] = None

    @property
    def current(self) -> Optional[Action]:
        return self._current

    def active_children(self) -> List[Action]:
        if self._current is not None and self._current.is_active:
            return [self._current]
        return []

    def live_children(self) -> List[Action]:
        return [self._current] if self._current is not None else []

    def _spawn(self, ctx: "TickContext") -> None:
        instance = self.child.instantiate()
        instance._parent = self
        self._current = instance
        instance.start(ctx)

    def _start(self, ctx: "TickContext") -> None:
        self.iterations = 0
        self._spawn(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        outcome = self._current.tick(ctx)
        if not outcome.done:
            return TickOutcome(redraw_requested=outcome.redraw_requested)

        self.iterations += 1
        if self.count is not None and self.iterations >= self.count:
            return TickOutcome(done=True, redraw_requested=outcome.redraw_requested)

        ctx.request_redraw()
        self._spawn(ctx)
        return TickOutcome(redraw_requested=True)

    def deadline(self) -> Optional[float]:
        if self.is_active and self._current is not None:
            return self._current.deadline()
        return None

    def config(self) -> Dict[str, Any]:
        return {"count": self.count} if self.count is not None else {}


class Until(DecoratorAction):
    """Race the child against a trigger.

    The trigger is either an input event in `in_event` (optionally limited
    to some kinds or keys) or any write to `in_line` after this node
    started. On trigger, the child is stopped within the same tick and this
    node is done. Also done when the child completes.
    """

    kind = "until"

    def __init__(
        self,
        id: str,
        child: Optional[Action] = None,
        in_event: Optional[str] = None,
        in_line: Optional[int] = None,
        kinds: Optional[Tuple[str, ...]] = None,
        keys: Optional[Tuple[str, ...]] = None,
        **kwargs: Any,
    ) -> None:
        if (in_event is None) == (in_line is None):
            raise ConfigError(
                f"Node '{id}': until needs exactly one of in_event or in_line",
                code="E4003",
            )
        in_mapping = dict(kwargs.pop("in_mapping", None) or {})
        if in_line is not None:
            in_mapping[in_line] = "trigger"
        super().__init__(id, child=child, in_mapping=in_mapping, group=in_event, **kwargs)
        self.in_event = in_event
        self.in_line = in_line
        self.kinds = tuple(kinds) if kinds else None
        self.keys = tuple(keys) if keys else None
        self._seen_version = 0
        self.triggered = False

    def _start(self, ctx: "TickContext") -> None:
        self.triggered = False
        if self.in_line is not None:
            self._seen_version = ctx.store.version(self.in_line)
        self.child.start(ctx)
        if self.child.is_done:
            self._complete(ctx)

    def _triggered(self, ctx: "TickContext") -> bool:
        if self.in_event is not None:
            return bool(ctx.events_in(self.in_event, self.kinds, self.keys))
        return ctx.store.version(self.in_line) != self._seen_version

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        if self._triggered(ctx):
            self._fire(ctx)
            return TickOutcome(done=True)

        outcome = self.child.tick(ctx)
        if outcome.done:
            return TickOutcome(done=True, redraw_requested=outcome.redraw_requested)

        # The child itself may have written the trigger line this tick.
        if self.in_line is not None and self._triggered(ctx):
            self._fire(ctx)
            return TickOutcome(done=True, redraw_requested=outcome.redraw_requested)

        return TickOutcome(redraw_requested=outcome.redraw_requested)

    def _fire(self, ctx: "TickContext") -> None:
        self.triggered = True
        self.child.stop(ctx)

    def deadline(self) -> Optional[float]:
        return self.child.deadline() if self.is_active else None

    def config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        if self.in_event is not None:
            config["in_event"] = self.in_event
        if self.in_line is not None:
            config["in_line"] = self.in_line
        if self.kinds:
            config["kinds"] = list(self.kinds)
        if self.keys:
            config["keys"] = list(self.keys)
        return config


class Switch(CompositeAction):
    """Run exactly one branch, chosen by the control line's value at start.

    Two forms:
    - if_true / if_false: the control value's truthiness picks the branch
    - cases / default: the first case whose key equals the control value

    A missing branch behaves as nil. Branches that are not selected are
    never started. Reading an unbound control line is a VariableError.
    """

    kind = "switch"

    def __init__(
        self,
        id: str,
        in_control: int,
        if_true: Optional[Action] = None,
        if_false: Optional[Action] = None,
        cases: Optional[List[Tuple[Any, Action]]] = None,
        default: Optional[Action] = None,
        **kwargs: Any,
    ) -> None:
        in_mapping = dict(kwargs.pop("in_mapping", None) or {})
        in_mapping[in_control] = "control"
        super().__init__(id, in_mapping=in_mapping, **kwargs)
        self.in_control = in_control

        if cases is not None and (if_true is not None or if_false is not None):
            raise ConfigError(
                f"Node '{id}': switch takes either if_true/if_false or cases, not both",
                code="E4003",
            )

        self.boolean = cases is None
        self._case_keys: List[Any] = []
        if self.boolean:
            self._add_child(if_true or Nil(f"{id}.if_true"))
            self._add_child(if_false or Nil(f"{id}.if_false"))
        else:
            for key, branch in cases:
                self._case_keys.append(key)
                self._add_child(branch)
            self._add_child(default or Nil(f"{id}.default"))

        self._selected: Optional[Action] = None

    @property
    def selected(self) -> Optional[Action]:
        return self._selected

    def _select(self, value: Any) -> Action:
        if self.boolean:
            return self._children[0] if value else self._children[1]
        for key, branch in zip(self._case_keys, self._children):
            if key == value and isinstance(key, bool) == isinstance(value, bool):
                return branch
        return self._children[-1]

    def _start(self, ctx: "TickContext") -> None:
        value = ctx.store.require(self.in_control)
        self._selected = self._select(value)
        logger.debug(f"Switch '{self._id}' selected '{self._selected.id}' for {value!r}")
        self._selected.start(ctx)
        if self._selected.is_done:
            self._complete(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        outcome = self._selected.tick(ctx)
        return TickOutcome(done=outcome.done, redraw_requested=outcome.redraw_requested)

    def deadline(self) -> Optional[float]:
        if self.is_active and self._selected is not None:
            return self._selected.deadline()
        return None

    def config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {"in_control": self.in_control}
        if not self.boolean:
            config["cases"] = list(self._case_keys)
        return config


__all__ = [
    "Delayed",
    "Repeat",
    "Switch",
    "Timeout",
    "Until",
]
