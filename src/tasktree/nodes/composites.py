"""
Composite Nodes - Nodes that orchestrate multiple children.

- Sequence (seq): children strictly one after another
- Parallel (par): all children at once, done when all/any are done
- Horizontal / Vertical: spatial layouts with the lifecycle of par(any)

Error codes:
- E2006: Invalid child count or layout weights
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ..errors import ConfigError
from ..render import Frame
from ..state.base import TickOutcome
from .base import Action, CompositeAction

if TYPE_CHECKING:
    from ..core.context import TickContext

logger = logging.getLogger(__name__)


class Sequence(CompositeAction):
    """Run children strictly in order.

    Child i+1 starts only after child i is done; a child that is done as
    soon as it starts lets the next one start within the same tick.
    Done after the last child.
    """

    kind = "seq"

    def __init__(self, id: str, children: Optional[List[Action]] = None, **kwargs: Any) -> None:
        super().__init__(id, children=children, **kwargs)
        self._index = 0

    @property
    def current_index(self) -> int:
        return self._index

    def _start(self, ctx: "TickContext") -> None:
        self._index = 0
        self._advance(ctx)

    def _advance(self, ctx: "TickContext") -> None:
        """Start children from the current index until one stays active."""
        while self._index < len(self._children):
            child = self._children[self._index]
            if child.is_idle:
                child.start(ctx)
            if not child.is_done:
                return
            self._index += 1
        self._complete(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        if self._index >= len(self._children):
            return TickOutcome(done=True)

        outcome = self._children[self._index].tick(ctx)
        if outcome.done:
            self._index += 1
            self._advance(ctx)
        return TickOutcome(done=self.is_done, redraw_requested=outcome.redraw_requested)

    def deadline(self) -> Optional[float]:
        if self.is_active and self._index < len(self._children):
            return self._children[self._index].deadline()
        return None


class ParallelPolicy(str, Enum):
    """When a Parallel is done.

    ALL: every child is done.
    ANY: the first child is done; the others are stopped.
    """

    ALL = "all"
    ANY = "any"


class Parallel(CompositeAction):
    """Run all children at once.

    Every child is started at entry, even when an earlier one is done at
    once. With policy ANY, the first child to finish ends the node: every
    other ACTIVE child is stopped synchronously, exactly once, in
    declaration order, within the same tick.
    """

    kind = "par"
    default_policy = ParallelPolicy.ALL

    def __init__(
        self,
        id: str,
        children: Optional[List[Action]] = None,
        policy: Optional[ParallelPolicy] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(id, children=children, **kwargs)
        if policy is None:
            policy = self.default_policy
        try:
            self.policy = ParallelPolicy(policy)
        except ValueError:
            raise ConfigError(
                f"Node '{id}': policy must be 'all' or 'any', got {policy!r}",
                code="E4003",
            ) from None

    def _start(self, ctx: "TickContext") -> None:
        for child in self._children:
            child.start(ctx)
        if self.policy == ParallelPolicy.ANY and any(child.is_done for child in self._children):
            self._finish_any(ctx)
            return
        self._check_all(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        redraw = False
        for child in self._children:
            if not child.is_active:
                continue
            outcome = child.tick(ctx)
            redraw = redraw or outcome.redraw_requested
            if outcome.done and self.policy == ParallelPolicy.ANY:
                self._finish_any(ctx)
                return TickOutcome(done=True, redraw_requested=redraw)

        self._check_all(ctx)
        return TickOutcome(done=self.is_done, redraw_requested=redraw)

    def _finish_any(self, ctx: "TickContext") -> None:
        for child in self._children:
            if child.is_active:
                child.stop(ctx)
        self._complete(ctx)

    def _check_all(self, ctx: "TickContext") -> None:
        if all(child.is_done for child in self._children):
            self._complete(ctx)

    def deadline(self) -> Optional[float]:
        if not self.is_active:
            return None
        deadlines = [d for d in (child.deadline() for child in self._children) if d is not None]
        return min(deadlines) if deadlines else None

    def config(self) -> Dict[str, Any]:
        return {"policy": self.policy.value}


class _Layout(Parallel):
    """Parallel whose children share the screen along one axis."""

    default_policy = ParallelPolicy.ANY

    def __init__(
        self,
        id: str,
        children: Optional[List[Action]] = None,
        weights: Optional[List[float]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(id, children=children, **kwargs)
        if weights is None:
            weights = [1.0] * len(self._children)
        if len(weights) != len(self._children) or any(w <= 0 for w in weights):
            raise ConfigError(
                f"Node '{id}': weights must be {len(self._children)} positive numbers, "
                f"got {weights!r}",
                code="E2006",
            )
        self.weights = [float(w) for w in weights]

    def add_child(self, child: Action) -> "_Layout":
        super().add_child(child)
        self.weights.append(1.0)
        return self

    def presentation(self) -> Optional[Frame]:
        frames = []
        weights = []
        for child, weight in zip(self._children, self.weights):
            if not child.is_active:
                continue
            frame = child.presentation()
            if frame is not None:
                frames.append(frame)
                weights.append(weight)
        if not frames:
            return None
        return Frame(kind=self.kind, node_id=self._id, children=frames, weights=weights)

    def config(self) -> Dict[str, Any]:
        return {"policy": self.policy.value, "weights": list(self.weights)}


class Horizontal(_Layout):
    kind = "horizontal"


class Vertical(_Layout):
    kind = "vertical"


__all__ = [
    "Horizontal",
    "Parallel",
    "ParallelPolicy",
    "Sequence",
    "Vertical",
]
