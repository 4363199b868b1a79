"""
Action Base Class - Base abstraction for all action tree nodes.

Every node goes through IDLE -> ACTIVE -> DONE exactly once per instance:

    start(ctx)  IDLE -> ACTIVE, runs _start() (may complete immediately)
    tick(ctx)   ACTIVE only, runs _tick(); a done outcome moves to DONE
    stop(ctx)   ACTIVE only, stops active descendants depth-first, runs
                _stop(), moves to DONE; a no-op in any other state

Override _start(), _tick() and _stop(), NOT the public methods.

Error codes:
- E2001: Invalid node ID format
- E2002: Lifecycle violation (start on a non-idle node)
- E3005: Non-engine exception raised by a node (wrapped)
"""

from __future__ import annotations

import copy
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Mapping, Optional, TYPE_CHECKING

from ..errors import ConfigError, TaskTreeError
from ..render import Frame, combine_frames
from ..state.base import Lifecycle, NodeType, TickOutcome, Value

if TYPE_CHECKING:
    from ..core.context import TickContext

logger = logging.getLogger(__name__)

# Must start with letter, followed by letters, numbers, underscores, hyphens or dots
NODE_ID_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.-]*$")


class Action(ABC):
    """Base class for all action tree nodes.

    Provides:
    - Lifecycle tracking (IDLE, ACTIVE, DONE) and idempotent stop
    - Hierarchical structure (parent/children) and path tracking
    - Line bindings (in_mapping: line -> role, out_mapping: role -> line)
    - Presentation aggregation and debug information

    Invariants:
    - DONE is terminal for an instance; repeating subtrees re-instantiate
    - stop() never has side effects unless the node is ACTIVE
    - A node started during a tick is first ticked on the next tick

    Usage:
        class Beep(LeafAction):
            kind = "beep"

            def _start(self, ctx: TickContext) -> None:
                self._complete(ctx)
    """

    kind = "action"

    # Stimulus nodes request a redraw whenever they appear or disappear.
    presents = False

    def __init__(
        self,
        id: str,
        name: Optional[str] = None,
        group: Optional[str] = None,
        in_mapping: Optional[Mapping[int, str]] = None,
        out_mapping: Optional[Mapping[str, int]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize an action.

        Args:
            id: Unique identifier within the tree.
            name: Human-readable name. Defaults to id.
            group: Input/log group the node listens or writes to.
            in_mapping: Line id -> role for lines the node reads.
            out_mapping: Role -> line id for lines the node writes.
            metadata: Arbitrary metadata for debugging/tooling.

        Raises:
            ConfigError: If id doesn't match the required pattern (E2001).
        """
        if not id or not isinstance(id, str) or not NODE_ID_PATTERN.match(id):
            raise ConfigError(
                f"Invalid node ID {id!r}: must match {NODE_ID_PATTERN.pattern}",
                code="E2001",
            )

        self._id = id
        self._name = name if name else id
        self.group = group
        self.in_mapping: Dict[int, str] = dict(in_mapping or {})
        self.out_mapping: Dict[str, int] = dict(out_mapping or {})
        self._metadata = metadata or {}

        self._state = Lifecycle.IDLE
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._tick_count = 0

        self._parent: Optional[Action] = None
        self._children: List[Action] = []

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    @abstractmethod
    def node_type(self) -> NodeType:
        """COMPOSITE, DECORATOR, or LEAF."""

    @property
    def state(self) -> Lifecycle:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state == Lifecycle.IDLE

    @property
    def is_active(self) -> bool:
        return self._state == Lifecycle.ACTIVE

    @property
    def is_done(self) -> bool:
        return self._state == Lifecycle.DONE

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    @property
    def finished_at(self) -> Optional[float]:
        return self._finished_at

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def children(self) -> List["Action"]:
        """Declared child nodes (empty for LEAF)."""
        return list(self._children)

    @property
    def parent(self) -> Optional["Action"]:
        return self._parent

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self._metadata)

    # =========================================================================
    # Hierarchy Management
    # =========================================================================

    def _add_child(self, child: "Action") -> None:
        """Add a child node. Internal method for tree construction.

        Raises:
            ValueError: If child already has a parent.
        """
        if child._parent is not None:
            raise ValueError(
                f"Node '{child.id}' already has parent '{child._parent.id}'"
            )
        child._parent = self
        self._children.append(child)

    def active_children(self) -> List["Action"]:
        """Live child instances that are currently ACTIVE."""
        return [child for child in self._children if child.is_active]

    def live_children(self) -> List["Action"]:
        """Child instances that belong to the running tree.

        Differs from `children` for nodes that re-instantiate a template.
        """
        return list(self._children)

    def walk(self) -> Iterator["Action"]:
        """Declared nodes depth-first, this node first."""
        yield self
        for child in self._children:
            yield from child.walk()

    def bound_lines(self) -> List[int]:
        """Line ids this node reads or writes."""
        lines = list(self.in_mapping)
        lines.extend(self.out_mapping.values())
        return lines

    def instantiate(self) -> "Action":
        """Fresh IDLE copy of this (pristine) subtree, detached from its parent."""
        if not self.is_idle:
            raise TaskTreeError(
                f"Cannot instantiate node '{self._id}' in state {self._state.name}",
                code="E2002",
            )
        memo: Dict[int, Any] = {}
        if self._parent is not None:
            memo[id(self._parent)] = None
        return copy.deepcopy(self, memo)

    # =========================================================================
    # Main Lifecycle Methods
    # =========================================================================

    def start(self, ctx: "TickContext") -> None:
        """Activate the node at ctx.now.

        DO NOT override - override _start() instead.

        Raises:
            TaskTreeError: If the node is not IDLE (E2002).
        """
        if not self.is_idle:
            raise TaskTreeError(
                f"Cannot start node '{self._id}' in state {self._state.name}",
                code="E2002",
                node_path=ctx.get_current_path() or self._id,
            )

        ctx.push_path(self._id)
        try:
            self._state = Lifecycle.ACTIVE
            self._started_at = ctx.now
            ctx.trace(self._id, "start")
            if self.presents:
                ctx.request_redraw()
            self._start(ctx)
        except TaskTreeError as e:
            e.attach_path(ctx.get_current_path())
            raise
        except Exception as e:
            raise self._unexpected(ctx, e) from e
        finally:
            ctx.pop_path()

    def tick(self, ctx: "TickContext") -> TickOutcome:
        """Advance the node by one tick.

        DO NOT override - override _tick() instead.

        Ticking a node that is not ACTIVE does nothing and reports whether
        it is DONE, so parents can treat immediately-complete children the
        same as ones that finished in an earlier tick.
        """
        if not self.is_active:
            return TickOutcome(done=self.is_done)

        ctx.push_path(self._id)
        try:
            outcome = self._tick(ctx)
            self._tick_count += 1
            if outcome.done and self.is_active:
                self._complete(ctx)
        except TaskTreeError as e:
            e.attach_path(ctx.get_current_path())
            raise
        except Exception as e:
            raise self._unexpected(ctx, e) from e
        finally:
            ctx.pop_path()

        return TickOutcome(done=self.is_done, redraw_requested=outcome.redraw_requested)

    def stop(self, ctx: "TickContext") -> None:
        """Forcibly end an ACTIVE node.

        Active descendants are stopped first, depth-first in declaration
        order, then _stop() runs and the node becomes DONE. Calling stop()
        on an IDLE or DONE node has no effect.
        """
        if not self.is_active:
            return

        ctx.push_path(self._id)
        try:
            for child in self.active_children():
                child.stop(ctx)
            self._stop(ctx)
            self._state = Lifecycle.DONE
            self._finished_at = ctx.now
            ctx.trace(self._id, "stop")
            if self.presents:
                ctx.request_redraw()
        except TaskTreeError as e:
            e.attach_path(ctx.get_current_path())
            raise
        except Exception as e:
            raise self._unexpected(ctx, e) from e
        finally:
            ctx.pop_path()

    def _unexpected(self, ctx: "TickContext", error: Exception) -> TaskTreeError:
        """Wrap a non-engine exception so the run aborts like any other error (E3005)."""
        logger.error(
            f"Node '{self._id}' raised {type(error).__name__}: {error}",
            exc_info=True,
        )
        return TaskTreeError(
            f"{type(error).__name__}: {error}",
            code="E3005",
            node_path=ctx.get_current_path() or self._id,
        )

    def _complete(self, ctx: "TickContext") -> None:
        """Mark the node DONE by natural completion."""
        if not self.is_active:
            return
        self._on_complete(ctx)
        self._state = Lifecycle.DONE
        self._finished_at = ctx.now
        ctx.trace(self._id, "done")
        if self.presents:
            ctx.request_redraw()

    # =========================================================================
    # Subclass hooks
    # =========================================================================

    def _start(self, ctx: "TickContext") -> None:
        """Work done at activation (may call self._complete(ctx))."""

    @abstractmethod
    def _tick(self, ctx: "TickContext") -> TickOutcome:
        """Per-tick work. Return TickOutcome(done=True) when finished."""

    def _stop(self, ctx: "TickContext") -> None:
        """Cleanup on forced stop (descendants are already stopped)."""

    def _on_complete(self, ctx: "TickContext") -> None:
        """Cleanup on natural completion."""

    # =========================================================================
    # Timing and presentation
    # =========================================================================

    def deadline(self) -> Optional[float]:
        """Run time of this node's next pending timer, if any."""
        return None

    def presentation(self) -> Optional[Frame]:
        """What this subtree wants on screen right now.

        Default: the frames of all active children, grouped.
        """
        frames = [child.presentation() for child in self.live_children() if child.is_active]
        return combine_frames([frame for frame in frames if frame is not None],
                              node_id=self._id)

    def mark_presented(self, timestamp: float) -> None:
        """Renderer feedback: this node's frame became visible at timestamp."""

    # =========================================================================
    # Line helpers
    # =========================================================================

    def output_line(self, role: str) -> Optional[int]:
        return self.out_mapping.get(role)

    def _write(self, ctx: "TickContext", role: str, value: Value) -> bool:
        """Write to the line bound to an output role, if any."""
        line = self.out_mapping.get(role)
        if line is None:
            return False
        ctx.store.write(line, value, writer=self._id)
        return True

    # =========================================================================
    # Debug
    # =========================================================================

    def config(self) -> Dict[str, Any]:
        """Kind-specific configuration, for debugging and serialization."""
        return {}

    def debug_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "id": self._id,
            "name": self._name,
            "kind": self.kind,
            "node_type": self.node_type.value,
            "state": self._state.name,
            "started_at": self._started_at,
            "finished_at": self._finished_at,
            "tick_count": self._tick_count,
            "parent_id": self._parent._id if self._parent else None,
            "config": self.config(),
        }
        if self.group is not None:
            info["group"] = self.group
        if self.in_mapping:
            info["in_mapping"] = dict(self.in_mapping)
        if self.out_mapping:
            info["out_mapping"] = dict(self.out_mapping)
        if self._children:
            info["children_ids"] = [child._id for child in self._children]
        return info

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"id='{self._id}', "
            f"state={self._state.name}, "
            f"ticks={self._tick_count})"
        )


class LeafAction(Action):
    """Node without children."""

    @property
    def node_type(self) -> NodeType:
        return NodeType.LEAF

    def presentation(self) -> Optional[Frame]:
        return None


class CompositeAction(Action):
    """Node with any number of children, in declaration order."""

    def __init__(self, id: str, children: Optional[List[Action]] = None, **kwargs: Any) -> None:
        super().__init__(id, **kwargs)
        for child in children or []:
            self._add_child(child)

    @property
    def node_type(self) -> NodeType:
        return NodeType.COMPOSITE

    def add_child(self, child: Action) -> "CompositeAction":
        """Add a child (builder API). Returns self for chaining."""
        self._add_child(child)
        return self


class DecoratorAction(Action):
    """Node wrapping exactly one child."""

    def __init__(self, id: str, child: Optional[Action] = None, **kwargs: Any) -> None:
        super().__init__(id, **kwargs)
        if child is not None:
            self._add_child(child)

    @property
    def node_type(self) -> NodeType:
        return NodeType.DECORATOR

    @property
    def child(self) -> Action:
        if not self._children:
            raise ConfigError(f"Decorator '{self._id}' has no child", code="E2003")
        return self._children[0]

    def set_child(self, child: Action) -> "DecoratorAction":
        """Set the wrapped child (builder API)."""
        if self._children:
            raise ConfigError(
                f"Decorator '{self._id}' already has a child", code="E2003"
            )
        self._add_child(child)
        return self


class PresentationOnset:
    """Mixin for nodes that time themselves from when the screen changed.

    `_onset` is the run time the node started. If the renderer reports a
    visible-since timestamp for the frame of the node's start tick, the
    onset moves to that timestamp. Reports after the first tick are
    ignored, since they belong to later frames.
    """

    _onset: float = 0.0
    _awaiting_presentation: bool = False

    def _begin_onset(self, ctx: "TickContext") -> None:
        self._onset = ctx.now
        self._awaiting_presentation = True

    def _end_onset_window(self) -> None:
        self._awaiting_presentation = False

    def mark_presented(self, timestamp: float) -> None:
        if self._awaiting_presentation:
            self._awaiting_presentation = False
            self._onset = max(self._onset, timestamp)
            self._onset_moved()
        super().mark_presented(timestamp)

    def _onset_moved(self) -> None:
        """Hook: the onset changed after start."""


__all__ = [
    "Action",
    "CompositeAction",
    "DecoratorAction",
    "LeafAction",
    "NODE_ID_PATTERN",
    "PresentationOnset",
]
