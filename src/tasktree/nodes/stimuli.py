"""
Stimulus nodes: things that put something on screen.

Stimuli never draw; they describe themselves as a Frame. Without a
`duration` they stay up until a parent stops them (timeout, until, par).
With one they are done `duration` seconds after start.

- Instruction: text with an optional header
- Image: image file (checked when the node starts)
- Fixation: fixation cross
- Rect: coloured rectangle, optionally hosting a child
- Pointer: presents its child and completes on pointer input
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

from ..errors import ConfigError
from ..render import Frame
from ..state.base import TickOutcome, time_reached
from .base import Action, DecoratorAction, LeafAction
from .leaves import check_duration

if TYPE_CHECKING:
    from ..core.context import TickContext

logger = logging.getLogger(__name__)


class _Stimulus(LeafAction):
    """Leaf with a presentation and an optional display duration."""

    presents = True

    def __init__(self, id: str, duration: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(id, **kwargs)
        self.duration = check_duration(id, "duration", duration, allow_none=True)
        self.visible_since: Optional[float] = None

    def _start(self, ctx: "TickContext") -> None:
        self.visible_since = None

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        if self.duration is not None and time_reached(ctx.now, self._started_at + self.duration):
            return TickOutcome(done=True, redraw_requested=True)
        return TickOutcome()

    def deadline(self) -> Optional[float]:
        if self.is_active and self.duration is not None:
            return self._started_at + self.duration
        return None

    def mark_presented(self, timestamp: float) -> None:
        if self.visible_since is None:
            self.visible_since = timestamp

    def content(self) -> Dict[str, Any]:
        return {}

    def presentation(self) -> Optional[Frame]:
        if not self.is_active:
            return None
        return Frame(kind=self.kind, node_id=self._id, content=self.content())

    def config(self) -> Dict[str, Any]:
        config = dict(self.content())
        if self.duration is not None:
            config["duration"] = self.duration
        return config


class Instruction(_Stimulus):
    kind = "instruction"

    def __init__(self, id: str, text: str, header: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(id, **kwargs)
        if not isinstance(text, str):
            raise ConfigError(f"Node '{id}': text must be a string", code="E4003")
        self.text = text
        self.header = header

    def content(self) -> Dict[str, Any]:
        content: Dict[str, Any] = {"text": self.text}
        if self.header is not None:
            content["header"] = self.header
        return content


class Image(_Stimulus):
    """Image stimulus. A missing file raises AssetError when the node starts."""

    kind = "image"

    def __init__(self, id: str, src: str, width: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(id, **kwargs)
        if not src or not isinstance(src, str):
            raise ConfigError(f"Node '{id}': src must be a non-empty string", code="E4003")
        self.src = src
        self.width = width
        self.path = None

    def _start(self, ctx: "TickContext") -> None:
        super()._start(ctx)
        if ctx.assets is not None:
            self.path = ctx.assets.resolve(self.src)

    def content(self) -> Dict[str, Any]:
        content: Dict[str, Any] = {"src": self.src}
        if self.width is not None:
            content["width"] = self.width
        return content

    def presentation(self) -> Optional[Frame]:
        frame = super().presentation()
        if frame is not None and self.path is not None:
            frame.content["path"] = str(self.path)
        return frame


class Fixation(_Stimulus):
    kind = "fixation"


class Rect(DecoratorAction):
    """Coloured rectangle.

    With a child, the rectangle is the child's background and the node
    follows the child's lifecycle (or its own duration, whichever ends
    first). Without one it behaves like any other stimulus.
    """

    kind = "rect"
    presents = True

    def __init__(
        self,
        id: str,
        colour: Any = "white",
        width: Optional[float] = None,
        height: Optional[float] = None,
        duration: Optional[float] = None,
        child: Optional[Action] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(id, child=child, **kwargs)
        self.colour = colour
        self.width = width
        self.height = height
        self.duration = check_duration(id, "duration", duration, allow_none=True)
        self.visible_since: Optional[float] = None

    def _start(self, ctx: "TickContext") -> None:
        self.visible_since = None
        if self._children:
            self.child.start(ctx)
            if self.child.is_done:
                self._complete(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        redraw = False
        if self._children:
            outcome = self.child.tick(ctx)
            if outcome.done:
                return TickOutcome(done=True, redraw_requested=True)
            redraw = outcome.redraw_requested
        if self.duration is not None and time_reached(ctx.now, self._started_at + self.duration):
            if self._children:
                self.child.stop(ctx)
            return TickOutcome(done=True, redraw_requested=True)
        return TickOutcome(redraw_requested=redraw)

    def deadline(self) -> Optional[float]:
        if not self.is_active:
            return None
        deadlines = []
        if self.duration is not None:
            deadlines.append(self._started_at + self.duration)
        if self._children and self.child.deadline() is not None:
            deadlines.append(self.child.deadline())
        return min(deadlines) if deadlines else None

    def mark_presented(self, timestamp: float) -> None:
        if self.visible_since is None:
            self.visible_since = timestamp

    def content(self) -> Dict[str, Any]:
        content: Dict[str, Any] = {"colour": self.colour}
        if self.width is not None:
            content["width"] = self.width
        if self.height is not None:
            content["height"] = self.height
        return content

    def presentation(self) -> Optional[Frame]:
        if not self.is_active:
            return None
        frame = Frame(kind=self.kind, node_id=self._id, content=self.content())
        if self._children and self.child.is_active:
            inner = self.child.presentation()
            if inner is not None:
                frame.children.append(inner)
        return frame

    def config(self) -> Dict[str, Any]:
        config = self.content()
        if self.duration is not None:
            config["duration"] = self.duration
        return config


class Counter(LeafAction):
    """Button that has to be clicked `count` times.

    Each click in the node's group decrements the remaining count; the
    node is done when it reaches zero (immediately when `count` is 0).
    Writes the remaining count to the `count` output if bound.
    """

    kind = "counter"
    presents = True

    def __init__(self, id: str, count: int = 3, group: str = "pointer", **kwargs: Any) -> None:
        super().__init__(id, group=group, **kwargs)
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ConfigError(
                f"Node '{id}': count must be a non-negative integer, got {count!r}",
                code="E4003",
            )
        self.count = count
        self.remaining = count

    def _start(self, ctx: "TickContext") -> None:
        self.remaining = self.count
        self._write(ctx, "count", self.remaining)
        if self.remaining == 0:
            self._complete(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        clicks = len(ctx.events_in(self.group, kinds=("click",)))
        if not clicks:
            return TickOutcome()
        self.remaining = max(0, self.remaining - clicks)
        self._write(ctx, "count", self.remaining)
        return TickOutcome(done=self.remaining == 0, redraw_requested=True)

    def presentation(self) -> Optional[Frame]:
        if not self.is_active:
            return None
        return Frame(
            kind=self.kind,
            node_id=self._id,
            content={"text": f"Click me {self.remaining} more times", "remaining": self.remaining},
        )

    def config(self) -> Dict[str, Any]:
        return {"count": self.count}


class PointerMode(str, Enum):
    """When a Pointer is done.

    CLICK: any click in its group.
    HIT: a click the renderer reports as landing on the child.
    RELEASE: a button release.
    NEVER: only tracks the position; done when the child is done.
    """

    CLICK = "click"
    HIT = "hit"
    RELEASE = "release"
    NEVER = "never"


class Pointer(DecoratorAction):
    """Present a child and react to pointer input.

    Writes the latest pointer position of each tick to the `x` / `y`
    outputs if bound. Done per `until` mode or when the child is done.
    """

    kind = "pointer"

    def __init__(
        self,
        id: str,
        child: Optional[Action] = None,
        until: str = "click",
        group: str = "pointer",
        out_x: Optional[int] = None,
        out_y: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        out_mapping = dict(kwargs.pop("out_mapping", None) or {})
        if out_x is not None:
            out_mapping["x"] = out_x
        if out_y is not None:
            out_mapping["y"] = out_y
        super().__init__(id, child=child, group=group, out_mapping=out_mapping, **kwargs)
        try:
            self.until = PointerMode(until)
        except ValueError:
            raise ConfigError(
                f"Node '{id}': until must be one of "
                f"{[mode.value for mode in PointerMode]}, got {until!r}",
                code="E4003",
            ) from None
        self.last_position = None

    def _start(self, ctx: "TickContext") -> None:
        self.child.start(ctx)
        if self.child.is_done:
            self._complete(ctx)

    def _finished_by(self, event: Any) -> bool:
        if self.until == PointerMode.CLICK:
            return event.kind == "click"
        if self.until == PointerMode.HIT:
            return event.kind == "click" and bool(event.payload.get("hit"))
        if self.until == PointerMode.RELEASE:
            return event.kind == "release"
        return False

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        finished = False
        moved = False
        for event in ctx.events_in(self.group):
            if event.position is not None:
                self.last_position = event.position
                moved = True
            if self._finished_by(event):
                finished = True
                break

        if moved:
            self._write(ctx, "x", self.last_position[0])
            self._write(ctx, "y", self.last_position[1])

        if finished:
            self.child.stop(ctx)
            return TickOutcome(done=True, redraw_requested=True)

        outcome = self.child.tick(ctx)
        return TickOutcome(done=outcome.done, redraw_requested=outcome.redraw_requested)

    def deadline(self) -> Optional[float]:
        return self.child.deadline() if self.is_active else None

    def presentation(self) -> Optional[Frame]:
        if not self.is_active:
            return None
        inner = self.child.presentation()
        return Frame(
            kind=self.kind,
            node_id=self._id,
            content={"until": self.until.value},
            children=[inner] if inner is not None else [],
        )

    def config(self) -> Dict[str, Any]:
        return {"until": self.until.value}


__all__ = [
    "Counter",
    "Fixation",
    "Image",
    "Instruction",
    "Pointer",
    "PointerMode",
    "Rect",
]
