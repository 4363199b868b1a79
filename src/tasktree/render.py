"""
Presentation descriptors and the renderer boundary.

Nodes never draw. Each tick the scheduler asks the tree for a Frame, a
nested description of what should be on screen, and hands it to a
Renderer when a redraw was requested. The renderer reports back when the
frame actually became visible so stimulus nodes can time-stamp onsets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


@dataclass
class Frame:
    """What a node (or subtree) wants presented.

    Attributes:
        kind: "instruction", "image", "fixation", "rect", "pointer",
            "horizontal", "vertical" or "group".
        node_id: Id of the node that produced the frame.
        content: Kind-specific fields (text, src, colour, ...).
        children: Nested frames for layouts and groups.
        weights: Relative sizes of children for layouts.
    """

    kind: str
    node_id: str = ""
    content: Dict[str, Any] = field(default_factory=dict)
    children: List["Frame"] = field(default_factory=list)
    weights: List[float] = field(default_factory=list)

    def leaves(self) -> List["Frame"]:
        """Flattened list of frames without children."""
        if not self.children:
            return [self]
        result: List[Frame] = []
        for child in self.children:
            result.extend(child.leaves())
        return result

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "node_id": self.node_id}
        if self.content:
            data["content"] = dict(self.content)
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        if self.weights:
            data["weights"] = list(self.weights)
        return data


def combine_frames(frames: List[Frame], kind: str = "group", node_id: str = "",
                   weights: Optional[List[float]] = None) -> Optional[Frame]:
    """Group child frames; a single unweighted frame is passed through."""
    frames = [frame for frame in frames if frame is not None]
    if not frames:
        return None
    if len(frames) == 1 and kind == "group":
        return frames[0]
    return Frame(kind=kind, node_id=node_id, children=frames, weights=list(weights or []))


class Renderer(Protocol):
    """Something that can put a Frame on screen."""

    def present(self, frame: Optional[Frame], time: float) -> Optional[float]:
        """Present a frame; return the time it became visible, if known."""
        ...


class NullRenderer:
    """Renderer for headless runs: frames are visible immediately."""

    def present(self, frame: Optional[Frame], time: float) -> Optional[float]:
        return time


class RecordingRenderer:
    """Keeps every presented frame with its time, for tests and dry runs.

    `latency` delays the reported visible-since time, like a display that
    shows a frame on a later refresh.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self.frames: List[tuple] = []

    def present(self, frame: Optional[Frame], time: float) -> Optional[float]:
        self.frames.append((time, frame))
        return time + self.latency

    def kinds_at(self, index: int) -> List[str]:
        _, frame = self.frames[index]
        return [leaf.kind for leaf in frame.leaves()] if frame else []


__all__ = [
    "Frame",
    "NullRenderer",
    "RecordingRenderer",
    "Renderer",
    "combine_frames",
]
