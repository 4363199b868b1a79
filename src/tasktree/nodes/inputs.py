"""
Input-driven leaves.

- EventWait ("event"): done at the first matching input event
- Reaction: scores responses against a schedule of stimulus onsets
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from ..errors import ConfigError, TimingError
from ..state.base import TickOutcome, time_reached
from .base import LeafAction, PresentationOnset
from .leaves import check_duration

if TYPE_CHECKING:
    from ..core.context import TickContext

logger = logging.getLogger(__name__)


class EventWait(LeafAction):
    """Done when an input event arrives in `group`.

    Optionally limited to some event kinds or key names. The key of the
    matching event is written to the `key` output if bound.
    """

    kind = "event"

    def __init__(
        self,
        id: str,
        group: str,
        kinds: Optional[Sequence[str]] = None,
        keys: Optional[Sequence[str]] = None,
        out_key: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        out_mapping = dict(kwargs.pop("out_mapping", None) or {})
        if out_key is not None:
            out_mapping["key"] = out_key
        super().__init__(id, group=group, out_mapping=out_mapping, **kwargs)
        self.kinds: Optional[Tuple[str, ...]] = tuple(kinds) if kinds else None
        self.keys: Optional[Tuple[str, ...]] = tuple(keys) if keys else None
        self.matched = None

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        events = ctx.events_in(self.group, self.kinds, self.keys)
        if not events:
            return TickOutcome()
        self.matched = events[0]
        key = self.matched.key_name
        if key is not None:
            self._write(ctx, "key", key)
        return TickOutcome(done=True)

    def config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        if self.kinds:
            config["kinds"] = list(self.kinds)
        if self.keys:
            config["keys"] = list(self.keys)
        return config


class Reaction(PresentationOnset, LeafAction):
    """Score responses against stimulus onsets.

    `times` are onsets in seconds relative to this node's start, or to when
    the frame of its start tick became visible if the renderer reports
    that. Each input event in `group` is matched to the latest onset at or
    before it that has not been answered yet; it is a hit if it comes
    within `tol` seconds of that onset. Once the window of the last onset
    closes the node writes its statistics and is done:

        accuracy = hits / responses
        recall   = hits / onsets
        mean_rt  = mean reaction time over hits (0.0 without hits)

    When stopped early it writes the same statistics over the onsets that
    have already occurred.
    """

    kind = "reaction"

    def __init__(
        self,
        id: str,
        times: Sequence[float],
        tol: float,
        group: str = "keypress",
        out_accuracy: Optional[int] = None,
        out_recall: Optional[int] = None,
        out_mean_rt: Optional[int] = None,
        kinds: Optional[Sequence[str]] = ("key_down",),
        **kwargs: Any,
    ) -> None:
        out_mapping = dict(kwargs.pop("out_mapping", None) or {})
        for role, line in (("accuracy", out_accuracy), ("recall", out_recall),
                           ("mean_rt", out_mean_rt)):
            if line is not None:
                out_mapping[role] = line
        super().__init__(id, group=group, out_mapping=out_mapping, **kwargs)

        if not times:
            raise ConfigError(f"Node '{id}': reaction needs at least one onset", code="E4003")
        onsets = [float(t) for t in times]
        if any(t < 0 for t in onsets) or onsets != sorted(onsets):
            raise TimingError(
                f"Node '{id}': onset times must be non-negative and ascending, got {list(times)}",
                code="E6003",
            )
        self.times = onsets
        self.tol = check_duration(id, "tol", tol)
        self.kinds: Optional[Tuple[str, ...]] = tuple(kinds) if kinds else None

        self.responses = 0
        self.reaction_times: List[float] = []
        self._answered: List[bool] = []

    # =========================================================================
    # Statistics
    # =========================================================================

    @property
    def hits(self) -> int:
        return len(self.reaction_times)

    def stats(self, onsets: Optional[int] = None) -> Dict[str, float]:
        onsets = len(self.times) if onsets is None else onsets
        hits = self.hits
        return {
            "accuracy": hits / self.responses if self.responses else 0.0,
            "recall": hits / onsets if onsets else 0.0,
            "mean_rt": sum(self.reaction_times) / hits if hits else 0.0,
        }

    def _publish(self, ctx: "TickContext", onsets: Optional[int] = None) -> None:
        for role, value in self.stats(onsets).items():
            self._write(ctx, role, value)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _start(self, ctx: "TickContext") -> None:
        self._begin_onset(ctx)
        self.responses = 0
        self.reaction_times = []
        self._answered = [False] * len(self.times)

    def _respond(self, at: float) -> None:
        self.responses += 1
        candidate = None
        for index, onset in enumerate(self.times):
            if not time_reached(at, onset):
                break
            if not self._answered[index]:
                candidate = index
        if candidate is None:
            return
        rt = max(0.0, at - self.times[candidate])
        if rt <= self.tol:
            self._answered[candidate] = True
            self.reaction_times.append(rt)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        self._end_onset_window()
        for event in ctx.events_in(self.group, self.kinds):
            self._respond(event.timestamp - self._onset)

        if time_reached(ctx.now, self._onset + self.times[-1] + self.tol):
            self._publish(ctx)
            return TickOutcome(done=True)
        return TickOutcome()

    def _stop(self, ctx: "TickContext") -> None:
        elapsed = ctx.now - self._onset
        occurred = sum(1 for onset in self.times if time_reached(elapsed, onset))
        self._publish(ctx, occurred)

    def deadline(self) -> Optional[float]:
        if not self.is_active:
            return None
        return self._onset + self.times[-1] + self.tol

    def config(self) -> Dict[str, Any]:
        return {"times": list(self.times), "tol": self.tol}


__all__ = ["EventWait", "Reaction"]
