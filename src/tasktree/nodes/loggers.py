"""
Logging leaves.

Records are buffered in the node and handed to the run's log sink every
`flush_every` records and whenever the node is stopped, so that a run that
is interrupted or aborted still leaves a complete log behind.

- Logger: samples bound lines each time they are written
- KeyLogger: raw key presses of a group, bracketed by start/stop records
- EventLogger: every input event of a group
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ..sinks import LogRecord
from ..state.base import TickOutcome
from .base import LeafAction

if TYPE_CHECKING:
    from ..core.context import TickContext

logger = logging.getLogger(__name__)


class _BufferedLogger(LeafAction):
    """Shared buffering for logger leaves. Never done on its own."""

    default_group = "log"

    def __init__(self, id: str, group: Optional[str] = None,
                 flush_every: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(id, group=group or self.default_group, **kwargs)
        self.flush_every = flush_every
        self._buffer: List[LogRecord] = []
        self.records_written = 0

    def _record(self, ctx: "TickContext", key: str, value: Any, timestamp: Optional[float] = None) -> None:
        self._buffer.append(LogRecord(
            timestamp=ctx.now if timestamp is None else timestamp,
            group=self.group,
            key=key,
            value=value,
        ))
        limit = self.flush_every or ctx.flush_every
        if limit and len(self._buffer) >= limit:
            self._flush(ctx)

    def _flush(self, ctx: "TickContext") -> None:
        if ctx.sink is None:
            if self._buffer:
                logger.debug(
                    f"Logger '{self._id}' has no sink; dropping {len(self._buffer)} records"
                )
            self._buffer.clear()
            return
        for record in self._buffer:
            ctx.sink.append(record)
        self.records_written += len(self._buffer)
        self._buffer.clear()
        ctx.sink.flush()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def _stop(self, ctx: "TickContext") -> None:
        self._flush(ctx)

    def _on_complete(self, ctx: "TickContext") -> None:
        self._flush(ctx)

    def config(self) -> Dict[str, Any]:
        return {"flush_every": self.flush_every} if self.flush_every else {}


class Logger(_BufferedLogger):
    """Log the value of every bound input line each time it is written.

    `in_mapping` maps line ids to the names they are logged under.
    """

    kind = "logger"

    def __init__(self, id: str, **kwargs: Any) -> None:
        super().__init__(id, **kwargs)
        self._versions: Dict[int, int] = {}

    def _start(self, ctx: "TickContext") -> None:
        self._versions = {}
        for line, name in self.in_mapping.items():
            self._versions[line] = ctx.store.version(line)
            # Written earlier in the tick this logger started in.
            if ctx.store.is_dirty(line):
                self._record(ctx, name, ctx.store.read(line))

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        for line, name in self.in_mapping.items():
            version = ctx.store.version(line)
            if version != self._versions[line]:
                self._versions[line] = version
                self._record(ctx, name, ctx.store.read(line))
        return TickOutcome()


class KeyLogger(_BufferedLogger):
    """Log raw key presses of its group.

    Writes an "event": "start" record at start and "event": "stop" when
    stopped, with one "key" record per key press in between.
    """

    kind = "key_logger"
    default_group = "keypress"

    def _start(self, ctx: "TickContext") -> None:
        self._record(ctx, "event", "start")

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        for event in ctx.events_in(self.group, kinds=("key_down",)):
            self._record(ctx, "key", event.key_name, timestamp=event.timestamp)
        return TickOutcome()

    def _stop(self, ctx: "TickContext") -> None:
        self._record(ctx, "event", "stop")
        super()._stop(ctx)


class EventLogger(_BufferedLogger):
    """Log every input event of its group, keyed by event kind."""

    kind = "event_logger"
    default_group = "event"

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        for event in ctx.events_in(self.group):
            self._record(ctx, event.kind, dict(event.payload), timestamp=event.timestamp)
        return TickOutcome()


__all__ = ["EventLogger", "KeyLogger", "Logger"]
