"""
Log sinks receiving records produced by logger nodes and the block runner.

Records are grouped: each logger node writes to its own group, the block
runner writes "mainevent" records (start, finish, interrupt, crash).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Protocol, Union

from .state.base import _Trigger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogRecord:
    """One logged value.

    Attributes:
        timestamp: Run time in seconds.
        group: Log group (e.g. "keypress", "mainevent").
        key: What was logged ("key", "event", a variable name, ...).
        value: The logged value.
    """

    timestamp: float
    group: str
    key: str
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if isinstance(value, _Trigger):
            value = "trigger"
        return {
            "time": self.timestamp,
            "group": self.group,
            "key": self.key,
            "value": value,
        }


class LogSink(Protocol):
    def append(self, record: LogRecord) -> None: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


class MemorySink:
    """Keeps records in memory. Flushed records are visible via `records`."""

    def __init__(self) -> None:
        self._pending: List[LogRecord] = []
        self.records: List[LogRecord] = []
        self.flush_count = 0
        self.closed = False

    def append(self, record: LogRecord) -> None:
        self._pending.append(record)

    def flush(self) -> None:
        self.records.extend(self._pending)
        self._pending.clear()
        self.flush_count += 1

    def close(self) -> None:
        self.flush()
        self.closed = True

    def group(self, name: str) -> List[LogRecord]:
        return [record for record in self.records if record.group == name]

    def values(self, group: str, key: Optional[str] = None) -> List[Any]:
        return [
            record.value
            for record in self.records
            if record.group == group and (key is None or record.key == key)
        ]


class JsonlSink:
    """Writes one JSON object per line to `<directory>/<name>-<stamp>.jsonl`.

    Every flush hits the file, so an aborted run leaves a readable log.
    """

    def __init__(self, directory: Union[str, Path], name: str) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
        self.path = self.directory / f"{safe_name}-{stamp}.jsonl"
        self._pending: List[LogRecord] = []
        self._file: Optional[IO[str]] = None

    def append(self, record: LogRecord) -> None:
        self._pending.append(record)

    def flush(self) -> None:
        if not self._pending:
            return
        if self._file is None:
            self._file = self.path.open("a", encoding="utf-8")
        for record in self._pending:
            self._file.write(json.dumps(record.to_dict(), default=str) + "\n")
        self._pending.clear()
        self._file.flush()

    def close(self) -> None:
        self.flush()
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info(f"Wrote log {self.path}")


__all__ = ["JsonlSink", "LogRecord", "LogSink", "MemorySink"]
