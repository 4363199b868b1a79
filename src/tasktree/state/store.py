"""
VariableStore - Per-run mapping from integer line ids to typed values.

Lines are declared once when a block is built (every line referenced by a
binding, plus the block's initial state). Reading a declared line that was
never written returns UNBOUND; writing an undeclared line is an error.

Each line tracks:
- value: bool, int, float, str or TRIGGER
- version: incremented on every write
- written_tick: tick index of the last write
- dirty: whether it was written during the current tick

Error codes:
- E1001: Read or write of an undeclared line
- E1002: Invalid value type
- E1003: Unbound read where a value is required
- E1004: Line id collision in the initial state
- E1005: Invalid line id
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from ..errors import VariableError
from .base import TRIGGER, UNBOUND, Value, _Trigger

logger = logging.getLogger(__name__)


@dataclass
class _Line:
    value: Any = UNBOUND
    version: int = 0
    written_tick: int = -1
    writer: Optional[str] = None


def coerce_line_id(raw: Any) -> int:
    """Convert a line id as written in a definition to a positive int.

    Lua hands numbers over as floats and table keys may arrive as strings.

    Raises:
        VariableError: If the id is not a positive integer (E1005).
    """
    if isinstance(raw, bool):
        raise VariableError(f"Invalid line id {raw!r}", code="E1005")
    if isinstance(raw, float):
        if not raw.is_integer():
            raise VariableError(f"Invalid line id {raw!r}", code="E1005")
        raw = int(raw)
    elif isinstance(raw, str):
        try:
            raw = int(raw.strip())
        except ValueError:
            raise VariableError(f"Invalid line id {raw!r}", code="E1005") from None
    if not isinstance(raw, int) or raw <= 0:
        raise VariableError(f"Invalid line id {raw!r}", code="E1005")
    return raw


def _check_value(line: int, value: Any) -> None:
    if isinstance(value, (bool, int, float, str, _Trigger)):
        return
    raise VariableError(
        f"Line {line} cannot hold value of type {type(value).__name__}",
        code="E1002",
    )


class VariableStore:
    """Shared variable store for one run.

    Single-threaded: only the scheduler's tick walk reads and writes it.
    Same-tick races are resolved by walk order (the last writer wins) and
    recorded as warnings.

    Usage:
        store = VariableStore()
        store.declare_many([1, 2])
        store.write(1, 0.5)
        store.read(1)        # 0.5
        store.read(2)        # UNBOUND
        store.clear_dirty()  # end of tick
    """

    def __init__(self) -> None:
        self._lines: Dict[int, _Line] = {}
        self._dirty: Set[int] = set()
        self._tick = 0
        self._warnings: List[str] = []

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Optional[Mapping[Any, Any]] = None,
        declared: Iterable[int] = (),
    ) -> "VariableStore":
        """Create a store with declared lines and initial values.

        Initial values are not marked dirty and carry version 1, so nodes
        that wait for a change do not fire on them.

        Raises:
            VariableError: On a collision between snapshot ids (E1004).
        """
        store = cls()
        store.declare_many(declared)

        seen: Dict[int, Any] = {}
        for raw_id, value in (snapshot or {}).items():
            line = coerce_line_id(raw_id)
            if line in seen:
                raise VariableError(
                    f"Line id collision: {raw_id!r} maps to line {line} "
                    f"which is already initialized",
                    code="E1004",
                )
            seen[line] = value

        for line, value in seen.items():
            store.declare(line)
            _check_value(line, value)
            state = store._lines[line]
            state.value = value
            state.version = 1
        return store

    # =========================================================================
    # Declaration
    # =========================================================================

    def declare(self, line: int) -> None:
        """Register a line id. Declaring twice is a no-op."""
        line = coerce_line_id(line)
        self._lines.setdefault(line, _Line())

    def declare_many(self, lines: Iterable[int]) -> None:
        for line in lines:
            self.declare(line)

    def is_declared(self, line: int) -> bool:
        return line in self._lines

    @property
    def lines(self) -> List[int]:
        return sorted(self._lines)

    def _get(self, line: int) -> _Line:
        try:
            return self._lines[line]
        except KeyError:
            raise VariableError(
                f"Line {line} is not declared in this run",
                code="E1001",
            ) from None

    # =========================================================================
    # Access
    # =========================================================================

    def read(self, line: int) -> Union[Value, Any]:
        """Current value of a line, or UNBOUND if never written."""
        return self._get(line).value

    def require(self, line: int) -> Value:
        """Current value of a line.

        Raises:
            VariableError: If the line is unbound (E1003).
        """
        value = self._get(line).value
        if value is UNBOUND:
            raise VariableError(f"Line {line} is unbound", code="E1003")
        return value

    def is_bound(self, line: int) -> bool:
        return self._get(line).value is not UNBOUND

    def write(self, line: int, value: Value, writer: Optional[str] = None) -> None:
        """Write a value, mark the line dirty and bump its version.

        A second write to the same line in one tick overwrites the first
        and records a warning.

        Raises:
            VariableError: If the line is undeclared (E1001) or the value
                has an unsupported type (E1002).
        """
        state = self._get(line)
        _check_value(line, value)

        if line in self._dirty and state.written_tick == self._tick:
            message = (
                f"[E1006] Line {line} written twice in tick {self._tick} "
                f"(by '{state.writer}' then '{writer}'); keeping the later value"
            )
            logger.warning(message)
            self._warnings.append(message)

        state.value = value
        state.version += 1
        state.written_tick = self._tick
        state.writer = writer
        self._dirty.add(line)

    def trigger(self, line: int, writer: Optional[str] = None) -> None:
        """Write the value-less TRIGGER marker."""
        self.write(line, TRIGGER, writer=writer)

    # =========================================================================
    # Change tracking
    # =========================================================================

    def is_dirty(self, line: int) -> bool:
        """Whether the line was written during the current tick."""
        self._get(line)
        return line in self._dirty

    def version(self, line: int) -> int:
        return self._get(line).version

    def written_tick(self, line: int) -> int:
        """Tick index of the last write, or -1 if never written in this run."""
        return self._get(line).written_tick

    @property
    def tick(self) -> int:
        """Index of the tick currently being walked."""
        return self._tick

    def clear_dirty(self) -> None:
        """End the current tick: clear dirty flags and advance the tick index."""
        self._dirty.clear()
        self._tick += 1

    def drain_warnings(self) -> List[str]:
        warnings, self._warnings = self._warnings, []
        return warnings

    # =========================================================================
    # Debug
    # =========================================================================

    def snapshot(self) -> Dict[int, Any]:
        """Plain dict of all bound lines."""
        return {
            line: state.value
            for line, state in sorted(self._lines.items())
            if state.value is not UNBOUND
        }

    def debug_info(self) -> Dict[str, Any]:
        return {
            "tick": self._tick,
            "lines": {
                line: {
                    "value": repr(state.value),
                    "version": state.version,
                    "written_tick": state.written_tick,
                    "writer": state.writer,
                }
                for line, state in sorted(self._lines.items())
            },
            "dirty": sorted(self._dirty),
        }

    def __repr__(self) -> str:
        return f"VariableStore(lines={len(self._lines)}, tick={self._tick})"


__all__ = [
    "VariableStore",
    "coerce_line_id",
]
