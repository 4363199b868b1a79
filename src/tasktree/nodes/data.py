"""
Data-flow leaves that read and write store lines.

- Clock: writes an incrementing tick count every `step` seconds
- Function: evaluates an expression over constants and input lines
- Merge: republishes whichever of several lines was written most recently

None of these complete on their own; they live as long as their parent
keeps them active.

Error codes:
- E5xxx: Expression errors (see tasktree.expr)
- E1003: Once-mode function with unbound inputs
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

from ..errors import ConfigError, VariableError
from ..expr import compile_expression, evaluate
from ..state.base import TIME_EPSILON, UNBOUND, TickOutcome
from .base import LeafAction
from .leaves import check_duration

if TYPE_CHECKING:
    from ..core.context import TickContext

logger = logging.getLogger(__name__)


class Clock(LeafAction):
    """Periodic tick counter.

    Writes the number of elapsed steps (1, 2, 3, ...) to the `tic` output
    each time a step boundary is reached; with `on_start` it also writes 0
    at start. Step boundaries are measured from the start time, so they do
    not drift with frame jitter. If several boundaries pass within one
    tick, only the latest count is written.
    """

    kind = "clock"

    def __init__(self, id: str, step: float, out_tic: Optional[int] = None,
                 on_start: bool = False, **kwargs: Any) -> None:
        out_mapping = dict(kwargs.pop("out_mapping", None) or {})
        if out_tic is not None:
            out_mapping["tic"] = out_tic
        super().__init__(id, out_mapping=out_mapping, **kwargs)
        self.step = check_duration(id, "step", step)
        self.on_start = bool(on_start)
        self.tics = 0

    def _start(self, ctx: "TickContext") -> None:
        self.tics = 0
        if self.on_start:
            self._write(ctx, "tic", 0)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        elapsed = ctx.now - self._started_at
        tics = int(math.floor(elapsed / self.step + TIME_EPSILON))
        if tics > self.tics:
            self.tics = tics
            self._write(ctx, "tic", tics)
        return TickOutcome()

    def deadline(self) -> Optional[float]:
        if not self.is_active:
            return None
        return self._started_at + (self.tics + 1) * self.step

    def config(self) -> Dict[str, Any]:
        return {"step": self.step, "on_start": self.on_start}


class Function(LeafAction):
    """Expression evaluated over constants and input lines.

    `vars` supplies named constants; `in_mapping` binds input lines to
    variable names. The result goes to the `result` output.

    once=True: evaluate at start (all inputs must be bound), write, done.
    Otherwise: evaluate at start if every input is bound, then again on
    any tick where an input's version changed. Never done.
    """

    kind = "function"

    def __init__(
        self,
        id: str,
        expr: str,
        vars: Optional[Mapping[str, Any]] = None,
        out_result: Optional[int] = None,
        once: bool = False,
        **kwargs: Any,
    ) -> None:
        out_mapping = dict(kwargs.pop("out_mapping", None) or {})
        if out_result is not None:
            out_mapping["result"] = out_result
        super().__init__(id, out_mapping=out_mapping, **kwargs)

        self.expr = expr
        # Syntax errors surface at build time.
        self._compiled = compile_expression(expr)
        self.vars: Dict[str, Any] = dict(vars or {})
        self.once = bool(once)
        overlap = set(self.vars) & set(self.in_mapping.values())
        if overlap:
            raise ConfigError(
                f"Node '{id}': names bound both as constant and input: {sorted(overlap)}",
                code="E4003",
            )
        self._versions: Dict[int, int] = {}
        self.last_result: Any = UNBOUND

    def _inputs_bound(self, ctx: "TickContext") -> bool:
        return all(ctx.store.is_bound(line) for line in self.in_mapping)

    def _evaluate(self, ctx: "TickContext") -> None:
        variables = dict(self.vars)
        for line, name in self.in_mapping.items():
            variables[name] = ctx.store.read(line)
            self._versions[line] = ctx.store.version(line)
        result = evaluate(self._compiled, variables)
        self.last_result = result
        self._write(ctx, "result", result)

    def _start(self, ctx: "TickContext") -> None:
        self._versions = {line: ctx.store.version(line) for line in self.in_mapping}
        if self.once:
            for line in self.in_mapping:
                if not ctx.store.is_bound(line):
                    raise VariableError(
                        f"Function '{self._id}' input line {line} is unbound",
                        code="E1003",
                    )
            self._evaluate(ctx)
            self._complete(ctx)
        elif self._inputs_bound(ctx):
            self._evaluate(ctx)

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        changed = any(
            ctx.store.version(line) != version for line, version in self._versions.items()
        )
        if changed and self._inputs_bound(ctx):
            self._evaluate(ctx)
        return TickOutcome()

    def config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {"expr": self.expr}
        if self.vars:
            config["vars"] = dict(self.vars)
        if self.once:
            config["once"] = True
        return config


class Merge(LeafAction):
    """Fan-in: republish the most recently written of several lines.

    On a tick where one or more inputs were written since the merge last
    looked, the value with the latest write tick is written to `out_one`.
    Several inputs written in the same tick resolve to the first-listed.
    """

    kind = "merge"

    def __init__(self, id: str, in_many: List[int], out_one: int, **kwargs: Any) -> None:
        if not in_many:
            raise ConfigError(f"Node '{id}': merge needs at least one input", code="E4003")
        if len(set(in_many)) != len(in_many):
            raise ConfigError(f"Node '{id}': merge inputs must be distinct", code="E4003")
        if out_one in in_many:
            raise ConfigError(
                f"Node '{id}': merge output line {out_one} is also an input",
                code="E4003",
            )
        in_mapping = dict(kwargs.pop("in_mapping", None) or {})
        for index, line in enumerate(in_many):
            in_mapping[line] = f"in_{index + 1}"
        super().__init__(id, in_mapping=in_mapping, out_mapping={"one": out_one}, **kwargs)
        self.in_many = list(in_many)
        self.out_one = out_one
        self._versions: Dict[int, int] = {}

    def _start(self, ctx: "TickContext") -> None:
        self._versions = {line: ctx.store.version(line) for line in self.in_many}

    def _tick(self, ctx: "TickContext") -> TickOutcome:
        chosen: Optional[int] = None
        chosen_tick = -1
        for line in self.in_many:
            version = ctx.store.version(line)
            if version == self._versions[line]:
                continue
            self._versions[line] = version
            written = ctx.store.written_tick(line)
            if written > chosen_tick:
                chosen, chosen_tick = line, written

        if chosen is not None:
            ctx.store.write(self.out_one, ctx.store.read(chosen), writer=self._id)
        return TickOutcome()

    def config(self) -> Dict[str, Any]:
        return {"in_many": list(self.in_many), "out_one": self.out_one}


__all__ = ["Clock", "Function", "Merge"]
