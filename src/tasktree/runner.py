"""
BlockRunner - Runs one block: definition in, log records out.

Construction expands templates, validates, builds the tree and the
variable store and wires up the scheduler. The runner writes "mainevent"
records around the run:

    start      "Success" when the root starts
    config     the effective block settings
    finish     "Success" when the tree completes
    interrupt  the abort reason
    crash      the terminal error message

The sink is flushed and closed exactly once, however the run ends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .assets import AssetResolver
from .config import BlockConfig, EngineConfig, get_config
from .core.events import InputEvent
from .core.scheduler import Scheduler, TickResult
from .core.tree import TreeStatus
from .errors import TaskTreeError
from .lua.builder import TreeBuilder
from .lua.definitions import BlockDefinition, TemplateDefinition
from .lua.templates import TemplateExpander
from .lua.validator import TreeValidator, raise_for_errors
from .render import Renderer
from .sinks import JsonlSink, LogRecord, LogSink, MemorySink
from .state.base import TIME_EPSILON
from .state.store import VariableStore

logger = logging.getLogger(__name__)

MAINEVENT = "mainevent"


@dataclass
class RunReport:
    """Summary of a finished (or aborted) run."""

    block: str
    status: TreeStatus
    end_time: float
    ticks: int
    error: Optional[TaskTreeError] = None
    snapshot: Dict[int, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == TreeStatus.COMPLETED and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "block": self.block,
            "status": self.status.value,
            "end_time": self.end_time,
            "ticks": self.ticks,
            "error": str(self.error) if self.error else None,
            "error_code": self.error.code if self.error else None,
            "snapshot": {str(line): value for line, value in self.snapshot.items()},
        }


class BlockRunner:
    """Owns one Run of one block.

    Example:
        >>> runner = BlockRunner(block, sink=MemorySink())
        >>> report = runner.run_simulated(frame_dt=0.01, inputs=[InputEvent.key(2.4, "space")])
        >>> report.status
        <TreeStatus.COMPLETED: 'completed'>

    Raises (at construction):
        ConfigError: Template, validation or build failure.
        TimingError: Non-positive durations.
        AssetError: Missing image with verify_assets enabled.
    """

    def __init__(
        self,
        block: BlockDefinition,
        sink: Optional[LogSink] = None,
        assets: Optional[AssetResolver] = None,
        config: Optional[EngineConfig] = None,
        renderer: Optional[Renderer] = None,
        templates: Optional[Mapping[str, TemplateDefinition]] = None,
        parent_config: Optional[Dict[str, Any]] = None,
        trace_enabled: Optional[bool] = None,
    ) -> None:
        self.engine_config = config or get_config()

        expanded = TemplateExpander(templates).expand(block)
        raise_for_errors(TreeValidator().validate(expanded, parent_config), block.name)
        self.block = expanded
        self.block_config = BlockConfig.merged(parent_config, expanded.config)

        self.tree = TreeBuilder().build(expanded)
        self.store = VariableStore.from_snapshot(expanded.state, declared=self.tree.bound_lines())
        self.sink: LogSink = sink if sink is not None else MemorySink()
        self.assets = assets

        if self.block_config.verify_assets and assets is not None:
            for node in self.tree.walk():
                if node.kind == "image":
                    assets.resolve(node.src)

        flush_every = self.block_config.flush_every or self.engine_config.flush_every
        if trace_enabled is None:
            trace_enabled = self.block_config.trace
        self.scheduler = Scheduler(
            self.tree,
            self.store,
            sink=self.sink,
            assets=assets,
            renderer=renderer,
            flush_every=flush_every,
            trace_enabled=trace_enabled,
        )
        self._closed = False
        logger.debug(f"Prepared block '{block.name}' ({self.tree.node_count} nodes)")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def now(self) -> float:
        return self.scheduler.now

    @property
    def done(self) -> bool:
        return self.scheduler.done

    @property
    def status(self) -> TreeStatus:
        return self.tree.status

    @property
    def report(self) -> RunReport:
        return RunReport(
            block=self.block.name,
            status=self.tree.status,
            end_time=self.scheduler.now,
            ticks=self.scheduler.ctx.tick_count,
            error=self.scheduler.error,
            snapshot=self.store.snapshot(),
        )

    # =========================================================================
    # Driving
    # =========================================================================

    def start(self) -> TickResult:
        """Start the block at t=0."""
        self._mainevent("start", "Success")
        self._mainevent("config", {
            "block": self.block.name,
            "version": self.block.version,
            **self.block_config.model_dump(),
        })
        try:
            result = self.scheduler.start()
        except TaskTreeError as e:
            if self.scheduler.error is e:
                self._crash(e)
            raise
        self._after_tick(result)
        return result

    def tick(self, dt: float, events: Iterable[InputEvent] = ()) -> TickResult:
        """Advance the run by dt seconds.

        Raises:
            TaskTreeError: The terminal error, after the crash was logged.
        """
        try:
            result = self.scheduler.tick(dt, events)
        except TaskTreeError as e:
            if self.scheduler.error is e:
                self._crash(e)
            raise
        self._after_tick(result)
        return result

    def submit(self, event: InputEvent) -> None:
        """Queue an input event from any thread."""
        self.scheduler.submit(event)

    def abort(self, reason: str = "user request") -> None:
        """Stop the run now; loggers flush and the sink is closed."""
        if self._closed:
            return
        self.scheduler.abort(reason)
        self._mainevent("interrupt", reason)
        self._close()

    def run_simulated(
        self,
        frame_dt: Optional[float] = None,
        inputs: Iterable[InputEvent] = (),
        max_time: Optional[float] = None,
    ) -> RunReport:
        """Run headless with a fixed frame interval and scripted input.

        Each scripted event is delivered in the first tick whose end time
        is at or past its timestamp. The run is aborted once max_time is
        reached. Engine errors end the run and are returned in the report.
        """
        frame_dt = frame_dt or self.engine_config.frame_interval
        max_time = max_time or self.engine_config.max_run_seconds
        pending: List[InputEvent] = sorted(inputs, key=lambda event: event.timestamp)

        try:
            self.start()
            while not self.done:
                if self.now + TIME_EPSILON >= max_time:
                    self.abort(f"time limit {max_time}s reached")
                    break
                end = self.now + frame_dt
                due: List[InputEvent] = []
                while pending and pending[0].timestamp <= end + TIME_EPSILON:
                    due.append(pending.pop(0))
                self.tick(frame_dt, due)
        except TaskTreeError as e:
            logger.error(f"Block '{self.block.name}' crashed: {e}")

        report = self.report
        logger.info(
            f"Block '{report.block}' {report.status.value} at t={report.end_time:.3f} "
            f"after {report.ticks} ticks"
        )
        return report

    # =========================================================================
    # Internals
    # =========================================================================

    def _after_tick(self, result: TickResult) -> None:
        if not result.done or self._closed:
            return
        if self.tree.status == TreeStatus.COMPLETED:
            self._mainevent("finish", "Success")
        self._close()

    def _crash(self, error: TaskTreeError) -> None:
        if self._closed:
            return
        self._mainevent("crash", str(error))
        self._close()

    def _mainevent(self, key: str, value: Any) -> None:
        self.sink.append(LogRecord(self.scheduler.now, MAINEVENT, key, value))

    def _close(self) -> None:
        self._closed = True
        self.sink.flush()
        self.sink.close()


def open_sink(config: EngineConfig, block: BlockDefinition, task_name: str = "") -> JsonlSink:
    """JSONL sink in the configured log directory, named after task and block."""
    settings = BlockConfig.merged(block.config)
    parts = [part for part in (settings.log_prefix, task_name, block.name) if part]
    return JsonlSink(config.log_dir, "-".join(parts))


__all__ = ["BlockRunner", "MAINEVENT", "RunReport", "open_sink"]
