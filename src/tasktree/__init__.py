"""
tasktree - Action-tree execution engine for timed experiment tasks.

A block is a tree of actions (stimuli, timers, input handlers, loggers)
sharing integer-addressed variable lines. The scheduler walks the tree
once per tick; definitions are written in a small Lua DSL.

    >>> from tasktree import BlockRunner, TreeLoader
    >>> task = TreeLoader().load_task("tasks/flanker.lua")
    >>> report = BlockRunner(task.block("main"), templates=task.templates).run_simulated()
"""

from .config import BlockConfig, EngineConfig, get_config, reload_config
from .core import ActionTree, InputEvent, Scheduler, TickContext, TickResult, TreeStatus
from .errors import (
    AssetError,
    ConfigError,
    DefinitionLoadError,
    ExpressionError,
    TaskTreeError,
    TimingError,
    VariableError,
)
from .lua import BlockDefinition, TaskDefinition, TreeBuilder, TreeLoader
from .runner import BlockRunner, RunReport
from .sinks import JsonlSink, LogRecord, MemorySink
from .state import VariableStore

__version__ = "1.2.0"

__all__ = [
    "ActionTree",
    "AssetError",
    "BlockConfig",
    "BlockDefinition",
    "BlockRunner",
    "ConfigError",
    "DefinitionLoadError",
    "EngineConfig",
    "ExpressionError",
    "InputEvent",
    "JsonlSink",
    "LogRecord",
    "MemorySink",
    "RunReport",
    "Scheduler",
    "TaskDefinition",
    "TaskTreeError",
    "TickContext",
    "TickResult",
    "TimingError",
    "TreeBuilder",
    "TreeLoader",
    "TreeStatus",
    "VariableError",
    "VariableStore",
    "get_config",
    "reload_config",
]
