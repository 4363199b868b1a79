"""
Lua definition layer: load task files, expand templates, validate, build.

Quick start:
    >>> from tasktree.lua import TreeLoader, TemplateExpander, TreeValidator, TreeBuilder
    >>> task = TreeLoader().load_task("tasks/flanker.lua")
    >>> block = TemplateExpander(task.templates).expand(task.block("main"))
    >>> assert not TreeValidator().validate(block)
    >>> tree = TreeBuilder().build(block)
"""

from .api import DslApiBuilder, line_map, lua_to_python, state_map
from .builder import NODE_BUILDERS, TreeBuilder
from .definitions import (
    KIND_SPECS,
    BlockDefinition,
    KindSpec,
    NodeDefinition,
    ParamRef,
    TaskDefinition,
    TemplateDefinition,
    ValidationError,
    dsl_name,
)
from .loader import TreeLoader
from .sandbox import LuaExecutionResult, LuaSandbox
from .serializer import dump_block, dump_node, dump_task
from .templates import TemplateExpander
from .validator import TreeValidator, raise_for_errors
from .watcher import DefinitionWatcher

__all__ = [
    "BlockDefinition",
    "DefinitionWatcher",
    "DslApiBuilder",
    "KIND_SPECS",
    "KindSpec",
    "LuaExecutionResult",
    "LuaSandbox",
    "NODE_BUILDERS",
    "NodeDefinition",
    "ParamRef",
    "TaskDefinition",
    "TemplateDefinition",
    "TemplateExpander",
    "TreeBuilder",
    "TreeLoader",
    "TreeValidator",
    "ValidationError",
    "dsl_name",
    "dump_block",
    "dump_node",
    "dump_task",
    "line_map",
    "lua_to_python",
    "raise_for_errors",
    "state_map",
]
