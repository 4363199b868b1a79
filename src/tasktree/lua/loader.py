"""
TreeLoader - Loads task and block definitions from Lua DSL files.

1. Reads the .lua file
2. Creates a LuaSandbox with the DSL functions injected
3. Executes the script, which must return a block or a task
4. Attaches every template the script defined

Error codes:
- E4001: File not found or unreadable
- E4002: Script did not return a block or task
- E4101-E4104: Lua syntax, runtime, timeout and sandbox errors
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

from ..errors import DefinitionLoadError
from .api import DslApiBuilder
from .definitions import BlockDefinition, NodeDefinition, TaskDefinition
from .sandbox import LuaExecutionResult, LuaSandbox

logger = logging.getLogger(__name__)

Definition = Union[BlockDefinition, TaskDefinition]


class TreeLoader:
    """Loads definitions from Lua files.

    Example:
        >>> loader = TreeLoader()
        >>> task = loader.load_task(Path("tasks/flanker.lua"))
        >>> task.block_names
        ['practice', 'main']

        >>> block = loader.load_string('''
        ...     return block { name = "demo", seq { wait { 1.0 }, wait { 2.0 } } }
        ... ''')
    """

    DEFAULT_TIMEOUT_SECONDS = 5.0

    def __init__(self, sandbox_timeout: Optional[float] = None) -> None:
        self._sandbox_timeout = sandbox_timeout or self.DEFAULT_TIMEOUT_SECONDS

    def load(self, path: Union[str, Path]) -> Definition:
        """Load a block or task from a Lua file.

        Raises:
            DefinitionLoadError: E4001 missing/unreadable file, E4002 bad
                return value, E41xx Lua errors.
            ConfigError: Malformed DSL call inside the script.
        """
        path = Path(path)
        if not path.exists():
            raise DefinitionLoadError(f"File not found: {path}", code="E4001")
        if path.suffix.lower() != ".lua":
            raise DefinitionLoadError(f"Expected .lua file, got: {path.suffix}", code="E4001")

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise DefinitionLoadError(f"Error reading {path}: {e}", code="E4001") from e

        definition = self.load_string(content, source_name=str(path))
        logger.info(f"Loaded {type(definition).__name__} '{definition.name}' from {path}")
        return definition

    def load_string(self, lua_code: str, source_name: str = "<string>") -> Definition:
        """Load a block or task from Lua source (mostly for tests)."""
        sandbox = LuaSandbox(timeout_seconds=self._sandbox_timeout)
        api_builder = DslApiBuilder(source_path=source_name)
        api_builder.set_line_tracker(sandbox.current_line)
        api = api_builder.build_api()

        result = sandbox.execute(lua_code, env=api, source_name=source_name)
        if not result.success:
            self._raise_execution_error(result, source_name)

        definition = self._extract_definition(result.result, source_name)
        for name, template in api_builder.templates.items():
            definition.templates.setdefault(name, template)
        logger.debug(f"Defined {len(api_builder.templates)} templates in {source_name}")
        return definition

    def load_task(self, path: Union[str, Path]) -> TaskDefinition:
        """Load a file as a task; a single block becomes a one-block task."""
        definition = self.load(path)
        if isinstance(definition, TaskDefinition):
            return definition
        return TaskDefinition(
            name=definition.name,
            blocks=[definition],
            version=definition.version,
            description=definition.description,
            source_path=definition.source_path,
        )

    def _raise_execution_error(self, result: LuaExecutionResult, source_name: str) -> None:
        raise DefinitionLoadError(
            f"{source_name}: {result.error or 'Unknown execution error'}",
            code=result.error_code,
            source_line=result.line_number,
        )

    def _extract_definition(self, result: Any, source_name: str) -> Definition:
        if isinstance(result, (BlockDefinition, TaskDefinition)):
            return result

        if result is None:
            message = "Script did not return anything. Make sure to 'return block {...}' or 'return task {...}'"
        elif isinstance(result, NodeDefinition):
            message = (
                f"Script returned a '{result.type}' node instead of a block. "
                "Wrap the root node with block { name = ..., <node> }"
            )
        else:
            message = f"Script returned unexpected type: {type(result).__name__}. Expected block or task"
        raise DefinitionLoadError(f"{source_name}: {message}", code="E4002")


__all__ = ["Definition", "TreeLoader"]
