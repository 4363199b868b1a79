"""
Error types for the action-tree engine.

Every error carries a code and, once it has passed through the scheduler,
the path of the node that raised it.

Error codes:
- E1xxx: Variable store (unbound read, undeclared write, id collision)
- E4xxx: Definition/configuration (malformed field, unknown kind, templates)
- E5xxx: Expression evaluation
- E6xxx: Timing (non-positive durations, malformed deadlines)
- E7xxx: External assets
"""

from __future__ import annotations

from typing import Optional


class TaskTreeError(Exception):
    """Base class for all engine errors.

    Formatted as "[CODE] message (node: a > b) (line: n)".
    """

    default_code = "E0000"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        node_path: Optional[str] = None,
        source_line: Optional[int] = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message
        self.node_path = node_path
        self.source_line = source_line
        super().__init__(message)

    def attach_path(self, node_path: str) -> "TaskTreeError":
        """Record the failing node path unless one is already set."""
        if not self.node_path and node_path:
            self.node_path = node_path
        return self

    def __str__(self) -> str:
        full_message = f"[{self.code}] {self.message}"
        if self.node_path:
            full_message += f" (node: {self.node_path})"
        if self.source_line:
            full_message += f" (line: {self.source_line})"
        return full_message


class ConfigError(TaskTreeError):
    """Malformed definition: missing field, unknown kind, bad template."""

    default_code = "E4002"


class TimingError(TaskTreeError):
    """Zero or negative duration, step or deadline."""

    default_code = "E6001"


class VariableError(TaskTreeError):
    """Store misuse: unbound read, undeclared write, id collision."""

    default_code = "E1001"


class ExpressionError(TaskTreeError):
    """Parse failure, undefined name or type mismatch in an expression."""

    default_code = "E5001"


class AssetError(TaskTreeError):
    """A referenced external asset is missing or unreadable.

    Named to stay clear of the builtin IOError.
    """

    default_code = "E7001"


class DefinitionLoadError(ConfigError):
    """Lua definition file could not be read or executed."""

    default_code = "E4001"


__all__ = [
    "AssetError",
    "ConfigError",
    "DefinitionLoadError",
    "ExpressionError",
    "TaskTreeError",
    "TimingError",
    "VariableError",
]
