"""
Definition dataclasses - intermediate representation between the Lua DSL
and executable action trees.

Lua scripts produce NodeDefinition / BlockDefinition / TaskDefinition
objects; the TemplateExpander, TreeValidator and TreeBuilder consume them.

KIND_SPECS describes every node kind the DSL knows about: how many
children it takes, which fields are required or optional, and which
field an unnamed scalar in the configuration table fills.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ConfigError


# =============================================================================
# Kind table
# =============================================================================


@dataclass(frozen=True)
class KindSpec:
    """Shape of one node kind.

    children:
        "0"        leaf
        "1"        exactly one child
        "0-1"      optional child
        "1+"       one or more children
        "branches" named branches (switch)
    """

    children: str = "0"
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    positional: Tuple[str, ...] = ()

    @property
    def fields(self) -> Tuple[str, ...]:
        return self.required + self.optional


_DURATION = ("duration",)

KIND_SPECS: Dict[str, KindSpec] = {
    # Combinators
    "seq": KindSpec(children="1+"),
    "par": KindSpec(children="1+", optional=("policy",)),
    "horizontal": KindSpec(children="1+", optional=("policy", "weights")),
    "vertical": KindSpec(children="1+", optional=("policy", "weights")),
    "timeout": KindSpec(children="1", required=_DURATION, positional=_DURATION),
    "delayed": KindSpec(children="1", required=_DURATION, positional=_DURATION),
    "repeat": KindSpec(children="1", optional=("count",)),
    "until": KindSpec(children="1", optional=("in_event", "in_line", "kinds", "keys")),
    "switch": KindSpec(children="branches", required=("in_control",)),
    "pointer": KindSpec(children="1", optional=("until", "group", "out_x", "out_y")),
    "rect": KindSpec(
        children="0-1",
        optional=("colour", "width", "height", "duration"),
        positional=("colour",),
    ),
    # Leaves
    "nil": KindSpec(),
    "wait": KindSpec(required=_DURATION, positional=_DURATION),
    "clock": KindSpec(required=("step",), optional=("on_start", "out_tic"), positional=("step",)),
    "function": KindSpec(
        required=("expr",),
        optional=("vars", "in_mapping", "out_result", "once"),
        positional=("expr",),
    ),
    "merge": KindSpec(required=("in_many", "out_one")),
    "logger": KindSpec(optional=("group", "in_mapping", "flush_every"), positional=("group",)),
    "key_logger": KindSpec(optional=("group", "flush_every"), positional=("group",)),
    "event_logger": KindSpec(optional=("group", "flush_every"), positional=("group",)),
    "reaction": KindSpec(
        required=("times", "tol"),
        optional=("group", "kinds", "out_accuracy", "out_recall", "out_mean_rt"),
    ),
    "event": KindSpec(
        required=("group",),
        optional=("kinds", "keys", "out_key"),
        positional=("group",),
    ),
    "instruction": KindSpec(required=("text",), optional=("header", "duration"), positional=("text",)),
    "image": KindSpec(required=("src",), optional=("width", "duration"), positional=("src",)),
    "fixation": KindSpec(optional=_DURATION),
    "counter": KindSpec(optional=("count", "group", "out_count"), positional=("count",)),
    # Template instantiation, replaced before validation
    "use": KindSpec(required=("template",), optional=("args",), positional=("template",)),
}

# Fields every kind accepts
COMMON_FIELDS = ("id", "name")

# Fields holding durations in seconds
TIME_FIELDS = ("duration", "step", "tol")

# Lua reserved words cannot be called as functions; these kinds get a
# trailing underscore in the DSL.
LUA_RESERVED_KINDS = ("nil", "repeat", "until", "function")


def dsl_name(kind: str) -> str:
    """Name of the DSL function creating a kind."""
    return f"{kind}_" if kind in LUA_RESERVED_KINDS else kind


# Must start with letter, followed by letters, numbers, underscores, hyphens or dots
_ID_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.-]*$")


def is_valid_node_id(node_id: str) -> bool:
    return bool(node_id) and bool(_ID_PATTERN.match(node_id))


# =============================================================================
# Definitions
# =============================================================================


@dataclass(frozen=True)
class ParamRef:
    """Placeholder for a template parameter (`param "name"` in Lua)."""

    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"$param": self.name}


@dataclass
class NodeDefinition:
    """Intermediate node representation from Lua parsing.

    - type: Node kind (seq, wait, switch, ...)
    - id: Unique identifier within the block
    - name: Human-readable name (defaults to id)
    - config: Kind-specific fields
    - children: Child definitions (or ParamRef placeholders in templates)
    - source_line: Line in the Lua file, for error messages

    Switch nodes keep their branches as children; config["branches"] holds
    one label per child: "if_true", "if_false", "default" or {"case": value}.
    """

    type: str
    id: str
    name: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    children: List[Any] = field(default_factory=list)
    source_line: Optional[int] = None

    def __post_init__(self) -> None:
        if self.name is None:
            self.name = self.id

    def walk(self):
        """This definition and its descendants, depth-first."""
        yield self
        for child in self.children:
            if isinstance(child, NodeDefinition):
                yield from child.walk()

    def structure(self) -> Dict[str, Any]:
        """Comparable form without source positions."""
        data = self.to_dict()
        _strip_lines(data)
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "config": _plain(self.config),
            "children": [_plain(child) for child in self.children],
            "source_line": self.source_line,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeDefinition":
        return cls(
            type=data["type"],
            id=data["id"],
            name=data.get("name"),
            config=_unplain(data.get("config", {})),
            children=[_unplain(child) for child in data.get("children", [])],
            source_line=data.get("source_line"),
        )


@dataclass
class TemplateDefinition:
    """Reusable subtree with named parameters."""

    name: str
    params: List[str]
    body: NodeDefinition
    defaults: Dict[str, Any] = field(default_factory=dict)
    source_line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "params": list(self.params),
            "defaults": _plain(self.defaults),
            "body": self.body.to_dict(),
        }


@dataclass
class BlockDefinition:
    """One runnable block: a tree plus its initial line values and settings."""

    name: str
    tree: NodeDefinition
    version: str = ""
    description: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    state: Dict[int, Any] = field(default_factory=dict)
    templates: Dict[str, TemplateDefinition] = field(default_factory=dict)
    source_path: str = ""

    def structure(self) -> Dict[str, Any]:
        data = self.to_dict()
        data.pop("source_path")
        _strip_lines(data)
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "config": _plain(self.config),
            "state": {str(line): _plain(value) for line, value in sorted(self.state.items())},
            "templates": {name: t.to_dict() for name, t in sorted(self.templates.items())},
            "tree": self.tree.to_dict(),
            "source_path": self.source_path,
        }


@dataclass
class TaskDefinition:
    """An ordered collection of uniquely named blocks."""

    name: str
    blocks: List[BlockDefinition]
    version: str = ""
    description: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    templates: Dict[str, TemplateDefinition] = field(default_factory=dict)
    source_path: str = ""

    def __post_init__(self) -> None:
        seen = set()
        for block in self.blocks:
            if block.name in seen:
                raise ConfigError(
                    f"Duplicate block name '{block.name}' in task '{self.name}'",
                    code="E4008",
                )
            seen.add(block.name)

    @property
    def block_names(self) -> List[str]:
        return [block.name for block in self.blocks]

    def block(self, name: str) -> BlockDefinition:
        """Block by name.

        Raises:
            ConfigError: If no block has that name (E4008).
        """
        for block in self.blocks:
            if block.name == name:
                return block
        raise ConfigError(
            f"Task '{self.name}' has no block '{name}'. Available: {self.block_names}",
            code="E4008",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "config": _plain(self.config),
            "templates": {name: t.to_dict() for name, t in sorted(self.templates.items())},
            "blocks": [block.to_dict() for block in self.blocks],
            "source_path": self.source_path,
        }


# =============================================================================
# ValidationError
# =============================================================================


@dataclass
class ValidationError:
    """Error from definition validation.

    - code: Error code (E2xxx, E4xxx, E6xxx)
    - location: block:node_id:line_number
    - message: Human-readable error message

    Example:
        >>> error = ValidationError(
        ...     code="E4003",
        ...     location="trial:cue:12",
        ...     message="Unknown node kind 'wiat'",
        ...     suggestion="wait",
        ... )
    """

    code: str
    location: str
    message: str

    # Optional suggestion for typos
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        parts.append(f"  Location: {self.location}")
        if self.suggestion:
            parts.append(f"  Did you mean: '{self.suggestion}'?")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "location": self.location,
            "message": self.message,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    @staticmethod
    def make_location(block: str, node_id: Optional[str] = None, line: Optional[int] = None) -> str:
        parts = [block]
        if node_id:
            parts.append(node_id)
        if line:
            parts.append(str(line))
        return ":".join(parts)


# =============================================================================
# Helpers
# =============================================================================


def _plain(value: Any) -> Any:
    """Recursively convert definitions and placeholders to plain data."""
    if isinstance(value, (NodeDefinition, ParamRef)):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _unplain(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {"$param"}:
            return ParamRef(value["$param"])
        if "type" in value and "id" in value and "children" in value:
            return NodeDefinition.from_dict(value)
        return {key: _unplain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_unplain(item) for item in value]
    return value


def _strip_lines(data: Any) -> None:
    if isinstance(data, dict):
        data.pop("source_line", None)
        for item in data.values():
            _strip_lines(item)
    elif isinstance(data, list):
        for item in data:
            _strip_lines(item)


__all__ = [
    "BlockDefinition",
    "COMMON_FIELDS",
    "KIND_SPECS",
    "KindSpec",
    "LUA_RESERVED_KINDS",
    "NodeDefinition",
    "ParamRef",
    "TIME_FIELDS",
    "TaskDefinition",
    "TemplateDefinition",
    "ValidationError",
    "dsl_name",
    "is_valid_node_id",
]
