"""
Lua DSL API - Functions definition files call to describe tasks.

Every node kind is a global function taking one configuration table:

    seq {
        instruction { "Press space when ready", id = "intro" },
        timeout { 2.5, fixation {} },
        par { policy = "any", wait { 3.0 }, event { "keypress", keys = { "space" } } },
    }

Array items that are nodes become children; other array items fill the
kind's positional field (see KIND_SPECS). Kinds named after Lua keywords
get a trailing underscore: nil_, repeat_, until_, function_.

Top level:
- block { name = "...", version = "...", config = {...}, state = {...}, <root> }
- task { name = "...", <block>, <block>, ... }
- template { "name", params = { "a", "b" }, defaults = {...}, <body> }
- use { "name", a = ..., b = ... }
- param "a"
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from lupa import lua_type

from ..errors import ConfigError
from ..state.store import coerce_line_id
from .definitions import (
    KIND_SPECS,
    BlockDefinition,
    KindSpec,
    NodeDefinition,
    ParamRef,
    TaskDefinition,
    TemplateDefinition,
    dsl_name,
)

logger = logging.getLogger(__name__)

MAX_LUA_TABLE_DEPTH = 32

_BRANCH_KEYS = ("if_true", "if_false", "cases", "default")


# =============================================================================
# Value conversion
# =============================================================================


def lua_to_python(value: Any, depth: int = 0) -> Any:
    """Convert a value received from Lua.

    - nil -> None, booleans, integers, floats and strings unchanged
    - table with keys 1..n -> list
    - any other table -> dict (integer keys stay integers)
    - Python objects created by the DSL pass through
    - Lua functions are rejected
    """
    if depth > MAX_LUA_TABLE_DEPTH:
        raise ConfigError(f"Lua table nesting too deep (>{MAX_LUA_TABLE_DEPTH})", code="E4006")

    kind = lua_type(value)
    if kind is None:
        return value
    if kind == "table":
        array, fields = split_table(value, depth)
        if not fields:
            return array
        if array:
            fields.update({index: item for index, item in enumerate(array, start=1)})
        return fields
    if kind == "function":
        raise ConfigError("Lua functions cannot be used as definition values", code="E4006")
    return value


def split_table(table: Any, depth: int = 0) -> Tuple[List[Any], Dict[Any, Any]]:
    """Split a Lua table into its array part (keys 1..n) and the rest."""
    items = {key: lua_to_python(item, depth + 1) for key, item in table.items()}
    array: List[Any] = []
    index = 1
    while index in items:
        array.append(items.pop(index))
        index += 1
    fields = {_table_key(key): item for key, item in items.items()}
    return array, fields


def _table_key(key: Any) -> Any:
    if isinstance(key, float) and key.is_integer():
        return int(key)
    return key


def line_map(value: Any, field_name: str = "in_mapping") -> Dict[int, str]:
    """Normalize a line -> name binding table.

    Accepts { [3] = "x" }, { x = 3 } and { "x", "y" } (lines 1 and 2).
    """
    if value is None:
        return {}
    if isinstance(value, (list, tuple)):
        value = {index: name for index, name in enumerate(value, start=1)}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{field_name} must be a table, got {type(value).__name__}", code="E4006")

    result: Dict[int, str] = {}
    for key, item in value.items():
        if isinstance(key, str) and not isinstance(item, str):
            line, name = coerce_line_id(item), key
        else:
            line, name = coerce_line_id(key), item
        if not isinstance(name, str) or not name:
            raise ConfigError(f"{field_name}: line {line} needs a name, got {name!r}", code="E4006")
        if line in result:
            raise ConfigError(f"{field_name}: line {line} bound twice", code="E4006")
        result[line] = name
    return result


def state_map(value: Any) -> Dict[int, Any]:
    """Normalize initial line values: { [1] = 0, [4] = true } or a list."""
    if value is None:
        return {}
    if isinstance(value, (list, tuple)):
        value = {index: item for index, item in enumerate(value, start=1)}
    if not isinstance(value, Mapping):
        raise ConfigError(f"state must be a table, got {type(value).__name__}", code="E4006")
    return {coerce_line_id(key): item for key, item in value.items()}


def _as_dict(value: Any, field_name: str) -> Dict[str, Any]:
    if value is None or value == []:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{field_name} must be a table of named values", code="E4006")
    return dict(value)


# =============================================================================
# DslApiBuilder
# =============================================================================


class DslApiBuilder:
    """Builds the DSL functions injected into the Lua environment.

    One builder per load: it numbers auto-generated node ids and collects
    every template the script defines.

    Example:
        >>> builder = DslApiBuilder()
        >>> api = builder.build_api()
        >>> node = api["wait"]({"duration": 1.0})
        >>> node.id
        'wait-1'
    """

    def __init__(self, source_path: str = "<string>") -> None:
        self._source_path = source_path
        self._line_tracker: Optional[Callable[[], Optional[int]]] = None
        self._counters: Dict[str, int] = defaultdict(int)
        self.templates: Dict[str, TemplateDefinition] = {}

    def set_line_tracker(self, tracker: Callable[[], Optional[int]]) -> None:
        """Set a callback returning the current Lua line number."""
        self._line_tracker = tracker

    def _current_line(self) -> Optional[int]:
        if self._line_tracker is None:
            return None
        return self._line_tracker()

    def build_api(self) -> Dict[str, Callable[..., Any]]:
        """DSL function name -> implementation."""
        api: Dict[str, Callable[..., Any]] = {
            dsl_name(kind): self._node_function(kind, spec)
            for kind, spec in KIND_SPECS.items()
        }
        api.update({
            "block": self.block,
            "task": self.task,
            "template": self.template,
            "param": self.param,
        })
        return api

    def _auto_id(self, kind: str) -> str:
        self._counters[kind] += 1
        return f"{kind}-{self._counters[kind]}"

    # =========================================================================
    # Nodes
    # =========================================================================

    def _node_function(self, kind: str, spec: KindSpec) -> Callable[..., NodeDefinition]:
        def create(table: Any = None) -> NodeDefinition:
            return self.node(kind, table)

        create.__name__ = dsl_name(kind)
        return create

    def node(self, kind: str, table: Any = None) -> NodeDefinition:
        """Create a node definition from a configuration table.

        Raises:
            ConfigError: Malformed table (E4006).
        """
        line = self._current_line()
        spec = KIND_SPECS[kind]

        if table is None:
            array, fields = [], {}
        elif isinstance(table, Mapping):
            array, fields = [], dict(table)
        elif lua_type(table) == "table":
            array, fields = split_table(table)
        else:
            # Shorthand: wait(1.0), instruction "Hello"
            array, fields = [lua_to_python(table)], {}

        node_id = fields.pop("id", None)
        if node_id is None:
            node_id = self._auto_id(kind)
        elif not isinstance(node_id, str):
            raise ConfigError(f"{kind}: id must be a string, got {node_id!r}", code="E2001", source_line=line)
        name = fields.pop("name", None)

        config: Dict[str, Any] = {}
        children: List[Any] = []

        if kind == "switch":
            children = self._switch_branches(node_id, array, fields, config, line)
            array = []

        positional = [name_ for name_ in spec.positional if name_ not in fields]
        for item in array:
            if isinstance(item, NodeDefinition):
                children.append(item)
            elif positional:
                config[positional.pop(0)] = item
            elif isinstance(item, ParamRef):
                children.append(item)
            else:
                raise ConfigError(
                    f"{kind} '{node_id}': unexpected value {item!r} "
                    f"(named fields: {', '.join(spec.fields) or 'none'})",
                    code="E4006",
                    source_line=line,
                )

        if kind == "use":
            args = _as_dict(fields.pop("args", None), "use args")
            template = fields.pop("template", config.pop("template", None))
            args.update(fields)
            config = {"template": template, "args": args}
        else:
            config.update(fields)
            if "in_mapping" in config and not isinstance(config["in_mapping"], ParamRef):
                config["in_mapping"] = line_map(config["in_mapping"])

        return NodeDefinition(
            type=kind,
            id=node_id,
            name=name,
            config=config,
            children=children,
            source_line=line,
        )

    def _switch_branches(
        self,
        node_id: str,
        array: List[Any],
        fields: Dict[Any, Any],
        config: Dict[str, Any],
        line: Optional[int],
    ) -> List[Any]:
        if any(isinstance(item, (NodeDefinition, ParamRef)) for item in array):
            raise ConfigError(
                f"switch '{node_id}': branches must be named (if_true/if_false or cases/default)",
                code="E4006",
                source_line=line,
            )
        if array:
            raise ConfigError(f"switch '{node_id}': unexpected values {array!r}", code="E4006", source_line=line)

        children: List[Any] = []
        labels: List[Any] = []
        for key in ("if_true", "if_false"):
            if key in fields:
                children.append(fields.pop(key))
                labels.append(key)
        if "cases" in fields:
            for entry in fields.pop("cases") or []:
                if not isinstance(entry, list) or len(entry) != 2:
                    raise ConfigError(
                        f"switch '{node_id}': each case must be {{ value, node }}",
                        code="E4006",
                        source_line=line,
                    )
                labels.append({"case": entry[0]})
                children.append(entry[1])
        if "default" in fields:
            children.append(fields.pop("default"))
            labels.append("default")
        config["branches"] = labels
        return children

    def param(self, name: Any) -> ParamRef:
        if not isinstance(name, str) or not name:
            raise ConfigError(f"param needs a name, got {name!r}", code="E4010")
        return ParamRef(name)

    # =========================================================================
    # Templates, blocks and tasks
    # =========================================================================

    def template(self, table: Any) -> TemplateDefinition:
        """Lua: template { "cue", params = { "text" }, instruction { param "text" } }"""
        line = self._current_line()
        array, fields = split_table(table) if lua_type(table) == "table" else ([], dict(table))

        name = fields.pop("name", None)
        body = fields.pop("body", None)
        for item in array:
            if isinstance(item, NodeDefinition) and body is None:
                body = item
            elif isinstance(item, str) and name is None:
                name = item
            else:
                raise ConfigError(f"template: unexpected value {item!r}", code="E4006", source_line=line)

        if not name:
            raise ConfigError("template needs a name", code="E4005", source_line=line)
        if not isinstance(body, NodeDefinition):
            raise ConfigError(f"template '{name}' needs a body node", code="E4005", source_line=line)
        if name in self.templates:
            raise ConfigError(f"Duplicate template '{name}'", code="E4012", source_line=line)

        params = fields.pop("params", None) or []
        if not isinstance(params, list) or not all(isinstance(p, str) for p in params):
            raise ConfigError(f"template '{name}': params must be a list of names", code="E4006", source_line=line)
        defaults = _as_dict(fields.pop("defaults", None), f"template '{name}' defaults")
        if fields:
            raise ConfigError(
                f"template '{name}': unknown fields {sorted(map(str, fields))}",
                code="E4006",
                source_line=line,
            )

        definition = TemplateDefinition(
            name=name, params=list(params), body=body, defaults=defaults, source_line=line,
        )
        self.templates[name] = definition
        return definition

    def block(self, table: Any) -> BlockDefinition:
        """Lua: block { name = "trial", state = { [1] = 0 }, seq { ... } }"""
        line = self._current_line()
        array, fields = split_table(table) if lua_type(table) == "table" else ([], dict(table))

        name = fields.pop("name", None)
        if not name or not isinstance(name, str):
            raise ConfigError("block needs a name", code="E4005", source_line=line)

        tree = fields.pop("tree", None)
        for item in array:
            if isinstance(item, NodeDefinition) and tree is None:
                tree = item
            else:
                raise ConfigError(
                    f"block '{name}' takes exactly one root node, got extra {item!r}",
                    code="E4006",
                    source_line=line,
                )
        if not isinstance(tree, NodeDefinition):
            raise ConfigError(f"block '{name}' has no root node", code="E4005", source_line=line)

        block = BlockDefinition(
            name=name,
            tree=tree,
            version=_version(fields.pop("version", "")),
            description=str(fields.pop("description", "") or ""),
            config=_as_dict(fields.pop("config", None), f"block '{name}' config"),
            state=state_map(fields.pop("state", None)),
            templates=self._template_table(fields.pop("templates", None)),
            source_path=self._source_path,
        )
        if fields:
            raise ConfigError(
                f"block '{name}': unknown fields {sorted(map(str, fields))}",
                code="E4006",
                source_line=line,
            )
        return block

    def task(self, table: Any) -> TaskDefinition:
        """Lua: task { name = "demo", block { ... }, block { ... } }"""
        line = self._current_line()
        array, fields = split_table(table) if lua_type(table) == "table" else ([], dict(table))

        name = fields.pop("name", None)
        if not name or not isinstance(name, str):
            raise ConfigError("task needs a name", code="E4005", source_line=line)

        blocks = list(fields.pop("blocks", None) or [])
        blocks.extend(array)
        for item in blocks:
            if not isinstance(item, BlockDefinition):
                raise ConfigError(
                    f"task '{name}' contains a non-block value {item!r}",
                    code="E4006",
                    source_line=line,
                )
        if not blocks:
            raise ConfigError(f"task '{name}' has no blocks", code="E4005", source_line=line)

        task = TaskDefinition(
            name=name,
            blocks=blocks,
            version=_version(fields.pop("version", "")),
            description=str(fields.pop("description", "") or ""),
            config=_as_dict(fields.pop("config", None), f"task '{name}' config"),
            templates=self._template_table(fields.pop("templates", None)),
            source_path=self._source_path,
        )
        if fields:
            raise ConfigError(
                f"task '{name}': unknown fields {sorted(map(str, fields))}",
                code="E4006",
                source_line=line,
            )
        return task

    def _template_table(self, value: Any) -> Dict[str, TemplateDefinition]:
        if not value:
            return {}
        items = value.values() if isinstance(value, Mapping) else value
        result: Dict[str, TemplateDefinition] = {}
        for item in items:
            if not isinstance(item, TemplateDefinition):
                raise ConfigError(f"templates must be created with template {{...}}, got {item!r}", code="E4006")
            result[item.name] = item
        return result


def _version(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


__all__ = [
    "DslApiBuilder",
    "line_map",
    "lua_to_python",
    "split_table",
    "state_map",
]
