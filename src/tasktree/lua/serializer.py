"""
Serializer - Writes definitions back out as Lua DSL source.

Node ids are always written explicitly, so loading the output again yields
a structurally identical definition (source lines aside).
"""

from __future__ import annotations

import math
import re
from typing import Any, List, Mapping

from ..errors import ConfigError
from .definitions import (
    BlockDefinition,
    KIND_SPECS,
    NodeDefinition,
    ParamRef,
    TaskDefinition,
    TemplateDefinition,
    dsl_name,
)

INDENT = "    "

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_LUA_KEYWORDS = {
    "and", "break", "do", "else", "elseif", "end", "false", "for", "function",
    "goto", "if", "in", "local", "nil", "not", "or", "repeat", "return", "then",
    "true", "until", "while",
}


def lua_literal(value: Any, depth: int = 0) -> str:
    """Render a plain value as a Lua expression."""
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ConfigError(f"Cannot serialize non-finite number {value!r}", code="E4006")
        # repr keeps the float/int distinction (1.0 stays a float in Lua)
        return repr(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, ParamRef):
        return f"param {_quote(value.name)}"
    if isinstance(value, NodeDefinition):
        return dump_node(value, depth)
    if isinstance(value, (list, tuple)):
        if not value:
            return "{}"
        return "{ " + ", ".join(lua_literal(item, depth) for item in value) + " }"
    if isinstance(value, Mapping):
        if not value:
            return "{}"
        return "{ " + ", ".join(
            f"{_key(key)} = {lua_literal(item, depth)}" for key, item in value.items()
        ) + " }"
    raise ConfigError(f"Cannot serialize value of type {type(value).__name__}", code="E4006")


def _quote(text: str) -> str:
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _key(key: Any) -> str:
    if isinstance(key, str) and _IDENTIFIER.match(key) and key not in _LUA_KEYWORDS:
        return key
    return f"[{lua_literal(key)}]"


def dump_node(node: NodeDefinition, depth: int = 0) -> str:
    """Render a node definition (and its subtree) as a DSL call."""
    pad = INDENT * (depth + 1)
    spec = KIND_SPECS.get(node.type)
    config = dict(node.config)
    items: List[str] = [f"id = {_quote(node.id)}"]
    if node.name and node.name != node.id:
        items.append(f"name = {_quote(node.name)}")

    if node.type == "use":
        items.insert(0, lua_literal(config.get("template")))
        args = config.get("args") or {}
        if args:
            items.append(f"args = {lua_literal(args, depth + 1)}")
        return _call(node.type, items, pad, depth)

    if node.type == "switch":
        labels = config.pop("branches", [])
        cases = []
        for label, child in zip(labels, node.children):
            if isinstance(label, Mapping):
                cases.append(f"{{ {lua_literal(label['case'])}, {lua_literal(child, depth + 2)} }}")
            else:
                items.append(f"{label} = {lua_literal(child, depth + 1)}")
        if cases:
            items.append("cases = { " + ", ".join(cases) + " }")
        children: List[Any] = []
    else:
        children = list(node.children)

    for name, value in config.items():
        items.append(f"{_key(name)} = {lua_literal(value, depth + 1)}")
    for child in children:
        items.append(lua_literal(child, depth + 1))

    if spec is None:
        raise ConfigError(f"Cannot serialize unknown node kind '{node.type}'", code="E4003")
    return _call(node.type, items, pad, depth)


def _call(kind: str, items: List[str], pad: str, depth: int) -> str:
    name = dsl_name(kind)
    if len(items) <= 2 and all("\n" not in item for item in items):
        return f"{name} {{ {', '.join(items)} }}"
    body = ",\n".join(f"{pad}{item}" for item in items)
    return f"{name} {{\n{body},\n{INDENT * depth}}}"


def dump_template(template: TemplateDefinition, depth: int = 0) -> str:
    pad = INDENT * (depth + 1)
    items = [
        _quote(template.name),
        f"params = {lua_literal(template.params)}",
    ]
    if template.defaults:
        items.append(f"defaults = {lua_literal(template.defaults, depth + 1)}")
    items.append(dump_node(template.body, depth + 1))
    body = ",\n".join(f"{pad}{item}" for item in items)
    return f"template {{\n{body},\n{INDENT * depth}}}"


def _block_items(block: BlockDefinition, depth: int) -> List[str]:
    items = [f"name = {_quote(block.name)}"]
    if block.version:
        items.append(f"version = {_quote(block.version)}")
    if block.description:
        items.append(f"description = {_quote(block.description)}")
    if block.config:
        items.append(f"config = {lua_literal(block.config)}")
    if block.state:
        items.append(f"state = {lua_literal(dict(sorted(block.state.items())))}")
    items.append(dump_node(block.tree, depth + 1))
    return items


def dump_block(block: BlockDefinition, depth: int = 0, include_templates: bool = True) -> str:
    """Render a block as a Lua script returning it."""
    pad = INDENT * (depth + 1)
    body = ",\n".join(f"{pad}{item}" for item in _block_items(block, depth))
    text = f"block {{\n{body},\n{INDENT * depth}}}"
    if depth:
        return text
    return _with_templates(block.templates if include_templates else {}) + f"return {text}\n"


def dump_task(task: TaskDefinition) -> str:
    """Render a task as a Lua script returning it."""
    items = [f"name = {_quote(task.name)}"]
    if task.version:
        items.append(f"version = {_quote(task.version)}")
    if task.description:
        items.append(f"description = {_quote(task.description)}")
    if task.config:
        items.append(f"config = {lua_literal(task.config)}")

    templates = dict(task.templates)
    for block in task.blocks:
        templates.update(block.templates)
        items.append(dump_block(block, depth=1))
    body = ",\n".join(f"{INDENT}{item}" for item in items)
    return _with_templates(templates) + f"return task {{\n{body},\n}}\n"


def _with_templates(templates: Mapping[str, TemplateDefinition]) -> str:
    if not templates:
        return ""
    return "".join(f"{dump_template(t)}\n\n" for _, t in sorted(templates.items()))


__all__ = ["dump_block", "dump_node", "dump_task", "dump_template", "lua_literal"]
