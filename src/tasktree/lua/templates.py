"""
TemplateExpander - Replaces `use` nodes with instantiated template bodies.

Expansion is a full preprocessing pass over a block definition:
- `param "x"` placeholders take the argument (or default) value
- "${x}" inside strings is substituted; a string that is exactly "${x}"
  takes the raw argument value
- the instance root takes the id of the `use` node; every other id in
  the body is prefixed with it ("cue1.text")

Error codes:
- E4009: Unknown template
- E4010: Missing, unknown or misplaced parameter
- E4011: Recursive template use
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import replace
from difflib import get_close_matches
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ConfigError
from .definitions import BlockDefinition, NodeDefinition, ParamRef, TemplateDefinition

logger = logging.getLogger(__name__)

PARAM_PATTERN = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


class TemplateExpander:
    """Expands template uses in block definitions.

    Example:
        >>> expander = TemplateExpander()
        >>> expanded = expander.expand(block)
        >>> [node.type for node in expanded.tree.walk()]
        ['seq', 'timeout', 'instruction']
    """

    def __init__(self, templates: Optional[Mapping[str, TemplateDefinition]] = None) -> None:
        self._templates: Dict[str, TemplateDefinition] = dict(templates or {})

    def expand(self, block: BlockDefinition) -> BlockDefinition:
        """Return a copy of the block with every `use` node expanded.

        Block templates take precedence over templates given to the expander.

        Raises:
            ConfigError: E4009, E4010 or E4011.
        """
        templates = dict(self._templates)
        templates.update(block.templates)
        tree = self._expand_node(copy.deepcopy(block.tree), templates, [])
        expanded = replace(block, tree=tree)
        logger.debug(f"Expanded templates in block '{block.name}'")
        return expanded

    def _expand_node(
        self,
        node: NodeDefinition,
        templates: Dict[str, TemplateDefinition],
        stack: List[str],
    ) -> NodeDefinition:
        if node.type == "use":
            return self._instantiate(node, templates, stack)

        _reject_params(node.config, node)
        children: List[Any] = []
        for child in node.children:
            if isinstance(child, ParamRef):
                raise ConfigError(
                    f"Parameter '{child.name}' used outside a template",
                    code="E4010",
                    node_path=node.id,
                    source_line=node.source_line,
                )
            children.append(self._expand_node(child, templates, stack))
        node.children = children
        return node

    def _instantiate(
        self,
        use: NodeDefinition,
        templates: Dict[str, TemplateDefinition],
        stack: List[str],
    ) -> NodeDefinition:
        name = use.config.get("template")
        template = templates.get(name)
        if template is None:
            matches = get_close_matches(str(name), list(templates), n=1)
            hint = f" Did you mean '{matches[0]}'?" if matches else ""
            raise ConfigError(
                f"Unknown template '{name}'.{hint}",
                code="E4009",
                node_path=use.id,
                source_line=use.source_line,
            )
        if name in stack:
            raise ConfigError(
                f"Recursive template use: {' -> '.join(stack + [name])}",
                code="E4011",
                node_path=use.id,
                source_line=use.source_line,
            )

        args = dict(template.defaults)
        given = use.config.get("args") or {}
        unknown = set(given) - set(template.params)
        if unknown:
            raise ConfigError(
                f"Template '{name}' has no parameters {sorted(map(str, unknown))} "
                f"(parameters: {template.params})",
                code="E4010",
                node_path=use.id,
                source_line=use.source_line,
            )
        args.update(given)
        missing = [param for param in template.params if param not in args]
        if missing:
            raise ConfigError(
                f"Template '{name}' is missing parameters {missing}",
                code="E4010",
                node_path=use.id,
                source_line=use.source_line,
            )

        body = copy.deepcopy(template.body)
        instance = self._substitute(body, args, name)
        self._rename(instance, use)
        return self._expand_node(instance, templates, stack + [name])

    def _substitute(self, node: NodeDefinition, args: Dict[str, Any], template: str) -> NodeDefinition:
        node.config = {key: _substitute_value(value, args, template) for key, value in node.config.items()}
        children: List[Any] = []
        for child in node.children:
            if isinstance(child, ParamRef):
                value = _lookup(child.name, args, template)
                if not isinstance(value, NodeDefinition):
                    raise ConfigError(
                        f"Template '{template}': parameter '{child.name}' is used as a child "
                        f"but its value is not a node",
                        code="E4010",
                        node_path=node.id,
                    )
                # The same node argument may be placed more than once.
                children.append(copy.deepcopy(value))
            else:
                children.append(self._substitute(child, args, template))
        node.children = children
        return node

    def _rename(self, instance: NodeDefinition, use: NodeDefinition) -> None:
        prefix = use.id
        for node in instance.walk():
            old_id = node.id
            node.id = prefix if node is instance else f"{prefix}.{old_id}"
            if node.name == old_id:
                node.name = node.id
            if node.source_line is None:
                node.source_line = use.source_line
        if use.name != use.id:
            instance.name = use.name


def _lookup(name: str, args: Dict[str, Any], template: str) -> Any:
    if name not in args:
        raise ConfigError(f"Template '{template}' has no parameter '{name}'", code="E4010")
    return args[name]


def _substitute_value(value: Any, args: Dict[str, Any], template: str) -> Any:
    if isinstance(value, ParamRef):
        return copy.deepcopy(_lookup(value.name, args, template))
    if isinstance(value, str):
        return _substitute_string(value, args, template)
    if isinstance(value, dict):
        return {key: _substitute_value(item, args, template) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute_value(item, args, template) for item in value]
    return value


def _substitute_string(value: str, args: Dict[str, Any], template: str) -> Any:
    match = PARAM_PATTERN.fullmatch(value)
    if match:
        return copy.deepcopy(_lookup(match.group(1), args, template))
    return PARAM_PATTERN.sub(lambda m: str(_lookup(m.group(1), args, template)), value)


def _reject_params(value: Any, node: NodeDefinition) -> None:
    if isinstance(value, ParamRef):
        raise ConfigError(
            f"Parameter '{value.name}' used outside a template",
            code="E4010",
            node_path=node.id,
            source_line=node.source_line,
        )
    if isinstance(value, dict):
        for item in value.values():
            _reject_params(item, node)
    elif isinstance(value, list):
        for item in value:
            _reject_params(item, node)


__all__ = ["PARAM_PATTERN", "TemplateExpander"]
