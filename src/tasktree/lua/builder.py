"""
TreeBuilder - Turns node definitions into executable action trees.

Each kind has a factory in NODE_BUILDERS taking the definition and the
already-built children. Definitions should be template-expanded and
validated first; the node constructors still check their own fields, and
every error raised while building a node carries its source line.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from ..core.tree import ActionTree
from ..errors import ConfigError, TaskTreeError
from ..nodes import (
    Action,
    Clock,
    Counter,
    Delayed,
    EventLogger,
    EventWait,
    Fixation,
    Function,
    Horizontal,
    Image,
    Instruction,
    KeyLogger,
    Logger,
    Merge,
    Nil,
    Parallel,
    Pointer,
    Reaction,
    Rect,
    Repeat,
    Sequence,
    Switch,
    Timeout,
    Until,
    Vertical,
    Wait,
)
from ..state.store import coerce_line_id
from .api import line_map
from .definitions import BlockDefinition, NodeDefinition

logger = logging.getLogger(__name__)

NodeFactory = Callable[[NodeDefinition, List[Action]], Action]


def _lines(config: Dict[str, Any], *names: str) -> Dict[str, Any]:
    """Config copy with line-id fields coerced to ints."""
    result = dict(config)
    for name in names:
        if result.get(name) is not None:
            result[name] = coerce_line_id(result[name])
    if "in_mapping" in result:
        result["in_mapping"] = line_map(result["in_mapping"])
    return result


def _leaf(cls: type, *line_fields: str) -> NodeFactory:
    def build(defn: NodeDefinition, children: List[Action]) -> Action:
        return cls(defn.id, name=defn.name, **_lines(defn.config, *line_fields))
    return build


def _composite(cls: type) -> NodeFactory:
    def build(defn: NodeDefinition, children: List[Action]) -> Action:
        return cls(defn.id, children=children, name=defn.name, **defn.config)
    return build


def _decorator(cls: type, *line_fields: str) -> NodeFactory:
    def build(defn: NodeDefinition, children: List[Action]) -> Action:
        child = children[0] if children else None
        return cls(defn.id, child=child, name=defn.name, **_lines(defn.config, *line_fields))
    return build


def _build_switch(defn: NodeDefinition, children: List[Action]) -> Action:
    config = dict(defn.config)
    labels = config.pop("branches", [])
    branches: Dict[str, Action] = {}
    cases = []
    for label, child in zip(labels, children):
        if isinstance(label, dict):
            cases.append((label["case"], child))
        else:
            branches[label] = child
    return Switch(
        defn.id,
        in_control=coerce_line_id(config.pop("in_control")),
        if_true=branches.get("if_true"),
        if_false=branches.get("if_false"),
        cases=cases if cases else None,
        default=branches.get("default"),
        name=defn.name,
        **config,
    )


def _build_merge(defn: NodeDefinition, children: List[Action]) -> Action:
    config = dict(defn.config)
    return Merge(
        defn.id,
        in_many=[coerce_line_id(line) for line in config.pop("in_many")],
        out_one=coerce_line_id(config.pop("out_one")),
        name=defn.name,
        **config,
    )


def _build_counter(defn: NodeDefinition, children: List[Action]) -> Action:
    config = dict(defn.config)
    out_count = config.pop("out_count", None)
    out_mapping = {"count": coerce_line_id(out_count)} if out_count is not None else None
    return Counter(defn.id, name=defn.name, out_mapping=out_mapping, **config)


def _build_use(defn: NodeDefinition, children: List[Action]) -> Action:
    raise ConfigError(
        f"Template use '{defn.config.get('template')}' must be expanded before building",
        code="E4009",
    )


NODE_BUILDERS: Dict[str, NodeFactory] = {
    "seq": _composite(Sequence),
    "par": _composite(Parallel),
    "horizontal": _composite(Horizontal),
    "vertical": _composite(Vertical),
    "timeout": _decorator(Timeout),
    "delayed": _decorator(Delayed),
    "repeat": _decorator(Repeat),
    "until": _decorator(Until, "in_line"),
    "pointer": _decorator(Pointer, "out_x", "out_y"),
    "rect": _decorator(Rect),
    "switch": _build_switch,
    "nil": _leaf(Nil),
    "wait": _leaf(Wait),
    "clock": _leaf(Clock, "out_tic"),
    "function": _leaf(Function, "out_result"),
    "merge": _build_merge,
    "logger": _leaf(Logger),
    "key_logger": _leaf(KeyLogger),
    "event_logger": _leaf(EventLogger),
    "reaction": _leaf(Reaction, "out_accuracy", "out_recall", "out_mean_rt"),
    "event": _leaf(EventWait, "out_key"),
    "instruction": _leaf(Instruction),
    "image": _leaf(Image),
    "fixation": _leaf(Fixation),
    "counter": _build_counter,
    "use": _build_use,
}


class TreeBuilder:
    """Builds ActionTree instances from block definitions.

    Example:
        >>> tree = TreeBuilder().build(block)
        >>> tree.root.kind
        'seq'
    """

    def __init__(self, builders: Dict[str, NodeFactory] = None) -> None:
        self._builders = dict(NODE_BUILDERS)
        if builders:
            self._builders.update(builders)

    def build(self, block: BlockDefinition) -> ActionTree:
        """Build the block's tree.

        Raises:
            ConfigError: Unknown kind or malformed fields.
            TimingError: Non-positive durations.
        """
        root = self.build_node(block.tree)
        tree = ActionTree(
            id=block.name,
            name=block.name,
            root=root,
            description=block.description,
            source_path=block.source_path,
        )
        logger.debug(f"Built tree '{tree.id}' with {tree.node_count} nodes")
        return tree

    def build_node(self, defn: NodeDefinition) -> Action:
        """Build one node and its subtree, children first."""
        factory = self._builders.get(defn.type)
        if factory is None:
            raise ConfigError(
                f"Unknown node kind '{defn.type}'",
                code="E4003",
                node_path=defn.id,
                source_line=defn.source_line,
            )

        children = []
        for child in defn.children:
            if not isinstance(child, NodeDefinition):
                raise ConfigError(
                    f"Child placeholder {child!r} outside a template",
                    code="E4010",
                    node_path=defn.id,
                    source_line=defn.source_line,
                )
            children.append(self.build_node(child))

        try:
            return factory(defn, children)
        except TaskTreeError as e:
            if e.source_line is None:
                e.source_line = defn.source_line
            e.attach_path(defn.id)
            raise
        except TypeError as e:
            # Unexpected or missing keyword for the node constructor
            raise ConfigError(
                f"Node '{defn.id}' of kind '{defn.type}': {e}",
                code="E4006",
                node_path=defn.id,
                source_line=defn.source_line,
            ) from e


__all__ = ["NODE_BUILDERS", "NodeFactory", "TreeBuilder"]
