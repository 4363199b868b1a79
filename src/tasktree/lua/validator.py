"""
TreeValidator - Validates block definitions before building.

Run after template expansion to report every problem at once instead of
stopping at the first node that fails to build:
- Unknown node kinds, with a suggestion for typos (E4003)
- Node ids well formed (E2001) and unique (E3002)
- Child counts match the kind (E2006)
- Required fields present (E4005), no unknown fields (E4006)
- Durations and steps positive (E6001/E6002), onsets ascending (E6003)
- Line bindings are positive integers (E1005)
- Policy, pointer mode and until trigger values (E4003)
- Function expressions parse (E5xxx)
- Block config and initial state are valid (E4007)
"""

from __future__ import annotations

import logging
from difflib import get_close_matches
from typing import Any, Dict, List, Optional

from ..config import BlockConfig
from ..errors import ConfigError, TaskTreeError, TimingError
from ..expr import compile_expression
from ..nodes.composites import ParallelPolicy
from ..nodes.stimuli import PointerMode
from ..state.store import coerce_line_id
from .definitions import (
    COMMON_FIELDS,
    KIND_SPECS,
    TIME_FIELDS,
    BlockDefinition,
    NodeDefinition,
    ValidationError,
    is_valid_node_id,
)

logger = logging.getLogger(__name__)

_LINE_FIELDS = (
    "in_line", "in_control", "out_tic", "out_result", "out_one", "out_key",
    "out_accuracy", "out_recall", "out_mean_rt", "out_x", "out_y", "out_count",
)

_STATE_TYPES = (bool, int, float, str)


class TreeValidator:
    """Validates block definitions.

    Returns an empty list on success, a list of ValidationError otherwise.
    Every error carries a location of the form block:node_id:line.

    Example:
        >>> errors = TreeValidator().validate(block)
        >>> for error in errors:
        ...     print(error)
    """

    def validate(self, block: BlockDefinition, parent_config: Optional[Dict[str, Any]] = None) -> List[ValidationError]:
        errors: List[ValidationError] = []
        seen_ids: Dict[str, str] = {}

        self._validate_node(block.tree, block.name, errors, seen_ids)
        self._validate_block(block, parent_config, errors)

        if errors:
            logger.debug(f"Block '{block.name}' has {len(errors)} validation errors")
        return errors

    # =========================================================================
    # Block level
    # =========================================================================

    def _validate_block(
        self,
        block: BlockDefinition,
        parent_config: Optional[Dict[str, Any]],
        errors: List[ValidationError],
    ) -> None:
        location = ValidationError.make_location(block.name)
        try:
            BlockConfig.merged(parent_config, block.config)
        except TaskTreeError as e:
            errors.append(ValidationError(code=e.code, location=location, message=e.message))

        for line, value in block.state.items():
            if not isinstance(value, _STATE_TYPES):
                errors.append(ValidationError(
                    code="E4007",
                    location=location,
                    message=f"Initial value of line {line} must be a bool, number or string, got {value!r}",
                ))

    # =========================================================================
    # Node level
    # =========================================================================

    def _validate_node(
        self,
        node: NodeDefinition,
        block_name: str,
        errors: List[ValidationError],
        seen_ids: Dict[str, str],
    ) -> None:
        location = ValidationError.make_location(block_name, node.id, node.source_line)

        def error(code: str, message: str, suggestion: Optional[str] = None) -> None:
            errors.append(ValidationError(code=code, location=location, message=message, suggestion=suggestion))

        if node.id in seen_ids:
            error("E3002", f"Duplicate node ID '{node.id}'. First occurrence at {seen_ids[node.id]}")
        else:
            seen_ids[node.id] = location
        if not is_valid_node_id(node.id):
            error("E2001", f"Invalid node ID '{node.id}': must start with a letter, "
                           "followed by letters, digits, '_', '-' or '.'")

        spec = KIND_SPECS.get(node.type)
        if spec is None or node.type == "use":
            if node.type == "use":
                error("E4009", f"Template use '{node.config.get('template')}' was not expanded")
            else:
                matches = get_close_matches(node.type, [k for k in KIND_SPECS if k != "use"], n=1)
                error("E4003", f"Unknown node kind '{node.type}'", suggestion=matches[0] if matches else None)
        else:
            self._check_children(node, spec.children, error)
            self._check_fields(node, spec, error)
            self._check_values(node, error)

        for child in node.children:
            if isinstance(child, NodeDefinition):
                self._validate_node(child, block_name, errors, seen_ids)
            else:
                error("E4010", f"Child placeholder {child!r} outside a template")

    def _check_children(self, node: NodeDefinition, rule: str, error) -> None:
        count = len(node.children)
        expected = {"0": (0, 0), "1": (1, 1), "0-1": (0, 1), "1+": (1, None)}
        if rule == "branches":
            labels = node.config.get("branches", [])
            if len(labels) != count:
                error("E2006", f"switch '{node.id}' has {count} branches but {len(labels)} labels")
            return
        low, high = expected[rule]
        if count < low or (high is not None and count > high):
            error("E2006", f"Node '{node.id}' of kind '{node.type}' has {count} children (expected: {rule})")

    def _check_fields(self, node: NodeDefinition, spec, error) -> None:
        for name in spec.required:
            if node.config.get(name) is None:
                error("E4005", f"Node '{node.id}' of kind '{node.type}' is missing required field '{name}'")

        allowed = set(spec.fields) | set(COMMON_FIELDS)
        if node.type == "switch":
            allowed.add("branches")
        for name in node.config:
            if name not in allowed:
                matches = get_close_matches(str(name), sorted(allowed), n=1)
                error(
                    "E4006",
                    f"Node '{node.id}' of kind '{node.type}' has unknown field '{name}'",
                    suggestion=matches[0] if matches else None,
                )

    def _check_values(self, node: NodeDefinition, error) -> None:
        config = node.config

        for name in TIME_FIELDS:
            value = config.get(name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                error("E6002", f"Node '{node.id}': {name} must be a number, got {value!r}")
            elif value <= 0:
                error("E6001", f"Node '{node.id}': {name} must be positive, got {value}")

        times = config.get("times")
        if times is not None:
            numeric = isinstance(times, list) and all(
                isinstance(t, (int, float)) and not isinstance(t, bool) for t in times
            )
            if not numeric or not times or any(t < 0 for t in times) or list(times) != sorted(times):
                error("E6003", f"Node '{node.id}': times must be ascending non-negative numbers, got {times!r}")

        for name in _LINE_FIELDS:
            if config.get(name) is not None:
                self._check_line(node, name, config[name], error)
        if "in_many" in config:
            lines = config["in_many"]
            if not isinstance(lines, list) or not lines:
                error("E4006", f"Node '{node.id}': in_many must be a non-empty list of lines")
            else:
                for line in lines:
                    self._check_line(node, "in_many", line, error)
        if isinstance(config.get("in_mapping"), dict):
            for line in config["in_mapping"]:
                self._check_line(node, "in_mapping", line, error)

        policy = config.get("policy")
        if policy is not None and policy not in [p.value for p in ParallelPolicy]:
            error("E4003", f"Node '{node.id}': policy must be 'all' or 'any', got {policy!r}")

        if node.type == "pointer" and config.get("until") is not None:
            if config["until"] not in [mode.value for mode in PointerMode]:
                error("E4003", f"Node '{node.id}': until must be one of "
                               f"{[mode.value for mode in PointerMode]}, got {config['until']!r}")

        if node.type == "until":
            triggers = [name for name in ("in_event", "in_line") if config.get(name) is not None]
            if len(triggers) != 1:
                error("E4003", f"Node '{node.id}': until needs exactly one of in_event or in_line")

        if node.type == "switch":
            labels = [label if isinstance(label, str) else "case" for label in config.get("branches", [])]
            if "case" in labels and ("if_true" in labels or "if_false" in labels):
                error("E4003", f"switch '{node.id}' takes either if_true/if_false or cases, not both")

        if node.type == "repeat" and config.get("count") is not None:
            count = config["count"]
            if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
                error("E4003", f"Node '{node.id}': count must be a positive integer, got {count!r}")

        if node.type == "counter" and config.get("count") is not None:
            count = config["count"]
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                error("E4003", f"Node '{node.id}': count must be a non-negative integer, got {count!r}")

        weights = config.get("weights")
        if weights is not None:
            if (not isinstance(weights, list) or len(weights) != len(node.children)
                    or any(isinstance(w, bool) or not isinstance(w, (int, float)) or w <= 0 for w in weights)):
                error("E2006", f"Node '{node.id}': weights must be {len(node.children)} positive numbers")

        if node.type == "function" and isinstance(config.get("expr"), str):
            try:
                compile_expression(config["expr"])
            except TaskTreeError as e:
                error(e.code, f"Node '{node.id}': {e.message}")

    def _check_line(self, node: NodeDefinition, name: str, value: Any, error) -> None:
        try:
            coerce_line_id(value)
        except TaskTreeError:
            error("E1005", f"Node '{node.id}': {name} must be a positive line id, got {value!r}")


def raise_for_errors(errors: List[ValidationError], block_name: str) -> None:
    """Raise the first validation error as an engine error.

    Timing problems raise TimingError, everything else ConfigError; the
    message lists every error found.

    Raises:
        TimingError: If the first error has an E6xxx code.
        ConfigError: Otherwise.
    """
    if not errors:
        return
    first = errors[0]
    details = "\n".join(str(e) for e in errors)
    message = f"Block '{block_name}' failed validation with {len(errors)} error(s):\n{details}"
    error_type = TimingError if first.code.startswith("E6") else ConfigError
    raise error_type(message, code=first.code)


__all__ = ["TreeValidator", "raise_for_errors"]
