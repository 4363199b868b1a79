"""
Unit tests for TreeValidator.

Tests lua/validator.py:
- Valid blocks produce no errors
- Each check reports its code with a block:node:line location
- raise_for_errors picks the exception type from the first code
"""

import pytest

from tasktree.errors import ConfigError, TimingError
from tasktree.lua import BlockDefinition, NodeDefinition, TreeValidator, raise_for_errors
from tasktree.lua.definitions import ValidationError


def node(type_: str, id_: str, children=None, line=None, **config) -> NodeDefinition:
    return NodeDefinition(type=type_, id=id_, config=config, children=list(children or []), source_line=line)


def block_of(root: NodeDefinition, **kwargs) -> BlockDefinition:
    return BlockDefinition(name="blk", tree=root, **kwargs)


def codes(block: BlockDefinition, parent_config=None):
    return [error.code for error in TreeValidator().validate(block, parent_config)]


@pytest.fixture
def valid_block() -> BlockDefinition:
    return block_of(
        node("par", "root", [
            node("timeout", "limit", [node("fixation", "cross")], duration=2.0),
            node("event", "resp", group="keypress", keys=["f", "j"], out_key=3),
            node("logger", "log", in_mapping={3: "response"}),
        ], policy="any"),
        state={3: "none"},
        config={"background": "black"},
    )


# =============================================================================
# Valid definitions
# =============================================================================


class TestValidDefinitions:
    def test_no_errors(self, valid_block: BlockDefinition) -> None:
        assert TreeValidator().validate(valid_block) == []

    def test_switch_with_cases(self) -> None:
        root = node("switch", "sw", [node("wait", "a", duration=1), node("nil", "b")],
                    in_control=1, branches=[{"case": "left"}, "default"])
        assert codes(block_of(root)) == []


# =============================================================================
# Node checks
# =============================================================================


class TestNodeChecks:
    """One test per error code."""

    def test_unknown_kind_with_suggestion(self) -> None:
        errors = TreeValidator().validate(block_of(node("wiat", "w", duration=1, line=4)))

        assert errors[0].code == "E4003"
        assert errors[0].suggestion == "wait"
        assert errors[0].location == "blk:w:4"

    def test_unexpanded_use(self) -> None:
        assert codes(block_of(node("use", "u", template="cue", args={}))) == ["E4009"]

    def test_invalid_id(self) -> None:
        assert codes(block_of(node("wait", "1st", duration=1))) == ["E2001"]

    def test_duplicate_id(self) -> None:
        root = node("seq", "root", [node("wait", "w", duration=1), node("wait", "w", duration=2)])
        assert codes(block_of(root)) == ["E3002"]

    def test_child_count(self) -> None:
        assert codes(block_of(node("timeout", "t", duration=1))) == ["E2006"]
        assert codes(block_of(node("seq", "s"))) == ["E2006"]
        assert codes(block_of(node("wait", "w", [node("nil", "n")], duration=1))) == ["E2006"]

    def test_missing_required_field(self) -> None:
        assert codes(block_of(node("wait", "w"))) == ["E4005"]

    def test_unknown_field_with_suggestion(self) -> None:
        errors = TreeValidator().validate(block_of(node("wait", "w", duration=1, durration=2)))

        assert [e.code for e in errors] == ["E4006"]
        assert errors[0].suggestion == "duration"

    @pytest.mark.parametrize("duration,code", [(0, "E6001"), (-1.5, "E6001"), ("1s", "E6002"), (True, "E6002")])
    def test_durations(self, duration, code) -> None:
        assert codes(block_of(node("wait", "w", duration=duration))) == [code]

    def test_onsets(self) -> None:
        root = node("reaction", "rt", times=[2.0, 1.0], tol=0.5)
        assert codes(block_of(root)) == ["E6003"]

    def test_line_ids(self) -> None:
        assert codes(block_of(node("clock", "c", step=1, out_tic=0))) == ["E1005"]
        assert codes(block_of(node("merge", "m", in_many=[1, 2.5], out_one=3))) == ["E1005"]

    def test_policy(self) -> None:
        root = node("par", "p", [node("nil", "n")], policy="some")
        assert codes(block_of(root)) == ["E4003"]

    def test_pointer_mode(self) -> None:
        root = node("pointer", "p", [node("fixation", "f")], until="hover")
        assert codes(block_of(root)) == ["E4003"]

    def test_until_needs_one_trigger(self) -> None:
        child = [node("fixation", "f")]
        assert codes(block_of(node("until", "u", child))) == ["E4003"]
        assert codes(block_of(node("until", "u", child, in_event="keypress", in_line=1))) == ["E4003"]

    def test_switch_mixed_branches(self) -> None:
        root = node("switch", "sw", [node("nil", "a"), node("nil", "b")],
                    in_control=1, branches=["if_true", {"case": 1}])
        assert codes(block_of(root)) == ["E4003"]

    def test_repeat_count(self) -> None:
        assert codes(block_of(node("repeat", "r", [node("nil", "n")], count=0))) == ["E4003"]

    def test_weights(self) -> None:
        root = node("horizontal", "h", [node("fixation", "a"), node("fixation", "b")], weights=[1])
        assert codes(block_of(root)) == ["E2006"]

    def test_expression_syntax(self) -> None:
        assert codes(block_of(node("function", "f", expr="x +"))) == ["E5001"]

    def test_all_errors_reported(self) -> None:
        root = node("seq", "root", [node("wait", "w"), node("wiat", "x", duration=1)])
        assert codes(block_of(root)) == ["E4005", "E4003"]


# =============================================================================
# Block checks
# =============================================================================


class TestBlockChecks:
    def test_unknown_config_key(self) -> None:
        block = block_of(node("nil", "n"), config={"colour": "red"})
        assert codes(block) == ["E4007"]

    def test_parent_config_checked(self) -> None:
        assert codes(block_of(node("nil", "n")), parent_config={"flush_every": 0}) == ["E4007"]

    def test_state_values(self) -> None:
        block = block_of(node("nil", "n"), state={1: [1, 2]})
        assert codes(block) == ["E4007"]


# =============================================================================
# raise_for_errors
# =============================================================================


class TestRaiseForErrors:
    def test_no_errors(self) -> None:
        raise_for_errors([], "blk")

    def test_timing_error_first(self) -> None:
        errors = [
            ValidationError(code="E6001", location="blk:w", message="duration must be positive"),
            ValidationError(code="E4005", location="blk:x", message="missing field"),
        ]
        with pytest.raises(TimingError) as exc_info:
            raise_for_errors(errors, "blk")

        assert exc_info.value.code == "E6001"
        assert "2 error(s)" in exc_info.value.message
        assert "missing field" in exc_info.value.message

    def test_config_error_first(self) -> None:
        errors = [ValidationError(code="E4003", location="blk:w", message="unknown kind")]
        with pytest.raises(ConfigError) as exc_info:
            raise_for_errors(errors, "blk")
        assert exc_info.value.code == "E4003"
