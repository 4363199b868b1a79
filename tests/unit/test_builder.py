"""
Unit tests for TreeBuilder.

Tests lua/builder.py:
- Every DSL kind builds into its node class
- Line ids are coerced, switch branches and counter outputs are wired
- Constructor errors carry the node id and source line
"""

import pytest

from tasktree.errors import ConfigError, TimingError
from tasktree.lua import NODE_BUILDERS, BlockDefinition, NodeDefinition, TreeBuilder, TreeLoader
from tasktree.lua.definitions import KIND_SPECS
from tasktree.nodes import Counter, Logger, Merge, Sequence, Switch, Until


ALL_KINDS = """
return block {
    name = "all",
    state = { [1] = true },
    seq {
        par {
            policy = "any",
            horizontal { weights = { 1, 2 }, fixation {}, instruction { "x" } },
            vertical { fixation {}, image { "cat.png", width = 0.5 } },
            clock { 1.0, out_tic = 2 },
            function_ { "tic * 2", in_mapping = { tic = 2 }, out_result = 3 },
            merge { in_many = { 2, 3 }, out_one = 4 },
            logger { "trial", in_mapping = { [4] = "merged" } },
            key_logger {},
            event_logger { "pointer" },
            reaction { times = { 1.0 }, tol = 0.5, out_accuracy = 5 },
            counter { 2, out_count = 6 },
        },
        timeout { 1.0, wait { 2.0 } },
        delayed { 0.5, nil_ {} },
        repeat_ { count = 2, nil_ {} },
        until_ { in_event = "keypress", keys = { "space" }, fixation {} },
        switch { in_control = 1, if_true = wait { 0.1 } },
        pointer { ["until"] = "never", out_x = 7, out_y = 8, rect { "red", duration = 0.2 } },
        event { "keypress", out_key = 9 },
    },
}
"""


@pytest.fixture
def all_kinds_block() -> BlockDefinition:
    return TreeLoader().load_string(ALL_KINDS)


class TestTreeBuilder:
    """Tests for building action trees."""

    def test_every_kind_has_a_builder(self) -> None:
        assert set(NODE_BUILDERS) == set(KIND_SPECS)

    def test_builds_every_kind(self, all_kinds_block: BlockDefinition) -> None:
        tree = TreeBuilder().build(all_kinds_block)

        kinds = {node.kind for node in tree.walk()}
        assert kinds == set(KIND_SPECS) - {"use"}
        assert tree.id == "all"
        assert isinstance(tree.root, Sequence)

    def test_bound_lines(self, all_kinds_block: BlockDefinition) -> None:
        tree = TreeBuilder().build(all_kinds_block)
        assert tree.bound_lines() == list(range(1, 10))

    def test_line_fields_wired(self, all_kinds_block: BlockDefinition) -> None:
        tree = TreeBuilder().build(all_kinds_block)

        merge = tree.find("merge-1")
        assert isinstance(merge, Merge)
        assert merge.in_mapping == {2: "in_1", 3: "in_2"}
        assert merge.out_mapping == {"one": 4}

        logger = tree.find("logger-1")
        assert isinstance(logger, Logger)
        assert logger.group == "trial"
        assert logger.in_mapping == {4: "merged"}

        counter = tree.find("counter-1")
        assert isinstance(counter, Counter)
        assert counter.count == 2
        assert counter.out_mapping == {"count": 6}

    def test_switch_branches(self, all_kinds_block: BlockDefinition) -> None:
        tree = TreeBuilder().build(all_kinds_block)
        switch = tree.find("switch-1")

        assert isinstance(switch, Switch)
        assert switch.children[0].id == "wait-2"
        assert switch.children[1].id == "switch-1.if_false"

    def test_until_event(self, all_kinds_block: BlockDefinition) -> None:
        tree = TreeBuilder().build(all_kinds_block)
        until = tree.find("until-1")

        assert isinstance(until, Until)
        assert until.in_event == "keypress"
        assert until.keys == ("space",)

    def test_unknown_kind(self) -> None:
        block = BlockDefinition(name="b", tree=NodeDefinition(type="wiat", id="w", source_line=3))
        with pytest.raises(ConfigError) as exc_info:
            TreeBuilder().build(block)
        assert exc_info.value.code == "E4003"
        assert exc_info.value.source_line == 3

    def test_unexpected_keyword(self) -> None:
        """Fields the node class does not take map to E4006."""
        block = BlockDefinition(
            name="b",
            tree=NodeDefinition(type="wait", id="w", config={"duration": 1, "colour": "red"}, source_line=7),
        )
        with pytest.raises(ConfigError) as exc_info:
            TreeBuilder().build(block)
        assert exc_info.value.code == "E4006"
        assert exc_info.value.source_line == 7

    def test_constructor_errors_keep_code(self) -> None:
        block = BlockDefinition(
            name="b",
            tree=NodeDefinition(type="wait", id="w", config={"duration": 0}, source_line=2),
        )
        with pytest.raises(TimingError) as exc_info:
            TreeBuilder().build(block)
        assert exc_info.value.code == "E6001"
        assert exc_info.value.source_line == 2
        assert exc_info.value.node_path == "w"

    def test_unexpanded_use(self) -> None:
        block = BlockDefinition(
            name="b",
            tree=NodeDefinition(type="use", id="u", config={"template": "cue", "args": {}}),
        )
        with pytest.raises(ConfigError) as exc_info:
            TreeBuilder().build(block)
        assert exc_info.value.code == "E4009"

    def test_custom_builder(self) -> None:
        def build_wait(defn, children):
            return Counter(defn.id, count=1)

        block = BlockDefinition(name="b", tree=NodeDefinition(type="wait", id="w", config={"duration": 1}))
        tree = TreeBuilder({"wait": build_wait}).build(block)
        assert isinstance(tree.root, Counter)
