"""
Unit tests for TreeLoader and the Lua DSL.

Tests lua/loader.py and lua/api.py:
- Loading blocks and tasks from strings and files
- Positional shorthand, auto ids and keyword-named kinds
- Switch branches, line bindings and initial state
- Error handling (E4001, E4002, E4006, E4008, E41xx)
"""

from pathlib import Path

import pytest

from tasktree.errors import ConfigError, DefinitionLoadError, VariableError
from tasktree.lua import (
    BlockDefinition,
    DslApiBuilder,
    NodeDefinition,
    ParamRef,
    TaskDefinition,
    TreeLoader,
    line_map,
    state_map,
)


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def loader() -> TreeLoader:
    """Create a test TreeLoader."""
    return TreeLoader(sandbox_timeout=2.0)


@pytest.fixture
def lua_file(tmp_path: Path):
    """Write Lua source to a file in tmp_path."""

    def _create(content: str, name: str = "task.lua") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _create


SIMPLE_BLOCK = """
return block {
    name = "demo",
    version = "1.0",
    seq {
        wait { 1.0 },
        wait { duration = 2.0, id = "second" },
    },
}
"""


# =============================================================================
# Loading
# =============================================================================


class TestTreeLoaderLoading:
    """Tests for loading definitions."""

    def test_load_block_from_string(self, loader: TreeLoader) -> None:
        block = loader.load_string(SIMPLE_BLOCK)

        assert isinstance(block, BlockDefinition)
        assert block.name == "demo"
        assert block.version == "1.0"
        assert block.tree.type == "seq"
        assert [child.id for child in block.tree.children] == ["wait-1", "second"]
        assert block.tree.children[0].config == {"duration": 1.0}

    def test_load_from_file(self, loader: TreeLoader, lua_file) -> None:
        path = lua_file(SIMPLE_BLOCK)
        block = loader.load(path)

        assert block.source_path == str(path)

    def test_load_task(self, loader: TreeLoader) -> None:
        task = loader.load_string("""
            return task {
                name = "study",
                config = { background = "black" },
                block { name = "practice", wait { 1.0 } },
                block { name = "main", wait { 2.0 } },
            }
        """)

        assert isinstance(task, TaskDefinition)
        assert task.block_names == ["practice", "main"]
        assert task.config == {"background": "black"}
        assert task.block("main").tree.config["duration"] == 2.0

    def test_load_task_wraps_block(self, loader: TreeLoader, lua_file) -> None:
        """A file returning a single block loads as a one-block task."""
        task = loader.load_task(lua_file(SIMPLE_BLOCK))

        assert task.name == "demo"
        assert task.block_names == ["demo"]

    def test_source_lines(self, loader: TreeLoader) -> None:
        block = loader.load_string(SIMPLE_BLOCK)

        assert block.tree.children[0].source_line == 6
        assert block.tree.children[1].source_line == 7

    def test_helpers_and_locals(self, loader: TreeLoader) -> None:
        """Definition files are ordinary Lua: loops and locals work."""
        block = loader.load_string("""
            local items = {}
            for i = 1, 3 do
                items[#items + 1] = instruction { "Trial " .. i, duration = 1.0 }
            end
            return block { name = "loop", seq(items) }
        """)

        texts = [child.config["text"] for child in block.tree.children]
        assert texts == ["Trial 1", "Trial 2", "Trial 3"]


# =============================================================================
# DSL shapes
# =============================================================================


class TestDslShapes:
    """Tests for the node functions' table conventions."""

    def test_shorthand_argument(self, loader: TreeLoader) -> None:
        """A single non-table argument fills the positional field."""
        block = loader.load_string("""
            return block { name = "b", seq { wait(1.5), instruction "Hello" } }
        """)

        wait, text = block.tree.children
        assert wait.config == {"duration": 1.5}
        assert text.config == {"text": "Hello"}

    def test_auto_ids_per_kind(self, loader: TreeLoader) -> None:
        block = loader.load_string("""
            return block { name = "b", seq { wait { 1 }, fixation {}, wait { 2 } } }
        """)

        assert [node.id for node in block.tree.walk()] == ["seq-1", "wait-1", "fixation-1", "wait-2"]

    def test_keyword_kinds(self, loader: TreeLoader) -> None:
        """Kinds named after Lua keywords take a trailing underscore."""
        block = loader.load_string("""
            return block {
                name = "b",
                par {
                    repeat_ { count = 2, nil_ {} },
                    until_ { in_line = 3, wait { 1 } },
                    function_ { "x + 1", in_mapping = { x = 1 }, out_result = 2 },
                },
            }
        """)

        assert [child.type for child in block.tree.children] == ["repeat", "until", "function"]
        assert block.tree.children[0].children[0].type == "nil"
        assert block.tree.children[2].config["in_mapping"] == {1: "x"}

    def test_pointer_until_field(self, loader: TreeLoader) -> None:
        block = loader.load_string("""
            return block { name = "b", pointer { ["until"] = "hit", out_x = 1, fixation {} } }
        """)

        assert block.tree.config == {"until": "hit", "out_x": 1}
        assert block.tree.children[0].type == "fixation"

    def test_switch_boolean_branches(self, loader: TreeLoader) -> None:
        block = loader.load_string("""
            return block {
                name = "b",
                switch { in_control = 1, if_true = wait { 1 }, if_false = wait { 2 } },
            }
        """)

        assert block.tree.config == {"in_control": 1, "branches": ["if_true", "if_false"]}
        assert [child.config["duration"] for child in block.tree.children] == [1, 2]

    def test_switch_cases(self, loader: TreeLoader) -> None:
        block = loader.load_string("""
            return block {
                name = "b",
                switch {
                    in_control = 1,
                    cases = { { "left", wait { 1 } }, { 2, wait { 2 } } },
                    default = nil_ {},
                },
            }
        """)

        assert block.tree.config["branches"] == [{"case": "left"}, {"case": 2}, "default"]
        assert len(block.tree.children) == 3

    def test_switch_positional_children_rejected(self, loader: TreeLoader) -> None:
        with pytest.raises(ConfigError) as exc_info:
            loader.load_string("""
                return block { name = "b", switch { in_control = 1, wait { 1 } } }
            """)
        assert exc_info.value.code == "E4006"

    def test_state_and_config(self, loader: TreeLoader) -> None:
        block = loader.load_string("""
            return block {
                name = "b",
                config = { background = "black" },
                state = { [1] = 0, [10] = "none", [4] = true },
                wait { 1 },
            }
        """)

        assert block.state == {1: 0, 10: "none", 4: True}
        assert block.config == {"background": "black"}

    def test_unexpected_positional_value(self, loader: TreeLoader) -> None:
        with pytest.raises(ConfigError) as exc_info:
            loader.load_string('return block { name = "b", wait { 1, 2 } }')
        assert exc_info.value.code == "E4006"
        assert exc_info.value.source_line == 1

    def test_lua_function_rejected(self, loader: TreeLoader) -> None:
        with pytest.raises(ConfigError) as exc_info:
            loader.load_string('return block { name = "b", wait { duration = function() return 1 end } }')
        assert exc_info.value.code == "E4006"

    def test_non_string_id(self, loader: TreeLoader) -> None:
        with pytest.raises(ConfigError) as exc_info:
            loader.load_string('return block { name = "b", wait { 1, id = 5 } }')
        assert exc_info.value.code == "E2001"

    def test_template_and_param(self, loader: TreeLoader) -> None:
        block = loader.load_string("""
            template { "cue", params = { "text" }, instruction { param "text", duration = 1 } }
            return block { name = "b", use { "cue", id = "c1", text = "Go" } }
        """)

        assert block.tree.type == "use"
        assert block.tree.config == {"template": "cue", "args": {"text": "Go"}}
        assert block.templates["cue"].body.config["text"] == ParamRef("text")

    def test_duplicate_template(self, loader: TreeLoader) -> None:
        with pytest.raises(ConfigError) as exc_info:
            loader.load_string("""
                template { "cue", fixation {} }
                template { "cue", fixation {} }
                return block { name = "b", fixation {} }
            """)
        assert exc_info.value.code == "E4012"


# =============================================================================
# Errors
# =============================================================================


class TestTreeLoaderErrors:
    """Tests for load failures."""

    def test_missing_file(self, loader: TreeLoader, tmp_path: Path) -> None:
        with pytest.raises(DefinitionLoadError) as exc_info:
            loader.load(tmp_path / "missing.lua")
        assert exc_info.value.code == "E4001"

    def test_wrong_suffix(self, loader: TreeLoader, lua_file) -> None:
        with pytest.raises(DefinitionLoadError) as exc_info:
            loader.load(lua_file(SIMPLE_BLOCK, name="task.txt"))
        assert exc_info.value.code == "E4001"

    def test_returns_nothing(self, loader: TreeLoader) -> None:
        with pytest.raises(DefinitionLoadError) as exc_info:
            loader.load_string("local x = 1")
        assert exc_info.value.code == "E4002"

    def test_returns_bare_node(self, loader: TreeLoader) -> None:
        with pytest.raises(DefinitionLoadError) as exc_info:
            loader.load_string("return wait { 1 }")
        assert exc_info.value.code == "E4002"
        assert "block" in exc_info.value.message

    def test_syntax_error(self, loader: TreeLoader) -> None:
        with pytest.raises(DefinitionLoadError) as exc_info:
            loader.load_string("return block {")
        assert exc_info.value.code == "E4101"

    def test_runtime_error(self, loader: TreeLoader) -> None:
        with pytest.raises(DefinitionLoadError) as exc_info:
            loader.load_string('\n\nerror("bad task")')
        assert exc_info.value.code == "E4102"
        assert exc_info.value.source_line == 3

    def test_sandbox_violation(self, loader: TreeLoader) -> None:
        with pytest.raises(DefinitionLoadError) as exc_info:
            loader.load_string('os.remove("x")\nreturn block { name = "b", wait { 1 } }')
        assert exc_info.value.code == "E4104"

    def test_duplicate_block_names(self, loader: TreeLoader) -> None:
        with pytest.raises(ConfigError) as exc_info:
            loader.load_string("""
                return task { name = "t", block { name = "a", wait { 1 } }, block { name = "a", wait { 1 } } }
            """)
        assert exc_info.value.code == "E4008"

    def test_missing_block(self, loader: TreeLoader) -> None:
        task = loader.load_string('return task { name = "t", block { name = "a", wait { 1 } } }')
        with pytest.raises(ConfigError) as exc_info:
            task.block("b")
        assert exc_info.value.code == "E4008"

    def test_block_without_root(self, loader: TreeLoader) -> None:
        with pytest.raises(ConfigError) as exc_info:
            loader.load_string('return block { name = "b" }')
        assert exc_info.value.code == "E4005"


# =============================================================================
# Helpers
# =============================================================================


class TestBindingHelpers:
    """Tests for line_map and state_map."""

    @pytest.mark.parametrize("value,expected", [
        ({3: "x"}, {3: "x"}),
        ({"x": 3}, {3: "x"}),
        (["x", "y"], {1: "x", 2: "y"}),
        (None, {}),
    ])
    def test_line_map_forms(self, value, expected) -> None:
        assert line_map(value) == expected

    def test_line_map_invalid_line(self) -> None:
        with pytest.raises(VariableError) as exc_info:
            line_map({0: "x"})
        assert exc_info.value.code == "E1005"

    def test_line_map_bound_twice(self) -> None:
        with pytest.raises(ConfigError):
            line_map({3: "x", "y": 3})

    def test_state_map_list(self) -> None:
        assert state_map([5, "a"]) == {1: 5, 2: "a"}

    def test_builder_numbers_ids(self) -> None:
        api = DslApiBuilder().build_api()
        first = api["wait"]({"duration": 1.0})
        second = api["wait"]({"duration": 2.0})

        assert isinstance(first, NodeDefinition)
        assert (first.id, second.id) == ("wait-1", "wait-2")
        assert "nil_" in api and "until_" in api
