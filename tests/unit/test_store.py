"""
Unit tests for VariableStore.

Tests the store from state/store.py:
- Declaration and unbound reads
- Writes, versions and dirty tracking
- Initial state from a snapshot
- Line id coercion
- Error codes E1001-E1006
"""

import pytest

from tasktree.errors import VariableError
from tasktree.state import TRIGGER, UNBOUND, VariableStore, coerce_line_id


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> VariableStore:
    store = VariableStore()
    store.declare_many([1, 2, 3])
    return store


# =============================================================================
# Reads and writes
# =============================================================================


class TestReadWrite:
    """Tests for basic line access."""

    def test_declared_line_starts_unbound(self, store: VariableStore) -> None:
        """A declared line that was never written reads as UNBOUND."""
        assert store.read(1) is UNBOUND
        assert not store.is_bound(1)
        assert store.version(1) == 0
        assert store.written_tick(1) == -1

    def test_write_then_read(self, store: VariableStore) -> None:
        """Written values are readable immediately."""
        store.write(1, 0.5)
        assert store.read(1) == 0.5
        assert store.is_bound(1)

    def test_write_bumps_version(self, store: VariableStore) -> None:
        """Every write increments the line's version."""
        store.write(2, "a")
        store.clear_dirty()
        store.write(2, "a")
        assert store.version(2) == 2

    def test_undeclared_read_fails(self, store: VariableStore) -> None:
        """Reading an undeclared line raises E1001."""
        with pytest.raises(VariableError) as exc_info:
            store.read(99)
        assert exc_info.value.code == "E1001"

    def test_undeclared_write_fails(self, store: VariableStore) -> None:
        """Writing an undeclared line raises E1001."""
        with pytest.raises(VariableError) as exc_info:
            store.write(42, 1)
        assert exc_info.value.code == "E1001"

    def test_unsupported_value_type(self, store: VariableStore) -> None:
        """Lines hold scalars only (E1002)."""
        with pytest.raises(VariableError) as exc_info:
            store.write(1, [1, 2])
        assert exc_info.value.code == "E1002"

    def test_require_unbound_fails(self, store: VariableStore) -> None:
        """require() on an unbound line raises E1003."""
        with pytest.raises(VariableError) as exc_info:
            store.require(3)
        assert exc_info.value.code == "E1003"

    def test_trigger_marker(self, store: VariableStore) -> None:
        """trigger() writes the value-less TRIGGER marker."""
        store.trigger(1, writer="button")
        assert store.read(1) is TRIGGER
        assert store.is_dirty(1)

    def test_declare_twice_is_noop(self, store: VariableStore) -> None:
        """Re-declaring keeps the existing value."""
        store.write(1, 7)
        store.declare(1)
        assert store.read(1) == 7


# =============================================================================
# Tick bookkeeping
# =============================================================================


class TestDirtyTracking:
    """Tests for per-tick change tracking."""

    def test_write_marks_dirty_until_tick_ends(self, store: VariableStore) -> None:
        """Dirty flags are cleared at the end of a tick."""
        store.write(1, True)
        assert store.is_dirty(1)
        assert not store.is_dirty(2)

        store.clear_dirty()
        assert not store.is_dirty(1)
        assert store.tick == 1

    def test_written_tick_recorded(self, store: VariableStore) -> None:
        """The tick index of the last write is kept."""
        store.clear_dirty()
        store.clear_dirty()
        store.write(2, 5)
        assert store.written_tick(2) == 2

    def test_double_write_warns(self, store: VariableStore) -> None:
        """Two writes in one tick keep the later value and record a warning."""
        store.write(1, "first", writer="a")
        store.write(1, "second", writer="b")

        assert store.read(1) == "second"
        warnings = store.drain_warnings()
        assert len(warnings) == 1
        assert "E1006" in warnings[0]
        assert store.drain_warnings() == []

    def test_writes_in_different_ticks_do_not_warn(self, store: VariableStore) -> None:
        """Only same-tick writes count as a race."""
        store.write(1, 1)
        store.clear_dirty()
        store.write(1, 2)
        assert store.drain_warnings() == []


# =============================================================================
# Snapshots
# =============================================================================


class TestSnapshot:
    """Tests for initial state and snapshots."""

    def test_from_snapshot_values(self) -> None:
        """Initial values are bound, carry version 1 and are not dirty."""
        store = VariableStore.from_snapshot({1: 0, 4: True}, declared=[2])

        assert store.read(1) == 0
        assert store.read(4) is True
        assert store.read(2) is UNBOUND
        assert store.version(1) == 1
        assert not store.is_dirty(1)
        assert store.lines == [1, 2, 4]

    def test_snapshot_keys_are_coerced(self) -> None:
        """String and float keys become integer lines."""
        store = VariableStore.from_snapshot({"3": "x", 5.0: 1.5})
        assert store.read(3) == "x"
        assert store.read(5) == 1.5

    def test_snapshot_collision(self) -> None:
        """Two keys naming the same line raise E1004."""
        with pytest.raises(VariableError) as exc_info:
            VariableStore.from_snapshot({1: "a", "1": "b"})
        assert exc_info.value.code == "E1004"

    def test_snapshot_excludes_unbound(self) -> None:
        """snapshot() only lists bound lines."""
        store = VariableStore.from_snapshot({2: "set"}, declared=[1, 3])
        store.write(3, 9)
        assert store.snapshot() == {2: "set", 3: 9}


# =============================================================================
# Line ids
# =============================================================================


class TestCoerceLineId:
    """Tests for coerce_line_id."""

    @pytest.mark.parametrize("raw,expected", [(3, 3), (3.0, 3), ("4", 4), (" 12 ", 12)])
    def test_valid_ids(self, raw, expected) -> None:
        """Integers, integral floats and numeric strings are accepted."""
        assert coerce_line_id(raw) == expected

    @pytest.mark.parametrize("raw", [0, -1, 2.5, "x", True, None])
    def test_invalid_ids(self, raw) -> None:
        """Everything else raises E1005."""
        with pytest.raises(VariableError) as exc_info:
            coerce_line_id(raw)
        assert exc_info.value.code == "E1005"
