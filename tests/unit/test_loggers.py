"""
Unit tests for logger leaves.

Tests nodes/loggers.py:
- Logger samples lines on every write
- KeyLogger brackets key presses with start/stop records
- EventLogger records every event of its group
- Buffering: flush_every and flush on stop
"""

import pytest

from tasktree.core import InputEvent
from tasktree.nodes import Clock, EventLogger, KeyLogger, Logger, Parallel, Timeout


# =============================================================================
# Logger
# =============================================================================


class TestLogger:
    """Tests for Logger."""

    def test_logs_each_write(self, make_scheduler, run_until, sink) -> None:
        """Every write of a bound line produces one record."""
        root = Timeout("t", 2.5, Parallel("p", [
            Clock("c", step=1.0, out_tic=1),
            Logger("log", group="trial", in_mapping={1: "tic"}),
        ]))
        scheduler = make_scheduler(root)
        scheduler.start()
        run_until(scheduler, 5.0)

        records = sink.group("trial")
        assert [(r.key, r.value) for r in records] == [("tic", 1), ("tic", 2)]
        assert records[0].timestamp == pytest.approx(1.0)

    def test_initial_state_not_logged(self, make_scheduler, run_until, sink) -> None:
        """Lines set in the initial state are only logged once rewritten."""
        scheduler = make_scheduler(Logger("log", in_mapping={1: "x"}), state={1: 5})
        scheduler.start()
        run_until(scheduler, 1.0)
        scheduler.abort()

        assert sink.group("log") == []

    def test_buffer_flushed_on_stop(self, make_scheduler, run_until, sink) -> None:
        """Buffered records reach the sink when the logger is stopped."""
        logger = Logger("log", in_mapping={1: "tic"})
        root = Parallel("p", [Clock("c", step=0.5, out_tic=1), logger])
        scheduler = make_scheduler(root)
        scheduler.start()
        run_until(scheduler, 1.0)

        assert logger.pending == 2
        assert sink.records == []

        scheduler.abort()

        assert logger.pending == 0
        assert sink.values("log", "tic") == [1, 2]

    def test_flush_every(self, make_scheduler, run_until, sink) -> None:
        """A full buffer is flushed before the node stops."""
        logger = Logger("log", in_mapping={1: "tic"}, flush_every=2)
        root = Parallel("p", [Clock("c", step=0.5, out_tic=1), logger])
        scheduler = make_scheduler(root)
        scheduler.start()
        run_until(scheduler, 1.5)

        assert sink.values("log", "tic") == [1, 2]
        assert logger.pending == 1
        assert logger.records_written == 2

    def test_context_flush_every(self, make_scheduler, run_until, sink) -> None:
        """Without its own setting the logger uses the run's flush_every."""
        root = Parallel("p", [Clock("c", step=0.5, out_tic=1), Logger("log", in_mapping={1: "tic"})])
        scheduler = make_scheduler(root, flush_every=1)
        scheduler.start()
        run_until(scheduler, 0.5)

        assert sink.values("log", "tic") == [1]


# =============================================================================
# KeyLogger / EventLogger
# =============================================================================


class TestKeyLogger:
    """Tests for KeyLogger."""

    def test_start_keys_stop(self, make_scheduler, run_until, sink) -> None:
        """Key presses are bracketed by start and stop records."""
        scheduler = make_scheduler(Timeout("t", 1.0, KeyLogger("keys")))
        scheduler.start()
        run_until(scheduler, 5.0, events=[
            InputEvent.key(0.25, "a"),
            InputEvent.key(0.55, "b"),
            InputEvent.key(0.6, "c", group="other"),
        ])

        records = sink.group("keypress")
        assert [(r.key, r.value) for r in records] == [
            ("event", "start"),
            ("key", "a"),
            ("key", "b"),
            ("event", "stop"),
        ]
        assert records[1].timestamp == 0.25

    def test_custom_group(self, make_scheduler, run_until, sink) -> None:
        """The logger listens to and writes under its own group."""
        scheduler = make_scheduler(Timeout("t", 1.0, KeyLogger("keys", group="serial")))
        scheduler.start()
        run_until(scheduler, 5.0, events=[InputEvent.key(0.5, "7", group="serial")])

        assert sink.values("serial", "key") == ["7"]


class TestEventLogger:
    """Tests for EventLogger."""

    def test_logs_every_event(self, make_scheduler, run_until, sink) -> None:
        """Every event of the group is logged with its payload."""
        scheduler = make_scheduler(Timeout("t", 1.0, EventLogger("events", group="pointer")))
        scheduler.start()
        run_until(scheduler, 5.0, events=[
            InputEvent.click(0.3, 10.0, 20.0),
            InputEvent(0.4, "pointer", "move", {"x": 11.0, "y": 21.0}),
        ])

        records = sink.group("pointer")
        assert [r.key for r in records] == ["click", "move"]
        assert records[0].value == {"x": 10.0, "y": 20.0, "hit": False}
