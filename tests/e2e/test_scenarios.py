"""
End-to-end scenarios: Lua definitions run headless through BlockRunner.

Each test loads a block from Lua source, runs it with simulated time and
scripted input, and checks timing through the lifecycle trace and the
records that reached the log sink.
"""

from pathlib import Path

import pytest

from tasktree.config import EngineConfig
from tasktree.core import InputEvent, TreeStatus
from tasktree.lua import TreeLoader
from tasktree.runner import BlockRunner
from tasktree.sinks import MemorySink


TASKS_DIR = Path(__file__).resolve().parents[2] / "tasks"


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(log_dir=tmp_path / "logs", frame_interval=0.25, max_run_seconds=60.0, flush_every=64)


@pytest.fixture
def run_block(engine_config: EngineConfig):
    """Factory: Lua source -> (runner, sink) for a traced run."""

    def factory(source: str):
        sink = MemorySink()
        runner = BlockRunner(
            TreeLoader().load_string(source),
            sink=sink,
            config=engine_config,
            trace_enabled=True,
        )
        return runner, sink

    return factory


def trace_times(runner: BlockRunner, event: str, node_id: str):
    return [entry["time"] for entry in runner.scheduler.ctx.trace_events(event, node_id)]


# =============================================================================
# Combinators
# =============================================================================


class TestSequencing:
    def test_sequence_of_timeouts(self, run_block) -> None:
        """Each timed-out child hands over to the next at its deadline."""
        runner, _ = run_block("""
            return block {
                name = "seq",
                seq {
                    timeout { 1, fixation { id = "a" } },
                    timeout { 1, fixation { id = "b" } },
                    timeout { 1, fixation { id = "c" } },
                },
            }
        """)

        report = runner.run_simulated()

        assert report.status == TreeStatus.COMPLETED
        assert report.end_time == pytest.approx(3.0)
        for node_id, begin in (("a", 0.0), ("b", 1.0), ("c", 2.0)):
            assert trace_times(runner, "start", node_id) == [pytest.approx(begin)]
            assert trace_times(runner, "stop", node_id) == [pytest.approx(begin + 1.0)]

    def test_parallel_any_ends_on_event(self, run_block) -> None:
        """A never-ending sibling is stopped exactly once when the event arrives."""
        runner, _ = run_block("""
            return block {
                name = "race",
                par {
                    policy = "any",
                    repeat_ { id = "inner", wait { 0.3 } },
                    event { "e", id = "trigger" },
                },
            }
        """)

        report = runner.run_simulated(frame_dt=0.1, inputs=[InputEvent.key(2.4, "x", group="e")])

        assert report.ok
        assert report.end_time == pytest.approx(2.4)
        assert len(trace_times(runner, "stop", "inner")) == 1
        assert trace_times(runner, "done", "trigger") == [pytest.approx(2.4)]

    def test_switch_starts_one_branch(self, run_block) -> None:
        runner, _ = run_block("""
            return block {
                name = "branch",
                state = { [1] = true },
                switch {
                    in_control = 1,
                    if_true = wait { 0.5, id = "x" },
                    if_false = wait { 0.5, id = "y" },
                },
            }
        """)

        report = runner.run_simulated()

        assert report.end_time == pytest.approx(0.5)
        assert trace_times(runner, "start", "x") == [0.0]
        assert trace_times(runner, "start", "y") == []
        assert runner.tree.find("y").is_idle

    def test_until_cuts_repeat(self, run_block) -> None:
        """The loop ends in the tick the key arrives, mid-iteration."""
        runner, _ = run_block("""
            return block {
                name = "loop",
                until_ {
                    in_event = "keypress",
                    keys = { "space" },
                    repeat_ { id = "cycle", wait { 0.5, id = "w" } },
                },
            }
        """)

        report = runner.run_simulated(inputs=[
            InputEvent.key(0.25, "f"),
            InputEvent.key(0.75, "space"),
        ])

        assert report.ok
        assert report.end_time == pytest.approx(0.75)
        assert trace_times(runner, "start", "w") == [0.0, 0.5]
        assert trace_times(runner, "stop", "w") == [0.75]
        assert runner.tree.find("cycle").iterations == 1


# =============================================================================
# Data flow
# =============================================================================


class TestDataFlow:
    def test_squares_of_clock(self, run_block) -> None:
        runner, sink = run_block("""
            return block {
                name = "squares",
                par {
                    clock { 0.5, out_tic = 1, on_start = true },
                    function_ { "n ^ 2", in_mapping = { n = 1 }, out_result = 2 },
                    logger { "squares", in_mapping = { [2] = "square" } },
                },
            }
        """)

        runner.run_simulated(max_time=1.75)

        records = [(r.timestamp, r.value) for r in sink.group("squares")]
        assert records == [(0.0, 0), (0.5, 1), (1.0, 4), (1.5, 9)]

    def test_offset_clocks_into_merge(self, run_block) -> None:
        """Sources fire at different offsets; the merged line follows each in turn."""
        runner, sink = run_block("""
            return block {
                name = "offsets",
                par {
                    clock { 1.0, out_tic = 1 },
                    delayed { 0.25, clock { 1.0, out_tic = 2 } },
                    delayed { 0.5, clock { 1.0, out_tic = 3 } },
                    function_ { "t * 10 + 1", in_mapping = { t = 1 }, out_result = 11 },
                    function_ { "t * 10 + 2", in_mapping = { t = 2 }, out_result = 12 },
                    function_ { "t * 10 + 3", in_mapping = { t = 3 }, out_result = 13 },
                    merge { in_many = { 11, 12, 13 }, out_one = 20 },
                    logger { "merge", in_mapping = { [20] = "merged" } },
                },
            }
        """)

        report = runner.run_simulated(max_time=2.75)

        assert report.status == TreeStatus.ABORTED
        records = [(r.timestamp, r.value) for r in sink.group("merge")]
        assert records == [(1.0, 11), (1.25, 12), (1.5, 13), (2.0, 21), (2.25, 22), (2.5, 23)]

    @pytest.mark.parametrize("order,expected", [("11, 12", 10), ("12, 11", 100)])
    def test_merge_tie_goes_to_first_listed(self, run_block, order: str, expected: int) -> None:
        runner, sink = run_block(f"""
            return block {{
                name = "tie",
                par {{
                    clock {{ 1.0, out_tic = 1 }},
                    function_ {{ "t * 10", in_mapping = {{ t = 1 }}, out_result = 11 }},
                    function_ {{ "t * 100", in_mapping = {{ t = 1 }}, out_result = 12 }},
                    merge {{ in_many = {{ {order} }}, out_one = 20 }},
                    logger {{ "merge", in_mapping = {{ [20] = "merged" }} }},
                }},
            }}
        """)

        runner.run_simulated(max_time=1.5)

        assert sink.values("merge", "merged") == [expected]


# =============================================================================
# Logging
# =============================================================================


class TestLogging:
    def test_logger_flushes_when_timeout_stops_it(self, run_block) -> None:
        """Buffered records reach the sink at the stop, before the run ends."""
        runner, sink = run_block("""
            return block {
                name = "ticks",
                seq {
                    timeout { 1.0, par { clock { 0.25, out_tic = 1 }, logger { "ticks", in_mapping = { [1] = "tic" } } } },
                    wait { 1.0 },
                },
            }
        """)
        runner.start()
        for _ in range(4):
            runner.tick(0.25)

        assert not runner.done
        assert sink.values("ticks", "tic") == [1, 2, 3, 4]
        assert [r.timestamp for r in sink.group("ticks")] == [0.25, 0.5, 0.75, 1.0]

    def test_abort_flushes_key_logger(self, run_block) -> None:
        runner, sink = run_block("""
            return block { name = "keys", par { key_logger {}, wait { 10 } } }
        """)

        report = runner.run_simulated(inputs=[InputEvent.key(0.5, "a"), InputEvent.key(1.0, "b")], max_time=2.0)

        assert report.status == TreeStatus.ABORTED
        assert [(r.key, r.value) for r in sink.group("keypress")] == [
            ("event", "start"),
            ("key", "a"),
            ("key", "b"),
            ("event", "stop"),
        ]


# =============================================================================
# Shipped task
# =============================================================================


class TestFlankerTask:
    @pytest.fixture
    def task(self):
        return TreeLoader().load_task(TASKS_DIR / "flanker.lua")

    def test_blocks(self, task) -> None:
        assert task.name == "flanker"
        assert task.block_names == ["practice", "main"]

    def test_main_block(self, task, engine_config: EngineConfig) -> None:
        sink = MemorySink()
        runner = BlockRunner(
            task.block("main"),
            sink=sink,
            config=engine_config,
            templates=task.templates,
            parent_config=task.config,
        )

        report = runner.run_simulated(frame_dt=0.1, inputs=[
            InputEvent.key(0.8, "j"),
            InputEvent.key(2.1, "f"),
            InputEvent.key(6.5, "j"),
        ])

        assert report.ok
        # Third trial times out after its 2s response window.
        assert report.end_time == pytest.approx(9.0, abs=1e-6)
        assert sink.values("responses", "response") == ["j", "f", "j"]
        assert sink.values("keypress", "key") == ["j", "f", "j"]
        assert report.snapshot[10] == "j"

    def test_practice_until_space(self, task, engine_config: EngineConfig) -> None:
        runner = BlockRunner(
            task.block("practice"),
            config=engine_config,
            templates=task.templates,
            parent_config=task.config,
        )

        report = runner.run_simulated(inputs=[InputEvent.key(3.75, "j"), InputEvent.key(5.0, "space")])

        assert report.ok
        assert report.end_time == pytest.approx(5.0)
