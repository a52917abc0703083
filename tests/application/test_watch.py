"""Tests for the WatchController."""

import threading
import time

from scenario_grader.application.watch import WatchController
from scenario_grader.domain.models import RunStatus
from scenario_grader.infrastructure.automation.mock import MockDriver


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)


class BlockingPipeline:
    """Runs until cancelled, logging start and end."""

    def __init__(self) -> None:
        self.log: list[str] = []
        self.runs = 0

    def __call__(self, cancel: threading.Event) -> None:
        self.runs += 1
        run = self.runs
        self.log.append(f"start:{run}")
        cancel.wait(5.0)
        self.log.append(f"end:{run}")


class TestDebounce:
    """Tests for notify/tick."""

    def test_burst_of_changes_triggers_one_rerun(self) -> None:
        clock = FakeClock()
        calls: list[threading.Event] = []
        controller = WatchController(calls.append, debounce=0.5, clock=clock)

        controller.notify(["a.yaml"])
        clock.now = 0.2
        assert not controller.tick()
        controller.notify(["b.yaml"])
        clock.now = 0.6
        assert not controller.tick()
        assert controller.pending_changes == {"a.yaml", "b.yaml"}

        clock.now = 0.8
        assert controller.tick()
        controller.wait(2.0)

        assert controller.runs_started == 1
        assert len(calls) == 1
        assert controller.pending_changes == frozenset()
        assert not controller.tick()

    def test_empty_notification_is_ignored(self) -> None:
        clock = FakeClock()
        controller = WatchController(lambda cancel: None, clock=clock)

        controller.notify([])
        clock.now = 10.0

        assert not controller.tick()


class TestRestart:
    """Restart cancels and joins the in-flight run first."""

    def test_old_run_ends_before_new_one_starts(self) -> None:
        pipeline = BlockingPipeline()
        controller = WatchController(pipeline)

        controller.restart()
        _wait_for(lambda: "start:1" in pipeline.log)
        controller.restart()
        _wait_for(lambda: "start:2" in pipeline.log)
        controller.shutdown()

        assert pipeline.log == ["start:1", "end:1", "start:2", "end:2"]
        assert not controller.running

    def test_pipeline_errors_do_not_stop_the_controller(self) -> None:
        outcomes: list[str] = []

        def pipeline(cancel: threading.Event) -> None:
            outcomes.append("run")
            if len(outcomes) == 1:
                raise RuntimeError("scenario file is broken")

        controller = WatchController(pipeline)
        controller.restart()
        controller.wait(2.0)
        controller.restart()
        controller.wait(2.0)

        assert outcomes == ["run", "run"]
        assert controller.runs_started == 2

    def test_restart_releases_environment_before_reacquiring(
        self, make_orchestrator, make_scenario, events, memory_store
    ) -> None:
        steps = [
            {"id": f"s{i}", "kind": "action", "action": "openCopilotChat"} for i in range(20)
        ]
        scenario = make_scenario(steps=steps)
        orchestrator = make_orchestrator(driver=MockDriver(delay=0.05))
        controller = WatchController(lambda cancel: orchestrator.run(scenario, cancel=cancel))

        controller.restart()
        _wait_for(lambda: "acquire:stable" in events)
        controller.restart()
        _wait_for(lambda: events.count("acquire:stable") == 2)
        controller.shutdown()

        assert events == [
            "acquire:stable",
            "release:stable",
            "acquire:stable",
            "release:stable",
        ]
        assert [r.status for r in memory_store.list_runs()] == [
            RunStatus.SKIPPED,
            RunStatus.SKIPPED,
        ]


class TestWatchLoop:
    """Tests for watch() with a finite change source."""

    def test_runs_immediately_then_after_changes(self) -> None:
        clock = FakeClock()
        calls: list[str] = []
        controller = WatchController(lambda cancel: calls.append("run"), clock=clock)

        def changes():
            yield {"scenarios/chat.yaml"}
            clock.now = 1.0
            yield set()

        controller.watch(changes)

        assert controller.runs_started == 2
        assert calls == ["run", "run"]

    def test_without_immediate_run(self) -> None:
        controller = WatchController(lambda cancel: None, clock=FakeClock())

        controller.watch(lambda: iter([set(), set()]), run_immediately=False)

        assert controller.runs_started == 0
