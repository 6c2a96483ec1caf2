"""
Tests for the executor — skipping, retries, postconditions, containment,
halting, cancellation and the optional worker pool.
"""

import threading
import time

import pytest

from cortado.adapters.mock import MockAdapter
from cortado.adapters.registry import AdapterRegistry
from cortado.core.engine.dag import topological_sort
from cortado.core.engine.executor import execute_plan, failure_from_receipt, stderr_tail
from cortado.core.engine.planner import Plan
from cortado.core.engine.report import EXIT_OK, EXIT_STEP_FAILED, exit_code_for
from cortado.core.engine.retry import RetryPolicy
from cortado.core.errors import PermanentFailure, ProbeError, TransientFailure
from cortado.core.models.action import Action, Receipt
from cortado.core.models.step import FailureReason, Step


class World:
    """Fake system state: a step's effect is present once its action ran."""

    def __init__(self, present: set[str] | None = None):
        self.present = set(present or ())

    def has(self, step_id: str):
        return lambda: step_id in self.present

    def on_execute(self, context) -> None:
        self.present.add(context.action.id)


def _step(world: World, step_id: str, *deps: str, **kwargs) -> Step:
    return Step(
        id=step_id,
        description=f"do {step_id}",
        action=Action(id=step_id, adapter="mock"),
        precondition=kwargs.pop("precondition", world.has(step_id)),
        depends_on=tuple(deps),
        **kwargs,
    )


def _plan(*steps: Step) -> Plan:
    return Plan(steps=tuple(topological_sort(list(steps))))


def _registry(world: World) -> tuple[AdapterRegistry, MockAdapter]:
    mock = MockAdapter(adapter_name="mock", on_execute=world.on_execute)
    registry = AdapterRegistry()
    registry.register(mock)
    return registry, mock


def _transient(step_id: str, stderr: str = "") -> Receipt:
    return Receipt.failure(
        adapter="mock", action_id=step_id, error="mirror timed out",
        kind="transient", metadata={"stderr": stderr},
    )


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestIdempotence:
    def test_second_run_skips_everything(self):
        world = World()
        registry, mock = _registry(world)
        plan = _plan(_step(world, "a"), _step(world, "b", "a"), _step(world, "c"))

        first = execute_plan(plan, registry, sleep=SleepRecorder())
        assert first.applied == 3
        assert mock.call_count == 3

        second = execute_plan(plan, registry, sleep=SleepRecorder())
        assert second.skipped == 3
        assert second.applied == 0
        assert mock.call_count == 3  # no new invocations
        assert exit_code_for(second) == EXIT_OK

    def test_satisfied_step_never_invokes_action(self):
        world = World(present={"a"})
        registry, mock = _registry(world)
        report = execute_plan(_plan(_step(world, "a")), registry)
        assert report.result_for("a").outcome == "skipped"
        assert mock.call_count == 0

    def test_unknown_precondition_runs_the_step(self):
        world = World()
        registry, mock = _registry(world)
        step = _step(world, "a", precondition=lambda: None, postcondition=world.has("a"))
        report = execute_plan(_plan(step), registry)
        assert report.result_for("a").outcome == "applied"
        assert mock.calls_for("a") == 1


def _explode():
    raise RuntimeError("dbus went away")


class TestRaisingPredicates:
    def test_raising_precondition_runs_the_step(self):
        world = World()
        registry, mock = _registry(world)
        step = _step(world, "a", precondition=_explode, postcondition=world.has("a"))
        report = execute_plan(_plan(step, _step(world, "b")), registry)
        assert report.result_for("a").outcome == "applied"
        assert report.result_for("b").outcome == "applied"
        assert mock.calls_for("a") == 1

    def test_raising_postcondition_is_not_met(self):
        world = World()
        registry, _ = _registry(world)
        step = _step(world, "a", precondition=lambda: False, postcondition=_explode)
        report = execute_plan(_plan(step, _step(world, "b")), registry)
        assert report.result_for("a").reason == FailureReason.POSTCONDITION_NOT_MET
        assert report.result_for("b").outcome == "applied"
        assert exit_code_for(report) == EXIT_STEP_FAILED

    def test_undeterminable_state_propagates(self):
        world = World()
        registry, mock = _registry(world)

        def broken():
            raise ProbeError("pacman database is corrupt")

        with pytest.raises(ProbeError):
            execute_plan(_plan(_step(world, "a", precondition=broken)), registry)
        assert mock.call_count == 0


class TestRetry:
    def test_transient_then_success(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_response(
            "pkg",
            _transient("pkg"),
            _transient("pkg"),
            Receipt.success(adapter="mock", action_id="pkg"),
        )
        sleep = SleepRecorder()
        report = execute_plan(_plan(_step(world, "pkg", retryable=True)), registry, sleep=sleep)

        result = report.result_for("pkg")
        assert result.outcome == "applied"
        assert result.attempts == 3
        assert result.delays == [2.0, 4.0]
        assert sleep.delays == [2.0, 4.0]
        assert mock.calls_for("pkg") == 3

    def test_transient_exhausted(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_response("pkg", _transient("pkg", stderr="error: failed retrieving file"))
        sleep = SleepRecorder()
        report = execute_plan(_plan(_step(world, "pkg", retryable=True)), registry, sleep=sleep)

        result = report.result_for("pkg")
        assert result.outcome == "failed"
        assert result.reason == FailureReason.TRANSIENT_EXHAUSTED
        assert result.attempts == 3
        assert mock.calls_for("pkg") == 3
        assert sleep.delays == [2.0, 4.0]
        assert "failed retrieving file" in result.stderr_tail
        assert exit_code_for(report) == EXIT_STEP_FAILED

    def test_backoff_non_decreasing_with_more_attempts(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_response("pkg", _transient("pkg"))
        sleep = SleepRecorder()
        policy = RetryPolicy(max_attempts=5)
        execute_plan(_plan(_step(world, "pkg", retryable=True)), registry, policy=policy, sleep=sleep)
        assert sleep.delays == [2.0, 4.0, 8.0, 8.0]
        assert all(a <= b for a, b in zip(sleep.delays, sleep.delays[1:]))

    def test_permanent_failure_not_retried(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_failure("pkg", error="target not found: nosuchpkg")
        sleep = SleepRecorder()
        report = execute_plan(_plan(_step(world, "pkg", retryable=True)), registry, sleep=sleep)

        result = report.result_for("pkg")
        assert result.reason == FailureReason.ACTION_FAILED
        assert result.attempts == 1
        assert "nosuchpkg" in result.error
        assert sleep.delays == []

    def test_transient_on_non_retryable_step(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_response("cmd", _transient("cmd"))
        report = execute_plan(_plan(_step(world, "cmd")), registry, sleep=SleepRecorder())
        assert report.result_for("cmd").reason == FailureReason.ACTION_FAILED
        assert mock.calls_for("cmd") == 1


class TestPostcondition:
    def test_success_without_effect_fails(self):
        world = World()
        registry, mock = _registry(world)
        step = _step(world, "svc", precondition=lambda: False)
        report = execute_plan(_plan(step), registry)

        result = report.result_for("svc")
        assert result.outcome == "failed"
        assert result.reason == FailureReason.POSTCONDITION_NOT_MET
        assert mock.calls_for("svc") == 1

    def test_unknown_postcondition_fails(self):
        world = World()
        registry, _ = _registry(world)
        step = _step(world, "svc", postcondition=lambda: None)
        report = execute_plan(_plan(step), registry)
        assert report.result_for("svc").reason == FailureReason.POSTCONDITION_NOT_MET

    def test_postcondition_failure_not_retried(self):
        world = World()
        registry, mock = _registry(world)
        step = _step(world, "svc", precondition=lambda: False, retryable=True)
        execute_plan(_plan(step), registry, sleep=SleepRecorder())
        assert mock.calls_for("svc") == 1


class TestContainment:
    def test_dependents_fail_transitively(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_failure("a", error="boom")
        plan = _plan(
            _step(world, "a"),
            _step(world, "b", "a"),
            _step(world, "c", "b"),
            _step(world, "d"),
        )
        report = execute_plan(plan, registry)

        assert report.result_for("a").reason == FailureReason.ACTION_FAILED
        assert report.result_for("b").reason == FailureReason.DEPENDENCY_FAILED
        assert report.result_for("c").reason == FailureReason.DEPENDENCY_FAILED
        assert report.result_for("d").outcome == "applied"
        assert mock.calls_for("b") == 0
        assert mock.calls_for("c") == 0
        assert report.status == "partial"

    def test_skipped_dependency_is_fine(self):
        world = World(present={"a"})
        registry, _ = _registry(world)
        report = execute_plan(_plan(_step(world, "a"), _step(world, "b", "a")), registry)
        assert report.result_for("b").outcome == "applied"

    def test_results_in_plan_order(self):
        world = World()
        registry, _ = _registry(world)
        plan = _plan(_step(world, "x"), _step(world, "y", "x"), _step(world, "z"))
        report = execute_plan(plan, registry)
        assert [r.step_id for r in report.results] == plan.ids

    def test_adapter_exception_is_permanent_failure(self):
        world = World()

        def explode(context):
            raise RuntimeError("adapter crashed")

        mock = MockAdapter(adapter_name="mock", on_execute=explode)
        registry = AdapterRegistry()
        registry.register(mock)
        report = execute_plan(_plan(_step(world, "a", retryable=True)), registry, sleep=SleepRecorder())

        result = report.result_for("a")
        assert result.reason == FailureReason.ACTION_FAILED
        assert "adapter crashed" in result.error
        assert result.attempts == 1


class TestHalt:
    def test_halting_step_stops_scheduling(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_failure("network:online", error="DNS down", kind="transient")
        plan = _plan(
            _step(world, "network:online", halt_on_failure=True),
            _step(world, "file:a"),
            _step(world, "packages:base", "network:online"),
        )
        report = execute_plan(plan, registry, sleep=SleepRecorder())

        assert report.halted_by == "network:online"
        assert report.result_for("file:a").reason == FailureReason.HALTED
        assert report.result_for("packages:base").reason == FailureReason.HALTED
        assert mock.call_count == 1

    def test_halting_step_skipped_does_not_halt(self):
        world = World(present={"network:online"})
        registry, _ = _registry(world)
        plan = _plan(_step(world, "network:online", halt_on_failure=True), _step(world, "a"))
        report = execute_plan(plan, registry)
        assert report.halted_by is None
        assert report.all_ok


class TestCancellation:
    def test_cancel_before_start(self):
        world = World()
        registry, mock = _registry(world)
        cancel = threading.Event()
        cancel.set()
        report = execute_plan(_plan(_step(world, "a"), _step(world, "b")), registry, cancel=cancel)

        assert report.cancelled
        assert all(r.reason == FailureReason.CANCELLED for r in report.results)
        assert mock.call_count == 0

    def test_in_flight_step_finishes(self):
        world = World()
        cancel = threading.Event()

        def interrupt(context):
            world.on_execute(context)
            cancel.set()

        mock = MockAdapter(adapter_name="mock", on_execute=interrupt)
        registry = AdapterRegistry()
        registry.register(mock)
        report = execute_plan(_plan(_step(world, "a"), _step(world, "b")), registry, cancel=cancel)

        assert report.result_for("a").outcome == "applied"
        assert report.result_for("b").reason == FailureReason.CANCELLED
        assert mock.call_count == 1

    def test_cancel_during_backoff(self):
        world = World()
        registry, mock = _registry(world)
        mock.set_response("pkg", _transient("pkg"))
        cancel = threading.Event()

        def sleep(delay: float) -> None:
            cancel.set()

        plan = _plan(_step(world, "pkg", retryable=True), _step(world, "other"))
        report = execute_plan(plan, registry, sleep=sleep, cancel=cancel)

        assert report.result_for("pkg").reason == FailureReason.CANCELLED
        assert report.result_for("pkg").attempts == 1
        assert report.result_for("other").reason == FailureReason.CANCELLED
        assert mock.calls_for("pkg") == 1


class TestParallel:
    def test_parallel_safe_steps_all_run(self):
        world = World()
        registry, mock = _registry(world)
        steps = [_step(world, f"file:{i}", parallel_safe=True) for i in range(6)]
        plan = _plan(*steps)
        report = execute_plan(plan, registry, jobs=3)

        assert report.applied == 6
        assert [r.step_id for r in report.results] == plan.ids
        assert mock.call_count == 6

    def test_unsafe_steps_run_alone(self):
        world = World()
        lock = threading.Lock()
        active: list[str] = []
        overlaps: list[tuple[str, list[str]]] = []

        def track(context):
            with lock:
                active.append(context.action.id)
                snapshot = list(active)
            if context.action.id.startswith("packages:") and len(snapshot) > 1:
                overlaps.append((context.action.id, snapshot))
            time.sleep(0.01)
            with lock:
                active.remove(context.action.id)
            world.on_execute(context)

        mock = MockAdapter(adapter_name="mock", on_execute=track)
        registry = AdapterRegistry()
        registry.register(mock)
        plan = _plan(
            _step(world, "file:a", parallel_safe=True),
            _step(world, "packages:base"),
            _step(world, "file:b", parallel_safe=True),
            _step(world, "packages:extra"),
            _step(world, "file:c", parallel_safe=True),
        )
        report = execute_plan(plan, registry, jobs=4)

        assert report.all_ok
        assert overlaps == []

    def test_dependencies_respected_in_pool(self):
        world = World()
        seen: list[str] = []

        def record(context):
            seen.append(context.action.id)
            world.on_execute(context)

        mock = MockAdapter(adapter_name="mock", on_execute=record)
        registry = AdapterRegistry()
        registry.register(mock)
        plan = _plan(
            _step(world, "file:a", parallel_safe=True),
            _step(world, "file:b", "file:a", parallel_safe=True),
            _step(world, "file:c", parallel_safe=True),
        )
        report = execute_plan(plan, registry, jobs=4)

        assert report.all_ok
        assert seen.index("file:a") < seen.index("file:b")


class TestHelpers:
    def test_failure_from_receipt(self):
        transient = failure_from_receipt(_transient("x", stderr="timed out"))
        assert isinstance(transient, TransientFailure)
        assert transient.kind == "transient"
        assert transient.stderr == "timed out"

        permanent = failure_from_receipt(Receipt.failure(adapter="m", action_id="x", error="no"))
        assert isinstance(permanent, PermanentFailure)
        assert str(permanent) == "no"

    def test_stderr_tail(self):
        text = "\n".join(f"line {i}" for i in range(50))
        tail = stderr_tail(text, lines=3)
        assert tail == "line 47\nline 48\nline 49"
