"""
Tests for the convergence engine — ordering, idempotence, failure
policy, retries, dry-run, guards, parallel levels and cancellation.
"""

import sys
import threading

import pytest

from provisionctl.adapters.mock import MockAction
from provisionctl.adapters.shell.command import CommandSucceedsCheck
from provisionctl.adapters.shell.runner import ProcessRunner
from provisionctl.core.engine.cancellation import CancellationToken
from provisionctl.core.engine.checker import ConditionChecker
from provisionctl.core.engine.convergence import ConvergenceEngine
from provisionctl.core.engine.executor import ActionExecutor
from provisionctl.core.engine.graph import UnitGraph
from provisionctl.core.models.outcome import UnitStatus
from provisionctl.core.models.report import EXIT_FATAL, EXIT_OK, EXIT_PARTIAL
from provisionctl.core.models.unit import Unit
from provisionctl.core.reliability.retry import RetryPolicy


def _statuses(report) -> dict[str, UnitStatus]:
    return {o.unit_id: o.status for o in report.outcomes}


@pytest.fixture
def abc(make_unit):
    """C depends on B, B depends on A."""

    def _abc(a_critical=False, b_critical=False):
        return [
            make_unit("C", depends_on=("B",)),
            make_unit("B", depends_on=("A",), critical=b_critical),
            make_unit("A", critical=a_critical),
        ]

    return _abc


# ── Happy path and idempotence ───────────────────────────────────────


class TestConvergence:
    def test_all_succeed_in_plan_order(self, abc, make_engine, mock_apply):
        engine, graph = make_engine(abc())
        plan = graph.resolve_plan({"C"})
        report = engine.run(plan, selection="id:C")

        assert plan.order == ["A", "B", "C"]
        assert [o.unit_id for o in report.outcomes] == ["A", "B", "C"]
        assert all(o.status == UnitStatus.SUCCEEDED for o in report.outcomes)
        assert report.exit_code == EXIT_OK
        assert [c.unit_id for c in mock_apply.call_log] == ["A", "B", "C"]

    def test_second_run_is_all_skipped(self, abc, make_engine, mock_apply):
        engine, graph = make_engine(abc())
        plan = graph.resolve_plan({"C"})
        engine.run(plan)
        calls_after_first = mock_apply.call_count

        second = engine.run(plan)
        assert all(o.status == UnitStatus.SKIPPED for o in second.outcomes)
        assert all(o.message == "already converged" for o in second.outcomes)
        assert second.exit_code == EXIT_OK
        assert mock_apply.call_count == calls_after_first

    def test_converged_unit_never_applied(self, abc, make_engine, mock_state, mock_apply):
        mock_state.mark("B")
        engine, graph = make_engine(abc())
        report = engine.run(graph.resolve_plan({"C"}))

        assert _statuses(report)["B"] == UnitStatus.SKIPPED
        assert mock_apply.calls_for("B") == 0
        assert mock_apply.calls_for("A") == 1

    def test_unit_without_check_always_applies(self, make_unit, make_engine, mock_apply, mock_check):
        engine, graph = make_engine([make_unit("always", check=False)])
        plan = graph.resolve_plan({"always"})
        engine.run(plan)
        engine.run(plan)

        assert mock_apply.calls_for("always") == 2
        assert mock_check.call_count == 0

    def test_outcome_records_attempts_and_timing(self, make_unit, make_engine):
        engine, graph = make_engine([make_unit("a")])
        outcome = engine.run(graph.resolve_plan({"a"})).outcomes[0]
        assert outcome.attempts == 1
        assert outcome.duration_ms >= 0
        assert outcome.exit_code == 0


# ── Failure policy ───────────────────────────────────────────────────


class TestFailurePolicy:
    def test_critical_failure_aborts_rest(self, abc, make_engine, mock_apply):
        mock_apply.set_failure("A", reason="repo unreachable")
        engine, graph = make_engine(abc(a_critical=True))
        report = engine.run(graph.resolve_plan({"C"}))

        assert _statuses(report) == {
            "A": UnitStatus.FAILED,
            "B": UnitStatus.ABORTED,
            "C": UnitStatus.ABORTED,
        }
        assert report.exit_code == EXIT_FATAL
        assert report.fatal
        assert mock_apply.calls_for("B") == 0
        assert mock_apply.calls_for("C") == 0

    def test_non_critical_failure_continues(self, abc, make_engine, mock_apply):
        mock_apply.set_failure("B")
        engine, graph = make_engine(abc())
        report = engine.run(graph.resolve_plan({"C"}))

        assert _statuses(report) == {
            "A": UnitStatus.SUCCEEDED,
            "B": UnitStatus.FAILED,
            "C": UnitStatus.SUCCEEDED,
        }
        assert report.exit_code == EXIT_PARTIAL
        assert not report.fatal

    def test_failure_keeps_diagnostic(self, make_unit, make_engine, mock_apply):
        mock_apply.set_failure("a", reason="dnf exited 1", exit_code=1)
        engine, graph = make_engine([make_unit("a")])
        outcome = engine.run(graph.resolve_plan({"a"})).outcomes[0]

        assert "dnf exited 1" in outcome.message
        assert outcome.diagnostic == "[mock] dnf exited 1"
        assert outcome.exit_code == 1

    def test_probe_error_fails_unit_without_apply(self, make_unit, make_engine, mock_check, mock_apply):
        mock_check.set_probe_error("a", "rpm database locked")
        engine, graph = make_engine([make_unit("a"), make_unit("b")])
        report = engine.run(graph.resolve_plan({"a", "b"}))

        outcome = report.outcome_for("a")
        assert outcome.status == UnitStatus.FAILED
        assert "cannot determine state" in outcome.message
        assert "rpm database locked" in outcome.diagnostic
        assert mock_apply.calls_for("a") == 0
        assert report.outcome_for("b").status == UnitStatus.SUCCEEDED
        assert report.exit_code == EXIT_PARTIAL

    def test_probe_error_on_critical_unit_is_fatal(self, abc, make_engine, mock_check):
        mock_check.set_probe_error("A")
        engine, graph = make_engine(abc(a_critical=True))
        report = engine.run(graph.resolve_plan({"C"}))

        assert report.exit_code == EXIT_FATAL
        assert _statuses(report)["C"] == UnitStatus.ABORTED

    def test_unknown_apply_kind_is_unit_failure(self, make_engine, run_context):
        from provisionctl.core.models.unit import Unit

        unit = Unit(id="odd", apply={"kind": "no-such-adapter"})
        engine, graph = make_engine([unit])
        report = engine.run(graph.resolve_plan({"odd"}))
        assert report.outcomes[0].status == UnitStatus.FAILED
        assert "no-such-adapter" in report.outcomes[0].message


# ── Retries ──────────────────────────────────────────────────────────


class TestRetries:
    def test_attempts_are_one_plus_max_retries(self, make_unit, make_engine, mock_apply):
        mock_apply.set_failure("a")
        engine, graph = make_engine([make_unit("a")], max_retries=2)
        report = engine.run(graph.resolve_plan({"a"}))

        assert mock_apply.calls_for("a") == 3
        assert len(report.outcomes) == 1
        assert report.outcomes[0].attempts == 3
        assert "after 3 attempts" in report.outcomes[0].message

    def test_transient_failure_recovers(self, make_unit, make_engine, mock_apply):
        mock_apply.fail_times("a", 2)
        engine, graph = make_engine([make_unit("a")], max_retries=2)
        report = engine.run(graph.resolve_plan({"a"}))

        outcome = report.outcomes[0]
        assert outcome.status == UnitStatus.SUCCEEDED
        assert outcome.attempts == 3
        assert report.exit_code == EXIT_OK

    def test_failed_attempts_logged(self, make_unit, make_engine, mock_apply, caplog):
        mock_apply.set_failure("a", reason="mirror timeout")
        engine, graph = make_engine([make_unit("a")], max_retries=1)
        with caplog.at_level("WARNING", logger="provisionctl.core.engine.convergence"):
            engine.run(graph.resolve_plan({"a"}))

        attempts = [r for r in caplog.records if "attempt" in r.getMessage()]
        assert len(attempts) == 2
        assert "mirror timeout" in attempts[0].getMessage()


# ── Dry run ──────────────────────────────────────────────────────────


class TestDryRun:
    def test_never_applies(self, abc, make_engine, mock_state, mock_apply):
        mock_state.mark("A")
        engine, graph = make_engine(abc(), dry_run=True)
        report = engine.run(graph.resolve_plan({"C"}))

        assert mock_apply.call_count == 0
        assert _statuses(report) == {
            "A": UnitStatus.SKIPPED,
            "B": UnitStatus.WOULD_APPLY,
            "C": UnitStatus.WOULD_APPLY,
        }
        assert report.exit_code == EXIT_OK
        assert report.dry_run


# ── Guards ───────────────────────────────────────────────────────────


class TestGuards:
    def test_false_guard_skips_without_check(self, make_unit, make_engine, mock_check, mock_apply):
        engine, graph = make_engine([make_unit("nvidia", when=("has_nvidia",))])
        outcome = engine.run(graph.resolve_plan({"nvidia"})).outcomes[0]

        assert outcome.status == UnitStatus.SKIPPED
        assert "not applicable" in outcome.message
        assert "has_nvidia" in outcome.message
        assert mock_check.call_count == 0
        assert mock_apply.call_count == 0

    def test_true_guard_runs(self, make_unit, make_engine, run_context, mock_apply):
        ctx = run_context.model_copy(update={"has_nvidia": True})
        engine, graph = make_engine([make_unit("nvidia", when=("has_nvidia",))], context=ctx)
        outcome = engine.run(graph.resolve_plan({"nvidia"})).outcomes[0]

        assert outcome.status == UnitStatus.SUCCEEDED
        assert mock_apply.calls_for("nvidia") == 1

    def test_custom_fact(self, make_unit, make_engine, run_context):
        ctx = run_context.model_copy(update={"facts": {"laptop": True}})
        engine, graph = make_engine([make_unit("tlp", when=("laptop", "!has_nvidia"))], context=ctx)
        assert engine.run(graph.resolve_plan({"tlp"})).outcomes[0].status == UnitStatus.SUCCEEDED


# ── Parallel levels ──────────────────────────────────────────────────


class _CountingAction(MockAction):
    """Records the highest number of concurrent executions."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.active = 0
        self.peak = 0
        self._count_lock = threading.Lock()

    def execute(self, context):
        with self._count_lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            return super().execute(context)
        finally:
            with self._count_lock:
                self.active -= 1


class TestParallel:
    def test_never_exceeds_concurrency(self, make_unit, make_engine, mock_registry, mock_state):
        action = _CountingAction(state=mock_state, delay=0.05)
        mock_registry.register(action)

        units = [make_unit(f"u{i}") for i in range(6)]
        engine, graph = make_engine(units, concurrency=2)
        report = engine.run(graph.resolve_plan(set(graph.ids)))

        assert action.peak <= 2
        assert action.peak == 2
        assert report.succeeded == 6

    def test_levels_respect_dependencies(self, make_unit, make_engine, mock_apply):
        units = [make_unit("base"), make_unit("a", depends_on=("base",)),
                 make_unit("b", depends_on=("base",)), make_unit("top", depends_on=("a", "b"))]
        engine, graph = make_engine(units, concurrency=4)
        report = engine.run(graph.resolve_plan({"top"}))

        order = [c.unit_id for c in mock_apply.call_log]
        assert order[0] == "base"
        assert order[-1] == "top"
        assert [o.unit_id for o in report.outcomes] == ["base", "a", "b", "top"]

    def test_critical_failure_aborts_later_levels(self, make_unit, make_engine, mock_apply):
        mock_apply.set_failure("a")
        units = [make_unit("a", critical=True), make_unit("b"),
                 make_unit("c", depends_on=("b",))]
        engine, graph = make_engine(units, concurrency=2)
        report = engine.run(graph.resolve_plan(set(graph.ids)))

        assert report.outcome_for("a").status == UnitStatus.FAILED
        assert report.outcome_for("c").status == UnitStatus.ABORTED
        assert mock_apply.calls_for("c") == 0
        assert report.exit_code == EXIT_FATAL
        # plan order regardless of completion order
        assert [o.unit_id for o in report.outcomes] == graph.resolve_plan(set(graph.ids)).order


# ── Cancellation ─────────────────────────────────────────────────────


class TestCancellation:
    def test_cancelled_before_start(self, abc, make_engine, mock_apply):
        token = CancellationToken()
        token.cancel("test")
        engine, graph = make_engine(abc(), cancel_token=token)
        report = engine.run(graph.resolve_plan({"C"}))

        assert all(o.status == UnitStatus.CANCELLED for o in report.outcomes)
        assert all(o.message == "not started: test" for o in report.outcomes)
        assert mock_apply.call_count == 0
        assert report.cancelled
        assert report.status == "cancelled"
        assert report.exit_code == EXIT_OK

    def test_cancel_mid_run_stops_launching(self, abc, make_engine, mock_apply):
        token = CancellationToken()
        mock_apply.on_execute = lambda ctx: token.cancel("operator") if ctx.unit_id == "A" else None
        engine, graph = make_engine(abc(), cancel_token=token)
        report = engine.run(graph.resolve_plan({"C"}))

        assert _statuses(report) == {
            "A": UnitStatus.SUCCEEDED,
            "B": UnitStatus.CANCELLED,
            "C": UnitStatus.CANCELLED,
        }
        assert "operator" in report.outcome_for("B").message
        assert report.exit_code == EXIT_OK

    def test_cancelled_does_not_mask_failures(self, make_unit, make_engine, mock_apply):
        token = CancellationToken()
        mock_apply.set_failure("a")

        def on_execute(ctx):
            if ctx.unit_id == "b":
                token.cancel()

        mock_apply.on_execute = on_execute
        engine, graph = make_engine([make_unit("a"), make_unit("b"), make_unit("c")],
                                    cancel_token=token)
        report = engine.run(graph.resolve_plan({"a", "b", "c"}))

        assert report.failed == 1
        assert report.cancelled_count == 1
        assert report.exit_code == EXIT_PARTIAL

    def test_grace_timeout_terminates_in_flight(self, make_unit, make_engine, mock_apply):
        token = CancellationToken()
        release = threading.Event()

        class FakeRunner:
            calls = 0

            def terminate_all(self, kill_after=5.0):
                FakeRunner.calls += 1
                release.set()
                return 1

        def on_execute(ctx):
            token.cancel("SIGINT")
            release.wait(5)

        mock_apply.on_execute = on_execute
        mock_apply.set_failure("slow", reason="command terminated")
        engine, graph = make_engine(
            [make_unit("slow"), make_unit("later")],
            cancel_token=token,
            grace_timeout=0.2,
            runner=FakeRunner(),
        )
        report = engine.run(graph.resolve_plan({"slow", "later"}))

        assert FakeRunner.calls == 1
        slow = report.outcome_for("slow")
        assert slow.status == UnitStatus.CANCELLED
        assert "interrupted" in slow.message
        assert report.outcome_for("later").status == UnitStatus.CANCELLED
        assert report.exit_code == EXIT_OK

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")
    def test_check_killed_by_grace_timeout_is_cancelled(self, mock_registry, mock_apply, run_context):
        runner = ProcessRunner()
        mock_registry.register(CommandSucceedsCheck(runner))
        units = [
            Unit(id="a", critical=True,
                 check={"kind": "command-succeeds", "args": {"command": "sleep 5"}},
                 apply={"kind": "mock-apply"}),
            Unit(id="b", check={"kind": "mock-check"}, apply={"kind": "mock-apply"}),
        ]
        graph = UnitGraph.from_units(units)
        token = CancellationToken()
        engine = ConvergenceEngine(
            graph=graph,
            checker=ConditionChecker(mock_registry, run_context),
            executor=ActionExecutor(mock_registry, run_context),
            retry_policy=RetryPolicy.no_delay(max_retries=0),
            cancel_token=token,
            grace_timeout=0.2,
            runner=runner,
        )

        timer = threading.Timer(0.3, token.cancel, args=("received SIGINT",))
        timer.start()
        try:
            report = engine.run(graph.resolve_plan({"a", "b"}))
        finally:
            timer.cancel()

        assert _statuses(report) == {"a": UnitStatus.CANCELLED, "b": UnitStatus.CANCELLED}
        assert "interrupted during check" in report.outcome_for("a").message
        assert report.outcome_for("b").message == "not started: received SIGINT"
        assert not report.fatal
        assert report.status == "cancelled"
        assert report.exit_code == EXIT_OK
        assert mock_apply.call_count == 0


class TestEngineArguments:
    def test_concurrency_must_be_positive(self, make_unit, make_engine):
        with pytest.raises(ValueError):
            make_engine([make_unit("a")], concurrency=0)
