"""
Convergence engine — the central run loop.

Drives an ExecutionPlan to completion. Per unit:

    Pending → Checking → { Skipped | Applying } → { Succeeded | Failed }

plus the terminal states Aborted (a critical unit failed earlier),
WouldApply (dry-run) and Cancelled (operator interrupt).

Failure policy:
    - non-critical failure → recorded, the run continues; dependents of
      the failed unit are still attempted (best effort)
    - critical failure     → the run becomes fatal; every unit not yet
      started is recorded as aborted and no further actions run

Scheduling:
    concurrency == 1  units run one at a time in plan order
    concurrency  > 1  the plan is split into dependency levels; units
                      within a level share a bounded thread pool, and a
                      level completes before the next one starts

Unit-level errors never escape this module: every path ends in a
UnitOutcome.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time

from provisionctl.adapters.shell.runner import ProcessRunner
from provisionctl.core.engine.cancellation import CancellationToken
from provisionctl.core.engine.checker import ConditionChecker
from provisionctl.core.engine.executor import ActionExecutor
from provisionctl.core.engine.graph import ExecutionPlan, UnitGraph
from provisionctl.core.errors import CancelledError, ProbeError
from provisionctl.core.models.action import ActionResult
from provisionctl.core.models.outcome import UnitOutcome, UnitStatus
from provisionctl.core.models.report import RunReport
from provisionctl.core.models.unit import Unit
from provisionctl.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class ConvergenceEngine:
    """Run units through check → apply with retries and failure policy."""

    def __init__(
        self,
        graph: UnitGraph,
        checker: ConditionChecker,
        executor: ActionExecutor,
        retry_policy: RetryPolicy | None = None,
        concurrency: int = 1,
        dry_run: bool = False,
        cancel_token: CancellationToken | None = None,
        grace_timeout: float = 10.0,
        runner: ProcessRunner | None = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._graph = graph
        self._checker = checker
        self._executor = executor
        self._retry = retry_policy or RetryPolicy()
        self._concurrency = concurrency
        self._dry_run = dry_run
        self._token = cancel_token or CancellationToken()
        self._grace_timeout = grace_timeout
        self._runner = runner
        self._abort = threading.Event()

    @property
    def cancel_token(self) -> CancellationToken:
        return self._token

    # ── Run ─────────────────────────────────────────────────────

    def run(self, plan: ExecutionPlan, selection: str = "all") -> RunReport:
        """Execute the plan and return the finalized report."""
        report = RunReport(selection=selection, dry_run=self._dry_run)
        self._abort.clear()

        if self._concurrency == 1:
            batches = [[unit_id] for unit_id in plan.order]
        else:
            batches = plan.levels(self._graph)

        logger.info(
            "Run %s: %d units, %d batch(es), concurrency=%d%s",
            report.run_id,
            len(plan),
            len(batches),
            self._concurrency,
            " [dry-run]" if self._dry_run else "",
        )

        outcomes: dict[str, UnitOutcome] = {}
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self._concurrency,
            thread_name_prefix="converge",
        ) as pool:
            for batch in batches:
                if self._abort.is_set():
                    for unit_id in batch:
                        outcomes[unit_id] = self._aborted(self._graph.get(unit_id))
                    continue
                if self._token.cancelled:
                    for unit_id in batch:
                        outcomes[unit_id] = self._cancelled(self._graph.get(unit_id))
                    continue
                outcomes.update(self._run_batch(pool, batch))

        # Single writer: append in plan order regardless of completion order
        for unit_id in plan.order:
            report.append(outcomes[unit_id])

        if self._abort.is_set():
            report.mark_fatal()
        if self._token.cancelled:
            report.mark_cancelled()

        exit_code = report.finalize()
        logger.info(
            "Run %s finished: %s (exit code %d)", report.run_id, report.status, exit_code
        )
        return report

    def _run_batch(
        self,
        pool: concurrent.futures.ThreadPoolExecutor,
        batch: list[str],
    ) -> dict[str, UnitOutcome]:
        futures = {
            pool.submit(self._evaluate_unit, self._graph.get(unit_id)): unit_id
            for unit_id in batch
        }
        self._await(set(futures))
        return {unit_id: future.result() for future, unit_id in futures.items()}

    def _await(self, pending: set[concurrent.futures.Future]) -> None:
        """Wait for in-flight units; enforce the grace timeout on cancel."""
        grace_deadline: float | None = None
        terminated = False
        while pending:
            _, pending = concurrent.futures.wait(pending, timeout=_POLL_INTERVAL)
            if not pending or not self._token.cancelled or terminated:
                continue
            if grace_deadline is None:
                grace_deadline = time.monotonic() + self._grace_timeout
                logger.warning(
                    "Waiting up to %.0fs for %d in-flight unit(s) to finish",
                    self._grace_timeout,
                    len(pending),
                )
            elif time.monotonic() >= grace_deadline and self._runner is not None:
                count = self._runner.terminate_all()
                logger.warning("Grace timeout expired; terminated %d command(s)", count)
                terminated = True

    # ── Per-unit state machine ──────────────────────────────────

    def _evaluate_unit(self, unit: Unit) -> UnitOutcome:
        """Worker entry point. Never raises."""
        if self._abort.is_set():
            return self._aborted(unit)
        if self._token.cancelled:
            return self._cancelled(unit)

        try:
            outcome = self._converge(unit)
        except Exception as e:
            logger.exception("Unexpected error while converging %s", unit.id)
            outcome = UnitOutcome(
                unit_id=unit.id,
                status=UnitStatus.FAILED,
                message=f"internal error: {e}",
                critical=unit.critical,
                diagnostic=repr(e),
            )

        if outcome.status == UnitStatus.FAILED and unit.critical:
            logger.error(
                "Critical unit %s failed; aborting remaining units", unit.id
            )
            self._abort.set()

        logger.info("%s %s → %s", outcome.status.marker, unit.id, outcome.status.value)
        return outcome

    def _converge(self, unit: Unit) -> UnitOutcome:
        start = time.monotonic()

        def outcome(status: UnitStatus, message: str, **kwargs) -> UnitOutcome:
            return UnitOutcome(
                unit_id=unit.id,
                status=status,
                message=message,
                duration_ms=int((time.monotonic() - start) * 1000),
                critical=unit.critical,
                **kwargs,
            )

        # Guard
        context = self._checker.context
        if unit.when and not context.guards_hold(unit.when):
            failing = [g for g in unit.when if not context.fact(g)]
            return outcome(UnitStatus.SKIPPED, f"not applicable ({', '.join(failing)} false)")

        # Checking
        try:
            converged = self._checker.evaluate(unit)
        except ProbeError as e:
            if self._token.cancelled:
                logger.warning("Check for %s interrupted: run cancelled", unit.id)
                return outcome(
                    UnitStatus.CANCELLED,
                    "interrupted during check by cancellation",
                    diagnostic=str(e),
                )
            logger.warning("Check for %s could not determine state: %s", unit.id, e)
            return outcome(
                UnitStatus.FAILED,
                "check failed: cannot determine state",
                diagnostic=str(e),
            )

        if converged:
            return outcome(UnitStatus.SKIPPED, "already converged")

        if self._dry_run:
            return outcome(UnitStatus.WOULD_APPLY, f"would apply {unit.apply.kind}")

        # Applying
        result, attempts = self._apply_with_retries(unit)

        if result.ok:
            return outcome(
                UnitStatus.SUCCEEDED,
                result.output.strip().splitlines()[0] if result.output.strip() else "applied",
                attempts=attempts,
                exit_code=result.exit_code,
            )

        if self._token.cancelled:
            return outcome(
                UnitStatus.CANCELLED,
                f"interrupted by cancellation; may be partially applied ({result.reason})",
                attempts=attempts,
                diagnostic=result.diagnostic,
                exit_code=result.exit_code,
            )

        return outcome(
            UnitStatus.FAILED,
            f"{result.reason} (after {attempts} attempt{'s' if attempts != 1 else ''})",
            attempts=attempts,
            diagnostic=result.diagnostic or (result.reason or ""),
            exit_code=result.exit_code,
        )

    def _apply_with_retries(self, unit: Unit) -> tuple[ActionResult, int]:
        """Apply with the retry policy. Only the last result is returned."""
        max_attempts = self._retry.max_attempts
        attempt = 0
        result: ActionResult | None = None

        while attempt < max_attempts:
            attempt += 1
            result = self._executor.apply(unit)
            if result.ok:
                return result, attempt

            logger.warning(
                "✗ %s attempt %d/%d failed: %s",
                unit.id, attempt, max_attempts, result.reason,
            )
            if attempt >= max_attempts:
                break

            delay = self._retry.delay_for(attempt)
            logger.debug("Retrying %s in %.1fs", unit.id, delay)
            if self._token.wait(delay):
                logger.warning("Retries for %s stopped: run cancelled", unit.id)
                break

        assert result is not None  # max_attempts >= 1
        return result, attempt

    # ── Terminal outcomes without evaluation ────────────────────

    def _aborted(self, unit: Unit) -> UnitOutcome:
        return UnitOutcome(
            unit_id=unit.id,
            status=UnitStatus.ABORTED,
            message="skipped: run aborted after critical failure",
            critical=unit.critical,
        )

    def _cancelled(self, unit: Unit) -> UnitOutcome:
        reason = CancelledError(unit.id, self._token.reason or "run cancelled")
        return UnitOutcome(
            unit_id=unit.id,
            status=UnitStatus.CANCELLED,
            message=str(reason),
            critical=unit.critical,
        )
