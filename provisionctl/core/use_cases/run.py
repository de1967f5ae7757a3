"""
Run use case — converge the selected units on this machine.

This is the top-level orchestrator: it loads the unit file, resolves
the plan, probes the run context, drives the convergence engine and
persists the result. The full vertical slice from ``--select`` to an
exit code.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from provisionctl.adapters.registry import AdapterRegistry, build_default_registry
from provisionctl.adapters.shell.runner import ProcessRunner, default_runner
from provisionctl.core.config.settings import EngineSettings, resolve_settings
from provisionctl.core.context import RunContext, probe_run_context
from provisionctl.core.engine.cancellation import CancellationToken
from provisionctl.core.engine.checker import ConditionChecker
from provisionctl.core.engine.convergence import ConvergenceEngine
from provisionctl.core.engine.executor import ActionExecutor
from provisionctl.core.engine.graph import ExecutionPlan
from provisionctl.core.errors import ConfigurationError
from provisionctl.core.models.report import EXIT_USAGE, RunReport
from provisionctl.core.persistence.history import HistoryEntry, HistoryWriter
from provisionctl.core.use_cases.plan import prepare_plan

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of a provisioning run."""

    report: RunReport | None = None
    plan: ExecutionPlan | None = None
    settings: EngineSettings | None = None
    context: RunContext | None = None
    report_file: Path | None = None
    history_written: bool = False
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error or self.report is None:
            return EXIT_USAGE
        return self.report.finalize()

    def to_dict(self) -> dict:
        result: dict = {"exit_code": self.exit_code}
        if self.error:
            result["error"] = self.error
            return result

        if self.settings:
            result["settings"] = self.settings.to_dict()
        if self.context:
            result["context"] = self.context.to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_provisioning(
    selection: str = "all",
    config_path: Path | None = None,
    dry_run: bool = False,
    concurrency: int | None = None,
    max_retries: int | None = None,
    registry: AdapterRegistry | None = None,
    runner: ProcessRunner | None = None,
    context: RunContext | None = None,
    cancel_token: CancellationToken | None = None,
    report_file: Path | None = None,
    record_history: bool = True,
) -> RunResult:
    """Converge the selected units.

    Args:
        selection: ``all``, ``tag:NAME[,NAME]`` or ``id:ID[,ID]``.
        config_path: Optional explicit path to the unit file.
        dry_run: Check only; never apply.
        concurrency: Override for the worker limit (None = settings).
        max_retries: Override for retries per unit (None = settings).
        registry: Optional pre-configured adapter registry.
        runner: Process runner shared with the registry's adapters.
        context: Pre-built RunContext (None = probe this machine).
        cancel_token: Token the caller cancels on SIGINT/SIGTERM.
        report_file: Write the JSON report here as well.
        record_history: Append the run to the history ledger.

    Returns:
        RunResult; ``exit_code`` is what the process should exit with.
    """
    result = RunResult()
    runner = runner or default_runner()
    if registry is None:
        registry = build_default_registry(runner)

    # ── Load, validate, resolve ─────────────────────────────────
    prepared = prepare_plan(selection=selection, config_path=config_path, registry=registry)
    if prepared.error:
        result.error = prepared.error
        return result
    assert prepared.unit_file is not None and prepared.graph is not None
    assert prepared.plan is not None
    result.plan = prepared.plan

    try:
        settings = resolve_settings(
            prepared.unit_file.settings,
            max_retries=max_retries,
            concurrency=concurrency,
        )
    except ConfigurationError as e:
        result.error = str(e)
        return result
    result.settings = settings

    # ── Probe the machine ───────────────────────────────────────
    if context is None:
        context = probe_run_context(dry_run=dry_run, command_timeout=settings.command_timeout)
    result.context = context

    # ── Execute ─────────────────────────────────────────────────
    engine = ConvergenceEngine(
        graph=prepared.graph,
        checker=ConditionChecker(registry, context),
        executor=ActionExecutor(registry, context),
        retry_policy=settings.retry_policy(),
        concurrency=settings.concurrency,
        dry_run=dry_run,
        cancel_token=cancel_token,
        grace_timeout=settings.grace_timeout,
        runner=runner,
    )
    report = engine.run(prepared.plan, selection=str(prepared.selection))
    result.report = report

    # ── Persist ─────────────────────────────────────────────────
    if report_file is not None:
        result.report_file = write_report_file(report, report_file)

    if record_history and not dry_run:
        writer = HistoryWriter(settings.state_path)
        entry = HistoryEntry.from_report(
            report,
            context={
                "fedora_version": context.fedora_version,
                "has_nvidia": context.has_nvidia,
                "concurrency": settings.concurrency,
                "max_retries": settings.max_retries,
            },
        )
        result.history_written = writer.write(entry)

    return result


def write_report_file(report: RunReport, path: Path) -> Path | None:
    """Write the JSON report. None (logged) if the file cannot be written."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        logger.error("Failed to write report file %s: %s", path, e)
        return None
    logger.info("Report written to %s", path)
    return path
