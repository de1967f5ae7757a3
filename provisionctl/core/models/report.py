"""
RunReport — ordered per-unit outcomes plus run-level metadata.

The report is append-only while a run is in progress and is owned by
the engine (single writer). ``finalize()`` stamps the end time and
computes the exit code:

    0  every outcome succeeded, was skipped, or would apply (dry-run)
    1  at least one non-critical unit failed
    2  a critical unit failed and the run was aborted

Cancelled outcomes are reported but do not count as failures.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from provisionctl.core.models.outcome import UnitOutcome, UnitStatus

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2
EXIT_USAGE = 3

# Render order for status groups
_GROUP_ORDER = (
    UnitStatus.FAILED,
    UnitStatus.ABORTED,
    UnitStatus.CANCELLED,
    UnitStatus.WOULD_APPLY,
    UnitStatus.SUCCEEDED,
    UnitStatus.SKIPPED,
)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


@dataclass
class RunReport:
    """Aggregated result of one engine run."""

    run_id: str = field(default_factory=generate_run_id)
    selection: str = "all"
    dry_run: bool = False
    outcomes: list[UnitOutcome] = field(default_factory=list)
    started_at: str = field(default_factory=_now_iso)
    finished_at: str | None = None
    exit_code: int | None = None
    fatal: bool = False
    cancelled: bool = False

    # ── Mutation (engine only) ──────────────────────────────────

    @property
    def finalized(self) -> bool:
        return self.exit_code is not None

    def append(self, outcome: UnitOutcome) -> None:
        if self.finalized:
            raise RuntimeError(f"Report {self.run_id} is finalized; cannot append")
        self.outcomes.append(outcome)

    def mark_fatal(self) -> None:
        self.fatal = True

    def mark_cancelled(self) -> None:
        self.cancelled = True

    def finalize(self) -> int:
        """Compute and store the exit code. Safe to call twice."""
        if self.exit_code is not None:
            return self.exit_code
        if self.fatal:
            self.exit_code = EXIT_FATAL
        elif self.failed > 0:
            self.exit_code = EXIT_PARTIAL
        else:
            self.exit_code = EXIT_OK
        self.finished_at = _now_iso()
        return self.exit_code

    # ── Queries ─────────────────────────────────────────────────

    def count(self, status: UnitStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return self.count(UnitStatus.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self.count(UnitStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(UnitStatus.FAILED)

    @property
    def aborted(self) -> int:
        return self.count(UnitStatus.ABORTED)

    @property
    def would_apply(self) -> int:
        return self.count(UnitStatus.WOULD_APPLY)

    @property
    def cancelled_count(self) -> int:
        return self.count(UnitStatus.CANCELLED)

    @property
    def duration_ms(self) -> int:
        if not self.finished_at:
            return 0
        elapsed = datetime.fromisoformat(self.finished_at) - datetime.fromisoformat(self.started_at)
        return int(elapsed.total_seconds() * 1000)

    @property
    def status(self) -> str:
        """Run-level status word."""
        if self.fatal:
            return "fatal"
        if self.cancelled:
            return "cancelled"
        if self.failed > 0:
            return "partial"
        return "ok"

    def outcome_for(self, unit_id: str) -> UnitOutcome | None:
        for outcome in self.outcomes:
            if outcome.unit_id == unit_id:
                return outcome
        return None

    def by_status(self) -> dict[UnitStatus, list[UnitOutcome]]:
        """Outcomes grouped by status, each group in plan order."""
        groups: dict[UnitStatus, list[UnitOutcome]] = {}
        for outcome in self.outcomes:
            groups.setdefault(outcome.status, []).append(outcome)
        return groups

    # ── Output ──────────────────────────────────────────────────

    def render(self) -> str:
        """Human-readable summary, grouped by status.

        Deterministic for a given report: groups appear in a fixed order
        and units keep plan order within a group.
        """
        mode = "dry-run" if self.dry_run else "apply"
        lines = [f"Run {self.run_id}  selection={self.selection}  mode={mode}"]

        groups = self.by_status()
        for status in _GROUP_ORDER:
            members = groups.get(status)
            if not members:
                continue
            lines.append("")
            lines.append(f"  {status.label} ({len(members)})")
            for outcome in members:
                critical = " [critical]" if outcome.critical else ""
                lines.append(
                    f"    {status.marker} {outcome.unit_id}{critical} — {outcome.message}"
                )
                diagnostic = outcome.diagnostic.strip()
                if status == UnitStatus.FAILED and diagnostic:
                    first = diagnostic.splitlines()[0]
                    lines.append(f"      │ {first}")

        lines.append("")
        lines.append(
            f"  Result: {self.succeeded} succeeded, {self.skipped} skipped, "
            f"{self.failed} failed, {self.aborted} aborted, "
            f"{self.would_apply} would apply, {self.cancelled_count} cancelled "
            f"(exit code {self.exit_code if self.exit_code is not None else '-'})"
        )
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "selection": self.selection,
            "dry_run": self.dry_run,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
            "exit_code": self.exit_code,
            "fatal": self.fatal,
            "cancelled": self.cancelled,
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "aborted": self.aborted,
            "would_apply": self.would_apply,
            "cancelled_units": self.cancelled_count,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
