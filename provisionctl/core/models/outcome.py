"""
UnitOutcome — the recorded result of evaluating one unit.

Created the moment a unit finishes evaluation; frozen afterwards.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class UnitStatus(str, Enum):
    """Terminal states of a unit within a run."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"            # already converged, or guard not met
    FAILED = "failed"
    ABORTED = "aborted"            # skipped because a critical unit failed
    WOULD_APPLY = "would_apply"    # dry-run: not converged, apply suppressed
    CANCELLED = "cancelled"        # never started, run was cancelled

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def marker(self) -> str:
        return _MARKERS[self]


_LABELS = {
    UnitStatus.SUCCEEDED: "Succeeded",
    UnitStatus.SKIPPED: "Skipped",
    UnitStatus.FAILED: "Failed",
    UnitStatus.ABORTED: "Skipped (aborted)",
    UnitStatus.WOULD_APPLY: "Would apply",
    UnitStatus.CANCELLED: "Cancelled",
}

_MARKERS = {
    UnitStatus.SUCCEEDED: "✓",
    UnitStatus.SKIPPED: "⊘",
    UnitStatus.FAILED: "✗",
    UnitStatus.ABORTED: "⊗",
    UnitStatus.WOULD_APPLY: "…",
    UnitStatus.CANCELLED: "⊖",
}


class UnitOutcome(BaseModel):
    """Result of attempting one unit."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    status: UnitStatus
    message: str = ""
    timestamp: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    attempts: int = 0
    critical: bool = False
    diagnostic: str = ""
    exit_code: int | None = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")
