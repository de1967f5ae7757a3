"""
ActionResult — the apply contract between engine and adapters.

Apply adapters return an ActionResult. They never raise for ordinary
failures: a non-zero exit, a missing file or a timeout all become
a failure result carrying the adapter's raw diagnostic text.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ActionResult(BaseModel):
    """Result of a single apply attempt."""

    kind: str
    unit_id: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    reason: str | None = None      # one-line failure summary
    diagnostic: str = ""           # raw adapter text (stderr tail)
    exit_code: int | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        kind: str,
        unit_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> ActionResult:
        """Create a success result."""
        return cls(
            kind=kind,
            unit_id=unit_id,
            status="ok",
            output=output,
            exit_code=kwargs.pop("exit_code", 0),
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        kind: str,
        unit_id: str,
        reason: str,
        exit_code: int | None = None,
        **kwargs: Any,
    ) -> ActionResult:
        """Create a failure result."""
        return cls(
            kind=kind,
            unit_id=unit_id,
            status="failed",
            reason=reason,
            exit_code=exit_code,
            **kwargs,
        )
