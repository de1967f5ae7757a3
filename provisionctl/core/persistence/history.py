"""
Run history — append-only ledger of finished runs.

Every non-dry run writes one entry to an NDJSON (newline-delimited JSON)
file under the state directory. ``provisionctl history`` reads it back.

The ledger is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from provisionctl.core.models.outcome import UnitStatus
from provisionctl.core.models.report import RunReport

logger = logging.getLogger(__name__)

HISTORY_FILE = "history.ndjson"


class HistoryEntry(BaseModel):
    """A single run in the history ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    selection: str = ""
    dry_run: bool = False

    # Results
    status: str = ""               # ok, partial, fatal, cancelled
    exit_code: int = 0
    units_total: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
    duration_ms: int = 0

    # Units that failed (ids)
    failed: list[str] = Field(default_factory=list)

    # Extensible context (host facts, settings)
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: RunReport, context: dict[str, Any] | None = None) -> HistoryEntry:
        return cls(
            run_id=report.run_id,
            selection=report.selection,
            dry_run=report.dry_run,
            status=report.status,
            exit_code=report.exit_code if report.exit_code is not None else 0,
            units_total=report.total,
            counts={s.value: len(members) for s, members in report.by_status().items()},
            duration_ms=report.duration_ms,
            failed=[o.unit_id for o in report.outcomes if o.status == UnitStatus.FAILED],
            context=context or {},
        )


class HistoryWriter:
    """Append-only run history ledger.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, state_dir: Path):
        self._path = state_dir / HISTORY_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: HistoryEntry) -> bool:
        """Append an entry. False (logged) if the ledger is not writable."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write run history: %s", e)
            return False

        logger.debug("History entry written: %s", entry.run_id)
        return True

    def read_all(self) -> list[HistoryEntry]:
        """Read all entries from the ledger, oldest first."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(HistoryEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt history entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run history: %s", e)

        return entries

    def read_recent(self, n: int = 10) -> list[HistoryEntry]:
        """The most recent N entries, oldest first."""
        if n <= 0:
            return []
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
