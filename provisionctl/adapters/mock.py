"""
Mock adapters — test doubles for the check and apply roles.

``MockState`` simulates machine state: a successful ``MockAction`` marks
its unit converged, and ``MockCheck`` reports converged units as True.
Running the engine twice over the same state therefore exercises the
idempotence law without touching the real system.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from provisionctl.adapters.base import ApplyAdapter, CheckAdapter, ExecutionContext
from provisionctl.core.errors import ProbeError
from provisionctl.core.models.action import ActionResult


class MockState:
    """Set of unit ids considered converged."""

    def __init__(self, converged: set[str] | None = None):
        self.converged: set[str] = set(converged or ())
        self._lock = threading.Lock()

    def mark(self, unit_id: str) -> None:
        with self._lock:
            self.converged.add(unit_id)

    def __contains__(self, unit_id: str) -> bool:
        with self._lock:
            return unit_id in self.converged


class MockCheck(CheckAdapter):
    """Check double.

    Default answer: ``unit_id in state``. Per-unit overrides via
    ``set_result`` and ``set_probe_error``.
    """

    def __init__(self, adapter_name: str = "mock-check", state: MockState | None = None):
        self._name = adapter_name
        self.state = state or MockState()
        self._results: dict[str, bool] = {}
        self._errors: dict[str, str] = {}
        self._call_log: list[ExecutionContext] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def set_result(self, unit_id: str, converged: bool) -> None:
        self._results[unit_id] = converged

    def set_probe_error(self, unit_id: str, error: str = "Mock probe unusable") -> None:
        self._errors[unit_id] = error

    def probe(self, context: ExecutionContext) -> bool:
        with self._lock:
            self._call_log.append(context)
        if context.unit_id in self._errors:
            raise ProbeError(self._errors[context.unit_id])
        if context.unit_id in self._results:
            return self._results[context.unit_id]
        return context.unit_id in self.state


class MockAction(ApplyAdapter):
    """Apply double.

    Succeeds by default and marks the unit converged in ``state``.
    ``set_failure`` fails a unit on every attempt; ``fail_times`` fails
    it for the first N attempts only. ``delay`` simulates slow work and
    ``on_execute`` lets tests observe concurrency.
    """

    def __init__(
        self,
        adapter_name: str = "mock-apply",
        state: MockState | None = None,
        delay: float = 0.0,
        on_execute: Callable[[ExecutionContext], None] | None = None,
    ):
        self._name = adapter_name
        self.state = state or MockState()
        self.delay = delay
        self.on_execute = on_execute
        self._failures: dict[str, tuple[str, int | None]] = {}
        self._remaining_failures: dict[str, int] = {}
        self._call_log: list[ExecutionContext] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_for(self, unit_id: str) -> int:
        return sum(1 for c in self._call_log if c.unit_id == unit_id)

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def set_failure(self, unit_id: str, reason: str = "Mock failure", exit_code: int | None = 1) -> None:
        """Configure a unit to fail on every attempt."""
        self._failures[unit_id] = (reason, exit_code)

    def fail_times(self, unit_id: str, times: int, reason: str = "Transient mock failure") -> None:
        """Configure a unit to fail its first ``times`` attempts."""
        self._failures[unit_id] = (reason, 1)
        self._remaining_failures[unit_id] = times

    def execute(self, context: ExecutionContext) -> ActionResult:
        with self._lock:
            self._call_log.append(context)
        if self.on_execute:
            self.on_execute(context)
        if self.delay:
            time.sleep(self.delay)

        unit_id = context.unit_id
        with self._lock:
            failure = self._failures.get(unit_id)
            if failure and unit_id in self._remaining_failures:
                if self._remaining_failures[unit_id] > 0:
                    self._remaining_failures[unit_id] -= 1
                else:
                    failure = None

        if failure:
            reason, exit_code = failure
            return ActionResult.failure(
                kind=self._name,
                unit_id=unit_id,
                reason=reason,
                exit_code=exit_code,
                diagnostic=f"[mock] {reason}",
            )

        self.state.mark(unit_id)
        return ActionResult.success(
            kind=self._name,
            unit_id=unit_id,
            output="[mock] applied",
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and configured failures."""
        self._call_log.clear()
        self._failures.clear()
        self._remaining_failures.clear()
