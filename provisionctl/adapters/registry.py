"""
Adapter registry — central dispatch for all adapter operations.

The registry is the single point of adapter management. It handles
registration, lookup by kind, and the two dispatch paths the engine
uses. The engine never talks to adapters directly — always through
the registry.

    evaluate_check   → bool, or ProbeError when the state is unknowable
    execute_apply    → ActionResult, never raises
"""

from __future__ import annotations

import logging
import time
from typing import Any

from provisionctl.adapters.base import (
    Adapter,
    ApplyAdapter,
    CheckAdapter,
    ExecutionContext,
)
from provisionctl.core.context import RunContext
from provisionctl.core.errors import ActionError, ProbeError
from provisionctl.core.models.action import ActionResult
from provisionctl.core.models.unit import ApplySpec, CheckSpec

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters, keyed by kind."""

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        """Register an adapter under its kind name."""
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s (%s)", name, adapter.role)

    def get(self, name: str) -> Adapter | None:
        """Look up an adapter by kind."""
        return self._adapters.get(name)

    def list_adapters(self, role: str | None = None) -> list[str]:
        """Registered kind names, optionally filtered by role."""
        return sorted(
            name
            for name, adapter in self._adapters.items()
            if role is None or adapter.role == role
        )

    def check_kinds(self) -> list[str]:
        return self.list_adapters("check")

    def apply_kinds(self) -> list[str]:
        return self.list_adapters("apply")

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Get availability status of all registered adapters."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "role": adapter.role,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    # ── Dispatch ────────────────────────────────────────────────

    def evaluate_check(
        self,
        unit_id: str,
        spec: CheckSpec,
        run: RunContext,
    ) -> bool:
        """Run a check adapter.

        Raises:
            ProbeError: unknown kind, invalid args, or the probe could
                not determine state.
        """
        adapter = self._adapters.get(spec.kind)
        if not isinstance(adapter, CheckAdapter):
            raise ProbeError(f"No check adapter registered for '{spec.kind}'")

        context = ExecutionContext(unit_id=unit_id, kind=spec.kind, args=spec.args, run=run)

        is_valid, error_msg = adapter.validate(context)
        if not is_valid:
            raise ProbeError(f"Invalid check args: {error_msg}")

        try:
            converged = adapter.probe(context)
        except ProbeError:
            raise
        except Exception as e:
            raise ProbeError(f"Probe '{spec.kind}' raised: {e}") from e

        logger.debug("check %s:%s → %s", unit_id, spec.kind, converged)
        return bool(converged)

    def execute_apply(
        self,
        unit_id: str,
        spec: ApplySpec,
        run: RunContext,
    ) -> ActionResult:
        """Execute an apply adapter once. Returns an ActionResult (never raises)."""
        start_time = time.monotonic()

        adapter = self._adapters.get(spec.kind)
        if not isinstance(adapter, ApplyAdapter):
            return ActionResult.failure(
                kind=spec.kind,
                unit_id=unit_id,
                reason=f"No apply adapter registered for '{spec.kind}'",
            )

        context = ExecutionContext(unit_id=unit_id, kind=spec.kind, args=spec.args, run=run)

        # Validate
        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            is_valid, error_msg = False, str(e)
        if not is_valid:
            return ActionResult.failure(
                kind=spec.kind,
                unit_id=unit_id,
                reason=f"Validation failed: {error_msg}",
            )

        # Execute
        try:
            result = adapter.execute(context)
        except ActionError as e:
            result = ActionResult.failure(
                kind=spec.kind,
                unit_id=unit_id,
                reason=e.reason,
                exit_code=e.exit_code,
                diagnostic=e.reason,
            )
        except Exception as e:
            # Contract violation: adapters report failure through the result
            logger.error("Adapter %s raised during execution: %s", spec.kind, e)
            result = ActionResult.failure(
                kind=spec.kind,
                unit_id=unit_id,
                reason=f"Unexpected error: {e}",
                diagnostic=repr(e),
            )

        if not result.duration_ms:
            result.duration_ms = int((time.monotonic() - start_time) * 1000)
        return result


def build_default_registry(runner=None) -> AdapterRegistry:
    """Registry with every built-in adapter, sharing one process runner."""
    from provisionctl.adapters.shell.command import (
        CommandExistsCheck,
        CommandSucceedsCheck,
        RunCommandAdapter,
    )
    from provisionctl.adapters.shell.filesystem import (
        AppendLineAdapter,
        FileContainsCheck,
        FileExistsCheck,
        WriteFileAdapter,
    )
    from provisionctl.adapters.shell.runner import default_runner
    from provisionctl.adapters.system.packages import (
        CoprEnableAdapter,
        PackageInstallAdapter,
        PackagePresentCheck,
        RepoAddAdapter,
        RepoPresentCheck,
    )
    from provisionctl.adapters.system.services import (
        ServiceActiveCheck,
        ServiceEnableAdapter,
        ServiceEnabledCheck,
    )
    from provisionctl.adapters.system.users import GroupAddAdapter, UserInGroupCheck

    runner = runner or default_runner()
    registry = AdapterRegistry()

    # Checks
    registry.register(PackagePresentCheck(runner))
    registry.register(RepoPresentCheck())
    registry.register(CommandExistsCheck())
    registry.register(CommandSucceedsCheck(runner))
    registry.register(FileExistsCheck())
    registry.register(FileContainsCheck())
    registry.register(ServiceActiveCheck(runner))
    registry.register(ServiceEnabledCheck(runner))
    registry.register(UserInGroupCheck(runner))

    # Actions
    registry.register(PackageInstallAdapter(runner))
    registry.register(RepoAddAdapter(runner))
    registry.register(CoprEnableAdapter(runner))
    registry.register(RunCommandAdapter(runner))
    registry.register(WriteFileAdapter(runner))
    registry.register(AppendLineAdapter())
    registry.register(ServiceEnableAdapter(runner))
    registry.register(GroupAddAdapter(runner))

    return registry
