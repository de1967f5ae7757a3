"""
Condition checker — "is this unit already converged?"

Thin seam between the engine and the check adapters. A unit without
a ``check`` is never converged.
"""

from __future__ import annotations

from provisionctl.adapters.registry import AdapterRegistry
from provisionctl.core.context import RunContext
from provisionctl.core.models.unit import Unit


class ConditionChecker:
    """Evaluate a unit's idempotency predicate through the registry."""

    def __init__(self, registry: AdapterRegistry, context: RunContext):
        self._registry = registry
        self._context = context

    @property
    def context(self) -> RunContext:
        return self._context

    def evaluate(self, unit: Unit) -> bool:
        """True if the unit is already converged.

        Raises:
            ProbeError: the probe cannot determine state.
        """
        if unit.check is None:
            return False
        return self._registry.evaluate_check(unit.id, unit.check, self._context)
