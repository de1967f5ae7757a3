"""
Action executor — apply one unit, exactly once.

Side-effecting and possibly non-atomic (a dnf transaction can be
interrupted half-way). The executor never retries: the convergence
engine owns retry counts, backoff and their logging.
"""

from __future__ import annotations

import logging

from provisionctl.adapters.registry import AdapterRegistry
from provisionctl.core.context import RunContext
from provisionctl.core.models.action import ActionResult
from provisionctl.core.models.unit import Unit

logger = logging.getLogger(__name__)


class ActionExecutor:
    """Dispatch a unit's apply spec to its adapter."""

    def __init__(self, registry: AdapterRegistry, context: RunContext):
        self._registry = registry
        self._context = context

    def apply(self, unit: Unit) -> ActionResult:
        logger.debug("apply %s via %s", unit.id, unit.apply.kind)
        return self._registry.execute_apply(unit.id, unit.apply, self._context)
