"""
Plan use case — resolve what a run would touch, without touching it.

Loads the unit file, builds the sealed graph, parses the selection and
resolves the execution plan. ``run`` reuses ``prepare_plan`` so both
commands fail the same way on configuration errors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from provisionctl.adapters.registry import AdapterRegistry
from provisionctl.core.config.loader import UnitFile, build_graph, load_unit_file
from provisionctl.core.engine.graph import ExecutionPlan, UnitGraph
from provisionctl.core.engine.selection import Selection, parse_selection
from provisionctl.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """Resolved plan for a selection."""

    unit_file: UnitFile | None = None
    graph: UnitGraph | None = None
    selection: Selection | None = None
    plan: ExecutionPlan | None = None
    levels: list[list[str]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        assert self.plan is not None and self.graph is not None
        return {
            "units_file": str(self.unit_file.path) if self.unit_file and self.unit_file.path else None,
            "selection": str(self.selection),
            "plan": self.plan.to_dict(),
            "levels": self.levels,
            "units": [
                {
                    "id": unit_id,
                    "selected": unit_id in self.plan.selected,
                    "critical": self.graph.get(unit_id).critical,
                    "depends_on": list(self.graph.get(unit_id).depends_on),
                }
                for unit_id in self.plan.order
            ],
        }


def prepare_plan(
    selection: str = "all",
    config_path: Path | None = None,
    registry: AdapterRegistry | None = None,
) -> PlanResult:
    """Load, validate and resolve. Configuration errors land in ``error``."""
    result = PlanResult()

    try:
        result.unit_file = load_unit_file(config_path)
        result.selection = parse_selection(selection)
        result.graph = build_graph(result.unit_file.units, registry)
        selected = result.selection.resolve(result.graph)
        result.plan = result.graph.resolve_plan(selected)
    except ConfigurationError as e:
        logger.debug("Plan preparation failed: %s", e)
        result.error = str(e)
        return result

    result.levels = result.plan.levels(result.graph)
    return result


def show_plan(
    selection: str = "all",
    config_path: Path | None = None,
    registry: AdapterRegistry | None = None,
) -> PlanResult:
    """Resolve the plan, validating adapter kinds against the registry."""
    if registry is None:
        from provisionctl.adapters.registry import build_default_registry

        registry = build_default_registry()
    return prepare_plan(selection=selection, config_path=config_path, registry=registry)
