"""
Unit graph — units, dependencies, and plan resolution (pure).

No I/O, no subprocess. The graph is built once at startup, validated
and sealed; after that it is read-only shared state for the run.

Plan resolution:
    1. transitive closure of ``depends_on`` from the selected ids
    2. depth-first post-order traversal with a recursion-stack cycle
       check, visiting roots and dependencies in ascending id order

The ascending-id tie-break makes plans deterministic and reproducible.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from provisionctl.core.errors import (
    ConfigurationError,
    CyclicDependencyError,
    DuplicateUnitError,
    UnknownUnitError,
)
from provisionctl.core.models.unit import Unit

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Ordered unit ids for one run."""

    order: list[str] = field(default_factory=list)
    selected: set[str] = field(default_factory=set)

    @property
    def total_units(self) -> int:
        return len(self.order)

    def __iter__(self):
        return iter(self.order)

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self.order

    def position(self, unit_id: str) -> int:
        return self.order.index(unit_id)

    def levels(self, graph: UnitGraph) -> list[list[str]]:
        """Group the plan into dependency levels.

        Level 0 holds units with no dependencies inside the plan; level n
        holds units whose in-plan dependencies all sit in earlier levels.
        Each level keeps plan order.
        """
        in_plan = set(self.order)
        level_of: dict[str, int] = {}
        # Plan order is topological, so dependencies are always seen first
        for unit_id in self.order:
            deps = [d for d in graph.get(unit_id).depends_on if d in in_plan]
            level_of[unit_id] = 1 + max((level_of[d] for d in deps), default=-1)

        levels: list[list[str]] = []
        for unit_id in self.order:
            n = level_of[unit_id]
            while len(levels) <= n:
                levels.append([])
            levels[n].append(unit_id)
        return levels

    def to_dict(self) -> dict:
        return {
            "order": list(self.order),
            "selected": sorted(self.selected),
            "total": self.total_units,
        }


class UnitGraph:
    """All units of a run plus their dependency edges."""

    def __init__(self) -> None:
        self._units: dict[str, Unit] = {}
        self._sealed = False

    @classmethod
    def from_units(cls, units: Iterable[Unit]) -> UnitGraph:
        """Build, validate and seal a graph in one step."""
        graph = cls()
        for unit in units:
            graph.add_unit(unit)
        graph.seal()
        return graph

    # ── Construction ────────────────────────────────────────────

    @property
    def sealed(self) -> bool:
        return self._sealed

    def add_unit(self, unit: Unit) -> None:
        if self._sealed:
            raise ConfigurationError("Unit graph is sealed; cannot add units")
        if unit.id in self._units:
            raise DuplicateUnitError(unit.id)
        self._units[unit.id] = unit

    def validate(self) -> None:
        """Check every reference exists and the whole graph is acyclic."""
        for unit_id in sorted(self._units):
            for dep in self._units[unit_id].depends_on:
                if dep not in self._units:
                    raise UnknownUnitError(dep, referenced_by=unit_id)
        self._topological(sorted(self._units))

    def seal(self) -> None:
        """Validate, then freeze the graph."""
        self.validate()
        self._sealed = True
        logger.debug("Unit graph sealed with %d units", len(self._units))

    # ── Queries ─────────────────────────────────────────────────

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def __len__(self) -> int:
        return len(self._units)

    def get(self, unit_id: str) -> Unit:
        try:
            return self._units[unit_id]
        except KeyError:
            raise UnknownUnitError(unit_id) from None

    @property
    def ids(self) -> list[str]:
        return sorted(self._units)

    @property
    def units(self) -> list[Unit]:
        return [self._units[i] for i in self.ids]

    @property
    def tags(self) -> set[str]:
        return {t for u in self._units.values() for t in u.tags}

    def select_tags(self, tags: Iterable[str]) -> set[str]:
        """Ids of units carrying any of ``tags``."""
        wanted = set(tags)
        return {u.id for u in self._units.values() if wanted.intersection(u.tags)}

    def dependents(self, unit_id: str) -> set[str]:
        """Ids of units that list ``unit_id`` directly in depends_on."""
        return {u.id for u in self._units.values() if unit_id in u.depends_on}

    # ── Resolution ──────────────────────────────────────────────

    def closure(self, selected_ids: Iterable[str]) -> set[str]:
        """Selected ids plus all their transitive dependencies."""
        result: set[str] = set()
        stack = sorted(set(selected_ids), reverse=True)
        for unit_id in stack:
            if unit_id not in self._units:
                raise UnknownUnitError(unit_id)

        while stack:
            unit_id = stack.pop()
            if unit_id in result:
                continue
            result.add(unit_id)
            for dep in self._units[unit_id].depends_on:
                if dep not in self._units:
                    raise UnknownUnitError(dep, referenced_by=unit_id)
                if dep not in result:
                    stack.append(dep)
        return result

    def resolve_plan(self, selected_ids: Iterable[str]) -> ExecutionPlan:
        """Resolve an execution plan for the selection.

        Raises:
            UnknownUnitError: a selected or referenced id is absent.
            CyclicDependencyError: the closure contains a cycle.
        """
        selected = set(selected_ids)
        closure = self.closure(selected)
        order = self._topological(sorted(closure))
        logger.debug(
            "Resolved plan: %d selected, %d total → %s",
            len(selected), len(order), order,
        )
        return ExecutionPlan(order=order, selected=selected)

    def _topological(self, roots: list[str]) -> list[str]:
        """DFS post-order over ``roots`` (already sorted), ties by id."""
        order: list[str] = []
        done: set[str] = set()
        on_stack: list[str] = []
        on_stack_set: set[str] = set()

        def visit(unit_id: str) -> None:
            if unit_id in done:
                return
            if unit_id in on_stack_set:
                start = on_stack.index(unit_id)
                raise CyclicDependencyError(on_stack[start:] + [unit_id])

            on_stack.append(unit_id)
            on_stack_set.add(unit_id)
            for dep in sorted(self._units[unit_id].depends_on):
                visit(dep)
            on_stack.pop()
            on_stack_set.discard(unit_id)

            done.add(unit_id)
            order.append(unit_id)

        for root in roots:
            visit(root)
        return order
