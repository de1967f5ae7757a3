"""
Selection — parse ``--select`` expressions into unit ids.

    all                every unit in the graph
    tag:NAME[,NAME]    units carrying any of the tags
    id:ID[,ID]         explicit unit ids

Dependencies are not expanded here; plan resolution adds them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from provisionctl.core.engine.graph import UnitGraph
from provisionctl.core.errors import SelectionError, UnknownUnitError


@dataclass(frozen=True)
class Selection:
    """A parsed selection expression."""

    mode: str                              # all, tag, id
    values: tuple[str, ...] = field(default=())

    def __str__(self) -> str:
        if self.mode == "all":
            return "all"
        return f"{self.mode}:{','.join(self.values)}"

    def resolve(self, graph: UnitGraph) -> set[str]:
        """Unit ids this selection names within ``graph``.

        Raises:
            UnknownUnitError: an explicit id is not in the graph.
            SelectionError: a tag matches no unit.
        """
        if self.mode == "all":
            return set(graph.ids)

        if self.mode == "tag":
            ids: set[str] = set()
            for tag in self.values:
                matched = graph.select_tags([tag])
                if not matched:
                    known = ", ".join(sorted(graph.tags)) or "none"
                    raise SelectionError(f"No units tagged '{tag}' (known tags: {known})")
                ids |= matched
            return ids

        for unit_id in self.values:
            if unit_id not in graph:
                raise UnknownUnitError(unit_id)
        return set(self.values)


def parse_selection(expression: str) -> Selection:
    """Parse a ``--select`` expression.

    Raises:
        SelectionError: malformed expression.
    """
    expr = (expression or "").strip()
    if not expr:
        raise SelectionError("Empty selection; use all, tag:NAME or id:ID,ID")

    if expr == "all":
        return Selection(mode="all")

    prefix, sep, rest = expr.partition(":")
    if not sep or prefix not in ("tag", "id"):
        raise SelectionError(
            f"Invalid selection '{expr}'; use all, tag:NAME or id:ID,ID"
        )

    values = tuple(dict.fromkeys(v.strip() for v in rest.split(",") if v.strip()))
    if not values:
        raise SelectionError(f"Selection '{expr}' names no {prefix}s")
    return Selection(mode=prefix, values=values)
