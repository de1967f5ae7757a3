"""
Unit model — the atomic provisioning item.

A unit pairs an idempotency predicate (``check``) with a side-effecting
action (``apply``). Both reference a capability adapter by ``kind``;
the unit never embeds command syntax itself.

Units are loaded from the unit file and are immutable afterwards.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_UNIT_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class CheckSpec(BaseModel):
    """Reference to a check adapter plus its arguments."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: str
    args: dict[str, Any] = Field(default_factory=dict)


class ApplySpec(BaseModel):
    """Reference to an apply adapter plus its arguments."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: str
    args: dict[str, Any] = Field(default_factory=dict)


class Unit(BaseModel):
    """A provisioning unit.

    ``depends_on`` is accepted as ``dependsOn`` in unit files.
    A unit without ``check`` is never considered converged and is
    applied on every run.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    id: str
    description: str = ""
    depends_on: tuple[str, ...] = Field(default=(), alias="dependsOn")
    check: CheckSpec | None = None
    apply: ApplySpec
    critical: bool = False
    tags: tuple[str, ...] = ()
    when: tuple[str, ...] = ()     # RunContext facts that must all hold

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: str) -> str:
        if not _UNIT_ID_RE.match(value):
            raise ValueError(
                f"invalid unit id {value!r}: use letters, digits, '.', '_' or '-'"
            )
        return value

    @model_validator(mode="after")
    def _valid_dependencies(self) -> Unit:
        if self.id in self.depends_on:
            raise ValueError(f"unit '{self.id}' depends on itself")
        dupes = sorted({d for d in self.depends_on if self.depends_on.count(d) > 1})
        if dupes:
            raise ValueError(f"unit '{self.id}' lists duplicate dependencies: {', '.join(dupes)}")
        return self

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
