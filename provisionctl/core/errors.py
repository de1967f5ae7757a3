"""
Error taxonomy for the provisioning engine.

Configuration errors abort before anything runs (CLI exit code 3).
Probe and action errors are unit-level: the engine catches them at its
boundary and turns them into UnitOutcomes. They never escape a run.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all provisionctl errors."""


# ── Configuration (fail fast, nothing runs) ─────────────────────


class ConfigurationError(ProvisionError):
    """The unit file, the unit graph, or the selection is invalid."""


class DuplicateUnitError(ConfigurationError):
    """A unit id was added to a graph that already contains it."""

    def __init__(self, unit_id: str):
        super().__init__(f"Duplicate unit id: '{unit_id}'")
        self.unit_id = unit_id


class UnknownUnitError(ConfigurationError):
    """A selected or referenced unit id does not exist in the graph."""

    def __init__(self, unit_id: str, referenced_by: str | None = None):
        if referenced_by:
            message = f"Unit '{referenced_by}' depends on unknown unit '{unit_id}'"
        else:
            message = f"Unknown unit: '{unit_id}'"
        super().__init__(message)
        self.unit_id = unit_id
        self.referenced_by = referenced_by


class CyclicDependencyError(ConfigurationError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")
        self.cycle = cycle


class SelectionError(ConfigurationError):
    """The --select expression could not be parsed or matched nothing."""


# ── Unit-level ──────────────────────────────────────────────────


class ProbeError(ProvisionError):
    """A check could not determine state (the probe itself is unusable).

    Distinct from "not converged yet", which is a plain False.
    """


class ActionError(ProvisionError):
    """An action failed.

    Adapters may raise it instead of returning a failure result; the
    registry turns it into one, keeping the reason and exit code.
    """

    def __init__(self, reason: str, exit_code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.exit_code = exit_code


class CancelledError(ProvisionError):
    """The run was cancelled before this unit started."""

    def __init__(self, unit_id: str, reason: str = "run cancelled"):
        super().__init__(f"not started: {reason}")
        self.unit_id = unit_id
        self.reason = reason
