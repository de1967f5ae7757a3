"""
Config check use case — validate units.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisionctl.adapters.registry import AdapterRegistry, build_default_registry
from provisionctl.core.config.loader import (
    UnitFile,
    adapter_problems,
    find_units_file,
    load_unit_file,
)
from provisionctl.core.engine.graph import UnitGraph
from provisionctl.core.errors import ConfigurationError


@dataclass
class ConfigCheckResult:
    """Result of unit file validation."""

    valid: bool = False
    unit_file: UnitFile | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def unit_count(self) -> int:
        return len(self.unit_file.units) if self.unit_file else 0

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "unit_count": self.unit_count,
            "critical_count": (
                sum(1 for u in self.unit_file.units if u.critical) if self.unit_file else 0
            ),
            "settings": self.unit_file.settings.to_dict() if self.unit_file else None,
        }


def check_config(
    config_path: Path | None = None,
    registry: AdapterRegistry | None = None,
) -> ConfigCheckResult:
    """Validate the unit file and report issues.

    Errors: schema, unknown adapter kinds, duplicate ids, unknown
    references, cycles. Warnings: units without a check, empty files.

    Args:
        config_path: Optional explicit path to units.yml.
        registry: Adapter registry to check kinds against.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    # Find config
    if config_path is None:
        config_path = find_units_file()
    if config_path is None:
        result.errors.append("No units.yml found.")
        return result
    result.config_path = config_path

    # Load and validate schema
    try:
        unit_file = load_unit_file(config_path)
        result.unit_file = unit_file
    except ConfigurationError as e:
        result.errors.append(str(e))
        return result

    if not unit_file.units:
        result.warnings.append("No units defined. A run has nothing to converge.")

    # Adapter kinds (all problems, not just the first)
    registry = registry or build_default_registry()
    result.errors.extend(adapter_problems(unit_file.units, registry))

    # Graph: duplicates, references, cycles
    try:
        UnitGraph.from_units(unit_file.units)
    except ConfigurationError as e:
        result.errors.append(str(e))

    # Semantic warnings
    for unit in unit_file.units:
        if unit.check is None:
            result.warnings.append(
                f"Unit '{unit.id}' has no check; it will be applied on every run."
            )
        if unit.critical and unit.when:
            result.warnings.append(
                f"Critical unit '{unit.id}' is guarded by {', '.join(unit.when)}; "
                "when the guard is false it is skipped, not failed."
            )

    depended_on = {d for u in unit_file.units for d in u.depends_on}
    if len(unit_file.units) > 1:
        for unit in unit_file.units:
            if not unit.tags and unit.id not in depended_on:
                result.warnings.append(
                    f"Unit '{unit.id}' has no tags and nothing depends on it; "
                    "only 'all' or 'id:' selections reach it."
                )

    # Result
    result.valid = len(result.errors) == 0
    return result
