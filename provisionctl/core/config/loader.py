"""
Configuration loader — reads units.yml into domain models.

This is the primary entry point for loading the unit file.
It reads YAML, validates against Pydantic schemas, and returns
typed domain objects. ``build_graph`` turns the units into a sealed
UnitGraph, checking adapter kinds against a registry when given one.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

from provisionctl.core.config.settings import EngineSettings, settings_from_mapping
from provisionctl.core.engine.graph import UnitGraph
from provisionctl.core.errors import ConfigurationError
from provisionctl.core.models.unit import Unit

logger = logging.getLogger(__name__)

# Default unit filename
UNITS_FILE = "units.yml"
UNITS_ENV_VAR = "PROVISIONCTL_UNITS"


@dataclass
class UnitFile:
    """A parsed unit file."""

    path: Path | None
    settings: EngineSettings = field(default_factory=EngineSettings)
    units: list[Unit] = field(default_factory=list)


def find_units_file(start_dir: Path | None = None) -> Path | None:
    """Locate the unit file.

    ``PROVISIONCTL_UNITS`` wins when set; otherwise search for units.yml
    starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to the unit file, or None if not found.
    """
    from_env = os.environ.get(UNITS_ENV_VAR)
    if from_env:
        return Path(from_env).expanduser()

    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / UNITS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_unit_file(path: Path | None = None) -> UnitFile:
    """Load and validate a unit file.

    Args:
        path: Explicit path to the unit file. If None, searches upward.

    Returns:
        Validated UnitFile.

    Raises:
        ConfigurationError: If the file is missing or invalid.
    """
    if path is None:
        path = find_units_file()

    if path is None:
        raise ConfigurationError(
            f"No {UNITS_FILE} found. "
            f"Specify one with --config or {UNITS_ENV_VAR}."
        )

    if not path.is_file():
        raise ConfigurationError(f"Unit file not found: {path}")

    logger.debug("Loading units from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    unit_file = parse_unit_data(data, source=str(path))
    unit_file.path = path
    logger.info("Loaded %d units from %s", len(unit_file.units), path)
    return unit_file


def parse_unit_data(data: object, source: str = "<memory>") -> UnitFile:
    """Validate already-parsed YAML data."""
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a YAML mapping in {source}, got {type(data).__name__}"
        )

    unknown = sorted(set(data) - {"settings", "units"})
    if unknown:
        raise ConfigurationError(f"Unknown top-level keys in {source}: {', '.join(unknown)}")

    raw_units = data.get("units") or []
    if not isinstance(raw_units, list):
        raise ConfigurationError(f"'units' must be a list in {source}")

    units: list[Unit] = []
    for index, raw in enumerate(raw_units):
        label = raw.get("id", f"#{index}") if isinstance(raw, dict) else f"#{index}"
        try:
            units.append(Unit.model_validate(raw))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'unit'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid unit {label} in {source}: {problems}") from e

    settings = settings_from_mapping(data.get("settings"))
    return UnitFile(path=None, settings=settings, units=units)


def adapter_problems(units: list[Unit], registry) -> list[str]:
    """Kinds that do not name a registered adapter of the right role."""
    check_kinds = set(registry.check_kinds())
    apply_kinds = set(registry.apply_kinds())
    problems = []
    for unit in units:
        if unit.check is not None and unit.check.kind not in check_kinds:
            problems.append(f"Unit '{unit.id}': unknown check kind '{unit.check.kind}'")
        if unit.apply.kind not in apply_kinds:
            problems.append(f"Unit '{unit.id}': unknown apply kind '{unit.apply.kind}'")
    return problems


def build_graph(units: list[Unit], registry=None) -> UnitGraph:
    """Build and seal the unit graph.

    Raises:
        ConfigurationError: duplicate ids, unknown references, cycles,
            or (with a registry) unknown adapter kinds.
    """
    if registry is not None:
        problems = adapter_problems(units, registry)
        if len(problems) == 1:
            raise ConfigurationError(problems[0])
        if problems:
            raise ConfigurationError(
                f"{len(problems)} adapter errors: " + "; ".join(problems)
            )
    return UnitGraph.from_units(units)
