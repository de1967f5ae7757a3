"""
Domain models — Pydantic types for the provisioning engine.

All models are re-exported here for convenient access:

    from provisionctl.core.models import Unit, UnitOutcome, RunReport, ActionResult
"""

from provisionctl.core.models.action import ActionResult
from provisionctl.core.models.outcome import UnitOutcome, UnitStatus
from provisionctl.core.models.report import RunReport
from provisionctl.core.models.unit import ApplySpec, CheckSpec, Unit

__all__ = [
    # action.py
    "ActionResult",
    # unit.py
    "ApplySpec",
    "CheckSpec",
    # report.py
    "RunReport",
    "Unit",
    # outcome.py
    "UnitOutcome",
    "UnitStatus",
]
