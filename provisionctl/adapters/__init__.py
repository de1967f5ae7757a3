"""Adapters — capability bindings for package, service, file and process operations.

Public re-exports for convenient access.
"""

from provisionctl.adapters.base import (
    Adapter,
    ApplyAdapter,
    CheckAdapter,
    ExecutionContext,
)
from provisionctl.adapters.mock import MockAction, MockCheck, MockState
from provisionctl.adapters.registry import AdapterRegistry, build_default_registry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ApplyAdapter",
    "CheckAdapter",
    "ExecutionContext",
    "MockAction",
    "MockCheck",
    "MockState",
    "build_default_registry",
]
