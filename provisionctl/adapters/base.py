"""
Adapter base — the protocol contract between engine and capabilities.

Every check and apply ``kind`` in a unit file names one adapter. The
engine only talks to adapters through this protocol (via the registry),
never directly to dnf, systemctl or the filesystem.

Two roles:
    CheckAdapter   read-only probe → bool, raises ProbeError only when
                   the probing mechanism itself is unusable
    ApplyAdapter   side effect → ActionResult, never raises
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from provisionctl.core.context import RunContext
from provisionctl.core.models.action import ActionResult


class ExecutionContext(BaseModel):
    """Everything an adapter needs for one call.

    This is the adapter's view of the world: which unit is asking,
    the kind being invoked, its arguments, and the frozen run context.
    """

    unit_id: str
    kind: str
    args: dict[str, Any] = Field(default_factory=dict)
    run: RunContext = Field(default_factory=RunContext)

    @property
    def timeout(self) -> int:
        """Per-call timeout in seconds (args override the run default)."""
        return int(self.args.get("timeout", self.run.command_timeout))

    def arg_list(self, key: str, single: str | None = None) -> list[str]:
        """Read a list argument, accepting a scalar under ``single``.

        ``packages: [a, b]`` and ``package: a`` both become ``["a", "b"]``
        / ``["a"]``.
        """
        value = self.args.get(key)
        if value is None and single is not None:
            value = self.args.get(single)
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]


class Adapter(ABC):
    """Abstract base class for all adapters.

    To create a new adapter:
        1. Subclass CheckAdapter or ApplyAdapter
        2. Implement name, is_available, validate and probe/execute
        3. Register it in the AdapterRegistry
    """

    role: str = ""

    @property
    @abstractmethod
    def name(self) -> str:
        """The kind identifier used in unit files (e.g. 'package-present')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate the call arguments.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class CheckAdapter(Adapter):
    """Read-only idempotency probe."""

    role = "check"

    @abstractmethod
    def probe(self, context: ExecutionContext) -> bool:
        """Return True if the unit is already converged.

        Absent resources are a plain False. Raise ProbeError only when
        the state cannot be determined (inspection tool missing, timeout).
        """


class ApplyAdapter(Adapter):
    """Side-effecting action."""

    role = "apply"

    @abstractmethod
    def execute(self, context: ExecutionContext) -> ActionResult:
        """Perform the action once and return a result.

        MUST never raise for ordinary failures. No internal retries:
        retry policy lives in the engine.
        """


def require_args(context: ExecutionContext, *keys: str) -> tuple[bool, str]:
    """Validation helper: every key must be present and non-empty."""
    for key in keys:
        if not context.args.get(key):
            return False, f"Missing required arg: '{key}'"
    return True, ""
