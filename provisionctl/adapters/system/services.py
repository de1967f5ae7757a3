"""
Service adapters — systemd probes and enablement.

    service-active    check: systemctl is-active
    service-enabled   check: systemctl is-enabled
    service-enable    apply: systemctl enable [--now]

``user: true`` targets the user manager (``systemctl --user``), which
runs unprivileged. A unit that does not exist is simply not active.
"""

from __future__ import annotations

import shutil

from provisionctl.adapters.base import (
    ApplyAdapter,
    CheckAdapter,
    ExecutionContext,
    require_args,
)
from provisionctl.adapters.shell.command import action_result
from provisionctl.adapters.shell.runner import ProcessRunner, default_runner, probe_command
from provisionctl.core.errors import ProbeError
from provisionctl.core.models.action import ActionResult


def _systemctl(context: ExecutionContext, *args: str) -> list[str]:
    cmd = ["systemctl"]
    if context.args.get("user"):
        cmd.append("--user")
    return cmd + list(args)


class _ServiceStateCheck(CheckAdapter):
    verb = ""

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "service")

    def probe(self, context: ExecutionContext) -> bool:
        if not context.run.has_systemd:
            raise ProbeError("systemd is not running on this machine")
        result = probe_command(
            self._runner,
            _systemctl(context, self.verb, "--quiet", str(context.args["service"])),
        )
        return result.exit_code == 0


class ServiceActiveCheck(_ServiceStateCheck):
    """True if the service is running.

    Args:
        service (str): Unit name, e.g. 'docker' or 'podman.socket'.
        user (bool): Query the user manager.
    """

    verb = "is-active"

    @property
    def name(self) -> str:
        return "service-active"


class ServiceEnabledCheck(_ServiceStateCheck):
    """True if the service is enabled at boot."""

    verb = "is-enabled"

    @property
    def name(self) -> str:
        return "service-enabled"


class ServiceEnableAdapter(ApplyAdapter):
    """Enable (and by default start) a service.

    Args:
        service (str): Unit name.
        user (bool): Use the user manager (no sudo).
        now (bool): Also start it (default: true).
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "service-enable"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "service")

    def execute(self, context: ExecutionContext) -> ActionResult:
        service = str(context.args["service"])
        args = ["enable"]
        if context.args.get("now", True):
            args.append("--now")
        args.append(service)
        result = self._runner.run(
            _systemctl(context, *args),
            privileged=not context.args.get("user", False),
            timeout=context.timeout,
        )
        return action_result(context, result, f"Service enabled: {service}")
