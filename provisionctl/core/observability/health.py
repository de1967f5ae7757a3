"""
Preflight — aggregate system readiness from individual checks.

Reports whether the workstation is fit for a provisioning run: the
operator account, sudo, the distribution, free disk, network and the
SELinux / NVIDIA facts that change what some units do. Used by the
CLI ``preflight`` command.

Each check yields a ComponentHealth:
    healthy    nothing to do
    degraded   the run can proceed, but expect trouble
    unhealthy  fix this first
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from provisionctl.adapters.shell.runner import ProcessRunner
from provisionctl.core.context import RunContext

logger = logging.getLogger(__name__)

MIN_FEDORA_VERSION = 39
MIN_FREE_GB = 10
RECOMMENDED_FREE_GB = 20
CONNECTIVITY_HOST = "1.1.1.1"


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of the entire system."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        """Recalculate overall status from components."""
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif any(s == "degraded" for s in statuses):
            self.status = "degraded"
        elif all(s == "healthy" for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    @property
    def ready(self) -> bool:
        return self.status != "unhealthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "ready": self.ready,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


# ── Individual checks ───────────────────────────────────────────


def check_operator(context: RunContext) -> ComponentHealth:
    """Provisioning runs as a normal user with sudo, never as root."""
    if context.is_root:
        return ComponentHealth(
            name="operator",
            status="unhealthy",
            message="Running as root; run as a normal user with sudo access",
            details={"user": context.user},
        )
    return ComponentHealth(
        name="operator",
        status="healthy",
        message=f"Running as {context.user}",
        details={"user": context.user},
    )


def check_sudo(context: RunContext, runner: ProcessRunner) -> ComponentHealth:
    """Non-interactive sudo must work: privileged commands never prompt."""
    if context.is_root:
        return ComponentHealth(name="sudo", status="healthy", message="Not needed (root)")

    result = runner.run(["sudo", "-n", "true"], timeout=15)
    if result.ok:
        return ComponentHealth(name="sudo", status="healthy", message="Non-interactive sudo available")
    if result.not_found:
        return ComponentHealth(name="sudo", status="unhealthy", message="sudo is not installed")
    return ComponentHealth(
        name="sudo",
        status="degraded",
        message="sudo needs a password; run 'sudo -v' before provisioning",
        details={"diagnostic": result.diagnostic},
    )


def check_distribution(context: RunContext) -> ComponentHealth:
    version = context.fedora_version
    if version is None:
        return ComponentHealth(
            name="distribution",
            status="unhealthy",
            message="Not a Fedora system",
        )
    if version < MIN_FEDORA_VERSION:
        return ComponentHealth(
            name="distribution",
            status="degraded",
            message=f"Fedora {version}; units target Fedora {MIN_FEDORA_VERSION}+",
            details={"fedora_version": version},
        )
    return ComponentHealth(
        name="distribution",
        status="healthy",
        message=f"Fedora {version}",
        details={"fedora_version": version},
    )


def check_disk_space(path: Path = Path("/")) -> ComponentHealth:
    try:
        usage = shutil.disk_usage(path)
    except OSError as e:
        return ComponentHealth(name="disk", status="unknown", message=f"Cannot stat {path}: {e}")

    free_gb = usage.free // (1024 ** 3)
    details = {"path": str(path), "free_gb": free_gb}
    if free_gb < MIN_FREE_GB:
        status = "unhealthy"
        message = f"{free_gb}GB free on {path}; need at least {MIN_FREE_GB}GB"
    elif free_gb < RECOMMENDED_FREE_GB:
        status = "degraded"
        message = f"{free_gb}GB free on {path} ({RECOMMENDED_FREE_GB}GB recommended)"
    else:
        status = "healthy"
        message = f"{free_gb}GB free on {path}"
    return ComponentHealth(name="disk", status=status, message=message, details=details)


def check_network(runner: ProcessRunner, host: str = CONNECTIVITY_HOST) -> ComponentHealth:
    result = runner.run(["ping", "-c", "1", "-W", "5", host], timeout=15)
    if result.ok:
        return ComponentHealth(name="network", status="healthy", message=f"{host} reachable")
    if result.not_found:
        return ComponentHealth(name="network", status="unknown", message="ping is not installed")
    return ComponentHealth(
        name="network",
        status="unhealthy",
        message=f"No connectivity ({host} unreachable)",
        details={"diagnostic": result.diagnostic},
    )


def check_selinux(context: RunContext) -> ComponentHealth:
    mode = context.selinux_mode
    if mode is None:
        return ComponentHealth(name="selinux", status="healthy", message="SELinux not present")
    if mode == "enforcing":
        return ComponentHealth(
            name="selinux",
            status="degraded",
            message="Enforcing; containers, pods and libvirt may hit denials",
            details={
                "mode": mode,
                "hints": [
                    "sudo setsebool -P container_manage_cgroup on",
                    "sudo ausearch -m avc -ts recent",
                ],
            },
        )
    return ComponentHealth(name="selinux", status="healthy", message=mode.capitalize(), details={"mode": mode})


def check_nvidia(context: RunContext) -> ComponentHealth:
    if context.has_nvidia:
        return ComponentHealth(name="nvidia", status="healthy", message="NVIDIA GPU detected")
    return ComponentHealth(
        name="nvidia",
        status="healthy",
        message="No NVIDIA GPU; units guarded by has_nvidia will be skipped",
    )


def check_system_health(
    context: RunContext,
    runner: ProcessRunner,
    check_connectivity: bool = True,
) -> SystemHealth:
    """Run all preflight checks and return aggregate status."""
    health = SystemHealth()

    health.add(check_operator(context))
    health.add(check_sudo(context, runner))
    health.add(check_distribution(context))
    health.add(check_disk_space())
    if check_connectivity:
        health.add(check_network(runner))
    health.add(check_selinux(context))
    health.add(check_nvidia(context))

    logger.info("Preflight: %s", health.status)
    return health
