"""
Run context — immutable snapshot of the machine we are provisioning.

Built ONCE at startup from read-only environment probes and passed to
every adapter call. Nothing mutates it mid-run; units that depend on
machine facts (NVIDIA GPU present, systemd available, ...) declare a
``when`` guard that is resolved against this snapshot.

    - CLI:    main.py → use_cases.run → probe_run_context()
    - Tests:  RunContext(...) built directly
"""

from __future__ import annotations

import getpass
import logging
import os
import re
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

_NVIDIA_PCI_VENDOR = "0x10de"


class RunContext(BaseModel):
    """Machine facts plus run-wide switches, frozen for the run."""

    model_config = ConfigDict(frozen=True)

    user: str = "root"
    is_root: bool = False
    has_systemd: bool = True
    has_nvidia: bool = False
    fedora_version: int | None = None
    selinux_mode: str | None = None        # enforcing, permissive, disabled
    home: str = "/root"
    backup_dir: str = "/root/.config-backups"
    dry_run: bool = False
    command_timeout: int = 900
    facts: dict[str, bool] = Field(default_factory=dict)

    @property
    def is_fedora(self) -> bool:
        return self.fedora_version is not None

    def fact(self, name: str) -> bool:
        """Resolve a guard name to a boolean.

        Built-in names: has_nvidia, has_systemd, is_root, not_root,
        is_fedora, selinux_enforcing. A leading ``!`` negates.
        Anything else is looked up in ``facts`` (unknown → False).
        """
        if name.startswith("!"):
            return not self.fact(name[1:])
        builtin = {
            "has_nvidia": self.has_nvidia,
            "has_systemd": self.has_systemd,
            "is_root": self.is_root,
            "not_root": not self.is_root,
            "is_fedora": self.is_fedora,
            "selinux_enforcing": self.selinux_mode == "enforcing",
        }
        if name in builtin:
            return builtin[name]
        return self.facts.get(name, False)

    def guards_hold(self, guards: tuple[str, ...] | list[str]) -> bool:
        return all(self.fact(g) for g in guards)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


# ── Probes (read-only, never raise) ─────────────────────────────


def _detect_fedora_version(os_release: Path = Path("/etc/os-release")) -> int | None:
    """Return the Fedora release number, or None on other distributions."""
    try:
        text = os_release.read_text(encoding="utf-8")
    except OSError:
        return None
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.strip()] = value.strip().strip('"')
    if fields.get("ID") != "fedora":
        return None
    match = re.match(r"\d+", fields.get("VERSION_ID", ""))
    return int(match.group(0)) if match else None


def _detect_nvidia(pci_root: Path = Path("/sys/bus/pci/devices")) -> bool:
    """Check PCI vendor ids for an NVIDIA device."""
    try:
        for device in pci_root.iterdir():
            vendor = device / "vendor"
            try:
                if vendor.read_text().strip().lower() == _NVIDIA_PCI_VENDOR:
                    return True
            except OSError:
                continue
    except OSError:
        pass
    return False


def _detect_selinux() -> str | None:
    """SELinux mode via getenforce, or None when SELinux tooling is absent."""
    if not shutil.which("getenforce"):
        return None
    try:
        r = subprocess.run(
            ["getenforce"],
            capture_output=True, text=True, timeout=5,
        )
        mode = r.stdout.strip().lower()
        return mode or None
    except (OSError, subprocess.SubprocessError):
        return None


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER", "root")


def probe_run_context(
    dry_run: bool = False,
    command_timeout: int = 900,
    facts: dict[str, bool] | None = None,
) -> RunContext:
    """Probe the local machine and build the frozen RunContext."""
    home = str(Path.home())
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    context = RunContext(
        user=_current_user(),
        is_root=os.geteuid() == 0,
        has_systemd=Path("/run/systemd/system").exists(),
        has_nvidia=_detect_nvidia(),
        fedora_version=_detect_fedora_version(),
        selinux_mode=_detect_selinux(),
        home=home,
        backup_dir=str(Path(home) / ".config-backups" / stamp),
        dry_run=dry_run,
        command_timeout=command_timeout,
        facts=dict(facts or {}),
    )
    logger.debug("Run context: %s", context.to_dict())
    return context
