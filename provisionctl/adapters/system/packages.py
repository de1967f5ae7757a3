"""
Package adapters — rpm probes and dnf actions.

    package-present   check: every package is installed (rpm -q)
    repo-present      check: a repository id is configured
    package-install   apply: dnf install -y
    repo-add          apply: dnf config-manager (dnf5 or dnf4 syntax)
    copr-enable       apply: dnf copr enable -y

dnf commands are privileged; the runner adds ``sudo -n`` when needed.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

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

logger = logging.getLogger(__name__)

REPOS_DIR = Path("/etc/yum.repos.d")

_PACKAGE_RE = re.compile(r"^[A-Za-z0-9@_+.:/-]+$")


def _validate_packages(context: ExecutionContext) -> tuple[bool, str]:
    packages = context.arg_list("packages", single="package")
    if not packages:
        return False, "Missing required arg: 'packages'"
    bad = [p for p in packages if not _PACKAGE_RE.match(p)]
    if bad:
        return False, f"Invalid package name(s): {', '.join(bad)}"
    return True, ""


def _dnf_binary() -> str:
    """Prefer dnf5 where installed (Fedora 41+)."""
    return "dnf5" if shutil.which("dnf5") else "dnf"


class PackagePresentCheck(CheckAdapter):
    """True if every listed package is installed.

    Args:
        packages (list[str]) or package (str)
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "package-present"

    def is_available(self) -> bool:
        return shutil.which("rpm") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return _validate_packages(context)

    def probe(self, context: ExecutionContext) -> bool:
        packages = context.arg_list("packages", single="package")
        result = probe_command(self._runner, ["rpm", "-q", *packages])
        # rpm -q exits with the number of packages not installed
        return result.exit_code == 0


class RepoPresentCheck(CheckAdapter):
    """True if a repository is configured.

    Args:
        id (str): Repository id, matched against ``[id]`` sections in
            every ``*.repo`` file.
        file (str): Alternatively, a repo file name or path.
    """

    def __init__(self, repos_dir: Path = REPOS_DIR):
        self._repos_dir = repos_dir

    @property
    def name(self) -> str:
        return "repo-present"

    def is_available(self) -> bool:
        return self._repos_dir.is_dir()

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.args.get("id") and not context.args.get("file"):
            return False, "Missing required arg: 'id' or 'file'"
        return True, ""

    def probe(self, context: ExecutionContext) -> bool:
        if not self._repos_dir.is_dir():
            raise ProbeError(f"Repository directory not found: {self._repos_dir}")

        repo_file = context.args.get("file")
        if repo_file:
            path = Path(str(repo_file))
            if not path.is_absolute():
                path = self._repos_dir / path
            return path.is_file()

        section = f"[{context.args['id']}]"
        for path in sorted(self._repos_dir.glob("*.repo")):
            try:
                lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError as e:
                raise ProbeError(f"Cannot read {path}: {e}") from e
            if any(line.strip() == section for line in lines):
                return True
        return False


class PackageInstallAdapter(ApplyAdapter):
    """Install packages with dnf.

    Args:
        packages (list[str]) or package (str)
        options (list[str]): Extra dnf flags (e.g. ['--allowerasing']).
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "package-install"

    def is_available(self) -> bool:
        return shutil.which("dnf5") is not None or shutil.which("dnf") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return _validate_packages(context)

    def execute(self, context: ExecutionContext) -> ActionResult:
        packages = context.arg_list("packages", single="package")
        options = context.arg_list("options")
        logger.info("Installing: %s", " ".join(packages))
        result = self._runner.run(
            [_dnf_binary(), "install", "-y", *options, *packages],
            privileged=True,
            timeout=context.timeout,
        )
        return action_result(context, result, f"Installed: {' '.join(packages)}")


class RepoAddAdapter(ApplyAdapter):
    """Add a repository from a .repo URL.

    Args:
        url (str): URL of the .repo file.
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "repo-add"

    def is_available(self) -> bool:
        return shutil.which("dnf5") is not None or shutil.which("dnf") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = require_args(context, "url")
        if not ok:
            return ok, msg
        url = str(context.args["url"])
        if not url.startswith(("https://", "http://", "file://")):
            return False, f"Unsupported repo URL: {url}"
        return True, ""

    def execute(self, context: ExecutionContext) -> ActionResult:
        url = str(context.args["url"])
        dnf = _dnf_binary()
        if dnf == "dnf5":
            cmd = [dnf, "config-manager", "addrepo", f"--from-repofile={url}"]
        else:
            cmd = [dnf, "config-manager", "--add-repo", url]
        result = self._runner.run(cmd, privileged=True, timeout=context.timeout)
        return action_result(context, result, f"Repository added: {url}")


class CoprEnableAdapter(ApplyAdapter):
    """Enable a COPR repository.

    Args:
        repo (str): 'owner/project'.
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "copr-enable"

    def is_available(self) -> bool:
        return shutil.which("dnf5") is not None or shutil.which("dnf") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = require_args(context, "repo")
        if not ok:
            return ok, msg
        if "/" not in str(context.args["repo"]):
            return False, "COPR repo must be 'owner/project'"
        return True, ""

    def execute(self, context: ExecutionContext) -> ActionResult:
        repo = str(context.args["repo"])
        result = self._runner.run(
            [_dnf_binary(), "copr", "enable", "-y", repo],
            privileged=True,
            timeout=context.timeout,
        )
        return action_result(context, result, f"COPR enabled: {repo}")
