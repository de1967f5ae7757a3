"""
Group membership adapters.

    user-in-group   check: id -nG USER lists GROUP
    group-add       apply: usermod -aG GROUP USER

The user defaults to the invoking user from the run context. New
membership only takes effect at the next login.
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
from provisionctl.core.models.action import ActionResult


def _user(context: ExecutionContext) -> str:
    return str(context.args.get("user") or context.run.user)


class UserInGroupCheck(CheckAdapter):
    """Args: group (str), user (str, optional)."""

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "user-in-group"

    def is_available(self) -> bool:
        return shutil.which("id") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "group")

    def probe(self, context: ExecutionContext) -> bool:
        result = probe_command(self._runner, ["id", "-nG", _user(context)])
        if result.exit_code != 0:
            # Unknown user: not a member of anything
            return False
        return str(context.args["group"]) in result.stdout.split()


class GroupAddAdapter(ApplyAdapter):
    """Args: group (str), user (str, optional)."""

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "group-add"

    def is_available(self) -> bool:
        return shutil.which("usermod") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "group")

    def execute(self, context: ExecutionContext) -> ActionResult:
        group = str(context.args["group"])
        user = _user(context)
        result = self._runner.run(
            ["usermod", "-aG", group, user],
            privileged=True,
            timeout=context.timeout,
        )
        return action_result(context, result, f"Added {user} to group {group}")
