"""
Shell command adapters — run commands and probe their exit status.

    command-exists     check: binary is on PATH
    command-succeeds   check: command exits 0
    run-command        apply: run a command (optionally privileged)

Most system adapters are built on the same pattern: build an argv,
hand it to the ProcessRunner, translate the CommandResult.
"""

from __future__ import annotations

import logging
import shutil

from provisionctl.adapters.base import (
    ApplyAdapter,
    CheckAdapter,
    ExecutionContext,
    require_args,
)
from provisionctl.adapters.shell.runner import (
    CommandResult,
    ProcessRunner,
    default_runner,
    probe_command,
)
from provisionctl.core.models.action import ActionResult

logger = logging.getLogger(__name__)


def action_result(
    context: ExecutionContext,
    result: CommandResult,
    success_output: str = "",
) -> ActionResult:
    """Translate a CommandResult into the engine's ActionResult."""
    metadata = {"command": result.command}
    if result.ok:
        return ActionResult.success(
            kind=context.kind,
            unit_id=context.unit_id,
            output=success_output or result.stdout,
            duration_ms=result.elapsed_ms,
            metadata=metadata,
        )
    return ActionResult.failure(
        kind=context.kind,
        unit_id=context.unit_id,
        reason=result.summary,
        exit_code=result.exit_code,
        diagnostic=result.diagnostic,
        duration_ms=result.elapsed_ms,
        metadata=metadata,
    )


class CommandExistsCheck(CheckAdapter):
    """True if ``name`` resolves on PATH.

    Args:
        name (str): Binary name (e.g. 'kubectl').
    """

    @property
    def name(self) -> str:
        return "command-exists"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "name")

    def probe(self, context: ExecutionContext) -> bool:
        return shutil.which(str(context.args["name"])) is not None


class CommandSucceedsCheck(CheckAdapter):
    """True if the command exits 0.

    Args:
        command (str | list): Command to run. Strings go through ``sh -c``.
        timeout (int): Seconds before the probe is considered unusable.
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "command-succeeds"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "command")

    def probe(self, context: ExecutionContext) -> bool:
        timeout = int(context.args.get("timeout", 30))
        result = probe_command(self._runner, context.args["command"], timeout=timeout)
        return result.exit_code == 0


class RunCommandAdapter(ApplyAdapter):
    """Run an arbitrary command.

    Args:
        command (str | list): The command. Strings go through ``sh -c``.
        privileged (bool): Prefix with ``sudo -n`` when not root.
        cwd (str): Working directory.
        env (dict): Extra environment variables.
        timeout (int): Seconds (default: run context command_timeout).
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "run-command"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = require_args(context, "command")
        if not ok:
            return ok, msg
        env = context.args.get("env", {})
        if not isinstance(env, dict):
            return False, "'env' must be a mapping"
        return True, ""

    def execute(self, context: ExecutionContext) -> ActionResult:
        cwd = context.args.get("cwd")
        result = self._runner.run(
            context.args["command"],
            privileged=bool(context.args.get("privileged", False)),
            timeout=context.timeout,
            cwd=str(cwd) if cwd else None,
            env_overrides={k: str(v) for k, v in context.args.get("env", {}).items()},
        )
        return action_result(context, result)
