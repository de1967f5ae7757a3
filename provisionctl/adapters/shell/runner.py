"""
Process runner — the SINGLE PLACE where external commands are launched.

All adapters that shell out go through ``ProcessRunner.run``. The runner:

    - prefixes privileged commands with ``sudo -n`` when not root
      (never prompts; a missing sudo ticket is a failure, not a hang)
    - enforces a timeout per call
    - tracks live processes so a cancelled run can terminate them
    - keeps only the tail of stdout/stderr as diagnostic text
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass

from provisionctl.core.errors import ProbeError

logger = logging.getLogger(__name__)

_TAIL_CHARS = 2000


@dataclass
class CommandResult:
    """Outcome of one external command."""

    command: list[str]
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False
    terminated: bool = False
    not_found: bool = False
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.error

    @property
    def diagnostic(self) -> str:
        """Best raw text for a failure report."""
        return self.error or self.stderr or self.stdout

    @property
    def summary(self) -> str:
        if self.not_found:
            return f"command not found: {self.command[0]}"
        if self.timed_out:
            return "command timed out"
        if self.terminated:
            return "command terminated (run cancelled)"
        if self.error:
            return self.error
        return f"command exited with code {self.exit_code}"


class ProcessRunner:
    """Launch commands and keep track of the ones still running."""

    def __init__(self) -> None:
        self._live: dict[int, subprocess.Popen] = {}
        self._terminated: set[int] = set()
        self._lock = threading.Lock()

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def run(
        self,
        command: list[str] | str,
        *,
        privileged: bool = False,
        timeout: float = 900,
        cwd: str | None = None,
        input_text: str | None = None,
        env_overrides: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a command to completion and capture its output.

        A string command runs through ``sh -c``; a list runs directly.
        """
        if isinstance(command, str):
            cmd = ["sh", "-c", command]
        else:
            cmd = list(command)

        if privileged and os.geteuid() != 0:
            cmd = ["sudo", "-n"] + cmd

        env = None
        if env_overrides:
            env = os.environ.copy()
            env.update(env_overrides)

        logger.debug("Executing: %s (cwd=%s)", cmd, cwd)
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError:
            return CommandResult(command=cmd, not_found=True, error=f"command not found: {cmd[0]}")
        except OSError as e:
            return CommandResult(command=cmd, error=f"cannot execute {cmd[0]}: {e}")

        with self._lock:
            self._live[proc.pid] = proc

        try:
            try:
                stdout, stderr = proc.communicate(input=input_text, timeout=timeout)
                timed_out = False
            except subprocess.TimeoutExpired:
                proc.kill()
                stdout, stderr = proc.communicate()
                timed_out = True
        finally:
            with self._lock:
                self._live.pop(proc.pid, None)
                terminated = proc.pid in self._terminated
                self._terminated.discard(proc.pid)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        result = CommandResult(
            command=cmd,
            exit_code=proc.returncode,
            stdout=(stdout or "")[-_TAIL_CHARS:].strip(),
            stderr=(stderr or "")[-_TAIL_CHARS:].strip(),
            elapsed_ms=elapsed_ms,
            timed_out=timed_out,
            terminated=terminated,
        )
        if timed_out:
            result.error = f"Command timed out after {timeout}s"
        elif terminated:
            result.error = "Command terminated: run cancelled"
        return result

    def terminate_all(self, kill_after: float = 5.0) -> int:
        """Terminate every live process (SIGTERM, then SIGKILL).

        Returns the number of processes signalled.
        """
        with self._lock:
            procs = list(self._live.values())
            self._terminated.update(p.pid for p in procs)

        for proc in procs:
            logger.warning("Terminating in-flight command (pid %d): %s", proc.pid, proc.args)
            try:
                proc.send_signal(signal.SIGTERM)
            except OSError:
                continue

        deadline = time.monotonic() + kill_after
        for proc in procs:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                proc.wait(timeout=remaining)
            except subprocess.TimeoutExpired:
                proc.kill()
        return len(procs)


def probe_command(
    runner: ProcessRunner,
    command: list[str] | str,
    timeout: float = 30,
) -> CommandResult:
    """Run a read-only inspection command for a check.

    The exit code is the caller's to interpret. A missing binary,
    a timeout, or a launch error means the state cannot be determined
    and raises ProbeError.
    """
    result = runner.run(command, timeout=timeout)
    if result.not_found or result.timed_out or result.error:
        raise ProbeError(result.summary if not result.error else result.error)
    return result


_default_runner: ProcessRunner | None = None
_default_lock = threading.Lock()


def default_runner() -> ProcessRunner:
    """Process-wide runner shared by the built-in adapters."""
    global _default_runner
    with _default_lock:
        if _default_runner is None:
            _default_runner = ProcessRunner()
        return _default_runner
