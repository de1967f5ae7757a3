"""
Filesystem adapters — file probes and config-file mutation.

    file-exists     check: path exists (optionally as file or directory)
    file-contains   check: file contains a marker string
    write-file      apply: write content, backing up the previous file
    append-line     apply: append content unless the marker is present

Paths support ``~`` expansion. Existing files are copied into the run
context's backup_dir before they are modified.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from provisionctl.adapters.base import (
    ApplyAdapter,
    CheckAdapter,
    ExecutionContext,
    require_args,
)
from provisionctl.adapters.shell.command import action_result
from provisionctl.adapters.shell.runner import ProcessRunner, default_runner
from provisionctl.core.errors import ProbeError
from provisionctl.core.models.action import ActionResult

logger = logging.getLogger(__name__)


def _target(context: ExecutionContext) -> Path:
    return Path(str(context.args["path"])).expanduser()


def backup_file(path: Path, backup_dir: str) -> Path | None:
    """Copy ``path`` into ``backup_dir`` as ``<name>.bak``.

    Returns the backup path, or None when there was nothing to back up.
    """
    if not path.is_file():
        return None
    dest_dir = Path(backup_dir).expanduser()
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / f"{path.name}.bak"
    shutil.copy2(path, dest)
    logger.info("Backed up %s → %s", path, dest)
    return dest


class FileExistsCheck(CheckAdapter):
    """True if the path exists.

    Args:
        path (str): Target path.
        type (str): 'any' (default), 'file' or 'dir'.
    """

    @property
    def name(self) -> str:
        return "file-exists"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = require_args(context, "path")
        if not ok:
            return ok, msg
        kind = context.args.get("type", "any")
        if kind not in ("any", "file", "dir"):
            return False, f"Unknown type '{kind}'. Valid: any, dir, file"
        return True, ""

    def probe(self, context: ExecutionContext) -> bool:
        target = _target(context)
        kind = context.args.get("type", "any")
        if kind == "file":
            return target.is_file()
        if kind == "dir":
            return target.is_dir()
        return target.exists()


class FileContainsCheck(CheckAdapter):
    """True if the file contains ``marker``. A missing file is False.

    Args:
        path (str): File to inspect.
        marker (str): Substring to look for.
    """

    @property
    def name(self) -> str:
        return "file-contains"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "path", "marker")

    def probe(self, context: ExecutionContext) -> bool:
        target = _target(context)
        if not target.exists():
            return False
        try:
            content = target.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ProbeError(f"Cannot read {target}: {e}") from e
        return str(context.args["marker"]) in content


class WriteFileAdapter(ApplyAdapter):
    """Write a file, backing up any previous version.

    Args:
        path (str): Destination.
        content (str): Full file content.
        mode (str): Optional octal permission string, e.g. '0644'.
        privileged (bool): Write through ``sudo -n tee`` (system paths).
    """

    def __init__(self, runner: ProcessRunner | None = None):
        self._runner = runner or default_runner()

    @property
    def name(self) -> str:
        return "write-file"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = require_args(context, "path")
        if not ok:
            return ok, msg
        if "content" not in context.args:
            return False, "Missing required arg: 'content'"
        mode = context.args.get("mode")
        if mode is not None:
            try:
                int(str(mode), 8)
            except ValueError:
                return False, f"Invalid octal mode: {mode!r}"
        return True, ""

    def execute(self, context: ExecutionContext) -> ActionResult:
        target = _target(context)
        content = str(context.args["content"])
        mode = context.args.get("mode")

        try:
            backup = backup_file(target, context.run.backup_dir)
        except OSError as e:
            return ActionResult.failure(
                kind=self.name,
                unit_id=context.unit_id,
                reason=f"Backup failed for {target}",
                diagnostic=str(e),
            )

        if context.args.get("privileged"):
            result = self._runner.run(
                ["tee", str(target)],
                privileged=True,
                timeout=context.timeout,
                input_text=content,
            )
            if result.ok and mode is not None:
                result = self._runner.run(
                    ["chmod", str(mode), str(target)],
                    privileged=True,
                    timeout=context.timeout,
                )
            return action_result(context, result, f"Written {len(content)} bytes to {target}")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            if mode is not None:
                target.chmod(int(str(mode), 8))
        except OSError as e:
            return ActionResult.failure(
                kind=self.name,
                unit_id=context.unit_id,
                reason=f"Cannot write {target}",
                diagnostic=str(e),
            )

        return ActionResult.success(
            kind=self.name,
            unit_id=context.unit_id,
            output=f"Written {len(content)} bytes to {target}",
            metadata={"path": str(target), "backup": str(backup) if backup else None},
        )


class AppendLineAdapter(ApplyAdapter):
    """Append ``content`` to a file unless ``marker`` is already there.

    Used for rc-file snippets (PATH exports, shell completions).
    The file is created when missing.

    Args:
        path (str): Target file.
        content (str): Text to append (a trailing newline is added).
        marker (str): Idempotency marker (default: the content itself).
    """

    @property
    def name(self) -> str:
        return "append-line"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return require_args(context, "path", "content")

    def execute(self, context: ExecutionContext) -> ActionResult:
        target = _target(context)
        content = str(context.args["content"])
        marker = str(context.args.get("marker") or content)

        try:
            existing = target.read_text(encoding="utf-8") if target.is_file() else ""
            if marker in existing:
                return ActionResult.success(
                    kind=self.name,
                    unit_id=context.unit_id,
                    output=f"Marker already present in {target}",
                    metadata={"path": str(target), "changed": False},
                )

            backup_file(target, context.run.backup_dir)
            target.parent.mkdir(parents=True, exist_ok=True)
            prefix = "" if not existing or existing.endswith("\n") else "\n"
            with target.open("a", encoding="utf-8") as f:
                f.write(f"{prefix}{content.rstrip(chr(10))}\n")
        except OSError as e:
            return ActionResult.failure(
                kind=self.name,
                unit_id=context.unit_id,
                reason=f"Cannot append to {target}",
                diagnostic=str(e),
            )

        return ActionResult.success(
            kind=self.name,
            unit_id=context.unit_id,
            output=f"Appended to {target}",
            metadata={"path": str(target), "changed": True},
        )
