"""
Filesystem adapter — write rendered config files.

Three strategies:
    replace  write the content, backing up a differing file if asked
    create   write only when the file does not exist yet
    block    ensure a marker-delimited block is present, replacing an
             outdated block or appending a new one

User files are written in-process and chowned to the target user when
running as root. Root-owned files are written in-process when we are
root, otherwise through ``sudo tee``.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.shell.command import CommandRunner, receipt_from_result
from cortado.core.models.action import Receipt
from cortado.core.probes.files import block_markers

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".cortado-bak"

_VALID_STRATEGIES = {"replace", "create", "block"}


def render_block(marker: str, body: str) -> str:
    begin, end = block_markers(marker)
    return f"{begin}\n{body.strip(chr(10))}\n{end}\n"


def merge_block(existing: str, marker: str, body: str) -> str:
    """Return ``existing`` with the managed block replaced or appended."""
    block = render_block(marker, body)
    begin, end = block_markers(marker)
    start = existing.find(begin)
    if start >= 0:
        stop = existing.find(end, start)
        if stop >= 0:
            tail = existing[stop + len(end):]
            if tail.startswith("\n"):
                tail = tail[1:]
            return existing[:start] + block + tail
    if existing and not existing.endswith("\n"):
        existing += "\n"
    separator = "\n" if existing else ""
    return existing + separator + block


class FilesystemAdapter(Adapter):
    """Write files with receipts.

    Action params:
        path (str): Absolute target path.
        content (str): Rendered content (block body for 'block').
        strategy (str): 'replace', 'create' or 'block'.
        marker (str): Block marker (for 'block').
        owner (str): 'user' or 'root'.
        uid / gid (int): Ownership for user files (-1 = leave).
        mode (str): Optional octal mode, e.g. '0644'.
        backup (bool): Keep a copy of a differing file before replacing.
    """

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "file"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.params
        path = params.get("path", "")
        if not path:
            return False, "Missing required param: 'path'"
        if not Path(path).is_absolute():
            return False, f"Path must be absolute: {path}"
        if "content" not in params:
            return False, "Missing required param: 'content'"
        strategy = params.get("strategy", "replace")
        if strategy not in _VALID_STRATEGIES:
            return False, f"Unknown strategy '{strategy}'. Valid: {', '.join(sorted(_VALID_STRATEGIES))}"
        if strategy == "block" and not params.get("marker"):
            return False, "Missing required param: 'marker' for block strategy"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        target = Path(params["path"])
        strategy = params.get("strategy", "replace")
        privileged = params.get("owner") == "root" and not self._runner.is_root

        try:
            if strategy == "create" and target.exists():
                return Receipt.success(
                    adapter=self.name,
                    action_id=context.action.id,
                    output=f"Exists, left untouched: {target}",
                    metadata={"path": str(target)},
                )

            if strategy == "block":
                existing = self._read(target, privileged)
                content = merge_block(existing, params["marker"], params["content"])
            else:
                content = params["content"]

            if privileged:
                return self._write_privileged(context, target, content)
            return self._write_local(context, target, content)
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Filesystem error: {e}",
                metadata={"path": str(target), "strategy": strategy},
            )

    # ── Helpers ─────────────────────────────────────────────────

    def _read(self, target: Path, privileged: bool) -> str:
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except PermissionError:
            if not privileged:
                raise
        result = self._runner.run(["cat", "--", str(target)], timeout=30, privileged=True)
        return result.stdout if result.ok else ""

    def _write_local(self, ctx: ExecutionContext, target: Path, content: str) -> Receipt:
        params = ctx.params
        uid, gid = params.get("uid", -1), params.get("gid", -1)
        chown = self._runner.is_root and params.get("owner") == "user" and uid >= 0

        created = _missing_parents(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        if chown:
            for directory in created:
                os.chown(directory, uid, gid)

        backup = None
        if params.get("backup") and params.get("strategy", "replace") == "replace" and target.is_file():
            backup = target.with_name(target.name + BACKUP_SUFFIX)
            shutil.copy2(target, backup)
            logger.info("Backed up %s -> %s", target, backup)

        target.write_text(content, encoding="utf-8")
        if params.get("mode"):
            os.chmod(target, int(params["mode"], 8))
        if chown:
            os.chown(target, uid, gid)

        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Written {len(content)} bytes to {target}",
            metadata={"path": str(target), "size": len(content), "backup": str(backup) if backup else None},
        )

    def _write_privileged(self, ctx: ExecutionContext, target: Path, content: str) -> Receipt:
        params = ctx.params
        steps: list[tuple[list[str], str | None]] = [
            (["mkdir", "-p", "--", str(target.parent)], None),
        ]
        if params.get("backup") and params.get("strategy", "replace") == "replace" and target.exists():
            steps.append((["cp", "-p", "--", str(target), str(target) + BACKUP_SUFFIX], None))
        steps.append((["tee", "--", str(target)], content))
        if params.get("mode"):
            steps.append((["chmod", params["mode"], "--", str(target)], None))

        for argv, stdin in steps:
            result = self._runner.run(argv, timeout=30, privileged=True, input=stdin)
            if not result.ok:
                return receipt_from_result(self.name, ctx.action.id, result)

        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Written {len(content)} bytes to {target}",
            metadata={"path": str(target), "size": len(content), "privileged": True},
        )


def _missing_parents(target: Path) -> list[Path]:
    """Parent directories of ``target`` that do not exist yet, outermost first."""
    missing = []
    parent = target.parent
    while not parent.exists() and parent != parent.parent:
        missing.append(parent)
        parent = parent.parent
    return list(reversed(missing))
