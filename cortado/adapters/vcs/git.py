"""
Git adapter — clone external template repositories.

Clones run as the target user so the checkout lands in their home
with the right ownership. A failed clone removes its partial
checkout, so the executor can retry network hiccups cleanly.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.shell.command import CommandRunner, receipt_from_result
from cortado.core.models.action import Receipt
from cortado.core.models.target import TargetUser
from cortado.core.probes.files import dir_populated

logger = logging.getLogger(__name__)


class GitAdapter(Adapter):
    """``git clone`` with optional shallow depth and detach.

    Action params:
        url (str): Repository URL.
        dest (str): Absolute destination directory.
        depth (int | None): Shallow clone depth (default: 1).
        detach (bool): Remove ``.git`` after cloning.
        timeout (float): Timeout in seconds (default: 300).
    """

    def __init__(self, runner: CommandRunner, target: TargetUser | None = None):
        self._runner = runner
        self._target = target

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        url = context.params.get("url", "")
        dest = context.params.get("dest", "")
        if not url or not dest:
            return False, "Missing required params: 'url' and 'dest'"
        if url.startswith("-"):
            return False, f"Invalid repository URL: {url}"
        if not Path(dest).is_absolute():
            return False, f"Destination must be absolute: {dest}"
        if dir_populated(Path(dest)):
            return False, f"Destination already exists and is not empty: {dest}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        dest = Path(params["dest"])
        depth = params.get("depth", 1)

        # sudo resets the environment, so pass this on the command line
        argv = ["env", "GIT_TERMINAL_PROMPT=0", "git", "clone"]
        if depth:
            argv += ["--depth", str(depth)]
        argv += ["--", params["url"], str(dest)]

        logger.info("Cloning %s -> %s (attempt %d)", params["url"], dest, context.attempt)
        result = self._runner.run(
            argv,
            timeout=params.get("timeout", 300),
            user=self._target,
        )
        if not result.ok:
            if dest.exists():
                shutil.rmtree(dest, ignore_errors=True)
            return receipt_from_result(self.name, context.action.id, result)

        if params.get("detach"):
            shutil.rmtree(dest / ".git", ignore_errors=True)

        return receipt_from_result(self.name, context.action.id, result, output=f"Cloned into {dest}")
