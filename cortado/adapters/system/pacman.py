"""
Pacman adapter — package installation.

One action installs one package group in a single ``pacman -S``
transaction. Best-effort groups first drop packages the sync
databases do not know, the way the bootstrap scripts treated their
optional devops tooling. The ``sync`` operation force-refreshes the
databases and updates the keyring before any group is installed.
"""

from __future__ import annotations

import logging
import shutil

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.shell.command import CommandRunner, receipt_from_result
from cortado.core.models.action import Receipt
from cortado.core.probes.packages import package_available

logger = logging.getLogger(__name__)


class PacmanAdapter(Adapter):
    """Install packages with pacman.

    Action params:
        operation (str): ``install`` (default) or ``sync``.
        packages (list[str]): Packages to install (``--needed``); for
            ``sync`` the keyring packages, possibly empty.
        best_effort (bool): Skip packages missing from the sync db.
        timeout (float): Transaction timeout in seconds (default: 1800).
    """

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "pacman"

    def is_available(self) -> bool:
        return shutil.which("pacman") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.params.get("operation", "install")
        packages = context.params.get("packages")
        if operation not in ("install", "sync"):
            return False, f"Unknown operation: {operation!r}"
        if operation == "sync":
            packages = packages or []
        elif not packages:
            return False, "Missing required param: 'packages' (list)"
        if not isinstance(packages, list):
            return False, "Param 'packages' must be a list"
        bad = [p for p in packages if not p or p.startswith("-")]
        if bad:
            return False, f"Invalid package name(s): {', '.join(map(repr, bad))}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        if context.params.get("operation") == "sync":
            return self._sync(context)

        packages: list[str] = list(context.params["packages"])
        skipped: list[str] = []

        if context.params.get("best_effort"):
            available = [p for p in packages if package_available(self._runner, p)]
            skipped = [p for p in packages if p not in available]
            if skipped:
                logger.warning("Skipping packages missing from sync db: %s", " ".join(skipped))
            packages = available
            if not packages:
                return Receipt.success(
                    adapter=self.name,
                    action_id=context.action.id,
                    output="No requested package is available",
                    metadata={"skipped_packages": skipped},
                )

        result = self._runner.run(
            ["pacman", "-S", "--needed", "--noconfirm", *packages],
            timeout=context.params.get("timeout", 1800),
            privileged=True,
        )
        receipt = receipt_from_result(
            self.name,
            context.action.id,
            result,
            output=f"Installed {len(packages)} package(s)",
        )
        receipt.metadata["skipped_packages"] = skipped
        return receipt

    def _sync(self, context: ExecutionContext) -> Receipt:
        keyring = list(context.params.get("packages") or [])
        result = self._runner.run(
            ["pacman", "-Syy", "--needed", "--noconfirm", *keyring],
            timeout=context.params.get("timeout", 600),
            privileged=True,
        )
        return receipt_from_result(self.name, context.action.id, result, output="Synced package databases")
