"""
Systemd adapter — enable (and start or restart) services.
"""

from __future__ import annotations

import shutil

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.shell.command import CommandRunner, receipt_from_result
from cortado.core.models.action import Receipt
from cortado.core.probes.services import service_unit_exists


class SystemdAdapter(Adapter):
    """``systemctl enable [--now]``, optionally followed by ``restart``.

    Action params:
        name (str): Unit name (``docker`` or ``docker.service``).
        start (bool): Also start the unit now (default: True).
        restart (bool): Restart it so changed config is picked up.
    """

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        unit = context.params.get("name", "")
        if not unit:
            return False, "Missing required param: 'name'"
        if service_unit_exists(self._runner, unit) is False:
            return False, f"Unit not found: {unit}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        unit = context.params["name"]
        restart = context.params.get("restart", False)
        argv = ["systemctl", "enable"]
        if context.params.get("start", True) and not restart:
            argv.append("--now")
        argv.append(unit)
        result = self._runner.run(argv, timeout=90, privileged=True)
        if result.ok and restart:
            result = self._runner.run(["systemctl", "restart", unit], timeout=90, privileged=True)
            return receipt_from_result(self.name, context.action.id, result, output=f"Restarted {unit}")
        return receipt_from_result(self.name, context.action.id, result, output=f"Enabled {unit}")
