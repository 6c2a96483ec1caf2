"""
Accounts adapter — supplementary group membership.
"""

from __future__ import annotations

import shutil

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.shell.command import CommandRunner, receipt_from_result
from cortado.core.models.action import Receipt
from cortado.core.probes.accounts import group_exists


class AccountsAdapter(Adapter):
    """``usermod -aG <group> <user>``.

    Action params:
        group (str): Group to join.
        user (str): Account to add.
    """

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "accounts"

    def is_available(self) -> bool:
        return shutil.which("usermod") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        group = context.params.get("group", "")
        user = context.params.get("user", "")
        if not group or not user:
            return False, "Missing required params: 'group' and 'user'"
        if group_exists(self._runner, group) is False:
            return False, f"Group does not exist: {group}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        group, user = context.params["group"], context.params["user"]
        result = self._runner.run(["usermod", "-aG", group, user], timeout=30, privileged=True)
        return receipt_from_result(
            self.name,
            context.action.id,
            result,
            output=f"Added {user} to {group}",
        )
