"""
Network adapter — wait until the hosts we need resolve.

The wait is its own bounded polling loop (per-attempt timeout plus an
overall budget). When a DNS fallback is configured, a third of the
budget is spent waiting normally, then the active NetworkManager
connection gets pinned DNS servers and the rest of the budget is
spent waiting again.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.shell.command import CommandRunner
from cortado.core.models.action import Receipt
from cortado.core.probes.network import wait_for_host
from cortado.core.services.networkmanager import force_dns

logger = logging.getLogger(__name__)


class NetworkAdapter(Adapter):
    """Block until every host resolves or the budget runs out.

    Action params:
        hosts (list[str]): Hostnames that must resolve.
        attempt_timeout (float): Seconds per resolution attempt.
        budget (float): Overall wait budget in seconds.
        fallback_dns (list[str]): DNS servers to force if waiting fails.
    """

    def __init__(
        self,
        runner: CommandRunner,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._runner = runner
        self._cancel = cancel
        self._clock = clock
        self._sleep = sleep

    @property
    def name(self) -> str:
        return "network"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.params.get("hosts"):
            return False, "Missing required param: 'hosts'"
        if context.params.get("budget", 60) <= 0:
            return False, "'budget' must be positive"
        return True, ""

    def _wait_all(self, hosts: list[str], attempt_timeout: float, budget: float) -> list[str]:
        """Wait for each host within a shared budget; return the ones that never resolved."""
        deadline = self._clock() + budget
        pending = []
        for host in hosts:
            remaining = max(deadline - self._clock(), 0.0)
            ok = wait_for_host(
                self._runner,
                host,
                attempt_timeout=attempt_timeout,
                budget=remaining,
                clock=self._clock,
                sleep=self._sleep,
                cancel=self._cancel,
            )
            if not ok:
                pending.append(host)
        return pending

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        hosts: list[str] = params["hosts"]
        attempt_timeout = params.get("attempt_timeout", 5)
        budget = params.get("budget", 60)
        fallback = params.get("fallback_dns") or []

        first_budget = budget / 3 if fallback else budget
        pending = self._wait_all(hosts, attempt_timeout, first_budget)

        if pending and fallback and not (self._cancel and self._cancel.is_set()):
            if force_dns(self._runner, fallback):
                pending = self._wait_all(pending, attempt_timeout, budget - first_budget)

        if pending:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"DNS resolution failed for: {', '.join(pending)}",
                kind="transient",
                metadata={"hosts": pending, "budget": budget},
            )
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"Resolved: {', '.join(hosts)}",
        )
