"""
Test doubles — a spy adapter and a scripted command runner.

``MockAdapter`` stands in for any adapter and records every context
it receives. ``RecordingRunner`` stands in for ``CommandRunner`` so
probes and adapters can be exercised without touching the system.
"""

from __future__ import annotations

from typing import Callable

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.shell.command import CommandResult, CommandRunner
from cortado.core.models.action import FailureKind, Receipt
from cortado.core.models.target import TargetUser


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, returns success for everything. Responses can be
    scripted per action id, either as a single receipt or as a
    sequence consumed one attempt at a time (the last one repeats).
    """

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
        on_execute: Callable[[ExecutionContext], None] | None = None,
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._on_execute = on_execute
        self._responses: dict[str, list[Receipt]] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_for(self, action_id: str) -> int:
        return sum(1 for ctx in self._call_log if ctx.action.id == action_id)

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, *receipts: Receipt) -> None:
        self._responses[action_id] = list(receipts)

    def set_failure(
        self,
        action_id: str,
        error: str = "Mock failure",
        kind: FailureKind = "permanent",
    ) -> None:
        self._responses[action_id] = [
            Receipt.failure(adapter=self._name, action_id=action_id, error=error, kind=kind)
        ]

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        if self._on_execute is not None:
            self._on_execute(context)

        scripted = self._responses.get(context.action.id)
        if scripted:
            return scripted.pop(0) if len(scripted) > 1 else scripted[0]

        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        self._call_log.clear()
        self._responses.clear()


class RecordingRunner(CommandRunner):
    """CommandRunner that records argv and returns scripted results.

    Results are matched on the longest registered argv prefix;
    unmatched commands succeed with empty output.
    """

    def __init__(self, euid: int = 1000):
        super().__init__(euid=euid)
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self._scripts: dict[tuple[str, ...], list[CommandResult]] = {}

    def script(
        self,
        argv_prefix: list[str],
        returncode: int | None = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        missing: bool = False,
        launch_error: str = "",
    ) -> None:
        """Queue a result for commands starting with ``argv_prefix``."""
        self._scripts.setdefault(tuple(argv_prefix), []).append(
            CommandResult(
                argv=list(argv_prefix),
                returncode=returncode,
                stdout=stdout,
                stderr=stderr,
                timed_out=timed_out,
                missing=missing,
                launch_error=launch_error,
            )
        )

    def run(
        self,
        argv: list[str],
        *,
        timeout: float = 120,
        privileged: bool = False,
        user: TargetUser | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        input: str | None = None,
    ) -> CommandResult:
        cmd = self.build_argv(argv, privileged=privileged, user=user)
        self.calls.append(cmd)
        self.inputs.append(input)

        best: tuple[str, ...] | None = None
        for prefix in self._scripts:
            if tuple(argv[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(argv=cmd, returncode=0)

        queue = self._scripts[best]
        scripted = queue.pop(0) if len(queue) > 1 else queue[0]
        return CommandResult(
            argv=cmd,
            returncode=scripted.returncode,
            stdout=scripted.stdout,
            stderr=scripted.stderr,
            timed_out=scripted.timed_out,
            missing=scripted.missing,
            launch_error=scripted.launch_error,
        )
