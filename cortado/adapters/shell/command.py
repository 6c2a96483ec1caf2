"""
Command runner — the single place external processes are started.

Every package-manager, service-manager, network and VCS call goes
through ``CommandRunner.run``. Commands are argv lists; free-form
shell strings are rejected. Privilege escalation and switching to the
target user are handled here, the way the bootstrap scripts did with
``run_sudo`` and ``as_user``.

Also home to ``CommandAdapter``, which executes manifest-declared
guarded commands.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.core.models.action import FailureKind, Receipt
from cortado.core.models.target import TargetUser

logger = logging.getLogger(__name__)

_TAIL = 2000

# stderr fragments that indicate a retry may succeed
_TRANSIENT_PATTERNS = re.compile(
    r"unable to lock database"
    r"|could not resolve host"
    r"|temporary failure in name resolution"
    r"|failed retrieving file"
    r"|connection timed out"
    r"|operation too slow"
    r"|connection reset"
    r"|early eof"
    r"|rpc failed"
    r"|network is unreachable",
    re.IGNORECASE,
)


@dataclass
class CommandResult:
    """Captured outcome of one external command."""

    argv: list[str]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False
    missing: bool = False
    launch_error: str = ""         # OSError text when the process never started

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error(self) -> str:
        if self.timed_out:
            return f"Command timed out: {' '.join(self.argv)}"
        if self.missing:
            return f"Command not found: {self.argv[0]}"
        if self.launch_error:
            return f"Cannot execute {self.argv[0]}: {self.launch_error}"
        return f"Command failed (exit {self.returncode}): {' '.join(self.argv)}"


def classify_failure(result: CommandResult) -> FailureKind:
    """Decide whether a failed command is worth retrying."""
    if result.timed_out:
        return "transient"
    if result.missing or result.launch_error:
        return "permanent"
    if _TRANSIENT_PATTERNS.search(result.stderr) or _TRANSIENT_PATTERNS.search(result.stdout):
        return "transient"
    return "permanent"


def receipt_from_result(
    adapter: str,
    action_id: str,
    result: CommandResult,
    output: str = "",
) -> Receipt:
    """Translate a CommandResult into the adapter Receipt contract."""
    metadata = {
        "argv": result.argv,
        "return_code": result.returncode,
        "stderr": result.stderr,
    }
    if result.ok:
        return Receipt.success(
            adapter=adapter,
            action_id=action_id,
            output=output or result.stdout.strip(),
            duration_ms=result.elapsed_ms,
            metadata=metadata,
        )
    return Receipt.failure(
        adapter=adapter,
        action_id=action_id,
        error=result.error,
        kind=classify_failure(result),
        duration_ms=result.elapsed_ms,
        metadata=metadata,
    )


class CommandRunner:
    """Run argv commands with captured output and a timeout.

    Args:
        euid: Effective uid to assume (default: the real one). Tests
            pass it explicitly to exercise the sudo prefixes.
    """

    def __init__(self, euid: int | None = None):
        self._euid = os.geteuid() if euid is None else euid

    @property
    def is_root(self) -> bool:
        return self._euid == 0

    def build_argv(
        self,
        argv: list[str],
        *,
        privileged: bool = False,
        user: TargetUser | None = None,
    ) -> list[str]:
        """Apply sudo / run-as-user prefixes to a command."""
        if isinstance(argv, str):
            raise ValueError("CommandRunner requires an argv list, not a shell string")
        argv = list(argv)
        if user is not None:
            user_env = ["env", f"HOME={user.home}", f"USER={user.name}"]
            if self.is_root or user.uid not in (-1, self._euid):
                return ["sudo", "-u", user.name, "--", *user_env, *argv]
            return [*user_env, *argv]
        if privileged and not self.is_root:
            return ["sudo", "--", *argv]
        return argv

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
        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        logger.debug("Executing: %s", " ".join(cmd))
        start = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=full_env,
                cwd=cwd,
                input=input,
                # own session: a terminal ^C must not kill a pacman transaction
                start_new_session=True,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                argv=cmd,
                returncode=None,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                elapsed_ms=int((time.monotonic() - start) * 1000),
                timed_out=True,
            )
        except FileNotFoundError:
            return CommandResult(argv=cmd, returncode=127, missing=True)
        except OSError as e:
            logger.debug("Cannot start %s: %s", cmd[0], e)
            return CommandResult(argv=cmd, returncode=126, launch_error=e.strerror or str(e))

        return CommandResult(
            argv=cmd,
            returncode=proc.returncode,
            stdout=proc.stdout[-_TAIL:] if proc.stdout else "",
            stderr=proc.stderr[-_TAIL:] if proc.stderr else "",
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    return data[-_TAIL:]


class CommandAdapter(Adapter):
    """Execute a manifest-declared guarded command.

    Action params:
        argv (list[str]): The command.
        as_user (bool): Run as the target user.
        privileged (bool): Run through sudo when not root.
        timeout (float): Timeout in seconds (default: 300).
    """

    def __init__(self, runner: CommandRunner, target: TargetUser | None = None):
        self._runner = runner
        self._target = target

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        argv = context.params.get("argv")
        if not argv or not isinstance(argv, list):
            return False, "Missing required param: 'argv' (list)"
        if context.params.get("as_user") and self._target is None:
            return False, "Command runs as target user but none was resolved"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        result = self._runner.run(
            params["argv"],
            timeout=params.get("timeout", 300),
            privileged=params.get("privileged", False),
            user=self._target if params.get("as_user") else None,
        )
        return receipt_from_result(self.name, context.action.id, result)
