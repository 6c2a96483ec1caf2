"""
Action and Receipt models.

Every step carries one Action naming an adapter and its params. The
registry answers each attempt with a Receipt, so step failures travel
as data rather than exceptions.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


FailureKind = Literal["transient", "permanent"]


class Action(BaseModel):
    """A requested side effect, executed by the named adapter."""

    id: str                         # same as the owning step id
    adapter: str                    # pacman, systemd, accounts, file, git, command, network
    params: dict[str, Any] = Field(default_factory=dict)

    def describe(self) -> str:
        """Short, log-friendly rendering of what this action does."""
        op = self.params.get("operation", "")
        target = (
            self.params.get("path")
            or self.params.get("name")
            or " ".join(self.params.get("packages", []))
            or " ".join(self.params.get("argv", []))
        )
        return " ".join(part for part in (self.adapter, op, str(target)) if part)


class Receipt(BaseModel):
    """What one adapter attempt did.

    A failed receipt carries ``failure_kind`` so the executor can tell a
    locked pacman database (retry) from an unknown package (give up).
    ``metadata["stderr"]`` holds the captured stderr tail when a command ran.
    """

    adapter: str
    action_id: str
    status: Literal["ok", "failed"] = "ok"
    output: str = ""
    error: str | None = None
    failure_kind: FailureKind | None = None
    duration_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def transient(self) -> bool:
        return self.failed and self.failure_kind == "transient"

    @property
    def stderr(self) -> str:
        return str(self.metadata.get("stderr", ""))

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        kind: FailureKind = "permanent",
        **kwargs: Any,
    ) -> Receipt:
        return cls(
            adapter=adapter, action_id=action_id, status="failed",
            error=error, failure_kind=kind, **kwargs,
        )
