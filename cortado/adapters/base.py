"""
Adapter base — the seam between step actions and the tools that apply them.

Package installs, unit enablement, group membership, file writes, git
checkouts and guarded commands each live behind one adapter. Moving to
another distribution means registering a different backend under the
same adapter name; steps and the executor stay as they are.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from cortado.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """One attempt at an action. ``attempt`` starts at 1 and grows on retry."""

    action: Action
    attempt: int = 1
    params: dict[str, Any] = Field(default_factory=dict)


class Adapter(ABC):
    """A backend that performs one kind of step action.

    ``execute`` reports problems through the Receipt and tags each
    failure ``transient`` (worth retrying) or ``permanent``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key, matched against ``Action.adapter``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backing tool is installed (``pacman``, ``systemctl``, ...)."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the action's params before anything runs.

        Returns ``(True, "")`` or ``(False, reason)``.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Apply the action once and describe the outcome."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
