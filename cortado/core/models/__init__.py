"""
Domain models — Pydantic types and step dataclasses.

    from cortado.core.models import Manifest, Step, StepResult, Action, Receipt
"""

from cortado.core.models.action import Action, Receipt
from cortado.core.models.manifest import (
    CommandSpec,
    FileTemplate,
    FlagSpec,
    GroupMembership,
    Manifest,
    NetworkSpec,
    PackageGroup,
    RepoSpec,
    ServiceSpec,
)
from cortado.core.models.step import FailureReason, Step, StepResult

__all__ = [
    # action.py
    "Action",
    "Receipt",
    # manifest.py
    "CommandSpec",
    "FileTemplate",
    "FlagSpec",
    "GroupMembership",
    "Manifest",
    "NetworkSpec",
    "PackageGroup",
    "RepoSpec",
    "ServiceSpec",
    # step.py
    "FailureReason",
    "Step",
    "StepResult",
]
