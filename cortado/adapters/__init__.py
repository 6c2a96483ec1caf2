"""Adapters — bindings to the package manager, service manager and friends.

Public re-exports for convenient access.
"""

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.adapters.mock import MockAdapter, RecordingRunner
from cortado.adapters.registry import AdapterRegistry
from cortado.adapters.shell.command import CommandResult, CommandRunner

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "CommandResult",
    "CommandRunner",
    "ExecutionContext",
    "MockAdapter",
    "RecordingRunner",
]
