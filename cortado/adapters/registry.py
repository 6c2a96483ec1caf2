"""
Adapter registry — maps an action's ``adapter`` name to the backend
that performs it.

The executor dispatches every step action through ``execute_action``,
which always hands back a Receipt. Bad parameters and adapter crashes
become permanent failures so the retry policy never repeats them.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from cortado.adapters.base import Adapter, ExecutionContext
from cortado.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Adapters by name, plus the dispatch used by the executor."""

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        if adapter.name in self._adapters:
            logger.debug("Replacing adapter %s with %r", adapter.name, adapter)
        self._adapters[adapter.name] = adapter

    def list_adapters(self) -> list[str]:
        return list(self._adapters)

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Backend availability per adapter, as shown by ``cortado doctor``."""
        return {
            name: {
                "name": name,
                "available": _available(adapter),
                "type": type(adapter).__name__,
            }
            for name, adapter in self._adapters.items()
        }

    def execute_action(self, action: Action, attempt: int = 1) -> Receipt:
        """Validate and run one step action; the result is always a Receipt."""
        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return _permanent(action, f"No adapter registered for '{action.adapter}'")

        context = ExecutionContext(action=action, attempt=attempt, params=action.params)
        logger.debug("Dispatching %s (attempt %d)", action.describe(), attempt)

        try:
            valid, reason = adapter.validate(context)
        except Exception as e:
            return _permanent(action, f"Validation error: {e}")
        if not valid:
            return _permanent(action, f"Validation failed: {reason}")

        started = time.monotonic()
        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.exception("Adapter %s crashed on %s", action.adapter, action.id)
            receipt = _permanent(action, f"Unexpected error: {e}")
        receipt.duration_ms = int((time.monotonic() - started) * 1000)
        return receipt


def _permanent(action: Action, error: str) -> Receipt:
    return Receipt.failure(adapter=action.adapter, action_id=action.id, error=error, kind="permanent")


def _available(adapter: Adapter) -> bool:
    try:
        return adapter.is_available()
    except Exception:
        logger.debug("Availability check failed for %s", adapter.name, exc_info=True)
        return False
