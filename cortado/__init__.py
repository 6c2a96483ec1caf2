"""cortado — declarative, idempotent desktop bootstrap orchestrator."""

__version__ = "0.1.0"
