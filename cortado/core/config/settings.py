"""
Run settings — the explicit configuration every later step receives.

This is the only module that reads ambient environment variables:
feature flags (``ENABLE_<FLAG>``) and the target user (``SUDO_USER``
/ ``USER``). Everything downstream gets a ``BootstrapConfig``.
"""

from __future__ import annotations

import logging
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

from cortado.adapters.shell.command import CommandRunner
from cortado.core.engine.retry import RetryPolicy
from cortado.core.errors import ConfigError
from cortado.core.models.manifest import Manifest
from cortado.core.models.target import TargetUser
from cortado.core.probes.accounts import resolve_target_user

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def parse_bool(value: str, name: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ConfigError(f"{name} must be 1 or 0, got {value!r}")


class BootstrapConfig(BaseModel):
    """Resolved settings for one run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    flags: dict[str, bool] = Field(default_factory=dict)
    target: TargetUser
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    jobs: int = 1

    def enabled(self, flag: str | None) -> bool:
        """Whether an entry gated by ``flag`` is included (None = always)."""
        if flag is None:
            return True
        if flag not in self.flags:
            raise ConfigError(f"Unknown flag: {flag}")
        return self.flags[flag]


def resolve_flags(manifest: Manifest, environ: Mapping[str, str]) -> dict[str, bool]:
    """Manifest defaults overridden by ``ENABLE_<FLAG>`` variables."""
    flags: dict[str, bool] = {}
    for spec in manifest.flags:
        raw = environ.get(spec.env_var)
        flags[spec.name] = spec.default if raw is None else parse_bool(raw, spec.env_var)
        if raw is not None:
            logger.debug("%s=%s -> %s", spec.env_var, raw, flags[spec.name])
    return flags


def load_settings(
    manifest: Manifest,
    environ: Mapping[str, str],
    runner: CommandRunner,
    target: TargetUser | None = None,
    retry: RetryPolicy | None = None,
    jobs: int = 1,
) -> BootstrapConfig:
    """Build the run configuration.

    Raises:
        ConfigError: On a malformed flag value.
        ProbeError: If the target user cannot be resolved.
    """
    flags = resolve_flags(manifest, environ)
    if target is None:
        target = resolve_target_user(environ, runner)
    if jobs < 1:
        raise ConfigError("jobs must be at least 1")
    return BootstrapConfig(
        flags=flags,
        target=target,
        retry=retry or RetryPolicy(),
        jobs=jobs,
    )
