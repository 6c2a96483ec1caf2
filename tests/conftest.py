"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from cortado.adapters.mock import MockAdapter, RecordingRunner
from cortado.adapters.registry import AdapterRegistry
from cortado.core.config.settings import BootstrapConfig
from cortado.core.models.target import TargetUser

ADAPTER_NAMES = ("network", "pacman", "systemd", "accounts", "file", "git", "command")


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Return a temporary home directory for the target user."""
    path = tmp_path / "home" / "alice"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def target(home: Path) -> TargetUser:
    return TargetUser(name="alice", home=home, uid=1000, gid=1000)


@pytest.fixture
def runner() -> RecordingRunner:
    """A non-root command runner that records argv instead of executing."""
    return RecordingRunner(euid=1000)


@pytest.fixture
def make_config(target: TargetUser):
    """Build a BootstrapConfig with the given flag values."""

    def _make(**flags: bool) -> BootstrapConfig:
        return BootstrapConfig(flags=flags, target=target)

    return _make


@pytest.fixture
def mocks() -> dict[str, MockAdapter]:
    return {name: MockAdapter(adapter_name=name) for name in ADAPTER_NAMES}


@pytest.fixture
def registry(mocks: dict[str, MockAdapter]) -> AdapterRegistry:
    """A registry where every real adapter name is served by a MockAdapter."""
    reg = AdapterRegistry()
    for mock in mocks.values():
        reg.register(mock)
    return reg
