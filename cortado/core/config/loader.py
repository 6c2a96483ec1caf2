"""
Manifest loader — reads cortado.yml into the Manifest model.

Reads YAML, validates against the Pydantic schema and returns a typed
Manifest. Without an explicit path it looks for ``cortado.yml``
walking up from the working directory, and falls back to the manifest
bundled with the package.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from cortado.core.errors import ConfigError
from cortado.core.models.manifest import Manifest

logger = logging.getLogger(__name__)

MANIFEST_FILE = "cortado.yml"
BUNDLED_MANIFEST = Path(__file__).resolve().parent.parent / "data" / "manifest.yml"


def find_manifest_file(start_dir: Path | None = None) -> Path | None:
    """Search for cortado.yml starting from the given directory, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / MANIFEST_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def resolve_manifest_path(path: Path | None = None) -> Path:
    """Explicit path > cortado.yml found upward > bundled manifest."""
    if path is not None:
        return path
    return find_manifest_file() or BUNDLED_MANIFEST


def parse_manifest(raw: str, source: str = "<string>") -> Manifest:
    """Parse and validate manifest YAML text.

    Raises:
        ConfigError: If the YAML is malformed or fails validation.
    """
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid manifest {source}: {e}") from e


def load_manifest(path: Path | None = None) -> Manifest:
    """Load and validate a manifest.

    Args:
        path: Explicit manifest path. If None, see resolve_manifest_path.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    path = resolve_manifest_path(path)
    if not path.is_file():
        raise ConfigError(f"Manifest not found: {path}")

    logger.debug("Loading manifest from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    manifest = parse_manifest(raw, source=str(path))
    logger.info(
        "Loaded manifest '%s': %d package groups, %d services, %d files",
        manifest.name,
        len(manifest.packages),
        len(manifest.services),
        len(manifest.files),
    )
    return manifest
