"""
Template rendering for managed config files.

Templates are plain text with ``{{ name }}`` placeholders. Rendering is
validated when the plan is built: every placeholder must have a value
and nothing unresolved may survive. Shell-style ``$mod`` variables in
Hyprland configs pass through untouched.

Bundled templates live in ``core/data/templates/``.
"""

from __future__ import annotations

import re
from pathlib import Path

from cortado.core.errors import TemplateError

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "data" / "templates"

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def placeholders(text: str) -> set[str]:
    return set(_PLACEHOLDER.findall(text))


def load_template(source: str, templates_dir: Path = TEMPLATES_DIR) -> str:
    path = (templates_dir / source).resolve()
    if templates_dir.resolve() not in path.parents:
        raise TemplateError(f"Template path escapes the template directory: {source}")
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise TemplateError(f"Cannot read template {source}: {e}") from e


def render(text: str, values: dict[str, str], name: str = "<template>") -> str:
    """Substitute ``{{ name }}`` placeholders.

    Raises:
        TemplateError: If a placeholder has no value.
    """
    missing = sorted(placeholders(text) - values.keys())
    if missing:
        raise TemplateError(f"Template '{name}' is missing substitution(s): {', '.join(missing)}")
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], text)
