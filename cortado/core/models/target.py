"""
Target user — whose home receives user configs.

Resolved once per run (SUDO_USER when invoked through sudo, else USER)
and handed to every later step, so nothing reads ``$HOME`` directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class TargetUser:
    name: str
    home: Path
    uid: int = -1
    gid: int = -1

    def expand(self, path: str) -> Path:
        """Expand ``~`` against the target user's home, not ours."""
        if path == "~":
            return self.home
        if path.startswith("~/"):
            return self.home / path[2:]
        return Path(path)
