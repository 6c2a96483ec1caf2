"""
Manifest model — the declared desired state of a machine.

Loaded from a YAML file, the manifest is pure data: package groups,
services, group memberships, config file templates, git checkouts and
guarded commands. Any entry may carry ``when: <flag>`` to make it
optional, and ``after: [step ids]`` to add explicit ordering.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class FlagSpec(BaseModel):
    """A boolean feature flag, toggled via ``ENABLE_<NAME>``."""

    name: str
    default: bool = False
    description: str = ""

    @property
    def env_var(self) -> str:
        return "ENABLE_" + self.name.upper().replace("-", "_")


class _Entry(BaseModel):
    when: str | None = None         # flag name gating this entry
    after: list[str] = Field(default_factory=list)


class NetworkSpec(BaseModel):
    """Hosts that must resolve before anything touches the network.

    ``services`` are units enabled and started ahead of the DNS wait when
    they are already installed; ``resolv_stub`` points /etc/resolv.conf
    at systemd-resolved's stub once it is running.
    """

    hosts: list[str] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    resolv_stub: bool = False
    attempt_timeout: float = 5.0    # seconds per resolution attempt
    budget: float = 60.0            # overall wait budget in seconds
    fallback_dns: list[str] = Field(default_factory=list)
    fallback_when: str | None = None


class PacmanSpec(BaseModel):
    """Database refresh run once, before any package group."""

    sync: bool = False
    keyring: list[str] = Field(default_factory=list)
    sync_max_age: float = 3600.0    # seconds a refresh stays good for


class PackageGroup(_Entry):
    name: str
    packages: list[str]
    best_effort: bool = False       # install only what the sync db knows


class ServiceSpec(_Entry):
    name: str
    package: str | None = None      # package providing the unit
    start: bool = True              # enable --now vs. enable only
    restart_on: list[str] = Field(default_factory=list)  # file entry names


class GroupMembership(_Entry):
    group: str
    package: str | None = None      # package creating the group


class FileTemplate(_Entry):
    """A config file rendered from a template.

    Placeholders are written ``{{ name }}``. ``user``, ``home`` and
    ``uid`` are always available; everything else must be provided
    in ``substitutions``.
    """

    name: str
    path: str
    content: str | None = None
    source: str | None = None       # bundled template under core/data/templates
    strategy: Literal["replace", "create", "block"] = "replace"
    marker: str = ""                # block strategy only
    owner: Literal["user", "root"] = "user"
    mode: str | None = None         # octal string, e.g. "0644"
    backup: bool = False
    substitutions: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check(self) -> FileTemplate:
        if (self.content is None) == (self.source is None):
            raise ValueError(f"file '{self.name}': exactly one of 'content' or 'source' is required")
        if self.strategy == "block" and not self.marker:
            raise ValueError(f"file '{self.name}': block strategy requires a 'marker'")
        if self.mode is not None:
            try:
                int(self.mode, 8)
            except ValueError as e:
                raise ValueError(f"file '{self.name}': invalid mode {self.mode!r}") from e
        return self


class RepoSpec(_Entry):
    name: str
    url: str
    dest: str
    depth: int | None = 1
    detach: bool = False            # drop .git after cloning


class CommandSpec(_Entry):
    """A command guarded by an idempotence check.

    ``unless`` is an argv whose zero exit status means the command's
    effect is already in place; ``creates`` is a path whose existence
    means the same. One of them is required.
    """

    name: str
    argv: list[str]
    unless: list[str] | None = None
    creates: str | None = None
    as_user: bool = False
    privileged: bool = False
    network: bool = False
    retryable: bool = False
    timeout: float = 300.0

    @model_validator(mode="after")
    def _check(self) -> CommandSpec:
        if not self.argv:
            raise ValueError(f"command '{self.name}': 'argv' must not be empty")
        if self.unless is None and self.creates is None:
            raise ValueError(f"command '{self.name}': one of 'unless' or 'creates' is required")
        return self


class Manifest(BaseModel):
    """Root manifest — loaded from cortado.yml or the bundled default."""

    version: int = 1
    name: str = "cortado"
    description: str = ""

    flags: list[FlagSpec] = Field(default_factory=list)
    network: NetworkSpec = Field(default_factory=NetworkSpec)
    pacman: PacmanSpec = Field(default_factory=PacmanSpec)
    packages: list[PackageGroup] = Field(default_factory=list)
    services: list[ServiceSpec] = Field(default_factory=list)
    groups: list[GroupMembership] = Field(default_factory=list)
    files: list[FileTemplate] = Field(default_factory=list)
    repos: list[RepoSpec] = Field(default_factory=list)
    commands: list[CommandSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_flags(self) -> Manifest:
        known = {f.name for f in self.flags}
        for entry in self.entries():
            if entry.when is not None and entry.when not in known:
                label = getattr(entry, "name", None) or getattr(entry, "group", "?")
                raise ValueError(f"'{label}' is gated by unknown flag '{entry.when}'")
        if self.network.fallback_when is not None and self.network.fallback_when not in known:
            raise ValueError(f"network fallback is gated by unknown flag '{self.network.fallback_when}'")
        return self

    def entries(self) -> list[_Entry]:
        """All gateable entries, in section order."""
        return [
            *self.packages,
            *self.services,
            *self.groups,
            *self.files,
            *self.repos,
            *self.commands,
        ]

    def get_flag(self, name: str) -> FlagSpec | None:
        for flag in self.flags:
            if flag.name == name:
                return flag
        return None

    def gated_by(self, flag: str) -> list[str]:
        """Labels of the entries a flag turns on or off."""
        labels = []
        for section in ("packages", "services", "groups", "files", "repos", "commands"):
            for entry in getattr(self, section):
                if entry.when == flag:
                    label = getattr(entry, "name", None) or getattr(entry, "group")
                    labels.append(f"{section}:{label}")
        return labels
