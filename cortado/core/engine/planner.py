"""
Plan builder — expands a manifest into an ordered, immutable Plan.

Flow:
    manifest + config → filter by flags → emit steps → wire dependencies
    → validate DAG → topological order

Steps are emitted in a fixed section order (early network units,
network wait, database sync, packages, services, groups, files,
repos, commands) and, within a section, in
manifest declaration order. That emission order is the tie-break for
steps with no ordering constraint between them, which keeps logs and
tests deterministic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from cortado.adapters.shell.command import CommandRunner
from cortado.core.config.settings import BootstrapConfig
from cortado.core.config.templates import TEMPLATES_DIR, load_template, render
from cortado.core.engine.dag import topological_sort, validate_dag
from cortado.core.errors import UnknownDependency
from cortado.core.models.action import Action
from cortado.core.models.manifest import (
    CommandSpec,
    FileTemplate,
    GroupMembership,
    Manifest,
    PackageGroup,
    RepoSpec,
    ServiceSpec,
)
from cortado.core.models.step import Predicate, Step
from cortado.core.probes import accounts, files, network, packages, services

logger = logging.getLogger(__name__)

NETWORK_STEP = "network:online"
RESOLV_STEP = "network:resolv-stub"
SYNC_STEP = "pacman:sync"

RESOLV_CONF = Path("/etc/resolv.conf")
STUB_RESOLV_CONF = Path("/run/systemd/resolve/stub-resolv.conf")


@dataclass(frozen=True)
class Plan:
    """Topologically ordered steps for one run."""

    steps: tuple[Step, ...]

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def get(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict:
        return {
            "total": len(self.steps),
            "steps": [s.to_dict() for s in self.steps],
        }


class PlanBuilder:
    """Turns manifest entries into Steps bound to live probes.

    Args:
        manifest: Validated manifest.
        config: Resolved run configuration (flags, target user).
        runner: Command runner the probes query through.
        templates_dir: Where ``source:`` templates are looked up.
    """

    def __init__(
        self,
        manifest: Manifest,
        config: BootstrapConfig,
        runner: CommandRunner,
        templates_dir: Path = TEMPLATES_DIR,
    ):
        self.manifest = manifest
        self.config = config
        self.runner = runner
        self.templates_dir = templates_dir
        self._package_steps: dict[str, str] = {}
        self._file_paths: dict[str, Path] = {}
        self._network_step: str | None = None
        self._sync_step: str | None = None

    # ── Public ──────────────────────────────────────────────────

    def build(self) -> Plan:
        steps = self._pre_network()

        net = self._network(tuple(s.id for s in steps))
        if net is not None:
            steps.append(net)
            self._network_step = net.id

        sync = self._pacman_sync()
        if sync is not None:
            steps.append(sync)
            self._sync_step = sync.id

        groups = [g for g in self.manifest.packages if self.config.enabled(g.when)]
        for group in groups:
            for pkg in group.packages:
                self._package_steps.setdefault(pkg, f"packages:{group.name}")
        steps += [self._package_group(g) for g in groups]

        # rendered ahead of services so restart_on can watch their paths
        file_steps = [self._file(f) for f in self._enabled(self.manifest.files)]

        steps += [self._service(s) for s in self._enabled(self.manifest.services)]
        steps += [self._membership(m) for m in self._enabled(self.manifest.groups)]
        steps += file_steps
        steps += [self._repo(r) for r in self._enabled(self.manifest.repos)]
        steps += [self._command(c) for c in self._enabled(self.manifest.commands)]

        validate_dag(steps)
        ordered = topological_sort(steps)
        logger.info("Built plan with %d steps", len(ordered))
        return Plan(steps=tuple(ordered))

    # ── Helpers ─────────────────────────────────────────────────

    def _enabled(self, entries: list) -> list:
        return [e for e in entries if self.config.enabled(e.when)]

    def _needs_package(self, step_id: str, package: str | None) -> list[str]:
        if package is None:
            return []
        provider = self._package_steps.get(package)
        if provider is None:
            raise UnknownDependency(step_id, f"package '{package}'")
        return [provider]

    def _online(self) -> list[str]:
        return [self._network_step] if self._network_step else []

    def _synced(self) -> list[str]:
        return [self._sync_step] if self._sync_step else []

    def _watched_path(self, step_id: str, file_name: str) -> Path:
        path = self._file_paths.get(file_name)
        if path is None:
            raise UnknownDependency(step_id, f"file:{file_name}")
        return path

    @staticmethod
    def _deps(*groups: list[str]) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for group in groups:
            for dep in group:
                seen.setdefault(dep, None)
        return tuple(seen)

    # ── Step factories ──────────────────────────────────────────

    def _pre_network(self) -> list[Step]:
        """Bring up installed network units before anything waits on DNS."""
        spec, runner = self.manifest.network, self.runner
        steps = []
        for unit in spec.services:
            step_id = f"network:{unit}"
            steps.append(Step(
                id=step_id,
                kind="network",
                description=f"Enable and start {unit} if installed",
                action=Action(id=step_id, adapter="systemd", params={"name": unit, "start": True}),
                precondition=lambda unit=unit: services.unit_absent_or_running(runner, unit),
            ))

        if spec.resolv_stub:
            stub, conf = STUB_RESOLV_CONF, RESOLV_CONF
            resolved = "network:systemd-resolved"
            steps.append(Step(
                id=RESOLV_STEP,
                kind="network",
                description=f"Point {conf} at the systemd-resolved stub",
                action=Action(
                    id=RESOLV_STEP,
                    adapter="command",
                    params={"argv": ["ln", "-sf", str(stub), str(conf)], "privileged": True, "timeout": 30},
                ),
                # no stub means resolved is not running; leave resolv.conf alone
                precondition=lambda: not stub.exists() or files.symlink_points_to(conf, stub),
                depends_on=(resolved,) if "systemd-resolved" in spec.services else (),
            ))
        return steps

    def _network(self, early: tuple[str, ...] = ()) -> Step | None:
        spec = self.manifest.network
        if not spec.hosts:
            return None
        fallback = spec.fallback_dns if self.config.enabled(spec.fallback_when) else []
        runner, hosts, timeout = self.runner, list(spec.hosts), spec.attempt_timeout
        return Step(
            id=NETWORK_STEP,
            kind="network",
            description=f"Wait for DNS: {', '.join(hosts)}",
            action=Action(
                id=NETWORK_STEP,
                adapter="network",
                params={
                    "operation": "wait",
                    "hosts": hosts,
                    "attempt_timeout": timeout,
                    "budget": spec.budget,
                    "fallback_dns": fallback,
                },
            ),
            precondition=lambda: network.hosts_resolvable(runner, hosts, timeout=timeout),
            halt_on_failure=True,
            depends_on=early,
        )

    def _pacman_sync(self) -> Step | None:
        spec = self.manifest.pacman
        if not spec.sync:
            return None
        runner, keyring, max_age = self.runner, list(spec.keyring), spec.sync_max_age

        def synced() -> bool | None:
            if not packages.sync_db_fresh(max_age):
                return False
            return packages.packages_installed(runner, keyring) if keyring else True

        what = "package databases" + (f" and {', '.join(keyring)}" if keyring else "")
        return Step(
            id=SYNC_STEP,
            kind="packages",
            description=f"Refresh {what}",
            action=Action(id=SYNC_STEP, adapter="pacman", params={"operation": "sync", "packages": keyring}),
            precondition=synced,
            retryable=True,
            depends_on=self._deps(self._online()),
        )

    def _package_group(self, group: PackageGroup) -> Step:
        step_id = f"packages:{group.name}"
        runner, names = self.runner, list(group.packages)
        probe = packages.available_packages_installed if group.best_effort else packages.packages_installed

        return Step(
            id=step_id,
            kind="packages",
            description=f"Install {group.name} packages ({len(names)})",
            action=Action(
                id=step_id,
                adapter="pacman",
                params={"packages": names, "best_effort": group.best_effort},
            ),
            precondition=lambda: probe(runner, names),
            retryable=True,
            depends_on=self._deps(self._online(), self._synced(), group.after),
        )

    def _service(self, svc: ServiceSpec) -> Step:
        step_id = f"service:{svc.name}"
        runner, name, start = self.runner, svc.name, svc.start
        watched = [self._watched_path(step_id, f) for f in svc.restart_on]
        verb = "Enable and start" if start else "Enable"
        if watched:
            verb = "Enable and restart"

        def check() -> bool | None:
            state = services.is_service_active_enabled(runner, name, require_active=start)
            if state is not True or not watched:
                return state
            return services.started_after(runner, name, watched)

        return Step(
            id=step_id,
            kind="service",
            description=f"{verb} {name}",
            action=Action(
                id=step_id,
                adapter="systemd",
                params={"name": name, "start": start, "restart": bool(watched)},
            ),
            precondition=check,
            retryable=True,
            depends_on=self._deps(
                self._needs_package(step_id, svc.package),
                [f"file:{f}" for f in svc.restart_on],
                svc.after,
            ),
        )

    def _membership(self, member: GroupMembership) -> Step:
        step_id = f"group:{member.group}"
        runner, group, user = self.runner, member.group, self.config.target.name
        return Step(
            id=step_id,
            kind="group",
            description=f"Add {user} to group {group}",
            action=Action(id=step_id, adapter="accounts", params={"group": group, "user": user}),
            precondition=lambda: accounts.group_contains_user(runner, group, user),
            depends_on=self._deps(self._needs_package(step_id, member.package), member.after),
        )

    def _file(self, tmpl: FileTemplate) -> Step:
        step_id = f"file:{tmpl.name}"
        target = self.config.target
        values = {"user": target.name, "home": str(target.home), "uid": str(target.uid)}
        values.update(tmpl.substitutions)

        text = tmpl.content if tmpl.content is not None else load_template(tmpl.source, self.templates_dir)
        content = render(text, values, name=tmpl.name)
        path = target.expand(render(tmpl.path, values, name=f"{tmpl.name} path"))
        self._file_paths[tmpl.name] = path

        if tmpl.strategy == "block":
            body_hash = files.content_hash(content.strip("\n"))
            check: Predicate = lambda: files.block_present(path, tmpl.marker, body_hash)
        elif tmpl.strategy == "create":
            check = lambda: files.file_exists(path)
        else:
            expected = files.content_hash(content)
            check = lambda: files.file_matches_content(path, expected)

        return Step(
            id=step_id,
            kind="file",
            description=f"Write {path} ({tmpl.strategy})",
            action=Action(
                id=step_id,
                adapter="file",
                params={
                    "path": str(path),
                    "content": content,
                    "strategy": tmpl.strategy,
                    "marker": tmpl.marker,
                    "owner": tmpl.owner,
                    "uid": target.uid if tmpl.owner == "user" else -1,
                    "gid": target.gid if tmpl.owner == "user" else -1,
                    "mode": tmpl.mode,
                    "backup": tmpl.backup,
                },
            ),
            precondition=check,
            # sudo writes stay sequential
            parallel_safe=tmpl.owner == "user" or self.runner.is_root,
            depends_on=self._deps(tmpl.after),
        )

    def _repo(self, repo: RepoSpec) -> Step:
        step_id = f"repo:{repo.name}"
        dest = self.config.target.expand(repo.dest)
        git_provider = [self._package_steps["git"]] if "git" in self._package_steps else []
        return Step(
            id=step_id,
            kind="repo",
            description=f"Clone {repo.url} into {dest}",
            action=Action(
                id=step_id,
                adapter="git",
                params={
                    "url": repo.url,
                    "dest": str(dest),
                    "depth": repo.depth,
                    "detach": repo.detach,
                },
            ),
            precondition=lambda: files.dir_populated(dest),
            retryable=True,
            depends_on=self._deps(self._online(), git_provider, repo.after),
        )

    def _command(self, cmd: CommandSpec) -> Step:
        step_id = f"command:{cmd.name}"
        runner = self.runner
        target = self.config.target if cmd.as_user else None

        if cmd.unless is not None:
            unless = list(cmd.unless)

            def check() -> bool | None:
                result = runner.run(unless, timeout=30, user=target, privileged=cmd.privileged)
                if result.timed_out or result.missing or result.launch_error:
                    return None
                return result.ok
        else:
            creates = self.config.target.expand(cmd.creates)
            check = lambda: files.file_exists(creates)

        return Step(
            id=step_id,
            kind="command",
            description=f"Run {cmd.name}",
            action=Action(
                id=step_id,
                adapter="command",
                params={
                    "argv": list(cmd.argv),
                    "as_user": cmd.as_user,
                    "privileged": cmd.privileged,
                    "timeout": cmd.timeout,
                },
            ),
            precondition=check,
            retryable=cmd.retryable,
            depends_on=self._deps(self._online() if cmd.network else [], cmd.after),
        )


def build_plan(
    manifest: Manifest,
    config: BootstrapConfig,
    runner: CommandRunner,
    templates_dir: Path = TEMPLATES_DIR,
) -> Plan:
    """Build the plan for one run.

    Raises:
        BuildError: UnknownDependency, CyclicDependency, DuplicateStep
            or TemplateError — always before any action runs.
    """
    return PlanBuilder(manifest, config, runner, templates_dir).build()
