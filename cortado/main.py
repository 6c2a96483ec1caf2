"""
cortado — CLI entrypoint.

Usage:
    cortado --help
    cortado plan --check
    sudo cortado apply
    ENABLE_DOCKER=0 cortado apply --jobs 4
"""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from pathlib import Path

import click

from cortado import __version__
from cortado.core.observability.logging_config import (
    FILE_ENV,
    FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)

_OUTCOME_COLORS = {"applied": "green", "skipped": "white", "failed": "red"}
_CHECK_COLORS = {"would skip": "white", "would run": "yellow", "unknown": "magenta"}
_HEALTH_COLORS = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="cortado")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--manifest",
    "-m",
    "manifest_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to the manifest (default: ./cortado.yml or the bundled one).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    manifest_path: str | None,
) -> None:
    """cortado — declarative, idempotent desktop bootstrap."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["manifest_path"] = Path(manifest_path) if manifest_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(verbose=verbose, quiet=quiet, debug=debug),
        log_file=os.environ.get(FILE_ENV),
        log_file_level=os.environ.get(FILE_LEVEL_ENV),
    )


def _print_checked_plan(result, quiet: bool) -> None:
    plan = result.plan
    if not quiet:
        click.secho(f"\n📋 Plan: {len(plan)} steps (user {result.config.target.name})", fg="cyan", bold=True)
        click.echo(f"   Manifest: {result.manifest_path}")
        click.echo()
    for i, step in enumerate(plan, 1):
        line = f"   {i:>3}. {step.id:<32} {step.description}"
        state = result.checks.get(step.id)
        if state is None:
            click.echo(line)
        else:
            click.echo(line + "  ", nl=False)
            click.secho(f"[{state}]", fg=_CHECK_COLORS[state])
        if step.depends_on and not quiet:
            click.echo(f"        after: {', '.join(step.depends_on)}")
    if result.checks:
        click.echo()
        click.secho(f"   {result.pending} of {len(plan)} steps would run", bold=True)
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--check", is_flag=True, help="Evaluate preconditions (read-only).")
@click.pass_context
def plan(ctx: click.Context, as_json: bool, check: bool) -> None:
    """Build and show the plan without executing it."""
    from cortado.core.use_cases.plan import plan_bootstrap

    result = plan_bootstrap(manifest_path=ctx.obj.get("manifest_path"), check=check)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    _print_checked_plan(result, ctx.obj.get("quiet", False))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=1, show_default=True,
              help="Run up to N parallel-safe steps at once.")
@click.option("--no-preflight", is_flag=True, help="Skip OS and required-tool checks.")
@click.option("--dry-run", is_flag=True, help="Same as 'plan --check'.")
@click.pass_context
def apply(ctx: click.Context, as_json: bool, jobs: int, no_preflight: bool, dry_run: bool) -> None:
    """Bring the system to the state the manifest describes."""
    if dry_run:
        ctx.invoke(plan, as_json=as_json, check=True)
        return

    from cortado.core.engine.report import format_step_line
    from cortado.core.use_cases.apply import apply_bootstrap

    cancel = threading.Event()

    def _interrupt(signum, frame):  # noqa: ARG001
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        click.secho("\n⚠️  Interrupted: finishing the running step, then stopping.", fg="yellow", err=True)

    previous = signal.signal(signal.SIGINT, _interrupt)
    try:
        result = apply_bootstrap(
            manifest_path=ctx.obj.get("manifest_path"),
            run_preflight=not no_preflight,
            jobs=jobs,
            cancel=cancel,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    report, summary = result.report, result.summary
    quiet = ctx.obj.get("quiet", False)

    for r in report.results:
        if quiet and r.outcome != "failed":
            continue
        click.secho(f"   {format_step_line(r)}", fg=_OUTCOME_COLORS[r.outcome])

    if summary.failures:
        click.echo()
        click.secho("❌ Failures:", fg="red", bold=True)
        for f in summary.failures:
            click.echo(f"   • {f.step_id} [{f.reason}] {f.error}")
            for line in f.stderr_tail.splitlines()[-5:]:
                click.secho(f"       {line}", dim=True)

    click.echo()
    color = "green" if summary.exit_code == 0 else "red"
    click.secho(f"{'✅' if summary.exit_code == 0 else '❌'} {summary.headline()}", fg=color, bold=True)
    sys.exit(summary.exit_code)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def flags(ctx: click.Context, as_json: bool) -> None:
    """List feature flags, their defaults and current values."""
    from cortado.core.config.loader import load_manifest
    from cortado.core.config.settings import resolve_flags
    from cortado.core.engine.report import EXIT_BUILD_ERROR
    from cortado.core.errors import ConfigError

    try:
        manifest = load_manifest(ctx.obj.get("manifest_path"))
        current = resolve_flags(manifest, os.environ)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(EXIT_BUILD_ERROR)

    rows = [
        {
            "name": spec.name,
            "env_var": spec.env_var,
            "default": spec.default,
            "enabled": current[spec.name],
            "description": spec.description,
            "gates": manifest.gated_by(spec.name),
        }
        for spec in manifest.flags
    ]

    if as_json:
        click.echo(json.dumps({"flags": rows}, indent=2))
        return

    click.secho(f"\n🚩 Flags ({manifest.name})", fg="cyan", bold=True)
    for row in rows:
        state = "on " if row["enabled"] else "off"
        click.secho(f"   {state}", fg="green" if row["enabled"] else "white", nl=False)
        changed = "" if row["enabled"] == row["default"] else " (overridden)"
        click.echo(f"  {row['env_var']:<22} {row['description']}{changed}")
        if row["gates"] and not ctx.obj.get("quiet", False):
            click.secho(f"         gates: {', '.join(row['gates'])}", dim=True)
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def doctor(ctx: click.Context, as_json: bool) -> None:
    """Run read-only probes and report host health."""
    from cortado.core.engine.report import EXIT_OK, EXIT_PROBE_ERROR
    from cortado.core.use_cases.doctor import run_doctor

    report = run_doctor(manifest_path=ctx.obj.get("manifest_path"))
    code = EXIT_OK if report.ok else EXIT_PROBE_ERROR

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        sys.exit(code)

    click.secho("\n🩺 Doctor", fg="cyan", bold=True)
    for c in report.components:
        click.secho(f"   {c.status:<10}", fg=_HEALTH_COLORS.get(c.status, "white"), nl=False)
        click.echo(f" {c.name:<12} {c.message}")
    click.echo()
    click.secho(f"   Overall: {report.status}", fg=_HEALTH_COLORS[report.status], bold=True)
    click.echo()
    sys.exit(code)


@cli.command()
@click.option("--ssid", default=None, help="Network to join (prompted when omitted).")
@click.option("--attempts", type=click.IntRange(min=1), default=3, show_default=True,
              help="Connection attempts before giving up.")
@click.pass_context
def wifi(ctx: click.Context, ssid: str | None, attempts: int) -> None:
    """Connect to Wi-Fi through NetworkManager when offline."""
    from cortado.adapters.shell.command import CommandRunner
    from cortado.core.config.loader import load_manifest
    from cortado.core.errors import ConfigError
    from cortado.core.probes.network import hosts_resolvable
    from cortado.core.services.networkmanager import (
        WifiNetwork,
        connect_wifi,
        enable_radio,
        nmcli_available,
        scan_networks,
        wifi_device,
    )

    if not nmcli_available():
        click.secho("❌ nmcli not found; NetworkManager is required.", fg="red")
        sys.exit(1)

    try:
        hosts = load_manifest(ctx.obj.get("manifest_path")).network.hosts or ["github.com"]
    except ConfigError:
        hosts = ["github.com"]

    runner = CommandRunner()
    if hosts_resolvable(runner, hosts) is True:
        click.secho("✅ Online; nothing to do.", fg="green")
        return

    device = wifi_device(runner)
    if device is None:
        click.secho("❌ No Wi-Fi device detected.", fg="red")
        sys.exit(1)

    def show(networks: list[WifiNetwork]) -> None:
        click.secho(f"\n📶 Networks on {device}", fg="cyan", bold=True)
        for n in networks:
            click.echo(f"   {n.signal:>3}%  {n.ssid:<32} {n.security or 'open'}")
        click.echo()

    enable_radio(runner)
    networks = scan_networks(runner, device)
    show(networks)

    for attempt in range(1, attempts + 1):
        name = ssid or click.prompt("SSID (empty to re-list)", default="", show_default=False)
        if not name:
            networks = scan_networks(runner, device)
            show(networks)
            continue

        network = next((n for n in networks if n.ssid == name), WifiNetwork(name, "WPA2", 0))
        password = "" if network.is_open else click.prompt(f"Password for '{name}'", hide_input=True)

        result = connect_wifi(runner, device, network, password)
        if result.ok and hosts_resolvable(runner, hosts) is True:
            click.secho(f"✅ Connected to {name}", fg="green")
            return
        click.secho(f"⚠️  Attempt {attempt}/{attempts} failed: {result.stderr.strip() or 'still offline'}", fg="yellow")

    click.secho("❌ Still offline. Connect to a network, then rerun.", fg="red")
    sys.exit(1)


if __name__ == "__main__":
    cli()
