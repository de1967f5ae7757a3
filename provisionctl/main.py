"""
provisionctl — CLI entrypoint.

Usage:
    provisionctl --help
    provisionctl plan --select tag:containers
    provisionctl run --select all --dry-run
    provisionctl config check

Exit codes:
    0  success
    1  partial failure (non-critical units failed)
    2  fatal (a critical unit failed and the run was aborted)
    3  usage or configuration error
"""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path

import click

from provisionctl import __version__
from provisionctl.core.models.report import EXIT_OK, EXIT_PARTIAL, EXIT_USAGE
from provisionctl.core.observability.logging_config import (
    level_from_flags,
    setup_logging_from_env,
)

_STATUS_COLORS = {
    "ok": "green",
    "partial": "yellow",
    "cancelled": "yellow",
    "fatal": "red",
}

_HEALTH_ICONS = {
    "healthy": ("💚", "green"),
    "degraded": ("🟡", "yellow"),
    "unhealthy": ("🔴", "red"),
    "unknown": ("❔", "white"),
}


@click.group()
@click.version_option(version=__version__, prog_name="provisionctl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to units.yml (default: $PROVISIONCTL_UNITS or auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """provisionctl — converge a Fedora workstation from declarative units."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging_from_env(level_from_flags(verbose, quiet, debug), debug=debug)


def _fail(message: str, as_json: bool, code: int = EXIT_USAGE) -> None:
    if as_json:
        click.echo(json.dumps({"error": message, "exit_code": code}, indent=2))
    else:
        click.secho(f"❌ {message}", fg="red", err=True)
    sys.exit(code)


# ── run ─────────────────────────────────────────────────────────


class _SignalCancellation:
    """Route SIGINT/SIGTERM to the run's cancellation token.

    The first signal stops new units from starting; a second one
    terminates in-flight commands immediately.
    """

    def __init__(self, token, runner):
        self._token = token
        self._runner = runner
        self._previous: dict[int, object] = {}

    def _handle(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        if self._token.cancelled:
            self._runner.terminate_all(kill_after=2.0)
            return
        self._token.cancel(f"received {name}")

    def __enter__(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handle)
            except ValueError:
                # Not the main thread; cancellation stays programmatic
                pass
        return self

    def __exit__(self, *exc) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)


@cli.command()
@click.option("--select", "-s", "selection", default="all", show_default=True,
              help="all, tag:NAME[,NAME] or id:ID[,ID].")
@click.option("--concurrency", "-j", type=click.IntRange(min=1), default=None,
              help="Units run in parallel within a dependency level.")
@click.option("--dry-run", is_flag=True, help="Check only; report what would be applied.")
@click.option("--max-retries", type=click.IntRange(min=0), default=None,
              help="Retries per failed action.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--report-file", type=click.Path(dir_okay=False), default=None,
              help="Also write the JSON report to this file.")
@click.option("--no-history", is_flag=True, help="Don't append this run to the history ledger.")
@click.pass_context
def run(
    ctx: click.Context,
    selection: str,
    concurrency: int | None,
    dry_run: bool,
    max_retries: int | None,
    as_json: bool,
    report_file: str | None,
    no_history: bool,
) -> None:
    """Converge the selected units.

    Examples:

        provisionctl run --select tag:containers

        provisionctl run --select id:docker,kubectl --dry-run

        provisionctl run -j 4 --report-file /tmp/report.json
    """
    from provisionctl.adapters.shell.runner import default_runner
    from provisionctl.core.engine.cancellation import CancellationToken
    from provisionctl.core.use_cases.run import run_provisioning

    runner = default_runner()
    token = CancellationToken()

    with _SignalCancellation(token, runner):
        result = run_provisioning(
            selection=selection,
            config_path=ctx.obj.get("config_path"),
            dry_run=dry_run,
            concurrency=concurrency,
            max_retries=max_retries,
            runner=runner,
            cancel_token=token,
            report_file=Path(report_file) if report_file else None,
            record_history=not no_history,
        )

    if result.error:
        _fail(result.error, as_json)

    report = result.report
    assert report is not None

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    quiet = ctx.obj.get("quiet", False)
    if not quiet:
        mode_label = "[dry-run] " if dry_run else ""
        click.secho(f"\n⚡ {mode_label}provisionctl run — {report.selection}", fg="cyan", bold=True)
        click.echo(f"   Units: {report.total}")
        click.echo()

    for line in report.render().splitlines():
        click.echo(f"   {line}" if line else "")

    click.echo()
    color = _STATUS_COLORS.get(report.status, "white")
    click.secho(f"   Status: {report.status}", fg=color, bold=True)
    if result.report_file:
        click.secho(f"   📄 Report written to {result.report_file}", fg="cyan")
    click.echo()
    sys.exit(result.exit_code)


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@click.option("--select", "-s", "selection", default="all", show_default=True,
              help="all, tag:NAME[,NAME] or id:ID[,ID].")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, selection: str, as_json: bool) -> None:
    """Show the resolved execution plan without running anything."""
    from provisionctl.core.use_cases.plan import show_plan

    result = show_plan(selection=selection, config_path=ctx.obj.get("config_path"))
    if result.error:
        _fail(result.error, as_json)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    assert result.plan is not None and result.graph is not None
    click.secho(f"\n📋 Plan for {result.selection}", fg="cyan", bold=True)
    click.echo(
        f"   {len(result.plan.selected)} selected, "
        f"{result.plan.total_units} total with dependencies"
    )
    click.echo()

    for position, unit_id in enumerate(result.plan.order, start=1):
        unit = result.graph.get(unit_id)
        marker = "" if unit_id in result.plan.selected else "  (dependency)"
        critical = " [critical]" if unit.critical else ""
        click.echo(f"   {position:>3}. {unit_id}{critical}{marker}")

    if ctx.obj.get("verbose"):
        click.echo()
        click.secho("   Levels:", fg="white", bold=True)
        for n, level in enumerate(result.levels):
            click.echo(f"     {n}: {', '.join(level)}")
    click.echo()


# ── units ───────────────────────────────────────────────────────


@cli.command()
@click.option("--tag", "-t", default=None, help="Only units carrying this tag.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def units(ctx: click.Context, tag: str | None, as_json: bool) -> None:
    """List unit definitions."""
    from provisionctl.core.config.loader import load_unit_file
    from provisionctl.core.errors import ConfigurationError

    try:
        unit_file = load_unit_file(ctx.obj.get("config_path"))
    except ConfigurationError as e:
        _fail(str(e), as_json)

    selected = [u for u in unit_file.units if tag is None or u.has_tag(tag)]

    if as_json:
        click.echo(json.dumps([u.to_dict() for u in selected], indent=2))
        return

    if not selected:
        click.secho(f"No units{f' tagged {tag!r}' if tag else ''}.", fg="yellow")
        return

    click.secho(f"\n📦 Units: {len(selected)}", fg="cyan", bold=True)
    for unit in selected:
        critical = " [critical]" if unit.critical else ""
        click.secho(f"   • {unit.id}", fg="white", bold=True, nl=False)
        click.echo(f"{critical}  {unit.description}")
        if ctx.obj.get("verbose"):
            check = unit.check.kind if unit.check else "(none)"
            click.echo(f"       check: {check}  apply: {unit.apply.kind}")
            if unit.depends_on:
                click.echo(f"       depends on: {', '.join(unit.depends_on)}")
            if unit.tags:
                click.echo(f"       tags: {', '.join(unit.tags)}")
            if unit.when:
                click.echo(f"       when: {', '.join(unit.when)}")
    click.echo()


# ── config ──────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Unit file commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate units.yml: schema, adapter kinds, references, cycles."""
    from provisionctl.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(EXIT_OK if result.valid else EXIT_USAGE)

    if result.valid:
        click.secho("✅ Unit file is valid", fg="green", bold=True)
        click.echo(f"   File: {result.config_path}")
        click.echo(f"   Units: {result.unit_count}")
    else:
        click.secho("❌ Unit file errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(EXIT_USAGE)


# ── preflight ───────────────────────────────────────────────────


@cli.command()
@click.option("--offline", is_flag=True, help="Skip the network connectivity check.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def preflight(ctx: click.Context, offline: bool, as_json: bool) -> None:
    """Check the machine is ready to be provisioned."""
    from provisionctl.adapters.shell.runner import default_runner
    from provisionctl.core.context import probe_run_context
    from provisionctl.core.observability.health import check_system_health

    system_health = check_system_health(
        probe_run_context(),
        default_runner(),
        check_connectivity=not offline,
    )

    if as_json:
        click.echo(json.dumps(system_health.to_dict(), indent=2))
        sys.exit(EXIT_OK if system_health.ready else EXIT_PARTIAL)

    icon, color = _HEALTH_ICONS.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} Preflight: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {system_health.timestamp}")
    click.echo()

    for component in system_health.components:
        c_icon, c_color = _HEALTH_ICONS.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")

        if ctx.obj.get("verbose") and component.details:
            for key, val in component.details.items():
                click.echo(f"      {key}: {val}")

    click.echo()
    if not system_health.ready:
        sys.exit(EXIT_PARTIAL)


# ── history ─────────────────────────────────────────────────────


@cli.command()
@click.option("-n", "count", type=click.IntRange(min=1), default=10, show_default=True,
              help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent runs from the history ledger."""
    from provisionctl.core.config.loader import find_units_file, load_unit_file
    from provisionctl.core.config.settings import resolve_settings
    from provisionctl.core.errors import ConfigurationError
    from provisionctl.core.persistence.history import HistoryWriter

    file_settings = None
    config_path = ctx.obj.get("config_path") or find_units_file()
    if config_path is not None:
        try:
            file_settings = load_unit_file(config_path).settings
        except ConfigurationError as e:
            _fail(str(e), as_json)

    try:
        settings = resolve_settings(file_settings)
    except ConfigurationError as e:
        _fail(str(e), as_json)

    entries = HistoryWriter(settings.state_path).read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.secho("No runs recorded yet.", fg="yellow")
        return

    click.secho(f"\n🕑 Last {len(entries)} run(s)", fg="cyan", bold=True)
    for entry in reversed(entries):
        color = _STATUS_COLORS.get(entry.status, "white")
        click.echo(f"   {entry.timestamp[:19]}  {entry.run_id}  ", nl=False)
        click.secho(f"{entry.status:<9}", fg=color, nl=False)
        click.echo(f"  {entry.selection}  ({entry.units_total} units, exit {entry.exit_code})")
        if entry.failed and ctx.obj.get("verbose"):
            click.echo(f"       failed: {', '.join(entry.failed)}")
    click.echo()


if __name__ == "__main__":
    cli()
