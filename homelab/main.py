"""
Homelab provisioner — CLI entrypoint.

Usage:
    homelab --help
    homelab config check
    homelab plan
    sudo homelab apply

Exit codes:
    0  converged (or nothing to do)
    1  invalid declaration
    2  some non-critical actions failed
    3  halted: critical failure, interruption, or a probe, dependency,
       lock or privilege error
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from homelab import __version__
from homelab.core.observability.logging_config import resolve_level, setup_logging

_OUTCOME_STYLE = {
    "ok": ("✓", "green"),
    "failed": ("✗", "red"),
    "failed:timeout": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
}

_STATUS_COLOR = {"ok": "green", "partial": "yellow", "halted": "red", "interrupted": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="homelab")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to homelab.yml (default: HOMELAB_CONFIG, then auto-detect).",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the run report and audit ledger.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    state_dir: str | None,
) -> None:
    """Homelab provisioner — converge this server to its declaration."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["state_dir"] = Path(state_dir).resolve() if state_dir else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(verbose=verbose, quiet=quiet, debug=debug, env=os.environ),
        log_file=os.environ.get("HOMELAB_LOG_FILE"),
        log_file_level=os.environ.get("HOMELAB_LOG_FILE_LEVEL"),
    )


def _echo_json(data: dict) -> None:
    click.echo(json.dumps(data, indent=2))


def _echo_errors(error: str | None, errors: list[str]) -> None:
    if errors:
        click.secho("❌ Declaration errors:", fg="red", bold=True, err=True)
        for err in errors:
            click.echo(f"   • {err}", err=True)
    elif error:
        click.secho(f"❌ {error}", fg="red", err=True)


def _echo_report(report) -> None:
    for entry in report.entries:
        receipt = entry.receipt
        marker, color = _OUTCOME_STYLE.get(receipt.label, ("?", "white"))
        click.secho(f"   {marker} ", fg=color, nl=False)
        click.echo(f"{entry.action.description or entry.action.id}", nl=False)
        click.secho(f"  [{receipt.label}]", fg=color, nl=False)
        if receipt.duration_ms:
            click.echo(f" {receipt.duration_ms}ms", nl=False)
        click.echo()
        if receipt.error:
            click.echo(f"       {receipt.error}")
        elif receipt.skipped and receipt.output:
            click.echo(f"       {receipt.output}")

    click.echo()
    click.secho(f"   Status: {report.status}", fg=_STATUS_COLOR.get(report.status, "white"), bold=True)
    click.echo(
        f"   {report.succeeded} ok, {report.failed} failed, {report.skipped} skipped"
        f" of {report.total}"
    )
    if report.halted_by:
        click.echo(f"   Halted by: {report.halted_by}")


# ── plan ────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Plan against the simulated host.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool, mock: bool) -> None:
    """Show the actions apply would take. Changes nothing."""
    from homelab.core.use_cases.plan import run_plan

    result = run_plan(
        config_path=ctx.obj.get("config_path"),
        state_dir=ctx.obj.get("state_dir"),
        mock=mock,
    )

    if as_json:
        _echo_json(result.to_dict())
        sys.exit(result.exit_code)

    if result.error:
        _echo_errors(result.error, result.errors)
        sys.exit(result.exit_code)

    execution_plan = result.plan
    assert execution_plan is not None  # guaranteed after error check above

    if execution_plan.empty:
        click.secho("✅ Host matches the declaration, nothing to do", fg="green", bold=True)
        return

    if not ctx.obj.get("quiet"):
        label = " (mock host)" if mock else ""
        click.secho(
            f"\n📋 {execution_plan.declaration}{label}: {execution_plan.total_actions} action(s)",
            fg="cyan",
            bold=True,
        )
    for i, action in enumerate(execution_plan.actions, start=1):
        critical = click.style(" [critical]", fg="red") if action.critical else ""
        click.echo(f"   {i:>3}. {action.description or action.id}{critical}")
    click.echo()


# ── apply ───────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Apply to the simulated host (no root needed).")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Default per-action timeout in seconds.",
)
@click.pass_context
def apply(ctx: click.Context, as_json: bool, mock: bool, timeout: float | None) -> None:
    """Converge the host to the declaration."""
    from homelab.core.use_cases.apply import run_apply

    result = run_apply(
        config_path=ctx.obj.get("config_path"),
        state_dir=ctx.obj.get("state_dir"),
        mock=mock,
        timeout=timeout,
    )

    if as_json:
        _echo_json(result.to_dict())
        sys.exit(result.exit_code)

    if result.report is None:
        _echo_errors(result.error, result.errors)
        sys.exit(result.exit_code)

    report = result.report
    if not ctx.obj.get("quiet"):
        label = " (mock host)" if mock else ""
        click.secho(f"\n🔧 {report.declaration}{label} — run {report.run_id}", fg="cyan", bold=True)

    if report.total == 0:
        click.secho("✅ Host matches the declaration, nothing to do", fg="green", bold=True)
    else:
        _echo_report(report)
    if result.error:
        _echo_errors(result.error, result.errors)
    click.echo()
    sys.exit(result.exit_code)


# ── status ──────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the last run report."""
    from homelab.core.use_cases.status import get_status

    result = get_status(
        config_path=ctx.obj.get("config_path"),
        state_dir=ctx.obj.get("state_dir"),
    )

    if as_json:
        _echo_json(result.to_dict())
        return

    report = result.report
    if report is None:
        click.echo(f"No run recorded yet ({result.report_path}).")
        return

    label = " (mock host)" if report.mock else ""
    click.secho(f"\n📋 {report.declaration}{label} — run {report.run_id}", fg="cyan", bold=True)
    click.echo(f"   started {report.started_at}")
    if report.ended_at:
        click.echo(f"   ended   {report.ended_at}")
    click.echo()
    _echo_report(report)

    if len(result.history) > 1:
        click.echo()
        click.secho("   Recent runs:", fg="white", bold=True)
        for entry in reversed(result.history):
            color = _STATUS_COLOR.get(entry.status, "white")
            mock_mark = " (mock)" if entry.mock else ""
            click.echo(f"     {entry.timestamp}  ", nl=False)
            click.secho(f"{entry.status:<11}", fg=color, nl=False)
            click.echo(f" {entry.actions_total} action(s){mock_mark}")
    click.echo()


# ── config ──────────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Declaration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate homelab.yml."""
    from homelab.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        _echo_json(result.to_dict())
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.declaration is not None  # guaranteed when valid
        click.secho("✅ Declaration is valid", fg="green", bold=True)
        click.echo(f"   File: {result.config_path}")
        click.echo(f"   Host: {result.declaration.name}")
        click.echo(f"   Resources: {result.resource_count}")
        if result.declaration.stack is not None:
            click.echo(f"   Stack services: {len(result.declaration.stack.services)}")
    else:
        click.secho("❌ Declaration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


# ── secrets ─────────────────────────────────────────────────────────


@cli.group()
def secrets() -> None:
    """Stack credential commands."""


@secrets.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="List the simulated host's credentials.")
@click.pass_context
def secrets_list(ctx: click.Context, as_json: bool, mock: bool) -> None:
    """List credential names (never their values)."""
    from homelab.core.use_cases.secrets import list_secrets

    result = list_secrets(
        config_path=ctx.obj.get("config_path"),
        state_dir=ctx.obj.get("state_dir"),
        mock=mock,
    )

    if as_json:
        _echo_json(result.to_dict())
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(result.exit_code)

    if not result.entries:
        click.echo(f"No credentials declared or stored ({result.store_path}).")
        return

    click.secho(f"\n🔑 {result.store_path}", fg="cyan", bold=True)
    for entry in result.entries:
        marker = click.style("stored", fg="green") if entry.stored else click.style(
            "pending", fg="yellow"
        )
        env = f"  → {entry.env}" if entry.env else ""
        click.echo(f"   {entry.service}/{entry.name}  [{marker}]{env}")
    click.echo()


if __name__ == "__main__":
    cli()
