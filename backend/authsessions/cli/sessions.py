"""Flask CLI commands for inspecting the refresh token store."""

from __future__ import annotations

import json
import logging

import click
from flask.cli import with_appcontext

from authsessions.core.extensions import get_backend
from authsessions.services._shared.errors import StoreError
from authsessions.services.sessions.diagnostics import Diagnostics, DiagnosticsReporter

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    """Raise logging verbosity for store modules when requested."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger("authsessions.infra").setLevel(level)
    logging.getLogger("authsessions.services.sessions").setLevel(level)
    LOGGER.setLevel(level)


def _reporter() -> DiagnosticsReporter:
    backend = get_backend()
    return DiagnosticsReporter(
        tokens=backend.tokens,
        sessions=backend.sessions,
        backend=backend.name,
        key_prefix=backend.key_prefix,
    )


def _echo_report(report: Diagnostics, verbose: bool = False) -> None:
    """Pretty-print a diagnostics report."""
    click.echo("Session store diagnostics:")
    click.echo(f"  backend             {report.backend}")
    click.echo(f"  available           {'yes' if report.store_available else 'NO'}")
    click.echo(f"  persistence         {'enabled' if report.persistence_enabled else 'DISABLED'}")
    click.echo(f"  refresh tokens      {report.token_count}")
    if report.per_token_ttl:
        click.echo(
            f"  ttl range           {min(report.per_token_ttl)}s .. {max(report.per_token_ttl)}s"
        )
        if verbose:
            click.echo(f"  per-token ttl       {', '.join(str(t) for t in report.per_token_ttl)}")
    if report.ttl_issues:
        click.echo(f"  tokens without TTL  {len(report.ttl_issues)}")
        for record_id in report.ttl_issues:
            click.echo(f"    - {record_id}")


@click.group("sessions")
@click.option("--verbose", is_flag=True, help="Enable verbose logging for store commands.")
@click.pass_context
def sessions_cli(ctx: click.Context, verbose: bool) -> None:
    """Inspect and maintain the refresh token store."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose)


@sessions_cli.command("diagnose")
@click.option("--user-id", default=None, help="Restrict the report to one user's sessions.")
@click.option("--as-json", "as_json", is_flag=True, help="Print the raw report as JSON.")
@click.pass_context
@with_appcontext
def diagnose_command(ctx: click.Context, user_id: str | None, as_json: bool) -> None:
    """Report token count, TTLs and persistence; exit 1 when a token has no TTL."""
    try:
        report = _reporter().get_diagnostics(user_id)
    except StoreError as exc:
        raise click.ClickException(f"Session store unavailable: {exc}") from exc

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _echo_report(report, verbose=bool(ctx.obj.get("verbose", False)))
    if report.ttl_issues:
        raise click.exceptions.Exit(1)


@sessions_cli.command("inspect")
@click.option("--user-id", required=True, help="Owner of the refresh token.")
@click.option("--token", required=True, prompt=True, hide_input=True, help="Raw refresh token.")
@with_appcontext
def inspect_command(user_id: str, token: str) -> None:
    """Check that one refresh token is stored with a positive TTL."""
    try:
        inspection = _reporter().inspect_token(user_id, token)
    except StoreError as exc:
        raise click.ClickException(f"Session store unavailable: {exc}") from exc

    click.echo(json.dumps(inspection.to_dict(), indent=2))
    if not inspection.exists or inspection.ttl_seconds <= 0:
        raise click.exceptions.Exit(1)


@sessions_cli.command("reconnect")
@with_appcontext
def reconnect_command() -> None:
    """Retry the Redis connection now instead of waiting for the cooldown."""
    backend = get_backend()
    if backend.connection is None:
        raise click.UsageError(
            f"The {backend.name!r} backend has no connection to retry; restart the "
            "process to select Redis again."
        )
    if not backend.connection.reconnect():
        raise click.ClickException("Reconnect failed; see logs for the last error.")
    click.echo("Reconnected.")
