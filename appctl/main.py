"""
appctl — CLI entrypoint.

Usage:
    appctl --help
    appctl install <app> [--skip-start]
    appctl update installed --skip-stop
    appctl compose <app> logs --tail 20
    appctl ls-installed
"""

from __future__ import annotations

import json
import os
import signal
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn

import click

from appctl import __version__
from appctl.core.errors import AppctlError, RuntimeCallError
from appctl.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="appctl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--root",
    "-r",
    "root",
    type=click.Path(file_okay=False),
    default=None,
    help="Host root directory (default: $APPCTL_ROOT or cwd).",
)
@click.option("--mock", is_flag=True, help="Use the mock runtime (no docker calls).")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    root: str | None,
    mock: bool,
) -> None:
    """appctl — install, update, start and stop compose apps."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["root"] = Path(root) if root else None
    ctx.obj["mock"] = mock

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("APPCTL_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("APPCTL_LOG_FILE"),
        log_file_level=os.environ.get("APPCTL_LOG_FILE_LEVEL"),
    )


# ── Helpers ─────────────────────────────────────────────────────


def _fail(message: str, code: int = 1) -> NoReturn:
    click.secho(f"❌ {message}", fg="red", err=True)
    sys.exit(code)


def _lifecycle(ctx: click.Context) -> Any:
    """Build the lifecycle controller for this invocation."""
    from appctl.adapters import DockerComposeRuntime, MockRuntime
    from appctl.core.config.loader import load_config
    from appctl.core.persistence.audit import AuditWriter
    from appctl.core.services.lifecycle import AppLifecycle

    try:
        config = load_config(ctx.obj.get("root"))
    except AppctlError as e:
        _fail(str(e))

    if ctx.obj.get("mock"):
        runtime = MockRuntime()
    else:
        runtime = DockerComposeRuntime(env_file=config.env_file, timeout=config.runtime_timeout)

    return AppLifecycle(config, runtime, audit=AuditWriter(config.audit_file))


def _run(
    ctx: click.Context,
    command: str,
    app: str,
    as_json: bool = False,
    **kwargs: Any,
) -> None:
    """Dispatch one lifecycle command and report the outcome."""
    from appctl.core.services.lifecycle import AppResult

    lifecycle = _lifecycle(ctx)
    try:
        results = lifecycle.dispatch(command, app, **kwargs)
    except RuntimeCallError as e:
        _fail(str(e), e.returncode or 1)
    except AppctlError as e:
        _fail(str(e))

    if as_json:
        if results is None:
            results = [AppResult(app_id=app, command=command, ok=True)]
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        failed = sum(1 for r in results if not r.ok)
        if failed:
            _fail(f"{command}: {failed}/{len(results)} apps failed")
        return

    quiet = ctx.obj.get("quiet", False)
    if results is None:
        if not quiet:
            click.secho(f"✓ {command} {app}", fg="green")
        return

    if not results:
        if not quiet:
            click.echo("No apps installed")
        return

    for result in results:
        if result.ok:
            if not quiet:
                click.secho(f"   ✓ {result.app_id}", fg="green")
        else:
            click.secho(f"   ✗ {result.app_id}", fg="red", nl=False, err=True)
            click.echo(f"  {result.error}", err=True)

    failed = sum(1 for r in results if not r.ok)
    if failed:
        _fail(f"{command}: {failed}/{len(results)} apps failed")


def _app_command(name: str, help_text: str, *options: Callable) -> click.Command:
    """Register ``appctl <name> <app>`` with the given flag options."""

    def callback(ctx: click.Context, app: str, as_json: bool, **kwargs: Any) -> None:
        _run(ctx, name, app, as_json=as_json, **kwargs)

    callback.__doc__ = help_text
    command: Callable = click.pass_context(callback)
    for option in (*options, _json_output):
        command = option(command)
    command = click.argument("app")(command)
    return cli.command(name)(command)


_skip_start = click.option("--skip-start", is_flag=True, help="Do not start the app afterwards.")
_skip_stop = click.option("--skip-stop", is_flag=True, help="Do not stop the app first.")
_json_output = click.option(
    "--json-output", "--json", "as_json", is_flag=True, help="Print per-app results as JSON."
)

_app_command("install", "Install an app from the app repo ('installed' for all).", _skip_start)
_app_command("uninstall", "Remove an app, its containers, images and data.")
_app_command("start", "Start an installed app.")
_app_command("stop", "Stop an app's containers.")
_app_command("restart", "Stop, then start an app.")
_app_command(
    "update",
    "Refresh an installed app from the app repo.",
    _skip_stop,
    _skip_start,
)


# ── Escape hatch / observe ──────────────────────────────────────


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("app")
@click.argument("args", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def compose(ctx: click.Context, app: str, args: tuple[str, ...]) -> None:
    """Run an arbitrary compose command for an app.

    Examples:

        appctl compose bitcoin ps

        appctl compose bitcoin logs --tail 50
    """
    lifecycle = _lifecycle(ctx)
    try:
        lifecycle.compose(app, *args)
    except RuntimeCallError as e:
        _fail(str(e), e.returncode or 1)
    except AppctlError as e:
        _fail(str(e))


@cli.command("ls-installed")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def ls_installed(ctx: click.Context, as_json: bool) -> None:
    """List installed apps, one per line."""
    apps = _lifecycle(ctx).ls_installed()
    if as_json:
        click.echo(json.dumps(apps, indent=2))
        return
    for app in apps:
        click.echo(app)


@cli.command()
@click.option("-n", "count", default=20, show_default=True, help="Number of entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent lifecycle operations from the audit ledger."""
    from appctl.core.config.loader import load_config
    from appctl.core.persistence.audit import AuditWriter

    try:
        config = load_config(ctx.obj.get("root"))
    except AppctlError as e:
        _fail(str(e))

    entries = AuditWriter(config.audit_file).read_recent(count)
    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No operations recorded")
        return

    status_color = {"ok": "green", "failed": "red"}
    for entry in entries:
        click.echo(f"{entry.timestamp}  {entry.operation_type:<10} {entry.app_id:<20} ", nl=False)
        click.secho(entry.status, fg=status_color.get(entry.status, "white"))
        for err in entry.errors:
            click.echo(f"     │ {err}")


def _terminate(signum: int, frame: object) -> None:
    # Unwind through finally blocks (lock release, manifest copy)
    sys.exit(128 + signum)


def main() -> None:
    """Console-script entrypoint."""
    signal.signal(signal.SIGTERM, _terminate)
    cli()


if __name__ == "__main__":
    main()
