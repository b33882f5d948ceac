"""CLI entry point for Markpad."""

from __future__ import annotations

import atexit
import sys
from contextlib import ExitStack
from pathlib import Path

import click

from markpad import __version__
from markpad.admission import AccessPolicy, Intent, evaluate, validate_path_input
from markpad.audit import configure_logging
from markpad.config import MarkpadConfig
from markpad.errors import ConfigurationError, InstanceRunningError, StartupError
from markpad.instance import LockState, exclusive_instance, inspect_lock, release
from markpad.server import build_app, serve as serve_app
from markpad.ui import RichUI, UI, get_ui


def _load_config(root: Path | None, ui_mode: str | None, no_color: bool) -> MarkpadConfig:
    try:
        config = MarkpadConfig.from_env(root.resolve() if root is not None else None)
    except ConfigurationError as exc:
        get_ui(ui_mode or "auto", no_color).err(str(exc))
        sys.exit(1)
    if ui_mode is not None:
        config.ui_mode = ui_mode
    if no_color:
        config.no_color = True
    return config


def _build_policy_or_exit(config: MarkpadConfig, ui: UI) -> AccessPolicy:
    errors = config.validate()
    if errors:
        for error in errors:
            ui.err(error)
        sys.exit(1)
    try:
        return config.build_policy()
    except ConfigurationError as exc:
        ui.err(f"Failed to initialize security config: {exc}")
        sys.exit(1)


def _report_running_instance(ui: UI, exc: InstanceRunningError) -> None:
    pid = exc.lock.pid
    ui.panel(
        "LOCK",
        "Another instance is already running",
        f"{exc.lock.describe()}\n\n"
        "To stop the running instance:\n"
        "  - Press Ctrl+C in the terminal where it's running, or\n"
        f"  - Run: kill {pid}",
    )


_root_option = click.option(
    "--root",
    type=click.Path(path_type=Path, file_okay=False),
    help="Working directory holding .env and the lock file (defaults to current directory)",
)
_ui_option = click.option(
    "--ui",
    "ui_mode",
    type=click.Choice(["auto", "rich", "plain"]),
    default=None,
    help="UI mode",
)
_no_color_option = click.option(
    "--no-color",
    is_flag=True,
    help="Disable colors",
)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Markpad - local editor server for allow-listed markdown files."""
    pass


@cli.command()
@click.option("--port", "-p", type=int, help="Preferred port (env: PORT)")
@click.option("--host", help="Bind host (env: HOST)")
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    help="Consecutive ports to try (env: PORT_ATTEMPTS)",
)
@_root_option
@_ui_option
@_no_color_option
def serve(
    port: int | None,
    host: str | None,
    max_attempts: int | None,
    root: Path | None,
    ui_mode: str | None,
    no_color: bool,
) -> None:
    """Start the editor server.

    Only one server may run per working directory; the first free port at
    or after the preferred port is used.
    """
    config = _load_config(root, ui_mode, no_color)
    if port is not None:
        config.port = port
    if host is not None:
        config.host = host
    if max_attempts is not None:
        config.port_attempts = max_attempts

    ui = get_ui(config.ui_mode, config.no_color)
    configure_logging(rich_output=isinstance(ui, RichUI))
    policy = _build_policy_or_exit(config, ui)

    with ExitStack() as stack:
        try:
            bound_port, handle, sock = stack.enter_context(
                exclusive_instance(
                    config.lock_file,
                    host=config.host,
                    preferred_port=config.port,
                    max_attempts=config.port_attempts,
                )
            )
        except InstanceRunningError as exc:
            _report_running_instance(ui, exc)
            sys.exit(1)
        except StartupError as exc:
            ui.err(f"Failed to start server: {exc}")
            sys.exit(1)
        except OSError as exc:
            ui.err(f"Failed to start server: {exc.strerror or exc}")
            sys.exit(1)

        atexit.register(release, handle)
        app = build_app(config, policy)
        ui.title(f"Markpad {__version__}")
        ui.kv("URL", f"http://localhost:{bound_port}")
        if bound_port != config.port:
            ui.warn(f"Preferred port {config.port} was in use, using port {bound_port} instead")
        ui.kv("Environment", config.environment)
        ui.kv("Session ID", app.state.markpad.state.session_id)
        ui.kv("Allowed directories", ", ".join(policy.allowed_directories))
        ui.kv("Lock file", str(handle.path))
        serve_app(app, sock, config)
    ui.ok("Server closed, all connections terminated")


@cli.command()
@click.argument("path", type=str)
@click.option(
    "--write",
    "for_write",
    is_flag=True,
    help="Evaluate for a save instead of a read (skips the size limit)",
)
@_root_option
@_ui_option
@_no_color_option
def check(
    path: str,
    for_write: bool,
    root: Path | None,
    ui_mode: str | None,
    no_color: bool,
) -> None:
    """Check whether PATH may be opened under the configured allow-list."""
    config = _load_config(root, ui_mode, no_color)
    ui = get_ui(config.ui_mode, config.no_color)
    policy = _build_policy_or_exit(config, ui)

    candidate = validate_path_input(path)
    if candidate is None:
        ui.err("Invalid file path format")
        sys.exit(1)

    decision = evaluate(candidate, policy, Intent.WRITE if for_write else Intent.READ)
    if decision.allowed:
        ui.ok(f"ALLOW {decision.path}")
        return
    reason = decision.reason.value if decision.reason else "unknown"
    ui.err(f"DENY {reason.upper()}: {decision.message}")
    sys.exit(1)


@cli.command("lock-status")
@_root_option
@_ui_option
@_no_color_option
def lock_status(root: Path | None, ui_mode: str | None, no_color: bool) -> None:
    """Show the instance lock record for the working directory."""
    config = _load_config(root, ui_mode, no_color)
    ui = get_ui(config.ui_mode, config.no_color)
    inspection = inspect_lock(config.lock_file)

    ui.kv("Lock file", str(config.lock_file))
    ui.kv("State", inspection.state.value)
    if inspection.lock is not None:
        ui.kv("PID", str(inspection.lock.pid))
        ui.kv("Port", str(inspection.lock.port))
        ui.kv("Started", f"{inspection.lock.created_at:%Y-%m-%d %H:%M:%S}")
        ui.kv("Host", inspection.lock.hostname)
    if inspection.state is LockState.CORRUPT:
        ui.warn(inspection.error or "Lock file is unreadable")


def main() -> None:
    """Run the Markpad CLI."""
    cli()


if __name__ == "__main__":
    main()
