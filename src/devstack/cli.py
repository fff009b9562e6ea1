"""devstack CLI.

Command-line interface for starting the local stack and inspecting profiles.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import sys
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from devstack.core.exceptions import ConfigurationError
from devstack.core.logging_config import setup_logging
from devstack.startup.config_schema import StackSettings, format_validation_errors
from devstack.startup.orchestrator import EXIT_FAILURE, StartupOrchestrator
from devstack.startup.profiles import DEFAULT_PROFILE, ProfileResolver
from devstack.startup.progress_reporter import StartupProgressReporter
from devstack.version import get_version

console = Console(soft_wrap=True)


def project_root_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--project-root",
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        default=None,
        help="Directory holding the compose file and .env.<profile> overlays "
        "(DEVSTACK_PROJECT_ROOT)",
    )(func)


def load_settings(**overrides: Any) -> StackSettings:
    """Read settings from the environment and apply CLI overrides, or exit 1."""
    settings, errors = StackSettings.validate_from_env()
    if settings is not None:
        try:
            settings = settings.with_overrides(**overrides)
        except ValidationError as e:
            errors = format_validation_errors(e)
            settings = None
    if settings is None:
        StartupProgressReporter().report_settings_validation(errors)
        sys.exit(EXIT_FAILURE)
    return settings


@click.group()
@click.version_option(get_version(), prog_name="devstack")
@click.option("--verbose", "-v", is_flag=True, help="Verbose (debug) logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:  # noqa: FBT001
    """Start the local development stack and verify it is healthy."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("profile", required=False)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Per-service health check timeout in seconds (HEALTH_CHECK_TIMEOUT)",
)
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between health check attempts (HEALTH_CHECK_INTERVAL)",
)
@click.option(
    "--show-logs/--no-show-logs",
    default=None,
    help="Show logs of failing services without prompting (SHOW_LOGS_ON_FAILURE)",
)
@click.option(
    "--auto-seed/--no-auto-seed",
    default=None,
    help="Seed the database when it is empty (AUTO_SEED_DATABASE)",
)
@project_root_option
@click.pass_context
def up(
    ctx: click.Context,
    profile: str | None,
    timeout: float | None,
    interval: float | None,
    show_logs: bool | None,  # noqa: FBT001
    auto_seed: bool | None,  # noqa: FBT001
    project_root: Path | None,
) -> None:
    """Start PROFILE (default: full) and wait until every service is healthy."""
    settings = load_settings(
        health_check_timeout=timeout,
        health_check_interval=interval,
        show_logs_on_failure=show_logs,
        auto_seed_database=auto_seed,
        project_root=project_root,
    )
    setup_logging(settings.log_level.value, debug=ctx.obj["verbose"])

    orchestrator = StartupOrchestrator(settings, profile_name=profile)
    ctx.exit(orchestrator.run())


@cli.command()
@project_root_option
def profiles(project_root: Path | None) -> None:
    """List available profiles."""
    settings = load_settings(project_root=project_root)
    resolver = ProfileResolver(settings.project_root)

    table = Table(title="Available profiles")
    table.add_column("Profile", style="cyan")
    table.add_column("Services")
    table.add_column("Description")
    table.add_column("Overlay")
    for info in resolver.list_profiles():
        name = f"{info.name} (default)" if info.name == DEFAULT_PROFILE else info.name
        overlay = (
            f"[green]{info.overlay_path.name}[/green]"
            if info.overlay_exists
            else f"[red]{info.overlay_path.name} (missing)[/red]"
        )
        table.add_row(name, ", ".join(info.services), info.description, overlay)
    console.print(table)
    console.print("\nUsage: [bold]devstack up <profile>[/bold]")


@cli.command()
@click.argument("profile", required=False)
@project_root_option
@click.pass_context
def validate(ctx: click.Context, profile: str | None, project_root: Path | None) -> None:
    """Validate PROFILE's configuration without starting anything."""
    settings = load_settings(project_root=project_root)
    setup_logging(settings.log_level.value, debug=ctx.obj["verbose"])
    resolver = ProfileResolver(settings.project_root)

    try:
        resolved = resolver.resolve(profile)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        for step in e.next_steps:
            console.print(f"  • {step}")
        ctx.exit(EXIT_FAILURE)

    console.print(f"[green]✅ Profile '{resolved.name}' is valid[/green]")
    console.print(f"  Services: {', '.join(resolved.services)}")
    console.print(f"  Overlay:  {resolved.overlay_path}")
    for spec in resolved.service_specs:
        console.print(
            f"  {spec.port_variable:<14} {resolved.port_for(spec.service_id)}"
        )


def main() -> None:
    cli(prog_name="devstack")


if __name__ == "__main__":
    main()
