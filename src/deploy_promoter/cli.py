"""
Promoter command line interface.

    promoter environments
    promoter release dev <revision>
    promoter promote dev staging <revision>
    promoter trigger production <revision>
    promoter status
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .collaborators import create_collaborators
from .config import PromoterSettings, load_config
from .controller import PromotionController, create_promotion_controller
from .enums import ReleaseStatus
from .exceptions import PromoterError
from .logger import LogConfig, setup_logging
from .models import EnvironmentStatus, PromotionRequest, Release

console = Console()

STATUS_STYLES = {
    ReleaseStatus.HEALTHY: "green",
    ReleaseStatus.FAILED: "red",
    ReleaseStatus.ROLLED_BACK: "yellow",
}


def _build_controller(ctx: click.Context) -> PromotionController:
    settings: PromoterSettings = ctx.obj["settings"]
    config = load_config(settings.config_file)
    return create_promotion_controller(
        config,
        state_file=settings.state_file,
        collaborators=create_collaborators(config),
    )


def _run(ctx: click.Context, action: Callable[[PromotionController], Awaitable[Release]]) -> None:
    """Run an async controller action and report its release."""
    try:
        controller = _build_controller(ctx)
        release = asyncio.run(action(controller))
    except PromoterError as e:
        console.print(f"❌ {e.__class__.__name__}: {e}", style="bold red")
        sys.exit(1)

    _print_release(release)
    if release.status != ReleaseStatus.HEALTHY:
        sys.exit(1)


def _print_release(release: Release) -> None:
    style = STATUS_STYLES.get(release.status, "white")
    console.print(
        f"Release {release.release_id} of {release.revision_id} on "
        f"{release.environment}: [{style}]{release.status.value}[/{style}]"
    )
    path = " → ".join(status.value for status in release.visited)
    console.print(f"  {path}", style="dim")
    if release.error:
        console.print(f"  {release.failed_stage}: {release.error}", style="red")


def _status_table(statuses: list[EnvironmentStatus]) -> Table:
    table = Table(title="Environments")
    table.add_column("Rank", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Host")
    table.add_column("Current")
    table.add_column("Status")
    table.add_column("Known good")
    table.add_column("Flags", style="yellow")

    for status in statuses:
        flags = []
        if status.busy:
            flags.append("busy")
        if status.halted:
            flags.append("HALTED")
        current_status = status.current_status
        style = STATUS_STYLES.get(current_status, "white")
        table.add_row(
            str(status.environment.rank),
            status.environment.name,
            status.environment.target_host,
            status.current_revision or "-",
            f"[{style}]{current_status.value}[/{style}]" if current_status else "-",
            status.last_known_good_revision or "-",
            ", ".join(flags),
        )
    return table


@click.group()
@click.version_option(__version__, prog_name="promoter")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML configuration (default: $PROMOTER_CONFIG_FILE or promoter.yaml)",
)
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="JSON file persisting environment state between runs",
)
@click.option("--log-level", help="Log level override")
@click.option("--log-format", type=click.Choice(["json", "console"]), help="Log format override")
@click.pass_context
def cli(ctx, config_file, state_file, log_level, log_format):
    """Promote revisions through deployment environments."""
    overrides = {
        key: value
        for key, value in {
            "config_file": config_file,
            "state_file": state_file,
            "log_level": log_level,
            "log_format": log_format,
        }.items()
        if value is not None
    }
    settings = PromoterSettings(**overrides)

    try:
        setup_logging(
            LogConfig(
                service_name=settings.service_name,
                service_version=__version__,
                level=settings.log_level,
                format_type=settings.log_format,
                log_file=settings.log_file,
            )
        )
    except PromoterError as e:
        raise click.UsageError(str(e)) from e

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.pass_context
def environments(ctx):
    """List environments in promotion order."""
    try:
        controller = _build_controller(ctx)
    except PromoterError as e:
        console.print(f"❌ {e}", style="bold red")
        sys.exit(1)

    table = Table(title="Promotion order")
    table.add_column("Rank", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Target host")
    table.add_column("Health check")
    for env in controller.registry:
        table.add_row(str(env.rank), env.name, env.target_host, env.health_check_url)
    console.print(table)


@cli.command()
@click.argument("environment", required=False)
@click.pass_context
def status(ctx, environment):
    """Show current and known-good revisions."""
    try:
        controller = _build_controller(ctx)
        statuses = [controller.status(environment)] if environment else controller.statuses()
    except PromoterError as e:
        console.print(f"❌ {e}", style="bold red")
        sys.exit(1)

    console.print(_status_table(statuses))


@cli.command()
@click.argument("environment")
@click.argument("revision")
@click.option("--branch", default="main", show_default=True, help="Source branch of the revision")
@click.pass_context
def release(ctx, environment, revision, branch):
    """Release REVISION into the entry ENVIRONMENT."""
    console.print(f"🚀 Releasing {revision} to {environment}", style="bold blue")
    _run(ctx, lambda controller: controller.release(environment, revision, branch))


@cli.command()
@click.argument("from_environment")
@click.argument("to_environment")
@click.argument("revision")
@click.pass_context
def promote(ctx, from_environment, to_environment, revision):
    """Promote REVISION from FROM_ENVIRONMENT to TO_ENVIRONMENT."""
    console.print(
        f"🚀 Promoting {revision} from {from_environment} to {to_environment}", style="bold blue"
    )
    request = PromotionRequest(
        from_environment=from_environment,
        to_environment=to_environment,
        revision_id=revision,
    )
    _run(ctx, lambda controller: controller.promote(request))


@cli.command()
@click.argument("environment")
@click.argument("revision")
@click.pass_context
def trigger(ctx, environment, revision):
    """Deploy REVISION to ENVIRONMENT through the promotion rules."""
    _run(ctx, lambda controller: controller.trigger(environment, revision))


@cli.command()
@click.argument("environment")
@click.pass_context
def resume(ctx, environment):
    """Resume an interrupted release on ENVIRONMENT."""
    _run(ctx, lambda controller: controller.resume(environment))


@cli.command()
@click.argument("environment")
@click.pass_context
def acknowledge(ctx, environment):
    """Clear the halt on ENVIRONMENT after manual repair."""
    try:
        controller = _build_controller(ctx)
        controller.acknowledge(environment)
    except PromoterError as e:
        console.print(f"❌ {e}", style="bold red")
        sys.exit(1)

    console.print(f"✅ {environment} accepts automated releases again", style="green")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
