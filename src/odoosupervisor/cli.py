import logging
import os
import signal

import click
from rich.console import Console
from rich.logging import RichHandler

from . import runtime
from .constants import DEFAULT_SETTINGS_FILE
from .errors import FatalStartupError, SupervisorError, UpgradeInterrupted
from .errors_catalog import actionable_error
from .models import UpgradeStatus
from .services.config_generator import parse_config_file
from .services.config_loader import ConfigLoader
from .settings import SupervisorSettings

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_level=True,
            show_path=False,
        )
    ],
)

logger = logging.getLogger("odoosupervisor")


def _load_settings(config_path) -> SupervisorSettings:
    resolved_config = config_path
    if resolved_config is None and os.path.exists(DEFAULT_SETTINGS_FILE):
        resolved_config = DEFAULT_SETTINGS_FILE

    try:
        config_values = ConfigLoader().load(resolved_config)
        return SupervisorSettings.from_sources(os.environ, config_values)
    except SupervisorError as exc:
        raise click.ClickException(str(exc)) from exc


def _raise_interrupted(signum, _frame):
    raise UpgradeInterrupted(f"Upgrade interrupted by signal {signum}.")


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML settings file. Defaults to {DEFAULT_SETTINGS_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Lifecycle supervisor for an Odoo container."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def start(ctx, args):
    """Run the startup phases, then launch Odoo or ARGS."""
    settings = _load_settings(ctx.obj.get("config"))
    supervisor = runtime.build_supervisor(settings)

    try:
        exit_code = supervisor.run(args)
    except FatalStartupError as exc:
        logger.error(str(exc))
        raise SystemExit(1) from exc

    raise SystemExit(exit_code)


@main.command()
@click.pass_context
def healthcheck(ctx):
    """Print the container health token; exit 0 when healthy."""
    settings = _load_settings(ctx.obj.get("config"))
    status, exit_code = runtime.build_health_reporter(settings).check()
    click.echo(status)
    raise SystemExit(exit_code)


@main.command()
@click.option("-d", "--database", required=False, help="Upgrade a specific database (default: all).")
@click.option(
    "--check",
    "dry_run",
    is_flag=True,
    default=False,
    help="Dry-run: list what needs upgrading, don't execute.",
)
@click.pass_context
def upgrade(ctx, database, dry_run):
    """Pause Odoo, upgrade modules database by database, then resume Odoo."""
    settings = _load_settings(ctx.obj.get("config"))
    coordinator = runtime.build_upgrade_coordinator(settings)
    target = database or settings.odoo_db_name

    previous_handlers = {
        signum: signal.signal(signum, _raise_interrupted)
        for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)
    }
    try:
        run = coordinator.run(target_database=target, dry_run=dry_run)
    except SupervisorError as exc:
        logger.error(str(exc))
        raise SystemExit(1) from exc
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    raise SystemExit(0 if run.overall_status == UpgradeStatus.OK else 1)


@main.command("addons-path")
@click.pass_context
def addons_path(ctx):
    """Print each configured addons path on its own line."""
    settings = _load_settings(ctx.obj.get("config"))
    conf_path = settings.erp_conf_path

    if not os.path.exists(conf_path):
        click.echo(actionable_error("config_not_found", path=conf_path), err=True)
        raise SystemExit(1)

    value = parse_config_file(conf_path).get("addons_path")
    if not value:
        click.echo(actionable_error("addons_path_missing", path=conf_path), err=True)
        raise SystemExit(1)

    for entry in value.split(","):
        if entry.strip():
            click.echo(entry.strip())


if __name__ == "__main__":
    main()
