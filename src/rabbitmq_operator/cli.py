"""RabbitMQ Operator CLI (rmqo).

Applies declaration files to a broker and keeps a YAML file of observed
state between runs.

Usage:
    rmqo apply broker.yaml            # Converge the broker to a declaration file
    rmqo refresh                      # Re-read every tracked object
    rmqo import permissions svc@staging
    rmqo destroy exchange events@staging
    rmqo show                         # Print tracked state
    rmqo list exchange --vhost staging

Broker connection settings come from RABBITMQ_* environment variables.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
import yaml

from .config import Config, ConfigurationError
from .declarations import DeclarationLoadError, load_declarations
from .driver import DriverResult, Outcome, ReconcileDriver
from .errors import ReconcileError
from .gateway import BrokerGateway
from .inventory import list_import_tokens
from .log import setup_logging
from .models import ResourceKind, get_kind
from .state import DEFAULT_STATE_FILE, StateLoadError, YamlStateFile

logger = logging.getLogger(__name__)

OUTCOME_COLORS = {
    Outcome.CREATED: "green",
    Outcome.UPDATED: "yellow",
    Outcome.REPLACED: "magenta",
    Outcome.DELETED: "red",
    Outcome.ABSENT: "red",
    Outcome.IMPORTED: "green",
}


def _kind(
    _ctx: click.Context, _param: click.Parameter, value: str | None
) -> ResourceKind | None:
    if value is None:
        return None
    try:
        return get_kind(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _echo_result(result: DriverResult) -> None:
    line = f"{result.outcome.value:<10} {result.kind.value} {result.identifier}"
    if result.changed_fields:
        line += f" ({', '.join(result.changed_fields)})"
    click.secho(line, fg=OUTCOME_COLORS.get(result.outcome))


def _load_config(verbose: bool) -> Config:
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    setup_logging("DEBUG" if verbose else config.log_level, config.enable_json_logging)
    return config


def _open_state(path: Path) -> YamlStateFile:
    try:
        return YamlStateFile(path)
    except StateLoadError as e:
        raise click.ClickException(str(e)) from e


@contextmanager
def broker_session(ctx: click.Context) -> Iterator[tuple[BrokerGateway, ReconcileDriver]]:
    """Open a gateway and a driver over the state file, translating errors."""
    config = _load_config(ctx.obj["verbose"])
    sink = _open_state(ctx.obj["state_file"])
    with BrokerGateway.from_config(config) as gateway:
        try:
            yield gateway, ReconcileDriver.for_gateway(gateway, sink)
        except ReconcileError as e:
            logger.error("Reconcile failed", extra=e.context)
            raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="rmqo")
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="STATE_FILE",
    default=DEFAULT_STATE_FILE,
    show_default=True,
    help="YAML file holding observed state",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, state_file: Path, verbose: bool) -> None:
    """RabbitMQ Operator CLI.

    Reconcile users, vhosts, permissions, topic permissions and exchanges
    on a RabbitMQ broker through its management API.

    KIND is one of user, vhost, permissions, topic_permissions or exchange;
    dashes may be used in place of underscores.
    """
    ctx.ensure_object(dict)
    ctx.obj["state_file"] = state_file
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def apply(ctx: click.Context, file: Path) -> None:
    """Converge the broker to a declaration FILE."""
    try:
        declarations = load_declarations(file)
    except DeclarationLoadError as e:
        raise click.ClickException(str(e)) from e

    with broker_session(ctx) as (_, driver):
        results = [driver.converge(desired) for desired in declarations]

    for result in results:
        _echo_result(result)
    changed = sum(1 for r in results if r.outcome is not Outcome.UNCHANGED)
    click.echo(f"{len(results)} objects, {changed} changed")


@cli.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Re-read every tracked object and drop the ones gone from the broker."""
    with broker_session(ctx) as (_, driver):
        results = driver.refresh_all()
    for result in results:
        _echo_result(result)


@cli.command("import")
@click.argument("kind", metavar="KIND", callback=_kind)
@click.argument("token")
@click.pass_context
def import_(ctx: click.Context, kind: ResourceKind, token: str) -> None:
    """Start tracking an existing broker object.

    TOKEN is the object's name for users and vhosts, name@vhost for
    exchanges, user@vhost for permissions and user@vhost@exchange for
    topic permissions.
    """
    with broker_session(ctx) as (_, driver):
        result = driver.import_(kind, token)
    _echo_result(result)


@cli.command()
@click.argument("kind", metavar="KIND", callback=_kind)
@click.argument("identifier")
@click.pass_context
def destroy(ctx: click.Context, kind: ResourceKind, identifier: str) -> None:
    """Delete an object from the broker and stop tracking it."""
    with broker_session(ctx) as (_, driver):
        result = driver.delete(kind, identifier)
    _echo_result(result)


@cli.command()
@click.option("--kind", metavar="KIND", callback=_kind, help="Only this kind")
@click.pass_context
def show(ctx: click.Context, kind: ResourceKind | None) -> None:
    """Print tracked state as YAML."""
    sink = _open_state(ctx.obj["state_file"])
    document: dict[str, dict[str, object]] = {}
    for item_kind, identifier, attributes in sink.items(kind):
        document.setdefault(item_kind.value, {})[identifier] = attributes
    click.echo(yaml.safe_dump(document, sort_keys=True), nl=False)


@cli.command("list")
@click.argument("kind", metavar="KIND", callback=_kind)
@click.option("--vhost", help="Only objects in this vhost")
@click.option("--user", help="Only grants of this user")
@click.pass_context
def list_(ctx: click.Context, kind: ResourceKind, vhost: str | None, user: str | None) -> None:
    """Print import tokens of objects that exist on the broker."""
    with broker_session(ctx) as (gateway, _):
        tokens = list_import_tokens(gateway, kind, vhost=vhost, user=user)
    for token in tokens:
        click.echo(token)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
