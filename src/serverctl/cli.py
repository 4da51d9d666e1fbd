"""Server reconciliation CLI (serverctl).

A thin host around the orchestrator that keeps the server id and
last-applied spec in a local JSON state file.

Usage:
    serverctl apply server.yaml             # Create or reconcile a server
    serverctl show                          # Print observed state
    serverctl destroy                       # Delete the server
    serverctl sessions list 12345           # List BGP sessions
    serverctl sessions create 12345 --group-id 42
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import click

from .config import Config, ConfigurationError
from .gateway import GatewayError, NotFoundError
from .main import build_orchestrator, setup_logging
from .models import SpecValidationError
from .orchestrator import Orchestrator, PartialFailureError
from .peering import summarize_peers
from .poller import JobFailedError, PollTimeoutError
from .resolver import ResolutionError
from .spec_loader import HostState, SpecLoadError, load_spec, load_state, save_state

DEFAULT_STATE_FILE = "serverctl.state.json"

# Errors reported to the user as a single message instead of a traceback
_USER_ERRORS = (
    ConfigurationError,
    SpecLoadError,
    SpecValidationError,
    ResolutionError,
    GatewayError,
    PollTimeoutError,
    JobFailedError,
    PartialFailureError,
)

state_option = click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STATE_FILE,
    show_default=True,
    help="Host state file",
)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


def _orchestrator(ctx: click.Context) -> Orchestrator:
    try:
        return build_orchestrator(ctx.obj)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="serverctl")
@click.option("--api-key", envvar="NETACTUATE_API_KEY", help="NetActuate API key")
@click.option("--api-url", envvar="NETACTUATE_API_URL", help="NetActuate API base URL")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, api_key: str | None, api_url: str | None, verbose: bool) -> None:
    """Server reconciliation CLI (serverctl).

    Drives a NetActuate server and its BGP sessions to a desired state.

    \b
    Quick Start:
        export NETACTUATE_API_KEY=...
        serverctl apply server.yaml
        serverctl show
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    try:
        config = Config.from_env()
        overrides = {"api_key": api_key, "api_url": api_url}
        ctx.obj = replace(config, **{k: v for k, v in overrides.items() if v})
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


# =============================================================================
# Server Commands
# =============================================================================


@cli.command()
@click.argument("spec_file", type=click.Path(dir_okay=False, path_type=Path))
@state_option
@click.pass_context
def apply(ctx: click.Context, spec_file: Path, state_path: Path) -> None:
    """Create the server in SPEC_FILE, or drive it to SPEC_FILE."""
    try:
        desired = load_spec(spec_file)
        state = load_state(state_path)
    except (SpecLoadError, SpecValidationError) as e:
        raise click.ClickException(str(e)) from e

    orchestrator = _orchestrator(ctx)

    if state.resource_id is None:
        try:
            resource_id, observed = asyncio.run(orchestrator.create(desired))
        except (GatewayError, PollTimeoutError) as e:
            # The server may exist even though it never became ready
            if e.resource_id is not None:
                save_state(state_path, HostState(resource_id=e.resource_id))
            raise click.ClickException(str(e)) from e
        except _USER_ERRORS as e:
            raise click.ClickException(str(e)) from e
        click.secho(f"✓ Created server {resource_id}", fg="green")
    else:
        if state.spec is None:
            raise click.ClickException(
                f"Server {state.resource_id} was created but never finished provisioning. "
                "Inspect it with 'serverctl show' or remove it with 'serverctl destroy'."
            )
        resource_id = state.resource_id
        try:
            observed = asyncio.run(orchestrator.update(resource_id, state.spec, desired))
        except _USER_ERRORS as e:
            raise click.ClickException(str(e)) from e
        click.secho(f"✓ Server {resource_id} reconciled", fg="green")

    save_state(
        state_path,
        HostState(resource_id=resource_id, spec=desired, observed=observed.to_dict()),
    )
    _echo_json(observed.to_dict())


@cli.command()
@state_option
@click.pass_context
def show(ctx: click.Context, state_path: Path) -> None:
    """Print the observed state of the server in the state file, with its BGP peers."""
    try:
        state = load_state(state_path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e
    if state.resource_id is None:
        raise click.ClickException(f"No server recorded in {state_path}")

    orchestrator = _orchestrator(ctx)
    try:
        observed = orchestrator.read(state.resource_id)
        sessions = orchestrator.peering.read(state.resource_id)
    except NotFoundError as e:
        raise click.ClickException(
            f"Server {state.resource_id} no longer exists; run 'serverctl apply' to recreate it"
        ) from e
    except GatewayError as e:
        raise click.ClickException(str(e)) from e
    _echo_json({**observed.to_dict(), "bgp_peers": summarize_peers(sessions)})


@cli.command()
@state_option
@click.pass_context
def destroy(ctx: click.Context, state_path: Path) -> None:
    """Delete the server in the state file, cancelling its billing."""
    try:
        state = load_state(state_path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e
    if state.resource_id is None:
        click.echo(f"No server recorded in {state_path}; nothing to do")
        return

    try:
        asyncio.run(_orchestrator(ctx).delete(state.resource_id))
    except _USER_ERRORS as e:
        raise click.ClickException(str(e)) from e

    state_path.unlink(missing_ok=True)
    click.secho(f"✓ Server {state.resource_id} deleted", fg="green")


# =============================================================================
# BGP Session Commands
# =============================================================================


@cli.group()
def sessions() -> None:
    """BGP peering sessions of a server."""
    pass


@sessions.command("list")
@click.argument("resource_id", type=int)
@click.pass_context
def sessions_list(ctx: click.Context, resource_id: int) -> None:
    """List the BGP sessions of RESOURCE_ID."""
    try:
        found = _orchestrator(ctx).peering.read(resource_id)
    except GatewayError as e:
        raise click.ClickException(str(e)) from e
    _echo_json([session.to_dict() for session in found])


@sessions.command("create")
@click.argument("resource_id", type=int)
@click.option("--group-id", type=int, required=True, help="BGP group id")
@click.option("--ipv6/--no-ipv6", default=True, show_default=True, help="Also create IPv6 sessions")
@click.option("--redundant", is_flag=True, help="Create redundant sessions")
@click.pass_context
def sessions_create(
    ctx: click.Context, resource_id: int, group_id: int, ipv6: bool, redundant: bool
) -> None:
    """Create the sessions of a BGP group on RESOURCE_ID."""
    try:
        session = _orchestrator(ctx).peering.create(resource_id, group_id, ipv6, redundant)
    except GatewayError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(session.to_dict())


@sessions.command("delete")
@click.argument("resource_id", type=int)
@click.pass_context
def sessions_delete(ctx: click.Context, resource_id: int) -> None:
    """Delete every BGP session of RESOURCE_ID and wait until they are gone."""
    try:
        asyncio.run(_orchestrator(ctx).peering.delete(resource_id))
    except (GatewayError, PollTimeoutError) as e:
        raise click.ClickException(str(e)) from e
    click.secho(f"✓ BGP sessions of server {resource_id} deleted", fg="green")


if __name__ == "__main__":
    cli()
