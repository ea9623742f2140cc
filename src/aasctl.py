#!/usr/bin/env python3
"""
CLI tool for Analysis Services servers
Applies server manifests against Resource Manager and keeps the computed
fields in a local state file between runs
"""

import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

import click
import yaml
from tabulate import tabulate

from config import get_config
from plugins.reconcilers.analysis_services import (
    AnalysisServicesClient,
    ServerReconciler,
    ServerState,
)
from plugins.reconcilers.analysis_services.errors import AnalysisServicesError
from plugins.reconcilers.analysis_services.plugin import (
    PENDING_ID_OUTPUT,
    RESOURCE_TYPE_NAME,
)
from plugins.registry import get_registry, register_builtin_plugins
from validation import validate_server_config

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "aas.state.json"


class StateFile:
    """Local record of the last applied configuration and its outputs"""

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Dict[str, Any]:
        if not self.exists():
            return {"config": None, "outputs": {}}
        with open(self.path, "r") as f:
            data = json.load(f)
        data.setdefault("config", None)
        data.setdefault("outputs", {})
        return data

    def save(self, config: Optional[Dict[str, Any]], outputs: Dict[str, Any]) -> None:
        with open(self.path, "w") as f:
            json.dump({"config": config, "outputs": outputs}, f, indent=2)
            f.write("\n")

    def remove(self) -> None:
        if self.exists():
            os.remove(self.path)


def build_reconciler() -> ServerReconciler:
    """Build a reconciler from environment configuration"""
    config = get_config()
    return ServerReconciler(
        AnalysisServicesClient.from_config(config.azure),
        timeouts=config.timeouts,
        features=config.features,
    )


def load_manifest(filename: str) -> Dict[str, Any]:
    """
    Read a server configuration from a YAML/JSON file.

    The file holds either the configuration itself or a resource document
    with ``kind`` and ``spec`` keys.
    """
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    logger.debug(f"Loaded manifest {filename}")
    if not isinstance(data, dict):
        raise click.ClickException(f"{filename} does not contain an object")

    if "kind" not in data:
        return data

    register_builtin_plugins()
    if not get_registry().has_reconciler_for_resource_type(data["kind"]):
        raise click.ClickException(f"Unsupported resource kind: {data['kind']}")
    if data["kind"] != RESOURCE_TYPE_NAME:
        raise click.ClickException(
            f"{data['kind']} is not handled by this tool; "
            f"expected {RESOURCE_TYPE_NAME}"
        )
    return data.get("spec") or {}


def fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def run(coro):
    """Run a reconciler coroutine, reporting its errors"""
    try:
        return asyncio.run(coro)
    except AnalysisServicesError as e:
        fail(e.message)


@click.group()
@click.option(
    "--state",
    "state_path",
    default=DEFAULT_STATE_FILE,
    show_default=True,
    help="State file recording the managed server",
)
@click.option(
    "--prevent-import/--allow-import",
    default=None,
    help="Fail when creating a server that already exists "
    "(default: AAS_PREVENT_ACCIDENTAL_IMPORT)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, state_path, prevent_import, verbose):
    """Analysis Services CLI - declarative management of Analysis Services servers"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.obj = {
        "state": StateFile(state_path),
        "prevent_import": prevent_import,
    }


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
def validate(filename):
    """Validate a server manifest without contacting Azure"""
    spec = load_manifest(filename)
    is_valid, error = validate_server_config(spec)
    if not is_valid:
        fail(f"Invalid Analysis Services Server configuration: {error}")
    click.echo(f"{filename} is valid")


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_context
def apply(ctx, filename):
    """Create, update or replace the server described by a manifest"""
    state_file: StateFile = ctx.obj["state"]
    spec = load_manifest(filename)
    saved = state_file.load()
    outputs = saved["outputs"]

    try:
        desired = ServerState.from_config(spec).with_outputs(outputs)
    except AnalysisServicesError as e:
        fail(e.message)

    config = get_config()
    timeouts = config.timeouts.with_overrides(spec.get("timeouts"))
    previous = saved["config"]

    async def record_pending(expected_id: str) -> None:
        state_file.save(previous, {**outputs, PENDING_ID_OUTPUT: expected_id})

    result = run(
        build_reconciler().apply(
            desired,
            pending_id=outputs.get(PENDING_ID_OUTPUT),
            force_update=previous is not None and previous != spec,
            prevent_import=ctx.obj["prevent_import"],
            timeouts=timeouts,
            before_create=record_pending,
        )
    )

    state_file.save(spec, result.state.to_outputs())
    click.echo(result.message)
    if result.drifted:
        click.echo(f"Drifted: {', '.join(result.drifted)}")
    click.echo(f"Server: {result.state.server_full_name}")


@cli.command()
@click.pass_context
def refresh(ctx):
    """Refresh the recorded outputs from Azure"""
    state_file: StateFile = ctx.obj["state"]
    saved = state_file.load()
    if not saved["config"] or not saved["outputs"].get("id"):
        fail(f"No server recorded in {state_file.path}")

    spec = saved["config"]
    try:
        desired = ServerState.from_config(spec).with_outputs(saved["outputs"])
    except AnalysisServicesError as e:
        fail(e.message)
    timeouts = get_config().timeouts.with_overrides(spec.get("timeouts"))
    current = run(build_reconciler().read(desired, timeouts=timeouts))

    if not current.exists:
        state_file.save(spec, {})
        click.echo("Server no longer exists; it will be created on the next apply")
        return

    state_file.save(spec, current.to_outputs())
    drifted = desired.drift_from(current)
    if drifted:
        click.echo(f"Drifted: {', '.join(drifted)}")
    else:
        click.echo("No drift")


@cli.command()
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_context
def show(ctx, output):
    """Show the recorded server"""
    state_file: StateFile = ctx.obj["state"]
    if not state_file.exists():
        click.echo("No server recorded")
        return

    saved = state_file.load()
    if output == "json":
        click.echo(json.dumps(saved, indent=2))
    elif output == "yaml":
        click.echo(yaml.dump(saved, default_flow_style=False))
    else:
        rows = []
        for key, value in (saved["config"] or {}).items():
            if key == "backup_blob_container_uri":
                value = "(sensitive)"
            elif isinstance(value, (list, dict)):
                value = json.dumps(value)
            rows.append([key, value])
        for key, value in saved["outputs"].items():
            rows.append([key, value])
        click.echo(tabulate(rows, headers=["Field", "Value"], tablefmt="grid"))


@cli.command()
@click.confirmation_option(prompt="Are you sure you want to delete this server?")
@click.pass_context
def destroy(ctx):
    """Delete the recorded server and forget it"""
    state_file: StateFile = ctx.obj["state"]
    saved = state_file.load()
    outputs = saved["outputs"]
    server_id = outputs.get("id") or outputs.get(PENDING_ID_OUTPUT)

    if not server_id:
        state_file.remove()
        click.echo("No server to delete")
        return

    spec = saved["config"] or {}
    timeouts = get_config().timeouts.with_overrides(spec.get("timeouts"))
    try:
        state = ServerState.for_resource_id(server_id)
    except AnalysisServicesError as e:
        fail(e.message)

    run(build_reconciler().delete(state, timeouts=timeouts))
    state_file.remove()
    click.echo(f"Deleted {server_id}")


@cli.command(name="import")
@click.argument("resource_id")
@click.option(
    "--backup-blob-container-uri",
    default=None,
    help="Backup container URI of the server, which Azure never returns",
)
@click.pass_context
def import_server(ctx, resource_id, backup_blob_container_uri):
    """Bring an existing server under management"""
    state_file: StateFile = ctx.obj["state"]
    if state_file.load()["outputs"].get("id"):
        fail(f"{state_file.path} already records a server")

    state = run(
        build_reconciler().import_resource(
            resource_id, backup_blob_container_uri=backup_blob_container_uri
        )
    )
    state_file.save(state.to_config(), state.to_outputs())
    click.echo(f"Imported {state.resource_id}")
    click.echo(f"Server: {state.server_full_name}")


if __name__ == "__main__":
    cli()
