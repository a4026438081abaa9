#!/usr/bin/env python3
"""
CLI tool for the Emitter Operator
Runs the operator and provides a kubectl-like view of Emitters
"""

import asyncio
import json
import sys

import click
import yaml
from tabulate import tabulate

from config import get_config
from errors import OperatorError, ignore_not_found
from manifest import ManifestLoader
from models import ObjectKey, paired_deployment_name
from reconciler import EmitterReconciler, render_deployment
from store import create_store


def _get_store():
    return create_store(get_config().kubernetes)


async def _paired_status(store, emitter):
    """Describe whether an Emitter's paired deployment exists."""
    if not emitter.spec.pair_name:
        return "-", "-"
    try:
        await store.get_deployment(emitter.namespace, emitter.deployment_name)
    except Exception as e:
        if ignore_not_found(e):
            raise
        return emitter.deployment_name, "missing"
    return emitter.deployment_name, "present"


async def _collect(store, namespace):
    rows = []
    for emitter in await store.list_emitters(namespace):
        deployment, state = await _paired_status(store, emitter)
        rows.append(
            {
                "namespace": emitter.namespace,
                "name": emitter.name,
                "pairName": emitter.spec.pair_name,
                "createPair": emitter.spec.create_pair,
                "deployment": deployment,
                "deploymentState": state,
            }
        )
    return rows


@click.group()
def cli():
    """Emitter Operator CLI - pairs Emitter resources with deployments"""
    pass


@cli.command()
def run():
    """Run the operator until interrupted"""
    from main import main

    asyncio.run(main())


@cli.command()
@click.argument("namespace")
@click.argument("name")
def reconcile(namespace, name):
    """Reconcile a single Emitter once"""
    config = get_config()
    reconciler = EmitterReconciler(
        store=_get_store(),
        loader=ManifestLoader(config.controller.manifest_path),
    )

    result = asyncio.run(reconciler.reconcile(ObjectKey(namespace, name)))

    click.echo(f"Action: {result.action}")
    click.echo(f"Message: {result.message}")
    if not result.success:
        click.echo(f"Error: {result.error_kind.value}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--namespace", "-n", default=None, help="Namespace (default: all)")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
def get(namespace, output):
    """List Emitters and their paired deployments"""
    rows = asyncio.run(_collect(_get_store(), namespace))

    if output == "json":
        click.echo(json.dumps(rows, indent=2))
    elif output == "yaml":
        click.echo(yaml.dump(rows, default_flow_style=False))
    elif not rows:
        click.echo("No emitters found")
    else:
        headers = ["Namespace", "Name", "Pair Name", "Create Pair", "Deployment", "State"]
        table = [
            [
                row["namespace"],
                row["name"],
                row["pairName"] or "-",
                "✓" if row["createPair"] else "✗",
                row["deployment"],
                row["deploymentState"],
            ]
            for row in rows
        ]
        click.echo(tabulate(table, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("name")
@click.argument("pair_name")
@click.option("--namespace", "-n", default="default")
@click.option("--manifest", "-f", default=None, help="Deployment template path")
def render(name, pair_name, namespace, manifest):
    """Print the deployment that would be created for an Emitter"""
    loader = ManifestLoader(manifest or get_config().controller.manifest_path)
    try:
        deployment = render_deployment(
            loader, ObjectKey(namespace, name), paired_deployment_name(pair_name)
        )
    except OperatorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(yaml.dump(deployment, default_flow_style=False))


if __name__ == "__main__":
    cli()
