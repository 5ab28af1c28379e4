"""
Command Line Interface for svcenv.
"""
import logging
import os
import time
from typing import Mapping, Optional, Sequence

import click

from ..CATALOG.builtin_services import builtin_config
from ..MANAGERS.lifecycle_controller import LifecycleController
from ..MODELS.settings import ControllerSettings, SelectionPolicy
from ..PARSERS.services_parser import ServicesParser
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..exceptions import SvcEnvError

logger = logging.getLogger(__name__)


def _settings(ctx, services: Sequence[str]) -> ControllerSettings:
    overrides = {}
    if services:
        overrides = {"policy": SelectionPolicy.OPT_IN, "enabled": list(services)}
    try:
        return ControllerSettings.from_environ(defaults=ctx.obj['settings'], **overrides)
    except ValueError as e:
        raise click.ClickException(f"Invalid settings: {e}")


def _write_properties(path: str, properties: Mapping[str, str]):
    with open(path, 'w') as f:
        for key, value in properties.items():
            f.write(f"{key}={value}\n")


def _print_run(controller: LifecycleController, properties_file: Optional[str]):
    click.echo(f"{'SERVICE':20} {'ADDRESS':40} {'SOURCE':10}")
    click.echo("-" * 70)
    for name in controller.registry:
        endpoint = controller.registry.get(name)
        source = "remote" if endpoint.remote else "container"
        click.echo(f"{name:20} {endpoint.address:40} {source:10}")

    properties = controller.properties()
    if properties:
        click.echo("")
        for key, value in properties.items():
            click.echo(f"{key}={value}")
    if properties_file:
        _write_properties(properties_file, properties)
        click.echo(f"Properties written to {properties_file}")


@click.group()
@click.option('--file', '-f', default='services.yml', help='Services file path')
@click.option('--verbose', '-v', is_flag=True, help='Log debug output')
@click.pass_context
def cli(ctx, file, verbose):
    """
    svcenv - backing services for integration tests.

    Starts the containers a test run needs, waits until they are ready and
    publishes their endpoints. Without a services file the built-in catalog is used.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    try:
        if os.path.exists(file):
            parser = ServicesParser()
            ctx.obj['config'] = parser.parse(file)
            ctx.obj['settings'] = parser.parse_settings(file)
        else:
            logger.debug("%s not found, using the built-in catalog", file)
            ctx.obj['config'] = builtin_config()
            ctx.obj['settings'] = {"policy": SelectionPolicy.OPT_IN}
    except SvcEnvError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.pass_context
def catalog(ctx):
    """List the declared services."""
    config = ctx.obj['config']
    click.echo(f"{'SERVICE':20} {'IMAGE':65} {'DEPENDS ON':20}")
    click.echo("-" * 105)
    for name, descriptor in config.services.items():
        click.echo(f"{name:20} {descriptor.image:65} {', '.join(descriptor.depends_on):20}")


@cli.command()
@click.argument('services', nargs=-1)
@click.pass_context
def plan(ctx, services):
    """Show the start order for SERVICES without starting anything."""
    settings = _settings(ctx, services)
    selection = None if settings.policy == SelectionPolicy.STATIC else settings.enabled
    if selection is not None and not selection:
        click.echo("No services enabled.")
        return
    try:
        run_plan = DependencyResolver().build_plan(ctx.obj['config'], selection)
    except SvcEnvError as e:
        raise click.ClickException(str(e))
    for i, descriptor in enumerate(run_plan, 1):
        after = f" (after {', '.join(descriptor.depends_on)})" if descriptor.depends_on else ""
        click.echo(f"{i}. {descriptor.name}{after}")


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--properties-file', '-o', help='Write the rendered properties to this file')
@click.pass_context
def up(ctx, services, properties_file):
    """Start SERVICES and keep them running until Ctrl+C."""
    controller = LifecycleController(ctx.obj['config'], _settings(ctx, services))
    try:
        controller.setup()
        _print_run(controller, properties_file)
        click.echo("Running... Press Ctrl+C to stop.")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping services...")
    except SvcEnvError as e:
        raise click.ClickException(str(e))
    finally:
        controller.teardown()


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--properties-file', '-o', help='Write the rendered properties to this file')
@click.pass_context
def check(ctx, services, properties_file):
    """Start SERVICES, report their endpoints and tear everything down."""
    try:
        with LifecycleController(ctx.obj['config'], _settings(ctx, services)) as controller:
            _print_run(controller, properties_file)
            status = controller.ps()
    except SvcEnvError as e:
        raise click.ClickException(str(e))
    click.echo("")
    click.echo(f"{'SERVICE':20} {'STATUS':10}")
    click.echo("-" * 30)
    for name, state in status.items():
        click.echo(f"{name:20} {state:10}")
    if controller.teardown_errors:
        raise click.ClickException(f"Teardown finished with {len(controller.teardown_errors)} error(s)")
    click.echo("All services ready; torn down.")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
