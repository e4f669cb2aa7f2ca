import traceback
from pathlib import Path

import click

from sambright_access.utils.config_access import ConfigError, dump_example_config, load_access_config
from sambright_access.utils.logging import get_logger, setup_cli_logging
from sambright_access.utils.rbac.permissions import can_access, get_permitted_resources, normalize_resource_path
from sambright_access.utils.rbac.registry import get_registry


@click.group()
def cli():
    pass


@click.command()
@click.option('--role', '-r', 'role_filter', type=str, help="Only show this role")
def policy(role_filter: str):
    """Print the role policy table."""
    registry = get_registry()
    roles = registry.roles
    if role_filter:
        if not registry.is_valid_role(role_filter):
            raise click.ClickException(f"Unknown role: {role_filter}")
        roles = [r for r in roles if r.value == role_filter]

    for role in roles:
        info = registry.get_role_info(role)
        resources = [r.value for r in get_permitted_resources(role)]
        click.echo(f"{role.value:18} {info['label']}")
        click.echo(f"  {info['description']}")
        click.echo(f"  resources: {', '.join(resources) if resources else '(none)'}")
        click.echo()


@click.command()
@click.argument('role')
@click.argument('path')
@click.option('--verbosity', '-v', type=int, default=1, help="Logging verbosity level (0-4)")
def check(role: str, path: str, verbosity: int):
    """Check whether ROLE may open PATH. Exits 0 when allowed, 1 when denied."""
    setup_cli_logging(verbosity=verbosity)
    resource = normalize_resource_path(path)
    allowed = can_access(role, path)
    click.echo(f"{role} -> {resource}: {'allowed' if allowed else 'denied'}")
    if not allowed:
        roles = get_registry().get_roles_with_resource(resource)
        if roles:
            click.echo(f"Available to: {get_registry().get_role_descriptions(roles)}")
    raise SystemExit(0 if allowed else 1)


@click.command()
@click.option('--output', '-o', type=click.Path(dir_okay=False), default='configs/access.yaml', help="Where to write the config")
@click.option('--force', '-f', is_flag=True, help="Overwrite an existing file")
def init_config(output: str, force: bool):
    """Write an example access configuration."""
    path = Path(output)
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists; use --force to overwrite")
    dump_example_config(path)
    click.echo(f"Wrote example configuration to {path}")


@click.command()
@click.option('--config', '-c', 'config_file', type=str, help="Path to access .yaml configuration")
@click.option('--host', type=str, default='0.0.0.0', help="Interface to bind")
@click.option('--port', type=int, default=7861, help="Port to listen on")
@click.option('--debug', is_flag=True, help="Run Flask in debug mode")
@click.option('--verbosity', '-v', type=int, default=3, help="Logging verbosity level (0-4)")
def serve(config_file: str, host: str, port: int, debug: bool, verbosity: int):
    """Run the web application."""
    setup_cli_logging(verbosity=verbosity)
    logger = get_logger(__name__)

    try:
        config = load_access_config(config_file)
    except ConfigError as e:
        raise click.ClickException(str(e))

    from sambright_access.interfaces.web_app.app import create_app
    from sambright_access.utils.rbac.decorators import EXTENSION_KEY

    app = None
    try:
        app = create_app(config)
        logger.info(f"Starting web app on {host}:{port}")
        app.run(host=host, port=port, debug=debug)
    except Exception as e:
        if verbosity >= 4:
            traceback.print_exc()
        raise click.ClickException(f"Failed due to the following exception: {e}")
    finally:
        if app is not None:
            app.extensions[EXTENSION_KEY].close()


cli.add_command(policy)
cli.add_command(check)
cli.add_command(init_config)
cli.add_command(serve)


def main():
    """
    Entrypoint for the sambright-access cli tool implemented using Click.
    """
    cli()
