"""CLI entry point for CorpPass."""

from __future__ import annotations

from pathlib import Path

import click

from corppass import __version__
from corppass.cli import check as check_commands
from corppass.cli import config as config_commands
from corppass.cli.config import error_result, get_config, json_option, output_result
from corppass.core.exceptions import CorpPassError
from corppass.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="corppass")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.yaml (default: ~/.corppass/config.yaml)",
)
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default=None,
    help="Enable logging at this level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """CorpPass - SAML artifact single sign-on for service providers."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if log_level:
        configure_logging(log_level, trace_enabled=log_level.upper() == "TRACE")


@cli.command("sso-url")
@json_option
@click.pass_context
def sso_url(ctx: click.Context, output_json: bool) -> None:
    """Print the IdP-initiated login URL."""
    from corppass.core.saml.provider import CorpPassProvider

    cfg = get_config(ctx)
    try:
        url = CorpPassProvider(cfg).sso_idp_initiated_url()
    except CorpPassError as e:
        error_result(str(e), output_json)

    if output_json:
        output_result({"url": url}, as_json=True)
    else:
        click.echo(url)


@cli.command("test-connection")
@click.pass_context
def test_connection(ctx: click.Context) -> None:
    """Resolve a dummy artifact against the IdP.

    A reachable, correctly configured IdP answers with an
    ArtifactResolutionFailure carrying no XML.
    """
    from corppass.core.saml.authenticator import ArtifactAuthenticator

    cfg = get_config(ctx)
    try:
        message = ArtifactAuthenticator(cfg).test_authentication()
    except CorpPassError as e:
        raise click.ClickException(str(e)) from e
    click.echo(message)


cli.add_command(check_commands.check)
cli.add_command(config_commands.config)
