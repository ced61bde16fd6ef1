"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from corppass.core.config import (
    DEFAULT_CONFIG_FILE,
    CorpPassConfig,
    get_default_config_yaml,
    load_config,
)
from corppass.core.exceptions import ConfigurationError

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or formatted text.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        if isinstance(value, list):
            click.echo(f"{key}:")
            for item in value:
                click.echo(f"  - {item}")
        else:
            click.echo(f"{key}: {value}")


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


def get_config(ctx: click.Context) -> CorpPassConfig:
    """Load the configuration selected by the global ``--config`` option."""
    obj = ctx.find_root().obj or {}
    try:
        return load_config(obj.get("config_path"))
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
def config() -> None:
    """Manage CorpPass configuration."""
    pass


@config.command("show")
@json_option
@click.pass_context
def config_show(ctx: click.Context, output_json: bool) -> None:
    """Show the effective configuration (file + environment)."""
    cfg = get_config(ctx)
    data = cfg.to_dict()
    data["config_path"] = str(cfg.config_path) if cfg.config_path else None
    output_result(data, as_json=output_json)


@config.command("init")
@click.option(
    "--path",
    "path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Where to write the config file (default: {DEFAULT_CONFIG_FILE})",
)
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
@json_option
def config_init(path: Path | None, force: bool, output_json: bool) -> None:
    """Write an example configuration file.

    Examples:

        # Write ~/.corppass/config.yaml
        corppass config init

        # Write somewhere else
        corppass config init --path ./corppass.yaml
    """
    target = path or DEFAULT_CONFIG_FILE
    if target.exists() and not force:
        error_result(f"{target} already exists. Use --force to overwrite.", output_json)

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(get_default_config_yaml())

    if output_json:
        output_result({"status": "initialized", "config_file": str(target)}, as_json=True)
    else:
        click.echo(f"Configuration written to: {target}")
        click.echo("Edit the SP/IdP entity IDs and URLs before use.")
