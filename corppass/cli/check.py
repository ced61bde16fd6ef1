"""Offline validation of CorpPass messages."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from corppass.cli.config import error_result, get_config, json_option, output_result
from corppass.core.auth_access import AuthAccess
from corppass.core.saml.protocol import SamlError, SamlResponse, load_decryption_key
from corppass.core.saml.response import CorpPassResponse

_file_argument = click.argument(
    "file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)


@click.group()
def check() -> None:
    """Validate saved AuthAccess payloads and SAML responses."""
    pass


@check.command("payload")
@_file_argument
@json_option
def check_payload(file: Path, output_json: bool) -> None:
    """Validate an AuthAccess XML document."""
    payload = AuthAccess(file.read_bytes())
    valid = payload.validate()

    result = {
        "valid": valid,
        "user_id": payload.user_id,
        "entity_id": payload.entity_id,
        "entity_status": payload.entity_status,
        "errors": payload.errors,
    }
    if valid and payload.eservice_result is not None:
        result["eservice_id"] = payload.eservice_result.eservice_id
        result["roles"] = [row.role for row in payload.eservice_result.auth_result_set]

    output_result(result, as_json=output_json)
    if not valid:
        sys.exit(1)


@check.command("response")
@_file_argument
@json_option
@click.pass_context
def check_response(ctx: click.Context, file: Path, output_json: bool) -> None:
    """Validate a SAML Response against the configured SP and IdP.

    Encrypted assertions are decrypted with the configured decryption key.
    """
    cfg = get_config(ctx)
    try:
        key = load_decryption_key(cfg.decryption_key_path) if cfg.decryption_key_path else None
        response = CorpPassResponse(SamlResponse.parse(file.read_bytes()), cfg, decryption_key=key)
    except SamlError as e:
        error_result(f"{type(e).__name__}: {e}", output_json)

    output_result(
        {
            "valid": response.is_valid,
            "success": response.is_success,
            "name_id": response.name_id,
            "entitlement": str(response.entitlement_kind),
            "errors": response.errors,
        },
        as_json=output_json,
    )
    if not response.is_valid:
        sys.exit(1)
