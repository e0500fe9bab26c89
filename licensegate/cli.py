"""LicenseGate operator CLI.

Entry point for the ``licensegate`` console script:

- ``credentials``: derive the store token and signing key for a license key
- ``sign``: produce signed-request headers for a body (client debugging)
- ``admin-token``: mint an operator token for the admin API
- ``serve``: run the API with uvicorn
"""
from __future__ import annotations

import enum
import json
import logging
import time
from pathlib import Path

import typer

from licensegate.auth.credentials import hash_license_key, issue_credentials
from licensegate.auth.signatures import signed_headers
from licensegate.auth.tokens import AccessCodeError, generate_access_code, get_token_expiration
from licensegate.config import settings

logger = logging.getLogger(__name__)


class ExitCode(enum.IntEnum):
    SUCCESS = 0
    USER_ERROR = 1
    CONFIG_ERROR = 2


cli = typer.Typer(
    name="licensegate",
    help="LicenseGate: license entitlement enforcement service.",
    no_args_is_help=True,
)


@cli.command("credentials", help="Derive store credentials from a license key.")
def credentials_cmd(
    license_key: str = typer.Argument(..., help="Customer license key."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    try:
        creds = issue_credentials(license_key)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=ExitCode.USER_ERROR)

    if as_json:
        typer.echo(json.dumps({
            "store_token": creds.store_token,
            "store_secret": creds.signing_key,
            "license_key_hash": hash_license_key(license_key),
        }, indent=2))
        return
    typer.echo(f"store_token:      {creds.store_token}")
    typer.echo(f"store_secret:     {creds.signing_key}")
    typer.echo(f"license_key_hash: {hash_license_key(license_key)}")


@cli.command("sign", help="Print signed-request headers for a request body.")
def sign_cmd(
    store_token: str = typer.Option(..., "--token", help="Store token."),
    signing_key: str = typer.Option(..., "--secret", help="Store signing key (store_secret)."),
    body: str = typer.Option(None, "--body", help="Raw request body."),
    body_file: Path = typer.Option(
        None, "--body-file", exists=True, dir_okay=False, help="Read the body from a file."
    ),
    timestamp: int = typer.Option(None, "--timestamp", help="Unix time (defaults to now)."),
) -> None:
    if body is None and body_file is None:
        typer.echo("Error: one of --body or --body-file is required", err=True)
        raise typer.Exit(code=ExitCode.USER_ERROR)

    raw = body_file.read_bytes() if body_file is not None else body.encode()
    ts = timestamp if timestamp is not None else int(time.time())
    for name, value in signed_headers(signing_key, store_token, ts, raw).items():
        typer.echo(f"{name}: {value}")


@cli.command("admin-token", help="Generate an admin token for the operator API.")
def admin_token_cmd(
    operator: str = typer.Option(None, "--operator", help="Name recorded in the token."),
    hours: int = typer.Option(0, "--hours", help="Token validity in hours."),
    days: int = typer.Option(0, "--days", help="Token validity in days."),
    minutes: int = typer.Option(0, "--minutes", help="Token validity in minutes."),
) -> None:
    try:
        token = generate_access_code(
            operator=operator,
            duration_hours=hours or None,
            duration_days=days or None,
            duration_minutes=minutes or None,
        )
    except AccessCodeError as e:
        typer.echo(f"Error: {e}", err=True)
        code = ExitCode.CONFIG_ERROR if not settings.access_token_secret else ExitCode.USER_ERROR
        raise typer.Exit(code=code)

    typer.echo(token)
    typer.echo(f"Expires: {get_token_expiration(token).isoformat()}", err=True)


@cli.command("serve", help="Run the API server.")
def serve_cmd(
    host: str = typer.Option(None, "--host", help="Bind address (default from settings)."),
    port: int = typer.Option(None, "--port", help="Port (default from settings)."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes."),
) -> None:
    import uvicorn

    uvicorn.run(
        "licensegate.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


if __name__ == "__main__":
    cli()
