# SPDX-License-Identifier: MPL-2.0
"""Main CLI entry point."""

import base64
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional, Tuple

import click

from permit_vc.core.config import configure_logging, load_settings
from permit_vc.core.crypto import KeyPair
from permit_vc.core.exceptions import ConfigurationError, PermitVCError
from permit_vc.services.issuer import CredentialService


def fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def load_json_argument(value: str) -> Dict[str, Any]:
    """Parse inline JSON, or read it from a file when ``value`` starts with ``@``."""
    try:
        if value.startswith("@"):
            data = json.loads(Path(value[1:]).read_text(encoding="utf-8"))
        else:
            data = json.loads(value)
    except (OSError, json.JSONDecodeError) as e:
        fail(f"Cannot read JSON from {value!r}: {e}")
    if not isinstance(data, dict):
        fail("Expected a JSON object")
    return data


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def open_service(ctx: click.Context, require_key: bool = True) -> CredentialService:
    """Build a :class:`CredentialService` from the group options."""
    settings = ctx.obj["settings"]
    if require_key and not settings.signing_key_path:
        fail("A signing key is required; pass --key or set PERMIT_VC_SIGNING_KEY")
    try:
        service = CredentialService.from_settings(settings)
    except PermitVCError as e:
        fail(e.message)
    ctx.call_on_close(service.store.close)
    return service


@click.group()  # type: ignore[misc]
@click.option("--db", "database", envvar="PERMIT_VC_DATABASE", default="permits.db",
              show_default=True, help="Path to the credential database")
@click.option("--key", "key_path", envvar="PERMIT_VC_SIGNING_KEY",
              type=click.Path(dir_okay=False), help="PEM file holding the Ed25519 signing key")
@click.option("--key-id", envvar="PERMIT_VC_KEY_ID", help="Verification method id of the key")
@click.option("--issuer", envvar="PERMIT_VC_ISSUER", help="Issuer DID")
@click.option("--log-level", type=click.Choice(["debug", "info", "warning", "error"]),
              default="warning", show_default=True)
@click.pass_context
def cli(
    ctx: click.Context,
    database: str,
    key_path: Optional[str],
    key_id: Optional[str],
    issuer: Optional[str],
    log_level: str,
) -> None:
    """Permit verifiable credential CLI."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        fail(e.message)

    overrides: Dict[str, Any] = {"database": database, "log_level": log_level}
    if key_path:
        overrides["signing_key_path"] = key_path
    if key_id:
        overrides["key_id"] = key_id
    if issuer:
        overrides["issuer"] = issuer

    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = dataclasses.replace(settings, **overrides)


@cli.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    from permit_vc import __version__

    click.echo(f"Permit VC v{__version__}")


@cli.command()  # type: ignore[misc]
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--kid", help="Key id to print with the public JWK")
@click.option("--force", is_flag=True, help="Overwrite an existing key file")
def keygen(output: str, kid: Optional[str], force: bool) -> None:
    """Generate an Ed25519 signing key as a PKCS#8 PEM file."""
    path = Path(output)
    if path.exists() and not force:
        fail(f"{output} already exists; use --force to overwrite")

    key_pair = KeyPair.generate(kid)
    path.write_bytes(key_pair.private_pem())
    path.chmod(0o600)
    click.echo(f"Signing key saved to {output}", err=True)
    echo_json(key_pair.to_jwk())


@cli.command()  # type: ignore[misc]
@click.option("--claims", required=True, help="Subject claims as JSON, or @file.json")
@click.option("--holder", help="Holder DID placed in credentialSubject.id")
@click.option("--type", "types", multiple=True, help="Additional credential type (repeatable)")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the credential here")
@click.pass_context
def issue(
    ctx: click.Context,
    claims: str,
    holder: Optional[str],
    types: Tuple[str, ...],
    output: Optional[str],
) -> None:
    """Issue and store a signed credential."""
    service = open_service(ctx)
    try:
        issued = service.issue(load_json_argument(claims), holder=holder, types=types or None)
    except PermitVCError as e:
        fail(e.message)

    if output:
        Path(output).write_text(
            json.dumps(issued.document, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        click.echo(f"Credential {issued.id} saved to {output}")
    else:
        echo_json(issued.document)


@cli.command()  # type: ignore[misc]
@click.argument("credential_id", required=False)
@click.option("--document", "-f", "document_path", type=click.Path(exists=True, dir_okay=False),
              help="Verify a presented credential document instead of a stored id")
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
def verify(
    ctx: click.Context, credential_id: Optional[str], document_path: Optional[str], output: str
) -> None:
    """Verify a credential. Exits non-zero when it is not valid."""
    if bool(credential_id) == bool(document_path):
        fail("Provide exactly one of CREDENTIAL_ID or --document")

    service = open_service(ctx)
    try:
        if document_path:
            result = service.verify_document(load_json_argument(f"@{document_path}"))
        else:
            result = service.verify(credential_id)
    except PermitVCError as e:
        fail(e.message)

    if output == "json":
        click.echo(result.to_json())
    else:
        click.echo(f"Credential: {result.credential_id}")
        click.echo(f"Status: {'VALID' if result.valid else 'INVALID'}")
        click.echo(f"Reason: {result.reason.value}")
        if result.revocation_reason:
            click.echo(f"Revocation reason: {result.revocation_reason}")
    ctx.exit(0 if result.valid else 1)


@cli.command()  # type: ignore[misc]
@click.argument("credential_id")
@click.option("--reason", help="Reason recorded with the revocation")
@click.pass_context
def revoke(ctx: click.Context, credential_id: str, reason: Optional[str]) -> None:
    """Revoke a credential. Revoking twice is not an error."""
    service = open_service(ctx, require_key=False)
    try:
        record = service.revoke(credential_id, reason)
    except PermitVCError as e:
        fail(e.message)
    click.echo(f"Credential {record.id} is {record.status.value}")


@cli.command()  # type: ignore[misc]
@click.argument("credential_id")
@click.option("--svg", "svg_path", type=click.Path(dir_okay=False), help="Write the QR code as SVG")
@click.pass_context
def qr(ctx: click.Context, credential_id: str, svg_path: Optional[str]) -> None:
    """Generate a presentation QR code for a stored credential."""
    service = open_service(ctx, require_key=False)
    try:
        code = service.generate_presentation_code(credential_id)
    except PermitVCError as e:
        fail(e.message)

    if svg_path:
        _, encoded = code.image.split(",", 1)
        Path(svg_path).write_bytes(base64.b64decode(encoded))
        click.echo(f"QR code saved to {svg_path}", err=True)
    click.echo(code.payload)


@cli.command()  # type: ignore[misc]
@click.argument("payload")
@click.pass_context
def resolve(ctx: click.Context, payload: str) -> None:
    """Resolve a scanned QR payload and verify the credential it names."""
    service = open_service(ctx)
    try:
        resolution = service.resolve_scanned_code(payload)
    except PermitVCError as e:
        fail(e.message)
    echo_json(resolution.to_dict())


@cli.command()  # type: ignore[misc]
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8080, show_default=True, type=int)
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from permit_vc.api import create_app

    try:
        app = create_app(settings=ctx.obj["settings"])
    except PermitVCError as e:
        fail(e.message)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
