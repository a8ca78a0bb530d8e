"""Command-line interface for storecloud."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path

import click
from pydantic import ValidationError
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.logging import LogLevel, Profile, configure_logging

from ._client import StorageClient
from ._config import StorageConfig
from ._exceptions import StorecloudError
from ._signer import RequestSigner

__all__ = ["main"]


def _load_config() -> StorageConfig:
    try:
        return StorageConfig()
    except ValidationError as e:
        msg = f"Google Cloud Storage not configured\n{e}"
        raise click.ClickException(msg) from e


@contextmanager
def _signer() -> Iterator[RequestSigner]:
    config = _load_config()
    try:
        yield config.make_signer()
    except StorecloudError as e:
        raise click.ClickException(str(e)) from e


@asynccontextmanager
async def _storage_client() -> AsyncIterator[StorageClient]:
    config = _load_config()
    try:
        signer = config.make_signer()
        async with config.make_http_client() as http_client:
            yield StorageClient(signer, http_client)
    except StorecloudError as e:
        raise click.ClickException(str(e)) from e


def _parse_fields(
    ctx: click.Context, param: click.Parameter, values: tuple[str, ...]
) -> dict[str, str]:
    fields = {}
    for value in values:
        name, sep, content = value.partition("=")
        if not sep or not name:
            msg = f"{value} is not of the form NAME=VALUE"
            raise click.BadParameter(msg, ctx, param)
        fields[name] = content
    return fields


def _require(success: bool, message: str) -> None:  # noqa: FBT001
    if not success:
        raise click.ClickException(message)


_attachment_option = click.option(
    "--attachment",
    is_flag=True,
    default=False,
    help="Force a download prompt when the object is read.",
)

_field_option = click.option(
    "--field",
    "fields",
    multiple=True,
    callback=_parse_fields,
    metavar="NAME=VALUE",
    help="Object metadata. Cache-Control is applied as a header.",
)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--log-level",
    type=click.Choice([e.value for e in LogLevel], case_sensitive=False),
    default=LogLevel.WARNING.value,
    envvar="STORECLOUD_LOG_LEVEL",
    show_default=True,
    help="Log level.",
)
@click.option(
    "--log-profile",
    type=click.Choice([e.value for e in Profile]),
    default=Profile.development.value,
    envvar="STORECLOUD_LOG_PROFILE",
    show_default=True,
    help="Log format.",
)
@click.version_option(package_name="storecloud", message="%(version)s")
def main(log_level: str, log_profile: str) -> None:
    """Sign and send Google Cloud Storage requests.

    Credentials and the bucket are read from the GOOGLE_SERVICES_EMAIL,
    GCS_PRIVATE_KEY, and GCS_STORAGE_BUCKET environment variables.
    """
    configure_logging(
        name="storecloud", profile=log_profile, log_level=log_level
    )


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command("public-url")
@click.argument("key")
def public_url(key: str) -> None:
    """Print the unsigned URL of an object."""
    with _signer() as signer:
        click.echo(signer.get_public_url(key))


@main.command("private-url")
@click.argument("key")
def private_url(key: str) -> None:
    """Print a signed URL to read an object."""
    with _signer() as signer:
        click.echo(signer.get_private_url(key))


@main.command("upload-form")
@click.argument("filename")
@click.argument("key")
@_attachment_option
@_field_option
def upload_form(
    filename: str,
    key: str,
    *,
    attachment: bool,
    fields: dict[str, str],
) -> None:
    """Print signed form fields for a browser upload as JSON."""
    with _signer() as signer:
        form = signer.build_upload_policy(
            filename, key, is_attachment=attachment, custom_fields=fields
        )
    click.echo(json.dumps(form, indent=2))


@main.command()
@click.argument(
    "filename", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.argument("key")
@_attachment_option
@_field_option
@run_with_asyncio
async def upload(
    filename: Path,
    key: str,
    *,
    attachment: bool,
    fields: dict[str, str],
) -> None:
    """Upload a file to the bucket."""
    async with _storage_client() as client:
        success = await client.upload(
            filename, key, is_attachment=attachment, custom_fields=fields
        )
    _require(success, f"Uploading {filename} to {key} failed")


@main.command()
@click.argument("key")
@run_with_asyncio
async def exists(key: str) -> None:
    """Check whether an object exists. Exits with status 1 if not."""
    async with _storage_client() as client:
        found = await client.exists(key)
    click.echo("true" if found else "false")
    if not found:
        raise click.exceptions.Exit(1)


@main.command()
@click.argument("key")
@run_with_asyncio
async def metadata(key: str) -> None:
    """Print the metadata of an object as JSON."""
    async with _storage_client() as client:
        result = await client.get_metadata(key)
    if not result:
        raise click.ClickException(f"Retrieving metadata for {key} failed")
    click.echo(result.model_dump_json(indent=2))


@main.command()
@click.argument("key")
@run_with_asyncio
async def remove(key: str) -> None:
    """Delete an object."""
    async with _storage_client() as client:
        success = await client.remove(key)
    _require(success, f"Deleting {key} failed")


@main.command("make-public")
@click.argument("key")
@run_with_asyncio
async def make_public(key: str) -> None:
    """Make an object readable by anyone."""
    async with _storage_client() as client:
        success = await client.make_public(key)
    _require(success, f"Making {key} public failed")


@main.command("make-private")
@click.argument("key")
@run_with_asyncio
async def make_private(key: str) -> None:
    """Restrict an object to the bucket owner."""
    async with _storage_client() as client:
        success = await client.make_private(key)
    _require(success, f"Making {key} private failed")


@main.command("default-acl")
@click.argument("acl", metavar="ACL")
@run_with_asyncio
async def default_acl(acl: str) -> None:
    """Set the ACL applied to new objects.

    ACL is normally one of project-private, private, public-read,
    public-read-write, authenticated-read, bucket-owner-read, or
    bucket-owner-full-control, and is passed to the storage service as is.
    """
    async with _storage_client() as client:
        success = await client.set_default_acl(acl)
    _require(success, f"Setting default ACL to {acl} failed")


@main.group()
def cors() -> None:
    """Manage the CORS configuration of the bucket."""


@cors.command("get")
@run_with_asyncio
async def cors_get() -> None:
    """Print the CORS configuration XML."""
    async with _storage_client() as client:
        xml = await client.get_cors()
    if xml is None:
        raise click.ClickException("Retrieving CORS configuration failed")
    click.echo(xml)


@cors.command("set")
@click.argument(
    "xml_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@run_with_asyncio
async def cors_set(xml_file: Path) -> None:
    """Replace the CORS configuration with the contents of XML_FILE."""
    async with _storage_client() as client:
        success = await client.set_cors(xml_file.read_text())
    _require(success, "Setting CORS configuration failed")

