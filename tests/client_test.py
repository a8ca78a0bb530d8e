"""Tests for the storage client against a mock storage service."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest
import respx
from cryptography.hazmat.primitives.asymmetric import rsa

from storecloud import Credentials, RequestSigner, StorageClient
from storecloud.testing import MockStorage, mock_storage
from tests.constants import BUCKET, EMAIL, NOW


@pytest.mark.asyncio
async def test_exists(client: StorageClient, mock_gcs: MockStorage) -> None:
    mock_gcs.add_object("public.txt", b"hello", acl="public-read")
    mock_gcs.add_object("private.txt", b"hello")

    assert await client.exists("public.txt")
    assert await client.exists("private.txt")
    assert not await client.exists("missing.txt")

    # The existence check is unsigned and busts caches.
    for request in mock_gcs.requests:
        assert request.method == "GET"
        assert list(request.url.params) == ["v"]


@pytest.mark.asyncio
async def test_get_metadata(
    client: StorageClient, mock_gcs: MockStorage
) -> None:
    obj = mock_gcs.add_object("a.png", b"png data", content_type="image/png")

    metadata = await client.get_metadata("a.png")
    assert metadata
    assert metadata.generation == str(obj.generation)
    assert metadata.metageneration == "1"
    assert metadata.content_type == "image/png"
    assert metadata.content_length == len(b"png data")

    assert await client.get_metadata("missing.png") is None


@pytest.mark.asyncio
async def test_make_public(
    client: StorageClient, mock_gcs: MockStorage
) -> None:
    mock_gcs.add_object("a.png", b"png data")
    public_url = client.get_public_url("a.png")
    async with httpx.AsyncClient() as http_client:
        r = await http_client.get(public_url)
    assert r.status_code == 403

    assert await client.make_public("a.png")
    assert mock_gcs.objects["a.png"].acl == "public-read"
    assert mock_gcs.objects["a.png"].metageneration == 2
    methods = [r.method for r in mock_gcs.requests[-2:]]
    assert methods == ["HEAD", "PUT"]
    assert mock_gcs.requests[-1].headers["x-goog-acl"] == "public-read"

    async with httpx.AsyncClient() as http_client:
        r = await http_client.get(public_url)
    assert r.status_code == 200
    assert r.content == b"png data"

    assert await client.make_private("a.png")
    assert mock_gcs.objects["a.png"].acl == "bucket-owner-full-control"


@pytest.mark.asyncio
async def test_make_public_missing(
    client: StorageClient, mock_gcs: MockStorage
) -> None:
    assert not await client.make_public("missing.png")
    assert [r.method for r in mock_gcs.requests] == ["HEAD"]


@pytest.mark.asyncio
async def test_private_url(
    client: StorageClient, mock_gcs: MockStorage
) -> None:
    mock_gcs.add_object("a.txt", b"secret")
    async with httpx.AsyncClient() as http_client:
        r = await http_client.get(client.get_private_url("a.txt"))
    assert r.status_code == 200
    assert r.content == b"secret"


@pytest.mark.asyncio
async def test_remove(client: StorageClient, mock_gcs: MockStorage) -> None:
    mock_gcs.add_object("a.txt", b"data")
    assert await client.remove("a.txt")
    assert "a.txt" not in mock_gcs.objects
    assert not await client.remove("a.txt")


@pytest.mark.asyncio
async def test_default_acl(
    client: StorageClient, mock_gcs: MockStorage
) -> None:
    assert await client.set_default_acl("public-read")
    assert mock_gcs.default_acl == "public-read"
    assert mock_gcs.add_object("new.txt", b"").acl == "public-read"


@pytest.mark.asyncio
async def test_cors(client: StorageClient, mock_gcs: MockStorage) -> None:
    xml = (
        "<?xml version='1.0' encoding='UTF-8'?><CorsConfig><Cors><Origins>"
        "<Origin>https://example.com</Origin></Origins></Cors></CorsConfig>"
    )
    assert await client.set_cors(xml)
    assert mock_gcs.cors == xml
    assert await client.get_cors() == xml


@pytest.mark.asyncio
async def test_upload(
    client: StorageClient, mock_gcs: MockStorage, tmp_path: Path
) -> None:
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF-1.4 some report")

    assert await client.upload(
        path,
        "reports/2026.pdf",
        is_attachment=True,
        custom_fields={"Cache-Control": "no-cache", "owner": "alice"},
    )
    obj = mock_gcs.objects["reports/2026.pdf"]
    assert obj.data == b"%PDF-1.4 some report"
    assert obj.content_type == "application/pdf"
    assert obj.headers == {
        "Content-Disposition": "attachment; filename=report.pdf",
        "Cache-Control": "no-cache",
        "x-goog-meta-Cache-Control": "no-cache",
        "x-goog-meta-owner": "alice",
    }

    metadata = await client.get_metadata("reports/2026.pdf")
    assert metadata
    assert metadata.headers["x-goog-meta-owner"] == "alice"


@pytest.mark.asyncio
async def test_wrong_key(
    other_key_pem: str,
    mock_gcs: MockStorage,
    clock: Callable[[], datetime],
    tmp_path: Path,
) -> None:
    credentials = Credentials(
        service_account_email=EMAIL, private_key=other_key_pem
    )
    signer = RequestSigner(credentials, BUCKET, clock=clock)
    mock_gcs.add_object("a.txt", b"data")
    path = tmp_path / "a.txt"
    path.write_text("data")

    async with httpx.AsyncClient() as http_client:
        client = StorageClient(signer, http_client)
        assert not await client.remove("a.txt")
        assert await client.get_metadata("a.txt") is None
        assert not await client.upload(path, "b.txt")
        assert not await client.set_cors("<CorsConfig/>")
    assert "a.txt" in mock_gcs.objects
    assert "b.txt" not in mock_gcs.objects


@pytest.mark.asyncio
async def test_expired(
    client: StorageClient,
    respx_mock: respx.Router,
    private_key: rsa.RSAPrivateKey,
) -> None:
    later = NOW + timedelta(hours=2)
    mock = mock_storage(
        BUCKET, respx_mock, private_key.public_key(), clock=lambda: later
    )
    mock.add_object("a.txt", b"data")
    assert await client.get_metadata("a.txt") is None
    assert not await client.remove("a.txt")
    assert "a.txt" in mock.objects


@pytest.mark.asyncio
async def test_transport_error(
    client: StorageClient, respx_mock: respx.Router
) -> None:
    respx_mock.route(host=f"{BUCKET}.storage.googleapis.com").mock(
        side_effect=httpx.ConnectError
    )
    with pytest.raises(httpx.ConnectError):
        await client.remove("a.txt")
