"""Test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import datetime

import httpx
import pytest
import pytest_asyncio
import respx
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)

from storecloud import Credentials, RequestSigner, StorageClient
from storecloud.testing import MockStorage, mock_storage

from tests.constants import BUCKET, EMAIL, NOW


def _pem(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        Encoding.PEM, PrivateFormat.TraditionalOpenSSL, NoEncryption()
    ).decode()


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    return _pem(private_key)


@pytest.fixture(scope="session")
def other_key_pem() -> str:
    """PEM for a key the mock storage service does not trust."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return _pem(key)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def credentials(private_key_pem: str) -> Credentials:
    return Credentials(
        service_account_email=EMAIL, private_key=private_key_pem
    )


@pytest.fixture
def signer(
    credentials: Credentials, clock: Callable[[], datetime]
) -> RequestSigner:
    return RequestSigner(credentials, BUCKET, clock=clock)


@pytest.fixture
def mock_gcs(
    respx_mock: respx.Router,
    private_key: rsa.RSAPrivateKey,
    clock: Callable[[], datetime],
) -> MockStorage:
    return mock_storage(
        BUCKET, respx_mock, private_key.public_key(), clock=clock
    )


@pytest_asyncio.fixture
async def client(signer: RequestSigner) -> AsyncIterator[StorageClient]:
    async with httpx.AsyncClient() as http_client:
        yield StorageClient(signer, http_client)
