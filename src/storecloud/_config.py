"""Configuration for signing and sending storage requests."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Annotated, TypeAlias

import httpx
from pydantic import BeforeValidator, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ._client import DEFAULT_HTTP_TIMEOUT, StorageClient
from ._models import Credentials
from ._signer import DEFAULT_LIFETIME, RequestSigner

__all__ = ["PrivateKeyMaterial", "StorageConfig"]

_PEM_REGEX = re.compile(r"BEGIN (RSA )?PRIVATE KEY")
"""Marker distinguishing literal PEM key material from a path."""


def _load_private_key(v: object) -> object:
    """Read the private key from a file if given a path.

    Values that already look like PEM key material are returned unchanged.
    Anything else is treated as the path to a PEM file.
    """
    if isinstance(v, SecretStr):
        v = v.get_secret_value()
    if not isinstance(v, str | Path) or _PEM_REGEX.search(str(v)):
        return v
    path = Path(v)
    try:
        return path.read_text()
    except OSError as e:
        msg = f"Private key is neither PEM data nor a readable file: {e}"
        raise ValueError(msg) from e


PrivateKeyMaterial: TypeAlias = Annotated[
    SecretStr, BeforeValidator(_load_private_key)
]
"""PEM private key, given either as the key itself or as a path to it."""


class StorageConfig(BaseSettings):
    """Settings for accessing a Google Cloud Storage bucket.

    Values may be passed to the constructor or, failing that, are taken from
    the environment. Resolve the configuration once at startup and build a
    `~storecloud.RequestSigner` or `~storecloud.StorageClient` from it;
    neither of those reads the environment itself.

    Raises
    ------
    pydantic.ValidationError
        Raised on construction if the service account email, bucket, or
        private key is missing, or if the private key is given as a path
        that cannot be read.
    """

    model_config = SettingsConfigDict(populate_by_name=True)

    service_account_email: str = Field(
        ...,
        title="Service account email",
        description="Service account whose key signs requests",
        min_length=1,
        validation_alias="GOOGLE_SERVICES_EMAIL",
    )

    bucket: str = Field(
        ...,
        title="Bucket name",
        min_length=1,
        validation_alias="GCS_STORAGE_BUCKET",
    )

    private_key: PrivateKeyMaterial = Field(
        ...,
        title="Service account private key",
        description=(
            "PEM-encoded RSA private key, or the path to a file containing"
            " one"
        ),
        validation_alias="GCS_PRIVATE_KEY",
    )

    url_lifetime: timedelta = Field(
        DEFAULT_LIFETIME,
        title="Signed URL lifetime",
        description="How long signed URLs and upload policies remain valid",
        validation_alias="STORECLOUD_URL_LIFETIME",
    )

    http_timeout: float = Field(
        DEFAULT_HTTP_TIMEOUT,
        title="HTTP timeout",
        description="Timeout in seconds for requests to the storage service",
        validation_alias="STORECLOUD_HTTP_TIMEOUT",
    )

    @property
    def credentials(self) -> Credentials:
        """Service account credentials for signing."""
        return Credentials(
            service_account_email=self.service_account_email,
            private_key=self.private_key,
        )

    def make_signer(
        self, *, clock: Callable[[], datetime] = current_datetime
    ) -> RequestSigner:
        """Construct a request signer for the configured bucket.

        Parameters
        ----------
        clock
            Source of the current time, overridable for testing.

        Returns
        -------
        RequestSigner
            Signer using the configured credentials and URL lifetime.

        Raises
        ------
        PrivateKeyError
            Raised if the configured key is not a PEM-encoded RSA key.
        """
        return RequestSigner(
            self.credentials,
            self.bucket,
            clock=clock,
            lifetime=self.url_lifetime,
        )

    def make_client(
        self,
        http_client: httpx.AsyncClient,
        logger: BoundLogger | None = None,
        *,
        clock: Callable[[], datetime] = current_datetime,
    ) -> StorageClient:
        """Construct a storage client for the configured bucket.

        Parameters
        ----------
        http_client
            HTTP client to send requests with. The caller remains responsible
            for closing it.
        logger
            Logger for request outcomes. Defaults to the ``storecloud``
            logger.
        clock
            Source of the current time, overridable for testing.

        Returns
        -------
        StorageClient
            Client using a signer built by `make_signer`.
        """
        signer = self.make_signer(clock=clock)
        return StorageClient(signer, http_client, logger)

    def make_http_client(self) -> httpx.AsyncClient:
        """Construct an HTTP client using the configured timeout.

        The caller must close it with ``aclose`` when done.
        """
        return httpx.AsyncClient(
            timeout=self.http_timeout, follow_redirects=True
        )
