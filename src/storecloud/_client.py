"""Client that sends signed requests to Google Cloud Storage."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import httpx
import structlog
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ._models import Acl, ObjectMetadata
from ._signer import RequestSigner

__all__ = ["DEFAULT_HTTP_TIMEOUT", "StorageClient"]

DEFAULT_HTTP_TIMEOUT = 20.0
"""Default timeout (in seconds) for requests to the storage service."""

_UPLOAD_SUCCESS = frozenset({200, 204})
"""Status codes the storage service returns for a successful form upload."""


def _strip_query(url: str) -> str:
    """Drop the query from a URL so that signatures are not logged."""
    return urlsplit(url)._replace(query="").geturl()


class StorageClient:
    """Perform operations on a Google Cloud Storage bucket.

    Every request is authenticated with a URL from the provided
    `~storecloud.RequestSigner`, so the storage service never sees any other
    credentials. Operations are coroutines and each sends at most two
    requests, one after the other.

    Failures reported by the storage service are returned as `False` or
    `None` rather than raised, and logged as warnings. Errors from the HTTP
    client itself, such as connection failures, are raised as
    ``httpx.HTTPError``. No request is retried.

    Parameters
    ----------
    signer
        Signer for the bucket.
    http_client
        HTTP client used to send requests. The caller is responsible for
        closing it.
    logger
        Logger for request outcomes. Defaults to the ``storecloud`` logger.
    """

    def __init__(
        self,
        signer: RequestSigner,
        http_client: httpx.AsyncClient,
        logger: BoundLogger | None = None,
    ) -> None:
        self._signer = signer
        self._http_client = http_client
        self._logger = logger or structlog.get_logger("storecloud")
        self._logger = self._logger.bind(bucket=signer.bucket)

    @property
    def signer(self) -> RequestSigner:
        """Signer used to authenticate requests."""
        return self._signer

    def get_public_url(self, key: str) -> str:
        """Return the unsigned URL of a publicly readable object."""
        return self._signer.get_public_url(key)

    def get_private_url(self, key: str) -> str:
        """Return a signed, time-limited URL to read an object."""
        return self._signer.get_private_url(key)

    async def send(
        self,
        verb: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        content: str | bytes | None = None,
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request to the storage service.

        Parameters
        ----------
        verb
            HTTP verb.
        url
            URL, normally produced by the signer.
        headers
            Additional request headers.
        content
            Raw request body.
        data
            Form fields, for form uploads.
        files
            Files to include in a multipart form upload.

        Returns
        -------
        httpx.Response
            Response from the storage service, whatever its status.

        Raises
        ------
        httpx.HTTPError
            Raised if the request could not be sent or no response was
            received.
        """
        r = await self._http_client.request(
            verb,
            url,
            headers=headers,
            content=content,
            data=data,
            files=files,
        )
        self._logger.debug(
            "Sent storage request",
            method=verb,
            url=_strip_query(url),
            status=r.status_code,
        )
        return r

    async def exists(self, key: str) -> bool:
        """Check whether an object exists.

        The request is unsigned, so anything other than a 404 (including a
        403 for an object that exists but is not public) counts as existing.

        Parameters
        ----------
        key
            Object key.

        Returns
        -------
        bool
            `False` if the storage service answered 404, `True` otherwise.
        """
        timestamp = current_datetime(microseconds=True).timestamp()
        cache_buster = int(timestamp * 1000)
        url = f"{self._signer.get_public_url(key)}?v={cache_buster}"
        r = await self.send("GET", url)
        return r.status_code != 404

    async def get_metadata(self, key: str) -> ObjectMetadata | None:
        """Retrieve the metadata of an object with a signed HEAD request.

        Parameters
        ----------
        key
            Object key.

        Returns
        -------
        ObjectMetadata or None
            Metadata of the object, or `None` if the request failed.
        """
        url = self._signer.sign_metadata_url(key)
        r = await self.send("HEAD", url)
        if not self._check(r, "Retrieving object metadata failed", key=key):
            return None
        return ObjectMetadata.from_headers(r.headers)

    async def set_acl(self, key: str, acl: Acl | str) -> bool:
        """Replace the ACL of an object with a predefined ACL.

        The current generation of the object is retrieved first, since the
        ACL change must name it. If that fails, the ACL is not changed.
        Nothing is rolled back if the ACL change itself fails.

        Parameters
        ----------
        key
            Object key.
        acl
            Predefined ACL to apply.

        Returns
        -------
        bool
            Whether the ACL was changed.
        """
        metadata = await self.get_metadata(key)
        if not metadata or not metadata.generation:
            self._logger.warning(
                "Cannot change ACL without object generation",
                key=key,
                acl=str(acl),
            )
            return False
        url = self._signer.sign_acl_url(key, acl, metadata.generation)
        r = await self.send("PUT", url, headers={"x-goog-acl": str(acl)})
        return self._check(r, "Changing object ACL failed", key=key)

    async def make_private(self, key: str) -> bool:
        """Restrict an object to the bucket owner.

        Applies the ``bucket-owner-full-control`` ACL. See `set_acl`.
        """
        return await self.set_acl(key, Acl.BUCKET_OWNER_FULL_CONTROL)

    async def make_public(self, key: str) -> bool:
        """Make an object readable by anyone.

        Applies the ``public-read`` ACL. See `set_acl`.
        """
        return await self.set_acl(key, Acl.PUBLIC_READ)

    async def remove(self, key: str) -> bool:
        """Delete an object.

        Returns
        -------
        bool
            Whether the object was deleted.
        """
        url = self._signer.sign_delete_object_url(key)
        r = await self.send("DELETE", url)
        return self._check(r, "Deleting object failed", key=key)

    async def set_default_acl(self, acl: Acl | str) -> bool:
        """Set the ACL applied to new objects in the bucket.

        Returns
        -------
        bool
            Whether the default ACL was changed.
        """
        url = self._signer.sign_default_acl_url(acl)
        r = await self.send("PUT", url, headers={"x-goog-acl": str(acl)})
        return self._check(r, "Setting default object ACL failed")

    async def set_cors(self, xml: str) -> bool:
        """Replace the CORS configuration of the bucket.

        Parameters
        ----------
        xml
            CORS configuration as a ``CorsConfig`` XML document.

        Returns
        -------
        bool
            Whether the configuration was replaced.
        """
        url = self._signer.sign_cors_put_url()
        r = await self.send("PUT", url, content=xml)
        return self._check(r, "Setting CORS configuration failed")

    async def get_cors(self) -> str | None:
        """Retrieve the CORS configuration of the bucket.

        Returns
        -------
        str or None
            CORS configuration XML, or `None` if the request failed.
        """
        url = self._signer.sign_cors_get_url()
        r = await self.send("GET", url)
        if not self._check(r, "Retrieving CORS configuration failed"):
            return None
        return r.text

    async def upload(
        self,
        path: Path,
        key: str,
        *,
        is_attachment: bool = False,
        custom_fields: Mapping[str, str] | None = None,
    ) -> bool:
        """Upload a file with a signed form upload.

        Parameters
        ----------
        path
            File to upload.
        key
            Object key to store it under.
        is_attachment
            Whether reading the object should prompt a download.
        custom_fields
            Additional metadata. See
            `~storecloud.RequestSigner.build_upload_policy`.

        Returns
        -------
        bool
            Whether the storage service accepted the upload.
        """
        form = self._signer.build_upload_policy(
            str(path),
            key,
            is_attachment=is_attachment,
            custom_fields=custom_fields,
        )
        url = f"{self._signer.base_url}/"
        with path.open("rb") as f:
            files = {"file": (path.name, f, form["Content-Type"])}
            r = await self.send("POST", url, data=form, files=files)
        if r.status_code not in _UPLOAD_SUCCESS:
            self._log_failure(r, "Uploading object failed", key=key)
            return False
        self._logger.info("Uploaded object", key=key, size=path.stat().st_size)
        return True

    def _check(self, r: httpx.Response, msg: str, **kwargs: Any) -> bool:
        if r.is_success:
            return True
        self._log_failure(r, msg, **kwargs)
        return False

    def _log_failure(
        self, r: httpx.Response, msg: str, **kwargs: Any
    ) -> None:
        self._logger.warning(
            msg,
            method=r.request.method,
            url=_strip_query(str(r.request.url)),
            status=r.status_code,
            **kwargs,
        )
