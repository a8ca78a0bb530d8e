"""Models for credentials, signed requests, and upload policies."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ._datetime import isodatetime_milliseconds

__all__ = [
    "Acl",
    "Credentials",
    "ObjectMetadata",
    "SignedURLRequest",
    "UploadPolicy",
]


class Acl(StrEnum):
    """Predefined ACL scopes understood by Google Cloud Storage.

    These values are sent to the storage service verbatim in the
    ``x-goog-acl`` header. Any other string is passed through unmodified as
    well, so this enum is a convenience rather than a restriction.
    """

    PROJECT_PRIVATE = "project-private"
    """Project team members get access based on their roles.

    This is the default ACL for newly created buckets and objects.
    """

    PRIVATE = "private"
    """The bucket or object owner gets ``FULL_CONTROL``."""

    PUBLIC_READ = "public-read"
    """The owner gets ``FULL_CONTROL`` and anonymous users get ``READ``.

    Publicly readable objects are served with a ``Cache-Control`` header
    allowing caching for 3600 seconds unless the object overrides it.
    """

    PUBLIC_READ_WRITE = "public-read-write"
    """Anonymous users get ``READ`` and ``WRITE``. Only applies to buckets."""

    AUTHENTICATED_READ = "authenticated-read"
    """Any authenticated Google account holder gets ``READ``."""

    BUCKET_OWNER_READ = "bucket-owner-read"
    """The bucket owner gets ``READ``. Only applies to objects."""

    BUCKET_OWNER_FULL_CONTROL = "bucket-owner-full-control"
    """The bucket owner gets ``FULL_CONTROL``. Only applies to objects."""


class Credentials(BaseModel):
    """Service account credentials used to sign requests."""

    model_config = ConfigDict(frozen=True)

    service_account_email: str = Field(
        ...,
        title="Service account email",
        description="Sent as the GoogleAccessId of signed requests",
        examples=["uploader@example-project.iam.gserviceaccount.com"],
    )

    private_key: SecretStr = Field(
        ...,
        title="Private key",
        description="PEM-encoded RSA private key of the service account",
    )


@dataclass(frozen=True)
class SignedURLRequest:
    """A request to be authenticated with a signed URL.

    Knows how to render the canonical string that is signed and the query
    string that carries the signature. Empty ``Content-MD5`` and
    ``Content-Type`` lines are always present in the canonical string.
    """

    verb: str
    """HTTP verb, such as ``GET`` or ``PUT``."""

    resource: str
    """Canonical resource, such as ``/bucket/key``."""

    expires: int
    """Expiration as seconds since the epoch."""

    extension_headers: tuple[tuple[str, str], ...] = ()
    """Signed ``x-goog-*`` headers, in the order they are signed."""

    subresource: str | None = None
    """Subresource query parameter such as ``acl`` or ``cors``."""

    unsigned_query: tuple[tuple[str, str], ...] = ()
    """Query parameters added to the URL but not covered by the signature."""

    def canonical_string(self) -> str:
        """Build the string to sign.

        Returns
        -------
        str
            Verb, empty MD5 and content type lines, expiration, extension
            headers, and the resource, separated by newlines.
        """
        lines = [self.verb, "", "", str(self.expires)]
        lines.extend(f"{k}:{v}" for k, v in self.extension_headers)
        resource = self.resource
        if self.subresource:
            resource += f"?{self.subresource}"
        lines.append(resource)
        return "\n".join(lines)

    def query_prefix(self) -> list[str]:
        """Return the query string components that precede the signature."""
        query = []
        if self.subresource:
            query.append(self.subresource)
        query.extend(f"{k}={v}" for k, v in self.unsigned_query)
        return query


class UploadPolicy(BaseModel):
    """Policy document constraining a browser-originated form upload.

    Each condition is an exact match on a single form field. The storage
    service checks the submitted form fields against these conditions, so
    the form must carry the same values.
    """

    expiration: datetime = Field(
        ..., title="Expiration", description="When the policy stops working"
    )

    conditions: list[dict[str, str]] = Field(
        default_factory=list,
        title="Conditions",
        description="Exact-match conditions on form fields, in order",
    )

    def add_condition(self, field: str, value: str) -> Self:
        """Append an exact-match condition on a form field."""
        self.conditions.append({field: value})
        return self

    def to_json(self) -> str:
        """Serialize the policy in the compact form that is signed.

        Returns
        -------
        str
            JSON with no whitespace between tokens, with the expiration as
            an ISO 8601 timestamp with milliseconds.
        """
        expiration = self.expiration.astimezone(UTC)
        document = {
            "expiration": isodatetime_milliseconds(expiration),
            "conditions": self.conditions,
        }
        return json.dumps(document, separators=(",", ":"))


class ObjectMetadata(BaseModel):
    """Metadata of a stored object, as returned by a HEAD request."""

    generation: str | None = Field(
        None,
        title="Generation",
        description="Version identifier of the object's data",
    )

    metageneration: str | None = Field(
        None,
        title="Metageneration",
        description="Version identifier of the object's metadata",
    )

    content_type: str | None = Field(None, title="Content type")

    content_length: int | None = Field(None, title="Size in bytes")

    etag: str | None = Field(None, title="Entity tag")

    headers: dict[str, str] = Field(
        default_factory=dict,
        title="Response headers",
        description="All headers of the HEAD response, with lowercase names",
    )

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Self:
        """Build the metadata from HEAD response headers.

        Parameters
        ----------
        headers
            Response headers. Names are matched case-insensitively.

        Returns
        -------
        ObjectMetadata
            Parsed metadata.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        length = lowered.get("content-length")
        return cls(
            generation=lowered.get("x-goog-generation"),
            metageneration=lowered.get("x-goog-metageneration"),
            content_type=lowered.get("content-type"),
            content_length=int(length) if length else None,
            etag=lowered.get("etag"),
            headers=lowered,
        )
