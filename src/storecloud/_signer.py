"""Signing of Google Cloud Storage requests."""

from __future__ import annotations

import base64
import mimetypes
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from pathlib import PurePath
from urllib.parse import quote

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from safir.datetime import current_datetime

from ._datetime import unix_timestamp
from ._exceptions import InvalidRequestError, PrivateKeyError
from ._models import Acl, Credentials, SignedURLRequest, UploadPolicy

__all__ = ["DEFAULT_LIFETIME", "RequestSigner"]

DEFAULT_LIFETIME = timedelta(hours=1)
"""Default lifetime of signed URLs and upload policies."""

_DEFAULT_MIME_TYPE = "application/octet-stream"


def _check_line(field: str, value: str) -> str:
    if "\n" in value or "\r" in value:
        raise InvalidRequestError(field, value, "contains a line break")
    return value


def _check_key(key: str) -> str:
    if not key:
        raise InvalidRequestError("key", key, "object key is empty")
    return _check_line("key", key)


class RequestSigner:
    """Generate signed URLs and upload forms for a Google Cloud Storage bucket.

    Signed URLs use the storage service's query-string authentication: the
    request is described by a canonical string, which is signed with the
    service account's RSA key using SHA-256, and the base64 signature is
    carried in the URL along with the service account email and the
    expiration time. The server rebuilds the canonical string from the
    request it receives, so the string signed here must match it exactly.

    Instances are immutable and hold no state other than the credentials,
    bucket, clock, and lifetime, so they can be shared freely.

    Parameters
    ----------
    credentials
        Service account credentials.
    bucket
        Name of the bucket all requests are for.
    clock
        Function returning the current time as a time zone aware
        `~datetime.datetime`. Expirations are computed relative to it.
    lifetime
        How long signed URLs and upload policies remain valid.

    Raises
    ------
    PrivateKeyError
        Raised if the private key is not a PEM-encoded RSA private key.

    Notes
    -----
    Object keys, ACLs, and generations are inserted into canonical strings
    as given. Values containing line breaks are rejected with
    `InvalidRequestError`, but keys are otherwise not escaped, so keys
    containing characters that must be percent-encoded in a URL will not
    produce a matching signature.
    """

    def __init__(
        self,
        credentials: Credentials,
        bucket: str,
        *,
        clock: Callable[[], datetime] = current_datetime,
        lifetime: timedelta = DEFAULT_LIFETIME,
    ) -> None:
        self._email = credentials.service_account_email
        self._bucket = bucket
        self._clock = clock
        self._lifetime = lifetime
        self._key = self._load_key(credentials.private_key.get_secret_value())

    @property
    def bucket(self) -> str:
        """Name of the bucket the signer is for."""
        return self._bucket

    @property
    def base_url(self) -> str:
        """Base URL of the bucket, without a trailing slash."""
        return f"https://{self._bucket}.storage.googleapis.com"

    @property
    def service_account_email(self) -> str:
        """Email address of the signing service account."""
        return self._email

    def sign(self, string_to_sign: str) -> str:
        """Sign a string with the service account key.

        Parameters
        ----------
        string_to_sign
            Canonical string or base64-encoded policy document.

        Returns
        -------
        str
            Base64 encoding of the RSA-SHA256 signature. This is not
            percent-encoded.
        """
        signature = self._key.sign(
            string_to_sign.encode(), padding.PKCS1v15(), hashes.SHA256()
        )
        return base64.b64encode(signature).decode()

    def expiration(self) -> datetime:
        """Return the expiration time for a request signed now."""
        return self._clock() + self._lifetime

    def get_public_url(self, key: str) -> str:
        """Return the unsigned URL of an object.

        This only works for objects that are publicly readable.

        Parameters
        ----------
        key
            Object key.

        Returns
        -------
        str
            URL of the object.
        """
        return f"{self.base_url}/{key}"

    def get_private_url(self, key: str) -> str:
        """Return a signed URL to read an object.

        Same as `sign_get_object_url`.
        """
        return self.sign_get_object_url(key)

    def sign_get_object_url(self, key: str) -> str:
        """Return a signed URL to read an object."""
        request = self._object_request("GET", key)
        return self._render_url(request, key)

    def sign_delete_object_url(self, key: str) -> str:
        """Return a signed URL to delete an object."""
        request = self._object_request("DELETE", key)
        return self._render_url(request, key)

    def sign_metadata_url(self, key: str) -> str:
        """Return a signed URL for a HEAD request on an object.

        The response headers include the object's generation, which is
        needed to change its ACL.
        """
        request = self._object_request("HEAD", key)
        return self._render_url(request, key)

    def sign_acl_url(
        self, key: str, acl: Acl | str, generation: int | str
    ) -> str:
        """Return a signed URL to replace the ACL of an object.

        The request must be sent as a PUT with an ``x-goog-acl`` header
        matching ``acl``.

        Parameters
        ----------
        key
            Object key.
        acl
            Predefined ACL to apply. Passed through unmodified.
        generation
            Current generation of the object, from its metadata.

        Returns
        -------
        str
            Signed URL.

        Notes
        -----
        The generation is added to the URL but is not part of the signed
        string, since the storage service does not include it in the
        canonical resource.
        """
        acl = _check_line("acl", str(acl))
        generation = _check_line("generation", str(generation))
        request = SignedURLRequest(
            verb="PUT",
            resource=f"/{self._bucket}/{_check_key(key)}",
            expires=self._expires(),
            extension_headers=(("x-goog-acl", acl),),
            subresource="acl",
            unsigned_query=(("generation", generation),),
        )
        return self._render_url(request, key)

    def sign_default_acl_url(self, acl: Acl | str) -> str:
        """Return a signed URL to set the default object ACL of the bucket.

        The request must be sent as a PUT with an ``x-goog-acl`` header
        matching ``acl``.
        """
        acl = _check_line("acl", str(acl))
        request = SignedURLRequest(
            verb="PUT",
            resource=f"/{self._bucket}/",
            expires=self._expires(),
            extension_headers=(("x-goog-acl", acl),),
            subresource="defaultObjectAcl",
        )
        return self._render_url(request)

    def sign_cors_get_url(self) -> str:
        """Return a signed URL to retrieve the CORS configuration."""
        return self._render_url(self._cors_request("GET"))

    def sign_cors_put_url(self) -> str:
        """Return a signed URL to replace the CORS configuration.

        The XML document is sent as the body of a PUT request and is not
        covered by the signature.
        """
        return self._render_url(self._cors_request("PUT"))

    def make_upload_policy(
        self,
        filename: str,
        key: str,
        *,
        is_attachment: bool = False,
        custom_fields: Mapping[str, str] | None = None,
    ) -> UploadPolicy:
        """Build the policy document for a form upload.

        See `build_upload_policy` for the meaning of the parameters.

        Returns
        -------
        UploadPolicy
            Policy with conditions in the order they are signed.
        """
        policy = UploadPolicy(expiration=self.expiration())
        for field, value in self._form_conditions(
            filename, key, is_attachment, custom_fields
        ):
            policy.add_condition(field, value)
        return policy

    def build_upload_policy(
        self,
        filename: str,
        key: str,
        *,
        is_attachment: bool = False,
        custom_fields: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Build the signed form fields for a browser upload.

        The returned fields should be posted as a multipart form to the
        bucket URL, followed by a ``file`` field containing the data.

        Parameters
        ----------
        filename
            Name of the file being uploaded. Used to guess the content type
            and, for attachments, the download filename.
        key
            Object key to store the upload under.
        is_attachment
            Whether reading the object should prompt a download. Adds a
            ``Content-Disposition`` header using the base name of
            ``filename``.
        custom_fields
            Additional object metadata. Every field is stored as
            :samp:`x-goog-meta-{name}` metadata, and a non-empty
            ``Cache-Control`` field is also applied as a header.

        Returns
        -------
        dict of str
            Form fields, including the base64-encoded policy and its
            signature. Every condition in the policy has a matching field.
        """
        policy = self.make_upload_policy(
            filename,
            key,
            is_attachment=is_attachment,
            custom_fields=custom_fields,
        )
        encoded = base64.b64encode(policy.to_json().encode()).decode()
        form = {
            "GoogleAccessId": self._email,
            "key": key,
            "Content-Type": policy.conditions[2]["Content-Type"],
            "bucket": self._bucket,
            "policy": encoded,
            "signature": self.sign(encoded),
        }

        # The bucket, key, and content type conditions are already present.
        for condition in policy.conditions[3:]:
            form.update(condition)
        return form

    def _cors_request(self, verb: str) -> SignedURLRequest:
        return SignedURLRequest(
            verb=verb,
            resource=f"/{self._bucket}/",
            expires=self._expires(),
            subresource="cors",
        )

    def _expires(self) -> int:
        return unix_timestamp(self.expiration())

    def _form_conditions(
        self,
        filename: str,
        key: str,
        is_attachment: bool,  # noqa: FBT001
        custom_fields: Mapping[str, str] | None,
    ) -> list[tuple[str, str]]:
        mime_type, _ = mimetypes.guess_type(filename)
        conditions = [
            ("bucket", self._bucket),
            ("key", _check_key(key)),
            ("Content-Type", mime_type or _DEFAULT_MIME_TYPE),
        ]
        if is_attachment:
            basename = PurePath(filename).name
            disposition = f"attachment; filename={basename}"
            conditions.append(("Content-Disposition", disposition))
        custom_fields = custom_fields or {}
        if cache_control := custom_fields.get("Cache-Control"):
            conditions.append(("Cache-Control", cache_control))
        conditions.extend(
            (f"x-goog-meta-{field}", value)
            for field, value in custom_fields.items()
        )
        return conditions

    def _load_key(self, pem: str) -> rsa.RSAPrivateKey:
        try:
            key = serialization.load_pem_private_key(
                pem.encode(), password=None
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise PrivateKeyError(str(e)) from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise PrivateKeyError(f"{type(key).__name__} is not an RSA key")
        return key

    def _object_request(self, verb: str, key: str) -> SignedURLRequest:
        return SignedURLRequest(
            verb=verb,
            resource=f"/{self._bucket}/{_check_key(key)}",
            expires=self._expires(),
        )

    def _render_url(self, request: SignedURLRequest, key: str = "") -> str:
        signature = self.sign(request.canonical_string())
        query = request.query_prefix()
        query.append(f"GoogleAccessId={quote(self._email, safe='@')}")
        query.append(f"Expires={request.expires}")
        query.append(f"Signature={quote(signature, safe='')}")
        return f"{self.base_url}/{key}?" + "&".join(query)
