"""Exceptions raised by storecloud."""

from __future__ import annotations

__all__ = [
    "InvalidRequestError",
    "PrivateKeyError",
    "StorecloudError",
]


class StorecloudError(Exception):
    """Base class for storecloud exceptions."""


class PrivateKeyError(StorecloudError):
    """The private key could not be loaded as a PEM-encoded RSA key."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Cannot load service account private key: {reason}")


class InvalidRequestError(StorecloudError):
    """A request parameter cannot be placed in a string to sign.

    Raised for values that would change the structure of the canonical
    string, such as an object key or ACL containing a line break.
    """

    def __init__(self, field: str, value: str, reason: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field} {value!r}: {reason}")
