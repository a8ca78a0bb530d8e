"""storecloud signs requests for Google Cloud Storage so that objects can be
read, written, and managed without handing out service account credentials.
"""

from importlib.metadata import PackageNotFoundError, version

from ._client import StorageClient
from ._config import StorageConfig
from ._exceptions import (
    InvalidRequestError,
    PrivateKeyError,
    StorecloudError,
)
from ._models import (
    Acl,
    Credentials,
    ObjectMetadata,
    SignedURLRequest,
    UploadPolicy,
)
from ._signer import RequestSigner

__all__ = [
    "Acl",
    "Credentials",
    "InvalidRequestError",
    "ObjectMetadata",
    "PrivateKeyError",
    "RequestSigner",
    "SignedURLRequest",
    "StorageClient",
    "StorageConfig",
    "StorecloudError",
    "UploadPolicy",
    "__version__",
]

__version__: str
"""The version string of storecloud (PEP 440 / SemVer compatible)."""

try:
    __version__ = version(__name__)
except PackageNotFoundError:
    # package is not installed
    __version__ = "0.0.0"
