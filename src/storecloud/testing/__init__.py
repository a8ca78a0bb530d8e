"""Test support for applications that use storecloud."""

from ._gcs import MockObject, MockStorage, mock_storage

__all__ = ["MockObject", "MockStorage", "mock_storage"]
