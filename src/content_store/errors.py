"""
Error taxonomy for the content store.
"""


class ContentStoreError(Exception):
    """Base class for every error raised by the content store."""


class InvalidInputError(ContentStoreError, ValueError):
    """The payload handed to the store is empty or malformed."""


class InvalidCIDError(ContentStoreError, ValueError):
    """A CID string could not be decoded."""


class NotFoundError(ContentStoreError, KeyError):
    """A block or CID is not present in the store."""

    def __str__(self) -> str:
        # KeyError quotes its argument
        return Exception.__str__(self)


class CorruptionError(ContentStoreError):
    """Stored bytes no longer match the digest they are filed under."""


class StoreIOError(ContentStoreError, OSError):
    """The underlying storage or input stream failed."""
