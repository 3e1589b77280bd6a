"""
Custom exceptions for the sync pipeline.
"""


from typing import List, Optional


class SyncException(Exception):
    """Base exception for all sync-related errors."""

    pass


class RetryableException(SyncException):
    """Exception that indicates a message should be retried."""

    def __init__(self, message: str, retry_delay: int = 0):
        super().__init__(message)
        self.retry_delay = retry_delay


class NonRetryableException(SyncException):
    """Exception that indicates a message should not be retried."""

    pass


class MalformedInputError(NonRetryableException):
    """Notification or stored payload cannot be parsed."""

    pass


class ConfigurationException(NonRetryableException):
    """Configuration-related errors."""

    pass


class ConsistencyMismatchError(RetryableException):
    """The stored object changed after the notification was produced."""

    def __init__(
        self, key: str, expected: Optional[str] = None, actual: Optional[str] = None, message: Optional[str] = None
    ):
        super().__init__(message or f"Event ETag differs from stored object ETag for {key} ({expected} != {actual})")
        self.key = key
        self.expected = expected
        self.actual = actual


class IndexerUnavailableError(RetryableException):
    """Search engine rejected the request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, retry_delay: int = 5):
        super().__init__(message, retry_delay)
        self.status_code = status_code


class StorageError(RetryableException):
    """Object store errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, retry_delay: int = 3):
        super().__init__(message, retry_delay)
        self.error_code = error_code


class QueueError(RetryableException):
    """Retry queue errors, including partially failed batch sends."""

    def __init__(self, message: str, failed_ids: Optional[List[str]] = None, retry_delay: int = 3):
        super().__init__(message, retry_delay)
        self.failed_ids = failed_ids or []


class ReplayError(RetryableException):
    """A re-invocation of the primary function reported a failure."""

    def __init__(self, message: str, error_type: Optional[str] = None):
        super().__init__(message)
        self.error_type = error_type


class ReindexIncompleteError(SyncException):
    """
    A reindex run stopped on its time budget before enumeration finished.

    Raised so the dispatcher redelivers the same request; the stored
    checkpoint makes the next run resume after ``last_key``.
    """

    def __init__(self, collection_id: str, last_key: Optional[str]):
        super().__init__(f"Reindex of {collection_id} incomplete, resume after {last_key!r}")
        self.collection_id = collection_id
        self.last_key = last_key
