from .logging import get_sync_logger, log_sync_event, setup_sync_logger
from .retry import QUEUE_RETRY_CONFIG, AsyncRetrier, RetryConfig, RetryError

__all__ = [
    "setup_sync_logger",
    "get_sync_logger",
    "log_sync_event",
    "AsyncRetrier",
    "RetryConfig",
    "RetryError",
    "QUEUE_RETRY_CONFIG",
]
