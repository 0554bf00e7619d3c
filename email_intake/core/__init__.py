"""Core modules for email processing."""

from .logging import configure_logging, get_logger, bind_context, clear_context
from .errors import (
    LLMError,
    LLMErrorCode,
    ConfigurationError,
    DuplicateEmailError,
    EmailNotFoundError,
    InvalidTransitionError,
    RecordBusyError,
)
from .models import (
    EmailRecord,
    ProcessingStatus,
    DeliveryStatus,
    EmailTemplate,
    TokenUsage,
    Delivery,
    Pending,
    Processing,
    Completed,
    Failed,
    ManualReview,
    ProcessingState,
    ProcessingResult,
    ResetResult,
    QueueStats,
    TokenAggregate,
)
from .store import BaseStore, RedisStore

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LLMError",
    "LLMErrorCode",
    "ConfigurationError",
    "DuplicateEmailError",
    "EmailNotFoundError",
    "InvalidTransitionError",
    "RecordBusyError",
    "EmailRecord",
    "ProcessingStatus",
    "DeliveryStatus",
    "EmailTemplate",
    "TokenUsage",
    "Delivery",
    "Pending",
    "Processing",
    "Completed",
    "Failed",
    "ManualReview",
    "ProcessingState",
    "ProcessingResult",
    "ResetResult",
    "QueueStats",
    "TokenAggregate",
    "BaseStore",
    "RedisStore",
]
