"""
Error taxonomy for the processing pipeline.
"""

from enum import Enum


class LLMErrorCode(str, Enum):
    """Classified LLM failure."""

    RATE_LIMIT = "rate_limit"
    API_ERROR = "api_error"  # 5xx
    INVALID_REQUEST = "invalid_request"  # 4xx, never retried
    TIMEOUT = "timeout"  # network / transport
    EMPTY_RESPONSE = "empty_response"  # 200 OK without usable content


_NOT_RETRIED = {LLMErrorCode.INVALID_REQUEST, LLMErrorCode.EMPTY_RESPONSE}


class LLMError(Exception):
    """A classified failure surfaced by an LLM client."""

    def __init__(
        self,
        code: LLMErrorCode,
        message: str,
        *,
        retry_after: float | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retry_after = retry_after
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Whether the client retries this class of failure."""
        return self.code not in _NOT_RETRIED

    def __repr__(self) -> str:
        return f"LLMError(code={self.code.value!r}, message={self.message!r})"


class ConfigurationError(Exception):
    """Invalid or incomplete configuration detected at startup."""


class EmailNotFoundError(LookupError):
    """No record exists for the requested email id."""

    def __init__(self, email_id: str):
        super().__init__(f"Email not found: {email_id}")
        self.email_id = email_id


class InvalidTransitionError(Exception):
    """The requested operation is not allowed from the record's current status."""

    def __init__(self, email_id: str, operation: str, status: str):
        super().__init__(f"Cannot {operation} email with status: {status}")
        self.email_id = email_id
        self.operation = operation
        self.status = status


class RecordBusyError(Exception):
    """The record is already reserved by an in-flight processing task."""

    def __init__(self, email_id: str):
        super().__init__(f"Email is already being processed: {email_id}")
        self.email_id = email_id


class DuplicateEmailError(Exception):
    """A record with this id is already stored."""

    def __init__(self, email_id: str):
        super().__init__(f"Email already exists: {email_id}")
        self.email_id = email_id
