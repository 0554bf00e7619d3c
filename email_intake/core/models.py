"""
Data models for email processing.

Uses dataclasses for clean, typed data structures. Processing state is a
tagged union: one dataclass per status, so a completed state without a
response cannot be constructed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parseaddr
from enum import Enum
from typing import Any, ClassVar, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ProcessingStatus(str, Enum):
    """Lifecycle status of a record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    MANUAL_REVIEW = "manual-review"


class DeliveryStatus(str, Enum):
    """Outcome of sending the generated reply."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EmailTemplate(str, Enum):
    """Branding variant of the outbound email."""

    STANDARD = "standard"
    URGENT = "urgent"
    QUOTE = "quote"


@dataclass(frozen=True)
class EmailRecord:
    """An ingested email. Immutable once stored."""

    id: str
    thread_id: str = ""
    subject: str = ""
    sender: str = ""
    recipient: str = ""
    date: str = ""
    snippet: str = ""
    body: str = ""
    received_at: str = ""
    history_id: int = 0

    @property
    def content(self) -> str:
        """Message text sent to the LLM, falling back to the snippet."""
        return self.body or self.snippet

    @property
    def sender_email(self) -> str:
        """Extract email address from a header like 'Name <email@example.com>'."""
        if not self.sender:
            return ""
        _, address = parseaddr(self.sender)
        return address or self.sender.strip()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmailRecord":
        """Create an EmailRecord from the upstream camelCase payload."""
        return cls(
            id=str(data["id"]),
            thread_id=data.get("threadId") or "",
            subject=data.get("subject") or "",
            sender=data.get("from") or "",
            recipient=data.get("to") or "",
            date=data.get("date") or "",
            snippet=data.get("snippet") or "",
            body=data.get("body") or "",
            received_at=data.get("receivedAt") or data.get("date") or "",
            history_id=int(data.get("historyId") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the upstream camelCase payload."""
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "subject": self.subject,
            "from": self.sender,
            "to": self.recipient,
            "date": self.date,
            "snippet": self.snippet,
            "body": self.body,
            "receivedAt": self.received_at,
            "historyId": self.history_id,
        }


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the LLM provider."""

    prompt: int = 0
    completion: int = 0
    total: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
            total=self.total + other.total,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TokenUsage":
        data = data or {}
        return cls(
            prompt=int(data.get("prompt") or 0),
            completion=int(data.get("completion") or 0),
            total=int(data.get("total") or 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion, "total": self.total}


@dataclass(frozen=True)
class Delivery:
    """Delivery outcome attached to a completed record."""

    status: DeliveryStatus = DeliveryStatus.PENDING
    delivered_at: datetime | None = None
    message_id: str | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Delivery":
        data = data or {}
        return cls(
            status=DeliveryStatus(data.get("status") or DeliveryStatus.PENDING.value),
            delivered_at=_parse_dt(data.get("deliveredAt")),
            message_id=data.get("messageId"),
            error=data.get("error"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "deliveredAt": _iso(self.delivered_at),
            "messageId": self.message_id,
            "error": self.error,
        }


# Processing state variants


@dataclass(frozen=True)
class Pending:
    status: ClassVar[ProcessingStatus] = ProcessingStatus.PENDING


@dataclass(frozen=True)
class Processing:
    status: ClassVar[ProcessingStatus] = ProcessingStatus.PROCESSING

    started_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Completed:
    status: ClassVar[ProcessingStatus] = ProcessingStatus.COMPLETED

    response: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    processing_time_ms: int = 0
    processed_at: datetime = field(default_factory=utcnow)
    model: str | None = None
    category: str | None = None
    delivery: Delivery = field(default_factory=Delivery)

    def __post_init__(self):
        if not self.response or not self.response.strip():
            raise ValueError("A completed state requires a non-empty response")


@dataclass(frozen=True)
class Failed:
    status: ClassVar[ProcessingStatus] = ProcessingStatus.FAILED

    error: str
    failed_at: datetime = field(default_factory=utcnow)
    error_code: str | None = None


@dataclass(frozen=True)
class ManualReview:
    status: ClassVar[ProcessingStatus] = ProcessingStatus.MANUAL_REVIEW

    error: str
    failed_at: datetime = field(default_factory=utcnow)
    error_code: str | None = None


ProcessingState = Union[Pending, Processing, Completed, Failed, ManualReview]


def state_to_dict(state: ProcessingState) -> dict[str, Any]:
    """Serialize a state variant with its status tag."""
    data: dict[str, Any] = {"status": state.status.value}
    if isinstance(state, Processing):
        data["startedAt"] = _iso(state.started_at)
    elif isinstance(state, Completed):
        data.update(
            response=state.response,
            tokenUsage=state.token_usage.to_dict(),
            processingTime=state.processing_time_ms,
            processedAt=_iso(state.processed_at),
            model=state.model,
            category=state.category,
            delivery=state.delivery.to_dict(),
        )
    elif isinstance(state, (Failed, ManualReview)):
        data.update(error=state.error, failedAt=_iso(state.failed_at), errorCode=state.error_code)
    return data


def state_from_dict(data: dict[str, Any] | None, response: str | None = None) -> ProcessingState:
    """
    Deserialize a state variant.

    Args:
        data: Stored state payload (missing payload reads as pending)
        response: Response text stored under its own key, preferred over
            the copy embedded in the state payload

    Returns:
        The matching state variant
    """
    if not data:
        return Pending()

    status = ProcessingStatus(data.get("status") or ProcessingStatus.PENDING.value)

    if status == ProcessingStatus.PROCESSING:
        return Processing(started_at=_parse_dt(data.get("startedAt")) or utcnow())

    if status == ProcessingStatus.COMPLETED:
        text = response or data.get("response")
        if not text:
            # Partial write: the status landed but the response did not
            return Failed(
                error="Completed state is missing its response",
                failed_at=_parse_dt(data.get("processedAt")) or utcnow(),
            )
        return Completed(
            response=text,
            token_usage=TokenUsage.from_dict(data.get("tokenUsage")),
            processing_time_ms=int(data.get("processingTime") or 0),
            processed_at=_parse_dt(data.get("processedAt")) or utcnow(),
            model=data.get("model"),
            category=data.get("category"),
            delivery=Delivery.from_dict(data.get("delivery")),
        )

    if status in (ProcessingStatus.FAILED, ProcessingStatus.MANUAL_REVIEW):
        variant = Failed if status == ProcessingStatus.FAILED else ManualReview
        return variant(
            error=data.get("error") or "Unknown error occurred",
            failed_at=_parse_dt(data.get("failedAt")) or utcnow(),
            error_code=data.get("errorCode"),
        )

    return Pending()


@dataclass
class ProcessingResult:
    """Outcome of one processing attempt, as consumed by the dashboard."""

    email_id: str
    status: ProcessingStatus
    processed_at: datetime = field(default_factory=utcnow)
    response: str | None = None
    token_usage: TokenUsage | None = None
    processing_time_ms: int | None = None
    error: str | None = None
    email_sent: bool = False
    delivery_message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "emailId": self.email_id,
            "status": self.status.value,
            "response": self.response,
            "tokenUsage": self.token_usage.to_dict() if self.token_usage else None,
            "processingTime": self.processing_time_ms,
            "error": self.error,
            "processedAt": _iso(self.processed_at),
            "emailSent": self.email_sent,
            "deliveryMessageId": self.delivery_message_id,
        }


@dataclass
class ResetResult:
    """Outcome of forcing a record back to pending."""

    email_id: str
    previous_status: ProcessingStatus
    had_response: bool


@dataclass
class QueueStats:
    """Record counts per status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    manual_review: int = 0
    emails_sent: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed + self.manual_review

    @property
    def success_rate(self) -> int:
        """Completed share of finished records, in whole percent."""
        finished = self.completed + self.failed + self.manual_review
        if not finished:
            return 0
        return round(self.completed / finished * 100)

    def to_dict(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "manualReview": self.manual_review,
            "totalEmails": self.total,
            "emailsSent": self.emails_sent,
            "successRate": self.success_rate,
        }


@dataclass
class TokenAggregate:
    """Global token usage, accumulated append-only across all records."""

    prompt: int = 0
    completion: int = 0
    total: int = 0
    emails_processed: int = 0
    last_updated: datetime | None = None

    @property
    def average_tokens_per_email(self) -> int:
        if not self.emails_processed:
            return 0
        return round(self.total / self.emails_processed)

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(prompt=self.prompt, completion=self.completion, total=self.total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalPrompt": self.prompt,
            "totalCompletion": self.completion,
            "totalTokens": self.total,
            "emailsProcessed": self.emails_processed,
            "averageTokensPerEmail": self.average_tokens_per_email,
            "lastUpdated": _iso(self.last_updated),
        }
