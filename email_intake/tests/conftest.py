"""
Shared pytest fixtures for email_intake tests.
"""

from datetime import datetime, timezone

import pytest

from email_intake.config import LLMProtocol, Settings
from email_intake.core.models import (
    EmailRecord,
    Pending,
    ProcessingState,
    TokenAggregate,
    TokenUsage,
    utcnow,
)
from email_intake.core.store import BaseStore
from email_intake.llm.base import ConnectionCheck, LLMResponse
from email_intake.services.delivery import DeliveryResult

FIXED_NOW = datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc)


class InMemoryStore(BaseStore):
    """BaseStore kept in dicts. Records added with add_upstream are untracked."""

    def __init__(self):
        self.records: dict[str, EmailRecord] = {}
        self.tracked: set[str] = set()
        self.states: dict[str, ProcessingState] = {}
        self.aggregate = TokenAggregate()
        self.watermark = 0
        self.state_writes: list[tuple[str, ProcessingState]] = []
        self.fail_put_record: set[str] = set()
        self.fail_state_writes: dict[str, type | tuple[type, ...]] = {}

    def add_upstream(self, record: EmailRecord) -> None:
        """Simulate the mail watcher writing a record key."""
        self.records[record.id] = record

    async def get_record(self, email_id):
        return self.records.get(email_id)

    async def put_record(self, record):
        if record.id in self.fail_put_record:
            raise ConnectionError("store unavailable")
        self.records[record.id] = record
        self.tracked.add(record.id)

    async def get_state(self, email_id):
        return self.states.get(email_id, Pending())

    async def put_state(self, email_id, state):
        if isinstance(state, self.fail_state_writes.get(email_id, ())):
            raise ConnectionError("store down")
        self.states[email_id] = state
        self.state_writes.append((email_id, state))

    async def list_ids(self):
        return sorted(self.tracked, key=lambda i: (self.records[i].received_at, i))

    async def append_token_aggregate(self, usage):
        self.aggregate = TokenAggregate(
            prompt=self.aggregate.prompt + usage.prompt,
            completion=self.aggregate.completion + usage.completion,
            total=self.aggregate.total + usage.total,
            emails_processed=self.aggregate.emails_processed + 1,
            last_updated=utcnow(),
        )

    async def get_token_aggregate(self):
        return self.aggregate

    async def get_watermark(self):
        return self.watermark

    async def set_watermark(self, history_id):
        self.watermark = history_id

    async def list_new_records(self, after_history_id):
        return sorted(
            (
                r
                for i, r in self.records.items()
                if i not in self.tracked and r.history_id > after_history_id
            ),
            key=lambda r: r.history_id,
        )

    async def import_untracked(self):
        imported = 0
        for email_id in list(self.records):
            if email_id not in self.tracked:
                self.tracked.add(email_id)
                self.states.setdefault(email_id, Pending())
                imported += 1
        return imported


class FakeLLM:
    """Stands in for a BaseLLMClient. Each call pops the next outcome."""

    protocol = LLMProtocol.CHAT_COMPLETIONS

    def __init__(self, outcomes=None, settings: Settings | None = None):
        self.settings = settings or Settings(_env_file=None, openai_api_key="sk-test")
        self.model = self.settings.openai_model
        self.max_tokens = self.settings.openai_max_tokens
        self.use_structured_output = False
        self.outcomes = list(outcomes or [])
        self.calls: list[str] = []
        self.gate = None  # Optional asyncio.Event awaited before answering

    async def process_email(self, record):
        self.calls.append(record.id)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else make_response(f"Reply to {record.id}")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def test_connection(self):
        return ConnectionCheck(success=True, message="Connection successful", model=self.model)

    async def aclose(self):
        pass


class FakeDelivery:
    """Stands in for a DeliveryGateway, returning a fixed result."""

    def __init__(self, result: DeliveryResult | None = None):
        self.result = result or DeliveryResult(
            success=True, message_id="re_123", sent_at=FIXED_NOW
        )
        self.sent: list[tuple[str, str]] = []

    async def send(self, record, response_text, template=None):
        self.sent.append((record.id, response_text))
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result

    async def send_test_email(self, to_address, template=None):
        return self.result

    def describe(self):
        return {"enabled": True, "testMode": True}

    async def aclose(self):
        pass


def make_response(content: str = "Thanks, here is your quote.", total: int = 150) -> LLMResponse:
    return LLMResponse(
        content=content,
        token_usage=TokenUsage(prompt=100, completion=total - 100, total=total),
        model="gpt-4o-mini",
        processing_time_ms=42,
    )


def make_record(email_id: str = "msg-1", history_id: int = 100, **overrides) -> EmailRecord:
    fields = dict(
        id=email_id,
        thread_id=f"thread-{email_id}",
        subject="Rate request Chicago to Dallas",
        sender="Jane Shipper <jane@shipper.com>",
        recipient="quotes@amaraquo.com",
        date="Mon, 2 Mar 2026 09:00:00 +0000",
        snippet="Need a rate for a dry van",
        body="Hi, can you quote a 53' dry van Chicago to Dallas next Tuesday?",
        received_at=f"2026-03-02T09:{history_id % 60:02d}:00+00:00",
        history_id=history_id,
    )
    fields.update(overrides)
    return EmailRecord(**fields)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        openai_model="gpt-4o-mini",
        llm_max_attempts=3,
        llm_base_delay_seconds=1.0,
        llm_default_retry_after_seconds=60,
        enable_email_sending=True,
        email_test_mode=False,
        resend_api_key="re_test",
        resend_from_email="quotes@amaraquo.com",
        resend_from_name="Amara QUO",
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def sample_record() -> EmailRecord:
    """Sample inbound rate request."""
    return make_record()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested through the injected sleep."""
    return []


@pytest.fixture
def no_sleep(sleeps):
    """Sleep replacement that records the delay and returns immediately."""

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
