"""
Key-value store for email records and their processing state.

Records and states live under separate keys so the orchestrator can rewrite
state without touching the immutable record. The response text gets its own
sub-key so a response write can be verified independently of the status.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime

from redis.asyncio import Redis

from email_intake.config import settings
from email_intake.core.logging import get_logger
from email_intake.core.models import (
    Completed,
    EmailRecord,
    Pending,
    Processing,
    ProcessingState,
    ProcessingStatus,
    TokenAggregate,
    TokenUsage,
    state_from_dict,
    state_to_dict,
    utcnow,
)

log = get_logger(__name__)

# Names under {prefix}:email: that are not record ids
_RESERVED_IDS = {"all", "queue", "last_history_id", "processing"}


class BaseStore(ABC):
    """Abstract persistence contract consumed by the poller and orchestrator."""

    @abstractmethod
    async def get_record(self, email_id: str) -> EmailRecord | None:
        """Return the stored record, or None if it does not exist."""

    @abstractmethod
    async def put_record(self, record: EmailRecord) -> None:
        """Store a record and start tracking its id."""

    @abstractmethod
    async def get_state(self, email_id: str) -> ProcessingState:
        """Return the record's state. Missing state reads as Pending."""

    @abstractmethod
    async def put_state(self, email_id: str, state: ProcessingState) -> None:
        """Replace the record's state."""

    @abstractmethod
    async def list_ids(self) -> list[str]:
        """Return every tracked record id, oldest first."""

    @abstractmethod
    async def append_token_aggregate(self, usage: TokenUsage) -> None:
        """Add one record's token usage to the global aggregate."""

    @abstractmethod
    async def get_token_aggregate(self) -> TokenAggregate:
        """Return the global token aggregate."""

    @abstractmethod
    async def get_watermark(self) -> int:
        """Return the highest historyId already ingested."""

    @abstractmethod
    async def set_watermark(self, history_id: int) -> None:
        """Record the highest historyId already ingested."""

    @abstractmethod
    async def list_new_records(self, after_history_id: int) -> list[EmailRecord]:
        """Return untracked records with a historyId above the watermark."""

    @abstractmethod
    async def import_untracked(self) -> int:
        """Track every stored record that is not tracked yet. Returns the count."""

    async def list_ids_by_status(self, status: ProcessingStatus) -> list[str]:
        """Return tracked ids whose current state has the given status."""
        ids = []
        for email_id in await self.list_ids():
            state = await self.get_state(email_id)
            if state.status == status:
                ids.append(email_id)
        return ids


class RedisStore(BaseStore):
    """Store backed by Redis, using the upstream writer's key layout."""

    def __init__(self, redis: Redis | None = None, prefix: str | None = None):
        self.redis = redis or Redis.from_url(settings.redis_url, decode_responses=True)
        self.prefix = prefix or settings.store_key_prefix

    # Key layout

    def _record_key(self, email_id: str) -> str:
        return f"{self.prefix}:email:{email_id}"

    def _status_key(self, email_id: str) -> str:
        return f"{self.prefix}:email:{email_id}:status"

    def _response_key(self, email_id: str) -> str:
        return f"{self.prefix}:email:{email_id}:response"

    @property
    def _all_key(self) -> str:
        return f"{self.prefix}:email:all"

    @property
    def _queue_key(self) -> str:
        return f"{self.prefix}:email:queue"

    @property
    def _processing_key(self) -> str:
        return f"{self.prefix}:email:processing:queue"

    @property
    def _watermark_key(self) -> str:
        return f"{self.prefix}:email:last_history_id"

    @property
    def _by_history_key(self) -> str:
        return f"{self.prefix}:emails:by_history"

    @property
    def _token_usage_key(self) -> str:
        return f"{self.prefix}:stats:token_usage"

    def _id_from_key(self, key: str) -> str | None:
        """Map a key to a record id, or None for sub-keys and index keys."""
        head = f"{self.prefix}:email:"
        if not key.startswith(head):
            return None
        email_id = key[len(head):]
        if not email_id or ":" in email_id or email_id in _RESERVED_IDS:
            return None
        return email_id

    async def _scan_record_ids(self) -> list[str]:
        ids = []
        async for key in self.redis.scan_iter(match=f"{self.prefix}:email:*"):
            email_id = self._id_from_key(key)
            if email_id:
                ids.append(email_id)
        return ids

    # Records

    async def get_record(self, email_id: str) -> EmailRecord | None:
        raw = await self.redis.get(self._record_key(email_id))
        if not raw:
            return None
        return EmailRecord.from_dict(json.loads(raw))

    async def put_record(self, record: EmailRecord) -> None:
        score = _received_score(record)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._record_key(record.id), json.dumps(record.to_dict()))
            pipe.sadd(self._all_key, record.id)
            pipe.zadd(self._queue_key, {record.id: score})
            if record.history_id:
                pipe.zadd(self._by_history_key, {record.id: record.history_id})
            await pipe.execute()

    async def list_ids(self) -> list[str]:
        members = set(await self.redis.smembers(self._all_key))
        queued = await self.redis.zrange(self._queue_key, 0, -1)
        ordered = [email_id for email_id in queued if email_id in members]
        ordered.extend(sorted(members.difference(ordered)))
        return ordered

    # State

    async def get_state(self, email_id: str) -> ProcessingState:
        raw_state, response = await self.redis.mget(
            self._status_key(email_id), self._response_key(email_id)
        )
        data = json.loads(raw_state) if raw_state else None
        return state_from_dict(data, response=response)

    async def put_state(self, email_id: str, state: ProcessingState) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._status_key(email_id), json.dumps(state_to_dict(state)))
            if isinstance(state, Completed):
                pipe.set(self._response_key(email_id), state.response)
            else:
                pipe.delete(self._response_key(email_id))
            if isinstance(state, Processing):
                pipe.zadd(self._processing_key, {email_id: state.started_at.timestamp()})
            else:
                pipe.zrem(self._processing_key, email_id)
            await pipe.execute()

        if isinstance(state, Completed):
            stored = await self.redis.get(self._response_key(email_id))
            if not stored:
                log.error("response_write_unverified", email_id=email_id)

    # Token usage

    async def append_token_aggregate(self, usage: TokenUsage) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hincrby(self._token_usage_key, "totalPrompt", usage.prompt)
            pipe.hincrby(self._token_usage_key, "totalCompletion", usage.completion)
            pipe.hincrby(self._token_usage_key, "totalTokens", usage.total)
            pipe.hincrby(self._token_usage_key, "emailsProcessed", 1)
            pipe.hset(self._token_usage_key, "lastUpdated", utcnow().isoformat())
            await pipe.execute()

    async def get_token_aggregate(self) -> TokenAggregate:
        data = await self.redis.hgetall(self._token_usage_key)
        last_updated = data.get("lastUpdated")
        return TokenAggregate(
            prompt=int(data.get("totalPrompt", 0)),
            completion=int(data.get("totalCompletion", 0)),
            total=int(data.get("totalTokens", 0)),
            emails_processed=int(data.get("emailsProcessed", 0)),
            last_updated=_parse_iso(last_updated),
        )

    # Ingestion

    async def get_watermark(self) -> int:
        value = await self.redis.get(self._watermark_key)
        return int(value) if value else 0

    async def set_watermark(self, history_id: int) -> None:
        await self.redis.set(self._watermark_key, history_id)

    async def list_new_records(self, after_history_id: int) -> list[EmailRecord]:
        tracked = set(await self.redis.smembers(self._all_key))
        candidates = [i for i in await self._scan_record_ids() if i not in tracked]

        indexed = await self.redis.zrangebyscore(
            self._by_history_key, f"({after_history_id}", "+inf"
        )
        candidates.extend(i for i in indexed if i not in tracked and i not in candidates)

        records = []
        for email_id in candidates:
            record = await self.get_record(email_id)
            if record and record.history_id > after_history_id:
                records.append(record)

        return sorted(records, key=lambda r: r.history_id)

    async def import_untracked(self) -> int:
        tracked = set(await self.redis.smembers(self._all_key))
        imported = 0
        for email_id in await self._scan_record_ids():
            if email_id in tracked:
                continue
            await self.redis.sadd(self._all_key, email_id)
            if not await self.redis.exists(self._status_key(email_id)):
                await self.put_state(email_id, Pending())
            imported += 1

        if imported:
            log.info("untracked_records_imported", count=imported)
        return imported

    async def close(self) -> None:
        await self.redis.aclose()


def _received_score(record: EmailRecord) -> float:
    """Sort score for the received-time queue, falling back to historyId."""
    parsed = _parse_iso(record.received_at)
    if parsed:
        return parsed.timestamp()
    return float(record.history_id)


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
