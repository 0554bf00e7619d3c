"""
Incremental ingestion of email records written by the upstream mail watcher.

The watcher writes record keys and a by-history index. The poller picks up
every untracked record above the watermark, gives it a Pending state and
advances the watermark.
"""

from dataclasses import dataclass, field

from email_intake.core.errors import DuplicateEmailError
from email_intake.core.logging import get_logger
from email_intake.core.models import EmailRecord, Pending
from email_intake.core.store import BaseStore

log = get_logger(__name__)


@dataclass
class PollResult:
    new_count: int
    last_history_id: int
    new_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "newCount": self.new_count,
            "lastHistoryId": self.last_history_id,
            "newIds": self.new_ids,
        }


@dataclass
class RefreshResult:
    imported: int
    total: int
    max_history_id: int

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "totalEmails": self.total,
            "maxHistoryId": self.max_history_id,
        }


class EmailPoller:
    """Discovers new records in the store and queues them as pending."""

    def __init__(self, store: BaseStore):
        self.store = store

    async def poll(self) -> PollResult:
        """
        Ingest untracked records with a historyId above the watermark.

        A record that fails to store is logged and skipped. The watermark only
        moves to the highest historyId actually stored.
        """
        watermark = await self.store.get_watermark()
        candidates = await self.store.list_new_records(watermark)

        new_ids = []
        max_history_id = watermark
        for record in candidates:
            try:
                await self._store(record)
            except Exception as e:
                log.error("email_store_failed", email_id=record.id, error=str(e))
                continue
            new_ids.append(record.id)
            max_history_id = max(max_history_id, record.history_id)

        if max_history_id > watermark:
            await self.store.set_watermark(max_history_id)

        log.info(
            "poll_complete",
            new_count=len(new_ids),
            previous_history_id=watermark,
            last_history_id=max_history_id,
        )
        return PollResult(new_count=len(new_ids), last_history_id=max_history_id, new_ids=new_ids)

    async def ingest(self, record: EmailRecord) -> EmailRecord:
        """
        Add a record by hand, as the dashboard's test-email form does.

        Raises:
            ValueError: record is missing its id, sender or subject
            DuplicateEmailError: a record with the same id is already stored
        """
        if not record.id or not record.sender or not record.subject:
            raise ValueError("Missing required email fields")
        if await self.store.get_record(record.id) is not None:
            raise DuplicateEmailError(record.id)

        await self._store(record)
        if record.history_id > await self.store.get_watermark():
            await self.store.set_watermark(record.history_id)

        log.info("email_ingested", email_id=record.id, subject=record.subject)
        return record

    async def refresh(self) -> RefreshResult:
        """Track every untracked record and move the watermark to the highest historyId seen."""
        imported = await self.store.import_untracked()

        ids = await self.store.list_ids()
        max_history_id = 0
        for email_id in ids:
            record = await self.store.get_record(email_id)
            if record:
                max_history_id = max(max_history_id, record.history_id)

        if max_history_id > 0:
            await self.store.set_watermark(max_history_id)

        log.info("refresh_complete", imported=imported, total=len(ids), max_history_id=max_history_id)
        return RefreshResult(imported=imported, total=len(ids), max_history_id=max_history_id)

    async def _store(self, record: EmailRecord) -> None:
        await self.store.put_record(record)
        await self.store.put_state(record.id, Pending())
