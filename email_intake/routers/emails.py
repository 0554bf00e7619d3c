"""
Email listing and ingestion endpoints used by the dashboard feed.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from email_intake.core.logging import get_logger
from email_intake.core.models import (
    Completed,
    EmailRecord,
    Failed,
    ManualReview,
    ProcessingState,
    state_to_dict,
)
from email_intake.core.store import BaseStore
from email_intake.dependencies import get_poller, get_processor, get_store
from email_intake.processors.orchestrator import EmailProcessor
from email_intake.services.poller import EmailPoller

log = get_logger(__name__)

router = APIRouter()


class EmailPayload(BaseModel):
    """Upstream email record, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    thread_id: str = Field("", alias="threadId")
    subject: str = ""
    sender: str = Field("", alias="from")
    recipient: str = Field("", alias="to")
    date: str = ""
    snippet: str = ""
    body: str = ""
    received_at: str = Field("", alias="receivedAt")
    history_id: int = Field(0, alias="historyId")

    def to_record(self) -> EmailRecord:
        return EmailRecord.from_dict(self.model_dump(by_alias=True))


def email_view(record: EmailRecord, state: ProcessingState) -> dict:
    """Record merged with its state, the shape the dashboard renders."""
    state_data = state_to_dict(state)
    view = {**record.to_dict(), "status": state_data.pop("status")}

    if isinstance(state, Completed):
        delivery = state_data.pop("delivery")
        view.update(state_data)
        view["deliveryStatus"] = delivery["status"]
        view["deliveredAt"] = delivery["deliveredAt"]
        view["deliveryMessageId"] = delivery["messageId"]
        view["deliveryError"] = delivery["error"]
    elif isinstance(state, (Failed, ManualReview)):
        view.update(state_data)
        view["processedAt"] = state_data["failedAt"]
    else:
        view.update(state_data)
    return view


async def list_email_views(store: BaseStore) -> list[dict]:
    views = []
    for email_id in await store.list_ids():
        record = await store.get_record(email_id)
        if record is None:
            continue
        views.append(email_view(record, await store.get_state(email_id)))
    return sorted(views, key=lambda v: v.get("receivedAt") or "", reverse=True)


@router.get("/emails")
async def list_emails(
    store: BaseStore = Depends(get_store),
    processor: EmailProcessor = Depends(get_processor),
):
    """All tracked emails, newest first, with queue counts."""
    emails = await list_email_views(store)
    stats = await processor.get_queue_stats()
    return {"emails": emails, "stats": stats.to_dict()}


@router.get("/emails/poll")
async def poll_emails(
    poller: EmailPoller = Depends(get_poller),
    store: BaseStore = Depends(get_store),
    processor: EmailProcessor = Depends(get_processor),
):
    """Ingest new records above the watermark."""
    result = await poller.poll()
    emails = await list_email_views(store)
    stats = await processor.get_queue_stats()
    return {
        "success": True,
        **result.to_dict(),
        "emails": emails,
        "stats": stats.to_dict(),
    }


@router.post("/emails/poll")
async def add_email(
    payload: EmailPayload,
    poller: EmailPoller = Depends(get_poller),
):
    """Add an email by hand, e.g. a test email from the dashboard."""
    try:
        record = await poller.ingest(payload.to_record())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "message": "Email added successfully", "emailId": record.id}


@router.put("/emails/poll")
async def refresh_emails(
    poller: EmailPoller = Depends(get_poller),
    store: BaseStore = Depends(get_store),
):
    """Track every untracked record and reset the watermark to the highest historyId."""
    result = await poller.refresh()
    emails = await list_email_views(store)
    return {"success": True, **result.to_dict(), "emails": emails}
