"""
Processing endpoints: single records, queue sweeps, retry and reset.

Static paths are registered before /process/{email_id} so they are not
captured by the id route.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from email_intake.core.logging import get_logger
from email_intake.core.models import Completed, ProcessingResult, ProcessingStatus, state_to_dict
from email_intake.dependencies import get_processor, openai_configured, require_llm
from email_intake.processors.orchestrator import EmailProcessor

log = get_logger(__name__)

router = APIRouter()

_RESULT_STATUS_CODES = {
    ProcessingStatus.COMPLETED: 200,
    ProcessingStatus.MANUAL_REVIEW: 202,
    ProcessingStatus.FAILED: 502,
}


def _result_response(result: ProcessingResult) -> JSONResponse:
    return JSONResponse(
        status_code=_RESULT_STATUS_CODES.get(result.status, 200),
        content={"success": result.status == ProcessingStatus.COMPLETED, **result.to_dict()},
    )


def _summarize(results: list[ProcessingResult]) -> dict:
    return {
        "processed": len(results),
        "successful": sum(r.status == ProcessingStatus.COMPLETED for r in results),
        "failed": sum(r.status == ProcessingStatus.FAILED for r in results),
        "manualReview": sum(r.status == ProcessingStatus.MANUAL_REVIEW for r in results),
    }


@router.post("/process/queue", dependencies=[Depends(require_llm)])
async def process_queue(processor: EmailProcessor = Depends(get_processor)):
    """Sweep every pending email. Returns an empty sweep if one is already running."""
    before = await processor.get_queue_stats()
    results = await processor.process_queue()
    after = await processor.get_queue_stats()

    return {
        "success": True,
        "summary": {
            **_summarize(results),
            "remainingPending": after.pending,
            "totalCompleted": after.completed,
        },
        "results": [
            {
                "emailId": r.email_id,
                "status": r.status.value,
                "hasResponse": bool(r.response),
                "tokenUsage": r.token_usage.to_dict() if r.token_usage else None,
                "processingTime": r.processing_time_ms,
                "error": r.error,
            }
            for r in results
        ],
        "stats": {"before": before.to_dict(), "after": after.to_dict()},
    }


@router.get("/process/queue")
async def queue_status(
    request: Request,
    processor: EmailProcessor = Depends(get_processor),
):
    stats = await processor.get_queue_stats()
    return {
        "queue": stats.to_dict(),
        "tokenUsage": await processor.get_token_usage(),
        "sweepRunning": processor.sweep_running,
        "openAIConfigured": openai_configured(request),
    }


@router.get("/process/stats")
async def processing_stats(
    request: Request,
    processor: EmailProcessor = Depends(get_processor),
):
    """Queue counts, token usage and cost for the dashboard header."""
    llm = getattr(request.app.state, "llm", None)
    stats = await processor.get_queue_stats()
    return {
        "status": {
            "openAIConfigured": openai_configured(request),
            "model": processor.model,
            "protocol": llm.protocol.value if llm else None,
            "maxTokens": llm.max_tokens if llm else None,
        },
        "processing": stats.to_dict(),
        "tokenUsage": await processor.get_token_usage(),
    }


@router.post("/process/retry/{email_id}", dependencies=[Depends(require_llm)])
async def retry_email(email_id: str, processor: EmailProcessor = Depends(get_processor)):
    """Retry a failed or manual-review email."""
    log.info("api_retry_email", email_id=email_id)
    result = await processor.retry_email(email_id)
    return _result_response(result)


@router.post("/process/reset/{email_id}")
async def reset_email(
    request: Request,
    email_id: str,
    rerun: bool = False,
    processor: EmailProcessor = Depends(get_processor),
):
    """Reset an email to pending. With rerun=true, process it again right away."""
    if rerun:
        require_llm(request)
        log.info("api_rerun_email", email_id=email_id)
        return _result_response(await processor.rerun_email(email_id))

    reset = await processor.reset_email(email_id)
    return {
        "success": True,
        "emailId": email_id,
        "previousStatus": reset.previous_status.value,
        "newStatus": ProcessingStatus.PENDING.value,
        "hadResponse": reset.had_response,
        "message": "Email reset to pending status for reprocessing",
    }


@router.get("/process/reset/{email_id}")
async def reset_check(email_id: str, processor: EmailProcessor = Depends(get_processor)):
    """Whether an email can be reset, plus what a reset would discard."""
    state = await processor.get_status(email_id)
    response = state.response if isinstance(state, Completed) else None
    return {
        "emailId": email_id,
        "currentStatus": state.status.value,
        "canReset": await processor.can_reset(email_id),
        "hasResponse": bool(response),
        "responseLength": len(response or ""),
        "tokenUsage": state.token_usage.to_dict() if isinstance(state, Completed) else None,
    }


@router.post("/process/{email_id}", dependencies=[Depends(require_llm)])
async def process_email(email_id: str, processor: EmailProcessor = Depends(get_processor)):
    """Process one pending email."""
    log.info("api_process_email", email_id=email_id)
    result = await processor.process_email(email_id)
    return _result_response(result)


@router.get("/process/{email_id}")
async def email_status(email_id: str, processor: EmailProcessor = Depends(get_processor)):
    state = await processor.get_status(email_id)
    return {"emailId": email_id, **state_to_dict(state)}
