"""
Processing orchestrator: the per-record state machine.

    pending -> processing -> completed
                          -> failed          (retryable LLM failure or unexpected error)
                          -> manual-review   (invalid_request, needs a human)

Only one record is processed at a time, process-wide. A single-permit
semaphore enforces that, a lock keeps full-queue sweeps from overlapping,
and a reservation set stops a manual call from touching a record that a
sweep (or another call) currently holds.
"""

import asyncio
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Awaitable, Callable

from email_intake.core.errors import (
    ConfigurationError,
    EmailNotFoundError,
    InvalidTransitionError,
    LLMError,
    LLMErrorCode,
    RecordBusyError,
)
from email_intake.core.logging import bind_context, clear_context, get_logger
from email_intake.core.models import (
    Completed,
    Delivery,
    DeliveryStatus,
    EmailRecord,
    Failed,
    ManualReview,
    Pending,
    Processing,
    ProcessingResult,
    ProcessingState,
    ProcessingStatus,
    QueueStats,
    ResetResult,
    utcnow,
)
from email_intake.core.store import BaseStore
from email_intake.llm.base import BaseLLMClient, LLMResponse
from email_intake.llm.pricing import calculate_cost
from email_intake.processors.base import BaseProcessor
from email_intake.services.delivery import DeliveryGateway, DeliveryResult

log = get_logger(__name__)

RETRYABLE_FROM = (Failed, ManualReview)
RESETTABLE_FROM = (Completed, Failed, ManualReview, Processing)


class EmailProcessor(BaseProcessor):
    """Drives records through the LLM, delivery and persistence steps."""

    def __init__(
        self,
        store: BaseStore,
        llm: BaseLLMClient | None,
        delivery: DeliveryGateway | None = None,
        record_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        model: str | None = None,
    ):
        self.store = store
        self.llm = llm
        self.delivery = delivery
        self.record_delay_seconds = record_delay_seconds
        self.model = model or (llm.model if llm else "")
        self._sleep = sleep
        self._clock = clock
        self._permit = asyncio.Semaphore(1)
        self._sweep_lock = asyncio.Lock()
        self._in_flight: set[str] = set()

    @property
    def sweep_running(self) -> bool:
        return self._sweep_lock.locked()

    def is_in_flight(self, email_id: str) -> bool:
        return email_id in self._in_flight

    # Operations

    async def process_email(self, email_id: str) -> ProcessingResult:
        """
        Process one record. Valid only from pending.

        Raises:
            EmailNotFoundError: no such record
            InvalidTransitionError: record is not pending
            RecordBusyError: record is held by another task
            ConfigurationError: no LLM client configured
        """
        self._require_llm()
        with self._reservation(email_id):
            return await self._process_pending(email_id)

    async def process_queue(self) -> list[ProcessingResult]:
        """
        Sweep all pending records sequentially, pausing between records.

        Returns [] immediately when another sweep is already running.
        """
        self._require_llm()
        if self._sweep_lock.locked():
            log.info("queue_sweep_already_running")
            return []

        async with self._sweep_lock:
            pending_ids = await self.store.list_ids_by_status(ProcessingStatus.PENDING)
            log.info("queue_sweep_start", pending=len(pending_ids))

            results = []
            for index, email_id in enumerate(pending_ids):
                if index and self.record_delay_seconds > 0:
                    await self._sleep(self.record_delay_seconds)

                try:
                    results.append(await self.process_email(email_id))
                except (RecordBusyError, InvalidTransitionError, EmailNotFoundError) as e:
                    # Claimed or changed by another caller since the listing
                    log.info("queue_record_skipped", email_id=email_id, reason=str(e))
                except Exception as e:
                    log.error("queue_record_error", email_id=email_id, error=str(e), exc_info=True)

            log.info(
                "queue_sweep_complete",
                processed=len(results),
                completed=sum(r.status == ProcessingStatus.COMPLETED for r in results),
                failed=sum(r.status == ProcessingStatus.FAILED for r in results),
                manual_review=sum(r.status == ProcessingStatus.MANUAL_REVIEW for r in results),
            )
            return results

    async def retry_email(self, email_id: str) -> ProcessingResult:
        """
        Re-run a failed or manual-review record as a fresh attempt.

        Raises:
            InvalidTransitionError: record is pending, processing or completed
        """
        self._require_llm()
        with self._reservation(email_id):
            state = await self._require_state(email_id)
            if not isinstance(state, RETRYABLE_FROM):
                raise InvalidTransitionError(email_id, "retry", state.status.value)

            log.info("email_retry", email_id=email_id, previous_status=state.status.value)
            await self.store.put_state(email_id, Pending())
            return await self._process_pending(email_id)

    async def reset_email(self, email_id: str) -> ResetResult:
        """Force a record back to pending, dropping its response, error and delivery."""
        with self._reservation(email_id):
            return await self._reset(email_id)

    async def rerun_email(self, email_id: str) -> ProcessingResult:
        """Reset a record and process it again under one reservation."""
        self._require_llm()
        with self._reservation(email_id):
            await self._reset(email_id)
            return await self._process_pending(email_id)

    async def can_reset(self, email_id: str) -> bool:
        state = await self._require_state(email_id)
        return isinstance(state, RESETTABLE_FROM) and not self.is_in_flight(email_id)

    async def get_status(self, email_id: str) -> ProcessingState:
        return await self._require_state(email_id)

    async def get_queue_stats(self) -> QueueStats:
        stats = QueueStats()
        for email_id in await self.store.list_ids():
            state = await self.store.get_state(email_id)
            if isinstance(state, Pending):
                stats.pending += 1
            elif isinstance(state, Processing):
                stats.processing += 1
            elif isinstance(state, Completed):
                stats.completed += 1
                if state.delivery.status == DeliveryStatus.SENT:
                    stats.emails_sent += 1
            elif isinstance(state, ManualReview):
                stats.manual_review += 1
            elif isinstance(state, Failed):
                stats.failed += 1
        return stats

    async def get_token_usage(self) -> dict[str, Any]:
        """Global token aggregate with an estimated cost for the active model."""
        aggregate = await self.store.get_token_aggregate()
        cost = calculate_cost(aggregate.usage, self.model)
        per_email = cost / aggregate.emails_processed if aggregate.emails_processed else 0.0
        return {
            **aggregate.to_dict(),
            "model": self.model,
            "estimatedCost": round(cost, 6),
            "costPerEmail": round(per_email, 6),
        }

    # Internals

    def _require_llm(self) -> None:
        if self.llm is None:
            raise ConfigurationError("LLM client is not configured")

    @contextmanager
    def _reservation(self, email_id: str):
        # Check and add with no await in between
        if email_id in self._in_flight:
            raise RecordBusyError(email_id)
        self._in_flight.add(email_id)
        try:
            yield
        finally:
            self._in_flight.discard(email_id)

    async def _require_record(self, email_id: str) -> EmailRecord:
        record = await self.store.get_record(email_id)
        if record is None:
            raise EmailNotFoundError(email_id)
        return record

    async def _require_state(self, email_id: str) -> ProcessingState:
        await self._require_record(email_id)
        return await self.store.get_state(email_id)

    async def _reset(self, email_id: str) -> ResetResult:
        state = await self._require_state(email_id)
        if not isinstance(state, RESETTABLE_FROM):
            raise InvalidTransitionError(email_id, "reset", state.status.value)

        had_response = isinstance(state, Completed)
        await self.store.put_state(email_id, Pending())
        log.info(
            "email_reset",
            email_id=email_id,
            previous_status=state.status.value,
            had_response=had_response,
        )
        return ResetResult(
            email_id=email_id,
            previous_status=state.status,
            had_response=had_response,
        )

    async def _process_pending(self, email_id: str) -> ProcessingResult:
        record = await self._require_record(email_id)
        state = await self.store.get_state(email_id)
        if not isinstance(state, Pending):
            raise InvalidTransitionError(email_id, "process", state.status.value)

        async with self._permit:
            bind_context(email_id=email_id)
            try:
                return await self._run(record)
            finally:
                clear_context()

    async def _run(self, record: EmailRecord) -> ProcessingResult:
        log.info("email_processing_start", subject=record.subject, sender=record.sender)
        await self.store.put_state(record.id, Processing(started_at=self._clock()))

        try:
            response = await self.llm.process_email(record)
            if not response.content or not response.content.strip():
                raise LLMError(LLMErrorCode.EMPTY_RESPONSE, "Received empty response")
        except LLMError as e:
            return await self._fail(record, e.message, e.code)
        except Exception as e:
            log.error("email_processing_error", error=str(e), exc_info=True)
            return await self._fail(record, str(e) or "Unknown error occurred", None)

        delivery, delivery_result = await self._deliver(record, response)
        completed = Completed(
            response=response.content,
            token_usage=response.token_usage,
            processing_time_ms=response.processing_time_ms,
            processed_at=self._clock(),
            model=response.model,
            category=response.category,
            delivery=delivery,
        )
        try:
            await self.store.put_state(record.id, completed)
        except Exception as e:
            log.error("completed_state_write_failed", error=str(e), exc_info=True)
            return await self._fail(
                record,
                f"Failed to save result: {e}",
                None,
                email_sent=delivery.status == DeliveryStatus.SENT,
            )

        try:
            await self.store.append_token_aggregate(response.token_usage)
        except Exception as e:
            log.error("token_aggregate_update_failed", error=str(e), exc_info=True)

        log.info(
            "email_processing_complete",
            total_tokens=response.token_usage.total,
            processing_time_ms=response.processing_time_ms,
            delivery_status=delivery.status.value,
        )
        return ProcessingResult(
            email_id=record.id,
            status=ProcessingStatus.COMPLETED,
            processed_at=completed.processed_at,
            response=completed.response,
            token_usage=completed.token_usage,
            processing_time_ms=completed.processing_time_ms,
            email_sent=delivery.status == DeliveryStatus.SENT,
            delivery_message_id=delivery_result.message_id if delivery_result else None,
        )

    async def _deliver(
        self, record: EmailRecord, response: LLMResponse
    ) -> tuple[Delivery, DeliveryResult | None]:
        """Send the reply. A delivery failure is recorded, never raised."""
        if self.delivery is None:
            return Delivery(status=DeliveryStatus.PENDING), None

        try:
            result = await self.delivery.send(record, response.content)
        except Exception as e:
            log.error("delivery_error", error=str(e), exc_info=True)
            result = DeliveryResult(success=False, error=str(e) or type(e).__name__)

        if result.skipped:
            return Delivery(status=DeliveryStatus.PENDING), result

        if result.success:
            return (
                Delivery(
                    status=DeliveryStatus.SENT,
                    delivered_at=result.sent_at or self._clock(),
                    message_id=result.message_id,
                ),
                result,
            )

        log.warning("delivery_not_sent", error=result.error)
        return Delivery(status=DeliveryStatus.FAILED, error=result.error), result

    async def _fail(
        self,
        record: EmailRecord,
        message: str,
        code: LLMErrorCode | None,
        email_sent: bool = False,
    ) -> ProcessingResult:
        """Record a failure. A store error here is logged and the result still returned."""
        failed_at = self._clock()
        error_code = code.value if code else None

        if code == LLMErrorCode.INVALID_REQUEST:
            state = ManualReview(error=message, failed_at=failed_at, error_code=error_code)
        else:
            state = Failed(error=message, failed_at=failed_at, error_code=error_code)

        try:
            await self.store.put_state(record.id, state)
        except Exception as e:
            log.error("failed_state_write_failed", error=str(e), exc_info=True)

        log.warning(
            "email_processing_failed",
            status=state.status.value,
            error_code=error_code,
            error=message,
        )
        return ProcessingResult(
            email_id=record.id,
            status=state.status,
            processed_at=failed_at,
            error=message,
            email_sent=email_sent,
        )
