"""Unit tests for the scheduled poll job."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from email_intake.scheduler import poll_emails_job
from email_intake.services.poller import PollResult


@pytest.fixture
def poller():
    poller = MagicMock()
    poller.poll = AsyncMock(return_value=PollResult(new_count=1, last_history_id=5, new_ids=["a"]))
    return poller


@pytest.fixture
def processor():
    processor = MagicMock()
    processor.process_queue = AsyncMock(return_value=[])
    return processor


class TestPollEmailsJob:
    @pytest.mark.asyncio
    async def test_poll_only(self, poller, processor):
        await poll_emails_job(poller, processor, auto_process=False)

        poller.poll.assert_awaited_once()
        processor.process_queue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auto_process_sweeps(self, poller, processor):
        await poll_emails_job(poller, processor, auto_process=True)
        processor.process_queue.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, poller, processor):
        """Test a failing poll never raises out of the job."""
        poller.poll.side_effect = ConnectionError("redis down")

        await poll_emails_job(poller, processor, auto_process=True)
        processor.process_queue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sweep_errors_are_logged(self, poller, processor):
        processor.process_queue.side_effect = RuntimeError("boom")
        await poll_emails_job(poller, processor, auto_process=True)

    @pytest.mark.asyncio
    async def test_no_sweep_without_llm(self, poller, processor):
        processor.llm = None
        await poll_emails_job(poller, processor, auto_process=True)
        processor.process_queue.assert_not_awaited()
