"""
Abstract base class for email processors.
"""

from abc import ABC, abstractmethod

from email_intake.core.models import ProcessingResult


class BaseProcessor(ABC):
    """Abstract processor interface for email processing pipelines."""

    @abstractmethod
    async def process_email(self, email_id: str) -> ProcessingResult:
        """
        Process one pending email.

        Args:
            email_id: Id of the record to process

        Returns:
            Outcome of the attempt
        """
        pass

    @abstractmethod
    async def process_queue(self) -> list[ProcessingResult]:
        """
        Process every pending email, one at a time.

        Returns:
            One result per record processed by this call
        """
        pass
