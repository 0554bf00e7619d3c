"""Email processors."""

from .base import BaseProcessor
from .orchestrator import EmailProcessor

__all__ = ["BaseProcessor", "EmailProcessor"]
