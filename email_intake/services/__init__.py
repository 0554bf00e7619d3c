"""External services: outbound delivery and record ingestion."""

from .delivery import DeliveryGateway, DeliveryResult, extract_address, select_template
from .poller import EmailPoller, PollResult, RefreshResult

__all__ = [
    "DeliveryGateway",
    "DeliveryResult",
    "extract_address",
    "select_template",
    "EmailPoller",
    "PollResult",
    "RefreshResult",
]
