"""LLM clients and protocol selection."""

import httpx

from email_intake.config import LLMProtocol, Settings, settings as default_settings
from email_intake.core.errors import ConfigurationError
from email_intake.core.logging import get_logger

from .base import BaseLLMClient, ConnectionCheck, LLMResponse
from .chat import ChatCompletionsClient
from .responses import ResponsesClient
from .pricing import calculate_cost, get_pricing

log = get_logger(__name__)

# Checked in order; first match wins
MODEL_FAMILIES: list[tuple[str, LLMProtocol]] = [
    ("gpt-5", LLMProtocol.RESPONSES),
    ("o1", LLMProtocol.RESPONSES),
    ("o3", LLMProtocol.RESPONSES),
    ("o4", LLMProtocol.RESPONSES),
    ("gpt-4", LLMProtocol.CHAT_COMPLETIONS),
    ("gpt-3.5", LLMProtocol.CHAT_COMPLETIONS),
]

_CLIENTS: dict[LLMProtocol, type[BaseLLMClient]] = {
    LLMProtocol.CHAT_COMPLETIONS: ChatCompletionsClient,
    LLMProtocol.RESPONSES: ResponsesClient,
}


def resolve_protocol(model: str, configured: LLMProtocol | None = None) -> LLMProtocol:
    """
    Pick the wire protocol for a model.

    Args:
        model: Configured model name
        configured: Explicit protocol from configuration, which always wins

    Returns:
        The protocol to use

    Raises:
        ConfigurationError: model family is unknown and no protocol is configured
    """
    if configured is not None:
        return LLMProtocol(configured)

    name = (model or "").strip().lower()
    for prefix, protocol in MODEL_FAMILIES:
        if name.startswith(prefix):
            return protocol

    raise ConfigurationError(
        f"Unknown model family for {model!r}. "
        "Set LLM_PROTOCOL to 'chat_completions' or 'responses'."
    )


def get_llm_client(
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    **kwargs,
) -> BaseLLMClient:
    """Build the client for the configured model."""
    settings = settings or default_settings
    protocol = resolve_protocol(settings.openai_model, settings.llm_protocol)
    log.info("llm_client_selected", model=settings.openai_model, protocol=protocol.value)
    return _CLIENTS[protocol](settings=settings, http_client=http_client, **kwargs)


__all__ = [
    "BaseLLMClient",
    "ChatCompletionsClient",
    "ResponsesClient",
    "ConnectionCheck",
    "LLMResponse",
    "calculate_cost",
    "get_pricing",
    "resolve_protocol",
    "get_llm_client",
    "MODEL_FAMILIES",
]
