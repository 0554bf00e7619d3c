"""
FastAPI dependencies resolving the components built at startup.

Components live on app.state so tests can install fakes on a bare app.
"""

from fastapi import HTTPException, Request

from email_intake.core.store import BaseStore
from email_intake.llm.base import BaseLLMClient
from email_intake.processors.orchestrator import EmailProcessor
from email_intake.services.delivery import DeliveryGateway
from email_intake.services.poller import EmailPoller


def get_store(request: Request) -> BaseStore:
    return request.app.state.store


def get_processor(request: Request) -> EmailProcessor:
    return request.app.state.processor


def get_poller(request: Request) -> EmailPoller:
    return request.app.state.poller


def get_delivery(request: Request) -> DeliveryGateway:
    return request.app.state.delivery


def get_llm(request: Request) -> BaseLLMClient | None:
    return getattr(request.app.state, "llm", None)


def require_llm(request: Request) -> BaseLLMClient:
    """503 unless an LLM client exists and has an API key."""
    llm = get_llm(request)
    if llm is None:
        error = getattr(request.app.state, "llm_error", None) or "LLM client is not configured"
        raise HTTPException(status_code=503, detail=error)
    if not llm.settings.openai_api_key:
        raise HTTPException(
            status_code=503,
            detail="OpenAI API not configured. Please add OPENAI_API_KEY to your environment variables",
        )
    return llm


def openai_configured(request: Request) -> bool:
    llm = get_llm(request)
    return llm is not None and bool(llm.settings.openai_api_key)
