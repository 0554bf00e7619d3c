"""
Connection checks for the LLM provider and the delivery provider.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from email_intake.core.logging import get_logger
from email_intake.core.models import EmailTemplate
from email_intake.dependencies import get_delivery, get_llm
from email_intake.llm.base import BaseLLMClient
from email_intake.services.delivery import DeliveryGateway

log = get_logger(__name__)

router = APIRouter()


class TestEmailRequest(BaseModel):
    to: str
    template: EmailTemplate = EmailTemplate.QUOTE


@router.get("/llm/test")
async def test_llm(llm: BaseLLMClient | None = Depends(get_llm)):
    """Send one minimal request to the configured model."""
    if llm is None:
        raise HTTPException(status_code=503, detail="LLM client is not configured")

    check = await llm.test_connection()
    log.info("llm_connection_test", success=check.success, model=check.model)
    return {
        **check.to_dict(),
        "protocol": llm.protocol.value,
        "configuredModel": llm.model,
        "structuredOutput": llm.use_structured_output,
    }


@router.post("/delivery/test")
async def test_delivery(
    request: TestEmailRequest,
    delivery: DeliveryGateway = Depends(get_delivery),
):
    """Send the canned quote email to an address, honoring test mode and domain policy."""
    result = await delivery.send_test_email(request.to, request.template)
    return {**result.to_dict(), "configuration": delivery.describe()}
