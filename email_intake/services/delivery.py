"""
Outbound email delivery through the Resend REST API.

The gateway never raises. Every failure, including transport errors, comes
back as a DeliveryResult with success=False so a delivery problem can never
demote a completed record.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from email.utils import parseaddr
from typing import Any

import httpx

from email_intake.config import Settings, settings as default_settings
from email_intake.core.logging import get_logger
from email_intake.core.models import EmailRecord, EmailTemplate, utcnow
from email_intake.rendering.wrapper import EmailWrapper, WrapOptions

log = get_logger(__name__)

URGENT_KEYWORDS = ["urgent", "asap", "emergency", "rush"]
QUOTE_KEYWORDS = ["quote", "rate", "price", "$"]

TEST_EMAIL_SUBJECT = "Test Freight Quote from Amara QUO"

TEST_EMAIL_CONTENT = """## Freight Quote Response

Thank you for your inquiry. Here are the **current rates**:

| Lane | Rate | Transit | Equipment |
|------|------|---------|-----------|
| Chicago → Los Angeles | **$2,450** | 3-4 days | Dry van, 53' |
| New York → Miami | **$1,890** | 2-3 days | Dry van, 53' |

### Important Notes:
* All rates include *fuel surcharge* & capacity confirmation
* **Equipment availability**: Confirmed for next week
* Transit times are business days & exclude weekends

**Note**: Rates include fuel & are valid until end of week.

Best regards,
**Fred - Amara QUO Freight Intelligence**"""


@dataclass
class DeliveryResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
    sent_at: datetime | None = None
    skipped: bool = False  # Sending disabled, nothing attempted

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "messageId": self.message_id,
            "error": self.error,
            "sentAt": self.sent_at.isoformat() if self.sent_at else None,
            "skipped": self.skipped,
        }


@dataclass
class DomainCheck:
    allowed: bool
    reason: str | None = None


def extract_address(sender: str) -> str:
    """Extract the bare address from 'Display Name <addr@example.com>'."""
    _, address = parseaddr(sender or "")
    return (address or sender or "").strip()


def select_template(subject: str, response_text: str) -> EmailTemplate:
    """
    Pick a template from content heuristics.

    Urgency keywords in subject or body win, then a pipe table or pricing
    keywords select the quote template, else standard.
    """
    subject_lower = (subject or "").lower()
    content_lower = (response_text or "").lower()

    if any(k in subject_lower or k in content_lower for k in URGENT_KEYWORDS):
        return EmailTemplate.URGENT

    if "|" in (response_text or "") or any(
        k in subject_lower or k in content_lower for k in QUOTE_KEYWORDS
    ):
        return EmailTemplate.QUOTE

    return EmailTemplate.STANDARD


class DeliveryGateway:
    """Sends generated replies, applying domain policy and template selection."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        wrapper: EmailWrapper | None = None,
    ):
        self.settings = settings or default_settings
        self.enabled = self.settings.enable_email_sending
        self.test_mode = self.settings.email_test_mode
        self.allowed_domains = [d.lower() for d in self.settings.email_allowed_domains]
        self.blocked_domains = [d.lower() for d in self.settings.email_blocked_domains]
        self.from_email = self.settings.resend_from_email
        self.from_name = self.settings.resend_from_name
        self.wrapper = wrapper or EmailWrapper(self.settings)
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=30)

        if self.enabled and not (self.test_mode or self.settings.resend_api_key):
            log.warning("delivery_not_configured", reason="RESEND_API_KEY missing")

    @property
    def url(self) -> str:
        return f"{self.settings.resend_base_url.rstrip('/')}/emails"

    @property
    def is_configured(self) -> bool:
        return self.settings.delivery_configured

    def check_domain(self, address: str) -> DomainCheck:
        """Blocked patterns first, then the allow list if one is configured."""
        address = address.lower()
        if "@" not in address:
            return DomainCheck(False, "Invalid email address")
        domain = address.rsplit("@", 1)[1]
        if not domain:
            return DomainCheck(False, "Invalid email address")

        for pattern in self.blocked_domains:
            if pattern in address:
                return DomainCheck(False, f"Blocked pattern: {pattern}")

        if self.allowed_domains and not any(
            domain == allowed or allowed in address for allowed in self.allowed_domains
        ):
            return DomainCheck(False, "Domain not in allowed list")

        return DomainCheck(True)

    async def send(
        self,
        record: EmailRecord,
        response_text: str,
        template: EmailTemplate | None = None,
    ) -> DeliveryResult:
        """
        Send a generated reply to the record's sender.

        Args:
            record: Email being answered
            response_text: Markdown reply generated by the LLM
            template: Explicit template, skipping content heuristics

        Returns:
            DeliveryResult. Never raises.
        """
        if not self.enabled:
            return DeliveryResult(success=True, skipped=True)

        to_address = extract_address(record.sender)
        check = self.check_domain(to_address)
        if not check.allowed:
            log.info("delivery_blocked", email_id=record.id, to=to_address, reason=check.reason)
            return DeliveryResult(success=False, error=f"Email blocked: {check.reason}")

        if template:
            template = EmailTemplate(template)
        else:
            template = select_template(record.subject, response_text)
        subject = f"Re: {record.subject}"

        try:
            wrapped = self.wrapper.wrap_markdown(
                response_text, WrapOptions(template=template, subject=subject)
            )
        except Exception as e:
            log.error("delivery_render_error", email_id=record.id, error=str(e), exc_info=True)
            return DeliveryResult(success=False, error=f"Render failed: {e}")

        if self.test_mode:
            log.info(
                "delivery_test_mode",
                email_id=record.id,
                to=to_address,
                subject=subject,
                template=template.value,
                content_length=len(response_text),
            )
            return DeliveryResult(
                success=True,
                message_id=f"test-{int(time.time() * 1000)}",
                sent_at=utcnow(),
            )

        if not self.settings.resend_api_key:
            return DeliveryResult(success=False, error="Resend API key not configured")

        payload = {
            "from": f"{self.from_name} <{self.from_email}>",
            "to": [to_address],
            "subject": subject,
            "html": wrapped.html,
            "text": wrapped.text,
            "headers": {
                "X-Entity-Ref-ID": record.id,
                "X-Email-Template": template.value,
            },
            "tags": [
                {"name": "email_id", "value": _tag_value(record.id)},
                {"name": "template", "value": template.value},
            ],
        }

        log.info("delivery_sending", email_id=record.id, to=to_address, template=template.value)

        try:
            response = await self.http.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.settings.resend_api_key}"},
            )
        except httpx.HTTPError as e:
            log.error("delivery_transport_error", email_id=record.id, error=str(e))
            return DeliveryResult(success=False, error=str(e) or type(e).__name__)

        data = _safe_json(response)
        if not response.is_success:
            error = data.get("message") or f"Resend API error: {response.status_code}"
            log.error("delivery_failed", email_id=record.id, status=response.status_code, error=error)
            return DeliveryResult(success=False, error=error)

        message_id = data.get("id")
        log.info("delivery_sent", email_id=record.id, message_id=message_id)
        return DeliveryResult(success=True, message_id=message_id, sent_at=utcnow())

    async def send_test_email(
        self,
        to_address: str,
        template: EmailTemplate = EmailTemplate.QUOTE,
    ) -> DeliveryResult:
        """Send a canned quote reply to verify the delivery setup end to end."""
        now = utcnow()
        record = EmailRecord(
            id=f"test-{int(now.timestamp() * 1000)}",
            thread_id="test-thread",
            subject=TEST_EMAIL_SUBJECT,
            sender=to_address,
            recipient=self.from_email,
            date=now.isoformat(),
            snippet="Test email",
            body="Test email body",
            received_at=now.isoformat(),
        )
        return await self.send(record, TEST_EMAIL_CONTENT, template)

    def describe(self) -> dict[str, Any]:
        """Non-secret delivery configuration for the dashboard."""
        return {
            "enabled": self.enabled,
            "testMode": self.test_mode,
            "fromEmail": self.from_email,
            "fromName": self.from_name,
            "hasApiKey": bool(self.settings.resend_api_key),
            "allowedDomains": self.allowed_domains,
            "blockedDomains": self.blocked_domains,
            "templates": [t.value for t in EmailTemplate],
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()


def _tag_value(value: str) -> str:
    """Resend tags only accept ASCII letters, digits, underscores and dashes."""
    return "".join(c if c.isascii() and (c.isalnum() or c in "_-") else "_" for c in value)


def _safe_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
