"""
Branded document shell for outbound emails.

Only branding and layout live here. Body formatting is delegated to the
markdown renderer, and the plain-text part is derived from the source
markdown rather than from HTML.
"""

from dataclasses import dataclass
from datetime import datetime

from email_intake.config import Settings, settings as default_settings
from email_intake.core.models import EmailTemplate, utcnow
from email_intake.rendering.markdown import MarkdownRenderer, escape_html, to_plain_text

HEADER_COLORS = {
    EmailTemplate.STANDARD: "#1F2937",
    EmailTemplate.URGENT: "#DC2626",
    EmailTemplate.QUOTE: "#7C3AED",
}

HEADER_TEXT = {
    EmailTemplate.STANDARD: "FREIGHT INTELLIGENCE SYSTEM",
    EmailTemplate.URGENT: "URGENT FREIGHT INTELLIGENCE",
    EmailTemplate.QUOTE: "FREIGHT QUOTE SYSTEM",
}

CONTAINER_WIDTH = 600
PREHEADER_LENGTH = 120


@dataclass
class WrapOptions:
    template: EmailTemplate = EmailTemplate.STANDARD
    subject: str = ""
    preheader: str | None = None  # Defaults to the start of the plain text
    generated_at: datetime | None = None


@dataclass(frozen=True)
class WrappedEmail:
    html: str
    text: str


class EmailWrapper:
    """Wraps rendered body HTML in the branded document shell."""

    def __init__(
        self,
        settings: Settings | None = None,
        renderer: MarkdownRenderer | None = None,
    ):
        self.settings = settings or default_settings
        self.renderer = renderer or MarkdownRenderer()

    def wrap_markdown(self, markdown: str, options: WrapOptions) -> WrappedEmail:
        """Render markdown and wrap it in one step."""
        return self.wrap(self.renderer.render_html(markdown), options, source_markdown=markdown)

    def wrap(self, body_html: str, options: WrapOptions, source_markdown: str = "") -> WrappedEmail:
        """
        Wrap a rendered body.

        Args:
            body_html: HTML fragment produced by the renderer
            options: Template, subject and optional preheader
            source_markdown: Markdown the body was rendered from, used for the text part

        Returns:
            WrappedEmail with the full HTML document and the plain-text part
        """
        template = EmailTemplate(options.template)
        generated_at = options.generated_at or utcnow()
        body_text = to_plain_text(source_markdown)

        preheader = options.preheader
        if preheader is None:
            preheader = " ".join(body_text.split())[:PREHEADER_LENGTH]

        html = self._html(body_html, template, options.subject, preheader, generated_at)
        text = self._text(body_text, template, generated_at)
        return WrappedEmail(html=html, text=text)

    def _html(
        self,
        body_html: str,
        template: EmailTemplate,
        subject: str,
        preheader: str,
        generated_at: datetime,
    ) -> str:
        header_bg = HEADER_COLORS[template]
        header_text = HEADER_TEXT[template]
        brand = escape_html(self.settings.brand_name)
        footer = escape_html(self.settings.brand_footer)
        timestamp = generated_at.strftime("%Y-%m-%d %H:%M UTC")

        return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta http-equiv="Content-Type" content="text/html; charset=utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape_html(subject)}</title>
  <!--[if mso]>
  <noscript><xml><o:OfficeDocumentSettings><o:PixelsPerInch>96</o:PixelsPerInch></o:OfficeDocumentSettings></xml></noscript>
  <![endif]-->
</head>
<body style="margin:0;padding:0;background-color:#f5f5f5;">
  <span style="display:none;font-size:1px;color:transparent;line-height:1px;max-height:0;max-width:0;opacity:0;overflow:hidden;mso-hide:all;">{escape_html(preheader)}</span>
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0" border="0" style="background-color:#f5f5f5;mso-table-lspace:0pt;mso-table-rspace:0pt;">
    <tr>
      <td align="center" style="padding:20px 0;">
        <!--[if mso]><table role="presentation" width="{CONTAINER_WIDTH}" cellpadding="0" cellspacing="0" border="0"><tr><td><![endif]-->
        <table role="presentation" width="100%" cellpadding="0" cellspacing="0" border="0" style="max-width:{CONTAINER_WIDTH}px;background-color:#ffffff;mso-table-lspace:0pt;mso-table-rspace:0pt;">
          <tr>
            <td style="background-color:{header_bg};color:#ffffff;padding:24px;font-family:Arial,sans-serif;mso-line-height-rule:exactly;">
              <h1 style="margin:0;font-size:24px;font-weight:300;letter-spacing:2px;line-height:28px;mso-line-height-rule:exactly;">{brand}</h1>
              <p style="margin:4px 0 0 0;font-size:12px;line-height:16px;mso-line-height-rule:exactly;">{header_text}</p>
            </td>
          </tr>
          <tr>
            <td style="padding:24px;font-family:Arial,sans-serif;mso-line-height-rule:exactly;">
              {body_html}
            </td>
          </tr>
          <tr>
            <td style="padding:20px 24px;background-color:#f8f9fa;border-top:1px solid #e9ecef;font-family:Arial,sans-serif;text-align:center;mso-line-height-rule:exactly;">
              <p style="margin:0;font-size:12px;color:#6c757d;line-height:16px;mso-line-height-rule:exactly;">{footer}</p>
              <p style="margin:4px 0 0 0;font-size:12px;color:#6c757d;line-height:16px;mso-line-height-rule:exactly;">{timestamp}</p>
            </td>
          </tr>
        </table>
        <!--[if mso]></td></tr></table><![endif]-->
      </td>
    </tr>
  </table>
</body>
</html>"""

    def _text(self, body_text: str, template: EmailTemplate, generated_at: datetime) -> str:
        header = f"{self.settings.brand_name} - {HEADER_TEXT[template]}\n{'=' * 50}"
        footer = (
            f"\n---\n{self.settings.brand_footer}\n"
            f"{generated_at.strftime('%Y-%m-%d %H:%M UTC')}"
        )
        return f"{header}\n\n{body_text}{footer}"
