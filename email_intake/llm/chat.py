"""
Chat Completions protocol client (gpt-4 and gpt-3.5 families).
"""

from typing import Any

from email_intake.config import LLMProtocol
from email_intake.core.models import TokenUsage
from email_intake.llm import prompts
from email_intake.llm.base import BaseLLMClient

# Structured replies carry JSON overhead on top of the answer text
STRUCTURED_MIN_TOKENS = 1000


class ChatCompletionsClient(BaseLLMClient):
    """Client for POST /chat/completions."""

    protocol = LLMProtocol.CHAT_COMPLETIONS
    endpoint = "/chat/completions"

    def build_request(self, system: str, user: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.settings.llm_temperature,
        }

        if self.use_structured_output:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": prompts.SCHEMA_NAME,
                    "strict": True,
                    "schema": prompts.RESPONSE_SCHEMA,
                },
            }
            body["max_tokens"] = max(self.max_tokens, STRUCTURED_MIN_TOKENS)
        else:
            body["max_tokens"] = self.max_tokens

        return body

    def build_test_request(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompts.TEST_SYSTEM_PROMPT},
                {"role": "user", "content": prompts.TEST_USER_PROMPT},
            ],
            "max_tokens": 20,
        }

    def extract_text(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    def extract_usage(self, data: dict[str, Any]) -> TokenUsage:
        usage = data.get("usage") or {}
        return TokenUsage(
            prompt=usage.get("prompt_tokens") or 0,
            completion=usage.get("completion_tokens") or 0,
            total=usage.get("total_tokens") or 0,
        )
