"""
Responses protocol client (gpt-5 and o-series reasoning models).

These models reject sampling parameters, so no temperature is sent.
"""

from typing import Any

from email_intake.config import LLMProtocol
from email_intake.core.models import TokenUsage
from email_intake.llm import prompts
from email_intake.llm.base import BaseLLMClient
from email_intake.llm.chat import STRUCTURED_MIN_TOKENS


class ResponsesClient(BaseLLMClient):
    """Client for POST /responses."""

    protocol = LLMProtocol.RESPONSES
    endpoint = "/responses"

    def build_request(self, system: str, user: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "instructions": system,
            "input": user,
            "max_output_tokens": self.max_tokens,
        }

        if self.use_structured_output:
            body["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": prompts.SCHEMA_NAME,
                    "strict": True,
                    "schema": prompts.RESPONSE_SCHEMA,
                }
            }
            body["max_output_tokens"] = max(self.max_tokens, STRUCTURED_MIN_TOKENS)

        return body

    def build_test_request(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "instructions": prompts.TEST_SYSTEM_PROMPT,
            "input": prompts.TEST_USER_PROMPT,
            "max_output_tokens": 20,
        }

    def extract_text(self, data: dict[str, Any]) -> str:
        """Prefer the aggregated output_text, else join text parts of the output items."""
        if data.get("output_text"):
            return data["output_text"]

        parts = []
        for item in data.get("output") or []:
            # Reasoning items carry no content
            for content in item.get("content") or []:
                if content.get("text"):
                    parts.append(content["text"])
        return "".join(parts)

    def extract_usage(self, data: dict[str, Any]) -> TokenUsage:
        usage = data.get("usage") or {}
        prompt = usage.get("input_tokens") or 0
        completion = usage.get("output_tokens") or 0
        return TokenUsage(
            prompt=prompt,
            completion=completion,
            total=usage.get("total_tokens") or prompt + completion,
        )
