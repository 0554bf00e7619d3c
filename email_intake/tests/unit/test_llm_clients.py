"""Unit tests for the LLM clients and their retry policy."""

import json

import httpx
import pytest

from email_intake.core.errors import LLMError, LLMErrorCode
from email_intake.llm import ChatCompletionsClient, ResponsesClient
from email_intake.llm.chat import STRUCTURED_MIN_TOKENS
from email_intake.llm.prompts import SYSTEM_PROMPT


def chat_reply(content="Thanks for reaching out", prompt=120, completion=30):
    return {
        "model": "gpt-4o-mini-2024-07-18",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": prompt + completion,
        },
    }


def responses_reply(text="Quote attached"):
    return {
        "model": "gpt-5-mini",
        "output": [
            {"type": "reasoning", "summary": []},
            {"type": "message", "content": [{"type": "output_text", "text": text}]},
        ],
        "usage": {"input_tokens": 80, "output_tokens": 20},
    }


class Script:
    """MockTransport handler replaying a fixed list of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


def make_client(cls, settings, script, no_sleep, **overrides):
    if overrides:
        settings = settings.model_copy(update=overrides)
    http = httpx.AsyncClient(transport=httpx.MockTransport(script))
    return cls(settings=settings, http_client=http, sleep=no_sleep)


class TestChatCompletionsClient:
    """Tests for the chat completions protocol."""

    @pytest.mark.asyncio
    async def test_success(self, settings, sample_record, no_sleep):
        """Test content, usage and model are read from the reply."""
        script = Script(httpx.Response(200, json=chat_reply()))
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        response = await client.process_email(sample_record)

        assert response.content == "Thanks for reaching out"
        assert response.token_usage.total == 150
        assert response.model == "gpt-4o-mini-2024-07-18"
        assert script.requests[0].url.path == "/v1/chat/completions"
        assert script.requests[0].headers["authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_request_body(self, settings, sample_record, no_sleep):
        """Test the prompt carries the email and sampling parameters are sent."""
        script = Script(httpx.Response(200, json=chat_reply()))
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        await client.process_email(sample_record)
        body = script.bodies[0]

        assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        user = body["messages"][1]["content"]
        assert "From: Jane Shipper <jane@shipper.com>" in user
        assert "Subject: Rate request Chicago to Dallas" in user
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 500
        assert "response_format" not in body

    @pytest.mark.asyncio
    async def test_system_prompt_override(self, settings, sample_record, no_sleep):
        script = Script(httpx.Response(200, json=chat_reply()))
        client = make_client(
            ChatCompletionsClient, settings, script, no_sleep, system_prompt="Be brief."
        )

        await client.process_email(sample_record)
        assert script.bodies[0]["messages"][0]["content"] == "Be brief."

    @pytest.mark.asyncio
    async def test_structured_output(self, settings, sample_record, no_sleep):
        """Test schema request, raised token floor and unpacked fields."""
        payload = {
            "response": "Rate is $2,450",
            "category": "quote_request",
            "priority": 2,
            "sentiment": "neutral",
        }
        script = Script(httpx.Response(200, json=chat_reply(json.dumps(payload))))
        client = make_client(
            ChatCompletionsClient, settings, script, no_sleep, use_structured_output=True
        )

        response = await client.process_email(sample_record)
        body = script.bodies[0]

        assert body["response_format"]["type"] == "json_schema"
        assert body["response_format"]["json_schema"]["strict"] is True
        assert body["max_tokens"] == STRUCTURED_MIN_TOKENS
        assert response.content == "Rate is $2,450"
        assert response.category == "quote_request"
        assert response.priority == 2

    @pytest.mark.asyncio
    async def test_structured_output_unparseable_keeps_text(self, settings, sample_record, no_sleep):
        script = Script(httpx.Response(200, json=chat_reply("plain answer")))
        client = make_client(
            ChatCompletionsClient, settings, script, no_sleep, use_structured_output=True
        )

        response = await client.process_email(sample_record)
        assert response.content == "plain answer"
        assert response.category is None


class TestRetryPolicy:
    """Tests for the shared retry loop."""

    @pytest.mark.asyncio
    async def test_server_error_backoff_then_success(self, settings, sample_record, no_sleep, sleeps):
        """Test 5xx is retried with exponential backoff."""
        script = Script(
            httpx.Response(500, json={"error": {"message": "boom"}}),
            httpx.Response(503),
            httpx.Response(200, json=chat_reply()),
        )
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        response = await client.process_email(sample_record)

        assert response.content == "Thanks for reaching out"
        assert sleeps == [1.0, 2.0]
        assert len(script.requests) == 3

    @pytest.mark.asyncio
    async def test_server_error_exhausted(self, settings, sample_record, no_sleep):
        script = Script(
            *[httpx.Response(502, json={"error": {"message": "bad gateway"}}) for _ in range(3)]
        )
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        with pytest.raises(LLMError) as exc:
            await client.process_email(sample_record)

        assert exc.value.code == LLMErrorCode.API_ERROR
        assert exc.value.message == "bad gateway"
        assert exc.value.status_code == 502

    @pytest.mark.asyncio
    async def test_rate_limit_honors_retry_after(self, settings, sample_record, no_sleep, sleeps):
        """Test 429 waits for the provider's retry-after."""
        script = Script(
            httpx.Response(429, headers={"retry-after": "7"}),
            httpx.Response(200, json=chat_reply()),
        )
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        await client.process_email(sample_record)
        assert sleeps == [7.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, settings, sample_record, no_sleep, sleeps):
        """Test missing retry-after falls back to the default wait."""
        script = Script(*[httpx.Response(429) for _ in range(3)])
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        with pytest.raises(LLMError) as exc:
            await client.process_email(sample_record)

        assert exc.value.code == LLMErrorCode.RATE_LIMIT
        assert exc.value.retry_after == 60
        assert exc.value.retryable is True
        assert sleeps == [60, 60]

    @pytest.mark.asyncio
    async def test_mixed_failures_pick_their_own_wait(self, settings, sample_record, no_sleep, sleeps):
        """Test a rate limit waits retry-after while the next server error backs off by attempt."""
        script = Script(
            httpx.Response(429, headers={"retry-after": "3"}),
            httpx.Response(500),
            httpx.Response(200, json=chat_reply()),
        )
        client = make_client(
            ChatCompletionsClient, settings, script, no_sleep, llm_base_delay_seconds=0.5
        )

        await client.process_email(sample_record)

        assert sleeps == [3.0, 1.0]
        assert len(script.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, settings, sample_record, no_sleep, sleeps):
        """Test other 4xx fail immediately as invalid_request."""
        script = Script(httpx.Response(400, json={"error": {"message": "bad model"}}))
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        with pytest.raises(LLMError) as exc:
            await client.process_email(sample_record)

        assert exc.value.code == LLMErrorCode.INVALID_REQUEST
        assert exc.value.retryable is False
        assert len(script.requests) == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_transport_error_becomes_timeout(self, settings, sample_record, no_sleep):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        script = Script(*[httpx.ConnectTimeout("timed out", request=request)] * 3)
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        with pytest.raises(LLMError) as exc:
            await client.process_email(sample_record)

        assert exc.value.code == LLMErrorCode.TIMEOUT
        assert len(script.requests) == 3

    @pytest.mark.asyncio
    async def test_empty_content(self, settings, sample_record, no_sleep):
        """Test a 200 reply without text is empty_response and not retried."""
        script = Script(httpx.Response(200, json=chat_reply(content="  ")))
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        with pytest.raises(LLMError) as exc:
            await client.process_email(sample_record)

        assert exc.value.code == LLMErrorCode.EMPTY_RESPONSE
        assert len(script.requests) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, settings, sample_record, no_sleep):
        script = Script(httpx.Response(200, content=b"not json"))
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        with pytest.raises(LLMError) as exc:
            await client.process_email(sample_record)
        assert exc.value.code == LLMErrorCode.EMPTY_RESPONSE

    @pytest.mark.asyncio
    async def test_single_attempt(self, settings, sample_record, no_sleep):
        script = Script(httpx.Response(500))
        client = make_client(
            ChatCompletionsClient, settings, script, no_sleep, llm_max_attempts=1
        )

        with pytest.raises(LLMError) as exc:
            await client.process_email(sample_record)
        assert exc.value.message == "API error: 500"


class TestResponsesClient:
    """Tests for the responses protocol."""

    @pytest.mark.asyncio
    async def test_joins_output_text_parts(self, settings, sample_record, no_sleep):
        """Test text is read from output items when output_text is absent."""
        script = Script(httpx.Response(200, json=responses_reply()))
        client = make_client(
            ResponsesClient, settings, script, no_sleep, openai_model="gpt-5-mini"
        )

        response = await client.process_email(sample_record)
        body = script.bodies[0]

        assert response.content == "Quote attached"
        assert response.token_usage.total == 100
        assert script.requests[0].url.path == "/v1/responses"
        assert body["instructions"] == SYSTEM_PROMPT
        assert body["max_output_tokens"] == 500
        assert "temperature" not in body

    @pytest.mark.asyncio
    async def test_prefers_output_text(self, settings, sample_record, no_sleep):
        reply = {**responses_reply("ignored"), "output_text": "aggregated"}
        script = Script(httpx.Response(200, json=reply))
        client = make_client(ResponsesClient, settings, script, no_sleep)

        response = await client.process_email(sample_record)
        assert response.content == "aggregated"

    @pytest.mark.asyncio
    async def test_structured_format(self, settings, sample_record, no_sleep):
        text = json.dumps({"response": "ok", "category": "other", "priority": 3, "sentiment": "positive"})
        script = Script(httpx.Response(200, json=responses_reply(text)))
        client = make_client(
            ResponsesClient, settings, script, no_sleep, use_structured_output=True
        )

        response = await client.process_email(sample_record)
        body = script.bodies[0]

        assert body["text"]["format"]["type"] == "json_schema"
        assert response.content == "ok"
        assert response.sentiment == "positive"


class TestConnectionCheck:
    @pytest.mark.asyncio
    async def test_success(self, settings, no_sleep):
        script = Script(httpx.Response(200, json=chat_reply("Hi")))
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        check = await client.test_connection()
        assert check.success is True
        assert check.model == "gpt-4o-mini-2024-07-18"
        assert script.bodies[0]["max_tokens"] == 20

    @pytest.mark.asyncio
    async def test_failure_is_not_retried(self, settings, no_sleep):
        script = Script(httpx.Response(401, json={"error": {"message": "Incorrect API key"}}))
        client = make_client(ChatCompletionsClient, settings, script, no_sleep)

        check = await client.test_connection()
        assert check.success is False
        assert check.message == "Failed: 401 - Incorrect API key"
        assert len(script.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_key(self, settings, no_sleep):
        script = Script()
        client = make_client(ChatCompletionsClient, settings, script, no_sleep, openai_api_key="")

        check = await client.test_connection()
        assert check.message == "API key not configured"
        assert script.requests == []
