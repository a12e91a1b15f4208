import json

import httpx
import pytest

from contractflow.core.exceptions import (
    LlmApiError,
    LlmAuthError,
    LlmMalformedResponseError,
    LlmRateLimitedError,
)
from contractflow.core.llm_client import GroqChatClient

API_URL = "https://api.groq.test/openai/v1/chat/completions"


def _client(handler) -> GroqChatClient:
    return GroqChatClient(
        api_key="gsk-test",
        api_url=API_URL,
        model="llama-3.3-70b-versatile",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def _completion(content):
    return {
        "model": "llama-3.3-70b-versatile",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 40, "total_tokens": 160},
    }


class TestGroqChatClient:

    @pytest.mark.asyncio
    async def test_successful_completion(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion('{"provider": "E.ON"}'))

        response = await _client(handler).chat("system", "document", json_response=True)

        assert response.content == '{"provider": "E.ON"}'
        assert response.usage.total_tokens == 160
        assert seen["auth"] == "Bearer gsk-test"
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "document"},
        ]
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert seen["body"]["temperature"] == 0.1
        assert seen["body"]["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_plain_text_mode_omits_response_format(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "response_format" not in json.loads(request.content)
            return httpx.Response(200, json=_completion("hello"))

        assert (await _client(handler).chat("s", "u")).content == "hello"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_class",
        [
            (401, LlmAuthError),
            (429, LlmRateLimitedError),
            (500, LlmApiError),
            (503, LlmApiError),
            (400, LlmApiError),
        ],
    )
    async def test_status_mapping(self, status, error_class):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="upstream says no")

        with pytest.raises(error_class) as exc_info:
            await _client(handler).chat("s", "u")

        assert exc_info.value.details == "upstream says no"

    @pytest.mark.asyncio
    async def test_server_error_message_includes_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        with pytest.raises(LlmApiError) as exc_info:
            await _client(handler).chat("s", "u")

        assert exc_info.value.message == "Groq API returned 502"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout_is_an_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(LlmApiError) as exc_info:
            await _client(handler).chat("s", "u")

        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_error_is_an_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LlmApiError):
            await _client(handler).chat("s", "u")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [_completion(""), {"choices": []}, {}, []])
    async def test_empty_content_is_malformed(self, body):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        with pytest.raises(LlmMalformedResponseError):
            await _client(handler).chat("s", "u")
