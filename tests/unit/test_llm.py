"""Unit tests for the OpenAI-compatible LLM client."""
import json

import httpx
import pytest

from switchboard.core.llm import LLMClient, LLMStreamError


def sse(*events):
    lines = [f"data: {json.dumps(e)}" for e in events] + ["data: [DONE]"]
    return "\n\n".join(lines) + "\n\n"


def client_with(handler) -> LLMClient:
    client = LLMClient(base_url="https://llm.example.com/v1/", model="test-model", api_key="sk-test")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class TestGenerate:
    """Tests for complete responses."""

    @pytest.mark.asyncio
    async def test_generate(self):
        """Test text, reasoning and usage are parsed."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "Hi", "reasoning": "short"}, "finish_reason": "stop"}],
                "usage": {"total_tokens": 12},
            })

        client = client_with(handler)
        response = await client.generate([{"role": "user", "content": "hello"}], temperature=0.0)

        assert response.text == "Hi"
        assert response.reasoning == "short"
        assert response.usage == {"total_tokens": 12}
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["payload"]["temperature"] == 0.0
        assert "stream" not in seen["payload"]

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        """Test HTTP errors propagate with their status code."""
        client = client_with(lambda request: httpx.Response(429, text="Too Many Requests"))

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await client.generate([{"role": "user", "content": "hello"}])
        assert exc_info.value.response.status_code == 429


class TestGenerateStream:
    """Tests for streamed responses."""

    @pytest.mark.asyncio
    async def test_text_and_reasoning_chunks(self):
        """Test deltas become typed chunks and [DONE] ends the stream."""
        body = sse(
            {"choices": [{"delta": {"reasoning_content": "thinking"}}]},
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": []},
            {"choices": [{"delta": {"content": "lo"}}]},
        )
        client = client_with(lambda request: httpx.Response(200, text=body))

        chunks = [c async for c in client.generate_stream([{"role": "user", "content": "hi"}])]

        assert [(c.kind, c.text) for c in chunks] == [
            ("reasoning", "thinking"),
            ("text", "Hel"),
            ("text", "lo"),
        ]

    @pytest.mark.asyncio
    async def test_in_stream_error(self):
        """Test an error event inside the stream raises LLMStreamError."""
        body = sse({"error": {"message": "upstream 429"}})
        client = client_with(lambda request: httpx.Response(200, text=body))

        with pytest.raises(LLMStreamError, match="429"):
            async for _ in client.generate_stream([{"role": "user", "content": "hi"}]):
                pass
