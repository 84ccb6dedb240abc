"""
Switchboard LLM Client

Async client for OpenAI-compatible chat completion APIs (OpenRouter, vLLM,
...), one instance per model tier.

Usage:
    from switchboard.core.llm import get_llm_client

    client = get_llm_client(get_config().llm.primary)
    async for chunk in client.generate_stream(messages=[...]):
        print(chunk.text)
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from .config import ModelConfig, get_config

logger = logging.getLogger(__name__)


# =============================================================================
# Response Types
# =============================================================================

@dataclass
class LLMResponse:
    """Complete (non-streamed) response from the LLM."""
    text: str
    reasoning: str = ""
    finish_reason: str = "stop"
    usage: Dict[str, int] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """One streamed delta. ``kind`` is "text" or "reasoning"."""
    kind: str
    text: str


# =============================================================================
# LLM Client
# =============================================================================

class LLMClient:
    """Async client for OpenAI-compatible LLM APIs."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        temperature: float = 0.3,
        max_tokens: int = 4096,
        timeout: float = 120.0
    ):
        """Initialize the LLM client.

        Args:
            base_url: Base URL for the OpenAI-compatible API
            model: Model name/identifier
            api_key: Bearer token for the endpoint (optional for local servers)
            temperature: Sampling temperature (0.0 - 1.0)
            max_tokens: Maximum tokens to generate
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=headers
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _build_payload(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
        stream: bool
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def generate(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """Generate a complete response.

        Args:
            messages: Chat messages in OpenAI format
            temperature: Override default temperature
            max_tokens: Override default max_tokens

        Returns:
            LLMResponse with text and optional reasoning trace
        """
        client = await self._get_client()
        payload = self._build_payload(messages, temperature, max_tokens, stream=False)

        try:
            response = await client.post(f"{self.base_url}/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()

            choice = data["choices"][0]
            message = choice["message"]
            return LLMResponse(
                text=message.get("content", "") or "",
                reasoning=message.get("reasoning_content") or message.get("reasoning") or "",
                finish_reason=choice.get("finish_reason", "stop"),
                usage=data.get("usage", {})
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"[LLM] API error {e.response.status_code} from {self.model}: {e.response.text[:200]}")
            raise
        except httpx.RequestError as e:
            logger.error(f"[LLM] Request failed to {self.base_url}: {e}")
            raise

    async def generate_stream(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream a response from the LLM.

        Args:
            messages: Chat messages in OpenAI format
            temperature: Override default temperature
            max_tokens: Override default max_tokens

        Yields:
            StreamChunk for every text or reasoning delta
        """
        client = await self._get_client()
        payload = self._build_payload(messages, temperature, max_tokens, stream=True)

        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=payload
            ) as response:
                if response.is_error:
                    await response.aread()
                response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue

                    data_str = line[6:]
                    if data_str.strip() == "[DONE]":
                        break

                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue

                    if "error" in data:
                        # Some gateways report upstream errors inside the stream
                        raise LLMStreamError(str(data["error"]))

                    choices = data.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta", {})

                    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                    if reasoning:
                        yield StreamChunk(kind="reasoning", text=reasoning)

                    content = delta.get("content")
                    if content:
                        yield StreamChunk(kind="text", text=content)

        except httpx.HTTPStatusError as e:
            logger.error(f"[LLM] Stream error {e.response.status_code} from {self.model}: {e.response.text[:200]}")
            raise
        except httpx.RequestError as e:
            logger.error(f"[LLM] Stream request failed to {self.base_url}: {e}")
            raise

    async def health_check(self) -> bool:
        """Check if the LLM server is reachable."""
        try:
            client = await self._get_client()
            response = await client.get(f"{self.base_url}/models", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False


class LLMStreamError(Exception):
    """Error reported by the endpoint inside an open stream."""
    pass


# =============================================================================
# Client Cache
# =============================================================================

_clients: Dict[str, LLMClient] = {}
_clients_lock = threading.Lock()


def get_llm_client(model_config: ModelConfig) -> LLMClient:
    """Get or create the client for a model tier (thread-safe)."""
    key = f"{model_config.base_url}|{model_config.model}"
    client = _clients.get(key)
    if client is None:
        with _clients_lock:
            client = _clients.get(key)
            if client is None:
                llm = get_config().llm
                client = LLMClient(
                    base_url=model_config.base_url,
                    model=model_config.model,
                    api_key=model_config.api_key,
                    temperature=llm.temperature,
                    max_tokens=llm.max_tokens,
                    timeout=llm.timeout,
                )
                _clients[key] = client
    return client


async def close_llm_clients():
    """Close every cached client."""
    with _clients_lock:
        clients = list(_clients.values())
        _clients.clear()
    for client in clients:
        await client.close()


async def complete_text(prompt: str, system: Optional[str] = None, temperature: Optional[float] = None) -> str:
    """One-shot text completion on the selected model tier, with rate-limit failover."""
    from .model_selector import get_model_selector

    messages = [{"role": "system", "content": system}] if system else []
    messages.append({"role": "user", "content": prompt})

    async def call(model: ModelConfig, tier) -> str:
        response = await get_llm_client(model).generate(messages, temperature=temperature)
        return response.text.strip()

    return await get_model_selector().run(call)
