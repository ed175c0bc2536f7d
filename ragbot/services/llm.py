import json
from typing import AsyncIterator, Dict, List, Sequence

import httpx
import openai
from openai import AsyncOpenAI

from ..config import Settings, settings as default_settings
from ..errors import ConfigurationError, GenerationServiceError
from ..logging_config import get_logger

logger = get_logger(__name__)

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"

# Chat-completions APIs name prior model turns "assistant"
ROLE_MAP = {
    "system": "system",
    "user": "user",
    "assistant": "assistant",
    "model": "assistant",
}


def to_provider_messages(messages: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    """Map conversation roles to the role tokens the chat API expects."""
    return [
        {"role": ROLE_MAP.get(m.get("role", ""), "user"), "content": m.get("content", "")}
        for m in messages
    ]


def _sse_delta(line: str) -> str | None:
    """Return the text delta carried by one SSE line, or None."""
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        return None
    choices = chunk.get("choices") or [{}]
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None


def _error_detail(resp: httpx.Response) -> object:
    try:
        return resp.json()
    except ValueError:
        return {"text": resp.text}


class ChatClient:
    """OpenAI-compatible chat completions, blocking and streaming.

    Uses Perplexity over httpx by default, or the OpenAI SDK when
    LLM_PROVIDER is "openai".
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        openai_client: AsyncOpenAI | None = None,
    ):
        self.settings = settings or default_settings
        self.provider = (self.settings.LLM_PROVIDER or "perplexity").lower()
        self._http = http_client
        self._openai = openai_client

    @property
    def model(self) -> str:
        if self.provider == "perplexity":
            return self.settings.PERPLEXITY_MODEL
        return self.settings.OPENAI_MODEL

    async def complete(self, messages: Sequence[Dict[str, str]]) -> str:
        if not messages:
            raise ValueError("messages must be a non-empty list")
        payload = to_provider_messages(messages)
        if self.provider == "perplexity":
            return await self._pplx_chat(payload)
        return await self._openai_chat(payload)

    def stream(self, messages: Sequence[Dict[str, str]]) -> AsyncIterator[str]:
        if not messages:
            raise ValueError("messages must be a non-empty list")
        payload = to_provider_messages(messages)
        if self.provider == "perplexity":
            return self._pplx_stream(payload)
        return self._openai_stream(payload)

    # Perplexity

    def _pplx_headers(self) -> Dict[str, str]:
        if not self.settings.PERPLEXITY_API_KEY:
            raise ConfigurationError(
                "PERPLEXITY_API_KEY is not set. Please configure PERPLEXITY_API_KEY in environment variables."
            )
        return {
            "Authorization": f"Bearer {self.settings.PERPLEXITY_API_KEY}",
            "Content-Type": "application/json",
        }

    def _pplx_payload(self, messages: List[Dict[str, str]], stream: bool) -> Dict[str, object]:
        return {
            "model": self.settings.PERPLEXITY_MODEL,
            "messages": messages,
            "temperature": self.settings.LLM_TEMPERATURE,
            "max_tokens": self.settings.LLM_MAX_TOKENS,
            "stream": stream,
        }

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is not None:
            return self._http
        return httpx.AsyncClient(base_url=PERPLEXITY_BASE_URL, timeout=httpx.Timeout(self.settings.LLM_TIMEOUT))

    async def _pplx_chat(self, messages: List[Dict[str, str]]) -> str:
        headers = self._pplx_headers()
        client = self._http_client()
        try:
            resp = await client.post("/chat/completions", json=self._pplx_payload(messages, False), headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error("Perplexity API error %s: %s", e.response.status_code, detail)
            raise GenerationServiceError(
                f"Perplexity API error {e.response.status_code}", details=detail
            ) from e
        except httpx.HTTPError as e:
            logger.error("Perplexity request failed: %s", e)
            raise GenerationServiceError("Perplexity request failed", details=str(e)) from e
        finally:
            if client is not self._http:
                await client.aclose()
        data = resp.json()
        return (data.get("choices", [{}])[0].get("message", {}) or {}).get("content", "") or ""

    async def _pplx_stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        headers = self._pplx_headers()
        client = self._http_client()
        try:
            async with client.stream(
                "POST", "/chat/completions", json=self._pplx_payload(messages, True), headers=headers
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    detail = _error_detail(resp)
                    logger.error("Perplexity API error %s: %s", resp.status_code, detail)
                    raise GenerationServiceError(f"Perplexity API error {resp.status_code}", details=detail)
                async for line in resp.aiter_lines():
                    text = _sse_delta(line)
                    if text:
                        yield text
        except httpx.HTTPError as e:
            logger.error("Perplexity stream failed: %s", e)
            raise GenerationServiceError("Perplexity stream failed", details=str(e)) from e
        finally:
            if client is not self._http:
                await client.aclose()

    # OpenAI

    def _openai_client(self) -> AsyncOpenAI:
        if self._openai is None:
            if not self.settings.OPENAI_API_KEY:
                raise ConfigurationError(
                    "OPENAI_API_KEY is not set. Please configure OPENAI_API_KEY in environment variables."
                )
            self._openai = AsyncOpenAI(
                api_key=self.settings.OPENAI_API_KEY, timeout=self.settings.LLM_TIMEOUT, max_retries=0
            )
        return self._openai

    async def _openai_chat(self, messages: List[Dict[str, str]]) -> str:
        client = self._openai_client()
        try:
            chat = await client.chat.completions.create(
                model=self.settings.OPENAI_MODEL,
                messages=messages,
                temperature=self.settings.LLM_TEMPERATURE,
                max_tokens=self.settings.LLM_MAX_TOKENS,
            )
        except openai.OpenAIError as e:
            logger.error("OpenAI chat request failed: %s", e)
            raise GenerationServiceError("OpenAI chat request failed", details=str(e)) from e
        return chat.choices[0].message.content or ""

    async def _openai_stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        client = self._openai_client()
        try:
            stream = await client.chat.completions.create(
                model=self.settings.OPENAI_MODEL,
                messages=messages,
                temperature=self.settings.LLM_TEMPERATURE,
                max_tokens=self.settings.LLM_MAX_TOKENS,
                stream=True,
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.OpenAIError as e:
            logger.error("OpenAI chat stream failed: %s", e)
            raise GenerationServiceError("OpenAI chat stream failed", details=str(e)) from e
