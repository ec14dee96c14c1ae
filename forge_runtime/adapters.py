"""
Provider adapters for the commercial backends.

Every backend is wrapped in a ProviderAdapter exposing the same
capability set:

- check: verify credentials/reachability before a run
- chat: blocking completion
- chat_stream: incremental completion (only where supports_streaming)

Adapters share one httpx.AsyncClient owned by the application.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .cancellation import CancelToken
from .errors import ProviderError
from .models import ChatMeta, ChatResult, Message, ProviderConfig, ProviderId, Role
from .streaming import ChunkCallback

logger = logging.getLogger(__name__)


def error_message(response: httpx.Response, fallback: str) -> str:
    """
    Extract the provider's own error text from a failed response.

    Handles both ``{"error": {"message": ...}}`` and ``{"error": "..."}``
    bodies; anything else yields the fallback.
    """
    try:
        body = response.json()
    except ValueError:
        return fallback

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or fallback
    if isinstance(error, str) and error:
        return error
    return fallback


class ProviderAdapter(ABC):
    """Common interface over one LLM backend."""

    id: ProviderId
    name: str
    default_model: str
    supports_streaming: bool = False

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @abstractmethod
    async def check(self, config: ProviderConfig) -> None:
        """Raise ProviderError if the backend cannot serve a run."""

    @abstractmethod
    async def chat(
        self,
        config: ProviderConfig,
        messages: List[Message],
        cancel_token: Optional[CancelToken] = None,
    ) -> ChatResult:
        """Blocking chat completion."""

    async def chat_stream(
        self,
        config: ProviderConfig,
        messages: List[Message],
        cancel_token: Optional[CancelToken],
        on_chunk: ChunkCallback,
    ) -> ChatResult:
        raise NotImplementedError(f"{self.name} does not support streaming")

    def model_for(self, config: ProviderConfig) -> str:
        return config.model or self.default_model

    async def _request(
        self,
        method: str,
        url: str,
        cancel_token: Optional[CancelToken] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, reporting transport failures as network errors."""
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"{self.name} transport error: {e}")
            raise ProviderError(f"{self.name} network error: {e}") from e


class OpenAIAdapter(ProviderAdapter):
    """OpenAI-compatible chat completions with bearer auth."""

    id = ProviderId.OPENAI
    name = "OpenAI"
    default_model = "gpt-4-turbo"

    def _headers(self, config: ProviderConfig) -> Dict[str, str]:
        return {"Authorization": f"Bearer {config.api_key}"}

    async def chat(
        self,
        config: ProviderConfig,
        messages: List[Message],
        cancel_token: Optional[CancelToken] = None,
    ) -> ChatResult:
        payload = {
            "model": self.model_for(config),
            "messages": [m.to_wire() for m in messages],
            "temperature": config.temperature,
        }

        logger.info(f"OpenAI chat: model={payload['model']}, messages={len(messages)}")

        resp = await self._request(
            "POST",
            f"{config.base_url}/chat/completions",
            cancel_token,
            json=payload,
            headers=self._headers(config),
        )
        if resp.is_error:
            raise ProviderError(
                error_message(resp, f"OpenAI Error: {resp.status_code}"),
                status_code=resp.status_code,
            )

        data = resp.json()
        choices = data.get("choices") or [{}]
        usage = data.get("usage") or {}
        return ChatResult(
            text=(choices[0].get("message") or {}).get("content") or "",
            meta=ChatMeta(
                provider=self.id,
                model=data.get("model"),
                prompt_tokens=usage.get("prompt_tokens") or 0,
                completion_tokens=usage.get("completion_tokens") or 0,
                total_tokens=usage.get("total_tokens") or 0,
            ),
        )

    async def check(self, config: ProviderConfig) -> None:
        if not config.api_key:
            raise ProviderError("Missing API Key")

        resp = await self._request("GET", f"{config.base_url}/models", headers=self._headers(config))
        if resp.is_error:
            raise ProviderError("Invalid API Key", status_code=resp.status_code)


class GeminiAdapter(ProviderAdapter):
    """
    Gemini generateContent API.

    Gemini has no system role in its history: the system message moves to
    ``system_instruction`` and every non-user turn is sent as ``model``.
    The API key travels as a query parameter, not a header.
    """

    id = ProviderId.GEMINI
    name = "Google Gemini"
    default_model = "gemini-1.5-flash"

    @staticmethod
    def build_payload(messages: List[Message], temperature: float) -> Dict[str, Any]:
        system = next((m for m in messages if m.role == Role.SYSTEM), None)
        contents = [
            {
                "role": "user" if m.role == Role.USER else "model",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role != Role.SYSTEM
        ]

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": temperature},
        }
        if system is not None:
            payload["system_instruction"] = {"parts": [{"text": system.content}]}
        return payload

    def _url(self, config: ProviderConfig) -> str:
        return f"{config.base_url}/models/{self.model_for(config)}:generateContent"

    async def chat(
        self,
        config: ProviderConfig,
        messages: List[Message],
        cancel_token: Optional[CancelToken] = None,
    ) -> ChatResult:
        model_id = self.model_for(config)
        logger.info(f"Gemini chat: model={model_id}, messages={len(messages)}")

        resp = await self._request(
            "POST",
            self._url(config),
            cancel_token,
            params={"key": config.api_key},
            json=self.build_payload(messages, config.temperature),
        )
        if resp.is_error:
            raise ProviderError(
                error_message(resp, f"Gemini Error: {resp.status_code}"),
                status_code=resp.status_code,
            )

        data = resp.json()
        try:
            text = data["candidates"][0]["content"]["parts"][0].get("text") or ""
        except (KeyError, IndexError, TypeError):
            text = ""

        usage = data.get("usageMetadata") or {}
        return ChatResult(
            text=text,
            meta=ChatMeta(
                provider=self.id,
                model=model_id,
                prompt_tokens=usage.get("promptTokenCount") or 0,
                completion_tokens=usage.get("candidatesTokenCount") or 0,
                total_tokens=usage.get("totalTokenCount") or 0,
            ),
        )

    async def check(self, config: ProviderConfig) -> None:
        if not config.api_key:
            raise ProviderError("Missing API Key")

        model_id = self.model_for(config)
        resp = await self._request(
            "POST",
            self._url(config),
            params={"key": config.api_key},
            json={"contents": [{"parts": [{"text": "ping"}]}]},
        )
        if resp.is_error:
            raise ProviderError(f"Invalid Key or Model ID ({model_id})", status_code=resp.status_code)
