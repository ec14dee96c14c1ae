"""Ollama adapter with streaming support."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .adapters import ProviderAdapter, error_message
from .cancellation import CancelToken
from .errors import ModelResolutionError, ProviderError
from .models import ChatResult, Message, ProviderConfig, ProviderId, RunningModel
from .resolver import ModelResolver
from .streaming import ChunkCallback, consume_stream, ollama_meta

logger = logging.getLogger(__name__)

UNREACHABLE_MESSAGE = 'Ensure Ollama is running with OLLAMA_ORIGINS="*"'


class OllamaAdapter(ProviderAdapter):
    """
    Adapter for a local Ollama server.

    Handles:
    - Model resolution before every call (the configured name is a hint)
    - Blocking and streaming chat completions
    - Model listing and running-process status for telemetry
    """

    id = ProviderId.OLLAMA
    name = "Ollama (Local)"
    default_model = "first installed model (auto)"
    supports_streaming = True

    async def list_models(
        self,
        base_url: str,
        cancel_token: Optional[CancelToken] = None,
    ) -> List[Dict[str, Any]]:
        """List installed models from Ollama, in server order."""
        resp = await self._request("GET", f"{base_url}/api/tags", cancel_token)
        if resp.is_error:
            raise ProviderError("Unreachable", status_code=resp.status_code)
        return resp.json().get("models") or []

    async def resolve_model(
        self,
        config: ProviderConfig,
        cancel_token: Optional[CancelToken] = None,
    ) -> str:
        resolver = ModelResolver(lambda: self.list_models(config.base_url, cancel_token))
        return await resolver.resolve(config.model)

    async def running_models(self, base_url: str) -> List[RunningModel]:
        """Models currently loaded in memory (``/api/ps``)."""
        resp = await self._request("GET", f"{base_url}/api/ps")
        resp.raise_for_status()
        return [RunningModel(**m) for m in resp.json().get("models") or [] if m.get("name")]

    def _payload(
        self,
        config: ProviderConfig,
        model: str,
        messages: List[Message],
        stream: bool,
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": [m.to_wire() for m in messages],
            "stream": stream,
            "options": {
                "num_ctx": config.context_window,
                "num_predict": config.max_output_tokens,
                "temperature": config.temperature,
            },
        }

    async def chat(
        self,
        config: ProviderConfig,
        messages: List[Message],
        cancel_token: Optional[CancelToken] = None,
    ) -> ChatResult:
        model = await self.resolve_model(config, cancel_token)
        logger.info(f"Ollama chat: model={model}, messages={len(messages)}")

        resp = await self._request(
            "POST",
            f"{config.base_url}/api/chat",
            cancel_token,
            json=self._payload(config, model, messages, stream=False),
        )
        if resp.is_error:
            raise ProviderError(
                error_message(resp, f"Ollama Error: {resp.status_code}"),
                status_code=resp.status_code,
            )

        data = resp.json()
        return ChatResult(
            text=(data.get("message") or {}).get("content") or "",
            meta=ollama_meta(data, model),
        )

    async def chat_stream(
        self,
        config: ProviderConfig,
        messages: List[Message],
        cancel_token: Optional[CancelToken],
        on_chunk: ChunkCallback,
    ) -> ChatResult:
        """
        Stream a chat completion, forwarding text to ``on_chunk``.

        Returns the full text and the metadata from the final ``done``
        object.
        """
        model = await self.resolve_model(config, cancel_token)
        logger.info(f"Starting chat stream: model={model}, messages={len(messages)}")

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            async with self.client.stream(
                "POST",
                f"{config.base_url}/api/chat",
                json=self._payload(config, model, messages, stream=True),
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise ProviderError(
                        error_message(response, f"Ollama Error: {response.status_code}"),
                        status_code=response.status_code,
                    )

                return await consume_stream(response.aiter_text(), on_chunk, cancel_token, model)

        except httpx.TransportError as e:
            logger.error(f"Ollama stream error: {e}")
            raise ProviderError(f"{self.name} network error: {e}") from e

    async def check(self, config: ProviderConfig) -> None:
        try:
            await self.resolve_model(config)
        except ModelResolutionError:
            raise
        except ProviderError as e:
            logger.warning(f"Ollama check failed: {e}")
            raise ProviderError(UNREACHABLE_MESSAGE) from e
