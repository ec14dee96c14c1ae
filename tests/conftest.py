"""Shared fixtures and fakes."""

import asyncio
from typing import Callable, List, Optional, Union

import httpx
import pytest

from forge_runtime.adapters import ProviderAdapter
from forge_runtime.config import Config
from forge_runtime.models import ChatMeta, ChatResult, ProviderConfig, ProviderId

Reply = Union[str, Exception, ChatResult]


class FakeAdapter(ProviderAdapter):
    """Scripted adapter: each chat call pops the next reply."""

    id = ProviderId.OPENAI
    name = "Fake Provider"
    default_model = "fake-model"

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        stream_chunks: Optional[List[str]] = None,
        check_error: Optional[Exception] = None,
        check_gate: Optional[asyncio.Event] = None,
    ):
        super().__init__(client=None)
        self.replies = list(replies or [])
        self.stream_chunks = stream_chunks
        self.supports_streaming = stream_chunks is not None
        self.check_error = check_error
        self.check_gate = check_gate
        self.check_calls = 0
        self.chat_calls: List[list] = []

    async def check(self, config):
        self.check_calls += 1
        if self.check_gate is not None:
            await self.check_gate.wait()
        if self.check_error is not None:
            raise self.check_error

    async def chat(self, config, messages, cancel_token=None):
        self.chat_calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, ChatResult):
            return reply
        return ChatResult(text=reply, meta=ChatMeta(provider=self.id, model="fake-model"))

    async def chat_stream(self, config, messages, cancel_token, on_chunk):
        self.chat_calls.append(list(messages))
        for chunk in self.stream_chunks:
            on_chunk(chunk)
            await asyncio.sleep(0)
        return ChatResult(
            text="".join(self.stream_chunks),
            meta=ChatMeta(
                provider=self.id,
                model="fake-model",
                prompt_tokens=4,
                completion_tokens=10,
                total_tokens=14,
                eval_duration_ns=2_000_000_000,
            ),
        )


@pytest.fixture
def settings() -> Config:
    return Config(active_provider=ProviderId.OPENAI, telemetry_interval=0.01)


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(base_url="http://provider.test", api_key="sk-test")


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by a handler."""

    def _make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
