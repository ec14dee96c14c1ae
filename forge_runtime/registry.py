"""Adapter registry, built once at startup."""

from types import MappingProxyType
from typing import Mapping

import httpx

from .adapters import GeminiAdapter, OpenAIAdapter, ProviderAdapter
from .models import ProviderId
from .ollama_client import OllamaAdapter

AdapterRegistry = Mapping[ProviderId, ProviderAdapter]


def build_registry(client: httpx.AsyncClient) -> AdapterRegistry:
    """Create the read-only provider → adapter mapping."""
    adapters = (OpenAIAdapter(client), GeminiAdapter(client), OllamaAdapter(client))
    return MappingProxyType({adapter.id: adapter for adapter in adapters})
