"""Wire-level tests for the provider adapters."""

import json

import httpx
import pytest

from forge_runtime.adapters import GeminiAdapter, OpenAIAdapter
from forge_runtime.errors import ModelResolutionError, ProviderError, classify_error
from forge_runtime.models import ErrorType, Message, ProviderConfig, ProviderId, Role
from forge_runtime.ollama_client import UNREACHABLE_MESSAGE, OllamaAdapter
from forge_runtime.registry import build_registry
from forge_runtime.resolver import NO_MODELS_MESSAGE

MESSAGES = [
    Message(role=Role.SYSTEM, content="You are a helpful assistant."),
    Message(role=Role.USER, content="Say hi"),
]


# =============================================================================
# OpenAI
# =============================================================================

@pytest.mark.asyncio
async def test_openai_chat_request_and_response(mock_client, provider_config):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "model": "gpt-4-turbo-2024",
            "choices": [{"message": {"role": "assistant", "content": "Hi!"}}],
            "usage": {"prompt_tokens": 9, "completion_tokens": 2, "total_tokens": 11},
        })

    async with mock_client(handler) as client:
        result = await OpenAIAdapter(client).chat(provider_config, MESSAGES)

    assert seen["url"] == "http://provider.test/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {
        "model": "gpt-4-turbo",
        "messages": [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "Say hi"},
        ],
        "temperature": 0.3,
    }
    assert result.text == "Hi!"
    assert result.meta.provider == ProviderId.OPENAI
    assert result.meta.model == "gpt-4-turbo-2024"
    assert (result.meta.prompt_tokens, result.meta.completion_tokens, result.meta.total_tokens) == (9, 2, 11)


@pytest.mark.asyncio
async def test_openai_error_surfaces_nested_message(mock_client, provider_config):
    def handler(request):
        return httpx.Response(404, json={"error": {"message": "The model `gpt-9` does not exist"}})

    async with mock_client(handler) as client:
        with pytest.raises(ProviderError) as exc:
            await OpenAIAdapter(client).chat(provider_config, MESSAGES)

    assert exc.value.message == "The model `gpt-9` does not exist"
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_openai_error_falls_back_to_status(mock_client, provider_config):
    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    async with mock_client(handler) as client:
        with pytest.raises(ProviderError, match="OpenAI Error: 502"):
            await OpenAIAdapter(client).chat(provider_config, MESSAGES)


@pytest.mark.asyncio
async def test_openai_check_requires_key(mock_client):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"data": []})

    async with mock_client(handler) as client:
        with pytest.raises(ProviderError, match="Missing API Key"):
            await OpenAIAdapter(client).check(ProviderConfig(base_url="http://provider.test"))

    assert calls == []


@pytest.mark.asyncio
async def test_openai_check_rejects_bad_key(mock_client, provider_config):
    def handler(request):
        assert request.url.path == "/models"
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

    async with mock_client(handler) as client:
        with pytest.raises(ProviderError) as exc:
            await OpenAIAdapter(client).check(provider_config)

    assert exc.value.message == "Invalid API Key"
    assert classify_error(exc.value.message) == ErrorType.AUTH


@pytest.mark.asyncio
async def test_transport_failure_is_a_network_error(mock_client, provider_config):
    def handler(request):
        raise httpx.ConnectError("All connection attempts failed", request=request)

    async with mock_client(handler) as client:
        with pytest.raises(ProviderError) as exc:
            await OpenAIAdapter(client).chat(provider_config, MESSAGES)

    assert classify_error(exc.value.message) == ErrorType.NETWORK


# =============================================================================
# Gemini
# =============================================================================

def test_gemini_payload_remaps_roles():
    messages = [
        Message(role=Role.SYSTEM, content="Be terse."),
        Message(role=Role.USER, content="Q1"),
        Message(role=Role.ASSISTANT, content="A1"),
        Message(role=Role.USER, content="Q2"),
    ]

    payload = GeminiAdapter.build_payload(messages, 0.15)

    assert payload["system_instruction"] == {"parts": [{"text": "Be terse."}]}
    assert payload["contents"] == [
        {"role": "user", "parts": [{"text": "Q1"}]},
        {"role": "model", "parts": [{"text": "A1"}]},
        {"role": "user", "parts": [{"text": "Q2"}]},
    ]
    assert payload["generationConfig"] == {"temperature": 0.15}


def test_gemini_payload_without_system_message():
    payload = GeminiAdapter.build_payload([Message(role=Role.USER, content="hello")], 0.3)
    assert "system_instruction" not in payload


@pytest.mark.asyncio
async def test_gemini_chat_uses_key_query_and_model_path(mock_client):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["key"] = request.url.params.get("key")
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": "Hello there"}]}}],
            "usageMetadata": {"promptTokenCount": 6, "candidatesTokenCount": 2, "totalTokenCount": 8},
        })

    cfg = ProviderConfig(base_url="http://gemini.test/v1beta", api_key="g-key", model="gemini-1.5-pro")
    async with mock_client(handler) as client:
        result = await GeminiAdapter(client).chat(cfg, MESSAGES)

    assert seen["path"] == "/v1beta/models/gemini-1.5-pro:generateContent"
    assert seen["key"] == "g-key"
    assert seen["auth"] is None
    assert result.text == "Hello there"
    assert result.meta.model == "gemini-1.5-pro"
    assert result.meta.total_tokens == 8


@pytest.mark.asyncio
async def test_gemini_check_names_model_on_rejection(mock_client):
    def handler(request):
        body = json.loads(request.content)
        assert body == {"contents": [{"parts": [{"text": "ping"}]}]}
        return httpx.Response(400, json={"error": {"message": "API key not valid"}})

    cfg = ProviderConfig(base_url="http://gemini.test/v1beta", api_key="bad")
    async with mock_client(handler) as client:
        with pytest.raises(ProviderError, match=r"Invalid Key or Model ID \(gemini-1.5-flash\)"):
            await GeminiAdapter(client).check(cfg)


# =============================================================================
# Ollama
# =============================================================================

def _ollama_handler(models, chat_response=None, seen=None):
    def handler(request):
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": models})
        if request.url.path == "/api/chat":
            if seen is not None:
                seen.append(json.loads(request.content))
            return chat_response
        return httpx.Response(404)
    return handler


@pytest.mark.asyncio
async def test_ollama_end_to_end_auto_model(mock_client):
    seen = []
    chat_response = httpx.Response(200, json={
        "model": "llama3:8b",
        "message": {"role": "assistant", "content": "Hi!"},
        "done": True,
        "prompt_eval_count": 5,
        "eval_count": 3,
        "eval_duration": 300_000_000,
        "total_duration": 900_000_000,
    })
    cfg = ProviderConfig(base_url="http://ollama.test", model="", temperature=0.15,
                         context_window=896, max_output_tokens=180)

    async with mock_client(_ollama_handler([{"name": "llama3:8b"}], chat_response, seen)) as client:
        result = await OllamaAdapter(client).chat(cfg, MESSAGES)

    assert seen[0]["model"] == "llama3:8b"
    assert seen[0]["stream"] is False
    assert seen[0]["options"] == {"num_ctx": 896, "num_predict": 180, "temperature": 0.15}
    assert result.text == "Hi!"
    assert result.meta.model == "llama3:8b"
    assert (result.meta.prompt_tokens, result.meta.completion_tokens, result.meta.total_tokens) == (5, 3, 8)
    assert result.meta.total_duration_ns == 900_000_000


@pytest.mark.asyncio
async def test_ollama_error_body_is_surfaced(mock_client):
    chat_response = httpx.Response(500, json={"error": "llama runner process has terminated: signal: killed"})
    cfg = ProviderConfig(base_url="http://ollama.test")

    async with mock_client(_ollama_handler([{"name": "phi3:latest"}], chat_response)) as client:
        with pytest.raises(ProviderError) as exc:
            await OllamaAdapter(client).chat(cfg, MESSAGES)

    assert classify_error(exc.value.message) == ErrorType.RUNNER_KILLED


@pytest.mark.asyncio
async def test_ollama_stream(mock_client):
    lines = [
        {"message": {"content": "Hel"}, "done": False},
        {"message": {"content": "lo"}, "done": False},
        {"model": "phi3:latest", "message": {"content": ""}, "done": True,
         "prompt_eval_count": 4, "eval_count": 2, "eval_duration": 1_000_000_000},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\n"
    seen = []
    cfg = ProviderConfig(base_url="http://ollama.test", model="PHI3")
    received = []

    handler = _ollama_handler([{"name": "phi3:latest"}], httpx.Response(200, content=body.encode()), seen)
    async with mock_client(handler) as client:
        result = await OllamaAdapter(client).chat_stream(cfg, MESSAGES, None, received.append)

    assert seen[0]["stream"] is True
    assert seen[0]["model"] == "phi3:latest"
    assert received == ["Hel", "lo"]
    assert result.text == "Hello"
    assert result.meta.completion_tokens == 2
    assert result.meta.tokens_per_sec == 2.0


class _ChunkedBody(httpx.AsyncByteStream):
    def __init__(self, chunks):
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


@pytest.mark.asyncio
async def test_ollama_stream_decodes_characters_split_across_reads(mock_client):
    body = '{"message": {"content": "héllo wörld"}, "done": false}\n{"done": true, "eval_count": 2}\n'
    raw = body.encode("utf-8")
    split = raw.index("é".encode("utf-8")) + 1
    response = httpx.Response(200, stream=_ChunkedBody([raw[:split], raw[split:]]))
    cfg = ProviderConfig(base_url="http://ollama.test", model="phi3")
    received = []

    async with mock_client(_ollama_handler([{"name": "phi3:latest"}], response)) as client:
        result = await OllamaAdapter(client).chat_stream(cfg, MESSAGES, None, received.append)

    assert received == ["héllo wörld"]
    assert result.meta.completion_tokens == 2


@pytest.mark.asyncio
async def test_ollama_stream_error_status(mock_client):
    cfg = ProviderConfig(base_url="http://ollama.test")
    handler = _ollama_handler(
        [{"name": "phi3:latest"}],
        httpx.Response(404, json={"error": "model 'phi3' not found"}),
    )

    async with mock_client(handler) as client:
        with pytest.raises(ProviderError, match="not found"):
            await OllamaAdapter(client).chat_stream(cfg, MESSAGES, None, lambda chunk: None)


@pytest.mark.asyncio
async def test_ollama_check_passes_resolver_messages(mock_client):
    cfg = ProviderConfig(base_url="http://ollama.test", model="phi3")

    async with mock_client(_ollama_handler([])) as client:
        with pytest.raises(ModelResolutionError, match="Pull one first"):
            await OllamaAdapter(client).check(cfg)

    async with mock_client(_ollama_handler([{"name": "llama3:8b"}])) as client:
        with pytest.raises(ModelResolutionError) as exc:
            await OllamaAdapter(client).check(cfg)
    assert exc.value.message == "Model 'phi3' not found locally. Available: llama3:8b"


@pytest.mark.asyncio
async def test_ollama_check_unreachable(mock_client):
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    async with mock_client(handler) as client:
        with pytest.raises(ProviderError) as exc:
            await OllamaAdapter(client).check(ProviderConfig(base_url="http://ollama.test"))

    assert exc.value.message == UNREACHABLE_MESSAGE


@pytest.mark.asyncio
async def test_ollama_resolves_on_every_call(mock_client):
    tags_calls = []

    def handler(request):
        if request.url.path == "/api/tags":
            tags_calls.append(request)
            return httpx.Response(200, json={"models": [{"name": "phi3:latest"}]})
        return httpx.Response(200, json={"model": "phi3:latest", "message": {"content": "ok"}, "done": True})

    cfg = ProviderConfig(base_url="http://ollama.test")
    async with mock_client(handler) as client:
        adapter = OllamaAdapter(client)
        await adapter.chat(cfg, MESSAGES)
        await adapter.chat(cfg, MESSAGES)

    assert len(tags_calls) == 2


@pytest.mark.asyncio
async def test_ollama_running_models(mock_client):
    def handler(request):
        assert request.url.path == "/api/ps"
        return httpx.Response(200, json={"models": [{"name": "phi3:latest", "size_vram": 2097152, "size": 1}]})

    async with mock_client(handler) as client:
        running = await OllamaAdapter(client).running_models("http://ollama.test")

    assert running[0].name == "phi3:latest"
    assert running[0].size_vram == 2097152


def test_empty_list_message_constant():
    assert NO_MODELS_MESSAGE.startswith("No local Ollama models found")


@pytest.mark.asyncio
async def test_registry_is_read_only():
    async with httpx.AsyncClient() as client:
        registry = build_registry(client)

    assert set(registry) == {ProviderId.OPENAI, ProviderId.GEMINI, ProviderId.OLLAMA}
    assert registry[ProviderId.OLLAMA].supports_streaming is True
    assert registry[ProviderId.OPENAI].supports_streaming is False
    with pytest.raises(TypeError):
        registry[ProviderId.OPENAI] = None
