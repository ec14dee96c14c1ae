"""
Newline-delimited JSON stream consumption for the local provider.

The transport may split the body anywhere, including in the middle of a
JSON object. The decoder keeps the trailing fragment of each read until
the rest of the line arrives.
"""

import json
import logging
from typing import Any, AsyncIterable, Callable, Dict, List, Optional

from .cancellation import CancelToken
from .models import ChatMeta, ChatResult, ProviderId

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


class NDJSONDecoder:
    """Incremental decoder yielding one dict per complete, well-formed line."""

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> List[Dict[str, Any]]:
        self._buffer += text

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [obj for obj in (_parse_line(line) for line in lines) if obj is not None]

    def flush(self) -> List[Dict[str, Any]]:
        """Parse whatever is left once the transport is exhausted."""
        tail, self._buffer = self._buffer, ""
        obj = _parse_line(tail)
        return [obj] if obj is not None else []


def _parse_line(line: str) -> Optional[Dict[str, Any]]:
    line = line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed stream line: {line[:100]}")
        return None
    return obj if isinstance(obj, dict) else None


def _message_content(obj: Dict[str, Any]) -> str:
    message = obj.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


def ollama_meta(data: Dict[str, Any], fallback_model: Optional[str] = None) -> ChatMeta:
    """Build metadata from a final (or non-streaming) chat response."""
    prompt_tokens = data.get("prompt_eval_count") or 0
    completion_tokens = data.get("eval_count") or 0
    return ChatMeta(
        provider=ProviderId.OLLAMA,
        model=data.get("model") or fallback_model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        eval_duration_ns=data.get("eval_duration") or 0,
        total_duration_ns=data.get("total_duration") or 0,
    )


async def consume_stream(
    chunks: AsyncIterable[str],
    on_chunk: ChunkCallback,
    cancel_token: Optional[CancelToken] = None,
    model: Optional[str] = None,
) -> ChatResult:
    """
    Read a streaming chat body, forwarding text as it arrives.

    Text chunks go to ``on_chunk`` in transport order. Usage metadata is
    taken only from the object flagged ``done``; until then the result
    carries just the provider and model name.

    Raises:
        RunCancelled: the token was signalled; no further chunks are
            delivered after that point.
    """
    decoder = NDJSONDecoder()
    parts: List[str] = []
    meta = ChatMeta(provider=ProviderId.OLLAMA, model=model)

    def handle(objects: List[Dict[str, Any]]):
        nonlocal meta
        for obj in objects:
            content = _message_content(obj)
            if content:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                parts.append(content)
                on_chunk(content)
            if obj.get("done"):
                meta = ollama_meta(obj, model)

    async for raw in chunks:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        handle(decoder.feed(raw))
    handle(decoder.flush())

    return ChatResult(text="".join(parts), meta=meta)
