"""
HTTP endpoints for the prompt studio UI.

Provides run execution (blocking or SSE), cancellation, live session
state, connection testing and local model listing.
"""

import asyncio
import json
import logging
import time
from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from .errors import ProviderError
from .execution import ExecutionOrchestrator
from .models import ProviderId, RunRequest, RunResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _orchestrator(request: Request) -> ExecutionOrchestrator:
    return request.app.state.orchestrator


@router.post("/v1/runs")
async def start_run(run_request: RunRequest, request: Request):
    """
    Execute a prompt against the selected provider.

    With ``stream`` set the response is an SSE stream:
    - ``event: chunk`` with ``{"text": ...}`` per text fragment
    - ``event: result`` with the final RunResult
    - ``data: [DONE]``

    Only one run may be active; a second request gets 409.
    """
    orchestrator = _orchestrator(request)
    if orchestrator.session.is_active:
        raise HTTPException(status_code=409, detail="A run is already in progress")

    if not run_request.user.strip():
        raise HTTPException(status_code=400, detail="No run payload. Generate or select a prompt first.")

    logger.info(f"Run requested: provider={run_request.provider}, stream={run_request.stream}")

    if run_request.stream:
        queue: asyncio.Queue = asyncio.Queue()
        task = orchestrator.start(run_request, on_chunk=queue.put_nowait)
        return StreamingResponse(
            _stream_run(orchestrator, task, queue),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )

    result = await orchestrator.run(run_request)
    return result.model_dump(mode="json")


async def _stream_run(
    orchestrator: ExecutionOrchestrator,
    task: "asyncio.Task[RunResult]",
    queue: asyncio.Queue,
) -> AsyncIterator[str]:
    """Relay chunks from an already started run as SSE."""
    task.add_done_callback(lambda _: queue.put_nowait(None))

    try:
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield _format_sse_event("chunk", {"text": chunk})

        result: RunResult = await task
        yield _format_sse_event("result", result.model_dump(mode="json"))
        yield "data: [DONE]\n\n"
    finally:
        if not task.done():
            # Client disconnected mid-run
            orchestrator.cancel()


@router.post("/v1/runs/cancel")
async def cancel_run(request: Request):
    """Abort the active run, if any."""
    cancelled = _orchestrator(request).cancel()
    return {"cancelled": cancelled}


@router.get("/v1/runs/current")
async def current_run(request: Request):
    """Live view of the current (or last) run: phase, logs, trace, telemetry."""
    return _orchestrator(request).session.to_result().model_dump(mode="json")


@router.post("/v1/providers/{provider}/check")
async def check_provider(provider: ProviderId, request: Request):
    """Test the connection to a provider with the current settings."""
    adapter = request.app.state.registry[provider]
    settings = _orchestrator(request).settings
    try:
        await adapter.check(settings.provider_config(provider))
    except ProviderError as e:
        logger.warning(f"Connection test failed for {provider.value}: {e.message}")
        return {"status": "error", "message": f"Connection failed: {e.message}"}
    return {"status": "success", "message": "Connection successful."}


@router.get("/v1/models")
async def list_models(request: Request):
    """
    List installed local models (OpenAI-compatible).

    Returns an empty list when the local server is unreachable.
    """
    ollama = request.app.state.registry[ProviderId.OLLAMA]
    settings = _orchestrator(request).settings
    try:
        ollama_models = await ollama.list_models(settings.provider_config(ProviderId.OLLAMA).base_url)
    except ProviderError as e:
        logger.error(f"Failed to list models: {e}")
        ollama_models = []

    models = [
        {
            "id": m.get("name", "unknown"),
            "object": "model",
            "created": int(time.time()),
            "owned_by": "ollama",
        }
        for m in ollama_models
    ]

    return {"object": "list", "data": models}


def _format_sse_event(event_type: str, data: dict) -> str:
    """Format custom event as SSE."""
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"
