"""
Prompt Forge Runtime

Provider-agnostic execution pipeline for prompt studio runs.

Components:
- adapters / ollama_client: OpenAI, Gemini and Ollama provider adapters
- resolver: local model name resolution
- streaming: newline-delimited JSON stream consumption
- validator: workflow-aware output scoring
- telemetry: live latency/load/memory sampling
- execution: run state machine with a single repair pass
- api: HTTP endpoints for the studio UI
"""

__version__ = "0.1.0"

from .main import app  # noqa: E402
