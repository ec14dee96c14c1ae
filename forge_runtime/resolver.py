"""Resolve a requested local model name against the installed models."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import ModelResolutionError

logger = logging.getLogger(__name__)

NO_MODELS_MESSAGE = "No local Ollama models found. Pull one first (example: 'ollama pull phi3')."

ModelLister = Callable[[], Awaitable[List[Dict[str, Any]]]]


def normalize_model_name(name: str) -> str:
    return (name or "").strip().lower()


def select_model(requested: Optional[str], installed: List[Dict[str, Any]]) -> str:
    """
    Pick the installed model that best matches the requested name.

    The requested name is a hint: ``phi3`` matches ``phi3:latest`` and
    matching ignores case and surrounding whitespace. With no request,
    the first installed model wins in the order the backend listed them.

    Raises:
        ModelResolutionError: nothing is installed or nothing matches.
    """
    if not installed:
        raise ModelResolutionError(NO_MODELS_MESSAGE)

    requested = (requested or "").strip()
    if not requested:
        return installed[0].get("name", "")

    wanted = normalize_model_name(requested)
    for model in installed:
        name = normalize_model_name(model.get("name", ""))
        base_name = name.split(":", 1)[0]
        if name == wanted or name.startswith(f"{wanted}:") or base_name == wanted:
            return model["name"]

    available = ", ".join(m.get("name", "") for m in installed)
    raise ModelResolutionError(f"Model '{requested}' not found locally. Available: {available}")


class ModelResolver:
    """
    Maps the configured model hint to an installed model.

    Every call fetches the installed list again; models can be pulled or
    removed between runs, so nothing is cached.
    """

    def __init__(self, list_models: ModelLister):
        self._list_models = list_models

    async def resolve(self, requested: Optional[str]) -> str:
        installed = await self._list_models()
        name = select_model(requested, installed)
        logger.debug(f"Resolved model '{requested or 'auto'}' -> {name}")
        return name
