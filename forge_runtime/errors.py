"""Runtime exceptions and failure classification."""

from typing import Dict, Optional

from .models import ErrorType


class ProviderError(Exception):
    """A provider call failed. The message is shown to the user as-is."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ModelResolutionError(ProviderError):
    """No installed local model matches the request."""


class RunCancelled(Exception):
    """The run's cancellation token was signalled."""


REMEDIATION_HINTS: Dict[ErrorType, str] = {
    ErrorType.RUNNER_KILLED: "Tip: Reduce model size or close heavy apps to free memory.",
    ErrorType.MODEL_NOT_FOUND: "Tip: Use an installed local model tag from /api/tags.",
    ErrorType.NETWORK: "Tip: Verify base URL and CORS. Example: OLLAMA_ORIGINS='*' ollama serve",
    ErrorType.AUTH: "Tip: Check the API key configured for the selected provider.",
}


def classify_error(message: str) -> ErrorType:
    """Map a raw error message to a category. First matching rule wins."""
    msg = (message or "").lower()
    if "not found" in msg:
        return ErrorType.MODEL_NOT_FOUND
    if "signal: killed" in msg or "runner process has terminated" in msg:
        return ErrorType.RUNNER_KILLED
    if "invalid api key" in msg or "unauthorized" in msg:
        return ErrorType.AUTH
    if "cors" in msg or "failed to fetch" in msg or "network" in msg:
        return ErrorType.NETWORK
    return ErrorType.UNKNOWN


def remediation_hint(error_type: ErrorType) -> Optional[str]:
    return REMEDIATION_HINTS.get(error_type)
