"""Data models for the execution runtime."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enumerations
# ============================================================================

class ProviderId(str, Enum):
    """Supported backends."""
    OPENAI = "openai"
    GEMINI = "gemini"
    OLLAMA = "ollama"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class RunPhase(str, Enum):
    """Run state machine phase."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (RunPhase.COMPLETED, RunPhase.FAILED, RunPhase.STOPPED)


class Workflow(str, Enum):
    """Which guided workflow produced the prompt."""
    ARTIFACT_PACK = "artifact_pack"
    IMPROVE_PROMPT = "improve_prompt"
    VALIDATE_SLM = "validate_slm"


class StepStatus(str, Enum):
    DONE = "done"
    WARN = "warn"
    RUNNING = "running"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ErrorType(str, Enum):
    """Classified failure categories."""
    MODEL_NOT_FOUND = "model_not_found"
    RUNNER_KILLED = "runner_killed"
    AUTH = "auth"
    NETWORK = "network"
    UNKNOWN = "unknown"


# ============================================================================
# Provider Models
# ============================================================================

class ProviderConfig(BaseModel):
    """Per-run provider settings. Frozen once the run starts."""
    model_config = ConfigDict(frozen=True)

    base_url: str
    api_key: str = ""
    model: str = ""
    temperature: float = 0.3
    context_window: int = 1024
    max_output_tokens: int = 256


class Message(BaseModel):
    """Chat message."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    def to_wire(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class ChatMeta(BaseModel):
    """Usage and timing metadata reported by a provider."""
    provider: ProviderId
    model: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    eval_duration_ns: Optional[int] = None
    total_duration_ns: Optional[int] = None

    @property
    def tokens_per_sec(self) -> float:
        """Throughput from final metadata; 0 when durations are unknown."""
        if self.eval_duration_ns and self.eval_duration_ns > 0 and self.completion_tokens > 0:
            return round(self.completion_tokens / (self.eval_duration_ns / 1e9), 2)
        return 0.0


class ChatResult(BaseModel):
    text: str = ""
    meta: ChatMeta


class RunningModel(BaseModel):
    """Entry from the local runtime's process status endpoint."""
    name: str
    size_vram: int = 0


# ============================================================================
# Run Models
# ============================================================================

class LogLine(BaseModel):
    text: str
    level: LogLevel = LogLevel.INFO
    ts: datetime = Field(default_factory=datetime.now)


class PipelineStep(BaseModel):
    step: str
    status: StepStatus
    detail: str


class ValidationCheck(BaseModel):
    name: str
    passed: bool


class ValidationReport(BaseModel):
    checks: List[ValidationCheck]
    fixes: List[str]
    score: int = Field(ge=0, le=100)


class TelemetrySnapshot(BaseModel):
    """Latest sampled values for an in-progress run."""
    model_config = ConfigDict(protected_namespaces=())

    model_status: str = "idle"
    model: str = "-"
    latency_ms: int = 0
    tokens_per_sec: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cpu_load: int = 0
    memory_mb: int = 0
    gpu_mode: str = "-"
    gpu_vram_mb: int = 0
    error_type: str = "-"


# ============================================================================
# Orchestrator Boundary
# ============================================================================

class RunRequest(BaseModel):
    """Prompt pair plus the workflow context it was produced from."""
    system: str = "You are a helpful assistant."
    user: str
    provider: Optional[ProviderId] = None
    workflow: Workflow = Workflow.ARTIFACT_PACK
    goal: str = ""
    audience: str = ""
    constraints: str = ""
    max_response_words: int = 180
    profile: Optional[str] = None
    stream: bool = True


class RunResult(BaseModel):
    phase: RunPhase
    text: str = ""
    meta: Optional[ChatMeta] = None
    validation: Optional[ValidationReport] = None
    trace: List[PipelineStep] = Field(default_factory=list)
    logs: List[LogLine] = Field(default_factory=list)
    telemetry: TelemetrySnapshot = Field(default_factory=TelemetrySnapshot)
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None
    hint: Optional[str] = None
