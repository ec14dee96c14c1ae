"""Run session state."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .cancellation import CancelToken
from .models import (
    ChatMeta,
    ErrorType,
    LogLevel,
    LogLine,
    PipelineStep,
    RunPhase,
    RunResult,
    StepStatus,
    TelemetrySnapshot,
    ValidationReport,
)

logger = logging.getLogger(__name__)


@dataclass
class RunSession:
    """
    Transient state of one execution.

    Tracks:
    - Run phase (idle through a terminal phase)
    - User-facing log lines
    - Append-only pipeline trace
    - Latest telemetry snapshot
    - The run's cancellation token
    """
    phase: RunPhase = RunPhase.IDLE
    logs: List[LogLine] = field(default_factory=list)
    trace: List[PipelineStep] = field(default_factory=list)
    telemetry: TelemetrySnapshot = field(default_factory=TelemetrySnapshot)
    cancel_token: CancelToken = field(default_factory=CancelToken)
    text: str = ""
    meta: Optional[ChatMeta] = None
    validation: Optional[ValidationReport] = None
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None
    hint: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.phase != RunPhase.IDLE and not self.phase.is_terminal

    def transition(self, phase: RunPhase) -> bool:
        """
        Move to a new phase. Terminal phases are final for this session.

        Returns False (and changes nothing) when already terminal.
        """
        if self.phase.is_terminal:
            logger.debug(f"Ignoring transition {self.phase.value} -> {phase.value}")
            return False
        logger.debug(f"Run phase {self.phase.value} -> {phase.value}")
        self.phase = phase
        return True

    def log(self, text: str, level: LogLevel = LogLevel.INFO):
        self.logs.append(LogLine(text=text, level=level))

    def step(self, step: str, status: StepStatus, detail: str):
        self.trace.append(PipelineStep(step=step, status=status, detail=detail))

    def update_telemetry(self, **values):
        self.telemetry = self.telemetry.model_copy(update=values)

    def to_result(self) -> RunResult:
        """Snapshot for the UI layer."""
        return RunResult(
            phase=self.phase,
            text=self.text,
            meta=self.meta,
            validation=self.validation,
            trace=list(self.trace),
            logs=list(self.logs),
            telemetry=self.telemetry,
            error=self.error,
            error_type=self.error_type,
            hint=self.hint,
        )
