"""
Execution pipeline for one prompt run.

Sequence: connectivity check → dispatch (blocking or streaming) with
telemetry sampling alongside → validation → at most one repair pass →
terminal phase.

Only one run is active at a time. ``start`` moves the new session out of
``idle`` before returning, so callers can guard on ``session.is_active``.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Tuple

from .adapters import ProviderAdapter
from .config import Config, config
from .errors import ProviderError, RunCancelled, classify_error, remediation_hint
from .models import (
    ChatResult,
    LogLevel,
    Message,
    ProviderConfig,
    RunPhase,
    RunRequest,
    RunResult,
    StepStatus,
    ValidationReport,
)
from .pipeline import build_pipeline_request, build_repair_messages
from .registry import AdapterRegistry
from .state import RunSession
from .streaming import ChunkCallback
from .telemetry import TelemetrySampler
from .validator import REPAIR_THRESHOLD, OutputValidator

logger = logging.getLogger(__name__)

ValidatorFactory = Callable[..., OutputValidator]


class ExecutionOrchestrator:
    """
    Drives a RunSession through its phases.

    Handles:
    - Adapter selection and the per-run config snapshot
    - Connectivity check, primary call and the optional repair pass
    - Telemetry sampler lifetime (stopped on every exit path)
    - Failure classification and cooperative cancellation
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        settings: Config = config,
        validator_factory: ValidatorFactory = OutputValidator,
    ):
        self.registry = registry
        self.settings = settings
        self.validator_factory = validator_factory
        self.session = RunSession()
        self.last_payload: List[Message] = []
        self._task: Optional[asyncio.Task] = None
        self._sampler: Optional[TelemetrySampler] = None

    async def run(
        self,
        request: RunRequest,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> RunResult:
        """
        Execute one run and return its final state.

        Failures and user cancellation end in the ``failed`` / ``stopped``
        phase of the returned result rather than raising.
        """
        return await self.start(request, on_chunk)

    def start(
        self,
        request: RunRequest,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> "asyncio.Task[RunResult]":
        """
        Begin a run and return the task that finishes it.

        The new session is already ``initializing`` when this returns, so
        ``session.is_active`` reflects the run before any await.
        """
        provider = request.provider or self.settings.active_provider
        adapter = self.registry[provider]
        provider_config = self.settings.provider_config(provider, request.profile)

        session = RunSession()
        self.session = session
        session.transition(RunPhase.INITIALIZING)
        session.update_telemetry(model_status="running", model=provider_config.model or "auto")
        session.log(f"Initializing Runtime: {adapter.name}...")
        logger.info(f"Run started: provider={provider.value}, workflow={request.workflow.value}")

        self._task = asyncio.create_task(
            self._execute(session, adapter, provider_config, request, on_chunk)
        )
        return asyncio.create_task(self._finish(session, self._task))

    async def _finish(self, session: RunSession, task: asyncio.Task) -> RunResult:
        terminal = RunPhase.COMPLETED
        try:
            await task
        except asyncio.CancelledError:
            if not session.cancel_token.cancelled:
                # Cancelled from outside (e.g. the client went away)
                await self._stop_sampler()
                session.transition(RunPhase.STOPPED)
                raise
            terminal = RunPhase.STOPPED
        except RunCancelled:
            terminal = RunPhase.STOPPED
        except Exception as e:
            self._record_failure(session, e)
            terminal = RunPhase.FAILED
        finally:
            if self._task is task:
                self._task = None

        await self._stop_sampler()
        session.transition(terminal)
        logger.info(f"Run finished: phase={session.phase.value}")
        return session.to_result()

    def cancel(self) -> bool:
        """
        Abort the active run.

        Signals the token, stops telemetry and moves the session to
        ``stopped``. Text already streamed stays on the session.
        Returns False when nothing is running.
        """
        session = self.session
        if not session.is_active:
            return False

        session.cancel_token.cancel()
        if self._sampler is not None:
            self._sampler.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

        session.update_telemetry(model_status="stopped")
        session.log("Run Aborted by user.", LogLevel.WARNING)
        session.transition(RunPhase.STOPPED)
        logger.info("Run cancelled by user")
        return True

    async def _execute(
        self,
        session: RunSession,
        adapter: ProviderAdapter,
        provider_config: ProviderConfig,
        request: RunRequest,
        on_chunk: Optional[ChunkCallback],
    ):
        token = session.cancel_token
        pipeline = build_pipeline_request(request)
        self.last_payload = pipeline.messages

        session.step("parse", StepStatus.DONE, "Extracted goal/audience/constraints from guided inputs.")
        session.step("compress", StepStatus.DONE, "Built compact context for SLM token efficiency.")
        session.step("scaffold", StepStatus.DONE, "Prepared deterministic scaffold with checklist rule.")

        await adapter.check(provider_config)
        token.raise_if_cancelled()
        session.transition(RunPhase.CONNECTED)
        session.log("Connection Verified.", LogLevel.SUCCESS)

        session.transition(RunPhase.EXECUTING)
        dispatched_at = time.monotonic()
        self._sampler = TelemetrySampler(
            session, adapter, provider_config, interval=self.settings.telemetry_interval
        )
        self._sampler.start()
        session.log("Sending request...")

        result = await self._dispatch(session, adapter, provider_config, request, pipeline.messages, on_chunk)
        text = result.text
        meta = result.meta

        session.meta = meta
        session.step("draft", StepStatus.DONE, f"Primary draft generated ({len(text)} chars).")
        session.update_telemetry(
            model_status="ok",
            model=meta.model or session.telemetry.model,
            latency_ms=round((time.monotonic() - dispatched_at) * 1000),
            tokens_per_sec=meta.tokens_per_sec,
            prompt_tokens=meta.prompt_tokens,
            completion_tokens=meta.completion_tokens,
        )

        validator = self.validator_factory(
            request.workflow, request.constraints, request.max_response_words
        )
        validation = validator.validate(text)
        session.step(
            "evaluate",
            StepStatus.DONE if validation.score >= REPAIR_THRESHOLD else StepStatus.WARN,
            f"Validation score: {validation.score}%",
        )

        if validation.score < REPAIR_THRESHOLD:
            text, validation = await self._repair(
                session, adapter, provider_config, request, text, validation, validator
            )

        session.text = text
        session.validation = validation
        session.log(f"Response Received: {len(text)} chars", LogLevel.SUCCESS)
        session.log("Run Completed.", LogLevel.SUCCESS)

    async def _dispatch(
        self,
        session: RunSession,
        adapter: ProviderAdapter,
        provider_config: ProviderConfig,
        request: RunRequest,
        messages: List[Message],
        on_chunk: Optional[ChunkCallback],
    ) -> ChatResult:
        token = session.cancel_token

        if request.stream and adapter.supports_streaming:
            profile = self.settings.profile(request.profile)
            session.log(f"Streaming enabled ({profile.label}).")

            def forward(chunk: str):
                session.text += chunk
                if on_chunk is not None:
                    on_chunk(chunk)

            result = await adapter.chat_stream(provider_config, messages, token, forward)
            return ChatResult(text=session.text, meta=result.meta)

        result = await adapter.chat(provider_config, messages, token)
        session.text = result.text
        if on_chunk is not None and result.text:
            on_chunk(result.text)
        return result

    async def _repair(
        self,
        session: RunSession,
        adapter: ProviderAdapter,
        provider_config: ProviderConfig,
        request: RunRequest,
        text: str,
        validation: ValidationReport,
        validator: OutputValidator,
    ) -> Tuple[str, ValidationReport]:
        """
        Single self-repair call. Never repeated, whatever the new score.

        An empty or failed repair keeps the original text and report.
        """
        session.step("repair", StepStatus.RUNNING, "Low score detected. Launching repair pass.")
        session.log("Repair pass triggered (low validation score).", LogLevel.WARNING)

        try:
            repaired = await adapter.chat(
                provider_config,
                build_repair_messages(request.system, text),
                session.cancel_token,
            )
        except ProviderError as e:
            error_type = classify_error(e.message)
            logger.warning(f"Repair pass failed ({error_type.value}): {e.message}")
            session.log(f"Repair pass failed: {e.message}", LogLevel.WARNING)
            hint = remediation_hint(error_type)
            if hint:
                session.log(hint, LogLevel.WARNING)
            session.step("repair", StepStatus.WARN, "Repair pass failed; retained original.")
            return text, validation

        if not repaired.text.strip():
            session.step("repair", StepStatus.WARN, "Repair pass returned empty output; retained original.")
            return text, validation

        validation = validator.validate(repaired.text)
        session.step("repair", StepStatus.DONE, f"Repair applied. New validation: {validation.score}%")
        session.log("Repair pass completed.", LogLevel.SUCCESS)
        return repaired.text, validation

    def _record_failure(self, session: RunSession, error: Exception):
        message = error.message if isinstance(error, ProviderError) else str(error)
        message = message or "Unknown runtime error"
        error_type = classify_error(message)
        hint = remediation_hint(error_type)

        logger.error(f"Run failed ({error_type.value}): {message}")
        session.error = message
        session.error_type = error_type
        session.hint = hint
        session.update_telemetry(model_status="error", error_type=error_type.value)
        session.log(f"Execution Failed: {message}", LogLevel.ERROR)
        if hint:
            session.log(hint, LogLevel.WARNING)

    async def _stop_sampler(self):
        if self._sampler is not None:
            await self._sampler.stop()
            self._sampler = None
