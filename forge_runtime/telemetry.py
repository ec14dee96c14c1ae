"""Live telemetry sampling during a run."""

import asyncio
import logging
import time
from typing import Callable, Optional

import psutil

from .adapters import ProviderAdapter
from .models import ProviderConfig, ProviderId, RunPhase
from .state import RunSession

logger = logging.getLogger(__name__)

PS_POLL_INTERVAL = 2.5


def resident_memory_mb() -> int:
    """RSS of this process in MB, or 0 when the platform hides it."""
    try:
        return round(psutil.Process().memory_info().rss / 1024 / 1024)
    except (psutil.Error, OSError):
        return 0


def drift_load(drift_ms: float) -> int:
    """
    Rough load indicator from event-loop timer drift.

    A late tick means the loop was busy. This is a cosmetic proxy, not a
    CPU measurement.
    """
    return min(100, round(max(0.0, drift_ms) / 16 * 8))


class TelemetrySampler:
    """
    Periodic sampler bound to one run session.

    Started when the request is dispatched; each tick records latency,
    the drift-based load proxy and resident memory. For the local
    provider it also polls the running-model status, at most once per
    ``ps_interval`` seconds. Poll failures are only logged.
    """

    def __init__(
        self,
        session: RunSession,
        adapter: ProviderAdapter,
        config: ProviderConfig,
        interval: float = 1.0,
        ps_interval: float = PS_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.adapter = adapter
        self.config = config
        self.interval = interval
        self.ps_interval = ps_interval
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._started_at = 0.0
        self._last_tick = 0.0
        self._last_ps_poll: Optional[float] = None

    def start(self):
        self._started_at = self._last_tick = self._clock()
        self._task = asyncio.create_task(self._run())

    def cancel(self):
        """Stop further ticks immediately."""
        if self._task is not None:
            self._task.cancel()

    async def stop(self):
        """Cancel the sampling task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            if self.session.phase != RunPhase.EXECUTING:
                return
            await self.tick()

    async def tick(self):
        now = self._clock()
        drift_ms = (now - self._last_tick - self.interval) * 1000
        self._last_tick = now

        self.session.update_telemetry(
            latency_ms=round((now - self._started_at) * 1000),
            cpu_load=drift_load(drift_ms),
            memory_mb=resident_memory_mb(),
        )

        if self.adapter.id != ProviderId.OLLAMA:
            return
        if self._last_ps_poll is not None and now - self._last_ps_poll < self.ps_interval:
            return

        self._last_ps_poll = now
        try:
            running = await self.adapter.running_models(self.config.base_url)
        except Exception as e:
            logger.debug(f"Running-model poll failed: {e}")
            return

        if running:
            model = running[0]
            self.session.update_telemetry(
                model=model.name,
                gpu_mode="GPU" if model.size_vram > 0 else "CPU",
                gpu_vram_mb=round(model.size_vram / 1024 / 1024),
            )
