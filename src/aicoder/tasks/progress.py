# src/aicoder/tasks/progress.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")


def spinner_glyph(frame: int) -> str:
    return SPINNER_FRAMES[frame % len(SPINNER_FRAMES)]


class ProgressReporter:
    """
    Emits animation ticks while a task is running, and never otherwise.

    `is_active` is re-checked right before every tick, so ticking stops the
    moment the task leaves RUNNING even if stop() has not been called yet.
    """

    def __init__(
            self,
            is_active: Callable[[], bool],
            emit: Callable[[], None],
            *,
            interval: float = 0.1,
    ) -> None:
        self._is_active = is_active
        self._emit = emit
        self.interval = max(0.01, float(interval))
        self._runner: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def sync(self) -> None:
        """Start or stop ticking to match the current task state."""
        if self._is_active():
            self.start()
        else:
            self.stop()

    def start(self) -> None:
        if self.running:
            return
        self._runner = asyncio.get_running_loop().create_task(self._run(), name="progress-ticks")

    def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None and not runner.done():
            runner.cancel()

    async def _run(self) -> None:
        while self._is_active():
            await asyncio.sleep(self.interval)
            if not self._is_active():
                break
            self._emit()
        logger.debug("Progress ticks stopped")
