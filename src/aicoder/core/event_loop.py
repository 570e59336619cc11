# src/aicoder/core/event_loop.py

"""
Single-threaded event loop.

Every source (input reader, progress ticks, supervisor outcome notifications,
shutdown requests) feeds one FIFO queue. Each event gets exactly one apply
followed by exactly one render; nothing is dropped or merged here.

Nothing in apply() blocks: submissions start worker threads, cancellation only
raises a flag, and outcomes are drained with the non-blocking poll().
"""

from __future__ import annotations

import asyncio
import logging

from ..errors import AlreadyRunningError, ErrorKind
from ..tasks.progress import ProgressReporter
from ..tasks.supervisor import TaskSupervisor
from ..tasks.task_models import TaskKind, TaskOutcome, TaskState, format_duration
from .chat import ChatSession
from .events import Event, EventKind
from .ports import CommandDispatcher, Renderer
from .state import AppState, RenderSnapshot

logger = logging.getLogger(__name__)

_KIND_LABEL = {
    TaskKind.AI_REQUEST: "AI request",
    TaskKind.SHELL_COMMAND: "Command",
    TaskKind.MODEL_LIST: "Model list",
}


def format_outcome(outcome: TaskOutcome, *, app_name: str = "aicoder") -> str:
    """User-facing text for a drained outcome."""
    label = _KIND_LABEL.get(outcome.kind, "Task")
    took = format_duration(outcome.duration)

    if outcome.state is TaskState.COMPLETED:
        if outcome.kind is not TaskKind.AI_REQUEST:
            return outcome.payload
        return f"<<< {app_name} ({took}):\n{outcome.payload}"

    if outcome.state is TaskState.CANCELLED:
        return "⏹ Cancelled."

    if outcome.state is TaskState.TIMED_OUT:
        return f"⌛ {label} timed out after {took} with no result."

    if outcome.error_kind is ErrorKind.PROVIDER_UNAVAILABLE:
        return f"⚠ Backend unavailable: {outcome.payload}"
    if outcome.error_kind is ErrorKind.INTERNAL_SUPERVISOR_ERROR:
        return f"⚠ Internal error: {outcome.payload}"
    return f"⚠ {label} failed: {outcome.payload}"


class EventLoop:
    def __init__(
            self,
            state: AppState,
            session: ChatSession,
            supervisor: TaskSupervisor,
            renderer: Renderer,
            *,
            commands: CommandDispatcher | None = None,
            tick_interval: float = 0.1,
    ) -> None:
        self.state = state
        self.session = session
        self.supervisor = supervisor
        self.renderer = renderer
        self.commands = commands

        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self.passes = 0

        self.progress = ProgressReporter(
            lambda: self.supervisor.task_running,
            lambda: self.post(Event.tick()),
            interval=tick_interval,
        )
        self.supervisor.set_outcome_listener(lambda task_id: self.post(Event.task_done(task_id)))

    # ------------------------------------------------------------------
    # Event sources
    # ------------------------------------------------------------------

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the loop that post_threadsafe() hands events to. Call before any reader thread starts."""
        self._loop = loop

    def post(self, event: Event) -> None:
        """Enqueue from the loop thread."""
        self._queue.put_nowait(event)

    def post_threadsafe(self, event: Event) -> None:
        """Enqueue from any other thread (input reader, signal handlers)."""
        loop = self._loop
        if loop is None:
            self._queue.put_nowait(event)
            return
        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            logger.debug("Event loop closed; dropping %s event", event.kind.value)

    def request_shutdown(self) -> None:
        self.post_threadsafe(Event.quit())

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> int:
        """Process events until QUIT. Returns the number of apply+render passes."""
        self.bind(asyncio.get_running_loop())
        logger.info("Event loop started")
        try:
            while self.state.running:
                event = await self._queue.get()
                self.apply(event)
                self.progress.sync()
                self._render()
                self.passes += 1
        finally:
            self.progress.stop()
            self.supervisor.shutdown()
            logger.info("Event loop stopped after %d passes", self.passes)
        return self.passes

    def snapshot(self) -> RenderSnapshot:
        return RenderSnapshot(
            task_running=self.supervisor.task_running,
            spinner_frame=self.state.spinner_frame,
            pending_partial_text=self.supervisor.partial_text,
        )

    def _render(self) -> None:
        try:
            self.renderer.render(self.snapshot(), self.state)
        except Exception:
            logger.exception("Renderer failed")

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, event: Event) -> None:
        try:
            self._apply(event)
        except Exception:
            logger.exception("Failed to apply %s event", event.kind.value)
            self.state.emit("Internal error while handling input.")

    def _apply(self, event: Event) -> None:
        kind = event.kind
        if kind is EventKind.KEY:
            self._handle_line(event.text)
        elif kind is EventKind.TICK:
            if self.supervisor.task_running:
                self.state.spinner_frame += 1
        elif kind is EventKind.TASK_DONE:
            self._drain_outcomes()
        elif kind is EventKind.ABORT:
            if not self.session.cancel_current():
                logger.debug("Abort requested with no running task")
        elif kind is EventKind.RESIZE:
            if event.size is not None:
                self.state.term_size = event.size
        elif kind is EventKind.QUIT:
            self.supervisor.cancel_active()
            self.state.running = False

    def _drain_outcomes(self) -> None:
        app_name = str(getattr(self.state.settings, "app_name", "aicoder"))
        while (outcome := self.supervisor.poll()) is not None:
            self.session.record_outcome(outcome)
            self.state.emit(format_outcome(outcome, app_name=app_name))

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        self.state.emit(f">>> {line}")

        if line.startswith("!"):
            command = line[1:].strip()
            if not command:
                self.state.emit("Usage: !<shell command>, e.g. !ls -la")
                return
            self._submit(TaskKind.SHELL_COMMAND, command)
            return

        if line.startswith("/"):
            self.state.stats.command_count += 1
            if self.commands is None:
                self.state.emit("Commands are not available.")
                return
            try:
                reply = self.commands(line)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."
            if reply:
                self.state.emit(reply)
            return

        self._submit(TaskKind.AI_REQUEST, line)

    def _submit(self, kind: TaskKind, text: str) -> None:
        superseding = self.supervisor.task_running
        try:
            if kind is TaskKind.SHELL_COMMAND:
                self.session.submit_shell_command(text)
            else:
                self.session.submit_ai_request(text)
        except AlreadyRunningError:
            self.state.emit("A task is already running. Press Ctrl+C or use /cancel first.")
            return
        if superseding:
            self.state.emit("(previous task cancelled)")
