# src/aicoder/tasks/task_models.py

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum

from ..errors import ErrorKind
from ..llm.types import TokenUsage


class TaskKind(StrEnum):
    AI_REQUEST = "ai_request"
    SHELL_COMMAND = "shell_command"
    MODEL_LIST = "model_list"


class TaskState(StrEnum):
    """
    Task lifecycle.

    Entry state is always RUNNING; every other state is terminal and final.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskState.RUNNING


def new_task_id() -> str:
    return str(uuid.uuid4())


def short_id(task_id: str) -> str:
    return task_id.split("-", 1)[0]


class AbortToken:
    """
    Cooperative cancellation flag shared between the loop and one task body.

    Set once, never reset. Reading and setting never block, so a worker thread
    can poll it between chunks and the loop can set it at any time.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def set(self) -> bool:
        """Raise the flag. Returns False if it was already raised."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block the calling worker thread until the flag is raised (or timeout)."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"AbortToken(set={self.is_set()})"


@dataclass(slots=True, eq=False)
class Task:
    id: str
    kind: TaskKind
    label: str
    abort_token: AbortToken
    started_at: float
    deadline: float | None = None  # absolute, time.monotonic() based
    state: TaskState = TaskState.RUNNING
    finished_at: float | None = None
    partial: list[str] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.state is TaskState.RUNNING

    @property
    def partial_text(self) -> str:
        return "".join(self.partial)

    def finish(self, state: TaskState) -> bool:
        """Move RUNNING -> terminal exactly once. Later calls are ignored."""
        if not state.is_terminal or self.state.is_terminal:
            return False
        self.state = state
        self.finished_at = time.monotonic()
        return True

    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return max(0.0, end - self.started_at)

    def deadline_passed(self, now: float | None = None) -> bool:
        if self.deadline is None:
            return False
        return (time.monotonic() if now is None else now) >= self.deadline


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    task_id: str
    kind: TaskKind
    state: TaskState
    payload: str
    duration: float
    error_kind: ErrorKind | None = None
    usage: TokenUsage | None = None

    @property
    def ok(self) -> bool:
        return self.state is TaskState.COMPLETED


def format_duration(seconds: float) -> str:
    if seconds < 1.0:
        return f"{seconds:.2f}s"
    if seconds < 60.0:
        return f"{seconds:.1f}s"
    if seconds < 3600.0:
        minutes, rest = divmod(seconds, 60.0)
        return f"{int(minutes)}m {rest:.0f}s"
    hours, rest = divmod(seconds, 3600.0)
    return f"{int(hours)}h {int(rest // 60)}m"


class TaskHandle:
    """Caller-side view of a submitted task with a one-shot outcome."""

    __slots__ = ("task_id", "kind", "_future")

    def __init__(self, task_id: str, kind: TaskKind, future: asyncio.Future[TaskOutcome]) -> None:
        self.task_id = task_id
        self.kind = kind
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def outcome(self) -> TaskOutcome | None:
        return self._future.result() if self._future.done() else None

    async def wait(self) -> TaskOutcome:
        return await asyncio.shield(self._future)

    def _resolve(self, outcome: TaskOutcome) -> bool:
        if self._future.done():
            return False
        self._future.set_result(outcome)
        return True

    def __repr__(self) -> str:
        return f"TaskHandle({short_id(self.task_id)}, {self.kind.value}, done={self.done()})"
