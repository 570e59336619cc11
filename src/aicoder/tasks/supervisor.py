# src/aicoder/tasks/supervisor.py

from __future__ import annotations

"""
Task supervisor.

Owns at most one active task at a time:
- submit() starts the task body on its own daemon thread and watches it from a
  small asyncio coroutine (deadline, abort, grace period),
- cancel_active() raises the abort token and marks the task CANCELLED at once,
- poll() hands finished outcomes to the event loop, oldest first.

Everything except the worker thread runs on the asyncio loop thread, so task
state and bookkeeping are only ever touched from one thread. The worker thread
communicates through two channels only: the AbortToken (read) and
loop.call_soon_threadsafe (results, streamed pieces).

Outcomes are keyed by task id. A task that was superseded or forgotten is no
longer in the table, so anything its worker delivers later is dropped.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from ..core.ports import TaskBody
from ..errors import AlreadyRunningError, ErrorKind, InternalSupervisorError
from ..llm.types import CompletionResult, CompletionStatus
from .task_models import (
    AbortToken,
    Task,
    TaskHandle,
    TaskKind,
    TaskOutcome,
    TaskState,
    format_duration,
    new_task_id,
    short_id,
)

logger = logging.getLogger(__name__)

OutcomeListener = Callable[[str], None]

_RESULT_TO_STATE = {
    CompletionStatus.SUCCESS: TaskState.COMPLETED,
    CompletionStatus.FAILED: TaskState.FAILED,
    CompletionStatus.CANCELLED: TaskState.CANCELLED,
    CompletionStatus.TIMED_OUT: TaskState.TIMED_OUT,
}


class SubmitPolicy(StrEnum):
    """What submit() does while another task is still running."""

    REPLACE = "replace"  # abort the running task, discard its outcome, start the new one
    REJECT = "reject"  # raise AlreadyRunningError


@dataclass(slots=True, eq=False)
class _Tracked:
    task: Task
    handle: TaskHandle
    runner: asyncio.Task[None] | None = None
    outcome: TaskOutcome | None = None


class TaskSupervisor:
    def __init__(
            self,
            *,
            policy: SubmitPolicy = SubmitPolicy.REPLACE,
            grace_seconds: float = 0.15,
            poll_interval: float = 0.02,
            on_outcome: OutcomeListener | None = None,
    ) -> None:
        self.policy = SubmitPolicy(policy)
        self._grace = max(0.0, float(grace_seconds))
        self._poll_interval = max(0.001, float(poll_interval))
        self._on_outcome = on_outcome

        self._tasks: dict[str, _Tracked] = {}
        self._active_id: str | None = None
        self._ready: deque[str] = deque()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def active_task(self) -> Task | None:
        if self._active_id is None:
            return None
        tracked = self._tasks.get(self._active_id)
        return tracked.task if tracked is not None else None

    @property
    def task_running(self) -> bool:
        task = self.active_task
        return task is not None and task.is_running

    @property
    def partial_text(self) -> str | None:
        task = self.active_task
        if task is None or not task.is_running or not task.partial:
            return None
        return task.partial_text

    def tracked_count(self) -> int:
        return len(self._tasks)

    def tracks(self, task_id: str) -> bool:
        """True while the task's outcome can still be drained by poll()."""
        return task_id in self._tasks

    def set_outcome_listener(self, listener: OutcomeListener | None) -> None:
        self._on_outcome = listener

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
            self,
            kind: TaskKind,
            body: TaskBody,
            *,
            label: str = "",
            timeout: float | None = None,
    ) -> TaskHandle:
        """
        Start `body` on a worker thread and make it the active task.

        `timeout` is relative seconds; None (or <= 0) means no deadline.
        Must be called from the loop thread.
        """
        loop = asyncio.get_running_loop()
        self._restore_invariant()

        current = self._tracked_active()
        if current is not None and current.task.is_running:
            if self.policy is SubmitPolicy.REJECT:
                raise AlreadyRunningError(current.task.id)
            logger.info(
                "Task %s superseded by a new %s submission", short_id(current.task.id), kind.value
            )
            self._supersede(current)

        now = time.monotonic()
        task = Task(
            id=new_task_id(),
            kind=kind,
            label=label,
            abort_token=AbortToken(),
            started_at=now,
            deadline=(now + timeout) if timeout is not None and timeout > 0 else None,
        )
        tracked = _Tracked(task=task, handle=TaskHandle(task.id, kind, loop.create_future()))
        self._tasks[task.id] = tracked
        self._active_id = task.id

        work: asyncio.Future[CompletionResult] = loop.create_future()
        worker = threading.Thread(
            target=self._work,
            args=(loop, task, body, work),
            name=f"task-{short_id(task.id)}",
            daemon=True,
        )
        worker.start()
        tracked.runner = loop.create_task(self._supervise(tracked, work), name=f"supervise-{short_id(task.id)}")

        logger.info(
            "Task %s started kind=%s deadline=%s",
            short_id(task.id),
            kind.value,
            f"{timeout:.1f}s" if task.deadline is not None else "none",
        )
        return tracked.handle

    def cancel_active(self) -> bool:
        """Abort the running task. Idempotent: returns False when nothing changed."""
        task = self.active_task
        if task is None or not task.is_running:
            return False
        task.abort_token.set()
        task.finish(TaskState.CANCELLED)
        logger.info("Task %s cancel requested after %s", short_id(task.id), format_duration(task.duration()))
        return True

    def poll(self) -> TaskOutcome | None:
        """Non-blocking: return the next delivered outcome and drop its bookkeeping."""
        self._restore_invariant()
        while self._ready:
            task_id = self._ready.popleft()
            tracked = self._tasks.pop(task_id, None)
            if tracked is None or tracked.outcome is None:
                continue
            if self._active_id == task_id:
                self._active_id = None
            return tracked.outcome
        return None

    def shutdown(self) -> None:
        """Abort whatever is running and forget all bookkeeping."""
        for tracked in list(self._tasks.values()):
            task = tracked.task
            if task.is_running:
                task.abort_token.set()
                task.finish(TaskState.CANCELLED)
            self._forget(tracked)
            tracked.handle._resolve(self._build_outcome(task, None))
        self._ready.clear()
        logger.debug("Supervisor shut down")

    # ------------------------------------------------------------------
    # Internals (loop thread)
    # ------------------------------------------------------------------

    def _tracked_active(self) -> _Tracked | None:
        if self._active_id is None:
            return None
        return self._tasks.get(self._active_id)

    def _supersede(self, tracked: _Tracked) -> None:
        task = tracked.task
        task.abort_token.set()
        task.finish(TaskState.CANCELLED)
        self._forget(tracked)
        tracked.handle._resolve(self._build_outcome(task, None))

    def _forget(self, tracked: _Tracked) -> None:
        self._tasks.pop(tracked.task.id, None)
        if self._active_id == tracked.task.id:
            self._active_id = None
        runner = tracked.runner
        if runner is not None and not runner.done() and runner is not asyncio.current_task():
            runner.cancel()

    def _restore_invariant(self) -> bool:
        """Force the single-running-task invariant back if it was ever broken."""
        running = [t for t in self._tasks.values() if t.task.is_running]
        if not running:
            return True
        if len(running) == 1 and running[0].task.id == self._active_id:
            return True

        err = InternalSupervisorError(
            f"{len(running)} running task(s) tracked, active={self._active_id and short_id(self._active_id)}"
        )
        logger.error("Supervisor invariant breach: %s; clearing active task", err)
        for tracked in running:
            task = tracked.task
            task.abort_token.set()
            task.finish(TaskState.FAILED)
            self._forget(tracked)
            tracked.handle._resolve(
                TaskOutcome(
                    task_id=task.id,
                    kind=task.kind,
                    state=task.state,
                    payload=str(err),
                    duration=task.duration(),
                    error_kind=err.kind,
                )
            )
        self._active_id = None
        return False

    def _append_partial(self, task_id: str, piece: str) -> None:
        tracked = self._tasks.get(task_id)
        if tracked is None or not tracked.task.is_running:
            return
        tracked.task.partial.append(piece)

    async def _supervise(self, tracked: _Tracked, work: asyncio.Future[CompletionResult]) -> None:
        task = tracked.task
        result: CompletionResult | None = None

        while True:
            wait_s = self._poll_interval
            if task.deadline is not None:
                wait_s = max(0.0, min(wait_s, task.deadline - time.monotonic()))
            await asyncio.wait({work}, timeout=wait_s)

            if work.done():
                result = work.result()
                break
            if not task.is_running:
                # cancel_active() already moved the task to CANCELLED.
                break
            if task.deadline_passed():
                task.abort_token.set()
                task.finish(TaskState.TIMED_OUT)
                logger.info("Task %s timed out after %s", short_id(task.id), format_duration(task.duration()))
                break

        if not work.done() and self._grace > 0:
            await asyncio.wait({work}, timeout=self._grace)
        if not work.done():
            logger.warning(
                "Task %s worker did not stop within %.0fms grace; forgetting it",
                short_id(task.id),
                self._grace * 1000,
            )

        outcome = self._build_outcome(task, result)
        self._deliver(tracked, outcome)

    def _build_outcome(self, task: Task, result: CompletionResult | None) -> TaskOutcome:
        if task.is_running:
            if result is None:
                task.finish(TaskState.FAILED)
                return TaskOutcome(
                    task_id=task.id,
                    kind=task.kind,
                    state=task.state,
                    payload="Task ended without a result.",
                    duration=task.duration(),
                    error_kind=ErrorKind.INTERNAL_SUPERVISOR_ERROR,
                )
            task.finish(_RESULT_TO_STATE[result.status])

        state = task.state
        if state is TaskState.COMPLETED and result is not None:
            return TaskOutcome(
                task_id=task.id,
                kind=task.kind,
                state=state,
                payload=result.text,
                duration=task.duration(),
                usage=result.usage,
            )
        if state is TaskState.FAILED:
            reason = (result.reason if result is not None else "") or "Task failed."
            kind = (result.error_kind if result is not None else None) or ErrorKind.PROVIDER_ERROR
            return TaskOutcome(
                task_id=task.id,
                kind=task.kind,
                state=state,
                payload=reason,
                duration=task.duration(),
                error_kind=kind,
            )
        if state is TaskState.TIMED_OUT:
            return TaskOutcome(
                task_id=task.id,
                kind=task.kind,
                state=state,
                payload=f"Timed out after {format_duration(task.duration())}.",
                duration=task.duration(),
                error_kind=ErrorKind.TIMEOUT,
            )
        # CANCELLED; also a COMPLETED state with no result, which cannot happen.
        return TaskOutcome(
            task_id=task.id,
            kind=task.kind,
            state=TaskState.CANCELLED,
            payload="Cancelled.",
            duration=task.duration(),
            error_kind=ErrorKind.USER_CANCELLED,
        )

    def _deliver(self, tracked: _Tracked, outcome: TaskOutcome) -> None:
        tracked.handle._resolve(outcome)
        if self._tasks.get(outcome.task_id) is not tracked:
            logger.debug("Dropping stale outcome for task %s (%s)", short_id(outcome.task_id), outcome.state.value)
            return
        tracked.outcome = outcome
        self._ready.append(outcome.task_id)
        logger.info(
            "Task %s finished state=%s in %s",
            short_id(outcome.task_id),
            outcome.state.value,
            format_duration(outcome.duration),
        )
        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome.task_id)
            except Exception:
                logger.exception("Outcome listener failed task=%s", short_id(outcome.task_id))

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _work(
            self,
            loop: asyncio.AbstractEventLoop,
            task: Task,
            body: TaskBody,
            work: asyncio.Future[CompletionResult],
    ) -> None:
        def on_partial(piece: str) -> None:
            if piece:
                _call_soon(loop, self._append_partial, task.id, piece)

        try:
            result = body(task.abort_token, task.deadline, on_partial)
            if not isinstance(result, CompletionResult):
                logger.error("Task %s body returned %r instead of a result", short_id(task.id), type(result))
                result = CompletionResult.failed("Task returned no result.", ErrorKind.INTERNAL_SUPERVISOR_ERROR)
        except Exception as e:
            logger.exception("Task %s body crashed", short_id(task.id))
            result = CompletionResult.failed(f"{e.__class__.__name__}: {e}", ErrorKind.PROVIDER_ERROR)

        _call_soon(loop, _settle, work, result)


def _settle(work: asyncio.Future[CompletionResult], result: CompletionResult) -> None:
    if not work.done():
        work.set_result(result)


def _call_soon(loop: asyncio.AbstractEventLoop, fn: Callable[..., None], *args: object) -> None:
    try:
        loop.call_soon_threadsafe(fn, *args)
    except RuntimeError:
        # Loop already closed: the app is exiting and nobody waits for this task.
        logger.debug("Event loop closed; dropping worker message")
