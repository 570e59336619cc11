# tests/test_chat.py

from __future__ import annotations

import asyncio

import pytest

from aicoder.core.chat import ChatSession
from aicoder.core.state import AppState
from aicoder.errors import ErrorKind
from aicoder.llm.types import TokenUsage
from aicoder.tasks.supervisor import TaskSupervisor
from aicoder.tasks.task_models import TaskKind, TaskOutcome, TaskState

from .fakes import FakeCompletionClient


def _ok(task_id: str, text: str, usage: TokenUsage | None = None) -> TaskOutcome:
    return TaskOutcome(task_id, TaskKind.AI_REQUEST, TaskState.COMPLETED, text, 0.1, usage=usage)


def test_build_messages_puts_system_prompt_first(state: AppState) -> None:
    state.history.extend(
        [{"role": "user", "content": "q1"}, {"role": "assistant", "content": "a1"}],
    )
    session = ChatSession(state, TaskSupervisor(), FakeCompletionClient())

    messages = session.build_messages("q2")

    assert messages[0] == {"role": "system", "content": "You are a test assistant."}
    assert messages[1:3] == state.history
    assert messages[-1] == {"role": "user", "content": "q2"}


@pytest.mark.asyncio
async def test_successful_request_extends_bounded_history(state: AppState) -> None:
    client = FakeCompletionClient(["answer"], usage=TokenUsage(2, 1))
    supervisor = TaskSupervisor()
    session = ChatSession(state, supervisor, client)

    for i in range(3):
        handle = session.submit_ai_request(f"question {i}")
        outcome = await asyncio.wait_for(handle.wait(), timeout=2.0)
        assert supervisor.poll() is outcome
        session.record_outcome(outcome)

    # history_max_messages=4 keeps the two most recent turns
    assert [m["content"] for m in state.history] == ["question 1", "answer", "question 2", "answer"]
    assert state.stats.ai_count == 3
    assert state.stats.total_tokens == 9


@pytest.mark.asyncio
async def test_explicit_deadline_overrides_configured_timeout(state: AppState) -> None:
    client = FakeCompletionClient()
    supervisor = TaskSupervisor()
    session = ChatSession(state, supervisor, client)

    handle = session.submit_ai_request("q", deadline=0.5)
    task = supervisor.active_task
    assert task is not None and task.deadline is not None
    assert task.deadline - task.started_at == pytest.approx(0.5)
    await handle.wait()


def test_failed_or_cancelled_outcomes_leave_history_alone(state: AppState) -> None:
    session = ChatSession(state, TaskSupervisor(), FakeCompletionClient())
    session._prompts["t-1"] = "q"
    session._prompts["t-2"] = "q"

    session.record_outcome(
        TaskOutcome("t-1", TaskKind.AI_REQUEST, TaskState.FAILED, "boom", 0.1, error_kind=ErrorKind.PROVIDER_ERROR)
    )
    session.record_outcome(
        TaskOutcome("t-2", TaskKind.AI_REQUEST, TaskState.CANCELLED, "", 0.1, error_kind=ErrorKind.USER_CANCELLED)
    )

    assert state.history == []
    assert session._prompts == {}


def test_shell_outcomes_never_reach_history(state: AppState) -> None:
    session = ChatSession(state, TaskSupervisor(), FakeCompletionClient())

    session.record_outcome(TaskOutcome("t-1", TaskKind.SHELL_COMMAND, TaskState.COMPLETED, "out", 0.1))

    assert state.history == []


def test_zero_history_limit_keeps_nothing(state: AppState) -> None:
    state.settings.history_max_messages = 0
    session = ChatSession(state, TaskSupervisor(), FakeCompletionClient())
    session._prompts["t-1"] = "q"

    session.record_outcome(_ok("t-1", "a", TokenUsage(1, 1)))

    assert state.history == []
    assert state.stats.total_tokens == 2


@pytest.mark.asyncio
async def test_cancel_current_delegates_to_supervisor(state: AppState) -> None:
    from .fakes import BlockingClient

    client = BlockingClient()
    session = ChatSession(state, TaskSupervisor(), client)

    assert session.cancel_current() is False
    handle = session.submit_ai_request("wait")
    assert session.cancel_current() is True
    assert session.cancel_current() is False
    outcome = await asyncio.wait_for(handle.wait(), timeout=2.0)
    assert outcome.state is TaskState.CANCELLED
