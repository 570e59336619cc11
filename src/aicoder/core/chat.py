# src/aicoder/core/chat.py

"""
Core chat orchestration.

This module is front-end agnostic:
- the event loop hands over one input line at a time,
- the session builds prompts and submits AI requests / shell commands to the supervisor,
- outcomes come back through record_outcome() once the loop drains them.

Key invariants:
- history is updated only after a successful completion (cancelled, timed out
  and failed requests never reach it),
- history is bounded by the history_max_messages setting (oldest turns dropped first),
- /config overrides (state.overrides) are read at submit time, so a change
  applies to the next request and never to one already running.
"""

from __future__ import annotations

import logging

from ..errors import AicoderError
from ..llm.types import CompletionResult, RequestConfig
from ..tasks.shell import run_shell_command
from ..tasks.supervisor import TaskSupervisor
from ..tasks.task_models import TaskHandle, TaskKind, TaskOutcome, short_id
from .ports import ChatMessage, CompletionClient, PartialSink
from .state import AppState

logger = logging.getLogger(__name__)


def _label(text: str, limit: int = 40) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


def format_model_list(models: list[str], current: str = "") -> str:
    if not models:
        return "No models available."
    lines = ["Available models:"]
    lines.extend(f"  {'*' if name == current else ' '} {name}" for name in models)
    return "\n".join(lines)


class ChatSession:
    def __init__(self, state: AppState, supervisor: TaskSupervisor, client: CompletionClient) -> None:
        self.state = state
        self.supervisor = supervisor
        self.client = client
        # Prompt per in-flight AI task, needed to extend history on success.
        self._prompts: dict[str, str] = {}

    def build_messages(self, prompt: str) -> list[ChatMessage]:
        messages: list[ChatMessage] = []
        if self.state.system_prompt.strip():
            messages.append({"role": "system", "content": self.state.system_prompt})
        messages.extend(self.state.history)
        messages.append({"role": "user", "content": prompt})
        return messages

    def submit_ai_request(self, prompt: str, deadline: float | None = None) -> TaskHandle:
        """
        Submit `prompt` as an AI_REQUEST task.

        `deadline` is in seconds from now; None uses the configured request timeout.
        Raises AlreadyRunningError under the reject policy.
        """
        setting = self.state.setting
        timeout = float(setting("request_timeout_seconds")) if deadline is None else deadline
        model = str(setting("model"))
        messages = self.build_messages(prompt)
        config = RequestConfig(
            temperature=float(setting("temperature")),
            max_tokens=int(setting("max_tokens")),
        )
        client = self.client

        def body(abort_token, task_deadline, on_partial: PartialSink):
            return client.request(model, messages, config, abort_token, task_deadline, on_partial)

        handle = self.supervisor.submit(TaskKind.AI_REQUEST, body, label=_label(prompt), timeout=timeout)
        self._prune_prompts()
        self._prompts[handle.task_id] = prompt
        self.state.stats.ai_count += 1
        logger.debug("AI request %s submitted (%d messages)", short_id(handle.task_id), len(messages))
        return handle

    def submit_shell_command(self, cmd: str) -> TaskHandle:
        """Run `cmd` as a SHELL_COMMAND task bounded by the shell timeout."""
        command = cmd.strip()

        def body(abort_token, task_deadline, on_partial: PartialSink):
            return run_shell_command(command, abort_token, task_deadline)

        handle = self.supervisor.submit(
            TaskKind.SHELL_COMMAND,
            body,
            label=_label(command),
            timeout=float(self.state.setting("shell_timeout_seconds")),
        )
        self._prune_prompts()
        self.state.stats.bash_count += 1
        return handle

    def submit_model_list(self) -> TaskHandle:
        """List the backend's models as a MODEL_LIST task; the current model is starred."""
        client = self.client
        current = str(self.state.setting("model", ""))

        def body(abort_token, task_deadline, on_partial: PartialSink):
            if abort_token.is_set():
                return CompletionResult.cancelled()
            try:
                models = client.list_models(task_deadline)
            except AicoderError as e:
                return CompletionResult.failed(str(e), e.kind)
            if abort_token.is_set():
                return CompletionResult.cancelled()
            return CompletionResult.success(format_model_list(models, current))

        handle = self.supervisor.submit(
            TaskKind.MODEL_LIST,
            body,
            label=f"models ({client.provider.value})",
            timeout=float(self.state.setting("request_timeout_seconds")),
        )
        self._prune_prompts()
        return handle

    def replace_client(self, client: CompletionClient) -> None:
        """Switch backends for later submissions and close the old client."""
        old, self.client = self.client, client
        if old is client:
            return
        close = getattr(old, "close", None)
        if callable(close):
            try:
                close()
            except Exception:
                logger.debug("Closing previous completion client failed.", exc_info=True)
        logger.info("Completion client switched to %s", client.provider.value)

    def cancel_current(self) -> bool:
        return self.supervisor.cancel_active()

    def record_outcome(self, outcome: TaskOutcome) -> None:
        """Fold a drained outcome into history and usage stats."""
        prompt = self._prompts.pop(outcome.task_id, None)
        if outcome.kind is not TaskKind.AI_REQUEST or not outcome.ok:
            return

        if outcome.usage is not None:
            cost = self.state.stats.record_usage(outcome.usage, self.state.costs())
            logger.debug("AI request %s cost %.6f", short_id(outcome.task_id), cost)

        reply = outcome.payload.strip()
        if prompt is None or not reply:
            return
        if int(self.state.setting("history_max_messages", 40)) <= 0:
            return
        self.state.history.append({"role": "user", "content": prompt})
        self.state.history.append({"role": "assistant", "content": reply})
        self.trim_history()

    def trim_history(self) -> None:
        max_msgs = max(0, int(self.state.setting("history_max_messages", 40)))
        history = self.state.history
        if len(history) > max_msgs:
            del history[: len(history) - max_msgs]

    def clear_history(self) -> None:
        self.state.history.clear()

    def _prune_prompts(self) -> None:
        # Superseded tasks never deliver an outcome, so their prompts would linger.
        for task_id in [t for t in self._prompts if not self.supervisor.tracks(t)]:
            del self._prompts[task_id]
