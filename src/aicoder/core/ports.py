# src/aicoder/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps completion providers and the terminal front-end swappable
and makes testing easier.
"""

from typing import TYPE_CHECKING, Callable, Protocol

from ..llm.types import CompletionResult, Provider, RequestConfig
from ..tasks.task_models import AbortToken

if TYPE_CHECKING:
    from .state import AppState, RenderSnapshot

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.

PartialSink = Callable[[str], None]
# Receives streamed text pieces from a worker thread; must be thread-safe.

TaskBody = Callable[[AbortToken, "float | None", PartialSink], CompletionResult]
# What the supervisor runs on a worker thread: (abort_token, deadline, on_partial) -> result.

CommandDispatcher = Callable[[str], "str | None"]
# Handles one "/command args" line and returns the reply to show (or None).


class CompletionClient(Protocol):
    """
    Blocking completion call, always executed on a task worker thread.

    Implementations must check abort_token before the network call and once per
    streamed chunk, and must return (never raise) a CompletionResult.
    `deadline` is absolute, on the time.monotonic() clock.
    """

    provider: Provider

    def request(
            self,
            model: str,
            messages: list[ChatMessage],
            config: RequestConfig,
            abort_token: AbortToken,
            deadline: float | None = None,
            on_partial: PartialSink | None = None,
    ) -> CompletionResult: ...

    def list_models(self, deadline: float | None = None) -> list[str]:
        """Model names the backend offers. Raises ProviderError / ProviderUnavailableError."""
        ...


class Renderer(Protocol):
    """Front-end port: draws the current state once per loop iteration."""

    def render(self, snapshot: RenderSnapshot, state: AppState) -> None: ...

    def close(self) -> None: ...
