# src/aicoder/llm/offline.py

from __future__ import annotations

import time

from ..core.ports import ChatMessage, PartialSink
from ..tasks.task_models import AbortToken
from .types import CompletionResult, Provider, RequestConfig, TokenUsage, count_tokens


class OfflineClient:
    """
    Offline deterministic completion client used for demos when no backend is configured.

    Streams a short canned reply word by word so the spinner and partial text
    can be seen without a network. Honours the abort token and deadline like
    the real clients.
    """

    provider = Provider.OFFLINE

    def __init__(self, *, delay_per_word: float = 0.03) -> None:
        self.delay_per_word = max(0.0, float(delay_per_word))

    def list_models(self, deadline: float | None = None) -> list[str]:
        return ["offline"]

    def request(
            self,
            model: str,
            messages: list[ChatMessage],
            config: RequestConfig,
            abort_token: AbortToken,
            deadline: float | None = None,
            on_partial: PartialSink | None = None,
    ) -> CompletionResult:
        user_text = ""
        for m in reversed(messages):
            if m.get("role") == "user":
                user_text = m.get("content", "")
                break

        reply = (
            "Offline demo mode: no completion backend is configured.\n"
            "Set AICODER_PROVIDER (and AICODER_MODEL) to enable real responses.\n\n"
            f"You said: {user_text}"
        )

        pieces: list[str] = []
        for word in reply.split(" "):
            # wait() doubles as the pacing sleep and the abort check.
            if abort_token.wait(self.delay_per_word):
                return CompletionResult.cancelled()
            if deadline is not None and time.monotonic() >= deadline:
                return CompletionResult.timed_out()
            piece = word if not pieces else " " + word
            pieces.append(piece)
            if on_partial is not None:
                on_partial(piece)

        text = "".join(pieces)
        return CompletionResult.success(
            text,
            TokenUsage(prompt_tokens=count_tokens(user_text), completion_tokens=count_tokens(text)),
        )

