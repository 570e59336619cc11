# src/aicoder/llm/types.py

"""Provider-independent types used by every completion client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from ..errors import ErrorKind


class Provider(StrEnum):
    """Completion backends, selected from configuration at startup."""

    OLLAMA = "ollama"
    OPENAI = "openai"
    LMSTUDIO = "lmstudio"
    OPENROUTER = "openrouter"
    OFFLINE = "offline"

    @classmethod
    def parse(cls, raw: str | None) -> Provider:
        value = (raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown provider: {raw!r}. Valid providers are: {valid}") from None


class CompletionStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True, slots=True)
class ModelCosts:
    """Cost per 1,000 tokens, used for the session /cost report."""

    prompt_cost_per_1k: float
    completion_cost_per_1k: float

    def calculate_cost(self, usage: TokenUsage) -> float:
        prompt_cost = usage.prompt_tokens / 1000.0 * self.prompt_cost_per_1k
        completion_cost = usage.completion_tokens / 1000.0 * self.completion_cost_per_1k
        return prompt_cost + completion_cost


def model_costs(model: str) -> ModelCosts:
    # Local models are free; these are nominal compute costs so /cost has something to show.
    name = (model or "").lower()
    if "codellama" in name or "qwen" in name:
        return ModelCosts(prompt_cost_per_1k=0.0002, completion_cost_per_1k=0.0004)
    return ModelCosts(prompt_cost_per_1k=0.0001, completion_cost_per_1k=0.0002)


def count_tokens(text: str) -> int:
    """Rough whitespace token count, used when the backend reports none."""
    return len((text or "").split())


@dataclass(frozen=True, slots=True)
class RequestConfig:
    temperature: float = 0.1
    max_tokens: int = 2048


@dataclass(frozen=True, slots=True)
class CompletionResult:
    """What a completion client (or shell run) hands back to the supervisor."""

    status: CompletionStatus
    text: str = ""
    usage: TokenUsage | None = None
    reason: str = ""
    error_kind: ErrorKind | None = None

    @classmethod
    def success(cls, text: str, usage: TokenUsage | None = None) -> CompletionResult:
        return cls(status=CompletionStatus.SUCCESS, text=text, usage=usage)

    @classmethod
    def failed(cls, reason: str, kind: ErrorKind = ErrorKind.PROVIDER_ERROR) -> CompletionResult:
        return cls(status=CompletionStatus.FAILED, reason=reason, error_kind=kind)

    @classmethod
    def cancelled(cls) -> CompletionResult:
        return cls(status=CompletionStatus.CANCELLED, error_kind=ErrorKind.USER_CANCELLED)

    @classmethod
    def timed_out(cls) -> CompletionResult:
        return cls(status=CompletionStatus.TIMED_OUT, error_kind=ErrorKind.TIMEOUT)
