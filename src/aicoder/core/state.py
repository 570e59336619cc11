# src/aicoder/core/state.py

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from ..llm.types import ModelCosts, TokenUsage, model_costs
from .ports import ChatMessage


@dataclass
class SessionStats:
    """Per-run usage counters shown by /status and /cost."""

    ai_count: int = 0
    bash_count: int = 0
    command_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_cost: float = 0.0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def record_usage(self, usage: TokenUsage, costs: ModelCosts) -> float:
        cost = costs.calculate_cost(usage)
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_cost += cost
        return cost

    def uptime(self) -> float:
        return max(0.0, time.monotonic() - self.start_time)


@dataclass(frozen=True, slots=True)
class RenderSnapshot:
    """What the renderer needs beyond the output log, taken once per loop pass."""

    task_running: bool
    spinner_frame: int
    pending_partial_text: str | None = None


@dataclass
class AppState:
    # Settings object (frozen dataclass in production, SimpleNamespace in tests).
    settings: Any

    stats: SessionStats = field(default_factory=SessionStats)
    history: list[ChatMessage] = field(default_factory=list)
    system_prompt: str = ""

    # In-session overrides set by /config, layered over `settings`.
    overrides: dict[str, Any] = field(default_factory=dict)

    # Output log, capped at `output_limit` lines. `output_dropped` counts lines
    # trimmed from the front, so `output_dropped + len(output)` is the absolute
    # line count renderers track. `output_epoch` changes whenever the log is
    # cleared so they can start over.
    output: list[str] = field(default_factory=list)
    output_limit: int = 2000
    output_dropped: int = 0
    output_epoch: int = 0

    term_size: tuple[int, int] = (80, 24)
    spinner_frame: int = 0
    running: bool = True

    def setting(self, name: str, default: Any = None) -> Any:
        if name in self.overrides:
            return self.overrides[name]
        return getattr(self.settings, name, default)

    @property
    def output_total(self) -> int:
        return self.output_dropped + len(self.output)

    def emit(self, text: str) -> None:
        self.output.extend(str(text).split("\n"))
        overflow = len(self.output) - max(1, self.output_limit)
        if overflow > 0:
            del self.output[:overflow]
            self.output_dropped += overflow

    def clear_output(self) -> None:
        self.output.clear()
        self.output_dropped = 0
        self.output_epoch += 1

    def costs(self) -> ModelCosts:
        return model_costs(str(self.setting("model", "")))
