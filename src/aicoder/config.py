# src/aicoder/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Bad values never crash startup: they fall back to defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "AICODER"

DEFAULT_SYSTEM_PROMPT = (
    "You are a concise coding assistant running inside a terminal. "
    "Prefer short answers and fenced code blocks."
)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# A local .env never overrides variables already set in the environment.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


# Default endpoint per provider; AICODER_BASE_URL overrides it.
DEFAULT_BASE_URLS = {
    "ollama": "http://localhost:11434",
    "openai": "https://api.openai.com/v1",
    "lmstudio": "http://localhost:1234/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "offline": "",
}


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path

    # ---- Completion backend ----
    provider: str
    model: str
    base_url: str
    api_key: Optional[str]
    temperature: float
    max_tokens: int
    system_prompt: str

    # ---- Task supervision ----
    request_timeout_seconds: float
    shell_timeout_seconds: float
    tick_interval_ms: int
    cancel_grace_ms: int
    submit_policy: str

    # ---- Session ----
    history_max_messages: int

    @property
    def log_file(self) -> Path:
        return self.data_dir / "aicoder.log"

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "aicoder")
        log_level = _env(_k("LOG_LEVEL"), "WARNING")
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/aicoder"))

        provider = _env(_k("PROVIDER"), "ollama").strip().lower() or "ollama"
        model = _env(_k("MODEL"), "qwen2.5-coder").strip() or "qwen2.5-coder"
        base_url = _env(_k("BASE_URL"), DEFAULT_BASE_URLS.get(provider, "")).strip()

        # Provider-specific keys are accepted as a fallback for convenience.
        api_key = _first_env(
            _k("API_KEY"),
            "OPENAI_API_KEY" if provider == "openai" else "",
            "OPENROUTER_API_KEY" if provider == "openrouter" else "",
            default=None,
        )

        temperature = _env_float(_k("TEMPERATURE"), 0.1)
        max_tokens = _env_int(_k("MAX_TOKENS"), 2048)
        system_prompt = _env(_k("SYSTEM_PROMPT"), DEFAULT_SYSTEM_PROMPT)

        request_timeout_seconds = _env_float(_k("REQUEST_TIMEOUT_SECONDS"), 120.0)
        shell_timeout_seconds = _env_float(_k("SHELL_TIMEOUT_SECONDS"), 60.0)
        tick_interval_ms = _env_int(_k("TICK_INTERVAL_MS"), 100)
        cancel_grace_ms = _env_int(_k("CANCEL_GRACE_MS"), 150)

        submit_policy = _env(_k("SUBMIT_POLICY"), "replace").strip().lower()
        if submit_policy not in ("replace", "reject"):
            submit_policy = "replace"

        history_max_messages = _env_int(_k("HISTORY_MAX_MESSAGES"), 40)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            provider=provider,
            model=model,
            base_url=base_url,
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=system_prompt,
            request_timeout_seconds=max(0.0, request_timeout_seconds),
            shell_timeout_seconds=max(0.0, shell_timeout_seconds),
            tick_interval_ms=max(10, tick_interval_ms),
            cancel_grace_ms=max(0, cancel_grace_ms),
            submit_policy=submit_policy,
            history_max_messages=max(0, history_max_messages),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, reading the environment on first use."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
