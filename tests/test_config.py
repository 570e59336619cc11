# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from aicoder.config import Settings

_KEYS = (
    "PROVIDER",
    "MODEL",
    "BASE_URL",
    "API_KEY",
    "DATA_DIR",
    "REQUEST_TIMEOUT_SECONDS",
    "TICK_INTERVAL_MS",
    "CANCEL_GRACE_MS",
    "SUBMIT_POLICY",
    "HISTORY_MAX_MESSAGES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _KEYS:
        monkeypatch.delenv(f"AICODER_{key}", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)


def test_defaults() -> None:
    s = Settings.from_env()

    assert s.provider == "ollama"
    assert s.base_url == "http://localhost:11434"
    assert s.api_key is None
    assert s.request_timeout_seconds == 120.0
    assert s.tick_interval_ms == 100
    assert s.cancel_grace_ms == 150
    assert s.submit_policy == "replace"
    assert s.log_file == s.data_dir / "aicoder.log"


def test_provider_selects_default_base_url_and_key_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AICODER_PROVIDER", "OpenRouter")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or")

    s = Settings.from_env()

    assert s.provider == "openrouter"
    assert s.base_url == "https://openrouter.ai/api/v1"
    assert s.api_key == "sk-or"


def test_explicit_values_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AICODER_BASE_URL", "http://gpu-box:11434")
    monkeypatch.setenv("AICODER_API_KEY", "secret")
    monkeypatch.setenv("AICODER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("AICODER_SUBMIT_POLICY", "REJECT")
    monkeypatch.setenv("AICODER_REQUEST_TIMEOUT_SECONDS", "2.5")

    s = Settings.from_env()

    assert s.base_url == "http://gpu-box:11434"
    assert s.api_key == "secret"
    assert s.data_dir == tmp_path
    assert s.submit_policy == "reject"
    assert s.request_timeout_seconds == 2.5


def test_malformed_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AICODER_REQUEST_TIMEOUT_SECONDS", "soon")
    monkeypatch.setenv("AICODER_TICK_INTERVAL_MS", "fast")
    monkeypatch.setenv("AICODER_SUBMIT_POLICY", "queue")
    monkeypatch.setenv("AICODER_CANCEL_GRACE_MS", "-5")

    s = Settings.from_env()

    assert s.request_timeout_seconds == 120.0
    assert s.tick_interval_ms == 100
    assert s.submit_policy == "replace"
    assert s.cancel_grace_ms == 0
