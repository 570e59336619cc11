# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from aicoder.core.state import AppState

from .fakes import FakeCompletionClient


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="aicoder",
        log_level="WARNING",
        data_dir=tmp_path / "data",
        # Backend
        provider="offline",
        model="test-model",
        base_url="",
        api_key=None,
        temperature=0.1,
        max_tokens=256,
        system_prompt="You are a test assistant.",
        # Supervision
        request_timeout_seconds=5.0,
        shell_timeout_seconds=5.0,
        tick_interval_ms=100,
        cancel_grace_ms=150,
        submit_policy="replace",
        # Session
        history_max_messages=4,
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    return AppState(settings=settings, system_prompt=settings.system_prompt)


@pytest.fixture()
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient(["Hello", " world"])
