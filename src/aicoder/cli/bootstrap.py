# src/aicoder/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the completion client, supervisor, session, command registry and
  renderer into one event loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import get_settings
from ..core.chat import ChatSession
from ..core.event_loop import EventLoop
from ..core.ports import CompletionClient, Renderer
from ..core.state import AppState
from ..llm.factory import create_completion_client
from ..tasks.supervisor import SubmitPolicy, TaskSupervisor
from ..ui.console import ConsoleRenderer
from .commands import CommandContext, registry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class App:
    state: AppState
    supervisor: TaskSupervisor
    session: ChatSession
    event_loop: EventLoop

    @property
    def client(self) -> CompletionClient:
        # /config provider swaps the session's client at runtime.
        return self.session.client


def _ensure_local_dirs(settings) -> None:
    data_dir = getattr(settings, "data_dir", None)
    if data_dir is not None:
        data_dir.mkdir(parents=True, exist_ok=True)


def create_app(
        *,
        settings=None,
        client: CompletionClient | None = None,
        renderer: Renderer | None = None,
) -> App:
    """
    Build the application from the provided settings.

    Keeping settings (and the client/renderer) injectable makes the app easier
    to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if client is None:
        client = create_completion_client(settings)

    supervisor = TaskSupervisor(
        policy=SubmitPolicy(str(getattr(settings, "submit_policy", "replace"))),
        grace_seconds=int(getattr(settings, "cancel_grace_ms", 150)) / 1000.0,
    )
    state = AppState(settings=settings, system_prompt=str(getattr(settings, "system_prompt", "") or ""))
    session = ChatSession(state, supervisor, client)

    event_loop = EventLoop(
        state,
        session,
        supervisor,
        renderer if renderer is not None else ConsoleRenderer(),
        tick_interval=int(getattr(settings, "tick_interval_ms", 100)) / 1000.0,
    )
    ctx = CommandContext(
        state=state,
        session=session,
        supervisor=supervisor,
        request_quit=event_loop.request_shutdown,
    )
    event_loop.commands = lambda line: registry.handle(ctx, line, emit=state.emit)

    logger.debug(
        "App wired: provider=%s policy=%s grace=%sms",
        client.provider.value,
        supervisor.policy.value,
        getattr(settings, "cancel_grace_ms", 150),
    )
    return App(state=state, supervisor=supervisor, session=session, event_loop=event_loop)


def close_app(app: App) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        app.supervisor.shutdown()
    except Exception:
        logger.exception("Supervisor shutdown failed.")

    close = getattr(app.client, "close", None)
    if callable(close):
        try:
            close()
        except Exception:
            logger.debug("Completion client close failed.", exc_info=True)

    try:
        app.event_loop.renderer.close()
    except Exception:
        logger.debug("Renderer close failed.", exc_info=True)
