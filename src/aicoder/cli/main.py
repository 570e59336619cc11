# src/aicoder/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds the app, then runs the event loop with the console
front-end: a stdin reader thread, SIGINT/SIGWINCH handlers and the renderer.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import App, close_app, create_app
from ..config import get_settings
from ..core.events import Event
from ..logging_setup import setup_logging
from ..ui.console import ConsoleInput, install_signal_handlers, terminal_size

logger = logging.getLogger(__name__)

BANNER = "aicoder: type a question, !<cmd> for the shell, /help for commands, /exit to quit."


async def run_app(app: App) -> int:
    loop = asyncio.get_running_loop()
    event_loop = app.event_loop
    event_loop.bind(loop)

    install_signal_handlers(
        loop,
        task_running=lambda: app.supervisor.task_running,
        post=event_loop.post,
    )
    reader = ConsoleInput(event_loop.post_threadsafe)

    app.state.emit(BANNER)
    # First pass draws the banner at the real terminal size.
    event_loop.post(Event.resize(*terminal_size()))
    reader.start()
    try:
        return await event_loop.run()
    finally:
        reader.stop()


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.WARNING)

    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)
    logger.info("Starting %s (log file: %s)...", settings.app_name, log_file)

    try:
        app = create_app(settings=settings)
    except ValueError as e:
        # Unknown provider and similar configuration mistakes.
        logger.error("Configuration error: %s", e)
        raise SystemExit(f"aicoder: {e}") from None

    try:
        passes = asyncio.run(run_app(app))
        logger.info("Event loop finished after %d passes.", passes)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt, exiting.")
    finally:
        close_app(app)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
