# src/aicoder/ui/console.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import signal
import sys
import threading
from collections.abc import Callable
from typing import TextIO

from ..core.events import Event
from ..core.state import AppState, RenderSnapshot
from ..tasks.progress import spinner_glyph

logger = logging.getLogger(__name__)

_ERASE_LINE = "\r\033[2K"
_CLEAR_SCREEN = "\033[2J\033[H"


def _tail(text: str, width: int) -> str:
    last = text.rstrip("\n").rsplit("\n", 1)[-1]
    if width <= 1:
        return ""
    return last if len(last) <= width else "…" + last[-(width - 1):]


class ConsoleRenderer:
    """
    Line-oriented terminal renderer.

    Prints the output lines it has not printed yet, then keeps a single status
    line (spinner + tail of the streamed reply) redrawn in place at the bottom.

    render() is called once per event-loop pass. When neither the output log
    nor the status line changed since the previous call, the physical redraw
    is skipped; the call still counts in `renders`.
    """

    def __init__(self, stream: TextIO | None = None, *, color: bool | None = None) -> None:
        self._out = stream if stream is not None else sys.stdout
        isatty = getattr(self._out, "isatty", None)
        self._tty = bool(isatty()) if callable(isatty) else False
        self._color = self._tty if color is None else color

        self._printed = 0
        self._epoch = 0
        self._status = ""
        self.renders = 0
        self.redraws = 0

    def _status_line(self, snapshot: RenderSnapshot, columns: int) -> str:
        if not snapshot.task_running or not self._tty:
            return ""
        head = f"{spinner_glyph(snapshot.spinner_frame)} working… (Ctrl+C to cancel)"
        partial = snapshot.pending_partial_text or ""
        if partial:
            head = f"{spinner_glyph(snapshot.spinner_frame)} {_tail(partial, columns - 3)}"
        if self._color:
            return f"\033[36m{head}\033[0m"
        return head

    def render(self, snapshot: RenderSnapshot, state: AppState) -> None:
        self.renders += 1

        cleared = state.output_epoch != self._epoch
        if cleared:
            self._epoch = state.output_epoch
            self._printed = 0

        # `_printed` is absolute; lines trimmed before we saw them are skipped.
        new_lines = state.output[max(0, self._printed - state.output_dropped):]
        status = self._status_line(snapshot, state.term_size[0])
        if not cleared and not new_lines and status == self._status:
            return

        parts: list[str] = []
        if cleared and self._tty:
            parts.append(_CLEAR_SCREEN)
        elif self._status:
            parts.append(_ERASE_LINE)
        parts.extend(line + "\n" for line in new_lines)
        if status:
            parts.append(status)

        self._out.write("".join(parts))
        self._out.flush()

        self._printed = state.output_total
        self._status = status
        self.redraws += 1

    def close(self) -> None:
        if self._status:
            with contextlib.suppress(OSError, ValueError):
                self._out.write(_ERASE_LINE)
                self._out.flush()
        self._status = ""


class ConsoleInput:
    """
    Reads stdin lines on a daemon thread and posts them as KEY events.

    EOF (Ctrl+D, closed pipe) posts QUIT. The thread is a daemon so a pending
    readline() never keeps the process alive.
    """

    def __init__(self, post: Callable[[Event], None], *, stream: TextIO | None = None) -> None:
        self._post = post
        self._in = stream if stream is not None else sys.stdin
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._read, name="console-input", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()

    def _read(self) -> None:
        while not self._stopped.is_set():
            try:
                line = self._in.readline()
            except (OSError, ValueError):
                logger.debug("Console input closed", exc_info=True)
                line = ""
            if self._stopped.is_set():
                return
            if line == "":
                logger.info("Console EOF received, exiting.")
                self._post(Event.quit())
                return
            self._post(Event.key(line.rstrip("\r\n")))


def terminal_size() -> tuple[int, int]:
    size = shutil.get_terminal_size(fallback=(80, 24))
    return size.columns, size.lines


def install_signal_handlers(
        loop: asyncio.AbstractEventLoop,
        *,
        task_running: Callable[[], bool],
        post: Callable[[Event], None],
) -> None:
    """
    SIGINT aborts the running task (or quits when idle); SIGWINCH posts RESIZE.

    Handlers run on the loop thread. Platforms without add_signal_handler
    keep the default behaviour.
    """

    def _on_interrupt() -> None:
        post(Event.abort() if task_running() else Event.quit())

    def _on_resize() -> None:
        post(Event.resize(*terminal_size()))

    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    sigwinch = getattr(signal, "SIGWINCH", None)
    if sigwinch is not None:
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sigwinch, _on_resize)
