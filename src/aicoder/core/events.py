# src/aicoder/core/events.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class EventKind(StrEnum):
    KEY = "key"  # one submitted input line
    RESIZE = "resize"
    TICK = "tick"  # progress animation tick
    QUIT = "quit"
    ABORT = "abort"  # Ctrl+C while a task is running
    TASK_DONE = "task_done"  # the supervisor has an outcome ready for poll()


@dataclass(frozen=True, slots=True)
class Event:
    kind: EventKind
    text: str = ""
    size: tuple[int, int] | None = None
    task_id: str | None = None

    @classmethod
    def key(cls, text: str) -> Event:
        return cls(EventKind.KEY, text=text)

    @classmethod
    def resize(cls, columns: int, rows: int) -> Event:
        return cls(EventKind.RESIZE, size=(columns, rows))

    @classmethod
    def tick(cls) -> Event:
        return cls(EventKind.TICK)

    @classmethod
    def quit(cls) -> Event:
        return cls(EventKind.QUIT)

    @classmethod
    def abort(cls) -> Event:
        return cls(EventKind.ABORT)

    @classmethod
    def task_done(cls, task_id: str) -> Event:
        return cls(EventKind.TASK_DONE, task_id=task_id)
