# tests/test_progress.py

from __future__ import annotations

import asyncio

import pytest

from aicoder.tasks.progress import SPINNER_FRAMES, ProgressReporter, spinner_glyph


def test_spinner_glyph_wraps() -> None:
    assert spinner_glyph(0) == SPINNER_FRAMES[0]
    assert spinner_glyph(len(SPINNER_FRAMES) + 2) == SPINNER_FRAMES[2]


@pytest.mark.asyncio
async def test_ticks_every_interval_while_active() -> None:
    active = True
    ticks: list[int] = []
    reporter = ProgressReporter(lambda: active, lambda: ticks.append(1), interval=0.1)

    reporter.start()
    await asyncio.sleep(0.5)
    active = False
    reporter.stop()

    assert 4 <= len(ticks) <= 5


@pytest.mark.asyncio
async def test_no_ticks_while_idle() -> None:
    ticks: list[int] = []
    reporter = ProgressReporter(lambda: False, lambda: ticks.append(1), interval=0.05)

    reporter.sync()
    assert not reporter.running
    reporter.start()
    await asyncio.sleep(0.3)

    assert ticks == []
    assert not reporter.running


@pytest.mark.asyncio
async def test_stops_as_soon_as_task_leaves_running_without_stop_call() -> None:
    active = True
    ticks: list[int] = []
    reporter = ProgressReporter(lambda: active, lambda: ticks.append(1), interval=0.05)

    reporter.sync()
    await asyncio.sleep(0.18)
    active = False
    seen = len(ticks)
    await asyncio.sleep(0.2)

    assert seen >= 2
    assert len(ticks) == seen
    assert not reporter.running


@pytest.mark.asyncio
async def test_sync_starts_once_and_stops() -> None:
    active = True
    reporter = ProgressReporter(lambda: active, lambda: None, interval=0.05)

    reporter.sync()
    first = reporter._runner
    reporter.sync()
    assert reporter._runner is first
    assert reporter.running

    active = False
    reporter.sync()
    assert not reporter.running
