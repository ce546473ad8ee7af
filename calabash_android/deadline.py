"""Deadline shared by the steps of one ``start()``.

``AppLifecycleManager.start`` opens a window of ``start_timeout`` seconds;
every adb command and bridge call made inside it asks ``effective_timeout``
for its own limit, so no single step can run past the window. Outside a
window each step keeps its configured timeout.
"""

from __future__ import annotations

import contextvars
import time
from contextlib import asynccontextmanager
from typing import Optional

_start_deadline: contextvars.ContextVar[Optional[float]] = contextvars.ContextVar(
    "calabash_android_start_deadline", default=None
)

MIN_STEP_TIMEOUT = 0.1


def has_deadline() -> bool:
    return _start_deadline.get() is not None


def remaining_time(default: float = 60.0) -> float:
    """Seconds left in the current window (``default`` outside one), never negative."""
    deadline = _start_deadline.get()
    if deadline is None:
        return float(default)
    return max(0.0, deadline - time.monotonic())


def effective_timeout(timeout: float) -> float:
    """Limit for one step: ``timeout``, cut down to what the window has left."""
    if not has_deadline():
        return float(timeout)
    return max(MIN_STEP_TIMEOUT, min(float(timeout), remaining_time()))


@asynccontextmanager
async def start_deadline(seconds: float):
    """Open a window ending ``seconds`` from now for the current task.

    The window only budgets the steps; the caller enforces it with
    ``asyncio.timeout(seconds)``.
    """
    token = _start_deadline.set(time.monotonic() + max(0.0, float(seconds)))
    try:
        yield
    finally:
        _start_deadline.reset(token)
