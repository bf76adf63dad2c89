"""Dirty flag + debounced flush for fire-and-forget persistence.

Callers mark state dirty as often as they like; the writer runs once the
changes settle (trailing debounce) and never later than ``max_delay_ms``
after the first unsaved change. The writer always snapshots the latest
in-memory state, so the last write wins. Write failures are logged and
reported through ``on_error``; memory is never rolled back and nothing
retries until the next change.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from logging_utils import log_event


class DebouncedFlush:
    def __init__(
        self,
        writer: Callable[[], Awaitable[None]],
        *,
        delay_ms: int = 400,
        max_delay_ms: int = 2000,
        on_error: Optional[Callable[[BaseException], None]] = None,
        name: str = "autosave",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._writer = writer
        self.delay_s = max(0, delay_ms) / 1000.0
        self.max_delay_s = max(self.delay_s, max_delay_ms / 1000.0)
        self.on_error = on_error
        self.name = name
        self._clock = clock
        self._dirty = False
        self._first_dirty_at: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._write_lock: Optional[asyncio.Lock] = None

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        """True while a timer or write task is outstanding."""
        return self._handle is not None or bool(self._tasks)

    def _lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    def mark_dirty(self) -> None:
        """Record an unsaved change and (re)arm the debounce timer. Call on the loop thread."""
        loop = asyncio.get_running_loop()
        now = self._clock()
        if not self._dirty:
            self._first_dirty_at = now
        self._dirty = True
        deadline = min(now + self.delay_s, self._first_dirty_at + self.max_delay_s)
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(max(0.0, deadline - now), self._fire)

    def flush_soon(self) -> None:
        """Write on the next loop iteration instead of waiting for the debounce."""
        loop = asyncio.get_running_loop()
        self._dirty = True
        if self._first_dirty_at is None:
            self._first_dirty_at = self._clock()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_soon(self._fire)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> bool:
        """Drop the pending write. Returns True when something was pending."""
        had_pending = self._dirty
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._dirty = False
        self._first_dirty_at = None
        return had_pending

    async def wait_idle(self) -> None:
        """Wait for an in-flight write to finish without starting a new one."""
        async with self._lock():
            pass

    async def flush(self, force: bool = False) -> bool:
        """Write now if dirty (always when forced). Returns False only when the write failed."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if force:
            self._dirty = True
        async with self._lock():
            if not self._dirty:
                return True
            self._dirty = False
            self._first_dirty_at = None
            try:
                await self._writer()
            except Exception as e:
                log_event("ERROR", "AutoSave", "Write failed", target=self.name, error=e)
                if self.on_error is not None:
                    self.on_error(e)
                return False
        return True

    async def close(self) -> bool:
        """Flush outstanding changes and wait for background writes."""
        ok = await self.flush()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return ok
