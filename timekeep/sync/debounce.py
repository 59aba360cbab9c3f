"""Debounced remote writer: coalesces bursts of commits into one write."""

import asyncio
import logging
from typing import Awaitable, Callable, Coroutine

logger = logging.getLogger(__name__)

SendCallback = Callable[[], Awaitable[None]]


class DebouncedWriter:
    """A single cancellable pending-write slot.

    Each ``schedule()`` cancels the pending timer and starts a new one. When
    a timer fires, the send runs to completion on its own: a send that has
    already started is never cancelled by later schedules.
    """

    def __init__(self, send: SendCallback, delay_seconds: float = 0.5):
        """Initialize the writer.

        Args:
            send: Coroutine function performing the write. It reads the
                current state when called, so the newest data is sent.
            delay_seconds: Quiet period before the write fires.
        """
        self._send = send
        self.delay = delay_seconds
        self._pending: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self.writes_started = 0

    @property
    def pending(self) -> bool:
        """Whether a timer is armed and has not fired yet."""
        return self._pending is not None and not self._pending.done()

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._in_flight if not task.done())

    def schedule(self) -> None:
        """Cancel any pending timer and arm a new one.

        Raises:
            RuntimeError: If called without a running event loop.
        """
        loop = asyncio.get_running_loop()
        self.cancel()
        self._pending = loop.create_task(self._wait_then_send())

    def cancel(self) -> bool:
        """Drop the pending timer, if any. In-flight sends are unaffected."""
        if self._pending is None:
            return False
        task, self._pending = self._pending, None
        if task.done():
            return False
        task.cancel()
        return True

    def detach(self, coro: Coroutine) -> asyncio.Task:
        """Run a send coroutine immediately and track it as in flight."""
        task = asyncio.get_running_loop().create_task(self._run(coro))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def flush(self) -> None:
        """Fire the pending write now, if one is armed, and wait for it."""
        if self.cancel():
            await self.detach(self._send())
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait until no send is in flight."""
        while True:
            tasks = [task for task in self._in_flight if not task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _wait_then_send(self) -> None:
        await asyncio.sleep(self.delay)

        # Timer fired: release the slot so later schedules start a new timer
        # instead of cancelling this send.
        task = asyncio.current_task()
        if self._pending is task:
            self._pending = None
        self._in_flight.add(task)
        try:
            await self._run(self._send())
        finally:
            self._in_flight.discard(task)

    async def _run(self, coro: Coroutine) -> None:
        self.writes_started += 1
        try:
            await coro
        except Exception as e:
            logger.error(f"Debounced write failed: {e}", exc_info=True)
