"""Pomodoro countdown timer.

The timer holds no thread of its own: the caller drives it with ``tick()``,
or lets ``run_session()`` tick it once a second on the asyncio clock.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .models import TIMER_MODES, PomodoroRecord
from .tasks import TaskBoard

logger = logging.getLogger(__name__)


class PomodoroTimer:
    """Focus/break state machine that logs finished sessions."""

    def __init__(self, board: TaskBoard):
        self._board = board
        self.mode = "focus"
        self.running = False
        self.remaining_seconds = self._full_duration()

    def _full_duration(self) -> int:
        return self._board.document.settings.minutes_for(self.mode) * 60

    def bind_task(self, task_id: str | None) -> None:
        self._board.bind_task(task_id)

    def start(self) -> None:
        self.running = True

    def pause(self) -> None:
        self.running = False

    def reset(self) -> None:
        """Stop and rewind to the full length of the current mode."""
        self.pause()
        self.remaining_seconds = self._full_duration()

    def restart_cycle(self) -> None:
        """Back to a stopped focus session, e.g. after new data is loaded."""
        self.mode = "focus"
        self.reset()

    def tick(self, seconds: int = 1) -> PomodoroRecord | None:
        """Advance the clock while running.

        Returns:
            The record of the session that finished during this tick, if any.
        """
        if not self.running or seconds <= 0:
            return None

        self.remaining_seconds -= seconds
        if self.remaining_seconds > 0:
            return None
        return self._finish()

    def _finish(self) -> PomodoroRecord:
        self.pause()
        record = self._board.record_pomodoro(self.mode)
        logger.info(f"{self.mode.capitalize()} session finished")

        self.mode = "break" if self.mode == "focus" else "focus"
        self.remaining_seconds = self._full_duration()
        return record

    def set_mode(self, mode: str) -> None:
        """Switch to ``mode`` and rewind to its full length, stopped."""
        if mode not in TIMER_MODES:
            raise ValueError(f"Unknown timer mode {mode!r}")
        self.mode = mode
        self.reset()

    async def run_session(
        self,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        on_tick: Callable[["PomodoroTimer"], None] | None = None,
    ) -> PomodoroRecord | None:
        """Run the current session on the event loop clock, one tick a second.

        Args:
            sleep: Coroutine used to wait between ticks; ``asyncio.sleep``
                if omitted.
            on_tick: Called after every tick, e.g. to redraw a countdown.

        Returns:
            The finished session's record, or None if paused before the end.
        """
        sleep = sleep or asyncio.sleep
        self.start()
        while self.running:
            await sleep(1)
            record = self.tick()
            if on_tick is not None:
                on_tick(self)
            if record is not None:
                return record
        return None

    def label(self) -> str:
        remaining = max(self.remaining_seconds, 0)
        minutes, seconds = divmod(remaining, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def current_task_label(self) -> str:
        task_id = self._board.bound_task_id
        if task_id is None:
            return "No task selected"
        task = self._board.document.find_task(task_id)
        if task is None:
            return "Task not found (it may have been deleted)"
        return task.title
