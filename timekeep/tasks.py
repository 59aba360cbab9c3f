"""Task board: task CRUD, daily stats, summaries, and JSON import/export.

Every mutation is validated first, applied to the engine's Document, and
then committed through the sync engine.
"""

import json
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable

from .models import (
    PRIORITIES,
    TIMER_MODES,
    DayStats,
    DocumentFormatError,
    PomodoroRecord,
    Subtask,
    Task,
    create_id,
    merge_onto_default,
)
from .sync import SyncEngine

logger = logging.getLogger(__name__)

TASK_FILTERS = ("all", "todo", "done")

_STATUS_ORDER = {"todo": 0, "done": 1}
_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class ValidationError(ValueError):
    """Rejected input; nothing was changed or persisted."""


def _clean_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Task title must not be empty")
    return title


def _check_priority(priority: str) -> str:
    if priority not in PRIORITIES:
        raise ValidationError(
            f"Unknown priority {priority!r}; expected one of {', '.join(PRIORITIES)}"
        )
    return priority


def _check_due_date(due_date: str) -> str:
    due_date = (due_date or "").strip()
    if not due_date:
        return ""
    try:
        date.fromisoformat(due_date)
    except ValueError as e:
        raise ValidationError(f"Due date must be YYYY-MM-DD, got {due_date!r}") from e
    return due_date


def _check_minutes(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive whole number of minutes")
    return value


def _new_subtasks(titles: list[str]) -> list[Subtask]:
    # Blank lines are skipped, as in a pasted checklist
    return [
        Subtask(id=create_id("st"), title=title.strip())
        for title in titles
        if title and title.strip()
    ]


class TaskBoard:
    """Application logic operating on the engine's shared Document."""

    def __init__(
        self,
        engine: SyncEngine,
        today: Callable[[], date] | None = None,
    ):
        """Initialize the board.

        Args:
            engine: Started sync engine that owns the Document.
            today: Clock for daily stats; defaults to ``date.today``.
        """
        self.engine = engine
        self._today = today or date.today
        self.bound_task_id: str | None = None

    @property
    def document(self):
        # Looked up every time: login and logout swap the Document out.
        return self.engine.document

    def get_task(self, task_id: str) -> Task:
        task = self.document.find_task(task_id)
        if task is None:
            raise ValidationError(f"No task with id {task_id!r}")
        return task

    # ==================== Task CRUD ====================

    def add_task(
        self,
        title: str,
        description: str = "",
        due_date: str = "",
        priority: str = "medium",
        category: str = "",
        subtasks: list[str] | None = None,
    ) -> Task:
        task = Task(
            id=create_id("t"),
            title=_clean_title(title),
            description=(description or "").strip(),
            due_date=_check_due_date(due_date),
            priority=_check_priority(priority),
            category=(category or "").strip(),
            status="todo",
            subtasks=_new_subtasks(subtasks or []),
        )
        self.document.tasks.append(task)
        self.engine.commit()

        logger.debug(f"Added task {task.id}")
        return task

    def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        due_date: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        subtasks: list[str] | None = None,
    ) -> Task:
        """Edit task fields; fields left as None are unchanged.

        ``subtasks`` replaces the whole checklist with fresh, unchecked items.
        """
        task = self.get_task(task_id)

        # Validate everything before touching the task
        updates: dict[str, Any] = {}
        if title is not None:
            updates["title"] = _clean_title(title)
        if description is not None:
            updates["description"] = description.strip()
        if due_date is not None:
            updates["due_date"] = _check_due_date(due_date)
        if priority is not None:
            updates["priority"] = _check_priority(priority)
        if category is not None:
            updates["category"] = category.strip()
        if subtasks is not None:
            updates["subtasks"] = _new_subtasks(subtasks)

        for key, value in updates.items():
            setattr(task, key, value)
        self.engine.commit()
        return task

    def delete_task(self, task_id: str) -> Task:
        """Remove a task. Pomodoro records pointing at it are kept."""
        task = self.get_task(task_id)
        self.document.tasks = [t for t in self.document.tasks if t.id != task_id]

        if self.bound_task_id == task_id:
            self.bound_task_id = None

        self.engine.commit()
        return task

    def set_task_done(self, task_id: str, done: bool = True) -> DayStats:
        """Mark a task done or not done and refresh that day's stats.

        The day is the task's due date. Undated tasks count as due today.

        Returns:
            The refreshed DayStats entry.
        """
        task = self.get_task(task_id)
        task.status = "done" if done else "todo"

        today = self._today().isoformat()
        day = task.due_date or today
        day_tasks = [
            t for t in self.document.tasks if (t.due_date or today) == day
        ]
        stats = DayStats(
            done=sum(1 for t in day_tasks if t.done),
            total=len(day_tasks),
        )
        self.document.daily_stats[day] = stats

        self.engine.commit()
        return stats

    # ==================== Subtasks ====================

    def get_subtask(self, task_id: str, subtask_id: str) -> Subtask:
        for subtask in self.get_task(task_id).subtasks:
            if subtask.id == subtask_id:
                return subtask
        raise ValidationError(f"No subtask with id {subtask_id!r} in {task_id!r}")

    def add_subtask(self, task_id: str, title: str) -> Subtask:
        task = self.get_task(task_id)
        subtask = Subtask(id=create_id("st"), title=_clean_title(title))
        task.subtasks.append(subtask)
        self.engine.commit()
        return subtask

    def set_subtask_done(
        self, task_id: str, subtask_id: str, done: bool = True
    ) -> Subtask:
        subtask = self.get_subtask(task_id, subtask_id)
        subtask.done = done
        self.engine.commit()
        return subtask

    def delete_subtask(self, task_id: str, subtask_id: str) -> Subtask:
        task = self.get_task(task_id)
        subtask = self.get_subtask(task_id, subtask_id)
        task.subtasks = [s for s in task.subtasks if s.id != subtask_id]
        self.engine.commit()
        return subtask

    def reorder_tasks(self, order: list[str]) -> list[Task]:
        """Put tasks in the given id order.

        Unknown ids are ignored; tasks missing from ``order`` keep their
        relative order after the listed ones.
        """
        by_id = {t.id: t for t in self.document.tasks}
        listed = []
        seen = set()
        for task_id in order:
            if task_id in by_id and task_id not in seen:
                listed.append(by_id[task_id])
                seen.add(task_id)

        rest = [t for t in self.document.tasks if t.id not in seen]
        self.document.tasks = listed + rest
        self.engine.commit()
        return self.document.tasks

    def list_tasks(self, filter_by: str = "all") -> list[Task]:
        """Tasks in the user's display order."""
        if filter_by not in TASK_FILTERS:
            raise ValidationError(f"Unknown filter {filter_by!r}")
        if filter_by == "todo":
            return [t for t in self.document.tasks if not t.done]
        if filter_by == "done":
            return [t for t in self.document.tasks if t.done]
        return list(self.document.tasks)

    def sorted_tasks(self, filter_by: str = "all") -> list[Task]:
        """Tasks in view order: open first, then by due date, then priority."""
        return sorted(
            self.list_tasks(filter_by),
            key=lambda t: (
                _STATUS_ORDER.get(t.status, 0),
                # Undated tasks sort after dated ones
                (t.due_date == "", t.due_date),
                _PRIORITY_ORDER.get(t.priority, 1),
            ),
        )

    # ==================== Settings & Pomodoro ====================

    def update_settings(self, focus_minutes: int, break_minutes: int) -> None:
        focus = _check_minutes(focus_minutes, "Focus minutes")
        rest = _check_minutes(break_minutes, "Break minutes")

        self.document.settings.focus_minutes = focus
        self.document.settings.break_minutes = rest
        self.engine.commit()

    def bind_task(self, task_id: str | None) -> None:
        """Choose the task that finished pomodoros are credited to."""
        if task_id is not None:
            self.get_task(task_id)
        self.bound_task_id = task_id

    def record_pomodoro(
        self,
        mode: str,
        duration: int | None = None,
        task_id: str | None = None,
        finished_at: datetime | None = None,
    ) -> PomodoroRecord:
        """Append a finished session to the history.

        Args:
            mode: "focus" or "break".
            duration: Seconds; defaults to the configured length for mode.
            task_id: Credited task; defaults to the bound task. Not checked
                against existing tasks.
            finished_at: Completion time; defaults to now.
        """
        if mode not in TIMER_MODES:
            raise ValidationError(f"Unknown timer mode {mode!r}")
        if duration is None:
            duration = self.document.settings.minutes_for(mode) * 60

        record = PomodoroRecord(
            id=create_id("p"),
            task_id=task_id if task_id is not None else self.bound_task_id,
            mode=mode,
            duration=int(duration),
            finished_at=(finished_at or datetime.now()).isoformat(),
        )
        self.document.pomodoro_history.append(record)
        self.engine.commit()
        return record

    def task_label(self, task_id: str | None) -> str:
        """Resolve a weak task reference to a display label."""
        if task_id is None:
            return "(no task)"
        task = self.document.find_task(task_id)
        if task is None:
            return "(deleted task)"
        return task.title

    # ==================== Summaries ====================

    def today_summary(self) -> str:
        stats = self.document.daily_stats.get(self._today().isoformat())
        if stats is None or stats.total == 0:
            return "No tasks recorded today"
        return f"{stats.done} / {stats.total} tasks done"

    def weekly_completion(self) -> list[tuple[str, int]]:
        """Completion percentage of tasks due on each of the last 7 days.

        Returns:
            ``(MM-DD, percent)`` pairs, oldest first.
        """
        today = self._today()
        result = []
        for offset in range(6, -1, -1):
            day = (today - timedelta(days=offset)).isoformat()
            due = [t for t in self.document.tasks if t.due_date == day]
            done = sum(1 for t in due if t.done)
            pct = round(done / len(due) * 100) if due else 0
            result.append((day[5:], pct))
        return result

    def pomodoro_summary(self) -> list[dict[str, Any]]:
        """Total focus time per credited task, in first-seen order."""
        totals: dict[str | None, dict[str, Any]] = {}
        for record in self.document.pomodoro_history:
            if record.mode != "focus":
                continue
            entry = totals.setdefault(
                record.task_id,
                {
                    "task_id": record.task_id,
                    "label": self.task_label(record.task_id),
                    "sessions": 0,
                    "focus_seconds": 0,
                },
            )
            entry["sessions"] += 1
            entry["focus_seconds"] += record.duration
        return list(totals.values())

    # ==================== Import / Export ====================

    def export_json(self) -> str:
        return json.dumps(self.document.to_dict(), indent=2, ensure_ascii=False)

    def import_json(self, text: str) -> None:
        """Shallow-merge imported data onto the current Document and commit.

        Raises:
            ValidationError: If the text is not a valid document.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Import failed: invalid JSON ({e})") from e
        if not isinstance(data, dict):
            raise ValidationError("Import failed: expected a JSON object")

        merged = self.document.to_dict()
        merged.update(data)
        try:
            document = merge_onto_default(merged)
        except DocumentFormatError as e:
            raise ValidationError(f"Import failed: {e}") from e

        self.engine.replace_document(document)
        logger.info(f"Imported document with {len(document.tasks)} tasks")
