"""Data model for the synced task document and the client auth state.

The Document is the unit of sync: it is always read, cached and sent as a
whole. Field names on the wire are camelCase to stay compatible with data
written by existing clients.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)

PRIORITIES = ("low", "medium", "high")
STATUSES = ("todo", "done")
TIMER_MODES = ("focus", "break")

DEFAULT_FOCUS_MINUTES = 25
DEFAULT_BREAK_MINUTES = 5

# Keys understood by this client; anything else is carried through untouched
DOCUMENT_FIELDS = ("tasks", "pomodoroHistory", "settings", "dailyStats")
TASK_FIELDS = (
    "id", "title", "description", "dueDate", "priority", "category", "status",
    "subtasks",
)
SUBTASK_FIELDS = ("id", "title", "done")


class DocumentFormatError(ValueError):
    """Raised when stored or received data cannot be read as a Document."""


def create_id(prefix: str) -> str:
    """Generate a client-side id such as ``t_1717200000000_42``."""
    return f"{prefix}_{int(time.time() * 1000)}_{random.randint(0, 9999)}"


@dataclass
class Subtask:
    """A checklist item inside a Task."""

    id: str
    title: str
    done: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {"id": self.id, "title": self.title, "done": self.done}
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            done=bool(data.get("done", False)),
            extra={k: v for k, v in data.items() if k not in SUBTASK_FIELDS},
        )


@dataclass
class Task:
    """A single to-do item. Owned by the Document.

    Unknown keys are kept in ``extra`` and written back unchanged, the same
    way the Document keeps its own unknown keys.
    """

    id: str
    title: str
    description: str = ""
    due_date: str = ""
    priority: str = "medium"
    category: str = ""
    status: str = "todo"
    subtasks: list[Subtask] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return self.status == "done"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "dueDate": self.due_date,
            "priority": self.priority,
            "category": self.category,
            "status": self.status,
            "subtasks": [s.to_dict() for s in self.subtasks],
        }
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        subtasks = data.get("subtasks")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=data.get("description") or "",
            due_date=data.get("dueDate") or "",
            priority=data.get("priority") or "medium",
            category=data.get("category") or "",
            status=data.get("status") or "todo",
            # Older data may carry a non-list here; the client treats it as none
            subtasks=(
                [Subtask.from_dict(s) for s in subtasks]
                if isinstance(subtasks, list)
                else []
            ),
            extra={k: v for k, v in data.items() if k not in TASK_FIELDS},
        )


@dataclass
class PomodoroRecord:
    """A finished focus or break session.

    ``task_id`` is a weak reference: the task may have been deleted since,
    or no task was bound at all.
    """

    id: str
    task_id: str | None
    mode: str
    duration: int
    finished_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "mode": self.mode,
            "duration": self.duration,
            "finishedAt": self.finished_at,
        }

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], settings: "Settings | None" = None
    ) -> "PomodoroRecord":
        """Build a record, filling a missing duration from ``settings``.

        Records written by older clients carry no duration; they ran for the
        configured length of their mode.
        """
        mode = data.get("mode", "focus")
        duration = data.get("duration")
        if duration is None:
            duration = settings.minutes_for(mode) * 60 if settings else 0
        return cls(
            id=str(data["id"]),
            task_id=data.get("taskId"),
            mode=mode,
            duration=int(duration),
            finished_at=data.get("finishedAt", ""),
        )


@dataclass
class Settings:
    focus_minutes: int = DEFAULT_FOCUS_MINUTES
    break_minutes: int = DEFAULT_BREAK_MINUTES

    def to_dict(self) -> dict[str, Any]:
        return {
            "focusMinutes": self.focus_minutes,
            "breakMinutes": self.break_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        return cls(
            focus_minutes=int(data.get("focusMinutes", DEFAULT_FOCUS_MINUTES)),
            break_minutes=int(data.get("breakMinutes", DEFAULT_BREAK_MINUTES)),
        )

    def minutes_for(self, mode: str) -> int:
        return self.focus_minutes if mode == "focus" else self.break_minutes


@dataclass
class DayStats:
    """Completion counts for one day. ``done`` never exceeds ``total``."""

    done: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"done": self.done, "total": self.total}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DayStats":
        total = int(data.get("total", 0))
        done = min(int(data.get("done", 0)), total)
        return cls(done=done, total=total)


@dataclass
class Document:
    """The full per-user application data aggregate.

    Keys this client does not understand are kept in ``extra`` and written
    back unchanged, so a round trip through an older client is lossless.
    """

    tasks: list[Task] = field(default_factory=list)
    pomodoro_history: list[PomodoroRecord] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)
    daily_stats: dict[str, DayStats] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "tasks": [t.to_dict() for t in self.tasks],
            "pomodoroHistory": [p.to_dict() for p in self.pomodoro_history],
            "settings": self.settings.to_dict(),
            "dailyStats": {
                day: stats.to_dict() for day, stats in self.daily_stats.items()
            },
        }
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Document":
        """Build a Document from its wire form.

        Raises:
            DocumentFormatError: If any known field has the wrong shape.
        """
        if not isinstance(data, dict):
            raise DocumentFormatError(
                f"Expected a JSON object, got {type(data).__name__}"
            )
        try:
            settings = Settings.from_dict(data.get("settings") or {})
            return cls(
                tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
                pomodoro_history=[
                    PomodoroRecord.from_dict(p, settings)
                    for p in data.get("pomodoroHistory") or []
                ],
                settings=settings,
                daily_stats={
                    str(day): DayStats.from_dict(stats)
                    for day, stats in (data.get("dailyStats") or {}).items()
                },
                extra={
                    k: v for k, v in data.items() if k not in DOCUMENT_FIELDS
                },
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DocumentFormatError(f"Malformed document: {e}") from e

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def copy(self) -> "Document":
        return Document.from_dict(self.to_dict())


def default_document() -> Document:
    """Return a fresh empty Document with default timer settings."""
    return Document()


def merge_onto_default(data: Any) -> Document:
    """Shallow-merge loaded data onto the default Document.

    Top-level fields from ``data`` replace the defaults wholesale; nested
    values are not merged. Anything that is not a mapping counts as absent.

    Raises:
        DocumentFormatError: If a provided field has the wrong shape.
    """
    merged = default_document().to_dict()
    if isinstance(data, dict):
        merged.update(data)
    return Document.from_dict(merged)


# ==================== Auth State ====================


@dataclass(frozen=True)
class Guest:
    """Unauthenticated session; data lives only on this device."""

    @property
    def is_authenticated(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"mode": "guest", "user": None, "token": None}


@dataclass(frozen=True)
class Authenticated:
    """Signed-in session with a bearer credential for the remote store."""

    user_id: str
    display_name: str
    email: str
    credential: str

    @property
    def is_authenticated(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": "user",
            "user": {
                "id": self.user_id,
                "name": self.display_name,
                "email": self.email,
            },
            "token": self.credential,
        }

    @classmethod
    def from_user(cls, user: dict[str, Any], token: str) -> "Authenticated":
        return cls(
            user_id=str(user["id"]),
            display_name=user.get("name") or "",
            email=user.get("email") or "",
            credential=token,
        )


AuthState = Union[Guest, Authenticated]


def parse_auth_state(data: Any) -> AuthState:
    """Read a persisted auth state; anything unusable becomes Guest."""
    if not isinstance(data, dict) or data.get("mode") != "user":
        return Guest()

    user = data.get("user")
    token = data.get("token")
    if not isinstance(user, dict) or not token or "id" not in user:
        logger.warning("Persisted auth state has no usable credential")
        return Guest()

    return Authenticated.from_user(user, token)
