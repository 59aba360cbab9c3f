"""Tests for the task board."""

import json
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from timekeep.models import DayStats, Document, Task
from timekeep.sync import GUEST_SLOT, LocalCache, RemoteClient, SyncEngine
from timekeep.tasks import TaskBoard, ValidationError

TODAY = date(2024, 6, 3)


@pytest.fixture
def cache():
    """Create an in-memory LocalCache."""
    cache = LocalCache(":memory:")
    cache.connect()
    yield cache
    cache.close()


@pytest.fixture
def engine(cache):
    """Create a guest-mode engine; guest commits never touch the remote."""
    return SyncEngine(cache, MagicMock(spec=RemoteClient))


@pytest.fixture
def board(engine):
    return TaskBoard(engine, today=lambda: TODAY)


def _stored(cache):
    return cache.load_document(GUEST_SLOT)


class TestTaskCrud:
    """Tests for adding, editing, and removing tasks."""

    def test_add_task_persists(self, board, cache):
        """Test a new task is appended and committed."""
        task = board.add_task("  Write report ", priority="high", due_date="2024-06-05")

        assert task.id.startswith("t_")
        assert task.title == "Write report"
        assert task.status == "todo"
        assert _stored(cache).tasks[0].id == task.id

    @pytest.mark.parametrize("kwargs", [
        {"title": "   "},
        {"title": "A", "priority": "urgent"},
        {"title": "A", "due_date": "06/01/2024"},
    ])
    def test_add_task_rejects_bad_input(self, board, cache, kwargs):
        """Test invalid input changes nothing."""
        with pytest.raises(ValidationError):
            board.add_task(**kwargs)

        assert board.document.tasks == []
        assert _stored(cache) is None

    def test_update_task(self, board, cache):
        """Test only given fields are changed."""
        task = board.add_task("Draft", description="first")

        board.update_task(task.id, title="Final", category="work")

        stored = _stored(cache).tasks[0]
        assert stored.title == "Final"
        assert stored.description == "first"
        assert stored.category == "work"

    def test_update_task_is_atomic(self, board):
        """Test one bad field leaves the task untouched."""
        task = board.add_task("Draft")

        with pytest.raises(ValidationError):
            board.update_task(task.id, title="New", priority="nope")

        assert board.get_task(task.id).title == "Draft"

    def test_unknown_task(self, board):
        """Test operations on missing ids raise ValidationError."""
        with pytest.raises(ValidationError):
            board.delete_task("t_missing")
        with pytest.raises(ValidationError):
            board.set_task_done("t_missing")

    def test_delete_clears_binding_but_keeps_history(self, board):
        """Test deleting a task leaves pomodoro records pointing at it."""
        task = board.add_task("Focus work")
        board.bind_task(task.id)
        board.record_pomodoro("focus", duration=1500)

        board.delete_task(task.id)

        assert board.bound_task_id is None
        assert board.document.pomodoro_history[0].task_id == task.id
        assert board.task_label(task.id) == "(deleted task)"

    def test_reorder_tasks(self, board):
        """Test listed ids go first and unlisted tasks keep their order."""
        a = board.add_task("A")
        b = board.add_task("B")
        c = board.add_task("C")

        board.reorder_tasks([c.id, "t_unknown", a.id])

        assert [t.title for t in board.list_tasks()] == ["C", "A", "B"]
        assert b in board.document.tasks


class TestCompletion:
    """Tests for marking tasks done and daily stats."""

    def test_done_updates_stats_for_due_date(self, engine, cache):
        """Test completing a dated task updates that day's stats."""
        engine.document.tasks.append(Task(
            id="t1", title="Write report", status="todo",
            priority="high", due_date="2024-06-01",
        ))
        board = TaskBoard(engine, today=lambda: TODAY)

        stats = board.set_task_done("t1")

        assert stats == DayStats(done=1, total=1)
        stored = _stored(cache)
        assert stored.daily_stats["2024-06-01"] == DayStats(done=1, total=1)
        assert stored.tasks[0].status == "done"

    def test_undated_task_counts_today(self, board):
        """Test undated tasks are tallied under today's date."""
        task = board.add_task("Inbox")

        stats = board.set_task_done(task.id)

        assert stats == DayStats(done=1, total=1)
        assert board.document.daily_stats[TODAY.isoformat()] == stats

    def test_today_counts_dated_and_undated(self, board):
        """Test tasks due today and undated tasks share today's entry."""
        due_today = board.add_task("Due today", due_date=TODAY.isoformat())
        board.add_task("Undated")
        board.add_task("Tomorrow", due_date="2024-06-04")

        stats = board.set_task_done(due_today.id)

        assert stats == DayStats(done=1, total=2)

    def test_undo_recounts(self, board):
        """Test marking a task not done lowers the done count."""
        a = board.add_task("A", due_date="2024-06-02")
        board.add_task("B", due_date="2024-06-02")
        board.set_task_done(a.id)

        stats = board.set_task_done(a.id, done=False)

        assert stats == DayStats(done=0, total=2)

    def test_filters(self, board):
        a = board.add_task("A")
        board.add_task("B")
        board.set_task_done(a.id)

        assert [t.title for t in board.list_tasks("done")] == ["A"]
        assert [t.title for t in board.list_tasks("todo")] == ["B"]
        with pytest.raises(ValidationError):
            board.list_tasks("someday")

    def test_sorted_tasks(self, board):
        """Test open tasks come first, then by due date, then priority."""
        done = board.add_task("Done", due_date="2024-06-01")
        board.add_task("Undated")
        board.add_task("Later", due_date="2024-06-09")
        board.add_task("Soon low", due_date="2024-06-04", priority="low")
        board.add_task("Soon high", due_date="2024-06-04", priority="high")
        board.set_task_done(done.id)

        titles = [t.title for t in board.sorted_tasks()]

        assert titles == ["Soon high", "Soon low", "Later", "Undated", "Done"]


class TestSettingsAndPomodoro:
    """Tests for settings and pomodoro history."""

    def test_update_settings(self, board, cache):
        board.update_settings(50, 10)

        assert _stored(cache).settings.focus_minutes == 50

    @pytest.mark.parametrize("focus,rest", [(0, 5), (25, -1), (True, 5), (25.5, 5)])
    def test_update_settings_rejects(self, board, focus, rest):
        """Test non-positive or non-integer minutes are rejected."""
        with pytest.raises(ValidationError):
            board.update_settings(focus, rest)

        assert board.document.settings.focus_minutes == 25

    def test_record_uses_settings_and_binding(self, board):
        """Test defaults come from settings and the bound task."""
        task = board.add_task("Deep work")
        board.bind_task(task.id)
        finished = datetime(2024, 6, 3, 9, 30)

        record = board.record_pomodoro("focus", finished_at=finished)

        assert record.duration == 25 * 60
        assert record.task_id == task.id
        assert record.finished_at == "2024-06-03T09:30:00"

    def test_record_without_task(self, board):
        record = board.record_pomodoro("break")

        assert record.task_id is None
        assert board.task_label(record.task_id) == "(no task)"

    def test_bind_unknown_task(self, board):
        with pytest.raises(ValidationError):
            board.bind_task("t_missing")

    def test_dangling_reference_is_tolerated(self, engine):
        """Test history pointing at a missing task still summarizes."""
        board = TaskBoard(engine, today=lambda: TODAY)
        board.record_pomodoro("focus", duration=600, task_id="t_gone")
        board.record_pomodoro("focus", duration=900, task_id="t_gone")
        board.record_pomodoro("break", duration=300, task_id="t_gone")

        summary = board.pomodoro_summary()

        assert summary == [{
            "task_id": "t_gone",
            "label": "(deleted task)",
            "sessions": 2,
            "focus_seconds": 1500,
        }]


class TestSummaries:
    """Tests for summary views."""

    def test_today_summary(self, board):
        assert board.today_summary() == "No tasks recorded today"

        task = board.add_task("Today", due_date=TODAY.isoformat())
        board.set_task_done(task.id)

        assert board.today_summary() == "1 / 1 tasks done"

    def test_weekly_completion(self, board):
        """Test seven days ending today, with percentages of due tasks."""
        a = board.add_task("A", due_date="2024-06-03")
        board.add_task("B", due_date="2024-06-03")
        board.set_task_done(a.id)

        week = board.weekly_completion()

        assert len(week) == 7
        assert week[0] == ("05-28", 0)
        assert week[-1] == ("06-03", 50)


class TestImportExport:
    """Tests for JSON import and export."""

    def test_export_is_document_json(self, board):
        board.add_task("A")

        data = json.loads(board.export_json())

        assert data["tasks"][0]["title"] == "A"
        assert data["settings"] == {"focusMinutes": 25, "breakMinutes": 5}

    def test_import_merges_shallowly(self, board, cache):
        """Test imported keys replace current ones and others are kept."""
        board.add_task("Existing")
        board.update_settings(40, 8)

        board.import_json(json.dumps({"tasks": [{"id": "t9", "title": "Imported"}]}))

        assert [t.id for t in board.document.tasks] == ["t9"]
        assert board.document.settings.focus_minutes == 40
        assert _stored(cache).tasks[0].id == "t9"

    @pytest.mark.parametrize("text", [
        "{broken",
        "[1, 2]",
        '{"tasks": [{"title": "no id"}]}',
    ])
    def test_import_rejects_bad_input(self, board, text):
        """Test a bad import leaves the document unchanged."""
        board.add_task("Keep me")

        with pytest.raises(ValidationError):
            board.import_json(text)

        assert [t.title for t in board.document.tasks] == ["Keep me"]


class TestSubtasks:
    """Tests for task checklists."""

    def test_add_task_with_subtasks(self, board, cache):
        """Test checklist lines become unchecked subtasks; blanks are skipped."""
        task = board.add_task("Trip", subtasks=["Book hotel", "  ", " Pack "])

        assert [s.title for s in task.subtasks] == ["Book hotel", "Pack"]
        assert all(s.id.startswith("st_") and not s.done for s in task.subtasks)
        assert len(_stored(cache).tasks[0].subtasks) == 2

    def test_update_replaces_checklist(self, board):
        task = board.add_task("Trip", subtasks=["Old"])

        board.update_task(task.id, subtasks=["New one", "New two"])

        assert [s.title for s in board.get_task(task.id).subtasks] == ["New one", "New two"]

    def test_update_without_subtasks_keeps_them(self, board):
        task = board.add_task("Trip", subtasks=["Keep"])

        board.update_task(task.id, title="Holiday")

        assert [s.title for s in board.get_task(task.id).subtasks] == ["Keep"]

    def test_subtask_lifecycle(self, board, cache):
        """Test adding, checking and removing a single subtask."""
        task = board.add_task("Trip")
        subtask = board.add_subtask(task.id, "Buy tickets")

        board.set_subtask_done(task.id, subtask.id)
        assert _stored(cache).tasks[0].subtasks[0].done is True

        board.set_subtask_done(task.id, subtask.id, done=False)
        assert _stored(cache).tasks[0].subtasks[0].done is False

        board.delete_subtask(task.id, subtask.id)
        assert _stored(cache).tasks[0].subtasks == []

    def test_subtask_errors(self, board):
        task = board.add_task("Trip")

        with pytest.raises(ValidationError):
            board.add_subtask(task.id, "   ")
        with pytest.raises(ValidationError):
            board.set_subtask_done(task.id, "st_missing")
        with pytest.raises(ValidationError):
            board.add_subtask("t_missing", "Anything")

    def test_edit_keeps_unknown_task_keys(self, engine, cache):
        """Test fields written by other clients survive a local edit."""
        engine.replace_document(Document.from_dict({
            "tasks": [{
                "id": "t1",
                "title": "Shared",
                "subtasks": [{"id": "st1", "title": "a", "done": True, "note": "x"}],
                "color": "red",
            }],
        }))
        board = TaskBoard(engine, today=lambda: TODAY)

        board.update_task("t1", title="Renamed")

        stored = cache.read_slot(GUEST_SLOT)[0]
        task = json.loads(stored)["tasks"][0]
        assert task["title"] == "Renamed"
        assert task["color"] == "red"
        assert task["subtasks"] == [{"id": "st1", "title": "a", "done": True, "note": "x"}]
