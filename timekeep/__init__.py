"""timekeep - offline-first task and pomodoro tracker with cloud sync."""

__version__ = "0.1.0"
