"""Backend for timekeep: account auth and per-user document storage."""

from .app import create_app
from .storage import DocumentStore, UserStore

__all__ = ["create_app", "DocumentStore", "UserStore"]
