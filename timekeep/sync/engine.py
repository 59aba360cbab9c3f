"""Sync engine: owns the in-memory Document and the session state.

All persistence goes through ``commit()``. The local half of a commit is
synchronous; the remote half is a debounced whole-document write that only
happens while signed in.
"""

import logging
import sqlite3
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..models import (
    AuthState,
    Authenticated,
    Document,
    Guest,
    default_document,
)
from .debounce import DebouncedWriter
from .local_cache import GUEST_SLOT, USER_CACHE_SLOT, LocalCache
from .remote import RemoteClient, RemoteError

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5


@dataclass
class Notification:
    """A transient, non-blocking message for the user."""

    level: str  # "info", "warning", "error"
    message: str
    timestamp: float = field(default_factory=time.time)


NotificationCallback = Callable[[Notification], None]


class NotAuthenticatedError(RuntimeError):
    """An account operation was attempted while in guest mode."""


class SyncEngine:
    """Mediates between the in-memory Document, the local cache, and the
    remote document store.

    Lifecycle:
    - ``await start()`` resolves the authoritative data before use
    - ``commit()`` after every mutation of ``document``
    - ``await aclose()`` delivers any pending remote write
    """

    def __init__(
        self,
        cache: LocalCache,
        remote: RemoteClient,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        notification_history_size: int = 50,
    ):
        """Initialize the engine.

        Args:
            cache: Local slot storage.
            remote: Client for the remote store and auth provider.
            debounce_seconds: Quiet period before a remote write fires.
            notification_history_size: Notifications kept in memory.
        """
        self.cache = cache
        self.remote = remote
        self._document: Document = default_document()
        self._auth: AuthState = Guest()
        self._writer = DebouncedWriter(self._push_current, debounce_seconds)
        self._listeners: list[NotificationCallback] = []
        self.notifications: deque[Notification] = deque(
            maxlen=notification_history_size
        )
        self._last_remote_write: datetime | None = None
        self._last_error: str | None = None

    # ==================== State Access ====================

    @property
    def document(self) -> Document:
        return self._document

    @property
    def auth_state(self) -> AuthState:
        return self._auth

    def get_document(self) -> Document:
        return self._document

    def get_auth_state(self) -> AuthState:
        return self._auth

    @property
    def writer(self) -> DebouncedWriter:
        return self._writer

    def add_listener(self, callback: NotificationCallback) -> None:
        self._listeners.append(callback)

    def _notify(self, level: str, message: str) -> None:
        note = Notification(level=level, message=message)
        self.notifications.append(note)

        log_level = {
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }.get(level, logging.INFO)
        logger.log(log_level, message)

        for callback in self._listeners:
            try:
                callback(note)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")

    # ==================== Startup ====================

    async def start(self) -> None:
        """Resolve the authoritative Document and AuthState.

        Never raises on remote failure: falls back to the user cache, then
        to guest data.
        """
        self._auth = self.cache.load_auth_state()

        if isinstance(self._auth, Authenticated):
            await self._resolve_authenticated()
        else:
            self._load_guest()
            self.cache.save_auth_state(self._auth)

        logger.info(
            f"Sync engine started in {self._mode} mode "
            f"with {len(self._document.tasks)} tasks"
        )

    async def _resolve_authenticated(self) -> None:
        """Fetch the remote document, else use the cache, else go guest."""
        auth = self._auth
        try:
            self._document = await self.remote.fetch_document(auth.credential)
            self.cache.save_document(USER_CACHE_SLOT, self._document, auth.user_id)
            return
        except RemoteError as e:
            self._last_error = str(e)
            self._notify("warning", f"Could not load cloud data: {e}")

        cached = self.cache.load_document(USER_CACHE_SLOT, owner=auth.user_id)
        if cached is not None:
            logger.info("Using cached copy of cloud data")
            self._document = cached
            return

        logger.warning("No cached cloud data; falling back to guest mode")
        self._set_auth(Guest())
        self._load_guest()

    def _load_guest(self) -> None:
        self._document = self.cache.load_document(GUEST_SLOT) or default_document()

    def _set_auth(self, state: AuthState) -> None:
        self._auth = state
        self.cache.save_auth_state(state)

    @property
    def _mode(self) -> str:
        return "user" if self._auth.is_authenticated else "guest"

    # ==================== Commit Path ====================

    def commit(self) -> None:
        """Persist the current Document locally and schedule a remote write.

        Never raises to the caller.
        """
        auth = self._auth
        try:
            if isinstance(auth, Authenticated):
                self.cache.save_document(USER_CACHE_SLOT, self._document, auth.user_id)
            else:
                self.cache.save_document(GUEST_SLOT, self._document)
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            self._last_error = str(e)
            self._notify("error", f"Failed to save data locally: {e}")

        if not isinstance(auth, Authenticated):
            return

        try:
            self._writer.schedule()
        except RuntimeError:
            logger.warning("No running event loop; remote write skipped")

    def replace_document(self, document: Document) -> None:
        """Swap in a whole new Document (e.g. after import) and commit it."""
        self._document = document
        self.commit()

    async def _push_current(self) -> None:
        auth = self._auth
        if not isinstance(auth, Authenticated):
            return
        await self._push(auth, self._document)

    async def _push(self, auth: Authenticated, document: Document) -> bool:
        try:
            await self.remote.push_document(auth.credential, document)
        except RemoteError as e:
            self._last_error = str(e)
            self._notify("warning", f"Failed to save data to server: {e}")
            return False

        self._last_remote_write = datetime.now()
        return True

    async def flush(self) -> None:
        """Send any pending remote write now and wait for in-flight writes."""
        await self._writer.flush()

    async def aclose(self) -> None:
        await self.flush()
        logger.debug("Sync engine closed")

    # ==================== Session Transitions ====================

    async def login(self, email: str, password: str) -> None:
        """Sign in and adopt the account's cloud data.

        Guest edits made before login are not merged.

        Raises:
            RemoteError: If the credentials are rejected or the server is
                unreachable. State is left unchanged.
        """
        session = await self.remote.login(email, password)
        await self._writer.flush()

        self._set_auth(session)
        await self._resolve_authenticated()
        self._notify("info", f"Logged in as {session.display_name}")

    async def register(self, name: str, email: str, password: str) -> None:
        """Create an account and seed it with the current guest data.

        Raises:
            RemoteError: If registration is rejected. State is left unchanged.
        """
        session = await self.remote.register(name, email, password)
        await self._writer.flush()

        self._set_auth(session)
        if await self._push(session, self._document):
            # The account now holds this document; cache it so a failed
            # re-fetch falls back to it instead of to guest mode.
            self.cache.save_document(USER_CACHE_SLOT, self._document, session.user_id)
            await self._resolve_authenticated()
            self._notify("info", "Account created; local data uploaded")
            return

        # Seeding failed: keep the guest data and let the next commit retry.
        self.commit()

    def logout(self) -> None:
        """Return to guest mode and reload guest data."""
        auth = self._auth
        if isinstance(auth, Authenticated) and self._writer.cancel():
            try:
                self._writer.detach(self._push(auth, self._document.copy()))
            except RuntimeError:
                logger.warning("No running event loop; pending remote write dropped")

        self._become_guest()
        self._notify("info", "Logged out; back to guest mode")

    async def delete_account(self) -> None:
        """Delete the remote account and its data, then log out.

        Raises:
            NotAuthenticatedError: In guest mode.
            RemoteError: If the server rejects the deletion.
        """
        auth = self._require_auth()
        await self.remote.delete_account(auth.credential)

        self._writer.cancel()
        self._become_guest()
        self._notify("info", "Account deleted")

    async def update_display_name(self, name: str) -> None:
        auth = self._require_auth()
        self._set_auth(await self.remote.update_name(auth.credential, name))
        self._notify("info", "Display name updated")

    async def update_password(self, password: str) -> None:
        auth = self._require_auth()
        await self.remote.update_password(auth.credential, password)
        self._notify("info", "Password updated")

    def _become_guest(self) -> None:
        self._set_auth(Guest())
        self._load_guest()

    def _require_auth(self) -> Authenticated:
        if not isinstance(self._auth, Authenticated):
            raise NotAuthenticatedError("Not logged in")
        return self._auth

    # ==================== Status ====================

    def get_sync_status(self) -> dict[str, Any]:
        auth = self._auth
        return {
            "mode": self._mode,
            "user": auth.to_dict()["user"],
            "tasks": len(self._document.tasks),
            "pending_write": self._writer.pending,
            "in_flight_writes": self._writer.in_flight,
            "last_remote_write": (
                self._last_remote_write.isoformat()
                if self._last_remote_write
                else None
            ),
            "last_error": self._last_error,
        }
