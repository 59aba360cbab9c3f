"""Dual-mode data synchronization for timekeep clients.

Keeps the user's Document in a local cache slot at all times and, while
signed in, mirrors it to the remote document store with debounced
whole-document writes.
"""

from .debounce import DebouncedWriter
from .engine import NotAuthenticatedError, Notification, SyncEngine
from .local_cache import AUTH_SLOT, GUEST_SLOT, USER_CACHE_SLOT, LocalCache
from .remote import AuthError, OfflineError, RemoteClient, RemoteError

__all__ = [
    "AUTH_SLOT",
    "AuthError",
    "DebouncedWriter",
    "GUEST_SLOT",
    "LocalCache",
    "NotAuthenticatedError",
    "Notification",
    "OfflineError",
    "RemoteClient",
    "RemoteError",
    "SyncEngine",
    "USER_CACHE_SLOT",
]
