"""On-device SQLite slots for guest data, the user cache, and the auth state."""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..models import (
    AuthState,
    Document,
    DocumentFormatError,
    Guest,
    merge_onto_default,
    parse_auth_state,
)

logger = logging.getLogger(__name__)

GUEST_SLOT = "guest"
USER_CACHE_SLOT = "user_cache"
AUTH_SLOT = "auth"

# One row per slot; owner is the user id a cached document belongs to
SCHEMA = """
CREATE TABLE IF NOT EXISTS slots (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    owner TEXT,
    updated_at TEXT NOT NULL
);
"""


def serialize_document(document: Document) -> str:
    """Serialize a Document deterministically for slot storage."""
    return json.dumps(document.to_dict(), ensure_ascii=False)


class LocalCache:
    """Persisted key -> document mapping with independent slots.

    Unparsable slot content is treated as absent rather than an error.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the cache.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser() if str(db_path) != ":memory:" else None
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database and create the schema."""
        if self._conn is not None:
            return

        if self.db_path is None:
            target = ":memory:"
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(self.db_path)

        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"LocalCache connected to {target}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalCache connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    # ==================== Raw Slots ====================

    def read_slot(self, name: str) -> tuple[str, str | None] | None:
        """Return ``(value, owner)`` for a slot, or None when empty."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value, owner FROM slots WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            return None
        return row["value"], row["owner"]

    def write_slot(self, name: str, value: str, owner: str | None = None) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO slots (name, value, owner, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                value = excluded.value,
                owner = excluded.owner,
                updated_at = excluded.updated_at
            """,
            (name, value, owner, datetime.now().isoformat()),
        )
        conn.commit()

    def clear_slot(self, name: str) -> bool:
        conn = self._ensure_connected()
        cursor = conn.execute("DELETE FROM slots WHERE name = ?", (name,))
        conn.commit()
        return cursor.rowcount > 0

    # ==================== Documents ====================

    def load_document(self, slot: str, owner: str | None = None) -> Document | None:
        """Load a Document from a slot.

        Args:
            slot: Slot name (GUEST_SLOT or USER_CACHE_SLOT).
            owner: When given, a document cached for a different user is
                treated as absent.

        Returns:
            The stored Document merged onto defaults, or None if the slot is
            empty, unreadable, or belongs to someone else.
        """
        stored = self.read_slot(slot)
        if stored is None:
            return None

        raw, stored_owner = stored
        if owner is not None and stored_owner != owner:
            logger.info(f"Ignoring {slot} slot cached for another user")
            return None

        try:
            return merge_onto_default(json.loads(raw))
        except (json.JSONDecodeError, DocumentFormatError) as e:
            logger.warning(f"Discarding unreadable {slot} slot: {e}")
            return None

    def save_document(
        self,
        slot: str,
        document: Document,
        owner: str | None = None,
    ) -> str:
        """Persist the whole Document to a slot.

        Returns:
            The serialized text that was written.
        """
        text = serialize_document(document)
        self.write_slot(slot, text, owner)
        logger.debug(f"Saved {len(document.tasks)} tasks to {slot} slot")
        return text

    # ==================== Auth State ====================

    def load_auth_state(self) -> AuthState:
        """Load the persisted auth state; absent or unreadable means Guest."""
        stored = self.read_slot(AUTH_SLOT)
        if stored is None:
            return Guest()

        try:
            data = json.loads(stored[0])
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable auth slot: {e}")
            return Guest()

        return parse_auth_state(data)

    def save_auth_state(self, state: AuthState) -> None:
        self.write_slot(AUTH_SLOT, json.dumps(state.to_dict()))

    def get_stats(self) -> dict[str, Any]:
        """Summarize which slots hold data."""
        conn = self._ensure_connected()
        rows = conn.execute(
            "SELECT name, owner, length(value) AS size, updated_at FROM slots"
        ).fetchall()
        return {
            row["name"]: {
                "owner": row["owner"],
                "bytes": row["size"],
                "updated_at": row["updated_at"],
            }
            for row in rows
        }
