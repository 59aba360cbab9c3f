"""SQLite storage for user accounts and their documents."""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA = """
-- Accounts
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- One whole document per user, replaced on every write
CREATE TABLE IF NOT EXISTS documents (
    user_id TEXT PRIMARY KEY,
    body TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class DuplicateEmailError(Exception):
    """An account with this email already exists."""


@dataclass
class User:
    id: str
    name: str
    email: str
    password_hash: str

    def public(self) -> dict[str, str]:
        """The user as returned to clients (no password hash)."""
        return {"id": self.id, "name": self.name, "email": self.email}


class _SQLiteStore:
    """Shared connection handling for the server stores."""

    def __init__(self, db_path: str | Path):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if str(self.db_path) == ":memory:":
            target = ":memory:"
        else:
            path = Path(self.db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)

        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.info(f"{type(self).__name__} connected to {target}")

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn


class UserStore(_SQLiteStore):
    """Account records keyed by user id, unique by email."""

    def create(self, name: str, email: str, password_hash: str) -> User:
        """Create an account.

        Raises:
            DuplicateEmailError: If the email is already registered.
        """
        conn = self._ensure_connected()
        user = User(
            id=f"u_{uuid.uuid4().hex[:16]}",
            name=name,
            email=email,
            password_hash=password_hash,
        )
        try:
            conn.execute(
                """
                INSERT INTO users (id, name, email, password_hash, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user.id, name, email, password_hash, datetime.now().isoformat()),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise DuplicateEmailError(email) from e

        logger.info(f"Created user {user.id}")
        return user

    def _fetch(self, column: str, value: str) -> User | None:
        conn = self._ensure_connected()
        row = conn.execute(
            f"SELECT id, name, email, password_hash FROM users WHERE {column} = ?",
            (value,),
        ).fetchone()
        if row is None:
            return None
        return User(**dict(row))

    def get(self, user_id: str) -> User | None:
        return self._fetch("id", user_id)

    def get_by_email(self, email: str) -> User | None:
        return self._fetch("email", email)

    def update_name(self, user_id: str, name: str) -> User | None:
        conn = self._ensure_connected()
        conn.execute("UPDATE users SET name = ? WHERE id = ?", (name, user_id))
        conn.commit()
        return self.get(user_id)

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        conn = self._ensure_connected()
        cursor = conn.execute(
            "UPDATE users SET password_hash = ? WHERE id = ?",
            (password_hash, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def delete(self, user_id: str) -> bool:
        conn = self._ensure_connected()
        cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        conn.commit()
        return cursor.rowcount > 0

    def count(self) -> int:
        conn = self._ensure_connected()
        return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]


class DocumentStore(_SQLiteStore):
    """Opaque key-value store: user id -> whole JSON document."""

    def get(self, user_id: str) -> Any | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT body FROM documents WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["body"])

    def put(self, user_id: str, document: Any) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO documents (user_id, body, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                body = excluded.body,
                updated_at = excluded.updated_at
            """,
            (user_id, json.dumps(document), datetime.now().isoformat()),
        )
        conn.commit()

    def delete(self, user_id: str) -> bool:
        conn = self._ensure_connected()
        cursor = conn.execute("DELETE FROM documents WHERE user_id = ?", (user_id,))
        conn.commit()
        return cursor.rowcount > 0

    def count(self) -> int:
        conn = self._ensure_connected()
        return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
