"""Tests for the on-device slot cache."""

import pytest

from timekeep.models import Authenticated, Guest, Task, default_document
from timekeep.sync import AUTH_SLOT, GUEST_SLOT, USER_CACHE_SLOT, LocalCache


@pytest.fixture
def cache():
    """Create an in-memory LocalCache."""
    cache = LocalCache(":memory:")
    cache.connect()
    yield cache
    cache.close()


@pytest.fixture
def document():
    doc = default_document()
    doc.tasks.append(Task(id="t1", title="Write report", priority="high"))
    return doc


class TestLocalCacheSchema:
    """Tests for schema initialization."""

    def test_connect_creates_table(self):
        """Test that connect() creates the slots table."""
        cache = LocalCache(":memory:")
        cache.connect()

        tables = cache._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()

        assert "slots" in [t[0] for t in tables]
        cache.close()

    def test_file_backed_cache_persists(self, tmp_path, document):
        """Test data survives closing and reopening the file."""
        path = tmp_path / "nested" / "cache.db"
        cache = LocalCache(path)
        cache.save_document(GUEST_SLOT, document)
        cache.close()

        reopened = LocalCache(path)
        loaded = reopened.load_document(GUEST_SLOT)
        reopened.close()

        assert loaded == document


class TestDocumentSlots:
    """Tests for document slots."""

    def test_empty_slot_is_absent(self, cache):
        """Test loading an empty slot returns None."""
        assert cache.load_document(GUEST_SLOT) is None

    def test_slots_are_independent(self, cache, document):
        """Test guest and user-cache slots do not share content."""
        cache.save_document(GUEST_SLOT, document)

        assert cache.load_document(USER_CACHE_SLOT) is None
        assert cache.load_document(GUEST_SLOT).tasks[0].id == "t1"

    def test_save_is_byte_stable(self, cache, document):
        """Test saving the same document twice writes identical bytes."""
        first = cache.save_document(GUEST_SLOT, document)
        stored_first = cache.read_slot(GUEST_SLOT)[0]
        second = cache.save_document(GUEST_SLOT, document)

        assert first == second
        assert cache.read_slot(GUEST_SLOT)[0] == stored_first

    def test_unparsable_slot_is_absent(self, cache):
        """Test corrupt JSON is treated as no data."""
        cache.write_slot(GUEST_SLOT, "{not json")

        assert cache.load_document(GUEST_SLOT) is None

    def test_malformed_document_is_absent(self, cache):
        """Test valid JSON with a broken shape is treated as no data."""
        cache.write_slot(GUEST_SLOT, '{"tasks": [{"title": "missing id"}]}')

        assert cache.load_document(GUEST_SLOT) is None

    def test_partial_document_is_merged(self, cache):
        """Test stored fields are shallow-merged onto defaults."""
        cache.write_slot(GUEST_SLOT, '{"tasks": []}')

        doc = cache.load_document(GUEST_SLOT)

        assert doc.settings.focus_minutes == 25

    def test_owner_mismatch_is_absent(self, cache, document):
        """Test a user cache written for someone else is not served."""
        cache.save_document(USER_CACHE_SLOT, document, owner="u_alice")

        assert cache.load_document(USER_CACHE_SLOT, owner="u_bob") is None
        assert cache.load_document(USER_CACHE_SLOT, owner="u_alice") == document

    def test_clear_slot(self, cache, document):
        """Test clearing a slot empties it."""
        cache.save_document(GUEST_SLOT, document)

        assert cache.clear_slot(GUEST_SLOT) is True
        assert cache.clear_slot(GUEST_SLOT) is False
        assert cache.load_document(GUEST_SLOT) is None


class TestAuthSlot:
    """Tests for the persisted auth state."""

    def test_absent_auth_is_guest(self, cache):
        """Test no stored auth state means guest."""
        assert cache.load_auth_state() == Guest()

    def test_auth_round_trip(self, cache):
        """Test an authenticated state is restored."""
        state = Authenticated("u_1", "Ada", "ada@example.com", "tok")
        cache.save_auth_state(state)

        assert cache.load_auth_state() == state

    def test_corrupt_auth_is_guest(self, cache):
        """Test unreadable auth state falls back to guest."""
        cache.write_slot(AUTH_SLOT, "garbage")

        assert cache.load_auth_state() == Guest()


class TestStats:
    """Tests for cache statistics."""

    def test_get_stats(self, cache, document):
        """Test stats list populated slots."""
        cache.save_document(USER_CACHE_SLOT, document, owner="u_1")
        cache.save_auth_state(Guest())

        stats = cache.get_stats()

        assert set(stats) == {USER_CACHE_SLOT, AUTH_SLOT}
        assert stats[USER_CACHE_SLOT]["owner"] == "u_1"
        assert stats[USER_CACHE_SLOT]["bytes"] > 0
