"""
Tests for both pending confirmation store backends.
"""

import json
import os
from datetime import timedelta

import pytest

from fansite.core.database import utcnow
from fansite.core.double_optin import cleanup_expired_pending, generate_confirmation_token
from fansite.core.pending_store import (
    DatabasePendingStore,
    FilesystemPendingStore,
    PendingAlreadyExists,
    PendingRecord,
)

TTL_HOURS = 24


def make_record(email="fan@example.com", age_hours=0, token=None):
    return PendingRecord(
        email=email,
        token=token or generate_confirmation_token(),
        created_at=utcnow() - timedelta(hours=age_hours),
        source="footer",
        tags=["news"],
    )


@pytest.fixture(params=["database", "filesystem"])
def store(request, tmp_path):
    if request.param == "database":
        db_session = request.getfixturevalue("db_session")
        return DatabasePendingStore(db_session)
    return FilesystemPendingStore(str(tmp_path / "pending"))


class TestPendingStore:
    """Behavior shared by every backend"""

    def test_create_and_get_live(self, store):
        record = store.create(make_record())

        found = store.get_live(record.token, TTL_HOURS)

        assert found is not None
        assert found.email == "fan@example.com"
        assert found.source == "footer"
        assert found.tags == ["news"]

    def test_find_live_by_email(self, store):
        record = store.create(make_record())
        assert store.find_live_by_email("fan@example.com", TTL_HOURS).token == record.token
        assert store.find_live_by_email("other@example.com", TTL_HOURS) is None

    def test_one_live_record_per_email(self, store):
        store.create(make_record())
        with pytest.raises(PendingAlreadyExists):
            store.create(make_record())

    def test_expired_record_is_absent_and_removed(self, store):
        record = store.create(make_record(age_hours=25))

        assert store.get_live(record.token, TTL_HOURS) is None
        # Removed lazily, so a fresh token can be issued for the same email
        assert store.find_live_by_email("fan@example.com", TTL_HOURS) is None
        store.create(make_record())

    def test_ttl_is_configurable_per_call(self, store):
        record = store.create(make_record(age_hours=2))
        assert store.get_live(record.token, 48) is not None
        assert store.get_live(record.token, 1) is None

    def test_consume_succeeds_once(self, store):
        record = store.create(make_record())

        assert store.consume(record.token) is True
        assert store.consume(record.token) is False
        assert store.get_live(record.token, TTL_HOURS) is None

    def test_delete_is_silent_for_unknown_token(self, store):
        store.delete(generate_confirmation_token())

    def test_count_and_purge(self, store):
        store.create(make_record("a@example.com"))
        store.create(make_record("b@example.com", age_hours=30))

        assert store.count_live(TTL_HOURS) == 1
        assert cleanup_expired_pending(store, TTL_HOURS) == 1
        assert store.count_live(TTL_HOURS) == 1


class TestFilesystemPendingStore:
    """File layout specifics"""

    def test_record_file_layout(self, tmp_path):
        store = FilesystemPendingStore(str(tmp_path))
        record = store.create(make_record())

        with open(os.path.join(str(tmp_path), f"{record.token}.json")) as f:
            payload = json.load(f)

        assert payload["email"] == "fan@example.com"
        assert payload["token"] == record.token
        assert payload["createdAt"].endswith("Z")

    def test_restore_after_consume(self, tmp_path):
        store = FilesystemPendingStore(str(tmp_path))
        record = store.create(make_record())
        store.consume(record.token)

        store.restore(record)

        assert store.get_live(record.token, TTL_HOURS) is not None

    def test_create_uses_ttl_of_the_call(self, tmp_path):
        store = FilesystemPendingStore(str(tmp_path), ttl_hours=24)
        store.create(make_record(age_hours=2))

        # Live under the store default, expired under the one-hour TTL passed in
        record = store.create(make_record(), ttl_hours=1)

        assert store.get_live(record.token, 1) is not None
        assert store.count_live(24) == 1

    def test_rejects_path_like_tokens(self, tmp_path):
        store = FilesystemPendingStore(str(tmp_path))
        assert store.get_live("../../etc/passwd", TTL_HOURS) is None
        assert store.consume("../secret") is False

    def test_unreadable_file_is_discarded(self, tmp_path):
        store = FilesystemPendingStore(str(tmp_path))
        token = generate_confirmation_token()
        path = tmp_path / f"{token}.json"
        path.write_text("{not json")

        assert store.get_live(token, TTL_HOURS) is None
        assert not path.exists()


class TestDatabasePendingStore:
    """Database backend specifics"""

    def test_consume_is_rolled_back_with_the_session(self, db_session):
        store = DatabasePendingStore(db_session)
        record = store.create(make_record())

        assert store.consume(record.token) is True
        db_session.rollback()

        assert store.get_live(record.token, TTL_HOURS) is not None
