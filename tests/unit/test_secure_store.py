"""Tests for SecureStore (owner-only JSON credential file)."""
import stat

import pytest

from eventfeed.remote.errors import FileIOError
from eventfeed.session.secure_store import TOKEN_KEY, USER_ID_KEY, SecureStore


@pytest.fixture(name="store")
def store_fixture(tmp_path) -> SecureStore:
    return SecureStore(tmp_path / "secure")


class TestSecureStore:
    def test_missing_key_is_none(self, store):
        assert store.get(TOKEN_KEY) is None

    def test_set_get_delete(self, store):
        store.set(TOKEN_KEY, "jwt")
        store.set(USER_ID_KEY, "u1")
        assert store.get(TOKEN_KEY) == "jwt"

        store.delete(TOKEN_KEY)
        assert store.get(TOKEN_KEY) is None
        assert store.get(USER_ID_KEY) == "u1"

    def test_delete_absent_key(self, store):
        store.delete(TOKEN_KEY)  # must not raise

    def test_persists_across_instances(self, store, tmp_path):
        store.set(TOKEN_KEY, "jwt")
        assert SecureStore(tmp_path / "secure").get(TOKEN_KEY) == "jwt"

    def test_owner_only_permissions(self, store):
        store.set(TOKEN_KEY, "jwt")
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
        assert stat.S_IMODE(store.path.parent.stat().st_mode) == 0o700

    def test_corrupted_file_reads_as_empty(self, store):
        store.set(TOKEN_KEY, "jwt")
        store.path.write_text("{not json")
        assert store.get(TOKEN_KEY) is None

    def test_clear(self, store):
        store.set(TOKEN_KEY, "jwt")
        store.clear()
        assert not store.path.exists()
        store.clear()  # already gone

    def test_write_failure_is_file_io_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        with pytest.raises(FileIOError):
            SecureStore(blocker / "secure").set(TOKEN_KEY, "jwt")
