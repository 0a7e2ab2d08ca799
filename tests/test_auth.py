"""Tests for password hashing and the session store."""

from datetime import timedelta

from kdp_studio.auth import SessionStore, hash_password, hash_token, verify_password


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("secret1")
        assert hashed != "secret1"
        assert verify_password("secret1", hashed)
        assert not verify_password("secret2", hashed)

    def test_non_bcrypt_hash_rejected(self):
        assert not verify_password("secret1", "plain-text")


class TestSessionStore:
    def test_create_and_lookup(self):
        store = SessionStore(ttl_minutes=5)
        token = store.create("user-1")
        assert store.lookup(token) == "user-1"
        assert store.lookup("forged") is None
        assert store.lookup(None) is None

    def test_only_hashes_stored(self):
        store = SessionStore()
        token = store.create("user-1")
        assert token not in store._sessions
        assert hash_token(token) in store._sessions

    def test_delete(self):
        store = SessionStore()
        token = store.create("user-1")
        assert store.delete(token) is True
        assert store.delete(token) is False
        assert store.lookup(token) is None

    def test_expired_session_dropped(self):
        store = SessionStore(ttl_minutes=5)
        token = store.create("user-1")
        key = hash_token(token)
        user_id, expires_at = store._sessions[key]
        store._sessions[key] = (user_id, expires_at - timedelta(minutes=10))

        assert store.lookup(token) is None
        assert len(store) == 0

    def test_create_purges_expired(self):
        store = SessionStore(ttl_minutes=5)
        stale = store.create("old")
        key = hash_token(stale)
        store._sessions[key] = ("old", store._sessions[key][1] - timedelta(minutes=10))
        store.create("new")
        assert len(store) == 1
