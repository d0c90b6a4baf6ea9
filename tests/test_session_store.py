"""Tests for session stores, the record codec and the session context."""

import json
from datetime import timedelta

import pytest

from pocketid_dashboard.auth.errors import SessionIntegrityError
from pocketid_dashboard.auth.models import SessionData, SessionUser, TokenSet, utcnow
from pocketid_dashboard.auth.session import (
    DatabaseSessionStore,
    InMemorySessionStore,
    SessionContext,
    SessionManager,
    has_valid_user,
)


def logged_in_data(**overrides) -> SessionData:
    values = {
        "user": SessionUser(id="user-1", name="Ada", email="ada@example.test", groups=["admin"]),
        "token_set": TokenSet(access_token="at", id_token="it", refresh_token="rt"),
        "token_expiry": utcnow() + timedelta(hours=1),
    }
    values.update(overrides)
    return SessionData(**values)


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def manager(store, settings):
    return SessionManager(store, settings)


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_set_get_destroy(self, store):
        await store.set("sid", "{}", utcnow() + timedelta(minutes=5))
        assert await store.get("sid") == "{}"

        await store.destroy("sid")
        assert await store.get("sid") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_dropped_on_read(self, store):
        await store.set("sid", "{}", utcnow() - timedelta(seconds=1))

        assert await store.get("sid") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, store):
        await store.set("old", "{}", utcnow() - timedelta(minutes=1))
        await store.set("new", "{}", utcnow() + timedelta(minutes=1))

        assert await store.sweep_expired() == 1
        assert await store.get("new") == "{}"


class TestDatabaseStore:
    @pytest.mark.asyncio
    async def test_upsert_and_sweep(self, tmp_path):
        store = DatabaseSessionStore(f"sqlite+aiosqlite:///{tmp_path / 'data' / 'sessions.db'}")
        await store.initialize()
        try:
            await store.set("sid", '{"a": 1}', utcnow() + timedelta(minutes=5))
            await store.set("sid", '{"a": 2}', utcnow() + timedelta(minutes=5))
            assert await store.get("sid") == '{"a": 2}'

            await store.set("stale", "{}", utcnow() - timedelta(minutes=5))
            assert await store.sweep_expired() == 1
            assert await store.get("stale") is None
            assert await store.get("sid") == '{"a": 2}'

            await store.destroy("sid")
            assert await store.get("sid") is None
        finally:
            await store.close()


class TestSessionCodec:
    @pytest.mark.asyncio
    async def test_token_set_is_encrypted_at_rest(self, manager, store):
        await manager.save("sid", logged_in_data())

        record = json.loads(await store.get("sid"))
        assert record["tokenSet"]["encrypted"] is True
        assert "access_token" not in record["tokenSet"]
        assert record["user"]["isAdmin"] is False

        loaded = await manager.load("sid")
        assert loaded.token_set == TokenSet(access_token="at", id_token="it", refresh_token="rt")

    @pytest.mark.asyncio
    async def test_pkce_only_session_is_stored_plain(self, manager, store):
        await manager.save("sid", SessionData(code_verifier="v", state="s"))

        record = json.loads(await store.get("sid"))
        assert record == {"codeVerifier": "v", "state": "s"}

    @pytest.mark.asyncio
    async def test_undecryptable_token_set_is_an_integrity_error(self, manager, store, settings):
        other = SessionManager(store, settings.model_copy(update={"session_secret": "z" * 40}))
        await other.save("sid", logged_in_data())

        with pytest.raises(SessionIntegrityError):
            await manager.load("sid")

    @pytest.mark.asyncio
    async def test_non_json_record_is_an_integrity_error(self, manager, store):
        await store.set("sid", "not json", utcnow() + timedelta(minutes=5))

        with pytest.raises(SessionIntegrityError):
            await manager.load_record("sid")

    def test_user_without_id_is_not_valid(self):
        assert has_valid_user({"user": {"id": "u"}})
        assert not has_valid_user({"user": {"name": "no id"}})
        assert not has_valid_user({"user": {"id": ""}})
        assert not has_valid_user({})


class TestCookieSigning:
    def test_sign_unsign(self, manager):
        assert manager.unsign(manager.sign("sid-123")) == "sid-123"

    def test_tampered_cookie_is_rejected(self, manager):
        signed = manager.sign("sid-123")
        assert manager.unsign(signed[:-2] + "xx") is None
        assert manager.unsign("garbage") is None


class TestSessionContext:
    @pytest.mark.asyncio
    async def test_empty_session_is_never_persisted(self, manager, store):
        context = SessionContext(manager)
        await context.save()

        assert context.id is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_regenerate_issues_new_id_and_copies_fields(self, manager, store):
        context = SessionContext(manager)
        context.data.code_verifier = "verifier"
        context.data.state = "state"
        await context.save()
        old_id = context.id

        await context.regenerate()

        assert context.id != old_id
        assert context.issued
        assert await store.get(old_id) is None
        reloaded = await manager.load(context.id)
        assert reloaded.code_verifier == "verifier"
        assert reloaded.state == "state"

    @pytest.mark.asyncio
    async def test_destroy_removes_record(self, manager, store):
        context = SessionContext(manager)
        context.data.state = "s"
        await context.save()
        sid = context.id

        await context.destroy()

        assert context.destroyed
        assert await store.get(sid) is None

    @pytest.mark.asyncio
    async def test_update_reports_missing_session(self, manager):
        assert not await manager.update("missing", lambda data: None)
