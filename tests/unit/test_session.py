"""Tests for SessionContext: login, restore, logout and forced logout on 401."""
from unittest.mock import AsyncMock

import pytest
from sqlmodel import Session

from eventfeed.models.user import User
from eventfeed.remote.errors import AuthenticationRejectedError
from eventfeed.remote.schemas import ApiUser, LoginResponse
from eventfeed.session.context import SessionContext, SessionState
from eventfeed.session.secure_store import TOKEN_KEY, USER_ID_KEY, SecureStore

ADMIN = ApiUser(
    id="u1",
    username="admin",
    email="admin@ioteventfeed.com",
    name="Admin User",
    role="administrator",
)


@pytest.fixture(name="store")
def store_fixture(tmp_path) -> SecureStore:
    return SecureStore(tmp_path / "secure")


@pytest.fixture(name="session")
def session_fixture(store, engine) -> SessionContext:
    return SessionContext(store, engine)


def make_client(login_response=None, login_error=None):
    client = AsyncMock()
    if login_error is not None:
        client.login = AsyncMock(side_effect=login_error)
    else:
        client.login = AsyncMock(return_value=login_response or LoginResponse(token="jwt", user=ADMIN))
    return client


class TestLogin:
    async def test_login_persists_token_and_user(self, session, store, engine):
        user = await session.login(make_client(), "admin", "admin123")

        assert session.state is SessionState.LOGGED_IN
        assert session.is_logged_in
        assert session.token == "jwt"
        assert user.username == "admin"
        assert store.get(TOKEN_KEY) == "jwt"
        assert store.get(USER_ID_KEY) == "u1"
        with Session(engine) as s:
            assert s.get(User, "u1").name == "Admin User"

    async def test_login_rejected_stays_logged_out(self, session, store):
        client = make_client(login_error=AuthenticationRejectedError("Username or password is incorrect"))

        with pytest.raises(AuthenticationRejectedError):
            await session.login(client, "admin", "wrong")

        assert session.state is SessionState.LOGGED_OUT
        assert store.get(TOKEN_KEY) is None

    async def test_listeners_notified(self, session):
        states = []
        session.subscribe(lambda ctx: states.append(ctx.state))

        await session.login(make_client(), "admin", "admin123")
        session.logout()

        assert states == [SessionState.LOGGED_IN, SessionState.LOGGED_OUT]


class TestRestore:
    async def test_restores_previous_session(self, session, store, engine):
        await session.login(make_client(), "admin", "admin123")

        restored = SessionContext(store, engine)
        assert restored.restore() is True
        assert restored.token == "jwt"
        assert restored.user.id == "u1"

    def test_no_token_is_logged_out(self, session):
        assert session.restore() is False
        assert session.state is SessionState.LOGGED_OUT

    def test_token_without_cached_user_forces_logout(self, session, store):
        store.set(TOKEN_KEY, "jwt")
        store.set(USER_ID_KEY, "missing-user")

        assert session.restore() is False
        assert session.state is SessionState.LOGGED_OUT
        assert store.get(TOKEN_KEY) is None
        assert store.get(USER_ID_KEY) is None

    def test_token_without_user_id_forces_logout(self, session, store):
        store.set(TOKEN_KEY, "jwt")

        assert session.restore() is False
        assert store.get(TOKEN_KEY) is None


class TestLogout:
    async def test_logout_clears_credentials_keeps_user_row(self, session, store, engine):
        await session.login(make_client(), "admin", "admin123")

        session.logout()

        assert session.state is SessionState.LOGGED_OUT
        assert session.token is None
        assert session.user is None
        assert store.get(TOKEN_KEY) is None
        with Session(engine) as s:
            assert s.get(User, "u1") is not None

    def test_logout_when_logged_out_is_no_op(self, session):
        calls = []
        session.subscribe(calls.append)
        session.logout()
        assert calls == []

    async def test_auth_rejected_forces_logout(self, session, store):
        await session.login(make_client(), "admin", "admin123")

        session.handle_auth_rejected()

        assert session.state is SessionState.LOGGED_OUT
        assert store.get(TOKEN_KEY) is None


class TestRefreshProfile:
    async def test_updates_cached_user(self, session, engine):
        await session.login(make_client(), "admin", "admin123")
        client = AsyncMock()
        client.get_user_profile = AsyncMock(return_value=ADMIN.model_copy(update={"name": "Site Admin"}))

        user = await session.refresh_profile(client)

        client.get_user_profile.assert_awaited_once_with("u1")
        assert user.name == "Site Admin"
        with Session(engine) as s:
            assert s.get(User, "u1").name == "Site Admin"

    async def test_logged_out_returns_none(self, session):
        client = AsyncMock()
        assert await session.refresh_profile(client) is None
        client.get_user_profile.assert_not_called()
