"""
SessionContext: who is logged in, and with which token.

Two states, LOGGED_OUT and LOGGED_IN(user):

  LOGGED_OUT → LOGGED_IN   login() / set_logged_in(): token and user id go to
                           the secure store, the user row to the cache.
  LOGGED_IN  → LOGGED_OUT  logout(), or handle_auth_rejected() which the API
                           client fires on any 401.

restore() runs at startup. A token without a matching cached user row is
treated as corrupted state and forces LOGGED_OUT (fail-safe).
"""
import logging
from enum import Enum
from typing import Optional

from sqlmodel import Session

from eventfeed.models.user import User
from eventfeed.observable import Observable
from eventfeed.session.secure_store import TOKEN_KEY, USER_ID_KEY, SecureStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


class SessionContext(Observable):
    """Owns the auth token and the current user. Listeners receive the SessionContext."""

    def __init__(self, store: SecureStore, engine):
        """
        Args:
            store: SecureStore holding token and user id.
            engine: SQLAlchemy engine of the local cache (user rows).
        """
        super().__init__()
        self._store = store
        self._engine = engine
        self._state = SessionState.LOGGED_OUT
        self._token: Optional[str] = None
        self._user: Optional[User] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def is_logged_in(self) -> bool:
        return self._state is SessionState.LOGGED_IN

    # ── Transitions ───────────────────────────────────────────────────────────

    def restore(self) -> bool:
        """Restore LOGGED_IN from the secure store and the cached user row."""
        token = self._store.get(TOKEN_KEY)
        if token is None:
            logger.info("No stored token, starting logged out")
            self._set_logged_out()
            return False

        user_id = self._store.get(USER_ID_KEY)
        user = None
        if user_id is not None:
            with Session(self._engine, expire_on_commit=False) as s:
                user = s.get(User, user_id)

        if user is None:
            logger.warning("Stored token has no cached user (user_id=%s), forcing logout", user_id)
            self._clear_credentials()
            self._set_logged_out()
            return False

        self._token = token
        self._user = user
        self._state = SessionState.LOGGED_IN
        logger.info("Session restored for user_id=%s", user.id)
        self.notify(self)
        return True

    async def login(self, client, username: str, password: str) -> User:
        """
        Authenticate against the API and enter LOGGED_IN.

        Raises:
            AuthenticationRejectedError: bad credentials.
            EventFeedError: any other remote failure.
        """
        logger.info("Login attempt started - username: %s", username)
        response = await client.login(username, password)
        user = response.user.to_user()
        self.set_logged_in(response.token, user)
        logger.info("Login successful - username: %s, user_id: %s", username, user.id)
        return user

    def set_logged_in(self, token: str, user: User) -> None:
        """Persist token and user, then enter LOGGED_IN."""
        self._store.set(TOKEN_KEY, token)
        self._store.set(USER_ID_KEY, user.id)
        self._user = self._save_user(user)
        self._token = token
        self._state = SessionState.LOGGED_IN
        self.notify(self)

    def logout(self) -> None:
        """Clear credentials and enter LOGGED_OUT. No-op when already logged out."""
        if not self.is_logged_in:
            return
        logger.info("Logging out user_id=%s", self._user.id if self._user else None)
        self._clear_credentials()
        self._set_logged_out()

    def handle_auth_rejected(self) -> None:
        """Listener for EventApiClient.on_auth_rejected: any 401 ends the session."""
        if self.is_logged_in:
            logger.warning("Authentication rejected by server, logging out")
        self.logout()

    async def refresh_profile(self, client) -> Optional[User]:
        """Fetch the current user's profile and update the cached row."""
        if not self.is_logged_in or self._user is None:
            return None
        profile = await client.get_user_profile(self._user.id)
        self._user = self._save_user(profile.to_user())
        self.notify(self)
        return self._user

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _save_user(self, user: User) -> User:
        with Session(self._engine, expire_on_commit=False) as s:
            merged = s.merge(user)
            s.commit()
            s.refresh(merged)
            return merged

    def _clear_credentials(self) -> None:
        self._store.delete(TOKEN_KEY)
        self._store.delete(USER_ID_KEY)

    def _set_logged_out(self) -> None:
        changed = self._state is not SessionState.LOGGED_OUT or self._token is not None
        self._token = None
        self._user = None
        self._state = SessionState.LOGGED_OUT
        if changed:
            self.notify(self)
