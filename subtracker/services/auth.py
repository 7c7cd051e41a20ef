"""
Session management: register, login (with offline fallback against the
cached user), logout and session restore at startup.
"""
import logging
import time
from typing import Optional

from ..core.exceptions import AuthenticationError, NetworkError, RemoteError, SubTrackerError
from ..schemas.user import User, normalize_user
from .api_client import ApiClient
from .local_store import LocalStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth.token"
CURRENT_USER_KEY = "auth.current_user_id"
OFFLINE_TOKEN_PREFIX = "offline-token-"


class AuthService:
    def __init__(self, api: ApiClient, store: LocalStore):
        self.api = api
        self.store = store
        self._token: Optional[str] = None
        self._current_user: Optional[User] = None

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def current_user(self) -> Optional[User]:
        return self._current_user

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token) and self._current_user is not None

    @property
    def is_offline_session(self) -> bool:
        return bool(self._token) and self._token.startswith(OFFLINE_TOKEN_PREFIX)

    def restore(self) -> Optional[User]:
        """Reload the persisted session, if any."""
        token = self.store.get_setting(TOKEN_KEY)
        user_id = self.store.get_setting(CURRENT_USER_KEY)
        if not token or not user_id:
            return None
        user = self.store.get_user(user_id)
        if user is None:
            logger.warning("Stored session references unknown user %s, clearing it", user_id)
            self.logout()
            return None
        self._activate(token, user)
        logger.info("Session restored for %s", user.email)
        return user

    def login(self, email: str, password: str) -> User:
        try:
            response = self.api.login(email, password)
        except NetworkError as exc:
            logger.info("Network error during login, attempting offline login: %s", exc)
            user = self.store.get_user_by_email(email)
            if user is None:
                raise AuthenticationError("Authentication failed", status_code=None) from exc
            # Password is not checked offline; the cached record is the only proof available
            self._persist_session(f"{OFFLINE_TOKEN_PREFIX}{int(time.time() * 1000)}", user)
            return user
        except RemoteError as exc:
            logger.warning("Login rejected for %s: %s", email, exc.message)
            raise AuthenticationError("Authentication failed", status_code=exc.status_code) from exc
        return self._handle_auth_response(response)

    def register(self, email: str, password: str, name: str) -> User:
        try:
            response = self.api.register(email, password, name)
        except NetworkError as exc:
            raise NetworkError("Cannot connect to the server. Please check your internet connection.") from exc
        return self._handle_auth_response(response)

    def logout(self) -> None:
        """Forget the session; the cached user record is kept for offline login."""
        self._token = None
        self._current_user = None
        self.api.set_token(None)
        self.store.delete_setting(TOKEN_KEY)
        self.store.delete_setting(CURRENT_USER_KEY)
        logger.info("User logged out")

    def _handle_auth_response(self, response) -> User:
        if not isinstance(response, dict) or "token" not in response or "user" not in response:
            raise SubTrackerError("Malformed authentication response", code="AUTH_002")
        user = normalize_user(response["user"])
        self._persist_session(response["token"], user)
        try:
            self.store.upsert_user(user)
        except SubTrackerError as exc:
            # Authentication still succeeded; only offline login is affected
            logger.warning("Could not cache user %s: %s", user.email, exc)
        return user

    def _persist_session(self, token: str, user: User) -> None:
        self.store.set_setting(TOKEN_KEY, token)
        self.store.set_setting(CURRENT_USER_KEY, user.id)
        self._activate(token, user)

    def _activate(self, token: str, user: User) -> None:
        self._token = token
        self._current_user = user
        # Offline tokens are never valid on the server
        self.api.set_token(None if token.startswith(OFFLINE_TOKEN_PREFIX) else token)
