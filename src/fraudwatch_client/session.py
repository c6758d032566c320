# src/fraudwatch_client/session.py

import enum
import logging
from typing import Any, Dict, Optional, Union

from .persistence import InMemoryPersistence, SessionPersistence
from .session_data import LoginResponse, PersistedSession, UserRecord

logger = logging.getLogger(__name__)


class AuthState(str, enum.Enum):
    UNKNOWN = "unknown"  # not hydrated yet
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class SessionManager:
    """
    Single source of truth for who is logged in and with which credentials.

    One instance per running process, created by the composition root and
    handed to the pipeline by reference. Every mutator writes the persisted
    subset through the injected SessionPersistence; storage failures are
    logged and never propagate.
    """

    def __init__(self, persistence: Optional[SessionPersistence] = None) -> None:
        self._persistence: SessionPersistence = persistence if persistence is not None else InMemoryPersistence()
        self.user: Optional[UserRecord] = None
        self.access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self.has_hydrated = False

    def __repr__(self) -> str:
        user = self.user.email if self.user else None
        return (
            f"SessionManager(user={user!r}, authenticated={self.check_auth()}, "
            f"has_refresh_token={self.has_refresh_token}, has_hydrated={self.has_hydrated})"
        )

    # --- Queries ---

    @property
    def refresh_token(self) -> Optional[str]:
        # Read by the pipeline only, for the refresh and logout calls.
        return self._refresh_token

    @property
    def has_refresh_token(self) -> bool:
        return self._refresh_token is not None

    def check_auth(self) -> bool:
        # Presence of a token counts as authenticated; validity is decided by the next round trip.
        return self.access_token is not None

    @property
    def auth_state(self) -> AuthState:
        if not self.has_hydrated:
            return AuthState.UNKNOWN
        return AuthState.AUTHENTICATED if self.check_auth() else AuthState.ANONYMOUS

    def snapshot(self) -> PersistedSession:
        return PersistedSession(user=self.user, access_token=self.access_token, refresh_token=self._refresh_token)

    # --- Mutators ---

    def set_user(self, user: Union[UserRecord, Dict[str, Any], None]) -> None:
        if isinstance(user, dict):
            user = UserRecord.model_validate(user)
        self.user = user
        self._persist()

    def set_token(self, access_token: Optional[str]) -> None:
        self.access_token = access_token
        self._persist()

    def set_refresh_token(self, refresh_token: Optional[str]) -> None:
        self._refresh_token = refresh_token
        self._persist()

    def start_session(self, login: LoginResponse) -> None:
        """Applies a successful login in one step, with a single write to storage."""
        self.access_token = login.access_token
        self._refresh_token = login.refresh_token
        if login.user is not None:
            self.user = login.user
        self._persist()
        logger.info(
            "Session started for %s (refresh token: %s)",
            self.user.email if self.user else "unknown user",
            "yes" if login.refresh_token else "no",
        )

    def logout(self) -> None:
        """Clears identity and credentials and removes the persisted copy. Safe to call repeatedly."""
        was_authenticated = self.check_auth()
        self.user = None
        self.access_token = None
        self._refresh_token = None
        try:
            self._persistence.clear()
        except Exception as e:
            logger.warning("Could not remove persisted session: %s", e)
        if was_authenticated:
            logger.info("Session cleared.")

    def hydrate(self) -> None:
        """
        Loads the persisted subset once at startup. has_hydrated flips to True
        even when nothing was stored or the store was unreadable, so callers can
        tell "still loading" apart from "confirmed anonymous".
        """
        if self.has_hydrated:
            return
        try:
            stored = self._persistence.load()
        except Exception as e:
            logger.warning("Ignoring unreadable persisted session: %s", e)
            stored = None

        if stored is not None:
            self.user = stored.user
            self.access_token = stored.access_token
            self._refresh_token = stored.refresh_token
            logger.info("Session restored from storage (authenticated: %s)", self.check_auth())
        else:
            logger.debug("No persisted session found.")
        self.has_hydrated = True

    def _persist(self) -> None:
        snapshot = self.snapshot()
        try:
            if snapshot.is_empty:
                self._persistence.clear()
            else:
                self._persistence.save(snapshot)
        except Exception as e:
            logger.warning("Could not persist session: %s", e)
