"""Concrete implementations for authentication managers.

The rest of the package only ever sees the opaque user id returned by
``Auth.get_current_user_id``.
"""

import hmac
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from pydantic import BaseModel, ValidationError

from .errors import AuthenticationError, InvalidCredentials, PersistenceError
from .i18n import Catalog, Translator
from .store import Store

logger = logging.getLogger(__name__)

USER_SESSION_KEY = "localUserSession"


class AuthUser(BaseModel):
    id: str
    username: str
    email: Optional[str] = None


class AccountRecord(AuthUser):
    password: str


class Auth(ABC):
    """Interface for identifying the current user."""

    @abstractmethod
    def get_current_user_id(self, **kwargs) -> str:
        """Determines and returns the ID of the current user."""
        pass


class SingleUser(Auth):
    """A simple auth manager for single-user apps."""

    def __init__(self, user_id: str = "chat"):
        """Initialize with a user ID.

        Parameters
        ----------
        user_id : str, default="chat"
            User identifier. Non-string values will be converted to strings
            to enforce the Auth interface contract.
        """
        self._user_id = str(user_id)

    def get_current_user_id(self, **kwargs) -> str:
        return self._user_id


class CredentialStore(ABC):
    """Interface for reading and updating account records."""

    @abstractmethod
    def read(self, username: str) -> Optional[AccountRecord]:
        pass

    @abstractmethod
    def update(self, user_id: str, **changes) -> AccountRecord:
        """Applies field changes to the account with ``user_id``."""
        pass


class InMemoryCredentials(CredentialStore):
    """Account records held in memory, keyed by user id."""

    def __init__(self, *accounts: AccountRecord):
        self._accounts: Dict[str, AccountRecord] = {a.id: a for a in accounts}

    @classmethod
    def demo(cls) -> "InMemoryCredentials":
        return cls(
            AccountRecord(
                id="testuser",
                username="testuser",
                password="password123",
                email="testuser@example.com",
            )
        )

    def read(self, username: str) -> Optional[AccountRecord]:
        return next((a for a in self._accounts.values() if a.username == username), None)

    def update(self, user_id: str, **changes) -> AccountRecord:
        if user_id not in self._accounts:
            raise AuthenticationError(f"Unknown account {user_id}")
        updated = self._accounts[user_id].model_copy(update=changes)
        self._accounts[user_id] = updated
        return updated


class LocalAccounts(Auth):
    """Username/password login against a credential store.

    The logged-in user is remembered in ``session_store`` so a restart
    resumes the session. Error messages come from ``translator``.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        session_store: Store,
        translator: Optional[Translator] = None,
    ):
        self.credentials = credentials
        self.session_store = session_store
        self.translator = translator if translator is not None else Catalog()
        self.user: Optional[AuthUser] = self._restore()

    def _restore(self) -> Optional[AuthUser]:
        try:
            raw = self.session_store.get(USER_SESSION_KEY)
        except PersistenceError:
            logger.exception("Error reading user session")
            return None
        if raw is None:
            return None
        try:
            user = AuthUser.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed user session")
            self._forget()
            return None
        try:
            self.credentials.update(user.id, username=user.username)
        except AuthenticationError:
            logger.warning("Session refers to unknown account %s", user.id)
            self._forget()
            return None
        return user

    def _remember(self, user: AuthUser) -> None:
        try:
            self.session_store.put(USER_SESSION_KEY, user.model_dump_json())
        except PersistenceError:
            logger.exception("Error saving user session")

    def _forget(self) -> None:
        try:
            self.session_store.delete(USER_SESSION_KEY)
        except PersistenceError:
            logger.exception("Error clearing user session")

    def login(self, username: str, password: str) -> AuthUser:
        record = self.credentials.read(username)
        if record is None or not hmac.compare_digest(record.password, password):
            raise InvalidCredentials(self.translator.t("auth.errorInvalidCredentials"))
        self.user = AuthUser(id=record.id, username=record.username, email=record.email)
        self._remember(self.user)
        return self.user

    def logout(self) -> None:
        self.user = None
        self._forget()

    def update_username(self, new_username: str) -> AuthUser:
        if self.user is None:
            raise AuthenticationError(self.translator.t("auth.errorNotLoggedIn"))
        new_username = new_username.strip()
        if not new_username:
            raise AuthenticationError(self.translator.t("auth.errorUsernameEmpty"))
        record = self.credentials.update(self.user.id, username=new_username)
        self.user = AuthUser(id=record.id, username=record.username, email=record.email)
        self._remember(self.user)
        return self.user

    def get_current_user_id(self, **kwargs) -> str:
        if self.user is None:
            raise AuthenticationError(self.translator.t("auth.errorNotLoggedIn"))
        return self.user.id
