"""Login, restore, logout and whoami for the single local user."""

import logging
from pathlib import Path
from typing import Optional

import requests

from onyx.auth.identity import IdentityResolver
from onyx.auth.models import (
    APP_PASSWORD_SESSION_ID,
    AuthMethod,
    AuthSession,
    StoreMethod,
    credential_key,
)
from onyx.auth.oauth import OAuthClient
from onyx.auth.password import PasswordAuthClient
from onyx.auth.pointer import AuthSessionStore
from onyx.auth.sessions import SessionHandle, session_kind
from onyx.auth.stores import CredentialStore, FileCredentialStore, KeyringCredentialStore
from onyx.config import STORE_FILE_NAME
from onyx.errors import NotLoggedInError, OnyxError
from onyx.xrpc import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


class Authenticator:
    """Owns the session pointer and the credential stores it refers to.

    Logged in or logged out is decided by the pointer file alone.
    """

    def __init__(
        self,
        service: str,
        config_dir: Path,
        *,
        resolver: Optional[IdentityResolver] = None,
        oauth_client: Optional[OAuthClient] = None,
        password_client: Optional[PasswordAuthClient] = None,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.service = service
        self.config_dir = Path(config_dir)
        self.pointer = AuthSessionStore(self.config_dir)
        self.http = http or requests.Session()
        self.timeout = timeout
        self.resolver = resolver or IdentityResolver(http=self.http, timeout=timeout)
        self.oauth_client = oauth_client or OAuthClient(http=self.http, timeout=timeout)
        self.password_client = password_client or PasswordAuthClient(
            http=self.http, timeout=timeout
        )

    def store_for(self, store_method: StoreMethod) -> CredentialStore:
        if StoreMethod(store_method) is StoreMethod.KEYRING:
            return KeyringCredentialStore(self.service)
        return FileCredentialStore(self.config_dir / STORE_FILE_NAME)

    def login(
        self,
        ident: str,
        store_method: StoreMethod = StoreMethod.KEYRING,
        password: Optional[str] = None,
    ) -> AuthSession:
        """Authenticate ident and make it the current session.

        With a password the app password exchange is used, otherwise the
        browser OAuth flow.
        """
        store_method = StoreMethod(store_method)
        store = self.store_for(store_method)
        identity = self.resolver.resolve(ident)

        if password is not None:
            data = self.password_client.create_session(identity.pds, ident, password)
            session_id = APP_PASSWORD_SESSION_ID
            auth_method = AuthMethod.APP_PASSWORD
        else:
            data = self.oauth_client.login(identity, store)
            session_id = data["session_id"]
            auth_method = AuthMethod.OAUTH

        session = AuthSession(
            identity=identity.did,
            session_id=session_id,
            store_method=store_method,
            auth_method=auth_method,
        )
        store.set(session.key, data)

        previous = self._read_pointer()
        self.pointer.set_session(session)
        logger.info("Logged in as %s", identity)

        if previous is not None and (
            previous.store_method != session.store_method or previous.key != session.key
        ):
            self._discard_credentials(previous)
        return session

    def restore(self) -> SessionHandle:
        """Rehydrate the current session from its store."""
        session = self.pointer.get_session()
        if session is None:
            raise NotLoggedInError()
        kind = session_kind(session.auth_method, session.store_method)
        return kind.restore(
            self.store_for(session.store_method),
            session.identity,
            session.session_id,
            http=self.http,
            timeout=self.timeout,
        )

    def logout(self) -> AuthSession:
        """Remove the current session's credentials, then the pointer."""
        session = self.pointer.get_session()
        if session is None:
            raise NotLoggedInError("log out")
        self.store_for(session.store_method).delete(session.key)
        self.pointer.delete_session()
        logger.info("Logged out %s", session.identity)
        return session

    def whoami(self) -> AuthSession:
        session = self.pointer.get_session()
        if session is None:
            raise NotLoggedInError()
        return session

    def _read_pointer(self) -> Optional[AuthSession]:
        try:
            return self.pointer.get_session()
        except OnyxError as e:
            logger.warning("Ignoring unreadable session pointer: %s", e)
            return None

    def _discard_credentials(self, session: AuthSession) -> None:
        key = credential_key(session.identity, session.session_id)
        try:
            self.store_for(session.store_method).delete(key)
        except OnyxError as e:
            logger.warning("Could not remove old credentials %s: %s", key, e)
        else:
            logger.debug("Removed old credentials %s", key)
