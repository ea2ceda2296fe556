"""Restored sessions: one handle type per (auth method, store) pair.

Every handle offers the same capabilities (authenticated XRPC requests,
session info, endpoint, token refresh) whatever its backing store and
token flavour. Callers pick a variant through SESSION_KINDS.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Optional

import requests

from onyx.auth import dpop
from onyx.auth.models import AuthMethod, StoreMethod, credential_key
from onyx.auth.oauth import OAuthClient
from onyx.auth.password import PasswordAuthClient
from onyx.auth.stores import CredentialStore, FileCredentialStore, KeyringCredentialStore
from onyx.errors import RefreshError, RestoreFailedError, SerializationError
from onyx.xrpc import DEFAULT_TIMEOUT, error_fields, read_response, send, xrpc_url

logger = logging.getLogger(__name__)

# Refresh a little before the server would reject the token
EXPIRY_MARGIN = timedelta(seconds=30)


def jwt_expiry(token: str) -> Optional[datetime]:
    """Read the exp claim of a JWT without verifying it."""
    try:
        payload = json.loads(dpop.b64url_decode(token.split(".")[1]))
        return datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (IndexError, KeyError, TypeError, ValueError):
        return None


def is_past(moment: Optional[datetime]) -> bool:
    if moment is None:
        return False
    return moment - EXPIRY_MARGIN <= datetime.now(timezone.utc)


class SessionHandle(ABC):
    """An authenticated session restored from a credential store."""

    auth_method: ClassVar[AuthMethod]
    store_method: ClassVar[StoreMethod]
    store_type: ClassVar[type[CredentialStore]]
    required_fields: ClassVar[tuple[str, ...]] = ("pds_url",)

    def __init__(
        self,
        store: CredentialStore,
        did: str,
        session_id: str,
        data: dict[str, Any],
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.check_store(store)
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")
        missing = [name for name in self.required_fields if not data.get(name)]
        if missing:
            raise ValueError(f"missing {', '.join(missing)}")
        self.store = store
        self.did = did
        self.session_id = session_id
        self.data = data
        self.http = http or requests.Session()
        self.timeout = timeout

    @classmethod
    def check_store(cls, store: CredentialStore) -> None:
        if not isinstance(store, cls.store_type):
            raise TypeError(
                f"{cls.__name__} needs a {cls.store_type.__name__}, got {type(store).__name__}"
            )

    @classmethod
    def restore(
        cls,
        store: CredentialStore,
        did: str,
        session_id: str,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "SessionHandle":
        """Rehydrate a session, refreshing it once if the access token expired."""
        key = credential_key(did, session_id)
        data = store.get(key)
        if data is None:
            raise RestoreFailedError(did, session_id, f"no stored credentials under {key}")

        cls.check_store(store)
        try:
            handle = cls(store, did, session_id, data, http=http, timeout=timeout)
            expired = handle.is_expired()
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Stored credentials under {key} are malformed: {e}") from e

        if expired:
            logger.debug("Access token for %s expired, refreshing", did)
            try:
                handle.refresh()
            except RefreshError as e:
                raise RestoreFailedError(did, session_id, str(e)) from e
        return handle

    @property
    def key(self) -> str:
        return credential_key(self.did, self.session_id)

    def session_info(self) -> tuple[str, str]:
        return self.did, self.session_id

    def endpoint(self) -> str:
        return self.data["pds_url"]

    def request(
        self,
        method: str,
        nsid: str,
        params: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Authenticated XRPC call against the session's PDS.

        An expired-token answer triggers one refresh and one replay.
        """
        url = xrpc_url(self.endpoint(), nsid)
        response = self._send(method, url, params, data)
        if self._token_expired(response):
            logger.debug("%s answered with an expired token, refreshing", nsid)
            self.refresh()
            response = self._send(method, url, params, data)
        return read_response(nsid, response)

    def refresh(self) -> None:
        """Rotate tokens and persist the new blob to this session's store."""
        self.data = self._refreshed_data()
        self.store.set(self.key, self.data)
        logger.debug("Refreshed session %s for %s", self.session_id, self.did)

    @abstractmethod
    def is_expired(self) -> bool:
        """Whether the stored access token is known to be expired."""

    @abstractmethod
    def _send(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]],
        data: Optional[dict[str, Any]],
    ) -> requests.Response:
        """Send one authenticated request."""

    @abstractmethod
    def _token_expired(self, response: requests.Response) -> bool:
        """Whether response rejects the access token as expired."""

    @abstractmethod
    def _refreshed_data(self) -> dict[str, Any]:
        """Exchange the refresh token, raising RefreshError on rejection."""


class PasswordSession(SessionHandle):
    """Bearer JWTs from an app password login."""

    auth_method = AuthMethod.APP_PASSWORD
    required_fields = ("pds_url", "access_jwt", "refresh_jwt")

    def __init__(self, *args, auth_client: Optional[PasswordAuthClient] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.auth_client = auth_client or PasswordAuthClient(http=self.http, timeout=self.timeout)

    def is_expired(self) -> bool:
        return is_past(jwt_expiry(self.data["access_jwt"]))

    def _send(self, method, url, params, data):
        return send(
            self.http,
            method,
            url,
            params=params,
            data=data,
            headers={"Authorization": f"Bearer {self.data['access_jwt']}"},
            timeout=self.timeout,
        )

    def _token_expired(self, response):
        if response.status_code not in (400, 401):
            return False
        error, _ = error_fields(response)
        return error == "ExpiredToken"

    def _refreshed_data(self):
        return self.auth_client.refresh_session(self.data)


class OAuthSession(SessionHandle):
    """DPoP-bound OAuth tokens."""

    auth_method = AuthMethod.OAUTH
    required_fields = ("pds_url", "access_token", "token_endpoint", "client_id", "dpop_private_jwk")

    def __init__(self, *args, auth_client: Optional[OAuthClient] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.auth_client = auth_client or OAuthClient(http=self.http, timeout=self.timeout)
        self._key = dpop.key_from_jwk(self.data["dpop_private_jwk"])

    def is_expired(self) -> bool:
        expires_at = self.data.get("expires_at")
        if not expires_at:
            return False
        return is_past(datetime.fromisoformat(expires_at))

    def _send(self, method, url, params, data):
        # a DPoP nonce challenge is answered once
        for attempt in range(2):
            access_token = self.data["access_token"]
            proof = dpop.create_proof(
                self._key,
                method,
                url,
                nonce=self.data.get("dpop_pds_nonce"),
                access_token=access_token,
            )
            response = send(
                self.http,
                method,
                url,
                params=params,
                data=data,
                headers={"Authorization": f"DPoP {access_token}", "DPoP": proof},
                timeout=self.timeout,
            )
            nonce = response.headers.get("DPoP-Nonce")
            if nonce:
                self.data["dpop_pds_nonce"] = nonce
            if attempt == 0 and nonce and self._nonce_challenge(response):
                logger.debug("Retrying %s with server DPoP nonce", url)
                continue
            return response
        return response

    @staticmethod
    def _nonce_challenge(response: requests.Response) -> bool:
        if response.status_code not in (400, 401):
            return False
        if "use_dpop_nonce" in response.headers.get("WWW-Authenticate", ""):
            return True
        error, _ = error_fields(response)
        return error == "use_dpop_nonce"

    def _token_expired(self, response):
        if response.status_code != 401:
            return False
        if "invalid_token" in response.headers.get("WWW-Authenticate", ""):
            return True
        error, _ = error_fields(response)
        return error in ("invalid_token", "ExpiredToken")

    def _refreshed_data(self):
        return self.auth_client.refresh_session(self.data)


class KeyringOAuthSession(OAuthSession):
    store_method = StoreMethod.KEYRING
    store_type = KeyringCredentialStore


class FileOAuthSession(OAuthSession):
    store_method = StoreMethod.FILE
    store_type = FileCredentialStore


class KeyringPasswordSession(PasswordSession):
    store_method = StoreMethod.KEYRING
    store_type = KeyringCredentialStore


class FilePasswordSession(PasswordSession):
    store_method = StoreMethod.FILE
    store_type = FileCredentialStore


SESSION_KINDS: dict[tuple[AuthMethod, StoreMethod], type[SessionHandle]] = {
    (AuthMethod.OAUTH, StoreMethod.KEYRING): KeyringOAuthSession,
    (AuthMethod.OAUTH, StoreMethod.FILE): FileOAuthSession,
    (AuthMethod.APP_PASSWORD, StoreMethod.KEYRING): KeyringPasswordSession,
    (AuthMethod.APP_PASSWORD, StoreMethod.FILE): FilePasswordSession,
}


def session_kind(auth_method: AuthMethod, store_method: StoreMethod) -> type[SessionHandle]:
    try:
        return SESSION_KINDS[(AuthMethod(auth_method), StoreMethod(store_method))]
    except KeyError:
        raise ValueError(
            f"No session type for {auth_method} sessions in a {store_method} store"
        ) from None
