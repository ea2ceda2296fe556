"""Authentication: credential stores, the session pointer and restored sessions."""

from onyx.auth.authenticator import Authenticator
from onyx.auth.identity import IdentityResolver
from onyx.auth.models import AuthMethod, AuthSession, Identity, StoreMethod
from onyx.auth.sessions import SESSION_KINDS, SessionHandle, session_kind
from onyx.auth.stores import CredentialStore, FileCredentialStore, KeyringCredentialStore

__all__ = [
    "SESSION_KINDS",
    "AuthMethod",
    "AuthSession",
    "Authenticator",
    "CredentialStore",
    "FileCredentialStore",
    "Identity",
    "IdentityResolver",
    "KeyringCredentialStore",
    "SessionHandle",
    "StoreMethod",
    "session_kind",
]
