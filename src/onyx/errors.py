"""
Exceptions for onyx.

Every error raised on purpose derives from OnyxError and carries one of four
user-facing kinds. Only authentication errors attach a "log in again" hint.
"""

from enum import Enum
from typing import Optional

LOGIN_HINT = "run 'onyx auth login' to log in again"


class ErrorKind(str, Enum):
    AUTH = "auth"
    IO = "io"
    PARSE = "parse"
    OTHER = "other"


class OnyxError(Exception):
    """Base exception for onyx."""

    kind: ErrorKind = ErrorKind.OTHER

    @property
    def hint(self) -> Optional[str]:
        return None


# --- Authentication ---


class AuthError(OnyxError):
    """Credential store, authorization and session errors."""

    kind = ErrorKind.AUTH

    @property
    def hint(self) -> Optional[str]:
        return LOGIN_HINT


class NotLoggedInError(AuthError):
    """Raised when there is no local session pointer."""

    def __init__(self, operation: Optional[str] = None):
        self.operation = operation
        if operation:
            message = f"Cannot {operation}: not logged in."
        else:
            message = "Not logged in."
        super().__init__(message)


class RestoreFailedError(AuthError):
    """Raised when a session pointer exists but the session cannot be restored."""

    def __init__(self, did: str, session_id: str, reason: str):
        self.did = did
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Failed to restore session {session_id} for {did}: {reason}")


class RefreshError(AuthError):
    """Raised when the server rejects a token refresh."""


class OAuthError(AuthError):
    """Raised when the OAuth authorization flow fails."""


class CredentialStoreError(AuthError):
    """Base exception for credential store backends."""


class StoreUnavailableError(CredentialStoreError):
    """Raised when the storage backend cannot be accessed."""


class SerializationError(CredentialStoreError):
    """Raised when a stored credential blob is malformed."""


class StoreBackendError(CredentialStoreError):
    """Raised for any other backend failure."""


# --- Local files ---


class LocalIOError(OnyxError):
    """Raised when a local file cannot be read, written or removed."""

    kind = ErrorKind.IO


# --- Parsing ---


class ParseError(OnyxError):
    """Raised when a log file cannot be parsed."""

    kind = ErrorKind.PARSE

    def __init__(self, message: str, line_number: Optional[int] = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


# --- Remote service ---


class TransportError(OnyxError):
    """Raised when a request to the remote service fails."""


class XrpcError(TransportError):
    """Raised when an XRPC endpoint answers with an error response."""

    def __init__(
        self,
        nsid: str,
        status_code: int,
        error: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.nsid = nsid
        self.status_code = status_code
        self.error = error
        self.message = message

        text = f"{nsid} failed with HTTP {status_code}"
        if error:
            text += f" ({error})"
        if message:
            text += f": {message}"
        super().__init__(text)


class IdentityError(OnyxError):
    """Raised when a handle or DID cannot be resolved."""


class ScrobbleError(OnyxError):
    """Raised when a single track could not be submitted."""

    def __init__(self, track_name: str, cause: Exception):
        self.track_name = track_name
        self.cause = cause
        super().__init__(f"{cause}, for '{track_name}'")


class BatchSubmissionError(OnyxError):
    """Raised when one or more tracks of a batch failed.

    When the session broke down mid-batch the error is an auth error and
    carries the login hint.
    """

    def __init__(
        self, source: str, failed: int, total: int, auth_error: Optional[AuthError] = None
    ):
        self.source = source
        self.failed = failed
        self.total = total
        self.auth_error = auth_error
        if auth_error is not None:
            self.kind = ErrorKind.AUTH
        super().__init__(
            f"failed to scrobble {source} ({failed} of {total} failed), see errors above"
        )

    @property
    def hint(self) -> Optional[str]:
        return self.auth_error.hint if self.auth_error is not None else None
