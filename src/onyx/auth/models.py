from enum import Enum
from pathlib import Path
from typing import Optional, Self

from pydantic import BaseModel, ConfigDict


class AuthMethod(str, Enum):
    OAUTH = "oauth"  # delegated authorization in the browser
    APP_PASSWORD = "app_password"  # direct credential exchange


class StoreMethod(str, Enum):
    KEYRING = "keyring"
    FILE = "file"


class Identity(BaseModel):
    """A resolved account: canonical DID plus the handles that point at it."""

    model_config = ConfigDict(frozen=True)

    did: str
    handles: tuple[str, ...] = ()
    pds: Optional[str] = None

    @property
    def handle(self) -> Optional[str]:
        return self.handles[0] if self.handles else None

    def __str__(self) -> str:
        if self.handle:
            return f"{self.handle} ({self.did})"
        return self.did


class AuthSession(BaseModel):
    """The local session pointer: which identity, session, store and method are current."""

    identity: str
    session_id: str
    store_method: StoreMethod
    auth_method: AuthMethod

    @property
    def key(self) -> str:
        return credential_key(self.identity, self.session_id)

    def save(self, path: Path) -> int:
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.write_text(self.model_dump_json(indent=2))

    @classmethod
    def load(cls: type[Self], path: Path) -> Self:
        content = path.read_text()
        return cls.model_validate_json(content)


class AuthRequest(BaseModel):
    """An in-flight OAuth authorization request, keyed by its state token."""

    state: str
    did: str
    pds_url: str
    issuer: str
    token_endpoint: str
    redirect_uri: str
    code_verifier: str
    dpop_private_jwk: dict
    dpop_nonce: Optional[str] = None
    scope: str

    @property
    def key(self) -> str:
        return auth_request_key(self.state)


def credential_key(did: str, session_id: str) -> str:
    return f"{did}_{session_id}"


def auth_request_key(state: str) -> str:
    return f"authreq_{state}"


# App password sessions have a single slot per identity
APP_PASSWORD_SESSION_ID = "session"

__all__ = [
    "APP_PASSWORD_SESSION_ID",
    "AuthMethod",
    "AuthRequest",
    "AuthSession",
    "Identity",
    "StoreMethod",
    "auth_request_key",
    "credential_key",
]
