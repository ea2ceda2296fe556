"""Shared test fixtures for onyx tests."""

import base64
import json
import tempfile
import time
from pathlib import Path
from unittest.mock import Mock

import keyring
import pytest
import requests
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

DID = "did:plc:ewvi7nxzyoun6zhxrhs64oiz"
HANDLE = "alice.example.com"
PDS = "https://pds.example.com"


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("Password not found") from None


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def memory_keyring():
    """Never touch the real system keyring."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


def _make_response(status_code=200, body=None, headers=None):
    response = requests.Response()
    response.status_code = status_code
    if body is None:
        response._content = b""
    elif isinstance(body, (bytes, str)):
        response._content = body.encode() if isinstance(body, str) else body
    else:
        response._content = json.dumps(body).encode()
    response.encoding = "utf-8"
    response.headers.update(headers or {})
    return response


@pytest.fixture
def make_response():
    """Build real requests.Response objects without a network."""
    return _make_response


def _make_jwt(expires_in=3600, **claims):
    def part(data):
        return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()

    payload = {"sub": DID, "exp": int(time.time()) + expires_in, **claims}
    return f"{part({'alg': 'ES256K', 'typ': 'at+jwt'})}.{part(payload)}.c2lnbmF0dXJl"


@pytest.fixture
def make_jwt():
    """Unsigned JWTs with an exp claim relative to now."""
    return _make_jwt


@pytest.fixture
def http():
    """A requests.Session stand-in; queue responses on http.request.side_effect."""
    return Mock(spec=requests.Session)


@pytest.fixture
def password_blob():
    return {
        "did": DID,
        "handle": HANDLE,
        "pds_url": PDS,
        "access_jwt": _make_jwt(),
        "refresh_jwt": _make_jwt(expires_in=86400, scope="com.atproto.refresh"),
    }
