"""App password sessions: com.atproto.server.createSession / refreshSession."""

from typing import Any, Optional

import requests

from onyx.errors import AuthError, RefreshError, XrpcError
from onyx.xrpc import DEFAULT_TIMEOUT, read_response, send, xrpc_url

CREATE_SESSION = "com.atproto.server.createSession"
REFRESH_SESSION = "com.atproto.server.refreshSession"


def session_data(pds_url: str, response: dict[str, Any]) -> dict[str, Any]:
    """The blob persisted for an app password session."""
    return {
        "did": response["did"],
        "handle": response.get("handle"),
        "pds_url": pds_url,
        "access_jwt": response["accessJwt"],
        "refresh_jwt": response["refreshJwt"],
    }


class PasswordAuthClient:
    """Exchanges an identifier and app password for session tokens."""

    def __init__(self, http: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.http = http or requests.Session()
        self.timeout = timeout

    def create_session(self, pds_url: str, identifier: str, password: str) -> dict[str, Any]:
        response = send(
            self.http,
            "POST",
            xrpc_url(pds_url, CREATE_SESSION),
            data={"identifier": identifier, "password": password},
            timeout=self.timeout,
        )
        try:
            body = read_response(CREATE_SESSION, response)
        except XrpcError as e:
            raise AuthError(f"Login failed for {identifier}: {e.message or e.error or e}") from e
        if "accessJwt" not in body or "refreshJwt" not in body or "did" not in body:
            raise AuthError(f"Login failed for {identifier}: incomplete session response")
        return session_data(pds_url, body)

    def refresh_session(self, data: dict[str, Any]) -> dict[str, Any]:
        """Rotate the tokens of a stored session. Rejections raise RefreshError."""
        response = send(
            self.http,
            "POST",
            xrpc_url(data["pds_url"], REFRESH_SESSION),
            headers={"Authorization": f"Bearer {data['refresh_jwt']}"},
            timeout=self.timeout,
        )
        try:
            body = read_response(REFRESH_SESSION, response)
        except XrpcError as e:
            raise RefreshError(f"Session refresh rejected: {e.message or e.error or e}") from e
        if "accessJwt" not in body or "refreshJwt" not in body:
            raise RefreshError("Session refresh returned an incomplete response")
        return {
            **data,
            "handle": body.get("handle", data.get("handle")),
            "access_jwt": body["accessJwt"],
            "refresh_jwt": body["refreshJwt"],
        }
