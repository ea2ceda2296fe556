"""XRPC over HTTP: unauthenticated client and repo operations on a session."""

import logging
from typing import TYPE_CHECKING, Any, Optional

import requests

from onyx.errors import TransportError, XrpcError

if TYPE_CHECKING:
    from onyx.auth.sessions import SessionHandle

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

# Repo record operations
CREATE_RECORD = "com.atproto.repo.createRecord"
GET_RECORD = "com.atproto.repo.getRecord"
PUT_RECORD = "com.atproto.repo.putRecord"


def xrpc_url(base_url: str, nsid: str) -> str:
    return f"{base_url.rstrip('/')}/xrpc/{nsid}"


def send(
    http: requests.Session,
    method: str,
    url: str,
    *,
    params: Optional[dict[str, Any]] = None,
    data: Optional[dict[str, Any]] = None,
    form: Optional[dict[str, str]] = None,
    headers: Optional[dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> requests.Response:
    """Send one HTTP request, turning connection failures into TransportError.

    data is sent as a JSON body, form as an urlencoded body.
    """
    logger.debug("%s %s", method, url)
    try:
        return http.request(
            method,
            url,
            params=params,
            json=data,
            data=form,
            headers=headers,
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise TransportError(f"{method} {url} failed: {e}") from e


def error_fields(response: requests.Response) -> tuple[Optional[str], Optional[str]]:
    """Extract the XRPC (or OAuth) error name and message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text or None
    if not isinstance(body, dict):
        return None, None
    message = body.get("message") or body.get("error_description")
    return body.get("error"), message


def read_response(nsid: str, response: requests.Response) -> dict[str, Any]:
    """Return the JSON body of a successful response, raise XrpcError otherwise."""
    if not response.ok:
        error, message = error_fields(response)
        raise XrpcError(nsid, response.status_code, error, message)
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError as e:
        raise TransportError(f"{nsid} returned a body that is not JSON") from e
    if not isinstance(body, dict):
        raise TransportError(f"{nsid} returned {type(body).__name__} instead of a JSON object")
    return body


class XrpcClient:
    """Unauthenticated XRPC calls against a single service."""

    def __init__(
        self,
        base_url: str,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url
        self.http = http or requests.Session()
        self.timeout = timeout

    def query(self, nsid: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        response = send(
            self.http,
            "GET",
            xrpc_url(self.base_url, nsid),
            params=params,
            timeout=self.timeout,
        )
        return read_response(nsid, response)

    def procedure(self, nsid: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        response = send(
            self.http,
            "POST",
            xrpc_url(self.base_url, nsid),
            data=data,
            timeout=self.timeout,
        )
        return read_response(nsid, response)

    def get_record(self, repo: str, collection: str, rkey: str) -> Optional[dict[str, Any]]:
        """Read a record, returning None when it does not exist."""
        try:
            response = self.query(
                GET_RECORD, {"repo": repo, "collection": collection, "rkey": rkey}
            )
        except XrpcError as e:
            if e.error == "RecordNotFound":
                return None
            raise
        return response.get("value")


class Agent:
    """Repo operations on behalf of an authenticated session."""

    def __init__(self, session: "SessionHandle"):
        self.session = session

    @property
    def did(self) -> str:
        did, _ = self.session.session_info()
        return did

    def create_record(
        self, collection: str, record: dict[str, Any], rkey: Optional[str] = None
    ) -> dict[str, Any]:
        """Create a new record in the session's repo. Returns its uri and cid."""
        data: dict[str, Any] = {
            "repo": self.did,
            "collection": collection,
            "record": record,
        }
        if rkey is not None:
            data["rkey"] = rkey
        return self.session.request("POST", CREATE_RECORD, data=data)

    def put_record(self, collection: str, rkey: str, record: dict[str, Any]) -> dict[str, Any]:
        """Create or overwrite the record at collection/rkey."""
        return self.session.request(
            "POST",
            PUT_RECORD,
            data={
                "repo": self.did,
                "collection": collection,
                "rkey": rkey,
                "record": record,
            },
        )
