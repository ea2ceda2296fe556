"""AT Protocol OAuth for a native client: PAR, PKCE and DPoP with a loopback redirect."""

import hashlib
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import click
import requests

from onyx.auth import dpop
from onyx.auth.models import AuthRequest, Identity
from onyx.auth.stores import CredentialStore
from onyx.errors import OAuthError, RefreshError
from onyx.xrpc import DEFAULT_TIMEOUT, error_fields, send

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "atproto transition:generic"
LOOPBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/callback"

CALLBACK_PAGE = (
    b"<html><body><h1>onyx</h1>"
    b"<p>Authorization finished. You can close this window.</p>"
    b"</body></html>"
)


def pkce_pair() -> tuple[str, str]:
    """Return a PKCE (verifier, S256 challenge) pair."""
    verifier = secrets.token_urlsafe(48)
    challenge = dpop.b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


def loopback_client_id(redirect_uri: str, scope: str) -> str:
    """Client id of a development/native client without published metadata."""
    return "http://localhost?" + urlencode({"redirect_uri": redirect_uri, "scope": scope})


def expires_at(expires_in: Optional[int]) -> Optional[str]:
    if expires_in is None:
        return None
    return (datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))).isoformat()


class _CallbackHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        url = urlparse(self.path)
        if url.path != CALLBACK_PATH:
            self.send_error(404)
            return
        self.server.callback_params = {
            key: values[0] for key, values in parse_qs(url.query).items()
        }
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(CALLBACK_PAGE)

    def log_message(self, format, *args):
        logger.debug("Callback server: " + format, *args)


class LoopbackServer:
    """Local HTTP listener that receives the authorization redirect."""

    def __init__(self, port: int = 0):
        self.port = port
        self._server: Optional[HTTPServer] = None

    def __enter__(self) -> "LoopbackServer":
        try:
            self._server = HTTPServer((LOOPBACK_HOST, self.port), _CallbackHandler)
        except OSError as e:
            raise OAuthError(f"Cannot start callback listener: {e}") from e
        self._server.callback_params = None
        self.port = self._server.server_address[1]
        logger.debug("Callback listener on %s", self.redirect_uri)
        return self

    def __exit__(self, *exc_info):
        if self._server is not None:
            self._server.server_close()
            self._server = None

    @property
    def redirect_uri(self) -> str:
        return f"http://{LOOPBACK_HOST}:{self.port}{CALLBACK_PATH}"

    def wait_for_callback(self, timeout: float) -> dict[str, str]:
        """Serve requests until the callback arrives or timeout seconds pass."""
        deadline = time.monotonic() + timeout
        while self._server.callback_params is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise OAuthError("Timed out waiting for the authorization callback")
            self._server.timeout = min(remaining, 1.0)
            self._server.handle_request()
        return self._server.callback_params


class OAuthClient:
    """Runs the browser authorization flow and refreshes the resulting tokens."""

    def __init__(
        self,
        scope: str = DEFAULT_SCOPE,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        callback_timeout: float = 300.0,
        open_browser: bool = True,
        port: int = 0,
    ):
        self.scope = scope
        self.http = http or requests.Session()
        self.timeout = timeout
        self.callback_timeout = callback_timeout
        self.open_browser = open_browser
        self.port = port

    def login(self, identity: Identity, store: CredentialStore) -> dict[str, Any]:
        """Authorize identity in the browser and return the session blob.

        The pending request is kept in store under authreq_<state> until the
        callback has been handled.
        """
        if identity.pds is None:
            raise OAuthError(f"No PDS known for {identity.did}")
        server = self.fetch_server_metadata(identity.pds)

        with LoopbackServer(self.port) as loopback:
            request, auth_url = self.start_authorization(identity, server, loopback.redirect_uri)
            store.set(request.key, request.model_dump(mode="json"))
            try:
                self.prompt(auth_url)
                params = loopback.wait_for_callback(self.callback_timeout)
                return self.complete_authorization(request, params)
            finally:
                store.delete(request.key)

    def prompt(self, auth_url: str) -> None:
        click.echo()
        click.echo("Please visit this URL to authorize onyx:")
        click.echo()
        click.echo(f"    {auth_url}")
        click.echo()
        if self.open_browser:
            click.launch(auth_url)

    # --- Metadata ---

    def _get_json(self, url: str) -> dict[str, Any]:
        response = send(self.http, "GET", url, timeout=self.timeout)
        if not response.ok:
            raise OAuthError(f"GET {url} failed with HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise OAuthError(f"GET {url} did not return JSON") from e
        if not isinstance(body, dict):
            raise OAuthError(f"GET {url} did not return a JSON object")
        return body

    def fetch_server_metadata(self, pds_url: str) -> dict[str, Any]:
        """Find the authorization server of a PDS and return its metadata."""
        resource = self._get_json(f"{pds_url.rstrip('/')}/.well-known/oauth-protected-resource")
        servers = resource.get("authorization_servers") or []
        if not servers:
            raise OAuthError(f"{pds_url} does not name an authorization server")
        issuer = servers[0].rstrip("/")

        metadata = self._get_json(f"{issuer}/.well-known/oauth-authorization-server")
        if metadata.get("issuer", "").rstrip("/") != issuer:
            raise OAuthError(f"Authorization server metadata does not match issuer {issuer}")
        for field in (
            "authorization_endpoint",
            "token_endpoint",
            "pushed_authorization_request_endpoint",
        ):
            if not metadata.get(field):
                raise OAuthError(f"Authorization server {issuer} has no {field}")
        return metadata

    # --- Authorization ---

    def start_authorization(
        self, identity: Identity, server: dict[str, Any], redirect_uri: str
    ) -> tuple[AuthRequest, str]:
        """Push the authorization request and return it with the URL to open."""
        state = secrets.token_urlsafe(16)
        verifier, challenge = pkce_pair()
        key = dpop.generate_key()
        client_id = loopback_client_id(redirect_uri, self.scope)

        body, nonce = self._post_with_dpop(
            key,
            server["pushed_authorization_request_endpoint"],
            {
                "response_type": "code",
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "state": state,
                "scope": self.scope,
                "code_challenge": challenge,
                "code_challenge_method": "S256",
                "login_hint": identity.handle or identity.did,
            },
            nonce=None,
        )
        request_uri = body.get("request_uri")
        if not request_uri:
            raise OAuthError("Authorization server did not return a request_uri")

        request = AuthRequest(
            state=state,
            did=identity.did,
            pds_url=identity.pds,
            issuer=server["issuer"].rstrip("/"),
            token_endpoint=server["token_endpoint"],
            redirect_uri=redirect_uri,
            code_verifier=verifier,
            dpop_private_jwk=dpop.private_jwk(key),
            dpop_nonce=nonce,
            scope=self.scope,
        )
        auth_url = (
            server["authorization_endpoint"]
            + "?"
            + urlencode({"client_id": client_id, "request_uri": request_uri})
        )
        return request, auth_url

    def complete_authorization(self, request: AuthRequest, params: dict[str, str]) -> dict[str, Any]:
        """Validate the callback, exchange the code and build the session blob."""
        if "error" in params:
            description = params.get("error_description") or params["error"]
            raise OAuthError(f"Authorization was denied: {description}")
        if params.get("state") != request.state:
            raise OAuthError("Authorization callback state does not match the request")
        issuer = params.get("iss")
        if issuer is not None and issuer.rstrip("/") != request.issuer:
            raise OAuthError(f"Authorization callback came from unexpected issuer {issuer}")
        code = params.get("code")
        if not code:
            raise OAuthError("Authorization callback carried no code")

        key = dpop.key_from_jwk(request.dpop_private_jwk)
        client_id = loopback_client_id(request.redirect_uri, request.scope)
        tokens, nonce = self._post_with_dpop(
            key,
            request.token_endpoint,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": request.redirect_uri,
                "code_verifier": request.code_verifier,
                "client_id": client_id,
            },
            nonce=request.dpop_nonce,
        )
        self._check_tokens(tokens, request.did)
        logger.info("Authorized %s with %s", request.did, request.issuer)

        return {
            "did": request.did,
            "session_id": request.state,
            "pds_url": request.pds_url,
            "issuer": request.issuer,
            "token_endpoint": request.token_endpoint,
            "client_id": client_id,
            "scope": tokens.get("scope", request.scope),
            "access_token": tokens["access_token"],
            "refresh_token": tokens.get("refresh_token"),
            "expires_at": expires_at(tokens.get("expires_in")),
            "dpop_private_jwk": request.dpop_private_jwk,
            "dpop_authserver_nonce": nonce,
            "dpop_pds_nonce": None,
        }

    def refresh_session(self, data: dict[str, Any]) -> dict[str, Any]:
        """Rotate the tokens of a stored session. Rejections raise RefreshError."""
        if not data.get("refresh_token"):
            raise RefreshError("Session has no refresh token")
        key = dpop.key_from_jwk(data["dpop_private_jwk"])
        try:
            tokens, nonce = self._post_with_dpop(
                key,
                data["token_endpoint"],
                {
                    "grant_type": "refresh_token",
                    "refresh_token": data["refresh_token"],
                    "client_id": data["client_id"],
                },
                nonce=data.get("dpop_authserver_nonce"),
            )
            self._check_tokens(tokens, data["did"])
        except OAuthError as e:
            raise RefreshError(f"Session refresh rejected: {e}") from e

        return {
            **data,
            "scope": tokens.get("scope", data.get("scope")),
            "access_token": tokens["access_token"],
            "refresh_token": tokens.get("refresh_token", data["refresh_token"]),
            "expires_at": expires_at(tokens.get("expires_in")),
            "dpop_authserver_nonce": nonce,
        }

    # --- Helpers ---

    @staticmethod
    def _check_tokens(tokens: dict[str, Any], did: str) -> None:
        if not tokens.get("access_token"):
            raise OAuthError("Token response carried no access token")
        if str(tokens.get("token_type", "")).lower() != "dpop":
            raise OAuthError(f"Unexpected token type {tokens.get('token_type')!r}")
        if tokens.get("sub") != did:
            raise OAuthError(f"Tokens were issued for {tokens.get('sub')}, expected {did}")
        if "atproto" not in str(tokens.get("scope", "atproto")).split():
            raise OAuthError("Granted scope does not include atproto")

    def _post_with_dpop(
        self, key, url: str, form: dict[str, str], nonce: Optional[str]
    ) -> tuple[dict[str, Any], Optional[str]]:
        """POST a form with a DPoP proof, answering one nonce challenge.

        Returns the JSON body and the latest server nonce.
        """
        for attempt in range(2):
            proof = dpop.create_proof(key, "POST", url, nonce=nonce)
            response = send(
                self.http,
                "POST",
                url,
                form=form,
                headers={"DPoP": proof},
                timeout=self.timeout,
            )
            nonce = response.headers.get("DPoP-Nonce", nonce)
            if response.ok:
                try:
                    return response.json(), nonce
                except ValueError as e:
                    raise OAuthError(f"POST {url} did not return JSON") from e

            error, message = error_fields(response)
            if error == "use_dpop_nonce" and attempt == 0:
                logger.debug("Retrying %s with server DPoP nonce", url)
                continue
            raise OAuthError(
                f"POST {url} failed with HTTP {response.status_code}: {message or error}"
            )
        raise OAuthError(f"POST {url} kept asking for a new DPoP nonce")
