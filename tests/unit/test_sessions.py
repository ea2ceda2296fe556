"""Tests for restored session handles."""

import json
from datetime import datetime, timedelta, timezone
from itertools import product

import pytest

from onyx.auth import dpop
from onyx.auth.models import AuthMethod, StoreMethod
from onyx.auth.sessions import (
    SESSION_KINDS,
    FileOAuthSession,
    FilePasswordSession,
    KeyringOAuthSession,
    KeyringPasswordSession,
    jwt_expiry,
    session_kind,
)
from onyx.auth.stores import FileCredentialStore, KeyringCredentialStore
from onyx.errors import RefreshError, RestoreFailedError, SerializationError, XrpcError

DID = "did:plc:ewvi7nxzyoun6zhxrhs64oiz"
PDS = "https://pds.example.com"


def decode_proof(proof):
    header, payload, _ = proof.split(".")
    return json.loads(dpop.b64url_decode(header)), json.loads(dpop.b64url_decode(payload))


@pytest.fixture
def oauth_blob():
    return {
        "did": DID,
        "session_id": "state123",
        "pds_url": PDS,
        "issuer": "https://auth.example.com",
        "token_endpoint": "https://auth.example.com/oauth/token",
        "client_id": "http://localhost?scope=atproto",
        "scope": "atproto transition:generic",
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_at": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
        "dpop_private_jwk": dpop.private_jwk(dpop.generate_key()),
        "dpop_authserver_nonce": "as-nonce",
        "dpop_pds_nonce": None,
    }


class TestSessionKinds:
    """Tests for the (auth method, store) to session type mapping."""

    def test_every_pair_is_covered(self):
        """Each auth method has a session type for each store."""
        assert set(SESSION_KINDS) == set(product(AuthMethod, StoreMethod))

    def test_variants_declare_their_pair(self):
        for (auth_method, store_method), kind in SESSION_KINDS.items():
            assert kind.auth_method is auth_method
            assert kind.store_method is store_method

    def test_lookup(self):
        assert session_kind(AuthMethod.OAUTH, StoreMethod.FILE) is FileOAuthSession
        assert session_kind("app_password", "keyring") is KeyringPasswordSession

    def test_unknown_pair(self):
        with pytest.raises(ValueError):
            session_kind("kerberos", "file")

    def test_store_type_is_checked(self, temp_dir, password_blob):
        """A keyring session cannot be built on a file store."""
        store = FileCredentialStore(temp_dir / "store.json")
        with pytest.raises(TypeError):
            KeyringPasswordSession(store, DID, "session", password_blob)


class TestPasswordSession:
    """Tests for app password sessions."""

    def test_restore_missing_blob(self, temp_dir):
        store = FileCredentialStore(temp_dir / "store.json")
        with pytest.raises(RestoreFailedError):
            FilePasswordSession.restore(store, DID, "session")

    def test_restore_blob_without_tokens(self, temp_dir, http):
        store = FileCredentialStore(temp_dir / "store.json")
        store.set(f"{DID}_session", {"did": DID, "pds_url": PDS})

        with pytest.raises(SerializationError, match="access_jwt, refresh_jwt"):
            FilePasswordSession.restore(store, DID, "session", http=http)
        http.request.assert_not_called()

    def test_restore_blob_not_an_object(self, temp_dir, http):
        store = FileCredentialStore(temp_dir / "store.json")
        store.set(f"{DID}_session", ["not", "a", "session"])

        with pytest.raises(SerializationError, match="expected an object"):
            FilePasswordSession.restore(store, DID, "session", http=http)

    def test_request_sends_bearer(self, temp_dir, password_blob, http, make_response):
        store = FileCredentialStore(temp_dir / "store.json")
        store.set(f"{DID}_session", password_blob)
        http.request.return_value = make_response(200, {"uri": "at://x", "cid": "bafy"})

        handle = FilePasswordSession.restore(store, DID, "session", http=http)
        result = handle.request("POST", "com.atproto.repo.createRecord", data={"a": 1})

        assert result == {"uri": "at://x", "cid": "bafy"}
        args, kwargs = http.request.call_args
        assert args == ("POST", f"{PDS}/xrpc/com.atproto.repo.createRecord")
        assert kwargs["json"] == {"a": 1}
        assert kwargs["headers"]["Authorization"] == f"Bearer {password_blob['access_jwt']}"

    def test_expired_token_refreshes_and_replays(
        self, temp_dir, password_blob, http, make_response, make_jwt
    ):
        """An ExpiredToken answer triggers one refresh and one replay."""
        store = KeyringCredentialStore("onyx")
        store.set(f"{DID}_session", password_blob)
        new_access, new_refresh = make_jwt(), make_jwt(expires_in=86400)
        http.request.side_effect = [
            make_response(400, {"error": "ExpiredToken", "message": "Token has expired"}),
            make_response(200, {"accessJwt": new_access, "refreshJwt": new_refresh, "did": DID}),
            make_response(200, {"uri": "at://x"}),
        ]

        handle = KeyringPasswordSession.restore(store, DID, "session", http=http)
        assert handle.request("POST", "com.atproto.repo.createRecord", data={}) == {"uri": "at://x"}

        refresh_call = http.request.call_args_list[1]
        assert refresh_call.args[1] == f"{PDS}/xrpc/com.atproto.server.refreshSession"
        assert (
            refresh_call.kwargs["headers"]["Authorization"]
            == f"Bearer {password_blob['refresh_jwt']}"
        )
        replay = http.request.call_args_list[2]
        assert replay.kwargs["headers"]["Authorization"] == f"Bearer {new_access}"
        assert store.get(f"{DID}_session")["access_jwt"] == new_access
        assert store.get(f"{DID}_session")["refresh_jwt"] == new_refresh

    def test_refresh_rejected(self, password_blob, http, make_response):
        """A rejected refresh is a RefreshError, not a transport error."""
        store = KeyringCredentialStore("onyx")
        handle = KeyringPasswordSession(store, DID, "session", password_blob, http=http)
        http.request.return_value = make_response(
            401, {"error": "InvalidToken", "message": "Token could not be verified"}
        )

        with pytest.raises(RefreshError) as exc_info:
            handle.refresh()
        assert not isinstance(exc_info.value, XrpcError)
        assert exc_info.value.hint is not None
        assert store.get(f"{DID}_session") is None

    def test_other_errors_propagate(self, password_blob, http, make_response):
        handle = KeyringPasswordSession(
            KeyringCredentialStore("onyx"), DID, "session", password_blob, http=http
        )
        http.request.return_value = make_response(
            400, {"error": "InvalidRequest", "message": "Record is invalid"}
        )

        with pytest.raises(XrpcError) as exc_info:
            handle.request("POST", "com.atproto.repo.createRecord", data={})
        assert exc_info.value.error == "InvalidRequest"
        assert http.request.call_count == 1

    def test_jwt_expiry(self, make_jwt):
        assert jwt_expiry(make_jwt(expires_in=60)) > datetime.now(timezone.utc)
        assert jwt_expiry("not-a-jwt") is None


class TestOAuthSession:
    """Tests for DPoP-bound OAuth sessions."""

    def test_request_sends_dpop(self, temp_dir, oauth_blob, http, make_response):
        store = FileCredentialStore(temp_dir / "store.json")
        store.set(f"{DID}_state123", oauth_blob)
        http.request.return_value = make_response(200, {"value": {}})

        handle = FileOAuthSession.restore(store, DID, "state123", http=http)
        handle.request("GET", "com.atproto.repo.getRecord", params={"rkey": "self"})

        headers = http.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "DPoP access-1"
        header, payload = decode_proof(headers["DPoP"])
        assert header["typ"] == "dpop+jwt"
        assert payload["htm"] == "GET"
        assert payload["htu"] == f"{PDS}/xrpc/com.atproto.repo.getRecord"
        assert payload["ath"] == dpop.access_token_hash("access-1")

    def test_nonce_challenge_is_answered_once(self, oauth_blob, http, make_response):
        handle = KeyringOAuthSession(
            KeyringCredentialStore("onyx"), DID, "state123", oauth_blob, http=http
        )
        http.request.side_effect = [
            make_response(
                401,
                {"error": "use_dpop_nonce"},
                headers={
                    "DPoP-Nonce": "pds-nonce",
                    "WWW-Authenticate": 'DPoP error="use_dpop_nonce"',
                },
            ),
            make_response(200, {"uri": "at://x"}),
        ]

        assert handle.request("POST", "com.atproto.repo.createRecord", data={}) == {"uri": "at://x"}
        _, payload = decode_proof(http.request.call_args.kwargs["headers"]["DPoP"])
        assert payload["nonce"] == "pds-nonce"
        assert handle.data["dpop_pds_nonce"] == "pds-nonce"

    def test_expired_on_restore_refreshes(self, temp_dir, oauth_blob, http, make_response):
        """Tokens past expires_at are refreshed before the handle is returned."""
        store = FileCredentialStore(temp_dir / "store.json")
        oauth_blob["expires_at"] = (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat()
        store.set(f"{DID}_state123", oauth_blob)
        http.request.return_value = make_response(
            200,
            {
                "access_token": "access-2",
                "refresh_token": "refresh-2",
                "token_type": "DPoP",
                "sub": DID,
                "scope": "atproto transition:generic",
                "expires_in": 3600,
            },
            headers={"DPoP-Nonce": "as-nonce-2"},
        )

        handle = FileOAuthSession.restore(store, DID, "state123", http=http)

        args, kwargs = http.request.call_args
        assert args == ("POST", "https://auth.example.com/oauth/token")
        assert kwargs["data"]["grant_type"] == "refresh_token"
        assert kwargs["data"]["refresh_token"] == "refresh-1"
        stored = store.get(f"{DID}_state123")
        assert stored["access_token"] == "access-2"
        assert stored["refresh_token"] == "refresh-2"
        assert stored["dpop_authserver_nonce"] == "as-nonce-2"
        assert not handle.is_expired()

    @pytest.mark.parametrize(
        "field, value, message",
        [
            ("dpop_private_jwk", None, "dpop_private_jwk"),
            ("dpop_private_jwk", {"kty": "RSA"}, "P-256"),
            ("expires_at", "soon", "soon"),
        ],
    )
    def test_restore_malformed_blob(self, temp_dir, oauth_blob, http, field, value, message):
        store = FileCredentialStore(temp_dir / "store.json")
        store.set(f"{DID}_state123", {**oauth_blob, field: value})

        with pytest.raises(SerializationError, match=message):
            FileOAuthSession.restore(store, DID, "state123", http=http)
        http.request.assert_not_called()

    def test_refresh_rejected(self, oauth_blob, http, make_response):
        handle = KeyringOAuthSession(
            KeyringCredentialStore("onyx"), DID, "state123", oauth_blob, http=http
        )
        http.request.return_value = make_response(
            400, {"error": "invalid_grant", "error_description": "refresh token revoked"}
        )

        with pytest.raises(RefreshError):
            handle.refresh()

    def test_invalid_token_refreshes_and_replays(self, oauth_blob, http, make_response):
        handle = KeyringOAuthSession(
            KeyringCredentialStore("onyx"), DID, "state123", oauth_blob, http=http
        )
        http.request.side_effect = [
            make_response(
                401,
                {"error": "invalid_token"},
                headers={"WWW-Authenticate": 'DPoP error="invalid_token"'},
            ),
            make_response(
                200,
                {
                    "access_token": "access-2",
                    "refresh_token": "refresh-2",
                    "token_type": "DPoP",
                    "sub": DID,
                    "expires_in": 3600,
                },
            ),
            make_response(200, {"uri": "at://x"}),
        ]

        assert handle.request("POST", "com.atproto.repo.createRecord", data={}) == {"uri": "at://x"}
        assert http.request.call_args.kwargs["headers"]["Authorization"] == "DPoP access-2"
