"""DPoP (RFC 9449) keys and proofs, ES256 over P-256."""

import base64
import hashlib
import json
import secrets
import time
from typing import Any, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

COORDINATE_SIZE = 32  # bytes, for P-256
PROOF_LIFETIME = 60  # seconds


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _int_to_b64url(value: int) -> str:
    return b64url(value.to_bytes(COORDINATE_SIZE, "big"))


def generate_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def private_jwk(key: ec.EllipticCurvePrivateKey) -> dict[str, str]:
    numbers = key.private_numbers()
    return {
        **public_jwk(key),
        "d": _int_to_b64url(numbers.private_value),
    }


def public_jwk(key: ec.EllipticCurvePrivateKey) -> dict[str, str]:
    numbers = key.public_key().public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": _int_to_b64url(numbers.x),
        "y": _int_to_b64url(numbers.y),
    }


def key_from_jwk(jwk: dict[str, str]) -> ec.EllipticCurvePrivateKey:
    if jwk.get("kty") != "EC" or jwk.get("crv") != "P-256" or "d" not in jwk:
        raise ValueError("DPoP key must be a private P-256 JWK")
    private_value = int.from_bytes(b64url_decode(jwk["d"]), "big")
    return ec.derive_private_key(private_value, ec.SECP256R1())


def access_token_hash(access_token: str) -> str:
    return b64url(hashlib.sha256(access_token.encode("ascii")).digest())


def sign_jwt(key: ec.EllipticCurvePrivateKey, header: dict[str, Any], payload: dict[str, Any]) -> str:
    signing_input = ".".join(
        b64url(json.dumps(part, separators=(",", ":")).encode("utf-8"))
        for part in (header, payload)
    )
    der_signature = key.sign(signing_input.encode("ascii"), ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der_signature)
    signature = r.to_bytes(COORDINATE_SIZE, "big") + s.to_bytes(COORDINATE_SIZE, "big")
    return f"{signing_input}.{b64url(signature)}"


def create_proof(
    key: ec.EllipticCurvePrivateKey,
    method: str,
    url: str,
    nonce: Optional[str] = None,
    access_token: Optional[str] = None,
) -> str:
    """Build a DPoP proof JWT for one HTTP request."""
    now = int(time.time())
    header = {"typ": "dpop+jwt", "alg": "ES256", "jwk": public_jwk(key)}
    payload: dict[str, Any] = {
        "jti": secrets.token_urlsafe(16),
        "htm": method.upper(),
        # htu excludes query and fragment
        "htu": url.split("?", 1)[0].split("#", 1)[0],
        "iat": now,
        "exp": now + PROOF_LIFETIME,
    }
    if nonce:
        payload["nonce"] = nonce
    if access_token:
        payload["ath"] = access_token_hash(access_token)
    return sign_jwt(key, header, payload)
