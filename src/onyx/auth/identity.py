"""Identity resolution: handle to DID, and DID document to PDS endpoint."""

import logging
import re
from typing import Any, Optional

import requests

from onyx.auth.models import Identity
from onyx.errors import IdentityError, TransportError, XrpcError
from onyx.xrpc import DEFAULT_TIMEOUT, XrpcClient, send

logger = logging.getLogger(__name__)

HANDLE_PATTERN = re.compile(
    r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+"
    r"[a-zA-Z]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
)
DID_PATTERN = re.compile(r"^did:[a-z]+:[a-zA-Z0-9._:%-]+$")

PDS_SERVICE_ID = "#atproto_pds"
PDS_SERVICE_TYPE = "AtprotoPersonalDataServer"


def is_did(ident: str) -> bool:
    return bool(DID_PATTERN.match(ident))


def is_handle(ident: str) -> bool:
    return len(ident) <= 253 and bool(HANDLE_PATTERN.match(ident))


def handles_from_document(document: dict[str, Any]) -> tuple[str, ...]:
    return tuple(
        aka.removeprefix("at://")
        for aka in document.get("alsoKnownAs", [])
        if isinstance(aka, str) and aka.startswith("at://")
    )


def pds_from_document(document: dict[str, Any]) -> Optional[str]:
    for service in document.get("service", []):
        if not isinstance(service, dict):
            continue
        service_id = service.get("id", "")
        if service_id == PDS_SERVICE_ID or (
            service_id.endswith(PDS_SERVICE_ID) and service.get("type") == PDS_SERVICE_TYPE
        ):
            endpoint = service.get("serviceEndpoint")
            if isinstance(endpoint, str):
                return endpoint.rstrip("/")
    return None


class IdentityResolver:
    """Resolves handles and DIDs to an Identity with its PDS endpoint."""

    def __init__(
        self,
        plc_directory: str = "https://plc.directory",
        appview_url: str = "https://public.api.bsky.app",
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.plc_directory = plc_directory.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout
        self.appview = XrpcClient(appview_url, http=self.http, timeout=timeout)

    def resolve(self, ident: str) -> Identity:
        """Resolve a handle or DID, verifying that a handle is claimed by its DID."""
        ident = ident.strip().removeprefix("@").removeprefix("at://")
        if is_did(ident):
            did = ident
        elif is_handle(ident):
            did = self.resolve_handle(ident.lower())
        else:
            raise IdentityError(f"'{ident}' is neither a valid handle nor a DID")

        document = self.resolve_did_document(did)
        handles = handles_from_document(document)
        if is_handle(ident) and ident.lower() not in (h.lower() for h in handles):
            raise IdentityError(f"DID document for {did} does not claim handle {ident}")

        pds = pds_from_document(document)
        if pds is None:
            raise IdentityError(f"DID document for {did} has no PDS endpoint")

        identity = Identity(did=did, handles=handles, pds=pds)
        logger.debug("Resolved %s to %s at %s", ident, did, pds)
        return identity

    def resolve_handle(self, handle: str) -> str:
        did = self._resolve_handle_well_known(handle)
        if did is None:
            did = self._resolve_handle_appview(handle)
        return did

    def _resolve_handle_well_known(self, handle: str) -> Optional[str]:
        url = f"https://{handle}/.well-known/atproto-did"
        try:
            response = send(self.http, "GET", url, timeout=self.timeout)
        except TransportError as e:
            logger.debug("Well-known lookup for %s failed: %s", handle, e)
            return None
        candidate = response.text.strip() if response.ok else ""
        return candidate if is_did(candidate) else None

    def _resolve_handle_appview(self, handle: str) -> str:
        try:
            response = self.appview.query(
                "com.atproto.identity.resolveHandle", {"handle": handle}
            )
        except XrpcError as e:
            raise IdentityError(f"Unable to resolve handle {handle}: {e}") from e
        did = response.get("did")
        if not isinstance(did, str) or not is_did(did):
            raise IdentityError(f"Unable to resolve handle {handle}")
        return did

    def resolve_did_document(self, did: str) -> dict[str, Any]:
        if did.startswith("did:plc:"):
            url = f"{self.plc_directory}/{did}"
        elif did.startswith("did:web:"):
            host = did.removeprefix("did:web:").replace("%3A", ":")
            url = f"https://{host}/.well-known/did.json"
        else:
            raise IdentityError(f"Unsupported DID method: {did}")

        response = send(self.http, "GET", url, timeout=self.timeout)
        if not response.ok:
            raise IdentityError(
                f"Unable to fetch DID document for {did}: HTTP {response.status_code}"
            )
        try:
            document = response.json()
        except ValueError as e:
            raise IdentityError(f"DID document for {did} is not valid JSON") from e
        if not isinstance(document, dict) or document.get("id") != did:
            raise IdentityError(f"DID document for {did} does not match the DID")
        return document
