"""
Issuer key discovery through did:web.

Used only when neither the caller nor the credential supplies a key. The
proof's ``verificationMethod`` names a key inside the issuer's DID Document,
which is served over HTTPS at a location derived from the DID.
https://w3c-ccg.github.io/did-method-web/
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import quote

import httpx

from vc_pipeline.config import (
    DEFAULT_CACHE_SIZE,
    DEFAULT_DID_CACHE_TTL_SECONDS,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
)
from vc_pipeline.exceptions import DIDResolutionError

log = logging.getLogger(__name__)

DID_WEB_PREFIX = "did:web:"


def did_web_url(did: str) -> str:
    """Map a did:web identifier (fragment ignored) to its document URL.

    ``did:web:example.com`` is served from ``/.well-known/did.json``; extra
    colon-separated segments become path components, and ``%3A`` in the
    host encodes a port.

    Raises:
        DIDResolutionError: If *did* is not a did:web identifier.
    """
    if not did.startswith(DID_WEB_PREFIX):
        raise DIDResolutionError(f"Invalid did:web identifier: {did}")

    host, *segments = did[len(DID_WEB_PREFIX):].partition("#")[0].split(":")
    host = host.replace("%3A", ":")
    if not host:
        raise DIDResolutionError(f"Invalid did:web identifier: {did}")
    if segments:
        return f"https://{host}/{'/'.join(quote(s, safe='') for s in segments)}/did.json"
    return f"https://{host}/.well-known/did.json"


def _reference_id(item: Any) -> str | None:
    # Relationship entries are either method ids or embedded methods
    if isinstance(item, str):
        return item
    if isinstance(item, dict) and isinstance(item.get("id"), str):
        return item["id"]
    return None


def _method_list(data: dict[str, Any], name: str, did: str) -> list[Any]:
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise DIDResolutionError(f"{name} in DID Document for {did} must be a list")
    return value


@dataclass
class DIDDocument:
    """The parts of a DID Document that key discovery needs."""

    id: str
    keys: dict[str, dict[str, Any]] = field(default_factory=dict)
    assertion_method: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any, did: str) -> DIDDocument:
        if not isinstance(data, dict):
            raise DIDResolutionError(f"DID Document for {did} is not an object")
        if data.get("id") != did:
            raise DIDResolutionError(
                f"DID Document id mismatch: expected {did}, got {data.get('id')}"
            )

        methods = _method_list(data, "verificationMethod", did)
        assertion_methods = _method_list(data, "assertionMethod", did)

        keys: dict[str, dict[str, Any]] = {}
        for method in [*methods, *assertion_methods]:
            if (
                isinstance(method, dict)
                and isinstance(method.get("id"), str)
                and isinstance(method.get("publicKeyJwk"), dict)
            ):
                keys[method["id"]] = method["publicKeyJwk"]

        assertion = [_reference_id(item) for item in assertion_methods]
        return cls(
            id=did,
            keys=keys,
            assertion_method=[ref for ref in assertion if ref],
        )

    def assertion_key(self, method_id: str) -> dict[str, Any]:
        """Return the JWK of *method_id* if it may sign credentials.

        Raises:
            DIDResolutionError: If the method is unknown, not listed under
                ``assertionMethod`` or has no JWK.
        """
        if method_id not in self.keys and method_id not in self.assertion_method:
            raise DIDResolutionError(
                f"Verification method {method_id} not found in DID Document"
            )
        if self.assertion_method and method_id not in self.assertion_method:
            raise DIDResolutionError(f"{method_id} is not authorized for assertionMethod")
        if method_id not in self.keys:
            raise DIDResolutionError(f"No publicKeyJwk in verification method {method_id}")
        return self.keys[method_id]


class DIDResolver:
    """Fetches and caches did:web documents.

    Cached documents expire after *cache_ttl* seconds; 0 disables caching.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        verify_ssl: bool = True,
        cache_size: int = DEFAULT_CACHE_SIZE,
        cache_ttl: float = DEFAULT_DID_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.cache_size = cache_size
        self.cache_ttl = cache_ttl
        self._clock = clock
        # did -> (expiry, document)
        self._cache: OrderedDict[str, tuple[float, DIDDocument]] = OrderedDict()

    async def resolve(self, did: str) -> DIDDocument:
        """Return the DID Document for *did*, fragment ignored.

        Raises:
            DIDResolutionError: On any HTTP, JSON or document error.
        """
        base_did = did.partition("#")[0]
        cached = self._cache.get(base_did)
        if cached is not None:
            expires_at, document = cached
            if self._clock() < expires_at:
                self._cache.move_to_end(base_did)
                return document
            log.debug("cached DID Document for %s expired", base_did)
            del self._cache[base_did]

        url = did_web_url(base_did)
        log.debug("resolving %s via %s", base_did, url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, verify=self.verify_ssl
            ) as client:
                response = await client.get(
                    url, headers={"Accept": "application/did+ld+json, application/json"}
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise DIDResolutionError(
                f"HTTP error resolving {base_did}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise DIDResolutionError(f"Network error resolving {base_did}: {e}") from e
        except ValueError as e:
            raise DIDResolutionError(f"Invalid JSON in DID Document for {base_did}") from e

        document = DIDDocument.from_dict(data, base_did)
        if self.cache_size > 0 and self.cache_ttl > 0:
            self._cache[base_did] = (self._clock() + self.cache_ttl, document)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return document

    async def resolve_key(self, verification_method: str) -> dict[str, Any]:
        """Return the assertion JWK named by a ``did:web:...#key`` reference."""
        document = await self.resolve(verification_method)
        return document.assertion_key(verification_method)

    def clear_cache(self) -> None:
        self._cache.clear()
