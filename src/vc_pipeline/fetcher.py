"""
Content-addressed document retrieval.

Fetches documents through an IPFS HTTP gateway with:
- Configurable timeout and bounded retry (timeouts only)
- Response size limit
- Gateway echo-header check against the requested CID
- Read-through LRU cache keyed by content address
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Protocol
from urllib.parse import quote

import httpx

from vc_pipeline.config import (
    DEFAULT_CACHE_SIZE,
    DEFAULT_FETCH_RETRIES,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_IPFS_GATEWAY,
    DEFAULT_MAX_DOCUMENT_BYTES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
)
from vc_pipeline.exceptions import FetchError, FetchErrorKind
from vc_pipeline.retry import retry_transient

log = logging.getLogger(__name__)


class ContentStore(Protocol):
    """Capability: resolve a content address to its bytes."""

    async def fetch(self, address: str) -> bytes:
        """Raises FetchError on failure."""
        ...


def _echoed_cids(response: httpx.Response) -> list[str]:
    """CIDs the gateway says it served, from its response headers."""
    echoed: list[str] = []
    path = response.headers.get("x-ipfs-path", "")
    if path.startswith("/ipfs/"):
        echoed.append(path[len("/ipfs/"):].split("/")[0])
    etag = response.headers.get("etag", "")
    etag = etag.removeprefix("W/").strip('"')
    if etag.startswith(("Qm", "baf")):
        echoed.append(etag.split(".")[0])
    return echoed


class GatewayContentStore:
    """Fetches ``{gateway}/ipfs/{cid}`` over HTTP."""

    def __init__(
        self,
        gateway: str = DEFAULT_IPFS_GATEWAY,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        max_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES,
        verify_ssl: bool = True,
    ) -> None:
        self.gateway = gateway.rstrip("/")
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.verify_ssl = verify_ssl

    async def fetch(self, address: str) -> bytes:
        url = f"{self.gateway}/ipfs/{quote(address, safe='')}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, verify=self.verify_ssl, follow_redirects=True
            ) as client:
                response = await client.get(
                    url, headers={"Accept": "application/json, application/vc+ld+json"}
                )
                response.raise_for_status()

        except httpx.TimeoutException as e:
            raise FetchError(
                FetchErrorKind.TIMEOUT, f"Timeout after {self.timeout}s fetching {address}"
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (404, 410):
                raise FetchError(
                    FetchErrorKind.NOT_FOUND, f"Content {address} not found"
                ) from e
            raise FetchError(
                FetchErrorKind.UNAVAILABLE, f"HTTP {status} fetching {address}"
            ) from e
        except httpx.RequestError as e:
            raise FetchError(
                FetchErrorKind.UNAVAILABLE, f"Request failed for {address}: {e}"
            ) from e

        content = response.content
        if len(content) > self.max_bytes:
            raise FetchError(
                FetchErrorKind.CORRUPT,
                f"Response size {len(content)} bytes exceeds limit of {self.max_bytes} bytes",
            )
        for echoed in _echoed_cids(response):
            if echoed != address:
                raise FetchError(
                    FetchErrorKind.CORRUPT,
                    f"Gateway served {echoed} for requested {address}",
                )
        return content


class DocumentFetcher:
    """Retrying, caching front for a :class:`ContentStore`.

    The cache is keyed by the content address itself, so a hit can never
    return bytes for a different address. Only successful fetches are cached.
    """

    def __init__(
        self,
        store: ContentStore | None = None,
        retries: int = DEFAULT_FETCH_RETRIES,
        backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self.store = store or GatewayContentStore()
        self.retries = retries
        self.backoff = backoff
        self.cache_size = cache_size
        self._cache: OrderedDict[str, bytes] = OrderedDict()

    async def fetch(self, address: str) -> bytes:
        """Return the bytes at *address*.

        Raises:
            FetchError: NOT_FOUND, TIMEOUT (after retries), CORRUPT or
                UNAVAILABLE.
        """
        if not address or not address.strip():
            raise FetchError(FetchErrorKind.NOT_FOUND, "Empty content address")

        cached = self._cache.get(address)
        if cached is not None:
            self._cache.move_to_end(address)
            log.debug("cache hit for %s", address)
            return cached

        content = await retry_transient(
            lambda: self.store.fetch(address),
            retries=self.retries,
            backoff=self.backoff,
            description=f"fetch {address}",
        )
        log.info("fetched %s (%d bytes)", address, len(content))

        if self.cache_size > 0:
            self._cache[address] = content
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return content

    def clear_cache(self) -> None:
        self._cache.clear()
