"""
Ledger lookup for credential anchoring records.

The client only reads records; comparing a record with the credential is
left to the orchestrator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from vc_pipeline.config import (
    DEFAULT_FETCH_RETRIES,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
)
from vc_pipeline.exceptions import LedgerError, LedgerErrorKind
from vc_pipeline.models import LedgerRecord
from vc_pipeline.retry import retry_transient

log = logging.getLogger(__name__)


class LedgerClient(Protocol):
    """Capability: find the anchoring record for an issuer/address pair."""

    async def lookup(self, issuer: str, address: str) -> LedgerRecord | None:
        """Return the record, or None when nothing is anchored.

        Raises:
            LedgerError: If the ledger could not be queried.
        """
        ...


def _from_epoch(seconds: int | float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise LedgerError(
            LedgerErrorKind.MALFORMED, f"Ledger timestamp {seconds!r} is out of range"
        ) from e


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, bool):
        raise LedgerError(LedgerErrorKind.MALFORMED, "timestamp must be a number or string")
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        if value.isdigit():
            return _from_epoch(int(value))
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise LedgerError(
                LedgerErrorKind.MALFORMED, f"Unparseable ledger timestamp {value!r}"
            ) from None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise LedgerError(LedgerErrorKind.MALFORMED, "Ledger record is missing timestamp")


def parse_record(data: Any) -> LedgerRecord | None:
    """Build a :class:`LedgerRecord` from a ledger response body.

    ``{"exists": false}`` is treated as no record. An optional boolean
    ``revoked`` is the revocation flag kept alongside the anchor.

    Raises:
        LedgerError: If required fields are missing or malformed.
    """
    if not isinstance(data, dict):
        raise LedgerError(LedgerErrorKind.MALFORMED, "Ledger response must be an object")
    if data.get("exists") is False:
        return None

    issuer = data.get("issuer")
    address = data.get("ipfsCID") or data.get("contentAddress")
    if not isinstance(issuer, str) or not issuer:
        raise LedgerError(LedgerErrorKind.MALFORMED, "Ledger record is missing issuer")
    if not isinstance(address, str) or not address:
        raise LedgerError(LedgerErrorKind.MALFORMED, "Ledger record is missing ipfsCID")
    revoked = data.get("revoked")
    if revoked is not None and not isinstance(revoked, bool):
        raise LedgerError(LedgerErrorKind.MALFORMED, "Ledger revoked flag must be a boolean")

    return LedgerRecord(
        issuer=issuer,
        timestamp=_parse_timestamp(data.get("timestamp")),
        content_address=address,
        revoked=revoked,
    )


class HttpLedgerClient:
    """Queries an anchoring ledger index over HTTP.

    ``GET {base_url}/anchors/{address}?issuer={issuer}``; 404 means the
    address was never anchored.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        retries: int = DEFAULT_FETCH_RETRIES,
        backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        verify_ssl: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.verify_ssl = verify_ssl

    async def lookup(self, issuer: str, address: str) -> LedgerRecord | None:
        return await retry_transient(
            lambda: self._lookup_once(issuer, address),
            retries=self.retries,
            backoff=self.backoff,
            description=f"ledger lookup {address}",
        )

    async def _lookup_once(self, issuer: str, address: str) -> LedgerRecord | None:
        url = f"{self.base_url}/anchors/{quote(address, safe='')}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, verify=self.verify_ssl
            ) as client:
                response = await client.get(url, params={"issuer": issuer})
                if response.status_code == 404:
                    log.info("no ledger record for %s", address)
                    return None
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException as e:
            raise LedgerError(
                LedgerErrorKind.TIMEOUT, f"Ledger timeout after {self.timeout}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise LedgerError(
                LedgerErrorKind.UNAVAILABLE, f"Ledger HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise LedgerError(LedgerErrorKind.UNAVAILABLE, f"Ledger request failed: {e}") from e
        except ValueError as e:
            raise LedgerError(LedgerErrorKind.MALFORMED, "Invalid JSON from ledger") from e

        return parse_record(data)
