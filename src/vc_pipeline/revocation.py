"""
Revocation checking.

Three sources, used together when they apply:
- A revocation registry keyed by credential identifier. No record means
  "not revoked".
- W3C StatusList2021 entries carried in ``credentialStatus``.
  https://www.w3.org/TR/vc-status-list/
- The ``revoked`` flag of the ledger anchoring record.

When a source cannot answer, :class:`RevocationFailurePolicy` decides in its
place and the outcome note says which policy was applied.
"""

from __future__ import annotations

import asyncio
import base64
import gzip
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Protocol
from urllib.parse import quote

import httpx

from vc_pipeline.config import (
    DEFAULT_FETCH_RETRIES,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_REVOCATION_FAILURE_POLICY,
    RevocationFailurePolicy,
)
from vc_pipeline.exceptions import LedgerError, RevocationError, RevocationErrorKind
from vc_pipeline.models import LedgerRecord, RevocationOutcome
from vc_pipeline.retry import retry_transient

log = logging.getLogger(__name__)


class RevocationRegistry(Protocol):
    """Capability: revoked/not-revoked status by credential identifier."""

    async def is_revoked(self, credential_id: str) -> bool:
        """Raises RevocationError if the registry could not be queried."""
        ...


def _translate_http_error(e: httpx.HTTPError, what: str) -> RevocationError:
    if isinstance(e, httpx.TimeoutException):
        return RevocationError(RevocationErrorKind.TIMEOUT, f"Timeout querying {what}")
    if isinstance(e, httpx.HTTPStatusError):
        return RevocationError(
            RevocationErrorKind.UNAVAILABLE,
            f"HTTP error querying {what}: {e.response.status_code}",
        )
    return RevocationError(RevocationErrorKind.UNAVAILABLE, f"Network error querying {what}: {e}")


class HttpRevocationRegistry:
    """``GET {base_url}/revocations/{id}`` returning ``{"revoked": bool}``; 404 is not revoked."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        verify_ssl: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    async def is_revoked(self, credential_id: str) -> bool:
        url = f"{self.base_url}/revocations/{quote(credential_id, safe='')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = await client.get(url)
                if response.status_code == 404:
                    return False
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise _translate_http_error(e, "revocation registry") from e
        except ValueError as e:
            raise RevocationError(
                RevocationErrorKind.MALFORMED, "Invalid JSON from revocation registry"
            ) from e

        revoked = data.get("revoked") if isinstance(data, dict) else None
        if not isinstance(revoked, bool):
            raise RevocationError(
                RevocationErrorKind.MALFORMED, "Registry response lacks a boolean 'revoked'"
            )
        return revoked


class CredentialStatus(Enum):
    VALID = "valid"
    REVOKED = "revoked"
    SUSPENDED = "suspended"
    UNKNOWN = "unknown"


# statusPurpose value -> status of a credential whose bit is set
SET_BIT_STATUS = {
    "revocation": CredentialStatus.REVOKED,
    "suspension": CredentialStatus.SUSPENDED,
}


@dataclass(frozen=True)
class StatusListEntry:
    """One ``StatusList2021Entry`` from a credential's ``credentialStatus``."""

    status_list_credential: str
    status_list_index: int
    status_purpose: str

    @classmethod
    def from_dict(cls, item: dict[str, Any]) -> StatusListEntry:
        try:
            index = int(item["statusListIndex"])
            url = item["statusListCredential"]
            purpose = item["statusPurpose"]
        except (KeyError, ValueError, TypeError) as e:
            raise RevocationError(
                RevocationErrorKind.MALFORMED, f"Invalid credentialStatus: {e}"
            ) from e
        if not isinstance(url, str) or not isinstance(purpose, str) or index < 0:
            raise RevocationError(
                RevocationErrorKind.MALFORMED, "Invalid credentialStatus entry"
            )
        return cls(url, index, purpose)


@dataclass(frozen=True)
class StatusList:
    """Decoded status bitstring; bit 0 is the most significant bit of byte 0."""

    bits: bytes
    purpose: str | None = None

    @classmethod
    def decode(cls, encoded_list: str, purpose: str | None = None) -> StatusList:
        """Decode ``gunzip(base64(encoded_list))``; base64url is accepted too."""
        try:
            padded = encoded_list + "=" * (-len(encoded_list) % 4)
            compressed = base64.b64decode(padded.replace("-", "+").replace("_", "/"))
            return cls(gzip.decompress(compressed), purpose)
        except (ValueError, OSError, EOFError) as e:
            raise RevocationError(
                RevocationErrorKind.MALFORMED, f"Failed to decode bitstring: {e}"
            ) from e

    @classmethod
    def from_credential(cls, data: Any, url: str) -> StatusList:
        subject = data.get("credentialSubject") if isinstance(data, dict) else None
        encoded = subject.get("encodedList") if isinstance(subject, dict) else None
        if not isinstance(encoded, str) or not encoded:
            raise RevocationError(
                RevocationErrorKind.MALFORMED, f"Missing encodedList in status list {url}"
            )
        return cls.decode(encoded, subject.get("statusPurpose"))

    def __len__(self) -> int:
        return len(self.bits) * 8

    def is_set(self, index: int) -> bool:
        if not 0 <= index < len(self):
            raise RevocationError(
                RevocationErrorKind.MALFORMED,
                f"StatusList index {index} out of range [0, {len(self)})",
            )
        return bool(self.bits[index // 8] & (0x80 >> (index % 8)))


@dataclass
class StatusCheckResult:
    status: CredentialStatus
    entry: StatusListEntry
    message: str


class StatusListChecker:
    """Checks W3C StatusList2021 entries; distinct lists are fetched concurrently."""

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        verify_ssl: bool = True,
        retries: int = DEFAULT_FETCH_RETRIES,
        backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    ) -> None:
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.retries = retries
        self.backoff = backoff

    def parse_entries(self, status_data: list[dict[str, Any]]) -> list[StatusListEntry]:
        """Parse StatusList2021Entry items, ignoring other status types.

        Raises:
            RevocationError: If a StatusList2021Entry is malformed.
        """
        return [
            StatusListEntry.from_dict(item)
            for item in status_data
            if item.get("type") == "StatusList2021Entry"
        ]

    async def check_status(self, entries: list[StatusListEntry]) -> list[StatusCheckResult]:
        """Look up every entry's bit.

        Raises:
            RevocationError: If a status list cannot be fetched or decoded.
        """
        urls = list(dict.fromkeys(e.status_list_credential for e in entries))
        lists = dict(zip(urls, await asyncio.gather(*map(self.status_list, urls))))
        return [self._evaluate(entry, lists[entry.status_list_credential]) for entry in entries]

    def _evaluate(self, entry: StatusListEntry, status_list: StatusList) -> StatusCheckResult:
        index, purpose = entry.status_list_index, entry.status_purpose
        if status_list.purpose and status_list.purpose != purpose:
            return StatusCheckResult(
                CredentialStatus.UNKNOWN,
                entry,
                f"Status list purpose {status_list.purpose} does not match entry purpose {purpose}",
            )
        if not status_list.is_set(index):
            return StatusCheckResult(
                CredentialStatus.VALID, entry, f"Credential status is valid ({purpose}, index {index})"
            )
        status = SET_BIT_STATUS.get(purpose, CredentialStatus.UNKNOWN)
        if status is CredentialStatus.UNKNOWN:
            return StatusCheckResult(status, entry, f"Unknown status purpose: {purpose}")
        return StatusCheckResult(status, entry, f"Credential is {status.value} (index {index})")

    async def status_list(self, url: str) -> StatusList:
        """Fetch and decode the status list credential at *url*.

        Never cached: every check reads the list as currently published.
        """
        return await retry_transient(
            lambda: self._fetch(url),
            retries=self.retries,
            backoff=self.backoff,
            description=f"status list {url}",
        )

    async def _fetch(self, url: str) -> StatusList:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = await client.get(
                    url, headers={"Accept": "application/vc+ld+json, application/json"}
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise _translate_http_error(e, f"status list {url}") from e
        except ValueError as e:
            raise RevocationError(
                RevocationErrorKind.MALFORMED, f"Invalid JSON in status list {url}"
            ) from e
        return StatusList.from_credential(data, url)


class RevocationChecker:
    """Combines the registry, status lists and ledger flag under a failure policy.

    Each source is asked on its own. A source that reports the credential
    revoked decides the outcome; the policy only stands in for sources that
    could not answer.
    """

    def __init__(
        self,
        registry: RevocationRegistry | None = None,
        status_lists: StatusListChecker | None = None,
        policy: RevocationFailurePolicy = DEFAULT_REVOCATION_FAILURE_POLICY,
        retries: int = DEFAULT_FETCH_RETRIES,
        backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    ) -> None:
        self.registry = registry
        self.status_lists = status_lists or StatusListChecker()
        self.policy = policy
        self.retries = retries
        self.backoff = backoff

    async def check(
        self,
        credential_id: str | None,
        status_entries: list[dict[str, Any]] | None = None,
        anchor: Awaitable[LedgerRecord | None] | None = None,
    ) -> RevocationOutcome:
        """Return the revocation outcome across every applicable source.

        Args:
            credential_id: Key for the revocation registry.
            status_entries: The credential's ``credentialStatus`` items.
            anchor: Pending ledger lookup; a record carrying a ``revoked``
                flag counts as an answer.
        """
        lookups: list[Awaitable[tuple[bool | None, list[str]]]] = []
        if status_entries:
            lookups.append(self._check_status_lists(status_entries))
        if self.registry is not None and credential_id:
            lookups.append(self._check_registry(self.registry, credential_id))
        if anchor is not None:
            lookups.append(self._check_anchor(anchor))

        revoked = False
        answered = False
        notes: list[str] = []
        failures: list[str] = []
        for answer, source_notes, failure in await asyncio.gather(*map(self._ask, lookups)):
            notes.extend(source_notes)
            if failure:
                failures.append(failure)
            elif answer is not None:
                answered = True
                revoked = revoked or answer

        if revoked:
            return RevocationOutcome(
                passed=False, revoked=True, note="; ".join([*notes, *failures])
            )
        if failures:
            return self.apply_policy("; ".join(failures))
        if not answered:
            reason = (
                "no revocation registry configured"
                if self.registry is None
                else "no credential identifier"
            )
            return self.apply_policy(f"Cannot check revocation: {reason}")
        return RevocationOutcome(passed=True, revoked=False, note="; ".join(notes) or None)

    async def _ask(
        self, lookup: Awaitable[tuple[bool | None, list[str]]]
    ) -> tuple[bool | None, list[str], str | None]:
        try:
            answer, notes = await lookup
        except RevocationError as e:
            log.warning("revocation source failed: %s", e.message)
            return None, [], e.message
        return answer, notes, None

    async def _check_status_lists(
        self, status_entries: list[dict[str, Any]]
    ) -> tuple[bool | None, list[str]]:
        entries = self.status_lists.parse_entries(status_entries)
        if not entries:
            return None, []
        revoked = False
        notes: list[str] = []
        for result in await self.status_lists.check_status(entries):
            if result.status is CredentialStatus.REVOKED:
                revoked = True
            if result.status is not CredentialStatus.VALID:
                notes.append(result.message)
        return revoked, notes

    async def _check_registry(
        self, registry: RevocationRegistry, credential_id: str
    ) -> tuple[bool | None, list[str]]:
        revoked = await retry_transient(
            lambda: registry.is_revoked(credential_id),
            retries=self.retries,
            backoff=self.backoff,
            description=f"revocation lookup {credential_id}",
        )
        return revoked, ["Revoked in registry"] if revoked else []

    async def _check_anchor(
        self, anchor: Awaitable[LedgerRecord | None]
    ) -> tuple[bool | None, list[str]]:
        try:
            record = await anchor
        except LedgerError as e:
            raise RevocationError(
                RevocationErrorKind.UNAVAILABLE, f"Ledger lookup failed: {e.message}"
            ) from e
        if record is None or record.revoked is None:
            return None, []
        return record.revoked, ["Revoked on ledger"] if record.revoked else []

    def apply_policy(self, reason: str) -> RevocationOutcome:
        assume_revoked = self.policy is RevocationFailurePolicy.FAIL_CLOSED
        log.warning("revocation lookup failed (%s), applying %s", reason, self.policy.value)
        return RevocationOutcome(
            passed=not assume_revoked,
            revoked=assume_revoked,
            note=(
                f"{reason}; {self.policy.value} policy assumes "
                f"{'revoked' if assume_revoked else 'not revoked'}"
            ),
        )
