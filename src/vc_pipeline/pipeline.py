"""
Verification orchestrator.

Runs one request through ``START -> FETCHED -> STRUCTURALLY_VALID ->
CHECKS_RUNNING -> AGGREGATED -> TERMINAL``. Only fetch and structural
failures end a request early. After validation the hash, proof, ledger and
revocation checks run concurrently, each under its own timeout, and every
one of them is reported whether or not its siblings pass.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, TypeVar

from vc_pipeline.config import PipelineConfig
from vc_pipeline.digest import HashIntegrityChecker
from vc_pipeline.exceptions import (
    FetchError,
    FetchErrorKind,
    LedgerError,
    StructuralError,
)
from vc_pipeline.fetcher import DocumentFetcher, GatewayContentStore
from vc_pipeline.did_resolver import DIDResolver
from vc_pipeline.ledger import HttpLedgerClient, LedgerClient
from vc_pipeline.models import (
    CheckOutcome,
    Document,
    DocumentMode,
    LedgerOutcome,
    LedgerRecord,
    PipelineState,
    Presentation,
    ProofOutcome,
    RevocationOutcome,
    VerificationResult,
)
from vc_pipeline.proofs import ProofVerifier
from vc_pipeline.revocation import (
    HttpRevocationRegistry,
    RevocationChecker,
    StatusListChecker,
)
from vc_pipeline.validator import StructuralValidator

log = logging.getLogger(__name__)

O = TypeVar("O", bound=CheckOutcome)

# DID method prefixes that wrap a ledger account address
ADDRESS_DID_PREFIXES = ("did:ethr:", "did:pkh:")


def normalize_issuer(identifier: str) -> str:
    """Reduce an issuer identifier to a comparable form.

    ``did:ethr:0xAbC`` and ``0xabc`` compare equal; other identifiers are
    compared verbatim.
    """
    value = identifier.strip()
    if value.startswith(ADDRESS_DID_PREFIXES):
        value = value.rsplit(":", 1)[-1]
    if value.lower().startswith("0x"):
        value = value.lower()
    return value


def compare_record(record: LedgerRecord, issuer: str, address: str) -> list[str]:
    """Return the reasons *record* does not match the credential, if any."""
    mismatches: list[str] = []
    if normalize_issuer(record.issuer) != normalize_issuer(issuer):
        mismatches.append(f"Ledger issuer {record.issuer} does not match {issuer}")
    if record.content_address != address:
        mismatches.append(
            f"Ledger content address {record.content_address} does not match {address}"
        )
    return mismatches


class VerificationPipeline:
    """Verifies content-addressed credentials and presentations.

    Collaborators are injected so any of them can be replaced by a test
    double; missing ones are built from *config*.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        fetcher: DocumentFetcher | None = None,
        ledger: LedgerClient | None = None,
        revocation: RevocationChecker | None = None,
        proof_verifier: ProofVerifier | None = None,
        validator: StructuralValidator | None = None,
        hash_checker: HashIntegrityChecker | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        cfg = self.config

        self.fetcher = fetcher or DocumentFetcher(
            GatewayContentStore(
                gateway=cfg.ipfs_gateway,
                timeout=cfg.fetch_timeout,
                max_bytes=cfg.max_document_bytes,
                verify_ssl=cfg.verify_ssl,
            ),
            retries=cfg.fetch_retries,
            backoff=cfg.retry_backoff,
            cache_size=cfg.cache_size,
        )
        if ledger is None and cfg.ledger_url:
            ledger = HttpLedgerClient(
                cfg.ledger_url,
                timeout=cfg.fetch_timeout,
                retries=cfg.fetch_retries,
                backoff=cfg.retry_backoff,
                verify_ssl=cfg.verify_ssl,
            )
        self.ledger = ledger
        self.revocation = revocation or RevocationChecker(
            registry=(
                HttpRevocationRegistry(
                    cfg.revocation_url, timeout=cfg.fetch_timeout, verify_ssl=cfg.verify_ssl
                )
                if cfg.revocation_url
                else None
            ),
            status_lists=StatusListChecker(
                timeout=cfg.fetch_timeout,
                verify_ssl=cfg.verify_ssl,
                retries=cfg.fetch_retries,
                backoff=cfg.retry_backoff,
            ),
            policy=cfg.revocation_failure_policy,
            retries=cfg.fetch_retries,
            backoff=cfg.retry_backoff,
        )
        self.proof_verifier = proof_verifier or ProofVerifier(
            DIDResolver(
                timeout=cfg.fetch_timeout,
                verify_ssl=cfg.verify_ssl,
                cache_size=cfg.cache_size,
                cache_ttl=cfg.did_cache_ttl,
            )
        )
        self.validator = validator or StructuralValidator()
        self.hash_checker = hash_checker or HashIntegrityChecker()

    def _enter(self, state: PipelineState, cid: str) -> None:
        log.info("verification %s: %s", cid, state.value)

    async def verify(
        self,
        cid: str,
        public_key: str | None = None,
        *,
        issuer: str | None = None,
        credential_id: str | None = None,
    ) -> VerificationResult:
        """Verify the credential or presentation stored at *cid*.

        Args:
            cid: Content address of the document.
            public_key: Optional issuer public key (base64 or hex).
            issuer: Issuer identifier, used for the ledger lookup only when
                the document cannot be fetched.
            credential_id: Credential identifier, used for the revocation
                lookup only when the document cannot be fetched.

        Returns:
            VerificationResult; ``success`` is False only for an empty
            request, a failed fetch or an invalid structure.
        """
        if not isinstance(cid, str) or not cid.strip():
            return VerificationResult(
                success=False,
                error="cid is required",
                error_details={"stage": "request", "kind": "missing_field"},
            )

        self._enter(PipelineState.START, cid)
        try:
            raw = await self._fetch(cid)
        except FetchError as e:
            log.warning("fetch failed for %s: %s", cid, e.message)
            return await self._fetch_failed(cid, e, issuer, credential_id)
        self._enter(PipelineState.FETCHED, cid)

        try:
            document = self.validator.validate(raw)
        except StructuralError as e:
            log.warning("structure invalid for %s: %s", cid, e.message)
            self._enter(PipelineState.TERMINAL, cid)
            return VerificationResult(
                success=False,
                ipfs_valid=True,
                structure_valid=False,
                error="Credential structure is invalid",
                error_details={"stage": "structure", **e.to_dict()},
            )
        self._enter(PipelineState.STRUCTURALLY_VALID, cid)

        self._enter(PipelineState.CHECKS_RUNNING, cid)
        anchor = self._start_anchor_lookup(document.issuer, self._ledger_address(document, cid))
        try:
            outcomes = await asyncio.gather(
                self._bounded(
                    "hash", self._check_hash(document),
                    lambda note: CheckOutcome(passed=False, note=note),
                ),
                self._bounded(
                    "proof", self.proof_verifier.verify(document, public_key),
                    lambda note: ProofOutcome(
                        passed=False, note=note, proof_type=document.proof.proof_type
                    ),
                ),
                self._bounded(
                    "ledger", self._check_ledger(document, cid, anchor),
                    lambda note: LedgerOutcome(passed=False, note=note),
                ),
                self._bounded(
                    "revocation",
                    self.revocation.check(
                        self._credential_id(document),
                        document.status_entries,
                        anchor=self._shared(anchor),
                    ),
                    self.revocation.apply_policy,
                ),
            )
        finally:
            self._settle(anchor)
        hash_outcome, proof_outcome, ledger_outcome, revocation_outcome = outcomes

        result = self._aggregate(
            document, hash_outcome, proof_outcome, ledger_outcome, revocation_outcome
        )
        self._enter(PipelineState.AGGREGATED, cid)
        log.info("verification %s: verified=%s", cid, result.verified)
        self._enter(PipelineState.TERMINAL, cid)
        return result

    async def _fetch(self, cid: str) -> bytes:
        budget = self.config.check_timeout
        try:
            async with asyncio.timeout(budget):
                return await self.fetcher.fetch(cid)
        except TimeoutError:
            raise FetchError(
                FetchErrorKind.TIMEOUT, f"Fetch exceeded {budget}s budget"
            ) from None

    async def _bounded(
        self,
        name: str,
        check: Awaitable[O],
        on_timeout: Callable[[str], O],
    ) -> O:
        budget = self.config.check_timeout
        try:
            async with asyncio.timeout(budget):
                return await check
        except TimeoutError:
            log.warning("%s check timed out after %ss", name, budget)
            return on_timeout(f"{name} check timed out after {budget}s")

    async def _check_hash(self, document: Document) -> CheckOutcome:
        return self.hash_checker.check(document)

    def _ledger_address(self, document: Document, cid: str) -> str:
        if document.mode is DocumentMode.PRESENTATION and document.original_cid:
            return document.original_cid
        return cid

    def _credential_id(self, document: Document) -> str | None:
        if document.mode is DocumentMode.PRESENTATION:
            return document.credential_id
        return document.id

    def _start_anchor_lookup(
        self, issuer: str, address: str
    ) -> asyncio.Task[LedgerRecord | None] | None:
        """Start the one ledger lookup a request makes.

        The ledger check and the revocation check both read its result.
        """
        if self.ledger is None:
            return None
        return asyncio.create_task(self.ledger.lookup(issuer, address))

    def _shared(
        self, anchor: asyncio.Task[LedgerRecord | None] | None
    ) -> Awaitable[LedgerRecord | None] | None:
        # a consumer timing out must not cancel the shared lookup
        return None if anchor is None else asyncio.shield(anchor)

    def _settle(self, anchor: asyncio.Task[LedgerRecord | None] | None) -> None:
        if anchor is None:
            return
        if not anchor.done():
            anchor.cancel()
        elif not anchor.cancelled():
            # marks an unread failure as retrieved
            anchor.exception()

    async def _check_ledger(
        self,
        document: Document,
        cid: str,
        anchor: asyncio.Task[LedgerRecord | None] | None,
    ) -> LedgerOutcome:
        if anchor is None:
            return LedgerOutcome(passed=False, note="Ledger not configured")

        return await self._compare_anchor(
            document.issuer, self._ledger_address(document, cid), self._shared(anchor)
        )

    async def _fetch_failed(
        self,
        cid: str,
        error: FetchError,
        issuer: str | None,
        credential_id: str | None,
    ) -> VerificationResult:
        """Build the partial result, running the checks that need no document."""
        error_details: dict[str, Any] = {"stage": "fetch", **error.to_dict()}

        independent: dict[str, Any] = {}
        pending: list[Awaitable[CheckOutcome]] = []
        names: list[str] = []
        anchor = self._start_anchor_lookup(issuer, cid) if issuer else None
        if anchor is not None:
            names.append("blockchainValid")
            pending.append(self._bounded(
                "ledger", self._compare_anchor(issuer, cid, self._shared(anchor)),
                lambda note: LedgerOutcome(passed=False, note=note),
            ))
        if credential_id:
            names.append("revoked")
            pending.append(self._bounded(
                "revocation",
                self.revocation.check(credential_id, anchor=self._shared(anchor)),
                self.revocation.apply_policy,
            ))

        try:
            outcomes = await asyncio.gather(*pending)
        finally:
            self._settle(anchor)
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, RevocationOutcome):
                independent[name] = outcome.revoked
            else:
                independent[name] = outcome.passed
            if outcome.note:
                independent[f"{name}Note"] = outcome.note
        if independent:
            error_details["independentChecks"] = independent

        self._enter(PipelineState.TERMINAL, cid)
        return VerificationResult(
            success=False,
            ipfs_valid=False,
            error="Failed to retrieve credential from content store",
            error_details=error_details,
        )

    async def _compare_anchor(
        self, issuer: str, address: str, lookup: Awaitable[LedgerRecord | None]
    ) -> LedgerOutcome:
        try:
            record = await lookup
        except LedgerError as e:
            log.warning("ledger lookup failed for %s: %s", address, e.message)
            return LedgerOutcome(passed=False, note=f"Ledger lookup failed: {e.message}")
        if record is None:
            return LedgerOutcome(passed=False, note="No ledger record for this credential")
        mismatches = compare_record(record, issuer, address)
        return LedgerOutcome(
            passed=not mismatches, note="; ".join(mismatches) or None, record=record
        )

    def _echo(self, document: Document) -> dict[str, Any]:
        echoed = copy.deepcopy(document.raw)
        if document.mode is DocumentMode.PRESENTATION:
            echoed["credentialSubject"] = {
                name: document.disclosed_values[name] for name in document.disclosed_fields
            }
        return echoed

    def _aggregate(
        self,
        document: Document,
        hash_outcome: CheckOutcome,
        proof_outcome: ProofOutcome,
        ledger_outcome: LedgerOutcome,
        revocation_outcome: RevocationOutcome,
    ) -> VerificationResult:
        details: dict[str, Any] = {
            "issuer": document.issuer,
            "issuanceDate": document.issuance_date_raw,
            "proofType": proof_outcome.proof_type,
        }
        if isinstance(document, Presentation):
            details["subject"] = "Disclosed via selective disclosure"
            details["presentationType"] = "SelectiveDisclosure"
            details["disclosedFields"] = list(document.disclosed_fields)
            if document.original_cid:
                details["originalCID"] = document.original_cid
        else:
            details["subject"] = document.subject_id or "Unknown"

        if not proof_outcome.passed:
            details["bbsNote"] = proof_outcome.note or "Proof invalid"
        if not hash_outcome.applicable:
            details["notApplicable"] = ["hashMatch"]
        if hash_outcome.note:
            details["hashNote"] = hash_outcome.note
        if ledger_outcome.record is not None:
            details["blockchain"] = ledger_outcome.record.to_dict()
        if ledger_outcome.note:
            details["blockchainNote"] = ledger_outcome.note
        if revocation_outcome.note:
            details["revocationNote"] = revocation_outcome.note

        applicable = [
            o
            for o in (hash_outcome, proof_outcome, ledger_outcome, revocation_outcome)
            if o.applicable
        ]
        verified = all(o.passed for o in applicable)

        return VerificationResult(
            success=True,
            verified=verified,
            structure_valid=True,
            ipfs_valid=True,
            hash_match=hash_outcome.passed,
            bbs_proof_valid=proof_outcome.passed,
            blockchain_valid=ledger_outcome.passed,
            revoked=revocation_outcome.revoked,
            details=details,
            vc=self._echo(document),
        )


def verify_credential(
    cid: str,
    public_key: str | None = None,
    config: PipelineConfig | None = None,
    *,
    issuer: str | None = None,
    credential_id: str | None = None,
) -> VerificationResult:
    """Convenience function to verify a credential synchronously.

    Args:
        cid: Content address of the credential or presentation.
        public_key: Optional issuer public key.
        config: Pipeline settings; read from the environment when omitted.
        issuer: Issuer identifier for the ledger check if the fetch fails.
        credential_id: Credential identifier for the revocation check if
            the fetch fails.

    Returns:
        VerificationResult with details of all checks.
    """
    pipeline = VerificationPipeline(config=config or PipelineConfig.from_env())
    return asyncio.run(pipeline.verify(
        cid, public_key, issuer=issuer, credential_id=credential_id
    ))
