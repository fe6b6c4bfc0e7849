"""
Signature and selective-disclosure proof verification.

Two proof paths:
- Direct signature over the canonical credential (proof removed), checked
  with the issuer's P-256 or Ed25519 key.
- Salted-digest disclosure proof: the issuer signs a base document holding
  one salted SHA-256 commitment per subject attribute. A presentation
  reveals ``(salt, name, value)`` only for the disclosed attributes; the
  verifier recomputes those commitments and checks they are among the
  signed ones. Undisclosed attributes stay hidden behind their salts.

Verification never raises into the caller: every failure is reported as a
failed :class:`ProofOutcome` with a note.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from typing import Any, Awaitable, Callable

from vc_pipeline.canonical import b64url_decode, canonical_bytes
from vc_pipeline.did_resolver import DIDResolver
from vc_pipeline.exceptions import DIDResolutionError, ProofError, ProofErrorKind
from vc_pipeline.keys import (
    SUPPORTED_CRYPTOSUITES,
    PublicKey,
    load_public_key,
    verify_signature,
)
from vc_pipeline.models import (
    DirectSignature,
    Document,
    DocumentMode,
    Proof,
    ProofKind,
    ProofOutcome,
    SelectiveDisclosureProof,
    UnsupportedProof,
)

log = logging.getLogger(__name__)

MISSING_KEY_NOTE = "Public key required for signature verification"

# BBS+ over BLS12-381; no maintained Python verifier for the signing ciphersuite
BBS_PROOF_TYPES = frozenset({"BbsBlsSignature2020", "BbsBlsSignatureProof2020"})


def disclosure_digest(salt: str, name: str, value: Any) -> str:
    """Commitment to one subject attribute: SHA-256 of canonical ``[salt, name, value]``."""
    return hashlib.sha256(canonical_bytes([salt, name, value])).hexdigest()


def decode_proof_value(value: str) -> bytes:
    """Decode a proof value in base64url (unpadded) or standard base64."""
    if not value:
        raise ProofError(ProofErrorKind.MALFORMED, "Missing proofValue")
    try:
        if "-" in value or "_" in value:
            return b64url_decode(value)
        return base64.b64decode(value + "=" * (-len(value) % 4), validate=True)
    except ValueError as e:
        raise ProofError(ProofErrorKind.MALFORMED, f"proofValue is not base64: {e}") from e


Handler = Callable[[Document, Any, Any], Awaitable[None]]


class ProofVerifier:
    """Verifies the proof of a validated credential or presentation."""

    def __init__(self, did_resolver: DIDResolver | None = None) -> None:
        self.did_resolver = did_resolver or DIDResolver()
        self._handlers: dict[ProofKind, Handler] = {
            ProofKind.DIRECT_SIGNATURE: self._verify_direct,
            ProofKind.SELECTIVE_DISCLOSURE: self._verify_disclosure,
            ProofKind.UNSUPPORTED: self._reject_unsupported,
        }
        missing = set(ProofKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No proof handler for {sorted(k.value for k in missing)}")

    async def verify(
        self, document: Document, public_key: str | None = None
    ) -> ProofOutcome:
        """Verify the document's proof.

        Args:
            document: A validated credential or presentation.
            public_key: Optional caller-supplied issuer key (base64, hex,
                PEM or JWK JSON). Takes precedence over embedded keys.

        Returns:
            ProofOutcome; ``note`` explains every failure.
        """
        proof = document.proof
        handler = self._handlers[proof.kind]
        try:
            await handler(document, proof, public_key)
        except ProofError as e:
            log.warning("proof check failed (%s): %s", e.kind.value, e.message)
            return ProofOutcome(passed=False, note=e.message, proof_type=proof.proof_type)
        return ProofOutcome(passed=True, proof_type=proof.proof_type)

    async def _resolve_key(
        self, document: Document, proof: Proof, public_key: str | None
    ) -> PublicKey:
        if public_key:
            return load_public_key(public_key)

        embedded = getattr(proof, "embedded_key", None)
        if embedded:
            return load_public_key(embedded)
        issuer_key = document.issuer_metadata.get("publicKeyJwk")
        if issuer_key:
            return load_public_key(issuer_key)

        verification_method = getattr(proof, "verification_method", None)
        if isinstance(verification_method, str) and verification_method.startswith(
            "did:web:"
        ):
            try:
                jwk = await self.did_resolver.resolve_key(verification_method)
            except DIDResolutionError as e:
                raise ProofError(
                    ProofErrorKind.MISSING_KEY, f"{MISSING_KEY_NOTE}: {e}"
                ) from e
            return load_public_key(jwk)

        raise ProofError(ProofErrorKind.MISSING_KEY, MISSING_KEY_NOTE)

    async def _verify_direct(
        self, document: Document, proof: DirectSignature, public_key: str | None
    ) -> None:
        if document.mode is not DocumentMode.CREDENTIAL:
            raise ProofError(
                ProofErrorKind.MALFORMED,
                f"{proof.proof_type} cannot prove a selective-disclosure presentation",
            )
        if proof.cryptosuite not in SUPPORTED_CRYPTOSUITES:
            raise ProofError(
                ProofErrorKind.UNSUPPORTED,
                f"Unsupported cryptosuite: {proof.cryptosuite or 'none'}",
            )
        signature = decode_proof_value(proof.proof_value)
        key = await self._resolve_key(document, proof, public_key)

        unsigned = {k: v for k, v in document.raw.items() if k != "proof"}
        try:
            message = canonical_bytes(unsigned)
        except ValueError as e:
            raise ProofError(ProofErrorKind.MALFORMED, f"Credential cannot be canonicalized: {e}") from e

        if not verify_signature(key, proof.cryptosuite, signature, message):
            raise ProofError(ProofErrorKind.MISMATCH, "Signature mismatch")

    def _parse_disclosure_blob(self, proof: SelectiveDisclosureProof) -> dict[str, Any]:
        raw = decode_proof_value(proof.proof_value)
        try:
            blob = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProofError(ProofErrorKind.MALFORMED, f"Proof blob is not JSON: {e}") from e

        if not isinstance(blob, dict):
            raise ProofError(ProofErrorKind.MALFORMED, "Proof blob must be an object")
        base = blob.get("base")
        salts = blob.get("salts")
        if not isinstance(base, dict) or not isinstance(salts, dict):
            raise ProofError(ProofErrorKind.MALFORMED, "Proof blob requires base and salts")
        digests = base.get("subjectDigests")
        if not isinstance(digests, list) or not all(isinstance(d, str) for d in digests):
            raise ProofError(
                ProofErrorKind.MALFORMED, "base.subjectDigests must be a list of strings"
            )
        if not isinstance(blob.get("signature"), str):
            raise ProofError(ProofErrorKind.MALFORMED, "Proof blob is missing signature")
        return blob

    async def _verify_disclosure(
        self,
        document: Document,
        proof: SelectiveDisclosureProof,
        public_key: str | None,
    ) -> None:
        if document.mode is not DocumentMode.PRESENTATION:
            raise ProofError(
                ProofErrorKind.MALFORMED,
                f"{proof.proof_type} applies to selective-disclosure presentations only",
            )
        presentation = document
        blob = self._parse_disclosure_blob(proof)
        base = blob["base"]

        if base.get("issuer") != presentation.issuer:
            raise ProofError(ProofErrorKind.MISMATCH, "Proof was signed for a different issuer")
        if base.get("issuanceDate") != presentation.issuance_date_raw:
            raise ProofError(ProofErrorKind.MISMATCH, "Proof issuanceDate does not match")
        base_id = base.get("id")
        if base_id and presentation.credential_id and base_id != presentation.credential_id:
            raise ProofError(ProofErrorKind.MISMATCH, "Proof was signed for a different credential")
        if proof.revealed_attributes and set(proof.revealed_attributes) != set(
            presentation.disclosed_fields
        ):
            raise ProofError(
                ProofErrorKind.MISMATCH, "Revealed attributes differ from disclosedFields"
            )

        cryptosuite = blob.get("cryptosuite")
        if cryptosuite not in SUPPORTED_CRYPTOSUITES:
            raise ProofError(
                ProofErrorKind.UNSUPPORTED, f"Unsupported cryptosuite: {cryptosuite}"
            )
        key = await self._resolve_key(document, proof, public_key)
        try:
            signature = decode_proof_value(blob["signature"])
            message = canonical_bytes(base)
        except ValueError as e:
            raise ProofError(ProofErrorKind.MALFORMED, f"Base document is malformed: {e}") from e
        if not verify_signature(key, cryptosuite, signature, message):
            raise ProofError(ProofErrorKind.MISMATCH, "Issuer signature over base document mismatch")

        committed = set(base["subjectDigests"])
        salts = blob["salts"]
        for name in presentation.disclosed_fields:
            salt = salts.get(name)
            if not isinstance(salt, str) or not salt:
                raise ProofError(ProofErrorKind.MALFORMED, f"No salt for disclosed field {name}")
            try:
                digest = disclosure_digest(salt, name, presentation.disclosed_values[name])
            except ValueError as e:
                raise ProofError(ProofErrorKind.MALFORMED, f"Disclosed value for {name}: {e}") from e
            if digest not in committed:
                raise ProofError(
                    ProofErrorKind.MISMATCH,
                    f"Disclosed value for {name} is not committed by the issuer",
                )

    async def _reject_unsupported(
        self, document: Document, proof: UnsupportedProof, public_key: str | None
    ) -> None:
        detail = ""
        if proof.proof_type in BBS_PROOF_TYPES:
            detail = " (BBS+ signatures are not verified)"
        raise ProofError(
            ProofErrorKind.UNSUPPORTED,
            f"Proof type {proof.proof_type} is not supported{detail}; proof not evaluated",
        )
