"""Hash integrity check of a credential subject against its embedded digest."""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from vc_pipeline.canonical import canonical_bytes
from vc_pipeline.config import DIGEST_FIELD
from vc_pipeline.models import CheckOutcome, Credential, Document, DocumentMode

log = logging.getLogger(__name__)


def compute_subject_digest(subject: dict[str, Any]) -> str:
    """Return the hex SHA-256 of the canonical subject, digest field excluded.

    Raises:
        ValueError: If the subject cannot be canonicalized.
    """
    content = {k: v for k, v in subject.items() if k != DIGEST_FIELD}
    return hashlib.sha256(canonical_bytes(content)).hexdigest()


def _parse_claim(claim: str) -> bytes:
    value = claim.strip()
    if value.lower().startswith("sha256:"):
        value = value[len("sha256:"):]
    if value.lower().startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


class HashIntegrityChecker:
    """Recomputes the subject digest and compares it to the claim."""

    def check(self, document: Document) -> CheckOutcome:
        if document.mode is DocumentMode.PRESENTATION:
            return CheckOutcome.not_applicable(
                "Hash check not applicable to selective disclosure"
            )
        return self.check_credential(document)

    def check_credential(self, credential: Credential) -> CheckOutcome:
        try:
            claimed = _parse_claim(credential.document_hash)
        except ValueError:
            return CheckOutcome(
                passed=False,
                note=f"Embedded {DIGEST_FIELD} is not a hex SHA-256 digest",
            )

        try:
            computed = bytes.fromhex(compute_subject_digest(credential.subject))
        except ValueError as e:
            return CheckOutcome(
                passed=False, note=f"Subject cannot be canonicalized: {e}"
            )

        if hmac.compare_digest(claimed, computed):
            return CheckOutcome(passed=True)

        log.warning("digest mismatch for credential %s", credential.id)
        return CheckOutcome(
            passed=False, note=f"Computed digest does not match {DIGEST_FIELD}"
        )
