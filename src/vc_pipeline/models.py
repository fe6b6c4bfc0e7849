"""
Data model for the verification pipeline.

Everything here is rebuilt per verification request and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ProofKind(Enum):
    """Tag of the proof union; handlers are dispatched on this value."""

    DIRECT_SIGNATURE = "direct_signature"
    SELECTIVE_DISCLOSURE = "selective_disclosure"
    UNSUPPORTED = "unsupported"


class DocumentMode(Enum):
    CREDENTIAL = "credential"
    PRESENTATION = "presentation"


class PipelineState(Enum):
    """States of a single verification request."""

    START = "start"
    FETCHED = "fetched"
    STRUCTURALLY_VALID = "structurally_valid"
    CHECKS_RUNNING = "checks_running"
    AGGREGATED = "aggregated"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class DirectSignature:
    """Signature over the whole credential by the issuer's key."""

    proof_type: str
    cryptosuite: str
    proof_value: str
    verification_method: str | None = None
    embedded_key: Any = None  # JWK dict or encoded key string, if the proof carries one

    kind = ProofKind.DIRECT_SIGNATURE


@dataclass(frozen=True)
class SelectiveDisclosureProof:
    """Proof that disclosed attributes belong to an issuer-signed credential."""

    proof_type: str
    proof_value: str
    revealed_attributes: tuple[str, ...]
    verification_method: str | None = None
    embedded_key: Any = None

    kind = ProofKind.SELECTIVE_DISCLOSURE


@dataclass(frozen=True)
class UnsupportedProof:
    """A proof whose type this pipeline cannot evaluate."""

    proof_type: str

    kind = ProofKind.UNSUPPORTED


Proof = DirectSignature | SelectiveDisclosureProof | UnsupportedProof


@dataclass
class Credential:
    """A full Verifiable Credential."""

    id: str
    issuer: str
    subject_id: str | None
    issuance_date: datetime
    issuance_date_raw: str
    subject: dict[str, Any]
    document_hash: str
    proof: Proof
    raw: dict[str, Any]
    issuer_metadata: dict[str, Any] = field(default_factory=dict)
    status_entries: list[dict[str, Any]] = field(default_factory=list)

    mode = DocumentMode.CREDENTIAL


@dataclass
class Presentation:
    """A selective-disclosure presentation derived from a credential."""

    credential_id: str | None
    issuer: str
    issuance_date: datetime
    issuance_date_raw: str
    disclosed_fields: list[str]
    disclosed_values: dict[str, Any]
    proof: Proof
    raw: dict[str, Any]
    original_cid: str | None = None
    issuer_metadata: dict[str, Any] = field(default_factory=dict)
    status_entries: list[dict[str, Any]] = field(default_factory=list)

    mode = DocumentMode.PRESENTATION


Document = Credential | Presentation


@dataclass(frozen=True)
class LedgerRecord:
    """Anchoring record for an issuer/content-address binding."""

    issuer: str
    timestamp: datetime
    content_address: str
    # None when the ledger keeps no revocation flag
    revoked: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "issuer": self.issuer,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "ipfsCID": self.content_address,
        }
        if self.revoked is not None:
            data["revoked"] = self.revoked
        return data


@dataclass
class CheckOutcome:
    """Result of one independent check channel."""

    passed: bool
    note: str | None = None
    applicable: bool = True

    @classmethod
    def not_applicable(cls, note: str) -> CheckOutcome:
        return cls(passed=False, note=note, applicable=False)


@dataclass
class ProofOutcome(CheckOutcome):
    """Proof check result, echoing the proof type for observability."""

    proof_type: str | None = None


@dataclass
class LedgerOutcome(CheckOutcome):
    record: LedgerRecord | None = None


@dataclass
class RevocationOutcome(CheckOutcome):
    """``passed`` means "not revoked"."""

    revoked: bool = False


@dataclass
class VerificationResult:
    """Aggregate verdict for one verification request.

    Booleans left as ``None`` were never evaluated and are omitted from
    :meth:`to_dict`.
    """

    success: bool
    verified: bool | None = None
    structure_valid: bool | None = None
    ipfs_valid: bool | None = None
    hash_match: bool | None = None
    bbs_proof_valid: bool | None = None
    blockchain_valid: bool | None = None
    revoked: bool | None = None
    details: dict[str, Any] = field(default_factory=dict)
    vc: dict[str, Any] | None = None
    error: str | None = None
    error_details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render the flat JSON-serializable response record."""
        output: dict[str, Any] = {"success": self.success}
        if self.success:
            output["verified"] = bool(self.verified)

        flags = {
            "structureValid": self.structure_valid,
            "ipfsValid": self.ipfs_valid,
            "bbsProofValid": self.bbs_proof_valid,
            "blockchainValid": self.blockchain_valid,
            "hashMatch": self.hash_match,
            "revoked": self.revoked,
        }
        output.update({k: v for k, v in flags.items() if v is not None})

        if self.details:
            output["details"] = self.details
        if self.vc is not None:
            output["vc"] = self.vc
        if not self.success:
            output["error"] = self.error or "Verification failed"
            output["errorDetails"] = self.error_details or {}
        return output
