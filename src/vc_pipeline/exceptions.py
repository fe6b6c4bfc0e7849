"""
Error taxonomy for the verification pipeline.

Every error carries a ``kind`` so callers can tell transient failures
(retried at the component boundary) from permanent ones. Only fetch and
structural errors ever abort a verification; the rest are reported as a
failed check plus a note on their own channel.
"""

from __future__ import annotations

from enum import Enum


class FetchErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CORRUPT = "corrupt"
    UNAVAILABLE = "unavailable"


class StructuralErrorKind(str, Enum):
    MISSING_FIELD = "missing_field"
    BAD_TYPE = "bad_type"
    MALFORMED_TIMESTAMP = "malformed_timestamp"
    MALFORMED_DOCUMENT = "malformed_document"


class ProofErrorKind(str, Enum):
    MALFORMED = "malformed"
    UNSUPPORTED = "unsupported"
    MISMATCH = "mismatch"
    MISSING_KEY = "missing_key"


class LedgerErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"


class RevocationErrorKind(str, Enum):
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"


class PipelineError(Exception):
    """Base exception for pipeline components.

    Args:
        kind: Machine-readable error category.
        message: Human-readable reason.
    """

    def __init__(self, kind: Enum, message: str) -> None:
        self.kind = kind
        self.message = message
        super().__init__(message)

    @property
    def transient(self) -> bool:
        """Whether a retry at the component boundary may succeed."""
        return self.kind.value == "timeout"

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class FetchError(PipelineError):
    """Content-addressed retrieval failed."""

    def __init__(self, kind: FetchErrorKind, message: str) -> None:
        super().__init__(kind, message)


class StructuralError(PipelineError):
    """Document is not a well-formed credential or presentation."""

    def __init__(self, kind: StructuralErrorKind, message: str) -> None:
        super().__init__(kind, message)


class ProofError(PipelineError):
    """Proof could not be verified.

    Raised inside the proof verifier only; it is always converted to a
    failed outcome before it reaches the orchestrator.
    """

    def __init__(self, kind: ProofErrorKind, message: str) -> None:
        super().__init__(kind, message)


class LedgerError(PipelineError):
    """Ledger query failed."""

    def __init__(self, kind: LedgerErrorKind, message: str) -> None:
        super().__init__(kind, message)


class RevocationError(PipelineError):
    """Revocation registry or status list lookup failed."""

    def __init__(self, kind: RevocationErrorKind, message: str) -> None:
        super().__init__(kind, message)


class DIDResolutionError(Exception):
    """Raised when DID resolution fails."""
