"""
VC Pipeline - verification of content-addressed Verifiable Credentials.

Supports:
- Credentials and selective-disclosure presentations fetched from IPFS
- Embedded subject digest (documentHash) integrity checking
- W3C Data Integrity Proofs (ecdsa-jcs-2022, eddsa-jcs-2022)
- Salted-hash selective disclosure proofs
- Ledger anchoring lookups
- Revocation registry and W3C StatusList2021 checking
- did:web DID method resolution
"""

from vc_pipeline.config import PipelineConfig, RevocationFailurePolicy
from vc_pipeline.did_resolver import DIDResolver, DIDResolutionError
from vc_pipeline.models import (
    Credential,
    LedgerRecord,
    Presentation,
    VerificationResult,
)
from vc_pipeline.pipeline import VerificationPipeline, verify_credential
from vc_pipeline.revocation import CredentialStatus, StatusListChecker

__version__ = "0.1.0"

__all__ = [
    "VerificationPipeline",
    "VerificationResult",
    "verify_credential",
    "PipelineConfig",
    "RevocationFailurePolicy",
    "Credential",
    "Presentation",
    "LedgerRecord",
    "DIDResolver",
    "DIDResolutionError",
    "StatusListChecker",
    "CredentialStatus",
]
