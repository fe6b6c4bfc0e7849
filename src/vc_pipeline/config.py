"""
Pipeline configuration.

Constants are organized into:
- FIXED: Wire-format names that cannot change without breaking issued credentials
- CONFIGURABLE: Defaults that deployments may override
- POLICY: Security-relevant choices that must be stated explicitly
- OPERATIONAL: Deployment-specific settings (env vars)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

# =============================================================================
# FIXED
# =============================================================================

# Subject attribute carrying the embedded content digest
DIGEST_FIELD: str = "documentHash"

# Discriminator value marking a selective-disclosure presentation
SELECTIVE_DISCLOSURE: str = "SelectiveDisclosure"

# =============================================================================
# CONFIGURABLE DEFAULTS
# =============================================================================

DEFAULT_IPFS_GATEWAY: str = "https://gateway.pinata.cloud"
DEFAULT_FETCH_TIMEOUT_SECONDS: float = 10.0
DEFAULT_FETCH_RETRIES: int = 2
DEFAULT_RETRY_BACKOFF_SECONDS: float = 0.25
DEFAULT_CHECK_TIMEOUT_SECONDS: float = 15.0
DEFAULT_MAX_DOCUMENT_BYTES: int = 1_048_576  # 1 MB
DEFAULT_CACHE_SIZE: int = 256
DEFAULT_DID_CACHE_TTL_SECONDS: float = 300.0

# =============================================================================
# POLICY
# =============================================================================


class RevocationFailurePolicy(str, Enum):
    """What to conclude when the revocation lookup itself fails.

    A missing record always means "not revoked"; this policy only stands in
    for a revocation source that could not be asked.
    """

    FAIL_CLOSED = "fail_closed"  # assume revoked
    FAIL_OPEN = "fail_open"  # assume not revoked


DEFAULT_REVOCATION_FAILURE_POLICY: RevocationFailurePolicy = (
    RevocationFailurePolicy.FAIL_CLOSED
)

# =============================================================================
# OPERATIONAL (env vars)
# =============================================================================


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def parse_revocation_policy(value: str) -> RevocationFailurePolicy:
    """Parse a policy name, rejecting anything unknown.

    Raises:
        ValueError: If the value names no policy.
    """
    try:
        return RevocationFailurePolicy(value.strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in RevocationFailurePolicy)
        raise ValueError(
            f"Unknown revocation failure policy {value!r}, expected one of: {allowed}"
        ) from None


@dataclass
class PipelineConfig:
    """Settings shared by the pipeline and its default collaborators."""

    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY
    ledger_url: str | None = None
    revocation_url: str | None = None
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    fetch_retries: int = DEFAULT_FETCH_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS
    check_timeout: float = DEFAULT_CHECK_TIMEOUT_SECONDS
    max_document_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES
    cache_size: int = DEFAULT_CACHE_SIZE
    did_cache_ttl: float = DEFAULT_DID_CACHE_TTL_SECONDS
    revocation_failure_policy: RevocationFailurePolicy = (
        DEFAULT_REVOCATION_FAILURE_POLICY
    )
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        if self.fetch_retries < 0:
            raise ValueError("fetch_retries must be >= 0")
        if self.fetch_timeout <= 0 or self.check_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.did_cache_ttl < 0:
            raise ValueError("did_cache_ttl must be >= 0")

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Build a config from ``VC_PIPELINE_*`` environment variables."""
        policy = os.getenv("VC_PIPELINE_REVOCATION_FAILURE_POLICY")
        return cls(
            ipfs_gateway=os.getenv("VC_PIPELINE_IPFS_GATEWAY", DEFAULT_IPFS_GATEWAY),
            ledger_url=os.getenv("VC_PIPELINE_LEDGER_URL") or None,
            revocation_url=os.getenv("VC_PIPELINE_REVOCATION_URL") or None,
            fetch_timeout=_env_float(
                "VC_PIPELINE_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT_SECONDS
            ),
            fetch_retries=_env_int("VC_PIPELINE_FETCH_RETRIES", DEFAULT_FETCH_RETRIES),
            check_timeout=_env_float(
                "VC_PIPELINE_CHECK_TIMEOUT", DEFAULT_CHECK_TIMEOUT_SECONDS
            ),
            max_document_bytes=_env_int(
                "VC_PIPELINE_MAX_DOCUMENT_BYTES", DEFAULT_MAX_DOCUMENT_BYTES
            ),
            cache_size=_env_int("VC_PIPELINE_CACHE_SIZE", DEFAULT_CACHE_SIZE),
            did_cache_ttl=_env_float(
                "VC_PIPELINE_DID_CACHE_TTL", DEFAULT_DID_CACHE_TTL_SECONDS
            ),
            revocation_failure_policy=(
                parse_revocation_policy(policy)
                if policy
                else DEFAULT_REVOCATION_FAILURE_POLICY
            ),
            verify_ssl=_env_bool("VC_PIPELINE_VERIFY_SSL", True),
        )
