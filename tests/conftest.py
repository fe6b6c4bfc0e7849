"""Shared fixtures: issuer keys, signed documents and in-memory collaborators."""

import asyncio
import base64
import gzip
import json
import secrets
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from vc_pipeline.canonical import b64url_encode, canonical_bytes
from vc_pipeline.config import PipelineConfig
from vc_pipeline.digest import compute_subject_digest
from vc_pipeline.exceptions import FetchError, FetchErrorKind
from vc_pipeline.fetcher import DocumentFetcher
from vc_pipeline.models import LedgerRecord
from vc_pipeline.pipeline import VerificationPipeline
from vc_pipeline.proofs import disclosure_digest
from vc_pipeline.revocation import RevocationChecker

ISSUER = "did:ethr:0x1234567890AbCdEf1234567890aBcDeF12345678"
LEDGER_ISSUER = "0x1234567890abcdef1234567890abcdef12345678"
CREDENTIAL_ID = "urn:uuid:3f1c2a8e-credential"
CREDENTIAL_CID = "QmCredentialCid1111111111111111111111111111111"
PRESENTATION_CID = "QmPresentationCid22222222222222222222222222222"
ISSUANCE_DATE = "2025-01-15T10:00:00Z"
ANCHORED_AT = datetime(2025, 1, 15, 10, 5, tzinfo=timezone.utc)
STATUS_URL = "https://example.com/.well-known/vc/status/revocation"

STUDENT = {
    "name": "Asha Verma",
    "rollNumber": "CS-2021-042",
    "department": "Computer Science",
}


# Test fixtures
@pytest.fixture
def ec_key_pair():
    """Generate a test EC P-256 key pair."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    return private_key, private_key.public_key()


@pytest.fixture
def ed25519_key_pair():
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


@pytest.fixture
def public_key_jwk(ec_key_pair):
    """Get the public key as JWK."""
    _, public_key = ec_key_pair
    public_numbers = public_key.public_numbers()

    x_bytes = public_numbers.x.to_bytes(32, byteorder="big")
    y_bytes = public_numbers.y.to_bytes(32, byteorder="big")

    return {
        "kty": "EC",
        "crv": "P-256",
        "x": base64.urlsafe_b64encode(x_bytes).decode().rstrip("="),
        "y": base64.urlsafe_b64encode(y_bytes).decode().rstrip("="),
    }


@pytest.fixture
def public_key_b64(ec_key_pair):
    """Issuer key as base64 of the uncompressed SEC1 point."""
    _, public_key = ec_key_pair
    point = public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    return base64.b64encode(point).decode()


@pytest.fixture
def did_document(public_key_jwk):
    """Create a test DID Document."""
    return {
        "@context": [
            "https://www.w3.org/ns/did/v1",
            "https://w3id.org/security/jwk/v1",
        ],
        "id": "did:web:example.com",
        "verificationMethod": [
            {
                "id": "did:web:example.com#key-1",
                "type": "JsonWebKey",
                "controller": "did:web:example.com",
                "publicKeyJwk": public_key_jwk,
            }
        ],
        "authentication": ["did:web:example.com#key-1"],
        "assertionMethod": ["did:web:example.com#key-1"],
    }


def sign_bytes(private_key, message: bytes) -> bytes:
    if isinstance(private_key, Ed25519PrivateKey):
        return private_key.sign(message)
    return private_key.sign(message, ec.ECDSA(hashes.SHA256()))


def make_credential(attributes=None, **overrides) -> dict:
    """Build an unsigned credential whose documentHash matches its subject."""
    subject = {"id": "did:example:holder"}
    subject.update(STUDENT if attributes is None else attributes)
    subject["documentHash"] = compute_subject_digest(subject)

    credential = {
        "@context": ["https://www.w3.org/2018/credentials/v1"],
        "id": CREDENTIAL_ID,
        "type": ["VerifiableCredential", "UniversityDegreeCredential"],
        "issuer": ISSUER,
        "issuanceDate": ISSUANCE_DATE,
        "credentialSubject": subject,
    }
    credential.update(overrides)
    return credential


def sign_credential(
    credential: dict, private_key, cryptosuite: str = "ecdsa-jcs-2022", **proof_fields
) -> dict:
    """Sign a credential with the test private key."""
    unsigned = {k: v for k, v in credential.items() if k != "proof"}
    signature = sign_bytes(private_key, canonical_bytes(unsigned))

    signed = dict(unsigned)
    signed["proof"] = {
        "type": "DataIntegrityProof",
        "cryptosuite": cryptosuite,
        "created": ISSUANCE_DATE,
        "proofPurpose": "assertionMethod",
        "proofValue": b64url_encode(signature),
        **proof_fields,
    }
    return signed


def make_presentation(
    private_key,
    disclosed,
    attributes=None,
    cryptosuite: str = "ecdsa-jcs-2022",
    original_cid: str | None = CREDENTIAL_CID,
    **overrides,
) -> dict:
    """Derive a selective-disclosure presentation revealing *disclosed*.

    The issuer commits to every attribute with a salted digest and signs
    the commitments; only the disclosed salts are handed to the verifier.
    """
    attributes = dict(STUDENT if attributes is None else attributes)
    salts = {name: secrets.token_hex(16) for name in attributes}
    base = {
        "issuer": ISSUER,
        "issuanceDate": ISSUANCE_DATE,
        "id": CREDENTIAL_ID,
        "subjectDigests": sorted(
            disclosure_digest(salts[name], name, value) for name, value in attributes.items()
        ),
    }
    blob = {
        "cryptosuite": cryptosuite,
        "signature": b64url_encode(sign_bytes(private_key, canonical_bytes(base))),
        "base": base,
        "salts": {name: salts[name] for name in disclosed},
    }

    proof = {
        "type": "SaltedHashDisclosureProof2024",
        "revealedAttributes": list(disclosed),
        "proofValue": b64url_encode(canonical_bytes(blob)),
    }
    if original_cid:
        proof["originalCID"] = original_cid

    presentation = {
        "@context": ["https://www.w3.org/2018/credentials/v1"],
        "type": ["VerifiableCredential", "UniversityDegreeCredential"],
        "presentationType": "SelectiveDisclosure",
        "credentialId": CREDENTIAL_ID,
        "issuer": ISSUER,
        "issuanceDate": ISSUANCE_DATE,
        "disclosedFields": list(disclosed),
        "credentialSubject": {name: attributes[name] for name in disclosed},
        "proof": proof,
    }
    presentation.update(overrides)
    return presentation


def encode(document) -> bytes:
    return json.dumps(document).encode("utf-8")


def encode_status_list(set_indices=(), length: int = 131072) -> str:
    """gzip+base64 bitstring with *set_indices* flipped on."""
    bits = bytearray(length // 8)
    for index in set_indices:
        bits[index // 8] |= 0x80 >> (index % 8)
    return base64.b64encode(gzip.compress(bytes(bits))).decode()


def status_list_credential(encoded_list: str, purpose: str = "revocation") -> dict:
    return {
        "@context": ["https://www.w3.org/ns/credentials/v2"],
        "type": ["VerifiableCredential", "StatusList2021Credential"],
        "credentialSubject": {
            "type": "StatusList2021",
            "statusPurpose": purpose,
            "encodedList": encoded_list,
        },
    }


def status_entry(index: int = 42, purpose: str = "revocation", url: str = STATUS_URL) -> dict:
    return {
        "type": "StatusList2021Entry",
        "statusListCredential": url,
        "statusListIndex": str(index),
        "statusPurpose": purpose,
    }


class InMemoryContentStore:
    """Content store double; queued ``failures`` are raised before serving."""

    def __init__(self, documents=None):
        self.documents = {cid: encode(doc) for cid, doc in (documents or {}).items()}
        self.failures: list[Exception] = []
        self.delay = 0.0
        self.calls: list[str] = []

    def put(self, cid: str, document) -> None:
        self.documents[cid] = document if isinstance(document, bytes) else encode(document)

    async def fetch(self, address: str) -> bytes:
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        if address not in self.documents:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"Content {address} not found")
        return self.documents[address]


class InMemoryLedger:
    def __init__(self):
        self.records: dict[str, LedgerRecord] = {}
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []

    def anchor(
        self, address: str, issuer: str = LEDGER_ISSUER, revoked: bool | None = None
    ) -> LedgerRecord:
        record = LedgerRecord(
            issuer=issuer, timestamp=ANCHORED_AT, content_address=address, revoked=revoked
        )
        self.records[address] = record
        return record

    async def lookup(self, issuer: str, address: str):
        self.calls.append((issuer, address))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.records.get(address)


class InMemoryRevocationRegistry:
    def __init__(self, revoked=()):
        self.revoked = set(revoked)
        self.failures: list[Exception] = []
        self.delay = 0.0
        self.calls: list[str] = []

    async def is_revoked(self, credential_id: str) -> bool:
        self.calls.append(credential_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return credential_id in self.revoked


@pytest.fixture
def content_store():
    return InMemoryContentStore()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def registry():
    return InMemoryRevocationRegistry()


@pytest.fixture
def config():
    return PipelineConfig(retry_backoff=0.0, check_timeout=2.0)


@pytest.fixture
def pipeline(config, content_store, ledger, registry):
    """Pipeline wired to in-memory collaborators."""
    return VerificationPipeline(
        config=config,
        fetcher=DocumentFetcher(content_store, retries=2, backoff=0.0),
        ledger=ledger,
        revocation=RevocationChecker(
            registry=registry,
            policy=config.revocation_failure_policy,
            retries=2,
            backoff=0.0,
        ),
    )
