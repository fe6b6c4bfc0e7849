"""
Public key decoding and raw signature checks.

Supported:
- Cryptosuite ecdsa-jcs-2022: P-256 (secp256r1) with SHA-256
- Cryptosuite eddsa-jcs-2022: Ed25519
"""

from __future__ import annotations

import json
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from vc_pipeline.canonical import b64url_decode, decode_binary
from vc_pipeline.exceptions import ProofError, ProofErrorKind

ECDSA_JCS = "ecdsa-jcs-2022"
EDDSA_JCS = "eddsa-jcs-2022"
SUPPORTED_CRYPTOSUITES = {ECDSA_JCS, EDDSA_JCS}

PublicKey = ec.EllipticCurvePublicKey | Ed25519PublicKey


def _from_jwk(jwk: Any) -> PublicKey:
    """Build a key from an EC P-256 or OKP Ed25519 JWK."""
    if not isinstance(jwk, dict):
        raise ProofError(ProofErrorKind.MALFORMED, "JWK must be a JSON object")
    kty, crv = jwk.get("kty"), jwk.get("crv")
    if kty == "EC" and crv == "P-256" and jwk.get("x") and jwk.get("y"):
        x = int.from_bytes(b64url_decode(jwk["x"]), byteorder="big")
        y = int.from_bytes(b64url_decode(jwk["y"]), byteorder="big")
        return ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key()
    if kty == "OKP" and crv == "Ed25519" and jwk.get("x"):
        return Ed25519PublicKey.from_public_bytes(b64url_decode(jwk["x"]))
    raise ProofError(ProofErrorKind.MALFORMED, f"Unsupported JWK key type: {kty}/{crv}")


def _from_bytes(data: bytes) -> PublicKey:
    if len(data) == 32:
        return Ed25519PublicKey.from_public_bytes(data)
    if (len(data) == 65 and data[0] == 0x04) or (len(data) == 33 and data[0] in (2, 3)):
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), data)
    key = serialization.load_der_public_key(data)
    if not isinstance(key, (ec.EllipticCurvePublicKey, Ed25519PublicKey)):
        raise ProofError(ProofErrorKind.MALFORMED, "Key is neither EC nor Ed25519")
    return key


def load_public_key(value: Any) -> PublicKey:
    """Decode a public key from a JWK or an encoded string.

    Strings may be a JWK in JSON, PEM, or hex/base64 of raw Ed25519 bytes,
    a SEC1 P-256 point, or DER SubjectPublicKeyInfo.

    Raises:
        ProofError: If the key cannot be decoded.
    """
    try:
        if isinstance(value, dict):
            return _from_jwk(value)
        if not isinstance(value, str) or not value.strip():
            raise ProofError(ProofErrorKind.MALFORMED, "Public key is empty")
        text = value.strip()
        if text.startswith("{"):
            return _from_jwk(json.loads(text))
        if text.startswith("-----BEGIN"):
            key = serialization.load_pem_public_key(text.encode("ascii"))
            if not isinstance(key, (ec.EllipticCurvePublicKey, Ed25519PublicKey)):
                raise ProofError(ProofErrorKind.MALFORMED, "Key is neither EC nor Ed25519")
            return key
        return _from_bytes(decode_binary(text))
    except ProofError:
        raise
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ProofError(ProofErrorKind.MALFORMED, f"Cannot decode public key: {e}") from e


def verify_signature(
    key: PublicKey, cryptosuite: str, signature: bytes, message: bytes
) -> bool:
    """Check *signature* over *message* for the given cryptosuite.

    Raises:
        ProofError: If the cryptosuite is unknown or does not fit the key.
    """
    if cryptosuite == ECDSA_JCS:
        if not isinstance(key, ec.EllipticCurvePublicKey):
            raise ProofError(ProofErrorKind.MALFORMED, "ecdsa-jcs-2022 requires a P-256 key")
        return _verify_ecdsa(key, signature, message)
    if cryptosuite == EDDSA_JCS:
        if not isinstance(key, Ed25519PublicKey):
            raise ProofError(ProofErrorKind.MALFORMED, "eddsa-jcs-2022 requires an Ed25519 key")
        try:
            key.verify(signature, message)
            return True
        except InvalidSignature:
            return False
    raise ProofError(ProofErrorKind.UNSUPPORTED, f"Unsupported cryptosuite: {cryptosuite}")


def _verify_ecdsa(
    key: ec.EllipticCurvePublicKey, signature: bytes, message: bytes
) -> bool:
    # Raw r||s (64 bytes) is converted to DER first
    if len(signature) == 64:
        r = int.from_bytes(signature[:32], byteorder="big")
        s = int.from_bytes(signature[32:], byteorder="big")
        signature = encode_dss_signature(r, s)
    try:
        key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
        return True
    except InvalidSignature:
        return False
