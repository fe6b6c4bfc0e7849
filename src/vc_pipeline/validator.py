"""
Structural validation of fetched documents.

Parses raw bytes into a typed :class:`Credential` or :class:`Presentation`
and classifies the proof. The ``presentationType`` discriminator selects
the mode: absent means a full credential, ``SelectiveDisclosure`` means a
presentation, anything else is rejected.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from vc_pipeline.config import DIGEST_FIELD, SELECTIVE_DISCLOSURE
from vc_pipeline.exceptions import StructuralError, StructuralErrorKind
from vc_pipeline.models import (
    Credential,
    DirectSignature,
    Document,
    Presentation,
    Proof,
    SelectiveDisclosureProof,
    UnsupportedProof,
)

log = logging.getLogger(__name__)

# Proof type -> implied cryptosuite for direct signatures
DIRECT_SIGNATURE_TYPES: dict[str, str | None] = {
    "DataIntegrityProof": None,  # cryptosuite given in the proof
    "Ed25519Signature2020": "eddsa-jcs-2022",
    "EcdsaSecp256r1Signature2019": "ecdsa-jcs-2022",
}
SELECTIVE_DISCLOSURE_TYPES = {"SaltedHashDisclosureProof2024"}

# Subject keys that are never disclosed as ordinary attributes
RESERVED_SUBJECT_KEYS = {DIGEST_FIELD, "id"}


def _require(data: dict[str, Any], key: str, context: str = "document") -> Any:
    if key not in data or data[key] is None:
        raise StructuralError(
            StructuralErrorKind.MISSING_FIELD, f"Missing {key} in {context}"
        )
    return data[key]


def _require_object(data: dict[str, Any], key: str, context: str = "document") -> dict:
    value = _require(data, key, context)
    if not isinstance(value, dict):
        raise StructuralError(
            StructuralErrorKind.BAD_TYPE, f"{key} in {context} must be an object"
        )
    return value


def _parse_timestamp(value: Any, key: str) -> datetime:
    if not isinstance(value, str) or not value:
        raise StructuralError(
            StructuralErrorKind.MALFORMED_TIMESTAMP, f"{key} must be an ISO 8601 string"
        )
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise StructuralError(
            StructuralErrorKind.MALFORMED_TIMESTAMP, f"{key} is not ISO 8601: {value!r}"
        ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _types(document: dict[str, Any]) -> list[str]:
    value = document.get("type", [])
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [t for t in value if isinstance(t, str)]
    return []


class StructuralValidator:
    """Builds typed documents from raw bytes."""

    def parse_json(self, raw: bytes) -> dict[str, Any]:
        try:
            data = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError:
            raise StructuralError(
                StructuralErrorKind.MALFORMED_DOCUMENT, "Document is not UTF-8"
            ) from None
        except json.JSONDecodeError as e:
            raise StructuralError(
                StructuralErrorKind.MALFORMED_DOCUMENT, f"Invalid JSON: {e}"
            ) from e
        if not isinstance(data, dict):
            raise StructuralError(
                StructuralErrorKind.MALFORMED_DOCUMENT, "Document must be a JSON object"
            )
        return data

    def validate(self, raw: bytes) -> Document:
        """Parse and validate *raw*.

        Raises:
            StructuralError: On any missing field, wrong type tag or
                malformed timestamp.
        """
        return self.validate_document(self.parse_json(raw))

    def validate_document(self, data: dict[str, Any]) -> Document:
        document, wrapper = self._unwrap(data)
        presentation_type = (
            wrapper.get("presentationType") or document.get("presentationType")
        )

        if presentation_type is None:
            return self._validate_credential(document)
        if presentation_type == SELECTIVE_DISCLOSURE:
            return self._validate_presentation(document, wrapper)
        raise StructuralError(
            StructuralErrorKind.BAD_TYPE,
            f"Unknown presentationType: {presentation_type!r}",
        )

    def _unwrap(self, data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return ``(document, wrapper)`` for presentation envelopes."""
        nested = data.get("verifiableCredential")
        if "VerifiablePresentation" in _types(data) and nested is not None:
            if isinstance(nested, list) and len(nested) == 1:
                nested = nested[0]
            if not isinstance(nested, dict):
                raise StructuralError(
                    StructuralErrorKind.BAD_TYPE,
                    "verifiableCredential must be a single object",
                )
            return nested, data
        return data, {}

    def _issuer(self, document: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        issuer = _require(document, "issuer")
        if isinstance(issuer, str) and issuer:
            return issuer, {}
        if isinstance(issuer, dict) and isinstance(issuer.get("id"), str):
            return issuer["id"], issuer
        raise StructuralError(
            StructuralErrorKind.BAD_TYPE, "issuer must be a string or an object with id"
        )

    def _status_entries(self, document: dict[str, Any]) -> list[dict[str, Any]]:
        status = document.get("credentialStatus")
        if not status:
            return []
        items = status if isinstance(status, list) else [status]
        return [item for item in items if isinstance(item, dict)]

    def _validate_credential(self, document: dict[str, Any]) -> Credential:
        _require(document, "@context")
        if "VerifiableCredential" not in _types(document):
            raise StructuralError(
                StructuralErrorKind.BAD_TYPE, "type must include 'VerifiableCredential'"
            )
        issuer, issuer_metadata = self._issuer(document)
        issuance_raw = _require(document, "issuanceDate")
        issuance_date = _parse_timestamp(issuance_raw, "issuanceDate")
        subject = _require_object(document, "credentialSubject")
        document_hash = _require(subject, DIGEST_FIELD, "credentialSubject")
        if not isinstance(document_hash, str):
            raise StructuralError(
                StructuralErrorKind.BAD_TYPE, f"{DIGEST_FIELD} must be a string"
            )
        proof = self.classify_proof(_require_object(document, "proof"))

        credential_id = document.get("id")
        if not isinstance(credential_id, str) or not credential_id:
            credential_id = document_hash

        return Credential(
            id=credential_id,
            issuer=issuer,
            subject_id=subject.get("id"),
            issuance_date=issuance_date,
            issuance_date_raw=issuance_raw,
            subject=subject,
            document_hash=document_hash,
            proof=proof,
            raw=document,
            issuer_metadata=issuer_metadata,
            status_entries=self._status_entries(document),
        )

    def _disclosed_fields(
        self, document: dict[str, Any], wrapper: dict[str, Any]
    ) -> list[str]:
        proof = document.get("proof") if isinstance(document.get("proof"), dict) else {}
        fields = (
            wrapper.get("disclosedFields")
            or document.get("disclosedFields")
            or proof.get("disclosedFields")
        )
        if not fields:
            raise StructuralError(
                StructuralErrorKind.MISSING_FIELD,
                "Selective disclosure requires a non-empty disclosedFields list",
            )
        if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
            raise StructuralError(
                StructuralErrorKind.BAD_TYPE, "disclosedFields must be a list of strings"
            )
        if len(set(fields)) != len(fields):
            raise StructuralError(
                StructuralErrorKind.BAD_TYPE, "disclosedFields contains duplicates"
            )
        reserved = RESERVED_SUBJECT_KEYS.intersection(fields)
        if reserved:
            raise StructuralError(
                StructuralErrorKind.BAD_TYPE,
                f"Reserved fields cannot be disclosed: {sorted(reserved)}",
            )
        return fields

    def _validate_presentation(
        self, document: dict[str, Any], wrapper: dict[str, Any]
    ) -> Presentation:
        issuer, issuer_metadata = self._issuer(document)
        issuance_raw = _require(document, "issuanceDate")
        issuance_date = _parse_timestamp(issuance_raw, "issuanceDate")
        subject = _require_object(document, "credentialSubject")
        proof_data = _require_object(document, "proof")
        fields = self._disclosed_fields(document, wrapper)

        values = {k: v for k, v in subject.items() if k not in RESERVED_SUBJECT_KEYS}
        if set(values) != set(fields):
            raise StructuralError(
                StructuralErrorKind.BAD_TYPE,
                "credentialSubject attributes do not match disclosedFields",
            )

        credential_id = (
            wrapper.get("credentialId") or document.get("credentialId") or document.get("id")
        )
        original_cid = proof_data.get("originalCID") or wrapper.get("originalCID")

        return Presentation(
            credential_id=credential_id if isinstance(credential_id, str) else None,
            issuer=issuer,
            issuance_date=issuance_date,
            issuance_date_raw=issuance_raw,
            disclosed_fields=fields,
            disclosed_values=values,
            proof=self.classify_proof(proof_data),
            raw=document,
            original_cid=original_cid if isinstance(original_cid, str) else None,
            issuer_metadata=issuer_metadata,
            status_entries=self._status_entries(document),
        )

    def classify_proof(self, proof: dict[str, Any]) -> Proof:
        """Map a proof object onto the proof union.

        Unknown types become :class:`UnsupportedProof` rather than errors;
        the proof verifier reports them.
        """
        proof_type = proof.get("type")
        if not isinstance(proof_type, str) or not proof_type:
            raise StructuralError(StructuralErrorKind.MISSING_FIELD, "Missing proof type")

        embedded_key = proof.get("publicKeyJwk") or proof.get("publicKeyBase64")
        verification_method = proof.get("verificationMethod")
        proof_value = proof.get("proofValue")

        if proof_type in DIRECT_SIGNATURE_TYPES:
            cryptosuite = DIRECT_SIGNATURE_TYPES[proof_type] or proof.get("cryptosuite")
            return DirectSignature(
                proof_type=proof_type,
                cryptosuite=cryptosuite if isinstance(cryptosuite, str) else "",
                proof_value=proof_value if isinstance(proof_value, str) else "",
                verification_method=verification_method,
                embedded_key=embedded_key,
            )

        if proof_type in SELECTIVE_DISCLOSURE_TYPES:
            revealed = proof.get("revealedAttributes") or proof.get("disclosedFields") or []
            if not isinstance(revealed, list) or not all(isinstance(r, str) for r in revealed):
                raise StructuralError(
                    StructuralErrorKind.BAD_TYPE, "revealedAttributes must be a list of strings"
                )
            return SelectiveDisclosureProof(
                proof_type=proof_type,
                proof_value=proof_value if isinstance(proof_value, str) else "",
                revealed_attributes=tuple(revealed),
                verification_method=verification_method,
                embedded_key=embedded_key,
            )

        log.info("unsupported proof type %s", proof_type)
        return UnsupportedProof(proof_type=proof_type)
