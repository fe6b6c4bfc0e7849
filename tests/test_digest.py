"""Tests for canonical JSON and the document hash check."""

import hashlib
import math

import pytest

from vc_pipeline.canonical import b64url_decode, b64url_encode, canonicalize, decode_binary
from vc_pipeline.digest import HashIntegrityChecker, compute_subject_digest
from vc_pipeline.validator import StructuralValidator

from conftest import STUDENT, encode, make_credential, make_presentation


class TestJCSCanonicalization:
    """Tests for JSON Canonicalization Scheme."""

    def test_sort_keys(self):
        """Test that keys are sorted."""
        data = {"z": 1, "a": 2, "m": 3}
        assert canonicalize(data) == '{"a":2,"m":3,"z":1}'

    def test_nested_keys_sorted(self):
        data = {"b": {"y": 1, "x": [{"d": 1, "c": 2}]}, "a": None}
        assert canonicalize(data) == '{"a":null,"b":{"x":[{"c":2,"d":1}],"y":1}}'

    def test_no_spaces(self):
        """Test that no extra spaces are added."""
        data = {"key": "value", "number": 123}
        assert " " not in canonicalize(data)

    def test_unicode_preserved(self):
        """Test that unicode is preserved (not escaped)."""
        assert canonicalize({"name": "Zoë Ångström"}) == '{"name":"Zoë Ångström"}'

    def test_integral_float_written_as_int(self):
        assert canonicalize({"gpa": 4.0}) == canonicalize({"gpa": 4})
        assert canonicalize({"gpa": 3.75}) == '{"gpa":3.75}'

    def test_booleans_not_coerced(self):
        assert canonicalize({"active": True, "count": 1}) == '{"active":true,"count":1}'

    def test_nan_rejected(self):
        with pytest.raises(ValueError):
            canonicalize({"score": math.nan})

    def test_dates_left_verbatim(self):
        assert canonicalize({"d": "2025-01-15T10:00:00Z"}) == '{"d":"2025-01-15T10:00:00Z"}'


class TestBinaryDecoding:
    def test_b64url_round_trip_without_padding(self):
        data = bytes(range(40))
        encoded = b64url_encode(data)
        assert "=" not in encoded
        assert b64url_decode(encoded) == data

    def test_decode_hex(self):
        assert decode_binary("0xdeadbeef") == bytes.fromhex("deadbeef")
        assert decode_binary("DEADBEEF") == bytes.fromhex("deadbeef")

    def test_decode_base64(self):
        assert decode_binary("aGVsbG8gd29ybGQ=") == b"hello world"

    def test_decode_base64url(self):
        assert decode_binary("-_-_") == b"\xfb\xff\xbf"

    def test_decode_garbage(self):
        with pytest.raises(ValueError):
            decode_binary("not base64!!")


class TestSubjectDigest:
    def test_digest_excludes_digest_field(self):
        subject = {"name": "Asha", "documentHash": "anything"}
        expected = hashlib.sha256(b'{"name":"Asha"}').hexdigest()
        assert compute_subject_digest(subject) == expected

    def test_digest_independent_of_key_order(self):
        a = {"name": "Asha", "rollNumber": "42"}
        b = {"rollNumber": "42", "name": "Asha"}
        assert compute_subject_digest(a) == compute_subject_digest(b)


class TestHashIntegrityChecker:
    """Tests for the embedded documentHash comparison."""

    def _credential(self, document):
        return StructuralValidator().validate(encode(document))

    def test_matching_digest(self):
        result = HashIntegrityChecker().check(self._credential(make_credential()))
        assert result.passed is True
        assert result.applicable is True
        assert result.note is None

    @pytest.mark.parametrize("field", sorted(STUDENT))
    def test_mutated_field_fails(self, field):
        document = make_credential()
        document["credentialSubject"][field] = "tampered"

        result = HashIntegrityChecker().check(self._credential(document))

        assert result.passed is False
        assert "does not match" in result.note

    def test_added_field_fails(self):
        document = make_credential()
        document["credentialSubject"]["extra"] = "x"
        assert HashIntegrityChecker().check(self._credential(document)).passed is False

    def test_prefixed_claim_accepted(self):
        document = make_credential()
        subject = document["credentialSubject"]
        subject["documentHash"] = "sha256:" + subject["documentHash"].upper()
        assert HashIntegrityChecker().check(self._credential(document)).passed is True

    def test_non_hex_claim(self):
        document = make_credential()
        document["credentialSubject"]["documentHash"] = "QmNotAHexDigest"

        result = HashIntegrityChecker().check(self._credential(document))

        assert result.passed is False
        assert "not a hex SHA-256 digest" in result.note

    def test_not_applicable_to_presentation(self, ec_key_pair):
        private_key, _ = ec_key_pair
        presentation = self._credential(make_presentation(private_key, ["name"]))

        result = HashIntegrityChecker().check(presentation)

        assert result.applicable is False
        assert result.passed is False
        assert "not applicable" in result.note
