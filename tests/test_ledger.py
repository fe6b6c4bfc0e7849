"""Tests for the ledger lookup client and record comparison."""

from datetime import datetime, timezone

import httpx
import pytest
import respx
from httpx import Response

from vc_pipeline.exceptions import LedgerError, LedgerErrorKind
from vc_pipeline.ledger import HttpLedgerClient, parse_record
from vc_pipeline.models import LedgerRecord
from vc_pipeline.pipeline import compare_record, normalize_issuer

from conftest import ANCHORED_AT, CREDENTIAL_CID, ISSUER, LEDGER_ISSUER

LEDGER = "https://ledger.example"
URL = f"{LEDGER}/anchors/{CREDENTIAL_CID}"


class TestParseRecord:
    def test_unix_timestamp(self):
        record = parse_record(
            {"issuer": LEDGER_ISSUER, "timestamp": 1736935500, "ipfsCID": CREDENTIAL_CID}
        )
        assert record == LedgerRecord(LEDGER_ISSUER, ANCHORED_AT, CREDENTIAL_CID)

    @pytest.mark.parametrize("timestamp", ["1736935500", "2025-01-15T10:05:00Z"])
    def test_string_timestamps(self, timestamp):
        record = parse_record(
            {"issuer": LEDGER_ISSUER, "timestamp": timestamp, "contentAddress": CREDENTIAL_CID}
        )
        assert record.timestamp == ANCHORED_AT
        assert record.content_address == CREDENTIAL_CID

    def test_not_exists(self):
        assert parse_record({"exists": False}) is None

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"timestamp": 1, "ipfsCID": CREDENTIAL_CID},
            {"issuer": LEDGER_ISSUER, "timestamp": 1},
            {"issuer": LEDGER_ISSUER, "ipfsCID": CREDENTIAL_CID},
            {"issuer": LEDGER_ISSUER, "timestamp": "yesterday", "ipfsCID": CREDENTIAL_CID},
            {"issuer": LEDGER_ISSUER, "timestamp": True, "ipfsCID": CREDENTIAL_CID},
        ],
    )
    def test_malformed(self, data):
        with pytest.raises(LedgerError) as exc:
            parse_record(data)
        assert exc.value.kind is LedgerErrorKind.MALFORMED

    @pytest.mark.parametrize(
        "timestamp", [10**20, -(10**20), float("nan"), float("inf"), "9" * 30, 1e300]
    )
    def test_out_of_range_timestamp(self, timestamp):
        with pytest.raises(LedgerError) as exc:
            parse_record(
                {"issuer": LEDGER_ISSUER, "timestamp": timestamp, "ipfsCID": CREDENTIAL_CID}
            )

        assert exc.value.kind is LedgerErrorKind.MALFORMED
        assert "out of range" in exc.value.message

    @pytest.mark.parametrize("revoked", [True, False])
    def test_revoked_flag(self, revoked):
        record = parse_record(
            {
                "issuer": LEDGER_ISSUER,
                "timestamp": 1736935500,
                "ipfsCID": CREDENTIAL_CID,
                "revoked": revoked,
            }
        )

        assert record.revoked is revoked
        assert record.to_dict()["revoked"] is revoked

    def test_revoked_flag_absent(self):
        record = parse_record(
            {"issuer": LEDGER_ISSUER, "timestamp": 1736935500, "ipfsCID": CREDENTIAL_CID}
        )

        assert record.revoked is None
        assert "revoked" not in record.to_dict()

    @pytest.mark.parametrize("revoked", ["true", 1, []])
    def test_revoked_flag_must_be_boolean(self, revoked):
        with pytest.raises(LedgerError) as exc:
            parse_record(
                {
                    "issuer": LEDGER_ISSUER,
                    "timestamp": 1736935500,
                    "ipfsCID": CREDENTIAL_CID,
                    "revoked": revoked,
                }
            )

        assert exc.value.kind is LedgerErrorKind.MALFORMED

    def test_to_dict(self):
        record = LedgerRecord(LEDGER_ISSUER, ANCHORED_AT, CREDENTIAL_CID)
        assert record.to_dict() == {
            "issuer": LEDGER_ISSUER,
            "timestamp": "2025-01-15T10:05:00Z",
            "ipfsCID": CREDENTIAL_CID,
        }


class TestIssuerComparison:
    def test_did_ethr_matches_address_case_insensitively(self):
        assert normalize_issuer(ISSUER) == normalize_issuer(LEDGER_ISSUER)

    def test_other_identifiers_compared_verbatim(self):
        assert normalize_issuer("did:web:Example.com") == "did:web:Example.com"

    def test_matching_record(self):
        record = LedgerRecord(LEDGER_ISSUER, ANCHORED_AT, CREDENTIAL_CID)
        assert compare_record(record, ISSUER, CREDENTIAL_CID) == []

    def test_mismatched_record(self):
        record = LedgerRecord("0xfeed", ANCHORED_AT, "QmOther")
        reasons = compare_record(record, ISSUER, CREDENTIAL_CID)
        assert len(reasons) == 2
        assert "issuer" in reasons[0]
        assert "content address" in reasons[1]


class TestHttpLedgerClient:
    @pytest.mark.asyncio
    @respx.mock
    async def test_lookup(self):
        route = respx.get(URL).mock(
            return_value=Response(
                200,
                json={"issuer": LEDGER_ISSUER, "timestamp": 1736935500, "ipfsCID": CREDENTIAL_CID},
            )
        )

        record = await HttpLedgerClient(LEDGER).lookup(ISSUER, CREDENTIAL_CID)

        assert record.issuer == LEDGER_ISSUER
        assert route.calls.last.request.url.params["issuer"] == ISSUER

    @pytest.mark.asyncio
    @respx.mock
    async def test_not_anchored(self):
        respx.get(URL).mock(return_value=Response(404))
        assert await HttpLedgerClient(LEDGER).lookup(ISSUER, CREDENTIAL_CID) is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_retried_then_raised(self):
        route = respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(LedgerError) as exc:
            await HttpLedgerClient(LEDGER, retries=2, backoff=0).lookup(ISSUER, CREDENTIAL_CID)

        assert exc.value.kind is LedgerErrorKind.TIMEOUT
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_recovers(self):
        respx.get(URL).mock(
            side_effect=[
                httpx.ReadTimeout("slow"),
                Response(
                    200,
                    json={"issuer": LEDGER_ISSUER, "timestamp": 1, "ipfsCID": CREDENTIAL_CID},
                ),
            ]
        )

        record = await HttpLedgerClient(LEDGER, retries=1, backoff=0).lookup(ISSUER, CREDENTIAL_CID)

        assert record.timestamp == datetime.fromtimestamp(1, tz=timezone.utc)

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_not_retried(self):
        route = respx.get(URL).mock(return_value=Response(500))

        with pytest.raises(LedgerError) as exc:
            await HttpLedgerClient(LEDGER, retries=2, backoff=0).lookup(ISSUER, CREDENTIAL_CID)

        assert exc.value.kind is LedgerErrorKind.UNAVAILABLE
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json(self):
        respx.get(URL).mock(return_value=Response(200, content=b"<html>"))

        with pytest.raises(LedgerError) as exc:
            await HttpLedgerClient(LEDGER).lookup(ISSUER, CREDENTIAL_CID)

        assert exc.value.kind is LedgerErrorKind.MALFORMED
