"""Tests for the ledger contract client: timeouts, classification, encoding."""

import asyncio

import pytest

from consent_gateway.adapters.ledger.contract_client import (
    LedgerContractClient,
    decode_json_payload,
    encode_argument,
)
from consent_gateway.domain.enums import LedgerOperation
from consent_gateway.domain.ports import (
    AlreadyExists,
    AmbiguousOutcome,
    ContractHandle,
    GenericLedgerFailure,
    LedgerConnectionError,
    LedgerRejectionError,
    NotFound,
    PermissionDenied,
)


class FakeContract(ContractHandle):
    """Contract handle that records calls and replays a scripted outcome."""

    def __init__(self, result=b"ok", error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def _respond(self, kind, name, args):
        self.calls.append((kind, name, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    async def submit_transaction(self, name, *args):
        return await self._respond("submit", name, args)

    async def evaluate_transaction(self, name, *args):
        return await self._respond("evaluate", name, args)


def _client(contract, submit_timeout=1.0, evaluate_timeout=1.0):
    return LedgerContractClient(
        contract,
        identity_label="hospitalApolloAdmin",
        submit_timeout=submit_timeout,
        evaluate_timeout=evaluate_timeout,
    )


class TestEncoding:

    @pytest.mark.parametrize("value,expected", [
        (24, "24"),
        ("P1001", "P1001"),
        (None, ""),
        (True, "true"),
        (False, "false"),
    ])
    def test_encode_argument(self, value, expected):
        assert encode_argument(value) == expected

    @pytest.mark.asyncio
    async def test_operation_enum_and_args_are_encoded(self):
        contract = FakeContract()

        await _client(contract).submit(LedgerOperation.GRANT_ACCESS, "P1001", "D2002", 24, "Checkup")

        assert contract.calls == [("submit", "GrantAccess", ("P1001", "D2002", "24", "Checkup"))]


class TestSubmit:

    @pytest.mark.asyncio
    async def test_returns_raw_payload(self):
        assert await _client(FakeContract(result=b"ACCESS_1")).submit("GrantAccess") == b"ACCESS_1"

    @pytest.mark.asyncio
    async def test_timeout_is_ambiguous(self):
        client = _client(FakeContract(delay=0.5), submit_timeout=0.05)

        with pytest.raises(AmbiguousOutcome) as exc_info:
            await client.submit("RevokeAccess", "ACCESS_1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.operation == "RevokeAccess"
        assert exc_info.value.details["timeout_seconds"] == 0.05

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message,expected", [
        ("doctor D9 does not exist", NotFound),
        ("only AuditOrg can verify doctors (caller MSP: HospitalApolloMSP)", PermissionDenied),
        ("patient P1001 already exists", AlreadyExists),
        ("endorsement policy failure", GenericLedgerFailure),
    ])
    async def test_rejection_is_classified(self, message, expected):
        client = _client(FakeContract(error=LedgerRejectionError(message)))

        with pytest.raises(expected) as exc_info:
            await client.submit("VerifyDoctor", "D9")

        assert exc_info.value.ledger_message == message
        assert exc_info.value.operation == "VerifyDoctor"

    @pytest.mark.asyncio
    async def test_echoed_argument_does_not_drive_classification(self):
        client = _client(FakeContract(error=LedgerRejectionError("access key forbidden-key not found")))

        with pytest.raises(NotFound):
            await client.submit("RevokeAccess", "forbidden-key")

    @pytest.mark.asyncio
    async def test_unreachable_ledger_not_retriable_for_submit(self):
        client = _client(FakeContract(error=LedgerConnectionError("connection refused")))

        with pytest.raises(GenericLedgerFailure) as exc_info:
            await client.submit("GrantAccess")

        assert exc_info.value.retriable is False


class TestEvaluate:

    @pytest.mark.asyncio
    async def test_timeout_is_retriable_failure(self):
        client = _client(FakeContract(delay=0.5), evaluate_timeout=0.05)

        with pytest.raises(GenericLedgerFailure) as exc_info:
            await client.evaluate("CheckAccessValidity", "ACCESS_1")

        assert exc_info.value.retriable is True
        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, AmbiguousOutcome)

    @pytest.mark.asyncio
    async def test_not_found_rejection(self):
        client = _client(FakeContract(error=LedgerRejectionError("access key X does not exist")))

        with pytest.raises(NotFound):
            await client.evaluate("CheckAccessValidity", "X")

    @pytest.mark.asyncio
    async def test_evaluate_json(self):
        client = _client(FakeContract(result=b'{"patientID": "P1001"}'))

        assert await client.evaluate_json("GetPatient", "P1001") == {"patientID": "P1001"}


class TestDecodePayload:

    def test_empty_payload_is_none(self):
        assert decode_json_payload(b"", "GetAuditTrail") is None
        assert decode_json_payload(b"   ", "GetAuditTrail") is None

    def test_malformed_payload(self):
        with pytest.raises(GenericLedgerFailure) as exc_info:
            decode_json_payload(b"{not json", "GetPatient")
        assert exc_info.value.operation == "GetPatient"

    def test_non_utf8_payload(self):
        with pytest.raises(GenericLedgerFailure) as exc_info:
            decode_json_payload(b"\xff\xfe{}", "GetPatient")
        assert "malformed" in exc_info.value.message
