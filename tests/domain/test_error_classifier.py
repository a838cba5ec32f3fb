"""Tests for classification of raw ledger error messages."""

import pytest

from consent_gateway.domain.enums import ErrorKind
from consent_gateway.domain.error_classifier import classify_ledger_error, ledger_error_for
from consent_gateway.domain.ports import (
    AlreadyExists,
    GenericLedgerFailure,
    NotFound,
    PermissionDenied,
)


class TestClassifyLedgerError:
    """Known substrings map onto the taxonomy; everything else is generic."""

    @pytest.mark.parametrize("message", [
        "patient P1001 does not exist",
        "access key ACCESS_P1_D2_1 not found",
        "active access key ACCESS_X not found (already revoked)",
        "No such record",
    ])
    def test_not_found(self, message):
        assert classify_ledger_error(message) is ErrorKind.NOT_FOUND

    @pytest.mark.parametrize("message", [
        "only AuditOrg can verify doctors (caller MSP: HospitalApolloMSP)",
        "Permission denied for identity",
        "client is not authorized to invoke VerifyDoctor",
        "Only AuditOrg may read the audit trail; doctor D1 not found",
    ])
    def test_permission_denied(self, message):
        assert classify_ledger_error(message) is ErrorKind.PERMISSION_DENIED

    @pytest.mark.parametrize("message", [
        "patient P1001 already exists",
        "patient with national id already registered as P1234",
        "duplicate key",
    ])
    def test_already_exists(self, message):
        assert classify_ledger_error(message) is ErrorKind.ALREADY_EXISTS

    @pytest.mark.parametrize("message", [None, "", "endorsement policy failure", "chaincode crashed"])
    def test_unrecognized_is_generic(self, message):
        assert classify_ledger_error(message) is ErrorKind.GENERIC

    def test_case_insensitive(self):
        assert classify_ledger_error("DOCTOR D2002 DOES NOT EXIST") is ErrorKind.NOT_FOUND

    @pytest.mark.parametrize("key", ["forbidden-key", "Unauthorized-Grant", "duplicate-key", "permission denied"])
    def test_echoed_arguments_are_not_classified(self, key):
        message = f"access key {key} not found"

        assert classify_ledger_error(message, echoed=[key]) is ErrorKind.NOT_FOUND

    def test_echoed_argument_inside_policy_message(self):
        message = "only AuditOrg can verify doctors (doctor D-not-found-1)"

        assert classify_ledger_error(message, echoed=["D-not-found-1"]) is ErrorKind.PERMISSION_DENIED

    def test_short_argument_does_not_eat_wording(self):
        message = "patient P4821 already exists"

        assert classify_ledger_error(message, echoed=["P4821", "Al", "ready"]) is ErrorKind.ALREADY_EXISTS

    def test_empty_echoed_arguments_are_ignored(self):
        assert classify_ledger_error("patient P1 does not exist", echoed=["", "P1"]) is ErrorKind.NOT_FOUND


class TestLedgerErrorFor:

    def test_builds_typed_error_with_context(self):
        error = ledger_error_for("doctor D9 does not exist", operation="GrantAccess")

        assert isinstance(error, NotFound)
        assert error.status_code == 404
        assert error.operation == "GrantAccess"
        assert error.ledger_message == "doctor D9 does not exist"
        assert error.details["operation"] == "GrantAccess"

    def test_error_types(self):
        assert isinstance(ledger_error_for("only AuditOrg can verify doctors"), PermissionDenied)
        assert isinstance(ledger_error_for("doctor D1 already exists"), AlreadyExists)
        generic = ledger_error_for("peer unavailable")
        assert isinstance(generic, GenericLedgerFailure)
        assert generic.retriable is False
        assert generic.status_code == 500

    def test_echoed_arguments_keep_raw_message(self):
        error = ledger_error_for("access key duplicate-key not found", "RevokeAccess", echoed=["duplicate-key"])

        assert isinstance(error, NotFound)
        assert error.ledger_message == "access key duplicate-key not found"

    def test_error_shape(self):
        body = ledger_error_for("only AuditOrg can verify doctors").to_dict()

        assert body["success"] is False
        assert body["error"] == "PERMISSION_DENIED"
        assert body["message"]
        assert body["details"]["ledger_message"] == "only AuditOrg can verify doctors"
