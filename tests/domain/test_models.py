"""Tests for domain models: grant validity, request bounds, profiles."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import SecretStr, ValidationError

from consent_gateway.domain.enums import ValidityReason
from consent_gateway.domain.models import (
    AccessGrant,
    DoctorCredential,
    GrantRequest,
    Identity,
    IdentityPolicy,
    PatientProfile,
    ValidityReport,
)

ISSUED = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _grant(**overrides) -> AccessGrant:
    data = {
        "accessKey": "ACCESS_P1001_D2002_1",
        "patientID": "P1001",
        "doctorID": "D2002",
        "purpose": "Follow-up consultation",
        "grantedAt": ISSUED.isoformat(),
        "durationHours": 24,
        "isRevoked": False,
        "revokedAt": None,
    }
    data.update(overrides)
    return AccessGrant.model_validate(data)


class TestAccessGrantValidity:

    def test_valid_inside_window(self):
        grant = _grant()
        assert grant.is_valid_at(ISSUED + timedelta(hours=23, minutes=59))
        assert grant.status_at(ISSUED) is ValidityReason.ACTIVE

    def test_expires_exactly_at_boundary(self):
        grant = _grant()
        assert grant.expires_at == ISSUED + timedelta(hours=24)
        assert grant.status_at(ISSUED + timedelta(hours=24)) is ValidityReason.EXPIRED
        assert not grant.is_valid_at(ISSUED + timedelta(hours=24))

    def test_one_microsecond_before_boundary_is_valid(self):
        grant = _grant()
        assert grant.is_valid_at(ISSUED + timedelta(hours=24) - timedelta(microseconds=1))

    def test_revoked_takes_precedence(self):
        grant = _grant(isRevoked=True, revokedAt=(ISSUED + timedelta(hours=1)).isoformat())
        assert grant.status_at(ISSUED + timedelta(hours=2)) is ValidityReason.REVOKED
        assert grant.status_at(ISSUED + timedelta(hours=48)) is ValidityReason.REVOKED

    def test_naive_timestamps_are_utc(self):
        grant = _grant(grantedAt="2024-03-01T09:00:00")
        assert grant.issued_at == ISSUED

    def test_validity_report(self):
        now = ISSUED + timedelta(hours=25)
        report = ValidityReport.from_grant(_grant(), now)

        assert report.valid is False
        assert report.reason is ValidityReason.EXPIRED
        assert report.expires_at == ISSUED + timedelta(hours=24)
        assert report.checked_at == now

    def test_public_dict_includes_expiry(self):
        data = _grant().to_public_dict()
        assert data["grant_key"] == "ACCESS_P1001_D2002_1"
        assert data["expires_at"].startswith("2024-03-02T09:00:00")


class TestGrantRequest:

    @pytest.mark.parametrize("hours", [1, 24, 720])
    def test_duration_bounds_accepted(self, hours):
        assert GrantRequest(patient_id="P1", doctor_id="D1", duration_hours=hours, purpose="Checkup").duration_hours == hours

    @pytest.mark.parametrize("hours", [0, -5, 721, "24", 2.5])
    def test_duration_rejected(self, hours):
        with pytest.raises(ValidationError):
            GrantRequest(patient_id="P1", doctor_id="D1", duration_hours=hours, purpose="Checkup")

    @pytest.mark.parametrize("purpose", ["", "abcd", "   x   ", "x" * 501])
    def test_purpose_rejected(self, purpose):
        with pytest.raises(ValidationError):
            GrantRequest(patient_id="P1", doctor_id="D1", duration_hours=1, purpose=purpose)

    def test_ids_required(self):
        with pytest.raises(ValidationError):
            GrantRequest(patient_id="  ", doctor_id="D1", duration_hours=1, purpose="Checkup")


class TestProfiles:

    def test_patient_profile_ledger_args(self):
        profile = PatientProfile(
            name="Asha Verma",
            date_of_birth="1988-04-12",
            phone="9876543210",
            national_id="123456789012",
        )
        assert profile.secondary_id == "123456789012"
        assert profile.ledger_args() == ["Asha Verma", "1988-04-12", "9876543210", "123456789012", ""]

    def test_patient_national_id_must_be_twelve_digits(self):
        with pytest.raises(ValidationError):
            PatientProfile(
                name="Asha Verma",
                date_of_birth="1988-04-12",
                phone="9876543210",
                national_id="12345",
            )

    def test_credential_public_profile_hides_hash(self):
        record = DoctorCredential(
            entity_id="D2002",
            name="Dr. Rao",
            password_hash="scrypt$...",
            license_number="MCI-55555",
            specialization="Cardiology",
            hospital_name="Apollo Hospital",
        )
        profile = record.public_profile()
        assert "password_hash" not in profile
        assert profile["is_verified"] is False
        assert "scrypt" not in repr(record)


class TestIdentity:

    def test_private_key_not_in_repr(self):
        identity = Identity(label="a", msp_id="AMSP", certificate="cert", private_key=SecretStr("KEY-MATERIAL"))
        assert "KEY-MATERIAL" not in repr(identity)

    def test_wallet_round_trip_keeps_fields(self):
        identity = Identity(label="a", msp_id="AMSP", certificate="cert", private_key=SecretStr("k"))
        restored = Identity.from_wallet_dict("a", identity.to_wallet_dict())
        assert restored.msp_id == "AMSP"
        assert restored.private_key.get_secret_value() == "k"

    def test_policy_defaults(self):
        policy = IdentityPolicy()
        assert policy.verifier == "auditOrgAdmin"
        assert policy.audit == "auditOrgAdmin"
        assert policy.registrar == "hospitalApolloAdmin"
        assert policy.labels() == ["auditOrgAdmin", "hospitalApolloAdmin"]
