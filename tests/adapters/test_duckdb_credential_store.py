"""Tests for the DuckDB credential store."""

from datetime import date, datetime, timezone

import pytest

from consent_gateway.adapters.storage import DuckDBCredentialStore
from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.models import DoctorCredential, PatientCredential
from consent_gateway.domain.ports import StorageError
from consent_gateway.infrastructure.config_manager import DatabaseConfig

AT = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def _patient(entity_id="P1001", national_id="123456789012"):
    return PatientCredential(
        entity_id=entity_id,
        name="Asha Verma",
        password_hash="scrypt$1024$8$1$salt$hash",
        date_of_birth=date(1988, 4, 12),
        phone="9876543210",
        national_id=national_id,
    )


def _doctor(entity_id="D2002", license_number="MCI-55555"):
    return DoctorCredential(
        entity_id=entity_id,
        name="Dr. Rao",
        password_hash="scrypt$1024$8$1$salt$hash",
        license_number=license_number,
        specialization="Cardiology",
        hospital_name="Apollo Hospital",
    )


class TestConstruction:

    def test_rejects_mismatched_config(self):
        with pytest.raises(StorageError):
            DuckDBCredentialStore(db_config=DatabaseConfig(db_type="postgresql", host="h", database="d"))

    def test_file_database_persists(self, tmp_path):
        path = str(tmp_path / "credentials.duckdb")
        store = DuckDBCredentialStore(db_config=DatabaseConfig(db_type="duckdb", db_path=path))
        assert store.create_credential(_patient()).is_success()
        store.close()

        reopened = DuckDBCredentialStore(db_path=path)
        try:
            assert reopened.find_credential(EntityRole.PATIENT, "P1001").value.name == "Asha Verma"
        finally:
            reopened.close()


class TestCreateAndFind:

    def test_create_and_find_patient(self, credential_store):
        result = credential_store.create_credential(_patient())
        assert result.is_success()
        assert result.value == "P1001"

        record = credential_store.find_credential(EntityRole.PATIENT, "P1001").value
        assert isinstance(record, PatientCredential)
        assert record.national_id == "123456789012"
        assert record.date_of_birth == date(1988, 4, 12)
        assert record.created_at.tzinfo is not None

    def test_find_by_secondary_id(self, credential_store):
        credential_store.create_credential(_doctor())

        found = credential_store.find_by_secondary_id(EntityRole.DOCTOR, "MCI-55555").value
        missing = credential_store.find_by_secondary_id(EntityRole.DOCTOR, "MCI-00000").value

        assert found.entity_id == "D2002"
        assert missing is None

    def test_roles_are_separate_tables(self, credential_store):
        credential_store.create_credential(_patient())

        assert credential_store.find_credential(EntityRole.DOCTOR, "P1001").value is None
        assert credential_store.count(EntityRole.PATIENT) == 1
        assert credential_store.count(EntityRole.DOCTOR) == 0

    @pytest.mark.parametrize("duplicate", [
        _patient(entity_id="P1001", national_id="999999999999"),
        _patient(entity_id="P5555", national_id="123456789012"),
    ])
    def test_duplicates_rejected(self, credential_store, duplicate):
        credential_store.create_credential(_patient())

        result = credential_store.create_credential(duplicate)

        assert result.is_failure()
        assert result.error_type == "DuplicateRecordError"
        assert credential_store.count(EntityRole.PATIENT) == 1


class TestUpdates:

    def test_record_login(self, credential_store):
        credential_store.create_credential(_patient())

        assert credential_store.record_login(EntityRole.PATIENT, "P1001", AT).is_success()
        assert credential_store.find_credential(EntityRole.PATIENT, "P1001").value.last_login == AT

    def test_mark_verified(self, credential_store):
        credential_store.create_credential(_doctor())

        result = credential_store.mark_verified("D2002", AT)

        assert result.value is True
        record = credential_store.find_credential(EntityRole.DOCTOR, "D2002").value
        assert record.is_verified is True
        assert record.verified_at == AT

    def test_mark_verified_unknown_doctor(self, credential_store):
        assert credential_store.mark_verified("D0000", AT).value is False

    def test_set_active(self, credential_store):
        credential_store.create_credential(_patient())

        assert credential_store.set_active(EntityRole.PATIENT, "P1001", False).value is True
        assert credential_store.find_credential(EntityRole.PATIENT, "P1001").value.is_active is False
