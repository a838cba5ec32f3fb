"""Credential table layout shared by the storage adapters.

Both adapters store patients and doctors in separate tables keyed by the
on-ledger entity id, with a UNIQUE secondary column (national id / license
number). Timestamps are stored as naive UTC and re-attached to UTC on read.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence, Type

from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.models import CredentialRecord, DoctorCredential, PatientCredential

DUPLICATE_RECORD_ERROR = "DuplicateRecordError"


@dataclass(frozen=True)
class CredentialTable:
    role: EntityRole
    name: str
    id_column: str
    secondary_column: str
    columns: tuple[str, ...]
    record_cls: Type[CredentialRecord]

    # column -> model field, where they differ
    renames: tuple[tuple[str, str], ...] = ()

    def field_for(self, column: str) -> str:
        return dict(self.renames).get(column, column)

    @property
    def column_list(self) -> str:
        return ", ".join(self.columns)


PATIENTS = CredentialTable(
    role=EntityRole.PATIENT,
    name="patients",
    id_column="patient_id",
    secondary_column="aadhar_number",
    columns=(
        "patient_id", "name", "date_of_birth", "phone", "aadhar_number",
        "password_hash", "fingerprint_template_id", "is_active", "last_login",
        "created_at", "updated_at",
    ),
    record_cls=PatientCredential,
    renames=(("patient_id", "entity_id"), ("aadhar_number", "national_id")),
)

DOCTORS = CredentialTable(
    role=EntityRole.DOCTOR,
    name="doctors",
    id_column="doctor_id",
    secondary_column="license_number",
    columns=(
        "doctor_id", "name", "license_number", "specialization", "hospital_name",
        "password_hash", "is_verified", "verified_at", "is_active", "last_login",
        "created_at", "updated_at",
    ),
    record_cls=DoctorCredential,
    renames=(("doctor_id", "entity_id"),),
)

TABLES = {EntityRole.PATIENT: PATIENTS, EntityRole.DOCTOR: DOCTORS}


def table_for(role: EntityRole) -> CredentialTable:
    return TABLES[EntityRole(role)]


def to_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def record_to_row(table: CredentialTable, record: CredentialRecord) -> list:
    """Values for an INSERT in `table.columns` order."""
    row = []
    for column in table.columns:
        value = getattr(record, table.field_for(column))
        if isinstance(value, datetime):
            value = to_db_timestamp(value)
        row.append(value)
    return row


def row_to_record(table: CredentialTable, row: Sequence) -> CredentialRecord:
    """Build the role's credential model from a SELECT row."""
    data = {}
    for column, value in zip(table.columns, row):
        if isinstance(value, datetime):
            value = from_db_timestamp(value)
        data[table.field_for(column)] = value
    return table.record_cls(**data)
