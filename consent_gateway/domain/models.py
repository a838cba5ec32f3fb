"""Domain Models for the Consent Gateway.

This module defines the canonical models exchanged between the gateway
services and its adapters: ledger identities, access grants, audit events,
entity profiles and the off-chain credential records that mirror them.

Security Impact:
    - Private key material is held as SecretStr and never rendered in reprs
    - Password hashes live only on credential records, never on profiles
    - Profile validation happens before any ledger or store call

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Ledger payloads (camelCase JSON) are parsed through field aliases
    - Follows Hexagonal Architecture: Domain Core is isolated from Adapters
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from consent_gateway.domain.enums import EntityRole, ValidityReason

# Bounds taken from the registration/grant request schemas
MIN_DURATION_HOURS = 1
MAX_DURATION_HOURS = 720
MIN_PURPOSE_LENGTH = 5
MAX_PURPOSE_LENGTH = 500
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 100


def utcnow() -> datetime:
    """Timezone-aware current time (default clock for services)."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Identities
# ============================================================================

class Identity(BaseModel):
    """A labelled X.509 identity used to authenticate ledger sessions.

    Parameters:
        label: Unique wallet label (e.g. 'hospitalApolloAdmin')
        msp_id: Organizational membership id (e.g. 'AuditOrgMSP')
        certificate: PEM encoded signing certificate
        private_key: PEM encoded private key (secret)
        identity_type: Credential type, always 'X.509' for this gateway
    """

    model_config = ConfigDict(frozen=True)

    label: str = Field(..., min_length=1, description="Unique identity label")
    msp_id: str = Field(..., min_length=1, description="Organizational membership id")
    certificate: str = Field(..., description="PEM certificate")
    private_key: SecretStr = Field(..., description="PEM private key (secret)")
    identity_type: str = Field(default="X.509", description="Credential type")

    def to_wallet_dict(self) -> dict:
        """Serialize in the wallet file layout."""
        return {
            "credentials": {
                "certificate": self.certificate,
                "privateKey": self.private_key.get_secret_value(),
            },
            "mspId": self.msp_id,
            "type": self.identity_type,
            "version": 1,
        }

    @classmethod
    def from_wallet_dict(cls, label: str, data: dict) -> "Identity":
        credentials = data.get("credentials", {})
        return cls(
            label=label,
            msp_id=data.get("mspId", ""),
            certificate=credentials.get("certificate", ""),
            private_key=SecretStr(credentials.get("privateKey", "")),
            identity_type=data.get("type", "X.509"),
        )


class IdentityPolicy(BaseModel):
    """Which enrolled identity performs each class of ledger operation.

    The ledger enforces organizational policy per operation (for example only
    the audit organization may verify doctors), so the gateway picks the
    identity from this mapping and never from caller input.

    Parameters:
        registrar: Registers patients and doctors
        access: Grants, revokes and reads access grants and entity records
        audit: Reads audit trails
        verifier: Verifies doctors
    """

    model_config = ConfigDict(frozen=True)

    registrar: str = Field(default="hospitalApolloAdmin", min_length=1)
    access: str = Field(default="hospitalApolloAdmin", min_length=1)
    audit: str = Field(default="auditOrgAdmin", min_length=1)
    verifier: str = Field(default="auditOrgAdmin", min_length=1)

    def labels(self) -> list[str]:
        return sorted({self.registrar, self.access, self.audit, self.verifier})


# ============================================================================
# Access grants and audit events (ledger resident)
# ============================================================================

class GrantRequest(BaseModel):
    """Validated input for a grant submission."""

    patient_id: str = Field(..., min_length=1, max_length=50)
    doctor_id: str = Field(..., min_length=1, max_length=50)
    duration_hours: int = Field(..., ge=MIN_DURATION_HOURS, le=MAX_DURATION_HOURS, strict=True)
    purpose: str = Field(..., min_length=MIN_PURPOSE_LENGTH, max_length=MAX_PURPOSE_LENGTH)

    @field_validator("patient_id", "doctor_id", "purpose", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class AccessGrant(BaseModel):
    """A time-bounded delegation of a doctor's access to a patient's records.

    Grants are never deleted on the ledger; revocation flips `revoked` and
    expiry is computed at read time from `issued_at` and `duration_hours`.

    Parameters:
        grant_key: Opaque ledger-assigned key
        patient_id: Patient granting access
        doctor_id: Doctor receiving access
        purpose: Stated purpose of access
        issued_at: Time the ledger accepted the grant
        duration_hours: Validity window length in hours
        revoked: Whether the grant was revoked
        revoked_at: Revocation time, if revoked
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    grant_key: str = Field(..., alias="accessKey")
    patient_id: str = Field(..., alias="patientID")
    doctor_id: str = Field(..., alias="doctorID")
    purpose: str = Field("", alias="purpose")
    issued_at: datetime = Field(..., alias="grantedAt")
    duration_hours: int = Field(..., alias="durationHours", ge=0)
    revoked: bool = Field(False, alias="isRevoked")
    revoked_at: Optional[datetime] = Field(None, alias="revokedAt")

    @field_validator("issued_at", "revoked_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(hours=self.duration_hours)

    def status_at(self, now: datetime) -> ValidityReason:
        """Compute the grant's status at `now`.

        A grant expires exactly at `issued_at + duration_hours`; revocation
        takes precedence over expiry.
        """
        if self.revoked:
            return ValidityReason.REVOKED
        if _as_utc(now) >= self.expires_at:
            return ValidityReason.EXPIRED
        return ValidityReason.ACTIVE

    def is_valid_at(self, now: datetime) -> bool:
        return self.status_at(now) is ValidityReason.ACTIVE

    def to_public_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["expires_at"] = self.expires_at.isoformat()
        return data


class ValidityReport(BaseModel):
    """Validity summary reconstructed from a grant's stored fields."""

    grant_key: str
    valid: bool
    reason: ValidityReason
    patient_id: str
    doctor_id: str
    issued_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    checked_at: datetime

    @classmethod
    def from_grant(cls, grant: AccessGrant, now: datetime) -> "ValidityReport":
        status = grant.status_at(now)
        return cls(
            grant_key=grant.grant_key,
            valid=status is ValidityReason.ACTIVE,
            reason=status,
            patient_id=grant.patient_id,
            doctor_id=grant.doctor_id,
            issued_at=grant.issued_at,
            expires_at=grant.expires_at,
            revoked_at=grant.revoked_at,
            checked_at=now,
        )


class AuditEvent(BaseModel):
    """An append-only ledger audit entry concerning a subject."""

    model_config = ConfigDict(frozen=True)

    actor: str
    subject: str
    action: str
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


# ============================================================================
# Entity profiles
# ============================================================================

class PatientProfile(BaseModel):
    """Public profile submitted when registering a patient.

    Parameters:
        name: Full name
        date_of_birth: Date of birth (YYYY-MM-DD)
        phone: Contact phone number
        national_id: 12 digit national identity number (unique)
        fingerprint_template_id: Optional biometric template reference
    """

    name: str = Field(..., min_length=2, max_length=100)
    date_of_birth: date
    phone: str = Field(..., min_length=10, max_length=20)
    national_id: str = Field(..., pattern=r"^[0-9]{12}$")
    fingerprint_template_id: Optional[int] = Field(None, gt=0)

    @property
    def secondary_id(self) -> str:
        return self.national_id

    def ledger_args(self) -> list[str]:
        return [
            self.name,
            self.date_of_birth.isoformat(),
            self.phone,
            self.national_id,
            str(self.fingerprint_template_id or ""),
        ]


class DoctorProfile(BaseModel):
    """Public profile submitted when registering a doctor."""

    name: str = Field(..., min_length=2, max_length=100)
    license_number: str = Field(..., min_length=5, max_length=50)
    specialization: str = Field(..., min_length=2, max_length=100)
    hospital_name: str = Field(..., min_length=2, max_length=200)

    @property
    def secondary_id(self) -> str:
        return self.license_number

    def ledger_args(self) -> list[str]:
        return [self.name, self.license_number, self.specialization, self.hospital_name]


# ============================================================================
# Off-chain credential records
# ============================================================================

class CredentialRecord(BaseModel):
    """Off-chain login credential keyed by the on-ledger entity id.

    Parameters:
        entity_id: Must equal the on-ledger entity id
        name: Profile mirror of the entity name
        password_hash: Encoded slow salted hash (never the password)
        is_active: Whether login is allowed
        last_login: Last successful login
    """

    entity_id: str = Field(..., min_length=2, max_length=20)
    name: str
    password_hash: str = Field(..., min_length=1, repr=False)
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    role: EntityRole = EntityRole.PATIENT

    def public_profile(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            exclude={"password_hash", "created_at", "updated_at", "role"},
        )


class PatientCredential(CredentialRecord):
    role: EntityRole = EntityRole.PATIENT
    date_of_birth: date
    phone: str
    national_id: str
    fingerprint_template_id: Optional[int] = None


class DoctorCredential(CredentialRecord):
    role: EntityRole = EntityRole.DOCTOR
    license_number: str
    specialization: str
    hospital_name: str
    is_verified: bool = False
    verified_at: Optional[datetime] = None


# ============================================================================
# Service results
# ============================================================================

class RegistrationResult(BaseModel):
    entity_id: str
    role: EntityRole
    attempts: int
    profile: dict[str, Any]


class VerificationResult(BaseModel):
    entity_id: str
    verified: bool
    mirror_synced: bool


class LoginResult(BaseModel):
    token: str
    role: EntityRole
    entity_id: str
    expires_at: datetime
    profile: dict[str, Any]
