"""Enumerations shared by the domain models and services."""

from enum import Enum


class EntityRole(str, Enum):
    """Role of a registered entity, used for id prefixes and table routing."""
    PATIENT = "patient"
    DOCTOR = "doctor"

    @property
    def id_prefix(self) -> str:
        return "P" if self is EntityRole.PATIENT else "D"

    @property
    def register_operation(self) -> "LedgerOperation":
        if self is EntityRole.PATIENT:
            return LedgerOperation.REGISTER_PATIENT
        return LedgerOperation.REGISTER_DOCTOR


class ValidityReason(str, Enum):
    """Why a grant is (or is not) currently usable."""
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ErrorKind(str, Enum):
    """Outcome kinds produced by classifying a raw ledger error message."""
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    ALREADY_EXISTS = "already_exists"
    GENERIC = "generic"


class LedgerOperation(str, Enum):
    """Contract operations invoked by the gateway."""
    REGISTER_PATIENT = "RegisterPatient"
    REGISTER_DOCTOR = "RegisterDoctor"
    GRANT_ACCESS = "GrantAccess"
    REVOKE_ACCESS = "RevokeAccess"
    CHECK_ACCESS_VALIDITY = "CheckAccessValidity"
    GET_ACTIVE_ACCESSES_FOR_PATIENT = "GetActiveAccessesForPatient"
    GET_AUDIT_TRAIL = "GetAuditTrail"
    GET_PATIENT = "GetPatient"
    GET_DOCTOR = "GetDoctor"
    VERIFY_DOCTOR = "VerifyDoctor"
    GET_DOCTOR_ACCESS_HISTORY = "GetDoctorAccessHistory"
