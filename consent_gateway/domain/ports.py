"""Domain Ports - Abstract Contracts for the Consent Gateway.

This module defines the Port interfaces (abstract contracts) that Adapters must
implement, together with the Result type used by storage adapters and the typed
failure taxonomy surfaced to callers. Following Hexagonal Architecture, the
Domain Core defines what it needs, not how it's provided.

Security Impact:
    - Every failure crossing the core boundary is a typed GatewayError with a
      stable error code, so clients never parse free-text ledger messages
    - Submit timeouts are AmbiguousOutcome, never a clean failure, so upstream
      logic cannot blindly retry a possibly-committed grant or revoke
    - Credential store ports never receive plaintext passwords

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Ledger ports are async (network-bound); store ports are blocking and are
      called through asyncio.to_thread by the services
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.models import CredentialRecord, Identity

T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Storage adapters return Result objects so that services decide how a
    failure maps onto the gateway taxonomy (e.g. a failed credential write
    after a committed ledger registration becomes PartialRegistrationFailure).

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error message (only present if success=False)
        error_type: Type of error (StorageError, DuplicateRecordError, ...)
        error_details: Additional error context (table, field, entity_id)

    Example:
        ```python
        result = store.create_credential(record)
        if result.is_failure() and result.error_type == "DuplicateRecordError":
            ...
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (defaults to the exception class name)
            error_details: Additional context
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        return self.success

    def is_failure(self) -> bool:
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class GatewayError(Exception):
    """Base exception for every typed failure the gateway surfaces.

    Attributes:
        message: Human readable message
        error_code: Stable machine readable code
        status_code: HTTP-style status used by outer surfaces
        details: Additional structured context
    """

    error_code = "GATEWAY_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Stable response shape shared by the API and CLI."""
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(GatewayError):
    """Malformed input, detected before any network call."""
    error_code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationFailed(GatewayError):
    """Unknown id, inactive account, wrong password or invalid token."""
    error_code = "AUTHENTICATION_FAILED"
    status_code = 401


class IdentityNotFound(GatewayError):
    """The requested identity label is not enrolled in the identity store."""
    error_code = "IDENTITY_NOT_FOUND"
    status_code = 500

    def __init__(self, label: str):
        super().__init__(
            f'Identity "{label}" not found in identity store',
            details={"label": label},
        )
        self.label = label


class LedgerError(GatewayError):
    """Base class for failures reported by (or while talking to) the ledger.

    Attributes:
        operation: Contract operation that failed
        ledger_message: Raw ledger error text, kept for logs and details
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        ledger_message: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        merged = dict(details or {})
        if operation:
            merged.setdefault("operation", operation)
        if ledger_message:
            merged.setdefault("ledger_message", ledger_message)
        super().__init__(message, details=merged)
        self.operation = operation
        self.ledger_message = ledger_message


class NotFound(LedgerError):
    """Ledger entity or grant absent."""
    error_code = "NOT_FOUND"
    status_code = 404


class PermissionDenied(LedgerError):
    """Rejected by the ledger's access-control policy."""
    error_code = "PERMISSION_DENIED"
    status_code = 403


class AlreadyExists(LedgerError):
    """Entity id or unique attribute already registered."""
    error_code = "ALREADY_EXISTS"
    status_code = 409


class AmbiguousOutcome(LedgerError):
    """An ordered submission timed out; it may still have been committed."""
    error_code = "AMBIGUOUS_OUTCOME"
    status_code = 503


class GenericLedgerFailure(LedgerError):
    """Any ledger failure that is not one of the recognized kinds.

    Attributes:
        retriable: True only for read-only evaluations that may be repeated
    """
    error_code = "LEDGER_FAILURE"
    status_code = 500

    def __init__(self, message: str, retriable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.retriable = retriable
        self.details["retriable"] = retriable
        if retriable:
            self.status_code = 503


class IdGenerationExhausted(GatewayError):
    """Every generated candidate id collided with an existing ledger entity."""
    error_code = "ID_GENERATION_EXHAUSTED"
    status_code = 409

    def __init__(self, role: EntityRole, attempts: int):
        super().__init__(
            f"Could not allocate a unique {role.value} id after {attempts} attempts",
            details={"role": role.value, "attempts": attempts},
        )
        self.role = role
        self.attempts = attempts


class PartialRegistrationFailure(GatewayError):
    """Ledger registration committed but the credential write failed.

    The entity exists on the ledger without login credentials and needs
    operator reconciliation; nothing is rolled back automatically.
    """
    error_code = "PARTIAL_REGISTRATION"
    status_code = 500

    def __init__(self, entity_id: str, role: EntityRole, cause: str):
        super().__init__(
            f"{role.value.capitalize()} {entity_id} was registered on the ledger "
            f"but its credential record could not be written",
            details={"entity_id": entity_id, "role": role.value, "cause": cause},
        )
        self.entity_id = entity_id
        self.role = role
        self.cause = cause


class StorageError(GatewayError):
    """Credential store failure outside of a registration.

    Attributes:
        operation: Store operation that failed (connect, create, update, ...)
    """
    error_code = "STORAGE_ERROR"
    status_code = 502

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.operation = operation
        if operation:
            self.details.setdefault("operation", operation)


# Raised by ContractHandle implementations; classified by the contract client.

class LedgerRejectionError(Exception):
    """The ledger answered with a textual error (endorsement or chaincode)."""


class LedgerTimeoutError(Exception):
    """The request was sent but no response arrived in time."""


class LedgerConnectionError(Exception):
    """The request could not be delivered (connection refused, TLS, DNS)."""


# ============================================================================
# Identity Store Port
# ============================================================================

class IdentityStorePort(ABC):
    """Durable store of enrolled ledger identities.

    Identities are supplied out of band (enrollment/import); the gateway only
    reads them. Re-putting a label overwrites it (certificate rotation).
    """

    @abstractmethod
    def get(self, label: str) -> Identity:
        """Return the identity for `label` or raise IdentityNotFound."""

    @abstractmethod
    def put(self, label: str, identity: Identity) -> None:
        """Store (or overwrite) the identity under `label`."""

    @abstractmethod
    def remove(self, label: str) -> None:
        """Remove `label`; a no-op if absent."""

    @abstractmethod
    def labels(self) -> list[str]:
        """Labels currently stored."""

    def exists(self, label: str) -> bool:
        try:
            self.get(label)
        except IdentityNotFound:
            return False
        return True


# ============================================================================
# Ledger Ports
# ============================================================================

class ContractHandle(ABC):
    """A named contract on a named channel, bound to one identity.

    Implementations raise LedgerRejectionError, LedgerTimeoutError or
    LedgerConnectionError; they never classify messages themselves.
    """

    @abstractmethod
    async def submit_transaction(self, name: str, *args: str) -> bytes:
        """Ordered, consensus-committed state change."""

    @abstractmethod
    async def evaluate_transaction(self, name: str, *args: str) -> bytes:
        """Read-only query against the local peer."""


class LedgerConnection(ABC):
    """An authenticated network session for a single identity."""

    @abstractmethod
    def get_contract(self, channel_name: str, contract_name: str) -> ContractHandle:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class LedgerNetworkPort(ABC):
    """Factory for authenticated ledger sessions."""

    @abstractmethod
    async def connect(self, identity: Identity) -> LedgerConnection:
        """Open a session authenticated as `identity`."""


# ============================================================================
# Credential Store Port
# ============================================================================

class CredentialStorePort(ABC):
    """Off-chain persistence of login credentials keyed by entity id.

    Unique constraints: entity id, and the role's secondary field (national id
    for patients, license number for doctors). A violated constraint is
    reported as a failure Result with error_type "DuplicateRecordError".
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        ...

    @abstractmethod
    def create_credential(self, record: CredentialRecord) -> Result[str]:
        """Insert a new credential record; returns the entity id."""

    @abstractmethod
    def find_credential(self, role: EntityRole, entity_id: str) -> Result[Optional[CredentialRecord]]:
        ...

    @abstractmethod
    def find_by_secondary_id(self, role: EntityRole, secondary_id: str) -> Result[Optional[CredentialRecord]]:
        ...

    @abstractmethod
    def record_login(self, role: EntityRole, entity_id: str, at) -> Result[None]:
        ...

    @abstractmethod
    def mark_verified(self, entity_id: str, at) -> Result[bool]:
        """Mirror a ledger doctor verification; value is False if no record."""

    @abstractmethod
    def set_active(self, role: EntityRole, entity_id: str, active: bool) -> Result[bool]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class PasswordHasherPort(ABC):
    """Slow, salted one-way password hashing."""

    @abstractmethod
    def hash(self, password: str) -> str:
        ...

    @abstractmethod
    def verify(self, password: str, encoded: str) -> bool:
        ...
