"""Registration Orchestrator.

Registers patients and doctors on the ledger and writes their off-chain login
credentials.

Workflow:
    1. Validate the profile and password (no network call on failure)
    2. Reject a national id / license number already present in the
       credential store
    3. Generate a candidate id ("P"/"D" + 4 random digits) and submit the
       registration as the registrar identity; an id collision regenerates
       and retries up to `max_attempts` times
    4. Hash the password and write the credential record under the id the
       ledger accepted

Security Impact:
    - Passwords are hashed with a slow salted hasher; plaintext is never
      stored or logged
    - A credential write that fails after the ledger committed is never
      silent: it is recorded for reconciliation and surfaced as
      PartialRegistrationFailure (the ledger cannot be rolled back)
"""

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Union

from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.error_classifier import strip_echoed_arguments
from consent_gateway.domain.models import (
    CredentialRecord,
    DoctorCredential,
    DoctorProfile,
    IdentityPolicy,
    PatientCredential,
    PatientProfile,
    RegistrationResult,
    utcnow,
)
from consent_gateway.domain.ports import (
    AlreadyExists,
    CredentialStorePort,
    IdGenerationExhausted,
    PartialRegistrationFailure,
    PasswordHasherPort,
    StorageError,
)
from consent_gateway.domain.services.validation import validate_model, validate_password

if TYPE_CHECKING:
    from consent_gateway.adapters.ledger.session_pool import LedgerSessionPool
    from consent_gateway.infrastructure.audit.reconciliation_logger import ReconciliationLogger

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5

# Ledger "already exists" messages naming the unique attribute rather than the id
_SECONDARY_CONFLICT_MARKERS = ("national id", "aadhar", "license")

_secure_random = random.SystemRandom()


def random_entity_id(role: EntityRole) -> str:
    return f"{role.id_prefix}{_secure_random.randint(1000, 9999)}"


def _is_secondary_conflict(error: AlreadyExists, echoed: Iterable[str] = ()) -> bool:
    text = strip_echoed_arguments(error.ledger_message or error.message, echoed)
    return any(marker in text for marker in _SECONDARY_CONFLICT_MARKERS)


def build_credential(
    role: EntityRole,
    entity_id: str,
    profile: Union[PatientProfile, DoctorProfile],
    password_hash: str,
) -> CredentialRecord:
    now = utcnow()
    if role is EntityRole.PATIENT:
        return PatientCredential(
            entity_id=entity_id,
            name=profile.name,
            password_hash=password_hash,
            date_of_birth=profile.date_of_birth,
            phone=profile.phone,
            national_id=profile.national_id,
            fingerprint_template_id=profile.fingerprint_template_id,
            created_at=now,
            updated_at=now,
        )
    return DoctorCredential(
        entity_id=entity_id,
        name=profile.name,
        password_hash=password_hash,
        license_number=profile.license_number,
        specialization=profile.specialization,
        hospital_name=profile.hospital_name,
        created_at=now,
        updated_at=now,
    )


class RegistrationOrchestrator:
    """Two-phase registration: ledger first, credential store second.

    Parameters:
        pool: Ledger session pool
        identity_policy: Supplies the registrar identity label
        credential_store: Off-chain credential persistence
        password_hasher: Slow salted hasher
        reconciliation_logger: Receives ledger-committed, credential-less entities
        max_attempts: Id generation attempts before IdGenerationExhausted
        id_generator: Candidate id source (random 4-digit suffix by default)

    Example Usage:
        ```python
        orchestrator = RegistrationOrchestrator(
            pool, IdentityPolicy(), store, ScryptPasswordHasher(), ReconciliationLogger()
        )
        result = await orchestrator.register_patient(profile, "s3cret-pass")
        print(result.entity_id)  # e.g. P4821
        ```
    """

    def __init__(
        self,
        pool: "LedgerSessionPool",
        identity_policy: IdentityPolicy,
        credential_store: CredentialStorePort,
        password_hasher: PasswordHasherPort,
        reconciliation_logger: "ReconciliationLogger",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        id_generator: Optional[Callable[[EntityRole], str]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._pool = pool
        self._policy = identity_policy
        self._store = credential_store
        self._hasher = password_hasher
        self._reconciliation = reconciliation_logger
        self.max_attempts = max_attempts
        self._generate_id = id_generator or random_entity_id

    async def register_patient(
        self, profile: Union[PatientProfile, dict], password: str
    ) -> RegistrationResult:
        profile = validate_model(PatientProfile, profile)
        return await self._register(EntityRole.PATIENT, profile, password)

    async def register_doctor(
        self, profile: Union[DoctorProfile, dict], password: str
    ) -> RegistrationResult:
        profile = validate_model(DoctorProfile, profile)
        return await self._register(EntityRole.DOCTOR, profile, password)

    async def _register(
        self,
        role: EntityRole,
        profile: Union[PatientProfile, DoctorProfile],
        password: str,
    ) -> RegistrationResult:
        validate_password(password)
        await self._ensure_secondary_id_free(role, profile.secondary_id)

        entity_id, attempts = await self._submit_with_fresh_id(role, profile)

        try:
            password_hash = await asyncio.to_thread(self._hasher.hash, password)
            record = build_credential(role, entity_id, profile, password_hash)
            result = await asyncio.to_thread(self._store.create_credential, record)
        except Exception as e:
            self._flag_partial(entity_id, role, f"{type(e).__name__}: {e}")
            raise PartialRegistrationFailure(entity_id, role, str(e)) from e

        if result.is_failure():
            self._flag_partial(entity_id, role, result.error, result.error_type)
            raise PartialRegistrationFailure(entity_id, role, result.error)

        logger.info(f"Registered {role.value} {entity_id} after {attempts} attempt(s)")
        return RegistrationResult(
            entity_id=entity_id,
            role=role,
            attempts=attempts,
            profile=record.public_profile(),
        )

    async def _ensure_secondary_id_free(self, role: EntityRole, secondary_id: str) -> None:
        result = await asyncio.to_thread(self._store.find_by_secondary_id, role, secondary_id)
        if result.is_failure():
            raise StorageError(
                f"Credential lookup failed: {result.error}",
                operation="find_by_secondary_id",
            )
        if result.value is not None:
            field = "national_id" if role is EntityRole.PATIENT else "license_number"
            raise AlreadyExists(
                f"A {role.value} with this {field.replace('_', ' ')} is already registered",
                details={"field": field},
            )

    async def _submit_with_fresh_id(
        self,
        role: EntityRole,
        profile: Union[PatientProfile, DoctorProfile],
    ) -> tuple[str, int]:
        client = await self._pool.contract_client(self._policy.registrar)
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._generate_id(role)
            try:
                await client.submit(role.register_operation, candidate, *profile.ledger_args())
            except AlreadyExists as e:
                if _is_secondary_conflict(e, echoed=(candidate, *profile.ledger_args())):
                    raise
                logger.debug(f"Generated {role.value} id {candidate} already exists (attempt {attempt})")
                continue
            return candidate, attempt

        logger.warning(f"Exhausted {self.max_attempts} {role.value} id candidates")
        raise IdGenerationExhausted(role, self.max_attempts)

    def _flag_partial(
        self,
        entity_id: str,
        role: EntityRole,
        cause: str,
        error_type: Optional[str] = None,
    ) -> None:
        self._reconciliation.log_partial_registration(
            entity_id=entity_id,
            role=role,
            cause=cause,
            secondary_id_present=(error_type == "DuplicateRecordError") if error_type else None,
        )
