"""Access Delegation Service.

Orchestrates the grant, revoke, validity-check, active-access, audit-trail and
verification workflows against the ledger.

Security Impact:
    - Input is validated before any ledger call
    - The identity used for each operation comes from the IdentityPolicy,
      never from the caller; verification in particular is routed through the
      verifier identity the ledger's access policy requires
    - Validity is recomputed from issued-at, duration and revoked flag at read
      time; no separately stored "valid" flag is trusted

Architecture:
    - Domain service; depends on the session pool passed in by the composition
      root (no module-level gateway instance)
    - Ledger calls are not retried: a lost response to an ordered submission
      may still have been committed
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from consent_gateway.domain.enums import LedgerOperation
from consent_gateway.domain.models import (
    AccessGrant,
    AuditEvent,
    GrantRequest,
    IdentityPolicy,
    ValidityReport,
    VerificationResult,
    utcnow,
)
from consent_gateway.domain.ports import CredentialStorePort, GenericLedgerFailure
from consent_gateway.domain.services.validation import require_identifier, validate_model

if TYPE_CHECKING:
    from consent_gateway.adapters.ledger.session_pool import LedgerSessionPool

logger = logging.getLogger(__name__)


def parse_grant(data: Any, operation: str) -> AccessGrant:
    try:
        return AccessGrant.model_validate(data)
    except PydanticValidationError as e:
        raise GenericLedgerFailure(
            f"{operation} returned an unreadable grant record",
            operation=operation,
            details={"reason": str(e)},
        ) from e


def parse_grants(data: Any, operation: str) -> list[AccessGrant]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise GenericLedgerFailure(f"{operation} returned a non-list payload", operation=operation)
    return [parse_grant(item, operation) for item in data]


def decode_grant_key(payload: bytes) -> str:
    """The grant operation returns the key either raw or as a JSON string."""
    try:
        text = payload.decode("utf-8").strip()
        if text.startswith('"'):
            text = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise GenericLedgerFailure(
            "GrantAccess returned a malformed grant key",
            operation=LedgerOperation.GRANT_ACCESS.value,
            details={"reason": str(e)},
        ) from e
    if not text:
        raise GenericLedgerFailure(
            "GrantAccess returned an empty grant key",
            operation=LedgerOperation.GRANT_ACCESS.value,
        )
    return text


class AccessDelegationService:
    """Grant/revoke/validity/audit workflows over the ledger.

    Parameters:
        pool: Ledger session pool owned by the composition root
        identity_policy: Operation class -> identity label mapping
        credential_store: Optional store used to mirror doctor verification
        clock: Time source for validity evaluation

    Example Usage:
        ```python
        service = AccessDelegationService(pool, IdentityPolicy())
        key = await service.grant_access("P1001", "D2002", 24, "annual checkup")
        report = await service.check_validity(key)
        assert report.valid
        ```
    """

    def __init__(
        self,
        pool: "LedgerSessionPool",
        identity_policy: IdentityPolicy,
        credential_store: Optional[CredentialStorePort] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._pool = pool
        self._policy = identity_policy
        self._credential_store = credential_store
        self._clock = clock

    async def grant_access(
        self,
        patient_id: str,
        doctor_id: str,
        duration_hours: int,
        purpose: str,
    ) -> str:
        """Submit a grant and return the ledger-assigned grant key.

        The validity window starts when the ledger accepts the submission.

        Raises:
            ValidationError: duration outside 1..720, purpose outside 5..500
                characters, or empty ids (no ledger call is made)
            NotFound: Patient or doctor unknown to the ledger
            AmbiguousOutcome: Submission timed out; do not blindly retry
        """
        request = validate_model(GrantRequest, {
            "patient_id": patient_id,
            "doctor_id": doctor_id,
            "duration_hours": duration_hours,
            "purpose": purpose,
        })

        client = await self._pool.contract_client(self._policy.access)
        payload = await client.submit(
            LedgerOperation.GRANT_ACCESS,
            request.patient_id,
            request.doctor_id,
            request.duration_hours,
            request.purpose,
        )
        grant_key = decode_grant_key(payload)
        logger.info(
            f"Granted {request.doctor_id} access to {request.patient_id} "
            f"for {request.duration_hours}h (key: {grant_key})"
        )
        return grant_key

    async def revoke_access(self, grant_key: str) -> None:
        """Revoke a grant.

        Raises:
            NotFound: Unknown or already revoked key
        """
        grant_key = require_identifier(grant_key, "grant_key")
        client = await self._pool.contract_client(self._policy.access)
        await client.submit(LedgerOperation.REVOKE_ACCESS, grant_key)
        logger.info(f"Revoked access grant {grant_key}")

    async def get_grant(self, grant_key: str) -> AccessGrant:
        grant_key = require_identifier(grant_key, "grant_key")
        client = await self._pool.contract_client(self._policy.access)
        data = await client.evaluate_json(LedgerOperation.CHECK_ACCESS_VALIDITY, grant_key)
        return parse_grant(data, LedgerOperation.CHECK_ACCESS_VALIDITY.value)

    async def check_validity(self, grant_key: str) -> ValidityReport:
        """Validity summary rebuilt from the grant's stored fields.

        A grant is valid iff it is not revoked and now < issued_at + duration;
        at exactly the boundary instant it is expired.
        """
        grant = await self.get_grant(grant_key)
        return ValidityReport.from_grant(grant, self._clock())

    async def list_active_accesses(self, patient_id: str) -> list[AccessGrant]:
        """Currently valid grants for a patient, filtered at query time."""
        patient_id = require_identifier(patient_id, "patient_id", max_length=50)
        client = await self._pool.contract_client(self._policy.access)
        data = await client.evaluate_json(LedgerOperation.GET_ACTIVE_ACCESSES_FOR_PATIENT, patient_id)
        grants = parse_grants(data, LedgerOperation.GET_ACTIVE_ACCESSES_FOR_PATIENT.value)
        now = self._clock()
        return [g for g in grants if g.is_valid_at(now)]

    async def get_audit_trail(self, subject_id: str) -> list[AuditEvent]:
        """Ordered audit events concerning a subject (read via the audit identity)."""
        subject_id = require_identifier(subject_id, "subject_id", max_length=50)
        client = await self._pool.contract_client(self._policy.audit)
        operation = LedgerOperation.GET_AUDIT_TRAIL.value
        data = await client.evaluate_json(operation, subject_id)
        if data is None:
            return []
        if not isinstance(data, list):
            raise GenericLedgerFailure(f"{operation} returned a non-list payload", operation=operation)
        try:
            events = [AuditEvent.model_validate(item) for item in data]
        except PydanticValidationError as e:
            raise GenericLedgerFailure(
                f"{operation} returned an unreadable audit event",
                operation=operation,
                details={"reason": str(e)},
            ) from e
        return sorted(events, key=lambda event: event.timestamp)

    async def verify_entity(self, entity_id: str) -> VerificationResult:
        """Verify a doctor using the policy-mandated verifier identity.

        The off-chain credential record is updated afterwards as a mirror; a
        mirror failure is logged and reported, the ledger stays authoritative.

        Raises:
            PermissionDenied: The verifier identity lacks the required membership
            NotFound: Unknown doctor
        """
        entity_id = require_identifier(entity_id, "entity_id", max_length=50)
        client = await self._pool.contract_client(self._policy.verifier)
        await client.submit(LedgerOperation.VERIFY_DOCTOR, entity_id)
        logger.info(f"Doctor {entity_id} verified on ledger as {self._policy.verifier}")

        mirror_synced = False
        if self._credential_store is not None:
            result = await asyncio.to_thread(
                self._credential_store.mark_verified, entity_id, self._clock()
            )
            if result.is_success() and result.value:
                mirror_synced = True
            elif result.is_success():
                logger.warning(f"No credential record to mirror verification of {entity_id}")
            else:
                logger.error(f"Failed to mirror verification of {entity_id}: {result.error}")
        return VerificationResult(entity_id=entity_id, verified=True, mirror_synced=mirror_synced)
