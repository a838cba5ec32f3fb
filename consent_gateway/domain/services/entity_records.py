"""Read-only ledger views of patients, doctors and a doctor's grant history."""

import logging
from typing import TYPE_CHECKING, Any

from consent_gateway.domain.enums import LedgerOperation
from consent_gateway.domain.models import AccessGrant, IdentityPolicy
from consent_gateway.domain.ports import GenericLedgerFailure
from consent_gateway.domain.services.access_delegation import parse_grants
from consent_gateway.domain.services.validation import require_identifier

if TYPE_CHECKING:
    from consent_gateway.adapters.ledger.session_pool import LedgerSessionPool

logger = logging.getLogger(__name__)


class EntityRecordsService:
    def __init__(self, pool: "LedgerSessionPool", identity_policy: IdentityPolicy):
        self._pool = pool
        self._policy = identity_policy

    async def _read_record(self, operation: LedgerOperation, entity_id: str) -> dict[str, Any]:
        client = await self._pool.contract_client(self._policy.access)
        data = await client.evaluate_json(operation, entity_id)
        if not isinstance(data, dict):
            raise GenericLedgerFailure(
                f"{operation.value} returned an unreadable record",
                operation=operation.value,
            )
        return data

    async def get_patient(self, patient_id: str) -> dict[str, Any]:
        """Ledger patient record (raises NotFound for unknown ids)."""
        patient_id = require_identifier(patient_id, "patient_id", max_length=50)
        return await self._read_record(LedgerOperation.GET_PATIENT, patient_id)

    async def get_doctor(self, doctor_id: str) -> dict[str, Any]:
        doctor_id = require_identifier(doctor_id, "doctor_id", max_length=50)
        return await self._read_record(LedgerOperation.GET_DOCTOR, doctor_id)

    async def get_doctor_access_history(self, doctor_id: str) -> list[AccessGrant]:
        """Every grant ever issued to a doctor, including expired and revoked."""
        doctor_id = require_identifier(doctor_id, "doctor_id", max_length=50)
        client = await self._pool.contract_client(self._policy.access)
        operation = LedgerOperation.GET_DOCTOR_ACCESS_HISTORY
        data = await client.evaluate_json(operation, doctor_id)
        grants = parse_grants(data, operation.value)
        return sorted(grants, key=lambda g: g.issued_at)
