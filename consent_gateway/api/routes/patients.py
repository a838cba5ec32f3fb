"""Patient endpoints: registration, ledger record, audit trail and active grants."""

import logging

from fastapi import APIRouter, status

from consent_gateway.api.dependencies import AccessServiceDep, RecordsServiceDep, RegistrationDep
from consent_gateway.api.models import RegisterPatientRequest, envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/patients", tags=["patients"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_patient(body: RegisterPatientRequest, registration: RegistrationDep):
    """Register a patient on the ledger and create login credentials.

    A 500 PARTIAL_REGISTRATION response means the ledger committed the patient
    but credentials were not written; the entity id is in `details`.
    """
    result = await registration.register_patient(body.profile(), body.password)
    return envelope(result.model_dump(mode="json"), "Patient registered successfully")


@router.get("/{patient_id}")
async def get_patient(patient_id: str, records: RecordsServiceDep):
    return envelope(await records.get_patient(patient_id))


@router.get("/{patient_id}/audit")
async def get_patient_audit_trail(patient_id: str, access: AccessServiceDep):
    events = await access.get_audit_trail(patient_id)
    return envelope([e.model_dump(mode="json") for e in events])


@router.get("/{patient_id}/accesses")
async def get_patient_accesses(patient_id: str, access: AccessServiceDep):
    grants = await access.list_active_accesses(patient_id)
    return envelope([g.to_public_dict() for g in grants])
