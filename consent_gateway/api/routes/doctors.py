"""Doctor endpoints: registration, ledger record, grant history and verification."""

import logging

from fastapi import APIRouter, status

from consent_gateway.api.dependencies import AccessServiceDep, RecordsServiceDep, RegistrationDep
from consent_gateway.api.models import RegisterDoctorRequest, envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/doctors", tags=["doctors"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_doctor(body: RegisterDoctorRequest, registration: RegistrationDep):
    result = await registration.register_doctor(body.profile(), body.password)
    return envelope(result.model_dump(mode="json"), "Doctor registered successfully")


@router.get("/{doctor_id}")
async def get_doctor(doctor_id: str, records: RecordsServiceDep):
    return envelope(await records.get_doctor(doctor_id))


@router.get("/{doctor_id}/history")
async def get_doctor_access_history(doctor_id: str, records: RecordsServiceDep):
    """Every grant issued to the doctor, including expired and revoked ones."""
    grants = await records.get_doctor_access_history(doctor_id)
    return envelope([g.to_public_dict() for g in grants])


@router.post("/{doctor_id}/verify")
async def verify_doctor(doctor_id: str, access: AccessServiceDep):
    """Verify a doctor as the configured verifier identity.

    The identity is never taken from the request; a ledger policy rejection
    returns 403 PERMISSION_DENIED.
    """
    result = await access.verify_entity(doctor_id)
    return envelope(result.model_dump(mode="json"), "Doctor verified successfully")
