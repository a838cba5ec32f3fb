"""Access grant endpoints."""

import logging

from fastapi import APIRouter, status

from consent_gateway.api.dependencies import AccessServiceDep
from consent_gateway.api.models import GrantAccessRequest, envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/access", tags=["access"])


@router.post("/grant", status_code=status.HTTP_201_CREATED)
async def grant_access(body: GrantAccessRequest, access: AccessServiceDep):
    """Grant a doctor time-bounded access to a patient's records.

    A 503 AMBIGUOUS_OUTCOME response means the submission timed out and may
    still commit; check the patient's active accesses before retrying.
    """
    grant_key = await access.grant_access(
        body.patient_id, body.doctor_id, body.duration_hours, body.purpose
    )
    return envelope(
        {"grant_key": grant_key, **body.model_dump()},
        "Access granted successfully",
    )


@router.delete("/{grant_key}")
async def revoke_access(grant_key: str, access: AccessServiceDep):
    await access.revoke_access(grant_key)
    return envelope({"grant_key": grant_key, "revoked": True}, "Access revoked successfully")


@router.get("/{grant_key}/validity")
async def check_access_validity(grant_key: str, access: AccessServiceDep):
    report = await access.check_validity(grant_key)
    return envelope(report.model_dump(mode="json"))


@router.get("/patient/{patient_id}")
async def get_active_accesses(patient_id: str, access: AccessServiceDep):
    grants = await access.list_active_accesses(patient_id)
    return envelope([g.to_public_dict() for g in grants])
