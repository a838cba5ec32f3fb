"""Login endpoints."""

import logging

from fastapi import APIRouter

from consent_gateway.api.dependencies import AuthServiceDep, TokenClaimsDep
from consent_gateway.api.models import LoginRequest, envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/login/patient")
async def login_patient(body: LoginRequest, auth: AuthServiceDep):
    """Password login for a patient; returns a signed token and the profile."""
    result = await auth.login_patient(body.entity_id, body.password)
    return envelope(result.model_dump(mode="json"), "Login successful")


@router.post("/login/doctor")
async def login_doctor(body: LoginRequest, auth: AuthServiceDep):
    result = await auth.login_doctor(body.entity_id, body.password)
    return envelope(result.model_dump(mode="json"), "Login successful")


@router.get("/me")
async def current_principal(claims: TokenClaimsDep):
    """Entity id and role of the bearer token's holder."""
    return envelope({
        "entity_id": claims["sub"],
        "role": claims["role"],
        "expires_at": claims["expires_at"].isoformat(),
    })
