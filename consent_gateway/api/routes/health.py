"""Health check endpoint."""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from consent_gateway.api.dependencies import GatewayDep
from consent_gateway.api.models import ComponentHealth, HealthResponse
from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.ports import CredentialStorePort
from consent_gateway.infrastructure.settings import APP_VERSION

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])

# Never a valid entity id; the lookup only exercises the connection
_PROBE_ID = "__health__"


async def check_credential_store(store: CredentialStorePort) -> ComponentHealth:
    """Credential store connectivity (no data is returned to the caller)."""
    result = await asyncio.to_thread(store.find_credential, EntityRole.PATIENT, _PROBE_ID)
    if result.is_success():
        return ComponentHealth(status="connected")
    logger.warning(f"Credential store health check failed: {result.error}")
    return ComponentHealth(status="disconnected", detail=result.error_type)


@router.get("/health", response_model=HealthResponse)
async def health_check(gateway: GatewayDep) -> HealthResponse:
    """Credential store connectivity and enrollment of the policy identities.

    Security Impact:
        - Reports identity labels and enrollment only, never key material
    """
    store_health = await check_credential_store(gateway.credential_store)
    identities = {
        label: await asyncio.to_thread(gateway.identity_store.exists, label)
        for label in gateway.identity_policy.labels()
    }

    if store_health.status != "connected":
        overall_status = "unhealthy"
    elif not all(identities.values()):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        credential_store=store_health,
        identities=identities,
        active_sessions=gateway.pool.active_labels(),
    )
