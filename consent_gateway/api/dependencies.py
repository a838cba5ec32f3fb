"""Dependency injection for the gateway API.

The Gateway is built by the application lifespan and stored on app.state;
route handlers receive its services through these dependencies. Tests
override `get_gateway` to inject a gateway wired to in-memory adapters.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from consent_gateway.domain.ports import AuthenticationFailed, GatewayError
from consent_gateway.domain.services import (
    AccessDelegationService,
    AuthService,
    EntityRecordsService,
    RegistrationOrchestrator,
)
from consent_gateway.infrastructure.audit import ReconciliationLogger
from consent_gateway.main import Gateway

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def get_gateway(request: Request) -> Gateway:
    """Gateway built by the lifespan handler.

    Raises:
        GatewayError: If the application has not finished starting up
    """
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise GatewayError("Gateway is not initialized")
    return gateway


GatewayDep = Annotated[Gateway, Depends(get_gateway)]


def get_access_service(gateway: GatewayDep) -> AccessDelegationService:
    return gateway.access


def get_registration(gateway: GatewayDep) -> RegistrationOrchestrator:
    return gateway.registration


def get_records_service(gateway: GatewayDep) -> EntityRecordsService:
    return gateway.records


def get_auth_service(gateway: GatewayDep) -> AuthService:
    return gateway.auth


def get_reconciliation(gateway: GatewayDep) -> ReconciliationLogger:
    return gateway.reconciliation


def get_token_claims(
    auth: Annotated[AuthService, Depends(get_auth_service)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)],
) -> dict:
    """Claims of the request's bearer token.

    Raises:
        AuthenticationFailed: Missing, expired or invalid token
    """
    if credentials is None:
        raise AuthenticationFailed("Missing bearer token")
    return auth.verify_token(credentials.credentials)


# Type aliases for dependency injection
AccessServiceDep = Annotated[AccessDelegationService, Depends(get_access_service)]
RegistrationDep = Annotated[RegistrationOrchestrator, Depends(get_registration)]
RecordsServiceDep = Annotated[EntityRecordsService, Depends(get_records_service)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
ReconciliationDep = Annotated[ReconciliationLogger, Depends(get_reconciliation)]
TokenClaimsDep = Annotated[dict, Depends(get_token_claims)]
