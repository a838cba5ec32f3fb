"""Domain services orchestrating ledger and credential store workflows."""

from consent_gateway.domain.services.access_delegation import AccessDelegationService
from consent_gateway.domain.services.authentication import AuthService
from consent_gateway.domain.services.entity_records import EntityRecordsService
from consent_gateway.domain.services.registration import RegistrationOrchestrator

__all__ = [
    "AccessDelegationService",
    "AuthService",
    "EntityRecordsService",
    "RegistrationOrchestrator",
]
