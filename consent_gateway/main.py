"""Composition root for the Consent Gateway.

Builds the adapters selected by configuration and wires them into the domain
services. The resulting Gateway owns the ledger session pool and the
credential store; callers (API lifespan, CLI commands) must `aclose()` it.

Security Impact:
    - Connection details and secrets come from ConfigManager only
    - Sessions are released on shutdown so no authenticated connection outlives
      the process's use of it
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from consent_gateway.adapters.identity import FileSystemIdentityStore
from consent_gateway.adapters.ledger import (
    InMemoryLedgerNetwork,
    LedgerSessionPool,
    RestLedgerNetwork,
)
from consent_gateway.adapters.storage import DuckDBCredentialStore, PostgreSQLCredentialStore
from consent_gateway.domain.models import IdentityPolicy, utcnow
from consent_gateway.domain.ports import (
    CredentialStorePort,
    IdentityStorePort,
    LedgerNetworkPort,
    StorageError,
)
from consent_gateway.domain.services import (
    AccessDelegationService,
    AuthService,
    EntityRecordsService,
    RegistrationOrchestrator,
)
from consent_gateway.infrastructure.audit import ReconciliationLogger
from consent_gateway.infrastructure.config_manager import DatabaseConfig, LedgerConfig
from consent_gateway.infrastructure.password_hasher import ScryptPasswordHasher
from consent_gateway.infrastructure.settings import Settings
from consent_gateway.infrastructure.token_service import TokenService

logger = logging.getLogger(__name__)


def create_identity_store(ledger_config: LedgerConfig) -> IdentityStorePort:
    return FileSystemIdentityStore(ledger_config.identity_store_path)


def create_ledger_network(ledger_config: LedgerConfig) -> LedgerNetworkPort:
    """Create the ledger network adapter based on configuration.

    Raises:
        ValueError: If the backend is unsupported
    """
    if ledger_config.backend == "memory":
        logger.warning("Using the in-memory ledger; state is lost on restart")
        return InMemoryLedgerNetwork()
    elif ledger_config.backend == "rest":
        logger.info(f"Using REST ledger gateway at {ledger_config.gateway_url}")
        return RestLedgerNetwork(
            gateway_url=ledger_config.gateway_url,
            tls_verify=ledger_config.tls_verify,
            connect_timeout=ledger_config.connect_timeout_seconds,
            read_timeout=ledger_config.submit_timeout_seconds,
        )
    else:
        raise ValueError(f"Unsupported ledger backend: {ledger_config.backend}")


def create_credential_store(db_config: DatabaseConfig) -> CredentialStorePort:
    """Create the credential store based on configuration.

    Raises:
        ValueError: If database type is unsupported
    """
    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB credential store with path: {db_config.db_path or ':memory:'}")
        return DuckDBCredentialStore(db_config=db_config)
    elif db_config.db_type == "postgresql":
        logger.info(f"Initializing PostgreSQL credential store with host: {db_config.host}")
        return PostgreSQLCredentialStore(db_config=db_config)
    else:
        raise ValueError(f"Unsupported database type: {db_config.db_type}")


@dataclass
class Gateway:
    """Wired services plus the resources they share."""

    identity_policy: IdentityPolicy
    identity_store: IdentityStorePort
    network: LedgerNetworkPort
    pool: LedgerSessionPool
    credential_store: CredentialStorePort
    reconciliation: ReconciliationLogger
    access: AccessDelegationService
    registration: RegistrationOrchestrator
    records: EntityRecordsService
    auth: AuthService

    async def aclose(self) -> None:
        await self.pool.release_all()
        await asyncio.to_thread(self.credential_store.close)
        logger.info("Gateway resources released")


def build_gateway(
    settings: Settings,
    identity_store: Optional[IdentityStorePort] = None,
    network: Optional[LedgerNetworkPort] = None,
    credential_store: Optional[CredentialStorePort] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Gateway:
    """Wire the gateway from settings; any adapter may be supplied directly.

    Raises:
        StorageError: If the credential schema cannot be initialized
    """
    ledger_config = settings.ledger_config
    auth_config = settings.auth_config
    policy = settings.identity_policy

    identity_store = identity_store or create_identity_store(ledger_config)
    network = network or create_ledger_network(ledger_config)
    credential_store = credential_store or create_credential_store(settings.db_config)

    schema = credential_store.initialize_schema()
    if schema.is_failure():
        raise StorageError(f"Credential schema initialization failed: {schema.error}", operation="initialize_schema")

    pool = LedgerSessionPool(
        identity_store,
        network,
        ledger_config.channel_name,
        ledger_config.contract_name,
        submit_timeout=ledger_config.submit_timeout_seconds,
        evaluate_timeout=ledger_config.evaluate_timeout_seconds,
    )
    hasher = ScryptPasswordHasher()
    reconciliation = ReconciliationLogger(clock=clock)

    gateway = Gateway(
        identity_policy=policy,
        identity_store=identity_store,
        network=network,
        pool=pool,
        credential_store=credential_store,
        reconciliation=reconciliation,
        access=AccessDelegationService(pool, policy, credential_store=credential_store, clock=clock),
        registration=RegistrationOrchestrator(
            pool,
            policy,
            credential_store,
            hasher,
            reconciliation,
            max_attempts=auth_config.registration_max_attempts,
        ),
        records=EntityRecordsService(pool, policy),
        auth=AuthService(credential_store, hasher, TokenService(auth_config, clock=clock), clock=clock),
    )
    logger.info(
        f"Gateway ready (ledger: {ledger_config.backend}, "
        f"channel: {ledger_config.channel_name}, identities: {', '.join(policy.labels())})"
    )
    return gateway
