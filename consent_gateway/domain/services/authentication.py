"""Login against the off-chain credential store.

Security Impact:
    - Unknown id, inactive account and wrong password all produce the same
      message so callers cannot enumerate registered ids
    - Password verification runs in a worker thread (scrypt is CPU bound)
"""

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.models import LoginResult, utcnow
from consent_gateway.domain.ports import (
    AuthenticationFailed,
    CredentialStorePort,
    PasswordHasherPort,
    StorageError,
)
from consent_gateway.domain.services.validation import require_identifier

if TYPE_CHECKING:
    from consent_gateway.infrastructure.token_service import TokenService

logger = logging.getLogger(__name__)


class AuthService:
    """Password login returning a signed token."""

    def __init__(
        self,
        credential_store: CredentialStorePort,
        password_hasher: PasswordHasherPort,
        token_service: "TokenService",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = credential_store
        self._hasher = password_hasher
        self._tokens = token_service
        self._clock = clock

    async def login_patient(self, patient_id: str, password: str) -> LoginResult:
        return await self.login(EntityRole.PATIENT, patient_id, password)

    async def login_doctor(self, doctor_id: str, password: str) -> LoginResult:
        return await self.login(EntityRole.DOCTOR, doctor_id, password)

    async def login(self, role: EntityRole, entity_id: str, password: str) -> LoginResult:
        """Verify credentials and issue a token.

        Raises:
            AuthenticationFailed: Unknown id, inactive account or wrong password
            StorageError: Credential store unavailable
        """
        rejected = AuthenticationFailed(f"Invalid {role.value} ID or password")
        if not isinstance(entity_id, str) or not entity_id.strip() or not isinstance(password, str):
            raise rejected
        entity_id = entity_id.strip()

        result = await asyncio.to_thread(self._store.find_credential, role, entity_id)
        if result.is_failure():
            raise StorageError(f"Credential lookup failed: {result.error}", operation="find_credential")
        record = result.value
        if record is None or not record.is_active:
            logger.info(f"Rejected {role.value} login for {entity_id}")
            raise rejected

        matches = await asyncio.to_thread(self._hasher.verify, password, record.password_hash)
        if not matches:
            logger.info(f"Rejected {role.value} login for {entity_id}")
            raise rejected

        now = self._clock()
        update = await asyncio.to_thread(self._store.record_login, role, entity_id, now)
        if update.is_failure():
            logger.warning(f"Could not record last login for {entity_id}: {update.error}")

        token, expires_at = self._tokens.issue(role, entity_id)
        profile = record.public_profile()
        profile["last_login"] = now.isoformat()
        logger.info(f"{role.value.capitalize()} {entity_id} logged in")
        return LoginResult(
            token=token,
            role=role,
            entity_id=entity_id,
            expires_at=expires_at,
            profile=profile,
        )

    def verify_token(self, token: str) -> dict:
        token = require_identifier(token, "token", max_length=4096)
        return self._tokens.verify(token)
