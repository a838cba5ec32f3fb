"""Signed login tokens.

Security Impact:
    - HS256 JWTs signed with CG_JWT_SECRET; the secret is never logged
    - Tokens carry only the entity id and role, never profile data
    - Expired or tampered tokens raise AuthenticationFailed
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Tuple

import jwt

from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.models import utcnow
from consent_gateway.domain.ports import AuthenticationFailed
from consent_gateway.infrastructure.config_manager import AuthConfig

logger = logging.getLogger(__name__)

ISSUER = "consent-gateway"


class TokenService:
    """Issues and verifies login JWTs.

    Parameters:
        auth_config: Secret, algorithm and token lifetime
        clock: Time source for `iat`/`exp`
    """

    def __init__(self, auth_config: AuthConfig, clock: Callable[[], datetime] = utcnow):
        self._secret = auth_config.jwt_secret.get_secret_value()
        self.algorithm = auth_config.jwt_algorithm
        self.ttl = timedelta(hours=auth_config.token_ttl_hours)
        self._clock = clock

    def issue(self, role: EntityRole, entity_id: str) -> Tuple[str, datetime]:
        issued_at = self._clock()
        expires_at = issued_at + self.ttl
        payload = {
            "iss": ISSUER,
            "sub": entity_id,
            "role": EntityRole(role).value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm), expires_at

    def verify(self, token: str) -> dict:
        """Decode a token and return its claims.

        Raises:
            AuthenticationFailed: Expired, malformed or wrongly signed token
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=ISSUER,
                options={"require": ["exp", "sub", "iat"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as e:
            logger.info(f"Rejected invalid token: {type(e).__name__}")
            raise AuthenticationFailed("Invalid token") from e

        if claims.get("role") not in (EntityRole.PATIENT.value, EntityRole.DOCTOR.value):
            raise AuthenticationFailed("Invalid token")

        # Expiry is checked against the injected clock, not wall time.
        claims["expires_at"] = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        if claims["expires_at"] <= self._clock():
            raise AuthenticationFailed("Token has expired")
        return claims
