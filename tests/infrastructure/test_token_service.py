"""Unit tests for TokenService."""

from datetime import timedelta

import jwt
import pytest

from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.ports import AuthenticationFailed
from consent_gateway.infrastructure.config_manager import AuthConfig
from consent_gateway.infrastructure.token_service import TokenService

SECRET = "test-secret-with-enough-length-for-hs256"


@pytest.fixture
def tokens(clock):
    return TokenService(AuthConfig(jwt_secret=SECRET, token_ttl_hours=2), clock=clock)


class TestTokenService:

    def test_issue_and_verify(self, tokens, clock):
        token, expires_at = tokens.issue(EntityRole.DOCTOR, "D2002")

        assert expires_at == clock.now + timedelta(hours=2)
        claims = tokens.verify(token)
        assert claims["sub"] == "D2002"
        assert claims["role"] == "doctor"
        assert claims["iss"] == "consent-gateway"

    def test_claims_carry_no_profile_data(self, tokens):
        token, _ = tokens.issue(EntityRole.PATIENT, "P1001")
        payload = jwt.decode(token, options={"verify_signature": False})
        assert set(payload) == {"iss", "sub", "role", "iat", "exp"}

    def test_expired(self, tokens, clock):
        token, _ = tokens.issue(EntityRole.PATIENT, "P1001")
        clock.advance(hours=2)

        with pytest.raises(AuthenticationFailed, match="expired"):
            tokens.verify(token)

    def test_tampered_signature(self, tokens):
        token, _ = tokens.issue(EntityRole.PATIENT, "P1001")
        header, payload, signature = token.split(".")
        forged = ".".join([header, payload, signature[::-1]])

        with pytest.raises(AuthenticationFailed, match="Invalid token"):
            tokens.verify(forged)

    def test_unknown_role_rejected(self, tokens, clock):
        token = jwt.encode(
            {
                "iss": "consent-gateway",
                "sub": "X1",
                "role": "admin",
                "iat": int(clock.now.timestamp()),
                "exp": int((clock.now + timedelta(hours=1)).timestamp()),
            },
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(AuthenticationFailed):
            tokens.verify(token)

    def test_wrong_issuer_rejected(self, tokens, clock):
        token = jwt.encode(
            {
                "iss": "someone-else",
                "sub": "P1001",
                "role": "patient",
                "iat": int(clock.now.timestamp()),
                "exp": int((clock.now + timedelta(hours=1)).timestamp()),
            },
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(AuthenticationFailed):
            tokens.verify(token)
