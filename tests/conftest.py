"""Shared fixtures: a controllable clock, test identities, the in-memory ledger
and a gateway wired to in-memory adapters."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from pydantic import SecretStr

from consent_gateway.adapters.identity import FileSystemIdentityStore
from consent_gateway.adapters.ledger import (
    HealthcareLedgerState,
    InMemoryLedgerNetwork,
    LedgerSessionPool,
)
from consent_gateway.adapters.storage import DuckDBCredentialStore
from consent_gateway.domain.models import Identity, IdentityPolicy
from consent_gateway.infrastructure.config_manager import ConfigManager
from consent_gateway.infrastructure.password_hasher import ScryptPasswordHasher
from consent_gateway.infrastructure.settings import Settings
from consent_gateway.main import build_gateway

HOSPITAL_LABEL = "hospitalApolloAdmin"
HOSPITAL_MSP = "HospitalApolloMSP"
AUDIT_LABEL = "auditOrgAdmin"
AUDIT_MSP = "AuditOrgMSP"


class MutableClock:
    """Clock shared by the ledger and the services so tests can move time."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_identity(label: str, msp_id: str) -> Identity:
    """Self-signed X.509 identity with a fresh P-256 key."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, label),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, msp_id),
    ])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return Identity(
        label=label,
        msp_id=msp_id,
        certificate=certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
        private_key=SecretStr(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode("utf-8")),
    )


def seed_entities(state: HealthcareLedgerState) -> None:
    """Register patient P1001 and doctor D2002 directly in ledger state."""
    state.register_patient(
        HOSPITAL_MSP, "P1001", "Asha Verma", "1988-04-12", "9876543210", "123456789012", ""
    )
    state.register_doctor(
        HOSPITAL_MSP, "D2002", "Dr. Rao", "MCI-55555", "Cardiology", "Apollo Hospital"
    )


@pytest.fixture(scope="session")
def hospital_identity():
    return make_identity(HOSPITAL_LABEL, HOSPITAL_MSP)


@pytest.fixture(scope="session")
def audit_identity():
    return make_identity(AUDIT_LABEL, AUDIT_MSP)


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def ledger_state(clock):
    state = HealthcareLedgerState(clock=clock)
    seed_entities(state)
    return state


@pytest.fixture
def network(ledger_state):
    return InMemoryLedgerNetwork(state=ledger_state)


@pytest.fixture
def identity_store(tmp_path, hospital_identity, audit_identity):
    store = FileSystemIdentityStore(tmp_path / "wallet")
    store.put(HOSPITAL_LABEL, hospital_identity)
    store.put(AUDIT_LABEL, audit_identity)
    return store


@pytest.fixture
def policy():
    return IdentityPolicy()


@pytest.fixture
def pool(identity_store, network):
    return LedgerSessionPool(identity_store, network, "healthcare-channel", "healthcare-contract")


@pytest.fixture
def credential_store():
    store = DuckDBCredentialStore(db_path=":memory:")
    store.initialize_schema()
    yield store
    store.close()


@pytest.fixture
def fast_hasher():
    return ScryptPasswordHasher(n=2 ** 10)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(ConfigManager({
        "database": {"db_type": "duckdb", "db_path": ":memory:"},
        "ledger": {"backend": "memory", "identity_store_path": str(tmp_path / "wallet")},
        "identities": {},
        "auth": {"jwt_secret": "test-secret-with-enough-length-for-hs256", "token_ttl_hours": 2},
    }))


@pytest.fixture
def gateway(test_settings, identity_store, network, credential_store, clock):
    return build_gateway(
        test_settings,
        identity_store=identity_store,
        network=network,
        credential_store=credential_store,
        clock=clock,
    )
