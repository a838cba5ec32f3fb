"""Tests for the REST ledger network adapter with a mocked requests session."""

import os
import stat
from unittest.mock import MagicMock

import pytest
import requests

from consent_gateway.adapters.ledger import RestLedgerNetwork
from consent_gateway.adapters.ledger.rest_network import RestLedgerConnection
from consent_gateway.domain.ports import (
    LedgerConnectionError,
    LedgerRejectionError,
    LedgerTimeoutError,
)

GATEWAY_URL = "https://ledger.example:8443/"


def _response(status_code=200, content=b"", json_body=None, text=""):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.content = content
    response.text = text
    if json_body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def connection(hospital_identity):
    conn = RestLedgerConnection(hospital_identity, GATEWAY_URL)
    real_session = conn.session
    conn.session = MagicMock()
    yield conn
    conn.session = real_session
    conn._close_sync()


class TestConnection:

    def test_key_material_is_private(self, connection):
        key_dir = connection._key_dir

        assert stat.S_IMODE(os.stat(key_dir).st_mode) == 0o700
        assert stat.S_IMODE(os.stat(key_dir / "key.pem").st_mode) == 0o600

    def test_close_removes_key_material(self, hospital_identity):
        conn = RestLedgerConnection(hospital_identity, GATEWAY_URL)
        key_dir = conn._key_dir

        conn._close_sync()

        assert not key_dir.exists()
        with pytest.raises(LedgerConnectionError):
            conn.post(f"{GATEWAY_URL}submit", "GrantAccess", ())

    def test_session_uses_client_certificate(self, hospital_identity):
        conn = RestLedgerConnection(hospital_identity, GATEWAY_URL, tls_verify="/etc/ca.pem")
        try:
            cert, key = conn.session.cert
            assert cert.endswith("cert.pem") and key.endswith("key.pem")
            assert conn.session.verify == "/etc/ca.pem"
            assert conn.session.headers["X-MSP-ID"] == "HospitalApolloMSP"
        finally:
            conn._close_sync()


class TestPost:

    def test_success_returns_raw_bytes(self, connection):
        connection.session.post.return_value = _response(content=b"ACCESS_P1001_D2002_1")
        contract = connection.get_contract("healthcare-channel", "healthcare-contract")

        payload = connection.post(f"{contract.base_url}/submit", "GrantAccess", ("P1001", "D2002", "24", "Checkup"))

        assert payload == b"ACCESS_P1001_D2002_1"
        url = connection.session.post.call_args.args[0]
        body = connection.session.post.call_args.kwargs["json"]
        assert url == "https://ledger.example:8443/channels/healthcare-channel/contracts/healthcare-contract/submit"
        assert body == {"transaction": "GrantAccess", "arguments": ["P1001", "D2002", "24", "Checkup"]}

    def test_json_error_body_is_rejection(self, connection):
        connection.session.post.return_value = _response(
            status_code=500, json_body={"error": "doctor D9 does not exist"}
        )

        with pytest.raises(LedgerRejectionError, match="doctor D9 does not exist"):
            connection.post(f"{GATEWAY_URL}submit", "GrantAccess", ())

    def test_plain_text_error_body(self, connection):
        connection.session.post.return_value = _response(status_code=403, text="only AuditOrg can verify doctors")

        with pytest.raises(LedgerRejectionError, match="only AuditOrg"):
            connection.post(f"{GATEWAY_URL}submit", "VerifyDoctor", ("D2002",))

    def test_empty_error_body(self, connection):
        connection.session.post.return_value = _response(status_code=502)

        with pytest.raises(LedgerRejectionError, match="HTTP 502"):
            connection.post(f"{GATEWAY_URL}evaluate", "GetPatient", ("P1",))

    @pytest.mark.parametrize("exc,expected", [
        (requests.exceptions.ReadTimeout("slow"), LedgerTimeoutError),
        (requests.exceptions.ConnectTimeout("no route"), LedgerConnectionError),
        (requests.exceptions.ConnectionError("refused"), LedgerConnectionError),
        (requests.exceptions.SSLError("bad cert"), LedgerConnectionError),
    ])
    def test_transport_errors(self, connection, exc, expected):
        connection.session.post.side_effect = exc

        with pytest.raises(expected):
            connection.post(f"{GATEWAY_URL}submit", "RevokeAccess", ("ACCESS_1",))


class TestNetwork:

    @pytest.mark.asyncio
    async def test_connect_opens_session(self, hospital_identity):
        network = RestLedgerNetwork(GATEWAY_URL, connect_timeout=2.0, read_timeout=20.0)

        connection = await network.connect(hospital_identity)
        try:
            assert connection.gateway_url == "https://ledger.example:8443"
            assert connection.timeout == (2.0, 20.0)
        finally:
            await connection.close()
