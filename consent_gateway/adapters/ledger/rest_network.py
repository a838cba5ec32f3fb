"""REST ledger network adapter.

Talks to a ledger gateway service over HTTPS. Each session authenticates with
mutual TLS using the identity's X.509 certificate and private key, which are
materialized into a private temporary directory for the lifetime of the
session.

Wire format:
    POST {gateway_url}/channels/{channel}/contracts/{contract}/submit
    POST {gateway_url}/channels/{channel}/contracts/{contract}/evaluate
    body: {"transaction": "<name>", "arguments": ["<arg>", ...]}
    2xx: raw transaction result bytes
    4xx/5xx: JSON {"error": "<ledger message>"} or plain text

Security Impact:
    - Key files are created 0600 in a 0700 directory and removed on close()
    - TLS server verification is on by default (CG_LEDGER_TLS_VERIFY)

Architecture:
    - Implements LedgerNetworkPort / LedgerConnection / ContractHandle
    - requests is blocking; calls run via asyncio.to_thread
"""

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

import requests

from consent_gateway.domain.models import Identity
from consent_gateway.domain.ports import (
    ContractHandle,
    LedgerConnection,
    LedgerConnectionError,
    LedgerNetworkPort,
    LedgerRejectionError,
    LedgerTimeoutError,
)

logger = logging.getLogger(__name__)


def _error_text(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if body.get(key):
                return str(body[key])
    return str(body)


class RestContract(ContractHandle):
    def __init__(self, connection: "RestLedgerConnection", channel_name: str, contract_name: str):
        self._connection = connection
        self.base_url = (
            f"{connection.gateway_url}/channels/{channel_name}/contracts/{contract_name}"
        )

    async def submit_transaction(self, name: str, *args: str) -> bytes:
        return await asyncio.to_thread(self._connection.post, f"{self.base_url}/submit", name, args)

    async def evaluate_transaction(self, name: str, *args: str) -> bytes:
        return await asyncio.to_thread(self._connection.post, f"{self.base_url}/evaluate", name, args)


class RestLedgerConnection(LedgerConnection):
    """One mTLS-authenticated requests.Session for a single identity."""

    def __init__(
        self,
        identity: Identity,
        gateway_url: str,
        tls_verify: Union[bool, str] = True,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
    ):
        self.label = identity.label
        self.msp_id = identity.msp_id
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = (connect_timeout, read_timeout)

        self._key_dir: Optional[Path] = Path(tempfile.mkdtemp(prefix=f"cg-{identity.label}-"))
        os.chmod(self._key_dir, 0o700)
        cert_path = self._write_secret("cert.pem", identity.certificate)
        key_path = self._write_secret("key.pem", identity.private_key.get_secret_value())

        self.session = requests.Session()
        self.session.cert = (str(cert_path), str(key_path))
        self.session.verify = tls_verify
        self.session.headers["Accept"] = "application/octet-stream, application/json"
        self.session.headers["X-MSP-ID"] = identity.msp_id

    def _write_secret(self, name: str, content: str) -> Path:
        path = self._key_dir / name
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def get_contract(self, channel_name: str, contract_name: str) -> ContractHandle:
        return RestContract(self, channel_name, contract_name)

    def post(self, url: str, name: str, args: tuple) -> bytes:
        """Blocking POST; maps transport failures onto the raw ledger errors."""
        if self._key_dir is None:
            raise LedgerConnectionError(f"connection for {self.label} is closed")
        try:
            response = self.session.post(
                url,
                json={"transaction": name, "arguments": list(args)},
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectTimeout as e:
            raise LedgerConnectionError(f"timed out connecting to {self.gateway_url}: {e}") from e
        except requests.exceptions.ReadTimeout as e:
            raise LedgerTimeoutError(f"no response for {name} from {self.gateway_url}") from e
        except requests.exceptions.RequestException as e:
            raise LedgerConnectionError(f"request to {self.gateway_url} failed: {e}") from e

        if response.status_code >= 400:
            raise LedgerRejectionError(_error_text(response))
        return response.content

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)

    def _close_sync(self) -> None:
        self.session.close()
        if self._key_dir is not None:
            shutil.rmtree(self._key_dir, ignore_errors=True)
            self._key_dir = None


class RestLedgerNetwork(LedgerNetworkPort):
    """LedgerNetworkPort for an HTTPS ledger gateway.

    Parameters:
        gateway_url: Base URL of the ledger gateway service
        tls_verify: True, False, or a CA bundle path
        connect_timeout: Seconds to establish a TCP/TLS connection
        read_timeout: Seconds to wait for a response

    Example Usage:
        ```python
        network = RestLedgerNetwork("https://peer0.hospital-apollo.example:8443")
        connection = await network.connect(identity)
        ```
    """

    def __init__(
        self,
        gateway_url: str,
        tls_verify: Union[bool, str] = True,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
    ):
        self.gateway_url = gateway_url
        self.tls_verify = tls_verify
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

    async def connect(self, identity: Identity) -> LedgerConnection:
        connection = await asyncio.to_thread(
            RestLedgerConnection,
            identity,
            self.gateway_url,
            self.tls_verify,
            self.connect_timeout,
            self.read_timeout,
        )
        logger.info(f"Opened ledger gateway session for {identity.label} at {self.gateway_url}")
        return connection
