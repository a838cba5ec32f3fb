"""Ledger Session Pool.

Keeps one authenticated ledger session per identity label. Sessions are
created lazily on first use and reused for the lifetime of the process (or
until release_all()).

Security Impact:
    - A ledger session establishes a stateful network identity, so duplicate
      sessions for the same label are a correctness bug: first-use races are
      resolved by single-flight construction per label
    - Identities are resolved from the identity store on every construction;
      the pool never caches key material outside the session itself

Architecture:
    - The only shared mutable state in the gateway; owned by the composition
      root and injected into services (no module-level singleton)
    - asyncio.Lock guards the mapping and is never held across network I/O
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from consent_gateway.adapters.ledger.contract_client import (
    DEFAULT_EVALUATE_TIMEOUT,
    DEFAULT_SUBMIT_TIMEOUT,
    LedgerContractClient,
)
from consent_gateway.domain.ports import (
    ContractHandle,
    GenericLedgerFailure,
    IdentityStorePort,
    LedgerConnection,
    LedgerNetworkPort,
)

logger = logging.getLogger(__name__)


@dataclass
class LedgerSession:
    """An established session for one identity label."""
    label: str
    msp_id: str
    connection: LedgerConnection
    contract: ContractHandle


class LedgerSessionPool:
    """Per-identity cache of ledger sessions with single-flight construction.

    Parameters:
        identity_store: Source of enrolled identities
        network: Factory that opens authenticated connections
        channel_name: Channel hosting the contract
        contract_name: Contract (chaincode) name
        submit_timeout: Submit timeout passed to contract clients
        evaluate_timeout: Evaluate timeout passed to contract clients

    Example Usage:
        ```python
        pool = LedgerSessionPool(store, network, "healthcare-channel", "healthcare-contract")
        client = await pool.contract_client("auditOrgAdmin")
        payload = await client.evaluate("GetAuditTrail", "P1001")
        await pool.release_all()
        ```
    """

    def __init__(
        self,
        identity_store: IdentityStorePort,
        network: LedgerNetworkPort,
        channel_name: str,
        contract_name: str,
        submit_timeout: float = DEFAULT_SUBMIT_TIMEOUT,
        evaluate_timeout: float = DEFAULT_EVALUATE_TIMEOUT,
    ):
        self._identity_store = identity_store
        self._network = network
        self.channel_name = channel_name
        self.contract_name = contract_name
        self.submit_timeout = submit_timeout
        self.evaluate_timeout = evaluate_timeout

        self._sessions: dict[str, LedgerSession] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, label: str) -> ContractHandle:
        """Return the contract handle for `label`, connecting on first use.

        Concurrent callers for the same label during a miss join the single
        in-flight construction and receive the same handle.

        Raises:
            IdentityNotFound: The label is not enrolled
            Exception: Whatever the network raised while connecting (not cached)
        """
        session = await self._get_session(label)
        return session.contract

    async def contract_client(self, label: str) -> LedgerContractClient:
        """Typed client for `label` using the pool's configured timeouts."""
        contract = await self.acquire(label)
        return LedgerContractClient(
            contract,
            identity_label=label,
            submit_timeout=self.submit_timeout,
            evaluate_timeout=self.evaluate_timeout,
        )

    async def _get_session(self, label: str) -> LedgerSession:
        async with self._lock:
            session = self._sessions.get(label)
            if session is not None:
                return session
            task = self._pending.get(label)
            if task is None:
                task = asyncio.ensure_future(self._establish(label))
                self._pending[label] = task
        # shield: a cancelled waiter must not cancel the shared construction
        return await asyncio.shield(task)

    async def _establish(self, label: str) -> LedgerSession:
        me = asyncio.current_task()
        try:
            session = await self._open_session(label)
        except BaseException:
            async with self._lock:
                if self._pending.get(label) is me:
                    del self._pending[label]
            raise

        async with self._lock:
            # release()/release_all() detach in-flight constructions
            detached = self._pending.get(label) is not me
            if not detached:
                del self._pending[label]
                self._sessions[label] = session

        if detached:
            await self._close_session(session)
            raise GenericLedgerFailure(
                f"Ledger session for {label} was released while connecting; try again",
                retriable=True,
            )
        logger.info(
            f"Connected to ledger as {label} (MSP: {session.msp_id}) "
            f"on {self.channel_name}/{self.contract_name}"
        )
        return session

    async def _open_session(self, label: str) -> LedgerSession:
        identity = await asyncio.to_thread(self._identity_store.get, label)
        connection = await self._network.connect(identity)
        try:
            contract = connection.get_contract(self.channel_name, self.contract_name)
        except Exception:
            await connection.close()
            raise
        return LedgerSession(
            label=label,
            msp_id=identity.msp_id,
            connection=connection,
            contract=contract,
        )

    def is_connected(self, label: str) -> bool:
        return label in self._sessions

    def active_labels(self) -> list[str]:
        return sorted(self._sessions)

    def msp_id_for(self, label: str) -> Optional[str]:
        session = self._sessions.get(label)
        return session.msp_id if session else None

    async def release(self, label: str) -> None:
        """Close and forget a single session (next acquire reconnects).

        A construction in flight for the label is detached: it closes its own
        connection when it completes and its waiters get a retriable
        GenericLedgerFailure.
        """
        async with self._lock:
            session = self._sessions.pop(label, None)
            pending = self._pending.pop(label, None)
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)
        if session is not None:
            await self._close_session(session)

    async def release_all(self) -> None:
        """Close every cached session and clear the mapping.

        Sessions and in-flight constructions are detached under one lock
        acquisition; constructions are awaited and close their own
        connections. An acquire issued after that point starts a new session.
        Calling this again on an empty pool is a no-op.
        """
        async with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            sessions = list(self._sessions.values())
            self._sessions.clear()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if not sessions:
            logger.debug("release_all: no ledger sessions to close")
            return

        for session in sessions:
            await self._close_session(session)
        logger.info(f"Closed {len(sessions)} ledger session(s)")

    async def _close_session(self, session: LedgerSession) -> None:
        try:
            await session.connection.close()
        except Exception as e:
            logger.warning(f"Error closing ledger session {session.label}: {str(e)}")
