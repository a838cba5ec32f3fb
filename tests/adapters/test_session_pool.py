"""Tests for the per-identity ledger session pool.

Security Impact:
    - Confirms concurrent first use of a label opens exactly one session
    - Confirms failed constructions are not cached
"""

import asyncio

import pytest

from consent_gateway.adapters.ledger import InMemoryLedgerNetwork, LedgerContractClient, LedgerSessionPool
from consent_gateway.domain.ports import GenericLedgerFailure, IdentityNotFound

HOSPITAL_LABEL = "hospitalApolloAdmin"
AUDIT_LABEL = "auditOrgAdmin"


@pytest.fixture
def slow_network(ledger_state):
    return InMemoryLedgerNetwork(state=ledger_state, connect_latency=0.05)


@pytest.fixture
def slow_pool(identity_store, slow_network):
    return LedgerSessionPool(identity_store, slow_network, "healthcare-channel", "healthcare-contract")


class TestAcquire:

    @pytest.mark.asyncio
    async def test_concurrent_first_use_connects_once(self, slow_pool, slow_network):
        handles = await asyncio.gather(*(slow_pool.acquire(HOSPITAL_LABEL) for _ in range(10)))

        assert slow_network.connect_count == 1
        assert all(h is handles[0] for h in handles)
        assert slow_pool.is_connected(HOSPITAL_LABEL)

    @pytest.mark.asyncio
    async def test_labels_get_separate_sessions(self, slow_pool, slow_network):
        hospital, audit = await asyncio.gather(
            slow_pool.acquire(HOSPITAL_LABEL),
            slow_pool.acquire(AUDIT_LABEL),
        )

        assert hospital is not audit
        assert slow_network.connect_count == 2
        assert slow_pool.active_labels() == [AUDIT_LABEL, HOSPITAL_LABEL]
        assert slow_pool.msp_id_for(AUDIT_LABEL) == "AuditOrgMSP"

    @pytest.mark.asyncio
    async def test_cached_session_reused(self, pool, network):
        first = await pool.acquire(HOSPITAL_LABEL)
        second = await pool.acquire(HOSPITAL_LABEL)

        assert first is second
        assert network.connect_count == 1

    @pytest.mark.asyncio
    async def test_unknown_label_is_not_cached(self, pool, network):
        with pytest.raises(IdentityNotFound) as exc_info:
            await pool.acquire("ghostAdmin")

        assert exc_info.value.label == "ghostAdmin"
        assert not pool.is_connected("ghostAdmin")
        assert network.connect_count == 0

        with pytest.raises(IdentityNotFound):
            await pool.acquire("ghostAdmin")

    @pytest.mark.asyncio
    async def test_contract_client_uses_pool_timeouts(self, identity_store, network):
        pool = LedgerSessionPool(
            identity_store, network, "healthcare-channel", "healthcare-contract",
            submit_timeout=3.0, evaluate_timeout=1.5,
        )

        client = await pool.contract_client(HOSPITAL_LABEL)

        assert isinstance(client, LedgerContractClient)
        assert client.identity_label == HOSPITAL_LABEL
        assert client.submit_timeout == 3.0
        assert client.evaluate_timeout == 1.5


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_all_closes_and_is_idempotent(self, pool, network):
        await pool.acquire(HOSPITAL_LABEL)
        await pool.acquire(AUDIT_LABEL)

        await pool.release_all()

        assert pool.active_labels() == []
        assert all(c.closed for c in network.connections)

        await pool.release_all()
        assert pool.active_labels() == []

    @pytest.mark.asyncio
    async def test_acquire_after_release_reconnects(self, pool, network):
        await pool.acquire(HOSPITAL_LABEL)
        await pool.release(HOSPITAL_LABEL)

        await pool.acquire(HOSPITAL_LABEL)

        assert network.connect_count == 2
        assert network.connections[0].closed is True
        assert network.connections[1].closed is False

    @pytest.mark.asyncio
    async def test_release_all_closes_inflight_construction(self, slow_pool, slow_network):
        task = asyncio.ensure_future(slow_pool.acquire(HOSPITAL_LABEL))
        await asyncio.sleep(0)

        await slow_pool.release_all()
        with pytest.raises(GenericLedgerFailure) as exc_info:
            await task

        assert exc_info.value.retriable is True
        assert slow_network.connect_count == 1
        assert slow_network.connections[0].closed is True
        assert slow_pool.active_labels() == []

    @pytest.mark.asyncio
    async def test_acquire_during_release_all_keeps_new_session(self, slow_pool, slow_network):
        detached = asyncio.ensure_future(slow_pool.acquire(HOSPITAL_LABEL))
        await asyncio.sleep(0)
        releasing = asyncio.ensure_future(slow_pool.release_all())
        await asyncio.sleep(0)

        handle = await slow_pool.acquire(HOSPITAL_LABEL)
        await releasing

        with pytest.raises(GenericLedgerFailure):
            await detached
        assert slow_network.connect_count == 2
        assert sorted(c.closed for c in slow_network.connections) == [False, True]
        assert slow_pool.is_connected(HOSPITAL_LABEL)
        assert await slow_pool.acquire(HOSPITAL_LABEL) is handle

        await slow_pool.release_all()
        assert all(c.closed for c in slow_network.connections)

    @pytest.mark.asyncio
    async def test_release_label_closes_inflight_construction(self, slow_pool, slow_network):
        task = asyncio.ensure_future(slow_pool.acquire(HOSPITAL_LABEL))
        await asyncio.sleep(0)

        await slow_pool.release(HOSPITAL_LABEL)

        with pytest.raises(GenericLedgerFailure):
            await task
        assert slow_network.connections[0].closed is True
        assert not slow_pool.is_connected(HOSPITAL_LABEL)
