"""Ledger adapters: session pool, contract client and network backends."""

from consent_gateway.adapters.ledger.contract_client import LedgerContractClient
from consent_gateway.adapters.ledger.memory_network import HealthcareLedgerState, InMemoryLedgerNetwork
from consent_gateway.adapters.ledger.rest_network import RestLedgerNetwork
from consent_gateway.adapters.ledger.session_pool import LedgerSession, LedgerSessionPool

__all__ = [
    "HealthcareLedgerState",
    "InMemoryLedgerNetwork",
    "LedgerContractClient",
    "LedgerSession",
    "LedgerSessionPool",
    "RestLedgerNetwork",
]
