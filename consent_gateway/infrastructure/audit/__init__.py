"""Audit infrastructure."""

from consent_gateway.infrastructure.audit.reconciliation_logger import ReconciliationLogger

__all__ = ["ReconciliationLogger"]
