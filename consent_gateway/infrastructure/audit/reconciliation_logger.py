"""Reconciliation Logger.

Records registrations that were committed on the ledger but whose off-chain
credential write failed. Such entities exist on the ledger without login
credentials; nothing is rolled back automatically (the ledger cannot be
rolled back), so an operator must reconcile them.

Security Impact:
    - Every entry is also logged at CRITICAL on the dedicated
      "consent_gateway.reconciliation" logger for alerting
    - Entries carry ids and the failure cause only, never profile PII or hashes

Architecture:
    - Infrastructure layer component called by the registration orchestrator
    - In-memory, thread-safe buffer exposed through the admin API and CLI
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.models import utcnow
from consent_gateway.infrastructure.logging_config import RECONCILIATION_LOGGER

logger = logging.getLogger(__name__)
alert_logger = logging.getLogger(RECONCILIATION_LOGGER)


class ReconciliationLogger:
    """Buffer of entities that need operator reconciliation.

    Example Usage:
        ```python
        reconciliation = ReconciliationLogger()
        reconciliation.log_partial_registration(
            entity_id="P4821",
            role=EntityRole.PATIENT,
            cause="connection refused",
        )
        for entry in reconciliation.get_entries():
            ...
        ```
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._entries: List[dict] = []
        self._lock = threading.Lock()
        self._clock = clock

    def log_partial_registration(
        self,
        entity_id: str,
        role: EntityRole,
        cause: str,
        secondary_id_present: Optional[bool] = None,
    ) -> dict:
        """Record a ledger-committed registration with no credential record."""
        entry = {
            "reconciliation_id": str(uuid.uuid4()),
            "entity_id": entity_id,
            "role": EntityRole(role).value,
            "cause": cause,
            "detected_at": self._clock(),
            "resolved": False,
        }
        if secondary_id_present is not None:
            entry["secondary_id_present"] = secondary_id_present

        with self._lock:
            self._entries.append(entry)

        alert_logger.critical(
            f"Ledger entity {entity_id} ({entry['role']}) has no credential record: {cause}",
            extra={"extra_fields": {
                "event": "partial_registration",
                "entity_id": entity_id,
                "role": entry["role"],
                "reconciliation_id": entry["reconciliation_id"],
            }},
        )
        return entry

    def mark_resolved(self, entity_id: str) -> int:
        """Mark every open entry for `entity_id` resolved; returns how many."""
        resolved = 0
        with self._lock:
            for entry in self._entries:
                if entry["entity_id"] == entity_id and not entry["resolved"]:
                    entry["resolved"] = True
                    entry["resolved_at"] = self._clock()
                    resolved += 1
        if resolved:
            logger.info(f"Marked {resolved} reconciliation entr(y/ies) resolved for {entity_id}")
        return resolved

    def get_entries(self, include_resolved: bool = False) -> List[dict]:
        with self._lock:
            return [
                dict(e) for e in self._entries
                if include_resolved or not e["resolved"]
            ]

    def get_entry_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries if not e["resolved"])

    def has_entries(self) -> bool:
        return self.get_entry_count() > 0

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.debug("Cleared reconciliation entries")
