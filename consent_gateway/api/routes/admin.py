"""Operator endpoints for registrations that need reconciliation."""

from fastapi import APIRouter, Query

from consent_gateway.api.dependencies import ReconciliationDep
from consent_gateway.api.models import envelope

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/reconciliation")
async def list_reconciliation_entries(
    reconciliation: ReconciliationDep,
    include_resolved: bool = Query(False, description="Include entries already resolved"),
):
    """Entities committed on the ledger without a credential record."""
    entries = reconciliation.get_entries(include_resolved=include_resolved)
    return envelope({
        "open": reconciliation.get_entry_count(),
        "entries": entries,
    })


@router.post("/reconciliation/{entity_id}/resolve")
async def resolve_reconciliation_entry(entity_id: str, reconciliation: ReconciliationDep):
    resolved = reconciliation.mark_resolved(entity_id)
    return envelope({"entity_id": entity_id, "resolved": resolved})
