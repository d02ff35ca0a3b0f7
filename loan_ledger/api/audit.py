"""
Audit trail endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .dependencies import get_actor, get_ledger_system
from ..commands import Actor, Capability
from ..system import LoanLedgerSystem


router = APIRouter()


@router.get("/events")
async def list_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_AUDIT_LOG)
    if entity_type and entity_id:
        events = system.audit_trail.get_events_for_entity(entity_type, entity_id, limit=limit)
    else:
        events = system.audit_trail.get_all_events(limit=limit)
    return {
        "events": [
            {
                "id": e.id,
                "timestamp": e.created_at.isoformat(),
                "action": e.event_type.value,
                "entity_type": e.entity_type,
                "entity_id": e.entity_id,
                "actor": e.actor,
                "metadata": e.metadata
            }
            for e in events
        ]
    }


@router.get("/verify")
async def verify_audit_trail(
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Re-walk the hash chain"""
    return system.dispatcher.dispatch(actor, "verify_audit_trail")
