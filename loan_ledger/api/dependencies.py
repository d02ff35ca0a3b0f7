"""
Request dependencies: the shared ledger system and the calling actor
"""

from typing import Optional

from fastapi import Header, HTTPException

from ..system import LoanLedgerSystem
from ..commands import Actor, Role


_ledger_system: Optional[LoanLedgerSystem] = None


def get_ledger_system() -> LoanLedgerSystem:
    """Global ledger system instance, built from configuration on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LoanLedgerSystem()
    return _ledger_system


def get_actor(
    x_actor_id: str = Header(..., description="Authenticated user id"),
    x_actor_role: str = Header(..., description="officer, accountant, ceo or admin")
) -> Actor:
    """
    The caller as resolved by the authentication layer in front of this
    service, passed through as headers
    """
    try:
        role = Role(x_actor_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_actor_role}")
    return Actor(user_id=x_actor_id, role=role)
