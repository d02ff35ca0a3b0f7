"""
Chart of accounts endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import get_actor, get_ledger_system
from .schemas import CreateAccountRequest, account_response
from ..accounts import AccountCategory
from ..commands import Actor, Capability
from ..system import LoanLedgerSystem


router = APIRouter()


def _category(value: str) -> AccountCategory:
    try:
        return AccountCategory(value.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown account category: {value}")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Create a new ledger account"""
    account = system.dispatcher.dispatch(
        actor, "create_account",
        name=request.name,
        category=_category(request.category),
        code=request.code
    )
    return account_response(account)


@router.get("")
async def list_accounts(
    category: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_LEDGER)
    accounts = system.account_manager.list_accounts(_category(category) if category else None)
    return {"accounts": [account_response(a) for a in accounts]}


@router.get("/{account_id}")
async def get_account(
    account_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_LEDGER)
    return account_response(system.account_manager.require_account(account_id))


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    account_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Delete an account that is not a system account and has no postings"""
    system.dispatcher.dispatch(actor, "delete_account", account_id=account_id)
