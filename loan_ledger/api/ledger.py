"""
Journal endpoints: expense, equity and transfer postings plus ledger checks
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from .dependencies import get_actor, get_ledger_system
from .schemas import (
    ExpenseRequest, InjectionRequest, TransferRequest, entry_response, money_dict
)
from ..accounts import SystemAccount
from ..commands import Actor, Capability
from ..ledger import ReferenceType
from ..system import LoanLedgerSystem


router = APIRouter()


@router.post("/expenses", status_code=status.HTTP_201_CREATED)
async def post_expense(
    request: ExpenseRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Post an approved expense"""
    entry = system.dispatcher.dispatch(
        actor, "post_expense",
        expense_account_id=request.expense_account_id,
        amount=request.amount.to_money(),
        paid_from_account_id=request.paid_from_account_id or system.system_account_id(SystemAccount.CASH),
        entry_date=request.entry_date or date.today(),
        description=request.description,
        reference_id=request.reference_id
    )
    return entry_response(entry)


@router.post("/injections", status_code=status.HTTP_201_CREATED)
async def post_injection(
    request: InjectionRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Record new capital paid into the business"""
    entry = system.dispatcher.dispatch(
        actor, "post_injection",
        equity_account_id=request.equity_account_id or system.system_account_id(SystemAccount.CAPITAL),
        amount=request.amount.to_money(),
        to_account_id=request.to_account_id or system.system_account_id(SystemAccount.CASH),
        entry_date=request.entry_date or date.today(),
        description=request.description
    )
    return entry_response(entry)


@router.post("/transfers", status_code=status.HTTP_201_CREATED)
async def post_transfer(
    request: TransferRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    entry = system.dispatcher.dispatch(
        actor, "post_transfer",
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        amount=request.amount.to_money(),
        entry_date=request.entry_date or date.today(),
        description=request.description
    )
    return entry_response(entry)


@router.get("/entries")
async def list_entries(
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    month: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_LEDGER)
    try:
        ref_type = ReferenceType(reference_type) if reference_type else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown reference type: {reference_type}")
    entries = system.ledger.list_entries(reference_type=ref_type, reference_id=reference_id, month=month)
    return {"entries": [entry_response(e) for e in entries]}


@router.get("/entries/{entry_id}")
async def get_entry(
    entry_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_LEDGER)
    return entry_response(system.ledger.require_entry(entry_id))


@router.get("/trial-balance")
async def trial_balance(
    as_of: Optional[date] = None,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Debit and credit totals per account"""
    result = system.dispatcher.dispatch(actor, "trial_balance", as_of=as_of)
    return {
        "accounts": {
            account_id: {"debits": money_dict(row['debits']), "credits": money_dict(row['credits'])}
            for account_id, row in result['accounts'].items()
        },
        "total_debits": money_dict(result['total_debits']),
        "total_credits": money_dict(result['total_credits']),
        "is_balanced": result['is_balanced']
    }


@router.post("/reconcile")
async def reconcile(
    repair: bool = Query(False, description="Overwrite drifted balances with journal totals"),
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Compare every cached balance with the journal"""
    report = system.dispatcher.dispatch(actor, "reconcile", repair=repair)
    return {
        "accounts_checked": report.accounts_checked,
        "is_clean": report.is_clean,
        "repaired": report.repaired,
        "drifts": [
            {
                "account_id": d.account_id,
                "code": d.code,
                "cached": money_dict(d.cached),
                "computed": money_dict(d.computed)
            }
            for d in report.drifts
        ]
    }


@router.get("/verify")
async def verify_ledger(
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Scan every stored entry for debit/credit balance"""
    unbalanced = system.dispatcher.dispatch(actor, "verify_entries")
    return {"valid": not unbalanced, "unbalanced_entries": unbalanced}
