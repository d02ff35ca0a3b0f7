"""
Accounting period endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import get_actor, get_ledger_system
from .schemas import CloseBooksRequest, closed_period_response, income_statement_response
from ..accounts import SystemAccount
from ..commands import Actor, Capability
from ..system import LoanLedgerSystem


router = APIRouter()


@router.get("")
async def list_closed_periods(
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_STATEMENTS)
    return {"closed_periods": [closed_period_response(p) for p in system.period_closer.list_closed_periods()]}


@router.get("/{month}")
async def get_period(
    month: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """State of a month and its close snapshot, if closed"""
    system.dispatcher.authorize(actor, Capability.VIEW_STATEMENTS)
    state = system.period_closer.period_state(month)
    period = system.period_closer.get_closed_period(month)
    return {
        "month": month,
        "state": state.value,
        "closed_period": closed_period_response(period) if period else None
    }


@router.get("/{month}/income-statement")
async def income_statement(
    month: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    statement = system.dispatcher.dispatch(actor, "income_statement", month=month)
    return income_statement_response(statement)


@router.post("/{month}/close")
async def close_books(
    month: str,
    request: CloseBooksRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Close the month and transfer its result to equity"""
    target = request.target_equity_account_id or system.system_account_id(SystemAccount.RETAINED_EARNINGS)
    period = system.dispatcher.dispatch(
        actor, "close_books", month=month, target_equity_account_id=target
    )
    return closed_period_response(period)
