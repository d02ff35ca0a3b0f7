"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from .dependencies import get_actor, get_ledger_system
from .schemas import (
    ScheduleRequest, CreateLoanRequest, ApproveLoanRequest, LoanDecisionRequest,
    PenaltyRequest, schedule_response, loan_response, repayment_response
)
from ..accounts import SystemAccount
from ..commands import Actor, Capability
from ..loans import LoanStatus
from ..system import LoanLedgerSystem


router = APIRouter()


@router.post("/schedule")
async def preview_schedule(
    request: ScheduleRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Compute a repayment schedule without creating a loan"""
    result = system.dispatcher.dispatch(
        actor, "preview_schedule",
        principal=request.principal.to_money(),
        interest_rate_bps=request.interest_rate_bps,
        term_periods=request.term_periods,
        interest_type=request.interest_type
    )
    return schedule_response(result)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Record a loan application"""
    loan = system.dispatcher.dispatch(
        actor, "create_application",
        borrower_id=request.borrower_id,
        principal=request.principal.to_money(),
        interest_rate_bps=request.interest_rate_bps,
        term_periods=request.term_periods,
        interest_type=request.interest_type
    )
    return loan_response(loan)


@router.get("")
async def list_loans(
    status_filter: Optional[str] = Query(None, alias="status"),
    borrower_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """List loans, optionally filtered by status or borrower"""
    system.dispatcher.authorize(actor, Capability.VIEW_LOAN)
    try:
        loan_status = LoanStatus(status_filter) if status_filter else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown loan status: {status_filter}")
    loans = system.loan_manager.list_loans(status=loan_status, borrower_id=borrower_id)
    return {"loans": [loan_response(loan) for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Get loan details"""
    loan = system.dispatcher.dispatch(actor, "get_loan", loan_id=loan_id)
    return loan_response(loan)


@router.get("/{loan_id}/schedule")
async def get_loan_schedule(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Get the loan's amortization schedule"""
    result = system.dispatcher.dispatch(actor, "get_schedule", loan_id=loan_id)
    return schedule_response(result)


@router.get("/{loan_id}/repayments")
async def get_loan_repayments(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_LOAN)
    system.loan_manager.require_loan(loan_id)
    repayments = system.repayment_processor.get_loan_repayments(loan_id)
    return {"repayments": [repayment_response(r) for r in repayments]}


@router.post("/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    request: ApproveLoanRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Approve a pending loan and post its disbursement"""
    source_account_id = request.source_account_id or system.system_account_id(SystemAccount.CASH)
    loan = system.dispatcher.dispatch(
        actor, "approve_loan",
        loan_id=loan_id,
        source_account_id=source_account_id,
        disbursement_date=request.disbursement_date
    )
    return loan_response(loan)


@router.post("/{loan_id}/reject")
async def reject_loan(
    loan_id: str,
    request: LoanDecisionRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    loan = system.dispatcher.dispatch(actor, "reject_loan", loan_id=loan_id, reason=request.reason)
    return loan_response(loan)


@router.post("/{loan_id}/reassess")
async def reassess_loan(
    loan_id: str,
    request: LoanDecisionRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    loan = system.dispatcher.dispatch(actor, "reassess_loan", loan_id=loan_id, reason=request.reason)
    return loan_response(loan)


@router.post("/{loan_id}/resubmit")
async def resubmit_loan(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    loan = system.dispatcher.dispatch(actor, "resubmit_loan", loan_id=loan_id)
    return loan_response(loan)


@router.post("/{loan_id}/default")
async def default_loan(
    loan_id: str,
    request: LoanDecisionRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    loan = system.dispatcher.dispatch(actor, "default_loan", loan_id=loan_id, reason=request.reason)
    return loan_response(loan)


@router.post("/{loan_id}/penalties")
async def assess_penalty(
    loan_id: str,
    request: PenaltyRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Add a penalty to the loan's outstanding balance"""
    loan = system.dispatcher.dispatch(
        actor, "assess_penalty",
        loan_id=loan_id,
        amount=request.amount.to_money(),
        reason=request.reason
    )
    return loan_response(loan)
