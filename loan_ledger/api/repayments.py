"""
Repayment endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_actor, get_ledger_system
from .schemas import RepaymentRequest, ReversalRequest, repayment_response, entry_response
from ..accounts import SystemAccount
from ..commands import Actor, Capability
from ..system import LoanLedgerSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_repayment(
    request: RepaymentRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Allocate a payment and post it to the ledger"""
    target_account_id = request.target_account_id or system.system_account_id(SystemAccount.CASH)
    repayment = system.dispatcher.dispatch(
        actor, "record_repayment",
        loan_id=request.loan_id,
        amount=request.amount.to_money(),
        target_account_id=target_account_id,
        payment_date=request.payment_date,
        idempotency_key=request.idempotency_key
    )
    loan = system.loan_manager.require_loan(request.loan_id)
    return {
        "repayment": repayment_response(repayment),
        "loan_status": loan.status.value
    }


@router.get("/{repayment_id}")
async def get_repayment(
    repayment_id: str,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    system.dispatcher.authorize(actor, Capability.VIEW_LOAN)
    return repayment_response(system.repayment_processor.require_repayment(repayment_id))


@router.post("/{repayment_id}/reverse")
async def reverse_repayment(
    repayment_id: str,
    request: ReversalRequest,
    actor: Actor = Depends(get_actor),
    system: LoanLedgerSystem = Depends(get_ledger_system)
):
    """Reverse a repayment with an offsetting journal entry"""
    result = system.dispatcher.dispatch(
        actor, "reverse_repayment", repayment_id=repayment_id, reason=request.reason
    )
    return {
        "repayment": repayment_response(result.repayment),
        "reversal_entry": entry_response(result.reversal_entry),
        "loan_status": result.loan_status.value
    }
