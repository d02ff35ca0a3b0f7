"""
Repayment Reversal

Undoes a recorded repayment without editing history: the loan's balances
are restored, a mirror-image journal entry is appended and the repayment is
flagged as reversed. Repayments dated inside a closed period stay untouched.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalEntry, ReferenceType
from .loans import LoanManager, LoanStatus
from .repayments import RepaymentProcessor, Repayment
from .periods import ClosedPeriodRegistry
from .exceptions import AlreadyReversed, PeriodClosed, RecordNotFound, retry_on_conflict


logger = logging.getLogger(__name__)


@dataclass
class ReversalResult:
    repayment: Repayment
    reversal_entry: JournalEntry
    loan_status: LoanStatus


class ReversalHandler:
    """Reverses repayments by appending offsetting entries"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        loans: LoanManager,
        repayments: RepaymentProcessor,
        ledger: GeneralLedger,
        closed_periods: ClosedPeriodRegistry,
        max_conflict_retries: int = 3
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans = loans
        self.repayments = repayments
        self.ledger = ledger
        self.closed_periods = closed_periods
        self.max_conflict_retries = max_conflict_retries

    def reverse(
        self,
        repayment_id: str,
        reason: str = "Reversed",
        actor: Optional[str] = None
    ) -> ReversalResult:
        """
        Reverse a repayment

        Args:
            repayment_id: Repayment to undo
            reason: Recorded on the repayment and the reversal entry
            actor: User performing the reversal

        Returns:
            ReversalResult with the flagged repayment and the new entry

        Raises:
            AlreadyReversed: If the repayment was already reversed
            PeriodClosed: If the repayment is dated inside a closed period
            RecordNotFound: If the repayment or its journal entry is missing
        """
        repayment = self.repayments.require_repayment(repayment_id)

        def attempt() -> ReversalResult:
            with self.storage.lock(f"loan:{repayment.loan_id}"):
                with self.storage.atomic():
                    current = self.repayments.require_repayment(repayment_id)
                    if current.reversed:
                        raise AlreadyReversed(f"Repayment {repayment_id} has already been reversed")
                    if self.closed_periods.is_closed(current.payment_date):
                        raise PeriodClosed(
                            current.month,
                            f"Cannot reverse repayment {repayment_id}: period {current.month} is closed"
                        )

                    original = self._original_entry(current)
                    loan = self.loans.require_loan(current.loan_id)
                    loan.outstanding_penalty = loan.outstanding_penalty + current.penalty_paid
                    loan.outstanding_interest = loan.outstanding_interest + current.interest_paid
                    loan.outstanding_principal = (
                        loan.outstanding_principal + current.principal_paid - current.overpayment
                    )
                    loan.amount_paid = loan.amount_paid - current.amount_paid
                    loan.overpaid = loan.overpaid - current.overpayment
                    if loan.status == LoanStatus.COMPLETED and not loan.is_settled():
                        loan.status = LoanStatus.ACTIVE

                    entry = self.ledger.post_reversal(original, reference_id=current.id,
                                                      reason=reason, actor=actor)
                    flagged = self.repayments.mark_reversed(current, entry.id, reason, actor)
                    self.loans.save_loan(loan)
                    return ReversalResult(flagged, entry, loan.status)

        result = retry_on_conflict(attempt, self.max_conflict_retries)

        logger.info(
            "Reversed repayment %s on loan %s with entry %s",
            repayment_id, repayment.loan_id, result.reversal_entry.id
        )
        self.audit_trail.record(
            event_type=AuditEventType.REPAYMENT_REVERSED,
            entity_type="repayment",
            entity_id=repayment_id,
            metadata={
                "loan_id": repayment.loan_id,
                "reason": reason,
                "amount_paid": repayment.amount_paid.amount,
                "reversal_entry_id": result.reversal_entry.id,
                "loan_status": result.loan_status.value
            },
            actor=actor
        )
        return result

    def _original_entry(self, repayment: Repayment) -> JournalEntry:
        if repayment.journal_entry_id:
            return self.ledger.require_entry(repayment.journal_entry_id)
        entry = self.ledger.find_entry_for(ReferenceType.REPAYMENT, repayment.id)
        if entry is None:
            raise RecordNotFound(f"No journal entry found for repayment {repayment.id}")
        return entry
