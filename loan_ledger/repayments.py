"""
Repayment Processing

Records an incoming loan payment as one business event: the allocation,
the Repayment record, the journal entry and the loan update commit together
or not at all. Payments against the same loan are serialized with a
per-loan lock, and the loan's version guards against stale writes.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .allocation import RepaymentAllocator
from .ledger import GeneralLedger
from .loans import LoanManager
from .periods import month_key
from .exceptions import AlreadyReversed, RecordNotFound, retry_on_conflict


logger = logging.getLogger(__name__)


@dataclass
class Repayment(StorageRecord):
    """
    One payment against a loan. Immutable once recorded, except that the
    reversal fields are filled in exactly once.
    """
    loan_id: str
    amount_paid: Money
    principal_paid: Money
    interest_paid: Money
    penalty_paid: Money
    overpayment: Money
    payment_date: date
    target_account_id: str
    journal_entry_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    recorded_by: Optional[str] = None
    reversed: bool = False
    reversal_entry_id: Optional[str] = None
    reversal_reason: Optional[str] = None
    reversed_by: Optional[str] = None
    reversed_at: Optional[datetime] = None

    def __post_init__(self):
        total = self.principal_paid + self.interest_paid + self.penalty_paid
        if total != self.amount_paid:
            raise ValueError(
                f"Repayment split {total.to_string()} does not equal amount paid "
                f"{self.amount_paid.to_string()}"
            )

    @property
    def currency(self) -> Currency:
        return self.amount_paid.currency

    @property
    def month(self) -> str:
        return month_key(self.payment_date)

    @property
    def revenue(self) -> Money:
        """Income recognised by this payment"""
        return self.interest_paid + self.penalty_paid

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_id': self.loan_id,
            'currency': self.currency.code,
            'amount_paid': str(self.amount_paid.amount),
            'principal_paid': str(self.principal_paid.amount),
            'interest_paid': str(self.interest_paid.amount),
            'penalty_paid': str(self.penalty_paid.amount),
            'overpayment': str(self.overpayment.amount),
            'payment_date': self.payment_date.isoformat(),
            'month': self.month,
            'target_account_id': self.target_account_id,
            'journal_entry_id': self.journal_entry_id,
            'idempotency_key': self.idempotency_key,
            'recorded_by': self.recorded_by,
            'reversed': self.reversed,
            'reversal_entry_id': self.reversal_entry_id,
            'reversal_reason': self.reversal_reason,
            'reversed_by': self.reversed_by,
            'reversed_at': self.reversed_at.isoformat() if self.reversed_at else None
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Repayment':
        currency = Currency[data['currency']]

        def get_money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        reversed_at = data.get('reversed_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount_paid=get_money('amount_paid'),
            principal_paid=get_money('principal_paid'),
            interest_paid=get_money('interest_paid'),
            penalty_paid=get_money('penalty_paid'),
            overpayment=get_money('overpayment'),
            payment_date=date.fromisoformat(data['payment_date']),
            target_account_id=data['target_account_id'],
            journal_entry_id=data.get('journal_entry_id'),
            idempotency_key=data.get('idempotency_key'),
            recorded_by=data.get('recorded_by'),
            reversed=data.get('reversed', False),
            reversal_entry_id=data.get('reversal_entry_id'),
            reversal_reason=data.get('reversal_reason'),
            reversed_by=data.get('reversed_by'),
            reversed_at=datetime.fromisoformat(reversed_at) if reversed_at else None
        )


class RepaymentProcessor:
    """
    Records repayments: allocation, ledger posting and loan update in one
    transaction, retried on concurrency conflicts
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        loans: LoanManager,
        ledger: GeneralLedger,
        allocator: RepaymentAllocator,
        max_conflict_retries: int = 3
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans = loans
        self.ledger = ledger
        self.allocator = allocator
        self.max_conflict_retries = max_conflict_retries
        self.table_name = "repayments"

    def record_repayment(
        self,
        loan_id: str,
        amount: Money,
        target_account_id: str,
        payment_date: Optional[date] = None,
        actor: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Repayment:
        """
        Record a payment against an active loan

        Args:
            loan_id: Loan being repaid
            amount: Amount received
            target_account_id: Cash/bank account the money landed in
            payment_date: Date of the payment and of its journal entry
            actor: User recording the payment
            idempotency_key: Repeating a key returns the original repayment

        Returns:
            The recorded Repayment

        Raises:
            InvalidAmount: If amount is not positive
            OverpaymentRejected: If amount exceeds the tolerance limit
            InvalidLoanState: If the loan is not active
            PeriodClosed: If payment_date falls inside a closed period
            ConcurrencyConflict: If every retry hit a conflicting writer
        """
        payment_date = payment_date or date.today()

        def attempt() -> Tuple[Repayment, bool, bool]:
            with self.storage.lock(f"loan:{loan_id}"):
                with self.storage.atomic():
                    if idempotency_key:
                        existing = self.find_by_idempotency_key(idempotency_key)
                        if existing:
                            if existing.loan_id != loan_id:
                                raise ValueError(
                                    f"Idempotency key {idempotency_key} was used for another loan"
                                )
                            return existing, False, False

                    loan = self.loans.require_loan(loan_id)
                    result = self.allocator.allocate(loan, amount)
                    allocation = result.allocation

                    now = datetime.now(timezone.utc)
                    repayment = Repayment(
                        id=str(uuid.uuid4()),
                        created_at=now,
                        updated_at=now,
                        loan_id=loan_id,
                        amount_paid=allocation.amount,
                        principal_paid=allocation.principal_paid,
                        interest_paid=allocation.interest_paid,
                        penalty_paid=allocation.penalty_paid,
                        overpayment=allocation.overpayment,
                        payment_date=payment_date,
                        target_account_id=target_account_id,
                        idempotency_key=idempotency_key,
                        recorded_by=actor
                    )
                    entry = self.ledger.post_repayment(
                        repayment_id=repayment.id,
                        amount_paid=repayment.amount_paid,
                        principal_paid=repayment.principal_paid,
                        interest_paid=repayment.interest_paid,
                        penalty_paid=repayment.penalty_paid,
                        target_account_id=target_account_id,
                        entry_date=payment_date,
                        actor=actor
                    )
                    repayment.journal_entry_id = entry.id
                    self.storage.insert(self.table_name, repayment.id, repayment.to_dict())
                    self.loans.save_loan(result.loan)
                    return repayment, True, result.completes_loan

        repayment, created, completed = retry_on_conflict(attempt, self.max_conflict_retries)
        if not created:
            logger.info("Repayment with key %s already recorded as %s", idempotency_key, repayment.id)
            return repayment

        logger.info(
            "Recorded repayment %s on loan %s: %s (penalty %s, interest %s, principal %s)",
            repayment.id, loan_id, repayment.amount_paid.to_string(),
            repayment.penalty_paid.amount, repayment.interest_paid.amount,
            repayment.principal_paid.amount
        )
        self.audit_trail.record(
            event_type=AuditEventType.REPAYMENT_RECORDED,
            entity_type="repayment",
            entity_id=repayment.id,
            metadata={
                "loan_id": loan_id,
                "amount_paid": repayment.amount_paid.amount,
                "principal_paid": repayment.principal_paid.amount,
                "interest_paid": repayment.interest_paid.amount,
                "penalty_paid": repayment.penalty_paid.amount,
                "overpayment": repayment.overpayment.amount,
                "journal_entry_id": repayment.journal_entry_id
            },
            actor=actor
        )
        if completed:
            self.audit_trail.record(
                event_type=AuditEventType.LOAN_COMPLETED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={"final_repayment_id": repayment.id},
                actor=actor
            )
        return repayment

    def mark_reversed(
        self,
        repayment: Repayment,
        reversal_entry_id: str,
        reason: str,
        actor: Optional[str] = None
    ) -> Repayment:
        """Set the reversal fields; refuses if the stored copy is already reversed"""
        with self.storage.atomic():
            current = self.require_repayment(repayment.id)
            if current.reversed:
                raise AlreadyReversed(f"Repayment {repayment.id} has already been reversed")
            now = datetime.now(timezone.utc)
            current.reversed = True
            current.reversal_entry_id = reversal_entry_id
            current.reversal_reason = reason
            current.reversed_by = actor
            current.reversed_at = now
            current.updated_at = now
            self.storage.save(self.table_name, current.id, current.to_dict())
            return current

    def get_repayment(self, repayment_id: str) -> Optional[Repayment]:
        data = self.storage.load(self.table_name, repayment_id)
        if data:
            return Repayment.from_dict(data)
        return None

    def require_repayment(self, repayment_id: str) -> Repayment:
        repayment = self.get_repayment(repayment_id)
        if repayment is None:
            raise RecordNotFound(f"Repayment {repayment_id} not found")
        return repayment

    def find_by_idempotency_key(self, key: str) -> Optional[Repayment]:
        matches = self.storage.find(self.table_name, {'idempotency_key': key})
        if matches:
            return Repayment.from_dict(matches[0])
        return None

    def get_loan_repayments(self, loan_id: str, include_reversed: bool = True) -> List[Repayment]:
        repayments = [Repayment.from_dict(d) for d in self.storage.find(self.table_name, {'loan_id': loan_id})]
        if not include_reversed:
            repayments = [r for r in repayments if not r.reversed]
        return repayments

    def repayments_in_month(self, month: str, include_reversed: bool = False) -> List[Repayment]:
        repayments = [
            Repayment.from_dict(d)
            for d in self.storage.find(self.table_name, {'month': month_key(month)})
        ]
        if not include_reversed:
            repayments = [r for r in repayments if not r.reversed]
        return repayments
