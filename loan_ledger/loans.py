"""
Loan Module

Loan records and their lifecycle: application, approval with disbursement,
rejection, reassessment, default and penalty assessment. Repayments are
handled by repayments.py; this module owns the loan record itself.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, require_positive
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .amortization import (
    AmortizationCalculator, AmortizationResult, InterestType, rate_from_basis_points
)
from .ledger import GeneralLedger
from .exceptions import InvalidLoanState, InvalidTerm, RecordNotFound, ConcurrencyConflict


logger = logging.getLogger(__name__)


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"        # Application awaiting a decision
    ACTIVE = "active"          # Approved and disbursed, accepting repayments
    COMPLETED = "completed"    # Fully repaid
    DEFAULTED = "defaulted"    # Declared in default
    REJECTED = "rejected"      # Application refused
    REASSESS = "reassess"      # Returned to the borrower for changes


@dataclass
class Loan(StorageRecord):
    """Loan terms, frozen totals and current outstanding balances"""
    borrower_id: str
    principal: Money
    interest_rate_bps: int              # Basis points per period, 500 = 5%
    interest_type: InterestType
    term_periods: int
    status: LoanStatus = LoanStatus.PENDING

    # Set once on approval
    disbursement_date: Optional[date] = None
    monthly_installment: Optional[Money] = None
    total_payable: Optional[Money] = None

    # Mutated only by approval, allocation, penalties and reversal
    outstanding_principal: Money = None
    outstanding_interest: Money = None
    outstanding_penalty: Money = None
    amount_paid: Money = None
    overpaid: Money = None
    penalties_assessed: Money = None

    officer_id: Optional[str] = None
    approved_by: Optional[str] = None
    decision_note: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        zero = Money.zero(self.principal.currency)
        for name in ('outstanding_principal', 'outstanding_interest', 'outstanding_penalty',
                     'amount_paid', 'overpaid', 'penalties_assessed'):
            if getattr(self, name) is None:
                setattr(self, name, zero)

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def rate(self) -> Decimal:
        """Interest rate in percent per period"""
        return rate_from_basis_points(self.interest_rate_bps)

    @property
    def total_outstanding(self) -> Money:
        return self.outstanding_principal + self.outstanding_interest + self.outstanding_penalty

    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    def is_settled(self) -> bool:
        return self.total_outstanding.is_zero()

    def expected_outstanding(self) -> Money:
        """
        What the outstanding balances must add up to: everything ever owed
        less everything paid towards it (overpayments are not debt paid)
        """
        if self.total_payable is None:
            return Money.zero(self.currency)
        return self.total_payable + self.penalties_assessed - (self.amount_paid - self.overpaid)

    def balances_consistent(self) -> bool:
        return (
            not self.total_outstanding.is_negative()
            and self.total_outstanding == self.expected_outstanding()
        )

    def to_dict(self) -> Dict:
        def money(value: Optional[Money]) -> Optional[str]:
            return str(value.amount) if value is not None else None

        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'borrower_id': self.borrower_id,
            'currency': self.currency.code,
            'principal': money(self.principal),
            'interest_rate_bps': self.interest_rate_bps,
            'interest_type': self.interest_type.value,
            'term_periods': self.term_periods,
            'status': self.status.value,
            'disbursement_date': self.disbursement_date.isoformat() if self.disbursement_date else None,
            'monthly_installment': money(self.monthly_installment),
            'total_payable': money(self.total_payable),
            'outstanding_principal': money(self.outstanding_principal),
            'outstanding_interest': money(self.outstanding_interest),
            'outstanding_penalty': money(self.outstanding_penalty),
            'amount_paid': money(self.amount_paid),
            'overpaid': money(self.overpaid),
            'penalties_assessed': money(self.penalties_assessed),
            'officer_id': self.officer_id,
            'approved_by': self.approved_by,
            'decision_note': self.decision_note,
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Loan':
        currency = Currency[data['currency']]

        def get_money(key: str) -> Optional[Money]:
            value = data.get(key)
            return Money(Decimal(value), currency) if value is not None else None

        disbursed = data.get('disbursement_date')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            principal=get_money('principal'),
            interest_rate_bps=data['interest_rate_bps'],
            interest_type=InterestType(data['interest_type']),
            term_periods=data['term_periods'],
            status=LoanStatus(data['status']),
            disbursement_date=date.fromisoformat(disbursed) if disbursed else None,
            monthly_installment=get_money('monthly_installment'),
            total_payable=get_money('total_payable'),
            outstanding_principal=get_money('outstanding_principal'),
            outstanding_interest=get_money('outstanding_interest'),
            outstanding_penalty=get_money('outstanding_penalty'),
            amount_paid=get_money('amount_paid'),
            overpaid=get_money('overpaid'),
            penalties_assessed=get_money('penalties_assessed'),
            officer_id=data.get('officer_id'),
            approved_by=data.get('approved_by'),
            decision_note=data.get('decision_note'),
            version=data.get('version', 0)
        )


class LoanManager:
    """
    Loan manager for origination and lifecycle transitions
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: GeneralLedger,
        calculator: AmortizationCalculator
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.calculator = calculator
        self.currency = ledger.currency
        self.loans_table = "loans"

    def create_application(
        self,
        borrower_id: str,
        principal: Money,
        interest_rate_bps: int,
        term_periods: int,
        interest_type: Union[InterestType, str] = InterestType.FLAT,
        actor: Optional[str] = None
    ) -> Loan:
        """
        Record a new loan application in PENDING state

        The terms are run through the calculator once so that a bad
        principal, rate or term is rejected at application time.

        Raises:
            InvalidAmount: If principal is not positive
            InvalidTerm: If term or rate is invalid
        """
        interest_type = InterestType(interest_type)
        require_positive(principal, "Principal")
        if principal.currency != self.currency:
            raise ValueError(f"Loans must be in {self.currency.code}")
        if isinstance(interest_rate_bps, bool) or not isinstance(interest_rate_bps, int):
            raise InvalidTerm("Interest rate must be whole basis points")
        self.calculator.calculate(principal, rate_from_basis_points(interest_rate_bps),
                                  term_periods, interest_type)

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            principal=principal,
            interest_rate_bps=interest_rate_bps,
            interest_type=interest_type,
            term_periods=term_periods,
            officer_id=actor
        )
        self.save_loan(loan)

        self.audit_trail.record(
            event_type=AuditEventType.LOAN_APPLICATION_CREATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "borrower_id": borrower_id,
                "principal": principal.amount,
                "interest_rate_bps": interest_rate_bps,
                "term_periods": term_periods,
                "interest_type": interest_type.value
            },
            actor=actor
        )
        return loan

    def approve(
        self,
        loan_id: str,
        source_account_id: str,
        disbursement_date: Optional[date] = None,
        actor: Optional[str] = None
    ) -> Loan:
        """
        Approve a pending loan and disburse it

        Freezes monthly_installment and total_payable, opens the outstanding
        balances and posts the disbursement entry, all in one transaction.

        Args:
            loan_id: Loan to approve
            source_account_id: Cash/bank account the principal is paid from
            disbursement_date: Date of the disbursement entry (default today)
            actor: Approving user

        Returns:
            The active loan
        """
        disbursement_date = disbursement_date or date.today()

        with self.storage.lock(f"loan:{loan_id}"):
            with self.storage.atomic():
                loan = self.require_loan(loan_id)
                self._require_status(loan, LoanStatus.PENDING, "approve")

                terms = self.get_terms(loan)
                loan.status = LoanStatus.ACTIVE
                loan.disbursement_date = disbursement_date
                loan.monthly_installment = terms.monthly_installment
                loan.total_payable = terms.total_payable
                loan.outstanding_principal = terms.principal
                loan.outstanding_interest = terms.total_interest
                loan.approved_by = actor
                self.save_loan(loan)

                entry = self.ledger.post_disbursement(
                    loan_id=loan.id,
                    principal=loan.principal,
                    source_account_id=source_account_id,
                    entry_date=disbursement_date,
                    actor=actor
                )

        logger.info("Approved and disbursed loan %s for %s", loan.id, loan.principal.to_string())
        self.audit_trail.record(
            event_type=AuditEventType.LOAN_APPROVED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "journal_entry_id": entry.id,
                "source_account_id": source_account_id,
                "total_payable": loan.total_payable.amount,
                "monthly_installment": loan.monthly_installment.amount
            },
            actor=actor
        )
        return loan

    def reject(self, loan_id: str, reason: str, actor: Optional[str] = None) -> Loan:
        return self._decide(loan_id, LoanStatus.PENDING, LoanStatus.REJECTED,
                            AuditEventType.LOAN_REJECTED, reason, actor)

    def send_for_reassessment(self, loan_id: str, reason: str, actor: Optional[str] = None) -> Loan:
        return self._decide(loan_id, LoanStatus.PENDING, LoanStatus.REASSESS,
                            AuditEventType.LOAN_SENT_FOR_REASSESSMENT, reason, actor)

    def resubmit(self, loan_id: str, actor: Optional[str] = None) -> Loan:
        """Return a reassessed application to the pending queue"""
        return self._decide(loan_id, LoanStatus.REASSESS, LoanStatus.PENDING,
                            AuditEventType.LOAN_RESUBMITTED, None, actor)

    def mark_defaulted(self, loan_id: str, reason: str, actor: Optional[str] = None) -> Loan:
        return self._decide(loan_id, LoanStatus.ACTIVE, LoanStatus.DEFAULTED,
                            AuditEventType.LOAN_DEFAULTED, reason, actor)

    def assess_penalty(
        self,
        loan_id: str,
        amount: Money,
        reason: str,
        actor: Optional[str] = None
    ) -> Loan:
        """
        Add a late-payment penalty to an active loan's outstanding balance.
        Penalties are recognised as income when they are paid.
        """
        require_positive(amount, "Penalty")
        with self.storage.lock(f"loan:{loan_id}"):
            with self.storage.atomic():
                loan = self.require_loan(loan_id)
                self._require_status(loan, LoanStatus.ACTIVE, "assess a penalty on")
                loan.outstanding_penalty = loan.outstanding_penalty + amount
                loan.penalties_assessed = loan.penalties_assessed + amount
                self.save_loan(loan)

        self.audit_trail.record(
            event_type=AuditEventType.PENALTY_ASSESSED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={"amount": amount.amount, "reason": reason},
            actor=actor
        )
        return loan

    def get_terms(self, loan: Loan) -> AmortizationResult:
        return self.calculator.calculate(loan.principal, loan.rate, loan.term_periods, loan.interest_type)

    def get_schedule(self, loan_id: str) -> AmortizationResult:
        """Recompute the repayment schedule for a stored loan"""
        return self.get_terms(self.require_loan(loan_id))

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if loan is None:
            raise RecordNotFound(f"Loan {loan_id} not found")
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None,
                   borrower_id: Optional[str] = None) -> List[Loan]:
        filters = {}
        if status:
            filters['status'] = LoanStatus(status).value
        if borrower_id:
            filters['borrower_id'] = borrower_id
        return [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]

    def save_loan(self, loan: Loan) -> None:
        """
        Persist a loan with an optimistic version check

        Raises:
            ConcurrencyConflict: If the stored loan changed since it was loaded
        """
        with self.storage.atomic():
            stored = self.storage.load(self.loans_table, loan.id)
            if stored is not None and stored.get('version', 0) != loan.version:
                raise ConcurrencyConflict(
                    f"Loan {loan.id} was modified concurrently "
                    f"(expected version {loan.version}, found {stored.get('version')})"
                )
            loan.version += 1
            loan.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _require_status(self, loan: Loan, expected: LoanStatus, verb: str) -> None:
        if loan.status != expected:
            raise InvalidLoanState(
                f"Cannot {verb} loan {loan.id} in {loan.status.value} state "
                f"(must be {expected.value})"
            )

    def _decide(
        self,
        loan_id: str,
        from_status: LoanStatus,
        to_status: LoanStatus,
        event_type: AuditEventType,
        note: Optional[str],
        actor: Optional[str]
    ) -> Loan:
        with self.storage.lock(f"loan:{loan_id}"):
            with self.storage.atomic():
                loan = self.require_loan(loan_id)
                self._require_status(loan, from_status, f"move to {to_status.value}")
                loan.status = to_status
                if note is not None:
                    loan.decision_note = note
                self.save_loan(loan)

        logger.info("Loan %s moved from %s to %s", loan.id, from_status.value, to_status.value)
        self.audit_trail.record(
            event_type=event_type,
            entity_type="loan",
            entity_id=loan.id,
            metadata={"from": from_status.value, "to": to_status.value, "note": note},
            actor=actor
        )
        return loan
