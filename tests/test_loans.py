"""
Test suite for loans module

Tests loan origination, approval with disbursement, lifecycle transitions,
penalties and the optimistic version check on loan records.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from loan_ledger.config import LedgerConfig
from loan_ledger.currency import Money, Currency
from loan_ledger.storage import InMemoryStorage
from loan_ledger.accounts import SystemAccount
from loan_ledger.amortization import InterestType
from loan_ledger.audit import AuditEventType
from loan_ledger.loans import LoanStatus
from loan_ledger.ledger import ReferenceType
from loan_ledger.periods import ClosedPeriod
from loan_ledger.system import LoanLedgerSystem
from loan_ledger.exceptions import (
    InvalidAmount, InvalidLoanState, InvalidTerm, PeriodClosed, RecordNotFound, ConcurrencyConflict
)


def mwk(value: str) -> Money:
    return Money(Decimal(value), Currency.MWK)


class TestLoanApplication:
    """Test creating loan applications"""

    def setup_method(self):
        self.system = LoanLedgerSystem(config=LedgerConfig(), storage=InMemoryStorage())
        self.loans = self.system.loan_manager

    def test_create_application(self):
        """Test a new application is pending with nothing outstanding"""
        loan = self.loans.create_application("borrower-1", mwk('100000'), 500, 6, InterestType.FLAT,
                                             actor="officer-1")

        assert loan.status == LoanStatus.PENDING
        assert loan.rate == Decimal('5')
        assert loan.officer_id == "officer-1"
        assert loan.total_outstanding == Money.zero(Currency.MWK)
        assert loan.version == 1
        assert self.loans.get_loan(loan.id).borrower_id == "borrower-1"

    def test_invalid_term(self):
        """Test a zero term is rejected at application time"""
        with pytest.raises(InvalidTerm):
            self.loans.create_application("borrower-1", mwk('1000'), 500, 0)

    def test_rate_must_be_whole_basis_points(self):
        """Test fractional basis points are rejected"""
        with pytest.raises(InvalidTerm):
            self.loans.create_application("borrower-1", mwk('1000'), Decimal('500.5'), 6)

    def test_invalid_principal(self):
        """Test a non-positive principal is rejected"""
        with pytest.raises(InvalidAmount):
            self.loans.create_application("borrower-1", mwk('0'), 500, 6)

    def test_list_loans(self):
        """Test filtering by status and borrower"""
        first = self.loans.create_application("borrower-1", mwk('1000'), 500, 6)
        self.loans.create_application("borrower-2", mwk('2000'), 500, 6)
        self.loans.reject(first.id, "Insufficient income")

        assert [l.id for l in self.loans.list_loans(status=LoanStatus.REJECTED)] == [first.id]
        assert len(self.loans.list_loans(borrower_id="borrower-2")) == 1
        assert len(self.loans.list_loans()) == 2

    def test_missing_loan(self):
        """Test unknown loan ids raise RecordNotFound"""
        with pytest.raises(RecordNotFound):
            self.loans.require_loan("missing")


class TestLoanApproval:
    """Test approval and disbursement"""

    def setup_method(self):
        self.system = LoanLedgerSystem(config=LedgerConfig(), storage=InMemoryStorage())
        self.loans = self.system.loan_manager
        self.cash_id = self.system.system_account_id(SystemAccount.CASH)
        self.system.ledger.post_injection(
            self.system.system_account_id(SystemAccount.CAPITAL), mwk('500000'), self.cash_id,
            date(2024, 1, 2)
        )
        self.loan = self.loans.create_application("borrower-1", mwk('100000'), 500, 6, InterestType.FLAT)

    def test_approve_freezes_terms(self):
        """Test approval opens the outstanding balances from the schedule"""
        loan = self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 5), actor="ceo-1")

        assert loan.status == LoanStatus.ACTIVE
        assert loan.disbursement_date == date(2024, 1, 5)
        assert loan.monthly_installment == mwk('21666.67')
        assert loan.total_payable == mwk('130000')
        assert loan.outstanding_principal == mwk('100000')
        assert loan.outstanding_interest == mwk('30000')
        assert loan.approved_by == "ceo-1"
        assert loan.balances_consistent()

    def test_approve_posts_disbursement(self):
        """Test approval moves cash into the loan portfolio"""
        self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 5))

        entry = self.system.ledger.find_entry_for(ReferenceType.DISBURSEMENT, self.loan.id)
        assert entry is not None
        assert entry.total_debits == mwk('100000')
        accounts = self.system.account_manager
        assert accounts.system_account(SystemAccount.PORTFOLIO).balance == mwk('100000')
        assert accounts.system_account(SystemAccount.CASH).balance == mwk('400000')

    def test_approve_twice(self):
        """Test an active loan cannot be approved again"""
        self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 5))
        with pytest.raises(InvalidLoanState):
            self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 6))
        assert len(self.system.ledger.list_entries(reference_type=ReferenceType.DISBURSEMENT)) == 1

    def test_approve_into_closed_period(self):
        """Test a failed disbursement leaves the loan pending"""
        self.system.closed_periods.add(ClosedPeriod(
            month="2024-01",
            closed_at=datetime.now(timezone.utc),
            net_profit=mwk('0'),
            total_assets=mwk('0'),
            total_liabilities=mwk('0')
        ))

        with pytest.raises(PeriodClosed):
            self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 5))

        loan = self.loans.require_loan(self.loan.id)
        assert loan.status == LoanStatus.PENDING
        assert loan.total_outstanding == Money.zero(Currency.MWK)
        assert self.system.account_manager.system_account(SystemAccount.PORTFOLIO).balance == mwk('0')

    def test_get_schedule(self):
        """Test the schedule is recomputed from the stored terms"""
        schedule = self.loans.get_schedule(self.loan.id)
        assert len(schedule.schedule) == 6
        assert schedule.total_interest == mwk('30000')

    def test_approval_is_audited(self):
        """Test approval writes a LOAN_APPROVED event"""
        self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 5), actor="ceo-1")
        events = self.system.audit_trail.get_events_for_entity("loan", self.loan.id)
        assert [e.event_type for e in events] == [
            AuditEventType.LOAN_APPLICATION_CREATED, AuditEventType.LOAN_APPROVED
        ]
        assert events[-1].actor == "ceo-1"


class TestLoanLifecycle:
    """Test decisions, default and penalties"""

    def setup_method(self):
        self.system = LoanLedgerSystem(config=LedgerConfig(), storage=InMemoryStorage())
        self.loans = self.system.loan_manager
        self.cash_id = self.system.system_account_id(SystemAccount.CASH)
        self.loan = self.loans.create_application("borrower-1", mwk('10000'), 300, 4)

    def test_reject(self):
        """Test rejecting a pending application"""
        loan = self.loans.reject(self.loan.id, "Insufficient income")
        assert loan.status == LoanStatus.REJECTED
        assert loan.decision_note == "Insufficient income"
        with pytest.raises(InvalidLoanState):
            self.loans.approve(self.loan.id, self.cash_id)

    def test_reassess_and_resubmit(self):
        """Test an application can go back for changes and return"""
        loan = self.loans.send_for_reassessment(self.loan.id, "Need payslips")
        assert loan.status == LoanStatus.REASSESS
        loan = self.loans.resubmit(self.loan.id)
        assert loan.status == LoanStatus.PENDING

    def test_default_requires_active(self):
        """Test only active loans can default"""
        with pytest.raises(InvalidLoanState):
            self.loans.mark_defaulted(self.loan.id, "No contact")

        self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 5))
        loan = self.loans.mark_defaulted(self.loan.id, "No contact")
        assert loan.status == LoanStatus.DEFAULTED

    def test_assess_penalty(self):
        """Test penalties add to the outstanding balance"""
        self.loans.approve(self.loan.id, self.cash_id, date(2024, 1, 5))
        loan = self.loans.assess_penalty(self.loan.id, mwk('250'), "Late February installment")

        assert loan.outstanding_penalty == mwk('250')
        assert loan.penalties_assessed == mwk('250')
        assert loan.balances_consistent()

    def test_penalty_needs_active_loan(self):
        """Test penalties cannot be assessed on a pending loan"""
        with pytest.raises(InvalidLoanState):
            self.loans.assess_penalty(self.loan.id, mwk('250'), "Late")


class TestVersionCheck:
    """Test optimistic concurrency on loan records"""

    def setup_method(self):
        self.system = LoanLedgerSystem(config=LedgerConfig(), storage=InMemoryStorage())
        self.loans = self.system.loan_manager
        self.loan = self.loans.create_application("borrower-1", mwk('10000'), 300, 4)

    def test_stale_save_conflicts(self):
        """Test saving a copy loaded before another write fails"""
        first = self.loans.require_loan(self.loan.id)
        second = self.loans.require_loan(self.loan.id)

        first.decision_note = "first writer"
        self.loans.save_loan(first)

        second.decision_note = "second writer"
        with pytest.raises(ConcurrencyConflict) as exc_info:
            self.loans.save_loan(second)
        assert exc_info.value.retryable
        assert self.loans.require_loan(self.loan.id).decision_note == "first writer"

    def test_version_increments(self):
        """Test every save bumps the version"""
        loan = self.loans.require_loan(self.loan.id)
        self.loans.save_loan(loan)
        assert self.loans.require_loan(self.loan.id).version == loan.version == 2
