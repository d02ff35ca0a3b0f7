"""
Test suite for repayment reversal

Tests that reversing restores the loan and the books exactly, through an
appended mirror entry rather than by editing history.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.config import LedgerConfig
from loan_ledger.currency import Money, Currency
from loan_ledger.storage import InMemoryStorage
from loan_ledger.accounts import SystemAccount
from loan_ledger.amortization import InterestType
from loan_ledger.audit import AuditEventType
from loan_ledger.ledger import ReferenceType
from loan_ledger.loans import LoanStatus
from loan_ledger.system import LoanLedgerSystem
from loan_ledger.exceptions import AlreadyReversed, PeriodClosed, RecordNotFound


def mwk(value: str) -> Money:
    return Money(Decimal(value), Currency.MWK)


class TestReversalHandler:
    """Test ReversalHandler.reverse"""

    def setup_method(self):
        self.system = LoanLedgerSystem(config=LedgerConfig(), storage=InMemoryStorage())
        self.accounts = self.system.account_manager
        self.loans = self.system.loan_manager
        self.processor = self.system.repayment_processor
        self.handler = self.system.reversal_handler
        self.cash_id = self.system.system_account_id(SystemAccount.CASH)

        self.system.ledger.post_injection(
            self.system.system_account_id(SystemAccount.CAPITAL), mwk('500000'), self.cash_id,
            date(2024, 1, 2)
        )
        loan = self.loans.create_application("borrower-1", mwk('100000'), 500, 6, InterestType.FLAT)
        self.loan = self.loans.approve(loan.id, self.cash_id, date(2024, 1, 5))

    def snapshot(self):
        return {account.code: account.balance for account in self.accounts.list_accounts()}

    def test_reverse_restores_loan_and_books(self):
        """Test the loan and every account return to their pre-payment state"""
        self.loans.assess_penalty(self.loan.id, mwk('300'), "Late")
        before_loan = self.loans.require_loan(self.loan.id)
        before_books = self.snapshot()

        repayment = self.processor.record_repayment(self.loan.id, mwk('40000'), self.cash_id, date(2024, 2, 5))
        result = self.handler.reverse(repayment.id, "Bounced cheque", actor="ceo-1")

        after = self.loans.require_loan(self.loan.id)
        assert after.outstanding_penalty == before_loan.outstanding_penalty
        assert after.outstanding_interest == before_loan.outstanding_interest
        assert after.outstanding_principal == before_loan.outstanding_principal
        assert after.amount_paid == before_loan.amount_paid
        assert after.balances_consistent()
        assert self.snapshot() == before_books

        assert result.repayment.reversed
        assert result.repayment.reversal_reason == "Bounced cheque"
        assert result.repayment.reversed_by == "ceo-1"
        assert result.loan_status == LoanStatus.ACTIVE

    def test_reversal_entry_mirrors_original(self):
        """Test the reversal is a new entry with debits and credits swapped"""
        repayment = self.processor.record_repayment(self.loan.id, mwk('1000'), self.cash_id, date(2024, 2, 5))
        original = self.system.ledger.require_entry(repayment.journal_entry_id)

        result = self.handler.reverse(repayment.id, "Duplicate")

        entry = result.reversal_entry
        assert entry.reference_type == ReferenceType.REVERSAL
        assert entry.reverses == original.id
        assert entry.entry_date == original.entry_date
        assert entry.total_debits == original.total_credits
        assert self.system.ledger.require_entry(original.id).lines == original.lines
        assert self.processor.require_repayment(repayment.id).reversal_entry_id == entry.id

    def test_reverse_twice(self):
        """Test a second reversal raises and posts nothing"""
        repayment = self.processor.record_repayment(self.loan.id, mwk('1000'), self.cash_id, date(2024, 2, 5))
        self.handler.reverse(repayment.id, "Duplicate")
        entries_before = len(self.system.ledger.list_entries())
        books_before = self.snapshot()

        with pytest.raises(AlreadyReversed):
            self.handler.reverse(repayment.id, "Duplicate again")

        assert len(self.system.ledger.list_entries()) == entries_before
        assert self.snapshot() == books_before

    def test_reverse_in_closed_period(self):
        """Test repayments in closed months cannot be reversed"""
        repayment = self.processor.record_repayment(self.loan.id, mwk('1000'), self.cash_id, date(2024, 1, 20))
        self.system.period_closer.close_books(
            "2024-01", self.system.system_account_id(SystemAccount.RETAINED_EARNINGS)
        )
        loan_before = self.loans.require_loan(self.loan.id)

        with pytest.raises(PeriodClosed):
            self.handler.reverse(repayment.id, "Too late")

        assert not self.processor.require_repayment(repayment.id).reversed
        assert self.loans.require_loan(self.loan.id).amount_paid == loan_before.amount_paid

    def test_reverse_reopens_completed_loan(self):
        """Test undoing the final payment makes the loan active again"""
        repayment = self.processor.record_repayment(self.loan.id, mwk('130000'), self.cash_id, date(2024, 2, 5))
        assert self.loans.require_loan(self.loan.id).status == LoanStatus.COMPLETED

        result = self.handler.reverse(repayment.id, "Bounced")

        loan = self.loans.require_loan(self.loan.id)
        assert result.loan_status == LoanStatus.ACTIVE
        assert loan.status == LoanStatus.ACTIVE
        assert loan.total_outstanding == mwk('130000')

    def test_reverse_overpayment(self):
        """Test the tolerated surplus is not added back as principal owed"""
        repayment = self.processor.record_repayment(self.loan.id, mwk('131000'), self.cash_id, date(2024, 2, 5))
        assert repayment.overpayment == mwk('1000')

        self.handler.reverse(repayment.id, "Bounced")

        loan = self.loans.require_loan(self.loan.id)
        assert loan.outstanding_principal == mwk('100000')
        assert loan.overpaid == mwk('0')
        assert loan.amount_paid == mwk('0')
        assert loan.balances_consistent()

    def test_reverse_missing(self):
        """Test unknown repayment ids raise RecordNotFound"""
        with pytest.raises(RecordNotFound):
            self.handler.reverse("missing", "Nope")

    def test_reversal_is_audited(self):
        """Test reversal writes a REPAYMENT_REVERSED event"""
        repayment = self.processor.record_repayment(self.loan.id, mwk('1000'), self.cash_id, date(2024, 2, 5))
        self.handler.reverse(repayment.id, "Duplicate", actor="ceo-1")

        events = self.system.audit_trail.get_events_for_entity("repayment", repayment.id)
        assert [e.event_type for e in events] == [
            AuditEventType.REPAYMENT_RECORDED, AuditEventType.REPAYMENT_REVERSED
        ]
        assert events[-1].actor == "ceo-1"

    def test_ledger_still_reconciles(self):
        """Test cached balances match the journal after reversal"""
        repayment = self.processor.record_repayment(self.loan.id, mwk('5000'), self.cash_id, date(2024, 2, 5))
        self.handler.reverse(repayment.id, "Duplicate")
        assert self.system.ledger.reconcile().is_clean
        assert self.system.ledger.trial_balance()['is_balanced']
