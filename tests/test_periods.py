"""
Test suite for accounting periods and the month-end close

Tests month keys, the income statement, moving the result to equity and
the permanent lock a closed period puts on the ledger.
"""

import threading

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.config import LedgerConfig
from loan_ledger.currency import Money, Currency
from loan_ledger.storage import InMemoryStorage
from loan_ledger.accounts import AccountCategory, SystemAccount
from loan_ledger.amortization import InterestType
from loan_ledger.audit import AuditEventType
from loan_ledger.ledger import ReferenceType
from loan_ledger.periods import PeriodState, month_key, month_bounds
from loan_ledger.system import LoanLedgerSystem
from loan_ledger.exceptions import PeriodClosed, PeriodAlreadyClosed, InvalidAccount


def mwk(value: str) -> Money:
    return Money(Decimal(value), Currency.MWK)


class TestMonthKeys:
    """Test month normalization helpers"""

    def test_month_key_from_date(self):
        """Test dates map to their month"""
        assert month_key(date(2024, 3, 31)) == "2024-03"

    def test_month_key_validation(self):
        """Test malformed months are refused"""
        assert month_key("2024-12") == "2024-12"
        for bad in ("2024-13", "2024-00", "2024-1", "March", ""):
            with pytest.raises(ValueError):
                month_key(bad)

    def test_month_bounds(self):
        """Test first and last day, including leap years"""
        assert month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_bounds("2023-02")[1] == date(2023, 2, 28)


class TestCloseBooks:
    """Test PeriodCloser.close_books"""

    def setup_method(self):
        self.system = LoanLedgerSystem(config=LedgerConfig(), storage=InMemoryStorage())
        self.accounts = self.system.account_manager
        self.ledger = self.system.ledger
        self.closer = self.system.period_closer
        self.cash_id = self.system.system_account_id(SystemAccount.CASH)
        self.retained_id = self.system.system_account_id(SystemAccount.RETAINED_EARNINGS)
        self.rent = self.accounts.create_account("Rent", AccountCategory.EXPENSE, code="RENT")

        self.ledger.post_injection(
            self.system.system_account_id(SystemAccount.CAPITAL), mwk('500000'), self.cash_id,
            date(2024, 1, 2)
        )
        loan = self.system.loan_manager.create_application(
            "borrower-1", mwk('100000'), 500, 6, InterestType.FLAT
        )
        self.loan = self.system.loan_manager.approve(loan.id, self.cash_id, date(2024, 1, 5))

    def balance(self, account_id: str) -> Money:
        return self.accounts.require_account(account_id).balance

    def test_income_statement(self):
        """Test revenue from repayments less expenses for the month"""
        self.system.repayment_processor.record_repayment(
            self.loan.id, mwk('21666.67'), self.cash_id, date(2024, 1, 31)
        )
        self.ledger.post_expense(self.rent.id, mwk('1000'), self.cash_id, date(2024, 1, 31), "Rent")
        self.ledger.post_expense(self.rent.id, mwk('700'), self.cash_id, date(2024, 2, 1), "Rent")

        statement = self.closer.income_statement("2024-01")

        assert statement.interest_income == mwk('21666.67')
        assert statement.penalty_income == mwk('0')
        assert statement.expenses == mwk('1000')
        assert statement.expense_breakdown == {"RENT": mwk('1000')}
        assert statement.net_profit == mwk('20666.67')

    def test_close_with_profit(self):
        """Test a profit is credited to the target equity account"""
        self.system.repayment_processor.record_repayment(
            self.loan.id, mwk('21666.67'), self.cash_id, date(2024, 1, 31)
        )
        self.ledger.post_expense(self.rent.id, mwk('1000'), self.cash_id, date(2024, 1, 31), "Rent")

        period = self.closer.close_books("2024-01", self.retained_id, actor="ceo-1")

        assert period.net_profit == mwk('20666.67')
        assert period.total_assets == mwk('520666.67')
        assert period.total_liabilities == mwk('0')
        assert period.closed_by == "ceo-1"
        assert self.balance(self.retained_id) == mwk('20666.67')
        summary_id = self.system.system_account_id(SystemAccount.INCOME_SUMMARY)
        assert self.balance(summary_id) == mwk('-20666.67')

        closing_entry = self.ledger.require_entry(period.closing_entry_id)
        assert closing_entry.entry_date == date(2024, 1, 31)
        assert closing_entry.reference_type == ReferenceType.TRANSFER
        assert closing_entry.reference_id == "2024-01"

    def test_close_with_loss(self):
        """Test a loss is debited to the target equity account"""
        self.ledger.post_expense(self.rent.id, mwk('1500'), self.cash_id, date(2024, 1, 31), "Rent")

        period = self.closer.close_books("2024-01", self.retained_id)

        assert period.net_profit == mwk('-1500')
        assert self.balance(self.retained_id) == mwk('-1500')

    def test_close_with_no_activity(self):
        """Test a zero result closes without a closing entry"""
        period = self.closer.close_books("2024-03", self.retained_id)
        assert period.net_profit == mwk('0')
        assert period.closing_entry_id is None
        assert self.closer.period_state("2024-03") == PeriodState.CLOSED

    def test_close_twice(self):
        """Test a second close raises and changes nothing"""
        self.ledger.post_expense(self.rent.id, mwk('1000'), self.cash_id, date(2024, 1, 31), "Rent")
        self.closer.close_books("2024-01", self.retained_id)
        entries_before = len(self.ledger.list_entries())

        with pytest.raises(PeriodAlreadyClosed):
            self.closer.close_books("2024-01", self.retained_id)

        assert len(self.ledger.list_entries()) == entries_before
        assert self.balance(self.retained_id) == mwk('-1000')
        assert len(self.closer.list_closed_periods()) == 1

    def test_target_must_be_equity(self):
        """Test closing to a non-equity account is refused and leaves the month open"""
        with pytest.raises(InvalidAccount):
            self.closer.close_books("2024-01", self.cash_id)
        assert self.closer.period_state("2024-01") == PeriodState.OPEN

    def test_closed_month_is_locked(self):
        """Test no entry can be posted into a closed month"""
        self.closer.close_books("2024-01", self.retained_id)

        with pytest.raises(PeriodClosed):
            self.ledger.post_expense(self.rent.id, mwk('10'), self.cash_id, date(2024, 1, 15), "Late rent")
        with pytest.raises(PeriodClosed):
            self.system.repayment_processor.record_repayment(
                self.loan.id, mwk('100'), self.cash_id, date(2024, 1, 20)
            )

        self.ledger.post_expense(self.rent.id, mwk('10'), self.cash_id, date(2024, 2, 1), "February rent")
        assert self.closer.period_state("2024-02") == PeriodState.OPEN

    def test_reversed_repayments_excluded(self):
        """Test revenue ignores repayments that were reversed"""
        repayment = self.system.repayment_processor.record_repayment(
            self.loan.id, mwk('5000'), self.cash_id, date(2024, 1, 20)
        )
        self.system.reversal_handler.reverse(repayment.id, "Bounced cheque")

        statement = self.closer.income_statement("2024-01")
        assert statement.revenue == mwk('0')

    def test_close_is_audited(self):
        """Test closing writes a BOOKS_CLOSED event"""
        self.closer.close_books("2024-01", self.retained_id, actor="ceo-1")
        events = self.system.audit_trail.get_events_for_entity("period", "2024-01")
        assert [e.event_type for e in events] == [AuditEventType.BOOKS_CLOSED]

    def test_period_state_during_close(self, monkeypatch):
        """Test a month reads CLOSING while its close is in progress"""
        self.system.repayment_processor.record_repayment(
            self.loan.id, mwk('21666.67'), self.cash_id, date(2024, 1, 31)
        )
        seen = []
        post_closing_transfer = self.ledger.post_closing_transfer

        def observe(*args, **kwargs):
            seen.append(self.closer.period_state("2024-01"))
            return post_closing_transfer(*args, **kwargs)

        monkeypatch.setattr(self.ledger, "post_closing_transfer", observe)
        self.closer.close_books("2024-01", self.retained_id)

        assert seen == [PeriodState.CLOSING]
        assert self.closer.period_state("2024-01") == PeriodState.CLOSED

    def test_closed_periods_listed_in_order(self):
        """Test closed periods come back sorted by month"""
        self.closer.close_books("2024-02", self.retained_id)
        self.closer.close_books("2024-01", self.retained_id)
        assert [p.month for p in self.closer.list_closed_periods()] == ["2024-01", "2024-02"]
        assert self.closer.get_closed_period("2024-02").month == "2024-02"


class TestCloseConcurrency:
    """Test a close racing a posting dated in the same month"""

    def setup_method(self):
        self.system = LoanLedgerSystem(config=LedgerConfig(), storage=InMemoryStorage())
        self.closer = self.system.period_closer
        self.cash_id = self.system.system_account_id(SystemAccount.CASH)
        self.retained_id = self.system.system_account_id(SystemAccount.RETAINED_EARNINGS)

        self.system.ledger.post_injection(
            self.system.system_account_id(SystemAccount.CAPITAL), mwk('500000'), self.cash_id,
            date(2024, 1, 2)
        )
        loan = self.system.loan_manager.create_application(
            "borrower-1", mwk('100000'), 500, 6, InterestType.FLAT
        )
        self.loan = self.system.loan_manager.approve(loan.id, self.cash_id, date(2024, 1, 5))

    def pay(self, payment_date: date):
        return self.system.repayment_processor.record_repayment(
            self.loan.id, mwk('100'), self.cash_id, payment_date
        )

    def test_posting_before_close_is_counted(self):
        """Test a repayment that lands first is part of the closed result"""
        self.pay(date(2024, 2, 10))
        period = self.closer.close_books("2024-02", self.retained_id)
        assert period.net_profit == mwk('100')

    def test_posting_after_close_fails(self):
        """Test a repayment after the close is refused and changes nothing"""
        self.closer.close_books("2024-02", self.retained_id)
        with pytest.raises(PeriodClosed):
            self.pay(date(2024, 2, 10))
        assert self.system.loan_manager.require_loan(self.loan.id).amount_paid == mwk('0')

    @pytest.mark.parametrize("month", [2, 3, 4, 5, 6, 7, 8, 9])
    def test_race_has_one_outcome(self, month):
        """Test racing threads never hang and agree on who went first"""
        payment_date = date(2024, month, 15)
        barrier = threading.Barrier(2)
        outcome = {}

        def pay():
            barrier.wait()
            try:
                outcome['repayment'] = self.pay(payment_date)
            except PeriodClosed as e:
                outcome['repayment'] = e

        def close():
            barrier.wait()
            outcome['period'] = self.closer.close_books(month_key(payment_date), self.retained_id)

        threads = [threading.Thread(target=pay), threading.Thread(target=close)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        assert not any(thread.is_alive() for thread in threads), "close and repayment deadlocked"

        period = outcome['period']
        if isinstance(outcome['repayment'], PeriodClosed):
            assert period.net_profit == mwk('0')
            assert self.system.repayment_processor.get_loan_repayments(self.loan.id) == []
        else:
            assert period.net_profit == mwk('100')
        assert self.system.ledger.reconcile().is_clean
        assert self.system.audit_trail.verify_integrity()['valid']
