"""
Period Close

Month-end close: computes the month's profit or loss, moves it to equity
and locks the month against further postings. The whole close runs in one
transaction while holding the month's lock, so a posting dated in that month
either lands before the close (and is counted) or fails with PeriodClosed.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
import logging
import threading

from .currency import Money
from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager, AccountCategory
from .ledger import GeneralLedger, ReferenceType
from .repayments import RepaymentProcessor
from .periods import ClosedPeriod, ClosedPeriodRegistry, PeriodState, month_key
from .exceptions import PeriodAlreadyClosed, InvalidAccount


logger = logging.getLogger(__name__)


@dataclass
class IncomeStatement:
    """Profit and loss for one month"""
    month: str
    interest_income: Money
    penalty_income: Money
    expenses: Money
    expense_breakdown: Dict[str, Money] = field(default_factory=dict)  # account code -> amount

    @property
    def revenue(self) -> Money:
        return self.interest_income + self.penalty_income

    @property
    def net_profit(self) -> Money:
        return self.revenue - self.expenses


class PeriodCloser:
    """
    Closes accounting months and reports on them
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        accounts: AccountManager,
        ledger: GeneralLedger,
        repayments: RepaymentProcessor,
        closed_periods: ClosedPeriodRegistry
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.accounts = accounts
        self.ledger = ledger
        self.repayments = repayments
        self.closed_periods = closed_periods
        self._closing: Set[str] = set()  # months mid-close, guarded by _closing_lock
        self._closing_lock = threading.Lock()

    def income_statement(self, month: str) -> IncomeStatement:
        """
        Revenue is the interest and penalty collected by repayments dated in
        the month (reversed ones excluded); expenses are the expense postings
        dated in the month
        """
        month = month_key(month)
        zero = Money.zero(self.accounts.currency)

        interest = zero
        penalty = zero
        for repayment in self.repayments.repayments_in_month(month):
            interest = interest + repayment.interest_paid
            penalty = penalty + repayment.penalty_paid

        expense_accounts = {a.id: a for a in self.accounts.list_accounts(AccountCategory.EXPENSE)}
        breakdown: Dict[str, Money] = {}
        expenses = zero
        for entry in self.ledger.list_entries(reference_type=ReferenceType.EXPENSE, month=month):
            for line in entry.lines:
                account = expense_accounts.get(line.account_id)
                if account is None or not line.is_debit:
                    continue
                breakdown[account.code] = breakdown.get(account.code, zero) + line.debit_amount
                expenses = expenses + line.debit_amount

        return IncomeStatement(
            month=month,
            interest_income=interest,
            penalty_income=penalty,
            expenses=expenses,
            expense_breakdown=breakdown
        )

    def period_state(self, month: str) -> PeriodState:
        month = month_key(month)
        if self.closed_periods.is_closed(month):
            return PeriodState.CLOSED
        with self._closing_lock:
            closing = month in self._closing
        if closing:
            return PeriodState.CLOSING
        return PeriodState.OPEN

    def close_books(
        self,
        month: str,
        target_equity_account_id: str,
        actor: Optional[str] = None
    ) -> ClosedPeriod:
        """
        Close a month's books

        Args:
            month: "YYYY-MM"
            target_equity_account_id: Equity account receiving the result
            actor: User closing the books

        Returns:
            The ClosedPeriod snapshot

        Raises:
            PeriodAlreadyClosed: If the month is already closed
            InvalidAccount: If the target is not an equity account
        """
        month = month_key(month)

        with self.storage.atomic():
            with self.storage.lock(f"period:{month}"):
                with self._closing_lock:
                    self._closing.add(month)
                try:
                    if self.closed_periods.is_closed(month):
                        raise PeriodAlreadyClosed(month)

                    target = self.accounts.require_account(target_equity_account_id)
                    if target.category != AccountCategory.EQUITY:
                        raise InvalidAccount(
                            f"Books must close to an equity account, {target.code} is {target.category.value}"
                        )

                    statement = self.income_statement(month)
                    net_profit = statement.net_profit
                    closing_entry = None
                    if not net_profit.is_zero():
                        closing_entry = self.ledger.post_closing_transfer(
                            month, net_profit, target.id, actor=actor
                        )

                    period = ClosedPeriod(
                        month=month,
                        closed_at=datetime.now(timezone.utc),
                        net_profit=net_profit,
                        total_assets=self.accounts.total_balance(AccountCategory.ASSET),
                        total_liabilities=self.accounts.total_balance(AccountCategory.LIABILITY),
                        closed_by=actor,
                        closing_entry_id=closing_entry.id if closing_entry else None
                    )
                    self.closed_periods.add(period)
                finally:
                    with self._closing_lock:
                        self._closing.discard(month)

        logger.info("Closed books for %s with net profit %s", month, net_profit.to_string())
        self.audit_trail.record(
            event_type=AuditEventType.BOOKS_CLOSED,
            entity_type="period",
            entity_id=month,
            metadata={
                "net_profit": period.net_profit.amount,
                "total_assets": period.total_assets.amount,
                "total_liabilities": period.total_liabilities.amount,
                "target_equity_account_id": target.id,
                "closing_entry_id": period.closing_entry_id
            },
            actor=actor
        )
        return period

    def get_closed_period(self, month: str) -> Optional[ClosedPeriod]:
        return self.closed_periods.get(month)

    def list_closed_periods(self) -> List[ClosedPeriod]:
        return self.closed_periods.list()
