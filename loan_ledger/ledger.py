"""
Double-Entry Ledger Engine

Translates business events (disbursement, repayment, expense, transfer,
injection, adjustment, reversal) into balanced journal entries and applies
them to the cached account balances.

Journal entries are append-only: there is no API to edit or delete one, a
correction is always a new offsetting entry. Posting is atomic, so either
every line lands together with its balance updates or none do.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, require_positive
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager, AccountCategory, SystemAccount
from .periods import ClosedPeriodRegistry, month_key, month_bounds
from .exceptions import (
    UnbalancedEntry, PeriodClosed, InvalidAccount, InvalidAmount, RecordNotFound
)


logger = logging.getLogger(__name__)


class ReferenceType(Enum):
    """Business event a journal entry records"""
    DISBURSEMENT = "disbursement"
    REPAYMENT = "repayment"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    INJECTION = "injection"
    ADJUSTMENT = "adjustment"
    REVERSAL = "reversal"


@dataclass(frozen=True)
class JournalEntryLine:
    """
    Individual line item in a journal entry
    Each line affects one account with either a debit or credit
    """
    account_id: str
    debit_amount: Money
    credit_amount: Money
    description: str = ""

    def __post_init__(self):
        """Validate that exactly one of debit or credit is non-zero"""
        if self.debit_amount.currency != self.credit_amount.currency:
            raise ValueError("Debit and credit amounts must use same currency")

        if self.debit_amount.is_negative() or self.credit_amount.is_negative():
            raise InvalidAmount("Journal line amounts cannot be negative")

        debit_zero = self.debit_amount.is_zero()
        credit_zero = self.credit_amount.is_zero()
        if debit_zero == credit_zero:
            raise UnbalancedEntry(
                f"Line for account {self.account_id} must have exactly one of debit or credit"
            )

    @classmethod
    def debit(cls, account_id: str, amount: Money, description: str = "") -> 'JournalEntryLine':
        return cls(account_id, amount, Money.zero(amount.currency), description)

    @classmethod
    def credit(cls, account_id: str, amount: Money, description: str = "") -> 'JournalEntryLine':
        return cls(account_id, Money.zero(amount.currency), amount, description)

    @property
    def currency(self) -> Currency:
        return self.debit_amount.currency

    @property
    def amount(self) -> Money:
        """The non-zero side of the line"""
        if not self.debit_amount.is_zero():
            return self.debit_amount
        return self.credit_amount

    @property
    def is_debit(self) -> bool:
        return not self.debit_amount.is_zero()

    def mirrored(self) -> 'JournalEntryLine':
        """Same account and amount with debit and credit swapped"""
        return JournalEntryLine(
            account_id=self.account_id,
            debit_amount=self.credit_amount,
            credit_amount=self.debit_amount,
            description=f"REVERSAL: {self.description}" if self.description else "REVERSAL"
        )

    def to_dict(self) -> Dict:
        return {
            'account_id': self.account_id,
            'debit': str(self.debit_amount.amount),
            'credit': str(self.credit_amount.amount),
            'currency': self.currency.code,
            'description': self.description
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'JournalEntryLine':
        currency = Currency[data['currency']]
        return cls(
            account_id=data['account_id'],
            debit_amount=Money(Decimal(data['debit']), currency),
            credit_amount=Money(Decimal(data['credit']), currency),
            description=data.get('description', "")
        )


@dataclass
class JournalEntry(StorageRecord):
    """
    Double-entry journal entry with multiple lines that must balance.
    Never updated once stored.
    """
    entry_date: date
    reference_type: ReferenceType
    reference_id: str
    description: str
    lines: List[JournalEntryLine] = field(default_factory=list)
    actor: Optional[str] = None
    reverses: Optional[str] = None  # ID of the entry this one offsets

    @property
    def month(self) -> str:
        return month_key(self.entry_date)

    @property
    def total_debits(self) -> Money:
        total = Money.zero(self.currency)
        for line in self.lines:
            total = total + line.debit_amount
        return total

    @property
    def total_credits(self) -> Money:
        total = Money.zero(self.currency)
        for line in self.lines:
            total = total + line.credit_amount
        return total

    @property
    def currency(self) -> Currency:
        if not self.lines:
            raise UnbalancedEntry(f"Journal entry {self.id} has no lines")
        return self.lines[0].currency

    def is_balanced(self) -> bool:
        try:
            return self.total_debits == self.total_credits
        except (UnbalancedEntry, ValueError):
            return False

    def validate_balance(self) -> None:
        """
        Validate that total debits equal total credits
        This is the fundamental rule of double-entry bookkeeping
        """
        if not self.lines:
            raise UnbalancedEntry(f"Journal entry {self.id} has no lines")
        if any(line.currency != self.currency for line in self.lines):
            raise UnbalancedEntry(f"Journal entry {self.id} mixes currencies")
        debits, credits = self.total_debits, self.total_credits
        if debits != credits:
            raise UnbalancedEntry(
                f"Journal entry {self.id} not balanced: "
                f"debits={debits.to_string()}, credits={credits.to_string()}"
            )

    def get_affected_accounts(self) -> Set[str]:
        return {line.account_id for line in self.lines}

    def amount_for(self, account_id: str) -> Money:
        """Total debit plus credit activity on one account"""
        total = Money.zero(self.currency)
        for line in self.lines:
            if line.account_id == account_id:
                total = total + line.amount
        return total

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'entry_date': self.entry_date.isoformat(),
            'month': self.month,
            'reference_type': self.reference_type.value,
            'reference_id': self.reference_id,
            'description': self.description,
            'lines': [line.to_dict() for line in self.lines],
            'actor': self.actor,
            'reverses': self.reverses
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'JournalEntry':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            entry_date=date.fromisoformat(data['entry_date']),
            reference_type=ReferenceType(data['reference_type']),
            reference_id=data['reference_id'],
            description=data['description'],
            lines=[JournalEntryLine.from_dict(line) for line in data['lines']],
            actor=data.get('actor'),
            reverses=data.get('reverses')
        )


@dataclass
class BalanceDrift:
    """Cached balance that disagrees with the journal"""
    account_id: str
    code: str
    cached: Money
    computed: Money

    @property
    def difference(self) -> Money:
        return self.cached - self.computed


@dataclass
class ReconciliationReport:
    accounts_checked: int
    drifts: List[BalanceDrift]
    repaired: bool = False

    @property
    def is_clean(self) -> bool:
        return not self.drifts


class GeneralLedger:
    """
    The ledger poster: builds, validates and posts journal entries

    Every convenience method builds the lines for one business event and
    hands the entry to post(), which is the only path that writes journal
    entries or touches account balances.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        accounts: AccountManager,
        closed_periods: ClosedPeriodRegistry
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.accounts = accounts
        self.closed_periods = closed_periods
        self.currency = accounts.currency
        self.table_name = "journal_entries"

    # Posting

    def new_entry(
        self,
        entry_date: date,
        reference_type: ReferenceType,
        reference_id: str,
        description: str,
        lines: Iterable[JournalEntryLine],
        actor: Optional[str] = None,
        reverses: Optional[str] = None
    ) -> JournalEntry:
        """Build an unposted entry; nothing is stored until post()"""
        now = datetime.now(timezone.utc)
        return JournalEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            entry_date=entry_date,
            reference_type=ReferenceType(reference_type),
            reference_id=reference_id,
            description=description,
            lines=list(lines),
            actor=actor,
            reverses=reverses
        )

    def post(self, entry: JournalEntry) -> JournalEntry:
        """
        Post a journal entry and apply every line to its account

        Args:
            entry: Entry built with new_entry()

        Returns:
            The posted entry

        Raises:
            UnbalancedEntry: If debits do not equal credits (logged as an error)
            PeriodClosed: If the entry date falls inside a closed period
            RecordNotFound: If a line references an unknown account
        """
        try:
            entry.validate_balance()
        except UnbalancedEntry:
            logger.error(
                "Refusing to post unbalanced journal entry %s (%s %s)",
                entry.id, entry.reference_type.value, entry.reference_id,
                extra={"action": "post_journal_entry", "resource": entry.reference_id}
            )
            raise

        if entry.currency != self.currency:
            raise InvalidAmount(
                f"Entry currency {entry.currency.code} differs from base currency {self.currency.code}"
            )

        month = entry.month
        with self.storage.atomic():
            # Serializes against a concurrent close of the same month
            with self.storage.lock(f"period:{month}"):
                if self.closed_periods.is_closed(month):
                    raise PeriodClosed(month, f"Cannot post to {month}: accounting period is closed")

                for account_id in entry.get_affected_accounts():
                    self.accounts.require_account(account_id)

                self.storage.insert(self.table_name, entry.id, entry.to_dict())
                for line in entry.lines:
                    self.accounts.apply_line(line.account_id, line.debit_amount, line.credit_amount)

        logger.info(
            "Posted journal entry %s: %s %s for %s",
            entry.id, entry.reference_type.value, entry.reference_id,
            entry.total_debits.to_string()
        )
        self.audit_trail.record(
            event_type=AuditEventType.JOURNAL_ENTRY_POSTED,
            entity_type="journal_entry",
            entity_id=entry.id,
            metadata={
                "reference_type": entry.reference_type.value,
                "reference_id": entry.reference_id,
                "entry_date": entry.entry_date.isoformat(),
                "amount": entry.total_debits.amount,
                "line_count": len(entry.lines)
            },
            actor=entry.actor
        )
        return entry

    def _require_category(self, account_id: str, *categories: AccountCategory, role: str):
        account = self.accounts.require_account(account_id)
        if account.category not in categories:
            allowed = ", ".join(c.value for c in categories)
            raise InvalidAccount(
                f"{role} account {account.code} is {account.category.value}, expected {allowed}"
            )
        return account

    def post_disbursement(
        self,
        loan_id: str,
        principal: Money,
        source_account_id: str,
        entry_date: date,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """Debit the loan portfolio, credit the disbursing cash/bank account"""
        require_positive(principal, "Disbursement")
        source = self._require_category(source_account_id, AccountCategory.ASSET, role="Source")
        portfolio = self.accounts.system_account(SystemAccount.PORTFOLIO)
        if source.id == portfolio.id:
            raise InvalidAccount("Cannot disburse from the loan portfolio account")

        entry = self.new_entry(
            entry_date=entry_date,
            reference_type=ReferenceType.DISBURSEMENT,
            reference_id=loan_id,
            description=f"Disbursement of loan {loan_id}",
            lines=[
                JournalEntryLine.debit(portfolio.id, principal, "Loan principal"),
                JournalEntryLine.credit(source.id, principal, f"Paid out from {source.code}")
            ],
            actor=actor
        )
        return self.post(entry)

    def post_repayment(
        self,
        repayment_id: str,
        amount_paid: Money,
        principal_paid: Money,
        interest_paid: Money,
        penalty_paid: Money,
        target_account_id: str,
        entry_date: date,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """
        Debit cash/bank by the amount received and credit the portfolio,
        interest income and penalty income by their allocated shares
        """
        target = self._require_category(target_account_id, AccountCategory.ASSET, role="Target")
        portfolio = self.accounts.system_account(SystemAccount.PORTFOLIO)
        if target.id == portfolio.id:
            raise InvalidAccount("Repayments must be received into a cash or bank account")

        lines = [JournalEntryLine.debit(target.id, amount_paid, "Repayment received")]
        credits = (
            (SystemAccount.PORTFOLIO, principal_paid, "Principal repaid"),
            (SystemAccount.INTEREST_INCOME, interest_paid, "Interest earned"),
            (SystemAccount.PENALTY_INCOME, penalty_paid, "Penalty earned"),
        )
        for system_account, amount, description in credits:
            if amount.is_positive():
                account = self.accounts.system_account(system_account)
                lines.append(JournalEntryLine.credit(account.id, amount, description))

        entry = self.new_entry(
            entry_date=entry_date,
            reference_type=ReferenceType.REPAYMENT,
            reference_id=repayment_id,
            description=f"Repayment {repayment_id}",
            lines=lines,
            actor=actor
        )
        return self.post(entry)

    def post_expense(
        self,
        expense_account_id: str,
        amount: Money,
        paid_from_account_id: str,
        entry_date: date,
        description: str,
        reference_id: Optional[str] = None,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """Debit the expense account, credit the cash/bank it was paid from"""
        require_positive(amount, "Expense")
        expense = self._require_category(expense_account_id, AccountCategory.EXPENSE, role="Expense")
        source = self._require_category(paid_from_account_id, AccountCategory.ASSET, role="Paying")

        entry = self.new_entry(
            entry_date=entry_date,
            reference_type=ReferenceType.EXPENSE,
            reference_id=reference_id or str(uuid.uuid4()),
            description=description,
            lines=[
                JournalEntryLine.debit(expense.id, amount, description),
                JournalEntryLine.credit(source.id, amount, description)
            ],
            actor=actor
        )
        return self.post(entry)

    def post_injection(
        self,
        equity_account_id: str,
        amount: Money,
        to_account_id: str,
        entry_date: date,
        description: str = "Capital injection",
        actor: Optional[str] = None
    ) -> JournalEntry:
        """Debit the receiving asset account, credit equity"""
        require_positive(amount, "Injection")
        equity = self._require_category(equity_account_id, AccountCategory.EQUITY, role="Equity")
        receiving = self._require_category(to_account_id, AccountCategory.ASSET, role="Receiving")

        entry = self.new_entry(
            entry_date=entry_date,
            reference_type=ReferenceType.INJECTION,
            reference_id=str(uuid.uuid4()),
            description=description,
            lines=[
                JournalEntryLine.debit(receiving.id, amount, description),
                JournalEntryLine.credit(equity.id, amount, description)
            ],
            actor=actor
        )
        return self.post(entry)

    def post_transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Money,
        entry_date: date,
        description: str = "Transfer",
        reference_id: Optional[str] = None,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """Move funds between two accounts: debit the receiver, credit the sender"""
        require_positive(amount, "Transfer")
        if from_account_id == to_account_id:
            raise InvalidAccount("Cannot transfer to the same account")

        entry = self.new_entry(
            entry_date=entry_date,
            reference_type=ReferenceType.TRANSFER,
            reference_id=reference_id or str(uuid.uuid4()),
            description=description,
            lines=[
                JournalEntryLine.debit(to_account_id, amount, description),
                JournalEntryLine.credit(from_account_id, amount, description)
            ],
            actor=actor
        )
        return self.post(entry)

    def post_closing_transfer(
        self,
        month: str,
        net_profit: Money,
        target_equity_account_id: str,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """
        Move a month's result between the income summary and an equity
        account: credit equity on a profit, debit it on a loss. The entry
        is dated the last day of the month.
        """
        target = self._require_category(
            target_equity_account_id, AccountCategory.EQUITY, role="Target equity"
        )
        summary = self.accounts.system_account(SystemAccount.INCOME_SUMMARY)
        if target.id == summary.id:
            raise InvalidAccount("Closing transfer cannot target the income summary itself")

        amount = abs(net_profit)
        description = f"Close books for {month}"
        if net_profit.is_positive():
            lines = [
                JournalEntryLine.debit(summary.id, amount, description),
                JournalEntryLine.credit(target.id, amount, f"Net profit {month}")
            ]
        else:
            lines = [
                JournalEntryLine.debit(target.id, amount, f"Net loss {month}"),
                JournalEntryLine.credit(summary.id, amount, description)
            ]

        entry = self.new_entry(
            entry_date=month_bounds(month)[1],
            reference_type=ReferenceType.TRANSFER,
            reference_id=month,
            description=description,
            lines=lines,
            actor=actor
        )
        return self.post(entry)

    def post_adjustment(
        self,
        lines: List[JournalEntryLine],
        entry_date: date,
        description: str,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """Free-form correcting entry; still has to balance"""
        entry = self.new_entry(
            entry_date=entry_date,
            reference_type=ReferenceType.ADJUSTMENT,
            reference_id=str(uuid.uuid4()),
            description=description,
            lines=lines,
            actor=actor
        )
        return self.post(entry)

    def post_reversal(
        self,
        original: JournalEntry,
        reference_id: str,
        reason: str,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """
        Post the mirror image of an entry (every debit becomes a credit and
        vice versa), dated the same day as the original
        """
        entry = self.new_entry(
            entry_date=original.entry_date,
            reference_type=ReferenceType.REVERSAL,
            reference_id=reference_id,
            description=f"REVERSAL: {reason}",
            lines=[line.mirrored() for line in original.lines],
            actor=actor,
            reverses=original.id
        )
        return self.post(entry)

    # Queries

    def get_journal_entry(self, entry_id: str) -> Optional[JournalEntry]:
        data = self.storage.load(self.table_name, entry_id)
        if data:
            return JournalEntry.from_dict(data)
        return None

    def require_entry(self, entry_id: str) -> JournalEntry:
        entry = self.get_journal_entry(entry_id)
        if entry is None:
            raise RecordNotFound(f"Journal entry {entry_id} not found")
        return entry

    def list_entries(
        self,
        reference_type: Optional[ReferenceType] = None,
        reference_id: Optional[str] = None,
        month: Optional[str] = None
    ) -> List[JournalEntry]:
        """Stored entries in posting order, optionally filtered"""
        filters = {}
        if reference_type:
            filters['reference_type'] = ReferenceType(reference_type).value
        if reference_id:
            filters['reference_id'] = reference_id
        if month:
            filters['month'] = month_key(month)
        return [JournalEntry.from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def find_entry_for(self, reference_type: ReferenceType, reference_id: str) -> Optional[JournalEntry]:
        entries = self.list_entries(reference_type=reference_type, reference_id=reference_id)
        return entries[0] if entries else None

    def get_entries_for_account(self, account_id: str) -> List[JournalEntry]:
        return [e for e in self.list_entries() if account_id in e.get_affected_accounts()]

    def has_postings(self, account_id: str) -> bool:
        return any(account_id in e.get_affected_accounts() for e in self.list_entries())

    def calculate_account_balance(self, account_id: str, as_of: Optional[date] = None) -> Money:
        """
        Balance of one account recomputed from the journal, in the
        account's normal-balance sign

        Args:
            account_id: Account to calculate balance for
            as_of: Only count entries dated on or before this day

        Returns:
            Computed balance as Money
        """
        account = self.accounts.require_account(account_id)
        balance = Money.zero(account.currency)
        for entry in self.list_entries():
            if as_of and entry.entry_date > as_of:
                continue
            for line in entry.lines:
                if line.account_id == account_id:
                    balance = balance + account.signed_amount(line.debit_amount, line.credit_amount)
        return balance

    def verify_entries_balanced(self) -> List[str]:
        """IDs of every stored entry whose debits do not equal its credits"""
        unbalanced = []
        for data in self.storage.load_all(self.table_name):
            try:
                entry = JournalEntry.from_dict(data)
            except (UnbalancedEntry, InvalidAmount, ValueError, KeyError):
                unbalanced.append(data.get('id'))
                continue
            if not entry.is_balanced():
                unbalanced.append(entry.id)
        if unbalanced:
            logger.error("Found %d unbalanced journal entries", len(unbalanced))
        return unbalanced

    def trial_balance(self, as_of: Optional[date] = None) -> Dict:
        """
        Total debits and credits per account from the journal

        Returns:
            Dict with per-account rows and overall totals; total debits
            always equal total credits when every entry is balanced
        """
        zero = Money.zero(self.currency)
        rows: Dict[str, Dict[str, Money]] = {}
        for entry in self.list_entries():
            if as_of and entry.entry_date > as_of:
                continue
            for line in entry.lines:
                row = rows.setdefault(line.account_id, {'debits': zero, 'credits': zero})
                row['debits'] = row['debits'] + line.debit_amount
                row['credits'] = row['credits'] + line.credit_amount

        total_debits = zero
        total_credits = zero
        for row in rows.values():
            total_debits = total_debits + row['debits']
            total_credits = total_credits + row['credits']

        return {
            'accounts': rows,
            'total_debits': total_debits,
            'total_credits': total_credits,
            'is_balanced': total_debits == total_credits
        }

    def reconcile(self, repair: bool = False, actor: Optional[str] = None) -> ReconciliationReport:
        """
        Recompute every account balance from the journal and compare it to
        the cached balance

        Args:
            repair: Overwrite drifted cached balances with the computed value
            actor: User requesting the repair

        Returns:
            ReconciliationReport listing every drift found
        """
        with self.storage.atomic():
            accounts = self.accounts.list_accounts()
            computed = {a.id: Money.zero(a.currency) for a in accounts}
            by_id = {a.id: a for a in accounts}
            for entry in self.list_entries():
                for line in entry.lines:
                    account = by_id.get(line.account_id)
                    if account is None:
                        continue
                    computed[account.id] = computed[account.id] + account.signed_amount(
                        line.debit_amount, line.credit_amount
                    )

            drifts = [
                BalanceDrift(a.id, a.code, a.balance, computed[a.id])
                for a in accounts if a.balance != computed[a.id]
            ]
            if repair:
                for drift in drifts:
                    self.accounts.overwrite_balance(drift.account_id, drift.computed)

        for drift in drifts:
            logger.warning(
                "Balance drift on %s: cached %s, journal %s",
                drift.code, drift.cached.to_string(), drift.computed.to_string()
            )
            if repair:
                self.audit_trail.record(
                    event_type=AuditEventType.ACCOUNT_BALANCE_REPAIRED,
                    entity_type="account",
                    entity_id=drift.account_id,
                    metadata={"cached": drift.cached.amount, "computed": drift.computed.amount},
                    actor=actor
                )

        return ReconciliationReport(
            accounts_checked=len(accounts),
            drifts=drifts,
            repaired=repair and bool(drifts)
        )
