"""
Account Management Module

Chart of accounts for the lender's books. Each account caches its balance;
the cache is only ever changed by the ledger while posting a journal line
and can always be recomputed from the journal (see GeneralLedger.reconcile).
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import RecordNotFound, SystemAccountProtected


logger = logging.getLogger(__name__)


class AccountCategory(Enum):
    """Standard accounting account categories"""
    ASSET = "asset"           # Debit normal balance
    LIABILITY = "liability"   # Credit normal balance
    EQUITY = "equity"         # Credit normal balance
    INCOME = "income"         # Credit normal balance
    EXPENSE = "expense"       # Debit normal balance

    @property
    def is_debit_normal(self) -> bool:
        return self in (AccountCategory.ASSET, AccountCategory.EXPENSE)


class SystemAccount(Enum):
    """Accounts every ledger needs; created on startup and never deletable"""
    CASH = ("CASH", "Cash at Bank", AccountCategory.ASSET)
    PORTFOLIO = ("PORTFOLIO", "Loan Portfolio", AccountCategory.ASSET)
    INTEREST_INCOME = ("INTEREST_INCOME", "Interest Income", AccountCategory.INCOME)
    PENALTY_INCOME = ("PENALTY_INCOME", "Penalty Income", AccountCategory.INCOME)
    INCOME_SUMMARY = ("INCOME_SUMMARY", "Income Summary", AccountCategory.EQUITY)
    RETAINED_EARNINGS = ("RETAINED_EARNINGS", "Retained Earnings", AccountCategory.EQUITY)
    CAPITAL = ("CAPITAL", "Share Capital", AccountCategory.EQUITY)

    def __init__(self, code: str, display_name: str, category: AccountCategory):
        self.code = code
        self.display_name = display_name
        self.category = category


@dataclass
class Account(StorageRecord):
    """
    Ledger account with a cached balance in its normal-balance sign:
    debit-normal accounts grow with debits, credit-normal ones with credits
    """
    code: str
    name: str
    category: AccountCategory
    currency: Currency
    balance: Money
    is_system: bool = False

    def __post_init__(self):
        if self.balance.currency != self.currency:
            raise ValueError("Balance currency must match account currency")

    def signed_amount(self, debit: Money, credit: Money) -> Money:
        """Effect of one journal line on this account's balance"""
        if self.category.is_debit_normal:
            return debit - credit
        return credit - debit

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'code': self.code,
            'name': self.name,
            'category': self.category.value,
            'currency': self.currency.code,
            'balance': str(self.balance.amount),
            'is_system': self.is_system
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            code=data['code'],
            name=data['name'],
            category=AccountCategory(data['category']),
            currency=currency,
            balance=Money(Decimal(data['balance']), currency),
            is_system=data.get('is_system', False)
        )


class AccountManager:
    """
    Manages the chart of accounts and the cached account balances
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, currency: Currency):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency
        self.accounts_table = "accounts"

    def create_account(
        self,
        name: str,
        category: AccountCategory,
        code: Optional[str] = None,
        is_system: bool = False,
        actor: Optional[str] = None
    ) -> Account:
        """
        Create a new account with a zero balance

        Args:
            name: Display name
            category: Asset, liability, equity, income or expense
            code: Unique short code (generated if not provided)
            is_system: System accounts cannot be deleted
            actor: User creating the account

        Returns:
            Created Account
        """
        code = (code or f"ACC-{uuid.uuid4().hex[:8]}").upper()
        if self.find_by_code(code):
            raise ValueError(f"Account code {code} already exists")

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            code=code,
            name=name,
            category=AccountCategory(category),
            currency=self.currency,
            balance=Money.zero(self.currency),
            is_system=is_system
        )
        self.storage.insert(self.accounts_table, account.id, account.to_dict())

        self.audit_trail.record(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account.id,
            metadata={"code": code, "name": name, "category": account.category.value,
                      "is_system": is_system},
            actor=actor
        )
        return account

    def ensure_system_accounts(self) -> Dict[SystemAccount, Account]:
        """Create any missing system accounts; safe to call repeatedly"""
        accounts = {}
        for system_account in SystemAccount:
            account = self.find_by_code(system_account.code)
            if account is None:
                account = self.create_account(
                    name=system_account.display_name,
                    category=system_account.category,
                    code=system_account.code,
                    is_system=True
                )
                logger.info("Created system account %s", system_account.code)
            accounts[system_account] = account
        return accounts

    def system_account(self, system_account: SystemAccount) -> Account:
        account = self.find_by_code(system_account.code)
        if account is None:
            raise RecordNotFound(f"System account {system_account.code} not found")
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.accounts_table, account_id)
        if data:
            return Account.from_dict(data)
        return None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise RecordNotFound(f"Account {account_id} not found")
        return account

    def find_by_code(self, code: str) -> Optional[Account]:
        matches = self.storage.find(self.accounts_table, {"code": code.upper()})
        if matches:
            return Account.from_dict(matches[0])
        return None

    def list_accounts(self, category: Optional[AccountCategory] = None) -> List[Account]:
        accounts = [Account.from_dict(data) for data in self.storage.load_all(self.accounts_table)]
        if category:
            accounts = [a for a in accounts if a.category == category]
        return accounts

    def total_balance(self, category: AccountCategory) -> Money:
        """Sum of cached balances for all accounts in a category"""
        total = Money.zero(self.currency)
        for account in self.list_accounts(category):
            total = total + account.balance
        return total

    def delete_account(self, account_id: str, has_postings: bool, actor: Optional[str] = None) -> None:
        """
        Delete an account

        Raises:
            SystemAccountProtected: For system accounts
            ValueError: If the account has journal lines posted to it
        """
        account = self.require_account(account_id)
        if account.is_system:
            raise SystemAccountProtected(f"System account {account.code} cannot be deleted")
        if has_postings:
            raise ValueError(f"Account {account.code} has postings and cannot be deleted")

        self.storage.delete(self.accounts_table, account_id)
        self.audit_trail.record(
            event_type=AuditEventType.ACCOUNT_DELETED,
            entity_type="account",
            entity_id=account_id,
            metadata={"code": account.code},
            actor=actor
        )

    def apply_line(self, account_id: str, debit: Money, credit: Money) -> Account:
        """
        Apply one journal line to the cached balance as an atomic
        read-modify-write; only the ledger calls this
        """
        with self.storage.atomic():
            account = self.require_account(account_id)
            account.balance = account.balance + account.signed_amount(debit, credit)
            account.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.accounts_table, account.id, account.to_dict())
            return account

    def overwrite_balance(self, account_id: str, balance: Money) -> Account:
        """Replace the cached balance; used only by reconciliation repair"""
        with self.storage.atomic():
            account = self.require_account(account_id)
            account.balance = balance
            account.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.accounts_table, account.id, account.to_dict())
            return account
