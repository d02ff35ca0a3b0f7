"""
Loan ledger system wiring: builds every component from configuration and
registers the capability-checked commands.
"""

from typing import Optional
import logging

from .config import LedgerConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .accounts import AccountManager, SystemAccount
from .amortization import AmortizationCalculator, rate_from_basis_points
from .allocation import RepaymentAllocator
from .ledger import GeneralLedger
from .loans import LoanManager
from .repayments import RepaymentProcessor
from .periods import ClosedPeriodRegistry
from .closing import PeriodCloser
from .reversals import ReversalHandler
from .commands import CommandDispatcher, Capability


logger = logging.getLogger(__name__)


class LoanLedgerSystem:
    """Loan accounting core with all components initialized"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.account_manager = AccountManager(self.storage, self.audit_trail, self.config.currency)
        self.account_manager.ensure_system_accounts()

        self.closed_periods = ClosedPeriodRegistry(self.storage)
        self.ledger = GeneralLedger(
            self.storage, self.audit_trail, self.account_manager, self.closed_periods
        )
        self.calculator = AmortizationCalculator(self.config.rounding)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, self.ledger, self.calculator)
        self.allocator = RepaymentAllocator(self.config.tolerance)
        self.repayment_processor = RepaymentProcessor(
            self.storage, self.audit_trail, self.loan_manager, self.ledger, self.allocator,
            max_conflict_retries=self.config.max_conflict_retries
        )
        self.period_closer = PeriodCloser(
            self.storage, self.audit_trail, self.account_manager, self.ledger,
            self.repayment_processor, self.closed_periods
        )
        self.reversal_handler = ReversalHandler(
            self.storage, self.audit_trail, self.loan_manager, self.repayment_processor,
            self.ledger, self.closed_periods,
            max_conflict_retries=self.config.max_conflict_retries
        )

        self.dispatcher = CommandDispatcher()
        self._register_commands()
        logger.info("Loan ledger ready (storage=%s, currency=%s)",
                    type(self.storage).__name__, self.config.currency.code)

    def system_account_id(self, system_account: SystemAccount) -> str:
        return self.account_manager.system_account(system_account).id

    def preview_schedule(self, principal, interest_rate_bps, term_periods, interest_type, actor=None):
        return self.calculator.calculate(
            principal, rate_from_basis_points(interest_rate_bps), term_periods, interest_type
        )

    def delete_account(self, account_id: str, actor: Optional[str] = None) -> None:
        self.account_manager.delete_account(
            account_id, has_postings=self.ledger.has_postings(account_id), actor=actor
        )

    def _register_commands(self) -> None:
        loans = self.loan_manager
        ledger = self.ledger
        register = self.dispatcher.register

        def read_only(handler):
            return lambda actor=None, **kwargs: handler(**kwargs)

        register("preview_schedule", Capability.PREVIEW_SCHEDULE, self.preview_schedule)
        register("create_application", Capability.CREATE_LOAN, loans.create_application)
        register("resubmit_loan", Capability.CREATE_LOAN, loans.resubmit)
        register("approve_loan", Capability.APPROVE_LOAN, loans.approve)
        register("reject_loan", Capability.APPROVE_LOAN, loans.reject)
        register("reassess_loan", Capability.APPROVE_LOAN, loans.send_for_reassessment)
        register("default_loan", Capability.DEFAULT_LOAN, loans.mark_defaulted)
        register("assess_penalty", Capability.ASSESS_PENALTY, loans.assess_penalty)
        register("get_loan", Capability.VIEW_LOAN, read_only(loans.require_loan))
        register("get_schedule", Capability.VIEW_LOAN, read_only(loans.get_schedule))

        register("record_repayment", Capability.RECORD_REPAYMENT,
                 self.repayment_processor.record_repayment)
        register("reverse_repayment", Capability.REVERSE_REPAYMENT, self.reversal_handler.reverse)

        register("create_account", Capability.MANAGE_ACCOUNTS, self.account_manager.create_account)
        register("delete_account", Capability.MANAGE_ACCOUNTS, self.delete_account)
        register("post_expense", Capability.POST_EXPENSE, ledger.post_expense)
        register("post_injection", Capability.POST_EQUITY, ledger.post_injection)
        register("post_transfer", Capability.POST_ADJUSTMENT, ledger.post_transfer)
        register("post_adjustment", Capability.POST_ADJUSTMENT, ledger.post_adjustment)
        register("trial_balance", Capability.VIEW_LEDGER, read_only(ledger.trial_balance))

        register("close_books", Capability.CLOSE_BOOKS, self.period_closer.close_books)
        register("income_statement", Capability.VIEW_STATEMENTS,
                 read_only(self.period_closer.income_statement))
        register("reconcile", Capability.RECONCILE, ledger.reconcile)
        register("verify_entries", Capability.RECONCILE, read_only(ledger.verify_entries_balanced))
        register("verify_audit_trail", Capability.VIEW_AUDIT_LOG,
                 read_only(self.audit_trail.verify_integrity))

    def close(self) -> None:
        self.storage.close()
