"""
Error Kinds

Every failure the accounting core reports. Input validation errors also
derive from ValueError so callers that already catch ValueError keep working.
"""

from typing import Callable, Optional, TypeVar
import logging


logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerError(Exception):
    """Base class for all loan ledger errors"""
    retryable = False


# Validation errors (recovered at the call boundary and shown to the user)

class InvalidTerm(LedgerError, ValueError):
    """Loan term is not a positive whole number of periods"""


class InvalidAmount(LedgerError, ValueError):
    """Monetary amount is non-positive, non-finite or not a Decimal-safe value"""


class OverpaymentRejected(LedgerError, ValueError):
    """Payment exceeds total outstanding by more than the configured tolerance"""

    def __init__(self, message: str, amount=None, outstanding=None, limit=None):
        super().__init__(message)
        self.amount = amount
        self.outstanding = outstanding
        self.limit = limit


class InvalidLoanState(LedgerError, ValueError):
    """Operation not allowed in the loan's current status"""


class InvalidAccount(LedgerError, ValueError):
    """Account has the wrong category for the requested posting"""


# Ledger invariants

class UnbalancedEntry(LedgerError):
    """Journal entry debits do not equal credits; always an internal bug"""


class PeriodClosed(LedgerError):
    """Entry date falls inside a closed accounting period"""

    def __init__(self, month: str, message: Optional[str] = None):
        super().__init__(message or f"Accounting period {month} is closed")
        self.month = month


class PeriodAlreadyClosed(LedgerError):
    """closeBooks was called for a month that is already closed"""

    def __init__(self, month: str):
        super().__init__(f"Accounting period {month} is already closed")
        self.month = month


class AlreadyReversed(LedgerError):
    """Repayment has already been reversed"""


class SystemAccountProtected(LedgerError):
    """System accounts cannot be deleted"""


class RecordNotFound(LedgerError, LookupError):
    """Referenced loan, account, repayment or entry does not exist"""


class PermissionDenied(LedgerError):
    """Actor's role lacks the capability for a command"""


class ConcurrencyConflict(LedgerError):
    """Another writer changed the record first; safe to retry"""
    retryable = True


def retry_on_conflict(operation: Callable[[], T], attempts: int = 3) -> T:
    """
    Run an operation, retrying on ConcurrencyConflict

    Args:
        operation: Zero-argument callable performing the whole business event
        attempts: Total number of tries before the conflict is surfaced

    Returns:
        Whatever the operation returns

    Raises:
        ConcurrencyConflict: If every attempt conflicted
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyConflict:
            if attempt == attempts:
                logger.warning("Giving up after %d conflicting attempts", attempts)
                raise
            logger.info("Concurrency conflict, retrying (attempt %d of %d)", attempt, attempts)
