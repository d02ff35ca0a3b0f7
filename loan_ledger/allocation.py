"""
Repayment Allocation

Splits an incoming payment across a loan's outstanding penalty, interest
and principal, in that fixed order. Allocation is a pure state transition:
it returns an updated copy of the loan and never touches storage or the
ledger.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Union

from .currency import Money, require_positive
from .loans import Loan, LoanStatus
from .exceptions import InvalidLoanState, OverpaymentRejected


@dataclass(frozen=True)
class Allocation:
    """How one payment was applied; the parts always sum to amount"""
    amount: Money
    penalty_paid: Money
    interest_paid: Money
    principal_paid: Money
    overpayment: Money  # Part of principal_paid beyond the outstanding principal

    @property
    def total_allocated(self) -> Money:
        return self.penalty_paid + self.interest_paid + self.principal_paid


@dataclass(frozen=True)
class AllocationResult:
    loan: Loan
    allocation: Allocation

    @property
    def completes_loan(self) -> bool:
        return self.loan.status == LoanStatus.COMPLETED


class RepaymentAllocator:
    """
    Applies payments penalty first, then interest, then principal

    A payment larger than the total outstanding is rejected unless it is
    within ``tolerance`` (a fraction, 0.10 accepts up to 110% of the
    outstanding); the accepted surplus is booked against principal.
    """

    def __init__(self, tolerance: Union[Decimal, str] = Decimal('0.10')):
        tolerance = Decimal(tolerance)
        if tolerance < 0:
            raise ValueError("Overpayment tolerance cannot be negative")
        self.tolerance = tolerance

    def overpayment_limit(self, loan: Loan) -> Money:
        """Largest single payment the loan will accept right now"""
        return loan.total_outstanding * (Decimal('1') + self.tolerance)

    def allocate(self, loan: Loan, amount: Money) -> AllocationResult:
        """
        Allocate a payment against a loan

        Args:
            loan: Active loan with its current outstanding balances
            amount: Payment received, must be positive

        Returns:
            AllocationResult with the updated loan copy and the split

        Raises:
            InvalidAmount: If amount is not positive
            InvalidLoanState: If the loan is not active
            OverpaymentRejected: If amount exceeds the tolerance limit
        """
        require_positive(amount, "Payment")
        if amount.currency != loan.currency:
            raise ValueError(
                f"Payment currency {amount.currency.code} does not match loan currency {loan.currency.code}"
            )
        outstanding = loan.total_outstanding
        limit = self.overpayment_limit(loan)
        if loan.status == LoanStatus.COMPLETED:
            raise OverpaymentRejected(
                f"Loan {loan.id} is fully repaid, nothing is outstanding",
                amount=amount, outstanding=outstanding, limit=limit
            )
        if not loan.is_active():
            raise InvalidLoanState(f"Loan {loan.id} is {loan.status.value}, repayments need an active loan")

        if amount > limit:
            raise OverpaymentRejected(
                f"Payment {amount.to_string()} exceeds outstanding {outstanding.to_string()} "
                f"by more than the allowed tolerance (limit {limit.to_string()})",
                amount=amount, outstanding=outstanding, limit=limit
            )

        remaining = amount
        penalty_paid = min(remaining, loan.outstanding_penalty)
        remaining = remaining - penalty_paid
        interest_paid = min(remaining, loan.outstanding_interest)
        remaining = remaining - interest_paid
        # Principal takes everything left, including any tolerated surplus
        principal_paid = remaining
        zero = Money.zero(loan.currency)
        overpayment = max(principal_paid - loan.outstanding_principal, zero)

        updated = replace(
            loan,
            outstanding_penalty=loan.outstanding_penalty - penalty_paid,
            outstanding_interest=loan.outstanding_interest - interest_paid,
            outstanding_principal=max(loan.outstanding_principal - principal_paid, zero),
            amount_paid=loan.amount_paid + amount,
            overpaid=loan.overpaid + overpayment
        )
        if updated.is_settled():
            updated.status = LoanStatus.COMPLETED

        return AllocationResult(
            loan=updated,
            allocation=Allocation(
                amount=amount,
                penalty_paid=penalty_paid,
                interest_paid=interest_paid,
                principal_paid=principal_paid,
                overpayment=overpayment
            )
        )
