"""
Amortization Module

Pure repayment-schedule calculation for flat-rate and reducing-balance loans.
Nothing here touches storage: identical inputs always produce an identical
schedule, so schedules are recomputed on demand rather than stored.

Rounding residuals are absorbed by the final period, so the scheduled
principal always sums to the loan principal exactly and a reducing-balance
schedule always closes at zero.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple, Union

from .currency import Money, quantize, require_positive
from .exceptions import InvalidTerm


class InterestType(Enum):
    """How interest is charged over the life of a loan"""
    FLAT = "flat"          # Rate applied to the original principal every period
    REDUCING = "reducing"  # Rate applied to the declining balance (annuity)


def rate_from_basis_points(basis_points: int) -> Decimal:
    """Convert a per-period rate in basis points to percent (500 -> 5)"""
    return Decimal(basis_points) / Decimal('100')


def rate_to_basis_points(rate_percent: Decimal) -> int:
    """Convert a per-period percent rate to whole basis points (5 -> 500)"""
    return int((Decimal(rate_percent) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class AmortizationScheduleEntry:
    """Single period of an amortization schedule"""
    period: int
    opening_balance: Money
    principal_due: Money
    interest_due: Money
    closing_balance: Money

    @property
    def installment(self) -> Money:
        """Total due this period"""
        return self.principal_due + self.interest_due


@dataclass(frozen=True)
class AmortizationResult:
    """Schedule and totals for one set of loan terms"""
    principal: Money
    rate: Decimal
    term_periods: int
    interest_type: InterestType
    schedule: Tuple[AmortizationScheduleEntry, ...]
    monthly_installment: Money
    total_interest: Money
    total_payable: Money

    @property
    def total_principal_scheduled(self) -> Money:
        total = Money.zero(self.principal.currency)
        for entry in self.schedule:
            total = total + entry.principal_due
        return total


class AmortizationCalculator:
    """
    Computes repayment schedules from loan terms

    Rates are percent per period (5 means 5% of the relevant balance each
    period). All intermediate math is Decimal; results are quantized to the
    currency precision with the configured rounding mode.
    """

    def __init__(self, rounding: str = ROUND_HALF_UP):
        self.rounding = rounding

    def calculate(
        self,
        principal: Money,
        rate: Union[Decimal, int, str],
        term_periods: int,
        interest_type: InterestType
    ) -> AmortizationResult:
        """
        Compute the schedule, installment and totals

        Args:
            principal: Amount lent, must be positive
            rate: Interest rate in percent per period, must be >= 0
            term_periods: Number of repayment periods, must be >= 1
            interest_type: FLAT or REDUCING

        Returns:
            AmortizationResult with a schedule of exactly term_periods entries

        Raises:
            InvalidTerm: If term_periods is not a positive integer or rate is invalid
            InvalidAmount: If principal is not positive
        """
        require_positive(principal, "Principal")
        self._validate_term(term_periods)
        rate = self._validate_rate(rate)
        interest_type = InterestType(interest_type)

        if interest_type == InterestType.FLAT:
            schedule, installment, total_interest = self._flat_schedule(principal, rate, term_periods)
        else:
            schedule, installment, total_interest = self._reducing_schedule(principal, rate, term_periods)

        return AmortizationResult(
            principal=principal,
            rate=rate,
            term_periods=term_periods,
            interest_type=interest_type,
            schedule=tuple(schedule),
            monthly_installment=installment,
            total_interest=total_interest,
            total_payable=principal + total_interest
        )

    def _money(self, value: Decimal, like: Money) -> Money:
        return Money(quantize(value, like.currency, self.rounding), like.currency)

    @staticmethod
    def _validate_term(term_periods: int) -> None:
        if isinstance(term_periods, bool) or not isinstance(term_periods, int):
            raise InvalidTerm(f"Term must be a whole number of periods, got {term_periods!r}")
        if term_periods < 1:
            raise InvalidTerm(f"Term must be at least 1 period, got {term_periods}")

    @staticmethod
    def _validate_rate(rate) -> Decimal:
        if isinstance(rate, (float, bool)):
            raise InvalidTerm("Interest rate must be a Decimal, int or string")
        try:
            value = Decimal(rate)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidTerm(f"Cannot interpret interest rate {rate!r}")
        if not value.is_finite() or value < 0:
            raise InvalidTerm(f"Interest rate must be a finite non-negative percentage, got {rate}")
        return value

    def _flat_schedule(
        self, principal: Money, rate: Decimal, term: int
    ) -> Tuple[List[AmortizationScheduleEntry], Money, Money]:
        """Interest on the original principal for every period"""
        zero = Money.zero(principal.currency)
        periodic_rate = rate / Decimal('100')

        total_interest = self._money(principal.amount * periodic_rate * term, principal)
        installment = self._money((principal + total_interest).amount / term, principal)
        principal_share = self._money(principal.amount / term, principal)

        schedule = []
        opening = principal
        interest_scheduled = zero
        for period in range(1, term + 1):
            if period == term:
                principal_due = opening
                interest_due = total_interest - interest_scheduled
            else:
                principal_due = min(principal_share, opening)
                # Remainder of the installment goes to interest, never past the total
                interest_due = min(installment - principal_due, total_interest - interest_scheduled)
                interest_due = max(interest_due, zero)

            closing = opening - principal_due
            schedule.append(AmortizationScheduleEntry(
                period=period,
                opening_balance=opening,
                principal_due=principal_due,
                interest_due=interest_due,
                closing_balance=closing
            ))
            interest_scheduled = interest_scheduled + interest_due
            opening = closing

        return schedule, installment, total_interest

    def _reducing_schedule(
        self, principal: Money, rate: Decimal, term: int
    ) -> Tuple[List[AmortizationScheduleEntry], Money, Money]:
        """Standard annuity on the declining balance"""
        zero = Money.zero(principal.currency)
        periodic_rate = rate / Decimal('100')

        if periodic_rate == 0:
            installment = self._money(principal.amount / term, principal)
        else:
            # P * r * (1+r)^n / ((1+r)^n - 1)
            factor = (Decimal('1') + periodic_rate) ** term
            installment = self._money(
                principal.amount * periodic_rate * factor / (factor - Decimal('1')),
                principal
            )

        schedule = []
        opening = principal
        total_interest = zero
        for period in range(1, term + 1):
            interest_due = self._money(opening.amount * periodic_rate, principal)
            if period == term:
                # Final period clears whatever rounding left behind
                principal_due = opening
            else:
                principal_due = installment - interest_due
                if principal_due > opening:
                    principal_due = opening
                if principal_due.is_negative():
                    principal_due = zero

            closing = opening - principal_due
            schedule.append(AmortizationScheduleEntry(
                period=period,
                opening_balance=opening,
                principal_due=principal_due,
                interest_due=interest_due,
                closing_balance=closing
            ))
            total_interest = total_interest + interest_due
            opening = closing

        return schedule, installment, total_interest
