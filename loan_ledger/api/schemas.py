"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal, InvalidOperation
from datetime import date
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..currency import Money, Currency
from ..exceptions import InvalidAmount
from ..amortization import AmortizationResult
from ..loans import Loan
from ..repayments import Repayment
from ..accounts import Account
from ..ledger import JournalEntry
from ..periods import ClosedPeriod
from ..closing import IncomeStatement


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (MWK, USD, etc.)")

    def to_money(self) -> Money:
        try:
            currency = Currency[self.currency.upper()]
        except KeyError:
            raise InvalidAmount(f"Unsupported currency: {self.currency}")
        try:
            amount = Decimal(self.amount)
            exact = not amount.is_finite() or amount == amount.quantize(currency.quantum)
        except InvalidOperation:
            raise InvalidAmount(f"Cannot interpret {self.amount!r} as an amount")
        # Request amounts are never rounded
        if not exact:
            raise InvalidAmount(
                f"{self.amount} has more than {currency.precision} decimal places for {currency.code}"
            )
        return Money(amount, currency)

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


def money_dict(money: Optional[Money]) -> Optional[Dict[str, str]]:
    if money is None:
        return None
    return MoneyModel.from_money(money).model_dump()


# Loan schemas
class ScheduleRequest(BaseModel):
    principal: MoneyModel
    interest_rate_bps: int = Field(..., description="Rate per period in basis points, 500 = 5%")
    term_periods: int
    interest_type: str = Field("flat", description="flat or reducing")


class CreateLoanRequest(ScheduleRequest):
    borrower_id: str


class ApproveLoanRequest(BaseModel):
    source_account_id: Optional[str] = None  # Defaults to the CASH system account
    disbursement_date: Optional[date] = None


class LoanDecisionRequest(BaseModel):
    reason: str


class PenaltyRequest(BaseModel):
    amount: MoneyModel
    reason: str


# Repayment schemas
class RepaymentRequest(BaseModel):
    loan_id: str
    amount: MoneyModel
    target_account_id: Optional[str] = None  # Defaults to the CASH system account
    payment_date: Optional[date] = None
    idempotency_key: Optional[str] = None


class ReversalRequest(BaseModel):
    reason: str


# Ledger schemas
class CreateAccountRequest(BaseModel):
    name: str
    category: str = Field(..., description="asset, liability, equity, income or expense")
    code: Optional[str] = None


class ExpenseRequest(BaseModel):
    expense_account_id: str
    amount: MoneyModel
    description: str
    paid_from_account_id: Optional[str] = None
    entry_date: Optional[date] = None
    reference_id: Optional[str] = None


class InjectionRequest(BaseModel):
    amount: MoneyModel
    equity_account_id: Optional[str] = None  # Defaults to CAPITAL
    to_account_id: Optional[str] = None      # Defaults to CASH
    entry_date: Optional[date] = None
    description: str = "Capital injection"


class TransferRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: MoneyModel
    description: str = "Transfer"
    entry_date: Optional[date] = None


class CloseBooksRequest(BaseModel):
    target_equity_account_id: Optional[str] = None  # Defaults to RETAINED_EARNINGS


# Response builders

def schedule_response(result: AmortizationResult) -> Dict[str, Any]:
    return {
        "principal": money_dict(result.principal),
        "rate_percent": str(result.rate),
        "term_periods": result.term_periods,
        "interest_type": result.interest_type.value,
        "monthly_installment": money_dict(result.monthly_installment),
        "total_interest": money_dict(result.total_interest),
        "total_payable": money_dict(result.total_payable),
        "schedule": [
            {
                "period": entry.period,
                "opening_balance": money_dict(entry.opening_balance),
                "principal_due": money_dict(entry.principal_due),
                "interest_due": money_dict(entry.interest_due),
                "installment": money_dict(entry.installment),
                "closing_balance": money_dict(entry.closing_balance)
            }
            for entry in result.schedule
        ]
    }


def loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "borrower_id": loan.borrower_id,
        "status": loan.status.value,
        "principal": money_dict(loan.principal),
        "interest_rate_bps": loan.interest_rate_bps,
        "interest_type": loan.interest_type.value,
        "term_periods": loan.term_periods,
        "disbursement_date": loan.disbursement_date.isoformat() if loan.disbursement_date else None,
        "monthly_installment": money_dict(loan.monthly_installment),
        "total_payable": money_dict(loan.total_payable),
        "outstanding_principal": money_dict(loan.outstanding_principal),
        "outstanding_interest": money_dict(loan.outstanding_interest),
        "outstanding_penalty": money_dict(loan.outstanding_penalty),
        "amount_paid": money_dict(loan.amount_paid),
        "decision_note": loan.decision_note
    }


def repayment_response(repayment: Repayment) -> Dict[str, Any]:
    return {
        "id": repayment.id,
        "loan_id": repayment.loan_id,
        "amount_paid": money_dict(repayment.amount_paid),
        "principal_paid": money_dict(repayment.principal_paid),
        "interest_paid": money_dict(repayment.interest_paid),
        "penalty_paid": money_dict(repayment.penalty_paid),
        "overpayment": money_dict(repayment.overpayment),
        "payment_date": repayment.payment_date.isoformat(),
        "journal_entry_id": repayment.journal_entry_id,
        "reversed": repayment.reversed,
        "reversal_entry_id": repayment.reversal_entry_id
    }


def account_response(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "code": account.code,
        "name": account.name,
        "category": account.category.value,
        "balance": money_dict(account.balance),
        "is_system": account.is_system
    }


def entry_response(entry: JournalEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "entry_date": entry.entry_date.isoformat(),
        "reference_type": entry.reference_type.value,
        "reference_id": entry.reference_id,
        "description": entry.description,
        "reverses": entry.reverses,
        "lines": [
            {
                "account_id": line.account_id,
                "debit": money_dict(line.debit_amount),
                "credit": money_dict(line.credit_amount),
                "description": line.description
            }
            for line in entry.lines
        ]
    }


def closed_period_response(period: ClosedPeriod) -> Dict[str, Any]:
    return {
        "month": period.month,
        "closed_at": period.closed_at.isoformat(),
        "net_profit": money_dict(period.net_profit),
        "total_assets": money_dict(period.total_assets),
        "total_liabilities": money_dict(period.total_liabilities),
        "closed_by": period.closed_by,
        "closing_entry_id": period.closing_entry_id
    }


def income_statement_response(statement: IncomeStatement) -> Dict[str, Any]:
    return {
        "month": statement.month,
        "interest_income": money_dict(statement.interest_income),
        "penalty_income": money_dict(statement.penalty_income),
        "revenue": money_dict(statement.revenue),
        "expenses": money_dict(statement.expenses),
        "expense_breakdown": {code: money_dict(m) for code, m in statement.expense_breakdown.items()},
        "net_profit": money_dict(statement.net_profit)
    }
