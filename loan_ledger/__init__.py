"""
Loan Ledger

Loan accounting core for a microfinance lender: amortization schedules,
repayment allocation, a double-entry ledger with period close, and
auditable repayment reversal. All money math uses Decimal precision.
"""

__version__ = "1.0.0"
