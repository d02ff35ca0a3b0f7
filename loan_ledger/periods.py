"""
Accounting Periods

Calendar-month period keys and the registry of closed periods. A closed
period is a permanent lock: the ledger refuses any entry dated inside it.
"""

from datetime import date, datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
import calendar
import re

from .currency import Money, Currency
from .storage import StorageInterface


_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


class PeriodState(Enum):
    """Lifecycle of an accounting period"""
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"  # Terminal


def month_key(value: Union[str, date]) -> str:
    """
    Normalize a month to its "YYYY-MM" key

    Args:
        value: A date inside the month, or a "YYYY-MM" string

    Raises:
        ValueError: For malformed month strings
    """
    if isinstance(value, date):
        return f"{value.year:04d}-{value.month:02d}"
    match = _MONTH_PATTERN.match(value or "")
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValueError(f"Month must be formatted YYYY-MM, got {value!r}")
    return value


def month_bounds(month: str) -> Tuple[date, date]:
    """First and last day of a "YYYY-MM" month"""
    month = month_key(month)
    year, number = int(month[:4]), int(month[5:])
    last_day = calendar.monthrange(year, number)[1]
    return date(year, number, 1), date(year, number, last_day)


@dataclass
class ClosedPeriod:
    """Snapshot written when a month's books are closed"""
    month: str
    closed_at: datetime
    net_profit: Money
    total_assets: Money
    total_liabilities: Money
    closed_by: Optional[str] = None
    closing_entry_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'id': self.month,
            'month': self.month,
            'closed_at': self.closed_at.isoformat(),
            'currency': self.net_profit.currency.code,
            'net_profit': str(self.net_profit.amount),
            'total_assets': str(self.total_assets.amount),
            'total_liabilities': str(self.total_liabilities.amount),
            'closed_by': self.closed_by,
            'closing_entry_id': self.closing_entry_id
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ClosedPeriod':
        currency = Currency[data['currency']]
        return cls(
            month=data['month'],
            closed_at=datetime.fromisoformat(data['closed_at']),
            net_profit=Money(Decimal(data['net_profit']), currency),
            total_assets=Money(Decimal(data['total_assets']), currency),
            total_liabilities=Money(Decimal(data['total_liabilities']), currency),
            closed_by=data.get('closed_by'),
            closing_entry_id=data.get('closing_entry_id')
        )


class ClosedPeriodRegistry:
    """Append-only table of closed months"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "closed_periods"

    def is_closed(self, value: Union[str, date]) -> bool:
        return self.storage.exists(self.table_name, month_key(value))

    def get(self, value: Union[str, date]) -> Optional[ClosedPeriod]:
        data = self.storage.load(self.table_name, month_key(value))
        if data:
            return ClosedPeriod.from_dict(data)
        return None

    def add(self, period: ClosedPeriod) -> None:
        self.storage.insert(self.table_name, period.month, period.to_dict())

    def list(self) -> List[ClosedPeriod]:
        periods = [ClosedPeriod.from_dict(d) for d in self.storage.load_all(self.table_name)]
        periods.sort(key=lambda p: p.month)
        return periods
