"""
Immutable value types the payout engine operates on.

The ORM models in ``dropship_payouts.database.models`` convert themselves to
these records so the rate resolver, calculator and scheduler never touch a
database session.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from dropship_payouts.engine.status import OrderStatus, normalize_status


def as_date(value: Union[date, datetime, None]) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass(frozen=True)
class DateWindow:
    """An inclusive calendar-date range."""
    start: date
    end: date

    def __post_init__(self):
        object.__setattr__(self, 'start', as_date(self.start))
        object.__setattr__(self, 'end', as_date(self.end))

    def contains(self, value: Union[date, datetime, None]) -> bool:
        value = as_date(value)
        if value is None:
            return False
        return self.start <= value <= self.end

    @property
    def is_empty(self) -> bool:
        return self.end < self.start

    def next_start(self) -> date:
        return self.end + timedelta(days=1)

    def as_dict(self) -> dict:
        return {'start': self.start.isoformat(), 'end': self.end.isoformat()}


@dataclass(frozen=True)
class OrderRecord:
    order_id: str
    dropshipper_email: str
    product_uid: str
    qty: int
    product_value: Decimal
    status: str
    order_date: date
    shipping_provider: str
    normalized_status: OrderStatus = None
    waybill: Optional[str] = None
    product_name: str = ''
    sku: Optional[str] = None
    mode: Optional[str] = None
    delivered_date: Optional[date] = None
    rts_date: Optional[date] = None
    upload_session_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'order_date', as_date(self.order_date))
        object.__setattr__(self, 'delivered_date', as_date(self.delivered_date))
        object.__setattr__(self, 'rts_date', as_date(self.rts_date))
        object.__setattr__(self, 'product_value', Decimal(str(self.product_value or 0)))
        if self.normalized_status is None:
            object.__setattr__(self, 'normalized_status', normalize_status(self.status))

    @property
    def price_key(self) -> tuple:
        return (self.dropshipper_email, self.product_uid)

    @property
    def sort_key(self) -> tuple:
        return (self.order_date, self.dropshipper_email, self.order_id,
                self.product_uid, self.waybill or '')


@dataclass(frozen=True)
class ProductPriceConfig:
    dropshipper_email: str
    product_uid: str
    product_cost_per_unit: Decimal
    product_weight: Optional[Decimal] = None
    product_name: str = ''
    sku: Optional[str] = None
    currency: str = 'INR'

    @property
    def key(self) -> tuple:
        return (self.dropshipper_email, self.product_uid)


@dataclass(frozen=True)
class ShippingRateConfig:
    product_uid: str
    product_weight: Decimal
    shipping_provider: str
    rate: Decimal
    currency: str = 'INR'


@dataclass(frozen=True)
class ReversalEntry:
    """A confirmed reversal folded into a payout summary."""
    record_id: str
    order_id: str
    dropshipper_email: str
    product_uid: str
    amount: Decimal
    rts_rto_status: str
    reconciled_on: Optional[datetime] = None
    original_payout_id: Optional[str] = None
