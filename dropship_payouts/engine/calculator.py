"""
Payout calculation over two independent date windows.

Shipping cost accrues to the order window (by order date). COD received and
product cost accrue to the delivered window (by delivered date). An order line
appears in the output when it falls in either window.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from dropship_payouts.config import DEFAULT_PRODUCT_WEIGHT_KG, DEFAULT_CURRENCY
from dropship_payouts.engine.rates import ChargingPolicy, RateResolver, RateSource
from dropship_payouts.engine.records import (
    DateWindow, OrderRecord, ProductPriceConfig, ReversalEntry
)
from dropship_payouts.engine.status import OrderStatus, is_cod_mode

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass(frozen=True)
class PayoutRow:
    order_id: str
    waybill: Optional[str]
    product_name: str
    product_uid: str
    sku: Optional[str]
    dropshipper_email: str
    order_date: date
    delivered_date: Optional[date]
    rts_date: Optional[date]
    status: str
    normalized_status: OrderStatus
    mode: Optional[str]
    shipping_provider: str
    qty: int
    shipped_qty: int
    delivered_qty: int
    product_value: Decimal
    product_weight: Decimal
    product_cost_per_unit: Decimal
    shipping_rate: Decimal
    rate_source: RateSource
    shipping_cost: Decimal
    product_cost: Decimal
    cod_received: Decimal
    payable: Decimal
    price_configured: bool

    def as_dict(self) -> dict:
        data = asdict(self)
        data['normalized_status'] = self.normalized_status.value
        data['rate_source'] = self.rate_source.value
        return data


@dataclass(frozen=True)
class Adjustment:
    """A reversal applied to the summary. ``amount`` is negative."""
    order_id: str
    dropshipper_email: str
    product_uid: str
    reason: str
    amount: Decimal
    reference: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PayoutSummary:
    shipping_total: Decimal
    cod_total: Decimal
    product_cost_total: Decimal
    reversal_total: Decimal
    final_payable: Decimal
    orders_with_shipping_charges: int
    orders_with_product_amount: int
    orders_with_cod_amount: int
    total_orders_processed: int
    missing_price_count: int
    default_rate_count: int
    rate_source_breakdown: Dict[str, int]
    charging_policy: ChargingPolicy
    currency: str = DEFAULT_CURRENCY
    adjustments: Tuple[Adjustment, ...] = field(default_factory=tuple)

    @property
    def adjustments_total(self) -> Decimal:
        return sum((a.amount for a in self.adjustments), ZERO)

    @property
    def warnings(self) -> List[str]:
        """Data-completeness warnings; these never block a result."""
        warnings = []
        if self.missing_price_count:
            warnings.append(
                f"{self.missing_price_count} delivered order(s) have no product price configured; "
                f"product cost counted as 0"
            )
        if self.default_rate_count:
            warnings.append(
                f"{self.default_rate_count} shipped order(s) were charged a default-tier shipping rate"
            )
        return warnings

    def as_dict(self) -> dict:
        return {
            'shipping_total': self.shipping_total,
            'cod_total': self.cod_total,
            'product_cost_total': self.product_cost_total,
            'reversal_total': self.reversal_total,
            'adjustments_total': self.adjustments_total,
            'final_payable': self.final_payable,
            'orders_with_shipping_charges': self.orders_with_shipping_charges,
            'orders_with_product_amount': self.orders_with_product_amount,
            'orders_with_cod_amount': self.orders_with_cod_amount,
            'total_orders_processed': self.total_orders_processed,
            'missing_price_count': self.missing_price_count,
            'default_rate_count': self.default_rate_count,
            'rate_source_breakdown': dict(self.rate_source_breakdown),
            'charging_policy': self.charging_policy.value,
            'currency': self.currency,
        }


def matches_dropshipper(email: Optional[str], dropshipper_filter: Optional[str]) -> bool:
    if not dropshipper_filter or dropshipper_filter.strip().lower() == 'all':
        return True
    return (email or '').strip().lower() == dropshipper_filter.strip().lower()


class PayoutCalculator:
    """
    Compute per-order payout rows and an aggregate summary.

    Args:
        resolver: Shipping rate resolver
        prices: Product price configurations
        charging_policy: How resolved rates become shipping charges
        default_weight: Weight used when the price config has none
    """

    def __init__(
        self,
        resolver: RateResolver,
        prices: Iterable[ProductPriceConfig] = (),
        charging_policy: ChargingPolicy = ChargingPolicy.FLAT,
        default_weight: Decimal = DEFAULT_PRODUCT_WEIGHT_KG
    ):
        self.resolver = resolver
        self.prices = {price.key: price for price in prices}
        self.charging_policy = ChargingPolicy.parse(charging_policy)
        self.default_weight = Decimal(str(default_weight))

    def calculate(
        self,
        orders: Iterable[OrderRecord],
        order_window: DateWindow,
        delivered_window: DateWindow,
        dropshipper_filter: Optional[str] = None,
        reversals: Iterable[ReversalEntry] = ()
    ) -> Tuple[List[PayoutRow], PayoutSummary]:
        selected = sorted(
            (o for o in orders if matches_dropshipper(o.dropshipper_email, dropshipper_filter)),
            key=lambda o: o.sort_key
        )

        rows = []
        for order in selected:
            row = self._calculate_row(order, order_window, delivered_window)
            if row is not None:
                rows.append(row)

        adjustments = tuple(
            Adjustment(
                order_id=entry.order_id,
                dropshipper_email=entry.dropshipper_email,
                product_uid=entry.product_uid,
                reason=f"Delivered->{entry.rts_rto_status} (reversal)",
                amount=-entry.amount,
                reference=entry.record_id,
            )
            for entry in sorted(reversals, key=lambda r: (r.order_id, r.product_uid, r.record_id))
            if matches_dropshipper(entry.dropshipper_email, dropshipper_filter)
        )

        summary = self._summarize(rows, adjustments)
        logger.info(
            f"Calculated {summary.total_orders_processed} payout rows "
            f"(orders {order_window.start}..{order_window.end}, "
            f"delivered {delivered_window.start}..{delivered_window.end}); "
            f"final payable {summary.final_payable}"
        )
        return rows, summary

    def _calculate_row(
        self,
        order: OrderRecord,
        order_window: DateWindow,
        delivered_window: DateWindow
    ) -> Optional[PayoutRow]:
        in_order_window = order_window.contains(order.order_date)
        in_delivered_window = delivered_window.contains(order.delivered_date)
        if not (in_order_window or in_delivered_window):
            return None

        status = order.normalized_status
        price = self.prices.get(order.price_key)
        cost_per_unit = price.product_cost_per_unit if price is not None else ZERO
        weight = price.product_weight if price is not None and price.product_weight is not None else self.default_weight

        resolution = self.resolver.resolve(order.product_uid, weight, order.shipping_provider)

        shipping_cost = ZERO
        shipped_qty = 0
        if in_order_window and status is not OrderStatus.CANCELLED:
            shipping_cost = self.charging_policy.charge(resolution.rate, order.qty, weight)
            shipped_qty = order.qty

        product_cost = ZERO
        cod_received = ZERO
        delivered_qty = 0
        if in_delivered_window and status is OrderStatus.DELIVERED:
            delivered_qty = order.qty
            product_cost = cost_per_unit * Decimal(order.qty)
            if is_cod_mode(order.mode):
                cod_received = order.product_value

        return PayoutRow(
            order_id=order.order_id,
            waybill=order.waybill,
            product_name=order.product_name,
            product_uid=order.product_uid,
            sku=order.sku,
            dropshipper_email=order.dropshipper_email,
            order_date=order.order_date,
            delivered_date=order.delivered_date,
            rts_date=order.rts_date,
            status=order.status,
            normalized_status=status,
            mode=order.mode,
            shipping_provider=order.shipping_provider,
            qty=order.qty,
            shipped_qty=shipped_qty,
            delivered_qty=delivered_qty,
            product_value=order.product_value,
            product_weight=weight,
            product_cost_per_unit=cost_per_unit,
            shipping_rate=resolution.rate,
            rate_source=resolution.source,
            shipping_cost=shipping_cost,
            product_cost=product_cost,
            cod_received=cod_received,
            payable=cod_received - product_cost - shipping_cost,
            price_configured=price is not None,
        )

    def _summarize(self, rows: List[PayoutRow], adjustments: Tuple[Adjustment, ...]) -> PayoutSummary:
        shipping_total = sum((r.shipping_cost for r in rows), ZERO)
        cod_total = sum((r.cod_received for r in rows), ZERO)
        product_cost_total = sum((r.product_cost for r in rows), ZERO)
        reversal_total = -sum((a.amount for a in adjustments), ZERO)

        shipped = [r for r in rows if r.shipped_qty]
        delivered = [r for r in rows if r.delivered_qty]
        breakdown = Counter(r.rate_source.value for r in shipped)

        return PayoutSummary(
            shipping_total=shipping_total,
            cod_total=cod_total,
            product_cost_total=product_cost_total,
            reversal_total=reversal_total,
            final_payable=cod_total - product_cost_total - shipping_total - reversal_total,
            orders_with_shipping_charges=len(shipped),
            orders_with_product_amount=len(delivered),
            orders_with_cod_amount=sum(1 for r in delivered if r.cod_received > 0),
            total_orders_processed=len(rows),
            missing_price_count=sum(1 for r in delivered if not r.price_configured),
            default_rate_count=breakdown.get(RateSource.DEFAULT.value, 0),
            rate_source_breakdown={source.value: breakdown.get(source.value, 0) for source in RateSource},
            charging_policy=self.charging_policy,
            adjustments=adjustments,
        )
