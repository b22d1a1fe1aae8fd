"""
Tests for the payout calculator.
"""
import pytest
from datetime import date, datetime
from decimal import Decimal

from dropship_payouts.engine.calculator import PayoutCalculator
from dropship_payouts.engine.rates import ChargingPolicy, RateResolver, RateSource
from dropship_payouts.engine.records import (
    DateWindow, OrderRecord, ProductPriceConfig, ReversalEntry, ShippingRateConfig
)

JULY = DateWindow(date(2025, 7, 1), date(2025, 7, 31))
JUNE = DateWindow(date(2025, 6, 1), date(2025, 6, 30))


def _order(**overrides):
    values = dict(
        order_id="ORD-001",
        dropshipper_email="seller@example.com",
        product_uid="SKU-BOTTLE",
        product_name="Steel Bottle",
        qty=1,
        product_value=Decimal("500"),
        mode="COD",
        status="Delivered",
        order_date=date(2025, 7, 2),
        delivered_date=date(2025, 7, 5),
        shipping_provider="Delhivery",
    )
    values.update(overrides)
    return OrderRecord(**values)


@pytest.fixture
def calculator():
    resolver = RateResolver(
        [ShippingRateConfig("SKU-BOTTLE", Decimal("0.5"), "Delhivery", Decimal("25"))],
        default_rates={"Bluedart": Decimal("30")},
        global_default=Decimal("25"),
    )
    prices = [
        ProductPriceConfig(
            dropshipper_email="seller@example.com",
            product_uid="SKU-BOTTLE",
            product_cost_per_unit=Decimal("150"),
            product_weight=Decimal("0.5"),
        )
    ]
    return PayoutCalculator(resolver, prices)


@pytest.mark.engine
def test_shipping_charged_at_exact_rate(calculator):
    order = _order(qty=2, mode="Prepaid", delivered_date=None, status="In Transit")
    rows, summary = calculator.calculate([order], JULY, JULY)

    assert len(rows) == 1
    assert rows[0].shipping_cost == Decimal("50")
    assert rows[0].rate_source is RateSource.EXACT
    assert summary.shipping_total == Decimal("50")
    assert summary.orders_with_shipping_charges == 1
    assert summary.rate_source_breakdown == {"exact": 1, "fallback": 0, "default": 0}


@pytest.mark.engine
def test_delivered_cod_order_outside_order_window(calculator):
    # Ordered in June, delivered in July: only COD and product cost count
    order = _order(order_date=date(2025, 6, 28), delivered_date=date(2025, 7, 3))
    rows, summary = calculator.calculate([order], JULY, JULY)

    row = rows[0]
    assert row.shipping_cost == Decimal("0")
    assert row.cod_received == Decimal("500")
    assert row.product_cost == Decimal("150")
    assert row.payable == Decimal("350")
    assert summary.final_payable == Decimal("350")
    assert summary.orders_with_cod_amount == 1


@pytest.mark.engine
def test_order_only_in_order_window_gets_no_cod(calculator):
    order = _order(delivered_date=date(2025, 8, 2))
    rows, summary = calculator.calculate([order], JULY, JULY)

    assert rows[0].shipping_cost == Decimal("25")
    assert rows[0].cod_received == Decimal("0")
    assert rows[0].product_cost == Decimal("0")
    assert summary.final_payable == Decimal("-25")


@pytest.mark.engine
def test_orders_outside_both_windows_are_excluded(calculator):
    order = _order(order_date=date(2025, 5, 2), delivered_date=date(2025, 5, 5))
    rows, summary = calculator.calculate([order], JULY, JULY)
    assert rows == []
    assert summary.total_orders_processed == 0
    assert summary.final_payable == Decimal("0")


@pytest.mark.engine
def test_cancelled_order_has_no_shipping(calculator):
    order = _order(status="Cancelled", delivered_date=None)
    rows, summary = calculator.calculate([order], JULY, JULY)
    assert rows[0].shipping_cost == Decimal("0")
    assert summary.orders_with_shipping_charges == 0


@pytest.mark.engine
def test_returned_order_gets_no_cod_or_product_cost(calculator):
    order = _order(status="RTO", delivered_date=date(2025, 7, 5))
    rows, _ = calculator.calculate([order], JUNE, JULY)
    assert rows[0].cod_received == Decimal("0")
    assert rows[0].product_cost == Decimal("0")


@pytest.mark.engine
def test_missing_price_counts_zero_and_warns(calculator):
    order = _order(product_uid="SKU-UNPRICED", shipping_provider="Bluedart")
    rows, summary = calculator.calculate([order], JULY, JULY)

    row = rows[0]
    assert row.product_cost == Decimal("0")
    assert not row.price_configured
    assert row.product_weight == Decimal("0.5")
    assert row.rate_source is RateSource.DEFAULT
    assert row.shipping_cost == Decimal("30")
    assert summary.missing_price_count == 1
    assert summary.default_rate_count == 1
    assert len(summary.warnings) == 2


@pytest.mark.engine
def test_per_kg_policy():
    resolver = RateResolver([ShippingRateConfig("SKU-HEAVY", Decimal("2"), "Delhivery", Decimal("20"))])
    prices = [ProductPriceConfig("seller@example.com", "SKU-HEAVY", Decimal("100"), Decimal("2"))]
    calculator = PayoutCalculator(resolver, prices, charging_policy=ChargingPolicy.PER_KG)

    rows, summary = calculator.calculate([_order(product_uid="SKU-HEAVY", qty=3)], JULY, JULY)
    assert rows[0].shipping_cost == Decimal("120")
    assert summary.charging_policy is ChargingPolicy.PER_KG


@pytest.mark.engine
def test_dropshipper_filter(calculator):
    orders = [
        _order(order_id="A-1"),
        _order(order_id="B-1", dropshipper_email="other@example.com"),
    ]
    rows, _ = calculator.calculate(orders, JULY, JULY, dropshipper_filter="SELLER@example.com")
    assert [row.order_id for row in rows] == ["A-1"]

    rows, _ = calculator.calculate(orders, JULY, JULY, dropshipper_filter="all")
    assert len(rows) == 2


@pytest.mark.engine
def test_calculation_is_deterministic(calculator):
    orders = [
        _order(order_id="ORD-003", order_date=date(2025, 7, 9)),
        _order(order_id="ORD-001"),
        _order(order_id="ORD-002", order_date=date(2025, 7, 2), mode="Prepaid"),
    ]
    first = calculator.calculate(orders, JULY, JULY)
    second = calculator.calculate(list(reversed(orders)), JULY, JULY)

    assert first == second
    assert [row.order_id for row in first[0]] == ["ORD-001", "ORD-002", "ORD-003"]


@pytest.mark.engine
def test_reversals_become_adjustments(calculator):
    orders = [_order(), _order(order_id="ORD-002", qty=2)]
    reversal = ReversalEntry(
        record_id="rec-1",
        order_id="ORD-OLD",
        dropshipper_email="seller@example.com",
        product_uid="SKU-BOTTLE",
        amount=Decimal("350"),
        rts_rto_status="RTO",
        reconciled_on=datetime(2025, 7, 10),
    )
    rows, summary = calculator.calculate(orders, JULY, JULY, reversals=[reversal])

    assert summary.reversal_total == Decimal("350")
    assert summary.adjustments[0].amount == Decimal("-350")
    assert summary.adjustments[0].reason == "Delivered->RTO (reversal)"
    assert sum(row.payable for row in rows) + summary.adjustments_total == summary.final_payable
    assert summary.final_payable == (
        summary.cod_total - summary.product_cost_total - summary.shipping_total - summary.reversal_total
    )
