"""
Tests for payout services: calculation, planning and settlement export.
"""
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from dropship_payouts import processors
from dropship_payouts.database.models import PayoutLog, ReconciliationRecord, SettlementExport
from dropship_payouts.data_import.db_operations import (
    load_settlement_settings, save_settlement_settings, upsert_product_price, upsert_shipping_rate
)
from dropship_payouts.engine.reconciliation import ReconciliationEngine
from dropship_payouts.engine.records import DateWindow
from dropship_payouts.engine.scheduler import SettlementSettings
from dropship_payouts.exceptions import PayoutRequestError, StaleAnchorError


@pytest.fixture
def configured(db_session, add_orders, make_order):
    """One priced product, one exact rate and a delivered COD order."""
    upsert_product_price(db_session, {
        "dropshipper_email": "seller@example.com",
        "product_uid": "SKU-BOTTLE",
        "product_name": "Steel Bottle",
        "product_weight": "0.5",
        "product_cost_per_unit": "150",
    })
    upsert_shipping_rate(db_session, {
        "product_uid": "SKU-BOTTLE", "product_weight": "0.5", "shipping_provider": "Delhivery", "rate": "25",
    })
    add_orders(make_order())
    return db_session


@pytest.mark.db
def test_calculate_payouts(configured):
    result = processors.calculate_payouts(
        configured, date(2025, 7, 1), date(2025, 7, 31), date(2025, 7, 1), date(2025, 7, 31)
    )
    summary = result["summary"]
    assert summary["shipping_total"] == Decimal("25")
    assert summary["cod_total"] == Decimal("500")
    assert summary["product_cost_total"] == Decimal("150")
    assert summary["final_payable"] == Decimal("325")
    assert result["dropshipper_email"] == "all"
    assert result["rows"][0]["rate_source"] == "exact"


@pytest.mark.db
def test_calculate_payouts_rejects_inverted_window(configured):
    with pytest.raises(PayoutRequestError):
        processors.calculate_payouts(
            configured, date(2025, 7, 31), date(2025, 7, 1), date(2025, 7, 1), date(2025, 7, 31)
        )


@pytest.mark.db
def test_reversals_reduce_final_payable(configured, add_orders, make_order):
    add_orders(make_order(status="RTO", rts_date=date(2025, 7, 12)))
    ReconciliationEngine(configured).reconcile({
        "order_id": "ORD-001", "dropshipper_email": "seller@example.com", "reversal_amount": "325",
    })

    today = datetime.utcnow().date()
    result = processors.compute_payouts(
        configured,
        DateWindow(date(2025, 7, 1), date(2025, 7, 31)),
        DateWindow(today - timedelta(days=1), today),
    )
    assert result.summary.reversal_total == Decimal("325")
    assert result.summary.final_payable == Decimal("-350")
    assert len(result.adjustments) == 1


@pytest.mark.db
def test_plan_settlement_runs(configured):
    plan = processors.plan_settlement_runs(
        configured, "twice_weekly", 2, False, date(2025, 7, 1), date(2025, 7, 11)
    )

    assert plan.schedule.run_dates == [date(2025, 7, 4), date(2025, 7, 8), date(2025, 7, 11)]
    assert len(plan.schedule.skipped) == 1
    # Shipping lands in the Jul 4 run, COD and product cost in the Jul 8 run
    by_run = {run.run_date: result.summary for run, result in plan.results}
    assert by_run[date(2025, 7, 4)].shipping_total == Decimal("25")
    assert by_run[date(2025, 7, 8)].cod_total == Decimal("500")
    assert plan.totals()["final_payable"] == Decimal("325")

    data = plan.as_dict()
    assert data["summary"]["runs"] == 3
    assert data["skipped"][0]["run_date"] == "2025-07-01"


@pytest.mark.db
def test_export_settlement_advances_anchors(configured):
    export = processors.export_settlement(configured, date(2025, 7, 8))

    assert export["filename"] == "payout-report_2025-07-02_to_2025-07-08_all.xlsx"
    assert export["content"][:2] == b"PK"
    assert export["run"]["order_window"] == {"start": "2025-07-02", "end": "2025-07-08"}
    assert export["run"]["delivered_window"] == {"start": "2025-07-02", "end": "2025-07-06"}

    settings = load_settlement_settings(configured)
    assert settings.version == 1
    assert settings.last_payment_done_on == date(2025, 7, 8)
    assert settings.last_delivered_cutoff == date(2025, 7, 6)

    logged = configured.query(PayoutLog).one()
    assert logged.paid_amount == Decimal("325")
    assert logged.settlement_export_id == export["export_id"]
    assert logged.period_from == date(2025, 7, 2)
    assert configured.query(SettlementExport).one().final_payable == Decimal("325")

    # The anchors have moved past Jul 8, so there is nothing left to export for it
    with pytest.raises(PayoutRequestError):
        processors.export_settlement(configured, date(2025, 7, 8))


@pytest.mark.db
def test_export_settlement_rolls_back_on_stale_anchors(configured, monkeypatch):
    def stale(session, settings, expected_version, commit=True):
        raise StaleAnchorError(expected_version)

    monkeypatch.setattr(processors, "save_settlement_settings", stale)

    with pytest.raises(StaleAnchorError):
        processors.export_settlement(configured, date(2025, 7, 8))

    assert configured.query(SettlementExport).count() == 0
    assert configured.query(PayoutLog).count() == 0
    assert load_settlement_settings(configured).version == 0


@pytest.mark.db
def test_missing_data_and_configuration_summary(configured, add_orders, make_order):
    add_orders(make_order(order_id="ORD-002", sku="SKU-MUG", product_name="Mug", shipping_provider="Bluedart"))

    missing = processors.get_missing_data(configured)
    assert [p["product_uid"] for p in missing["missing_prices"]] == ["SKU-MUG"]
    assert [r["product_uid"] for r in missing["missing_rates"]] == ["SKU-MUG"]
    assert missing["missing_rates"][0]["default_rate"] == Decimal("25")

    summary = processors.get_configuration_summary(configured)
    assert summary["orders"] == 2
    assert summary["dropshippers"] == 1
    assert summary["settlement_settings"]["version"] == 0


@pytest.mark.db
def test_reversal_recorded_after_export_reaches_next_export(configured, add_orders, make_order):
    save_settlement_settings(configured, SettlementSettings(cutoff_offset_days=0), expected_version=0)
    first = processors.export_settlement(configured, date(2025, 7, 8))
    assert first["run"]["delivered_window"]["end"] == "2025-07-08"
    assert first["summary"]["final_payable"] == Decimal("325")

    # Returned and reconciled after the run covering it was exported
    add_orders(make_order(status="RTO", rts_date=date(2025, 7, 12)))
    record = ReconciliationEngine(configured).reconcile({
        "order_id": "ORD-001", "dropshipper_email": "seller@example.com", "reversal_amount": "325",
    })

    second = processors.export_settlement(configured, date(2025, 7, 15))
    assert second["summary"]["reversal_total"] == Decimal("325")
    assert second["summary"]["final_payable"] == Decimal("-325")
    assert configured.get(ReconciliationRecord, record.id).applied_export_id == second["export_id"]

    third = processors.export_settlement(configured, date(2025, 7, 22))
    assert third["summary"]["reversal_total"] == Decimal("0")


@pytest.mark.db
def test_stale_export_leaves_reversals_unapplied(configured, add_orders, make_order, monkeypatch):
    add_orders(make_order(status="RTO", rts_date=date(2025, 7, 12)))
    ReconciliationEngine(configured).reconcile({
        "order_id": "ORD-001", "dropshipper_email": "seller@example.com", "reversal_amount": "100",
    })

    def stale(session, settings, expected_version, commit=True):
        raise StaleAnchorError(expected_version)

    monkeypatch.setattr(processors, "save_settlement_settings", stale)
    with pytest.raises(StaleAnchorError):
        processors.export_settlement(configured, date(2025, 7, 8))

    assert len(ReconciliationEngine(configured).unapplied_reversals()) == 1


@pytest.mark.db
def test_anchored_plan_previews_unapplied_reversals(configured, add_orders, make_order):
    add_orders(make_order(status="RTO", rts_date=date(2025, 7, 12)))
    ReconciliationEngine(configured).reconcile({
        "order_id": "ORD-001", "dropshipper_email": "seller@example.com", "reversal_amount": "100",
    })

    plan = processors.plan_settlement_runs(
        configured, "twice_weekly", 2, True, date(2025, 7, 1), date(2025, 7, 11)
    )
    reversal_totals = [result.summary.reversal_total for _, result in plan.results]
    assert reversal_totals[0] == Decimal("100")
    assert all(total == Decimal("0") for total in reversal_totals[1:])


@pytest.mark.db
def test_dropshipper_filter_ignores_case(configured):
    for email in ("seller@example.com", "SELLER@Example.com"):
        result = processors.calculate_payouts(
            configured, date(2025, 7, 1), date(2025, 7, 31), date(2025, 7, 1), date(2025, 7, 31),
            dropshipper_email=email,
        )
        assert len(result["rows"]) == 1
        assert result["summary"]["final_payable"] == Decimal("325")
