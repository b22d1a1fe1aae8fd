"""
Tests for configuration store, order ingestion and settings persistence.
"""
import io
import pytest
from datetime import date, datetime
from decimal import Decimal
import pandas as pd

from dropship_payouts.database.models import DefaultShippingRate, Order, ProductPrice, ShippingRate
from dropship_payouts.data_import.db_operations import (
    bulk_upsert_settings, delete_product_price, insert_orders, load_settlement_settings,
    save_settlement_settings, seed_default_shipping_rates, upsert_default_shipping_rate,
    upsert_product_price, upsert_shipping_rate
)
from dropship_payouts.data_import.settings_import import import_settings
from dropship_payouts.engine.scheduler import Frequency, SettlementSettings
from dropship_payouts.engine.status import OrderStatus
from dropship_payouts.exceptions import PayoutRequestError, StaleAnchorError


@pytest.mark.db
def test_upsert_product_price_last_write_wins(db_session):
    data = {
        "dropshipper_email": "seller@example.com",
        "product_uid": "SKU-BOTTLE",
        "product_name": "Steel Bottle",
        "product_cost_per_unit": "150",
        "product_weight": "0.5",
    }
    upsert_product_price(db_session, data)
    upsert_product_price(db_session, {**data, "product_cost_per_unit": "175"})

    prices = db_session.query(ProductPrice).all()
    assert len(prices) == 1
    assert prices[0].product_cost_per_unit == Decimal("175")
    assert prices[0].product_weight == Decimal("0.5")

    assert delete_product_price(db_session, "seller@example.com", "SKU-BOTTLE")
    assert not delete_product_price(db_session, "seller@example.com", "SKU-BOTTLE")


@pytest.mark.db
def test_upsert_product_price_rejects_negative_cost(db_session):
    with pytest.raises(PayoutRequestError):
        upsert_product_price(db_session, {
            "dropshipper_email": "seller@example.com", "product_uid": "SKU-1", "product_cost_per_unit": "-1",
        })


@pytest.mark.db
def test_upsert_shipping_rate_keyed_by_weight_and_provider(db_session):
    base = {"product_uid": "SKU-BOTTLE", "shipping_provider": "Delhivery", "rate": "25"}
    upsert_shipping_rate(db_session, {**base, "product_weight": "0.5"})
    upsert_shipping_rate(db_session, {**base, "product_weight": "0.5", "rate": "27"})
    upsert_shipping_rate(db_session, {**base, "product_weight": "1.0", "rate": "40"})

    rates = {(r.product_weight, r.rate) for r in db_session.query(ShippingRate).all()}
    assert rates == {(Decimal("0.5"), Decimal("27")), (Decimal("1.0"), Decimal("40"))}


@pytest.mark.db
def test_default_rates_seed_and_upsert(db_session):
    assert seed_default_shipping_rates(db_session) == 2
    assert seed_default_shipping_rates(db_session) == 0

    upsert_default_shipping_rate(db_session, "Bluedart", "35")
    table = DefaultShippingRate.as_table(db_session)
    assert table == {"Delhivery": Decimal("25"), "Bluedart": Decimal("35")}


@pytest.mark.db
def test_bulk_upsert_settings_is_all_or_nothing(db_session):
    prices = [{"dropshipper_email": "seller@example.com", "product_uid": "SKU-1", "product_cost_per_unit": 10}]
    rates = [{"product_uid": "SKU-1", "product_weight": "x", "shipping_provider": "Delhivery", "rate": 25}]

    with pytest.raises(PayoutRequestError):
        bulk_upsert_settings(db_session, prices, rates)
    assert db_session.query(ProductPrice).count() == 0

    rates[0]["product_weight"] = "0.5"
    assert bulk_upsert_settings(db_session, prices, rates) == {"product_prices": 1, "shipping_rates": 1}


@pytest.mark.db
def test_import_settings_workbook(db_session):
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        pd.DataFrame([{
            "Dropshipper Email": "seller@example.com",
            "Product UID": "SKU-BOTTLE",
            "Product Name": "Steel Bottle",
            "Product Weight": 0.5,
            "Product Cost Per Unit": 150,
        }]).to_excel(writer, sheet_name="Product Prices", index=False)
        pd.DataFrame([
            {"Product UID": "SKU-BOTTLE", "Product Weight": 0.5, "Shipping Provider": "Delhivery", "Shipping Rate": 25},
            {"Product UID": "SKU-BOTTLE", "Product Weight": 1.0, "Shipping Provider": "Delhivery", "Shipping Rate": 40},
        ]).to_excel(writer, sheet_name="Shipping Rates", index=False)

    counts = import_settings(db_session, output.getvalue())

    assert counts == {"product_prices": 1, "shipping_rates": 2}
    price = db_session.query(ProductPrice).one()
    assert price.product_cost_per_unit == Decimal("150")


@pytest.mark.db
def test_import_settings_reports_missing_columns(db_session):
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        pd.DataFrame([{"Dropshipper Email": "seller@example.com"}]).to_excel(
            writer, sheet_name="Product Prices", index=False
        )
    with pytest.raises(PayoutRequestError, match="missing column"):
        import_settings(db_session, output.getvalue())


@pytest.mark.db
def test_insert_orders_normalizes_status_and_upserts(db_session, make_order):
    insert_orders(db_session, [make_order(status="Delivered")], "upload-1")
    insert_orders(db_session, [make_order(status="RTO Initiated", rts_date="2025-07-12")], "upload-1")
    insert_orders(db_session, [make_order(status="Delivered")], "upload-2")

    orders = db_session.query(Order).order_by(Order.upload_session_id).all()
    assert len(orders) == 2
    assert orders[0].status == "RTO Initiated"
    assert orders[0].status_code == OrderStatus.RTO.value
    assert orders[0].rts_date == datetime(2025, 7, 12)
    assert orders[1].status_code == OrderStatus.DELIVERED.value


@pytest.mark.db
def test_insert_orders_falls_back_to_product_name(db_session, make_order):
    insert_orders(db_session, [make_order(sku=None)], "upload-1")
    assert db_session.query(Order).one().product_uid == "Steel Bottle"


@pytest.mark.db
def test_insert_orders_rolls_back_bad_batch(db_session, make_order):
    with pytest.raises(PayoutRequestError):
        insert_orders(db_session, [make_order(), make_order(order_id="ORD-002", order_date=None)], "upload-1")
    assert db_session.query(Order).count() == 0


@pytest.mark.db
def test_settlement_settings_defaults_and_save(db_session):
    settings = load_settlement_settings(db_session)
    assert settings.version == 0
    assert settings.frequency is Frequency.MONTHLY

    saved = save_settlement_settings(
        db_session,
        SettlementSettings(frequency="twice_weekly", last_payment_done_on=date(2025, 7, 4)),
        expected_version=0,
    )
    assert saved.version == 1

    loaded = load_settlement_settings(db_session)
    assert loaded.frequency is Frequency.TWICE_WEEKLY
    assert loaded.last_payment_done_on == date(2025, 7, 4)
    assert loaded.version == 1


@pytest.mark.db
def test_settlement_settings_stale_version(db_session):
    save_settlement_settings(db_session, SettlementSettings(), expected_version=0)
    save_settlement_settings(db_session, SettlementSettings(cutoff_offset_days=3), expected_version=1)

    with pytest.raises(StaleAnchorError):
        save_settlement_settings(db_session, SettlementSettings(cutoff_offset_days=5), expected_version=1)
    assert load_settlement_settings(db_session).cutoff_offset_days == 3

    with pytest.raises(StaleAnchorError):
        save_settlement_settings(db_session, SettlementSettings(), expected_version=0)


@pytest.mark.db
def test_dropshipper_emails_stored_lower_case(db_session, make_order):
    insert_orders(db_session, [make_order(dropshipper_email=" Seller@Example.COM ")], "upload-1")
    upsert_product_price(db_session, {
        "dropshipper_email": "SELLER@example.com", "product_uid": "SKU-BOTTLE", "product_cost_per_unit": "150",
    })

    assert db_session.query(Order).one().dropshipper_email == "seller@example.com"
    assert db_session.query(ProductPrice).one().dropshipper_email == "seller@example.com"
    assert delete_product_price(db_session, "Seller@Example.com", "SKU-BOTTLE")
