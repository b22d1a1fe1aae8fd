"""
Tests for order status normalization.
"""
import pytest

from dropship_payouts.engine.status import (
    OrderStatus, normalize_status, parse_return_label, is_cod_mode
)


@pytest.mark.engine
@pytest.mark.parametrize("raw, expected", [
    ("Delivered", OrderStatus.DELIVERED),
    ("  DELIVERED ", OrderStatus.DELIVERED),
    ("RTO", OrderStatus.RTO),
    ("rto delivered", OrderStatus.RTO),
    ("RTO-Dispatched", OrderStatus.RTO_DISPATCHED),
    ("rto_dispatched", OrderStatus.RTO_DISPATCHED),
    ("RTS", OrderStatus.RTS),
    ("Cancelled", OrderStatus.CANCELLED),
    ("Undelivered", OrderStatus.OTHER),
    ("In Transit", OrderStatus.OTHER),
    ("", OrderStatus.OTHER),
    (None, OrderStatus.OTHER),
])
def test_normalize_status(raw, expected):
    assert normalize_status(raw) is expected


@pytest.mark.engine
def test_return_labels():
    assert OrderStatus.RTO_DISPATCHED.label == "RTO-Dispatched"
    assert OrderStatus.RTS.is_return
    assert not OrderStatus.DELIVERED.is_return
    assert parse_return_label("rto") is OrderStatus.RTO


@pytest.mark.engine
def test_parse_return_label_rejects_non_returns():
    with pytest.raises(ValueError):
        parse_return_label("Delivered")


@pytest.mark.engine
def test_is_cod_mode():
    assert is_cod_mode("COD")
    assert is_cod_mode("cod ")
    assert not is_cod_mode("Prepaid")
    assert not is_cod_mode(None)
