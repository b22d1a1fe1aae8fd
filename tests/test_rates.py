"""
Tests for shipping rate resolution.
"""
import pytest
from decimal import Decimal

from dropship_payouts.engine.rates import ChargingPolicy, RateResolver, RateSource
from dropship_payouts.engine.records import ShippingRateConfig


def _rate(weight, rate, provider="Delhivery", uid="SKU-BOTTLE"):
    return ShippingRateConfig(
        product_uid=uid,
        product_weight=Decimal(weight),
        shipping_provider=provider,
        rate=Decimal(rate),
    )


@pytest.mark.engine
def test_exact_rate_wins_over_fallback_regardless_of_order():
    configs = [_rate("1.0", "40"), _rate("0.5", "25"), _rate("2.0", "60")]
    for ordering in (configs, list(reversed(configs))):
        resolver = RateResolver(ordering, default_rates={"Delhivery": Decimal("99")})
        resolution = resolver.resolve("SKU-BOTTLE", Decimal("0.50"), "Delhivery")
        assert resolution.rate == Decimal("25")
        assert resolution.source is RateSource.EXACT


@pytest.mark.engine
def test_fallback_picks_nearest_weight():
    resolver = RateResolver([_rate("0.5", "25"), _rate("2.0", "60")])
    resolution = resolver.resolve("SKU-BOTTLE", Decimal("1.5"), "Delhivery")
    assert resolution.source is RateSource.FALLBACK
    assert resolution.rate == Decimal("60")


@pytest.mark.engine
def test_fallback_tie_goes_to_lighter_weight():
    resolver = RateResolver([_rate("2.0", "60"), _rate("1.0", "40")])
    resolution = resolver.resolve("SKU-BOTTLE", Decimal("1.5"), "Delhivery")
    assert resolution.rate == Decimal("40")


@pytest.mark.engine
def test_provider_match_is_case_insensitive():
    resolver = RateResolver([_rate("0.5", "25", provider="Delhivery")])
    resolution = resolver.resolve("SKU-BOTTLE", Decimal("0.5"), "  delhivery ")
    assert resolution.source is RateSource.EXACT


@pytest.mark.engine
def test_carrier_default_table():
    resolver = RateResolver([_rate("0.5", "25")], default_rates={"Bluedart": Decimal("30")})
    resolution = resolver.resolve("SKU-BOTTLE", Decimal("0.5"), "BLUEDART")
    assert resolution.source is RateSource.DEFAULT
    assert resolution.rate == Decimal("30")
    assert resolution.key == "Bluedart"
    assert not resolution.is_global_default


@pytest.mark.engine
def test_global_default_for_unknown_carrier():
    resolver = RateResolver(global_default=Decimal("25"))
    resolution = resolver.resolve("SKU-NEW", Decimal("0.5"), "Ecom Express")
    assert resolution.rate == Decimal("25")
    assert resolution.source is RateSource.DEFAULT
    assert resolution.is_global_default


@pytest.mark.engine
def test_charging_policies():
    assert ChargingPolicy.FLAT.charge(Decimal("25"), 2, Decimal("1.5")) == Decimal("50")
    assert ChargingPolicy.PER_KG.charge(Decimal("25"), 2, Decimal("1.5")) == Decimal("75")
    assert ChargingPolicy.parse("per-kg") is ChargingPolicy.PER_KG
    with pytest.raises(ValueError):
        ChargingPolicy.parse("weekly")
