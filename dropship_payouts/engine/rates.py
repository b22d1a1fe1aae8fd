"""
Shipping rate resolution.

A rate is looked up through three tiers: an exact configured rate for the
product, weight and carrier; a fallback rate configured for the product and
carrier at another weight; and the per-carrier default table. Carriers missing
from the default table get the global default rate.
"""
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from dropship_payouts.config import DEFAULT_SHIPPING_RATE
from dropship_payouts.engine.records import ShippingRateConfig

logger = logging.getLogger(__name__)


class RateSource(str, enum.Enum):
    EXACT = 'exact'
    FALLBACK = 'fallback'
    DEFAULT = 'default'


class ChargingPolicy(str, enum.Enum):
    """How a resolved rate is turned into a shipping charge."""
    FLAT = 'flat'        # rate x qty
    PER_KG = 'per_kg'    # rate x qty x weight

    def charge(self, rate: Decimal, qty: int, weight: Decimal) -> Decimal:
        if self is ChargingPolicy.PER_KG:
            return rate * Decimal(qty) * weight
        return rate * Decimal(qty)

    @classmethod
    def parse(cls, value) -> 'ChargingPolicy':
        if isinstance(value, cls):
            return value
        text = str(value or '').strip().lower().replace('-', '_')
        if text in ('per_kg', 'perkg', 'kg'):
            return cls.PER_KG
        if text == 'flat':
            return cls.FLAT
        raise ValueError(f"Unknown charging policy {value!r}; expected 'flat' or 'per_kg'")


@dataclass(frozen=True)
class RateResolution:
    rate: Decimal
    source: RateSource
    # Describes which entry supplied the rate, e.g. the matched weight or
    # carrier; None when the global default was used.
    key: Optional[str] = None

    @property
    def is_global_default(self) -> bool:
        return self.source is RateSource.DEFAULT and self.key is None


def normalize_provider(provider: Optional[str]) -> str:
    return (provider or '').strip().lower()


def _weight_key(weight) -> Decimal:
    return Decimal(str(weight)).normalize()


class RateResolver:
    """
    Resolve the shipping rate for a (product, weight, carrier) triple.

    Args:
        rates: Configured product-level shipping rates
        default_rates: Per-carrier baseline rates
        global_default: Rate used when the carrier has no baseline
    """

    def __init__(
        self,
        rates: Iterable[ShippingRateConfig] = (),
        default_rates: Optional[Mapping[str, Decimal]] = None,
        global_default: Decimal = DEFAULT_SHIPPING_RATE
    ):
        self._exact: Dict[Tuple[str, Decimal, str], ShippingRateConfig] = {}
        self._by_product: Dict[Tuple[str, str], List[ShippingRateConfig]] = {}
        for config in rates:
            provider = normalize_provider(config.shipping_provider)
            self._exact[(config.product_uid, _weight_key(config.product_weight), provider)] = config
            self._by_product.setdefault((config.product_uid, provider), []).append(config)

        self._defaults: Dict[str, Tuple[str, Decimal]] = {}
        for provider, rate in (default_rates or {}).items():
            self._defaults[normalize_provider(provider)] = (provider, Decimal(str(rate)))

        self.global_default = Decimal(str(global_default))

    def resolve(self, product_uid: str, product_weight, shipping_provider: Optional[str]) -> RateResolution:
        provider = normalize_provider(shipping_provider)

        if product_weight is not None:
            exact = self._exact.get((product_uid, _weight_key(product_weight), provider))
            if exact is not None:
                return RateResolution(exact.rate, RateSource.EXACT, f"{exact.product_weight}kg")

        candidates = self._by_product.get((product_uid, provider))
        if candidates:
            chosen = self._nearest(candidates, product_weight)
            return RateResolution(chosen.rate, RateSource.FALLBACK, f"{chosen.product_weight}kg")

        if provider in self._defaults:
            name, rate = self._defaults[provider]
            return RateResolution(rate, RateSource.DEFAULT, name)

        logger.debug(f"No rate configured for {product_uid} via {shipping_provider!r}; using global default")
        return RateResolution(self.global_default, RateSource.DEFAULT, None)

    @staticmethod
    def _nearest(candidates: List[ShippingRateConfig], product_weight) -> ShippingRateConfig:
        # Nearest configured weight wins; ties go to the lighter entry.
        if product_weight is None:
            return min(candidates, key=lambda c: _weight_key(c.product_weight))
        target = _weight_key(product_weight)
        return min(
            candidates,
            key=lambda c: (abs(_weight_key(c.product_weight) - target), _weight_key(c.product_weight))
        )
