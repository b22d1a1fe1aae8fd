"""
Payout calculation and settlement scheduling engine.
"""
from dropship_payouts.engine.calculator import Adjustment, PayoutCalculator, PayoutRow, PayoutSummary
from dropship_payouts.engine.rates import ChargingPolicy, RateResolution, RateResolver, RateSource
from dropship_payouts.engine.records import (
    DateWindow, OrderRecord, ProductPriceConfig, ReversalEntry, ShippingRateConfig
)
from dropship_payouts.engine.scheduler import (
    Frequency, RunDescriptor, ScheduleResult, SettlementScheduler, SettlementSettings, SkippedRun,
    advance_anchors
)
from dropship_payouts.engine.status import OrderStatus, normalize_status

__all__ = [
    'Adjustment',
    'ChargingPolicy',
    'DateWindow',
    'Frequency',
    'OrderRecord',
    'OrderStatus',
    'PayoutCalculator',
    'PayoutRow',
    'PayoutSummary',
    'ProductPriceConfig',
    'RateResolution',
    'RateResolver',
    'RateSource',
    'ReversalEntry',
    'RunDescriptor',
    'ScheduleResult',
    'SettlementScheduler',
    'SettlementSettings',
    'ShippingRateConfig',
    'SkippedRun',
    'advance_anchors',
    'normalize_status',
]
