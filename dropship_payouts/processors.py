"""
Payout services used by the API and the export layer.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dropship_payouts.config import (
    DEFAULT_PRODUCT_WEIGHT_KG, DEFAULT_SHIPPING_RATE, SHIPPING_CHARGE_POLICY
)
from dropship_payouts.data_import.db_operations import (
    load_settlement_settings, log_payouts, save_settlement_settings
)
from dropship_payouts.database.models import (
    DefaultShippingRate, Order, PayoutLog, ProductPrice, ReconciliationRecord,
    SettlementExport, ShippingRate
)
from dropship_payouts.engine.calculator import PayoutCalculator, PayoutRow, PayoutSummary
from dropship_payouts.engine.rates import ChargingPolicy, RateResolver, normalize_provider
from dropship_payouts.engine.records import DateWindow, OrderRecord, ReversalEntry, as_date
from dropship_payouts.engine.reconciliation import ReconciliationEngine
from dropship_payouts.engine.scheduler import (
    RunDescriptor, ScheduleResult, SettlementScheduler, SettlementSettings, SkippedRun, advance_anchors
)
from dropship_payouts.exceptions import PayoutRequestError
from dropship_payouts.reporting import build_payout_workbook, payout_report_filename
from dropship_payouts.utils import normalize_email

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass
class PayoutResult:
    """Rows, summary and the windows they were computed for."""
    order_window: DateWindow
    delivered_window: DateWindow
    dropshipper_email: Optional[str]
    rows: List[PayoutRow]
    summary: PayoutSummary

    @property
    def adjustments(self):
        return list(self.summary.adjustments)

    @property
    def warnings(self) -> List[str]:
        warnings = list(self.summary.warnings)
        breakdown = self.summary.rate_source_breakdown
        if self.summary.orders_with_shipping_charges:
            warnings.append(
                'Shipping rate sources: ' + ', '.join(f"{source} {count}" for source, count in breakdown.items())
            )
        return warnings

    def as_dict(self) -> Dict[str, Any]:
        return {
            'order_window': self.order_window.as_dict(),
            'delivered_window': self.delivered_window.as_dict(),
            'dropshipper_email': self.dropshipper_email or 'all',
            'summary': self.summary.as_dict(),
            'rows': [row.as_dict() for row in self.rows],
            'adjustments': [adjustment.as_dict() for adjustment in self.summary.adjustments],
            'warnings': self.warnings,
        }


@dataclass
class SettlementPlan:
    """Scheduled runs with the payouts computed for each."""
    settings: SettlementSettings
    range_from: date
    range_to: date
    dropshipper_email: Optional[str]
    schedule: ScheduleResult
    results: List[Tuple[RunDescriptor, PayoutResult]] = field(default_factory=list)

    def totals(self) -> Dict[str, Any]:
        summaries = [result.summary for _, result in self.results]
        return {
            'runs': len(self.results),
            'skipped': len(self.schedule.skipped),
            'shipping_total': sum((s.shipping_total for s in summaries), ZERO),
            'cod_total': sum((s.cod_total for s in summaries), ZERO),
            'product_cost_total': sum((s.product_cost_total for s in summaries), ZERO),
            'reversal_total': sum((s.reversal_total for s in summaries), ZERO),
            'final_payable': sum((s.final_payable for s in summaries), ZERO),
        }

    def as_dict(self) -> Dict[str, Any]:
        return {
            'settings': self.settings.as_dict(),
            'range_from': self.range_from,
            'range_to': self.range_to,
            'dropshipper_email': self.dropshipper_email or 'all',
            'run_dates': [run.run_date for run in self.schedule.runs],
            'runs': [{'run': run.as_dict(), 'payouts': result.as_dict()} for run, result in self.results],
            'skipped': [skipped.as_dict() for skipped in self.schedule.skipped],
            'summary': self.totals(),
        }


def _require_window(start, end, label: str) -> DateWindow:
    start, end = as_date(start), as_date(end)
    if start is None or end is None:
        raise PayoutRequestError(f"{label} date range is required")
    if start > end:
        raise PayoutRequestError(f"{label} date 'from' ({start}) must not be after 'to' ({end})")
    return DateWindow(start, end)


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _dropshipper(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    if not isinstance(email, str):
        raise PayoutRequestError(f"Unparsable dropshipper filter: {email!r}")
    email = normalize_email(email)
    if not email or email == 'all':
        return None
    return email


def parse_charging_policy(value) -> ChargingPolicy:
    try:
        return ChargingPolicy.parse(value or SHIPPING_CHARGE_POLICY)
    except ValueError as e:
        raise PayoutRequestError(str(e))


def build_calculator(session: Session, charging_policy=None) -> PayoutCalculator:
    """Payout calculator over the current configuration tables."""
    resolver = RateResolver(
        rates=[rate.to_config() for rate in session.query(ShippingRate).all()],
        default_rates=DefaultShippingRate.as_table(session),
        global_default=DEFAULT_SHIPPING_RATE,
    )
    prices = [price.to_config() for price in session.query(ProductPrice).all()]
    return PayoutCalculator(
        resolver,
        prices,
        charging_policy=parse_charging_policy(charging_policy),
        default_weight=DEFAULT_PRODUCT_WEIGHT_KG,
    )


def load_orders(
    session: Session,
    order_window: DateWindow,
    delivered_window: DateWindow,
    dropshipper_email: Optional[str] = None
) -> List[OrderRecord]:
    """Order records falling in either window."""
    query = session.query(Order).filter(or_(
        and_(Order.order_date >= _day_start(order_window.start),
             Order.order_date < _day_start(order_window.next_start())),
        and_(Order.delivered_date >= _day_start(delivered_window.start),
             Order.delivered_date < _day_start(delivered_window.next_start())),
    ))
    if dropshipper_email:
        query = query.filter(Order.dropshipper_email == dropshipper_email)
    return [order.to_record() for order in query.all()]


def compute_payouts(
    session: Session,
    order_window: DateWindow,
    delivered_window: DateWindow,
    dropshipper_email: Optional[str] = None,
    charging_policy=None,
    calculator: Optional[PayoutCalculator] = None,
    reversals: Optional[List[ReversalEntry]] = None
) -> PayoutResult:
    """
    Payout rows and summary for two windows.

    Without explicit ``reversals``, the processed reversals reconciled inside
    the delivered window are subtracted.
    """
    dropshipper_email = _dropshipper(dropshipper_email)
    calculator = calculator or build_calculator(session, charging_policy)
    orders = load_orders(session, order_window, delivered_window, dropshipper_email)
    if reversals is None:
        reversals = ReconciliationEngine(session).reversals_in_scope(delivered_window, dropshipper_email)
    rows, summary = calculator.calculate(
        orders, order_window, delivered_window,
        dropshipper_filter=dropshipper_email,
        reversals=reversals,
    )
    return PayoutResult(order_window, delivered_window, dropshipper_email, rows, summary)


def calculate_payouts(
    session: Session,
    order_date_from,
    order_date_to,
    delivered_date_from,
    delivered_date_to,
    dropshipper_email: Optional[str] = None,
    charging_policy=None
) -> Dict[str, Any]:
    """
    Calculate payouts for an order window and a delivered window.

    Args:
        session: Database session
        order_date_from: Order window start (inclusive)
        order_date_to: Order window end (inclusive)
        delivered_date_from: Delivered window start (inclusive)
        delivered_date_to: Delivered window end (inclusive)
        dropshipper_email: Restrict to one dropshipper; None or "all" for everyone
        charging_policy: 'flat' or 'per_kg'; defaults to SHIPPING_CHARGE_POLICY

    Returns:
        Dict with summary, rows, adjustments and warnings
    """
    order_window = _require_window(order_date_from, order_date_to, 'Order')
    delivered_window = _require_window(delivered_date_from, delivered_date_to, 'Delivered')
    return compute_payouts(session, order_window, delivered_window, dropshipper_email, charging_policy).as_dict()


def earliest_order_date(session: Session, dropshipper_email: Optional[str] = None) -> Optional[date]:
    return Order.get_date_ranges(session, dropshipper_email)['earliest_order_date']


def plan_settlement_runs(
    session: Session,
    frequency: str,
    cutoff_offset_days: int,
    anchored: bool,
    range_from,
    range_to,
    dropshipper_email: Optional[str] = None,
    custom_weekdays=None,
    charging_policy=None
) -> SettlementPlan:
    """
    Schedule runs over a range and compute the payouts for each run.

    Anchored plans preview what the exports would subtract: the next run takes
    every unapplied reversal. Quick reports subtract the reversals reconciled
    inside each run's delivered window.
    """
    dropshipper_email = _dropshipper(dropshipper_email)
    stored = load_settlement_settings(session)
    settings = replace(
        stored,
        frequency=frequency,
        cutoff_offset_days=cutoff_offset_days,
        anchored=anchored,
        custom_weekdays=tuple(custom_weekdays or stored.custom_weekdays),
    )
    range_from, range_to = as_date(range_from), as_date(range_to)
    schedule = SettlementScheduler(settings).generate_runs(
        range_from, range_to, earliest_order_date(session, dropshipper_email)
    )

    calculator = build_calculator(session, charging_policy)
    plan = SettlementPlan(settings, range_from, range_to, dropshipper_email, schedule)
    pending = ReconciliationEngine(session).unapplied_reversals(dropshipper_email) if anchored else None
    for run in schedule.runs:
        result = compute_payouts(
            session, run.order_window, run.delivered_window, dropshipper_email,
            calculator=calculator, reversals=pending
        )
        if anchored:
            pending = []
        plan.results.append((run, result))
    return plan


def generate_settlement_runs(
    session: Session,
    frequency: str,
    cutoff_offset_days: int,
    anchored: bool,
    range_from,
    range_to,
    dropshipper_email: Optional[str] = None,
    custom_weekdays=None,
    charging_policy=None
) -> Dict[str, Any]:
    """Run descriptors for the range, each with its payouts, plus skipped runs."""
    return plan_settlement_runs(
        session, frequency, cutoff_offset_days, anchored, range_from, range_to,
        dropshipper_email, custom_weekdays, charging_policy
    ).as_dict()


def export_settlement(
    session: Session,
    run_date,
    dropshipper_email: Optional[str] = None,
    charging_policy=None
) -> Dict[str, Any]:
    """
    Export the settlement run for ``run_date`` and advance the anchors.

    The run continues from the persisted anchors. Every processed reversal
    not yet applied by an earlier export is subtracted, whatever its
    reconciliation date. The workbook is rendered first; then the export log,
    the payout log, the applied marks on the reversals and the anchor advance
    are written in one transaction, guarded by the settings version read at
    the start. Any failure rolls them all back and leaves the anchors unchanged.

    Raises:
        PayoutRequestError: the run's windows are impossible
        StaleAnchorError: another export advanced the anchors meanwhile

    Returns:
        Dict with filename, workbook bytes, export id, run and new settings
    """
    dropshipper_email = _dropshipper(dropshipper_email)
    settings = load_settlement_settings(session)
    scheduler = SettlementScheduler(replace(settings, anchored=True))
    run = scheduler.run_for(run_date, earliest_order_date(session, dropshipper_email))
    if isinstance(run, SkippedRun):
        raise PayoutRequestError(f"Cannot export run {run.run_date}: {run.reason}")

    policy = parse_charging_policy(charging_policy)
    engine = ReconciliationEngine(session)
    reversals = engine.unapplied_reversals(dropshipper_email)
    result = compute_payouts(
        session, run.order_window, run.delivered_window, dropshipper_email, policy, reversals=reversals
    )
    content = build_payout_workbook(result)
    filename = payout_report_filename(run.order_window.start, run.order_window.end, dropshipper_email)

    summary = result.summary
    try:
        export = SettlementExport(
            run_date=run.run_date,
            dropshipper_email=dropshipper_email,
            order_start=run.order_window.start,
            order_end=run.order_window.end,
            del_start=run.delivered_window.start,
            del_end=run.delivered_window.end,
            shipping_total=summary.shipping_total,
            cod_total=summary.cod_total,
            product_cost_total=summary.product_cost_total,
            adjustments_total=summary.adjustments_total,
            final_payable=summary.final_payable,
            orders_count=summary.total_orders_processed,
            charging_policy=policy.value,
        )
        session.add(export)
        session.flush()
        log_payouts(session, result.rows, export.id, run.delivered_window.start, run.delivered_window.end)
        engine.mark_applied(reversals, export.id)
        advanced = save_settlement_settings(
            session, advance_anchors(settings, run), expected_version=settings.version, commit=False
        )
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error exporting settlement run {run.run_date}: {e}")
        raise

    logger.info(
        f"Exported settlement run {run.run_date} ({summary.total_orders_processed} rows, "
        f"{len(reversals)} reversal(s), final payable {summary.final_payable}); "
        f"anchors now at version {advanced.version}"
    )
    return {
        'export_id': export.id,
        'filename': filename,
        'content': content,
        'run': run.as_dict(),
        'summary': summary.as_dict(),
        'settings': advanced.as_dict(),
    }


def get_dropshippers(session: Session) -> List[str]:
    return Order.get_unique_dropshippers(session)


def get_dropshipper_date_ranges(session: Session, dropshipper_email: Optional[str] = None) -> Dict[str, Any]:
    ranges = Order.get_date_ranges(session, _dropshipper(dropshipper_email))
    ranges['dropshipper_email'] = dropshipper_email or 'all'
    return ranges


def get_missing_data(session: Session, dropshipper_email: Optional[str] = None) -> Dict[str, Any]:
    """
    Order products without a price, and product/carrier pairs without a rate.

    Products missing a rate are still charged through the default tier; they
    are listed so the rate can be configured.
    """
    dropshipper_email = _dropshipper(dropshipper_email)
    query = session.query(
        Order.dropshipper_email, Order.product_uid, Order.product_name,
        Order.shipping_provider, func.count(Order.id)
    )
    if dropshipper_email:
        query = query.filter(Order.dropshipper_email == dropshipper_email)
    grouped = query.group_by(
        Order.dropshipper_email, Order.product_uid, Order.product_name, Order.shipping_provider
    ).all()

    priced = {(p.dropshipper_email, p.product_uid) for p in session.query(ProductPrice).all()}
    rated = {(r.product_uid, normalize_provider(r.shipping_provider)) for r in session.query(ShippingRate).all()}
    defaults = {normalize_provider(k): v for k, v in DefaultShippingRate.as_table(session).items()}

    missing_prices: Dict[tuple, Dict[str, Any]] = {}
    missing_rates: Dict[tuple, Dict[str, Any]] = {}
    for email, uid, name, provider, count in grouped:
        if (email, uid) not in priced:
            entry = missing_prices.setdefault((email, uid), {
                'dropshipper_email': email, 'product_uid': uid, 'product_name': name, 'order_count': 0,
            })
            entry['order_count'] += count
        key = (uid, normalize_provider(provider))
        if key not in rated:
            entry = missing_rates.setdefault(key, {
                'product_uid': uid,
                'product_name': name,
                'shipping_provider': provider,
                'order_count': 0,
                'default_rate': defaults.get(key[1], DEFAULT_SHIPPING_RATE),
            })
            entry['order_count'] += count

    return {
        'missing_prices': sorted(missing_prices.values(), key=lambda e: (e['dropshipper_email'], e['product_uid'])),
        'missing_rates': sorted(missing_rates.values(), key=lambda e: (e['product_uid'], e['shipping_provider'])),
    }


def get_configuration_summary(session: Session) -> Dict[str, Any]:
    """Row counts and settings, for checking what the calculator will see."""
    try:
        last_export = session.query(SettlementExport).order_by(SettlementExport.exported_at.desc()).first()
        settings = load_settlement_settings(session)
        return {
            'orders': session.query(func.count(Order.id)).scalar(),
            'dropshippers': len(get_dropshippers(session)),
            'product_prices': session.query(func.count(ProductPrice.id)).scalar(),
            'shipping_rates': session.query(func.count(ShippingRate.id)).scalar(),
            'default_shipping_rates': DefaultShippingRate.as_table(session),
            'global_default_rate': DEFAULT_SHIPPING_RATE,
            'default_product_weight_kg': DEFAULT_PRODUCT_WEIGHT_KG,
            'charging_policy': parse_charging_policy(None).value,
            'payout_log_entries': session.query(func.count(PayoutLog.id)).scalar(),
            'reconciliations': session.query(func.count(ReconciliationRecord.id)).scalar(),
            'settlement_exports': session.query(func.count(SettlementExport.id)).scalar(),
            'last_export_at': last_export.exported_at if last_export else None,
            'settlement_settings': settings.as_dict(),
        }
    except SQLAlchemyError as e:
        logger.error(f"Error building configuration summary: {e}")
        raise
