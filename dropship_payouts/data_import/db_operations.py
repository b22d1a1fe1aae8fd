"""
Database operations for the configuration store, order ingestion and
settlement settings.
"""
import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dropship_payouts.config import DEFAULT_CURRENCY, SEED_CARRIER_RATES
from dropship_payouts.database.models import (
    DefaultShippingRate, Order, PayoutLog, ProductPrice, SettlementSettingsModel, ShippingRate
)
from dropship_payouts.engine.calculator import PayoutRow
from dropship_payouts.engine.scheduler import SettlementSettings
from dropship_payouts.engine.status import normalize_status
from dropship_payouts.exceptions import PayoutRequestError, StaleAnchorError
from dropship_payouts.utils import normalize_email, parse_date, to_decimal

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1


def _commit(session: Session, what: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error committing {what}: {e}")
        session.rollback()
        raise


# Product prices

def get_product_prices(session: Session, dropshipper_email: Optional[str] = None) -> List[ProductPrice]:
    query = session.query(ProductPrice)
    if dropshipper_email:
        query = query.filter(ProductPrice.dropshipper_email == normalize_email(dropshipper_email))
    return query.order_by(ProductPrice.dropshipper_email, ProductPrice.product_uid).all()


def _apply_product_price(session: Session, data: Dict) -> ProductPrice:
    email = normalize_email(data.get('dropshipper_email'))
    uid = str(data.get('product_uid') or '').strip()
    cost = to_decimal(data.get('product_cost_per_unit'), default=None)
    if not email or not uid:
        raise PayoutRequestError('dropshipper_email and product_uid are required for a product price')
    if cost is None or cost < 0:
        raise PayoutRequestError(f"Invalid product_cost_per_unit for {uid}: {data.get('product_cost_per_unit')!r}")

    price = session.query(ProductPrice).filter_by(dropshipper_email=email, product_uid=uid).first()
    if price is None:
        price = ProductPrice(dropshipper_email=email, product_uid=uid)
        session.add(price)
    price.product_name = data.get('product_name') or price.product_name or uid
    price.sku = data.get('sku') or price.sku
    if data.get('product_weight') is not None:
        price.product_weight = to_decimal(data.get('product_weight'), default=None)
    price.product_cost_per_unit = cost
    price.currency = data.get('currency') or DEFAULT_CURRENCY
    price.updated_at = datetime.utcnow()
    return price


def upsert_product_price(session: Session, data: Dict) -> ProductPrice:
    """
    Insert or update a product price keyed by (dropshipper_email, product_uid).

    Args:
        session: Database session
        data: Price fields; the last write wins

    Returns:
        The stored ProductPrice
    """
    price = _apply_product_price(session, data)
    _commit(session, f"product price {price.product_uid}")
    return price


def delete_product_price(session: Session, dropshipper_email: str, product_uid: str) -> bool:
    deleted = session.query(ProductPrice).filter_by(
        dropshipper_email=normalize_email(dropshipper_email), product_uid=product_uid
    ).delete()
    _commit(session, f"product price deletion {product_uid}")
    return deleted > 0


# Shipping rates

def get_shipping_rates(session: Session, product_uid: Optional[str] = None) -> List[ShippingRate]:
    query = session.query(ShippingRate)
    if product_uid:
        query = query.filter(ShippingRate.product_uid == product_uid)
    return query.order_by(ShippingRate.product_uid, ShippingRate.shipping_provider, ShippingRate.product_weight).all()


def _apply_shipping_rate(session: Session, data: Dict) -> ShippingRate:
    uid = str(data.get('product_uid') or '').strip()
    provider = str(data.get('shipping_provider') or '').strip()
    weight = to_decimal(data.get('product_weight'), default=None)
    rate = to_decimal(data.get('rate'), default=None)
    if not uid or not provider:
        raise PayoutRequestError('product_uid and shipping_provider are required for a shipping rate')
    if weight is None or weight < 0:
        raise PayoutRequestError(f"Invalid product_weight for {uid}: {data.get('product_weight')!r}")
    if rate is None or rate < 0:
        raise PayoutRequestError(f"Invalid shipping rate for {uid}: {data.get('rate')!r}")

    shipping_rate = session.query(ShippingRate).filter_by(
        product_uid=uid, product_weight=weight, shipping_provider=provider
    ).first()
    if shipping_rate is None:
        shipping_rate = ShippingRate(product_uid=uid, product_weight=weight, shipping_provider=provider)
        session.add(shipping_rate)
    shipping_rate.rate = rate
    shipping_rate.currency = data.get('currency') or DEFAULT_CURRENCY
    shipping_rate.updated_at = datetime.utcnow()
    return shipping_rate


def upsert_shipping_rate(session: Session, data: Dict) -> ShippingRate:
    """Insert or update a shipping rate keyed by (product_uid, product_weight, shipping_provider)."""
    shipping_rate = _apply_shipping_rate(session, data)
    _commit(session, f"shipping rate {shipping_rate.product_uid}")
    return shipping_rate


def delete_shipping_rate(session: Session, product_uid: str, product_weight, shipping_provider: str) -> bool:
    deleted = session.query(ShippingRate).filter_by(
        product_uid=product_uid,
        product_weight=to_decimal(product_weight),
        shipping_provider=shipping_provider,
    ).delete()
    _commit(session, f"shipping rate deletion {product_uid}")
    return deleted > 0


# Default (per-carrier) shipping rates

def get_default_shipping_rates(session: Session) -> List[DefaultShippingRate]:
    return session.query(DefaultShippingRate).order_by(DefaultShippingRate.shipping_provider).all()


def upsert_default_shipping_rate(
    session: Session,
    shipping_provider: str,
    rate,
    currency: str = DEFAULT_CURRENCY
) -> DefaultShippingRate:
    provider = (shipping_provider or '').strip()
    amount = to_decimal(rate, default=None)
    if not provider:
        raise PayoutRequestError('shipping_provider is required')
    if amount is None or amount < 0:
        raise PayoutRequestError(f"Invalid default rate for {provider}: {rate!r}")

    default = session.query(DefaultShippingRate).filter(
        DefaultShippingRate.shipping_provider == provider
    ).first()
    if default is None:
        default = DefaultShippingRate(shipping_provider=provider)
        session.add(default)
    default.rate = amount
    default.currency = currency
    default.updated_at = datetime.utcnow()
    _commit(session, f"default shipping rate {provider}")
    return default


def seed_default_shipping_rates(session: Session, rates: Optional[Dict[str, Decimal]] = None) -> int:
    """Insert the baseline carrier rates that are not configured yet."""
    existing = {row.shipping_provider.lower() for row in get_default_shipping_rates(session)}
    added = 0
    for provider, rate in (rates or SEED_CARRIER_RATES).items():
        if provider.lower() in existing:
            continue
        session.add(DefaultShippingRate(shipping_provider=provider, rate=rate, currency=DEFAULT_CURRENCY))
        added += 1
    _commit(session, 'default shipping rate seed')
    if added:
        logger.info(f"Seeded {added} default shipping rate(s)")
    return added


def bulk_upsert_settings(session: Session, prices: Iterable[Dict], rates: Iterable[Dict]) -> Dict[str, int]:
    """
    Upsert product prices and shipping rates in one transaction.

    Returns:
        Counts of prices and rates written
    """
    counts = {'product_prices': 0, 'shipping_rates': 0}
    try:
        for data in prices:
            _apply_product_price(session, data)
            counts['product_prices'] += 1
        # Flush so repeated keys within the batch update the pending row
        session.flush()
        for data in rates:
            _apply_shipping_rate(session, data)
            session.flush()
            counts['shipping_rates'] += 1
        session.commit()
    except (SQLAlchemyError, PayoutRequestError) as e:
        logger.error(f"Error importing settings: {e}")
        session.rollback()
        raise
    logger.info(f"Imported {counts['product_prices']} product price(s) and {counts['shipping_rates']} shipping rate(s)")
    return counts


# Orders

ORDER_FIELDS = (
    'waybill', 'product_name', 'sku', 'product_uid', 'qty', 'product_value', 'mode', 'status',
    'delivered_date', 'rts_date', 'shipping_provider', 'pincode', 'state', 'city',
)


def insert_orders(session: Session, orders: Iterable[Dict], upload_session_id: str) -> List[str]:
    """
    Store parsed order lines for an upload batch.

    Status text is normalized here, once, and stored alongside the raw value.
    A line already present for (upload_session_id, dropshipper_email, order_id)
    is updated in place, which is how status transitions arrive.

    Args:
        session: Database session
        orders: Parsed order dicts
        upload_session_id: Upload batch identifier

    Returns:
        List of order IDs that were processed
    """
    processed_ids = []
    try:
        for data in orders:
            email = normalize_email(data.get('dropshipper_email'))
            order_id = str(data.get('order_id') or '').strip()
            order_date = parse_date(data.get('order_date'))
            if not email or not order_id or order_date is None:
                raise PayoutRequestError(
                    f"order_id, dropshipper_email and order_date are required (got order {order_id!r})"
                )

            values = {key: data.get(key) for key in ORDER_FIELDS}
            values['product_uid'] = values['product_uid'] or values['sku'] or values['product_name']
            if not values['product_uid']:
                raise PayoutRequestError(f"Order {order_id} has neither sku nor product name")
            values['product_name'] = values['product_name'] or values['product_uid']
            values['product_value'] = to_decimal(values['product_value'])
            values['qty'] = int(values['qty'] or 0)
            values['status'] = str(values['status'] or '').strip()
            values['status_code'] = normalize_status(values['status']).value
            values['shipping_provider'] = str(values['shipping_provider'] or '').strip()
            values['order_date'] = datetime.combine(order_date, datetime.min.time())
            for key in ('delivered_date', 'rts_date'):
                parsed = parse_date(values[key])
                values[key] = datetime.combine(parsed, datetime.min.time()) if parsed else None

            order = session.query(Order).filter_by(
                upload_session_id=upload_session_id, dropshipper_email=email, order_id=order_id
            ).first()
            if order is None:
                order = Order(upload_session_id=upload_session_id, dropshipper_email=email, order_id=order_id)
                session.add(order)
            for key, value in values.items():
                setattr(order, key, value)
            session.flush()
            processed_ids.append(order_id)
        session.commit()
    except (SQLAlchemyError, PayoutRequestError) as e:
        logger.error(f"Error inserting orders for upload {upload_session_id}: {e}")
        session.rollback()
        raise

    logger.info(f"Stored {len(processed_ids)} order line(s) for upload {upload_session_id}")
    return processed_ids


def log_payouts(
    session: Session,
    rows: Iterable[PayoutRow],
    settlement_export_id: str,
    period_from,
    period_to
) -> int:
    """Add payout log entries for exported rows; the caller commits."""
    count = 0
    paid_on = datetime.utcnow()
    for row in rows:
        session.add(PayoutLog(
            order_id=row.order_id,
            waybill=row.waybill,
            dropshipper_email=row.dropshipper_email,
            product_uid=row.product_uid,
            paid_on=paid_on,
            period_from=period_from,
            period_to=period_to,
            paid_amount=row.payable,
            cod_received=row.cod_received,
            status_at_payout=row.status,
            settlement_export_id=settlement_export_id,
            payout_data={
                'shipping_cost': str(row.shipping_cost),
                'product_cost': str(row.product_cost),
                'rate_source': row.rate_source.value,
                'normalized_status': row.normalized_status.value,
            },
        ))
        count += 1
    return count


# Settlement settings

def load_settlement_settings(session: Session) -> SettlementSettings:
    """Current settlement settings, or defaults (version 0) when none are stored."""
    row = session.get(SettlementSettingsModel, SETTINGS_ROW_ID)
    if row is None:
        return SettlementSettings()
    return SettlementSettings(
        frequency=row.frequency,
        cutoff_offset_days=row.cutoff_offset_days,
        anchored=row.anchored,
        custom_weekdays=tuple(row.custom_weekdays or ()),
        last_payment_done_on=row.last_payment_done_on,
        last_delivered_cutoff=row.last_delivered_cutoff,
        version=row.version,
    )


def save_settlement_settings(
    session: Session,
    settings: SettlementSettings,
    expected_version: int,
    commit: bool = True
) -> SettlementSettings:
    """
    Write settings if the stored version still equals ``expected_version``.

    Raises:
        StaleAnchorError: the stored settings changed since they were read

    Returns:
        The settings as stored, with the new version
    """
    new_version = expected_version + 1
    values = {
        'frequency': settings.frequency.value,
        'cutoff_offset_days': settings.cutoff_offset_days,
        'anchored': settings.anchored,
        'custom_weekdays': list(settings.custom_weekdays),
        'last_payment_done_on': settings.last_payment_done_on,
        'last_delivered_cutoff': settings.last_delivered_cutoff,
        'version': new_version,
        'updated_at': datetime.utcnow(),
    }

    updated = session.query(SettlementSettingsModel).filter(
        SettlementSettingsModel.id == SETTINGS_ROW_ID,
        SettlementSettingsModel.version == expected_version,
    ).update(values, synchronize_session=False)

    if not updated:
        exists = session.query(SettlementSettingsModel.id).filter(
            SettlementSettingsModel.id == SETTINGS_ROW_ID
        ).first()
        if exists or expected_version != 0:
            raise StaleAnchorError(expected_version)
        session.add(SettlementSettingsModel(id=SETTINGS_ROW_ID, **values))
        session.flush()

    if commit:
        _commit(session, 'settlement settings')
    session.expire_all()
    logger.info(f"Saved settlement settings version {new_version}")
    return replace(settings, version=new_version)
