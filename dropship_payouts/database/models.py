"""
Database models for the payout application.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Text, Numeric, JSON,
    UniqueConstraint, Index, func
)
from sqlalchemy.orm import declarative_base
import uuid

from dropship_payouts.engine.records import (
    OrderRecord, ProductPriceConfig, ShippingRateConfig, ReversalEntry
)
from dropship_payouts.engine.status import OrderStatus

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Order(Base):
    """Model for ingested order lines."""
    __tablename__ = 'order_data'
    __table_args__ = (
        UniqueConstraint('upload_session_id', 'dropshipper_email', 'order_id',
                         name='uq_order_per_dropshipper_batch'),
        Index('ix_order_data_dropshipper_order_date', 'dropshipper_email', 'order_date'),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    upload_session_id = Column(String(64), nullable=False)
    dropshipper_email = Column(String(255), nullable=False)
    order_id = Column(String(128), nullable=False)
    order_date = Column(DateTime, nullable=False)
    waybill = Column(String(128), nullable=True)
    product_name = Column(String(512), nullable=False)
    sku = Column(String(128), nullable=True)
    product_uid = Column(String(512), nullable=False)  # SKU or product name as fallback
    qty = Column(Integer, nullable=False)
    product_value = Column(Numeric(12, 2), nullable=False)
    mode = Column(String(32), nullable=True)  # COD/Prepaid
    status = Column(String(128), nullable=False)
    status_code = Column(String(32), nullable=False, default=OrderStatus.OTHER.value)
    delivered_date = Column(DateTime, nullable=True)
    rts_date = Column(DateTime, nullable=True)
    shipping_provider = Column(String(128), nullable=False)
    pincode = Column(String(16), nullable=True)
    state = Column(String(128), nullable=True)
    city = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_record(self) -> OrderRecord:
        return OrderRecord(
            order_id=self.order_id,
            waybill=self.waybill,
            dropshipper_email=self.dropshipper_email,
            product_uid=self.product_uid,
            product_name=self.product_name,
            sku=self.sku,
            qty=self.qty,
            product_value=Decimal(str(self.product_value)),
            mode=self.mode,
            status=self.status,
            normalized_status=OrderStatus(self.status_code),
            order_date=self.order_date,
            delivered_date=self.delivered_date,
            rts_date=self.rts_date,
            shipping_provider=self.shipping_provider,
            upload_session_id=self.upload_session_id,
        )

    @classmethod
    def get_unique_dropshippers(cls, session) -> List[str]:
        rows = session.query(cls.dropshipper_email).distinct().order_by(cls.dropshipper_email).all()
        return [row[0] for row in rows]

    @classmethod
    def get_date_ranges(cls, session, dropshipper_email: Optional[str] = None) -> dict:
        """Earliest order date and latest delivered date, per dropshipper or overall."""
        query = session.query(
            func.min(cls.order_date).label('earliest_order_date'),
            func.max(cls.order_date).label('latest_order_date'),
            func.min(cls.delivered_date).label('earliest_delivered_date'),
            func.max(cls.delivered_date).label('latest_delivered_date'),
        )
        if dropshipper_email:
            query = query.filter(cls.dropshipper_email == dropshipper_email)
        row = query.first()
        return {
            'earliest_order_date': _to_date(row.earliest_order_date),
            'latest_order_date': _to_date(row.latest_order_date),
            'earliest_delivered_date': _to_date(row.earliest_delivered_date),
            'latest_delivered_date': _to_date(row.latest_delivered_date),
        }


class ProductPrice(Base):
    """Product cost configuration per dropshipper."""
    __tablename__ = 'product_prices'
    __table_args__ = (
        UniqueConstraint('dropshipper_email', 'product_uid', name='uq_product_price_key'),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    dropshipper_email = Column(String(255), nullable=False)
    product_uid = Column(String(512), nullable=False)
    product_name = Column(String(512), nullable=False)
    sku = Column(String(128), nullable=True)
    product_weight = Column(Numeric(8, 3), nullable=True)  # kg
    product_cost_per_unit = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), nullable=False, default='INR')
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_config(self) -> ProductPriceConfig:
        return ProductPriceConfig(
            dropshipper_email=self.dropshipper_email,
            product_uid=self.product_uid,
            product_name=self.product_name,
            sku=self.sku,
            product_weight=Decimal(str(self.product_weight)) if self.product_weight is not None else None,
            product_cost_per_unit=Decimal(str(self.product_cost_per_unit)),
            currency=self.currency,
        )


class ShippingRate(Base):
    """Shipping rate configuration per product, weight and carrier."""
    __tablename__ = 'shipping_rates'
    __table_args__ = (
        UniqueConstraint('product_uid', 'product_weight', 'shipping_provider', name='uq_shipping_rate_key'),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    product_uid = Column(String(512), nullable=False)
    product_weight = Column(Numeric(8, 3), nullable=False)
    shipping_provider = Column(String(128), nullable=False)
    rate = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), nullable=False, default='INR')
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_config(self) -> ShippingRateConfig:
        return ShippingRateConfig(
            product_uid=self.product_uid,
            product_weight=Decimal(str(self.product_weight)),
            shipping_provider=self.shipping_provider,
            rate=Decimal(str(self.rate)),
            currency=self.currency,
        )


class DefaultShippingRate(Base):
    """Baseline rate per carrier, used when no product-level rate is configured."""
    __tablename__ = 'default_shipping_rates'

    id = Column(String(36), primary_key=True, default=_uuid)
    shipping_provider = Column(String(128), unique=True, nullable=False)
    rate = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), nullable=False, default='INR')
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def as_table(cls, session) -> dict:
        return {row.shipping_provider: Decimal(str(row.rate)) for row in session.query(cls).all()}


class PayoutLog(Base):
    """What was paid for an order line in a settlement run."""
    __tablename__ = 'payout_log'

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(128), nullable=False, index=True)
    waybill = Column(String(128), nullable=True)
    dropshipper_email = Column(String(255), nullable=False)
    product_uid = Column(String(512), nullable=False)
    paid_on = Column(DateTime, nullable=False, default=datetime.utcnow)
    period_from = Column(Date, nullable=False)
    period_to = Column(Date, nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False)
    cod_received = Column(Numeric(12, 2), nullable=False, default=0)
    status_at_payout = Column(String(128), nullable=True)
    settlement_export_id = Column(String(36), nullable=True)
    payout_data = Column(JSON, nullable=True)


class ReconciliationRecord(Base):
    """Append-only RTS/RTO reversal ledger."""
    __tablename__ = 'rts_rto_reconciliation'

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(128), nullable=False, index=True)
    waybill = Column(String(128), nullable=True)
    dropshipper_email = Column(String(255), nullable=False)
    product_uid = Column(String(512), nullable=False)
    original_payout_id = Column(String(36), nullable=True)  # weak reference to payout_log.id
    original_paid_amount = Column(Numeric(12, 2), nullable=False)
    reversal_amount = Column(Numeric(12, 2), nullable=False)
    rts_rto_status = Column(String(32), nullable=False)  # RTS, RTO, RTO-Dispatched
    rts_rto_date = Column(DateTime, nullable=False)
    reconciled_on = Column(DateTime, nullable=False, default=datetime.utcnow)
    reconciled_by = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default='processed')  # pending, processed, disputed
    applied_export_id = Column(String(36), nullable=True, index=True)  # settlement_exports.id that subtracted it

    def to_reversal(self) -> ReversalEntry:
        return ReversalEntry(
            record_id=self.id,
            order_id=self.order_id,
            dropshipper_email=self.dropshipper_email,
            product_uid=self.product_uid,
            amount=Decimal(str(self.reversal_amount)),
            rts_rto_status=self.rts_rto_status,
            reconciled_on=self.reconciled_on,
            original_payout_id=self.original_payout_id,
        )


class SettlementSettingsModel(Base):
    """Persisted settlement cycle settings and anchors."""
    __tablename__ = 'settlement_settings'

    id = Column(Integer, primary_key=True)
    frequency = Column(String(32), nullable=False, default='monthly')
    cutoff_offset_days = Column(Integer, nullable=False, default=2)
    anchored = Column(Boolean, nullable=False, default=True)
    custom_weekdays = Column(JSON, nullable=True)
    last_payment_done_on = Column(Date, nullable=True)
    last_delivered_cutoff = Column(Date, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class SettlementExport(Base):
    """Audit log of exported settlement runs."""
    __tablename__ = 'settlement_exports'

    id = Column(String(36), primary_key=True, default=_uuid)
    run_date = Column(Date, nullable=False)
    dropshipper_email = Column(String(255), nullable=True)
    order_start = Column(Date, nullable=False)
    order_end = Column(Date, nullable=False)
    del_start = Column(Date, nullable=False)
    del_end = Column(Date, nullable=False)
    shipping_total = Column(Numeric(14, 2), nullable=False)
    cod_total = Column(Numeric(14, 2), nullable=False)
    product_cost_total = Column(Numeric(14, 2), nullable=False)
    adjustments_total = Column(Numeric(14, 2), nullable=False, default=0)
    final_payable = Column(Numeric(14, 2), nullable=False)
    orders_count = Column(Integer, nullable=False)
    charging_policy = Column(String(16), nullable=False)
    exported_at = Column(DateTime, nullable=False, default=datetime.utcnow)


def _to_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        # SQLite returns aggregate datetimes as strings
        return datetime.fromisoformat(value).date()
    return value
