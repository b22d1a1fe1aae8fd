"""
RTS/RTO reconciliation against the payout log.

An order moves through no-payout -> paid -> stable, or paid -> returned
(pending) -> reversed. Reversals are appended to the reconciliation ledger and
subtracted when a payout summary is aggregated; payout rows are never edited.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dropship_payouts.database.models import Order, PayoutLog, ReconciliationRecord
from dropship_payouts.engine.records import DateWindow, OrderRecord, ReversalEntry, as_date
from dropship_payouts.engine.status import (
    OrderStatus, RETURN_STATUSES, normalize_status, parse_return_label
)
from dropship_payouts.exceptions import (
    DuplicateReconciliationError, ReconciliationValidationError
)
from dropship_payouts.utils import normalize_email

logger = logging.getLogger(__name__)

NO_PRIOR_PAYOUT_NOTE = 'No prior payout found; recorded with original paid amount 0'


@dataclass(frozen=True)
class ReversalSuggestion:
    order_id: str
    waybill: Optional[str]
    dropshipper_email: str
    product_uid: str
    product_name: str
    current_status: str
    status_at_payout: Optional[str]
    original_payout_id: str
    original_paid_amount: Decimal
    suggested_reversal_amount: Decimal
    paid_on: Optional[datetime]
    rts_rto_date: Optional[date]
    confidence: str
    rationale: str

    def as_dict(self) -> dict:
        return asdict(self)


def _day_start(value) -> datetime:
    return datetime.combine(as_date(value), time.min)


def _email_filter(dropshipper_email: Optional[str]) -> Optional[str]:
    email = normalize_email(dropshipper_email)
    return None if email in ('', 'all') else email


class ReconciliationEngine:
    """Detect, record and query RTS/RTO reversals."""

    def __init__(self, session: Session):
        self.session = session

    def auto_detect(
        self,
        order_date_from,
        order_date_to,
        dropshipper_email: Optional[str] = None
    ) -> List[ReversalSuggestion]:
        """
        Suggest reversals for returned orders that were already paid out.

        An order is suggested when its current status is RTS/RTO/RTO-Dispatched,
        a payout was logged for it, and the status recorded at payout differs
        from the current one. The suggested amount is what was paid, not what
        the order is worth today.

        Args:
            order_date_from: First order date to scan (inclusive)
            order_date_to: Last order date to scan (inclusive)
            dropshipper_email: Restrict the scan to one dropshipper

        Returns:
            Suggestions ordered by order date, then order id
        """
        query = self.session.query(Order).filter(
            Order.status_code.in_([s.value for s in RETURN_STATUSES]),
            Order.order_date >= _day_start(order_date_from),
            Order.order_date < _day_start(as_date(order_date_to) + timedelta(days=1)),
        )
        email = _email_filter(dropshipper_email)
        if email:
            query = query.filter(Order.dropshipper_email == email)

        suggestions = []
        for order in query.order_by(Order.order_date, Order.order_id, Order.product_uid).all():
            record = order.to_record()
            payout = self._latest_payout(record)
            if payout is None:
                continue
            paid_amount = Decimal(str(payout.paid_amount))
            if paid_amount <= 0:
                logger.debug(f"Skipping {record.order_id}: logged payout {payout.id} paid {paid_amount}")
                continue

            prior = normalize_status(payout.status_at_payout) if payout.status_at_payout else None
            if prior is record.normalized_status:
                continue

            existing = self._existing_record(record.order_id, record.dropshipper_email, record.product_uid)
            confidence, rationale = self._assess(record, payout, prior, existing)
            suggestions.append(ReversalSuggestion(
                order_id=record.order_id,
                waybill=record.waybill,
                dropshipper_email=record.dropshipper_email,
                product_uid=record.product_uid,
                product_name=record.product_name,
                current_status=record.normalized_status.label,
                status_at_payout=payout.status_at_payout,
                original_payout_id=payout.id,
                original_paid_amount=paid_amount,
                suggested_reversal_amount=paid_amount,
                paid_on=payout.paid_on,
                rts_rto_date=record.rts_date,
                confidence=confidence,
                rationale=rationale,
            ))

        logger.info(f"Auto-detect found {len(suggestions)} reversal suggestion(s)")
        return suggestions

    @staticmethod
    def _assess(record: OrderRecord, payout: PayoutLog, prior: Optional[OrderStatus], existing) -> tuple:
        current = record.normalized_status.label
        paid = f"paid {payout.paid_amount} on {as_date(payout.paid_on)}"
        if existing is not None:
            return 'low', (
                f"Status is now {current} and {paid}, but reconciliation {existing.id} "
                f"already exists for this order line"
            )
        if prior is OrderStatus.DELIVERED:
            return 'high', f"Status changed from {payout.status_at_payout!r} to {current} after being {paid}"
        if prior is None or prior is OrderStatus.OTHER:
            recorded = repr(payout.status_at_payout) if payout.status_at_payout else 'not recorded'
            return 'medium', f"Status is now {current} and {paid}; status at payout was {recorded}"
        return 'low', (
            f"Status is now {current} and {paid}; status at payout was "
            f"{payout.status_at_payout!r}, not a delivered-to-return transition"
        )

    def reconcile(self, record: Mapping, allow_duplicate: bool = False) -> ReconciliationRecord:
        """
        Append a processed reversal to the ledger.

        Raises:
            ReconciliationValidationError: orderId, dropshipperEmail or
                reversalAmount is missing or invalid
            DuplicateReconciliationError: the order line is already reconciled
                and ``allow_duplicate`` is not set
        """
        order_id = str(record.get('order_id') or '').strip()
        dropshipper_email = normalize_email(record.get('dropshipper_email'))
        if not order_id:
            raise ReconciliationValidationError('order_id is required')
        if not dropshipper_email:
            raise ReconciliationValidationError('dropshipper_email is required')
        reversal_amount = self._parse_amount(record.get('reversal_amount'))

        order = self.session.query(Order).filter(
            Order.order_id == order_id,
            Order.dropshipper_email == dropshipper_email,
        )
        if record.get('product_uid'):
            order = order.filter(Order.product_uid == record['product_uid'])
        order = order.order_by(Order.created_at.desc()).first()

        product_uid = record.get('product_uid') or (order.product_uid if order else '')
        waybill = record.get('waybill') or (order.waybill if order else None)

        status = self._resolve_return_status(record.get('rts_rto_status'), order)
        rts_rto_date = record.get('rts_rto_date') or (order.rts_date if order else None) or datetime.utcnow()
        if isinstance(rts_rto_date, date) and not isinstance(rts_rto_date, datetime):
            rts_rto_date = _day_start(rts_rto_date)

        existing = self._existing_record(order_id, dropshipper_email, product_uid)
        if existing is not None and not allow_duplicate:
            raise DuplicateReconciliationError(order_id, dropshipper_email, product_uid, existing.id)

        notes = [record['notes']] if record.get('notes') else []
        payout = None
        if record.get('original_payout_id'):
            payout = self.session.get(PayoutLog, record['original_payout_id'])
        if payout is None:
            payout = self._latest_payout_for(order_id, dropshipper_email, product_uid, waybill)
        if payout is None:
            notes.append(NO_PRIOR_PAYOUT_NOTE)
            logger.warning(f"Reconciling {order_id} for {dropshipper_email} with no prior payout")
        if existing is not None:
            notes.append(f"Duplicate of reconciliation {existing.id}")

        entry = ReconciliationRecord(
            order_id=order_id,
            waybill=waybill,
            dropshipper_email=dropshipper_email,
            product_uid=product_uid,
            original_payout_id=payout.id if payout else None,
            original_paid_amount=Decimal(str(payout.paid_amount)) if payout else Decimal('0'),
            reversal_amount=reversal_amount,
            rts_rto_status=status.label,
            rts_rto_date=rts_rto_date,
            reconciled_by=record.get('reconciled_by'),
            notes='; '.join(notes) or None,
            status='processed',
        )
        try:
            self.session.add(entry)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error recording reconciliation for {order_id}: {e}")
            raise
        logger.info(f"Reconciled {order_id} ({status.label}) for {dropshipper_email}: reversal {reversal_amount}")
        return entry

    @staticmethod
    def _parse_amount(value) -> Decimal:
        if value is None or value == '':
            raise ReconciliationValidationError('reversal_amount is required')
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ReconciliationValidationError(f"reversal_amount is not a number: {value!r}")
        if not amount.is_finite() or amount < 0:
            raise ReconciliationValidationError('reversal_amount must be a non-negative amount')
        return amount

    @staticmethod
    def _resolve_return_status(label, order: Optional[Order]) -> OrderStatus:
        if label:
            try:
                return parse_return_label(label)
            except ValueError as e:
                raise ReconciliationValidationError(str(e))
        if order is not None:
            status = OrderStatus(order.status_code)
            if status.is_return:
                return status
        raise ReconciliationValidationError(
            'rts_rto_status is required when the order is not currently RTS/RTO'
        )

    def pending(self, dropshipper_email: Optional[str] = None) -> List[OrderRecord]:
        """Returned orders with no reconciliation record yet."""
        query = self.session.query(Order).filter(
            Order.status_code.in_([s.value for s in RETURN_STATUSES])
        )
        email = _email_filter(dropshipper_email)
        if email:
            query = query.filter(Order.dropshipper_email == email)

        reconciled = {
            (r.order_id, r.dropshipper_email, r.product_uid)
            for r in self.session.query(
                ReconciliationRecord.order_id,
                ReconciliationRecord.dropshipper_email,
                ReconciliationRecord.product_uid,
            ).all()
        }
        orders = [order.to_record() for order in query.all()]
        return sorted(
            (o for o in orders if (o.order_id, o.dropshipper_email, o.product_uid) not in reconciled),
            key=lambda o: o.sort_key
        )

    def history(
        self,
        dropshipper_email: Optional[str] = None,
        date_from=None,
        date_to=None
    ) -> List[ReconciliationRecord]:
        query = self.session.query(ReconciliationRecord)
        email = _email_filter(dropshipper_email)
        if email:
            query = query.filter(ReconciliationRecord.dropshipper_email == email)
        if date_from:
            query = query.filter(ReconciliationRecord.reconciled_on >= _day_start(date_from))
        if date_to:
            query = query.filter(
                ReconciliationRecord.reconciled_on < _day_start(as_date(date_to) + timedelta(days=1))
            )
        return query.order_by(ReconciliationRecord.reconciled_on.desc(), ReconciliationRecord.id).all()

    def reversals_in_scope(
        self,
        window: DateWindow,
        dropshipper_email: Optional[str] = None
    ) -> List[ReversalEntry]:
        """Processed reversals reconciled within ``window``."""
        records = self.history(dropshipper_email, window.start, window.end)
        return [r.to_reversal() for r in records if r.status == 'processed']

    def unapplied_reversals(self, dropshipper_email: Optional[str] = None) -> List[ReversalEntry]:
        """
        Processed reversals not yet subtracted by any settlement export.

        A settlement export takes every one of these, whenever it was
        reconciled, so a reversal recorded after the run covering its date
        was exported still reaches the next export.
        """
        query = self.session.query(ReconciliationRecord).filter(
            ReconciliationRecord.status == 'processed',
            ReconciliationRecord.applied_export_id.is_(None),
        )
        email = _email_filter(dropshipper_email)
        if email:
            query = query.filter(ReconciliationRecord.dropshipper_email == email)
        records = query.order_by(ReconciliationRecord.reconciled_on, ReconciliationRecord.id).all()
        return [r.to_reversal() for r in records]

    def mark_applied(self, reversals, settlement_export_id: str) -> int:
        """Tie reversals to the export that subtracted them; the caller commits."""
        ids = [entry.record_id for entry in reversals]
        if not ids:
            return 0
        return self.session.query(ReconciliationRecord).filter(
            ReconciliationRecord.id.in_(ids),
            ReconciliationRecord.applied_export_id.is_(None),
        ).update({ReconciliationRecord.applied_export_id: settlement_export_id}, synchronize_session=False)

    def _existing_record(self, order_id: str, dropshipper_email: str, product_uid: str):
        return self.session.query(ReconciliationRecord).filter(
            ReconciliationRecord.order_id == order_id,
            ReconciliationRecord.dropshipper_email == dropshipper_email,
            ReconciliationRecord.product_uid == product_uid,
        ).order_by(ReconciliationRecord.reconciled_on).first()

    def _latest_payout(self, record: OrderRecord) -> Optional[PayoutLog]:
        return self._latest_payout_for(record.order_id, record.dropshipper_email, record.product_uid, record.waybill)

    def _latest_payout_for(self, order_id, dropshipper_email, product_uid, waybill) -> Optional[PayoutLog]:
        candidates = self.session.query(PayoutLog).filter(
            PayoutLog.order_id == order_id,
            PayoutLog.dropshipper_email == dropshipper_email,
        ).order_by(PayoutLog.paid_on.desc()).all()
        for payout in candidates:
            if product_uid and payout.product_uid != product_uid:
                continue
            if (payout.waybill or None) == (waybill or None):
                return payout
        return None
