"""
Order status normalization.

Free-text courier statuses are mapped once, at the ingestion boundary, onto a
closed set of values. Everything downstream works with ``OrderStatus`` only.
"""
import enum
from typing import Optional


class OrderStatus(str, enum.Enum):
    DELIVERED = 'delivered'
    RTS = 'rts'
    RTO = 'rto'
    RTO_DISPATCHED = 'rto_dispatched'
    CANCELLED = 'cancelled'
    OTHER = 'other'

    @property
    def is_return(self) -> bool:
        return self in RETURN_STATUSES

    @property
    def label(self) -> str:
        """Ledger label used on reconciliation records (RTS, RTO, RTO-Dispatched)."""
        return RETURN_LABELS.get(self, self.value)


RETURN_STATUSES = frozenset({OrderStatus.RTS, OrderStatus.RTO, OrderStatus.RTO_DISPATCHED})

RETURN_LABELS = {
    OrderStatus.RTS: 'RTS',
    OrderStatus.RTO: 'RTO',
    OrderStatus.RTO_DISPATCHED: 'RTO-Dispatched',
}

_NOT_DELIVERED_MARKERS = ('undelivered', 'not delivered', 'non delivered')


def normalize_status(raw: Optional[str]) -> OrderStatus:
    """
    Map a courier status string onto ``OrderStatus``.

    Matching is case-insensitive substring matching. Return flows are checked
    before "delivered" so that e.g. "RTO Delivered" is an RTO.

    Args:
        raw: Status text as supplied by the upload

    Returns:
        The normalized status
    """
    if raw is None:
        return OrderStatus.OTHER
    text = ' '.join(str(raw).lower().replace('_', ' ').replace('-', ' ').split())
    if not text:
        return OrderStatus.OTHER

    if 'cancel' in text:
        return OrderStatus.CANCELLED
    if 'rto' in text:
        if 'dispatch' in text:
            return OrderStatus.RTO_DISPATCHED
        return OrderStatus.RTO
    if 'rts' in text or 'return to shipper' in text:
        return OrderStatus.RTS
    if 'return to origin' in text:
        return OrderStatus.RTO
    if any(marker in text for marker in _NOT_DELIVERED_MARKERS):
        return OrderStatus.OTHER
    if 'delivered' in text:
        return OrderStatus.DELIVERED
    return OrderStatus.OTHER


def parse_return_label(label: str) -> OrderStatus:
    """Parse an RTS/RTO/RTO-Dispatched ledger label; raises ValueError otherwise."""
    status = normalize_status(label)
    if not status.is_return:
        raise ValueError(f"rts_rto_status must be one of {sorted(RETURN_LABELS.values())}, got {label!r}")
    return status


def is_cod_mode(mode: Optional[str]) -> bool:
    """True when a payment mode string denotes cash on delivery."""
    return 'COD' in (mode or '').upper()
