"""
Exceptions raised by the payout engine and its services.
"""


class PayoutEngineError(Exception):
    """Base class for payout engine errors."""


class PayoutRequestError(PayoutEngineError, ValueError):
    """A malformed calculation or scheduling request, rejected before computation."""


class ReconciliationValidationError(PayoutEngineError, ValueError):
    """A reconciliation record is missing required fields or has invalid values."""


class DuplicateReconciliationError(PayoutEngineError):
    """The order line already has a reconciliation record."""

    def __init__(self, order_id: str, dropshipper_email: str, product_uid: str, existing_id: str):
        self.order_id = order_id
        self.dropshipper_email = dropshipper_email
        self.product_uid = product_uid
        self.existing_id = existing_id
        super().__init__(
            f"Order {order_id} ({product_uid}) for {dropshipper_email} "
            f"was already reconciled in record {existing_id}"
        )


class StaleAnchorError(PayoutEngineError):
    """Settlement anchors changed between read and write."""

    def __init__(self, expected_version: int):
        self.expected_version = expected_version
        super().__init__(
            f"Settlement settings changed since version {expected_version} was read; "
            f"recompute the run and retry"
        )
