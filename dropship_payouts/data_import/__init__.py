"""
Data import package for the payout application.
"""
from dropship_payouts.data_import.db_operations import (
    bulk_upsert_settings,
    insert_orders,
    load_settlement_settings,
    save_settlement_settings,
    upsert_product_price,
    upsert_shipping_rate
)
from dropship_payouts.data_import.settings_import import import_settings

__all__ = [
    'bulk_upsert_settings',
    'import_settings',
    'insert_orders',
    'load_settlement_settings',
    'save_settlement_settings',
    'upsert_product_price',
    'upsert_shipping_rate'
]
