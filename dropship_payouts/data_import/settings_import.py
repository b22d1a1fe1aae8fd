"""
Import product prices and shipping rates from a settings workbook.
"""
import io
import logging
from typing import Dict, List, Optional, Tuple, Union
import pandas as pd
from sqlalchemy.orm import Session

from dropship_payouts.data_import.db_operations import bulk_upsert_settings
from dropship_payouts.exceptions import PayoutRequestError
from dropship_payouts.utils import find_column, to_decimal

logger = logging.getLogger(__name__)

PRICE_COLUMNS = {
    'dropshipper_email': ('dropshipper email', 'dropshipper', 'email'),
    'product_uid': ('product uid', 'uid', 'sku/uid'),
    'product_name': ('product name', 'product'),
    'product_cost_per_unit': ('product cost per unit', 'cost per unit', 'product cost'),
}
OPTIONAL_PRICE_COLUMNS = {
    'sku': ('sku',),
    'product_weight': ('product weight', 'weight'),
}
RATE_COLUMNS = {
    'product_uid': ('product uid', 'uid', 'sku/uid'),
    'product_weight': ('product weight', 'weight'),
    'shipping_provider': ('shipping provider', 'courier', 'provider'),
    'rate': ('shipping rate per kg', 'shipping rate', 'rate'),
}


def _pick_sheet(sheet_names: List[str], keywords: Tuple[str, ...], position: int) -> Optional[str]:
    for name in sheet_names:
        if any(keyword in name.lower() for keyword in keywords):
            return name
    if len(sheet_names) > position:
        return sheet_names[position]
    return None


def _map_columns(df: pd.DataFrame, required: Dict, optional: Dict, sheet: str) -> Dict[str, str]:
    mapping = {}
    missing = []
    for field, candidates in required.items():
        column = find_column(df.columns, *candidates)
        if column is None:
            missing.append(candidates[0])
        else:
            mapping[field] = column
    if missing:
        raise PayoutRequestError(f"Sheet '{sheet}' is missing column(s): {', '.join(missing)}")
    for field, candidates in optional.items():
        column = find_column(df.columns, *candidates)
        if column is not None:
            mapping[field] = column
    return mapping


def _records(df: pd.DataFrame, mapping: Dict[str, str], key_fields: Tuple[str, ...]) -> List[Dict]:
    records = []
    for _, row in df.iterrows():
        record = {}
        for field, column in mapping.items():
            value = row[column]
            record[field] = None if pd.isna(value) else (value.strip() if isinstance(value, str) else value)
        if all(record.get(key) not in (None, '') for key in key_fields):
            records.append(record)
    return records


def read_settings_workbook(source: Union[str, bytes, io.BytesIO]) -> Tuple[List[Dict], List[Dict]]:
    """
    Read product prices and shipping rates from a settings workbook.

    The prices sheet is the first sheet whose name mentions "product" or
    "price" (else the first sheet); the rates sheet is the first whose name
    mentions "shipping" or "rate" (else the second sheet). Headers are matched
    case-insensitively.

    Args:
        source: Path or raw xlsx bytes

    Returns:
        Tuple of (price dicts, rate dicts)
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        sheets = pd.read_excel(source, sheet_name=None, engine='openpyxl')
    except Exception as e:
        logger.error(f"Error reading settings workbook: {e}")
        raise PayoutRequestError(f"Could not read settings workbook: {e}")

    names = list(sheets)
    prices_sheet = _pick_sheet(names, ('product', 'price'), 0)
    rates_sheet = _pick_sheet(names, ('shipping', 'rate'), 1)
    if rates_sheet == prices_sheet:
        rates_sheet = None

    prices, rates = [], []
    if prices_sheet is not None:
        df = sheets[prices_sheet]
        mapping = _map_columns(df, PRICE_COLUMNS, OPTIONAL_PRICE_COLUMNS, prices_sheet)
        prices = _records(df, mapping, ('dropshipper_email', 'product_uid'))
        for price in prices:
            price['product_uid'] = str(price['product_uid'])
            price['product_cost_per_unit'] = to_decimal(price.get('product_cost_per_unit'))
    if rates_sheet is not None:
        df = sheets[rates_sheet]
        mapping = _map_columns(df, RATE_COLUMNS, {}, rates_sheet)
        rates = _records(df, mapping, ('product_uid', 'shipping_provider', 'product_weight'))
        for rate in rates:
            rate['product_uid'] = str(rate['product_uid'])
            rate['rate'] = to_decimal(rate.get('rate'))

    logger.info(f"Read {len(prices)} price row(s) from '{prices_sheet}' and {len(rates)} rate row(s) from '{rates_sheet}'")
    return prices, rates


def import_settings(session: Session, source: Union[str, bytes, io.BytesIO]) -> Dict[str, int]:
    """Read a settings workbook and bulk upsert its prices and rates."""
    prices, rates = read_settings_workbook(source)
    return bulk_upsert_settings(session, prices, rates)
