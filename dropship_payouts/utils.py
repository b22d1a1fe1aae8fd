"""
Utility functions for the payout application.
"""
import re
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional
import pandas as pd

logger = logging.getLogger(__name__)

_NON_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def to_decimal(value, default: Optional[Decimal] = Decimal('0')) -> Optional[Decimal]:
    """
    Convert a spreadsheet or JSON value to Decimal.

    Args:
        value: Number, numeric string (currency symbols and commas allowed) or NaN
        default: Returned for blank or unparsable input

    Returns:
        Decimal value
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return default
    if isinstance(value, Decimal):
        return value
    text = str(value).replace(',', '').replace('₹', '').strip()
    if not text:
        return default
    try:
        return Decimal(text)
    except InvalidOperation:
        logger.debug(f"Could not convert {value!r} to Decimal")
        return default


def parse_date(value) -> Optional[date]:
    """Parse a date in any format pandas understands; None when blank or invalid."""
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    parsed = pd.to_datetime(value, errors='coerce')
    if pd.isna(parsed):
        return None
    return parsed.date()


def normalize_header(header) -> str:
    """Lower-case a column header and collapse whitespace and underscores."""
    return ' '.join(str(header).replace('_', ' ').lower().split())


def find_column(columns: Iterable, *candidates: str) -> Optional[str]:
    """Return the first column whose normalized header matches one of ``candidates``."""
    lookup = {normalize_header(col): col for col in columns}
    for candidate in candidates:
        if normalize_header(candidate) in lookup:
            return lookup[normalize_header(candidate)]
    return None


def normalize_email(value) -> str:
    """Dropshipper emails are stored and compared lower-case."""
    return str(value or '').strip().lower()


def safe_filename_part(value: str) -> str:
    return _NON_FILENAME_CHARS.sub('-', value).strip('-') or 'all'
