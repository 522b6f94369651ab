# NIP/data_ingestion/utils.py
import pandas as pd
import re
import math
import numbers
import logging
from datetime import date, datetime, timedelta

logger = logging.getLogger(__name__)

# Day 25569 of the Excel 1900 date system is 1970-01-01.
EXCEL_EPOCH_OFFSET_DAYS = 25569
UNIX_EPOCH = date(1970, 1, 1)


def clean_numeric_value(value):
    """
    Cleans a spreadsheet cell for numeric conversion.
    Removes currency symbols and thousands separators; unparseable cells become 0.0.
    """
    if value is None or pd.isna(value):
        return 0.0
    if isinstance(value, numbers.Real):
        return float(value)

    s_value = str(value).strip()
    s_value = re.sub(r'[^\d.-]', '', s_value) # Keep digits, decimal and minus sign

    try:
        return float(s_value) if s_value else 0.0
    except ValueError:
        return 0.0


def clean_integer_value(value):
    """Like clean_numeric_value, truncated to int. '12.0' and '1,200' both parse."""
    return int(clean_numeric_value(value))


def parse_sheet_date(value):
    """
    Converts a spreadsheet date cell to a date.

    Accepts date/datetime objects, ISO-like strings and Excel serial numbers.
    Empty or unparseable cells return None.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        parsed = pd.to_datetime(value, errors='coerce')
        if pd.isna(parsed):
            logger.warning(f"INGEST: Could not parse date value '{value}'.")
            return None
        return parsed.date()
    if isinstance(value, datetime):  # includes pd.Timestamp
        return None if pd.isna(value) else value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, numbers.Real):
        if pd.isna(value) or value == 0:
            return None
        # The fraction is the time of day; it never moves the calendar date.
        return UNIX_EPOCH + timedelta(days=math.floor(value - EXCEL_EPOCH_OFFSET_DAYS))
    if pd.isna(value):
        return None
    logger.warning(f"INGEST: Unsupported date cell type {type(value).__name__}.")
    return None


def clean_sku_value(value):
    """Normalizes an SKU cell to a stripped string. Numeric SKUs read as floats lose their '.0'."""
    if value is None or pd.isna(value):
        return ''
    if isinstance(value, numbers.Real) and not isinstance(value, bool) and float(value).is_integer():
        return str(int(value))
    return str(value).strip()
