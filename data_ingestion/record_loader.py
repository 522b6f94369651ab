# NIP/data_ingestion/record_loader.py
import pandas as pd
import logging
import os

from replenishment_engine.models import (
    SALE, REFUND, PRODUCT_COLUMNS, SALES_COLUMNS, INVENTORY_COLUMNS, InventorySnapshot
)
from .utils import clean_numeric_value, clean_integer_value, parse_sheet_date, clean_sku_value

logger = logging.getLogger(__name__)

# Spreadsheet headers as exported by the seller's templates.
PRODUCT_HEADERS = {
    '子体SKU': 'sku',
    '父体SKU': 'parent_sku',
    '中文名称': 'name',
    '采购成本(CNY)': 'cost_cny',
    '头程运费(CNY)': 'ship_cny',
    '单件月度仓储费(USD)': 'storage_usd',
    '默认尾程运费(USD)': 'last_mile_usd',
}
SALES_HEADERS = {
    '订单号': 'order_id',
    '日期': 'date',
    '子体SKU': 'sku',
    '类型': 'type',
    '金额(USD)': 'amount',
    '实际尾程运费(USD)': 'shipping_fee',
    '订单仓储费(USD)': 'storage_fee',
}
INVENTORY_HEADERS = {
    '子体SKU': 'sku',
    '盘点基数': 'base_qty',
    '盘点日期': 'base_date',
    '在途库存': 'inbound',
    '预计到货日': 'inbound_date',
}
# Manual velocity may come under either header; the first non-zero wins.
MANUAL_DAILY_HEADERS = ['预估日销量', '人工日销', 'daily']

WORKBOOK_SHEETS = {'products': 'Products', 'sales': 'Sales', 'inventory': 'Inventory'}


def read_sheet(file_path, sheet_name=0) -> pd.DataFrame:
    """Reads one sheet of an .xlsx/.xls workbook, or a .csv file, into a raw DataFrame."""
    if not os.path.exists(file_path):
        logger.error(f"INGEST: File not found: {file_path}")
        return pd.DataFrame()

    try:
        if file_path.lower().endswith('.csv'):
            df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
        else:
            df = pd.read_excel(file_path, sheet_name=sheet_name, engine='openpyxl')
    except ValueError as e:
        # pandas raises ValueError for a missing sheet name.
        logger.warning(f"INGEST: Sheet '{sheet_name}' not readable in {file_path}: {e}")
        return pd.DataFrame()
    except Exception as e:
        logger.error(f"INGEST: Error reading file {file_path}: {e}", exc_info=True)
        return pd.DataFrame()

    if df.empty:
        logger.warning(f"INGEST: Sheet '{sheet_name}' in {file_path} is empty.")
    return df


def _rename_and_check(raw_df: pd.DataFrame, headers: dict, required: list, label: str):
    if raw_df is None or raw_df.empty:
        logger.warning(f"INGEST: No {label} rows to load.")
        return None

    df = raw_df.rename(columns=headers)
    missing_cols = [col for col in required if col not in df.columns]
    if missing_cols:
        logger.error(f"INGEST: Missing required {label} columns {missing_cols}. Available: {raw_df.columns.tolist()}")
        return None

    df = df.copy()
    df['sku'] = df['sku'].apply(clean_sku_value)
    blank = df['sku'] == ''
    if blank.any():
        logger.warning(f"INGEST: Dropping {int(blank.sum())} {label} rows without an SKU.")
        df = df[~blank]
    return df


def load_products(raw_df: pd.DataFrame) -> pd.DataFrame:
    """Maps a raw catalog sheet to the canonical product frame, one row per SKU."""
    df = _rename_and_check(raw_df, PRODUCT_HEADERS, ['sku', 'parent_sku'], 'product')
    if df is None:
        return pd.DataFrame(columns=PRODUCT_COLUMNS)

    df['parent_sku'] = df['parent_sku'].apply(clean_sku_value)
    df['name'] = df['name'].fillna('').astype(str) if 'name' in df.columns else ''
    for col in ['cost_cny', 'ship_cny', 'storage_usd', 'last_mile_usd']:
        df[col] = df[col].apply(clean_numeric_value) if col in df.columns else 0.0

    duplicated = df['sku'].duplicated(keep='last')
    if duplicated.any():
        logger.warning(f"INGEST: Product sheet repeats {int(duplicated.sum())} SKUs; keeping the last row of each.")
        df = df[~duplicated]

    logger.info(f"INGEST: Loaded {len(df)} products.")
    return df[PRODUCT_COLUMNS].reset_index(drop=True)


def load_sales(raw_df: pd.DataFrame) -> pd.DataFrame:
    """Maps a raw sales ledger sheet to the canonical sales frame."""
    df = _rename_and_check(raw_df, SALES_HEADERS, ['sku', 'date', 'type'], 'sales')
    if df is None:
        return pd.DataFrame(columns=SALES_COLUMNS)

    df['order_id'] = df['order_id'].fillna('').astype(str) if 'order_id' in df.columns else ''
    df['date'] = df['date'].apply(parse_sheet_date)
    df['type'] = df['type'].fillna('').astype(str).str.strip()
    for col in ['amount', 'shipping_fee', 'storage_fee']:
        df[col] = df[col].apply(clean_numeric_value) if col in df.columns else 0.0

    unknown_types = ~df['type'].isin([SALE, REFUND])
    if unknown_types.any():
        logger.warning(f"INGEST: {int(unknown_types.sum())} sales rows have a type other than {SALE}/{REFUND}; they will not count as sales.")
    undated = df['date'].isna()
    if undated.any():
        logger.warning(f"INGEST: {int(undated.sum())} sales rows have no usable date.")

    logger.info(f"INGEST: Loaded {len(df)} sales ledger rows.")
    return df[SALES_COLUMNS].reset_index(drop=True)


def _first_non_zero_daily(df: pd.DataFrame) -> pd.Series:
    daily = pd.Series(0.0, index=df.index)
    for header in MANUAL_DAILY_HEADERS:
        if header not in df.columns:
            continue
        candidate = df[header].apply(clean_numeric_value)
        daily = daily.where(daily != 0, candidate)
    return daily


def load_inventory(raw_df: pd.DataFrame) -> pd.DataFrame:
    """Maps a raw stock sheet to the canonical inventory frame, one row per SKU."""
    df = _rename_and_check(raw_df, INVENTORY_HEADERS, ['sku'], 'inventory')
    if df is None:
        return pd.DataFrame(columns=INVENTORY_COLUMNS)

    for col in ['base_qty', 'inbound']:
        df[col] = df[col].apply(clean_integer_value) if col in df.columns else 0
    for col in ['base_date', 'inbound_date']:
        df[col] = df[col].apply(parse_sheet_date) if col in df.columns else None
    df['daily'] = _first_non_zero_daily(df)

    df = df.drop_duplicates(subset='sku', keep='last')
    logger.info(f"INGEST: Loaded inventory snapshots for {len(df)} SKUs.")
    return df[INVENTORY_COLUMNS].reset_index(drop=True)


def merge_product_import(catalog_df: pd.DataFrame, imported_df: pd.DataFrame) -> pd.DataFrame:
    """Imported SKUs replace existing catalog rows; the rest of the catalog is kept in order."""
    if imported_df is None or imported_df.empty:
        return catalog_df
    if catalog_df is None or catalog_df.empty:
        return imported_df.reset_index(drop=True)

    kept = catalog_df[~catalog_df['sku'].isin(imported_df['sku'])]
    merged = pd.concat([kept, imported_df], ignore_index=True)
    logger.info(f"INGEST: Catalog import replaced {len(catalog_df) - len(kept)} and added {len(merged) - len(catalog_df)} products.")
    return merged


def append_sales(ledger_df: pd.DataFrame, imported_df: pd.DataFrame) -> pd.DataFrame:
    if imported_df is None or imported_df.empty:
        return ledger_df
    if ledger_df is None or ledger_df.empty:
        return imported_df.reset_index(drop=True)
    return pd.concat([ledger_df, imported_df], ignore_index=True)


def inventory_state_from_frame(inventory_df: pd.DataFrame) -> dict:
    """Builds the SKU -> InventorySnapshot store from a canonical inventory frame."""
    state = {}
    if inventory_df is None or inventory_df.empty:
        return state
    for row in inventory_df.itertuples(index=False):
        state[row.sku] = InventorySnapshot(
            base_qty=int(row.base_qty),
            base_date=parse_sheet_date(row.base_date),
            inbound=int(row.inbound),
            inbound_date=parse_sheet_date(row.inbound_date),
            daily=float(row.daily)
        )
    return state


def load_workbook(file_path) -> dict:
    """
    Loads the Products, Sales and Inventory sheets of a backup-style workbook
    into canonical frames. A missing sheet yields an empty frame.
    """
    logger.info(f"INGEST: Loading workbook {file_path}")
    return {
        'products': load_products(read_sheet(file_path, WORKBOOK_SHEETS['products'])),
        'sales': load_sales(read_sheet(file_path, WORKBOOK_SHEETS['sales'])),
        'inventory': load_inventory(read_sheet(file_path, WORKBOOK_SHEETS['inventory'])),
    }
