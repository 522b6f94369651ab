# NIP/replenishment_engine/reporting.py
import pandas as pd
import numpy as np
import logging

from .core import DOS_MIN_VELOCITY, DOS_SENTINEL, classify_dos

logger = logging.getLogger(__name__)

FAMILY_SUM_COLUMNS = [
    'current_stock', 'inbound', 'total_inventory', 'final_daily', 'total_restock_needed',
    'air_restock', 'sea_restock', 'dead_qty', 'dead_value', 'bleeding_cost'
]


def filter_forecasts(forecast_df: pd.DataFrame, search: str = None) -> pd.DataFrame:
    """
    Keeps rows where every whitespace-separated search term appears in
    "sku parent_sku name" (case-insensitive). A parent SKU term therefore
    returns all of its children.
    """
    if forecast_df is None or forecast_df.empty:
        return pd.DataFrame()
    if not search or not search.strip():
        return forecast_df

    haystack = (
        forecast_df['sku'].astype(str) + ' ' +
        forecast_df['parent_sku'].astype(str) + ' ' +
        forecast_df['name'].astype(str)
    ).str.lower()

    mask = pd.Series(True, index=forecast_df.index)
    for term in search.lower().split():
        mask &= haystack.str.contains(term, regex=False)

    logger.info(f"REPORT: Search '{search}' matched {int(mask.sum())} of {len(forecast_df)} SKUs.")
    return forecast_df[mask]


def summarize_by_parent(forecast_df: pd.DataFrame) -> pd.DataFrame:
    """Rolls per-SKU forecasts up to one row per parent SKU (product family)."""
    if forecast_df is None or forecast_df.empty:
        return pd.DataFrame()

    grouped = forecast_df.groupby('parent_sku')
    family_df = grouped[FAMILY_SUM_COLUMNS].sum()
    family_df['sku_count'] = grouped['sku'].count()
    family_df['gap_sku_count'] = grouped['has_gap'].sum().astype(int)
    family_df['max_gap_days'] = grouped['gap_days'].max().astype(int)
    family_df = family_df.reset_index()

    family_df['dos'] = np.where(
        family_df['final_daily'] > DOS_MIN_VELOCITY,
        np.floor(family_df['total_inventory'] / family_df['final_daily'] + 0.5),
        DOS_SENTINEL
    ).astype(int)
    family_df['dos_band'] = classify_dos(family_df['dos'])

    logger.info(f"REPORT: Rolled {len(forecast_df)} SKUs into {len(family_df)} families.")
    return family_df


def summarize_run(forecast_df: pd.DataFrame) -> dict:
    if forecast_df is None or forecast_df.empty:
        return {
            'sku_count': 0, 'critical_count': 0, 'overstocked_count': 0, 'gap_count': 0,
            'manual_count': 0, 'air_units': 0, 'sea_units': 0, 'dead_value': 0.0, 'bleeding_cost': 0.0
        }

    return {
        'sku_count': len(forecast_df),
        'critical_count': int((forecast_df['dos_band'] == 'critical').sum()),
        'overstocked_count': int((forecast_df['dos_band'] == 'overstocked').sum()),
        'gap_count': int(forecast_df['has_gap'].sum()),
        'manual_count': int(forecast_df['is_manual'].sum()),
        'air_units': int(forecast_df['air_restock'].sum()),
        'sea_units': int(forecast_df['sea_restock'].sum()),
        'dead_value': float(forecast_df['dead_value'].sum()),
        'bleeding_cost': float(forecast_df['bleeding_cost'].sum())
    }
