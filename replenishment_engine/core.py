# NIP/replenishment_engine/core.py
import pandas as pd
import numpy as np
from datetime import date
import logging

from .models import (
    SALE, PRODUCT_COLUMNS, INVENTORY_COLUMNS,
    DerivedForecast, PolicySettings,
    products_to_frame, sales_to_frame, inventory_to_frame
)

logger = logging.getLogger(__name__)

RECENT_WINDOW_DAYS = 7
BASELINE_WINDOW_DAYS = 30
RECENT_WEIGHT = 0.6
BASELINE_WEIGHT = 0.4
VELOCITY_FLOOR = 0.001
TREND_UP_RATIO = 1.1
TREND_DOWN_RATIO = 0.9

DOS_MIN_VELOCITY = 0.01
DOS_SENTINEL = 999
DOS_CRITICAL_DAYS = 30
DOS_OVERSTOCK_DAYS = 120

# Upper bound on the stockout horizon so near-zero velocities stay inside the datetime range.
MAX_PROJECTION_DAYS = 36500

STATS_COLUMNS = ['sku', 'sales_since', 'count_7d', 'count_30d']


def _as_timestamp(value) -> pd.Timestamp:
    return pd.Timestamp(value).normalize()


def _to_day_series(series: pd.Series) -> pd.Series:
    return pd.to_datetime(series, errors='coerce').dt.normalize()


def calculate_sales_stats(sales_df: pd.DataFrame, inventory_df: pd.DataFrame, today: date) -> pd.DataFrame:
    """
    Counts Sale events per SKU for one as-of date: sales after the snapshot
    base date and sales inside the 7 and 30 day trailing windows.
    Refund events never count.
    """
    if sales_df is None or sales_df.empty:
        return pd.DataFrame(columns=STATS_COLUMNS)

    today_ts = _as_timestamp(today)
    logger.info(f"ENGINE: Calculating sales stats as of {today_ts.date()} from {len(sales_df)} ledger rows.")

    sales = sales_df.loc[sales_df['type'] == SALE, ['sku', 'date']].copy()
    sales['date'] = _to_day_series(sales['date'])
    num_failed_dates = sales['date'].isna().sum()
    if num_failed_dates > 0:
        logger.warning(f"ENGINE: Ignoring {num_failed_dates} Sale events with unparseable dates.")
        sales = sales.dropna(subset=['date'])

    if sales.empty:
        return pd.DataFrame(columns=STATS_COLUMNS)

    base_dates = pd.DataFrame(columns=['sku', 'base_date'])
    if inventory_df is not None and not inventory_df.empty and 'base_date' in inventory_df.columns:
        base_dates = inventory_df[['sku', 'base_date']].drop_duplicates(subset='sku', keep='last').copy()
    base_dates['base_date'] = _to_day_series(base_dates['base_date'])

    sales = pd.merge(sales, base_dates, on='sku', how='left')
    # NaT base dates compare False, so never-counted SKUs report zero sales since.
    sales['after_base'] = sales['date'] > sales['base_date']
    sales['in_7d'] = sales['date'] >= today_ts - pd.Timedelta(days=RECENT_WINDOW_DAYS)
    sales['in_30d'] = sales['date'] >= today_ts - pd.Timedelta(days=BASELINE_WINDOW_DAYS)

    stats = sales.groupby('sku').agg(
        sales_since=('after_base', 'sum'),
        count_7d=('in_7d', 'sum'),
        count_30d=('in_30d', 'sum')
    ).reset_index()
    for col in ['sales_since', 'count_7d', 'count_30d']:
        stats[col] = stats[col].astype(int)

    logger.info(f"ENGINE: Calculated sales stats for {len(stats)} SKUs")
    return stats


def _prepare_master_frame(products_df: pd.DataFrame, inventory_df: pd.DataFrame, sales_stats_df: pd.DataFrame) -> pd.DataFrame:
    df = products_df.copy()
    for col in PRODUCT_COLUMNS:
        if col not in df.columns: df[col] = None

    duplicated = df['sku'].duplicated(keep='last')
    if duplicated.any():
        logger.warning(f"ENGINE: Catalog has {duplicated.sum()} duplicate SKUs; keeping the last entry of each.")
        df = df[~duplicated]

    if inventory_df is not None and not inventory_df.empty:
        inventory = inventory_df.drop_duplicates(subset='sku', keep='last')
        inventory = inventory[[c for c in INVENTORY_COLUMNS if c in inventory.columns]]
        df = pd.merge(df, inventory, on='sku', how='left')
    if sales_stats_df is not None and not sales_stats_df.empty:
        df = pd.merge(df, sales_stats_df, on='sku', how='left')

    # SKUs without a snapshot get the create-on-first-reference defaults.
    numeric_cols = {
        'base_qty': 0, 'inbound': 0, 'daily': 0.0, 'sales_since': 0, 'count_7d': 0, 'count_30d': 0,
        'cost_cny': 0.0, 'ship_cny': 0.0, 'storage_usd': 0.0, 'last_mile_usd': 0.0
    }
    for col, default in numeric_cols.items():
        if col not in df.columns: df[col] = default
        df[col] = pd.to_numeric(df[col], errors='coerce').fillna(default)
    for col in ['base_qty', 'inbound', 'sales_since', 'count_7d', 'count_30d']:
        df[col] = df[col].astype(int)

    for col in ['base_date', 'inbound_date']:
        if col not in df.columns: df[col] = pd.NaT
        df[col] = _to_day_series(df[col])

    df['parent_sku'] = df['parent_sku'].fillna('')
    df['name'] = df['name'].fillna('')
    return df.reset_index(drop=True)


def reconcile_stock(df: pd.DataFrame) -> pd.DataFrame:
    """Stage 1: counted base quantity minus sales since the count, never below zero."""
    df['current_stock'] = np.maximum(0, df['base_qty'] - df['sales_since']).astype(int)
    return df


def estimate_velocity(df: pd.DataFrame) -> pd.DataFrame:
    """Stage 2: weighted 7/30 day velocity, manual override and trend."""
    df['avg7'] = df['count_7d'] / RECENT_WINDOW_DAYS
    df['avg30'] = df['count_30d'] / BASELINE_WINDOW_DAYS
    df['algo_daily'] = df['avg7'] * RECENT_WEIGHT + df['avg30'] * BASELINE_WEIGHT

    df['is_manual'] = df['daily'] > 0
    df['final_daily'] = np.where(
        df['is_manual'],
        df['daily'],
        np.where(df['algo_daily'] > 0, df['algo_daily'], VELOCITY_FLOOR)
    )

    trend = np.select(
        [df['avg7'] > df['avg30'] * TREND_UP_RATIO, df['avg7'] < df['avg30'] * TREND_DOWN_RATIO],
        ['up', 'down'],
        default='flat'
    )
    df['trend'] = np.where(df['is_manual'], None, trend)
    return df


def project_timeline(df: pd.DataFrame, today: date) -> pd.DataFrame:
    """Stage 3: stockout date, supply gap against the inbound ETA, days of supply."""
    today_ts = _as_timestamp(today)

    df['days_left'] = df['current_stock'] / df['final_daily']
    run_out_offset = np.floor(df['days_left'])
    # Only the reported date is capped; the gap check uses the uncapped offset.
    df['run_out_date'] = today_ts + pd.to_timedelta(
        run_out_offset.clip(upper=MAX_PROJECTION_DAYS).astype(int), unit='D'
    )

    eta_offset = (df['inbound_date'] - today_ts) / pd.Timedelta(days=1)
    df['has_gap'] = eta_offset.notna() & (eta_offset > run_out_offset)
    gap_span = (eta_offset - run_out_offset).fillna(0)
    df['gap_days'] = np.where(df['has_gap'], np.ceil(gap_span), 0).astype(int)
    df['gap_qty'] = np.where(df['has_gap'], np.ceil(df['gap_days'] * df['final_daily']), 0).astype(int)

    df['total_inventory'] = df['current_stock'] + df['inbound']
    # Half-up rounding, not banker's rounding.
    df['dos'] = np.where(
        df['final_daily'] > DOS_MIN_VELOCITY,
        np.floor(df['total_inventory'] / df['final_daily'] + 0.5),
        DOS_SENTINEL
    ).astype(int)
    df['dos_band'] = classify_dos(df['dos'])
    return df


def classify_dos(dos):
    """Maps days of supply to the fixed critical / healthy / overstocked bands."""
    dos = np.asarray(dos)
    return np.select(
        [dos < DOS_CRITICAL_DAYS, dos > DOS_OVERSTOCK_DAYS],
        ['critical', 'overstocked'],
        default='healthy'
    )


def decide_replenishment(df: pd.DataFrame, settings: PolicySettings) -> pd.DataFrame:
    """Stage 4: air/sea restock split and dead-stock exposure."""
    cycle_days = settings.lead_time + settings.safety_stock
    df['target_qty'] = np.ceil(df['final_daily'] * cycle_days).astype(int)
    df['total_restock_needed'] = np.maximum(0, df['target_qty'] - df['total_inventory']).astype(int)

    # Only the gap shortfall is expedited; the rest of the cycle goes by sea.
    df['air_restock'] = df['gap_qty'].astype(int)
    df['sea_restock'] = np.maximum(0, df['total_restock_needed'] - df['air_restock']).astype(int)

    df['dead_qty'] = np.maximum(0, df['total_inventory'] - df['final_daily'] * settings.dead_stock_threshold)
    df['unit_cost'] = (df['cost_cny'] + df['ship_cny']) / settings.exchange_rate
    df['dead_value'] = df['dead_qty'] * df['unit_cost']
    df['bleeding_cost'] = df['dead_qty'] * df['storage_usd']
    return df


def run_forecast_engine(
    products_df: pd.DataFrame,
    sales_df: pd.DataFrame,
    inventory_df: pd.DataFrame,
    settings: PolicySettings,
    today: date
) -> pd.DataFrame:
    """
    Recomputes the full forecast for every catalog SKU.

    The same settings value and as-of date are used for every row of the pass.
    Inventory rows for SKUs missing from the catalog are ignored.
    """
    if products_df is None or products_df.empty:
        logger.warning("ENGINE: Product catalog is empty. Nothing to forecast.")
        return pd.DataFrame()

    logger.info(f"ENGINE: Running forecast engine for {len(products_df)} products as of {_as_timestamp(today).date()}...")

    sales_stats_df = calculate_sales_stats(sales_df, inventory_df, today)
    df = _prepare_master_frame(products_df, inventory_df, sales_stats_df)

    df = reconcile_stock(df)
    df = estimate_velocity(df)
    df = project_timeline(df, today)
    df = decide_replenishment(df, settings)

    logger.debug(f"ENGINE: Gap SKUs = {int(df['has_gap'].sum())}, manual overrides = {int(df['is_manual'].sum())}")
    logger.info(f"ENGINE: Forecast complete for {len(df)} SKUs.")
    return df


def _optional_date(value):
    return None if pd.isna(value) else value.date()


def forecast_records(forecast_df: pd.DataFrame) -> list:
    """Converts engine output rows into DerivedForecast records."""
    records = []
    if forecast_df is None or forecast_df.empty:
        return records
    for row in forecast_df.itertuples(index=False):
        records.append(DerivedForecast(
            sku=row.sku,
            parent_sku=row.parent_sku,
            name=row.name,
            current_stock=int(row.current_stock),
            sales_since=int(row.sales_since),
            avg7=float(row.avg7),
            avg30=float(row.avg30),
            algo_daily=float(row.algo_daily),
            final_daily=float(row.final_daily),
            is_manual=bool(row.is_manual),
            trend=row.trend,
            run_out_date=row.run_out_date.date(),
            gap_days=int(row.gap_days),
            gap_qty=int(row.gap_qty),
            dos=int(row.dos),
            dos_band=str(row.dos_band),
            target_qty=int(row.target_qty),
            total_inventory=int(row.total_inventory),
            total_restock_needed=int(row.total_restock_needed),
            air_restock=int(row.air_restock),
            sea_restock=int(row.sea_restock),
            dead_qty=float(row.dead_qty),
            unit_cost=float(row.unit_cost),
            dead_value=float(row.dead_value),
            bleeding_cost=float(row.bleeding_cost),
            inbound_date=_optional_date(row.inbound_date)
        ))
    return records


def forecast_sku(product, snapshot, sales, settings: PolicySettings, today: date) -> DerivedForecast:
    """Runs the engine for a single product from typed records."""
    products_df = products_to_frame([product])
    sales_df = sales_to_frame([s for s in sales if s.sku == product.sku])
    inventory_df = inventory_to_frame({product.sku: snapshot}) if snapshot is not None else pd.DataFrame(columns=INVENTORY_COLUMNS)
    forecast_df = run_forecast_engine(products_df, sales_df, inventory_df, settings, today)
    return forecast_records(forecast_df)[0]
