from datetime import date, timedelta

import pandas as pd
import pytest

from replenishment_engine.core import (
    MAX_PROJECTION_DAYS, VELOCITY_FLOOR, DOS_SENTINEL,
    calculate_sales_stats, classify_dos, estimate_velocity, forecast_sku, run_forecast_engine
)
from replenishment_engine.models import (
    REFUND, InventorySnapshot, PolicySettings,
    inventory_to_frame, products_to_frame, sales_to_frame
)
from helpers import TODAY, days_ago, sale_events


# --- Stock reconciliation ---

def test_sales_after_base_date_are_deducted(chair, settings):
    snapshot = InventorySnapshot(base_qty=100, base_date=date(2025, 1, 1))
    sales = sale_events(chair.sku, [date(2025, 1, 2) + timedelta(days=i) for i in range(10)])

    result = forecast_sku(chair, snapshot, sales, settings, TODAY)

    assert result.sales_since == 10
    assert result.current_stock == 90


def test_base_date_itself_and_refunds_do_not_reduce_stock(chair, settings):
    snapshot = InventorySnapshot(base_qty=100, base_date=date(2025, 1, 1))
    sales = (
        sale_events(chair.sku, [date(2025, 1, 1), date(2024, 12, 31)])
        + sale_events(chair.sku, [date(2025, 1, 5), date(2025, 1, 6)], kind=REFUND)
        + sale_events(chair.sku, [date(2025, 1, 7)])
    )

    result = forecast_sku(chair, snapshot, sales, settings, TODAY)

    assert result.sales_since == 1
    assert result.current_stock == 99


def test_missing_base_date_treats_all_stock_as_on_hand(chair, settings):
    snapshot = InventorySnapshot(base_qty=40, base_date=None)
    sales = sale_events(chair.sku, days_ago(1, 2, 3))

    result = forecast_sku(chair, snapshot, sales, settings, TODAY)

    assert result.sales_since == 0
    assert result.current_stock == 40


def test_current_stock_is_clamped_at_zero(chair, settings):
    snapshot = InventorySnapshot(base_qty=3, base_date=date(2025, 1, 1))
    sales = sale_events(chair.sku, days_ago(1, 2, 3, 4, 5))

    result = forecast_sku(chair, snapshot, sales, settings, TODAY)

    assert result.current_stock == 0


def test_product_without_snapshot_gets_empty_defaults(chair, settings):
    result = forecast_sku(chair, None, [], settings, TODAY)

    assert result.current_stock == 0
    assert result.total_inventory == 0
    assert result.is_manual is False
    assert result.inbound_date is None


# --- Velocity estimation ---

def test_weighted_velocity_and_upward_trend(chair, settings):
    recent = [TODAY - timedelta(days=i % 7) for i in range(14)]
    older = [TODAY - timedelta(days=8 + i % 20) for i in range(16)]
    sales = sale_events(chair.sku, recent + older)

    result = forecast_sku(chair, InventorySnapshot(), sales, settings, TODAY)

    assert result.avg7 == pytest.approx(2.0)
    assert result.avg30 == pytest.approx(1.0)
    assert result.algo_daily == pytest.approx(1.6)
    assert result.final_daily == pytest.approx(1.6)
    assert result.is_manual is False
    assert result.trend == 'up'


@pytest.mark.parametrize('count7, count30', [(0, 0), (1, 1), (3, 20), (7, 7), (5, 30)])
def test_algo_daily_is_exact_weighted_blend(count7, count30):
    df = pd.DataFrame({'count_7d': [count7], 'count_30d': [count30], 'daily': [0.0]})

    df = estimate_velocity(df)

    assert df.loc[0, 'algo_daily'] == (count7 / 7) * 0.6 + (count30 / 30) * 0.4


def test_trend_bands():
    df = pd.DataFrame({
        'count_7d': [7, 1, 7],
        'count_30d': [30, 30, 60],
        'daily': [0.0, 0.0, 0.0]
    })

    df = estimate_velocity(df)

    # avg7 vs avg30: 1.0 vs 1.0, 0.14 vs 1.0, 1.0 vs 2.0
    assert list(df['trend']) == ['flat', 'down', 'down']


def test_manual_override_wins_and_suppresses_trend(chair, settings):
    sales = sale_events(chair.sku, days_ago(*range(0, 7)) * 3)

    result = forecast_sku(chair, InventorySnapshot(daily=0.5), sales, settings, TODAY)

    assert result.final_daily == 0.5
    assert result.is_manual is True
    assert result.trend is None
    assert result.algo_daily > 0.5


def test_no_sales_and_no_override_uses_velocity_floor(chair, settings):
    result = forecast_sku(chair, InventorySnapshot(base_qty=10), [], settings, TODAY)

    assert result.algo_daily == 0
    assert result.final_daily == VELOCITY_FLOOR
    assert result.dos == DOS_SENTINEL


def test_window_boundaries_are_inclusive():
    sales_df = sales_to_frame(sale_events('A', days_ago(7, 8, 30, 31)) + sale_events('A', days_ago(0), kind=REFUND))
    inventory_df = inventory_to_frame({'A': InventorySnapshot()})

    stats = calculate_sales_stats(sales_df, inventory_df, TODAY).set_index('sku')

    assert stats.loc['A', 'count_7d'] == 1
    assert stats.loc['A', 'count_30d'] == 3


def test_sales_stats_empty_ledger():
    stats = calculate_sales_stats(sales_to_frame([]), inventory_to_frame({}), TODAY)
    assert stats.empty
    assert list(stats.columns) == ['sku', 'sales_since', 'count_7d', 'count_30d']


# --- Timeline projection ---

def test_gap_when_eta_after_stockout(chair, settings):
    snapshot = InventorySnapshot(base_qty=50, daily=5, inbound_date=TODAY + timedelta(days=15))

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.run_out_date == TODAY + timedelta(days=10)
    assert result.gap_days == 5
    assert result.gap_qty == 25


def test_restock_split_with_gap(chair, settings):
    snapshot = InventorySnapshot(base_qty=50, daily=5, inbound=0, inbound_date=TODAY + timedelta(days=15))

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.target_qty == 450
    assert result.total_inventory == 50
    assert result.total_restock_needed == 400
    assert result.air_restock == 25
    assert result.sea_restock == 375
    assert result.air_restock + result.sea_restock >= result.total_restock_needed


@pytest.mark.parametrize('eta_offset, expected_gap', [(None, 0), (5, 0), (10, 0), (11, 1)])
def test_gap_exists_only_for_eta_strictly_after_stockout(chair, settings, eta_offset, expected_gap):
    eta = None if eta_offset is None else TODAY + timedelta(days=eta_offset)
    snapshot = InventorySnapshot(base_qty=50, daily=5, inbound_date=eta)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.gap_days == expected_gap
    assert result.gap_qty == expected_gap * 5
    assert result.air_restock == result.gap_qty


def test_run_out_date_floors_fractional_days(chair, settings):
    snapshot = InventorySnapshot(base_qty=10, daily=3)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.run_out_date == TODAY + timedelta(days=3)


def test_zero_stock_runs_out_today(chair, settings):
    snapshot = InventorySnapshot(base_qty=0, daily=2, inbound=30, inbound_date=TODAY + timedelta(days=4))

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.run_out_date == TODAY
    assert result.gap_days == 4
    assert result.gap_qty == 8


def test_air_restock_can_exceed_total_need(chair):
    settings = PolicySettings(lead_time=0, safety_stock=0, dead_stock_threshold=120, exchange_rate=7.2)
    snapshot = InventorySnapshot(base_qty=0, daily=10, inbound=0, inbound_date=TODAY + timedelta(days=100))

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.total_restock_needed == 0
    assert result.air_restock == 1000
    assert result.sea_restock == 0


def test_dos_uses_half_up_rounding(chair, settings):
    snapshot = InventorySnapshot(base_qty=5, daily=2)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.dos == 3


def test_dos_includes_inbound(chair, settings):
    snapshot = InventorySnapshot(base_qty=40, inbound=20, daily=2)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.dos == 30
    assert result.dos_band == 'healthy'


def test_dos_bands():
    assert list(classify_dos([0, 29, 30, 120, 121, DOS_SENTINEL])) == [
        'critical', 'critical', 'healthy', 'healthy', 'overstocked', 'overstocked'
    ]


def test_huge_stock_at_floor_velocity_stays_in_date_range(chair, settings):
    snapshot = InventorySnapshot(base_qty=10 ** 9)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.run_out_date == TODAY + timedelta(days=MAX_PROJECTION_DAYS)
    assert result.gap_days == 0


def test_far_eta_within_uncapped_horizon_is_not_a_gap(chair, settings):
    snapshot = InventorySnapshot(base_qty=10 ** 9, inbound_date=TODAY + timedelta(days=40000))

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.run_out_date == TODAY + timedelta(days=MAX_PROJECTION_DAYS)
    assert result.gap_days == 0
    assert result.air_restock == 0


def test_gap_beyond_projection_cap_counts_from_real_stockout(chair, settings):
    snapshot = InventorySnapshot(base_qty=37000, daily=1, inbound_date=TODAY + timedelta(days=40000))

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.run_out_date == TODAY + timedelta(days=MAX_PROJECTION_DAYS)
    assert result.gap_days == 3000
    assert result.gap_qty == 3000


# --- Replenishment decision ---

def test_dead_stock_quantity_value_and_bleed(chair, settings):
    snapshot = InventorySnapshot(base_qty=1000, daily=1)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.dead_qty == pytest.approx(880)
    assert result.unit_cost == pytest.approx(20.0)
    assert result.dead_value == pytest.approx(17600.0)
    assert result.bleeding_cost == pytest.approx(1760.0)


def test_no_dead_stock_within_threshold(chair, settings):
    snapshot = InventorySnapshot(base_qty=100, inbound=20, daily=1)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.dead_qty == 0
    assert result.dead_value == 0
    assert result.bleeding_cost == 0


def test_no_restock_when_inventory_covers_cycle(chair, settings):
    snapshot = InventorySnapshot(base_qty=500, daily=5)

    result = forecast_sku(chair, snapshot, [], settings, TODAY)

    assert result.total_restock_needed == 0
    assert result.sea_restock == 0
    assert result.air_restock == 0


def test_zero_velocity_scenario(chair, settings):
    result = forecast_sku(chair, InventorySnapshot(daily=0), [], settings, TODAY)

    assert result.algo_daily == 0
    assert result.final_daily == 0.001
    assert result.dos == 999


# --- Full pass ---

def test_engine_covers_every_catalog_sku(catalog, settings):
    inventory = {
        'CHAIR-BLK': InventorySnapshot(base_qty=20, base_date=date(2025, 2, 1)),
        'GHOST-SKU': InventorySnapshot(base_qty=5),
    }
    sales = sale_events('CHAIR-BLK', days_ago(1, 2, 3)) + sale_events('DESK-OAK', days_ago(10))

    df = run_forecast_engine(
        products_to_frame(catalog), sales_to_frame(sales), inventory_to_frame(inventory), settings, TODAY
    )

    assert list(df['sku']) == ['CHAIR-BLK', 'CHAIR-WHT', 'DESK-OAK']
    rows = df.set_index('sku')
    assert rows.loc['CHAIR-BLK', 'current_stock'] == 17
    assert rows.loc['CHAIR-WHT', 'current_stock'] == 0
    assert rows.loc['DESK-OAK', 'count_30d'] == 1
    assert (df['current_stock'] >= 0).all()


def test_engine_with_empty_catalog_returns_empty_frame(settings):
    df = run_forecast_engine(products_to_frame([]), sales_to_frame([]), inventory_to_frame({}), settings, TODAY)
    assert df.empty


def test_engine_does_not_mutate_inputs(catalog, settings):
    products_df = products_to_frame(catalog)
    sales_df = sales_to_frame(sale_events('CHAIR-BLK', days_ago(1)))
    before = sales_df.copy()

    run_forecast_engine(products_df, sales_df, inventory_to_frame({}), settings, TODAY)

    pd.testing.assert_frame_equal(sales_df, before)
    assert 'current_stock' not in products_df.columns
