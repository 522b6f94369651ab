# NIP/run_forecast.py
import os
import sys
import argparse
import logging

# Add the project root to the Python path
project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from utils.config_loader import load_app_config, setup_logging, load_policy_settings, resolve_as_of_date
from data_ingestion.record_loader import load_workbook
from replenishment_engine.core import run_forecast_engine
from replenishment_engine.reporting import filter_forecasts, summarize_by_parent, summarize_run

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = [
    'sku', 'parent_sku', 'name', 'current_stock', 'sales_since', 'avg7', 'avg30', 'algo_daily',
    'final_daily', 'is_manual', 'trend', 'run_out_date', 'inbound', 'inbound_date', 'gap_days',
    'gap_qty', 'dos', 'dos_band', 'target_qty', 'total_restock_needed', 'air_restock', 'sea_restock',
    'dead_qty', 'dead_value', 'bleeding_cost'
]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Recompute stock forecasts and restock recommendations.")
    parser.add_argument('--workbook', required=True, help="Workbook with Products, Sales and Inventory sheets")
    parser.add_argument('--config', default=os.path.join(project_root, 'settings.yaml'), help="Path to settings.yaml")
    parser.add_argument('--as-of', dest='as_of', help="Forecast as of this ISO date instead of today")
    parser.add_argument('--search', help="Only report SKUs matching these terms (SKU, parent SKU or name)")
    parser.add_argument('--output', help="Directory for forecast.csv and family_rollup.csv")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    config = load_app_config(args.config)
    if "error" in config:
        logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(levelname)s - %(message)s')
        logger.warning(f"Using default settings due to config error: {config['error']}")
        config = {}
    else:
        setup_logging(config)

    logger.info("=============================================")
    logger.info("STARTING NIP FORECAST RUN")
    logger.info("=============================================")

    settings = load_policy_settings(config)
    today = resolve_as_of_date(config, args.as_of)

    frames = load_workbook(args.workbook)
    if frames['products'].empty:
        logger.critical(f"No products loaded from {args.workbook}. Aborting forecast run.")
        return 1

    forecast_df = run_forecast_engine(frames['products'], frames['sales'], frames['inventory'], settings, today)
    forecast_df = filter_forecasts(forecast_df, args.search)

    summary = summarize_run(forecast_df)
    logger.info(
        f"SKUs: {summary['sku_count']} | critical: {summary['critical_count']} | "
        f"overstocked: {summary['overstocked_count']} | supply gaps: {summary['gap_count']} | "
        f"manual velocity: {summary['manual_count']}"
    )
    logger.info(
        f"Restock AIR: {summary['air_units']} units | SEA: {summary['sea_units']} units | "
        f"dead stock value: ${summary['dead_value']:.2f} | monthly bleed: ${summary['bleeding_cost']:.2f}"
    )

    if args.output and not forecast_df.empty:
        os.makedirs(args.output, exist_ok=True)
        forecast_path = os.path.join(args.output, 'forecast.csv')
        family_path = os.path.join(args.output, 'family_rollup.csv')
        forecast_df[OUTPUT_COLUMNS].to_csv(forecast_path, index=False)
        summarize_by_parent(forecast_df).to_csv(family_path, index=False)
        logger.info(f"Wrote {forecast_path} and {family_path}")

    logger.info("---------------------------------------------")
    logger.info("FINISHED NIP FORECAST RUN")
    return 0


if __name__ == "__main__":
    sys.exit(main())
