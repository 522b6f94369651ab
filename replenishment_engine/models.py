# NIP/replenishment_engine/models.py
"""
Typed records consumed and produced by the replenishment engine.

The engine itself works on pandas DataFrames; these records are the
row-level view of the same data for callers that hold single products.
"""
from dataclasses import dataclass, fields, asdict
from datetime import date
from typing import Optional

import pandas as pd

SALE = 'Sale'
REFUND = 'Refund'

# Canonical column layout of the frames the engine consumes.
PRODUCT_COLUMNS = ['sku', 'parent_sku', 'name', 'cost_cny', 'ship_cny', 'storage_usd', 'last_mile_usd']
SALES_COLUMNS = ['order_id', 'date', 'sku', 'type', 'amount', 'shipping_fee', 'storage_fee']
INVENTORY_COLUMNS = ['sku', 'base_qty', 'base_date', 'inbound', 'inbound_date', 'daily']


@dataclass(frozen=True)
class Product:
    sku: str
    parent_sku: str
    name: str = ''
    cost_cny: float = 0.0
    ship_cny: float = 0.0
    storage_usd: float = 0.0
    last_mile_usd: float = 0.0


@dataclass(frozen=True)
class SaleEvent:
    order_id: str
    date: date
    sku: str
    type: str = SALE
    amount: float = 0.0
    shipping_fee: float = 0.0
    storage_fee: float = 0.0


@dataclass
class InventorySnapshot:
    """Manually recorded stock position for one SKU. `daily` of 0 means no override."""
    base_qty: int = 0
    base_date: Optional[date] = None
    inbound: int = 0
    inbound_date: Optional[date] = None
    daily: float = 0.0

    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]


@dataclass(frozen=True)
class PolicySettings:
    lead_time: int = 60
    safety_stock: int = 30
    dead_stock_threshold: int = 120
    exchange_rate: float = 7.2

    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]


@dataclass
class DerivedForecast:
    sku: str
    parent_sku: str
    name: str
    current_stock: int
    sales_since: int
    avg7: float
    avg30: float
    algo_daily: float
    final_daily: float
    is_manual: bool
    trend: Optional[str]
    run_out_date: date
    gap_days: int
    gap_qty: int
    dos: int
    dos_band: str
    target_qty: int
    total_inventory: int
    total_restock_needed: int
    air_restock: int
    sea_restock: int
    dead_qty: float
    unit_cost: float
    dead_value: float
    bleeding_cost: float
    inbound_date: Optional[date] = None

    def to_dict(self):
        return asdict(self)


def products_to_frame(products):
    return pd.DataFrame([asdict(p) for p in products], columns=PRODUCT_COLUMNS)


def sales_to_frame(sales):
    return pd.DataFrame([asdict(s) for s in sales], columns=SALES_COLUMNS)


def inventory_to_frame(state):
    """Flattens an SKU -> InventorySnapshot mapping into the inventory frame."""
    rows = [{'sku': sku, **asdict(snapshot)} for sku, snapshot in state.items()]
    return pd.DataFrame(rows, columns=INVENTORY_COLUMNS)
