# NIP/replenishment_engine/inventory_state.py
import logging
from dataclasses import replace
from datetime import date

from .models import InventorySnapshot

logger = logging.getLogger(__name__)


def get_snapshot(inventory_state: dict, sku: str) -> InventorySnapshot:
    """Returns the stored snapshot for an SKU, or an empty one if it was never recorded."""
    snapshot = inventory_state.get(sku)
    if snapshot is None:
        return InventorySnapshot()
    return snapshot


def update_inventory_field(inventory_state: dict, sku: str, field: str, value, today: date) -> InventorySnapshot:
    """
    Updates one field of an SKU's snapshot in place, creating the snapshot if needed.

    A new base quantity is a new physical count, so editing `base_qty` also
    moves `base_date` to `today`. Editing `base_date` alone leaves the
    quantity untouched.
    """
    if field not in InventorySnapshot.field_names():
        raise KeyError(f"Unknown inventory field: {field}")

    snapshot = get_snapshot(inventory_state, sku)
    changes = {field: value}
    if field == 'base_qty':
        changes['base_date'] = today

    updated = replace(snapshot, **changes)
    inventory_state[sku] = updated
    logger.info(f"STATE: Updated {sku} {', '.join(f'{k}={v}' for k, v in changes.items())}")
    return updated


def apply_inventory_import(inventory_state: dict, snapshots: dict) -> dict:
    """Overwrites the snapshots of the imported SKUs; SKUs not in the import keep their state."""
    for sku, snapshot in snapshots.items():
        inventory_state[sku] = snapshot
    logger.info(f"STATE: Applied inventory import for {len(snapshots)} SKUs ({len(inventory_state)} tracked).")
    return inventory_state
