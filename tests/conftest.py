import pytest

from replenishment_engine.models import Product, PolicySettings
from helpers import TODAY


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def settings():
    return PolicySettings(lead_time=60, safety_stock=30, dead_stock_threshold=120, exchange_rate=7.2)


@pytest.fixture
def chair():
    return Product(sku='CHAIR-BLK', parent_sku='CHAIR', name='Office chair black',
                   cost_cny=100.0, ship_cny=44.0, storage_usd=2.0, last_mile_usd=10.0)


@pytest.fixture
def catalog(chair):
    return [
        chair,
        Product(sku='CHAIR-WHT', parent_sku='CHAIR', name='Office chair white',
                cost_cny=100.0, ship_cny=44.0, storage_usd=2.0),
        Product(sku='DESK-OAK', parent_sku='DESK', name='Standing desk oak',
                cost_cny=720.0, ship_cny=0.0, storage_usd=5.0),
    ]
