from datetime import date, timedelta

from replenishment_engine.models import SALE, SaleEvent

TODAY = date(2025, 3, 1)


def sale_events(sku, dates, kind=SALE):
    return [
        SaleEvent(order_id=f"{sku}-{kind}-{i}", date=d, sku=sku, type=kind, amount=20.0, shipping_fee=3.0)
        for i, d in enumerate(dates)
    ]


def days_ago(*offsets):
    return [TODAY - timedelta(days=n) for n in offsets]
