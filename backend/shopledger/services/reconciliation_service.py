# Overview: Cross-channel sales reconciliation (daily buckets, per-product rollups) and report loaders.

"""
Sales Reconciliation

aggregate() is pure: it takes sale events from both channels plus a catalog
snapshot and returns daily buckets and per-product rows. The DB loaders
below only build those inputs.

RULES:
- Window is inclusive calendar days: [start 00:00:00, end 23:59:59.999999].
- Channels are merged; output does not say where a unit was sold.
- Revenue uses the product's *current* effective price (offer_price when
  set, else price, else 0), not the price recorded on the line.
- available_stock = variant_total - sold_units, not clamped; a negative
  value means stock was edited after the sales it should cover.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Mapping

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Invoice,
    InvoiceLine,
    OnlineOrder,
    OnlineOrderLine,
    Product,
    ProductVariant,
)
from ..time_utils import day_bounds, parse_iso_date
from .pricing import money


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


CHANNEL_ONLINE = "online"
CHANNEL_OFFLINE = "offline"

ZERO = Decimal("0")


@dataclass(frozen=True)
class SaleEvent:
    channel: str
    product_id: int | None
    quantity: Decimal | None
    occurred_at: datetime
    variant_id: int | None = None
    recorded_unit_price: Decimal | None = None
    source_id: int | None = None


@dataclass(frozen=True)
class CatalogEntry:
    product_id: int
    name: str
    price: Decimal | None = None
    offer_price: Decimal | None = None
    variant_total: int = 0
    item_code: str | None = None

    @property
    def unit_price(self) -> Decimal:
        if self.offer_price is not None:
            return Decimal(self.offer_price)
        if self.price is not None:
            return Decimal(self.price)
        return ZERO


@dataclass
class DailySalesBucket:
    date: date
    units: Decimal = ZERO
    revenue: Decimal = ZERO

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "units": self.units, "revenue": money(self.revenue)}


@dataclass
class ProductSalesRow:
    product_id: int
    name: str
    unit_price: Decimal
    variant_total: int
    sold_units: Decimal = ZERO
    item_code: str | None = None

    @property
    def available_stock(self) -> Decimal:
        return self.variant_total - self.sold_units

    @property
    def revenue(self) -> Decimal:
        return money(self.sold_units * self.unit_price)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "item_code": self.item_code,
            "unit_price": self.unit_price,
            "sold_units": self.sold_units,
            "variant_total": self.variant_total,
            "available_stock": self.available_stock,
            "revenue": self.revenue,
        }


@dataclass
class SalesAggregate:
    start: date
    end: date
    daily: list
    products: list
    units: Decimal
    revenue: Decimal

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "daily": [b.to_dict() for b in self.daily],
            "products": [r.to_dict() for r in self.products],
            "totals": {"units": self.units, "revenue": money(self.revenue)},
        }


def _unknown_entry(product_id: int) -> CatalogEntry:
    return CatalogEntry(product_id=product_id, name=f"Product {product_id}")


def aggregate(
    events: Iterable[SaleEvent],
    catalog: Mapping[int, CatalogEntry],
    start: date,
    end: date,
) -> SalesAggregate:
    """
    Merge both channels' events and group them by day and by product.

    Events without a product or quantity are ignored. The result does not
    depend on the order of `events`.
    """
    if start > end:
        raise ReportError("start must be on or before end")

    lo, hi = day_bounds(start, end)
    by_day: dict[date, DailySalesBucket] = {}
    by_product: dict[int, ProductSalesRow] = {}

    for event in events:
        if event.product_id is None or event.quantity is None:
            continue
        if not (lo <= event.occurred_at <= hi):
            continue

        entry = catalog.get(event.product_id) or _unknown_entry(event.product_id)
        qty = Decimal(event.quantity)

        day = event.occurred_at.date()
        bucket = by_day.get(day)
        if bucket is None:
            bucket = by_day[day] = DailySalesBucket(date=day)
        bucket.units += qty
        bucket.revenue += qty * entry.unit_price

        row = by_product.get(entry.product_id)
        if row is None:
            row = by_product[entry.product_id] = ProductSalesRow(
                product_id=entry.product_id,
                name=entry.name,
                item_code=entry.item_code,
                unit_price=entry.unit_price,
                variant_total=entry.variant_total,
            )
        row.sold_units += qty

    daily = [by_day[d] for d in sorted(by_day)]
    products = sorted(by_product.values(), key=lambda r: (r.name.lower(), r.product_id))
    return SalesAggregate(
        start=start,
        end=end,
        daily=daily,
        products=products,
        units=sum((b.units for b in daily), ZERO),
        revenue=sum((b.revenue for b in daily), ZERO),
    )


# =============================================================================
# DB LOADERS
# =============================================================================

def parse_range(start, end) -> tuple[date, date]:
    try:
        start_d = parse_iso_date(start)
        end_d = parse_iso_date(end)
    except ValueError:
        raise ReportError("start and end must be YYYY-MM-DD")
    if start_d is None or end_d is None:
        raise ReportError("start and end are required")
    if start_d > end_d:
        raise ReportError("start must be on or before end")
    return start_d, end_d


def load_catalog() -> dict[int, CatalogEntry]:
    """Snapshot of every product with its current aggregate stock."""
    variant_rows = (
        db.session.query(
            ProductVariant.product_id,
            func.count(ProductVariant.id),
            func.coalesce(func.sum(ProductVariant.stock_quantity), 0),
        )
        .group_by(ProductVariant.product_id)
        .all()
    )
    variant_totals = {pid: int(total) for pid, count, total in variant_rows if count}

    catalog = {}
    for product in db.session.query(Product).all():
        catalog[product.id] = CatalogEntry(
            product_id=product.id,
            name=product.name,
            item_code=product.item_code,
            price=product.price,
            offer_price=product.offer_price,
            variant_total=variant_totals.get(product.id, int(product.stock_quantity or 0)),
        )
    return catalog


def load_sale_events(start: date, end: date) -> list[SaleEvent]:
    """Online order lines and persisted invoice lines inside the window."""
    lo, hi = day_bounds(start, end)

    online = (
        db.session.query(OnlineOrderLine)
        .filter(OnlineOrderLine.created_at >= lo, OnlineOrderLine.created_at <= hi)
        .all()
    )
    offline = (
        db.session.query(InvoiceLine)
        .filter(
            InvoiceLine.product_id.isnot(None),
            InvoiceLine.created_at >= lo,
            InvoiceLine.created_at <= hi,
        )
        .all()
    )

    events = [
        SaleEvent(
            channel=CHANNEL_ONLINE,
            product_id=line.product_id,
            variant_id=line.variant_id,
            quantity=line.quantity,
            occurred_at=line.created_at,
            recorded_unit_price=line.unit_price,
            source_id=line.order_id,
        )
        for line in online
    ]
    events.extend(
        SaleEvent(
            channel=CHANNEL_OFFLINE,
            product_id=line.product_id,
            variant_id=line.variant_id,
            quantity=line.quantity,
            occurred_at=line.created_at,
            recorded_unit_price=line.unit_price,
            source_id=line.invoice_id,
        )
        for line in offline
    )
    return events


def sales_report(start, end) -> dict:
    """
    Daily buckets, per-product rows, per-line detail rows and totals.

    Detail rows show both the effective price used for revenue and the
    price recorded on the line.
    """
    start_d, end_d = parse_range(start, end)
    catalog = load_catalog()
    events = load_sale_events(start_d, end_d)
    result = aggregate(events, catalog, start_d, end_d).to_dict()

    details = []
    for event in sorted(events, key=lambda e: (e.occurred_at, e.channel, e.source_id or 0)):
        entry = catalog.get(event.product_id) or _unknown_entry(event.product_id)
        qty = Decimal(event.quantity)
        details.append({
            "date": event.occurred_at.date().isoformat(),
            "channel": event.channel,
            "source_id": event.source_id,
            "product_id": event.product_id,
            "variant_id": event.variant_id,
            "name": entry.name,
            "quantity": qty,
            "unit_price": entry.unit_price,
            "recorded_unit_price": event.recorded_unit_price,
            "total": money(qty * entry.unit_price),
        })
    result["details"] = details
    return result


def daily_orders_report(start, end) -> dict:
    """Per day: online order count, invoice count, and revenue from their totals."""
    start_d, end_d = parse_range(start, end)
    lo, hi = day_bounds(start_d, end_d)

    days: dict[str, dict] = {}

    def _bucket(ts: datetime) -> dict:
        key = ts.date().isoformat()
        if key not in days:
            days[key] = {"date": key, "online_orders": 0, "invoices": 0, "orders": 0, "total_revenue": ZERO}
        return days[key]

    orders = (
        db.session.query(OnlineOrder)
        .filter(OnlineOrder.created_at >= lo, OnlineOrder.created_at <= hi)
        .all()
    )
    for order in orders:
        bucket = _bucket(order.created_at)
        bucket["online_orders"] += 1
        bucket["orders"] += 1
        bucket["total_revenue"] += Decimal(order.total_amount or 0)

    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.created_at >= lo, Invoice.created_at <= hi)
        .all()
    )
    for invoice in invoices:
        bucket = _bucket(invoice.created_at)
        bucket["invoices"] += 1
        bucket["orders"] += 1
        bucket["total_revenue"] += Decimal(invoice.grand_total or 0)

    rows = [days[k] for k in sorted(days)]
    for row in rows:
        row["total_revenue"] = money(row["total_revenue"])
    return {
        "start": start_d.isoformat(),
        "end": end_d.isoformat(),
        "rows": rows,
        "total_revenue": money(sum((r["total_revenue"] for r in rows), ZERO)),
    }
