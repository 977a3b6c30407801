"""
Dashboard Aggregations

Synchronous queries behind each dashboard slice. Every function takes an
open session and returns an AggregateResult; failing queries fall back
through a QueryGuard so a slice never raises.

Slices:
- summary: headline tiles (inventory value, profit, transfers, invoices, low stock)
- total_retail_value: retail price x stock on hand
- shop_performance: sales and stock per shop
- inventory_distribution: stock per category
- sales: monthly sales buckets
- transfers: most recent transfers
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from stockpulse.dashboard.periods import (
    DashboardFilters,
    DateWindow,
    Today,
    sales_buckets,
    shop_performance_window,
    summary_window,
    transfers_window,
)
from stockpulse.dashboard.results import AggregateResult, QueryGuard
from stockpulse.dashboard.trends import TrendEstimator
from stockpulse.database.models import (
    Category,
    InventoryItem,
    InventoryTransfer,
    Invoice,
    InvoiceStatus,
    Product,
    Shop,
    TransferStatus,
)


logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 10
RECENT_TRANSFERS_LIMIT = 5
FILTERED_TRANSFERS_LIMIT = 10

OUTSTANDING_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)

# Summary tile titles; the composer joins the retail value on this title
TOTAL_INVENTORY_VALUE = "Total Inventory Value"
TOTAL_RETAIL_VALUE = "Total Retail Value"
TOTAL_PROFIT = "Total Profit"
PENDING_TRANSFERS = "Pending Transfers"
OUTSTANDING_INVOICES = "Outstanding Invoices"
LOW_STOCK_ITEMS = "Low Stock Items"


# =============================================================================
# FORMATTING
# =============================================================================

def format_currency(value: float) -> str:
    """Rs. with thousands separators, two decimals only when fractional."""
    value = float(value or 0)
    if value == int(value):
        return f"Rs. {int(value):,}"
    return f"Rs. {value:,.2f}"


def _number(value: Any) -> float:
    return float(value or 0)


def _summary_item(
    title: str,
    value: str,
    icon: str,
    raw_value: float,
    trend,
) -> Dict[str, Any]:
    return {
        "title": title,
        "value": value,
        "icon": icon,
        "trend": trend.label,
        "trend_up": trend.up,
        "raw_value": raw_value,
    }


# =============================================================================
# QUERY HELPERS
# =============================================================================

def _in_window(query, column, window: Optional[DateWindow]):
    if window is None:
        return query
    return query.filter(column >= window.start, column <= window.end)


def _for_shop(query, column, shop_id: Optional[int]):
    if shop_id is None:
        return query
    return query.filter(column == shop_id)


def _touching_shop(query, shop_id: Optional[int]):
    if shop_id is None:
        return query
    return query.filter(or_(
        InventoryTransfer.from_shop_id == shop_id,
        InventoryTransfer.to_shop_id == shop_id,
    ))


def _profit_total(db: Session, shop_id: Optional[int], window: Optional[DateWindow]) -> float:
    query = db.query(func.coalesce(func.sum(Invoice.total_profit), 0))
    query = _in_window(_for_shop(query, Invoice.shop_id, shop_id), Invoice.created_at, window)
    return _number(query.scalar())


def _outstanding_total(db: Session, shop_id: Optional[int], window: Optional[DateWindow]) -> float:
    query = db.query(func.coalesce(func.sum(Invoice.total), 0)).filter(
        Invoice.status.in_(OUTSTANDING_STATUSES)
    )
    query = _in_window(_for_shop(query, Invoice.shop_id, shop_id), Invoice.created_at, window)
    return _number(query.scalar())


def _pending_transfer_count(db: Session, shop_id: Optional[int], window: Optional[DateWindow]) -> int:
    query = db.query(func.count(InventoryTransfer.id)).filter(
        InventoryTransfer.status == TransferStatus.PENDING
    )
    query = _in_window(_touching_shop(query, shop_id), InventoryTransfer.created_at, window)
    return int(query.scalar() or 0)


# =============================================================================
# SLICES
# =============================================================================

def compute_summary(
    db: Session,
    filters: DashboardFilters,
    trends: TrendEstimator,
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    today: Today = date.today,
) -> AggregateResult:
    """
    Headline tiles for the dashboard.

    Inventory value and low stock ignore the date range. Profit,
    outstanding invoices and pending transfers respect it; without a
    range they cover all time.
    """
    guard = QueryGuard(db)
    shop_id = filters.shop_id
    window = summary_window(filters, today)
    previous = window.previous() if window else None

    def inventory_value():
        query = db.query(
            func.coalesce(
                func.sum(InventoryItem.shop_specific_cost * InventoryItem.quantity), 0
            )
        ).filter(
            InventoryItem.quantity > 0,
            InventoryItem.shop_specific_cost.isnot(None),
            InventoryItem.shop_specific_cost > 0,
        )
        return _number(_for_shop(query, InventoryItem.shop_id, shop_id).scalar())

    def low_stock_count():
        query = db.query(func.count(InventoryItem.id)).filter(
            InventoryItem.quantity <= low_stock_threshold
        )
        return int(_for_shop(query, InventoryItem.shop_id, shop_id).scalar() or 0)

    total_value = guard.run(
        inventory_value, 0.0, "Failed to calculate total inventory value"
    )
    total_profit = guard.run(
        lambda: _profit_total(db, shop_id, window), 0.0,
        "Failed to calculate total profit",
    )
    pending_transfers = guard.run(
        lambda: _pending_transfer_count(db, shop_id, window), 0,
        "Failed to count pending transfers",
    )
    outstanding = guard.run(
        lambda: _outstanding_total(db, shop_id, window), 0.0,
        "Failed to calculate outstanding invoices",
    )
    low_stock = guard.run(low_stock_count, 0, "Failed to count low stock items")

    # Previous-period values only exist for windowed metrics. They feed the
    # trend labels alone, so their failures never degrade the slice.
    trend_guard = QueryGuard(db)
    previous_profit = previous_pending = previous_outstanding = None
    if previous is not None:
        previous_profit = trend_guard.run(
            lambda: _profit_total(db, shop_id, previous), None,
            "Failed to calculate previous period profit",
        )
        previous_pending = trend_guard.run(
            lambda: _pending_transfer_count(db, shop_id, previous), None,
            "Failed to count previous period pending transfers",
        )
        previous_outstanding = trend_guard.run(
            lambda: _outstanding_total(db, shop_id, previous), None,
            "Failed to calculate previous period outstanding invoices",
        )

    data = [
        _summary_item(
            TOTAL_INVENTORY_VALUE, format_currency(total_value), "Package",
            total_value, trends.estimate(total_value),
        ),
        # Filled in by the composer from the retail value slice
        _summary_item(
            TOTAL_RETAIL_VALUE, format_currency(0), "DollarSign",
            0.0, trends.estimate(0.0),
        ),
        _summary_item(
            TOTAL_PROFIT, format_currency(total_profit), "TrendingUp",
            total_profit, trends.estimate(total_profit, previous_profit),
        ),
        _summary_item(
            PENDING_TRANSFERS, str(pending_transfers), "Truck",
            pending_transfers,
            trends.estimate(pending_transfers, previous_pending, percentage=False),
        ),
        _summary_item(
            OUTSTANDING_INVOICES, format_currency(outstanding), "CreditCard",
            outstanding, trends.estimate(outstanding, previous_outstanding),
        ),
        _summary_item(
            LOW_STOCK_ITEMS, str(low_stock), "AlertTriangle",
            low_stock, trends.estimate(low_stock, percentage=False),
        ),
    ]

    return guard.result(data)


def compute_total_retail_value(
    db: Session,
    filters: DashboardFilters,
    trends: TrendEstimator,
) -> AggregateResult:
    """Retail price x quantity over stock on hand."""
    guard = QueryGuard(db)

    def retail_value():
        query = (
            db.query(func.coalesce(func.sum(Product.price * InventoryItem.quantity), 0))
            .join(Product, InventoryItem.product_id == Product.id)
            .filter(InventoryItem.quantity > 0)
        )
        return _number(_for_shop(query, InventoryItem.shop_id, filters.shop_id).scalar())

    total = guard.run(retail_value, 0.0, "Failed to calculate total retail value")
    trend = trends.estimate(total)

    return guard.result({
        "formatted_value": format_currency(total),
        "raw_value": total,
        "trend": trend.label,
        "trend_up": trend.up,
    })


def compute_shop_performance(
    db: Session,
    filters: DashboardFilters,
    today: Today = date.today,
) -> AggregateResult:
    """Sales in the window and current stock per shop."""
    guard = QueryGuard(db)
    window = shop_performance_window(filters, today)

    def shops():
        query = db.query(Shop.id, Shop.name).order_by(Shop.id)
        return _for_shop(query, Shop.id, filters.shop_id).all()

    def stock_by_shop():
        query = db.query(
            InventoryItem.shop_id, func.coalesce(func.sum(InventoryItem.quantity), 0)
        ).group_by(InventoryItem.shop_id)
        return dict(_for_shop(query, InventoryItem.shop_id, filters.shop_id).all())

    def sales_by_shop():
        query = db.query(
            Invoice.shop_id, func.coalesce(func.sum(Invoice.total), 0)
        ).filter(Invoice.shop_id.isnot(None)).group_by(Invoice.shop_id)
        query = _for_shop(query, Invoice.shop_id, filters.shop_id)
        return dict(_in_window(query, Invoice.created_at, window).all())

    shop_rows = guard.run(shops, [], "Failed to fetch shops data")
    if not shop_rows:
        return guard.result([])

    stock = guard.run(stock_by_shop, {}, "Failed to fetch stock levels for shops")
    sales = guard.run(sales_by_shop, {}, "Failed to fetch aggregated sales data for shops")

    data = []
    for shop_id, name in shop_rows:
        shop_stock = int(stock.get(shop_id) or 0)
        shop_sales = _number(sales.get(shop_id))
        if shop_stock == 0 and shop_sales == 0:
            continue
        data.append({"name": name, "sales": shop_sales, "stock": shop_stock})

    return guard.result(data)


def compute_inventory_distribution(
    db: Session,
    filters: DashboardFilters,
) -> AggregateResult:
    """Units in stock per category, largest first."""
    guard = QueryGuard(db)

    def per_category():
        query = (
            db.query(Category.name, func.coalesce(func.sum(InventoryItem.quantity), 0))
            .join(Product, Product.category_id == Category.id)
            .join(InventoryItem, InventoryItem.product_id == Product.id)
            .group_by(Category.id, Category.name)
        )
        return _for_shop(query, InventoryItem.shop_id, filters.shop_id).all()

    rows = guard.run(per_category, [], "Failed to fetch inventory items")

    data = [
        {"name": name, "value": int(value or 0)}
        for name, value in rows
        if value and value > 0
    ]
    data.sort(key=lambda row: row["value"], reverse=True)

    return guard.result(data)


def compute_sales(
    db: Session,
    filters: DashboardFilters,
    today: Today = date.today,
) -> AggregateResult:
    """Sales total per calendar month; a month whose query fails reads 0."""
    guard = QueryGuard(db)

    def month_total(bucket: DateWindow):
        query = db.query(func.coalesce(func.sum(Invoice.total), 0))
        query = _for_shop(query, Invoice.shop_id, filters.shop_id)
        return _number(_in_window(query, Invoice.created_at, bucket).scalar())

    data: List[Dict[str, Any]] = []
    for label, bucket in sales_buckets(filters, today):
        total = guard.run(
            lambda: month_total(bucket), 0.0,
            f"Failed to fetch invoice data for {label}",
        )
        data.append({"month": label, "sales": total})

    return guard.result(data)


def _transfer_row(transfer: InventoryTransfer) -> Dict[str, Any]:
    status = transfer.status.value if transfer.status else ""
    return {
        "id": f"TR-{transfer.id:03d}",
        "source": transfer.from_shop.name if transfer.from_shop else None,
        "destination": transfer.to_shop.name if transfer.to_shop else None,
        "status": status.capitalize(),
        "date": transfer.created_at.date().isoformat(),
        "items": len(transfer.items),
    }


def compute_transfers(
    db: Session,
    filters: DashboardFilters,
    today: Today = date.today,
) -> AggregateResult:
    """Most recent transfers touching the shop, newest first."""
    guard = QueryGuard(db)
    window = transfers_window(filters, today)
    limit = FILTERED_TRANSFERS_LIMIT if filters.is_date_filtered else RECENT_TRANSFERS_LIMIT

    def recent():
        query = db.query(InventoryTransfer).options(
            selectinload(InventoryTransfer.from_shop),
            selectinload(InventoryTransfer.to_shop),
            selectinload(InventoryTransfer.items),
        )
        query = _touching_shop(query, filters.shop_id)
        query = _in_window(query, InventoryTransfer.created_at, window)
        rows = query.order_by(
            InventoryTransfer.created_at.desc(), InventoryTransfer.id.desc()
        ).limit(limit).all()
        return [_transfer_row(transfer) for transfer in rows]

    data = guard.run(recent, [], "Failed to fetch transfers data")
    return guard.result(data)


# =============================================================================
# WARMING SUPPORT
# =============================================================================

def list_active_shop_ids(db: Session) -> List[int]:
    """Active shops, in id order. Raises on query failure."""
    rows = db.query(Shop.id).filter(Shop.is_active.is_(True)).order_by(Shop.id).all()
    return [row[0] for row in rows]
