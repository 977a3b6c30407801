"""
StockPulse Database Layer

Usage:
    from stockpulse.database import init_db, get_session_factory, Invoice

    init_db()

    db = get_session_factory()()
    try:
        db.query(Invoice).count()
    finally:
        db.close()
"""

# Models
from .models import (
    Base,
    Shop,
    Category,
    Product,
    InventoryItem,
    Invoice,
    InventoryTransfer,
    TransferItem,
    # Enums
    InvoiceStatus,
    TransferStatus,
)

# Session management
from .session import (
    get_database_url,
    create_db_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
    check_db_connection,
)

__all__ = [
    # Models
    "Base",
    "Shop",
    "Category",
    "Product",
    "InventoryItem",
    "Invoice",
    "InventoryTransfer",
    "TransferItem",
    "InvoiceStatus",
    "TransferStatus",
    # Session
    "get_database_url",
    "create_db_engine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
    "check_db_connection",
]
