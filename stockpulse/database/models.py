"""
SQLAlchemy Models for the StockPulse back office

Only the columns the dashboard aggregations read are modelled here.
The relational store is the source of truth; everything in the cache
is derived from these tables.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime,
    ForeignKey, Enum, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# =============================================================================
# ENUMS
# =============================================================================

class InvoiceStatus(enum.Enum):
    """Invoice payment status"""
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class TransferStatus(enum.Enum):
    """Inventory transfer lifecycle"""
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# =============================================================================
# CORE TABLES
# =============================================================================

class Shop(Base):
    """Retail locations"""
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    inventory_items = relationship("InventoryItem", back_populates="shop")
    invoices = relationship("Invoice", back_populates="shop")


class Category(Base):
    """Product categories"""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)

    products = relationship("Product", back_populates="category")


class Product(Base):
    """Catalogue products. price is the retail price."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    price = Column(Float, default=0.0, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    category = relationship("Category", back_populates="products")
    inventory_items = relationship("InventoryItem", back_populates="product")


class InventoryItem(Base):
    """Stock of one product held by one shop"""
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False)

    quantity = Column(Integer, default=0, nullable=False)
    shop_specific_cost = Column(Float, nullable=True)  # Weighted average cost

    product = relationship("Product", back_populates="inventory_items")
    shop = relationship("Shop", back_populates="inventory_items")

    __table_args__ = (
        Index("idx_inventory_shop", "shop_id"),
        Index("idx_inventory_product", "product_id"),
    )


# =============================================================================
# SALES & TRANSFERS
# =============================================================================

class Invoice(Base):
    """Sales invoices"""
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True)
    invoice_number = Column(String(64), nullable=False, unique=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=True)

    total = Column(Float, default=0.0, nullable=False)
    total_profit = Column(Float, default=0.0, nullable=False)
    status = Column(
        Enum(InvoiceStatus, values_callable=_enum_values),
        default=InvoiceStatus.PENDING,
        nullable=False,
    )

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    shop = relationship("Shop", back_populates="invoices")

    __table_args__ = (
        Index("idx_invoice_shop_created", "shop_id", "created_at"),
        Index("idx_invoice_status", "status"),
    )


class InventoryTransfer(Base):
    """Stock moved between two shops"""
    __tablename__ = "inventory_transfers"

    id = Column(Integer, primary_key=True)
    from_shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False)
    to_shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False)

    status = Column(
        Enum(TransferStatus, values_callable=_enum_values),
        default=TransferStatus.PENDING,
        nullable=False,
    )
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    from_shop = relationship("Shop", foreign_keys=[from_shop_id])
    to_shop = relationship("Shop", foreign_keys=[to_shop_id])
    items = relationship(
        "TransferItem", back_populates="transfer", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_transfer_created", "created_at"),
        Index("idx_transfer_status", "status"),
    )


class TransferItem(Base):
    """Line item of a transfer"""
    __tablename__ = "transfer_items"

    id = Column(Integer, primary_key=True)
    transfer_id = Column(Integer, ForeignKey("inventory_transfers.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, default=0, nullable=False)

    transfer = relationship("InventoryTransfer", back_populates="items")
