"""
Database Models - Billing Store Read Schema

Tables of the billing application's store that the point-query client reads:

- products: Product catalog with current stock level
- bills: One row per bill with its calendar date key and grand total
- bill_items: Line items denormalized at billing time (name and price as sold)
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class Product(Base):
    """Catalog entry"""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_products_quantity", "quantity"),
    )


class Bill(Base):
    """Bill header"""
    __tablename__ = "bills"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    items: Mapped[List["BillItem"]] = relationship(back_populates="bill", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_bills_date_key", "date_key"),
    )


class BillItem(Base):
    """Bill line item"""
    __tablename__ = "bill_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bill_id: Mapped[str] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    line_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    bill: Mapped["Bill"] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_bill_items_product", "product_id"),
        Index("ix_bill_items_bill", "bill_id"),
    )
