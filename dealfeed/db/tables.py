"""Table definitions for products, price history and deals."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

metadata = MetaData()

MONEY = Numeric(12, 2)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("external_id", String(64), nullable=False),
    Column("store", String(32), nullable=False),
    Column("title", Text, nullable=False),
    Column("current_price", MONEY, nullable=False, default=0),
    Column("list_price", MONEY, nullable=False, default=0),
    Column("discount_percent", Integer, nullable=False, default=0),
    Column("image_url", Text),
    Column("product_url", Text, nullable=False),
    Column("category", String(128), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
    UniqueConstraint("external_id", "store", name="uq_products_external_store"),
    Index("ix_products_active_updated", "is_active", "updated_at"),
    Index("ix_products_category", "category"),
)

price_history = Table(
    "price_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("price", MONEY, nullable=False),
    Column("list_price", MONEY, nullable=False),
    Column("discount_percent", Integer, nullable=False),
    Column("source", String(16), nullable=False),
    Column("observed_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_price_history_product", "product_id", "observed_at"),
)

deals = Table(
    "deals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("original_price", MONEY, nullable=False),
    Column("discounted_price", MONEY, nullable=False),
    Column("discount_percentage", Integer, nullable=False),
    Column("image_url", Text),
    Column("deal_url", Text, nullable=False),
    Column("store", String(32), nullable=False),
    Column("category", String(128), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
    UniqueConstraint("product_id", name="uq_deals_product"),
)
