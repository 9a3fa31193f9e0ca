"""Catalog models: products, variants and category links."""

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid


class ProductStatus(str, Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"


class Product(Base):
    __tablename__ = "products"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=ProductStatus.ACTIVE.value)
    sku = Column(String(100), nullable=True)
    mrp_subunits = Column(Integer, nullable=False, default=0)
    discount_price_subunits = Column(Integer, nullable=True)
    track_quantity = Column(Boolean, nullable=False, default=False)
    quantity = Column(Integer, nullable=False, default=0)
    weight_kg = Column(Numeric(10, 3), nullable=True)
    media = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    product_id = Column(
        UUIDType, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    variant_title = Column(String(255), nullable=True)
    variant_options = Column(JSON, nullable=True)
    sku = Column(String(100), nullable=True)
    price_subunits = Column(Integer, nullable=True)
    discount_price_subunits = Column(Integer, nullable=True)
    track_quantity = Column(Boolean, nullable=False, default=False)
    quantity = Column(Integer, nullable=False, default=0)
    weight_kg = Column(Numeric(10, 3), nullable=True)
    image_url = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ProductCategory(Base):
    __tablename__ = "product_categories"
    __table_args__ = (
        UniqueConstraint("product_id", "category_id", name="uq_product_category"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    product_id = Column(
        UUIDType, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id = Column(String(64), nullable=False, index=True)
