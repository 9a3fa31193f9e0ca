"""Cart schemas."""

from uuid import UUID

from pydantic import BaseModel, Field


class CartItemUpdate(BaseModel):
    product_id: UUID
    variant_id: UUID | None = None
    quantity: int = Field(ge=0, le=100)


class CartLine(BaseModel):
    item_id: UUID | None = None
    product_id: UUID
    variant_id: UUID | None = None
    title: str
    variant_title: str | None = None
    quantity: int
    price_subunits: int
    line_total_subunits: int
    weight_kg: float = 0
    image_url: str | None = None
    sku: str | None = None


class CartResponse(BaseModel):
    items: list[CartLine]
    item_count: int
    subtotal_subunits: int
    currency: str
