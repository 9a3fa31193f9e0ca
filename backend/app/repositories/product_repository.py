"""Product repository for catalog reads and locked stock rows."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.product import Product, ProductCategory, ProductVariant


class ProductRepository:
    """Repository for Product and ProductVariant models."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, product_id: UUID) -> Product | None:
        return self.db.query(Product).filter(Product.id == product_id).first()

    def get_variant(self, variant_id: UUID) -> ProductVariant | None:
        return self.db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()

    def lock_product(self, product_id: UUID) -> Product | None:
        """Select a product row FOR UPDATE."""
        return (
            self.db.query(Product)
            .filter(Product.id == product_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def lock_variant(self, variant_id: UUID) -> ProductVariant | None:
        """Select a variant row FOR UPDATE."""
        return (
            self.db.query(ProductVariant)
            .filter(ProductVariant.id == variant_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def any_in_categories(self, product_ids: list[UUID], category_ids: list[str]) -> bool:
        """Whether any of the products belongs to any of the categories."""
        if not product_ids or not category_ids:
            return False
        match = (
            self.db.query(ProductCategory.id)
            .filter(
                ProductCategory.product_id.in_(product_ids),
                ProductCategory.category_id.in_(category_ids),
            )
            .first()
        )
        return match is not None
