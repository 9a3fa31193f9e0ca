"""Shipping repository: zones and their rate options."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.shipping_zone import ShippingOption, ShippingZone


class ShippingRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_zones(self) -> list[ShippingZone]:
        return self.db.query(ShippingZone).order_by(ShippingZone.created_at.asc()).all()

    def get_options(self, zone_id: UUID) -> list[ShippingOption]:
        return self.db.query(ShippingOption).filter(ShippingOption.zone_id == zone_id).all()
