"""Shipping fee resolution from zones and rate options."""

from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.models.shipping_zone import ShippingConditionType, ShippingOption
from app.repositories.shipping_repository import ShippingRepository

ADDRESS_FIELDS = ("line1", "city", "state", "zip")


def normalize_address(value: Any) -> dict[str, Any] | None:
    """Map common address spellings onto ``line1``/``city``/``state``/``zip``."""
    if not isinstance(value, dict):
        return None
    address = dict(value)
    address["line1"] = str(
        value.get("line1") or value.get("addressLine1") or value.get("street") or ""
    ).strip()
    address["city"] = str(value.get("city") or value.get("town") or "").strip()
    address["state"] = str(value.get("state") or value.get("region") or "").strip()
    address["zip"] = str(
        value.get("zip") or value.get("postalCode") or value.get("pincode") or ""
    ).strip()
    return address


def is_address_complete(address: dict[str, Any] | None) -> bool:
    return bool(address) and all(str(address.get(key) or "").strip() for key in ADDRESS_FIELDS)  # type: ignore[union-attr]


def _option_matches(option: ShippingOption, subtotal: Decimal, weight_kg: Decimal) -> bool:
    low = Decimal(str(option.min_value)) if option.min_value is not None else None
    high = Decimal(str(option.max_value)) if option.max_value is not None else None
    if option.condition_type == ShippingConditionType.WEIGHT.value:
        value = weight_kg
    else:
        value = subtotal
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


class ShippingService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = ShippingRepository(db)

    def compute_fee(
        self,
        address: dict[str, Any] | None,
        subtotal_subunits: int,
        total_weight_kg: float,
    ) -> int:
        """Cheapest eligible rate in the zone covering the address state, else 0.

        Price conditions are expressed in rupees, weight conditions in kilograms.
        """
        state = str((address or {}).get("state") or "").strip().lower()
        if not state:
            return 0
        zone = next(
            (
                z
                for z in self.repo.get_zones()
                if any(str(s).strip().lower() == state for s in (z.states or []))
            ),
            None,
        )
        if zone is None:
            return 0
        subtotal = Decimal(int(subtotal_subunits)) / 100
        weight = Decimal(str(total_weight_kg or 0))
        eligible = [
            option
            for option in self.repo.get_options(zone.id)  # type: ignore[arg-type]
            if _option_matches(option, subtotal, weight)
        ]
        if not eligible:
            return 0
        return min(int(option.rate_subunits or 0) for option in eligible)
