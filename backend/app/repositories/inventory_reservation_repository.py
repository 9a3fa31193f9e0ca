"""InventoryReservation repository."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.inventory_reservation import InventoryReservation, ReservationStatus


class InventoryReservationRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, reservation: InventoryReservation) -> InventoryReservation:
        self.db.add(reservation)
        self.db.flush()
        return reservation

    def list_reserved(self, attempt_id: UUID, lock: bool = False) -> list[InventoryReservation]:
        query = self.db.query(InventoryReservation).filter(
            InventoryReservation.attempt_id == attempt_id,
            InventoryReservation.status == ReservationStatus.RESERVED.value,
        )
        if lock:
            query = query.with_for_update()
        return query.all()
