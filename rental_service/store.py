from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload, noload

from . import models


class UserDirectory:
    """Read-only access to user records."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[models.User]:
        return self.db.query(models.User).filter(models.User.id == user_id).first()

    def get_user_by_email(self, email: str) -> Optional[models.User]:
        return (
            self.db.query(models.User)
            .filter(models.User.email == email.lower())
            .first()
        )

    def count(self) -> int:
        return self.db.query(models.User).count()


class VehicleDirectory:
    """
    Vehicle lookups plus the single write the booking engine is allowed
    to make: flipping the availability flag.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_vehicle(self, vehicle_id: int) -> Optional[models.Vehicle]:
        return self.db.query(models.Vehicle).filter(models.Vehicle.id == vehicle_id).first()

    def get_vehicle_for_update(self, vehicle_id: int) -> Optional[models.Vehicle]:
        """
        Load a vehicle and hold a row lock on it until the transaction ends.

        On backends without row locks (SQLite) this is a plain select.
        """
        return (
            self.db.query(models.Vehicle)
            .filter(models.Vehicle.id == vehicle_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def set_availability(self, vehicle_id: int, availability: models.AvailabilityStatus) -> None:
        self.db.query(models.Vehicle).filter(models.Vehicle.id == vehicle_id).update(
            {models.Vehicle.availability_status: availability},
            synchronize_session=False,
        )


class BookingStore:
    """
    Persistence operations on bookings.

    Status changes only go through ``update_status``, which is conditioned
    on the current status so that concurrent transitions cannot both apply.
    """

    def __init__(self, db: Session):
        self.db = db

    def insert(self, booking: models.Booking) -> models.Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def get_by_id(self, booking_id: int) -> Optional[models.Booking]:
        return self.db.query(models.Booking).filter(models.Booking.id == booking_id).first()

    def get_detail_by_id(self, booking_id: int) -> Optional[models.Booking]:
        return (
            self.db.query(models.Booking)
            .options(joinedload(models.Booking.customer), joinedload(models.Booking.vehicle))
            .filter(models.Booking.id == booking_id)
            .first()
        )

    def list_all(self) -> List[models.Booking]:
        return (
            self.db.query(models.Booking)
            .options(joinedload(models.Booking.customer), joinedload(models.Booking.vehicle))
            .order_by(models.Booking.id.desc())
            .all()
        )

    def list_by_customer(self, customer_id: int) -> List[models.Booking]:
        return (
            self.db.query(models.Booking)
            .options(joinedload(models.Booking.vehicle), noload(models.Booking.customer))
            .filter(models.Booking.customer_id == customer_id)
            .order_by(models.Booking.id.desc())
            .all()
        )

    def update_status(
        self,
        booking_id: int,
        expected_status: models.BookingStatus,
        new_status: models.BookingStatus,
    ) -> bool:
        """
        Compare-and-swap the status of a booking.

        Returns
        -------
        bool
            True if the booking was still in ``expected_status`` and has
            been moved to ``new_status``, False if another writer got there
            first (nothing is changed in that case).
        """
        updated = (
            self.db.query(models.Booking)
            .filter(
                models.Booking.id == booking_id,
                models.Booking.status == expected_status,
            )
            .update({models.Booking.status: new_status}, synchronize_session=False)
        )
        return updated == 1

    def has_overlap(
        self,
        vehicle_id: int,
        rent_start_date: date,
        rent_end_date: date,
    ) -> bool:
        """
        Check if an active booking of the vehicle overlaps [start, end).

        Two intervals overlap unless one ends at or before the other starts:
        existing.end > start and existing.start < end.
        """
        q = (
            self.db.query(models.Booking)
            .filter(models.Booking.vehicle_id == vehicle_id)
            .filter(models.Booking.status == models.BookingStatus.ACTIVE)
            .filter(models.Booking.rent_end_date > rent_start_date)
            .filter(models.Booking.rent_start_date < rent_end_date)
        )
        return self.db.query(q.exists()).scalar()

    def has_active_for_vehicle(self, vehicle_id: int) -> bool:
        q = self.db.query(models.Booking).filter(
            models.Booking.vehicle_id == vehicle_id,
            models.Booking.status == models.BookingStatus.ACTIVE,
        )
        return self.db.query(q.exists()).scalar()

    def list_overdue(self, today: date) -> List[models.Booking]:
        """Active bookings whose end date is strictly before ``today``."""
        return (
            self.db.query(models.Booking)
            .filter(
                models.Booking.status == models.BookingStatus.ACTIVE,
                models.Booking.rent_end_date < today,
            )
            .order_by(models.Booking.id)
            .all()
        )
