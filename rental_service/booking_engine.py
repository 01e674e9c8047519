import logging
import math
import threading
import weakref
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from common.cache import delete_prefix, get_cached_json, set_cached_json

from . import models, schemas
from .errors import (
    DateOverlapError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    VehicleUnavailableError,
)
from .permissions import can_access_booking
from .store import BookingStore, UserDirectory, VehicleDirectory

logger = logging.getLogger(__name__)

AVAILABILITY_CACHE_PREFIX = "vehicles:availability:"
AVAILABILITY_CACHE_TTL_SECONDS = 60

SECONDS_PER_DAY = 24 * 60 * 60

# Entries disappear once no caller holds the lock.
_vehicle_locks = weakref.WeakValueDictionary()
_vehicle_locks_guard = threading.Lock()


def vehicle_lock(vehicle_id: int) -> threading.Lock:
    """
    Return the process-wide lock serialising writes for one vehicle.
    """
    with _vehicle_locks_guard:
        lock = _vehicle_locks.get(vehicle_id)
        if lock is None:
            lock = _vehicle_locks[vehicle_id] = threading.Lock()
        return lock


def compute_total_price(rent_start_date: date, rent_end_date: date, daily_rent_price) -> Decimal:
    """
    Price a rental as whole days (partial days round up) times the daily rate.
    """
    days = math.ceil((rent_end_date - rent_start_date).total_seconds() / SECONDS_PER_DAY)
    return (Decimal(days) * Decimal(daily_rent_price)).quantize(Decimal("0.01"))


def ensure_dates_valid(rent_start_date: Optional[date], rent_end_date: Optional[date]) -> None:
    """
    Validate that a rental period is present and well-formed.

    Raises
    ------
    ValidationError
        If a date is missing or rent_end_date is not strictly after
        rent_start_date.
    """
    if rent_start_date is None or rent_end_date is None:
        raise ValidationError("Missing required fields")
    if rent_end_date <= rent_start_date:
        raise ValidationError("rent_end_date must be after rent_start_date")


class BookingEngine:
    """
    Booking lifecycle operations: create, list, transition and expire.

    Every operation works on the session it was built with. Writes that
    belong together (a booking row and its vehicle's availability flag)
    are committed as one transaction, inside a critical section keyed by
    vehicle id and backed by a row lock on the vehicle.

    Parameters
    ----------
    db : Session
        Database session used for every read and write.
    today : Callable[[], date]
        Clock used for the cancellation cut-off and the expiry sweep.
    """

    def __init__(self, db: Session, today: Callable[[], date] = date.today):
        self.db = db
        self.today = today
        self.bookings = BookingStore(db)
        self.vehicles = VehicleDirectory(db)
        self.users = UserDirectory(db)

    # ---------- helpers ----------

    @staticmethod
    def _require_identity(requester: Optional[schemas.TokenData]) -> schemas.TokenData:
        if requester is None:
            raise UnauthorizedError()
        return requester

    @contextmanager
    def _unit_of_work(self):
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    @contextmanager
    def _vehicle_transaction(self, vehicle_id: int):
        """
        Run a block as one transaction holding both the in-process lock and
        the row lock of the vehicle. Yields the locked vehicle (or None).
        """
        with vehicle_lock(vehicle_id), self._unit_of_work():
            yield self.vehicles.get_vehicle_for_update(vehicle_id)

    def _release_vehicle(self, vehicle_id: int) -> None:
        if not self.bookings.has_active_for_vehicle(vehicle_id):
            self.vehicles.set_availability(vehicle_id, models.AvailabilityStatus.AVAILABLE)

    @staticmethod
    def _invalidate_availability_cache() -> None:
        delete_prefix(AVAILABILITY_CACHE_PREFIX)

    # ---------- create ----------

    def create_booking(
        self,
        requester: Optional[schemas.TokenData],
        vehicle_id: int,
        rent_start_date: Optional[date],
        rent_end_date: Optional[date],
        customer_id: Optional[int] = None,
    ) -> models.Booking:
        """
        Reserve a vehicle for a rental period.

        Customers always book for themselves; admins may book on behalf of
        ``customer_id`` (defaults to the admin's own id).

        Preconditions, checked in order inside the vehicle's critical
        section: the vehicle exists, the admin's target customer exists, no
        active booking of the vehicle overlaps [rent_start_date,
        rent_end_date), and its availability flag is 'available'. A clash
        with an existing rental is therefore always reported as a date
        overlap.

        Returns
        -------
        Booking
            The new active booking with its computed total_price.

        Raises
        ------
        UnauthorizedError, ValidationError, NotFoundError,
        VehicleUnavailableError, DateOverlapError
        """
        requester = self._require_identity(requester)
        ensure_dates_valid(rent_start_date, rent_end_date)

        on_behalf = requester.role == models.UserRole.ADMIN and customer_id is not None
        if not on_behalf:
            customer_id = requester.user_id

        with self._vehicle_transaction(vehicle_id) as vehicle:
            if vehicle is None:
                raise NotFoundError("Vehicle not found")

            if on_behalf and self.users.get_user(customer_id) is None:
                raise NotFoundError("Customer not found")

            if self.bookings.has_overlap(vehicle_id, rent_start_date, rent_end_date):
                logger.debug("Vehicle %s rejected: overlapping booking", vehicle_id)
                raise DateOverlapError()

            if vehicle.availability_status != models.AvailabilityStatus.AVAILABLE:
                logger.debug("Vehicle %s rejected: not available", vehicle_id)
                raise VehicleUnavailableError()

            booking = self.bookings.insert(
                models.Booking(
                    customer_id=customer_id,
                    vehicle_id=vehicle_id,
                    rent_start_date=rent_start_date,
                    rent_end_date=rent_end_date,
                    total_price=compute_total_price(
                        rent_start_date, rent_end_date, vehicle.daily_rent_price
                    ),
                    status=models.BookingStatus.ACTIVE,
                )
            )
            self.vehicles.set_availability(vehicle_id, models.AvailabilityStatus.BOOKED)

        self.db.refresh(booking)
        self._invalidate_availability_cache()
        logger.info(
            "Booking %s created: vehicle=%s customer=%s %s..%s price=%s",
            booking.id,
            vehicle_id,
            customer_id,
            rent_start_date,
            rent_end_date,
            booking.total_price,
        )
        return booking

    # ---------- read ----------

    def list_bookings(self, requester: Optional[schemas.TokenData]) -> List[models.Booking]:
        """
        List bookings visible to the requester, newest first.

        Overdue bookings are expired before reading. Admins get every
        booking, customers only their own.
        """
        requester = self._require_identity(requester)
        self.expire_overdue_bookings()

        if requester.role == models.UserRole.ADMIN:
            return self.bookings.list_all()
        return self.bookings.list_by_customer(requester.user_id)

    def get_booking(self, requester: Optional[schemas.TokenData], booking_id: int) -> models.Booking:
        requester = self._require_identity(requester)
        booking = self.bookings.get_detail_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if not can_access_booking(requester.role, booking.customer_id, requester.user_id):
            raise ForbiddenError("Forbidden: You can only view your own booking")
        return booking

    def check_availability(self, vehicle_id: int, rent_start_date: date, rent_end_date: date) -> bool:
        """
        Tell whether a booking for the vehicle and period would be accepted
        right now. Results are cached until the next booking state change.
        """
        ensure_dates_valid(rent_start_date, rent_end_date)

        cache_key = f"{AVAILABILITY_CACHE_PREFIX}{vehicle_id}:{rent_start_date}:{rent_end_date}"
        cached = get_cached_json(cache_key)
        if cached is not None:
            return cached

        vehicle = self.vehicles.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found")

        available = (
            vehicle.availability_status == models.AvailabilityStatus.AVAILABLE
            and not self.bookings.has_overlap(vehicle_id, rent_start_date, rent_end_date)
        )
        set_cached_json(cache_key, available, ttl_seconds=AVAILABILITY_CACHE_TTL_SECONDS)
        return available

    # ---------- transitions ----------

    def _target_status_for(
        self,
        requester: schemas.TokenData,
        booking: models.Booking,
        requested_status: models.BookingStatus,
    ) -> models.BookingStatus:
        if requester.role == models.UserRole.CUSTOMER:
            if requested_status != models.BookingStatus.CANCELLED:
                raise InvalidTransitionError("Customer can only cancel booking")
            if booking.status.is_terminal:
                raise InvalidTransitionError("Only active bookings can be cancelled")
            if self.today() >= booking.rent_start_date:
                raise InvalidTransitionError("Cannot cancel after rental has started")
            return models.BookingStatus.CANCELLED

        if requester.role == models.UserRole.ADMIN:
            if requested_status != models.BookingStatus.RETURNED:
                raise InvalidTransitionError("Admin can only mark booking as returned")
            if booking.status.is_terminal:
                raise InvalidTransitionError("Only active bookings can be marked as returned")
            return models.BookingStatus.RETURNED

        raise InvalidTransitionError("Invalid operation")

    def update_booking_status(
        self,
        requester: Optional[schemas.TokenData],
        booking_id: int,
        requested_status: models.BookingStatus,
    ) -> models.Booking:
        """
        Cancel (customer) or return (admin) an active booking.

        The status write is conditioned on the booking still being active,
        and the vehicle is released in the same transaction.

        Raises
        ------
        UnauthorizedError, NotFoundError, ForbiddenError, InvalidTransitionError
        """
        requester = self._require_identity(requester)

        booking = self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")

        if not can_access_booking(requester.role, booking.customer_id, requester.user_id):
            raise ForbiddenError("Forbidden: You can only update your own booking")

        new_status = self._target_status_for(requester, booking, requested_status)
        vehicle_id = booking.vehicle_id

        with self._vehicle_transaction(vehicle_id):
            if not self.bookings.update_status(booking_id, models.BookingStatus.ACTIVE, new_status):
                raise InvalidTransitionError("Booking is no longer active")
            self._release_vehicle(vehicle_id)

        self.db.refresh(booking)
        self._invalidate_availability_cache()
        logger.info(
            "Booking %s moved to %s by %s %s",
            booking_id,
            new_status.value,
            requester.role.value,
            requester.user_id,
        )
        return booking

    # ---------- expiry sweep ----------

    def expire_overdue_bookings(self) -> List[int]:
        """
        Mark every active booking whose end date has passed as returned.

        Each booking is moved to 'returned' and its vehicle released in its
        own transaction. Bookings changed concurrently by someone else are
        skipped, so running the sweep twice in a row changes nothing the
        second time.

        Returns
        -------
        List[int]
            IDs of the bookings expired by this call.
        """
        today = self.today()
        overdue = [(b.id, b.vehicle_id) for b in self.bookings.list_overdue(today)]

        expired = []
        for booking_id, vehicle_id in overdue:
            with self._vehicle_transaction(vehicle_id):
                if self.bookings.update_status(
                    booking_id,
                    models.BookingStatus.ACTIVE,
                    models.BookingStatus.RETURNED,
                ):
                    self._release_vehicle(vehicle_id)
                    expired.append(booking_id)

        if expired:
            self._invalidate_availability_cache()
            logger.info("Expiry sweep returned %d booking(s): %s", len(expired), expired)
        return expired
