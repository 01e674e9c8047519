import gc
import os
import sys
import threading
from datetime import date, datetime, timedelta
from decimal import Decimal

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from sqlalchemy import text

from rental_service import booking_engine as booking_engine_module
from rental_service.booking_engine import BookingEngine, compute_total_price, vehicle_lock
from rental_service.database import Base, SessionLocal, engine, upgrade_legacy_statuses
from rental_service.errors import (
    ConflictError,
    DateOverlapError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from rental_service.models import (
    AvailabilityStatus,
    Booking,
    BookingStatus,
    User,
    UserRole,
    Vehicle,
    VehicleType,
)
from rental_service.permissions import can_access_booking
from rental_service.schemas import TokenData
from rental_service.store import BookingStore

TODAY = date(2030, 6, 15)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def fixed_clock():
    return TODAY


def add_user(db, name, role=UserRole.CUSTOMER) -> TokenData:
    user = User(name=name, email=f"{name.lower()}@example.com", hashed_password="x", role=role)
    db.add(user)
    db.commit()
    return TokenData(user_id=user.id, role=role)


def add_vehicle(db, registration_number="V-1", daily_rent_price="50") -> int:
    vehicle = Vehicle(
        vehicle_name="VW Transporter",
        type=VehicleType.VAN,
        registration_number=registration_number,
        daily_rent_price=Decimal(daily_rent_price),
        availability_status=AvailabilityStatus.AVAILABLE,
    )
    db.add(vehicle)
    db.commit()
    return vehicle.id


def availability_of(vehicle_id) -> AvailabilityStatus:
    with SessionLocal() as fresh:
        return fresh.get(Vehicle, vehicle_id).availability_status


def day(offset: int) -> date:
    return TODAY + timedelta(days=offset)


# ---------- Pricing ----------


def test_price_is_whole_days_times_rate():
    assert compute_total_price(day(1), day(3), Decimal("50")) == Decimal("100.00")
    assert compute_total_price(day(0), day(7), Decimal("19.99")) == Decimal("139.93")


def test_partial_days_round_up():
    start = datetime(2030, 1, 1, 10, 0)
    end = datetime(2030, 1, 2, 12, 0)
    assert compute_total_price(start, end, Decimal("50")) == Decimal("100.00")


# ---------- Authorization ----------


def test_can_access_booking():
    assert can_access_booking(UserRole.ADMIN, resource_owner_id=1, requester_id=99)
    assert can_access_booking(UserRole.CUSTOMER, resource_owner_id=7, requester_id=7)
    assert not can_access_booking(UserRole.CUSTOMER, resource_owner_id=7, requester_id=8)
    assert not can_access_booking("auditor", resource_owner_id=7, requester_id=7)


def test_missing_identity_is_unauthorized(db):
    vehicle_id = add_vehicle(db)
    booking_engine = BookingEngine(db, today=fixed_clock)

    with pytest.raises(UnauthorizedError):
        booking_engine.create_booking(None, vehicle_id, day(1), day(2))
    with pytest.raises(UnauthorizedError):
        booking_engine.list_bookings(None)
    with pytest.raises(UnauthorizedError):
        booking_engine.update_booking_status(None, 1, BookingStatus.CANCELLED)


# ---------- Create ----------


def test_create_scenario_then_overlap(db):
    carol = add_user(db, "Carol")
    dave = add_user(db, "Dave")
    vehicle_id = add_vehicle(db, daily_rent_price="50")
    booking_engine = BookingEngine(db, today=fixed_clock)

    booking = booking_engine.create_booking(carol, vehicle_id, day(1), day(3))
    assert booking.status == BookingStatus.ACTIVE
    assert booking.total_price == Decimal("100")
    assert availability_of(vehicle_id) == AvailabilityStatus.BOOKED

    with pytest.raises(DateOverlapError) as excinfo:
        booking_engine.create_booking(dave, vehicle_id, day(2), day(4))
    assert excinfo.value.kind == "Conflict: DateOverlap"
    assert db.query(Booking).count() == 1


def test_missing_dates_are_a_validation_error(db):
    carol = add_user(db, "Carol")
    vehicle_id = add_vehicle(db)
    booking_engine = BookingEngine(db, today=fixed_clock)

    with pytest.raises(ValidationError):
        booking_engine.create_booking(carol, vehicle_id, None, day(2))


def test_concurrent_creates_for_same_vehicle_only_one_wins(db):
    customers = [add_user(db, f"Customer{i}") for i in range(6)]
    vehicle_id = add_vehicle(db)

    barrier = threading.Barrier(len(customers))
    outcomes = []
    outcomes_lock = threading.Lock()

    def attempt(customer):
        session = SessionLocal()
        try:
            barrier.wait()
            BookingEngine(session, today=fixed_clock).create_booking(
                customer, vehicle_id, day(1), day(4)
            )
            result = "created"
        except ConflictError as exc:
            result = exc.kind
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(c,)) for c in customers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("created") == 1
    assert outcomes.count("Conflict: DateOverlap") == len(customers) - 1
    with SessionLocal() as fresh:
        active = (
            fresh.query(Booking)
            .filter(Booking.vehicle_id == vehicle_id, Booking.status == BookingStatus.ACTIVE)
            .count()
        )
    assert active == 1


def test_vehicle_locks_are_shared_while_held_and_dropped_after():
    lock = vehicle_lock(424242)
    assert vehicle_lock(424242) is lock

    del lock
    gc.collect()
    assert 424242 not in booking_engine_module._vehicle_locks


def test_unknown_vehicle_leaves_no_lock_behind(db):
    carol = add_user(db, "Carol")

    with pytest.raises(NotFoundError):
        BookingEngine(db, today=fixed_clock).create_booking(carol, 515151, day(1), day(2))
    gc.collect()
    assert 515151 not in booking_engine_module._vehicle_locks


# ---------- Transitions ----------


def test_customer_cancel_uses_injected_clock(db):
    carol = add_user(db, "Carol")
    vehicle_id = add_vehicle(db)
    booking = BookingEngine(db, today=fixed_clock).create_booking(carol, vehicle_id, day(1), day(3))

    late_engine = BookingEngine(db, today=lambda: day(1))
    with pytest.raises(InvalidTransitionError, match="Cannot cancel after rental has started"):
        late_engine.update_booking_status(carol, booking.id, BookingStatus.CANCELLED)

    cancelled = BookingEngine(db, today=fixed_clock).update_booking_status(
        carol, booking.id, BookingStatus.CANCELLED
    )
    assert cancelled.status == BookingStatus.CANCELLED
    assert availability_of(vehicle_id) == AvailabilityStatus.AVAILABLE


def test_status_compare_and_swap_rejects_stale_writer(db):
    carol = add_user(db, "Carol")
    vehicle_id = add_vehicle(db)
    booking = BookingEngine(db, today=fixed_clock).create_booking(carol, vehicle_id, day(1), day(3))

    store = BookingStore(db)
    assert store.update_status(booking.id, BookingStatus.ACTIVE, BookingStatus.RETURNED)
    assert not store.update_status(booking.id, BookingStatus.ACTIVE, BookingStatus.CANCELLED)
    db.commit()

    db.refresh(booking)
    assert booking.status == BookingStatus.RETURNED


# ---------- Expiry sweep ----------


def test_sweep_expires_every_overdue_booking_and_is_idempotent(db):
    carol = add_user(db, "Carol")
    v1 = add_vehicle(db, "V-1")
    v2 = add_vehicle(db, "V-2")
    v3 = add_vehicle(db, "V-3")

    creating_engine = BookingEngine(db, today=lambda: day(-10))
    b1 = creating_engine.create_booking(carol, v1, day(-8), day(-3)).id
    b2 = creating_engine.create_booking(carol, v2, day(-5), day(-1)).id
    b3 = creating_engine.create_booking(carol, v3, day(-2), day(0)).id

    booking_engine = BookingEngine(db, today=fixed_clock)
    assert sorted(booking_engine.expire_overdue_bookings()) == sorted([b1, b2])

    snapshot = [
        (b.id, b.status) for b in db.query(Booking).order_by(Booking.id).all()
    ]
    assert snapshot == [
        (b1, BookingStatus.RETURNED),
        (b2, BookingStatus.RETURNED),
        (b3, BookingStatus.ACTIVE),
    ]
    assert availability_of(v1) == AvailabilityStatus.AVAILABLE
    assert availability_of(v2) == AvailabilityStatus.AVAILABLE
    assert availability_of(v3) == AvailabilityStatus.BOOKED

    assert booking_engine.expire_overdue_bookings() == []
    assert [(b.id, b.status) for b in db.query(Booking).order_by(Booking.id).all()] == snapshot


def test_list_runs_sweep_before_reading(db):
    admin = add_user(db, "Ada", role=UserRole.ADMIN)
    carol = add_user(db, "Carol")
    vehicle_id = add_vehicle(db)
    BookingEngine(db, today=lambda: day(-10)).create_booking(carol, vehicle_id, day(-5), day(-1))

    bookings = BookingEngine(db, today=fixed_clock).list_bookings(admin)
    assert [b.status for b in bookings] == [BookingStatus.RETURNED]
    assert bookings[0].customer.name == "Carol"
    assert availability_of(vehicle_id) == AvailabilityStatus.AVAILABLE


# ---------- Legacy status ----------


def test_completed_is_read_as_returned():
    assert BookingStatus("completed") is BookingStatus.RETURNED
    assert BookingStatus.RETURNED.is_terminal
    assert not BookingStatus.ACTIVE.is_terminal


def test_legacy_completed_rows_are_rewritten(db):
    carol = add_user(db, "Carol")
    vehicle_id = add_vehicle(db)

    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO bookings "
                "(customer_id, vehicle_id, rent_start_date, rent_end_date, total_price, status) "
                "VALUES (:c, :v, '2030-01-01', '2030-01-03', 100, 'completed')"
            ),
            {"c": carol.user_id, "v": vehicle_id},
        )

    assert upgrade_legacy_statuses(engine) == 1
    assert db.query(Booking).one().status == BookingStatus.RETURNED
