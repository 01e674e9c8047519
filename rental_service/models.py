from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class UserRole(str, PyEnum):
    """
    Enumeration of the roles a rental account can hold.

    Roles
    -----
    admin
        Staff account; sees every booking and marks rentals as returned.
    customer
        End user who books vehicles for themselves.
    """
    ADMIN = "admin"
    CUSTOMER = "customer"


class VehicleType(str, PyEnum):
    CAR = "car"
    BIKE = "bike"
    VAN = "van"
    SUV = "SUV"


class AvailabilityStatus(str, PyEnum):
    """
    Two-state availability flag of a vehicle.

    Values
    ------
    available
        No active booking references the vehicle.
    booked
        An active booking currently reserves the vehicle.
    """
    AVAILABLE = "available"
    BOOKED = "booked"


class BookingStatus(str, PyEnum):
    """
    Enumeration of possible booking statuses.

    Values
    ------
    active
        Booking reserves its vehicle for the rental period.
    cancelled
        Booking was cancelled by the customer before the rental started.
    returned
        Vehicle was returned, either by an admin or by the expiry sweep.

    The legacy value 'completed' is read as 'returned'.
    """
    ACTIVE = "active"
    CANCELLED = "cancelled"
    RETURNED = "returned"

    @classmethod
    def _missing_(cls, value):
        if value == "completed":
            return cls.RETURNED
        return None

    @property
    def is_terminal(self) -> bool:
        return self is not BookingStatus.ACTIVE


class User(Base):
    """
    SQLAlchemy model for rental accounts.

    Attributes
    ----------
    id : int
        Primary key.
    name : str
        Display name of the user.
    email : str
        Unique, lower-cased email used for sign in.
    hashed_password : str
        Bcrypt-hashed password.
    phone : str
        Optional contact number.
    role : UserRole
        Role controlling access privileges.
    created_at : datetime
        Timestamp of user creation.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(150), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    phone = Column(String(15), nullable=True)
    role = Column(
        Enum(UserRole, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=UserRole.CUSTOMER,
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Vehicle(Base):
    """
    SQLAlchemy model representing a rentable vehicle.

    Attributes
    ----------
    id : int
        Primary key.
    vehicle_name : str
        Human-readable name (e.g. 'Toyota Corolla').
    type : VehicleType
        Category of the vehicle.
    registration_number : str
        Unique plate number.
    daily_rent_price : Decimal
        Price charged per rental day.
    availability_status : AvailabilityStatus
        Whether an active booking currently reserves the vehicle.
    """
    __tablename__ = "vehicles"
    __table_args__ = (
        CheckConstraint("daily_rent_price > 0", name="ck_vehicles_daily_rent_price_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    vehicle_name = Column(String(100), nullable=False)
    type = Column(
        Enum(VehicleType, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
    )
    registration_number = Column(String(50), unique=True, nullable=False)
    daily_rent_price = Column(Numeric(10, 2), nullable=False)
    availability_status = Column(
        Enum(AvailabilityStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=AvailabilityStatus.AVAILABLE,
    )


class Booking(Base):
    """
    SQLAlchemy model representing a vehicle rental booking.

    Attributes
    ----------
    id : int
        Primary key.
    customer_id : int
        User the vehicle is rented to.
    vehicle_id : int
        Rented vehicle.
    rent_start_date : date
        First day of the rental.
    rent_end_date : date
        Day the rental ends (exclusive for overlap checks).
    total_price : Decimal
        Computed price of the whole rental.
    status : BookingStatus
        Current status of the booking (active/cancelled/returned).
    created_at : datetime
        Timestamp when the booking was created.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("rent_end_date > rent_start_date", name="ck_bookings_dates_ordered"),
        CheckConstraint("total_price > 0", name="ck_bookings_total_price_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), index=True, nullable=False)
    rent_start_date = Column(Date, nullable=False)
    rent_end_date = Column(Date, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    status = Column(
        Enum(BookingStatus, values_callable=_enum_values, native_enum=False, length=15),
        nullable=False,
        default=BookingStatus.ACTIVE,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    customer = relationship("User")
    vehicle = relationship("Vehicle")
