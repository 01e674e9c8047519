from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import BookingStatus, UserRole, VehicleType


# ---------- Identity ----------

class TokenData(BaseModel):
    """
    Authenticated identity attached to a request.

    Attributes
    ----------
    user_id : int
        ID of the authenticated user.
    role : UserRole
        Role embedded in the token.
    """
    user_id: int
    role: UserRole


# ---------- Auth schemas ----------

class UserCreate(BaseModel):
    """
    Schema for account registration input.
    Registration does NOT accept role; it is assigned internally.
    """
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(default=None, max_length=15)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserRead(BaseModel):
    """
    Schema returned when reading user information.

    Exposes safe, non-sensitive fields and hides the password hash.
    """
    id: int
    name: str
    email: EmailStr
    phone: Optional[str] = None
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    """
    Schema for JWT access token responses.

    Attributes
    ----------
    access_token : str
        Encoded JWT.
    token_type : str
        Token type, usually 'bearer'.
    user : UserRead
        Profile of the signed in user.
    """
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# ---------- Booking input schemas ----------

class BookingCreate(BaseModel):
    """
    Schema for creating a new booking.

    customer_id is only honoured for admin callers; customers always
    book for themselves. The price is computed server side, so any
    client supplied total_price is ignored.
    """
    vehicle_id: int = Field(..., ge=1)
    rent_start_date: date
    rent_end_date: date
    customer_id: Optional[int] = Field(default=None, ge=1)


class BookingStatusUpdate(BaseModel):
    """
    Schema for a booking status change.

    Customers may only request 'cancelled', admins only 'returned'.
    """
    status: BookingStatus


# ---------- Booking output schemas ----------

class BookingRead(BaseModel):
    """
    Schema returned when reading booking information.
    """
    id: int
    customer_id: int
    vehicle_id: int
    rent_start_date: date
    rent_end_date: date
    total_price: Decimal
    status: BookingStatus

    model_config = ConfigDict(from_attributes=True)


class CustomerSnapshot(BaseModel):
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class VehicleSnapshot(BaseModel):
    vehicle_name: str
    registration_number: str
    type: VehicleType

    model_config = ConfigDict(from_attributes=True)


class BookingDetailRead(BookingRead):
    """
    Booking joined with display snapshots of its vehicle and, for admins,
    its customer.
    """
    customer: Optional[CustomerSnapshot] = None
    vehicle: VehicleSnapshot


class Availability(BaseModel):
    vehicle_id: int
    rent_start_date: date
    rent_end_date: date
    available: bool


class SweepResult(BaseModel):
    expired_booking_ids: List[int]


# ---------- Response envelopes ----------

class ApiResponse(BaseModel):
    success: bool = True
    message: str


class BookingResponse(ApiResponse):
    data: BookingRead


class BookingDetailResponse(ApiResponse):
    data: BookingDetailRead


class BookingListResponse(ApiResponse):
    data: List[BookingDetailRead]


class AvailabilityResponse(ApiResponse):
    data: Availability


class SweepResponse(ApiResponse):
    data: SweepResult


class UserResponse(ApiResponse):
    data: UserRead


class TokenResponse(ApiResponse):
    data: Token
