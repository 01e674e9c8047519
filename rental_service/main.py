import logging
import os
from datetime import date

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import (
    authenticate_user,
    create_access_token,
    get_password_hash,
    require_roles,
)
from .booking_engine import BookingEngine
from .database import Base, engine, get_db, upgrade_legacy_statuses
from .errors import BookingError
from .models import UserRole
from .rate_limiter import booking_rate_limiter
from .store import UserDirectory

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables and rewrite legacy statuses on startup
Base.metadata.create_all(bind=engine)
upgrade_legacy_statuses(engine)

app = FastAPI(title="Vehicle Rental Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "vehicle_rental"


def _error_response(request: Request, status_code: int, message: str, kind: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "error": kind,
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
        },
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    return await call_next(request)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return _error_response(request, exc.status_code, exc.message, exc.kind)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return _error_response(request, status.HTTP_400_BAD_REQUEST, message, "ValidationError")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "InternalError",
    )


@app.get("/")
def root():
    """
    Health-check endpoint for the rental service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": SERVICE_NAME, "status": "running"}


def get_booking_engine(db: Session = Depends(get_db)) -> BookingEngine:
    return BookingEngine(db)


admin_only = require_roles(UserRole.ADMIN)
admin_or_customer = require_roles(UserRole.ADMIN, UserRole.CUSTOMER)


def _booking_detail(booking: models.Booking, include_customer: bool) -> schemas.BookingDetailRead:
    detail = schemas.BookingDetailRead.model_validate(booking)
    if not include_customer:
        detail.customer = None
    return detail


# ---------- Auth ----------


@router_v1.post(
    "/auth/signup",
    response_model=schemas.UserResponse,
    status_code=status.HTTP_201_CREATED,
)
def signup(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    """
    Register a new account.

    Behavior
    --------
    - The first account ever created becomes ADMIN.
    - Every later registration becomes CUSTOMER.
    - Email must be unique.

    Raises
    ------
    HTTPException
        400 if the email is already registered.
    """
    users = UserDirectory(db)
    if users.get_user_by_email(user_in.email) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    assigned_role = UserRole.ADMIN if users.count() == 0 else UserRole.CUSTOMER

    user = models.User(
        name=user_in.name,
        email=user_in.email,
        hashed_password=get_password_hash(user_in.password),
        phone=user_in.phone,
        role=assigned_role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s as %s", user.id, assigned_role.value)
    return {
        "message": "User registered successfully",
        "data": schemas.UserRead.model_validate(user),
    }


@router_v1.post("/auth/signin", response_model=schemas.TokenResponse)
def signin(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    """
    Authenticate with email and password and return a JWT access token.

    The token carries 'sub' (email), 'role' and 'user_id' claims.
    """
    user = authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    access_token = create_access_token(
        data={"sub": user.email, "role": user.role.value, "user_id": user.id},
    )
    return {
        "message": "Login successful",
        "data": {
            "access_token": access_token,
            "token_type": "bearer",
            "user": schemas.UserRead.model_validate(user),
        },
    }


# ---------- Create booking ----------


@router_v1.post(
    "/bookings",
    response_model=schemas.BookingResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_booking(
    booking_in: schemas.BookingCreate,
    identity: schemas.TokenData = Depends(admin_or_customer),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """
    Book a vehicle for a rental period.

    Access
    ------
    - customer: books for themselves; any customer_id in the body is ignored.
    - admin: may book on behalf of customer_id.

    Behavior
    --------
    - Rejects unknown vehicles (404), vehicles not currently available
      (409) and periods overlapping an active booking (409).
    - total_price is computed from the vehicle's daily rate.
    - The vehicle is marked as booked.
    """
    booking = booking_engine.create_booking(
        identity,
        vehicle_id=booking_in.vehicle_id,
        rent_start_date=booking_in.rent_start_date,
        rent_end_date=booking_in.rent_end_date,
        customer_id=booking_in.customer_id,
    )
    return {
        "message": "Booking created successfully",
        "data": schemas.BookingRead.model_validate(booking),
    }


# ---------- List bookings ----------


@router_v1.get(
    "/bookings",
    response_model=schemas.BookingListResponse,
    response_model_exclude_none=True,
)
def list_bookings(
    identity: schemas.TokenData = Depends(admin_or_customer),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """
    List bookings, newest first.

    Access
    ------
    - admin: every booking with customer and vehicle details.
    - customer: own bookings with vehicle details.

    Overdue active bookings are marked as returned before listing.
    """
    is_admin = identity.role == UserRole.ADMIN
    bookings = booking_engine.list_bookings(identity)
    return {
        "message": "Bookings fetched successfully",
        "data": [_booking_detail(b, include_customer=is_admin) for b in bookings],
    }


# ---------- Check vehicle availability ----------


@router_v1.get("/bookings/availability", response_model=schemas.AvailabilityResponse)
def check_availability(
    vehicle_id: int = Query(..., ge=1),
    rent_start_date: date = Query(...),
    rent_end_date: date = Query(...),
    _: schemas.TokenData = Depends(admin_or_customer),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """
    Check whether a vehicle can be booked for the given period.

    Returns
    -------
    AvailabilityResponse
        'available' is True when a booking for this period would be accepted.
    """
    available = booking_engine.check_availability(vehicle_id, rent_start_date, rent_end_date)
    return {
        "message": "Availability fetched successfully",
        "data": {
            "vehicle_id": vehicle_id,
            "rent_start_date": rent_start_date,
            "rent_end_date": rent_end_date,
            "available": available,
        },
    }


# ---------- Expiry sweep (admin) ----------


@router_v1.post("/bookings/expire", response_model=schemas.SweepResponse)
def expire_bookings(
    _: schemas.TokenData = Depends(admin_only),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """
    Admin: mark every active booking past its end date as returned and
    release the vehicles.
    """
    expired = booking_engine.expire_overdue_bookings()
    return {
        "message": f"{len(expired)} booking(s) expired",
        "data": {"expired_booking_ids": expired},
    }


# ---------- Single booking ----------


@router_v1.get(
    "/bookings/{booking_id}",
    response_model=schemas.BookingDetailResponse,
    response_model_exclude_none=True,
)
def get_booking(
    booking_id: int,
    identity: schemas.TokenData = Depends(admin_or_customer),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    booking = booking_engine.get_booking(identity, booking_id)
    return {
        "message": "Booking fetched successfully",
        "data": _booking_detail(booking, include_customer=identity.role == UserRole.ADMIN),
    }


# ---------- Update booking status ----------


@router_v1.put(
    "/bookings/{booking_id}",
    response_model=schemas.BookingResponse,
    dependencies=[Depends(booking_rate_limiter)],
)
def update_booking(
    booking_id: int,
    update_data: schemas.BookingStatusUpdate,
    identity: schemas.TokenData = Depends(admin_or_customer),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """
    Change the status of a booking.

    Access
    ------
    - customer: own bookings only; may set 'cancelled' before the rental
      start date.
    - admin: any booking; may set 'returned'.

    Behavior
    --------
    - Only active bookings can change status.
    - The vehicle becomes available again.

    Raises
    ------
    NotFoundError, ForbiddenError, InvalidTransitionError
        Rendered as 404, 403 and 400 responses.
    """
    booking = booking_engine.update_booking_status(identity, booking_id, update_data.status)
    return {
        "message": "Booking updated successfully",
        "data": schemas.BookingRead.model_validate(booking),
    }


app.include_router(router_v1)
