"""
Seed the rental database with demo data:

- one admin and one customer (password: Passw0rd!)
- a handful of vehicles across every vehicle type

Running it twice is safe: existing emails and registration numbers are skipped.
"""
import logging
from decimal import Decimal

from rental_service.auth import get_password_hash
from rental_service.database import Base, SessionLocal, engine
from rental_service.models import (
    AvailabilityStatus,
    User,
    UserRole,
    Vehicle,
    VehicleType,
)

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "Passw0rd!"

DEMO_USERS = [
    ("Demo Admin", "admin@example.com", UserRole.ADMIN),
    ("Demo Customer", "customer@example.com", UserRole.CUSTOMER),
]

DEMO_VEHICLES = [
    ("Toyota Corolla", VehicleType.CAR, "DEMO-CAR-001", "45.00"),
    ("Honda Civic", VehicleType.CAR, "DEMO-CAR-002", "48.50"),
    ("Yamaha MT-07", VehicleType.BIKE, "DEMO-BIKE-001", "30.00"),
    ("Ford Transit", VehicleType.VAN, "DEMO-VAN-001", "80.00"),
    ("Toyota RAV4", VehicleType.SUV, "DEMO-SUV-001", "95.00"),
]


def seed() -> dict:
    """
    Insert the demo users and vehicles that are not already present.

    Returns
    -------
    dict
        Number of created rows per table, e.g. ``{"users": 2, "vehicles": 5}``.
    """
    Base.metadata.create_all(bind=engine)
    created = {"users": 0, "vehicles": 0}

    db = SessionLocal()
    try:
        for name, email, role in DEMO_USERS:
            if db.query(User).filter(User.email == email).first():
                continue
            db.add(
                User(
                    name=name,
                    email=email,
                    hashed_password=get_password_hash(DEMO_PASSWORD),
                    role=role,
                )
            )
            created["users"] += 1

        for vehicle_name, vehicle_type, registration_number, rate in DEMO_VEHICLES:
            exists = (
                db.query(Vehicle)
                .filter(Vehicle.registration_number == registration_number)
                .first()
            )
            if exists:
                continue
            db.add(
                Vehicle(
                    vehicle_name=vehicle_name,
                    type=vehicle_type,
                    registration_number=registration_number,
                    daily_rent_price=Decimal(rate),
                    availability_status=AvailabilityStatus.AVAILABLE,
                )
            )
            created["vehicles"] += 1

        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    logger.info("Seeded %(users)s user(s) and %(vehicles)s vehicle(s)", created)
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed()
