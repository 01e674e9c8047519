import os
import sys
from decimal import Decimal

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient

import seed_demo
from rental_service.database import Base, engine
from rental_service.main import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def test_seed_is_idempotent():
    assert seed_demo.seed() == {"users": 2, "vehicles": len(seed_demo.DEMO_VEHICLES)}
    assert seed_demo.seed() == {"users": 0, "vehicles": 0}


def test_seeded_customer_can_sign_in_and_book():
    seed_demo.seed()

    res = client.post(
        "/api/v1/auth/signin",
        json={"email": "customer@example.com", "password": seed_demo.DEMO_PASSWORD},
    )
    assert res.status_code == 200
    token = res.json()["data"]["access_token"]
    assert res.json()["data"]["user"]["role"] == "customer"

    booking = client.post(
        "/api/v1/bookings",
        json={"vehicle_id": 1, "rent_start_date": "2031-03-01", "rent_end_date": "2031-03-04"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert booking.status_code == 201
    assert Decimal(booking.json()["data"]["total_price"]) == Decimal("135")


def test_every_demo_account_can_sign_in():
    seed_demo.seed()

    for _, email, role in seed_demo.DEMO_USERS:
        res = client.post(
            "/api/v1/auth/signin",
            json={"email": email, "password": seed_demo.DEMO_PASSWORD},
        )
        assert res.status_code == 200, res.json()
        assert res.json()["data"]["user"]["role"] == role.value
