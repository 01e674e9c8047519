import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Must be set before rental_service.database is imported.
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(PROJECT_ROOT, "test_vehicle_rental.db"),
)
os.environ["TESTING"] = "1"
os.environ.pop("REDIS_URL", None)
