# rental_service/rate_limiter.py
import os
import time
from typing import Dict, List

from fastapi import Depends, HTTPException, status

from . import schemas
from .auth import get_current_identity

WINDOW_SECONDS = 60
MAX_BOOKINGS_PER_WINDOW = 20

_user_request_log: Dict[int, List[float]] = {}


def booking_rate_limiter(identity: schemas.TokenData = Depends(get_current_identity)):
    """
    Rate limit booking writes per authenticated user (sliding window).
    """
    if os.getenv("TESTING") == "1":
        return

    now = time.time()
    window_start = now - WINDOW_SECONDS

    timestamps = [ts for ts in _user_request_log.get(identity.user_id, []) if ts >= window_start]

    if len(timestamps) >= MAX_BOOKINGS_PER_WINDOW:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking operations in a short time",
        )

    timestamps.append(now)
    _user_request_log[identity.user_id] = timestamps
