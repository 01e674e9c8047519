from fastapi import status


class BookingError(Exception):
    """
    Base class for failures raised by the booking engine.

    Attributes
    ----------
    kind : str
        Stable failure category the HTTP layer switches on.
    message : str
        Human-readable description returned to the client.
    status_code : int
        HTTP status used when the failure reaches a request handler.
    """
    kind = "BookingError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(BookingError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class UnauthorizedError(BookingError):
    kind = "Unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(BookingError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(BookingError):
    kind = "ValidationError"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(BookingError):
    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class VehicleUnavailableError(ConflictError):
    kind = "Conflict: VehicleUnavailable"

    def __init__(self, message: str = "Vehicle is not available"):
        super().__init__(message)


class DateOverlapError(ConflictError):
    kind = "Conflict: DateOverlap"

    def __init__(self, message: str = "Vehicle already booked for selected dates"):
        super().__init__(message)


class InvalidTransitionError(BookingError):
    kind = "InvalidTransition"
    status_code = status.HTTP_400_BAD_REQUEST
