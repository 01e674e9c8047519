from .models import UserRole


def can_access_booking(requester_role, resource_owner_id: int, requester_id: int) -> bool:
    """
    Decide whether a requester may read or act on a booking.

    Admins may access any booking; customers only bookings they own.
    Unknown roles are denied.
    """
    if requester_role == UserRole.ADMIN:
        return True
    if requester_role == UserRole.CUSTOMER:
        return resource_owner_id == requester_id
    return False
