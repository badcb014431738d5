"""
User roles enumeration.

Defines the role types for the vehicle reservation system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        REQUESTER: Employee requesting a vehicle (default role)
        APPROVER: Binds vehicles to requests and validates returns
        ADMIN: Tenant administrator, may also delete reservations
    """
    REQUESTER = "REQUESTER"
    APPROVER = "APPROVER"
    ADMIN = "ADMIN"

    @property
    def is_elevated(self) -> bool:
        return self in (UserRole.APPROVER, UserRole.ADMIN)
