"""
Explicit caller context for the reservation engine.

Every engine operation receives the acting user and tenant as values;
nothing is read from request-global state.
"""

from dataclasses import dataclass
from typing import Optional

from backend.app.models.enums import UserRole


@dataclass(frozen=True)
class TenantScope:
    """Isolation boundary every lookup is filtered by."""
    tenant_id: str


@dataclass(frozen=True)
class Actor:
    """The user performing an operation."""
    id: str
    role: UserRole
    tenant_id: str
    branch_id: Optional[str] = None

    @property
    def scope(self) -> TenantScope:
        return TenantScope(self.tenant_id)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_elevated(self) -> bool:
        return self.role.is_elevated

    def owns(self, reservation) -> bool:
        return reservation.requester_user_id == self.id
