"""
Reservation and vehicle related enumerations.
"""

import enum


class ReservationStatus(str, enum.Enum):
    """Reservation status enumeration."""
    PENDING = "PENDING"  # Requested, waiting for an approver
    APPROVED = "APPROVED"  # Vehicle bound, vehicle IN_USE
    CANCELED = "CANCELED"  # Canceled by owner, approver or admin
    COMPLETED = "COMPLETED"  # Returned and validated (or closed by approver)
    REJECTED = "REJECTED"  # Terminal, kept for reporting

    @property
    def is_active_hold(self) -> bool:
        return self in ACTIVE_HOLD_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active_hold


# Statuses that count toward overlap conflicts for a bound vehicle
ACTIVE_HOLD_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED)


class VehicleStatus(str, enum.Enum):
    """Vehicle status enumeration."""
    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"
    MAINTENANCE = "MAINTENANCE"
    INACTIVE = "INACTIVE"


class ChecklistSubmissionKind(str, enum.Enum):
    """Checklist submission kind enumeration."""
    USER_RETURN = "USER_RETURN"  # Requester's return checklist
    APPROVER_VALIDATION = "APPROVER_VALIDATION"  # Approver's decision on the return


class ValidationOutcome(str, enum.Enum):
    """Normalized outcome of a document status or checklist decision."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DocumentAggregateStatus(str, enum.Enum):
    """Aggregate document status of a reservation."""
    PENDING = "Pending"  # No documents at all
    IN_VALIDATION = "InValidation"  # Some document type still pending
    PENDING_DOCS = "PendingDocs"  # Only rejected documents remain
    VALIDATED = "Validated"


class ChecklistItemType(str, enum.Enum):
    """Answer type of a checklist template item."""
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
