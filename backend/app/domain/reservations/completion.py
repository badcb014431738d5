"""
Completion Aggregator (Domain Logic).

Decides whether an APPROVED reservation can be closed automatically, from
two independent streams of facts:

- the reservation's documents, aggregated per type
- the reservation's checklist submissions (requester return + approver
  validation)

Eligibility is always recomputed from the persisted facts; nothing is
cached between notifications.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.timeutils import ensure_utc
from backend.app.db.transaction import atomic
from backend.app.domain.reservations.actor import TenantScope
from backend.app.domain.reservations.state_machine import ReservationService
from backend.app.models.checklist_submission import ChecklistSubmission
from backend.app.models.document import Document
from backend.app.models.reservation import Reservation
from backend.app.models.reservation_enums import (
    ChecklistSubmissionKind,
    DocumentAggregateStatus,
    ReservationStatus,
    ValidationOutcome,
)
from backend.app.services.audit import AuditAction

logger = logging.getLogger("reservations.completion")


_APPROVED_TOKENS = frozenset({"approve", "approved", "validated"})
_REJECTED_TOKENS = frozenset({"reject", "rejected"})

# Payload fields read, in order, for the approver's decision
DECISION_FIELDS = ("decision", "result", "status")


def normalize_outcome(raw: Any) -> ValidationOutcome:
    """
    Map a raw status/decision value to a ValidationOutcome.

    Case-insensitive. Anything outside the known tokens, including None
    and non-strings, is PENDING.
    """
    if not isinstance(raw, str):
        return ValidationOutcome.PENDING

    token = raw.strip().casefold()
    if token in _APPROVED_TOKENS:
        return ValidationOutcome.APPROVED
    if token in _REJECTED_TOKENS:
        return ValidationOutcome.REJECTED
    return ValidationOutcome.PENDING


@dataclass(frozen=True)
class DocumentFact:
    type: Optional[str]
    status: Any
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def last_touched(self) -> Optional[datetime]:
        value = self.updated_at or self.created_at
        return ensure_utc(value) if value else None


@dataclass(frozen=True)
class ChecklistFact:
    kind: ChecklistSubmissionKind
    payload: Any
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChecklistSummary:
    has_user_return: bool
    has_approver_validation: bool
    decision: Optional[ValidationOutcome]

    @property
    def is_decided(self) -> bool:
        return (
            self.has_user_return
            and self.has_approver_validation
            and self.decision in (ValidationOutcome.APPROVED, ValidationOutcome.REJECTED)
        )


@dataclass(frozen=True)
class CompletionAssessment:
    reservation_status: Optional[ReservationStatus]
    documents: DocumentAggregateStatus
    checklist: ChecklistSummary

    @property
    def eligible(self) -> bool:
        return (
            self.reservation_status == ReservationStatus.APPROVED
            and self.documents == DocumentAggregateStatus.VALIDATED
            and self.checklist.is_decided
        )

    @property
    def reason(self) -> Optional[str]:
        """Why the reservation is not eligible, None when it is."""
        if self.reservation_status != ReservationStatus.APPROVED:
            return "reservation_not_approved"
        if self.documents != DocumentAggregateStatus.VALIDATED:
            return "documents_not_validated"
        if not self.checklist.has_user_return:
            return "user_return_missing"
        if not self.checklist.has_approver_validation:
            return "approver_validation_missing"
        if not self.checklist.is_decided:
            return "checklist_not_decided"
        return None


@dataclass(frozen=True)
class CompletionResult:
    reservation_id: str
    completed: bool
    assessment: Optional[CompletionAssessment] = None


def _newer_or_equal(candidate: Optional[datetime], current: Optional[datetime]) -> bool:
    if candidate is None or current is None:
        return True
    return candidate >= current


def aggregate_documents(documents: Iterable[DocumentFact]) -> DocumentAggregateStatus:
    """
    Aggregate document statuses into one DocumentAggregateStatus.

    Documents are grouped by type; when no document carries a type they
    form a single group. Only the most recently updated document of each
    group counts (on equal timestamps the later one in the input wins).

    Precedence:
        any group PENDING  -> InValidation
        any group APPROVED -> Validated
        any group REJECTED -> PendingDocs
        no documents       -> Pending
    """
    documents = list(documents)
    if not documents:
        return DocumentAggregateStatus.PENDING

    typed = [doc for doc in documents if doc.type]
    if typed:
        documents = typed

    latest: dict = {}
    for doc in documents:
        key = doc.type or None
        current = latest.get(key)
        if current is None or _newer_or_equal(doc.last_touched, current.last_touched):
            latest[key] = doc

    outcomes = {normalize_outcome(doc.status) for doc in latest.values()}

    if ValidationOutcome.PENDING in outcomes:
        return DocumentAggregateStatus.IN_VALIDATION
    if ValidationOutcome.APPROVED in outcomes:
        return DocumentAggregateStatus.VALIDATED
    if ValidationOutcome.REJECTED in outcomes:
        return DocumentAggregateStatus.PENDING_DOCS
    return DocumentAggregateStatus.PENDING


def extract_decision(payload: Any) -> ValidationOutcome:
    """First of decision/result/status that carries an explicit outcome."""
    if not isinstance(payload, dict):
        return ValidationOutcome.PENDING

    for field in DECISION_FIELDS:
        outcome = normalize_outcome(payload.get(field))
        if outcome != ValidationOutcome.PENDING:
            return outcome
    return ValidationOutcome.PENDING


def summarize_checklists(submissions: Iterable[ChecklistFact]) -> ChecklistSummary:
    """
    Summarize checklist submissions.

    The decision comes from the APPROVER_VALIDATION submission with the
    latest created_at; on equal timestamps the first one seen wins.
    """
    has_user_return = False
    latest_validation: Optional[ChecklistFact] = None

    for submission in submissions:
        if submission.kind == ChecklistSubmissionKind.USER_RETURN:
            has_user_return = True
        elif submission.kind == ChecklistSubmissionKind.APPROVER_VALIDATION:
            if latest_validation is None:
                latest_validation = submission
                continue
            candidate = submission.created_at
            current = latest_validation.created_at
            if candidate is not None and (current is None or ensure_utc(candidate) > ensure_utc(current)):
                latest_validation = submission

    return ChecklistSummary(
        has_user_return=has_user_return,
        has_approver_validation=latest_validation is not None,
        decision=extract_decision(latest_validation.payload) if latest_validation else None
    )


def assess(
    reservation_status: Optional[ReservationStatus],
    documents: Sequence[DocumentFact],
    checklists: Sequence[ChecklistFact]
) -> CompletionAssessment:
    """Pure completion predicate over current facts."""
    return CompletionAssessment(
        reservation_status=reservation_status,
        documents=aggregate_documents(documents),
        checklist=summarize_checklists(checklists)
    )


class CompletionAggregator:

    @staticmethod
    async def _load_facts(
        db: AsyncSession,
        reservation_id: str
    ) -> tuple[list[DocumentFact], list[ChecklistFact]]:
        docs_result = await db.execute(
            select(Document)
            .where(Document.reservation_id == reservation_id)
            .order_by(Document.created_at, Document.id)
        )
        documents = [
            DocumentFact(
                type=doc.type,
                status=doc.status,
                created_at=doc.created_at,
                updated_at=doc.updated_at
            )
            for doc in docs_result.scalars().all()
        ]

        checklist_result = await db.execute(
            select(ChecklistSubmission)
            .where(ChecklistSubmission.reservation_id == reservation_id)
            .order_by(ChecklistSubmission.created_at, ChecklistSubmission.id)
        )
        checklists = [
            ChecklistFact(kind=item.kind, payload=item.payload, created_at=item.created_at)
            for item in checklist_result.scalars().all()
        ]

        return documents, checklists

    @staticmethod
    async def evaluate(
        db: AsyncSession,
        scope: TenantScope,
        reservation_id: str
    ) -> CompletionAssessment:
        """
        Evaluate the completion predicate without side effects.

        A reservation outside the tenant is reported with no status.
        """
        result = await db.execute(
            select(Reservation.status).where(
                Reservation.id == reservation_id,
                Reservation.tenant_id == scope.tenant_id
            )
        )
        status = result.scalar_one_or_none()
        if status is None:
            return assess(None, [], [])

        documents, checklists = await CompletionAggregator._load_facts(db, reservation_id)
        return assess(status, documents, checklists)

    @staticmethod
    async def try_complete(
        db: AsyncSession,
        scope: TenantScope,
        reservation_id: str,
        actor_id: Optional[str] = None
    ) -> CompletionResult:
        """
        Complete the reservation if it is eligible.

        Safe to call any number of times: a reservation that is missing,
        not APPROVED or not yet eligible is left as is and reported as not
        completed.

        Args:
            db: Database session
            scope: Tenant of the reservation
            reservation_id: Reservation to evaluate
            actor_id: User whose action triggered the evaluation, if any

        Returns:
            CompletionResult
        """
        async with atomic(db, "auto-complete reservation"):
            result = await db.execute(
                select(Reservation)
                .where(
                    Reservation.id == reservation_id,
                    Reservation.tenant_id == scope.tenant_id
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            reservation = result.scalar_one_or_none()

            if reservation is None or reservation.status != ReservationStatus.APPROVED:
                return CompletionResult(
                    reservation_id=reservation_id,
                    completed=False,
                    assessment=assess(reservation.status if reservation else None, [], [])
                )

            documents, checklists = await CompletionAggregator._load_facts(db, reservation_id)
            assessment = assess(reservation.status, documents, checklists)

            if not assessment.eligible:
                logger.debug(
                    "Reservation %s not eligible for completion: %s",
                    reservation_id, assessment.reason
                )
                return CompletionResult(
                    reservation_id=reservation_id,
                    completed=False,
                    assessment=assessment
                )

            await ReservationService.complete(
                db,
                reservation,
                actor_id=actor_id,
                action=AuditAction.RESERVATION_COMPLETED,
                metadata={
                    "via": "docs+checklist",
                    "checklist_decision": assessment.checklist.decision.value
                }
            )

        logger.info("Reservation %s completed from documents and checklist", reservation_id)
        return CompletionResult(
            reservation_id=reservation_id,
            completed=True,
            assessment=assessment
        )


async def notify_document_validated(
    db: AsyncSession,
    scope: TenantScope,
    reservation_id: str,
    actor_id: Optional[str] = None
) -> CompletionResult:
    """Trigger called after a document validation result is recorded."""
    return await CompletionAggregator.try_complete(db, scope, reservation_id, actor_id)


async def notify_checklist_validated(
    db: AsyncSession,
    scope: TenantScope,
    reservation_id: str,
    actor_id: Optional[str] = None
) -> CompletionResult:
    """Trigger called after an APPROVER_VALIDATION checklist is recorded."""
    return await CompletionAggregator.try_complete(db, scope, reservation_id, actor_id)
