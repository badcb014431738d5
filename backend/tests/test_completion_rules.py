"""
Completion rule tests.

Pure functions: normalization, document aggregation, checklist summary
and the overall predicate.
"""

import pytest
from datetime import datetime, timedelta, timezone

from backend.app.domain.reservations.completion import (
    ChecklistFact,
    DocumentFact,
    aggregate_documents,
    assess,
    extract_decision,
    normalize_outcome,
    summarize_checklists,
)
from backend.app.models.reservation_enums import (
    ChecklistSubmissionKind,
    DocumentAggregateStatus,
    ReservationStatus,
    ValidationOutcome,
)

T0 = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)
USER_RETURN = ChecklistSubmissionKind.USER_RETURN
APPROVER_VALIDATION = ChecklistSubmissionKind.APPROVER_VALIDATION


def doc(status, type="FUEL_RECEIPT", minutes=0, updated_minutes=None):
    updated = T0 + timedelta(minutes=updated_minutes) if updated_minutes is not None else None
    return DocumentFact(type=type, status=status, created_at=T0 + timedelta(minutes=minutes), updated_at=updated)


@pytest.mark.parametrize("raw,expected", [
    ("approve", ValidationOutcome.APPROVED),
    ("APPROVED", ValidationOutcome.APPROVED),
    (" Validated ", ValidationOutcome.APPROVED),
    ("reject", ValidationOutcome.REJECTED),
    ("Rejected", ValidationOutcome.REJECTED),
    ("pending", ValidationOutcome.PENDING),
    ("canceled", ValidationOutcome.PENDING),
    ("", ValidationOutcome.PENDING),
    (None, ValidationOutcome.PENDING),
    (1, ValidationOutcome.PENDING),
])
def test_normalize_outcome_is_total(raw, expected):
    assert normalize_outcome(raw) == expected


def test_no_documents_is_pending():
    assert aggregate_documents([]) == DocumentAggregateStatus.PENDING


def test_pending_group_takes_precedence():
    docs = [doc("APPROVED", type="FUEL_RECEIPT"), doc("PENDING", type="ODOMETER_PHOTO")]
    assert aggregate_documents(docs) == DocumentAggregateStatus.IN_VALIDATION


def test_approved_group_wins_over_rejected_group():
    docs = [doc("APPROVED", type="FUEL_RECEIPT"), doc("REJECTED", type="ODOMETER_PHOTO")]
    assert aggregate_documents(docs) == DocumentAggregateStatus.VALIDATED


def test_only_rejected_is_pending_docs():
    assert aggregate_documents([doc("rejected")]) == DocumentAggregateStatus.PENDING_DOCS


def test_latest_document_per_type_counts():
    docs = [
        doc("REJECTED", minutes=0),
        doc("APPROVED", minutes=5),
    ]
    assert aggregate_documents(docs) == DocumentAggregateStatus.VALIDATED

    # updated_at takes precedence over created_at
    docs = [
        doc("APPROVED", minutes=5),
        doc("PENDING", minutes=0, updated_minutes=10),
    ]
    assert aggregate_documents(docs) == DocumentAggregateStatus.IN_VALIDATION


def test_untyped_documents_form_one_group():
    docs = [doc("REJECTED", type=None, minutes=0), doc("validated", type=None, minutes=1)]
    assert aggregate_documents(docs) == DocumentAggregateStatus.VALIDATED


def test_untyped_documents_ignored_when_types_present():
    docs = [doc("PENDING", type=None), doc("APPROVED", type="FUEL_RECEIPT")]
    assert aggregate_documents(docs) == DocumentAggregateStatus.VALIDATED


def test_extract_decision_field_order():
    assert extract_decision({"decision": "APPROVED", "status": "REJECTED"}) == ValidationOutcome.APPROVED
    assert extract_decision({"decision": "maybe", "result": "reject"}) == ValidationOutcome.REJECTED
    assert extract_decision({"status": "approved"}) == ValidationOutcome.APPROVED
    assert extract_decision({"notes": "looks fine"}) == ValidationOutcome.PENDING
    assert extract_decision("APPROVED") == ValidationOutcome.PENDING
    assert extract_decision(None) == ValidationOutcome.PENDING


def test_latest_approver_validation_decides():
    summary = summarize_checklists([
        ChecklistFact(USER_RETURN, {"fuel": "full"}, T0),
        ChecklistFact(APPROVER_VALIDATION, {"decision": "REJECTED"}, T0 + timedelta(minutes=1)),
        ChecklistFact(APPROVER_VALIDATION, {"decision": "APPROVED"}, T0 + timedelta(minutes=2)),
    ])

    assert summary.has_user_return
    assert summary.has_approver_validation
    assert summary.decision == ValidationOutcome.APPROVED
    assert summary.is_decided


def test_checklist_without_user_return_is_not_decided():
    summary = summarize_checklists([ChecklistFact(APPROVER_VALIDATION, {"decision": "APPROVED"}, T0)])

    assert not summary.has_user_return
    assert not summary.is_decided


def test_undecided_validation_is_not_decided():
    summary = summarize_checklists([
        ChecklistFact(USER_RETURN, {}, T0),
        ChecklistFact(APPROVER_VALIDATION, {"notes": "later"}, T0),
    ])

    assert summary.decision == ValidationOutcome.PENDING
    assert not summary.is_decided


def test_assess_requires_all_three_conditions():
    documents = [doc("APPROVED")]
    checklists = [
        ChecklistFact(USER_RETURN, {}, T0),
        ChecklistFact(APPROVER_VALIDATION, {"decision": "APPROVED"}, T0),
    ]

    assert assess(ReservationStatus.APPROVED, documents, checklists).eligible
    assert assess(ReservationStatus.COMPLETED, documents, checklists).reason == "reservation_not_approved"
    assert assess(ReservationStatus.APPROVED, [doc("PENDING")], checklists).reason == "documents_not_validated"
    assert assess(ReservationStatus.APPROVED, documents, checklists[1:]).reason == "user_return_missing"
    assert assess(ReservationStatus.APPROVED, documents, checklists[:1]).reason == "approver_validation_missing"


def test_rejected_return_still_completes():
    checklists = [
        ChecklistFact(USER_RETURN, {}, T0),
        ChecklistFact(APPROVER_VALIDATION, {"result": "reject"}, T0),
    ]
    assessment = assess(ReservationStatus.APPROVED, [doc("APPROVED")], checklists)

    assert assessment.eligible
    assert assessment.reason is None
