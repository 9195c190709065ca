"""Tender and response transitions.

Functions take the current records plus the acting caller and return the new
records. They never touch storage; callers persist the result with a version
check.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Sequence, Tuple

from partner_portal.contexts.tendering.domain.compliance import ComplianceResult
from partner_portal.contexts.tendering.domain.models import (
    OPEN_TENDER_STATUSES,
    RESPONSE_AWARDED,
    RESPONSE_CALCULATING,
    RESPONSE_INTEREST_SUBMITTED,
    RESPONSE_PROPOSAL_SUBMITTED,
    RESPONSE_REJECTED,
    STRATEGY_INVITED_ONLY,
    TENDER_AWARDED,
    TENDER_CANCELLED,
    TENDER_DRAFT,
    TENDER_PUBLISHED,
    TENDER_RESPONSE_PERIOD,
    TENDER_UNDER_REVIEW,
    Tender,
    TenderQuestion,
    TenderResponse,
    int_tuple,
)
from partner_portal.contexts.tendering.domain.visibility import normalize_strategy
from partner_portal.domain.contracts import Caller, ProposalSubmitInput
from partner_portal.errors import (
    AlreadyResolvedError,
    ComplianceGateError,
    InvalidAwardTargetError,
    InvalidTransitionError,
    NotVisibleError,
    UnauthorizedError,
    ValidationError,
)


ADMIN_STATUS_TARGETS = {
    TENDER_RESPONSE_PERIOD: frozenset({TENDER_PUBLISHED}),
    TENDER_UNDER_REVIEW: frozenset({TENDER_PUBLISHED, TENDER_RESPONSE_PERIOD}),
}

NOT_SELECTED_REASON = "not_selected"


def _iso(now: datetime) -> str:
    return now.isoformat()


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise UnauthorizedError(details="admin_required")


def require_partner(caller: Caller, partner_id: int) -> None:
    if caller.is_admin or caller.partner_id is None:
        raise UnauthorizedError(details="partner_required")
    if int(caller.partner_id) != int(partner_id):
        raise UnauthorizedError(details="partner_mismatch")


def _require_open(tender: Tender) -> None:
    if tender.status not in OPEN_TENDER_STATUSES:
        raise InvalidTransitionError(
            details=f"tender_not_open:{tender.status}",
            payload={"tender_status": tender.status},
        )


def _require_not_terminal(response: TenderResponse) -> None:
    if response.is_terminal:
        raise InvalidTransitionError(
            details=f"response_terminal:{response.status}",
            payload={"response_status": response.status},
        )


def _require_response_status(response: TenderResponse, expected: str) -> None:
    if response.status != expected:
        raise InvalidTransitionError(
            details=f"response_status:{response.status}",
            payload={"response_status": response.status, "expected_status": expected},
        )


# Response transitions


def submit_interest(
    tender: Tender,
    partner_id: int,
    caller: Caller,
    *,
    existing: TenderResponse | None,
    compliance: ComplianceResult,
    upcoming_session_ids: Iterable[int],
    selected_session_ids: Iterable[int],
    visible: bool,
    now: datetime,
    nda_accepted: bool = True,
) -> TenderResponse:
    require_partner(caller, partner_id)
    if not visible:
        raise NotVisibleError(details="tender_not_visible")
    _require_open(tender)
    if existing is not None:
        raise InvalidTransitionError(
            details="response_exists",
            payload={"response_status": existing.status},
        )
    if not nda_accepted:
        raise ValidationError(code="nda_required", message_key="nda_required")

    selected: List[int] = []
    for session_id in int_tuple(selected_session_ids):
        if session_id not in selected:
            selected.append(session_id)
    offered = set(int_tuple(upcoming_session_ids))
    unknown = [session_id for session_id in selected if session_id not in offered]
    if unknown:
        raise ValidationError(
            details="training_session_not_offered",
            payload={"training_session_ids": unknown},
        )

    if compliance.gated and not selected:
        raise ComplianceGateError(
            message_key="compliance_gate_training",
            details="training_commitment_required",
            payload={
                "missing_products": list(compliance.missing_products),
                "expired_products": list(compliance.expired_products),
                "upcoming_training_sessions": sorted(offered),
            },
        )

    return TenderResponse(
        id=None,
        tender_id=int(tender.id),
        partner_id=int(partner_id),
        status=RESPONSE_INTEREST_SUBMITTED,
        certification_status=compliance.snapshot(),
        committed_training_sessions=tuple(selected),
        submitted_at=_iso(now),
    )


def approve_interest(tender: Tender, response: TenderResponse, caller: Caller, *, now: datetime) -> TenderResponse:
    require_admin(caller)
    _require_not_terminal(response)
    _require_open(tender)
    _require_response_status(response, RESPONSE_INTEREST_SUBMITTED)
    return replace(response, status=RESPONSE_CALCULATING, approved_at=_iso(now))


def reject_response(
    response: TenderResponse,
    caller: Caller,
    *,
    now: datetime,
    reason: str | None = None,
) -> TenderResponse:
    require_admin(caller)
    _require_not_terminal(response)
    return replace(
        response,
        status=RESPONSE_REJECTED,
        rejected_at=_iso(now),
        rejection_reason=(reason or "").strip() or None,
    )


def reject_interest(response: TenderResponse, caller: Caller, *, now: datetime, reason: str | None = None) -> TenderResponse:
    require_admin(caller)
    _require_not_terminal(response)
    _require_response_status(response, RESPONSE_INTEREST_SUBMITTED)
    return reject_response(response, caller, now=now, reason=reason)


def submit_proposal(
    tender: Tender,
    response: TenderResponse,
    caller: Caller,
    proposal: ProposalSubmitInput,
    *,
    compliance: ComplianceResult,
    now: datetime,
) -> TenderResponse:
    require_partner(caller, response.partner_id)
    _require_not_terminal(response)
    _require_open(tender)
    _require_response_status(response, RESPONSE_CALCULATING)
    if compliance.gated:
        raise ComplianceGateError(
            message_key="compliance_gate_proposal",
            details="valid_certifications_required",
            payload={
                "missing_products": list(compliance.missing_products),
                "expired_products": list(compliance.expired_products),
            },
        )
    for field_name in ("proposal_document", "meeting_date"):
        if not str(getattr(proposal, field_name) or "").strip():
            raise ValidationError(details=f"{field_name}_required", payload={"field": field_name})

    checked_at = _iso(now)
    return replace(
        response,
        status=RESPONSE_PROPOSAL_SUBMITTED,
        proposed_value=proposal.proposed_value,
        proposal_document=proposal.proposal_document,
        meeting_date=proposal.meeting_date,
        team_assigned=int_tuple(proposal.team_assigned),
        final_certification_status=compliance.snapshot(checked_at=checked_at),
        proposal_submitted_at=checked_at,
    )


# Tender transitions


def publish_warnings(tender: Tender) -> List[str]:
    warnings: List[str] = []
    if normalize_strategy(tender.invitation_strategy) == STRATEGY_INVITED_ONLY and not tender.invited_partners:
        warnings.append("invited_only_without_partners")
    return warnings


def publish(tender: Tender, caller: Caller, *, now: datetime) -> Tuple[Tender, List[str]]:
    require_admin(caller)
    if tender.status != TENDER_DRAFT:
        raise InvalidTransitionError(details=f"tender_status:{tender.status}", payload={"tender_status": tender.status})
    return replace(tender, status=TENDER_PUBLISHED, published_at=_iso(now)), publish_warnings(tender)


def change_status(tender: Tender, caller: Caller, target: str) -> Tender:
    require_admin(caller)
    allowed_from = ADMIN_STATUS_TARGETS.get(str(target or "").strip())
    if allowed_from is None:
        raise ValidationError(details="invalid_status", payload={"status": target})
    if tender.status not in allowed_from:
        raise InvalidTransitionError(
            details=f"tender_status:{tender.status}",
            payload={"tender_status": tender.status, "target_status": target},
        )
    return replace(tender, status=target)


def cancel(tender: Tender, caller: Caller, *, reason: str | None = None) -> Tender:
    require_admin(caller)
    if tender.status in (TENDER_AWARDED, TENDER_CANCELLED):
        raise InvalidTransitionError(details=f"tender_status:{tender.status}", payload={"tender_status": tender.status})
    return replace(tender, status=TENDER_CANCELLED, cancel_reason=(reason or "").strip() or None)


def check_award(tender: Tender, caller: Caller, winner: TenderResponse | None) -> None:
    require_admin(caller)
    if tender.status == TENDER_AWARDED:
        raise already_resolved(tender)
    if tender.status == TENDER_CANCELLED:
        raise InvalidTransitionError(details="tender_cancelled", payload={"tender_status": tender.status})
    if winner is None or winner.status != RESPONSE_PROPOSAL_SUBMITTED:
        raise InvalidAwardTargetError(
            details="winner_without_proposal",
            payload={"response_status": winner.status if winner else None},
        )


def already_resolved(tender: Tender) -> AlreadyResolvedError:
    return AlreadyResolvedError(
        details="tender_already_awarded",
        payload={"awarded_to": tender.awarded_to, "awarded_project_id": tender.awarded_project_id},
    )


def resolve_award(
    tender: Tender,
    responses: Sequence[TenderResponse],
    winning_partner_id: int,
    project_id: int,
    *,
    now: datetime,
) -> Tuple[Tender, List[TenderResponse]]:
    """Return the awarded tender and every response whose status changes."""
    stamp = _iso(now)
    changed: List[TenderResponse] = []
    for response in responses:
        if response.partner_id == winning_partner_id:
            changed.append(replace(response, status=RESPONSE_AWARDED, awarded_at=stamp))
        elif response.status != RESPONSE_REJECTED:
            changed.append(
                replace(response, status=RESPONSE_REJECTED, rejected_at=stamp, rejection_reason=NOT_SELECTED_REASON)
            )
    awarded = replace(
        tender,
        status=TENDER_AWARDED,
        awarded_to=int(winning_partner_id),
        awarded_project_id=int(project_id),
    )
    return awarded, changed


# Questions


def ask_question(tender: Tender, caller: Caller, text: str | None, *, now: datetime) -> TenderQuestion:
    if caller.is_admin or caller.partner_id is None:
        raise UnauthorizedError(details="partner_required")
    if tender.status in (TENDER_DRAFT, TENDER_CANCELLED):
        raise InvalidTransitionError(
            details=f"questions_closed:{tender.status}",
            payload={"tender_status": tender.status},
        )
    question = str(text or "").strip()
    if not question:
        raise ValidationError(details="question_required", payload={"field": "question"})
    return TenderQuestion(
        id=None,
        tender_id=int(tender.id),
        partner_id=int(caller.partner_id),
        question=question,
        asked_at=_iso(now),
        asked_by=caller.actor,
    )


def answer_question(question: TenderQuestion, caller: Caller, text: str | None, *, now: datetime) -> TenderQuestion:
    require_admin(caller)
    if question.answered:
        raise InvalidTransitionError(details=f"question_already_answered:{question.id}", payload={"question_id": question.id})
    answer = str(text or "").strip()
    if not answer:
        raise ValidationError(details="answer_required", payload={"field": "answer"})
    return replace(question, answer=answer, answered_at=_iso(now), answered_by=caller.actor)
