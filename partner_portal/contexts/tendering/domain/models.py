from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, Tuple


TENDER_DRAFT = "draft"
TENDER_PUBLISHED = "published"
TENDER_RESPONSE_PERIOD = "response_period"
TENDER_UNDER_REVIEW = "under_review"
TENDER_AWARDED = "awarded"
TENDER_CANCELLED = "cancelled"

TENDER_STATUSES = (
    TENDER_DRAFT,
    TENDER_PUBLISHED,
    TENDER_RESPONSE_PERIOD,
    TENDER_UNDER_REVIEW,
    TENDER_AWARDED,
    TENDER_CANCELLED,
)
OPEN_TENDER_STATUSES = frozenset({TENDER_PUBLISHED, TENDER_RESPONSE_PERIOD, TENDER_UNDER_REVIEW})

RESPONSE_INTEREST_SUBMITTED = "interest_submitted"
RESPONSE_CALCULATING = "calculating"
RESPONSE_PROPOSAL_SUBMITTED = "proposal_submitted"
RESPONSE_REJECTED = "rejected"
RESPONSE_AWARDED = "awarded"

RESPONSE_STATUSES = (
    RESPONSE_INTEREST_SUBMITTED,
    RESPONSE_CALCULATING,
    RESPONSE_PROPOSAL_SUBMITTED,
    RESPONSE_REJECTED,
    RESPONSE_AWARDED,
)
TERMINAL_RESPONSE_STATUSES = frozenset({RESPONSE_REJECTED, RESPONSE_AWARDED})

STRATEGY_OPEN = "open"
STRATEGY_INVITED_ONLY = "invited_only"
STRATEGY_QUALIFIED_ONLY = "qualified_only"

SESSION_REGISTRATION_OPEN = "registration_open"
CERTIFICATION_VALID = "valid"


def parse_date(value: Any) -> date | None:
    """Coerce stored date values to ``date``; malformed input yields None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _date_text(value: date | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class CertificationSnapshot:
    valid: bool = True
    urgent_project: bool = False
    missing_products: Tuple[str, ...] = ()
    expired_products: Tuple[str, ...] = ()
    expiring_products: Tuple[str, ...] = ()
    checked_at: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "valid": self.valid,
            "urgent_project": self.urgent_project,
            "missing_products": list(self.missing_products),
            "expired_products": list(self.expired_products),
            "expiring_products": list(self.expiring_products),
        }
        if self.checked_at:
            payload["checked_at"] = self.checked_at
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "CertificationSnapshot":
        data = data or {}
        return cls(
            valid=bool(data.get("valid", True)),
            urgent_project=bool(data.get("urgent_project", False)),
            missing_products=tuple(data.get("missing_products") or ()),
            expired_products=tuple(data.get("expired_products") or ()),
            expiring_products=tuple(data.get("expiring_products") or ()),
            checked_at=data.get("checked_at"),
        )


@dataclass(frozen=True)
class Tender:
    id: int | None
    title: str
    status: str = TENDER_DRAFT
    tender_code: str | None = None
    invitation_strategy: str = STRATEGY_QUALIFIED_ONLY
    invited_partners: Tuple[int, ...] = ()
    required_solutions: Tuple[int, ...] = ()
    vertical_id: int | None = None
    assa_abloy_products: Tuple[str, ...] = ()
    project_start_date: date | None = None
    customer_name: str | None = None
    customer_contact: str | None = None
    project_location: str | None = None
    project_language: str | None = None
    required_service_coverage: Tuple[str, ...] = ()
    estimated_gross_value: float | None = None
    awarded_to: int | None = None
    awarded_project_id: int | None = None
    cancel_reason: str | None = None
    published_at: str | None = None
    version: int = 1
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TENDER_STATUSES

    @property
    def reference(self) -> str:
        return self.tender_code or str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["invited_partners"] = list(self.invited_partners)
        payload["required_solutions"] = list(self.required_solutions)
        payload["assa_abloy_products"] = list(self.assa_abloy_products)
        payload["required_service_coverage"] = list(self.required_service_coverage)
        payload["project_start_date"] = _date_text(self.project_start_date)
        return payload


@dataclass(frozen=True)
class TenderResponse:
    id: int | None
    tender_id: int
    partner_id: int
    status: str = RESPONSE_INTEREST_SUBMITTED
    certification_status: CertificationSnapshot = field(default_factory=CertificationSnapshot)
    committed_training_sessions: Tuple[int, ...] = ()
    proposed_value: float | None = None
    proposal_document: str | None = None
    meeting_date: str | None = None
    team_assigned: Tuple[int, ...] = ()
    final_certification_status: CertificationSnapshot | None = None
    rejection_reason: str | None = None
    submitted_at: str | None = None
    approved_at: str | None = None
    proposal_submitted_at: str | None = None
    rejected_at: str | None = None
    awarded_at: str | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RESPONSE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tender_id": self.tender_id,
            "partner_id": self.partner_id,
            "status": self.status,
            "certification_status": self.certification_status.to_dict(),
            "committed_training_sessions": list(self.committed_training_sessions),
            "proposed_value": self.proposed_value,
            "proposal_document": self.proposal_document,
            "meeting_date": self.meeting_date,
            "team_assigned": list(self.team_assigned),
            "final_certification_status": (
                self.final_certification_status.to_dict() if self.final_certification_status else None
            ),
            "rejection_reason": self.rejection_reason,
            "submitted_at": self.submitted_at,
            "approved_at": self.approved_at,
            "proposal_submitted_at": self.proposal_submitted_at,
            "rejected_at": self.rejected_at,
            "awarded_at": self.awarded_at,
            "version": self.version,
        }


@dataclass(frozen=True)
class Partner:
    id: int
    company_name: str
    status: str = "active"
    partner_type: str | None = None
    contact_email: str | None = None
    primary_contact_email: str | None = None
    verticals: Tuple[str, ...] = ()
    solutions: Tuple[str, ...] = ()
    assa_abloy_products: Tuple[str, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def notification_email(self) -> str:
        return self.primary_contact_email or self.contact_email or ""

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["verticals"] = list(self.verticals)
        payload["solutions"] = list(self.solutions)
        payload["assa_abloy_products"] = list(self.assa_abloy_products)
        return payload


@dataclass(frozen=True)
class TeamMember:
    id: int
    partner_id: int
    full_name: str
    email: str | None = None
    active: bool = True


@dataclass(frozen=True)
class Certification:
    id: int
    team_member_id: int
    certification_code: str | None = None
    certification_name: str | None = None
    product_code: str | None = None
    status: str = CERTIFICATION_VALID
    issue_date: date | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class TrainingSession:
    id: int
    title: str
    assa_abloy_product: str | None = None
    session_date: date | None = None
    status: str = SESSION_REGISTRATION_OPEN
    location_type: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["session_date"] = _date_text(self.session_date)
        return payload


@dataclass(frozen=True)
class Vertical:
    id: int
    code: str
    name: str = ""


@dataclass(frozen=True)
class Solution:
    id: int
    code: str
    name: str = ""


@dataclass(frozen=True)
class Project:
    id: int | None
    tender_id: int
    project_name: str
    client_name: str | None = None
    customer_contact: str | None = None
    source: str = "tender"
    status: str = "assigned"
    solution_ids: Tuple[int, ...] = ()
    primary_solution: int | None = None
    additional_solutions: Tuple[int, ...] = ()
    assa_abloy_products: Tuple[str, ...] = ()
    vertical_id: int | None = None
    project_location: str | None = None
    estimated_value: float | None = None
    start_date: date | None = None
    assigned_partner_id: int | None = None
    assigned_team_members: Tuple[int, ...] = ()
    project_language: str | None = None
    required_service_coverage: Tuple[str, ...] = ()
    notes: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        for key in (
            "solution_ids",
            "additional_solutions",
            "assa_abloy_products",
            "assigned_team_members",
            "required_service_coverage",
        ):
            payload[key] = list(payload[key])
        payload["start_date"] = _date_text(self.start_date)
        return payload


@dataclass(frozen=True)
class Notification:
    id: int | None
    user_email: str
    partner_id: int | None
    type: str
    title: str
    message: str
    link: str | None = None
    related_entity_type: str | None = None
    related_entity_id: int | None = None
    dedupe_key: str | None = None
    is_read: bool = False
    created_at: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TenderNda:
    id: int | None
    tender_id: int
    partner_id: int
    user_email: str | None
    nda_version: str
    accepted_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TenderQuestion:
    id: int | None
    tender_id: int
    partner_id: int
    question: str
    asked_at: str
    asked_by: str | None = None
    answer: str | None = None
    answered_at: str | None = None
    answered_by: str | None = None

    @property
    def answered(self) -> bool:
        return self.answered_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def int_tuple(values: Iterable[Any] | None) -> Tuple[int, ...]:
    result = []
    for value in values or ():
        try:
            result.append(int(value))
        except (TypeError, ValueError):
            continue
    return tuple(result)


def text_tuple(values: Iterable[Any] | None) -> Tuple[str, ...]:
    return tuple(str(value).strip() for value in values or () if value is not None and str(value).strip())
