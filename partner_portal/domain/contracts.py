from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class Caller:
    is_admin: bool
    partner_id: int | None = None
    email: str | None = None
    display_name: str | None = None

    @property
    def actor(self) -> str:
        if self.email:
            return self.email
        if self.is_admin:
            return "admin"
        return f"partner:{self.partner_id}"


@dataclass(frozen=True)
class TenderCreateInput:
    title: str
    tender_code: str | None = None
    invitation_strategy: str = "qualified_only"
    invited_partners: List[int] = field(default_factory=list)
    required_solutions: List[int] = field(default_factory=list)
    vertical_id: int | None = None
    assa_abloy_products: List[str] = field(default_factory=list)
    project_start_date: str | None = None
    customer_name: str | None = None
    customer_contact: str | None = None
    project_location: str | None = None
    project_language: str | None = None
    required_service_coverage: List[str] = field(default_factory=list)
    estimated_gross_value: float | None = None


@dataclass(frozen=True)
class InterestSubmitInput:
    tender_id: int
    partner_id: int
    training_session_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class ProposalSubmitInput:
    tender_id: int
    partner_id: int
    proposed_value: float | None = None
    proposal_document: str | None = None
    meeting_date: str | None = None
    team_assigned: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class TenderStatusChangeInput:
    tender_id: int
    status: str


@dataclass(frozen=True)
class AwardInput:
    tender_id: int
    winning_partner_id: int


@dataclass(frozen=True)
class AuthLoginInput:
    email: str
    password: str
