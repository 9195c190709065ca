"""Certification compliance of a partner against a tender's product set.

Everything here is pure: results depend only on the arguments, never on the
order of the certification list, and are recomputed on every gated action.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Sequence, Tuple

from partner_portal.contexts.tendering.domain.models import (
    CERTIFICATION_VALID,
    SESSION_REGISTRATION_OPEN,
    Certification,
    CertificationSnapshot,
    TeamMember,
    TrainingSession,
)


MATCH_EXACT = "exact"
MATCH_LOOSE = "loose"

DEFAULT_EXPIRY_WARNING_DAYS = 30
DEFAULT_URGENCY_DAYS = 30


@dataclass(frozen=True)
class ComplianceResult:
    valid: bool
    urgent_project: bool = False
    missing_products: Tuple[str, ...] = ()
    expired_products: Tuple[str, ...] = ()
    expiring_products: Tuple[str, ...] = ()

    @property
    def fully_compliant(self) -> bool:
        return self.valid and not self.expiring_products

    @property
    def gap_products(self) -> Tuple[str, ...]:
        return self.missing_products + self.expired_products

    @property
    def gated(self) -> bool:
        return self.urgent_project and not self.valid

    def snapshot(self, checked_at: str | None = None) -> CertificationSnapshot:
        return CertificationSnapshot(
            valid=self.valid,
            urgent_project=self.urgent_project,
            missing_products=self.missing_products,
            expired_products=self.expired_products,
            expiring_products=self.expiring_products,
            checked_at=checked_at,
        )


def _norm(value: str | None) -> str:
    return str(value or "").strip().lower()


def _unique_products(products: Iterable[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for product in products or ():
        cleaned = str(product or "").strip()
        key = cleaned.lower()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


def certification_matches(product: str, certification: Certification, match_policy: str = MATCH_EXACT) -> bool:
    needle = _norm(product)
    if not needle:
        return False
    if match_policy == MATCH_LOOSE:
        return needle in _norm(certification.certification_code) or needle in _norm(certification.certification_name)
    return needle in {_norm(certification.product_code), _norm(certification.certification_code)}


def _is_currently_valid(certification: Certification, today: date) -> bool:
    if _norm(certification.status) != CERTIFICATION_VALID:
        return False
    return certification.expiry_date is not None and certification.expiry_date > today


def days_until_start(project_start_date: date | None, today: date) -> int | None:
    if project_start_date is None:
        return None
    return (project_start_date - today).days


def is_urgent(project_start_date: date | None, today: date, urgency_days: int = DEFAULT_URGENCY_DAYS) -> bool:
    days = days_until_start(project_start_date, today)
    if days is None:
        return False
    return 0 <= days < urgency_days


def evaluate(
    required_products: Iterable[str],
    certifications: Sequence[Certification],
    today: date,
    *,
    match_policy: str = MATCH_EXACT,
    project_start_date: date | None = None,
    expiry_warning_days: int = DEFAULT_EXPIRY_WARNING_DAYS,
    urgency_days: int = DEFAULT_URGENCY_DAYS,
) -> ComplianceResult:
    urgent = is_urgent(project_start_date, today, urgency_days)
    products = _unique_products(required_products)
    if not products:
        return ComplianceResult(valid=True, urgent_project=urgent)

    warning_horizon = today + timedelta(days=expiry_warning_days)
    missing: List[str] = []
    expired: List[str] = []
    expiring: List[str] = []

    for product in products:
        matching = [cert for cert in certifications if certification_matches(product, cert, match_policy)]
        if not matching:
            missing.append(product)
            continue

        valid_expiries = [cert.expiry_date for cert in matching if _is_currently_valid(cert, today)]
        if not valid_expiries:
            lapsed = any(cert.expiry_date is not None and cert.expiry_date <= today for cert in matching)
            (expired if lapsed else missing).append(product)
            continue

        # The longest-lived valid certificate decides.
        if max(valid_expiries) <= warning_horizon:
            expiring.append(product)

    return ComplianceResult(
        valid=not missing and not expired,
        urgent_project=urgent,
        missing_products=tuple(missing),
        expired_products=tuple(expired),
        expiring_products=tuple(expiring),
    )


def find_upcoming_training_sessions(
    products: Iterable[str],
    sessions: Iterable[TrainingSession],
    today: date,
) -> List[TrainingSession]:
    wanted = {product.lower() for product in _unique_products(products)}
    if not wanted:
        return []
    upcoming = [
        session
        for session in sessions
        if _norm(session.assa_abloy_product) in wanted
        and session.session_date is not None
        and session.session_date > today
        and _norm(session.status) == SESSION_REGISTRATION_OPEN
    ]
    return sorted(upcoming, key=lambda session: (session.session_date, session.id))


def partner_certifications(
    team_members: Iterable[TeamMember],
    certifications: Iterable[Certification],
) -> List[Certification]:
    active_ids = {member.id for member in team_members if member.active}
    return [cert for cert in certifications if cert.team_member_id in active_ids]
