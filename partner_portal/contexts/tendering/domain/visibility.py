from __future__ import annotations

from typing import Iterable, List

from partner_portal.contexts.tendering.domain.models import (
    STRATEGY_INVITED_ONLY,
    STRATEGY_OPEN,
    STRATEGY_QUALIFIED_ONLY,
    TENDER_DRAFT,
    Partner,
    Solution,
    Tender,
    Vertical,
)


KNOWN_STRATEGIES = frozenset({STRATEGY_OPEN, STRATEGY_INVITED_ONLY, STRATEGY_QUALIFIED_ONLY})


def normalize_strategy(value: str | None) -> str:
    return str(value or "").strip().lower()


def _vertical_code(tender: Tender, verticals: Iterable[Vertical]) -> str | None:
    if tender.vertical_id is None:
        return None
    for vertical in verticals:
        if vertical.id == tender.vertical_id:
            return vertical.code
    return None


def _solution_codes(tender: Tender, solutions: Iterable[Solution]) -> set[str]:
    required = set(tender.required_solutions)
    return {solution.code for solution in solutions if solution.id in required}


def _is_qualified(partner: Partner, vertical_code: str | None, solution_codes: set[str]) -> bool:
    if not partner.is_active or not vertical_code:
        return False
    if vertical_code not in set(partner.verticals):
        return False
    return bool(solution_codes.intersection(partner.solutions))


def eligible_partners(
    tender: Tender,
    partners: Iterable[Partner],
    verticals: Iterable[Vertical],
    solutions: Iterable[Solution],
    *,
    fail_open: bool = False,
) -> List[Partner]:
    partners = list(partners)
    strategy = normalize_strategy(tender.invitation_strategy)
    if strategy not in KNOWN_STRATEGIES:
        if not fail_open:
            return []
        strategy = STRATEGY_OPEN

    if strategy == STRATEGY_OPEN:
        return [partner for partner in partners if partner.is_active]

    if strategy == STRATEGY_INVITED_ONLY:
        # Invitation overrides partner status.
        invited = set(tender.invited_partners)
        return [partner for partner in partners if partner.id in invited]

    vertical_code = _vertical_code(tender, verticals)
    solution_codes = _solution_codes(tender, solutions)
    return [partner for partner in partners if _is_qualified(partner, vertical_code, solution_codes)]


def is_visible(
    tender: Tender,
    partner: Partner,
    verticals: Iterable[Vertical],
    solutions: Iterable[Solution],
    *,
    fail_open: bool = False,
) -> bool:
    if tender.status == TENDER_DRAFT:
        return False
    eligible = eligible_partners(tender, [partner], verticals, solutions, fail_open=fail_open)
    return any(candidate.id == partner.id for candidate in eligible)
