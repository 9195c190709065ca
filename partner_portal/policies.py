from __future__ import annotations

from typing import Set

from flask import session

from partner_portal.domain.contracts import Caller
from partner_portal.errors import UnauthorizedError


VALID_ROLES: Set[str] = {"admin", "partner"}


def normalize_role(role: str | None, default: str = "partner") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_role() -> str:
    return normalize_role(session.get("user_role"), default="partner")


def _parse_partner_id(value) -> int | None:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def current_caller() -> Caller:
    role = current_role()
    return Caller(
        is_admin=role == "admin",
        partner_id=None if role == "admin" else _parse_partner_id(session.get("partner_id")),
        email=session.get("user_email"),
        display_name=session.get("display_name"),
    )


def require_admin() -> Caller:
    caller = current_caller()
    if caller.is_admin:
        return caller
    raise UnauthorizedError(details="admin_required")


def require_partner() -> Caller:
    caller = current_caller()
    if not caller.is_admin and caller.partner_id is not None:
        return caller
    raise UnauthorizedError(details="partner_required")
