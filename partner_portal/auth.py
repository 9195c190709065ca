from __future__ import annotations

from typing import Iterable

from flask import Blueprint, current_app, jsonify, request, session

from partner_portal.domain.contracts import AuthLoginInput
from partner_portal.errors import UnauthorizedError, ValidationError
from partner_portal.observability import ensure_request_id
from partner_portal.policies import VALID_ROLES, current_caller
from partner_portal.ui_strings import error_message


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _require_login():
        if not app.config.get("AUTH_ENABLED", True):
            return None
        if app.config.get("TESTING"):
            return None

        path = request.path or "/"
        if path in {"/api/auth/login", "/api/auth/logout", "/health", "/metrics"}:
            return None
        if session.get("user_email"):
            return None
        return (
            jsonify(
                {
                    "error": "auth_required",
                    "message": error_message("auth_required"),
                    "request_id": ensure_request_id(),
                }
            ),
            401,
        )


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    login_input = AuthLoginInput(
        email=str(payload.get("email") or "").strip().lower(),
        password=str(payload.get("password") or ""),
    )
    if not login_input.email or not login_input.password:
        raise ValidationError(details="email_and_password_required")

    user = _find_user(login_input.email, login_input.password, current_app.config.get("APP_USERS"))
    if not user:
        raise UnauthorizedError(code="invalid_credentials", message_key="invalid_credentials", http_status=401)

    session.clear()
    session["user_email"] = user["email"]
    session["display_name"] = user["display_name"]
    session["user_role"] = user["role"]
    if user["partner_id"] is not None:
        session["partner_id"] = user["partner_id"]
    current_app.logger.info("user_logged_in", extra={"user_email": user["email"], "role": user["role"]})
    return jsonify(_caller_payload()), 200


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"logged_out": True}), 200


@auth_bp.route("/me", methods=["GET"])
def me():
    return jsonify(_caller_payload()), 200


def _caller_payload() -> dict:
    caller = current_caller()
    return {
        "email": caller.email,
        "display_name": caller.display_name,
        "is_admin": caller.is_admin,
        "partner_id": caller.partner_id,
    }


def _find_user(email: str, password: str, raw_users: object) -> dict | None:
    for user in _parse_users(raw_users):
        if user["email"] == email and user["password"] == password:
            return user
    return None


def _parse_users(raw_users: object) -> Iterable[dict]:
    """Parse ``email:password:partner_id:display_name:role`` entries.

    Admin entries leave the partner id empty.
    """
    if not raw_users:
        return []
    if isinstance(raw_users, str):
        entries = []
        for chunk in raw_users.replace("\n", ",").replace(";", ",").split(","):
            entry = chunk.strip()
            if entry:
                entries.append(entry)
    elif isinstance(raw_users, (list, tuple, set)):
        entries = [str(item).strip() for item in raw_users if str(item).strip()]
    else:
        return []

    users = []
    for entry in entries:
        parts = [part.strip() for part in entry.split(":")]
        if len(parts) < 3:
            continue
        email, password, raw_partner = parts[0].lower(), parts[1], parts[2]
        display_name = parts[3] if len(parts) > 3 and parts[3] else email.split("@")[0]
        role = parts[4].lower() if len(parts) > 4 and parts[4] else "partner"
        if role not in VALID_ROLES:
            role = "partner"
        partner_id = int(raw_partner) if raw_partner.isdigit() else None
        if role == "partner" and partner_id is None:
            continue
        users.append(
            {
                "email": email,
                "password": password,
                "partner_id": partner_id if role == "partner" else None,
                "display_name": display_name,
                "role": role,
            }
        )
    return users
