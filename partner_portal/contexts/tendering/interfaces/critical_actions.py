from __future__ import annotations

from typing import Dict, Tuple

from partner_portal.errors import ValidationError
from partner_portal.ui_strings import confirm_message


CRITICAL_ACTIONS: Dict[str, Dict[str, str]] = {
    "publish_tender": {
        "action_key": "publish_tender",
        "confirm_message_key": "publish_tender",
    },
    "cancel_tender": {
        "action_key": "cancel_tender",
        "confirm_message_key": "cancel_tender",
    },
    "award_tender": {
        "action_key": "award_tender",
        "confirm_message_key": "award_tender",
    },
}


_TRUE_TEXT_VALUES = {"1", "true", "yes", "on"}


def get_critical_action(action_key: str | None) -> Dict[str, str] | None:
    if not action_key:
        return None
    return CRITICAL_ACTIONS.get(str(action_key).strip())


def _is_explicit_true(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT_VALUES
    return False


def resolve_confirmation(request_obj, payload: dict | None = None) -> Tuple[bool, str]:
    payload_dict = payload if isinstance(payload, dict) else {}

    confirm_token = (
        payload_dict.get("confirm_token")
        or request_obj.args.get("confirm_token")
        or request_obj.headers.get("X-Confirm-Token")
    )
    if isinstance(confirm_token, str) and confirm_token.strip():
        return True, "confirm_token"

    confirm_value = payload_dict.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.args.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.headers.get("X-Confirm")

    if _is_explicit_true(confirm_value):
        return True, "confirm_flag"

    return False, "missing_confirmation"


def require_confirmation(action_key: str, request_obj, payload: dict | None = None) -> None:
    confirmed, _source = resolve_confirmation(request_obj, payload)
    if confirmed:
        return
    meta = get_critical_action(action_key) or {}
    confirm_key = meta.get("confirm_message_key") or action_key
    raise ValidationError(
        code="confirmation_required",
        message_key="confirmation_required",
        details=f"{action_key}_requires_confirmation",
        payload={"action": action_key, "confirm_message": confirm_message(confirm_key, confirm_key)},
    )
