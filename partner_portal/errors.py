from __future__ import annotations

from typing import Any, Dict

from partner_portal.ui_strings import error_message


class ErrorKind:
    INVALID_TRANSITION = "invalid_transition"
    COMPLIANCE_GATE = "compliance_gate"
    INVALID_AWARD_TARGET = "invalid_award_target"
    ALREADY_RESOLVED = "already_resolved"
    UNAUTHORIZED = "unauthorized"
    NOT_VISIBLE = "not_visible"
    NOT_FOUND = "not_found"
    VALIDATION = "validation_error"
    CONCURRENCY_CONFLICT = "concurrency_conflict"


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    @property
    def kind(self) -> str:
        return self.default_code

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "The operation could not be completed.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = ErrorKind.VALIDATION
    default_message_key = "validation_error"
    default_http_status = 400


class NotFoundError(UserActionError):
    default_code = ErrorKind.NOT_FOUND
    default_message_key = "not_found"
    default_http_status = 404


class UnauthorizedError(UserActionError):
    default_code = ErrorKind.UNAUTHORIZED
    default_message_key = "unauthorized"
    default_http_status = 403


class NotVisibleError(UserActionError):
    default_code = ErrorKind.NOT_VISIBLE
    default_message_key = "not_visible"
    default_http_status = 404


class InvalidTransitionError(UserActionError):
    default_code = ErrorKind.INVALID_TRANSITION
    default_message_key = "invalid_transition"
    default_http_status = 409


class ComplianceGateError(UserActionError):
    default_code = ErrorKind.COMPLIANCE_GATE
    default_message_key = "compliance_gate"
    default_http_status = 422


class InvalidAwardTargetError(UserActionError):
    default_code = ErrorKind.INVALID_AWARD_TARGET
    default_message_key = "invalid_award_target"
    default_http_status = 409


class AlreadyResolvedError(UserActionError):
    default_code = ErrorKind.ALREADY_RESOLVED
    default_message_key = "already_resolved"
    default_http_status = 409


class ConcurrencyConflictError(UserActionError):
    default_code = ErrorKind.CONCURRENCY_CONFLICT
    default_message_key = "concurrency_conflict"
    default_http_status = 409


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


def is_unique_violation(exc: BaseException) -> bool:
    pg_code = str(getattr(exc, "pgcode", "") or "").strip()
    if pg_code == "23505":
        return True
    message = str(exc or "").lower()
    if getattr(exc, "__cause__", None) is not None:
        message = f"{message} {str(exc.__cause__ or '').lower()}"
    if "unique constraint failed" in message:
        return True
    return "duplicate key value violates unique constraint" in message
