from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from flask import Blueprint, current_app, jsonify, request

from partner_portal.contexts.tendering.application.service import TenderService, TenderingSettings
from partner_portal.contexts.tendering.domain.models import TENDER_STATUSES, parse_date
from partner_portal.contexts.tendering.interfaces.critical_actions import require_confirmation, resolve_confirmation
from partner_portal.db import get_db
from partner_portal.domain.contracts import (
    AwardInput,
    InterestSubmitInput,
    ProposalSubmitInput,
    TenderCreateInput,
    TenderStatusChangeInput,
)
from partner_portal.errors import ValidationError
from partner_portal.policies import current_caller
from partner_portal.ui_strings import success_message, warning_message


tendering_bp = Blueprint("tendering", __name__, url_prefix="/api")

SERVICE_EXTENSION_KEY = "tender_service"


def init_tender_service(app) -> TenderService:
    service = TenderService(TenderingSettings.from_config(app.config))
    app.extensions[SERVICE_EXTENSION_KEY] = service
    return service


def _service() -> TenderService:
    service = current_app.extensions.get(SERVICE_EXTENSION_KEY)
    if service is None:
        service = init_tender_service(current_app)
    return service


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _optional_int(value, field: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(details=f"invalid_{field}", payload={"field": field}) from None


def _optional_float(value, field: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(details=f"invalid_{field}", payload={"field": field}) from None


def _int_list(value, field: str) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(details=f"invalid_{field}", payload={"field": field})
    return [_optional_int(item, field) for item in value if item is not None and item != ""]


def _text_list(value, field: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(details=f"invalid_{field}", payload={"field": field})
    return [str(item).strip() for item in value if str(item or "").strip()]


def _optional_text(value) -> str | None:
    text = str(value or "").strip()
    return text or None


def _optional_date_text(value, field: str) -> str | None:
    text = _optional_text(value)
    if text is None:
        return None
    parsed = parse_date(text)
    if parsed is None:
        raise ValidationError(details=f"invalid_{field}", payload={"field": field})
    return parsed.isoformat()


def _optional_meeting_text(value, field: str) -> str | None:
    """Date or ``datetime-local`` value; a given time of day is kept to the minute."""
    text = _optional_text(value)
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(details=f"invalid_{field}", payload={"field": field}) from None
    if "T" not in text and " " not in text:
        return parsed.date().isoformat()
    return parsed.isoformat(timespec="minutes")


def _parse_create_input(payload: Dict[str, Any]) -> TenderCreateInput:
    title = _optional_text(payload.get("title"))
    if not title:
        raise ValidationError(details="title_required", payload={"field": "title"})
    return TenderCreateInput(
        title=title,
        tender_code=_optional_text(payload.get("tender_code")),
        invitation_strategy=_optional_text(payload.get("invitation_strategy")) or "qualified_only",
        invited_partners=_int_list(payload.get("invited_partners"), "invited_partners"),
        required_solutions=_int_list(payload.get("required_solutions"), "required_solutions"),
        vertical_id=_optional_int(payload.get("vertical_id"), "vertical_id"),
        assa_abloy_products=_text_list(payload.get("assa_abloy_products"), "assa_abloy_products"),
        project_start_date=_optional_date_text(payload.get("project_start_date"), "project_start_date"),
        customer_name=_optional_text(payload.get("customer_name")),
        customer_contact=_optional_text(payload.get("customer_contact")),
        project_location=_optional_text(payload.get("project_location")),
        project_language=_optional_text(payload.get("project_language")),
        required_service_coverage=_text_list(payload.get("required_service_coverage"), "required_service_coverage"),
        estimated_gross_value=_optional_float(payload.get("estimated_gross_value"), "estimated_gross_value"),
    )


@tendering_bp.route("/tenders", methods=["POST"])
def create_tender():
    create_input = _parse_create_input(_payload())
    tender = _service().create_tender(get_db(), current_caller(), create_input)
    return jsonify({"tender": tender.to_dict(), "message": success_message("tender_created")}), 201


@tendering_bp.route("/tenders", methods=["GET"])
def list_tenders():
    status_filter = _optional_text(request.args.get("status"))
    if status_filter and status_filter not in TENDER_STATUSES:
        raise ValidationError(details="invalid_status", payload={"field": "status"})
    tenders = _service().list_tenders(get_db(), current_caller())
    if status_filter:
        tenders = [tender for tender in tenders if tender.status == status_filter]
    return jsonify({"items": [tender.to_dict() for tender in tenders]}), 200


@tendering_bp.route("/tenders/<int:tender_id>", methods=["GET"])
def tender_detail(tender_id: int):
    return jsonify(_service().get_tender(get_db(), current_caller(), tender_id)), 200


@tendering_bp.route("/tenders/<int:tender_id>/publish", methods=["POST"])
def publish_tender(tender_id: int):
    confirmed, _source = resolve_confirmation(request, _payload())
    tender, warnings = _service().publish_tender(get_db(), current_caller(), tender_id, confirmed=confirmed)
    return (
        jsonify(
            {
                "tender": tender.to_dict(),
                "warnings": [{"code": code, "message": warning_message(code)} for code in warnings],
                "message": success_message("tender_published"),
            }
        ),
        200,
    )


@tendering_bp.route("/tenders/<int:tender_id>/status", methods=["POST"])
def change_tender_status(tender_id: int):
    payload = _payload()
    status = _optional_text(payload.get("status"))
    if not status:
        raise ValidationError(details="status_required", payload={"field": "status"})
    tender = _service().change_tender_status(
        get_db(),
        current_caller(),
        TenderStatusChangeInput(tender_id=tender_id, status=status),
    )
    return jsonify({"tender": tender.to_dict()}), 200


@tendering_bp.route("/tenders/<int:tender_id>/cancel", methods=["POST"])
def cancel_tender(tender_id: int):
    payload = _payload()
    require_confirmation("cancel_tender", request, payload)
    tender = _service().cancel_tender(
        get_db(),
        current_caller(),
        tender_id,
        reason=_optional_text(payload.get("reason")),
    )
    return jsonify({"tender": tender.to_dict(), "message": success_message("tender_cancelled")}), 200


@tendering_bp.route("/tenders/<int:tender_id>/eligible-partners", methods=["GET"])
def eligible_partners(tender_id: int):
    partners = _service().eligible_partners(get_db(), current_caller(), tender_id)
    return jsonify({"items": [partner.to_dict() for partner in partners]}), 200


@tendering_bp.route("/tenders/<int:tender_id>/compliance", methods=["GET"])
def compliance_preview(tender_id: int):
    partner_id = _optional_int(request.args.get("partner_id"), "partner_id")
    return jsonify(_service().compliance_preview(get_db(), current_caller(), tender_id, partner_id)), 200


@tendering_bp.route("/tenders/<int:tender_id>/nda", methods=["POST"])
def accept_nda(tender_id: int):
    nda = _service().accept_nda(get_db(), current_caller(), tender_id)
    return jsonify({"nda": nda.to_dict(), "message": success_message("nda_accepted")}), 200


@tendering_bp.route("/tenders/<int:tender_id>/questions", methods=["GET"])
def list_questions(tender_id: int):
    questions = _service().list_questions(get_db(), current_caller(), tender_id)
    return jsonify({"items": [question.to_dict() for question in questions]}), 200


@tendering_bp.route("/tenders/<int:tender_id>/questions", methods=["POST"])
def ask_question(tender_id: int):
    question = _service().ask_question(get_db(), current_caller(), tender_id, _optional_text(_payload().get("question")))
    return jsonify({"question": question.to_dict(), "message": success_message("question_asked")}), 201


@tendering_bp.route("/tenders/<int:tender_id>/questions/<int:question_id>/answer", methods=["POST"])
def answer_question(tender_id: int, question_id: int):
    question = _service().answer_question(
        get_db(),
        current_caller(),
        tender_id,
        question_id,
        _optional_text(_payload().get("answer")),
    )
    return jsonify({"question": question.to_dict(), "message": success_message("question_answered")}), 200


@tendering_bp.route("/tenders/<int:tender_id>/responses", methods=["POST"])
def submit_interest(tender_id: int):
    payload = _payload()
    caller = current_caller()
    partner_id = _optional_int(payload.get("partner_id"), "partner_id") or caller.partner_id
    if partner_id is None:
        raise ValidationError(details="partner_id_required", payload={"field": "partner_id"})
    response = _service().submit_interest(
        get_db(),
        caller,
        InterestSubmitInput(
            tender_id=tender_id,
            partner_id=partner_id,
            training_session_ids=_int_list(payload.get("training_session_ids"), "training_session_ids"),
        ),
    )
    return jsonify({"response": response.to_dict(), "message": success_message("interest_submitted")}), 201


@tendering_bp.route("/tenders/<int:tender_id>/responses/<int:partner_id>/approve", methods=["POST"])
def approve_interest(tender_id: int, partner_id: int):
    response = _service().approve_interest(get_db(), current_caller(), tender_id, partner_id)
    return jsonify({"response": response.to_dict(), "message": success_message("interest_approved")}), 200


@tendering_bp.route("/tenders/<int:tender_id>/responses/<int:partner_id>/reject", methods=["POST"])
def reject_response(tender_id: int, partner_id: int):
    payload = _payload()
    response = _service().reject_response(
        get_db(),
        current_caller(),
        tender_id,
        partner_id,
        reason=_optional_text(payload.get("reason")),
    )
    return jsonify({"response": response.to_dict(), "message": success_message("response_rejected")}), 200


@tendering_bp.route("/tenders/<int:tender_id>/responses/<int:partner_id>/proposal", methods=["POST"])
def submit_proposal(tender_id: int, partner_id: int):
    payload = _payload()
    response = _service().submit_proposal(
        get_db(),
        current_caller(),
        ProposalSubmitInput(
            tender_id=tender_id,
            partner_id=partner_id,
            proposed_value=_optional_float(payload.get("proposed_value"), "proposed_value"),
            proposal_document=_optional_text(payload.get("proposal_document")),
            meeting_date=_optional_meeting_text(payload.get("meeting_date"), "meeting_date"),
            team_assigned=_int_list(payload.get("team_assigned"), "team_assigned"),
        ),
    )
    return jsonify({"response": response.to_dict(), "message": success_message("proposal_submitted")}), 200


@tendering_bp.route("/tenders/<int:tender_id>/award", methods=["POST"])
def award_tender(tender_id: int):
    payload = _payload()
    winning_partner_id = _optional_int(payload.get("partner_id"), "partner_id")
    if winning_partner_id is None:
        raise ValidationError(details="partner_id_required", payload={"field": "partner_id"})
    require_confirmation("award_tender", request, payload)
    outcome = _service().award(
        get_db(),
        current_caller(),
        AwardInput(tender_id=tender_id, winning_partner_id=winning_partner_id),
    )
    return jsonify({**outcome.to_dict(), "message": success_message("tender_awarded")}), 200


@tendering_bp.route("/notifications", methods=["GET"])
def list_notifications():
    notifications = _service().list_notifications(get_db(), current_caller())
    return jsonify({"items": [notification.to_dict() for notification in notifications]}), 200


@tendering_bp.route("/partners/<int:partner_id>/training-reminders", methods=["POST"])
def send_training_reminder(partner_id: int):
    notification = _service().send_training_reminder(get_db(), current_caller(), partner_id)
    if notification is None:
        return jsonify({"sent": False, "notification": None}), 200
    return (
        jsonify(
            {
                "sent": True,
                "notification": notification.to_dict(),
                "message": success_message("training_reminder_sent"),
            }
        ),
        201,
    )
