from __future__ import annotations

from typing import Dict, List

from partner_portal.contexts.tendering.domain.flow_policy import frontend_bundle as flow_frontend_bundle


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Partner Portal",
    "tender": "Tender",
    "response": "Response",
    "award": "Award",
    "project": "Project",
    "partner": "Partner",
    "certification": "Certification",
    "training_session": "Training session",
    "question": "Question",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "tender": [
        {"key": "draft", "label": "Draft", "description": "Tender is being prepared and is not visible to partners."},
        {"key": "published", "label": "Published", "description": "Tender is visible to eligible partners."},
        {
            "key": "response_period",
            "label": "Response period",
            "description": "Eligible partners are submitting interest and proposals.",
        },
        {"key": "under_review", "label": "Under review", "description": "Proposals are being evaluated."},
        {"key": "awarded", "label": "Awarded", "description": "Tender resolved to a winning partner."},
        {"key": "cancelled", "label": "Cancelled", "description": "Tender closed without an award."},
    ],
    "response": [
        {
            "key": "interest_submitted",
            "label": "Interest submitted",
            "description": "Partner expressed interest and awaits approval.",
        },
        {
            "key": "calculating",
            "label": "Calculating",
            "description": "Interest approved, partner is preparing a proposal.",
        },
        {
            "key": "proposal_submitted",
            "label": "Proposal submitted",
            "description": "Binding proposal received and awaiting decision.",
        },
        {"key": "rejected", "label": "Rejected", "description": "Response closed without an award."},
        {"key": "awarded", "label": "Awarded", "description": "Response selected as the tender winner."},
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "The operation could not be completed.",
        "action_invalid": "Invalid request.",
        "validation_error": "Some fields are missing or invalid.",
        "auth_required": "Authentication required.",
        "invalid_credentials": "Invalid credentials.",
        "unauthorized": "You are not allowed to perform this action.",
        "not_found": "Record not found.",
        "not_visible": "This tender is not available to your organization.",
        "invalid_transition": "This action is not allowed in the current status.",
        "compliance_gate": "Valid certifications are required for this urgent project.",
        "compliance_gate_training": (
            "This project starts within 30 days. Select at least one upcoming training session to express interest."
        ),
        "compliance_gate_proposal": (
            "Cannot submit a binding proposal without valid certifications on an urgent project."
        ),
        "invalid_award_target": "Only a partner with a submitted proposal can be awarded.",
        "already_resolved": "This tender has already been resolved.",
        "concurrency_conflict": "The tender changed while you were working on it. Reload and try again.",
        "confirmation_required": "Please confirm this action before proceeding.",
        "nda_required": "Accept the tender NDA before expressing interest.",
    },
    "success": {
        "tender_created": "Tender created.",
        "tender_published": "Tender published.",
        "tender_cancelled": "Tender cancelled.",
        "interest_submitted": "Interest submitted.",
        "interest_approved": "Interest approved.",
        "response_rejected": "Response rejected.",
        "proposal_submitted": "Proposal submitted.",
        "tender_awarded": "Tender awarded and participants notified.",
        "nda_accepted": "NDA accepted.",
        "question_asked": "Question sent to the tender team.",
        "question_answered": "Answer published.",
        "training_reminder_sent": "Training reminder sent.",
    },
    "confirm": {
        "publish_tender": "Publish this tender to eligible partners?",
        "award_tender": "Award this tender? All other responses will be rejected.",
        "cancel_tender": "Cancel this tender? Partners will no longer be able to respond.",
    },
    "warning": {
        "invited_only_without_partners": (
            "The tender is invited-only but no partners are invited. Nobody will be able to see it."
        ),
    },
}


NOTIFICATION_TEXTS: Dict[str, Dict[str, str]] = {
    "project_assigned": {
        "title": "Congratulations! Tender Awarded",
        "message": (
            'You have been selected for the tender "{tender_title}". '
            "The project has been created and assigned to you."
        ),
        "link": "/project-detail?id={project_id}",
    },
    "tender_not_selected": {
        "title": "Tender Not Awarded",
        "message": (
            'Thank you for your interest in "{tender_title}". After careful consideration, we have selected '
            "another partner for this project. We look forward to future opportunities to work together."
        ),
        "link": "/tenders",
    },
    "training_reminder": {
        "title": "Training Compliance Required",
        "message": (
            "Your training certifications for {products} need renewal. "
            "Please register for upcoming sessions to maintain compliance."
        ),
        "link": "/partner-training",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def warning_message(key: str, default: str | None = None) -> str:
    return get_message("warning", key, default)


def notification_text(notification_type: str, **values: object) -> Dict[str, str]:
    template = NOTIFICATION_TEXTS.get(notification_type)
    if not template:
        raise KeyError(f"unknown notification type: {notification_type}")
    return {key: text.format(**values) for key, text in template.items()}


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "status_groups": STATUS_GROUPS,
        "messages": MESSAGES,
        "flow": flow_frontend_bundle(),
    }
