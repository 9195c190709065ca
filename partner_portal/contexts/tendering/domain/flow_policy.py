from __future__ import annotations

from typing import Dict, List


PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "tender", "label": "Tender"},
    {"key": "response", "label": "Response"},
]


ACTION_LABELS: Dict[str, str] = {
    "edit_tender": "Edit tender",
    "publish_tender": "Publish tender",
    "open_response_period": "Open response period",
    "start_review": "Start review",
    "cancel_tender": "Cancel tender",
    "award_tender": "Award tender",
    "view_eligible_partners": "Eligible partners",
    "view_responses": "Responses",
    "view_project": "Open project",
    "view_history": "View history",
    "submit_interest": "Express interest",
    "accept_nda": "Accept NDA",
    "approve_interest": "Approve interest",
    "reject_response": "Reject response",
    "submit_proposal": "Submit proposal",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "tender": {
        "draft": {
            "allowed_actions": ["edit_tender", "publish_tender", "cancel_tender", "view_eligible_partners"],
            "primary_action": "publish_tender",
        },
        "published": {
            "allowed_actions": [
                "open_response_period",
                "start_review",
                "cancel_tender",
                "award_tender",
                "view_eligible_partners",
                "view_responses",
                "accept_nda",
                "submit_interest",
            ],
            "primary_action": "open_response_period",
        },
        "response_period": {
            "allowed_actions": [
                "start_review",
                "cancel_tender",
                "award_tender",
                "view_eligible_partners",
                "view_responses",
                "accept_nda",
                "submit_interest",
            ],
            "primary_action": "view_responses",
        },
        "under_review": {
            "allowed_actions": [
                "cancel_tender",
                "award_tender",
                "view_eligible_partners",
                "view_responses",
                "accept_nda",
                "submit_interest",
            ],
            "primary_action": "award_tender",
        },
        "awarded": {
            "allowed_actions": ["view_project", "view_responses", "view_history"],
            "primary_action": "view_project",
        },
        "cancelled": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
    },
    "response": {
        "interest_submitted": {
            "allowed_actions": ["approve_interest", "reject_response"],
            "primary_action": "approve_interest",
        },
        "calculating": {
            "allowed_actions": ["submit_proposal", "reject_response"],
            "primary_action": "submit_proposal",
        },
        "proposal_submitted": {
            "allowed_actions": ["award_tender", "reject_response"],
            "primary_action": "award_tender",
        },
        "rejected": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "awarded": {
            "allowed_actions": ["view_project", "view_history"],
            "primary_action": "view_project",
        },
    },
}


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(stage, {}).get(str(status), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    actions = status_policy(stage, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(stage, status))


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "stage": stage,
        "status": status,
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
    }


def frontend_bundle() -> Dict[str, object]:
    return {
        "stages": PROCESS_STAGES,
        "policy": FLOW_POLICY,
        "action_labels": ACTION_LABELS,
    }
