from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Tuple

from partner_portal.contexts.tendering.application.award import AwardOutcome, AwardTransaction
from partner_portal.contexts.tendering.domain import state_machine
from partner_portal.contexts.tendering.domain.compliance import (
    MATCH_EXACT,
    MATCH_LOOSE,
    ComplianceResult,
    days_until_start,
    evaluate,
    find_upcoming_training_sessions,
    partner_certifications,
)
from partner_portal.contexts.tendering.domain.flow_policy import flow_meta
from partner_portal.contexts.tendering.domain.models import (
    RESPONSE_INTEREST_SUBMITTED,
    TENDER_CANCELLED,
    TENDER_DRAFT,
    TENDER_PUBLISHED,
    Notification,
    Partner,
    Tender,
    TenderNda,
    TenderQuestion,
    TenderResponse,
    TrainingSession,
    int_tuple,
    parse_date,
    text_tuple,
)
from partner_portal.contexts.tendering.domain.visibility import eligible_partners, is_visible
from partner_portal.contexts.tendering.infrastructure.repositories import (
    DirectoryRepository,
    NdaRepository,
    NotificationRepository,
    ProjectRepository,
    QuestionRepository,
    ResponseRepository,
    StatusEventRepository,
    TenderRepository,
)
from partner_portal.core import (
    EventBus,
    InterestApproved,
    InterestSubmitted,
    ProposalSubmitted,
    QuestionAnswered,
    QuestionAsked,
    ResponseRejected,
    TenderCancelled,
    TenderPublished,
    get_event_bus,
)
from partner_portal.domain.contracts import (
    AwardInput,
    Caller,
    InterestSubmitInput,
    ProposalSubmitInput,
    TenderCreateInput,
    TenderStatusChangeInput,
)
from partner_portal.errors import (
    InvalidTransitionError,
    NotFoundError,
    NotVisibleError,
    UnauthorizedError,
    ValidationError,
)
from partner_portal.observability import observe_tender_transition
from partner_portal.ui_strings import notification_text


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TenderingSettings:
    loose_match: bool = False
    fail_open: bool = False
    nda_required: bool = False
    nda_version: str = "1.0"
    expiry_warning_days: int = 30
    urgency_days: int = 30

    @property
    def match_policy(self) -> str:
        return MATCH_LOOSE if self.loose_match else MATCH_EXACT

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TenderingSettings":
        return cls(
            loose_match=bool(config.get("CERTIFICATION_LOOSE_MATCH", False)),
            fail_open=bool(config.get("VISIBILITY_FAIL_OPEN", False)),
            nda_required=bool(config.get("TENDER_NDA_REQUIRED", False)),
            nda_version=str(config.get("NDA_VERSION") or "1.0"),
            expiry_warning_days=int(config.get("COMPLIANCE_EXPIRY_WARNING_DAYS", 30)),
            urgency_days=int(config.get("TENDER_URGENCY_DAYS", 30)),
        )


class TenderService:
    """Application facade for the tender lifecycle.

    Every mutating operation runs inside ``db.transaction()`` and bumps the
    tender version, so two writers on the same tender never both commit on a
    stale read. Domain events are published only after the commit.
    """

    def __init__(
        self,
        settings: TenderingSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        tenders: TenderRepository | None = None,
        responses: ResponseRepository | None = None,
        directory: DirectoryRepository | None = None,
        projects: ProjectRepository | None = None,
        notifications: NotificationRepository | None = None,
        ndas: NdaRepository | None = None,
        status_events: StatusEventRepository | None = None,
        questions: QuestionRepository | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.settings = settings or TenderingSettings()
        self.clock = clock or _utc_now
        self.tenders = tenders or TenderRepository()
        self.responses = responses or ResponseRepository()
        self.directory = directory or DirectoryRepository()
        self.projects = projects or ProjectRepository()
        self.notifications = notifications or NotificationRepository()
        self.ndas = ndas or NdaRepository()
        self.status_events = status_events or StatusEventRepository()
        self.questions = questions or QuestionRepository()
        self.event_bus = event_bus or get_event_bus()
        self.award_transaction = AwardTransaction(
            tenders=self.tenders,
            responses=self.responses,
            projects=self.projects,
            notifications=self.notifications,
            directory=self.directory,
            status_events=self.status_events,
            event_bus=self.event_bus,
        )
        self._logger = logging.getLogger("partner_portal")

    # helpers

    def _today(self) -> date:
        return self.clock().date()

    def _load_tender(self, db, tender_id: int) -> Tender:
        tender = self.tenders.get(db, tender_id)
        if tender is None:
            raise NotFoundError(details=f"tender:{tender_id}")
        return tender

    def _load_response(self, db, tender_id: int, partner_id: int) -> TenderResponse:
        response = self.responses.get(db, tender_id, partner_id)
        if response is None:
            raise NotFoundError(details=f"response:{tender_id}:{partner_id}")
        return response

    def _partner_visible(self, db, tender: Tender, partner: Partner | None) -> bool:
        if partner is None:
            return False
        return is_visible(
            tender,
            partner,
            self.directory.list_verticals(db),
            self.directory.list_solutions(db),
            fail_open=self.settings.fail_open,
        )

    def _require_visible(self, db, tender: Tender, caller: Caller) -> None:
        if caller.is_admin:
            return
        if caller.partner_id is None:
            raise NotVisibleError(details="partner_required")
        partner = self.directory.get_partner(db, caller.partner_id)
        if not self._partner_visible(db, tender, partner):
            raise NotVisibleError(details=f"tender:{tender.id}")

    def _compliance(self, db, tender: Tender, partner_id: int) -> ComplianceResult:
        staffed = partner_certifications(
            self.directory.list_team_members(db, partner_id),
            self.directory.list_certifications_for_partner(db, partner_id),
        )
        return evaluate(
            tender.assa_abloy_products,
            staffed,
            self._today(),
            match_policy=self.settings.match_policy,
            project_start_date=tender.project_start_date,
            expiry_warning_days=self.settings.expiry_warning_days,
            urgency_days=self.settings.urgency_days,
        )

    def _upcoming_sessions(self, db, compliance: ComplianceResult) -> List[TrainingSession]:
        if not compliance.gap_products:
            return []
        return find_upcoming_training_sessions(
            compliance.gap_products,
            self.directory.list_training_sessions(db),
            self._today(),
        )

    def _record_transition(
        self,
        db,
        *,
        tender_id: int,
        entity: str,
        entity_id: int,
        from_status: str | None,
        to_status: str,
        caller: Caller,
        reason: str | None = None,
    ) -> None:
        self.status_events.record(
            db,
            tender_id=tender_id,
            entity=entity,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            actor=caller.actor,
        )

    def _after_commit(self, entity: str, to_status: str, event, **log_fields) -> None:
        observe_tender_transition(entity, to_status)
        self._logger.info(f"{entity}_transition", extra={"to_status": to_status, **log_fields})
        if event is not None:
            self.event_bus.publish(event)

    # tender lifecycle

    def create_tender(self, db, caller: Caller, create_input: TenderCreateInput) -> Tender:
        state_machine.require_admin(caller)
        tender = Tender(
            id=None,
            title=create_input.title,
            status=TENDER_DRAFT,
            tender_code=create_input.tender_code,
            invitation_strategy=create_input.invitation_strategy,
            invited_partners=int_tuple(create_input.invited_partners),
            required_solutions=int_tuple(create_input.required_solutions),
            vertical_id=create_input.vertical_id,
            assa_abloy_products=text_tuple(create_input.assa_abloy_products),
            project_start_date=parse_date(create_input.project_start_date),
            customer_name=create_input.customer_name,
            customer_contact=create_input.customer_contact,
            project_location=create_input.project_location,
            project_language=create_input.project_language,
            required_service_coverage=text_tuple(create_input.required_service_coverage),
            estimated_gross_value=create_input.estimated_gross_value,
        )
        with db.transaction():
            created = self.tenders.create(db, tender)
            self._record_transition(
                db,
                tender_id=int(created.id),
                entity="tender",
                entity_id=int(created.id),
                from_status=None,
                to_status=TENDER_DRAFT,
                caller=caller,
            )
        self._after_commit("tender", TENDER_DRAFT, None, tender_id=created.id, actor=caller.actor)
        return created

    def get_tender(self, db, caller: Caller, tender_id: int) -> Dict[str, Any]:
        tender = self._load_tender(db, tender_id)
        self._require_visible(db, tender, caller)

        responses = self.responses.list_for_tender(db, tender_id)
        if not caller.is_admin:
            responses = [response for response in responses if response.partner_id == caller.partner_id]

        payload: Dict[str, Any] = {
            "tender": tender.to_dict(),
            "flow": flow_meta("tender", tender.status),
            "days_until_start": days_until_start(tender.project_start_date, self._today()),
            "responses": [
                {**response.to_dict(), "flow": flow_meta("response", response.status)} for response in responses
            ],
        }
        if tender.awarded_project_id and (caller.is_admin or caller.partner_id == tender.awarded_to):
            project = self.projects.get(db, tender.awarded_project_id)
            payload["project"] = project.to_dict() if project else None
        payload["questions"] = [question.to_dict() for question in self._questions_for(db, caller, tender_id)]
        if caller.is_admin:
            payload["history"] = self.status_events.list_for_tender(db, tender_id)
        return payload

    def list_tenders(self, db, caller: Caller) -> List[Tender]:
        if caller.is_admin:
            return self.tenders.list_all(db)
        if caller.partner_id is None:
            return []
        partner = self.directory.get_partner(db, caller.partner_id)
        if partner is None:
            return []
        verticals = self.directory.list_verticals(db)
        solutions = self.directory.list_solutions(db)
        return [
            tender
            for tender in self.tenders.list_all(db, exclude_drafts=True)
            if is_visible(tender, partner, verticals, solutions, fail_open=self.settings.fail_open)
        ]

    def publish_tender(self, db, caller: Caller, tender_id: int, *, confirmed: bool = True) -> Tuple[Tender, List[str]]:
        with db.transaction():
            tender = self._load_tender(db, tender_id)
            published, warnings = state_machine.publish(tender, caller, now=self.clock())
            if warnings and not confirmed:
                raise ValidationError(
                    code="confirmation_required",
                    message_key="confirmation_required",
                    details="publish_with_warnings",
                    payload={"action": "publish_tender", "warnings": warnings},
                )
            saved = self.tenders.save(db, published)
            self._record_transition(
                db,
                tender_id=tender_id,
                entity="tender",
                entity_id=tender_id,
                from_status=tender.status,
                to_status=saved.status,
                caller=caller,
                reason=",".join(warnings) or None,
            )
        if warnings:
            self._logger.warning("tender_published_with_warnings", extra={"tender_id": tender_id, "warnings": warnings})
        self._after_commit(
            "tender",
            TENDER_PUBLISHED,
            TenderPublished(actor=caller.actor, tender_id=tender_id, warnings=tuple(warnings)),
            tender_id=tender_id,
            actor=caller.actor,
        )
        return saved, warnings

    def change_tender_status(self, db, caller: Caller, change: TenderStatusChangeInput) -> Tender:
        with db.transaction():
            tender = self._load_tender(db, change.tender_id)
            changed = state_machine.change_status(tender, caller, change.status)
            saved = self.tenders.save(db, changed)
            self._record_transition(
                db,
                tender_id=change.tender_id,
                entity="tender",
                entity_id=change.tender_id,
                from_status=tender.status,
                to_status=saved.status,
                caller=caller,
            )
        self._after_commit("tender", saved.status, None, tender_id=change.tender_id, actor=caller.actor)
        return saved

    def cancel_tender(self, db, caller: Caller, tender_id: int, *, reason: str | None = None) -> Tender:
        with db.transaction():
            tender = self._load_tender(db, tender_id)
            cancelled = state_machine.cancel(tender, caller, reason=reason)
            saved = self.tenders.save(db, cancelled)
            self._record_transition(
                db,
                tender_id=tender_id,
                entity="tender",
                entity_id=tender_id,
                from_status=tender.status,
                to_status=TENDER_CANCELLED,
                caller=caller,
                reason=saved.cancel_reason,
            )
        self._after_commit(
            "tender",
            TENDER_CANCELLED,
            TenderCancelled(actor=caller.actor, tender_id=tender_id, reason=saved.cancel_reason),
            tender_id=tender_id,
            actor=caller.actor,
        )
        return saved

    def eligible_partners(self, db, caller: Caller, tender_id: int) -> List[Partner]:
        state_machine.require_admin(caller)
        tender = self._load_tender(db, tender_id)
        return eligible_partners(
            tender,
            self.directory.list_partners(db),
            self.directory.list_verticals(db),
            self.directory.list_solutions(db),
            fail_open=self.settings.fail_open,
        )

    def compliance_preview(self, db, caller: Caller, tender_id: int, partner_id: int | None = None) -> Dict[str, Any]:
        tender = self._load_tender(db, tender_id)
        if caller.is_admin:
            if partner_id is None:
                raise ValidationError(details="partner_id_required")
        else:
            partner_id = caller.partner_id
            self._require_visible(db, tender, caller)
        if self.directory.get_partner(db, partner_id) is None:
            raise NotFoundError(details=f"partner:{partner_id}")

        compliance = self._compliance(db, tender, partner_id)
        return {
            "tender_id": tender_id,
            "partner_id": partner_id,
            **compliance.snapshot().to_dict(),
            "fully_compliant": compliance.fully_compliant,
            "days_until_start": days_until_start(tender.project_start_date, self._today()),
            "training_required": compliance.gated,
            "upcoming_training_sessions": [session.to_dict() for session in self._upcoming_sessions(db, compliance)],
        }

    # response lifecycle

    def accept_nda(self, db, caller: Caller, tender_id: int) -> TenderNda:
        if caller.is_admin or caller.partner_id is None:
            raise UnauthorizedError(details="partner_required")
        with db.transaction():
            tender = self._load_tender(db, tender_id)
            self._require_visible(db, tender, caller)
            nda = self.ndas.accept(
                db,
                TenderNda(
                    id=None,
                    tender_id=tender_id,
                    partner_id=int(caller.partner_id),
                    user_email=caller.email,
                    nda_version=self.settings.nda_version,
                    accepted_at=self.clock().isoformat(),
                ),
            )
        self._logger.info("tender_nda_accepted", extra={"tender_id": tender_id, "partner_id": caller.partner_id})
        return nda

    def submit_interest(self, db, caller: Caller, interest: InterestSubmitInput) -> TenderResponse:
        state_machine.require_partner(caller, interest.partner_id)
        with db.transaction():
            tender = self._load_tender(db, interest.tender_id)
            partner = self.directory.get_partner(db, interest.partner_id)
            compliance = self._compliance(db, tender, interest.partner_id)
            upcoming = self._upcoming_sessions(db, compliance)
            nda_accepted = True
            if self.settings.nda_required:
                nda_accepted = self.ndas.get(db, interest.tender_id, interest.partner_id) is not None
            response = state_machine.submit_interest(
                tender,
                interest.partner_id,
                caller,
                existing=self.responses.get(db, interest.tender_id, interest.partner_id),
                compliance=compliance,
                upcoming_session_ids=[session.id for session in upcoming],
                selected_session_ids=interest.training_session_ids,
                visible=self._partner_visible(db, tender, partner),
                now=self.clock(),
                nda_accepted=nda_accepted,
            )
            self.tenders.touch(db, tender)
            saved = self.responses.create(db, response)
            self._record_transition(
                db,
                tender_id=interest.tender_id,
                entity="response",
                entity_id=int(saved.id),
                from_status=None,
                to_status=saved.status,
                caller=caller,
            )
        self._after_commit(
            "response",
            saved.status,
            InterestSubmitted(
                actor=caller.actor,
                tender_id=interest.tender_id,
                partner_id=interest.partner_id,
                compliant=compliance.valid,
                urgent_project=compliance.urgent_project,
            ),
            tender_id=interest.tender_id,
            partner_id=interest.partner_id,
            compliant=compliance.valid,
            committed_training_sessions=list(saved.committed_training_sessions),
        )
        return saved

    def approve_interest(self, db, caller: Caller, tender_id: int, partner_id: int) -> TenderResponse:
        with db.transaction():
            tender = self._load_tender(db, tender_id)
            response = self._load_response(db, tender_id, partner_id)
            approved = state_machine.approve_interest(tender, response, caller, now=self.clock())
            self.tenders.touch(db, tender)
            saved = self.responses.save(db, approved)
            self._record_transition(
                db,
                tender_id=tender_id,
                entity="response",
                entity_id=int(saved.id),
                from_status=response.status,
                to_status=saved.status,
                caller=caller,
            )
        self._after_commit(
            "response",
            saved.status,
            InterestApproved(actor=caller.actor, tender_id=tender_id, partner_id=partner_id),
            tender_id=tender_id,
            partner_id=partner_id,
        )
        return saved

    def reject_response(
        self,
        db,
        caller: Caller,
        tender_id: int,
        partner_id: int,
        *,
        reason: str | None = None,
    ) -> TenderResponse:
        with db.transaction():
            tender = self._load_tender(db, tender_id)
            response = self._load_response(db, tender_id, partner_id)
            if response.status == RESPONSE_INTEREST_SUBMITTED:
                rejected = state_machine.reject_interest(response, caller, now=self.clock(), reason=reason)
            else:
                rejected = state_machine.reject_response(response, caller, now=self.clock(), reason=reason)
            self.tenders.touch(db, tender)
            saved = self.responses.save(db, rejected)
            self._record_transition(
                db,
                tender_id=tender_id,
                entity="response",
                entity_id=int(saved.id),
                from_status=response.status,
                to_status=saved.status,
                caller=caller,
                reason=saved.rejection_reason,
            )
        self._after_commit(
            "response",
            saved.status,
            ResponseRejected(actor=caller.actor, tender_id=tender_id, partner_id=partner_id, reason=saved.rejection_reason),
            tender_id=tender_id,
            partner_id=partner_id,
        )
        return saved

    def submit_proposal(self, db, caller: Caller, proposal: ProposalSubmitInput) -> TenderResponse:
        with db.transaction():
            tender = self._load_tender(db, proposal.tender_id)
            response = self._load_response(db, proposal.tender_id, proposal.partner_id)
            state_machine.require_partner(caller, response.partner_id)
            compliance = self._compliance(db, tender, response.partner_id)
            submitted = state_machine.submit_proposal(
                tender,
                response,
                caller,
                proposal,
                compliance=compliance,
                now=self.clock(),
            )
            self.tenders.touch(db, tender)
            saved = self.responses.save(db, submitted)
            self._record_transition(
                db,
                tender_id=proposal.tender_id,
                entity="response",
                entity_id=int(saved.id),
                from_status=response.status,
                to_status=saved.status,
                caller=caller,
            )
        if not compliance.valid:
            self._logger.warning(
                "proposal_submitted_with_compliance_gaps",
                extra={
                    "tender_id": proposal.tender_id,
                    "partner_id": proposal.partner_id,
                    "missing_products": list(compliance.missing_products),
                    "expired_products": list(compliance.expired_products),
                },
            )
        self._after_commit(
            "response",
            saved.status,
            ProposalSubmitted(
                actor=caller.actor,
                tender_id=proposal.tender_id,
                partner_id=proposal.partner_id,
                proposed_value=saved.proposed_value,
            ),
            tender_id=proposal.tender_id,
            partner_id=proposal.partner_id,
        )
        return saved

    def award(self, db, caller: Caller, award_input: AwardInput) -> AwardOutcome:
        return self.award_transaction.execute(db, caller, award_input, now=self.clock())

    # notifications

    def send_training_reminder(self, db, caller: Caller, partner_id: int) -> Notification | None:
        """Notify a partner about authorized products that lack current certifications.

        Returns None when the partner is fully compliant and nothing is sent.
        """
        state_machine.require_admin(caller)
        partner = self.directory.get_partner(db, partner_id)
        if partner is None:
            raise NotFoundError(details=f"partner:{partner_id}")

        staffed = partner_certifications(
            self.directory.list_team_members(db, partner_id),
            self.directory.list_certifications_for_partner(db, partner_id),
        )
        compliance = evaluate(
            partner.assa_abloy_products,
            staffed,
            self._today(),
            match_policy=self.settings.match_policy,
            expiry_warning_days=self.settings.expiry_warning_days,
        )
        products = list(compliance.missing_products + compliance.expired_products + compliance.expiring_products)
        if not products:
            return None

        text = notification_text("training_reminder", products=", ".join(products))
        notification = Notification(
            id=None,
            user_email=partner.notification_email,
            partner_id=partner_id,
            type="training_reminder",
            title=text["title"],
            message=text["message"],
            link=text["link"],
            related_entity_type="partner",
            related_entity_id=partner_id,
        )
        with db.transaction():
            self.notifications.create_once(db, notification)
        self._logger.info("training_reminder_sent", extra={"partner_id": partner_id, "products": products})
        return notification

    def list_notifications(self, db, caller: Caller) -> List[Notification]:
        if caller.is_admin:
            return self.notifications.list_recent(db)
        if caller.partner_id is None:
            return []
        return self.notifications.list_for_partner(db, caller.partner_id)

    # questions

    def _questions_for(self, db, caller: Caller, tender_id: int) -> List[TenderQuestion]:
        if caller.is_admin:
            return self.questions.list_for_tender(db, tender_id)
        if caller.partner_id is None:
            return []
        return self.questions.list_for_tender(db, tender_id, partner_id=caller.partner_id)

    def list_questions(self, db, caller: Caller, tender_id: int) -> List[TenderQuestion]:
        tender = self._load_tender(db, tender_id)
        self._require_visible(db, tender, caller)
        return self._questions_for(db, caller, tender_id)

    def ask_question(self, db, caller: Caller, tender_id: int, text: str | None) -> TenderQuestion:
        with db.transaction():
            tender = self._load_tender(db, tender_id)
            self._require_visible(db, tender, caller)
            saved = self.questions.create(db, state_machine.ask_question(tender, caller, text, now=self.clock()))
        self._logger.info("tender_question_asked", extra={"tender_id": tender_id, "partner_id": saved.partner_id})
        self.event_bus.publish(
            QuestionAsked(actor=caller.actor, tender_id=tender_id, partner_id=saved.partner_id, question_id=int(saved.id))
        )
        return saved

    def answer_question(self, db, caller: Caller, tender_id: int, question_id: int, text: str | None) -> TenderQuestion:
        state_machine.require_admin(caller)
        with db.transaction():
            self._load_tender(db, tender_id)
            question = self.questions.get(db, tender_id, question_id)
            if question is None:
                raise NotFoundError(details=f"question:{tender_id}:{question_id}")
            answered = state_machine.answer_question(question, caller, text, now=self.clock())
            if not self.questions.answer(db, answered):
                raise InvalidTransitionError(
                    details=f"question_already_answered:{question_id}",
                    payload={"question_id": question_id},
                )
            saved = self.questions.get(db, tender_id, question_id)
        self._logger.info("tender_question_answered", extra={"tender_id": tender_id, "question_id": question_id})
        self.event_bus.publish(
            QuestionAnswered(actor=caller.actor, tender_id=tender_id, partner_id=saved.partner_id, question_id=question_id)
        )
        return saved
