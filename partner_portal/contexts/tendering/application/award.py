from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Tuple

from partner_portal.contexts.tendering.domain import state_machine
from partner_portal.contexts.tendering.domain.models import (
    RESPONSE_AWARDED,
    TENDER_AWARDED,
    Notification,
    Project,
    Tender,
    TenderResponse,
)
from partner_portal.contexts.tendering.infrastructure.repositories import (
    DirectoryRepository,
    NotificationRepository,
    ProjectRepository,
    ResponseRepository,
    StatusEventRepository,
    TenderRepository,
)
from partner_portal.core import EventBus, TenderAwarded, get_event_bus
from partner_portal.domain.contracts import AwardInput, Caller
from partner_portal.errors import ConcurrencyConflictError, NotFoundError, is_unique_violation
from partner_portal.observability import observe_tender_transition
from partner_portal.ui_strings import notification_text


@dataclass(frozen=True)
class AwardOutcome:
    tender: Tender
    project: Project
    winner: TenderResponse
    rejected_partner_ids: Tuple[int, ...]
    notifications_created: int

    def to_dict(self) -> dict:
        return {
            "tender": self.tender.to_dict(),
            "project": self.project.to_dict(),
            "winner": self.winner.to_dict(),
            "rejected_partner_ids": list(self.rejected_partner_ids),
            "notifications_created": self.notifications_created,
        }


def build_project(tender: Tender, winner: TenderResponse) -> Project:
    solutions = tuple(tender.required_solutions)
    estimated_value = winner.proposed_value if winner.proposed_value is not None else tender.estimated_gross_value
    return Project(
        id=None,
        tender_id=int(tender.id),
        project_name=tender.title,
        client_name=tender.customer_name,
        customer_contact=tender.customer_contact,
        solution_ids=solutions,
        primary_solution=solutions[0] if solutions else None,
        additional_solutions=solutions[1:],
        assa_abloy_products=tuple(tender.assa_abloy_products),
        vertical_id=tender.vertical_id,
        project_location=tender.project_location,
        estimated_value=estimated_value,
        start_date=tender.project_start_date,
        assigned_partner_id=winner.partner_id,
        assigned_team_members=tuple(winner.team_assigned),
        project_language=tender.project_language,
        required_service_coverage=tuple(tender.required_service_coverage),
        notes=f"Created from tender: {tender.reference}",
    )


def award_dedupe_key(tender_id: int, partner_id: int) -> str:
    return f"tender-{tender_id}-award-partner-{partner_id}"


class AwardTransaction:
    """Resolve a tender to one winner in a single all-or-nothing unit of work.

    The tender row is claimed first with a version compare-and-swap. A second
    award racing on the same tender either waits for the write lock and then
    sees the awarded status, or loses the swap; both surface as
    AlreadyResolvedError once the tender is awarded.
    """

    def __init__(
        self,
        *,
        tenders: TenderRepository | None = None,
        responses: ResponseRepository | None = None,
        projects: ProjectRepository | None = None,
        notifications: NotificationRepository | None = None,
        directory: DirectoryRepository | None = None,
        status_events: StatusEventRepository | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.tenders = tenders or TenderRepository()
        self.responses = responses or ResponseRepository()
        self.projects = projects or ProjectRepository()
        self.notifications = notifications or NotificationRepository()
        self.directory = directory or DirectoryRepository()
        self.status_events = status_events or StatusEventRepository()
        self.event_bus = event_bus or get_event_bus()
        self._logger = logging.getLogger("partner_portal")

    def execute(self, db, caller: Caller, award_input: AwardInput, *, now: datetime) -> AwardOutcome:
        tender_id = int(award_input.tender_id)
        winning_partner_id = int(award_input.winning_partner_id)
        try:
            with db.transaction():
                outcome = self._apply(db, caller, tender_id, winning_partner_id, now)
        except ConcurrencyConflictError as exc:
            self._raise_if_resolved(db, tender_id, exc)
            raise
        except Exception as exc:
            if not is_unique_violation(exc):
                raise
            self._raise_if_resolved(db, tender_id, exc)
            raise ConcurrencyConflictError(
                details="award_unique_violation",
                payload={"tender_id": tender_id},
            ) from exc

        self._logger.info(
            "tender_awarded",
            extra={
                "tender_id": tender_id,
                "winning_partner_id": winning_partner_id,
                "project_id": outcome.project.id,
                "rejected_partner_ids": list(outcome.rejected_partner_ids),
                "notifications_created": outcome.notifications_created,
                "actor": caller.actor,
            },
        )
        observe_tender_transition("tender", TENDER_AWARDED)
        observe_tender_transition("response", RESPONSE_AWARDED)
        self.event_bus.publish(
            TenderAwarded(
                actor=caller.actor,
                tender_id=tender_id,
                winning_partner_id=winning_partner_id,
                project_id=int(outcome.project.id),
                rejected_partner_ids=outcome.rejected_partner_ids,
                notifications_created=outcome.notifications_created,
            )
        )
        return outcome

    def _apply(self, db, caller: Caller, tender_id: int, winning_partner_id: int, now: datetime) -> AwardOutcome:
        tender = self.tenders.get(db, tender_id)
        if tender is None:
            raise NotFoundError(details=f"tender:{tender_id}")
        responses = self.responses.list_for_tender(db, tender_id)
        winner = next((response for response in responses if response.partner_id == winning_partner_id), None)
        state_machine.check_award(tender, caller, winner)

        claimed = self.tenders.save(db, replace(tender, status=TENDER_AWARDED))
        project = self.projects.create(db, build_project(tender, winner))
        awarded, changed = state_machine.resolve_award(claimed, responses, winning_partner_id, int(project.id), now=now)

        previous = {response.partner_id: response.status for response in responses}
        saved_winner = winner
        rejected: List[int] = []
        for response in changed:
            saved = self.responses.save(db, response)
            if saved.partner_id == winning_partner_id:
                saved_winner = saved
            else:
                rejected.append(saved.partner_id)
            self.status_events.record(
                db,
                tender_id=tender_id,
                entity="response",
                entity_id=int(saved.id),
                from_status=previous.get(saved.partner_id),
                to_status=saved.status,
                reason=saved.rejection_reason,
                actor=caller.actor,
            )

        final = self.tenders.save(db, awarded)
        self.status_events.record(
            db,
            tender_id=tender_id,
            entity="tender",
            entity_id=tender_id,
            from_status=tender.status,
            to_status=TENDER_AWARDED,
            actor=caller.actor,
        )
        created = self._notify_participants(db, final, project, responses, winning_partner_id)
        return AwardOutcome(
            tender=final,
            project=project,
            winner=saved_winner,
            rejected_partner_ids=tuple(rejected),
            notifications_created=created,
        )

    def _notify_participants(
        self,
        db,
        tender: Tender,
        project: Project,
        responses: List[TenderResponse],
        winning_partner_id: int,
    ) -> int:
        created = 0
        seen = set()
        for response in responses:
            partner_id = response.partner_id
            if partner_id in seen:
                continue
            seen.add(partner_id)
            partner = self.directory.get_partner(db, partner_id)
            recipient = partner.notification_email if partner else ""
            if partner_id == winning_partner_id:
                text = notification_text("project_assigned", tender_title=tender.title, project_id=project.id)
                notification_type = "project_assigned"
                related = ("project", project.id)
            else:
                text = notification_text("tender_not_selected", tender_title=tender.title)
                notification_type = "tender_not_selected"
                related = ("tender", tender.id)
            if not recipient:
                self._logger.warning(
                    "award_notification_without_recipient",
                    extra={"tender_id": tender.id, "partner_id": partner_id},
                )
            inserted = self.notifications.create_once(
                db,
                Notification(
                    id=None,
                    user_email=recipient,
                    partner_id=partner_id,
                    type=notification_type,
                    title=text["title"],
                    message=text["message"],
                    link=text["link"],
                    related_entity_type=related[0],
                    related_entity_id=related[1],
                    dedupe_key=award_dedupe_key(int(tender.id), partner_id),
                ),
            )
            if inserted:
                created += 1
        return created

    def _raise_if_resolved(self, db, tender_id: int, exc: Exception) -> None:
        current = self.tenders.get(db, tender_id)
        if current is not None and current.status == TENDER_AWARDED:
            self._logger.info(
                "tender_award_already_resolved",
                extra={"tender_id": tender_id, "awarded_to": current.awarded_to},
            )
            raise state_machine.already_resolved(current) from exc
