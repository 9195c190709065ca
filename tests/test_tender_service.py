import unittest
from datetime import timedelta
from unittest.mock import patch

from partner_portal.contexts.tendering.domain import state_machine
from partner_portal.contexts.tendering.infrastructure.repositories import (
    NotificationRepository,
    ResponseRepository,
    TenderRepository,
)
from partner_portal.core import InterestSubmitted, QuestionAnswered, QuestionAsked, TenderCancelled, TenderPublished
from partner_portal.domain.contracts import (
    InterestSubmitInput,
    ProposalSubmitInput,
    TenderCreateInput,
    TenderStatusChangeInput,
)
from partner_portal.errors import (
    ComplianceGateError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    NotVisibleError,
    UnauthorizedError,
    ValidationError,
)
from partner_portal.observability import metrics_snapshot
from tests.helpers.tendering import ADMIN, TODAY, TenderingDbTestCase, partner_caller


class TenderLifecycleServiceTest(TenderingDbTestCase):
    sandbox_prefix = "tender_service"

    def test_create_and_publish_records_history(self) -> None:
        published_events = []
        self.bus.subscribe(TenderPublished, published_events.append)

        tender = self.create_tender()
        self.assertEqual(tender.status, "draft")
        self.assertEqual(tender.version, 1)
        self.assertEqual(tender.assa_abloy_products, ("PD1",))

        published, warnings = self.service.publish_tender(self.db, ADMIN, tender.id)
        self.assertEqual(published.status, "published")
        self.assertEqual(warnings, [])
        self.assertGreater(published.version, tender.version)
        self.assertEqual(len(published_events), 1)
        self.assertEqual(published_events[0].tender_id, tender.id)

        detail = self.service.get_tender(self.db, ADMIN, tender.id)
        self.assertEqual([(item["from_status"], item["to_status"]) for item in detail["history"]], [
            (None, "draft"),
            ("draft", "published"),
        ])
        self.assertEqual(detail["days_until_start"], 90)
        self.assertIn("open_response_period", detail["flow"]["allowed_actions"])
        self.assertEqual(metrics_snapshot()["transitions"].get("tender:published"), 1)

    def test_partner_cannot_create_tender(self) -> None:
        with self.assertRaises(UnauthorizedError):
            self.service.create_tender(
                self.db,
                partner_caller(self.partner("northwind")),
                TenderCreateInput(title="Unauthorized tender"),
            )

    def test_publish_invited_only_without_partners_needs_confirmation(self) -> None:
        tender = self.create_tender(invitation_strategy="invited_only", invited_partners=[])
        with self.assertRaises(ValidationError) as ctx:
            self.service.publish_tender(self.db, ADMIN, tender.id, confirmed=False)
        self.assertEqual(ctx.exception.code, "confirmation_required")
        self.assertEqual(ctx.exception.payload["warnings"], ["invited_only_without_partners"])
        self.assertEqual(TenderRepository().get(self.db, tender.id).status, "draft")

        published, warnings = self.service.publish_tender(self.db, ADMIN, tender.id, confirmed=True)
        self.assertEqual(published.status, "published")
        self.assertEqual(warnings, ["invited_only_without_partners"])

    def test_status_window_and_cancel(self) -> None:
        tender = self.published_tender()
        moved = self.service.change_tender_status(
            self.db, ADMIN, TenderStatusChangeInput(tender_id=tender.id, status="response_period")
        )
        self.assertEqual(moved.status, "response_period")

        cancelled_events = []
        self.bus.subscribe(TenderCancelled, cancelled_events.append)
        cancelled = self.service.cancel_tender(self.db, ADMIN, tender.id, reason="Budget withdrawn")
        self.assertEqual(cancelled.status, "cancelled")
        self.assertEqual(cancelled.cancel_reason, "Budget withdrawn")
        self.assertEqual(cancelled_events[0].reason, "Budget withdrawn")

        with self.assertRaises(InvalidTransitionError):
            self.service.cancel_tender(self.db, ADMIN, tender.id)
        with self.assertRaises(InvalidTransitionError):
            self.submit_interest(tender.id, "northwind")

    def test_unknown_tender_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.get_tender(self.db, ADMIN, 9999)


class VisibilityServiceTest(TenderingDbTestCase):
    sandbox_prefix = "tender_visibility"

    def test_partner_listing_only_shows_visible_published_tenders(self) -> None:
        visible = self.published_tender(title="Visible")
        self.create_tender(title="Still a draft")
        self.published_tender(title="Education only", vertical_id=self.fixture.verticals["EDU"])

        northwind = partner_caller(self.partner("northwind"))
        self.assertEqual([tender.id for tender in self.service.list_tenders(self.db, northwind)], [visible.id])
        self.assertEqual(len(self.service.list_tenders(self.db, ADMIN)), 3)

    def test_unqualified_partner_cannot_see_or_respond(self) -> None:
        tender = self.published_tender()
        for key in ("fabrikam", "dormant"):
            caller = partner_caller(self.partner(key))
            with self.subTest(partner=key):
                with self.assertRaises(NotVisibleError):
                    self.service.get_tender(self.db, caller, tender.id)
                with self.assertRaises(NotVisibleError):
                    self.submit_interest(tender.id, key)

    def test_draft_is_hidden_from_partners(self) -> None:
        tender = self.create_tender()
        with self.assertRaises(NotVisibleError):
            self.service.get_tender(self.db, partner_caller(self.partner("northwind")), tender.id)

    def test_eligible_partners_for_admin(self) -> None:
        tender = self.published_tender()
        eligible = self.service.eligible_partners(self.db, ADMIN, tender.id)
        self.assertEqual({partner.id for partner in eligible}, {self.partner("northwind"), self.partner("contoso")})

    def test_invited_inactive_partner_is_eligible(self) -> None:
        tender = self.published_tender(invitation_strategy="invited_only", invited_partners=[self.partner("dormant")])
        eligible = self.service.eligible_partners(self.db, ADMIN, tender.id)
        self.assertEqual([partner.id for partner in eligible], [self.partner("dormant")])

    def test_partner_detail_shows_only_own_response(self) -> None:
        tender = self.published_tender()
        self.submit_interest(tender.id, "northwind")
        self.submit_interest(tender.id, "contoso")
        detail = self.service.get_tender(self.db, partner_caller(self.partner("contoso")), tender.id)
        self.assertEqual([item["partner_id"] for item in detail["responses"]], [self.partner("contoso")])
        self.assertNotIn("history", detail)


class InterestAndProposalServiceTest(TenderingDbTestCase):
    sandbox_prefix = "tender_responses"

    def test_urgent_tender_requires_training_commitment(self) -> None:
        tender = self.published_tender(project_start_date=(TODAY + timedelta(days=20)).isoformat())
        with self.assertRaises(ComplianceGateError) as ctx:
            self.submit_interest(tender.id, "contoso")
        self.assertEqual(ctx.exception.payload["expired_products"], ["PD1"])
        self.assertEqual(
            ctx.exception.payload["upcoming_training_sessions"],
            sorted([self.fixture.sessions["pd1_soon"], self.fixture.sessions["pd1_later"]]),
        )
        self.assertIsNone(ResponseRepository().get(self.db, tender.id, self.partner("contoso")))

        response = self.submit_interest(tender.id, "contoso", sessions=[self.fixture.sessions["pd1_soon"]])
        self.assertEqual(response.status, "interest_submitted")
        self.assertEqual(response.committed_training_sessions, (self.fixture.sessions["pd1_soon"],))
        self.assertFalse(response.certification_status.valid)
        self.assertTrue(response.certification_status.urgent_project)

    def test_sessions_that_are_full_past_or_unrelated_are_refused(self) -> None:
        tender = self.published_tender(project_start_date=(TODAY + timedelta(days=20)).isoformat())
        for key in ("pd1_full", "pd1_past", "hid2_soon"):
            with self.subTest(session=key), self.assertRaises(ValidationError):
                self.submit_interest(tender.id, "contoso", sessions=[self.fixture.sessions[key]])

    def test_compliant_partner_submits_without_training(self) -> None:
        events = []
        self.bus.subscribe(InterestSubmitted, events.append)
        tender = self.published_tender(project_start_date=(TODAY + timedelta(days=20)).isoformat())
        response = self.submit_interest(tender.id, "northwind")
        self.assertTrue(response.certification_status.valid)
        self.assertEqual(events[0].partner_id, self.partner("northwind"))
        self.assertTrue(events[0].compliant)

    def test_duplicate_interest_is_an_invalid_transition(self) -> None:
        tender = self.published_tender()
        self.submit_interest(tender.id, "northwind")
        with self.assertRaises(InvalidTransitionError):
            self.submit_interest(tender.id, "northwind")

    def test_partner_cannot_submit_for_another_partner(self) -> None:
        tender = self.published_tender()
        with self.assertRaises(UnauthorizedError):
            self.service.submit_interest(
                self.db,
                partner_caller(self.partner("contoso")),
                InterestSubmitInput(tender_id=tender.id, partner_id=self.partner("northwind")),
            )

    def test_every_response_transition_bumps_tender_version(self) -> None:
        tender = self.published_tender()
        versions = [tender.version]
        self.submit_interest(tender.id, "northwind")
        versions.append(TenderRepository().get(self.db, tender.id).version)
        self.service.approve_interest(self.db, ADMIN, tender.id, self.partner("northwind"))
        versions.append(TenderRepository().get(self.db, tender.id).version)
        self.assertEqual(versions, sorted(set(versions)))

    def test_full_response_progression(self) -> None:
        tender = self.published_tender()
        submitted = self.bring_to_proposal(tender.id, "northwind", proposed_value=88000.0)
        self.assertEqual(submitted.status, "proposal_submitted")
        self.assertEqual(submitted.proposed_value, 88000.0)
        self.assertTrue(submitted.final_certification_status.valid)
        self.assertIsNotNone(submitted.final_certification_status.checked_at)

        stored = ResponseRepository().get(self.db, tender.id, self.partner("northwind"))
        self.assertEqual(stored.to_dict(), submitted.to_dict())

    def test_non_urgent_proposal_with_gaps_is_accepted_with_warning(self) -> None:
        tender = self.published_tender()
        with self.assertLogs("partner_portal", level="WARNING") as logs:
            submitted = self.bring_to_proposal(tender.id, "contoso")
        self.assertEqual(submitted.status, "proposal_submitted")
        self.assertFalse(submitted.final_certification_status.valid)
        self.assertTrue(any("proposal_submitted_with_compliance_gaps" in line for line in logs.output))

    def test_urgent_proposal_is_gated_on_fresh_compliance(self) -> None:
        tender = self.published_tender(project_start_date=(TODAY + timedelta(days=20)).isoformat())
        contoso = self.partner("contoso")
        self.submit_interest(tender.id, "contoso", sessions=[self.fixture.sessions["pd1_soon"]])
        self.service.approve_interest(self.db, ADMIN, tender.id, contoso)
        with self.assertRaises(ComplianceGateError):
            self.service.submit_proposal(
                self.db,
                partner_caller(contoso),
                ProposalSubmitInput(tender_id=tender.id, partner_id=contoso, proposed_value=1.0),
            )
        self.assertEqual(ResponseRepository().get(self.db, tender.id, contoso).status, "calculating")

    def test_rejected_response_is_terminal(self) -> None:
        tender = self.published_tender()
        northwind = self.partner("northwind")
        self.submit_interest(tender.id, "northwind")
        rejected = self.service.reject_response(self.db, ADMIN, tender.id, northwind, reason="Out of region")
        self.assertEqual(rejected.rejection_reason, "Out of region")
        with self.assertRaises(InvalidTransitionError):
            self.service.approve_interest(self.db, ADMIN, tender.id, northwind)
        with self.assertRaises(InvalidTransitionError):
            self.service.reject_response(self.db, ADMIN, tender.id, northwind)

    def test_rejection_uses_interest_or_response_transition(self) -> None:
        tender = self.published_tender(invitation_strategy="open")
        northwind = self.partner("northwind")
        contoso = self.partner("contoso")
        self.submit_interest(tender.id, "northwind")
        self.submit_interest(tender.id, "contoso")
        self.service.approve_interest(self.db, ADMIN, tender.id, contoso)

        with patch.object(state_machine, "reject_interest", wraps=state_machine.reject_interest) as reject_interest:
            self.service.reject_response(self.db, ADMIN, tender.id, northwind)
            self.service.reject_response(self.db, ADMIN, tender.id, contoso)

        self.assertEqual(reject_interest.call_count, 1)
        self.assertEqual(reject_interest.call_args.args[0].partner_id, northwind)
        statuses = {response.partner_id: response.status for response in ResponseRepository().list_for_tender(self.db, tender.id)}
        self.assertEqual(statuses, {northwind: "rejected", contoso: "rejected"})

    def test_compliance_preview(self) -> None:
        tender = self.published_tender(project_start_date=(TODAY + timedelta(days=20)).isoformat())
        preview = self.service.compliance_preview(
            self.db, partner_caller(self.partner("contoso")), tender.id
        )
        self.assertFalse(preview["valid"])
        self.assertTrue(preview["training_required"])
        self.assertEqual(preview["days_until_start"], 20)
        self.assertEqual(
            [session["id"] for session in preview["upcoming_training_sessions"]],
            [self.fixture.sessions["pd1_soon"], self.fixture.sessions["pd1_later"]],
        )

        admin_preview = self.service.compliance_preview(self.db, ADMIN, tender.id, self.partner("northwind"))
        self.assertTrue(admin_preview["fully_compliant"])
        with self.assertRaises(ValidationError):
            self.service.compliance_preview(self.db, ADMIN, tender.id)


class NdaGateServiceTest(TenderingDbTestCase):
    sandbox_prefix = "tender_nda"
    settings_overrides = {"nda_required": True, "nda_version": "2.1"}

    def test_interest_requires_accepted_nda(self) -> None:
        tender = self.published_tender()
        northwind = partner_caller(self.partner("northwind"))
        with self.assertRaises(ValidationError) as ctx:
            self.submit_interest(tender.id, "northwind")
        self.assertEqual(ctx.exception.code, "nda_required")

        first = self.service.accept_nda(self.db, northwind, tender.id)
        again = self.service.accept_nda(self.db, northwind, tender.id)
        self.assertEqual(first.nda_version, "2.1")
        self.assertEqual(first.id, again.id)

        self.assertEqual(self.submit_interest(tender.id, "northwind").status, "interest_submitted")

    def test_admin_cannot_accept_nda(self) -> None:
        tender = self.published_tender()
        with self.assertRaises(UnauthorizedError):
            self.service.accept_nda(self.db, ADMIN, tender.id)


class TrainingReminderServiceTest(TenderingDbTestCase):
    sandbox_prefix = "training_reminder"

    def test_reminder_lists_products_with_gaps(self) -> None:
        contoso = self.partner("contoso")
        notification = self.service.send_training_reminder(self.db, ADMIN, contoso)
        self.assertEqual(notification.type, "training_reminder")
        self.assertEqual(notification.user_email, "hello@contoso.example")
        self.assertIn("HID2, PD1", notification.message)
        stored = NotificationRepository().list_for_partner(self.db, contoso)
        self.assertEqual([item.type for item in stored], ["training_reminder"])

    def test_compliant_partner_gets_no_reminder(self) -> None:
        self.assertIsNone(self.service.send_training_reminder(self.db, ADMIN, self.partner("northwind")))

    def test_reminder_is_admin_only(self) -> None:
        with self.assertRaises(UnauthorizedError):
            self.service.send_training_reminder(self.db, partner_caller(self.partner("contoso")), self.partner("contoso"))


class OptimisticConcurrencyTest(TenderingDbTestCase):
    sandbox_prefix = "tender_cas"

    def test_stale_tender_write_is_rejected(self) -> None:
        repository = TenderRepository()
        tender = self.create_tender()
        stale = repository.get(self.db, tender.id)
        repository.touch(self.db, tender)
        with self.assertRaises(ConcurrencyConflictError):
            repository.save(self.db, stale)

    def test_stale_response_write_is_rejected(self) -> None:
        tender = self.published_tender()
        repository = ResponseRepository()
        self.submit_interest(tender.id, "northwind")
        stale = repository.get(self.db, tender.id, self.partner("northwind"))
        self.service.approve_interest(self.db, ADMIN, tender.id, self.partner("northwind"))
        with self.assertRaises(ConcurrencyConflictError):
            repository.save(self.db, stale)

    def test_failed_transaction_leaves_no_partial_state(self) -> None:
        tender = self.published_tender()
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                self.submit_interest(tender.id, "northwind")
                raise RuntimeError("boom")
        self.assertIsNone(ResponseRepository().get(self.db, tender.id, self.partner("northwind")))
        self.assertEqual(TenderRepository().get(self.db, tender.id).version, tender.version)


class TenderQuestionServiceTest(TenderingDbTestCase):
    sandbox_prefix = "tender_questions"

    def test_partners_ask_and_see_only_their_own_questions(self) -> None:
        asked_events = []
        self.bus.subscribe(QuestionAsked, asked_events.append)
        tender = self.published_tender()
        northwind = self.partner("northwind")
        contoso = self.partner("contoso")

        first = self.service.ask_question(self.db, partner_caller(northwind), tender.id, "Is night work allowed?")
        self.service.ask_question(self.db, partner_caller(contoso), tender.id, "Can we subcontract cabling?")

        self.assertEqual(first.partner_id, northwind)
        self.assertIsNone(first.answer)
        own = self.service.list_questions(self.db, partner_caller(northwind), tender.id)
        self.assertEqual([question.question for question in own], ["Is night work allowed?"])
        detail = self.service.get_tender(self.db, partner_caller(contoso), tender.id)
        self.assertEqual([item["question"] for item in detail["questions"]], ["Can we subcontract cabling?"])
        admin_detail = self.service.get_tender(self.db, ADMIN, tender.id)
        self.assertEqual(len(admin_detail["questions"]), 2)
        self.assertEqual([event.question_id for event in asked_events], [first.id, first.id + 1])

    def test_invisible_partner_cannot_ask(self) -> None:
        tender = self.published_tender()
        with self.assertRaises(NotVisibleError):
            self.service.ask_question(self.db, partner_caller(self.partner("fabrikam")), tender.id, "Hello?")
        self.assertEqual(self.service.list_questions(self.db, ADMIN, tender.id), [])

    def test_cancelled_tender_takes_no_questions(self) -> None:
        tender = self.published_tender()
        self.service.cancel_tender(self.db, ADMIN, tender.id)
        with self.assertRaises(InvalidTransitionError):
            self.service.ask_question(self.db, partner_caller(self.partner("northwind")), tender.id, "Still open?")

    def test_admin_answers_once(self) -> None:
        answered_events = []
        self.bus.subscribe(QuestionAnswered, answered_events.append)
        tender = self.published_tender()
        northwind = self.partner("northwind")
        question = self.service.ask_question(self.db, partner_caller(northwind), tender.id, "Which door models?")

        with self.assertRaises(UnauthorizedError):
            self.service.answer_question(self.db, partner_caller(northwind), tender.id, question.id, "Any")

        answered = self.service.answer_question(self.db, ADMIN, tender.id, question.id, "PD1 series only")
        self.assertEqual(answered.answer, "PD1 series only")
        self.assertEqual(answered.answered_by, "admin@demo.com")
        self.assertIsNotNone(answered.answered_at)
        self.assertEqual([event.partner_id for event in answered_events], [northwind])

        with self.assertRaises(InvalidTransitionError):
            self.service.answer_question(self.db, ADMIN, tender.id, question.id, "Changed my mind")
        with self.assertRaises(NotFoundError):
            self.service.answer_question(self.db, ADMIN, tender.id, question.id + 100, "Nobody asked")
        stored = self.service.list_questions(self.db, partner_caller(northwind), tender.id)
        self.assertEqual(stored[0].answer, "PD1 series only")


if __name__ == "__main__":
    unittest.main()
