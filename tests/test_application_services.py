import unittest
from datetime import date, datetime, timedelta, timezone

from partner_portal.contexts.tendering.application.service import TenderService, TenderingSettings
from partner_portal.contexts.tendering.domain.models import (
    Certification,
    Notification,
    Partner,
    Solution,
    TeamMember,
    Tender,
    TrainingSession,
    Vertical,
)
from partner_portal.core import EventBus
from partner_portal.domain.contracts import Caller
from partner_portal.errors import NotFoundError, NotVisibleError, UnauthorizedError, ValidationError


NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
ADMIN = Caller(is_admin=True, email="admin@demo.com")


class _FakeTenderRepo:
    def __init__(self, tenders) -> None:
        self._tenders = {tender.id: tender for tender in tenders}

    def get(self, _db, tender_id: int):
        return self._tenders.get(tender_id)

    def list_all(self, _db, exclude_drafts: bool = False):
        tenders = sorted(self._tenders.values(), key=lambda tender: tender.id)
        if exclude_drafts:
            tenders = [tender for tender in tenders if tender.status != "draft"]
        return tenders


class _FakeDirectoryRepo:
    def __init__(self) -> None:
        self.partners = {
            1: Partner(id=1, company_name="Northwind", verticals=("HC",), solutions=("ACCESS",)),
            2: Partner(id=2, company_name="Fabrikam", verticals=("EDU",), solutions=("ACCESS",)),
        }
        self.members = {1: [TeamMember(id=10, partner_id=1, full_name="Ada"), TeamMember(id=11, partner_id=1, full_name="Old", active=False)]}
        self.certifications = {
            1: [
                Certification(id=100, team_member_id=10, product_code="PD1", expiry_date=TODAY + timedelta(days=12)),
                Certification(id=101, team_member_id=11, product_code="HID2", expiry_date=TODAY + timedelta(days=400)),
            ]
        }
        self.sessions = [
            TrainingSession(id=7, title="HID2 basics", assa_abloy_product="HID2", session_date=TODAY + timedelta(days=9)),
            TrainingSession(id=8, title="PD1 refresh", assa_abloy_product="PD1", session_date=TODAY + timedelta(days=4)),
        ]

    def get_partner(self, _db, partner_id: int):
        return self.partners.get(partner_id)

    def list_partners(self, _db):
        return list(self.partners.values())

    def list_verticals(self, _db):
        return [Vertical(id=1, code="HC"), Vertical(id=2, code="EDU")]

    def list_solutions(self, _db):
        return [Solution(id=5, code="ACCESS")]

    def list_team_members(self, _db, partner_id: int):
        return self.members.get(partner_id, [])

    def list_certifications_for_partner(self, _db, partner_id: int):
        return self.certifications.get(partner_id, [])

    def list_training_sessions(self, _db):
        return list(self.sessions)


class _FakeNotificationRepo:
    def __init__(self) -> None:
        self.items = [
            Notification(id=1, user_email="a@x", partner_id=1, type="tender_published", title="t", message="m"),
            Notification(id=2, user_email="b@x", partner_id=2, type="tender_published", title="t", message="m"),
        ]

    def list_recent(self, _db):
        return list(self.items)

    def list_for_partner(self, _db, partner_id: int):
        return [item for item in self.items if item.partner_id == partner_id]


def _service(**settings) -> TenderService:
    tenders = [
        Tender(
            id=1,
            title="Clinic doors",
            status="published",
            vertical_id=1,
            required_solutions=(5,),
            assa_abloy_products=("PD1", "HID2"),
            project_start_date=TODAY + timedelta(days=20),
        ),
        Tender(id=2, title="Draft", status="draft", invitation_strategy="open"),
        Tender(id=3, title="Campus", status="published", invitation_strategy="open"),
    ]
    return TenderService(
        TenderingSettings(**settings),
        clock=lambda: NOW,
        tenders=_FakeTenderRepo(tenders),
        directory=_FakeDirectoryRepo(),
        notifications=_FakeNotificationRepo(),
        event_bus=EventBus(),
    )


class ApplicationServicesTest(unittest.TestCase):
    def test_admin_lists_every_tender(self) -> None:
        self.assertEqual([tender.id for tender in _service().list_tenders(None, ADMIN)], [1, 2, 3])

    def test_partner_lists_only_visible_published_tenders(self) -> None:
        service = _service()
        self.assertEqual([tender.id for tender in service.list_tenders(None, Caller(is_admin=False, partner_id=1))], [1, 3])
        self.assertEqual([tender.id for tender in service.list_tenders(None, Caller(is_admin=False, partner_id=2))], [3])
        self.assertEqual(service.list_tenders(None, Caller(is_admin=False, partner_id=99)), [])
        self.assertEqual(service.list_tenders(None, Caller(is_admin=False)), [])

    def test_eligible_partners_is_admin_only(self) -> None:
        service = _service()
        self.assertEqual([partner.id for partner in service.eligible_partners(None, ADMIN, 1)], [1])
        with self.assertRaises(UnauthorizedError):
            service.eligible_partners(None, Caller(is_admin=False, partner_id=1), 1)
        with self.assertRaises(NotFoundError):
            service.eligible_partners(None, ADMIN, 404)

    def test_compliance_preview_ignores_inactive_members(self) -> None:
        preview = _service().compliance_preview(None, Caller(is_admin=False, partner_id=1), 1)

        self.assertEqual(preview["partner_id"], 1)
        self.assertFalse(preview["valid"])
        self.assertTrue(preview["urgent_project"])
        self.assertEqual(preview["missing_products"], ["HID2"])
        self.assertEqual(preview["expiring_products"], ["PD1"])
        self.assertEqual(preview["days_until_start"], 20)
        self.assertTrue(preview["training_required"])
        self.assertFalse(preview["fully_compliant"])
        self.assertEqual([session["id"] for session in preview["upcoming_training_sessions"]], [7])

    def test_compliance_preview_guards(self) -> None:
        service = _service()
        with self.assertRaises(ValidationError):
            service.compliance_preview(None, ADMIN, 1)
        with self.assertRaises(NotFoundError):
            service.compliance_preview(None, ADMIN, 1, partner_id=99)
        with self.assertRaises(NotVisibleError):
            service.compliance_preview(None, Caller(is_admin=False, partner_id=2), 1)
        self.assertEqual(service.compliance_preview(None, ADMIN, 1, partner_id=2)["missing_products"], ["PD1", "HID2"])

    def test_urgency_window_follows_settings(self) -> None:
        preview = _service(urgency_days=10).compliance_preview(None, ADMIN, 1, partner_id=1)
        self.assertFalse(preview["urgent_project"])
        self.assertFalse(preview["training_required"])

    def test_notifications_are_scoped_to_caller(self) -> None:
        service = _service()
        self.assertEqual(len(service.list_notifications(None, ADMIN)), 2)
        self.assertEqual([item.id for item in service.list_notifications(None, Caller(is_admin=False, partner_id=2))], [2])
        self.assertEqual(service.list_notifications(None, Caller(is_admin=False)), [])

    def test_settings_from_config(self) -> None:
        settings = TenderingSettings.from_config(
            {"CERTIFICATION_LOOSE_MATCH": True, "NDA_VERSION": "", "TENDER_URGENCY_DAYS": "14"}
        )
        self.assertEqual(settings.match_policy, "loose")
        self.assertEqual(settings.nda_version, "1.0")
        self.assertEqual(settings.urgency_days, 14)
        self.assertEqual(settings.expiry_warning_days, 30)


if __name__ == "__main__":
    unittest.main()
