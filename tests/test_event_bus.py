import unittest
from datetime import datetime, timezone

from partner_portal.core import EventBus, InterestSubmitted, TenderAwarded, TenderPublished
from partner_portal.observability import metrics_snapshot, reset_metrics_for_tests


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        bus.subscribe(TenderPublished, lambda _event: execution_trace.append("first"))
        bus.subscribe(TenderPublished, lambda _event: execution_trace.append("second"))
        bus.publish(TenderPublished(tender_id=1))

        self.assertEqual(execution_trace, ["first", "second"])

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(TenderAwarded, received.append)

        bus.publish(InterestSubmitted(tender_id=1, partner_id=2))
        bus.publish(TenderAwarded(tender_id=1, winning_partner_id=2, project_id=9))

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].project_id, 9)

    def test_failing_handler_is_logged_and_does_not_stop_others(self) -> None:
        bus = EventBus()
        received = []

        def broken(_event):
            raise RuntimeError("mailer down")

        bus.subscribe(TenderPublished, broken)
        bus.subscribe(TenderPublished, received.append)

        with self.assertLogs("partner_portal", level="ERROR") as logs:
            bus.publish(TenderPublished(tender_id=7))

        self.assertEqual(len(received), 1)
        self.assertTrue(any("event_handler_failed" in line for line in logs.output))

    def test_publish_counts_emitted_events(self) -> None:
        bus = EventBus()
        bus.publish(TenderPublished(tender_id=1))
        bus.publish(TenderPublished(tender_id=2))
        self.assertEqual(metrics_snapshot()["domain_events"], {"TenderPublished": 2})

    def test_event_payload_is_normalized(self) -> None:
        event = InterestSubmitted(
            tender_id=3,
            partner_id=4,
            urgent_project=True,
            occurred_at=datetime(2026, 10, 18, 12, 0),
            event_id=" ",
            actor="",
        )
        payload = event.to_payload()

        self.assertEqual(payload["event_type"], "InterestSubmitted")
        self.assertEqual(payload["occurred_at"], "2026-10-18T12:00:00Z")
        self.assertEqual(payload["actor"], "system")
        self.assertTrue(payload["event_id"])
        self.assertEqual(event.occurred_at.tzinfo, timezone.utc)
        self.assertTrue(payload["urgent_project"])

    def test_clear_removes_subscriptions(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(TenderPublished, received.append)
        bus.clear()
        bus.publish(TenderPublished(tender_id=1))
        self.assertEqual(received, [])


if __name__ == "__main__":
    unittest.main()
