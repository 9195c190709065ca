from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Type

from partner_portal.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    actor: str = ""

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        normalized_occurred_at = normalized_occurred_at.astimezone(timezone.utc)

        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at)
        object.__setattr__(self, "actor", str(self.actor or "").strip() or "system")

    def to_payload(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["event_type"] = type(self).__name__
        payload["occurred_at"] = self.occurred_at.isoformat().replace("+00:00", "Z")
        return payload


@dataclass(frozen=True, kw_only=True)
class TenderPublished(DomainEvent):
    tender_id: int
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class TenderCancelled(DomainEvent):
    tender_id: int
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class InterestSubmitted(DomainEvent):
    tender_id: int
    partner_id: int
    compliant: bool = True
    urgent_project: bool = False


@dataclass(frozen=True, kw_only=True)
class InterestApproved(DomainEvent):
    tender_id: int
    partner_id: int


@dataclass(frozen=True, kw_only=True)
class ResponseRejected(DomainEvent):
    tender_id: int
    partner_id: int
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class ProposalSubmitted(DomainEvent):
    tender_id: int
    partner_id: int
    proposed_value: float | None = None


@dataclass(frozen=True, kw_only=True)
class QuestionAsked(DomainEvent):
    tender_id: int
    partner_id: int
    question_id: int


@dataclass(frozen=True, kw_only=True)
class QuestionAnswered(DomainEvent):
    tender_id: int
    partner_id: int
    question_id: int


@dataclass(frozen=True, kw_only=True)
class TenderAwarded(DomainEvent):
    tender_id: int
    winning_partner_id: int
    project_id: int
    rejected_partner_ids: tuple[int, ...] = ()
    notifications_created: int = 0


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("partner_portal")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": type(event).__name__})

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
