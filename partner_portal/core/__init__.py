from partner_portal.core.event_bus import (
    DomainEvent,
    EventBus,
    InterestApproved,
    InterestSubmitted,
    ProposalSubmitted,
    QuestionAnswered,
    QuestionAsked,
    ResponseRejected,
    TenderAwarded,
    TenderCancelled,
    TenderPublished,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "TenderPublished",
    "TenderCancelled",
    "InterestSubmitted",
    "InterestApproved",
    "ResponseRejected",
    "ProposalSubmitted",
    "QuestionAsked",
    "QuestionAnswered",
    "TenderAwarded",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
