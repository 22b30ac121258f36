"""
Event classification for tracker payloads.

Every inbound payload maps to one EventKind, and each kind has a pure
function that decides which site counters the event moves. Nothing in this
module touches the store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

from .config import TEST_KEYWORDS

# Any of these in a conversion's data means the form tracker already sent it
FORM_MARKERS = ("formId", "formClass", "formType", "isFormSubmission")


class EventKind(str, Enum):
    PAGE_VIEW = "gtm.pageView"
    FORM_SUBMIT = "gtm.formSubmit"
    THANK_YOU = "gtm.thankYouPage"
    CONVERSION = "gtm.conversion"
    BUTTON_CLICK = "gtm.buttonClick"
    VALIDATION_FAILURE = "gtm.formValidationFailure"
    HEARTBEAT = "gtm.heartbeat"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw) -> "EventKind":
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Classification:
    """
    Outcome of classifying one event.
    deltas: counter name -> increment, empty when nothing should change.
    skipped: set for conversions dropped as duplicates of a form submit.
    """
    kind: EventKind
    deltas: dict = field(default_factory=dict)
    is_test: bool = False
    skipped: bool = False

    @property
    def counts(self) -> bool:
        return bool(self.deltas)

    @property
    def is_test_lead(self) -> bool:
        return self.deltas.get("test_leads", 0) > 0


# -----------------------------------------------------------------------------
# Payload helpers
# -----------------------------------------------------------------------------
def event_type_of(payload: dict) -> str:
    # newer trackers send "eventType", older ones "event"
    raw = payload.get("eventType") or payload.get("event") or ""
    return str(raw)


def event_data(payload: dict) -> dict:
    data = payload.get("data")
    return data if isinstance(data, dict) else {}


def is_test_instance(data: dict, keywords: Iterable[str] = TEST_KEYWORDS) -> bool:
    """
    True when any top-level string value contains a test keyword
    (case-insensitive, trimmed), or the tracker already flagged the
    submission with isTestLead: true.
    """
    if data.get("isTestLead") is True:
        return True
    keywords = [k.lower() for k in keywords]
    for value in data.values():
        if not isinstance(value, str):
            continue
        value = value.strip().lower()
        if value and any(k in value for k in keywords):
            return True
    return False


def has_form_marker(data: dict) -> bool:
    # falsy markers (formId: "", isFormSubmission: false) don't count
    return any(data.get(marker) for marker in FORM_MARKERS)


def _lead_delta(is_test: bool) -> dict:
    return {"test_leads": 1} if is_test else {"leads": 1}


# -----------------------------------------------------------------------------
# Per-kind rules
# -----------------------------------------------------------------------------
def _page_view(data, keywords):
    return Classification(EventKind.PAGE_VIEW, {"visitors": 1, "page_views": 1})


def _form_submit(data, keywords):
    # leads wait for the thank-you confirmation
    return Classification(EventKind.FORM_SUBMIT, {"form_submissions": 1})


def _thank_you(data, keywords):
    is_test = is_test_instance(data, keywords)
    return Classification(EventKind.THANK_YOU, _lead_delta(is_test), is_test=is_test)


def _conversion(data, keywords):
    if has_form_marker(data):
        return Classification(EventKind.CONVERSION, skipped=True)
    is_test = is_test_instance(data, keywords)
    deltas = _lead_delta(is_test)
    deltas["conversions"] = 1
    return Classification(EventKind.CONVERSION, deltas, is_test=is_test)


def _button_click(data, keywords):
    return Classification(EventKind.BUTTON_CLICK, {"button_clicks": 1})


def _validation_failure(data, keywords):
    return Classification(EventKind.VALIDATION_FAILURE, {"validation_failures": 1})


def _no_change(kind: EventKind) -> Callable:
    def rule(data, keywords):
        return Classification(kind)
    return rule


CLASSIFIERS = {
    EventKind.PAGE_VIEW: _page_view,
    EventKind.FORM_SUBMIT: _form_submit,
    EventKind.THANK_YOU: _thank_you,
    EventKind.CONVERSION: _conversion,
    EventKind.BUTTON_CLICK: _button_click,
    EventKind.VALIDATION_FAILURE: _validation_failure,
    EventKind.HEARTBEAT: _no_change(EventKind.HEARTBEAT),
    EventKind.UNKNOWN: _no_change(EventKind.UNKNOWN),
}


def classify(payload: dict, keywords: Iterable[str] = TEST_KEYWORDS) -> Classification:
    kind = EventKind.parse(event_type_of(payload))
    return CLASSIFIERS[kind](event_data(payload), keywords)
