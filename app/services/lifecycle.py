"""Visit lifecycle rules.

Everything in this module is pure: it reads Visit/User attributes and the clock
it is handed, and never touches the session. The visit service calls into it
before every write; read paths call the derived-status helpers on every query.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Union

from app.core.exceptions import InvalidState, InvalidTimeWindow, NotPending


class VisitStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    denied = "denied"
    pre_approved = "pre_approved"
    active = "active"
    completed = "completed"
    # Derived at read time, never stored.
    expired = "expired"


# Statuses in which a visitor can be on site.
CHECKOUT_FROM = frozenset({VisitStatus.approved, VisitStatus.active})

TRANSITIONS: dict[VisitStatus, frozenset[VisitStatus]] = {
    VisitStatus.pending: frozenset({VisitStatus.approved, VisitStatus.denied}),
    VisitStatus.approved: frozenset({VisitStatus.active, VisitStatus.completed}),
    VisitStatus.pre_approved: frozenset({VisitStatus.active, VisitStatus.expired}),
    VisitStatus.active: frozenset({VisitStatus.completed}),
}

# Vocabulary of the older name-keyed visit records.
LEGACY_STATUS_ALIASES = {
    "checked-out": VisitStatus.completed,
    "checked_out": VisitStatus.completed,
    "pre-approved": VisitStatus.pre_approved,
    "pre-approval": VisitStatus.pre_approved,
}

STATUS_LABELS = {
    VisitStatus.pending: "Pending",
    VisitStatus.approved: "Approved",
    VisitStatus.denied: "Denied",
    VisitStatus.pre_approved: "Pre-approved",
    VisitStatus.active: "Checked in",
    VisitStatus.completed: "Checked out",
    VisitStatus.expired: "Expired",
}


def normalize_status(value: Any) -> VisitStatus:
    if isinstance(value, VisitStatus):
        return value
    raw = str(value or "").strip().lower()
    if raw in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[raw]
    try:
        return VisitStatus(raw)
    except ValueError as exc:
        raise ValueError(f"Unknown visit status: {value!r}") from exc


def can_transition(current: Any, target: Any) -> bool:
    return normalize_status(target) in TRANSITIONS.get(normalize_status(current), frozenset())


def ensure_pending(visit) -> None:
    if normalize_status(visit.status) != VisitStatus.pending:
        raise NotPending(f"Visit is already {normalize_status(visit.status).value}")


def ensure_can_check_out(visit) -> None:
    status = normalize_status(visit.status)
    if visit.check_out is not None or status == VisitStatus.completed:
        raise InvalidState("Visitor is already checked out")
    if not can_transition(status, VisitStatus.completed):
        raise InvalidState(f"Cannot check out a visit that is {status.value}")


def ensure_can_check_in(visit, at: datetime | None = None) -> None:
    status = normalize_status(visit.status)
    if not can_transition(status, VisitStatus.active):
        raise InvalidState(f"Cannot check in a visit that is {status.value}")
    if visit.check_in is not None:
        raise InvalidState("Visitor is already checked in")
    if status == VisitStatus.pre_approved and is_expired(visit, at):
        raise InvalidState("Pre-approval window is not open")


# -- time -------------------------------------------------------------------


def utcnow() -> datetime:
    """Naive UTC, the representation every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("timestamp is empty")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(raw))


def validate_time_window(
    start_time: Any,
    end_time: Any,
    now: datetime | None = None,
    max_window: timedelta = timedelta(hours=24),
) -> tuple[datetime, datetime]:
    """Check a pre-approval window and return it as naive UTC datetimes.

    Rules, in order: both ends present and parseable, start strictly in the
    future, end strictly after start, length at most ``max_window``. The first
    failing rule raises InvalidTimeWindow; nothing is clamped.
    """
    if start_time in (None, "") or end_time in (None, ""):
        raise InvalidTimeWindow("Start time and end time are required", rule="required")
    try:
        start = parse_timestamp(start_time)
        end = parse_timestamp(end_time)
    except ValueError as exc:
        raise InvalidTimeWindow("Start time and end time must be valid timestamps", rule="parse") from exc

    now = to_naive_utc(now) if now else utcnow()
    if start <= now:
        raise InvalidTimeWindow("Start time must be in the future", rule="start_in_future")
    if end <= start:
        raise InvalidTimeWindow("End time must be after start time", rule="end_after_start")
    if end - start > max_window:
        hours = int(max_window.total_seconds() // 3600)
        raise InvalidTimeWindow(f"Time window cannot exceed {hours} hours", rule="max_window")
    return start, end


# -- host references and authorization --------------------------------------


@dataclass(frozen=True)
class HostById:
    id: str


@dataclass(frozen=True)
class HostByName:
    """Legacy input path: a host typed in by name on the walk-in form."""

    name: str


HostRef = Union[HostById, HostByName]


def host_ref_for(visit) -> HostRef:
    if visit.host_id:
        return HostById(visit.host_id)
    return HostByName(visit.host_name or "")


def can_act_on_visit(actor, visit) -> bool:
    """Only the visit's own host may decide, check in or check out a visit."""
    if actor is None or not getattr(actor, "is_host", False) or not getattr(actor, "is_active", True):
        return False
    ref = host_ref_for(visit)
    if isinstance(ref, HostById):
        return actor.id == ref.id
    # Fallback for records migrated without a host id. Names are neither
    # unique nor stable, so this branch never applies once host_id is set.
    name = name_key(ref.name)
    return bool(name) and name == name_key(actor.full_name)


# -- derived status -----------------------------------------------------------


def is_expired(visit, at: datetime | None = None) -> bool:
    if normalize_status(visit.status) != VisitStatus.pre_approved:
        return False
    if visit.start_time is None or visit.end_time is None:
        return True
    at = to_naive_utc(at) if at else utcnow()
    return at < visit.start_time or at > visit.end_time


def is_active(visit) -> bool:
    status = normalize_status(visit.status)
    return status in CHECKOUT_FROM and visit.check_in is not None and visit.check_out is None


def derived_status(visit, at: datetime | None = None) -> VisitStatus:
    if is_expired(visit, at):
        return VisitStatus.expired
    return normalize_status(visit.status)


def name_key(value: str | None) -> str:
    """Case- and whitespace-insensitive form of a person's name."""
    return " ".join((value or "").split()).casefold()


def capitalize_name(value: str | None) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in (value or "").split())


def format_timestamp(value: datetime | None, empty_label: str) -> str:
    if value is None:
        return empty_label
    return value.strftime("%b %d, %Y %I:%M %p")
