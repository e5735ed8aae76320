import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from time import perf_counter
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import InvalidState, NotPending, Unauthorized, ValidationFailed, VisitNotFound
from app.db.models import User, UserRole, Visit
from app.schemas.auth import is_valid_email
from app.services import audit_service, identity_service, visit_store
from app.services.lifecycle import (
    STATUS_LABELS,
    HostById,
    HostByName,
    VisitStatus,
    can_act_on_visit,
    capitalize_name,
    derived_status,
    ensure_can_check_in,
    ensure_can_check_out,
    ensure_pending,
    format_timestamp,
    is_active,
    is_expired,
    normalize_status,
    parse_timestamp,
    utcnow,
    validate_time_window,
)
from app.services.notification_service import (
    VISIT_CREATED,
    VISIT_DECIDED,
    Recipient,
    VisitEvent,
    dispatch_visit_event,
)
from app.services.qr_service import generate_visitor_qr

logger = logging.getLogger(__name__)

DECISION_ALIASES = {
    "approved": VisitStatus.approved,
    "approve": VisitStatus.approved,
    "denied": VisitStatus.denied,
    "deny": VisitStatus.denied,
    "reject": VisitStatus.denied,
    "rejected": VisitStatus.denied,
}
PASS_STATUSES = frozenset({VisitStatus.approved, VisitStatus.pre_approved, VisitStatus.active})
OPEN_STATUSES = (VisitStatus.pending, VisitStatus.approved, VisitStatus.active)


@dataclass
class VisitOutcome:
    visit: Visit
    notification: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        data = serialize_visit(self.visit)
        data.update(self.extra)
        response: dict[str, Any] = {"visit": data}
        if self.notification is not None:
            response["notification"] = self.notification
        return response


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _missing(values: dict[str, tuple[str, str | None]]) -> dict[str, str]:
    """Map field name to an error for every blank value; ``values`` is ``{field: (label, value)}``."""
    return {name: f"{label} is required" for name, (label, value) in values.items() if not _clean(value)}


def _check_email(errors: dict[str, str], field_name: str, email: str, required: bool = False) -> None:
    if email:
        if not is_valid_email(email):
            errors[field_name] = "Please enter a valid email"
    elif required:
        errors[field_name] = "Email is required"


def _max_window() -> timedelta:
    return timedelta(hours=get_settings().PRE_APPROVAL_MAX_WINDOW_HOURS)


def _load_owned_visit(db: Session, visit_id: str, actor: User) -> Visit:
    visit = visit_store.find_by_id(db, visit_id)
    if not visit:
        raise VisitNotFound()
    if not can_act_on_visit(actor, visit):
        raise Unauthorized()
    return visit


# -- create -------------------------------------------------------------------


def create_walk_in_visit(
    db: Session,
    *,
    name: str | None,
    email: str | None,
    contact: str | None,
    purpose: str | None,
    company: str | None,
    host_name: str | None,
    host_contact: str | None = None,
    photo: str | None = None,
    field_errors: dict[str, str] | None = None,
) -> VisitOutcome:
    """Unauthenticated front-desk request; the host is looked up by name.

    ``field_errors`` carries problems the caller found before getting here
    (a rejected photo upload) so they are reported with everything else.
    """
    settings = get_settings()
    started = perf_counter()

    required = {
        "name": ("Visitor name", name),
        "contact": ("Contact number", contact),
        "purpose": ("Purpose of visit", purpose),
        "hostName": ("Host name", host_name),
    }
    if settings.REQUIRE_COMPANY:
        required["company"] = ("Company name", company)
    if settings.REQUIRE_WALK_IN_PHOTO:
        required["photo"] = ("Photo", photo)
    errors = _missing(required)
    visitor_email = _clean(email).lower()
    _check_email(errors, "email", visitor_email)
    errors.update(field_errors or {})
    if errors:
        raise ValidationFailed(errors)

    host = identity_service.resolve_host(db, HostByName(_clean(host_name)))

    visit = visit_store.create(
        db,
        visitor_name=_clean(name),
        visitor_email=visitor_email or None,
        visitor_contact=_clean(contact),
        host_id=host.id,
        host_name=host.full_name,
        host_contact=_clean(host_contact) or host.contact_number,
        purpose=_clean(purpose),
        company=_clean(company),
        photo=photo,
        status=VisitStatus.pending.value,
        requested_at=utcnow(),
    )
    audit_service.record_transition(db, visit.id, "visit.created", None, visit.status, meta={"path": "walk_in"})

    notification = dispatch_visit_event(
        db,
        VisitEvent(visit, VISIT_CREATED, Recipient(user_id=host.id, email=host.email, name=host.full_name)),
    )
    logger.info(
        "visit.walk_in created in %.1fms visit_id=%s host_id=%s notified=%s",
        (perf_counter() - started) * 1000,
        visit.id,
        host.id,
        notification["sent"],
    )
    return VisitOutcome(visit, notification)


def create_visitor_request(
    db: Session,
    visitor: User,
    *,
    host_id: str | None,
    purpose: str | None,
    company: str | None,
    photo: str | None = None,
    start_time: Any = None,
    end_time: Any = None,
    notes: str | None = None,
) -> VisitOutcome:
    settings = get_settings()
    required = {
        "hostId": ("Host", host_id),
        "purpose": ("Purpose of visit", purpose),
    }
    if settings.REQUIRE_COMPANY:
        required["company"] = ("Company name", company)
    errors = _missing(required)
    if errors:
        raise ValidationFailed(errors)

    window_start = window_end = None
    if start_time not in (None, "") or end_time not in (None, ""):
        window_start, window_end = validate_time_window(start_time, end_time, max_window=_max_window())

    host = identity_service.resolve_host(db, HostById(_clean(host_id)))

    visit = visit_store.create(
        db,
        visitor_id=visitor.id,
        visitor_name=visitor.full_name,
        visitor_email=visitor.email,
        visitor_contact=visitor.contact_number,
        host_id=host.id,
        host_name=host.full_name,
        host_contact=host.contact_number,
        purpose=_clean(purpose),
        company=_clean(company),
        photo=photo,
        notes=_clean(notes) or None,
        status=VisitStatus.pending.value,
        requested_at=utcnow(),
        start_time=window_start,
        end_time=window_end,
    )
    audit_service.record_transition(
        db, visit.id, "visit.created", None, visit.status, actor_user_id=visitor.id, meta={"path": "visitor"}
    )
    notification = dispatch_visit_event(
        db,
        VisitEvent(visit, VISIT_CREATED, Recipient(user_id=host.id, email=host.email, name=host.full_name)),
    )
    logger.info("visit.request created visit_id=%s visitor_id=%s host_id=%s", visit.id, visitor.id, host.id)
    return VisitOutcome(visit, notification)


def create_pre_approval(
    db: Session,
    host: User,
    *,
    visitor_name: str | None,
    visitor_email: str | None,
    visitor_contact: str | None,
    purpose: str | None,
    company: str | None,
    start_time: Any,
    end_time: Any,
    notes: str | None = None,
) -> VisitOutcome:
    if not host.is_host:
        raise Unauthorized("Only hosts can pre-approve visits")

    settings = get_settings()
    required = {
        "visitorName": ("Visitor name", visitor_name),
        "purpose": ("Purpose of visit", purpose),
    }
    if settings.REQUIRE_COMPANY:
        required["company"] = ("Company name", company)
    errors = _missing(required)
    email = _clean(visitor_email).lower()
    _check_email(errors, "visitorEmail", email, required=True)
    if errors:
        raise ValidationFailed(errors)

    start, end = validate_time_window(start_time, end_time, max_window=_max_window())
    registered = identity_service.find_by_email(db, email, role=UserRole.visitor)

    fields = dict(
        id=str(uuid.uuid4()),
        visitor_id=registered.id if registered else None,
        visitor_name=capitalize_name(visitor_name),
        visitor_email=email,
        visitor_contact=_clean(visitor_contact),
        host_id=host.id,
        host_name=host.full_name,
        host_contact=host.contact_number,
        purpose=_clean(purpose),
        company=_clean(company),
        notes=_clean(notes) or None,
        status=VisitStatus.pre_approved.value,
        requested_at=utcnow(),
        start_time=start,
        end_time=end,
        approved_by=host.id,
    )
    qr_id, qr_code = generate_visitor_qr(Visit(**fields))
    visit = visit_store.create(db, qr_id=qr_id, qr_code=qr_code, **fields)
    audit_service.record_transition(
        db, visit.id, "visit.pre_approved", None, visit.status, actor_user_id=host.id, meta={"qrId": qr_id}
    )

    notification = dispatch_visit_event(
        db,
        VisitEvent(
            visit,
            VISIT_CREATED,
            Recipient(user_id=visit.visitor_id, email=visit.visitor_email, name=visit.visitor_name),
        ),
    )
    logger.info("visit.pre_approval created visit_id=%s host_id=%s qr_id=%s", visit.id, host.id, qr_id)
    return VisitOutcome(visit, notification, extra={"qrCode": visit.qr_code})


# -- transitions ----------------------------------------------------------------


def decide_visit(db: Session, visit_id: str, decision: str | None, actor: User) -> VisitOutcome:
    target = DECISION_ALIASES.get(_clean(decision).lower())
    if target is None:
        raise ValidationFailed({"status": "Status must be approved or denied"})

    visit = _load_owned_visit(db, visit_id, actor)
    ensure_pending(visit)

    fields: dict[str, Any] = {}
    if target == VisitStatus.approved and get_settings().CHECK_IN_ON_APPROVAL:
        fields["check_in"] = utcnow()

    updated = visit_store.update_status(db, visit.id, VisitStatus.pending, target, fields)
    if updated is None:
        raise NotPending()
    audit_service.record_transition(
        db, updated.id, "visit.decided", VisitStatus.pending.value, updated.status, actor_user_id=actor.id
    )

    notification = dispatch_visit_event(
        db,
        VisitEvent(
            updated,
            VISIT_DECIDED,
            Recipient(user_id=updated.visitor_id, email=updated.visitor_email, name=updated.visitor_name),
        ),
    )
    logger.info("visit.decided visit_id=%s status=%s host_id=%s", updated.id, updated.status, actor.id)
    return VisitOutcome(updated, notification)


def check_in_visit(db: Session, visit_id: str, actor: User) -> VisitOutcome:
    visit = _load_owned_visit(db, visit_id, actor)
    now = utcnow()
    ensure_can_check_in(visit, now)

    previous = normalize_status(visit.status).value
    updated = visit_store.update_status(db, visit.id, visit.status, VisitStatus.active, {"check_in": now})
    if updated is None:
        raise InvalidState("Visit changed while checking in; reload and try again")
    audit_service.record_transition(db, updated.id, "visit.checked_in", previous, updated.status, actor_user_id=actor.id)
    logger.info("visit.checked_in visit_id=%s from=%s", updated.id, previous)
    return VisitOutcome(updated)


def check_out_visit(db: Session, visit_id: str, actor: User) -> VisitOutcome:
    visit = _load_owned_visit(db, visit_id, actor)
    ensure_can_check_out(visit)

    now = utcnow()
    if visit.check_in is not None and now < visit.check_in:
        now = visit.check_in
    previous = normalize_status(visit.status).value
    updated = visit_store.update_status(db, visit.id, visit.status, VisitStatus.completed, {"check_out": now})
    if updated is None:
        raise InvalidState("Visitor is already checked out")
    audit_service.record_transition(db, updated.id, "visit.checked_out", previous, updated.status, actor_user_id=actor.id)
    logger.info("visit.checked_out visit_id=%s from=%s", updated.id, previous)
    return VisitOutcome(updated)


# -- reads ----------------------------------------------------------------------


def serialize_visit(visit: Visit, at: datetime | None = None) -> dict[str, Any]:
    at = at or utcnow()
    shown = derived_status(visit, at)
    data: dict[str, Any] = {
        "id": visit.id,
        "visitorId": visit.visitor_id,
        "name": visit.visitor_name,
        "email": visit.visitor_email,
        "contact": visit.visitor_contact,
        "purpose": visit.purpose,
        "company": visit.company,
        "photo": visit.photo,
        "notes": visit.notes,
        "hostId": visit.host_id,
        "hostName": capitalize_name(visit.host_name),
        "hostContact": visit.host_contact,
        "status": visit.status,
        "displayStatus": shown.value,
        "statusFormatted": STATUS_LABELS.get(shown, shown.value.title()),
        "isActive": is_active(visit),
        "isExpired": is_expired(visit, at),
        "canDecide": visit.status == VisitStatus.pending.value,
        "requestedAt": visit.requested_at.isoformat() if visit.requested_at else None,
        "checkIn": visit.check_in.isoformat() if visit.check_in else None,
        "checkOut": visit.check_out.isoformat() if visit.check_out else None,
        "checkInFormatted": format_timestamp(visit.check_in, "Not checked in"),
        "checkOutFormatted": format_timestamp(visit.check_out, "Not checked out"),
    }
    if visit.start_time or visit.end_time:
        data["preApproval"] = {
            "startTime": visit.start_time.isoformat() if visit.start_time else None,
            "endTime": visit.end_time.isoformat() if visit.end_time else None,
            "qrId": visit.qr_id,
            "approvedBy": visit.approved_by,
            "isExpired": is_expired(visit, at),
        }
    return data


def list_host_visits(db: Session, host: User) -> list[dict[str, Any]]:
    return [serialize_visit(visit) for visit in visit_store.find_by_host(db, host.id)]


def list_active_visits(db: Session, host: User) -> list[dict[str, Any]]:
    rows = visit_store.find_by_host(db, host.id, statuses=OPEN_STATUSES, open_only=True)
    return [serialize_visit(visit) for visit in rows]


def list_pre_approved_visits(db: Session, host: User) -> list[dict[str, Any]]:
    rows = visit_store.find_by_host(db, host.id, statuses=[VisitStatus.pre_approved])
    now = utcnow()
    return [serialize_visit(visit, now) for visit in rows]


def list_visitor_visits(db: Session, visitor: User) -> list[dict[str, Any]]:
    return [serialize_visit(visit) for visit in visit_store.find_by_visitor(db, visitor.id, visitor.email)]


def _range_bound(value: str | None, label: str, errors: dict[str, str], end_of_day: bool = False) -> datetime | None:
    raw = _clean(value)
    if not raw:
        errors[label] = f"{label} is required"
        return None
    try:
        parsed = parse_timestamp(raw)
    except ValueError:
        errors[label] = f"{label} must be a valid date"
        return None
    # A bare date as the upper bound covers the whole day.
    if end_of_day and len(raw) == 10:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


def list_visits_by_date_range(
    db: Session, host: User, start_date: str | None, end_date: str | None
) -> list[dict[str, Any]]:
    errors: dict[str, str] = {}
    start = _range_bound(start_date, "startDate", errors)
    end = _range_bound(end_date, "endDate", errors, end_of_day=True)
    if start and end and end < start:
        errors["endDate"] = "endDate must not be before startDate"
    if errors:
        raise ValidationFailed(errors)
    return [serialize_visit(visit) for visit in visit_store.find_by_date_range(db, start, end, host_id=host.id)]


def get_visitor_pass(db: Session, visit_id: str, actor: User) -> dict[str, Any]:
    visit = visit_store.find_by_id(db, visit_id)
    owns = visit is not None and (
        can_act_on_visit(actor, visit)
        or (actor.id and actor.id == visit.visitor_id)
        or (visit.visitor_email and visit.visitor_email == actor.email)
    )
    # Non-owners get the same answer as for a missing visit.
    if not owns:
        raise VisitNotFound()
    now = utcnow()
    stored = normalize_status(visit.status)
    # A pass is handed out ahead of the window; only a closed window voids it.
    window_closed = stored == VisitStatus.pre_approved and (visit.end_time is None or now > visit.end_time)
    if stored not in PASS_STATUSES or window_closed:
        raise InvalidState("A pass is only available for approved or pre-approved visits")

    data = serialize_visit(visit, now)
    data["qrCode"] = visit.qr_code
    data["passIssuedAt"] = now.isoformat()
    return data


def get_visit_history(db: Session, visit_id: str, actor: User) -> list[dict[str, Any]]:
    visit = _load_owned_visit(db, visit_id, actor)
    return audit_service.list_visit_history(db, visit.id)
