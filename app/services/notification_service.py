from dataclasses import dataclass
from html import escape
import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.db.models import Notification, Visit
from app.services import email_service
from app.services.lifecycle import format_timestamp, utcnow

logger = logging.getLogger(__name__)

VISIT_CREATED = "visit.created"
VISIT_DECIDED = "visit.decided"


@dataclass(frozen=True)
class Recipient:
    user_id: str | None
    email: str | None
    name: str = ""


@dataclass(frozen=True)
class VisitEvent:
    visit: Visit
    event_type: str
    recipient: Recipient


def create_notification(db: Session, user_id: str, kind: str, payload: dict) -> Notification:
    notification = Notification(
        user_id=user_id,
        kind=kind,
        payload=json.dumps(payload),
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def _serialize(row: Notification) -> dict[str, Any]:
    return {
        "id": row.id,
        "kind": row.kind,
        "payload": json.loads(row.payload or "{}"),
        "readAt": row.read_at.isoformat() if row.read_at else None,
        "createdAt": row.created_at.isoformat(),
    }


def _inbox(db: Session, user_id: str, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query


def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> list[dict]:
    rows = _inbox(db, user_id, unread_only).order_by(Notification.created_at.desc()).limit(limit).all()
    return [_serialize(row) for row in rows]


def count_unread_notifications(db: Session, user_id: str) -> int:
    return _inbox(db, user_id, unread_only=True).count()


def mark_notification_read(db: Session, user_id: str, notification_id: str) -> dict | None:
    row = _inbox(db, user_id).filter(Notification.id == notification_id).first()
    if not row:
        return None
    row.read_at = row.read_at or utcnow()
    db.commit()
    db.refresh(row)
    return _serialize(row)


def mark_all_notifications_read(db: Session, user_id: str) -> int:
    updated = _inbox(db, user_id, unread_only=True).update(
        {Notification.read_at: utcnow()}, synchronize_session=False
    )
    db.commit()
    return updated


def _window_text(visit: Visit) -> str:
    if visit.start_time and visit.end_time:
        return f"{format_timestamp(visit.start_time, '')} - {format_timestamp(visit.end_time, '')} (UTC)"
    return format_timestamp(visit.requested_at, "")


def render_event(event: VisitEvent) -> tuple[str, str, str]:
    """Subject, text body and HTML body for an event.

    Visit fields come from unauthenticated forms, so every value placed in the
    HTML body is escaped.
    """
    visit = event.visit
    h = {
        "visitor_name": escape(visit.visitor_name or ""),
        "host_name": escape(visit.host_name or ""),
        "purpose": escape(visit.purpose or ""),
        "company": escape(visit.company or ""),
        "contact": escape(visit.visitor_contact or ""),
        "window": escape(_window_text(visit)),
        "status": escape(visit.status or ""),
    }
    if event.event_type == VISIT_CREATED and visit.status == "pre_approved":
        subject = f"Your visit with {visit.host_name} is pre-approved"
        text = (
            f"Hello {visit.visitor_name},\n\n"
            f"{visit.host_name} has pre-approved your visit.\n"
            f"Purpose: {visit.purpose}\nWindow: {_window_text(visit)}\n\n"
            "Show the attached QR code at reception."
        )
        qr_img = f'<img src="{escape(visit.qr_code)}" alt="Visitor pass QR" width="200"/>' if visit.qr_code else ""
        html = (
            f"<h2>Visit pre-approved</h2><p>{h['host_name']} has pre-approved your visit.</p>"
            f"<ul><li><strong>Purpose:</strong> {h['purpose']}</li>"
            f"<li><strong>Window:</strong> {h['window']}</li></ul>{qr_img}"
        )
        return subject, text, html

    if event.event_type == VISIT_CREATED:
        subject = f"New Visit Request - {visit.visitor_name} from {visit.company or 'N/A'}"
        text = (
            "You have received a new visit request.\n\n"
            f"Visitor: {visit.visitor_name}\nCompany: {visit.company}\nPurpose: {visit.purpose}\n"
            f"Contact: {visit.visitor_contact}\nTime: {_window_text(visit)}\n\n"
            "Please review and respond to this request."
        )
        html = (
            "<h2>New Visit Request</h2>"
            f"<ul><li><strong>Visitor:</strong> {h['visitor_name']}</li>"
            f"<li><strong>Company:</strong> {h['company']}</li>"
            f"<li><strong>Purpose:</strong> {h['purpose']}</li>"
            f"<li><strong>Contact:</strong> {h['contact']}</li>"
            f"<li><strong>Time:</strong> {h['window']}</li></ul>"
            "<p><strong>Action Required:</strong> Please review and respond to this request.</p>"
        )
        return subject, text, html

    status_text = "Approved" if visit.status == "approved" else "Denied"
    subject = f"Visit Request {status_text}"
    follow_up = "Please proceed to the reception desk at your scheduled time." if visit.status == "approved" else ""
    text = f"Your visit request has been {visit.status}.\n\nHost: {visit.host_name}\nPurpose: {visit.purpose}\n\n{follow_up}"
    html = (
        f"<h2>Visit Request {status_text}</h2><p>Your visit request has been {h['status']}.</p>"
        f"<p><strong>Host:</strong> {h['host_name']}</p><p><strong>Purpose:</strong> {h['purpose']}</p>"
        + (f"<p>{follow_up}</p>" if follow_up else "")
    )
    return subject, text, html


def dispatch_visit_event(db: Session, event: VisitEvent) -> dict[str, Any]:
    """Deliver an event in-app and by email. Never raises.

    The returned flag goes on the API response; a failed delivery must not
    undo the transition that triggered it.
    """
    visit = event.visit
    recipient = event.recipient
    in_app_sent = False
    email_sent = False
    errors: list[str] = []

    if recipient.user_id:
        try:
            create_notification(
                db,
                user_id=recipient.user_id,
                kind=event.event_type,
                payload={
                    "visitId": visit.id,
                    "status": visit.status,
                    "visitorName": visit.visitor_name,
                    "hostName": visit.host_name,
                    "purpose": visit.purpose,
                },
            )
            in_app_sent = True
        except Exception as exc:
            db.rollback()
            errors.append(f"in-app: {exc}")
            logger.exception("in-app notification failed event=%s visit_id=%s", event.event_type, visit.id)

    if recipient.email:
        try:
            subject, text, html = render_event(event)
            email_service.send_email(recipient.email, subject, text, html)
            email_sent = True
        except email_service.EmailNotConfigured as exc:
            errors.append(f"email: {exc}")
            logger.info("email skipped event=%s visit_id=%s: %s", event.event_type, visit.id, exc)
        except Exception as exc:
            errors.append(f"email: {exc}")
            logger.warning(
                "email notification failed event=%s visit_id=%s recipient=%s: %s",
                event.event_type,
                visit.id,
                recipient.email,
                exc,
            )

    sent = in_app_sent or email_sent
    return {
        "sent": sent,
        "recipient": recipient.email or recipient.user_id,
        "channels": {"inApp": in_app_sent, "email": email_sent},
        "status": "Notification sent" if sent else "Failed to send notification",
        "error": "; ".join(errors) or None,
    }
