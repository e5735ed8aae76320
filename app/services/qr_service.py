import base64
import json
import secrets
from io import BytesIO
from typing import Any

import qrcode
from qrcode.image.svg import SvgPathImage
from sqlalchemy.orm import Session

from app.core.exceptions import Unauthorized, VisitNotFound
from app.db.models import User, Visit
from app.services import visit_store
from app.services.lifecycle import can_act_on_visit, derived_status, is_expired

# Field set printed on existing passes; scanners depend on these exact keys.
QR_PAYLOAD_FIELDS = ("id", "visitId", "visitorName", "visitorEmail", "startTime", "endTime", "hostName")


def new_qr_id() -> str:
    return secrets.token_hex(16)


def build_qr_payload(visit: Visit, qr_id: str) -> dict[str, Any]:
    return {
        "id": qr_id,
        "visitId": visit.id,
        "visitorName": visit.visitor_name,
        "visitorEmail": visit.visitor_email,
        "startTime": visit.start_time.isoformat() if visit.start_time else None,
        "endTime": visit.end_time.isoformat() if visit.end_time else None,
        "hostName": visit.host_name,
    }


def encode_qr_data_url(payload: dict[str, Any]) -> str:
    image = qrcode.make(json.dumps(payload, separators=(",", ":")), image_factory=SvgPathImage)
    buffer = BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def generate_visitor_qr(visit: Visit) -> tuple[str, str]:
    """Return ``(qr_id, data_url)`` for a pre-approved visit."""
    qr_id = new_qr_id()
    return qr_id, encode_qr_data_url(build_qr_payload(visit, qr_id))


def parse_qr_payload(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ValueError("QR payload is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError("QR payload must be an object")
    missing = [field for field in QR_PAYLOAD_FIELDS if field not in payload]
    if missing:
        raise ValueError(f"QR payload is missing fields: {', '.join(missing)}")
    return {field: payload[field] for field in QR_PAYLOAD_FIELDS}


def resolve_qr(db: Session, qr_id: str, actor: User) -> dict[str, Any]:
    visit = visit_store.find_by_qr_id(db, qr_id)
    if not visit:
        raise VisitNotFound("QR not found")
    if not can_act_on_visit(actor, visit):
        raise Unauthorized("QR belongs to another host")

    return {
        "qrId": visit.qr_id,
        "visitId": visit.id,
        "visitorName": visit.visitor_name,
        "hostName": visit.host_name,
        "startTime": visit.start_time.isoformat() if visit.start_time else None,
        "endTime": visit.end_time.isoformat() if visit.end_time else None,
        "status": derived_status(visit).value,
        "isExpired": is_expired(visit),
    }
