import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.models import AuditLog


def record_transition(
    db: Session,
    visit_id: str,
    action: str,
    from_status: str | None,
    to_status: str,
    actor_user_id: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    row = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        visit_id=visit_id,
        from_status=from_status,
        to_status=to_status,
        meta_json=json.dumps(meta or {}, ensure_ascii=True, default=str),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_visit_history(db: Session, visit_id: str) -> list[dict[str, Any]]:
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.visit_id == visit_id)
        .order_by(AuditLog.created_at.asc())
        .all()
    )
    return [
        {
            "action": row.action,
            "from": row.from_status,
            "to": row.to_status,
            "actorId": row.actor_user_id,
            "at": row.created_at.isoformat(),
        }
        for row in rows
    ]
