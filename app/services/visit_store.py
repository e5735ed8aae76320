"""Persistence for Visit rows.

Status changes go through ``update_status`` only: it issues a single UPDATE
keyed on the visit id and the status the caller read, so two requests racing
on the same visit cannot both win.
"""

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.db.models import Visit
from app.services.lifecycle import VisitStatus, utcnow


def create(db: Session, **fields: Any) -> Visit:
    visit = Visit(**fields)
    db.add(visit)
    db.commit()
    db.refresh(visit)
    return visit


def find_by_id(db: Session, visit_id: str) -> Visit | None:
    return db.query(Visit).filter(Visit.id == visit_id).first()


def find_by_qr_id(db: Session, qr_id: str) -> Visit | None:
    return db.query(Visit).filter(Visit.qr_id == qr_id).first()


def find_by_host(
    db: Session,
    host_id: str,
    statuses: Iterable[VisitStatus | str] | None = None,
    open_only: bool = False,
    limit: int = 200,
) -> list[Visit]:
    query = db.query(Visit).filter(Visit.host_id == host_id)
    if statuses is not None:
        query = query.filter(Visit.status.in_([VisitStatus(s).value for s in statuses]))
    if open_only:
        query = query.filter(Visit.check_out.is_(None))
    return query.order_by(Visit.requested_at.desc()).limit(limit).all()


def find_by_visitor(db: Session, visitor_id: str, email: str | None = None, limit: int = 200) -> list[Visit]:
    clauses = [Visit.visitor_id == visitor_id]
    if email:
        clauses.append(Visit.visitor_email == email.strip().lower())
    return (
        db.query(Visit)
        .filter(or_(*clauses))
        .order_by(Visit.requested_at.desc())
        .limit(limit)
        .all()
    )


def find_by_date_range(
    db: Session,
    start: datetime,
    end: datetime,
    host_id: str | None = None,
) -> list[Visit]:
    query = db.query(Visit).filter(Visit.requested_at >= start, Visit.requested_at <= end)
    if host_id:
        query = query.filter(Visit.host_id == host_id)
    return query.order_by(Visit.requested_at.desc()).all()


def _stored_value(status: VisitStatus | str) -> str:
    # Raw strings pass through so rows still holding a legacy spelling match.
    return status.value if isinstance(status, VisitStatus) else str(status)


def update_status(
    db: Session,
    visit_id: str,
    expected_status: VisitStatus | str,
    new_status: VisitStatus | str,
    fields: dict[str, Any] | None = None,
) -> Visit | None:
    """Move a visit from ``expected_status`` to ``new_status``.

    Returns the refreshed visit, or None when the row was not in the expected
    status any more (already decided, checked out, or missing).
    """
    values: dict[Any, Any] = {Visit.status: VisitStatus(new_status).value, Visit.updated_at: utcnow()}
    for name, value in (fields or {}).items():
        values[getattr(Visit, name)] = value

    updated = (
        db.query(Visit)
        .filter(Visit.id == visit_id, Visit.status == _stored_value(expected_status))
        .update(values, synchronize_session=False)
    )
    db.commit()
    if not updated:
        return None

    visit = find_by_id(db, visit_id)
    if visit is not None:
        db.refresh(visit)
    return visit
