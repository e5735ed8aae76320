from datetime import datetime, time

from sqlalchemy.orm import Session

from app.db.models import Visit
from app.services.lifecycle import VisitStatus, derived_status, is_active, utcnow


def get_dashboard_overview(db: Session, host_id: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    start_of_day = datetime.combine(now.date(), time.min)
    visits = (
        db.query(Visit)
        .filter(Visit.host_id == host_id)
        .order_by(Visit.requested_at.desc())
        .all()
    )
    shown = [(visit, derived_status(visit, now)) for visit in visits]

    pending = [v for v, status in shown if status == VisitStatus.pending]
    checked_in = [v for v in visits if is_active(v)]
    upcoming = [
        v for v, status in shown if status == VisitStatus.pre_approved or (
            status == VisitStatus.expired and v.start_time is not None and v.start_time > now
        )
    ]
    expired = [v for v, status in shown if status == VisitStatus.expired and v.end_time is not None and v.end_time < now]
    completed_today = [v for v in visits if v.check_out is not None and v.check_out >= start_of_day]

    return {
        "metrics": {
            "pendingApprovals": len(pending),
            "activeVisitors": len(checked_in),
            "upcomingPreApprovals": len(upcoming),
            "expiredPreApprovals": len(expired),
            "completedToday": len(completed_today),
            "totalVisits": len(visits),
        },
        "activity": [
            {
                "id": v.id,
                "event": f"{v.visitor_name} ({v.company or 'no company'})",
                "time": v.requested_at.isoformat(),
                "state": status.value,
            }
            for v, status in shown[:10]
        ],
        "waitingRoom": [
            {"id": v.id, "visitor": v.visitor_name, "purpose": v.purpose, "since": v.requested_at.isoformat()}
            for v in pending[:10]
        ],
    }
