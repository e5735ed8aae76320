import logging

from app.core.config import get_settings
from app.db.models import Visit
from app.services.lifecycle import derived_status
from app.socket.events import host_room
from app.socket.server import sio

settings = get_settings()
logger = logging.getLogger(__name__)


async def publish_visit_change(visit: Visit, event: str) -> None:
    """Push a visit change to its host's dashboard. Delivery problems are logged only."""
    if not visit.host_id:
        return
    try:
        await sio.emit(
            "dashboard.patch",
            {
                "data": {
                    "event": event,
                    "visit": {
                        "id": visit.id,
                        "visitorName": visit.visitor_name,
                        "status": derived_status(visit).value,
                        "time": visit.updated_at.isoformat() if visit.updated_at else None,
                    },
                }
            },
            room=host_room(visit.host_id),
            namespace=settings.DASHBOARD_NAMESPACE,
        )
    except Exception:
        logger.warning("dashboard.patch emit failed visit_id=%s event=%s", visit.id, event, exc_info=True)
