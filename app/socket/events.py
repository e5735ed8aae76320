import logging

from app.core.config import get_settings
from app.core.security import decode_access_token
from app.db.session import SessionLocal
from app.services.dashboard_service import get_dashboard_overview

settings = get_settings()
logger = logging.getLogger(__name__)


def host_room(host_id: str) -> str:
    return f"host:{host_id}"


def _resolve_claims(auth: dict | None) -> dict:
    token = (auth or {}).get("token")
    if not token:
        return {}
    try:
        return decode_access_token(token)
    except ValueError:
        return {}


def register_socket_events(sio):
    namespace = settings.DASHBOARD_NAMESPACE

    @sio.event(namespace=namespace)
    async def connect(sid, environ, auth):
        claims = _resolve_claims(auth)
        user_id = claims.get("sub")
        # Only hosts have a dashboard; everybody else is turned away.
        if not user_id or claims.get("role") != "host":
            return False
        await sio.save_session(sid, {"hostId": user_id}, namespace=namespace)
        await sio.enter_room(sid, host_room(user_id), namespace=namespace)
        await sio.emit(
            "dashboard.snapshot",
            {"data": {"message": "connected"}},
            to=sid,
            namespace=namespace,
        )
        logger.debug("dashboard connect sid=%s host_id=%s", sid, user_id)

    @sio.on("dashboard.subscribe", namespace=namespace)
    async def dashboard_subscribe(sid, data=None):
        session = await sio.get_session(sid, namespace=namespace)
        host_id = session.get("hostId")
        if not host_id:
            return {"ok": False, "error": "not_a_host"}
        db = SessionLocal()
        try:
            overview = get_dashboard_overview(db, host_id=host_id)
        finally:
            db.close()
        await sio.emit("dashboard.snapshot", {"data": overview}, to=sid, namespace=namespace)
        return {"ok": True}

    @sio.event(namespace=namespace)
    async def disconnect(sid):
        logger.debug("dashboard disconnect sid=%s", sid)
