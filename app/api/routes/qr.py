import asyncio

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import require_roles
from app.core.exceptions import VisitNotFound
from app.db.models import User
from app.db.session import get_db
from app.services import visit_service, visit_store
from app.services.qr_service import resolve_qr
from app.socket.broadcast import publish_visit_change

router = APIRouter()


@router.get("/resolve/{qr_id}")
def resolve(
    qr_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    return {"data": resolve_qr(db, qr_id, user)}


@router.post("/check-in/{qr_id}")
async def check_in_by_qr(
    qr_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    visit = visit_store.find_by_qr_id(db, qr_id)
    if not visit:
        raise VisitNotFound("QR not found")
    outcome = await asyncio.to_thread(visit_service.check_in_visit, db, visit.id, user)
    await publish_visit_change(outcome.visit, "visit.checked_in")
    return {"data": outcome.to_response()}
