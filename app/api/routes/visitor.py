import asyncio
import logging
from time import perf_counter

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, require_roles
from app.core.exceptions import ValidationFailed
from app.db.models import User
from app.db.session import get_db
from app.schemas.visitor import PreApprovalCreate, VisitDecisionPayload, VisitorRequestCreate
from app.services import visit_service
from app.services.upload_service import discard_photo, save_photo
from app.socket.broadcast import publish_visit_change

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/visit-request", status_code=201)
async def walk_in_request(
    name: str | None = Form(None),
    email: str | None = Form(None),
    contact: str | None = Form(None),
    purpose: str | None = Form(None),
    company: str | None = Form(None),
    hostName: str | None = Form(None),
    hostContact: str | None = Form(None),
    photo: UploadFile | None = File(None),
    db: Session = Depends(get_db),
):
    started = perf_counter()
    phase = "save_photo"
    photo_path = None
    photo_errors: dict[str, str] = {}
    try:
        try:
            photo_path = await save_photo(photo)
        except ValidationFailed as exc:
            photo_errors = exc.errors

        phase = "create_visit"
        outcome = await asyncio.to_thread(
            visit_service.create_walk_in_visit,
            db,
            name=name,
            email=email,
            contact=contact,
            purpose=purpose,
            company=company,
            host_name=hostName,
            host_contact=hostContact,
            photo=photo_path,
            field_errors=photo_errors,
        )
    except Exception:
        discard_photo(photo_path)
        logger.info(
            "visitor.request rejected in %.1fms phase=%s host_name=%r",
            (perf_counter() - started) * 1000,
            phase,
            hostName,
        )
        raise

    await publish_visit_change(outcome.visit, "visit.created")
    return {"data": outcome.to_response()}


@router.post("/requests", status_code=201)
async def visitor_request(
    payload: VisitorRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("visitor")),
):
    outcome = await asyncio.to_thread(
        visit_service.create_visitor_request,
        db,
        user,
        host_id=payload.hostId,
        purpose=payload.purpose,
        company=payload.company,
        notes=payload.notes,
        start_time=payload.startTime,
        end_time=payload.endTime,
    )
    await publish_visit_change(outcome.visit, "visit.created")
    return {"data": outcome.to_response()}


@router.post("/preapprove", status_code=201)
async def pre_approve(
    payload: PreApprovalCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    outcome = await asyncio.to_thread(
        visit_service.create_pre_approval,
        db,
        user,
        visitor_name=payload.visitorName,
        visitor_email=payload.visitorEmail,
        visitor_contact=payload.visitorContact,
        purpose=payload.purpose,
        company=payload.company,
        start_time=payload.startTime,
        end_time=payload.endTime,
        notes=payload.notes,
    )
    await publish_visit_change(outcome.visit, "visit.pre_approved")
    return {"data": outcome.to_response()}


@router.get("/pre-approved-visits")
def pre_approved_visits(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    return {"data": visit_service.list_pre_approved_visits(db, user)}


@router.get("/host-requests")
def host_requests(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    return {"data": visit_service.list_host_visits(db, user)}


@router.get("/active-visits")
def active_visits(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    return {"data": visit_service.list_active_visits(db, user)}


@router.get("/date-range")
def visits_by_date_range(
    startDate: str | None = None,
    endDate: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    return {"data": visit_service.list_visits_by_date_range(db, user, startDate, endDate)}


@router.put("/approve-visit/{visit_id}")
async def decide_visit(
    visit_id: str,
    payload: VisitDecisionPayload,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    outcome = await asyncio.to_thread(visit_service.decide_visit, db, visit_id, payload.status, user)
    await publish_visit_change(outcome.visit, "visit.decided")
    return {"data": outcome.to_response()}


@router.put("/checkin/{visit_id}")
async def check_in(
    visit_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    outcome = await asyncio.to_thread(visit_service.check_in_visit, db, visit_id, user)
    await publish_visit_change(outcome.visit, "visit.checked_in")
    return {"data": outcome.to_response()}


@router.put("/checkout/{visit_id}")
async def check_out(
    visit_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    outcome = await asyncio.to_thread(visit_service.check_out_visit, db, visit_id, user)
    await publish_visit_change(outcome.visit, "visit.checked_out")
    return {"data": outcome.to_response()}


@router.get("/my-visits")
def my_visits(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("visitor")),
):
    return {"data": visit_service.list_visitor_visits(db, user)}


@router.get("/{visit_id}/pass")
def visitor_pass(
    visit_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"data": visit_service.get_visitor_pass(db, visit_id, user)}


@router.get("/{visit_id}/history")
def visit_history(
    visit_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    return {"data": visit_service.get_visit_history(db, visit_id, user)}
