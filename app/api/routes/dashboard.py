from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import require_roles
from app.db.models import User
from app.db.session import get_db
from app.services.dashboard_service import get_dashboard_overview

router = APIRouter()


@router.get("/overview")
def dashboard_overview(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("host")),
):
    return {"data": get_dashboard_overview(db, host_id=user.id)}
