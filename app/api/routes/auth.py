from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.db.models import User
from app.db.session import get_db
from app.schemas.auth import HostDirectoryEntry, LoginRequest, ProfileUpdateRequest, RegisterRequest
from app.services import auth_service, identity_service

router = APIRouter()


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    data = auth_service.register(
        db=db,
        full_name=payload.fullName,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        contact_number=payload.contactNumber,
        department=payload.department,
    )
    return {"data": data.model_dump()}


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    data = auth_service.login(db=db, email=payload.email, password=payload.password)
    return {"data": data.model_dump()}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"data": auth_service.to_auth_user(user).model_dump()}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = auth_service.update_profile(
        db,
        user,
        full_name=payload.fullName,
        department=payload.department,
        contact_number=payload.contactNumber,
    )
    return {"data": data.model_dump()}


@router.get("/hosts")
def hosts(db: Session = Depends(get_db)):
    rows = identity_service.list_active_hosts(db)
    return {
        "data": [
            HostDirectoryEntry(
                id=row.id,
                fullName=row.full_name,
                department=row.department,
                contactNumber=row.contact_number,
            ).model_dump()
            for row in rows
        ]
    }
