import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import AppException, ValidationFailed
from app.core.security import create_access_token, hash_password, verify_password
from app.db.models import User, UserRole
from app.schemas.auth import AuthResponse, AuthUser, is_valid_email
from app.services.lifecycle import capitalize_name

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def to_auth_user(user: User) -> AuthUser:
    return AuthUser(
        id=user.id,
        fullName=user.full_name,
        email=user.email,
        role=user.role.value,
        department=user.department,
        contactNumber=user.contact_number,
        status="active" if user.is_active else "inactive",
    )


def _issue_token(user: User) -> AuthResponse:
    token = create_access_token(user.id, user.role.value, name=user.full_name)
    return AuthResponse(accessToken=token, user=to_auth_user(user))


def register(
    db: Session,
    full_name: str,
    email: str,
    password: str,
    role: str,
    contact_number: str,
    department: str | None = None,
) -> AuthResponse:
    errors: dict[str, str] = {}
    name = capitalize_name(full_name)
    normalized_email = (email or "").strip().lower()
    if not name:
        errors["fullName"] = "Name is required"
    if not is_valid_email(normalized_email):
        errors["email"] = "Please enter a valid email"
    if len(password or "") < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if role not in {r.value for r in UserRole}:
        errors["role"] = "Invalid role selected"
    if not (contact_number or "").strip():
        errors["contactNumber"] = "Contact number is required"
    if role == UserRole.host.value and not (department or "").strip():
        errors["department"] = "Department is required for hosts"
    if errors:
        raise ValidationFailed(errors)

    if db.query(User).filter(User.email == normalized_email).first():
        raise AppException("Email address is already registered", status_code=400)

    user = User(
        full_name=name,
        email=normalized_email,
        password_hash=hash_password(password),
        role=UserRole(role),
        department=(department or "").strip() or None,
        contact_number=contact_number.strip(),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AppException("Email address is already registered", status_code=400) from exc
    db.refresh(user)
    logger.info("user registered user_id=%s role=%s", user.id, user.role.value)
    return _issue_token(user)


def login(db: Session, email: str, password: str) -> AuthResponse:
    user = db.query(User).filter(User.email == (email or "").strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        raise AppException("Invalid email or password", status_code=401)
    if not user.is_active:
        raise AppException("Account is inactive. Please contact admin.", status_code=401)
    return _issue_token(user)


def update_profile(
    db: Session,
    user: User,
    full_name: str | None = None,
    department: str | None = None,
    contact_number: str | None = None,
) -> AuthUser:
    if full_name and full_name.strip():
        user.full_name = capitalize_name(full_name)
    if department and department.strip() and user.is_host:
        user.department = department.strip()
    if contact_number and contact_number.strip():
        user.contact_number = contact_number.strip()
    db.commit()
    db.refresh(user)
    return to_auth_user(user)
