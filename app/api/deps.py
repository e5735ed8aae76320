from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.security import decode_access_token
from app.db.models import User
from app.db.session import get_db
from app.services import identity_service

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active account; the result is the actor for every visit operation."""
    if not credentials:
        raise _unauthorized("No token, authorization denied")

    try:
        claims = decode_access_token(credentials.credentials)
    except ValueError as exc:
        raise _unauthorized(str(exc)) from exc

    user = identity_service.find_by_id(db, claims["sub"])
    if not user or not user.is_active:
        raise _unauthorized("User not found")
    return user


def require_roles(*roles: str):
    allowed = " or ".join(f"{role}s" for role in roles)

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role.value not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Only {allowed} can perform this action.",
            )
        return user

    return dependency
