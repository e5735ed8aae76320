from sqlalchemy.orm import Session

from app.core.exceptions import HostNotFound
from app.db.models import User, UserRole
from app.services.lifecycle import HostById, HostByName, HostRef, name_key


def find_by_id(db: Session, user_id: str) -> User | None:
    if not user_id:
        return None
    return db.query(User).filter(User.id == user_id).first()


def find_by_email(db: Session, email: str, role: UserRole | None = None) -> User | None:
    query = db.query(User).filter(User.email == (email or "").strip().lower())
    if role is not None:
        query = query.filter(User.role == role, User.is_active.is_(True))
    return query.first()


def list_active_hosts(db: Session) -> list[User]:
    return (
        db.query(User)
        .filter(User.role == UserRole.host, User.is_active.is_(True))
        .order_by(User.full_name.asc())
        .all()
    )


def find_active_host_by_name(db: Session, name: str) -> User:
    wanted = name_key(name)
    if not wanted:
        raise HostNotFound("Host name is required")

    # Folded in Python: SQLite's lower() only handles ASCII.
    rows = [host for host in list_active_hosts(db) if name_key(host.full_name) == wanted]
    if not rows:
        raise HostNotFound("Host not found")
    if len(rows) > 1:
        raise HostNotFound("More than one host matches that name; ask reception to pick the right host")
    return rows[0]


def find_active_host_by_id(db: Session, host_id: str) -> User:
    user = find_by_id(db, host_id)
    if not user or not user.is_active or user.role != UserRole.host:
        raise HostNotFound("Host not found")
    return user


def resolve_host(db: Session, ref: HostRef) -> User:
    if isinstance(ref, HostById):
        return find_active_host_by_id(db, ref.id)
    if isinstance(ref, HostByName):
        return find_active_host_by_name(db, ref.name)
    raise TypeError(f"Unsupported host reference: {ref!r}")
