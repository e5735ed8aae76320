from app.db.models.audit import AuditLog
from app.db.models.notification import Notification
from app.db.models.user import User, UserRole
from app.db.models.visit import Visit

__all__ = [
    "AuditLog",
    "Notification",
    "User",
    "UserRole",
    "Visit",
]
