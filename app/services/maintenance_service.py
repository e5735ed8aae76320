"""One-off data repairs run at startup.

Older visit rows were keyed by host name and used a different status
vocabulary. These helpers bring them onto the canonical schema; each one is
idempotent and returns how many rows it touched.
"""

import logging

from sqlalchemy.orm import Session

from app.core.exceptions import HostNotFound
from app.db.models import User, Visit
from app.services import identity_service
from app.services.lifecycle import LEGACY_STATUS_ALIASES, capitalize_name

logger = logging.getLogger(__name__)


def migrate_legacy_statuses(db: Session) -> int:
    changed = 0
    for legacy, canonical in LEGACY_STATUS_ALIASES.items():
        changed += (
            db.query(Visit)
            .filter(Visit.status == legacy)
            .update({Visit.status: canonical.value}, synchronize_session=False)
        )
    db.commit()
    return changed


def normalize_names(db: Session) -> int:
    changed = 0
    for user in db.query(User).all():
        formatted = capitalize_name(user.full_name)
        if formatted and formatted != user.full_name:
            user.full_name = formatted
            changed += 1
    for visit in db.query(Visit).all():
        formatted = capitalize_name(visit.host_name)
        if formatted and formatted != visit.host_name:
            visit.host_name = formatted
            changed += 1
    db.commit()
    return changed


def link_legacy_hosts(db: Session) -> int:
    """Attach a host id to rows that only carry a host name, when the name is unambiguous."""
    linked = 0
    for visit in db.query(Visit).filter(Visit.host_id.is_(None)).all():
        try:
            host = identity_service.find_active_host_by_name(db, visit.host_name)
        except HostNotFound:
            logger.warning("legacy visit %s keeps name-only host %r", visit.id, visit.host_name)
            continue
        visit.host_id = host.id
        linked += 1
    db.commit()
    return linked


def run_startup_repairs(db: Session) -> dict[str, int]:
    result = {
        "statuses": migrate_legacy_statuses(db),
        "names": normalize_names(db),
        "hosts": link_legacy_hosts(db),
    }
    if any(result.values()):
        logger.info("startup repairs applied %s", result)
    return result
