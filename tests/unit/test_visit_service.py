"""
Tests for visit operations
==========================

Create, Decide, CheckIn and CheckOut against a real (in-memory) database.
"""

from datetime import timedelta

import pytest

from app.core.config import get_settings
from app.core.exceptions import (
    HostNotFound,
    InvalidState,
    InvalidTimeWindow,
    NotPending,
    Unauthorized,
    ValidationFailed,
    VisitNotFound,
)
from app.db.models import AuditLog, Notification, UserRole, Visit
from app.services import visit_service, visit_store
from app.services.lifecycle import utcnow


def _walk_in(db, **overrides):
    fields = dict(
        name="Walter Walkin",
        email="walter@example.com",
        contact="+15551112222",
        purpose="Interview",
        company="Acme",
        host_name="Alice Host",
        photo="uploads/walter.png",
    )
    fields.update(overrides)
    return visit_service.create_walk_in_visit(db, **fields)


def _pre_approve(db, host, window, **overrides):
    start, end = window()
    fields = dict(
        visitor_name="paula preapproved",
        visitor_email="Paula@Example.com",
        visitor_contact="+15553334444",
        purpose="Quarterly review",
        company="Globex",
        start_time=start,
        end_time=end,
    )
    fields.update(overrides)
    return visit_service.create_pre_approval(db, host, **fields)


# ============================================================================
# Create
# ============================================================================


class TestWalkIn:
    """Unauthenticated walk-in requests."""

    def test_creates_pending_visit(self, db, host) -> None:
        outcome = _walk_in(db)
        visit = outcome.visit
        assert visit.status == "pending"
        assert visit.host_id == host.id
        assert visit.host_name == "Alice Host"
        assert visit.check_in is None and visit.check_out is None

    def test_host_name_match_is_case_insensitive(self, db, host) -> None:
        outcome = _walk_in(db, host_name="  alice host ")
        assert outcome.visit.host_id == host.id

    def test_host_name_with_accented_capital(self, db, make_user) -> None:
        emile = make_user("Émile Zola", "emile@example.com")
        assert _walk_in(db, host_name="Émile Zola").visit.host_id == emile.id
        assert _walk_in(db, host_name="ÉMILE  ZOLA").visit.host_id == emile.id
        assert _walk_in(db, host_name="émile zola").visit.host_id == emile.id

    def test_notifies_host_in_app(self, db, host) -> None:
        outcome = _walk_in(db)
        assert outcome.notification["channels"]["inApp"] is True
        assert outcome.notification["channels"]["email"] is False
        rows = db.query(Notification).filter(Notification.user_id == host.id).all()
        assert [row.kind for row in rows] == ["visit.created"]

    def test_reports_every_missing_field(self, db, host) -> None:
        with pytest.raises(ValidationFailed) as exc_info:
            _walk_in(db, name="", contact=" ", purpose=None, company="", photo=None, email="not-an-email")
        assert set(exc_info.value.errors) == {"name", "contact", "purpose", "company", "photo", "email"}
        assert db.query(Visit).count() == 0

    def test_company_and_photo_follow_policy(self, db, host, monkeypatch) -> None:
        settings = get_settings()
        monkeypatch.setattr(settings, "REQUIRE_COMPANY", False)
        monkeypatch.setattr(settings, "REQUIRE_WALK_IN_PHOTO", False)
        outcome = _walk_in(db, company="", photo=None)
        assert outcome.visit.status == "pending"

    def test_unknown_host(self, db, host) -> None:
        with pytest.raises(HostNotFound):
            _walk_in(db, host_name="Nobody Here")
        assert db.query(Visit).count() == 0

    def test_ambiguous_host_name(self, db, make_user) -> None:
        make_user("Sam Lee", "sam1@example.com")
        make_user("Sam Lee", "sam2@example.com")
        with pytest.raises(HostNotFound, match="More than one host"):
            _walk_in(db, host_name="Sam Lee")
        assert db.query(Visit).count() == 0

    def test_inactive_host_is_not_found(self, db, make_user) -> None:
        make_user("Gone Host", "gone@example.com", is_active=False)
        with pytest.raises(HostNotFound):
            _walk_in(db, host_name="Gone Host")

    def test_visitor_account_is_not_a_host(self, db, visitor) -> None:
        with pytest.raises(HostNotFound):
            _walk_in(db, host_name="Victor Visitor")


class TestVisitorRequest:
    """Requests made by a signed-in visitor."""

    def test_creates_pending_visit(self, db, host, visitor) -> None:
        outcome = visit_service.create_visitor_request(
            db, visitor, host_id=host.id, purpose="Demo", company="Initech"
        )
        assert outcome.visit.status == "pending"
        assert outcome.visit.visitor_id == visitor.id
        assert outcome.visit.visitor_email == visitor.email

    def test_window_stays_pending(self, db, host, visitor, window) -> None:
        start, end = window()
        outcome = visit_service.create_visitor_request(
            db, visitor, host_id=host.id, purpose="Demo", company="Initech", start_time=start, end_time=end
        )
        assert outcome.visit.status == "pending"
        assert outcome.visit.start_time is not None

    def test_bad_window_persists_nothing(self, db, host, visitor, window) -> None:
        start, end = window(length=timedelta(hours=30))
        with pytest.raises(InvalidTimeWindow):
            visit_service.create_visitor_request(
                db, visitor, host_id=host.id, purpose="Demo", company="Initech", start_time=start, end_time=end
            )
        assert db.query(Visit).count() == 0

    def test_unknown_host_id(self, db, visitor) -> None:
        with pytest.raises(HostNotFound):
            visit_service.create_visitor_request(db, visitor, host_id="missing", purpose="Demo", company="X")


class TestPreApproval:
    """Host-created pre-approved visits."""

    def test_creates_pre_approved_visit_with_qr(self, db, host, window) -> None:
        outcome = _pre_approve(db, host, window)
        visit = outcome.visit
        assert visit.status == "pre_approved"
        assert visit.visitor_name == "Paula Preapproved"
        assert visit.visitor_email == "paula@example.com"
        assert visit.approved_by == host.id
        assert visit.qr_id
        assert visit.qr_code.startswith("data:image/svg+xml;base64,")
        assert outcome.to_response()["visit"]["qrCode"] == visit.qr_code

    def test_links_registered_visitor(self, db, host, make_user, window) -> None:
        paula = make_user("Paula Preapproved", "paula@example.com", role=UserRole.visitor)
        outcome = _pre_approve(db, host, window)
        assert outcome.visit.visitor_id == paula.id
        assert db.query(Notification).filter(Notification.user_id == paula.id).count() == 1

    @pytest.mark.parametrize(
        ("start_in", "length", "rule"),
        [
            (timedelta(hours=-1), timedelta(hours=2), "start_in_future"),
            (timedelta(hours=1), timedelta(hours=-1), "end_after_start"),
            (timedelta(hours=1), timedelta(hours=24, minutes=1), "max_window"),
        ],
    )
    def test_window_rejections_persist_nothing(self, db, host, window, start_in, length, rule) -> None:
        with pytest.raises(InvalidTimeWindow) as exc_info:
            _pre_approve(db, host, lambda: window(start_in=start_in, length=length))
        assert exc_info.value.rule == rule
        assert db.query(Visit).count() == 0
        assert db.query(AuditLog).count() == 0

    def test_missing_window(self, db, host, window) -> None:
        with pytest.raises(InvalidTimeWindow) as exc_info:
            _pre_approve(db, host, window, start_time=None, end_time=None)
        assert exc_info.value.rule == "required"

    def test_email_is_required(self, db, host, window) -> None:
        with pytest.raises(ValidationFailed) as exc_info:
            _pre_approve(db, host, window, visitor_email="")
        assert "visitorEmail" in exc_info.value.errors

    def test_visitor_cannot_pre_approve(self, db, visitor, window) -> None:
        with pytest.raises(Unauthorized):
            _pre_approve(db, visitor, window)


# ============================================================================
# Decide
# ============================================================================


class TestDecide:
    """Approve/deny a pending visit."""

    def test_approve(self, db, host) -> None:
        visit = _walk_in(db).visit
        outcome = visit_service.decide_visit(db, visit.id, "approved", host)
        assert outcome.visit.status == "approved"
        assert outcome.visit.check_in is None

    @pytest.mark.parametrize("decision", ["deny", "denied", "Rejected"])
    def test_deny_aliases(self, db, host, decision: str) -> None:
        visit = _walk_in(db).visit
        assert visit_service.decide_visit(db, visit.id, decision, host).visit.status == "denied"

    def test_invalid_decision(self, db, host) -> None:
        visit = _walk_in(db).visit
        with pytest.raises(ValidationFailed):
            visit_service.decide_visit(db, visit.id, "maybe", host)
        assert visit_store.find_by_id(db, visit.id).status == "pending"

    def test_double_decide_fails(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        with pytest.raises(NotPending):
            visit_service.decide_visit(db, visit.id, "approved", host)

    def test_approve_then_deny_keeps_approved(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        with pytest.raises(NotPending):
            visit_service.decide_visit(db, visit.id, "denied", host)
        assert visit_store.find_by_id(db, visit.id).status == "approved"

    def test_pre_approval_cannot_be_decided(self, db, host, window) -> None:
        visit = _pre_approve(db, host, window).visit
        with pytest.raises(NotPending):
            visit_service.decide_visit(db, visit.id, "approved", host)

    def test_other_host_is_unauthorized(self, db, host, other_host) -> None:
        visit = _walk_in(db).visit
        with pytest.raises(Unauthorized):
            visit_service.decide_visit(db, visit.id, "approved", other_host)
        assert visit_store.find_by_id(db, visit.id).status == "pending"

    def test_unknown_visit(self, db, host) -> None:
        with pytest.raises(VisitNotFound):
            visit_service.decide_visit(db, "missing", "approved", host)

    def test_check_in_on_approval_policy(self, db, host, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "CHECK_IN_ON_APPROVAL", True)
        visit = _walk_in(db).visit
        outcome = visit_service.decide_visit(db, visit.id, "approved", host)
        assert outcome.visit.check_in is not None
        assert outcome.to_response()["visit"]["isActive"] is True

    def test_stale_read_loses(self, db, host, monkeypatch) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "denied", host)
        db.expire_all()
        # Simulate a racing request that read the row while it was still pending.
        monkeypatch.setattr(visit_service, "ensure_pending", lambda v: None)
        with pytest.raises(NotPending):
            visit_service.decide_visit(db, visit.id, "approved", host)
        assert visit_store.find_by_id(db, visit.id).status == "denied"

    def test_notifies_visitor(self, db, host, visitor) -> None:
        visit = visit_service.create_visitor_request(
            db, visitor, host_id=host.id, purpose="Demo", company="Initech"
        ).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        kinds = [row.kind for row in db.query(Notification).filter(Notification.user_id == visitor.id)]
        assert kinds == ["visit.decided"]

    def test_dispatcher_failure_keeps_transition(self, db, host, monkeypatch) -> None:
        from app.services import email_service, notification_service

        def _boom(*args, **kwargs):
            raise RuntimeError("down")

        visit = _walk_in(db).visit
        monkeypatch.setattr(notification_service, "create_notification", _boom)
        monkeypatch.setattr(email_service, "send_email", _boom)
        outcome = visit_service.decide_visit(db, visit.id, "approved", host)
        assert outcome.notification["sent"] is False
        assert "down" in outcome.notification["error"]
        assert visit_store.find_by_id(db, visit.id).status == "approved"


# ============================================================================
# Check in / check out
# ============================================================================


class TestCheckInOut:
    """Arrival and departure."""

    def test_check_in_approved(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        outcome = visit_service.check_in_visit(db, visit.id, host)
        assert outcome.visit.status == "active"
        assert outcome.visit.check_in is not None

    def test_check_in_pre_approval_before_window(self, db, host, window) -> None:
        visit = _pre_approve(db, host, window).visit
        with pytest.raises(InvalidState, match="window is not open"):
            visit_service.check_in_visit(db, visit.id, host)

    def test_check_in_pre_approval_inside_window(self, db, host, window) -> None:
        visit = _pre_approve(db, host, window).visit
        visit.start_time = utcnow() - timedelta(minutes=10)
        db.commit()
        outcome = visit_service.check_in_visit(db, visit.id, host)
        assert outcome.visit.status == "active"

    @pytest.mark.parametrize("legacy", ["pre-approval", "pre-approved"])
    def test_check_in_row_with_legacy_status(self, db, host, window, legacy: str) -> None:
        visit = _pre_approve(db, host, window).visit
        visit.status = legacy
        visit.start_time = utcnow() - timedelta(minutes=10)
        db.commit()
        outcome = visit_service.check_in_visit(db, visit.id, host)
        assert outcome.visit.status == "active"
        history = db.query(AuditLog).filter(AuditLog.action == "visit.checked_in").one()
        assert history.from_status == "pre_approved"

    def test_check_out_active(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        visit_service.check_in_visit(db, visit.id, host)
        outcome = visit_service.check_out_visit(db, visit.id, host)
        assert outcome.visit.status == "completed"
        assert outcome.visit.check_out >= outcome.visit.check_in

    def test_check_out_approved_without_check_in(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        outcome = visit_service.check_out_visit(db, visit.id, host)
        assert outcome.visit.status == "completed"
        assert outcome.visit.check_out is not None

    def test_check_out_never_precedes_check_in(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        visit = visit_service.check_in_visit(db, visit.id, host).visit
        future = utcnow() + timedelta(minutes=5)
        visit.check_in = future
        db.commit()
        outcome = visit_service.check_out_visit(db, visit.id, host)
        assert outcome.visit.check_out == future

    def test_check_out_pending_fails(self, db, host) -> None:
        visit = _walk_in(db).visit
        with pytest.raises(InvalidState):
            visit_service.check_out_visit(db, visit.id, host)
        assert visit_store.find_by_id(db, visit.id).status == "pending"

    def test_check_out_twice_fails(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        visit_service.check_out_visit(db, visit.id, host)
        with pytest.raises(InvalidState, match="already checked out"):
            visit_service.check_out_visit(db, visit.id, host)

    def test_check_out_other_host(self, db, host, other_host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        with pytest.raises(Unauthorized):
            visit_service.check_out_visit(db, visit.id, other_host)


# ============================================================================
# Reads
# ============================================================================


class TestReads:
    """Listings, pass and history."""

    def test_serialize_shows_expired_without_writing(self, db, host, window) -> None:
        visit = _pre_approve(db, host, window).visit
        visit.start_time = utcnow() - timedelta(hours=3)
        visit.end_time = utcnow() - timedelta(hours=1)
        db.commit()
        data = visit_service.list_pre_approved_visits(db, host)[0]
        assert data["displayStatus"] == "expired"
        assert data["preApproval"]["isExpired"] is True
        assert visit_store.find_by_id(db, visit.id).status == "pre_approved"

    def test_active_visits_excludes_closed(self, db, host) -> None:
        open_visit = _walk_in(db).visit
        denied = _walk_in(db).visit
        visit_service.decide_visit(db, denied.id, "denied", host)
        ids = [row["id"] for row in visit_service.list_active_visits(db, host)]
        assert ids == [open_visit.id]

    def test_host_listing_is_scoped(self, db, host, other_host) -> None:
        _walk_in(db)
        assert len(visit_service.list_host_visits(db, host)) == 1
        assert visit_service.list_host_visits(db, other_host) == []

    def test_visitor_sees_pre_approval_by_email(self, db, host, make_user, window) -> None:
        _pre_approve(db, host, window)
        paula = make_user("Paula P", "paula@example.com", role=UserRole.visitor)
        assert len(visit_service.list_visitor_visits(db, paula)) == 1

    def test_date_range(self, db, host) -> None:
        _walk_in(db)
        today = utcnow().date().isoformat()
        assert len(visit_service.list_visits_by_date_range(db, host, today, today)) == 1
        with pytest.raises(ValidationFailed) as exc_info:
            visit_service.list_visits_by_date_range(db, host, None, "garbage")
        assert set(exc_info.value.errors) == {"startDate", "endDate"}

    def test_pass_for_pre_approval(self, db, host, window) -> None:
        visit = _pre_approve(db, host, window).visit
        data = visit_service.get_visitor_pass(db, visit.id, host)
        assert data["qrCode"] == visit.qr_code

    def test_pass_hidden_from_strangers(self, db, host, other_host, window) -> None:
        visit = _pre_approve(db, host, window).visit
        with pytest.raises(VisitNotFound):
            visit_service.get_visitor_pass(db, visit.id, other_host)

    def test_no_pass_for_pending(self, db, host) -> None:
        visit = _walk_in(db).visit
        with pytest.raises(InvalidState):
            visit_service.get_visitor_pass(db, visit.id, host)

    def test_history(self, db, host) -> None:
        visit = _walk_in(db).visit
        visit_service.decide_visit(db, visit.id, "approved", host)
        visit_service.check_out_visit(db, visit.id, host)
        history = visit_service.get_visit_history(db, visit.id, host)
        assert [(row["from"], row["to"]) for row in history] == [
            (None, "pending"),
            ("pending", "approved"),
            ("approved", "completed"),
        ]
