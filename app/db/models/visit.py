import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (Index("ix_visits_host_status_requested", "host_id", "status", "requested_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    visitor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    visitor_name: Mapped[str] = mapped_column(String(120), nullable=False)
    visitor_email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    visitor_contact: Mapped[str] = mapped_column(String(40), default="")

    # host_id is only empty on rows migrated from the name-keyed schema.
    host_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    host_name: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    host_contact: Mapped[str] = mapped_column(String(40), default="")

    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str] = mapped_column(String(120), default="")
    photo: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    check_in: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    check_out: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    qr_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True, index=True)
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    host = relationship("User", foreign_keys=[host_id])
    visitor = relationship("User", foreign_keys=[visitor_id])
