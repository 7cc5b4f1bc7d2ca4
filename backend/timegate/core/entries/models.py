import uuid
from datetime import date, datetime
from enum import Enum
from sqlalchemy import CheckConstraint, Date, DateTime, Float, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from timegate.db.base import Base, TimestampMixin, SoftDeleteMixin


class EntryStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    QUESTIONED = "questioned"


class TimeEntry(Base, TimestampMixin, SoftDeleteMixin):
    """
    One billable time record.
    status: pending | approved | questioned, every state reachable from every other.
    Each change overwrites status_changed_at/by; status_changed_by NULL = system.
    edited_at moves only on content edits, never on status changes.
    """
    __tablename__ = "time_entries"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    organisation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("organisations.id", ondelete="SET NULL"), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EntryStatus.PENDING.value)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_changed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("hours > 0", name="ck_time_entry_hours_positive"),
        Index("ix_time_entries_project_status", "project_id", "status"),
    )


class EntryMessage(Base, TimestampMixin):
    """
    Threaded comment on a time entry.
    A non-NULL status_change makes the message the permanent audit record of
    that transition. Removal is soft (deleted_at) and per message only.
    """
    __tablename__ = "entry_messages"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    time_entry_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("time_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    parent_message_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("entry_messages.id", ondelete="SET NULL"), nullable=True)
    status_change: Mapped[str | None] = mapped_column(String(20), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
