import uuid
from datetime import datetime, date
from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from timegate.db.base import Base, TimestampMixin, SoftDeleteMixin


class TimeSheet(Base, TimestampMixin, SoftDeleteMixin):
    """
    A grouping of entries submitted together for approval.
    status: draft → submitted → approved | rejected
    rejected → draft and submitted → draft are explicit reverts.
    Row-level locked on all transitions.
    """
    __tablename__ = "time_sheets"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    submitted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    organisation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("organisations.id", ondelete="SET NULL"), nullable=True, index=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    # billing account lives outside this service
    account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (Index("ix_time_sheets_project_status", "project_id", "status"),)


class TimeSheetEntry(Base):
    """
    Junction sheet ↔ entry. entry_edited_at snapshots the entry's last edit
    when it was added so later edits can be flagged as stale.
    approved_at / last_stage are this sheet's view of the entry.
    """
    __tablename__ = "time_sheet_entries"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    time_sheet_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("time_sheets.id", ondelete="CASCADE"), nullable=False, index=True)
    time_entry_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("time_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    entry_edited_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("time_sheet_id", "time_entry_id", name="uq_time_sheet_entry"),)
