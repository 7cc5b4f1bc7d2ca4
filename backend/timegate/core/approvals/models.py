import uuid
from datetime import datetime
from sqlalchemy import (
    JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column
from timegate.db.base import Base, TimestampMixin


class ProjectApprovalSettings(Base, TimestampMixin):
    """
    One row per project.
    approval_stages: ordered list of project roles, set only for multi_stage.
    auto_approve_after_days: 0 disables the sweep for this project.
    """
    __tablename__ = "project_approval_settings"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True)
    approval_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="required")
    approval_stages: Mapped[list | None] = mapped_column(JSON, nullable=True)
    auto_approve_after_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    require_all_entries_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_self_approve_no_client: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("auto_approve_after_days >= 0", name="ck_approval_settings_days"),
    )


class TimeSheetApproval(Base):
    """Sign-off of one stage for one sheet. Cleared when the sheet returns to draft."""
    __tablename__ = "time_sheet_approvals"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    time_sheet_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("time_sheets.id", ondelete="CASCADE"), nullable=False, index=True)
    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("time_sheet_id", "stage", name="uq_time_sheet_approval_stage"),)
