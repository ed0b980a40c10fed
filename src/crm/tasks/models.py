"""Client task persistence model."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.crm.core.database import Base


class TaskModel(Base):
    """A to-do attached to a client and assigned to a user.

    Overdue-ness is never stored; it is derived from ``due_date`` at read
    time. ``completed_at`` is stamped only while status is ``closed``.
    """

    __tablename__ = "client_tasks"
    __table_args__ = (
        CheckConstraint("priority IN ('low', 'medium', 'high')", name="client_tasks_priority_valid"),
        CheckConstraint("status IN ('todo', 'in_progress', 'closed')", name="client_tasks_status_valid"),
        CheckConstraint("LENGTH(TRIM(title)) > 0", name="client_tasks_title_not_empty"),
        Index("idx_client_tasks_assigned_due", "assigned_to", "due_date"),
        Index("idx_client_tasks_client_id", "client_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    priority: Mapped[str] = mapped_column(String(20), default="medium", server_default="medium")
    status: Mapped[str] = mapped_column(String(20), default="todo", server_default="todo")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    assigned_to: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
