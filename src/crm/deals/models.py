"""Deal pipeline persistence models.

Five SQLAlchemy models:
- DealTypeModel: Pipeline definition (ordered stages, default checklist)
- DealModel: A deal moving through its type's pipeline
- ChecklistItemModel: Checklist/milestone rows attached to a deal
- DealActivityModel: Append-only activity log per deal
- UserDealTypeSettingsModel: Per-user checklist template for a deal type

Stage lists and checklist templates are JSON documents so new deal types
and stages need no schema change.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.crm.core.database import Base


class DealTypeModel(Base):
    """Pipeline definition such as residential sale or mortgage.

    ``pipeline_stages`` is a list of ``{code, name, order, type}`` objects
    where ``type`` is ``normal``, ``won`` or ``lost``. ``default_milestones``
    is a list of ``{name, days_offset}`` objects used when the deal enters
    its trigger stage.
    """

    __tablename__ = "deal_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    type_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    type_name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    pipeline_stages: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    enabled_fields: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    default_milestones: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    is_system: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class DealModel(Base):
    """A single deal.

    ``closed_at`` is non-null exactly when ``status`` is ``closed_won`` or
    ``closed_lost``. Deals are never hard-deleted.
    """

    __tablename__ = "deals"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'closed_won', 'closed_lost')",
            name="chk_deals_status",
        ),
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100",
            name="chk_deals_commission_rate",
        ),
        CheckConstraint(
            "commission_split_percent >= 0 AND commission_split_percent <= 100",
            name="chk_deals_commission_split",
        ),
        CheckConstraint("deal_value >= 0", name="chk_deals_value_positive"),
        Index("idx_deals_assigned_status", "assigned_to", "status"),
        Index("idx_deals_client_id", "client_id"),
        Index("idx_deals_expected_close", "expected_close_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    deal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    deal_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deal_types.id"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False
    )
    current_stage: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="active", server_default="active")
    deal_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    commission_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    commission_split_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    agent_commission: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deal_data: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    lost_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    referral_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    assigned_to: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class ChecklistItemModel(Base):
    """Checklist/milestone row belonging to exactly one deal."""

    __tablename__ = "deal_checklist_items"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')",
            name="chk_checklist_items_status",
        ),
        Index("idx_deal_checklist_items_deal_scheduled", "deal_id", "scheduled_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
    )
    milestone_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", server_default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
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


class DealActivityModel(Base):
    """Append-only log entry for a deal (stage changes, notes, calls ...)."""

    __tablename__ = "deal_activities"
    __table_args__ = (
        CheckConstraint(
            "activity_type IN ('stage_change', 'note', 'call', 'email', 'meeting', "
            "'showing', 'document_upload', 'document_delete', 'milestone_complete', "
            "'field_update', 'other')",
            name="chk_activities_type",
        ),
        Index("idx_deal_activities_deal_created", "deal_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
    )
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    old_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class UserDealTypeSettingsModel(Base):
    """A user's own checklist template for one deal type.

    ``checklist_template`` is a list of ``{name, days_offset?}`` objects.
    One row per user per deal type.
    """

    __tablename__ = "user_deal_type_settings"
    __table_args__ = (
        UniqueConstraint("user_id", "deal_type_id", name="uq_user_deal_type_settings"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    deal_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deal_types.id", ondelete="CASCADE"), nullable=False
    )
    checklist_template: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
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
