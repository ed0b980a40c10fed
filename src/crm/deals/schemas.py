"""Pydantic schemas for the deal pipeline.

Defines the structured types passed between the API, DealService and
DealRepository:
- Enums: StageType, DealStatus, ActivityType, ChecklistStatus
- Deal types: PipelineStage, ChecklistTemplateItem, DealTypeRead
- Deals: DealCreate/Update/Read/Filter
- Checklist: ChecklistItemCreate/Update/Read
- Activity log: ActivityCreate/Read
- Stage changes: StageChange (planned writes), StageChangeResult
- Pipeline view: PipelineStageView, PipelineSummary, PipelineView
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class StageType(str, Enum):
    """Kind of pipeline stage. Won and lost stages are terminal."""

    NORMAL = "normal"
    WON = "won"
    LOST = "lost"


class DealStatus(str, Enum):
    ACTIVE = "active"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class ActivityType(str, Enum):
    STAGE_CHANGE = "stage_change"
    NOTE = "note"
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    SHOWING = "showing"
    DOCUMENT_UPLOAD = "document_upload"
    DOCUMENT_DELETE = "document_delete"
    MILESTONE_COMPLETE = "milestone_complete"
    FIELD_UPDATE = "field_update"
    OTHER = "other"


class ChecklistStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ── Deal Types ──────────────────────────────────────────────────────────────


class PipelineStage(BaseModel):
    """One stage of a deal type's pipeline."""

    code: str
    name: str
    order: int = 0
    type: StageType = StageType.NORMAL


class ChecklistTemplateItem(BaseModel):
    """Template for a checklist item created when a deal enters a trigger stage.

    ``days_offset`` is counted from the deal's expected close date (or the
    day of the transition when the deal has none). No offset means the
    item is created without a scheduled date.
    """

    name: str = Field(min_length=1, max_length=255)
    days_offset: int | None = None


class DealTypeRead(BaseModel):
    """Deal type as stored, with stages parsed."""

    id: str
    type_code: str
    type_name: str
    icon: str | None = None
    color: str | None = None
    pipeline_stages: list[PipelineStage] = Field(default_factory=list)
    enabled_fields: dict[str, Any] = Field(default_factory=dict)
    default_milestones: list[ChecklistTemplateItem] = Field(default_factory=list)
    is_active: bool = True

    def stage(self, code: str) -> PipelineStage | None:
        for stage in self.pipeline_stages:
            if stage.code == code:
                return stage
        return None


class DealTypeSettingsRead(BaseModel):
    """A user's checklist template for one deal type."""

    deal_type_id: str
    checklist_template: list[ChecklistTemplateItem] = Field(default_factory=list)
    updated_at: datetime | None = None


# ── Deals ───────────────────────────────────────────────────────────────────


class DealCreate(BaseModel):
    """Schema for creating a deal. The initial stage comes from the deal type."""

    deal_type_id: str
    client_id: str
    deal_name: str | None = Field(default=None, max_length=255)
    deal_value: float | None = Field(default=None, ge=0)
    commission_rate: float | None = Field(default=None, ge=0, le=100)
    commission_split_percent: float | None = Field(default=None, ge=0, le=100)
    expected_close_date: date | None = None
    deal_data: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    referral_source: str | None = Field(default=None, max_length=255)


class DealUpdate(BaseModel):
    """Partial update. Stage and status change only through change_stage."""

    deal_name: str | None = Field(default=None, min_length=1, max_length=255)
    client_id: str | None = None
    deal_value: float | None = Field(default=None, ge=0)
    commission_rate: float | None = Field(default=None, ge=0, le=100)
    commission_split_percent: float | None = Field(default=None, ge=0, le=100)
    expected_close_date: date | None = None
    deal_data: dict[str, Any] | None = None
    notes: str | None = None
    referral_source: str | None = Field(default=None, max_length=255)


class DealRead(BaseModel):
    """Deal as stored."""

    id: str
    deal_name: str
    deal_type_id: str
    client_id: str
    current_stage: str
    status: DealStatus = DealStatus.ACTIVE
    deal_value: float | None = None
    commission_rate: float | None = None
    commission_amount: float | None = None
    commission_split_percent: float | None = None
    agent_commission: float | None = None
    expected_close_date: date | None = None
    actual_close_date: date | None = None
    closed_at: datetime | None = None
    deal_data: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    lost_reason: str | None = None
    referral_source: str | None = None
    created_by: str
    assigned_to: str
    is_deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DealFilter(BaseModel):
    """Filter criteria for listing a user's deals."""

    client_id: str | None = None
    status: DealStatus | None = None
    deal_type_id: str | None = None
    limit: int = Field(default=50, ge=1, le=100)


# ── Checklist ───────────────────────────────────────────────────────────────


class ChecklistItemCreate(BaseModel):
    milestone_name: str = Field(min_length=1, max_length=255)
    scheduled_date: date | None = None
    notes: str | None = None


class ChecklistItemUpdate(BaseModel):
    milestone_name: str | None = Field(default=None, min_length=1, max_length=255)
    scheduled_date: date | None = None
    status: ChecklistStatus | None = None
    notes: str | None = None


class ChecklistItemRead(BaseModel):
    id: str
    deal_id: str
    milestone_name: str
    scheduled_date: date | None = None
    completed_date: date | None = None
    status: ChecklistStatus = ChecklistStatus.PENDING
    notes: str | None = None
    created_by: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Activity Log ────────────────────────────────────────────────────────────


class ActivityCreate(BaseModel):
    activity_type: ActivityType
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    old_stage: str | None = None
    new_stage: str | None = None


class ActivityRead(BaseModel):
    id: str
    deal_id: str
    activity_type: ActivityType
    title: str
    description: str | None = None
    old_stage: str | None = None
    new_stage: str | None = None
    created_by: str
    created_at: datetime | None = None


# ── Stage Changes ───────────────────────────────────────────────────────────


class StageChange(BaseModel):
    """Every write a stage transition performs, computed before any I/O.

    The repository applies ``deal_updates``, inserts ``checklist_items``
    and appends ``activities`` in one transaction, and only if the deal is
    still at ``from_stage`` when the row lock is taken.
    """

    deal_id: str
    from_stage: str
    to_stage: str
    stage_type: StageType
    deal_updates: dict[str, Any] = Field(default_factory=dict)
    checklist_items: list[ChecklistItemCreate] = Field(default_factory=list)
    activities: list[ActivityCreate] = Field(default_factory=list)


class StageChangeResult(BaseModel):
    id: str
    current_stage: str
    status: DealStatus
    milestones_created: int = 0


# ── Pipeline View ───────────────────────────────────────────────────────────


class PipelineStageView(BaseModel):
    code: str
    name: str
    type: StageType = StageType.NORMAL
    deals: list[DealRead] = Field(default_factory=list)
    count: int = 0
    total_value: float = 0.0


class PipelineSummary(BaseModel):
    total_pipeline_value: float = 0.0
    expected_commission: float = 0.0
    active_deals: int = 0


class PipelineView(BaseModel):
    deal_type_id: str | None = None
    stages: list[PipelineStageView] = Field(default_factory=list)
    summary: PipelineSummary = Field(default_factory=PipelineSummary)
