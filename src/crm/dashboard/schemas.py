"""Pydantic schemas for dashboard responses."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel

from src.crm.tasks.schemas import TaskRead


class ClosedComparison(BaseModel):
    won_last_90_days: int = 0
    lost_last_90_days: int = 0


class DashboardStats(BaseModel):
    pipeline_value: float = 0.0
    active_deals_count: int = 0
    total_clients: int = 0
    hot_deals_count: int = 0
    expected_commission: float = 0.0
    tasks_due_today: int = 0
    overdue_tasks: int = 0
    comparison: ClosedComparison = ClosedComparison()


class ClosingSoonDeal(BaseModel):
    id: str
    deal_name: str
    deal_value: float | None = None
    expected_close_date: date
    current_stage: str
    status: str
    client_id: str
    client_name: str | None = None
    deal_type_name: str | None = None
    deal_type_color: str | None = None


class UpcomingTask(TaskRead):
    is_overdue: bool = False
    is_today: bool = False


class ActivityItem(BaseModel):
    """One entry of the dashboard activity feed."""

    id: str
    type: Literal["task", "note", "deal"]
    title: str
    description: str
    date: datetime | None = None
    status: str | None = None
    priority: str | None = None
    client_id: str | None = None
    client_name: str | None = None
