"""Deal pipeline repository -- async persistence for deals and everything hanging off them.

Provides DealRepository with the session_factory callable pattern: each
method opens its own session via ``async for session in factory()``, so the
repository can be built once at startup and shared by every request.

Every deal query is scoped to the owning user (``assigned_to``) and skips
soft-deleted rows. Multi-row writes (stage change, create, update, delete)
are committed in one transaction together with their activity rows.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.deals.models import (
    ChecklistItemModel,
    DealActivityModel,
    DealModel,
    DealTypeModel,
    UserDealTypeSettingsModel,
)
from src.crm.deals.schemas import (
    ActivityCreate,
    ActivityRead,
    ChecklistItemCreate,
    ChecklistItemRead,
    ChecklistTemplateItem,
    DealFilter,
    DealRead,
    DealTypeRead,
    DealTypeSettingsRead,
    StageChange,
)

logger = structlog.get_logger(__name__)

_MONEY_FIELDS = frozenset({
    "deal_value",
    "commission_rate",
    "commission_amount",
    "commission_split_percent",
    "agent_commission",
})
_UUID_FIELDS = frozenset({"deal_type_id", "client_id"})


# ── Conversion Helpers ──────────────────────────────────────────────────────


def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    """Parse an id, returning None for anything that is not a UUID."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _as_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _to_column_values(values: dict[str, Any]) -> dict[str, Any]:
    """Coerce schema values (floats, string ids, enums) to column types."""
    out: dict[str, Any] = {}
    for key, value in values.items():
        if key in _MONEY_FIELDS and value is not None:
            value = Decimal(str(value))
        elif key in _UUID_FIELDS and value is not None:
            value = uuid.UUID(str(value))
        elif hasattr(value, "value") and not isinstance(value, (date, datetime)):
            value = value.value
        out[key] = value
    return out


def _model_to_deal_type(model: DealTypeModel) -> DealTypeRead:
    """Convert DealTypeModel to DealTypeRead schema."""
    return DealTypeRead(
        id=str(model.id),
        type_code=model.type_code,
        type_name=model.type_name,
        icon=model.icon,
        color=model.color,
        pipeline_stages=model.pipeline_stages or [],
        enabled_fields=model.enabled_fields or {},
        default_milestones=model.default_milestones or [],
        is_active=model.is_active,
    )


def _model_to_deal(model: DealModel) -> DealRead:
    """Convert DealModel to DealRead schema."""
    return DealRead(
        id=str(model.id),
        deal_name=model.deal_name,
        deal_type_id=str(model.deal_type_id),
        client_id=str(model.client_id),
        current_stage=model.current_stage,
        status=model.status,
        deal_value=_as_float(model.deal_value),
        commission_rate=_as_float(model.commission_rate),
        commission_amount=_as_float(model.commission_amount),
        commission_split_percent=_as_float(model.commission_split_percent),
        agent_commission=_as_float(model.agent_commission),
        expected_close_date=model.expected_close_date,
        actual_close_date=model.actual_close_date,
        closed_at=model.closed_at,
        deal_data=model.deal_data or {},
        notes=model.notes,
        lost_reason=model.lost_reason,
        referral_source=model.referral_source,
        created_by=str(model.created_by),
        assigned_to=str(model.assigned_to),
        is_deleted=model.is_deleted,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_checklist_item(model: ChecklistItemModel) -> ChecklistItemRead:
    """Convert ChecklistItemModel to ChecklistItemRead schema."""
    return ChecklistItemRead(
        id=str(model.id),
        deal_id=str(model.deal_id),
        milestone_name=model.milestone_name,
        scheduled_date=model.scheduled_date,
        completed_date=model.completed_date,
        status=model.status,
        notes=model.notes,
        created_by=str(model.created_by),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_activity(model: DealActivityModel) -> ActivityRead:
    """Convert DealActivityModel to ActivityRead schema."""
    return ActivityRead(
        id=str(model.id),
        deal_id=str(model.deal_id),
        activity_type=model.activity_type,
        title=model.title,
        description=model.description,
        old_stage=model.old_stage,
        new_stage=model.new_stage,
        created_by=str(model.created_by),
        created_at=model.created_at,
    )


def _new_activity(deal_id: uuid.UUID, user_id: uuid.UUID, data: ActivityCreate) -> DealActivityModel:
    return DealActivityModel(
        deal_id=deal_id,
        activity_type=data.activity_type.value,
        title=data.title,
        description=data.description,
        old_stage=data.old_stage,
        new_stage=data.new_stage,
        created_by=user_id,
    )


def _new_checklist_item(
    deal_id: uuid.UUID, user_id: uuid.UUID, data: ChecklistItemCreate
) -> ChecklistItemModel:
    return ChecklistItemModel(
        deal_id=deal_id,
        milestone_name=data.milestone_name,
        scheduled_date=data.scheduled_date,
        notes=data.notes,
        status="pending",
        created_by=user_id,
    )


class DealRepository:
    """Async repository for deals, deal types, checklists, activities and settings.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    ) -> None:
        self._session_factory = session_factory

    # ── Deal Types ──────────────────────────────────────────────────────────

    async def list_deal_types(self, active_only: bool = True) -> list[DealTypeRead]:
        async for session in self._session_factory():
            stmt = select(DealTypeModel).order_by(DealTypeModel.type_name)
            if active_only:
                stmt = stmt.where(DealTypeModel.is_active == True)  # noqa: E712
            result = await session.execute(stmt)
            return [_model_to_deal_type(m) for m in result.scalars().all()]
        return []

    async def get_deal_type(self, deal_type_id: str) -> DealTypeRead | None:
        type_uuid = _as_uuid(deal_type_id)
        if type_uuid is None:
            return None
        async for session in self._session_factory():
            model = await session.get(DealTypeModel, type_uuid)
            return _model_to_deal_type(model) if model is not None else None
        return None

    # ── Deals ───────────────────────────────────────────────────────────────

    async def _load_owned_deal(
        self,
        session: AsyncSession,
        deal_id: str,
        user_id: str,
        for_update: bool = False,
    ) -> DealModel | None:
        deal_uuid = _as_uuid(deal_id)
        user_uuid = _as_uuid(user_id)
        if deal_uuid is None or user_uuid is None:
            return None
        stmt = select(DealModel).where(
            DealModel.id == deal_uuid,
            DealModel.assigned_to == user_uuid,
            DealModel.is_deleted == False,  # noqa: E712
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_deal(self, deal_id: str, user_id: str) -> DealRead | None:
        """Get a deal owned by ``user_id``.

        Returns:
            DealRead, or None when the deal is missing, deleted, or owned by
            someone else.
        """
        async for session in self._session_factory():
            model = await self._load_owned_deal(session, deal_id, user_id)
            return _model_to_deal(model) if model is not None else None
        return None

    async def list_deals(self, user_id: str, filters: DealFilter) -> list[DealRead]:
        """List a user's deals, newest first."""
        async for session in self._session_factory():
            stmt = select(DealModel).where(
                DealModel.assigned_to == uuid.UUID(user_id),
                DealModel.is_deleted == False,  # noqa: E712
            )
            if filters.client_id:
                stmt = stmt.where(DealModel.client_id == _as_uuid(filters.client_id))
            if filters.status:
                stmt = stmt.where(DealModel.status == filters.status.value)
            if filters.deal_type_id:
                stmt = stmt.where(DealModel.deal_type_id == _as_uuid(filters.deal_type_id))
            stmt = stmt.order_by(DealModel.created_at.desc()).limit(filters.limit)
            result = await session.execute(stmt)
            return [_model_to_deal(m) for m in result.scalars().all()]
        return []

    async def list_active_deals(
        self, user_id: str, deal_type_id: str | None = None
    ) -> list[DealRead]:
        """All active, non-deleted deals of a user, newest first."""
        async for session in self._session_factory():
            stmt = select(DealModel).where(
                DealModel.assigned_to == uuid.UUID(user_id),
                DealModel.is_deleted == False,  # noqa: E712
                DealModel.status == "active",
            )
            if deal_type_id:
                stmt = stmt.where(DealModel.deal_type_id == _as_uuid(deal_type_id))
            stmt = stmt.order_by(DealModel.created_at.desc())
            result = await session.execute(stmt)
            return [_model_to_deal(m) for m in result.scalars().all()]
        return []

    async def count_closed_since(self, user_id: str, since: datetime) -> dict[str, int]:
        """Count a user's deals closed at or after ``since``, keyed by status."""
        async for session in self._session_factory():
            stmt = (
                select(DealModel.status, func.count())
                .where(
                    DealModel.assigned_to == uuid.UUID(user_id),
                    DealModel.is_deleted == False,  # noqa: E712
                    DealModel.status.in_(("closed_won", "closed_lost")),
                    DealModel.closed_at >= since,
                )
                .group_by(DealModel.status)
            )
            result = await session.execute(stmt)
            return {status: int(count) for status, count in result.all()}
        return {}

    async def create_deal(
        self, values: dict[str, Any], user_id: str, activity: ActivityCreate
    ) -> DealRead:
        """Insert a deal and its creation activity in one transaction.

        Args:
            values: Column values (already including current_stage,
                deal_name and computed commission).
            user_id: Creating user; also becomes the assignee.
            activity: Activity row logged against the new deal.

        Returns:
            DealRead with all persisted fields.
        """
        user_uuid = uuid.UUID(user_id)
        async for session in self._session_factory():
            model = DealModel(
                **_to_column_values(values),
                created_by=user_uuid,
                assigned_to=user_uuid,
            )
            session.add(model)
            await session.flush()
            session.add(_new_activity(model.id, user_uuid, activity))
            await session.commit()
            await session.refresh(model)
            return _model_to_deal(model)
        raise RuntimeError("session factory yielded no session")

    async def update_deal(
        self,
        deal_id: str,
        user_id: str,
        values: dict[str, Any],
        activity: ActivityCreate | None = None,
    ) -> DealRead | None:
        """Apply column updates to an owned deal, optionally logging an activity.

        Returns:
            Updated DealRead, or None if the deal is not visible to the user.
        """
        async for session in self._session_factory():
            model = await self._load_owned_deal(session, deal_id, user_id, for_update=True)
            if model is None:
                return None
            for key, value in _to_column_values(values).items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            if activity is not None:
                session.add(_new_activity(model.id, uuid.UUID(user_id), activity))
            await session.commit()
            await session.refresh(model)
            return _model_to_deal(model)
        return None

    async def soft_delete_deal(
        self, deal_id: str, user_id: str, activity: ActivityCreate
    ) -> bool:
        async for session in self._session_factory():
            model = await self._load_owned_deal(session, deal_id, user_id, for_update=True)
            if model is None:
                return False
            model.is_deleted = True
            model.updated_at = datetime.now(timezone.utc)
            session.add(_new_activity(model.id, uuid.UUID(user_id), activity))
            await session.commit()
            return True
        return False

    # ── Stage Changes ───────────────────────────────────────────────────────

    async def apply_stage_change(self, change: StageChange, user_id: str) -> DealRead | None:
        """Apply a planned stage change atomically.

        Locks the deal row, checks it is still at ``change.from_stage``, then
        writes the deal update, checklist rows and activity rows in a single
        commit. Any failure before the commit leaves the database untouched.

        Returns:
            Updated DealRead, or None if the deal is not visible to the user.

        Raises:
            ValueError: If the deal moved to another stage since it was read.
        """
        user_uuid = uuid.UUID(user_id)
        async for session in self._session_factory():
            model = await self._load_owned_deal(session, change.deal_id, user_id, for_update=True)
            if model is None:
                return None
            if model.current_stage != change.from_stage:
                raise ValueError(
                    f"Deal {change.deal_id} is at stage {model.current_stage}, "
                    f"expected {change.from_stage}"
                )

            for key, value in _to_column_values(change.deal_updates).items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)

            for item in change.checklist_items:
                session.add(_new_checklist_item(model.id, user_uuid, item))
            for activity in change.activities:
                session.add(_new_activity(model.id, user_uuid, activity))

            await session.commit()
            await session.refresh(model)
            return _model_to_deal(model)
        return None

    # ── Activities ──────────────────────────────────────────────────────────

    async def list_activities(self, deal_id: str, limit: int = 50) -> list[ActivityRead]:
        deal_uuid = _as_uuid(deal_id)
        if deal_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(DealActivityModel)
                .where(DealActivityModel.deal_id == deal_uuid)
                .order_by(DealActivityModel.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_activity(m) for m in result.scalars().all()]
        return []

    async def add_activity(
        self, deal_id: str, user_id: str, data: ActivityCreate
    ) -> ActivityRead:
        async for session in self._session_factory():
            model = _new_activity(uuid.UUID(deal_id), uuid.UUID(user_id), data)
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_activity(model)
        raise RuntimeError("session factory yielded no session")

    # ── Checklist ───────────────────────────────────────────────────────────

    async def list_checklist_items(self, deal_id: str) -> list[ChecklistItemRead]:
        deal_uuid = _as_uuid(deal_id)
        if deal_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(ChecklistItemModel)
                .where(ChecklistItemModel.deal_id == deal_uuid)
                .order_by(
                    ChecklistItemModel.scheduled_date.asc().nulls_last(),
                    ChecklistItemModel.created_at.asc(),
                )
            )
            result = await session.execute(stmt)
            return [_model_to_checklist_item(m) for m in result.scalars().all()]
        return []

    async def add_checklist_item(
        self,
        deal_id: str,
        user_id: str,
        data: ChecklistItemCreate,
        activity: ActivityCreate | None = None,
    ) -> ChecklistItemRead:
        deal_uuid = uuid.UUID(deal_id)
        user_uuid = uuid.UUID(user_id)
        async for session in self._session_factory():
            model = _new_checklist_item(deal_uuid, user_uuid, data)
            session.add(model)
            if activity is not None:
                session.add(_new_activity(deal_uuid, user_uuid, activity))
            await session.commit()
            await session.refresh(model)
            return _model_to_checklist_item(model)
        raise RuntimeError("session factory yielded no session")

    async def update_checklist_item(
        self,
        deal_id: str,
        item_id: str,
        values: dict[str, Any],
    ) -> ChecklistItemRead | None:
        item_uuid = _as_uuid(item_id)
        deal_uuid = _as_uuid(deal_id)
        if item_uuid is None or deal_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(ChecklistItemModel).where(
                    ChecklistItemModel.id == item_uuid,
                    ChecklistItemModel.deal_id == deal_uuid,
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            for key, value in _to_column_values(values).items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_checklist_item(model)
        return None

    async def delete_checklist_item(self, deal_id: str, item_id: str) -> bool:
        item_uuid = _as_uuid(item_id)
        deal_uuid = _as_uuid(deal_id)
        if item_uuid is None or deal_uuid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(
                delete(ChecklistItemModel).where(
                    ChecklistItemModel.id == item_uuid,
                    ChecklistItemModel.deal_id == deal_uuid,
                )
            )
            await session.commit()
            return result.rowcount > 0
        return False

    # ── Per-user Checklist Templates ────────────────────────────────────────

    async def get_user_checklist_template(
        self, user_id: str, deal_type_id: str
    ) -> list[ChecklistTemplateItem] | None:
        """The user's template for a deal type, or None if they never set one."""
        type_uuid = _as_uuid(deal_type_id)
        if type_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(UserDealTypeSettingsModel).where(
                    UserDealTypeSettingsModel.user_id == uuid.UUID(user_id),
                    UserDealTypeSettingsModel.deal_type_id == type_uuid,
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return [ChecklistTemplateItem.model_validate(i) for i in (model.checklist_template or [])]
        return None

    async def list_user_settings(self, user_id: str) -> list[DealTypeSettingsRead]:
        async for session in self._session_factory():
            result = await session.execute(
                select(UserDealTypeSettingsModel).where(
                    UserDealTypeSettingsModel.user_id == uuid.UUID(user_id)
                )
            )
            return [
                DealTypeSettingsRead(
                    deal_type_id=str(m.deal_type_id),
                    checklist_template=m.checklist_template or [],
                    updated_at=m.updated_at or m.created_at,
                )
                for m in result.scalars().all()
            ]
        return []

    async def upsert_user_checklist_template(
        self,
        user_id: str,
        deal_type_id: str,
        template: list[ChecklistTemplateItem],
    ) -> DealTypeSettingsRead:
        """Insert or replace the user's template for a deal type."""
        payload = [item.model_dump(mode="json", exclude_none=True) for item in template]
        now = datetime.now(timezone.utc)
        async for session in self._session_factory():
            stmt = pg_insert(UserDealTypeSettingsModel).values(
                user_id=uuid.UUID(user_id),
                deal_type_id=uuid.UUID(deal_type_id),
                checklist_template=payload,
            )
            stmt = stmt.on_conflict_do_update(
                constraint="uq_user_deal_type_settings",
                set_={"checklist_template": payload, "updated_at": now},
            )
            await session.execute(stmt)
            await session.commit()
            return DealTypeSettingsRead(
                deal_type_id=deal_type_id,
                checklist_template=template,
                updated_at=now,
            )
        raise RuntimeError("session factory yielded no session")
