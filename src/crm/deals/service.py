"""Deal business rules on top of DealRepository.

DealService is what the API talks to. It owns ownership checks, commission
arithmetic, deal naming and activity logging, and it drives stage changes:
the lost reason is checked before anything is read, the planned writes come
from DealStageTransition, and DealRepository applies them in one
transaction.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import structlog

from src.crm.core.errors import ConflictError, NotFoundError, ValidationError
from src.crm.core.monitoring import deal_stage_transitions_total
from src.crm.deals.schemas import (
    ActivityCreate,
    ActivityRead,
    ActivityType,
    ChecklistItemCreate,
    ChecklistItemRead,
    ChecklistItemUpdate,
    ChecklistStatus,
    ChecklistTemplateItem,
    DealCreate,
    DealFilter,
    DealRead,
    DealTypeRead,
    DealTypeSettingsRead,
    DealUpdate,
    PipelineStageView,
    PipelineSummary,
    PipelineView,
    StageChangeResult,
)
from src.crm.deals.stages import (
    LOST_STAGE,
    TRIGGER_STAGES,
    DealStageTransition,
    checklist_template_for,
    initial_stage,
    validate_lost_reason,
)

logger = structlog.get_logger(__name__)

DEAL_NOT_FOUND = "Deal not found or access denied"

_COMMISSION_INPUTS = frozenset({"deal_value", "commission_rate", "commission_split_percent"})


def calculate_commission(
    deal_value: float | None,
    commission_rate: float | None,
    split_percent: float | None = None,
) -> tuple[float | None, float | None]:
    """Gross commission and the agent's share.

    Returns:
        (commission_amount, agent_commission); both None when value or
        rate is missing. Without a split the agent keeps the whole amount.
    """
    if deal_value is None or commission_rate is None:
        return None, None
    amount = round(deal_value * commission_rate / 100, 2)
    if split_percent is None:
        return amount, amount
    return amount, round(amount * split_percent / 100, 2)


def derive_deal_name(deal_data: dict[str, Any]) -> str:
    """Default deal name from the property address or the loan amount."""
    address = deal_data.get("property_address")
    if isinstance(address, str) and address.strip():
        return address.split(",")[0].strip()
    loan_amount = deal_data.get("loan_amount")
    if isinstance(loan_amount, (int, float)) and loan_amount > 0:
        return f"${loan_amount:,.0f} Loan"
    return "New Deal"


class DealService:
    """Deal operations scoped to the calling user.

    Args:
        repository: DealRepository (or a test double with the same methods).
        client_repository: ClientRepository used to check client ownership.
        transition: Stage planner; injectable for tests.
    """

    def __init__(
        self,
        repository: Any,
        client_repository: Any,
        transition: DealStageTransition | None = None,
    ) -> None:
        self._repo = repository
        self._clients = client_repository
        self._transition = transition or DealStageTransition()

    async def _require_deal(self, deal_id: str, user_id: str) -> DealRead:
        deal = await self._repo.get_deal(deal_id, user_id)
        if deal is None:
            raise NotFoundError(DEAL_NOT_FOUND)
        return deal

    async def _require_client(self, client_id: str, user_id: str) -> None:
        client = await self._clients.get_client(client_id, user_id)
        if client is None:
            raise ValidationError("Client not found or access denied")

    # ── Stage Changes ───────────────────────────────────────────────────────

    async def change_stage(
        self,
        deal_id: str,
        new_stage: str,
        lost_reason: str | None,
        user_id: str,
    ) -> StageChangeResult:
        """Move a deal to ``new_stage``.

        Raises:
            ValidationError: ``lost`` without a 10+ character reason (checked
                before the deal is read), or a stage the deal type lacks.
            NotFoundError: Deal missing, deleted or not owned by the caller.
            ConflictError: Another change moved the deal first.
        """
        validate_lost_reason(new_stage, lost_reason)

        deal = await self._require_deal(deal_id, user_id)
        deal_type = await self._repo.get_deal_type(deal.deal_type_id)
        if deal_type is None:
            raise NotFoundError(f"Deal type not found: {deal.deal_type_id}")

        user_template = None
        if new_stage in TRIGGER_STAGES and new_stage != deal.current_stage:
            user_template = await self._repo.get_user_checklist_template(user_id, deal_type.id)

        change = self._transition.plan(
            deal,
            deal_type,
            new_stage,
            lost_reason=lost_reason,
            user_template=user_template,
        )

        try:
            updated = await self._repo.apply_stage_change(change, user_id)
        except ValueError as exc:
            logger.warning(
                "deal.stage_change_conflict",
                deal_id=deal_id,
                expected_stage=change.from_stage,
                error=str(exc),
            )
            raise ConflictError("Deal was changed by another request, reload and retry") from exc
        if updated is None:
            raise NotFoundError(DEAL_NOT_FOUND)

        deal_stage_transitions_total.labels(stage_type=change.stage_type.value).inc()
        logger.info(
            "deal.stage_changed",
            deal_id=deal_id,
            user_id=user_id,
            from_stage=change.from_stage,
            to_stage=change.to_stage,
            status=getattr(updated.status, "value", updated.status),
            milestones_created=len(change.checklist_items),
        )
        return StageChangeResult(
            id=updated.id,
            current_stage=updated.current_stage,
            status=updated.status,
            milestones_created=len(change.checklist_items),
        )

    async def mark_lost(self, deal_id: str, lost_reason: str, user_id: str) -> DealRead:
        """Move a deal to the ``lost`` stage and return the updated deal."""
        await self.change_stage(deal_id, LOST_STAGE, lost_reason, user_id)
        return await self._require_deal(deal_id, user_id)

    # ── Deal Types ──────────────────────────────────────────────────────────

    async def list_deal_types(self) -> list[DealTypeRead]:
        return await self._repo.list_deal_types()

    # ── Deal CRUD ───────────────────────────────────────────────────────────

    async def create_deal(self, user_id: str, data: DealCreate) -> DealRead:
        """Create a deal at the first stage of its type.

        Raises:
            ValidationError: Unknown/inactive deal type, or a client the user
                does not own.
        """
        deal_type = await self._repo.get_deal_type(data.deal_type_id)
        if deal_type is None or not deal_type.is_active:
            raise ValidationError(f"Invalid deal type: {data.deal_type_id}")
        await self._require_client(data.client_id, user_id)

        amount, agent = calculate_commission(
            data.deal_value, data.commission_rate, data.commission_split_percent
        )
        values = data.model_dump()
        values.update(
            deal_name=(data.deal_name or "").strip() or derive_deal_name(data.deal_data),
            current_stage=initial_stage(deal_type),
            status="active",
            commission_amount=amount,
            agent_commission=agent,
        )
        activity = ActivityCreate(
            activity_type=ActivityType.OTHER,
            title="Deal Created",
            description=f"Created {deal_type.type_name} deal: {values['deal_name']}",
            new_stage=values["current_stage"],
        )
        deal = await self._repo.create_deal(values, user_id, activity)
        logger.info("deal.created", deal_id=deal.id, user_id=user_id, deal_type=deal_type.type_code)
        return deal

    async def get_deal(self, deal_id: str, user_id: str) -> DealRead:
        return await self._require_deal(deal_id, user_id)

    async def list_deals(self, user_id: str, filters: DealFilter) -> list[DealRead]:
        return await self._repo.list_deals(user_id, filters)

    async def update_deal(self, deal_id: str, user_id: str, data: DealUpdate) -> DealRead:
        """Partially update a deal, recomputing commission when its inputs change."""
        deal = await self._require_deal(deal_id, user_id)

        values = data.model_dump(exclude_unset=True)
        for key in ("deal_name", "client_id", "deal_data"):
            if key in values and values[key] is None:
                del values[key]
        if not values:
            return deal

        if "client_id" in values and values["client_id"] != deal.client_id:
            await self._require_client(values["client_id"], user_id)

        if _COMMISSION_INPUTS & values.keys():
            merged = deal.model_dump()
            merged.update(values)
            amount, agent = calculate_commission(
                merged["deal_value"],
                merged["commission_rate"],
                merged["commission_split_percent"],
            )
            values["commission_amount"] = amount
            values["agent_commission"] = agent

        changed = sorted(k for k in values if k not in ("commission_amount", "agent_commission"))
        activity = ActivityCreate(
            activity_type=ActivityType.FIELD_UPDATE,
            title="Deal Updated",
            description=f"Updated: {', '.join(changed)}",
        )
        updated = await self._repo.update_deal(deal_id, user_id, values, activity)
        if updated is None:
            raise NotFoundError(DEAL_NOT_FOUND)
        return updated

    async def delete_deal(self, deal_id: str, user_id: str) -> None:
        deal = await self._require_deal(deal_id, user_id)
        activity = ActivityCreate(
            activity_type=ActivityType.OTHER,
            title="Deal Deleted",
            description=f"Deleted deal: {deal.deal_name}",
        )
        if not await self._repo.soft_delete_deal(deal_id, user_id, activity):
            raise NotFoundError(DEAL_NOT_FOUND)
        logger.info("deal.deleted", deal_id=deal_id, user_id=user_id)

    # ── Pipeline ────────────────────────────────────────────────────────────

    async def get_pipeline(
        self,
        user_id: str,
        deal_type_id: str | None = None,
        per_stage_limit: int = 20,
    ) -> PipelineView:
        """Group the user's active deals by the stages of one deal type.

        Without ``deal_type_id`` the type of the most recently created
        active deal is used.
        """
        deals = await self._repo.list_active_deals(user_id, deal_type_id)
        if not deals:
            return PipelineView(deal_type_id=deal_type_id)

        type_id = deal_type_id or deals[0].deal_type_id
        deal_type = await self._repo.get_deal_type(type_id)
        if deal_type is None:
            raise NotFoundError(f"Deal type not found: {type_id}")
        deals = [d for d in deals if d.deal_type_id == deal_type.id]

        by_stage: dict[str, list[DealRead]] = {s.code: [] for s in deal_type.pipeline_stages}
        for deal in deals:
            if deal.current_stage in by_stage:
                by_stage[deal.current_stage].append(deal)

        stages = []
        for stage in sorted(deal_type.pipeline_stages, key=lambda s: s.order):
            stage_deals = by_stage[stage.code]
            stages.append(PipelineStageView(
                code=stage.code,
                name=stage.name,
                type=stage.type,
                deals=stage_deals[:per_stage_limit],
                count=len(stage_deals),
                total_value=sum(d.deal_value or 0.0 for d in stage_deals),
            ))

        return PipelineView(
            deal_type_id=deal_type.id,
            stages=stages,
            summary=PipelineSummary(
                total_pipeline_value=sum(d.deal_value or 0.0 for d in deals),
                expected_commission=sum(d.commission_amount or 0.0 for d in deals),
                active_deals=len(deals),
            ),
        )

    # ── Activities ──────────────────────────────────────────────────────────

    async def list_activities(self, deal_id: str, user_id: str, limit: int = 50) -> list[ActivityRead]:
        await self._require_deal(deal_id, user_id)
        return await self._repo.list_activities(deal_id, limit=limit)

    async def add_activity(self, deal_id: str, user_id: str, data: ActivityCreate) -> ActivityRead:
        if data.activity_type == ActivityType.STAGE_CHANGE:
            raise ValidationError("Stage changes are logged automatically")
        await self._require_deal(deal_id, user_id)
        return await self._repo.add_activity(deal_id, user_id, data)

    # ── Checklist ───────────────────────────────────────────────────────────

    async def list_checklist(self, deal_id: str, user_id: str) -> list[ChecklistItemRead]:
        await self._require_deal(deal_id, user_id)
        return await self._repo.list_checklist_items(deal_id)

    async def add_checklist_item(
        self, deal_id: str, user_id: str, data: ChecklistItemCreate
    ) -> ChecklistItemRead:
        await self._require_deal(deal_id, user_id)
        activity = ActivityCreate(
            activity_type=ActivityType.OTHER,
            title="Checklist Item Added",
            description=data.milestone_name,
        )
        return await self._repo.add_checklist_item(deal_id, user_id, data, activity)

    async def update_checklist_item(
        self,
        deal_id: str,
        item_id: str,
        user_id: str,
        data: ChecklistItemUpdate,
        today: date | None = None,
    ) -> ChecklistItemRead:
        """Edit a checklist item; completing it stamps ``completed_date``."""
        await self._require_deal(deal_id, user_id)
        values = data.model_dump(exclude_unset=True)
        if values.get("milestone_name", "") is None:
            del values["milestone_name"]

        status = values.get("status")
        if status == ChecklistStatus.COMPLETED:
            values["completed_date"] = today or date.today()
        elif status is not None:
            values["completed_date"] = None

        item = await self._repo.update_checklist_item(deal_id, item_id, values)
        if item is None:
            raise NotFoundError("Checklist item not found")
        if status == ChecklistStatus.COMPLETED:
            activity = ActivityCreate(
                activity_type=ActivityType.MILESTONE_COMPLETE,
                title="Checklist Item Completed",
                description=item.milestone_name,
            )
            await self._repo.add_activity(deal_id, user_id, activity)
        return item

    async def delete_checklist_item(self, deal_id: str, item_id: str, user_id: str) -> None:
        await self._require_deal(deal_id, user_id)
        if not await self._repo.delete_checklist_item(deal_id, item_id):
            raise NotFoundError("Checklist item not found")

    # ── Settings ────────────────────────────────────────────────────────────

    async def get_checklist_settings(self, user_id: str) -> list[dict[str, Any]]:
        """Effective checklist template per active deal type for the user.

        ``customized`` tells whether the template is the user's own or the
        fallback the stage change would otherwise use.
        """
        deal_types = await self._repo.list_deal_types()
        saved = {s.deal_type_id: s for s in await self._repo.list_user_settings(user_id)}
        out = []
        for deal_type in deal_types:
            own = saved.get(deal_type.id)
            if own is not None and own.checklist_template:
                template = own.checklist_template
            else:
                trigger = next(
                    (s.code for s in deal_type.pipeline_stages if s.code in TRIGGER_STAGES),
                    None,
                )
                template = checklist_template_for(trigger, deal_type) if trigger else []
            out.append({
                "deal_type_id": deal_type.id,
                "type_code": deal_type.type_code,
                "type_name": deal_type.type_name,
                "customized": own is not None and bool(own.checklist_template),
                "checklist_template": template,
            })
        return out

    async def set_checklist_template(
        self,
        user_id: str,
        deal_type_id: str,
        template: list[ChecklistTemplateItem],
    ) -> DealTypeSettingsRead:
        deal_type = await self._repo.get_deal_type(deal_type_id)
        if deal_type is None:
            raise NotFoundError(f"Deal type not found: {deal_type_id}")
        settings = await self._repo.upsert_user_checklist_template(user_id, deal_type.id, template)
        logger.info(
            "deal.checklist_template_saved",
            user_id=user_id,
            deal_type=deal_type.type_code,
            items=len(template),
        )
        return settings
