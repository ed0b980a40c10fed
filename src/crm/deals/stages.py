"""Deal stage rules and the stage-transition planner.

Stage codes are data: each deal type carries its own ordered list of stages,
each tagged ``normal``, ``won`` or ``lost``. Moving a deal is allowed to any
stage of its type (agents skip and reverse stages freely); what this module
decides is what the move implies:

- won/lost stages close the deal (status, ``closed_at``, close date or reason)
- any other stage reopens it (``status=active``, ``closed_at`` cleared)
- trigger stages (``contract``, ``under_contract``, ``application``) seed the
  deal's checklist from the user's template, the deal type's defaults, or the
  built-in list for that stage, in that order
- exactly one ``stage_change`` activity is logged per transition

DealStageTransition.plan() performs no I/O. It returns a StageChange that the
repository applies atomically.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import structlog

from src.crm.core.errors import ValidationError
from src.crm.deals.schemas import (
    ActivityCreate,
    ActivityType,
    ChecklistItemCreate,
    ChecklistTemplateItem,
    DealRead,
    DealStatus,
    DealTypeRead,
    StageChange,
    StageType,
)

logger = structlog.get_logger(__name__)

LOST_STAGE = "lost"
MIN_LOST_REASON_LENGTH = 10
DEFAULT_INITIAL_STAGE = "lead"

# ── Stage Classification ────────────────────────────────────────────────────

TERMINAL_STATUS: dict[StageType, DealStatus] = {
    StageType.WON: DealStatus.CLOSED_WON,
    StageType.LOST: DealStatus.CLOSED_LOST,
}

# Older deal types predate the per-stage "type" tag; classify them by code.
_LEGACY_TERMINAL_CODES: dict[str, StageType] = {
    "closed": StageType.WON,
    "closed_won": StageType.WON,
    "funded": StageType.WON,
    "lost": StageType.LOST,
    "closed_lost": StageType.LOST,
}

# ── Trigger Stages ──────────────────────────────────────────────────────────

_RESIDENTIAL_CHECKLIST = [
    ChecklistTemplateItem(name="Inspection", days_offset=10),
    ChecklistTemplateItem(name="Appraisal", days_offset=14),
    ChecklistTemplateItem(name="Financing Approval", days_offset=21),
    ChecklistTemplateItem(name="Final Walkthrough", days_offset=28),
    ChecklistTemplateItem(name="Closing", days_offset=30),
]

_MORTGAGE_CHECKLIST = [
    ChecklistTemplateItem(name="Credit Pull", days_offset=1),
    ChecklistTemplateItem(name="Appraisal Ordered", days_offset=5),
    ChecklistTemplateItem(name="Appraisal Complete", days_offset=12),
    ChecklistTemplateItem(name="Underwriting Complete", days_offset=21),
    ChecklistTemplateItem(name="Clear to Close", days_offset=28),
    ChecklistTemplateItem(name="Closing Scheduled", days_offset=35),
]

BUILTIN_CHECKLISTS: dict[str, list[ChecklistTemplateItem]] = {
    "contract": _RESIDENTIAL_CHECKLIST,
    "under_contract": _RESIDENTIAL_CHECKLIST,
    "application": _MORTGAGE_CHECKLIST,
}

TRIGGER_STAGES = frozenset(BUILTIN_CHECKLISTS)


# ── Stage Helpers ───────────────────────────────────────────────────────────


def stage_type_of(deal_type: DealTypeRead, code: str) -> StageType:
    """Classify a stage code of ``deal_type``."""
    stage = deal_type.stage(code)
    if stage is not None and stage.type != StageType.NORMAL:
        return stage.type
    return _LEGACY_TERMINAL_CODES.get(code, StageType.NORMAL)


def is_valid_stage(deal_type: DealTypeRead, code: str) -> bool:
    return deal_type.stage(code) is not None


def stage_name(deal_type: DealTypeRead, code: str) -> str:
    stage = deal_type.stage(code)
    return stage.name if stage is not None else code


def initial_stage(deal_type: DealTypeRead) -> str:
    """First stage of the pipeline by ``order``, or ``lead`` for an empty one."""
    if not deal_type.pipeline_stages:
        return DEFAULT_INITIAL_STAGE
    return min(deal_type.pipeline_stages, key=lambda s: s.order).code


def validate_lost_reason(new_stage: str, lost_reason: str | None) -> None:
    """Reject a move to ``lost`` without a qualifying reason.

    Raises:
        ValidationError: If the reason is missing or shorter than
            MIN_LOST_REASON_LENGTH after trimming.
    """
    if new_stage != LOST_STAGE:
        return
    if lost_reason is None or len(lost_reason.strip()) < MIN_LOST_REASON_LENGTH:
        raise ValidationError(
            f"Lost reason is required and must be at least {MIN_LOST_REASON_LENGTH} characters",
            details=[{"field": "lost_reason", "message": "Too short"}],
        )


def checklist_template_for(
    stage: str,
    deal_type: DealTypeRead,
    user_template: list[ChecklistTemplateItem] | None = None,
) -> list[ChecklistTemplateItem]:
    """Pick the checklist seeded when a deal enters ``stage``.

    Non-trigger stages get nothing. For trigger stages the user's own
    template wins, then the deal type's default milestones, then the
    built-in list for the stage.
    """
    if stage not in TRIGGER_STAGES:
        return []
    if user_template:
        return list(user_template)
    if deal_type.default_milestones:
        return list(deal_type.default_milestones)
    return list(BUILTIN_CHECKLISTS[stage])


def schedule_checklist(
    templates: list[ChecklistTemplateItem],
    base_date: date,
) -> list[ChecklistItemCreate]:
    """Turn templates into checklist rows dated relative to ``base_date``."""
    items = []
    for template in templates:
        scheduled = None
        if template.days_offset is not None:
            scheduled = base_date + timedelta(days=template.days_offset)
        items.append(ChecklistItemCreate(milestone_name=template.name, scheduled_date=scheduled))
    return items


# ── Transition Planner ──────────────────────────────────────────────────────


class DealStageTransition:
    """Plans the writes for moving a deal to a new stage.

    Callers validate the lost reason (validate_lost_reason) before loading
    the deal, then call plan() with the loaded deal and its type. plan()
    re-checks both so it is safe to use on its own.
    """

    def plan(
        self,
        deal: DealRead,
        deal_type: DealTypeRead,
        new_stage: str,
        lost_reason: str | None = None,
        user_template: list[ChecklistTemplateItem] | None = None,
        now: datetime | None = None,
    ) -> StageChange:
        """Compute the StageChange for ``deal`` entering ``new_stage``.

        Args:
            deal: The deal as currently stored.
            deal_type: The deal's type (stage list and default milestones).
            new_stage: Target stage code.
            lost_reason: Required when ``new_stage`` is ``lost``.
            user_template: The acting user's checklist template for this
                deal type, if any.
            now: Clock override for tests.

        Returns:
            StageChange with deal column updates, checklist rows and
            activity rows.

        Raises:
            ValidationError: Unknown stage code, or ``lost`` without a reason.
        """
        validate_lost_reason(new_stage, lost_reason)
        if not is_valid_stage(deal_type, new_stage):
            raise ValidationError(f"Invalid stage: {new_stage}")

        now = now or datetime.now(timezone.utc)
        old_stage = deal.current_stage
        kind = stage_type_of(deal_type, new_stage)

        updates: dict = {"current_stage": new_stage}
        if kind in TERMINAL_STATUS:
            updates["status"] = TERMINAL_STATUS[kind].value
            updates["closed_at"] = now
            if kind == StageType.WON:
                updates["lost_reason"] = None
                if deal.actual_close_date is None:
                    updates["actual_close_date"] = now.date()
            else:
                updates["lost_reason"] = lost_reason.strip() if lost_reason else None
        else:
            updates["status"] = DealStatus.ACTIVE.value
            updates["closed_at"] = None
            updates["lost_reason"] = None

        checklist: list[ChecklistItemCreate] = []
        if new_stage != old_stage:
            templates = checklist_template_for(new_stage, deal_type, user_template)
            base_date = deal.expected_close_date or now.date()
            checklist = schedule_checklist(templates, base_date)

        new_name = stage_name(deal_type, new_stage)
        description = f"Moved from {stage_name(deal_type, old_stage)} to {new_name}"
        if kind == StageType.LOST and lost_reason:
            description += f". Reason: {lost_reason.strip()}"

        activities = [
            ActivityCreate(
                activity_type=ActivityType.STAGE_CHANGE,
                title=f"Stage changed to {new_name}",
                description=description,
                old_stage=old_stage,
                new_stage=new_stage,
            )
        ]
        if checklist:
            activities.append(
                ActivityCreate(
                    activity_type=ActivityType.OTHER,
                    title=f"Created {len(checklist)} checklist items",
                    description=", ".join(item.milestone_name for item in checklist),
                )
            )

        logger.debug(
            "deal.stage_change_planned",
            deal_id=deal.id,
            from_stage=old_stage,
            to_stage=new_stage,
            stage_type=kind.value,
            checklist_items=len(checklist),
        )

        return StageChange(
            deal_id=deal.id,
            from_stage=old_stage,
            to_stage=new_stage,
            stage_type=kind,
            deal_updates=updates,
            checklist_items=checklist,
            activities=activities,
        )
