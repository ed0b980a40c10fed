"""Tests for DealService over the in-memory repositories.

Covers deal creation (naming, commission, initial stage), stage changes
(checklist seeding, closing, lost reason ordering, concurrent moves),
the pipeline view, checklist editing and checklist template settings.
"""

from __future__ import annotations

from datetime import date

import pytest

from src.crm.core.errors import ConflictError, NotFoundError, ValidationError
from src.crm.deals.schemas import (
    ActivityCreate,
    ActivityType,
    ChecklistItemCreate,
    ChecklistItemUpdate,
    ChecklistStatus,
    ChecklistTemplateItem,
    DealCreate,
    DealStatus,
    DealUpdate,
)
from src.crm.deals.service import DealService, calculate_commission, derive_deal_name
from tests.doubles import OTHER_USER_ID, USER_ID


@pytest.fixture
def service(deal_repo, client_repo) -> DealService:
    return DealService(deal_repo, client_repo)


# ── Helpers ──────────────────────────────────────────────────────────────────


def test_calculate_commission_with_split():
    assert calculate_commission(500_000, 3, 50) == (15_000.0, 7_500.0)


def test_calculate_commission_without_split_keeps_full_amount():
    assert calculate_commission(400_000, 2.5) == (10_000.0, 10_000.0)


def test_calculate_commission_missing_inputs():
    assert calculate_commission(None, 3) == (None, None)
    assert calculate_commission(100_000, None) == (None, None)


def test_derive_deal_name():
    assert derive_deal_name({"property_address": "742 Evergreen Terrace, Springfield"}) == (
        "742 Evergreen Terrace"
    )
    assert derive_deal_name({"loan_amount": 350000}) == "$350,000 Loan"
    assert derive_deal_name({}) == "New Deal"


# ── Create / Update / Delete ─────────────────────────────────────────────────


async def test_create_deal_starts_at_first_stage(service, deal_repo, client_repo):
    client = client_repo.add("Jordan Buyer")
    deal = await service.create_deal(
        USER_ID,
        DealCreate(
            deal_type_id="type-residential",
            client_id=client.id,
            deal_value=500_000,
            commission_rate=3,
            deal_data={"property_address": "12 Oak Lane, Austin"},
        ),
    )

    assert deal.current_stage == "lead"
    assert deal.status == DealStatus.ACTIVE
    assert deal.deal_name == "12 Oak Lane"
    assert deal.commission_amount == 15_000.0
    assert deal.assigned_to == USER_ID
    activities = await deal_repo.list_activities(deal.id)
    assert activities[0].title == "Deal Created"


async def test_create_deal_rejects_unknown_type(service, client_repo):
    client = client_repo.add("Jordan Buyer")
    with pytest.raises(ValidationError):
        await service.create_deal(
            USER_ID, DealCreate(deal_type_id="type-missing", client_id=client.id)
        )


async def test_create_deal_rejects_other_users_client(service, client_repo):
    client = client_repo.add("Someone Else's", user_id=OTHER_USER_ID)
    with pytest.raises(ValidationError):
        await service.create_deal(
            USER_ID, DealCreate(deal_type_id="type-residential", client_id=client.id)
        )


async def test_update_deal_recomputes_commission(service, deal_repo):
    deal = deal_repo.add_deal(deal_value=200_000, commission_rate=3)
    updated = await service.update_deal(deal.id, USER_ID, DealUpdate(deal_value=300_000))

    assert updated.deal_value == 300_000
    assert updated.commission_amount == 9_000.0
    activities = await deal_repo.list_activities(deal.id)
    assert activities[0].activity_type == ActivityType.FIELD_UPDATE
    assert activities[0].description == "Updated: deal_value"


async def test_update_deal_without_changes_returns_deal(service, deal_repo):
    deal = deal_repo.add_deal()
    assert (await service.update_deal(deal.id, USER_ID, DealUpdate())).id == deal.id
    assert deal_repo.activities == []


async def test_other_users_deal_is_not_found(service, deal_repo):
    deal = deal_repo.add_deal(user_id=OTHER_USER_ID)
    with pytest.raises(NotFoundError):
        await service.get_deal(deal.id, USER_ID)


async def test_delete_deal_soft_deletes(service, deal_repo):
    deal = deal_repo.add_deal()
    await service.delete_deal(deal.id, USER_ID)
    assert deal_repo.deals[deal.id].is_deleted is True
    with pytest.raises(NotFoundError):
        await service.get_deal(deal.id, USER_ID)


# ── Stage Changes ────────────────────────────────────────────────────────────


async def test_change_stage_to_contract_creates_checklist(service, deal_repo):
    deal = deal_repo.add_deal(current_stage="offer")
    result = await service.change_stage(deal.id, "contract", None, USER_ID)

    assert result.current_stage == "contract"
    assert result.status == DealStatus.ACTIVE
    assert result.milestones_created == 5
    assert len(await deal_repo.list_checklist_items(deal.id)) == 5
    stage_logs = [a for a in deal_repo.activities if a.activity_type == ActivityType.STAGE_CHANGE]
    assert len(stage_logs) == 1
    assert stage_logs[0].old_stage == "offer"
    assert stage_logs[0].new_stage == "contract"


async def test_change_stage_mortgage_application(service, deal_repo):
    deal = deal_repo.add_deal(deal_type_id="type-mortgage", current_stage="prequalification")
    result = await service.change_stage(deal.id, "application", None, USER_ID)
    assert result.milestones_created == 6


async def test_change_stage_uses_user_template(service, deal_repo):
    deal_repo.templates[(USER_ID, "type-residential")] = [
        ChecklistTemplateItem(name="Order survey", days_offset=2),
    ]
    deal = deal_repo.add_deal(current_stage="offer")
    result = await service.change_stage(deal.id, "contract", None, USER_ID)

    assert result.milestones_created == 1
    items = await deal_repo.list_checklist_items(deal.id)
    assert items[0].milestone_name == "Order survey"


async def test_change_stage_to_won_closes_deal(service, deal_repo):
    deal = deal_repo.add_deal(current_stage="closing")
    result = await service.change_stage(deal.id, "closed", None, USER_ID)

    assert result.status == DealStatus.CLOSED_WON
    stored = deal_repo.deals[deal.id]
    assert stored.closed_at is not None
    assert stored.actual_close_date is not None


async def test_change_stage_to_normal_leaves_closed_at_empty(service, deal_repo):
    deal = deal_repo.add_deal(current_stage="lead")
    await service.change_stage(deal.id, "showing", None, USER_ID)
    assert deal_repo.deals[deal.id].closed_at is None


async def test_lost_with_short_reason_leaves_deal_unchanged(service, deal_repo):
    """The reason is checked before the deal is read or written."""
    deal = deal_repo.add_deal(current_stage="offer")
    with pytest.raises(ValidationError):
        await service.change_stage(deal.id, "lost", "short", USER_ID)

    assert deal_repo.deals[deal.id].current_stage == "offer"
    assert deal_repo.deals[deal.id].status == DealStatus.ACTIVE
    assert deal_repo.stage_change_calls == 0
    assert deal_repo.activities == []


async def test_lost_reason_checked_before_ownership(service):
    """An invalid reason wins over a missing deal."""
    with pytest.raises(ValidationError):
        await service.change_stage("missing", "lost", None, USER_ID)


async def test_mark_lost_returns_closed_deal(service, deal_repo):
    deal = deal_repo.add_deal(current_stage="showing")
    updated = await service.mark_lost(deal.id, "Buyer went with a new build", USER_ID)

    assert updated.status == DealStatus.CLOSED_LOST
    assert updated.current_stage == "lost"
    assert updated.lost_reason == "Buyer went with a new build"
    assert updated.closed_at is not None


async def test_change_stage_invalid_stage(service, deal_repo):
    deal = deal_repo.add_deal()
    with pytest.raises(ValidationError):
        await service.change_stage(deal.id, "escrow", None, USER_ID)


async def test_concurrent_stage_change_conflicts(deal_repo, client_repo):
    """A deal moved between read and write raises ConflictError."""

    class StaleReadRepository(type(deal_repo)):
        async def get_deal(self, deal_id, user_id):
            deal = await super().get_deal(deal_id, user_id)
            return deal.model_copy(update={"current_stage": "lead"}) if deal else None

    repo = StaleReadRepository(list(deal_repo.deal_types.values()))
    deal = repo.add_deal(current_stage="offer")
    service = DealService(repo, client_repo)

    with pytest.raises(ConflictError):
        await service.change_stage(deal.id, "contract", None, USER_ID)
    assert repo.deals[deal.id].current_stage == "offer"
    assert repo.checklist == []


async def test_change_stage_missing_deal(service):
    with pytest.raises(NotFoundError):
        await service.change_stage("missing", "offer", None, USER_ID)


# ── Pipeline ─────────────────────────────────────────────────────────────────


async def test_pipeline_groups_active_deals(service, deal_repo):
    deal_repo.add_deal(current_stage="lead", deal_value=100_000, commission_amount=3_000)
    deal_repo.add_deal(current_stage="lead", deal_value=200_000, commission_amount=6_000)
    deal_repo.add_deal(current_stage="offer", deal_value=300_000)
    deal_repo.add_deal(current_stage="closed", status="closed_won", deal_value=900_000)

    pipeline = await service.get_pipeline(USER_ID, deal_type_id="type-residential")

    by_code = {s.code: s for s in pipeline.stages}
    assert by_code["lead"].count == 2
    assert by_code["lead"].total_value == 300_000
    assert by_code["offer"].count == 1
    assert by_code["closed"].count == 0
    assert pipeline.summary.active_deals == 3
    assert pipeline.summary.total_pipeline_value == 600_000
    assert pipeline.summary.expected_commission == 9_000


async def test_pipeline_empty(service):
    pipeline = await service.get_pipeline(USER_ID)
    assert pipeline.stages == []
    assert pipeline.summary.active_deals == 0


# ── Activities & Checklist ───────────────────────────────────────────────────


async def test_manual_stage_change_activity_rejected(service, deal_repo):
    deal = deal_repo.add_deal()
    with pytest.raises(ValidationError):
        await service.add_activity(
            deal.id,
            USER_ID,
            ActivityCreate(activity_type=ActivityType.STAGE_CHANGE, title="Moved"),
        )


async def test_complete_checklist_item_logs_activity(service, deal_repo):
    deal = deal_repo.add_deal()
    item = await service.add_checklist_item(
        deal.id, USER_ID, ChecklistItemCreate(milestone_name="Inspection")
    )

    updated = await service.update_checklist_item(
        deal.id,
        item.id,
        USER_ID,
        ChecklistItemUpdate(status=ChecklistStatus.COMPLETED),
        today=date(2026, 3, 2),
    )

    assert updated.status == ChecklistStatus.COMPLETED
    assert updated.completed_date == date(2026, 3, 2)
    assert deal_repo.activities[-1].activity_type == ActivityType.MILESTONE_COMPLETE


async def test_delete_missing_checklist_item(service, deal_repo):
    deal = deal_repo.add_deal()
    with pytest.raises(NotFoundError):
        await service.delete_checklist_item(deal.id, "missing", USER_ID)


# ── Settings ─────────────────────────────────────────────────────────────────


async def test_checklist_settings_fall_back_to_builtin(service):
    settings = await service.get_checklist_settings(USER_ID)
    by_code = {s["type_code"]: s for s in settings}

    assert by_code["residential_sale"]["customized"] is False
    assert len(by_code["residential_sale"]["checklist_template"]) == 5
    assert len(by_code["mortgage"]["checklist_template"]) == 6


async def test_saved_template_is_reported_as_customized(service):
    await service.set_checklist_template(
        USER_ID, "type-mortgage", [ChecklistTemplateItem(name="Rate lock", days_offset=3)]
    )
    settings = await service.get_checklist_settings(USER_ID)
    mortgage = next(s for s in settings if s["type_code"] == "mortgage")

    assert mortgage["customized"] is True
    assert mortgage["checklist_template"][0].name == "Rate lock"


async def test_set_template_unknown_type(service):
    with pytest.raises(NotFoundError):
        await service.set_checklist_template(USER_ID, "type-missing", [])


def test_deal_status_values():
    assert [s.value for s in DealStatus] == ["active", "closed_won", "closed_lost"]
