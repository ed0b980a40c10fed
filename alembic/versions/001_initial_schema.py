"""Initial CRM schema: users, clients, tasks, deals, notifications.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Creates every table plus the two system deal types (residential sale and
mortgage) with their pipelines and default checklists.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON, UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _user_fk(name: str, nullable: bool = False, ondelete: str | None = None) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


RESIDENTIAL_STAGES = [
    {"code": "lead", "name": "Lead", "order": 1, "type": "normal"},
    {"code": "qualifying", "name": "Qualifying", "order": 2, "type": "normal"},
    {"code": "showing", "name": "Showing", "order": 3, "type": "normal"},
    {"code": "offer", "name": "Offer", "order": 4, "type": "normal"},
    {"code": "contract", "name": "Under Contract", "order": 5, "type": "normal"},
    {"code": "closing", "name": "Closing", "order": 6, "type": "normal"},
    {"code": "closed", "name": "Closed", "order": 7, "type": "won"},
    {"code": "lost", "name": "Lost", "order": 8, "type": "lost"},
]

MORTGAGE_STAGES = [
    {"code": "lead", "name": "Lead", "order": 1, "type": "normal"},
    {"code": "prequalification", "name": "Prequalification", "order": 2, "type": "normal"},
    {"code": "application", "name": "Application", "order": 3, "type": "normal"},
    {"code": "processing", "name": "Processing", "order": 4, "type": "normal"},
    {"code": "underwriting", "name": "Underwriting", "order": 5, "type": "normal"},
    {"code": "approval", "name": "Approval", "order": 6, "type": "normal"},
    {"code": "closing", "name": "Closing", "order": 7, "type": "normal"},
    {"code": "funded", "name": "Funded", "order": 8, "type": "won"},
    {"code": "lost", "name": "Lost", "order": 9, "type": "lost"},
]


def upgrade() -> None:
    # ── users ───────────────────────────────────────────────────────────

    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_login_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # ── clients ─────────────────────────────────────────────────────────

    op.create_table(
        "clients",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("status", sa.String(50), nullable=True),
        _user_fk("created_by"),
        _user_fk("assigned_to"),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_clients_assigned_to", "clients", ["assigned_to"])

    # ── client_tasks ────────────────────────────────────────────────────

    op.create_table(
        "client_tasks",
        _id(),
        sa.Column(
            "client_id",
            UUID(as_uuid=True),
            sa.ForeignKey("clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("priority", sa.String(20), server_default="medium", nullable=False),
        sa.Column("status", sa.String(20), server_default="todo", nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _user_fk("created_by"),
        _user_fk("assigned_to"),
        *_timestamps(),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="client_tasks_priority_valid"),
        sa.CheckConstraint("status IN ('todo', 'in_progress', 'closed')", name="client_tasks_status_valid"),
        sa.CheckConstraint("LENGTH(TRIM(title)) > 0", name="client_tasks_title_not_empty"),
    )
    op.create_index("idx_client_tasks_assigned_due", "client_tasks", ["assigned_to", "due_date"])
    op.create_index("idx_client_tasks_client_id", "client_tasks", ["client_id"])

    # ── deal_types ──────────────────────────────────────────────────────

    deal_types = op.create_table(
        "deal_types",
        _id(),
        sa.Column("type_code", sa.String(50), nullable=False, unique=True),
        sa.Column("type_name", sa.String(100), nullable=False),
        sa.Column("icon", sa.String(50), nullable=True),
        sa.Column("color", sa.String(7), nullable=True),
        sa.Column("pipeline_stages", JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        sa.Column("enabled_fields", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("default_milestones", JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        sa.Column("is_system", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
    )

    # ── deals ───────────────────────────────────────────────────────────

    op.create_table(
        "deals",
        _id(),
        sa.Column("deal_name", sa.String(255), nullable=False),
        sa.Column("deal_type_id", UUID(as_uuid=True), sa.ForeignKey("deal_types.id"), nullable=False),
        sa.Column("client_id", UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("current_stage", sa.String(50), nullable=False),
        sa.Column("status", sa.String(50), server_default="active", nullable=False),
        sa.Column("deal_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("commission_split_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("agent_commission", sa.Numeric(12, 2), nullable=True),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("actual_close_date", sa.Date(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deal_data", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("lost_reason", sa.Text(), nullable=True),
        sa.Column("referral_source", sa.String(255), nullable=True),
        _user_fk("created_by"),
        _user_fk("assigned_to"),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('active', 'closed_won', 'closed_lost')",
            name="chk_deals_status",
        ),
        sa.CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100", name="chk_deals_commission_rate"
        ),
        sa.CheckConstraint(
            "commission_split_percent >= 0 AND commission_split_percent <= 100",
            name="chk_deals_commission_split",
        ),
        sa.CheckConstraint("deal_value >= 0", name="chk_deals_value_positive"),
    )
    op.create_index("idx_deals_assigned_status", "deals", ["assigned_to", "status"])
    op.create_index("idx_deals_client_id", "deals", ["client_id"])
    op.create_index("idx_deals_expected_close", "deals", ["expected_close_date"])

    # ── deal_checklist_items / deal_activities ─────────────────────────

    op.create_table(
        "deal_checklist_items",
        _id(),
        sa.Column(
            "deal_id", UUID(as_uuid=True), sa.ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("milestone_name", sa.String(255), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("completed_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _user_fk("created_by"),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')", name="chk_checklist_items_status"
        ),
    )
    op.create_index(
        "idx_deal_checklist_items_deal_scheduled",
        "deal_checklist_items",
        ["deal_id", "scheduled_date"],
    )

    op.create_table(
        "deal_activities",
        _id(),
        sa.Column(
            "deal_id", UUID(as_uuid=True), sa.ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("old_stage", sa.String(50), nullable=True),
        sa.Column("new_stage", sa.String(50), nullable=True),
        _user_fk("created_by"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "activity_type IN ('stage_change', 'note', 'call', 'email', 'meeting', "
            "'showing', 'document_upload', 'document_delete', 'milestone_complete', "
            "'field_update', 'other')",
            name="chk_activities_type",
        ),
    )
    op.create_index("idx_deal_activities_deal_created", "deal_activities", ["deal_id", "created_at"])

    # ── user_deal_type_settings ────────────────────────────────────────

    op.create_table(
        "user_deal_type_settings",
        _id(),
        _user_fk("user_id", ondelete="CASCADE"),
        sa.Column(
            "deal_type_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deal_types.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("checklist_template", JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "deal_type_id", name="uq_user_deal_type_settings"),
    )

    # ── notifications ──────────────────────────────────────────────────

    op.create_table(
        "notifications",
        _id(),
        _user_fk("user_id", ondelete="CASCADE"),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("category", sa.String(20), server_default="general", nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("metadata", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "category IN ('task', 'deal', 'client', 'system', 'general')",
            name="notifications_category_check",
        ),
    )
    op.create_index("idx_notifications_user_created", "notifications", ["user_id", "created_at"])
    op.create_index(
        "idx_notifications_dedup", "notifications", ["user_id", "type", "entity_id", "created_at"]
    )

    # ── system deal types ──────────────────────────────────────────────

    op.bulk_insert(
        deal_types,
        [
            {
                "type_code": "residential_sale",
                "type_name": "Residential Sale",
                "icon": "home",
                "color": "#3B82F6",
                "pipeline_stages": RESIDENTIAL_STAGES,
                "enabled_fields": {
                    "required": ["property_address", "deal_side", "listing_price"],
                    "optional": ["property_type", "bedrooms", "bathrooms", "square_feet", "mls_number"],
                },
                "default_milestones": [
                    {"name": "Inspection", "days_offset": 10},
                    {"name": "Appraisal", "days_offset": 14},
                    {"name": "Financing Approval", "days_offset": 21},
                    {"name": "Final Walkthrough", "days_offset": 28},
                    {"name": "Closing", "days_offset": 30},
                ],
                "is_system": True,
                "is_active": True,
            },
            {
                "type_code": "mortgage",
                "type_name": "Mortgage Loan",
                "icon": "calculator",
                "color": "#10B981",
                "pipeline_stages": MORTGAGE_STAGES,
                "enabled_fields": {
                    "required": ["loan_amount", "loan_type", "loan_purpose", "property_address"],
                    "optional": ["purchase_price", "down_payment", "interest_rate", "loan_term_years"],
                },
                "default_milestones": [
                    {"name": "Credit Pull", "days_offset": 1},
                    {"name": "Appraisal Ordered", "days_offset": 5},
                    {"name": "Appraisal Complete", "days_offset": 12},
                    {"name": "Underwriting Complete", "days_offset": 21},
                    {"name": "Clear to Close", "days_offset": 28},
                    {"name": "Closing Scheduled", "days_offset": 35},
                ],
                "is_system": True,
                "is_active": True,
            },
        ],
    )


def downgrade() -> None:
    for table in (
        "notifications",
        "user_deal_type_settings",
        "deal_activities",
        "deal_checklist_items",
        "deals",
        "deal_types",
        "client_tasks",
        "clients",
        "users",
    ):
        op.drop_table(table)
