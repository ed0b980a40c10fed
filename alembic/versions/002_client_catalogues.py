"""Client notes, tags and configurable statuses.

Revision ID: 002_client_catalogues
Revises: 001_initial_schema
Create Date: 2026-10-19

Creates four tables:
- client_statuses: per-user status pipeline, replacing the free-form clients.status
- user_tags: per-user tag catalogue
- client_tags: tags applied to a client, optionally linked to a catalogue entry
- client_notes: free-text notes on a client

Existing users receive the default statuses and tags. Free-form client
statuses that match a default status name are carried over to status_id.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "002_client_catalogues"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DEFAULT_STATUSES = [
    ("New", "blue"),
    ("Contacted", "purple"),
    ("Qualified", "cyan"),
    ("Nurturing", "orange"),
    ("Negotiating", "yellow"),
    ("Won", "green"),
    ("Lost", "gray"),
]

DEFAULT_TAGS = [
    ("VIP", "amber"),
    ("Hot Lead", "red"),
    ("Buyer", "blue"),
    ("Seller", "green"),
    ("Investor", "purple"),
    ("First-Time Buyer", "cyan"),
    ("Referral", "orange"),
    ("Past Client", "gray"),
]


def _id() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _owner() -> sa.Column:
    return sa.Column(
        "user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )


def upgrade() -> None:
    # ── client_statuses ─────────────────────────────────────────────────

    op.create_table(
        "client_statuses",
        _id(),
        _owner(),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("color", sa.String(20), server_default="gray", nullable=False),
        sa.Column("position", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("is_default", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "name", name="client_statuses_user_name_key"),
        sa.CheckConstraint("position >= 0", name="client_statuses_position_non_negative"),
    )
    op.create_index("idx_client_statuses_user_position", "client_statuses", ["user_id", "position"])

    # ── user_tags ───────────────────────────────────────────────────────

    op.create_table(
        "user_tags",
        _id(),
        _owner(),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("color", sa.String(20), server_default="gray", nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "name", name="user_tags_user_name_key"),
    )

    # ── client_tags ─────────────────────────────────────────────────────

    op.create_table(
        "client_tags",
        _id(),
        sa.Column(
            "client_id",
            UUID(as_uuid=True),
            sa.ForeignKey("clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "tag_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_tags.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("tag_name", sa.String(100), nullable=False),
        sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("client_id", "tag_name", name="client_tags_client_name_key"),
        sa.CheckConstraint("LENGTH(TRIM(tag_name)) > 0", name="client_tags_name_not_empty"),
    )
    op.create_index("idx_client_tags_tag_name", "client_tags", ["tag_name"])

    # ── client_notes ────────────────────────────────────────────────────

    op.create_table(
        "client_notes",
        _id(),
        sa.Column(
            "client_id",
            UUID(as_uuid=True),
            sa.ForeignKey("clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_important", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("LENGTH(TRIM(content)) > 0", name="client_notes_content_not_empty"),
    )
    op.create_index("idx_client_notes_client_created", "client_notes", ["client_id", "created_at"])

    # ── defaults for existing users ─────────────────────────────────────

    for position, (name, color) in enumerate(DEFAULT_STATUSES):
        op.execute(
            sa.text(
                "INSERT INTO client_statuses (user_id, name, color, position, is_default) "
                "SELECT id, :name, :color, :position, true FROM users"
            ).bindparams(name=name, color=color, position=position)
        )
    for name, color in DEFAULT_TAGS:
        op.execute(
            sa.text(
                "INSERT INTO user_tags (user_id, name, color) SELECT id, :name, :color FROM users"
            ).bindparams(name=name, color=color)
        )

    # ── clients.status -> clients.status_id ─────────────────────────────

    op.add_column(
        "clients",
        sa.Column(
            "status_id",
            UUID(as_uuid=True),
            sa.ForeignKey("client_statuses.id", ondelete="SET NULL", name="clients_status_id_fkey"),
            nullable=True,
        ),
    )
    op.execute(
        """
        UPDATE clients c SET status_id = s.id
        FROM client_statuses s
        WHERE s.user_id = c.assigned_to AND LOWER(s.name) = LOWER(c.status)
        """
    )
    op.drop_column("clients", "status")
    op.create_index("idx_clients_status_id", "clients", ["status_id"])


def downgrade() -> None:
    op.add_column("clients", sa.Column("status", sa.String(50), nullable=True))
    op.execute(
        """
        UPDATE clients c SET status = s.name
        FROM client_statuses s
        WHERE s.id = c.status_id
        """
    )
    op.drop_index("idx_clients_status_id", table_name="clients")
    op.drop_column("clients", "status_id")
    for table in ("client_notes", "client_tags", "user_tags", "client_statuses"):
        op.drop_table(table)
