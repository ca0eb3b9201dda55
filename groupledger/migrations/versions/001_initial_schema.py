"""Initial schema — users, groups, memberships, join requests, expenses.

Revision: 001_initial_schema
Created:  2026-10-19

Creates the complete GroupLedger v1 database schema.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. PostgreSQL enum types (must exist before tables that reference them)
  2. Tables in FK dependency order (users → device_tokens, groups →
     memberships, join_requests → expenses → expense_participants)
  3. Indexes (including the partial unique index uq_join_requests_pending)

ON DELETE policies:
  device_tokens.user_id            → CASCADE   (token owned by user)
  expense_participants.expense_id  → CASCADE   (shares owned by expense)
  everything else                  → RESTRICT
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: tuple | None = None
depends_on: tuple | None = None


_payment_status = postgresql.ENUM(
    "unpaid", "paid",
    name="payment_status_enum",
    create_type=False,
)

_join_request_status = postgresql.ENUM(
    "pending", "accepted", "rejected",
    name="join_request_status_enum",
    create_type=False,
)


def upgrade() -> None:
    """Apply the full initial schema."""

    # ── Step 1: PostgreSQL enum types ─────────────────────────────────────

    op.execute("CREATE TYPE payment_status_enum AS ENUM ('unpaid', 'paid')")
    op.execute(
        "CREATE TYPE join_request_status_enum AS ENUM ('pending', 'accepted', 'rejected')"
    )

    # ── Step 2: users ──────────────────────────────────────────────────────
    # id is the identity provider's user id, not a serial.

    op.create_table(
        "users",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(100), nullable=False),
        sa.Column("iban", sa.String(34), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_users_email_format"),
    )

    # ── Step 3: device_tokens ──────────────────────────────────────────────
    # One push token per user; replaced on every PUT.

    op.create_table(
        "device_tokens",
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_device_tokens_user"),
            nullable=False,
        ),
        sa.Column("token", sa.String(512), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("user_id", name="pk_device_tokens"),
    )

    # ── Step 4: groups ─────────────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "creator_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_groups_creator"),
            nullable=False,
        ),
        sa.Column("invite_token", sa.String(64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.UniqueConstraint("invite_token", name="uq_groups_invite_token"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
    )

    # ── Step 5: memberships ────────────────────────────────────────────────
    # UNIQUE(group_id, user_id) is the conflict target of the idempotent join.

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_memberships_group_user"),
    )
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])

    # ── Step 6: join_requests ──────────────────────────────────────────────

    op.create_table(
        "join_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_join_requests_group"),
            nullable=False,
        ),
        sa.Column(
            "target_user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_join_requests_target"),
            nullable=False,
        ),
        sa.Column(
            "requester_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_join_requests_requester"),
            nullable=False,
        ),
        sa.Column(
            "status",
            _join_request_status,
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "requested_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_join_requests"),
    )
    op.create_index("ix_join_requests_group_id", "join_requests", ["group_id"])
    op.create_index("ix_join_requests_target_user_id", "join_requests", ["target_user_id"])

    # At most one pending request per (group, target); resolved rows are unlimited.
    op.create_index(
        "uq_join_requests_pending",
        "join_requests",
        ["group_id", "target_user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # ── Step 7: expenses ───────────────────────────────────────────────────

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column(
            "payer_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_payer"),
            nullable=False,
        ),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        sa.Column("bill_image_url", sa.String(1024), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("total_amount > 0", name="ck_expenses_total_positive"),
        sa.CheckConstraint("LENGTH(TRIM(title)) > 0", name="ck_expenses_title_nonempty"),
    )
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    op.create_index("ix_expenses_payer_id", "expenses", ["payer_id"])

    # ── Step 8: expense_participants ───────────────────────────────────────
    # sum(share_amount) == expenses.total_amount is enforced by the ledger
    # engine before the write.

    op.create_table(
        "expense_participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_expense_participants_expense"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expense_participants_user"),
            nullable=False,
        ),
        sa.Column("share_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "payment_status",
            _payment_status,
            nullable=False,
            server_default="unpaid",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_expense_participants"),
        sa.UniqueConstraint(
            "expense_id", "user_id",
            name="uq_expense_participants_expense_user",
        ),
        sa.CheckConstraint("share_amount > 0", name="ck_expense_participants_share_positive"),
    )
    op.create_index("ix_expense_participants_expense_id", "expense_participants", ["expense_id"])
    op.create_index("ix_expense_participants_user_id", "expense_participants", ["user_id"])


def downgrade() -> None:
    """Drop everything in reverse dependency order."""
    op.drop_table("expense_participants")
    op.drop_table("expenses")
    op.drop_index("uq_join_requests_pending", table_name="join_requests")
    op.drop_table("join_requests")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("device_tokens")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS join_request_status_enum")
    op.execute("DROP TYPE IF EXISTS payment_status_enum")
