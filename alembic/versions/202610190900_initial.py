"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from datetime import datetime

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


BUDGET_PERIOD = sa.Enum("daily", "weekly", "monthly", "yearly", name="budgetperiod")

SEED_CATEGORIES = [
    ("food", "Food & Dining", "#FF9800", "utensils", False),
    ("transport", "Transportation", "#03A9F4", "car", False),
    ("housing", "Housing", "#4CAF50", "home", False),
    ("entertainment", "Entertainment", "#9C27B0", "film", False),
    ("shopping", "Shopping", "#E91E63", "shopping-bag", False),
    ("utilities", "Utilities", "#607D8B", "bolt", False),
    ("health", "Health", "#F44336", "heart", False),
    ("travel", "Travel", "#8BC34A", "plane", False),
    ("income", "Income", "#4ADE80", "banknote", True),
]


def upgrade() -> None:
    categories = op.create_table(
        "categories",
        sa.Column("id", sa.String(length=40), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.Column("icon", sa.String(length=40), nullable=False),
        sa.Column("is_income", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column(
            "category_id",
            sa.String(length=40),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.Column("is_income", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_entries_amount_positive"),
    )
    op.create_index("ix_entries_user_occurred", "entries", ["user_id", "occurred_at"])
    op.create_index("ix_entries_user_category", "entries", ["user_id", "category_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "category_id",
            sa.String(length=40),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_spending_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("period", BUDGET_PERIOD, nullable=False, server_default="monthly"),
        sa.Column("last_reset_on", sa.Date(), nullable=True),
        sa.Column(
            "ledger_baseline_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "category_id", name="uq_budget_user_category"),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint(
            "current_spending_cents >= 0", name="ck_budget_spending_non_negative"
        ),
    )

    now = datetime.utcnow()
    op.bulk_insert(
        categories,
        [
            {
                "id": category_id,
                "name": name,
                "color": color,
                "icon": icon,
                "is_income": is_income,
                "order": order,
                "created_at": now,
                "updated_at": now,
            }
            for order, (category_id, name, color, icon, is_income) in enumerate(
                SEED_CATEGORIES
            )
        ],
    )


def downgrade() -> None:
    op.drop_table("budgets")
    op.drop_index("ix_entries_user_category", table_name="entries")
    op.drop_index("ix_entries_user_occurred", table_name="entries")
    op.drop_table("entries")
    op.drop_table("categories")
    BUDGET_PERIOD.drop(op.get_bind(), checkfirst=True)
