"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "incomes",
        sa.Column("income_id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "category", sa.String(length=100), nullable=False, server_default="Other"
        ),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_incomes_amount_positive"),
    )
    op.create_index(
        "ix_incomes_user_timestamp", "incomes", ["user_id", "timestamp"]
    )

    op.create_table(
        "expenses",
        sa.Column("expense_id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "category", sa.String(length=100), nullable=False, server_default="Other"
        ),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index(
        "ix_expenses_user_timestamp", "expenses", ["user_id", "timestamp"]
    )
    op.create_index(
        "ix_expenses_user_category", "expenses", ["user_id", "category"]
    )

    op.create_table(
        "user_financial_data",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "income_id",
            sa.Integer(),
            sa.ForeignKey("incomes.income_id"),
            unique=True,
        ),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.expense_id"),
            unique=True,
        ),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "category", sa.String(length=100), nullable=False, server_default="Other"
        ),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "(income_id IS NOT NULL AND expense_id IS NULL AND type = 'income')"
            " OR (expense_id IS NOT NULL AND income_id IS NULL AND type = 'expense')",
            name="ck_financial_data_single_source",
        ),
    )
    op.create_index(
        "ix_financial_data_user_timestamp",
        "user_financial_data",
        ["user_id", "timestamp"],
    )

    op.create_table(
        "user_financial_summary",
        sa.Column("user_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column(
            "current_balance", sa.Numeric(14, 2), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_income", sa.Numeric(14, 2), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_expenses", sa.Numeric(14, 2), nullable=False, server_default="0"
        ),
        sa.Column("net_savings", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("last_income_date", sa.DateTime()),
        sa.Column("last_expense_date", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("user_financial_summary")
    op.drop_index(
        "ix_financial_data_user_timestamp", table_name="user_financial_data"
    )
    op.drop_table("user_financial_data")
    op.drop_index("ix_expenses_user_category", table_name="expenses")
    op.drop_index("ix_expenses_user_timestamp", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_incomes_user_timestamp", table_name="incomes")
    op.drop_table("incomes")
