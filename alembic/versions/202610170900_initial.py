"""initial schema

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


CATEGORY_ENUM = sa.Enum(
    "food", "health", "housing", "sport", "education", name="costcategory"
)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("birthday", sa.Date()),
        sa.Column("marital_status", sa.String(length=40)),
        sa.Column("total", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("id >= 0", name="ck_users_id_non_negative"),
    )

    op.create_table(
        "costs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", CATEGORY_ENUM, nullable=False),
        sa.Column("sum", sa.Float(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_costs_userid_date", "costs", ["userid", "date"])

    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("costs", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("userid", "year", "month", name="uq_report_user_month"),
    )


def downgrade():
    op.drop_table("reports")
    op.drop_index("ix_costs_userid_date", table_name="costs")
    op.drop_table("costs")
    op.drop_table("users")
    CATEGORY_ENUM.drop(op.get_bind(), checkfirst=True)
