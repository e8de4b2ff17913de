"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    dt6 = mysql.DATETIME(fsp=6)
    charset = {"mysql_charset": "utf8mb4", "mysql_collate": "utf8mb4_unicode_ci"}

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("role", sa.String(length=16), nullable=False, server_default=sa.text("'free'")),
        sa.Column("hashed_password", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        **charset,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "collections",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        **charset,
    )
    op.create_index("ix_collections_user_id", "collections", ["user_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("collection_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("interval", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("next_run", dt6, nullable=False),
        sa.Column("locked_by", sa.String(length=64), nullable=True),
        sa.Column("locked_until", dt6, nullable=True),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        **charset,
    )
    op.create_index("ix_tasks_user_id", "tasks", ["user_id"])
    op.create_index("ix_tasks_collection_id", "tasks", ["collection_id"])
    op.create_index("ix_tasks_next_run", "tasks", ["next_run"])
    op.create_index("ix_tasks_locked_until", "tasks", ["locked_until"])

    op.create_table(
        "results",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("result", sa.Text(), nullable=False),
        sa.Column("is_error", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        **charset,
    )
    op.create_index("ix_results_task_id", "results", ["task_id"])
    op.create_index("ix_results_user_id", "results", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("result_id", sa.BigInteger(), nullable=False),
        sa.Column("notification", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        **charset,
    )
    op.create_index("ix_notifications_task_id", "notifications", ["task_id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_result_id", "notifications", ["result_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_result_id", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_index("ix_notifications_task_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_results_user_id", table_name="results")
    op.drop_index("ix_results_task_id", table_name="results")
    op.drop_table("results")

    op.drop_index("ix_tasks_locked_until", table_name="tasks")
    op.drop_index("ix_tasks_next_run", table_name="tasks")
    op.drop_index("ix_tasks_collection_id", table_name="tasks")
    op.drop_index("ix_tasks_user_id", table_name="tasks")
    op.drop_table("tasks")

    op.drop_index("ix_collections_user_id", table_name="collections")
    op.drop_table("collections")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
