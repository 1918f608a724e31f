"""create_tracking_schema

Create organization, project tracking, approval chain and notification
tables.

Revision ID: a7c1e9d2b401
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a7c1e9d2b401"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=30), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", sa.String(length=30), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "departments" not in existing_tables:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("emp_code", sa.String(length=30), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("emp_code"),
        )
        op.create_index("ix_users_department_id", "users", ["department_id"])

    if "workflow_steps" not in existing_tables:
        op.create_table(
            "workflow_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("department_id", "approver_id", name="uq_workflow_steps_dept_approver"),
        )
        op.create_index("ix_workflow_steps_department_id", "workflow_steps", ["department_id"])
        op.create_index("ix_workflow_steps_approver_id", "workflow_steps", ["approver_id"])
        op.create_index(
            "uq_workflow_steps_dept_order_active",
            "workflow_steps",
            ["department_id", "step_order"],
            unique=True,
            postgresql_where=sa.text("status = 'active'"),
            sqlite_where=sa.text("status = 'active'"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("part_no", sa.String(length=100), nullable=True),
            sa.Column("part_name", sa.String(length=200), nullable=True),
            sa.Column("model", sa.String(length=100), nullable=True),
            sa.Column("customer_name", sa.String(length=200), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="inprogress"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "item_details" not in existing_tables:
        op.create_table(
            "item_details",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("reference_id", sa.Integer(), nullable=False),
            sa.Column("item_type", sa.String(length=10), nullable=False, server_default="apqp"),
            sa.Column("item_name", sa.String(length=200), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("line_code", sa.String(length=50), nullable=True),
            sa.Column("lifecycle_status", sa.String(length=20), nullable=False, server_default="inprogress"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_item_details_project_id", "item_details", ["project_id"])
        op.create_index("ix_item_details_department_id", "item_details", ["department_id"])
        op.create_index("ix_item_details_owner_id", "item_details", ["owner_id"])
        op.create_index("ix_item_details_reference", "item_details", ["reference_id", "item_type"])

    if "tracking_files" not in existing_tables:
        op.create_table(
            "tracking_files",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("item_detail_id", sa.Integer(), nullable=False),
            sa.Column("file_name", sa.String(length=255), nullable=True),
            sa.Column("file_path", sa.String(length=500), nullable=True),
            sa.Column("file_type", sa.String(length=50), nullable=True),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["item_detail_id"], ["item_details.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("item_detail_id"),
        )
        op.create_index("ix_tracking_files_project_id", "tracking_files", ["project_id"])

    if "approval_records" not in existing_tables:
        op.create_table(
            "approval_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_detail_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=True),
            sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="waiting"),
            sa.Column("is_action", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("round", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("type", sa.String(length=10), nullable=False, server_default="Leader"),
            sa.Column("status_flag", sa.String(length=10), nullable=False, server_default="active"),
            sa.Column("note", sa.Text(), nullable=True),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["item_detail_id"], ["item_details.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_records_item_detail_id", "approval_records", ["item_detail_id"])
        op.create_index("ix_approval_records_approver_id", "approval_records", ["approver_id"])
        op.create_index("ix_approval_records_item_flag", "approval_records", ["item_detail_id", "status_flag"])
        op.create_index(
            "uq_approval_records_item_action",
            "approval_records",
            ["item_detail_id"],
            unique=True,
            postgresql_where=sa.text("is_action = 1 AND status_flag = 'active'"),
            sqlite_where=sa.text("is_action = 1 AND status_flag = 'active'"),
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("item_detail_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["item_detail_id"], ["item_details.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
        op.create_index("ix_notifications_item_detail_id", "notifications", ["item_detail_id"])

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("recipient_name", sa.String(length=150), nullable=True),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("template_name", sa.String(length=100), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("notification_id", sa.Integer(), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "email_logs",
        "notifications",
        "approval_records",
        "tracking_files",
        "item_details",
        "projects",
        "workflow_steps",
        "users",
        "departments",
    ):
        if table in existing_tables:
            op.drop_table(table)
