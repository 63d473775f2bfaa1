"""accountability points schema with stock thresholds and buckets

Revision ID: 0001_accountability_points
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_accountability_points"
down_revision = None
branch_labels = None
depends_on = None


THRESHOLDS = [
    (2, "Verbal coaching conversation with a manager."),
    (3, "Documented verbal warning."),
    (5, "First written warning."),
    (6, "Second written warning and schedule review."),
    (9, "Final written warning."),
    (12, "Suspension review with the director."),
    (15, "Termination review."),
]

BUCKETS = [
    ("Minor", 1, ["Late clock-in under 15 minutes", "Uniform out of standard", "Missed side work"]),
    ("Moderate", 3, ["Late clock-in over 15 minutes", "Leaving shift early without approval", "Cash drawer variance"]),
    ("Serious", 5, ["No-call late arrival", "Food safety violation", "Insubordination"]),
    ("Severe", 8, ["No-call no-show", "Harassment", "Theft or falsifying time records"]),
]


def upgrade() -> None:
    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.String(length=120), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("primary_location", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Active"),
        sa.Column("system_role", sa.String(length=20), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('Active', 'Inactive')", name="ck_employees_status"),
        sa.CheckConstraint(
            "system_role IS NULL OR system_role IN ('Manager', 'Director', 'Operator')",
            name="ck_employees_system_role",
        ),
    )
    op.create_index("ix_employees_employee_id", "employees", ["employee_id"], unique=True)

    op.create_table(
        "infractions",
        sa.Column("infraction_id", sa.String(length=32), primary_key=True),
        sa.Column("employee_id", sa.String(length=120), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("infraction_type", sa.String(length=120), nullable=False),
        sa.Column("points", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("location", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("entered_by", sa.String(length=255), nullable=False),
        sa.Column("entry_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="Active"),
        sa.Column("modified_by", sa.String(length=255), nullable=True),
        sa.Column("modified_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modification_reason", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('Active', 'Modified', 'Deleted', 'Archived-Terminated')",
            name="ck_infractions_status",
        ),
    )
    op.create_index("ix_infractions_employee_id", "infractions", ["employee_id"])
    op.create_index("ix_infractions_status", "infractions", ["status"])
    op.create_index("ix_infractions_employee_date", "infractions", ["employee_id", "date"])

    op.create_table(
        "edit_log",
        sa.Column("log_id", sa.String(length=64), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action_type", sa.String(length=40), nullable=False),
        sa.Column("actor_identity", sa.String(length=255), nullable=False),
        sa.Column("target_type", sa.String(length=40), nullable=False),
        sa.Column("target_id", sa.String(length=120), nullable=False),
        sa.Column("employee_id", sa.String(length=120), nullable=False),
        sa.Column("employee_name", sa.String(length=255), nullable=False),
        sa.Column("field_changed", sa.String(length=60), nullable=False),
        sa.Column("original_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.CheckConstraint(
            "action_type IN ('edit_infraction', 'delete_infraction', 'remove_points', 'add_credit', 'terminate')",
            name="ck_edit_log_action_type",
        ),
    )
    op.create_index("ix_edit_log_timestamp", "edit_log", ["timestamp"])
    op.create_index("ix_edit_log_target_id", "edit_log", ["target_id"])
    op.create_index("ix_edit_log_employee_id", "edit_log", ["employee_id"])

    op.create_table(
        "notification_log",
        sa.Column("log_id", sa.String(length=64), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("employee_id", sa.String(length=120), nullable=True),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("recipients", sa.Text(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("thresholds", sa.JSON(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.CheckConstraint("status IN ('Sent', 'Failed')", name="ck_notification_log_status"),
    )
    op.create_index("ix_notification_log_timestamp", "notification_log", ["timestamp"])
    op.create_index("ix_notification_log_employee_id", "notification_log", ["employee_id"])

    op.create_table(
        "terminations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.String(length=120), nullable=False),
        sa.Column("employee_name", sa.String(length=255), nullable=False),
        sa.Column("final_points", sa.Float(), nullable=False),
        sa.Column("archived_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("terminated_by", sa.String(length=255), nullable=False),
        sa.Column("terminated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
    )
    op.create_index("ix_terminations_employee_id", "terminations", ["employee_id"])

    thresholds = op.create_table(
        "point_thresholds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("threshold", sa.Float(), nullable=False, unique=True),
        sa.Column("consequence", sa.Text(), nullable=False, server_default=""),
    )
    buckets = op.create_table(
        "infraction_buckets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("points", sa.Float(), nullable=False),
        sa.Column("examples", sa.JSON(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    )
    app_settings = op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=120), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.bulk_insert(thresholds, [{"threshold": float(value), "consequence": text} for value, text in THRESHOLDS])
    op.bulk_insert(
        buckets,
        [
            {"name": name, "points": float(points), "examples": examples, "sort_order": index}
            for index, (name, points, examples) in enumerate(BUCKETS)
        ],
    )
    op.bulk_insert(
        app_settings,
        [
            {"key": "backdate_limit_days", "value": 7},
            {"key": "valid_locations", "value": []},
        ],
    )


def downgrade() -> None:
    op.drop_table("app_settings")
    op.drop_table("infraction_buckets")
    op.drop_table("point_thresholds")
    op.drop_index("ix_terminations_employee_id", table_name="terminations")
    op.drop_table("terminations")
    op.drop_index("ix_notification_log_employee_id", table_name="notification_log")
    op.drop_index("ix_notification_log_timestamp", table_name="notification_log")
    op.drop_table("notification_log")
    op.drop_index("ix_edit_log_employee_id", table_name="edit_log")
    op.drop_index("ix_edit_log_target_id", table_name="edit_log")
    op.drop_index("ix_edit_log_timestamp", table_name="edit_log")
    op.drop_table("edit_log")
    op.drop_index("ix_infractions_employee_date", table_name="infractions")
    op.drop_index("ix_infractions_status", table_name="infractions")
    op.drop_index("ix_infractions_employee_id", table_name="infractions")
    op.drop_table("infractions")
    op.drop_index("ix_employees_employee_id", table_name="employees")
    op.drop_table("employees")
