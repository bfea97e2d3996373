from alembic import op
import sqlalchemy as sa

revision = "0001_cleaning_sync_tables"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(conn, name: str) -> bool:
    return sa.inspect(conn).has_table(name)


def upgrade():
    conn = op.get_bind()
    now = sa.text("CURRENT_TIMESTAMP")

    # properties / orders belong to the order store; created here only when
    # the sync engine runs against its own database
    if not _has_table(conn, "properties"):
        op.create_table(
            "properties",
            sa.Column("id", sa.String(64), primary_key=True),
            sa.Column("code", sa.String(80), nullable=True, index=True),
            sa.Column("capacity", sa.Integer(), nullable=True),
            sa.Column("type", sa.String(60), nullable=True),
            sa.Column("address", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=now),
        )

    if not _has_table(conn, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(64), primary_key=True),
            sa.Column("property_id", sa.String(64), nullable=True, index=True),
            sa.Column("checkin", sa.String(40), nullable=True, index=True),
            sa.Column("checkout", sa.String(40), nullable=True, index=True),
            sa.Column("nights", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(30), nullable=False, server_default="confirmed"),
            sa.Column("cleaning_fee", sa.Float(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("guest_name", sa.String(160), nullable=True),
            sa.Column("confirmation_code", sa.String(80), nullable=True, index=True),
            sa.Column("source", sa.String(60), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=now),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=now),
        )

    if not _has_table(conn, "cleaning_tasks"):
        op.create_table(
            "cleaning_tasks",
            sa.Column("id", sa.String(64), primary_key=True),
            sa.Column("order_id", sa.String(64), nullable=False, index=True),
            sa.Column("task_type", sa.String(30), nullable=False),
            sa.Column("property_id", sa.String(64), nullable=True),
            sa.Column("task_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
            sa.Column("priority", sa.String(10), nullable=False, server_default="low"),
            sa.Column("service_type", sa.String(20), nullable=False, server_default="standard"),
            sa.Column("rooms", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("content", sa.Text(), nullable=True),
            sa.Column("recommended_start_day", sa.Date(), nullable=True),
            sa.Column("assignee_id", sa.String(64), nullable=True),
            sa.Column("scheduled_at", sa.DateTime(), nullable=True),
            sa.Column("auto_sync_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("reschedule_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("sync_fingerprint", sa.String(64), nullable=True),
            sa.Column("source", sa.String(20), nullable=False, server_default="auto"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=now),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=now),
            sa.UniqueConstraint("order_id", "task_type", name="uq_cleaning_tasks_order_task_type"),
        )
        op.create_index("idx_cleaning_tasks_task_date", "cleaning_tasks", ["task_date"])
        op.create_index("idx_cleaning_tasks_status", "cleaning_tasks", ["status"])

    if not _has_table(conn, "cleaning_sync_logs"):
        op.create_table(
            "cleaning_sync_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.String(64), nullable=False, index=True),
            sa.Column("task_id", sa.String(64), nullable=True),
            sa.Column("task_type", sa.String(30), nullable=True),
            sa.Column("mode", sa.String(20), nullable=False, server_default="realtime"),
            sa.Column("action", sa.String(30), nullable=False),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("actor", sa.String(200), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("before_json", sa.Text(), nullable=True),
            sa.Column("after_json", sa.Text(), nullable=True),
            sa.Column("meta_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=now),
        )
        op.create_index("idx_cleaning_sync_logs_created_at", "cleaning_sync_logs", ["created_at"])
        op.create_index("idx_cleaning_sync_logs_action", "cleaning_sync_logs", ["action"])


def downgrade():
    op.drop_table("cleaning_sync_logs")
    op.drop_table("cleaning_tasks")
    op.drop_table("orders")
    op.drop_table("properties")
