"""Generation tasks and task files baseline schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "generation_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("source_tab", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("prompt_trans", sa.Text(), nullable=True),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("parameters_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("create_username", sa.String(), nullable=False, server_default="system"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_tasks_username", "generation_tasks", ["username"])
    op.create_index("ix_generation_tasks_source_tab", "generation_tasks", ["source_tab"])
    op.create_index("ix_generation_tasks_status", "generation_tasks", ["status"])
    op.create_index(
        "idx_generation_tasks_history",
        "generation_tasks",
        ["source_tab", "username", "created_at"],
    )

    op.create_table(
        "task_files",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("file_role", sa.String(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column(
            "mime_type",
            sa.String(),
            nullable=False,
            server_default="application/octet-stream",
        ),
        sa.Column("storage_kind", sa.String(), nullable=False),
        sa.Column("storage_uri", sa.String(), nullable=True),
        sa.Column("inline_payload", sa.Text(), nullable=True),
        sa.Column("preview_url", sa.Text(), nullable=True),
        sa.Column("preview_url_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("aspect_ratio", sa.String(), nullable=False, server_default="1:1"),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.Column("create_username", sa.String(), nullable=False, server_default="system"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["task_id"], ["generation_tasks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_files_task_id", "task_files", ["task_id"])
    op.create_index("ix_task_files_file_role", "task_files", ["file_role"])


def downgrade() -> None:
    op.drop_index("ix_task_files_file_role", table_name="task_files")
    op.drop_index("ix_task_files_task_id", table_name="task_files")
    op.drop_table("task_files")
    op.drop_index("idx_generation_tasks_history", table_name="generation_tasks")
    op.drop_index("ix_generation_tasks_status", table_name="generation_tasks")
    op.drop_index("ix_generation_tasks_source_tab", table_name="generation_tasks")
    op.drop_index("ix_generation_tasks_username", table_name="generation_tasks")
    op.drop_table("generation_tasks")
