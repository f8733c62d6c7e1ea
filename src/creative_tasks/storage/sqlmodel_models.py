"""SQLModel ORM tables for generation tasks and their files."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, text
from sqlmodel import Field, SQLModel


class GenerationTask(SQLModel, table=True):
    __tablename__ = "generation_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_generation_tasks_history", "source_tab", "username", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    project_id: str | None = Field(default=None)
    username: str = Field(index=True)
    source_tab: str = Field(index=True)
    prompt: str | None = Field(default=None, sa_column=Column(Text))
    prompt_trans: str | None = Field(default=None, sa_column=Column(Text))
    model: str
    parameters_json: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(index=True)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    create_username: str = Field(default="system")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    is_deleted: bool = Field(
        default=False,
        sa_column_kwargs={"server_default": text("0")},
    )


class TaskFile(SQLModel, table=True):
    __tablename__ = "task_files"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("generation_tasks.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    file_role: str = Field(index=True)
    file_name: str
    mime_type: str = Field(default="application/octet-stream")
    storage_kind: str
    storage_uri: str | None = Field(default=None)
    inline_payload: str | None = Field(default=None, sa_column=Column(Text))
    preview_url: str | None = Field(default=None, sa_column=Column(Text))
    preview_url_refreshed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    aspect_ratio: str = Field(default="1:1")
    size_bytes: int | None = None
    create_username: str = Field(default="system")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    is_deleted: bool = Field(
        default=False,
        sa_column_kwargs={"server_default": text("0")},
    )
