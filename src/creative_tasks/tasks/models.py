"""Domain models for generation tasks and their artifacts."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from creative_tasks.engine.base import InputGroup
from creative_tasks.errors import ValidationError
from creative_tasks.media.models import StorageReference

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


class TaskStatus(str, Enum):
    """Generation task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class FileRole(str, Enum):
    """Artifact role within a task."""

    INPUT = "input"
    OUTPUT = "output"


def build_source_tab(path: str, tab: str | None = None) -> str:
    """Logical source tag: the page path, qualified by tab when one is given."""

    return f"{path}?tab={tab}" if tab else path


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a generation task."""

    username: str
    source_tab: str
    model: str
    prompt: str | None = None
    prompt_trans: str | None = None
    project_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    create_username: str | None = None


@dataclass(slots=True)
class InputFile:
    """One caller-supplied input file before storage routing."""

    data: bytes | str
    mime_type: str
    file_name: str | None = None
    group: InputGroup = InputGroup.COMMON
    aspect_ratio: str = "1:1"
    size_bytes: int | None = None


@dataclass(slots=True)
class ArtifactWrite:
    """Artifact row to persist."""

    role: FileRole
    file_name: str
    mime_type: str
    storage: StorageReference
    aspect_ratio: str = "1:1"
    preview_url: str | None = None
    preview_url_refreshed_at: datetime | None = None


@dataclass(slots=True)
class ArtifactView:
    """Persisted artifact."""

    id: int | None
    task_id: int
    role: FileRole
    file_name: str
    mime_type: str
    storage: StorageReference
    aspect_ratio: str
    preview_url: str | None
    preview_url_refreshed_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskView:
    """Readable task view with its artifacts."""

    id: int
    username: str
    source_tab: str
    model: str
    status: TaskStatus
    prompt: str | None
    prompt_trans: str | None
    project_id: str | None
    parameters: dict[str, Any]
    error_message: str | None
    create_username: str
    created_at: datetime
    updated_at: datetime
    input_files: list[ArtifactView] = field(default_factory=list)
    output_files: list[ArtifactView] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def files(self) -> list[ArtifactView]:
        return [*self.input_files, *self.output_files]


@dataclass(slots=True)
class TaskFilter:
    """History filters; date bounds cover whole days."""

    username: str | None = None
    source_tab: str | None = None
    start_date: date | None = None
    end_date: date | None = None


@dataclass(slots=True)
class PageRequest:
    """1-based pagination request."""

    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def validate(self) -> None:
        if self.page < 1:
            raise ValidationError(f"page must be >= 1, got {self.page}.")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {self.page_size}.",
            )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(slots=True)
class TaskPage:
    """One page of tasks plus the total number of matches."""

    items: list[TaskView]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0
