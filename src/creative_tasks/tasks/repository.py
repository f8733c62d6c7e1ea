"""Task repositories: durable SQLModel store and ephemeral in-process store."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Collection, Mapping, Sequence
from dataclasses import replace
from datetime import date, datetime, time
from pathlib import Path
from typing import Protocol

from sqlalchemy import case, func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from creative_tasks.config import Settings
from creative_tasks.errors import TaskNotFoundError
from creative_tasks.media.models import StorageKind, StorageReference
from creative_tasks.storage.alembic_runner import upgrade_head
from creative_tasks.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware,
    utc_now,
)
from creative_tasks.storage.sqlmodel_models import GenerationTask, TaskFile
from creative_tasks.tasks.models import (
    ArtifactView,
    ArtifactWrite,
    FileRole,
    PageRequest,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskStatus,
    TaskView,
)

logger = logging.getLogger(__name__)
SYSTEM_USERNAME = "system"


class TaskRepository(Protocol):
    """Persistence port used by the lifecycle manager and the URL cache."""

    durable: bool

    def create_task(self, payload: TaskCreate) -> TaskView: ...

    def get_task(self, task_id: int) -> TaskView | None: ...

    def add_artifacts(
        self,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
        *,
        create_username: str,
    ) -> list[ArtifactView]: ...

    def transition_status(
        self,
        task_id: int,
        *,
        from_statuses: Collection[TaskStatus],
        to_status: TaskStatus,
        error_message: str | None = None,
    ) -> bool: ...

    def complete_task(
        self,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
        *,
        create_username: str,
    ) -> bool: ...

    def update_artifact_urls(self, urls: Mapping[int, str], *, refreshed_at: datetime) -> int: ...

    def list_tasks(self, task_filter: TaskFilter, page: PageRequest) -> TaskPage: ...

    def close(self) -> None: ...


class SqlTaskRepository:
    """Durable repository backed by SQLModel + SQLite with Alembic migrations."""

    durable = True

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def create_task(self, payload: TaskCreate) -> TaskView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = GenerationTask(
                project_id=payload.project_id,
                username=payload.username,
                source_tab=payload.source_tab,
                prompt=payload.prompt,
                prompt_trans=payload.prompt_trans,
                model=payload.model,
                parameters_json=json.dumps(payload.parameters, ensure_ascii=False),
                status=TaskStatus.PENDING.value,
                error_message=None,
                create_username=payload.create_username or SYSTEM_USERNAME,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row, [])

    def get_task(self, task_id: int) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(GenerationTask).where(
                    GenerationTask.id == task_id,
                    col(GenerationTask.is_deleted).is_(False),
                ),
            ).one_or_none()
            if row is None:
                return None
            files = self._load_files(session, [task_id])
            return _to_task_view(row, files.get(task_id, []))

    def add_artifacts(
        self,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
        *,
        create_username: str,
    ) -> list[ArtifactView]:
        with Session(self.engine) as session:
            self._require_task(session, task_id)
            rows = self._insert_files(session, task_id, artifacts, create_username)
            session.commit()
            for row in rows:
                session.refresh(row)
            return [_to_artifact_view(row) for row in rows]

    def transition_status(
        self,
        task_id: int,
        *,
        from_statuses: Collection[TaskStatus],
        to_status: TaskStatus,
        error_message: str | None = None,
    ) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(GenerationTask)
                .where(
                    col(GenerationTask.id) == task_id,
                    col(GenerationTask.is_deleted).is_(False),
                    col(GenerationTask.status).in_([status.value for status in from_statuses]),
                )
                .values(
                    status=to_status.value,
                    error_message=error_message if to_status == TaskStatus.FAILED else None,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_task(
        self,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
        *,
        create_username: str,
    ) -> bool:
        """Insert output rows and move PROCESSING to COMPLETED in one transaction."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(GenerationTask)
                .where(
                    col(GenerationTask.id) == task_id,
                    col(GenerationTask.is_deleted).is_(False),
                    col(GenerationTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    error_message=None,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._insert_files(session, task_id, artifacts, create_username)
            session.commit()
            return True

    def update_artifact_urls(self, urls: Mapping[int, str], *, refreshed_at: datetime) -> int:
        """Write every refreshed URL with one `UPDATE ... CASE id WHEN ...` statement."""

        if not urls:
            return 0
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskFile)
                .where(col(TaskFile.id).in_(list(urls)))
                .values(
                    preview_url=case(dict(urls), value=col(TaskFile.id)),
                    preview_url_refreshed_at=to_db_datetime(refreshed_at),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def list_tasks(self, task_filter: TaskFilter, page: PageRequest) -> TaskPage:
        conditions = [col(GenerationTask.is_deleted).is_(False)]
        if task_filter.username:
            conditions.append(col(GenerationTask.username) == task_filter.username)
        if task_filter.source_tab:
            conditions.append(col(GenerationTask.source_tab) == task_filter.source_tab)
        if task_filter.start_date is not None:
            conditions.append(
                col(GenerationTask.created_at) >= _day_start(task_filter.start_date),
            )
        if task_filter.end_date is not None:
            conditions.append(col(GenerationTask.created_at) <= _day_end(task_filter.end_date))

        with Session(self.engine) as session:
            total = session.exec(
                select(func.count()).select_from(GenerationTask).where(*conditions),
            ).one()
            rows = session.exec(
                select(GenerationTask)
                .where(*conditions)
                .order_by(col(GenerationTask.created_at).desc(), col(GenerationTask.id).desc())
                .offset(page.offset)
                .limit(page.page_size),
            ).all()
            task_ids = [row.id for row in rows if row.id is not None]
            files = self._load_files(session, task_ids)
            items = [_to_task_view(row, files.get(row.id or 0, [])) for row in rows]
        return TaskPage(items=items, total=int(total), page=page.page, page_size=page.page_size)

    def _require_task(self, session: Session, task_id: int) -> GenerationTask:
        row = session.exec(
            select(GenerationTask).where(
                GenerationTask.id == task_id,
                col(GenerationTask.is_deleted).is_(False),
            ),
        ).one_or_none()
        if row is None:
            raise TaskNotFoundError(task_id)
        return row

    def _insert_files(
        self,
        session: Session,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
        create_username: str,
    ) -> list[TaskFile]:
        now = to_db_datetime(utc_now())
        rows = []
        for artifact in artifacts:
            storage = artifact.storage
            refreshed_at = artifact.preview_url_refreshed_at
            row = TaskFile(
                task_id=task_id,
                file_role=artifact.role.value,
                file_name=artifact.file_name,
                mime_type=artifact.mime_type,
                storage_kind=storage.kind.value,
                storage_uri=storage.uri,
                inline_payload=storage.payload_base64,
                preview_url=artifact.preview_url,
                preview_url_refreshed_at=to_db_datetime(refreshed_at) if refreshed_at else None,
                aspect_ratio=artifact.aspect_ratio,
                size_bytes=storage.size_bytes,
                create_username=create_username,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            rows.append(row)
        return rows

    def _load_files(self, session: Session, task_ids: list[int]) -> dict[int, list[ArtifactView]]:
        if not task_ids:
            return {}
        rows = session.exec(
            select(TaskFile)
            .where(
                col(TaskFile.task_id).in_(task_ids),
                col(TaskFile.is_deleted).is_(False),
            )
            .order_by(col(TaskFile.id).asc()),
        ).all()
        grouped: dict[int, list[ArtifactView]] = {}
        for row in rows:
            grouped.setdefault(row.task_id, []).append(_to_artifact_view(row))
        return grouped


class InMemoryTaskRepository:
    """Ephemeral repository for offline runs; contents vanish with the process."""

    durable = False

    def __init__(self) -> None:
        self._tasks: dict[int, TaskView] = {}
        self._files: dict[int, ArtifactView] = {}
        self._next_task_id = 1
        self._next_file_id = 1
        self._lock = threading.Lock()

    def close(self) -> None:
        return None

    def create_task(self, payload: TaskCreate) -> TaskView:
        now = utc_now()
        with self._lock:
            task = TaskView(
                id=self._next_task_id,
                username=payload.username,
                source_tab=payload.source_tab,
                model=payload.model,
                status=TaskStatus.PENDING,
                prompt=payload.prompt,
                prompt_trans=payload.prompt_trans,
                project_id=payload.project_id,
                parameters=dict(payload.parameters),
                error_message=None,
                create_username=payload.create_username or SYSTEM_USERNAME,
                created_at=now,
                updated_at=now,
            )
            self._next_task_id += 1
            self._tasks[task.id] = task
            return self._snapshot(task)

    def get_task(self, task_id: int) -> TaskView | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return self._snapshot(task) if task is not None else None

    def add_artifacts(
        self,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
        *,
        create_username: str,
    ) -> list[ArtifactView]:
        with self._lock:
            if task_id not in self._tasks:
                raise TaskNotFoundError(task_id)
            return [replace(view) for view in self._insert_files(task_id, artifacts)]

    def transition_status(
        self,
        task_id: int,
        *,
        from_statuses: Collection[TaskStatus],
        to_status: TaskStatus,
        error_message: str | None = None,
    ) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status not in from_statuses:
                return False
            task.status = to_status
            task.error_message = error_message if to_status == TaskStatus.FAILED else None
            task.updated_at = utc_now()
            return True

    def complete_task(
        self,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
        *,
        create_username: str,
    ) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.PROCESSING:
                return False
            self._insert_files(task_id, artifacts)
            task.status = TaskStatus.COMPLETED
            task.error_message = None
            task.updated_at = utc_now()
            return True

    def update_artifact_urls(self, urls: Mapping[int, str], *, refreshed_at: datetime) -> int:
        touched = 0
        with self._lock:
            for file_id, url in urls.items():
                view = self._files.get(file_id)
                if view is None:
                    continue
                view.preview_url = url
                view.preview_url_refreshed_at = refreshed_at
                touched += 1
        return touched

    def list_tasks(self, task_filter: TaskFilter, page: PageRequest) -> TaskPage:
        with self._lock:
            matches = [
                task for task in self._tasks.values() if _matches_filter(task, task_filter)
            ]
            matches.sort(key=lambda task: (task.created_at, task.id), reverse=True)
            window = matches[page.offset : page.offset + page.page_size]
            items = [self._snapshot(task) for task in window]
        return TaskPage(items=items, total=len(matches), page=page.page, page_size=page.page_size)

    def _insert_files(
        self,
        task_id: int,
        artifacts: Sequence[ArtifactWrite],
    ) -> list[ArtifactView]:
        now = utc_now()
        views = []
        for artifact in artifacts:
            view = ArtifactView(
                id=self._next_file_id,
                task_id=task_id,
                role=artifact.role,
                file_name=artifact.file_name,
                mime_type=artifact.mime_type,
                storage=artifact.storage,
                aspect_ratio=artifact.aspect_ratio,
                preview_url=artifact.preview_url,
                preview_url_refreshed_at=artifact.preview_url_refreshed_at,
                created_at=now,
                updated_at=now,
            )
            self._next_file_id += 1
            self._files[view.id] = view
            views.append(view)
        return views

    def _snapshot(self, task: TaskView) -> TaskView:
        files = sorted(
            (replace(view) for view in self._files.values() if view.task_id == task.id),
            key=lambda view: view.id or 0,
        )
        return replace(
            task,
            parameters=dict(task.parameters),
            input_files=[view for view in files if view.role == FileRole.INPUT],
            output_files=[view for view in files if view.role == FileRole.OUTPUT],
        )


def build_repository(settings: Settings) -> TaskRepository:
    """Instantiate the configured repository; the choice holds for the process lifetime."""

    backend = settings.repository.backend
    if backend == "memory":
        logger.warning("Using in-memory task repository; tasks will not survive restart.")
        return InMemoryTaskRepository()
    if backend != "sql":
        raise ValueError(f"Unsupported repository backend: {backend!r}")
    repository = SqlTaskRepository(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    return repository


def _matches_filter(task: TaskView, task_filter: TaskFilter) -> bool:
    if task_filter.username and task.username != task_filter.username:
        return False
    if task_filter.source_tab and task.source_tab != task_filter.source_tab:
        return False
    created_at = to_db_datetime(task.created_at)
    if task_filter.start_date is not None and created_at < _day_start(task_filter.start_date):
        return False
    return not (task_filter.end_date is not None and created_at > _day_end(task_filter.end_date))


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _day_end(value: date) -> datetime:
    return datetime.combine(value, time.max)


def _to_storage_reference(row: TaskFile) -> StorageReference:
    if row.storage_kind == StorageKind.INLINE.value:
        return StorageReference.inline(
            row.inline_payload or "",
            mime_type=row.mime_type,
            size_bytes=row.size_bytes,
        )
    return StorageReference.object(
        row.storage_uri or "",
        mime_type=row.mime_type,
        size_bytes=row.size_bytes,
    )


def _to_artifact_view(row: TaskFile) -> ArtifactView:
    refreshed_at = row.preview_url_refreshed_at
    return ArtifactView(
        id=row.id,
        task_id=row.task_id,
        role=FileRole(row.file_role),
        file_name=row.file_name,
        mime_type=row.mime_type,
        storage=_to_storage_reference(row),
        aspect_ratio=row.aspect_ratio,
        preview_url=row.preview_url,
        preview_url_refreshed_at=to_utc_aware(refreshed_at) if refreshed_at else None,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_task_view(row: GenerationTask, files: list[ArtifactView]) -> TaskView:
    if row.id is None:
        raise ValueError("Task row has not been flushed yet.")
    return TaskView(
        id=row.id,
        username=row.username,
        source_tab=row.source_tab,
        model=row.model,
        status=TaskStatus(row.status),
        prompt=row.prompt,
        prompt_trans=row.prompt_trans,
        project_id=row.project_id,
        parameters=json.loads(row.parameters_json) if row.parameters_json else {},
        error_message=row.error_message,
        create_username=row.create_username,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
        input_files=[view for view in files if view.role == FileRole.INPUT],
        output_files=[view for view in files if view.role == FileRole.OUTPUT],
    )
