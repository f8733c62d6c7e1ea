"""Task state machine: the only component that mutates task status."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, NoReturn

from creative_tasks.errors import (
    EngineError,
    InvalidTransitionError,
    TaskNotFoundError,
    ValidationError,
)
from creative_tasks.media.models import NormalizedArtifact, StorageReference
from creative_tasks.media.normalizer import NormalizeOptions, ResponseNormalizer
from creative_tasks.media.routing import (
    MediaStorageRouter,
    RouteItem,
    object_path,
    safe_file_name,
)
from creative_tasks.media.signed_urls import SignedUrlCache
from creative_tasks.storage.common import utc_now
from creative_tasks.tasks.models import (
    ArtifactView,
    ArtifactWrite,
    FileRole,
    InputFile,
    PageRequest,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskStatus,
    TaskView,
)
from creative_tasks.tasks.repository import TaskRepository

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Task failed."
_FAILABLE = (TaskStatus.PENDING, TaskStatus.PROCESSING, TaskStatus.FAILED)


class TaskLifecycleManager:
    """Creates tasks, records artifacts and drives `PENDING -> PROCESSING -> terminal`."""

    def __init__(
        self,
        repository: TaskRepository,
        router: MediaStorageRouter,
        normalizer: ResponseNormalizer,
        url_cache: SignedUrlCache,
        *,
        input_subfolder: str = "input",
        output_subfolder: str = "output",
    ) -> None:
        self.repository = repository
        self.router = router
        self.normalizer = normalizer
        self.url_cache = url_cache
        self.input_subfolder = input_subfolder
        self.output_subfolder = output_subfolder

    def create_task(self, params: TaskCreate) -> int:
        """Persist a new PENDING task and return its id."""

        for name in ("username", "source_tab", "model"):
            value = getattr(params, name)
            if not value or not str(value).strip():
                raise ValidationError(f"{name} is required to create a task.")
        task = self.repository.create_task(params)
        logger.info(
            "Created task %s (user=%s, source=%s, model=%s)",
            task.id,
            task.username,
            task.source_tab,
            task.model,
        )
        return task.id

    def record_input_artifacts(
        self,
        task_id: int,
        files: Sequence[InputFile],
    ) -> list[ArtifactView]:
        """Route input files to storage and persist them as INPUT artifacts.

        Not idempotent: every call writes new objects for large files.
        """

        if not files:
            raise ValidationError("At least one input file is required.")
        task = self._require_task(task_id)
        if task.is_terminal:
            raise ValidationError(
                f"Task {task_id} is {task.status.value}; inputs can no longer be recorded.",
            )

        names = [safe_file_name(item.file_name) for item in files]
        references = self.router.route_many(
            [
                RouteItem(
                    payload=item.data,
                    mime_type=item.mime_type,
                    size_bytes=item.size_bytes,
                    destination=object_path(
                        task.username,
                        f"task_{task_id}",
                        self.input_subfolder,
                        item.group.value,
                        name,
                    ),
                )
                for item, name in zip(files, names, strict=True)
            ],
        )
        writes = [
            self._artifact_write(
                role=FileRole.INPUT,
                file_name=name,
                storage=reference,
                aspect_ratio=item.aspect_ratio,
            )
            for item, name, reference in zip(files, names, references, strict=True)
        ]
        artifacts = self.repository.add_artifacts(
            task_id,
            writes,
            create_username=task.username,
        )
        logger.info("Recorded %d input artifacts for task %s", len(artifacts), task_id)
        return artifacts

    def mark_processing(self, task_id: int) -> None:
        if not self.repository.transition_status(
            task_id,
            from_statuses=(TaskStatus.PENDING,),
            to_status=TaskStatus.PROCESSING,
        ):
            self._raise_transition_error(task_id, TaskStatus.PROCESSING)
        logger.info("Task %s is processing", task_id)

    def complete_with_outputs(
        self,
        task_id: int,
        raw_outputs: Sequence[Mapping[str, Any]],
        *,
        options: NormalizeOptions | None = None,
    ) -> TaskView:
        """Normalize and store engine outputs, then move the task to COMPLETED.

        Output rows and the status change are committed together. On any error the
        task stays PROCESSING and the error propagates; objects already uploaded
        for this batch are left in the store.
        """

        task = self._require_task(task_id)
        if task.status != TaskStatus.PROCESSING:
            self._raise_transition_error(task_id, TaskStatus.COMPLETED, current=task.status)
        if not raw_outputs:
            raise EngineError(f"Engine returned no outputs for task {task_id}.")

        destination = object_path(task.username, f"task_{task_id}", self.output_subfolder)
        options = options or NormalizeOptions(destination=destination)
        result = self.normalizer.normalize(raw_outputs, options)
        result.raise_for_failures()

        references = self._route_outputs(result.artifacts, options.destination)
        aspect_ratio = str(task.parameters.get("aspectRatio") or "1:1")
        writes = [
            self._artifact_write(
                role=FileRole.OUTPUT,
                file_name=artifact.file_name,
                storage=reference,
                aspect_ratio=aspect_ratio,
                url=artifact.url if reference is artifact.storage else None,
            )
            for artifact, reference in zip(result.artifacts, references, strict=True)
        ]
        if not self.repository.complete_task(task_id, writes, create_username=task.username):
            self._raise_transition_error(task_id, TaskStatus.COMPLETED)
        logger.info("Task %s completed with %d outputs", task_id, len(writes))
        return self._require_task(task_id)

    def fail(self, task_id: int, message: str) -> None:
        """Move a non-terminal task to FAILED; on a FAILED task the message is replaced."""

        error_message = (message or "").strip() or DEFAULT_FAILURE_MESSAGE
        if not self.repository.transition_status(
            task_id,
            from_statuses=_FAILABLE,
            to_status=TaskStatus.FAILED,
            error_message=error_message,
        ):
            self._raise_transition_error(task_id, TaskStatus.FAILED)
        logger.warning("Task %s failed: %s", task_id, error_message)

    def safe_fail(self, task_id: int, message: str) -> bool:
        """`fail` for error paths: problems recording the failure are logged, not raised."""

        try:
            self.fail(task_id, message)
        except Exception:  # noqa: BLE001
            logger.exception("Could not mark task %s as failed", task_id)
            return False
        return True

    def get_task(self, task_id: int) -> TaskView | None:
        return self.repository.get_task(task_id)

    def list_tasks(self, task_filter: TaskFilter, page: PageRequest) -> TaskPage:
        page.validate()
        return self.repository.list_tasks(task_filter, page)

    def _route_outputs(
        self,
        artifacts: Sequence[NormalizedArtifact],
        destination: str,
    ) -> list[StorageReference]:
        inline_positions = [
            position for position, artifact in enumerate(artifacts) if artifact.storage.is_inline
        ]
        references = [artifact.storage for artifact in artifacts]
        if not inline_positions:
            return references
        routed = self.router.route_many(
            [
                RouteItem(
                    payload=artifacts[position].storage.payload_base64 or "",
                    mime_type=artifacts[position].mime_type,
                    size_bytes=artifacts[position].storage.size_bytes,
                    destination=object_path(destination, artifacts[position].file_name),
                )
                for position in inline_positions
            ],
        )
        for position, reference in zip(inline_positions, routed, strict=True):
            if not reference.is_inline:
                references[position] = reference
        return references

    def _artifact_write(
        self,
        *,
        role: FileRole,
        file_name: str,
        storage: StorageReference,
        aspect_ratio: str,
        url: str | None = None,
    ) -> ArtifactWrite:
        if storage.is_inline:
            return ArtifactWrite(
                role=role,
                file_name=file_name,
                mime_type=storage.mime_type,
                storage=storage,
                aspect_ratio=aspect_ratio,
            )
        return ArtifactWrite(
            role=role,
            file_name=file_name,
            mime_type=storage.mime_type,
            storage=storage,
            aspect_ratio=aspect_ratio,
            preview_url=url or self.url_cache.sign(storage),
            preview_url_refreshed_at=utc_now(),
        )

    def _require_task(self, task_id: int) -> TaskView:
        task = self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _raise_transition_error(
        self,
        task_id: int,
        requested: TaskStatus,
        *,
        current: TaskStatus | None = None,
    ) -> NoReturn:
        if current is None:
            current = self._require_task(task_id).status
        logger.error(
            "Rejected transition of task %s from %s to %s",
            task_id,
            current.value,
            requested.value,
        )
        raise InvalidTransitionError(
            task_id=task_id,
            current=current.value,
            requested=requested.value,
        )
