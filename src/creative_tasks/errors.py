"""Error taxonomy shared by task lifecycle, storage and engine layers."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from creative_tasks.media.models import NormalizedArtifact, StorageReference


class CreativeTasksError(Exception):
    """Base class for all orchestrator errors."""


class ValidationError(CreativeTasksError):
    """Caller supplied invalid input; never retried."""


class TaskNotFoundError(ValidationError):
    """Task id does not exist or was soft-deleted."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTransitionError(CreativeTasksError):
    """Requested status change is not allowed from the task's current status."""

    def __init__(self, *, task_id: int, current: str, requested: str) -> None:
        super().__init__(
            f"Task {task_id} cannot move from {current} to {requested}.",
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class StorageUploadError(CreativeTasksError):
    """Object store rejected or failed an upload."""

    def __init__(self, message: str, *, destination: str | None = None) -> None:
        super().__init__(message)
        self.destination = destination


class BatchRoutingError(StorageUploadError):
    """Some items of a batch upload failed; the others were stored."""

    def __init__(
        self,
        *,
        succeeded: dict[int, StorageReference],
        failures: dict[int, Exception],
    ) -> None:
        failed_indices = sorted(failures)
        super().__init__(
            f"{len(failed_indices)} of {len(succeeded) + len(failed_indices)} "
            f"uploads failed (indices {failed_indices}).",
        )
        self.succeeded = succeeded
        self.failures = failures

    @property
    def succeeded_indices(self) -> list[int]:
        return sorted(self.succeeded)

    @property
    def failed_indices(self) -> list[int]:
        return sorted(self.failures)


class MalformedOutputError(CreativeTasksError):
    """Engine output record carries neither an inline payload nor a storage URI."""

    def __init__(self, index: int, message: str | None = None) -> None:
        super().__init__(message or f"Invalid media output format for record {index}.")
        self.index = index


class NormalizationError(CreativeTasksError):
    """One or more engine output records could not be normalized."""

    def __init__(
        self,
        *,
        failures: dict[int, Exception],
        artifacts: Sequence[NormalizedArtifact] = (),
    ) -> None:
        details = "; ".join(f"[{index}] {error}" for index, error in sorted(failures.items()))
        super().__init__(f"Failed to normalize engine outputs: {details}")
        self.failures = failures
        self.artifacts = list(artifacts)

    @property
    def failed_indices(self) -> list[int]:
        return sorted(self.failures)


class EngineError(CreativeTasksError):
    """Generation engine call failed at the transport or protocol level."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PollTimeoutError(CreativeTasksError):
    """Long-running operation did not reach a terminal state within the attempt budget."""

    def __init__(
        self,
        *,
        operation_name: str,
        attempts: int,
        last_error: Exception | None = None,
    ) -> None:
        super().__init__(
            f"Operation {operation_name} still running after {attempts} poll attempts.",
        )
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error
