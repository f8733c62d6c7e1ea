"""Read path: task details and history pages with fresh artifact URLs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from creative_tasks.media.models import ResolvedUrl
from creative_tasks.media.signed_urls import SignedUrlCache
from creative_tasks.tasks.lifecycle import TaskLifecycleManager
from creative_tasks.tasks.models import ArtifactView, PageRequest, TaskFilter, TaskView


@dataclass(slots=True)
class ArtifactLink:
    """Artifact paired with its resolved access URL."""

    artifact: ArtifactView
    url: ResolvedUrl


@dataclass(slots=True)
class TaskDetails:
    """Task with resolved input and output links."""

    task: TaskView
    inputs: list[ArtifactLink]
    outputs: list[ArtifactLink]


@dataclass(slots=True)
class HistoryPage:
    """History page ready for presentation."""

    items: list[TaskDetails]
    total: int
    page: int
    page_size: int
    total_pages: int


class TaskHistoryService:
    """Serves tasks with URLs refreshed through one batched cache pass per read."""

    def __init__(self, lifecycle: TaskLifecycleManager, url_cache: SignedUrlCache) -> None:
        self.lifecycle = lifecycle
        self.url_cache = url_cache

    def get_task_details(self, task_id: int) -> TaskDetails | None:
        task = self.lifecycle.get_task(task_id)
        if task is None:
            return None
        return self._attach_urls([task])[0]

    def list_history(self, task_filter: TaskFilter, page: PageRequest) -> HistoryPage:
        result = self.lifecycle.list_tasks(task_filter, page)
        return HistoryPage(
            items=self._attach_urls(result.items),
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            total_pages=result.total_pages,
        )

    def _attach_urls(self, tasks: Sequence[TaskView]) -> list[TaskDetails]:
        artifacts = [artifact for task in tasks for artifact in task.files]
        resolved = iter(self.url_cache.resolve_many(artifacts))
        details = []
        for task in tasks:
            inputs = [ArtifactLink(item, next(resolved)) for item in task.input_files]
            outputs = [ArtifactLink(item, next(resolved)) for item in task.output_files]
            details.append(TaskDetails(task=task, inputs=inputs, outputs=outputs))
        return details
