"""End-to-end generation flow: create, ingest inputs, invoke, poll, complete or fail."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from creative_tasks.engine.base import (
    EngineInput,
    EngineRequest,
    GenerationEngine,
    OperationHandle,
    OperationStatus,
)
from creative_tasks.engine.params import (
    LONG_RUNNING_FAMILIES,
    model_family,
    parse_parameters,
    to_engine_dict,
)
from creative_tasks.engine.poller import LongRunningOperationPoller
from creative_tasks.errors import PollTimeoutError
from creative_tasks.tasks.lifecycle import TaskLifecycleManager
from creative_tasks.tasks.models import InputFile, TaskCreate, TaskStatus, TaskView

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GenerationRequest:
    """Caller request for one generation run."""

    username: str
    source_tab: str
    model: str
    prompt: str | None = None
    prompt_trans: str | None = None
    project_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    inputs: list[InputFile] = field(default_factory=list)


@dataclass(slots=True)
class GenerationOutcome:
    """Result of a generation run.

    `still_processing` means polling ran out of attempts while the remote operation
    was still running; the task is left PROCESSING rather than failed.
    """

    task_id: int
    status: TaskStatus
    task: TaskView | None = None
    error: str | None = None
    operation_name: str | None = None

    @property
    def still_processing(self) -> bool:
        return self.status == TaskStatus.PROCESSING and self.error is None


class GenerationService:
    """Composes lifecycle, engine and poller in the required order."""

    def __init__(
        self,
        lifecycle: TaskLifecycleManager,
        engine: GenerationEngine,
        poller: LongRunningOperationPoller,
    ) -> None:
        self.lifecycle = lifecycle
        self.engine = engine
        self.poller = poller

    def run(self, request: GenerationRequest) -> GenerationOutcome:
        """Run one request to a terminal state or to a poll timeout.

        Invalid parameters raise before any task is created. Task creation errors
        propagate. Every later error fails the task and is reported in the outcome.
        """

        parameters = to_engine_dict(parse_parameters(request.model, request.parameters))
        task_id = self.lifecycle.create_task(
            TaskCreate(
                username=request.username,
                source_tab=request.source_tab,
                model=request.model,
                prompt=request.prompt,
                prompt_trans=request.prompt_trans,
                project_id=request.project_id,
                parameters=parameters,
                create_username=request.username,
            ),
        )

        handle: OperationHandle | None = None
        try:
            engine_inputs: list[EngineInput] = []
            if request.inputs:
                artifacts = self.lifecycle.record_input_artifacts(task_id, request.inputs)
                engine_inputs = [
                    EngineInput(group=item.group, reference=artifact.storage)
                    for item, artifact in zip(request.inputs, artifacts, strict=True)
                ]
            self.lifecycle.mark_processing(task_id)

            engine_request = EngineRequest(
                prompt=request.prompt_trans or request.prompt,
                inputs=engine_inputs,
                parameters=parameters,
            )
            if model_family(request.model) in LONG_RUNNING_FAMILIES:
                handle = self.poller.submit(request.model, engine_request)
                outputs: list[dict[str, Any]] | OperationHandle = handle
            else:
                outputs = self.engine.invoke(
                    request.model,
                    engine_request.prompt,
                    engine_request.inputs,
                    engine_request.parameters,
                )
            if isinstance(outputs, OperationHandle):
                handle = outputs
                status = self.poller.await_completion(handle, request.model)
                if status.error is not None:
                    return self._failed(task_id, status.error.message, handle=handle)
                outputs = _operation_outputs(status)

            task = self.lifecycle.complete_with_outputs(task_id, outputs)
        except PollTimeoutError as error:
            logger.warning("Task %s left processing: %s", task_id, error)
            return GenerationOutcome(
                task_id=task_id,
                status=TaskStatus.PROCESSING,
                task=self._read_back(task_id),
                operation_name=error.operation_name,
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Generation failed for task %s", task_id)
            return self._failed(task_id, str(error) or type(error).__name__, handle=handle)

        return GenerationOutcome(
            task_id=task_id,
            status=task.status,
            task=task,
            operation_name=handle.name if handle else None,
        )

    def _failed(
        self,
        task_id: int,
        message: str,
        *,
        handle: OperationHandle | None,
    ) -> GenerationOutcome:
        recorded = self.lifecycle.safe_fail(task_id, message)
        task = self._read_back(task_id)
        if task is not None:
            status = task.status
        else:
            status = TaskStatus.FAILED if recorded else TaskStatus.PROCESSING
        return GenerationOutcome(
            task_id=task_id,
            status=status,
            task=task,
            error=task.error_message if task is not None and task.error_message else message,
            operation_name=handle.name if handle else None,
        )

    def _read_back(self, task_id: int) -> TaskView | None:
        try:
            return self.lifecycle.get_task(task_id)
        except Exception:  # noqa: BLE001
            logger.exception("Could not read back task %s", task_id)
            return None


def _operation_outputs(status: OperationStatus) -> list[dict[str, Any]]:
    return list(status.result or [])
