"""Controllers for task and generation CLI commands."""

from __future__ import annotations

import json
import mimetypes
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any

from creative_tasks.config import Settings
from creative_tasks.engine.base import InputGroup
from creative_tasks.errors import ValidationError
from creative_tasks.runtime import open_runtime
from creative_tasks.tasks.history import ArtifactLink, TaskDetails
from creative_tasks.tasks.models import (
    InputFile,
    PageRequest,
    TaskCreate,
    TaskFilter,
    build_source_tab,
)
from creative_tasks.tasks.service import GenerationRequest


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI inputs for task creation."""

    db_path: Path | None
    username: str | None
    path: str
    tab: str | None
    model: str
    prompt: str | None
    project_id: str | None


@dataclass(slots=True)
class TaskListCommand:
    """CLI inputs for history listing."""

    db_path: Path | None
    username: str | None
    path: str | None
    tab: str | None
    start_date: date | None
    end_date: date | None
    page: int
    page_size: int


@dataclass(slots=True)
class TaskShowCommand:
    """CLI inputs for task inspection."""

    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class TaskFailCommand:
    """CLI inputs for marking a task failed."""

    db_path: Path | None
    task_id: int
    message: str


@dataclass(slots=True)
class GenerateCommand:
    """CLI inputs for one generation run."""

    db_path: Path | None
    model: str
    prompt: str | None
    username: str | None
    path: str
    tab: str | None
    inputs: tuple[str, ...]
    params: tuple[str, ...]
    poll_interval: float | None = None
    poll_max_attempts: int | None = None


class TasksCliController:
    """Coordinates task and generation command execution."""

    def create(self, command: TaskCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            username = command.username or settings.user_context.username
            task_id = runtime.lifecycle.create_task(
                TaskCreate(
                    username=username,
                    source_tab=build_source_tab(command.path, command.tab),
                    model=command.model,
                    prompt=command.prompt,
                    project_id=command.project_id,
                    create_username=username,
                ),
            )
        return [f"Task created: {task_id}"]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        task_filter = TaskFilter(
            username=command.username,
            source_tab=build_source_tab(command.path, command.tab) if command.path else None,
            start_date=command.start_date,
            end_date=command.end_date,
        )
        with open_runtime(settings) as runtime:
            page = runtime.history.list_history(
                task_filter,
                PageRequest(page=command.page, page_size=command.page_size),
            )

        lines = [
            f"Tasks: {page.total} (page {page.page}/{max(page.total_pages, 1)}, "
            f"page_size={page.page_size})",
        ]
        for item in page.items:
            task = item.task
            lines.append(
                f"  {task.id} status={task.status.value} model={task.model} "
                f"user={task.username} source={task.source_tab} "
                f"inputs={len(item.inputs)} outputs={len(item.outputs)} "
                f"created_at={task.created_at.isoformat()}",
            )
        return lines

    def show(self, command: TaskShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            details = runtime.history.get_task_details(command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]
        return _render_details(details)

    def fail(self, command: TaskFailCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            runtime.lifecycle.fail(command.task_id, command.message)
        return [f"Task failed: {command.task_id}"]

    def refresh_urls(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        task_filter = TaskFilter(username=command.username)
        with open_runtime(settings) as runtime:
            page = runtime.history.list_history(
                task_filter,
                PageRequest(page=command.page, page_size=command.page_size),
            )
        sources = Counter(
            link.url.source.value
            for item in page.items
            for link in (*item.inputs, *item.outputs)
        )
        summary = " ".join(f"{name}={count}" for name, count in sorted(sources.items()))
        return [f"Tasks: {len(page.items)}", f"URLs: {summary or 'none'}"]

    def generate(self, command: GenerateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.poll_interval is not None or command.poll_max_attempts is not None:
            settings = replace(
                settings,
                polling=replace(
                    settings.polling,
                    interval_seconds=(
                        settings.polling.interval_seconds
                        if command.poll_interval is None
                        else command.poll_interval
                    ),
                    max_attempts=command.poll_max_attempts or settings.polling.max_attempts,
                ),
            )
        username = command.username or settings.user_context.username
        request = GenerationRequest(
            username=username,
            source_tab=build_source_tab(command.path, command.tab),
            model=command.model,
            prompt=command.prompt,
            parameters=_parse_params(command.params),
            inputs=[_read_input(spec) for spec in command.inputs],
        )
        with open_runtime(settings) as runtime:
            outcome = runtime.generation.run(request)
            details = runtime.history.get_task_details(outcome.task_id)

        lines = [f"Task: {outcome.task_id}", f"Status: {outcome.status.value}"]
        if outcome.still_processing:
            lines.append(
                f"Still processing: operation {outcome.operation_name} did not finish in time.",
            )
        if outcome.error:
            lines.append(f"Error: {outcome.error}")
        if details is not None:
            lines.extend(_render_links("Output", details.outputs))
        return lines


def _render_details(details: TaskDetails) -> list[str]:
    task = details.task
    lines = [
        f"Task: {task.id}",
        f"Status: {task.status.value}",
        f"User: {task.username}",
        f"Source: {task.source_tab}",
        f"Model: {task.model}",
        f"Prompt: {task.prompt or '-'}",
        f"Parameters: {json.dumps(task.parameters, sort_keys=True)}",
        f"Error: {task.error_message or '-'}",
        f"Created: {task.created_at.isoformat()}",
        f"Updated: {task.updated_at.isoformat()}",
    ]
    lines.extend(_render_links("Input", details.inputs))
    lines.extend(_render_links("Output", details.outputs))
    return lines


def _render_links(label: str, links: list[ArtifactLink]) -> list[str]:
    lines = []
    for link in links:
        artifact = link.artifact
        url = link.url.url or "<unavailable>"
        if url.startswith("data:"):
            url = f"{url[:40]}..."
        lines.append(
            f"  {label} {artifact.id} {artifact.file_name} {artifact.mime_type} "
            f"storage={artifact.storage.kind.value} url[{link.url.source.value}]={url}",
        )
    return lines


def _parse_params(values: tuple[str, ...]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for value in values:
        key, sep, raw = value.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Parameter must look like key=value, got {value!r}.")
        params[key.strip()] = raw.strip()
    return params


def _read_input(spec: str) -> InputFile:
    """Parse `[group:]path` into an input file; group defaults to common."""

    group = InputGroup.COMMON
    head, sep, tail = spec.partition(":")
    if sep and head in {item.value for item in InputGroup}:
        group = InputGroup(head)
        spec = tail
    path = Path(spec)
    if not path.is_file():
        raise ValidationError(f"Input file not found: {path}")
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return InputFile(data=path.read_bytes(), mime_type=mime_type, file_name=path.name, group=group)
