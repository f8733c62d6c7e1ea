"""CLI entrypoint for creative-tasks."""

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import rich_click as click

from creative_tasks import __version__
from creative_tasks.engine.base import ModelFamily
from creative_tasks.engine.params import DEFAULT_MODELS
from creative_tasks.errors import CreativeTasksError
from creative_tasks.tasks.controllers import (
    GenerateCommand,
    TaskCreateCommand,
    TaskFailCommand,
    TaskListCommand,
    TaskShowCommand,
    TasksCliController,
)
from creative_tasks.tasks.models import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

click.rich_click.USE_MARKDOWN = True
TASKS_CONTROLLER = TasksCliController()

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="creative-tasks")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def creative_tasks(log_level: str) -> None:
    """Creative generation task orchestrator CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@creative_tasks.group()
def tasks() -> None:
    """Task lifecycle and history commands."""


@tasks.command("create")
@DB_PATH_OPTION
@click.option("--username", default=None, help="Owning user; defaults to CREATIVE_TASKS_USERNAME.")
@click.option("--path", "path_", required=True, help="Source page path, for example /imagen.")
@click.option("--tab", default=None, help="Optional tab within the source page.")
@click.option("--model", required=True, help="Generation model identifier.")
@click.option("--prompt", default=None, help="Prompt text.")
@click.option("--project-id", default=None, help="Optional project identifier.")
def tasks_create(
    db_path: Path | None,
    username: str | None,
    path_: str,
    tab: str | None,
    model: str,
    prompt: str | None,
    project_id: str | None,
) -> None:
    """Create a PENDING task."""

    _run(
        lambda: TASKS_CONTROLLER.create(
            TaskCreateCommand(
                db_path=db_path,
                username=username,
                path=path_,
                tab=tab,
                model=model,
                prompt=prompt,
                project_id=project_id,
            ),
        ),
    )


@tasks.command("list")
@DB_PATH_OPTION
@click.option("--username", default=None, help="Filter by owning user.")
@click.option("--path", "path_", default=None, help="Filter by source page path.")
@click.option("--tab", default=None, help="Filter by tab (used together with --path).")
@click.option(
    "--start-date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="First day to include (YYYY-MM-DD).",
)
@click.option(
    "--end-date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Last day to include (YYYY-MM-DD).",
)
@click.option("--page", type=int, default=1, show_default=True, help="1-based page number.")
@click.option(
    "--page-size",
    type=int,
    default=DEFAULT_PAGE_SIZE,
    show_default=True,
    help=f"Tasks per page (1-{MAX_PAGE_SIZE}).",
)
def tasks_list(
    db_path: Path | None,
    username: str | None,
    path_: str | None,
    tab: str | None,
    start_date: datetime | None,
    end_date: datetime | None,
    page: int,
    page_size: int,
) -> None:
    """List task history, newest first, with refreshed artifact URLs."""

    _run(
        lambda: TASKS_CONTROLLER.list_tasks(
            TaskListCommand(
                db_path=db_path,
                username=username,
                path=path_,
                tab=tab,
                start_date=start_date.date() if start_date else None,
                end_date=end_date.date() if end_date else None,
                page=page,
                page_size=page_size,
            ),
        ),
    )


@tasks.command("show")
@DB_PATH_OPTION
@click.argument("task_id", type=int)
def tasks_show(db_path: Path | None, task_id: int) -> None:
    """Show one task with its input and output artifacts."""

    _run(lambda: TASKS_CONTROLLER.show(TaskShowCommand(db_path=db_path, task_id=task_id)))


@tasks.command("fail")
@DB_PATH_OPTION
@click.argument("task_id", type=int)
@click.option("--message", required=True, help="Error message to record.")
def tasks_fail(db_path: Path | None, task_id: int, message: str) -> None:
    """Mark a non-terminal task as FAILED."""

    _run(
        lambda: TASKS_CONTROLLER.fail(
            TaskFailCommand(db_path=db_path, task_id=task_id, message=message),
        ),
    )


@tasks.command("refresh-urls")
@DB_PATH_OPTION
@click.option("--username", default=None, help="Limit to one user's tasks.")
@click.option("--page", type=int, default=1, show_default=True, help="1-based page number.")
@click.option(
    "--page-size",
    type=int,
    default=DEFAULT_PAGE_SIZE,
    show_default=True,
    help=f"Tasks per page (1-{MAX_PAGE_SIZE}).",
)
def tasks_refresh_urls(
    db_path: Path | None,
    username: str | None,
    page: int,
    page_size: int,
) -> None:
    """Refresh expired artifact URLs for one history page."""

    _run(
        lambda: TASKS_CONTROLLER.refresh_urls(
            TaskListCommand(
                db_path=db_path,
                username=username,
                path=None,
                tab=None,
                start_date=None,
                end_date=None,
                page=page,
                page_size=page_size,
            ),
        ),
    )


@creative_tasks.group()
def generate() -> None:
    """Run a generation request end to end."""


def _generate_options(family: ModelFamily, default_path: str) -> Callable:
    def decorate(command: Callable) -> Callable:
        options = [
            DB_PATH_OPTION,
            click.option(
                "--model",
                default=DEFAULT_MODELS[family],
                show_default=True,
                help="Generation model identifier.",
            ),
            click.option("--username", default=None, help="Owning user."),
            click.option("--path", "path_", default=default_path, show_default=True),
            click.option("--tab", default=None, help="Optional tab within the source page."),
            click.option(
                "--input",
                "inputs",
                multiple=True,
                help="Input file as [group:]path; groups: person, product, common, last_frame.",
            ),
            click.option(
                "--param",
                "params",
                multiple=True,
                help="Generation parameter as key=value. Can be repeated.",
            ),
        ]
        for option in reversed(options):
            command = option(command)
        return command

    return decorate


@generate.command("image")
@_generate_options(ModelFamily.IMAGE, "/imagen")
@click.option("--prompt", required=True, help="Prompt text.")
def generate_image(
    db_path: Path | None,
    model: str,
    username: str | None,
    path_: str,
    tab: str | None,
    inputs: tuple[str, ...],
    params: tuple[str, ...],
    prompt: str,
) -> None:
    """Generate images synchronously."""

    _generate(db_path, model, username, path_, tab, inputs, params, prompt)


@generate.command("try-on")
@_generate_options(ModelFamily.TRY_ON, "/tryon")
def generate_try_on(
    db_path: Path | None,
    model: str,
    username: str | None,
    path_: str,
    tab: str | None,
    inputs: tuple[str, ...],
    params: tuple[str, ...],
) -> None:
    """Dress a person image in product images."""

    _generate(db_path, model, username, path_, tab, inputs, params, None)


@generate.command("video")
@_generate_options(ModelFamily.VIDEO, "/veo")
@click.option("--prompt", default=None, help="Prompt text.")
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds between operation checks; defaults to CREATIVE_TASKS_POLL_INTERVAL_SECONDS.",
)
@click.option(
    "--poll-max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Operation check budget; defaults to CREATIVE_TASKS_POLL_MAX_ATTEMPTS.",
)
def generate_video(
    db_path: Path | None,
    model: str,
    username: str | None,
    path_: str,
    tab: str | None,
    inputs: tuple[str, ...],
    params: tuple[str, ...],
    prompt: str | None,
    poll_interval: float | None,
    poll_max_attempts: int | None,
) -> None:
    """Submit a long-running video generation and poll it to completion."""

    _generate(
        db_path,
        model,
        username,
        path_,
        tab,
        inputs,
        params,
        prompt,
        poll_interval=poll_interval,
        poll_max_attempts=poll_max_attempts,
    )


def _generate(  # noqa: PLR0913
    db_path: Path | None,
    model: str,
    username: str | None,
    path_: str,
    tab: str | None,
    inputs: tuple[str, ...],
    params: tuple[str, ...],
    prompt: str | None,
    *,
    poll_interval: float | None = None,
    poll_max_attempts: int | None = None,
) -> None:
    _run(
        lambda: TASKS_CONTROLLER.generate(
            GenerateCommand(
                db_path=db_path,
                model=model,
                prompt=prompt,
                username=username,
                path=path_,
                tab=tab,
                inputs=inputs,
                params=params,
                poll_interval=poll_interval,
                poll_max_attempts=poll_max_attempts,
            ),
        ),
    )


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (CreativeTasksError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    creative_tasks()
