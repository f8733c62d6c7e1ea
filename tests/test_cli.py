from __future__ import annotations

from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from creative_tasks import __version__
from creative_tasks.engine.echo_engine import ECHO_PNG_BASE64
from creative_tasks.main import creative_tasks

pytestmark = [
    allure.epic("Generation"),
    allure.feature("CLI"),
]


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("CREATIVE_TASKS_REPOSITORY_BACKEND", "sql")
    monkeypatch.setenv("CREATIVE_TASKS_ENGINE_BACKEND", "echo")
    monkeypatch.setenv("CREATIVE_TASKS_OBJECT_ROOT", str(tmp_path / "objects"))
    monkeypatch.setenv("CREATIVE_TASKS_USERNAME", "alice")
    monkeypatch.delenv("CREATIVE_TASKS_POLL_MAX_ATTEMPTS", raising=False)
    return tmp_path / "cli.db"


def _invoke(db_path: Path, *args: str):
    group, command, *rest = args
    return CliRunner().invoke(creative_tasks, [group, command, "--db-path", str(db_path), *rest])


def test_version_option() -> None:
    result = CliRunner().invoke(creative_tasks, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_task_commands_round_trip(cli_env: Path) -> None:
    created = _invoke(
        cli_env,
        "tasks",
        "create",
        "--path",
        "/imagen",
        "--tab",
        "main",
        "--model",
        "imagen-4.0-generate-001",
        "--prompt",
        "a quiet harbor",
    )
    assert created.exit_code == 0, created.output
    assert "Task created: 1" in created.output

    listed = _invoke(cli_env, "tasks", "list", "--path", "/imagen", "--tab", "main")
    assert listed.exit_code == 0, listed.output
    assert "Tasks: 1 (page 1/1, page_size=20)" in listed.output
    assert "status=pending" in listed.output
    assert "source=/imagen?tab=main" in listed.output

    failed = _invoke(cli_env, "tasks", "fail", "1", "--message", "cancelled by user")
    assert failed.exit_code == 0, failed.output
    assert "Task failed: 1" in failed.output

    shown = _invoke(cli_env, "tasks", "show", "1")
    assert shown.exit_code == 0, shown.output
    assert "Status: failed" in shown.output
    assert "Error: cancelled by user" in shown.output
    assert "User: alice" in shown.output

    missing = _invoke(cli_env, "tasks", "show", "99")
    assert "Task not found: 99" in missing.output


def test_generate_image_completes_with_outputs(cli_env: Path) -> None:
    result = _invoke(
        cli_env,
        "generate",
        "image",
        "--prompt",
        "a quiet harbor",
        "--param",
        "sampleCount=2",
        "--param",
        "aspectRatio=16:9",
    )

    assert result.exit_code == 0, result.output
    assert "Task: 1" in result.output
    assert "Status: completed" in result.output
    assert result.output.count("  Output ") == 2
    assert "url[inline]=data:image/png;base64," in result.output

    failed = _invoke(cli_env, "tasks", "fail", "1", "--message", "too late")
    assert failed.exit_code != 0
    assert "cannot move from completed" in failed.output


def test_generate_video_polls_echo_operation(cli_env: Path) -> None:
    result = _invoke(cli_env, "generate", "video", "--prompt", "waves", "--poll-interval", "0")

    assert result.exit_code == 0, result.output
    assert "Status: completed" in result.output
    assert "video/mp4 storage=object url[cached]=http" in result.output


def test_generate_video_reports_still_processing(cli_env: Path) -> None:
    result = _invoke(
        cli_env,
        "generate",
        "video",
        "--prompt",
        "waves",
        "--poll-interval",
        "0",
        "--poll-max-attempts",
        "1",
    )

    assert result.exit_code == 0, result.output
    assert "Status: processing" in result.output
    assert "Still processing: operation operations/echo-" in result.output


def test_generate_try_on_reads_grouped_inputs(cli_env: Path, tmp_path: Path) -> None:
    person = tmp_path / "person.png"
    product = tmp_path / "shirt.png"
    person.write_bytes(b"person-pixels")
    product.write_bytes(b"shirt-pixels")

    result = _invoke(
        cli_env,
        "generate",
        "try-on",
        "--input",
        f"person:{person}",
        "--input",
        f"product:{product}",
    )

    assert result.exit_code == 0, result.output
    assert "Status: completed" in result.output

    shown = _invoke(cli_env, "tasks", "show", "1")
    assert shown.output.count("  Input ") == 2
    assert "Source: /tryon" in shown.output
    assert f"data:image/png;base64,{ECHO_PNG_BASE64[:18]}" in shown.output


def test_generate_rejects_invalid_parameters(cli_env: Path) -> None:
    result = _invoke(cli_env, "generate", "image", "--prompt", "x", "--param", "style=noir")

    assert result.exit_code != 0
    assert "Unknown parameter" in result.output

    listed = _invoke(cli_env, "tasks", "list")
    assert "Tasks: 0" in listed.output


def test_refresh_urls_summarizes_sources(cli_env: Path) -> None:
    _invoke(cli_env, "generate", "image", "--prompt", "a quiet harbor")

    result = _invoke(cli_env, "tasks", "refresh-urls")

    assert result.exit_code == 0, result.output
    assert "Tasks: 1" in result.output
    assert "URLs: inline=1" in result.output
