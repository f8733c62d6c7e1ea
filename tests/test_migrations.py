from pathlib import Path

import allure
from sqlalchemy import text

from creative_tasks.tasks.repository import SqlTaskRepository

pytestmark = [
    allure.epic("Task Lifecycle"),
    allure.feature("Persistence"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = SqlTaskRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table'
                  AND name IN ('generation_tasks', 'task_files')
                ORDER BY name
                """,
            ),
        ).scalars().all()
        indexes = connection.execute(
            text(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'index' AND name = 'idx_generation_tasks_history'",
            ),
        ).scalars().all()
    repository.close()

    assert version == "20261019_0001"
    assert tables == ["generation_tasks", "task_files"]
    assert indexes == ["idx_generation_tasks_history"]


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = SqlTaskRepository(tmp_path / "twice.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        versions = connection.execute(text("SELECT version_num FROM alembic_version")).all()
    repository.close()

    assert len(versions) == 1
