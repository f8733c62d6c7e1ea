"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from creative_tasks.media.normalizer import ResponseNormalizer
from creative_tasks.media.object_store import LocalObjectStore
from creative_tasks.media.routing import MediaStorageRouter
from creative_tasks.media.signed_urls import SignedUrlCache
from creative_tasks.tasks.history import TaskHistoryService
from creative_tasks.tasks.lifecycle import TaskLifecycleManager
from creative_tasks.tasks.repository import (
    InMemoryTaskRepository,
    SqlTaskRepository,
    TaskRepository,
)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@dataclass(slots=True)
class Components:
    repository: TaskRepository
    object_store: LocalObjectStore
    router: MediaStorageRouter
    url_cache: SignedUrlCache
    lifecycle: TaskLifecycleManager
    history: TaskHistoryService


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=UTC))


@pytest.fixture()
def object_store(tmp_path: Path, clock: FakeClock) -> LocalObjectStore:
    return LocalObjectStore(
        root_dir=tmp_path / "objects",
        bucket="test-bucket",
        public_base_url="https://storage.example.test",
        signing_key="test-key",
        clock=clock,
    )


@pytest.fixture()
def sql_repository(tmp_path: Path) -> Iterator[SqlTaskRepository]:
    repository = SqlTaskRepository(tmp_path / "tasks.db")
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture(params=["sql", "memory"])
def repository(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[TaskRepository]:
    if request.param == "memory":
        yield InMemoryTaskRepository()
        return
    repository = SqlTaskRepository(tmp_path / "tasks.db")
    repository.init_schema()
    yield repository
    repository.close()


def build_components(
    repository: TaskRepository,
    object_store: LocalObjectStore,
    clock: FakeClock,
    *,
    threshold_bytes: int = 10 * 1024 * 1024,
) -> Components:
    router = MediaStorageRouter(object_store, threshold_bytes=threshold_bytes)
    url_cache = SignedUrlCache(object_store, repository, ttl_seconds=3600, clock=clock)
    lifecycle = TaskLifecycleManager(
        repository,
        router,
        ResponseNormalizer(router, url_cache),
        url_cache,
    )
    return Components(
        repository=repository,
        object_store=object_store,
        router=router,
        url_cache=url_cache,
        lifecycle=lifecycle,
        history=TaskHistoryService(lifecycle, url_cache),
    )


@pytest.fixture()
def components(
    repository: TaskRepository,
    object_store: LocalObjectStore,
    clock: FakeClock,
) -> Components:
    return build_components(repository, object_store, clock)


@pytest.fixture()
def make_components(object_store: LocalObjectStore, clock: FakeClock):
    def _make(
        repository: TaskRepository,
        *,
        threshold_bytes: int = 10 * 1024 * 1024,
    ) -> Components:
        return build_components(repository, object_store, clock, threshold_bytes=threshold_bytes)

    return _make
