from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta

import allure

from creative_tasks.media.models import UrlSource
from creative_tasks.media.signed_urls import SignedUrlCache, is_expired
from creative_tasks.tasks.history import TaskHistoryService
from creative_tasks.tasks.models import InputFile, PageRequest, TaskCreate, TaskFilter

pytestmark = [
    allure.epic("Task Lifecycle"),
    allure.feature("Task History"),
]


class _CountingStore:
    def __init__(self, delegate) -> None:
        self.delegate = delegate
        self.sign_calls: list[str] = []

    def put(self, path: str, data: bytes, *, content_type: str) -> str:
        return self.delegate.put(path, data, content_type=content_type)

    def uri_to_access_url(self, uri: str, ttl_seconds: int) -> str:
        self.sign_calls.append(uri)
        return self.delegate.uri_to_access_url(uri, ttl_seconds)

    def exists(self, uri: str) -> bool:
        return self.delegate.exists(uri)


class _CountingWriter:
    def __init__(self, delegate) -> None:
        self.delegate = delegate
        self.calls: list[dict[int, str]] = []
        self.touched: list[int] = []

    def update_artifact_urls(self, urls: Mapping[int, str], *, refreshed_at: datetime) -> int:
        self.calls.append(dict(urls))
        touched = self.delegate.update_artifact_urls(urls, refreshed_at=refreshed_at)
        self.touched.append(touched)
        return touched


def _expired_url(clock, path: str) -> str:
    stamp = (clock() - timedelta(hours=2)).strftime("%Y%m%dT%H%M%SZ")
    return (
        f"https://storage.example.test/test-bucket/{path}"
        f"?X-Goog-Algorithm=GOOG4-HMAC-SHA256&X-Goog-Date={stamp}"
        "&X-Goog-Expires=3600&X-Goog-Signature=old"
    )


def _task_with_inputs(lifecycle, count: int, *, username: str = "alice") -> int:
    task_id = lifecycle.create_task(
        TaskCreate(
            username=username,
            source_tab="/studio?tab=image",
            model="imagen-4.0-generate-001",
        ),
    )
    lifecycle.record_input_artifacts(
        task_id,
        [
            InputFile(data=b"x" * 32, mime_type="image/png", file_name=f"ref{index}.png")
            for index in range(count)
        ],
    )
    return task_id


def _history(components, clock):
    store = _CountingStore(components.object_store)
    writer = _CountingWriter(components.repository)
    cache = SignedUrlCache(store, writer, ttl_seconds=3600, clock=clock)
    return TaskHistoryService(components.lifecycle, cache), store, writer


def test_history_page_refreshes_only_expired_urls_in_one_write(
    sql_repository,
    make_components,
    clock,
) -> None:
    components = make_components(sql_repository, threshold_bytes=4)
    task_ids = [_task_with_inputs(components.lifecycle, count) for count in (8, 7, 5)]

    expired: dict[int, str] = {}
    for task_id in task_ids:
        for artifact in components.lifecycle.get_task(task_id).input_files[:2]:
            expired[artifact.id] = _expired_url(clock, artifact.file_name)
    assert sql_repository.update_artifact_urls(expired, refreshed_at=clock()) == 6

    history, store, writer = _history(components, clock)
    page = history.list_history(TaskFilter(username="alice"), PageRequest(page_size=10))

    links = [link for item in page.items for link in item.inputs]
    assert page.total == 3
    assert len(links) == 20
    assert len(store.sign_calls) == 6
    assert len(writer.calls) == 1
    assert sorted(writer.calls[0]) == sorted(expired)
    assert writer.touched == [6]

    sources = {link.artifact.id: link.url.source for link in links}
    assert {file_id for file_id, source in sources.items() if source == UrlSource.REFRESHED} == set(
        expired,
    )
    assert all(not is_expired(link.url.url, now=clock()) for link in links)

    for task_id in task_ids:
        for artifact in sql_repository.get_task(task_id).input_files:
            if artifact.id in expired:
                assert artifact.preview_url == writer.calls[0][artifact.id]
                assert artifact.preview_url_refreshed_at == clock()

    history.list_history(TaskFilter(username="alice"), PageRequest(page_size=10))
    assert len(store.sign_calls) == 6
    assert len(writer.calls) == 1


def test_task_details_split_inputs_and_outputs(repository, make_components, clock) -> None:
    components = make_components(repository, threshold_bytes=4)
    task_id = _task_with_inputs(components.lifecycle, 1)
    components.lifecycle.mark_processing(task_id)
    components.lifecycle.complete_with_outputs(
        task_id,
        [{"bytesBase64Encoded": "aGk=", "mimeType": "image/png"}],
    )
    history, store, writer = _history(components, clock)

    details = history.get_task_details(task_id)

    assert details is not None
    assert [link.url.source for link in details.inputs] == [UrlSource.CACHED]
    assert [link.url.source for link in details.outputs] == [UrlSource.INLINE]
    assert details.outputs[0].url.url == "data:image/png;base64,aGk="
    assert store.sign_calls == []
    assert writer.calls == []
    assert history.get_task_details(task_id + 100) is None


def test_missing_object_degrades_to_unavailable(sql_repository, make_components, clock) -> None:
    components = make_components(sql_repository, threshold_bytes=4)
    task_id = _task_with_inputs(components.lifecycle, 2)
    artifacts = components.lifecycle.get_task(task_id).input_files
    gone, kept = artifacts
    stale = {artifact.id: _expired_url(clock, artifact.file_name) for artifact in artifacts}
    sql_repository.update_artifact_urls(stale, refreshed_at=clock())
    bucket_path = gone.storage.uri.removeprefix("gs://")
    (components.object_store.root_dir / bucket_path).unlink()
    history, _, writer = _history(components, clock)

    details = history.get_task_details(task_id)

    missing, refreshed = details.inputs
    assert missing.url.source == UrlSource.UNAVAILABLE
    assert missing.url.url is None
    assert missing.url.stale_url == stale[gone.id]
    assert refreshed.url.source == UrlSource.REFRESHED
    assert writer.calls == [{kept.id: refreshed.url.url}]


def test_history_is_paginated_with_total_pages(repository, make_components, clock) -> None:
    components = make_components(repository)
    for _ in range(3):
        _task_with_inputs(components.lifecycle, 1)
    _task_with_inputs(components.lifecycle, 1, username="bob")
    history, _, _ = _history(components, clock)

    page = history.list_history(TaskFilter(username="alice"), PageRequest(page=2, page_size=2))

    assert page.total == 3
    assert page.total_pages == 2
    assert page.page == 2
    assert len(page.items) == 1
    assert page.items[0].inputs[0].url.source == UrlSource.INLINE
