from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import allure
import pytest

from creative_tasks.media.models import StorageReference, UrlSource
from creative_tasks.media.object_store import LocalObjectStore
from creative_tasks.media.signed_urls import SignedUrlCache, is_expired, parse_url_expiry

pytestmark = [
    allure.epic("Media Storage"),
    allure.feature("Signed URL Cache"),
]

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _signed_url(issued_at: datetime, ttl_seconds: int, *, prefix: str = "X-Goog") -> str:
    stamp = issued_at.strftime("%Y%m%dT%H%M%SZ")
    return (
        "https://storage.example.test/bucket/a.png"
        f"?{prefix}-Algorithm=GOOG4-HMAC-SHA256&{prefix}-Date={stamp}"
        f"&{prefix}-Expires={ttl_seconds}&{prefix}-Signature=abc"
    )


@dataclass
class _Artifact:
    id: int | None
    storage: StorageReference
    preview_url: str | None


class _RecordingWriter:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[dict[int, str]] = []
        self.fail = fail

    def update_artifact_urls(self, urls: Mapping[int, str], *, refreshed_at: datetime) -> int:
        self.calls.append(dict(urls))
        if self.fail:
            raise RuntimeError("database is locked")
        return len(urls)


class _CountingStore:
    """Counts signing calls and tracks peak concurrency."""

    def __init__(self, delegate: LocalObjectStore, barrier_parties: int = 0) -> None:
        self.delegate = delegate
        self.sign_calls: list[str] = []
        self._lock = threading.Lock()
        self._barrier = threading.Barrier(barrier_parties) if barrier_parties else None

    def put(self, path: str, data: bytes, *, content_type: str) -> str:
        return self.delegate.put(path, data, content_type=content_type)

    def uri_to_access_url(self, uri: str, ttl_seconds: int) -> str:
        with self._lock:
            self.sign_calls.append(uri)
        if self._barrier is not None:
            # Every regeneration must be in flight at once for the barrier to release.
            self._barrier.wait(timeout=5)
        return self.delegate.uri_to_access_url(uri, ttl_seconds)

    def exists(self, uri: str) -> bool:
        return self.delegate.exists(uri)


def test_url_expiry_boundary_with_default_skew() -> None:
    ttl = 3600
    expired = _signed_url(NOW - timedelta(seconds=3545), ttl)
    fresh = _signed_url(NOW - timedelta(seconds=3500), ttl)

    assert is_expired(expired, now=NOW, skew_seconds=60)
    assert not is_expired(fresh, now=NOW, skew_seconds=60)


def test_url_exactly_at_expiry_minus_skew_is_expired() -> None:
    url = _signed_url(NOW - timedelta(seconds=3540), 3600)

    assert is_expired(url, now=NOW, skew_seconds=60)
    assert not is_expired(url, now=NOW - timedelta(seconds=1), skew_seconds=60)


def test_expiry_params_are_case_insensitive_and_accept_amz_names() -> None:
    issued = NOW - timedelta(seconds=10)
    lower = _signed_url(issued, 3600).replace("X-Goog-Date", "x-goog-date").replace(
        "X-Goog-Expires",
        "x-goog-expires",
    )

    assert parse_url_expiry(lower) == issued + timedelta(seconds=3600)
    assert parse_url_expiry(_signed_url(issued, 600, prefix="X-Amz")) == issued + timedelta(
        seconds=600,
    )


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "https://storage.example.test/bucket/a.png",
        "https://storage.example.test/a.png?X-Goog-Date=20261019T120000Z",
        "https://storage.example.test/a.png?X-Goog-Date=yesterday&X-Goog-Expires=3600",
        "https://storage.example.test/a.png?X-Goog-Date=20261019T120000Z&X-Goog-Expires=soon",
    ],
)
def test_missing_or_unparseable_expiry_is_treated_as_expired(url: str | None) -> None:
    assert is_expired(url, now=NOW)


def test_resolve_inline_reference_synthesizes_data_url(object_store, clock) -> None:
    writer = _RecordingWriter()
    cache = SignedUrlCache(object_store, writer, clock=clock)
    artifact = _Artifact(1, StorageReference.inline("aGk=", mime_type="image/png"), None)

    assert cache.resolve(artifact) == "data:image/png;base64,aGk="
    assert writer.calls == []


def test_resolve_returns_fresh_cached_url_unchanged(object_store, clock) -> None:
    uri = object_store.put("a/b.png", b"png", content_type="image/png")
    cached = object_store.uri_to_access_url(uri, 3600)
    writer = _RecordingWriter()
    cache = SignedUrlCache(object_store, writer, ttl_seconds=3600, clock=clock)

    url = cache.resolve(_Artifact(7, StorageReference.object(uri, mime_type="image/png"), cached))

    assert url == cached
    assert writer.calls == []


def test_resolve_regenerates_and_persists_expired_url(object_store, clock) -> None:
    uri = object_store.put("a/b.png", b"png", content_type="image/png")
    old = object_store.uri_to_access_url(uri, 3600)
    clock.advance(3600)
    writer = _RecordingWriter()
    cache = SignedUrlCache(object_store, writer, ttl_seconds=3600, clock=clock)

    url = cache.resolve(_Artifact(7, StorageReference.object(uri, mime_type="image/png"), old))

    assert url != old
    assert not is_expired(url, now=clock())
    assert writer.calls == [{7: url}]


def test_resolve_survives_persistence_failure(object_store, clock) -> None:
    uri = object_store.put("a/b.png", b"png", content_type="image/png")
    writer = _RecordingWriter(fail=True)
    cache = SignedUrlCache(object_store, writer, clock=clock)

    url = cache.resolve(_Artifact(3, StorageReference.object(uri, mime_type="image/png"), None))

    assert url.startswith("https://storage.example.test/test-bucket/a/b.png?")
    assert len(writer.calls) == 1


def test_resolve_many_refreshes_only_expired_urls_concurrently(object_store, clock) -> None:
    artifacts = []
    for index in range(10):
        uri = object_store.put(f"page/{index}.png", b"png", content_type="image/png")
        artifacts.append(
            _Artifact(
                index + 1,
                StorageReference.object(uri, mime_type="image/png"),
                object_store.uri_to_access_url(uri, 3600),
            ),
        )
    clock.advance(1800)
    for artifact in artifacts[:4]:
        artifact.preview_url = _signed_url(clock() - timedelta(hours=2), 3600)

    store = _CountingStore(object_store, barrier_parties=4)
    writer = _RecordingWriter()
    cache = SignedUrlCache(store, writer, ttl_seconds=3600, clock=clock)

    results = cache.resolve_many(artifacts)

    assert len(store.sign_calls) == 4
    assert len(writer.calls) == 1
    assert sorted(writer.calls[0]) == [1, 2, 3, 4]
    assert [result.source for result in results] == [UrlSource.REFRESHED] * 4 + [
        UrlSource.CACHED,
    ] * 6
    for artifact, result in zip(artifacts[4:], results[4:], strict=True):
        assert result.url == artifact.preview_url
    assert all(result.available for result in results)


def test_resolve_many_respects_worker_cap(object_store, clock) -> None:
    artifacts = [
        _Artifact(
            index,
            StorageReference.object(
                object_store.put(f"cap/{index}.png", b"png", content_type="image/png"),
                mime_type="image/png",
            ),
            None,
        )
        for index in range(1, 6)
    ]
    writer = _RecordingWriter()
    cache = SignedUrlCache(object_store, writer, max_workers=2, clock=clock)

    results = cache.resolve_many(artifacts)

    assert [result.source for result in results] == [UrlSource.REFRESHED] * 5
    assert writer.calls and sorted(writer.calls[0]) == [1, 2, 3, 4, 5]


def test_resolve_many_marks_failed_regeneration_unavailable(object_store, clock) -> None:
    good_uri = object_store.put("ok/a.png", b"png", content_type="image/png")
    stale = _signed_url(clock() - timedelta(hours=5), 3600)
    artifacts = [
        _Artifact(1, StorageReference.object(good_uri, mime_type="image/png"), stale),
        _Artifact(
            2,
            StorageReference.object("gs://test-bucket/deleted/b.png", mime_type="image/png"),
            stale,
        ),
        _Artifact(3, StorageReference.inline("aGk=", mime_type="image/png"), None),
    ]
    writer = _RecordingWriter()
    cache = SignedUrlCache(object_store, writer, clock=clock)

    results = cache.resolve_many(artifacts)

    assert results[0].source == UrlSource.REFRESHED
    assert results[1].source == UrlSource.UNAVAILABLE
    assert results[1].url is None
    assert results[1].stale_url == stale
    assert not results[1].available
    assert results[2].source == UrlSource.INLINE
    assert writer.calls == [{1: results[0].url}]


def test_resolve_many_without_stale_artifacts_writes_nothing(object_store, clock) -> None:
    writer = _RecordingWriter()
    cache = SignedUrlCache(object_store, writer, clock=clock)

    results = cache.resolve_many(
        [_Artifact(1, StorageReference.inline("aGk=", mime_type="image/png"), None)],
    )

    assert [result.source for result in results] == [UrlSource.INLINE]
    assert writer.calls == []


def test_local_store_signed_url_carries_expiry(object_store, clock) -> None:
    uri = object_store.put("a/b.png", b"png", content_type="image/png")

    url = object_store.uri_to_access_url(uri, 900)

    assert parse_url_expiry(url) == clock() + timedelta(seconds=900)
    with pytest.raises(FileNotFoundError):
        object_store.uri_to_access_url("gs://test-bucket/missing.png", 900)
    with pytest.raises(ValueError, match="Unsupported object URI"):
        object_store.uri_to_access_url("s3://test-bucket/a.png", 900)
