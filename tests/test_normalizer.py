from __future__ import annotations

import allure
import pytest

from creative_tasks.errors import MalformedOutputError, NormalizationError
from creative_tasks.media.models import StorageKind
from creative_tasks.media.normalizer import NormalizeOptions, ResponseNormalizer
from creative_tasks.media.routing import MediaStorageRouter
from creative_tasks.media.signed_urls import SignedUrlCache
from creative_tasks.tasks.repository import InMemoryTaskRepository

pytestmark = [
    allure.epic("Media Storage"),
    allure.feature("Response Normalization"),
]

PNG_B64 = "aGVsbG8="


class _NoNetworkStore:
    def put(self, path: str, data: bytes, *, content_type: str) -> str:
        raise AssertionError("unexpected upload")

    def uri_to_access_url(self, uri: str, ttl_seconds: int) -> str:
        raise AssertionError("unexpected signing")

    def exists(self, uri: str) -> bool:
        raise AssertionError("unexpected lookup")


def _normalizer(store, clock) -> ResponseNormalizer:
    router = MediaStorageRouter(store)
    return ResponseNormalizer(router, SignedUrlCache(store, InMemoryTaskRepository(), clock=clock))


def test_inline_records_become_data_urls_without_network(clock) -> None:
    normalizer = _normalizer(_NoNetworkStore(), clock)

    result = normalizer.normalize(
        [
            {"bytesBase64Encoded": PNG_B64, "mimeType": "image/jpeg", "raiFilteredReason": None},
            {"bytes_base64_encoded": PNG_B64},
        ],
    )

    assert result.ok
    first, second = result.artifacts
    assert first.id == "task-0"
    assert first.url == f"data:image/jpeg;base64,{PNG_B64}"
    assert first.file_name == "task-0.jpg"
    assert first.storage.kind == StorageKind.INLINE
    assert first.storage.size_bytes == 5
    assert first.passthrough == {"raiFilteredReason": None}
    assert second.mime_type == "image/png"
    assert second.file_name == "task-1.png"


def test_uri_records_are_signed_immediately(object_store, clock) -> None:
    uri = object_store.put("veo/sample_0.mp4", b"mp4", content_type="video/mp4")
    normalizer = _normalizer(object_store, clock)

    result = normalizer.normalize(
        [{"gcsUri": uri, "mimeType": "video/mp4"}],
        NormalizeOptions(id_prefix="veo"),
    )

    artifact = result.artifacts[0]
    assert artifact.id == "veo-0"
    assert artifact.storage.uri == uri
    assert artifact.url.startswith("https://storage.example.test/test-bucket/veo/sample_0.mp4?")
    assert "X-Goog-Expires=86400" in artifact.url
    assert artifact.file_name == "veo-0.mp4"


def test_persist_inline_to_store_uploads_before_signing(object_store, clock) -> None:
    normalizer = _normalizer(object_store, clock)

    result = normalizer.normalize(
        [{"bytesBase64Encoded": PNG_B64, "mimeType": "image/webp"}],
        NormalizeOptions(persist_inline_to_store=True),
    )

    artifact = result.artifacts[0]
    assert artifact.storage.kind == StorageKind.OBJECT
    assert artifact.storage.uri == "gs://test-bucket/model-results/task-0.webp"
    assert object_store.exists(artifact.storage.uri)
    assert artifact.url.startswith("https://storage.example.test/")


def test_malformed_record_is_isolated_from_the_rest_of_the_batch(object_store, clock) -> None:
    normalizer = _normalizer(object_store, clock)

    result = normalizer.normalize(
        [
            {"bytesBase64Encoded": PNG_B64},
            {"mimeType": "image/png"},
            {"bytesBase64Encoded": PNG_B64},
            {"gcsUri": "gs://test-bucket/never-written.png"},
        ],
    )

    assert [artifact.index for artifact in result.artifacts] == [0, 2]
    assert result.failed_indices == [1, 3]
    assert isinstance(result.failures[1], MalformedOutputError)
    assert result.failures[1].index == 1
    assert isinstance(result.failures[3], FileNotFoundError)
    assert not result.ok

    with pytest.raises(NormalizationError) as excinfo:
        result.raise_for_failures()
    assert excinfo.value.failed_indices == [1, 3]
    assert len(excinfo.value.artifacts) == 2


def test_invalid_inline_base64_is_malformed(clock) -> None:
    normalizer = _normalizer(_NoNetworkStore(), clock)

    result = normalizer.normalize([{"bytesBase64Encoded": "%%%"}, "not-a-record"])

    assert result.failed_indices == [0, 1]
    assert all(isinstance(error, MalformedOutputError) for error in result.failures.values())
