"""Normalize heterogeneous engine output records into artifacts with access URLs."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from creative_tasks.errors import MalformedOutputError, NormalizationError
from creative_tasks.media.models import NormalizedArtifact, StorageReference
from creative_tasks.media.routing import MediaStorageRouter, extension_for_mime, object_path
from creative_tasks.media.signed_urls import SignedUrlCache

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"
_URI_KEYS = ("gcsUri", "gcs_uri", "uri")
_PAYLOAD_KEYS = ("bytesBase64Encoded", "bytes_base64_encoded")
_MIME_KEYS = ("mimeType", "mime_type")


@dataclass(slots=True)
class NormalizeOptions:
    """Per-call normalization knobs."""

    id_prefix: str = "task"
    persist_inline_to_store: bool = False
    destination: str = "model-results"


@dataclass(slots=True)
class NormalizationResult:
    """Successes and per-index failures of one normalization batch."""

    artifacts: list[NormalizedArtifact] = field(default_factory=list)
    failures: dict[int, Exception] = field(default_factory=dict)

    @property
    def failed_indices(self) -> list[int]:
        return sorted(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise NormalizationError(failures=self.failures, artifacts=self.artifacts)


class ResponseNormalizer:
    """Turns raw engine output records into `NormalizedArtifact` values."""

    def __init__(self, router: MediaStorageRouter, url_cache: SignedUrlCache) -> None:
        self.router = router
        self.url_cache = url_cache

    def normalize(
        self,
        raw_records: Sequence[Mapping[str, Any]],
        options: NormalizeOptions | None = None,
    ) -> NormalizationResult:
        options = options or NormalizeOptions()
        result = NormalizationResult()
        for index, record in enumerate(raw_records):
            try:
                result.artifacts.append(self._normalize_record(index, record, options))
            except Exception as error:  # noqa: BLE001
                logger.warning("Engine output %d could not be normalized: %s", index, error)
                result.failures[index] = error
        return result

    def _normalize_record(
        self,
        index: int,
        record: Mapping[str, Any],
        options: NormalizeOptions,
    ) -> NormalizedArtifact:
        if not isinstance(record, Mapping):
            raise MalformedOutputError(index, f"Engine output {index} is not an object.")

        uri = _first_value(record, _URI_KEYS)
        payload = _first_value(record, _PAYLOAD_KEYS)
        mime_type = _first_value(record, _MIME_KEYS) or DEFAULT_MIME_TYPE
        artifact_id = f"{options.id_prefix}-{index}"
        file_name = f"{artifact_id}.{extension_for_mime(mime_type)}"

        if uri:
            storage = StorageReference.object(uri, mime_type=mime_type)
            url = self.url_cache.sign(storage)
        elif payload:
            if options.persist_inline_to_store:
                storage = self.router.route(
                    payload,
                    mime_type,
                    destination=object_path(options.destination, file_name),
                    force_object_store=True,
                )
                url = self.url_cache.sign(storage)
            else:
                storage = StorageReference.inline(
                    payload,
                    mime_type=mime_type,
                    size_bytes=_decoded_size(index, payload),
                )
                url = storage.data_url()
        else:
            raise MalformedOutputError(index)

        consumed = {*_URI_KEYS, *_PAYLOAD_KEYS, *_MIME_KEYS}
        return NormalizedArtifact(
            index=index,
            id=artifact_id,
            url=url,
            mime_type=mime_type,
            storage=storage,
            file_name=file_name,
            passthrough={key: value for key, value in record.items() if key not in consumed},
        )


def _first_value(record: Mapping[str, Any], keys: Sequence[str]) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _decoded_size(index: int, payload: str) -> int:
    try:
        return len(base64.b64decode(payload, validate=True))
    except (binascii.Error, ValueError) as error:
        raise MalformedOutputError(index, f"Engine output {index} has invalid base64.") from error
