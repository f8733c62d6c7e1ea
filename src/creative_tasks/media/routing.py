"""Size-based storage tiering: inline base64 payload vs. durable object store."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePosixPath

from creative_tasks.config import DEFAULT_INLINE_THRESHOLD_BYTES
from creative_tasks.errors import BatchRoutingError, StorageUploadError, ValidationError
from creative_tasks.media.models import StorageReference
from creative_tasks.media.object_store import ObjectStore
from creative_tasks.storage.common import utc_now

logger = logging.getLogger(__name__)

_UNSAFE_FILE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
}


@dataclass(slots=True)
class RouteItem:
    """One payload of a batch routing call."""

    payload: bytes | str
    mime_type: str
    destination: str | None = None
    size_bytes: int | None = None
    force_object_store: bool = False


class MediaStorageRouter:
    """Decides per payload whether to keep it inline or upload it."""

    def __init__(
        self,
        object_store: ObjectStore,
        *,
        threshold_bytes: int = DEFAULT_INLINE_THRESHOLD_BYTES,
    ) -> None:
        if threshold_bytes <= 0:
            raise ValueError("threshold_bytes must be > 0")
        self.object_store = object_store
        self.threshold_bytes = threshold_bytes

    def route(
        self,
        payload: bytes | str,
        mime_type: str,
        size_bytes: int | None = None,
        destination: str | None = None,
        *,
        force_object_store: bool = False,
    ) -> StorageReference:
        """Return an inline reference for small payloads, otherwise upload.

        `payload` is raw bytes or an already-base64 string. `size_bytes` defaults
        to the decoded payload length. Upload failures raise `StorageUploadError`
        and are never downgraded to inline storage.
        """

        raw, encoded = _decode_payload(payload)
        if not raw:
            raise ValidationError("Payload is empty.")
        size = len(raw) if size_bytes is None else size_bytes
        if size < 0:
            raise ValidationError("size_bytes must be >= 0")

        if size < self.threshold_bytes and not force_object_store:
            return StorageReference.inline(encoded, mime_type=mime_type, size_bytes=size)

        if not destination:
            raise ValidationError("Object store destination is required for large payloads.")
        try:
            uri = self.object_store.put(destination, raw, content_type=mime_type)
        except Exception as error:  # noqa: BLE001
            logger.warning("Upload to %s failed: %s", destination, error)
            raise StorageUploadError(
                f"Failed to upload {destination}: {error}",
                destination=destination,
            ) from error
        logger.info("Uploaded %d bytes to %s", size, uri)
        return StorageReference.object(uri, mime_type=mime_type, size_bytes=size)

    def route_many(self, items: Sequence[RouteItem]) -> list[StorageReference]:
        """Route every item independently; raise once at the end if any failed."""

        succeeded: dict[int, StorageReference] = {}
        failures: dict[int, Exception] = {}
        for index, item in enumerate(items):
            try:
                succeeded[index] = self.route(
                    item.payload,
                    item.mime_type,
                    item.size_bytes,
                    item.destination,
                    force_object_store=item.force_object_store,
                )
            except (StorageUploadError, ValidationError) as error:
                failures[index] = error
        if failures:
            raise BatchRoutingError(succeeded=succeeded, failures=failures)
        return [succeeded[index] for index in range(len(items))]


def extension_for_mime(mime_type: str, default: str = "png") -> str:
    return _MIME_EXTENSIONS.get(mime_type.lower(), default)


def safe_file_name(
    original_name: str | None = None,
    *,
    custom_name: str | None = None,
    now: datetime | None = None,
) -> str:
    """Strip unsafe characters; generated names get a millisecond timestamp suffix."""

    if custom_name:
        return _UNSAFE_FILE_NAME_CHARS.sub("_", custom_name)
    stamp = int((now or utc_now()).timestamp() * 1000)
    if original_name:
        pure = PurePosixPath(original_name.replace("\\", "/"))
        base = _UNSAFE_FILE_NAME_CHARS.sub("_", pure.stem) or "file"
        return f"{base}_{stamp}{pure.suffix}"
    return f"image_{stamp}.png"


def object_path(*segments: str) -> str:
    """Join destination segments into an object path, skipping empty ones."""

    return "/".join(segment.strip("/") for segment in segments if segment and segment.strip("/"))


def _decode_payload(payload: bytes | str) -> tuple[bytes, str]:
    if isinstance(payload, bytes):
        return payload, base64.b64encode(payload).decode("ascii")
    encoded = payload.strip()
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as error:
        raise ValidationError("Payload is not valid base64.") from error
    return raw, encoded
