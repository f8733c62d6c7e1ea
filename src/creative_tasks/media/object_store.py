"""Object store boundary and a filesystem-backed store issuing signed URLs."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import quote, urlencode

from creative_tasks.storage.common import utc_now

logger = logging.getLogger(__name__)

SIGNED_URL_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
SIGNING_ALGORITHM = "GOOG4-HMAC-SHA256"


class ObjectStore(Protocol):
    """Durable object storage with time-limited read URLs."""

    def put(self, path: str, data: bytes, *, content_type: str) -> str:
        """Store bytes under path and return the object URI."""

    def uri_to_access_url(self, uri: str, ttl_seconds: int) -> str:
        """Issue a signed URL valid for ttl_seconds."""

    def exists(self, uri: str) -> bool:
        """Return whether the object behind uri exists."""


class LocalObjectStore:
    """Stores objects on disk and signs URLs with an HMAC key.

    URIs look like `gs://<bucket>/<path>`; access URLs carry `X-Goog-Date` and
    `X-Goog-Expires` so that expiry can be read back from the URL alone.
    """

    def __init__(
        self,
        *,
        root_dir: Path,
        bucket: str,
        public_base_url: str,
        signing_key: str,
        scheme: str = "gs",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.root_dir = root_dir
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.scheme = scheme
        self._signing_key = signing_key.encode("utf-8")
        self._clock = clock

    def put(self, path: str, data: bytes, *, content_type: str) -> str:
        object_path = _clean_object_path(path)
        target = self.root_dir / self.bucket / object_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug(
            "Stored object %s (%d bytes, %s)",
            object_path,
            len(data),
            content_type,
        )
        return f"{self.scheme}://{self.bucket}/{object_path}"

    def uri_to_access_url(self, uri: str, ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        bucket, object_path = self.parse_uri(uri)
        if not (self.root_dir / bucket / object_path).is_file():
            raise FileNotFoundError(f"Object not found: {uri}")

        issued_at = self._clock().strftime(SIGNED_URL_DATE_FORMAT)
        resource = f"/{bucket}/{quote(object_path)}"
        string_to_sign = "\n".join((SIGNING_ALGORITHM, issued_at, str(ttl_seconds), resource))
        signature = hmac.new(
            self._signing_key,
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        query = urlencode(
            {
                "X-Goog-Algorithm": SIGNING_ALGORITHM,
                "X-Goog-Date": issued_at,
                "X-Goog-Expires": str(ttl_seconds),
                "X-Goog-SignedHeaders": "host",
                "X-Goog-Signature": signature,
            },
        )
        return f"{self.public_base_url}{resource}?{query}"

    def exists(self, uri: str) -> bool:
        bucket, object_path = self.parse_uri(uri)
        return (self.root_dir / bucket / object_path).is_file()

    def parse_uri(self, uri: str) -> tuple[str, str]:
        prefix = f"{self.scheme}://"
        if not uri.startswith(prefix):
            raise ValueError(f"Unsupported object URI: {uri!r}")
        bucket, _, object_path = uri[len(prefix) :].partition("/")
        if not bucket or not object_path:
            raise ValueError(f"Object URI must include bucket and path: {uri!r}")
        return bucket, _clean_object_path(object_path)


def _clean_object_path(path: str) -> str:
    parts = [part for part in PurePosixPath(path.strip("/")).parts if part not in {"", "."}]
    if not parts or ".." in parts:
        raise ValueError(f"Invalid object path: {path!r}")
    return "/".join(parts)
