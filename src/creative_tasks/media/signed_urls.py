"""Signed access URL issuance with expiry detection and batched refresh."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Protocol
from urllib.parse import parse_qsl, urlsplit

from creative_tasks.media.models import ResolvedUrl, StorageReference, UrlSource
from creative_tasks.media.object_store import SIGNED_URL_DATE_FORMAT, ObjectStore
from creative_tasks.storage.common import to_utc_aware, utc_now

logger = logging.getLogger(__name__)

DEFAULT_URL_TTL_SECONDS = 24 * 60 * 60
DEFAULT_EXPIRY_SKEW_SECONDS = 60

# (issued-at, ttl) query parameter pairs, lower-cased.
_EXPIRY_PARAMS = (
    ("x-goog-date", "x-goog-expires"),
    ("x-amz-date", "x-amz-expires"),
)


class CachedArtifact(Protocol):
    """Artifact fields the cache reads."""

    id: int | None
    storage: StorageReference
    preview_url: str | None


class ArtifactUrlWriter(Protocol):
    """Persists refreshed URLs in one statement."""

    def update_artifact_urls(self, urls: Mapping[int, str], *, refreshed_at: datetime) -> int:
        """Write all urls at once and return the number of rows touched."""


def parse_url_expiry(url: str | None) -> datetime | None:
    """Return the moment a signed URL stops working, or None if it cannot be told."""

    if not url:
        return None
    params = {key.lower(): value for key, value in parse_qsl(urlsplit(url).query)}
    for date_key, ttl_key in _EXPIRY_PARAMS:
        issued_raw = params.get(date_key)
        ttl_raw = params.get(ttl_key)
        if issued_raw is None or ttl_raw is None:
            continue
        try:
            issued_at = to_utc_aware(datetime.strptime(issued_raw, SIGNED_URL_DATE_FORMAT))
            ttl_seconds = int(ttl_raw)
        except ValueError:
            return None
        if ttl_seconds < 0:
            return None
        return issued_at + timedelta(seconds=ttl_seconds)
    return None


def is_expired(
    url: str | None,
    *,
    now: datetime | None = None,
    skew_seconds: int = DEFAULT_EXPIRY_SKEW_SECONDS,
) -> bool:
    """True when `now >= issued + ttl - skew` or the URL carries no readable expiry."""

    expires_at = parse_url_expiry(url)
    if expires_at is None:
        return True
    current = to_utc_aware(now) if now is not None else utc_now()
    return current >= expires_at - timedelta(seconds=skew_seconds)


class SignedUrlCache:
    """Keeps artifact access URLs fresh, regenerating expired ones on read."""

    def __init__(
        self,
        object_store: ObjectStore,
        writer: ArtifactUrlWriter,
        *,
        ttl_seconds: int = DEFAULT_URL_TTL_SECONDS,
        skew_seconds: int = DEFAULT_EXPIRY_SKEW_SECONDS,
        max_workers: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.object_store = object_store
        self.writer = writer
        self.ttl_seconds = ttl_seconds
        self.skew_seconds = skew_seconds
        self.max_workers = max_workers
        self._clock = clock

    def sign(self, reference: StorageReference) -> str:
        """Access URL for a reference, bypassing any cached value."""

        if reference.is_inline:
            return reference.data_url()
        if reference.uri is None:
            raise ValueError("Object storage reference has no URI.")
        return self.object_store.uri_to_access_url(reference.uri, self.ttl_seconds)

    def is_fresh(self, url: str | None) -> bool:
        return not is_expired(url, now=self._clock(), skew_seconds=self.skew_seconds)

    def resolve(self, artifact: CachedArtifact) -> str:
        """Return a usable URL, regenerating and persisting it when expired.

        Regeneration errors propagate. A failed persistence write is logged and the
        fresh URL is still returned.
        """

        if artifact.storage.is_inline:
            return artifact.storage.data_url()
        cached = artifact.preview_url
        if cached is not None and self.is_fresh(cached):
            return cached

        url = self.sign(artifact.storage)
        if artifact.id is not None:
            self._persist({artifact.id: url})
        return url

    def resolve_many(self, artifacts: Sequence[CachedArtifact]) -> list[ResolvedUrl]:
        """Resolve a page of artifacts, refreshing stale URLs concurrently.

        All regenerated URLs are written back in a single batched update. An
        artifact whose regeneration fails comes back unavailable without
        affecting the rest of the page.
        """

        results: list[ResolvedUrl | None] = [None] * len(artifacts)
        stale: list[int] = []
        for position, artifact in enumerate(artifacts):
            if artifact.storage.is_inline:
                results[position] = ResolvedUrl(
                    artifact.id,
                    artifact.storage.data_url(),
                    UrlSource.INLINE,
                )
            elif self.is_fresh(artifact.preview_url):
                results[position] = ResolvedUrl(artifact.id, artifact.preview_url, UrlSource.CACHED)
            else:
                stale.append(position)

        if stale:
            refreshed = self._regenerate_concurrently([artifacts[position] for position in stale])
            updates: dict[int, str] = {}
            for position, outcome in zip(stale, refreshed, strict=True):
                artifact = artifacts[position]
                if isinstance(outcome, Exception):
                    logger.warning(
                        "Failed to refresh URL for artifact %s (%s): %s",
                        artifact.id,
                        artifact.storage.uri,
                        outcome,
                    )
                    results[position] = ResolvedUrl(
                        artifact.id,
                        None,
                        UrlSource.UNAVAILABLE,
                        stale_url=artifact.preview_url,
                    )
                    continue
                results[position] = ResolvedUrl(artifact.id, outcome, UrlSource.REFRESHED)
                if artifact.id is not None:
                    updates[artifact.id] = outcome
            if updates:
                self._persist(updates)

        return [result for result in results if result is not None]

    def _regenerate_concurrently(
        self,
        artifacts: Sequence[CachedArtifact],
    ) -> list[str | Exception]:
        workers = len(artifacts)
        if self.max_workers is not None:
            workers = min(workers, self.max_workers)

        def regenerate(artifact: CachedArtifact) -> str | Exception:
            try:
                return self.sign(artifact.storage)
            except Exception as error:  # noqa: BLE001
                return error

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="url-refresh") as pool:
            return list(pool.map(regenerate, artifacts))

    def _persist(self, urls: Mapping[int, str]) -> None:
        try:
            touched = self.writer.update_artifact_urls(urls, refreshed_at=self._clock())
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist %d refreshed URLs", len(urls))
            return
        logger.debug("Persisted %d refreshed URLs (%d rows)", len(urls), touched)
