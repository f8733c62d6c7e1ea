"""Wire long-lived collaborators once per process from settings."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from creative_tasks.config import Settings
from creative_tasks.engine.base import GenerationEngine
from creative_tasks.engine.echo_engine import EchoGenerationEngine
from creative_tasks.engine.http_engine import HttpGenerationEngine
from creative_tasks.engine.poller import LongRunningOperationPoller
from creative_tasks.media.normalizer import ResponseNormalizer
from creative_tasks.media.object_store import LocalObjectStore, ObjectStore
from creative_tasks.media.routing import MediaStorageRouter
from creative_tasks.media.signed_urls import SignedUrlCache
from creative_tasks.tasks.history import TaskHistoryService
from creative_tasks.tasks.lifecycle import TaskLifecycleManager
from creative_tasks.tasks.repository import TaskRepository, build_repository
from creative_tasks.tasks.service import GenerationService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Process-wide components sharing one repository, store and engine client."""

    settings: Settings
    repository: TaskRepository
    object_store: ObjectStore
    url_cache: SignedUrlCache
    lifecycle: TaskLifecycleManager
    history: TaskHistoryService
    engine: GenerationEngine
    poller: LongRunningOperationPoller
    generation: GenerationService


def build_runtime(
    settings: Settings,
    *,
    engine: GenerationEngine | None = None,
    object_store: ObjectStore | None = None,
) -> Runtime:
    settings.validate()
    store = object_store or LocalObjectStore(
        root_dir=settings.storage.root_dir,
        bucket=settings.storage.bucket,
        public_base_url=settings.storage.public_base_url,
        signing_key=settings.storage.signing_key,
    )
    repository = build_repository(settings)
    router = MediaStorageRouter(store, threshold_bytes=settings.storage.inline_threshold_bytes)
    url_cache = SignedUrlCache(
        store,
        repository,
        ttl_seconds=settings.storage.url_ttl_seconds,
        skew_seconds=settings.storage.url_expiry_skew_seconds,
        max_workers=settings.storage.max_refresh_workers,
    )
    lifecycle = TaskLifecycleManager(
        repository,
        router,
        ResponseNormalizer(router, url_cache),
        url_cache,
        input_subfolder=settings.storage.input_subfolder,
        output_subfolder=settings.storage.output_subfolder,
    )
    engine = engine or _build_engine(settings, store)
    poller = LongRunningOperationPoller(
        engine,
        interval_seconds=settings.polling.interval_seconds,
        max_attempts=settings.polling.max_attempts,
    )
    return Runtime(
        settings=settings,
        repository=repository,
        object_store=store,
        url_cache=url_cache,
        lifecycle=lifecycle,
        history=TaskHistoryService(lifecycle, url_cache),
        engine=engine,
        poller=poller,
        generation=GenerationService(lifecycle, engine, poller),
    )


@contextmanager
def open_runtime(
    settings: Settings,
    *,
    engine: GenerationEngine | None = None,
) -> Iterator[Runtime]:
    runtime = build_runtime(settings, engine=engine)
    try:
        yield runtime
    finally:
        runtime.repository.close()
        if isinstance(runtime.engine, HttpGenerationEngine):
            runtime.engine.close()


def _build_engine(settings: Settings, store: ObjectStore) -> GenerationEngine:
    if settings.engine.backend == "http":
        logger.info("Using HTTP generation engine at %s", settings.engine.base_url)
        return HttpGenerationEngine(
            base_url=settings.engine.base_url,
            api_token=settings.engine.api_token,
            timeout_seconds=settings.engine.request_timeout_seconds,
            max_retries=settings.engine.max_retries,
            video_storage_uri=settings.engine.video_storage_uri,
        )
    logger.info("Using echo generation engine")
    return EchoGenerationEngine(store)
