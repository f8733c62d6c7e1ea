"""Local deterministic engine for offline runs and CLI integration tests."""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Mapping, Sequence
from typing import Any
from uuid import uuid4

from creative_tasks.engine.base import (
    EngineInput,
    ModelFamily,
    OperationHandle,
    OperationStatus,
)
from creative_tasks.engine.params import model_family
from creative_tasks.errors import EngineError
from creative_tasks.media.object_store import ObjectStore

# 1x1 transparent PNG.
ECHO_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA"
    "60e6kgAAAABJRU5ErkJggg=="
)


class EchoGenerationEngine:
    """Returns canned outputs without calling any external service.

    Image and try-on models answer with inline PNG records. Video models return
    an operation that stays pending for `pending_polls` checks, then finishes with
    a small object written to the object store.
    """

    def __init__(
        self,
        object_store: ObjectStore | None = None,
        *,
        pending_polls: int = 1,
        output_prefix: str = "echo-results",
    ) -> None:
        self.object_store = object_store
        self.pending_polls = pending_polls
        self.output_prefix = output_prefix
        self._operations: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def invoke(
        self,
        model_id: str,
        prompt: str | None,
        inputs: Sequence[EngineInput],
        parameters: Mapping[str, Any],
    ) -> list[dict[str, Any]] | OperationHandle:
        samples = int(parameters.get("sampleCount") or 1)
        if model_family(model_id) != ModelFamily.VIDEO:
            return [
                {"bytesBase64Encoded": ECHO_PNG_BASE64, "mimeType": "image/png", "prompt": prompt}
                for _ in range(samples)
            ]

        if self.object_store is None:
            raise EngineError("Echo video generation requires an object store.")
        name = f"operations/echo-{uuid4().hex}"
        with self._lock:
            self._operations[name] = {
                "checks": 0,
                "prompt": prompt or "",
                "samples": samples,
            }
        return OperationHandle(name=name, model_id=model_id)

    def check_operation(self, handle: OperationHandle, model_id: str) -> OperationStatus:
        with self._lock:
            state = self._operations.get(handle.name)
            if state is None:
                raise EngineError(f"Unknown operation: {handle.name}", status_code=404)
            state["checks"] += 1
            if state["checks"] <= self.pending_polls:
                return OperationStatus.pending()

        store = self.object_store
        if store is None:
            raise EngineError("Echo video generation requires an object store.")
        digest = hashlib.sha256(state["prompt"].encode("utf-8")).hexdigest()[:12]
        operation_id = handle.name.rsplit("/", 1)[-1]
        videos = []
        for index in range(state["samples"]):
            uri = store.put(
                f"{self.output_prefix}/{operation_id}/sample_{index}.mp4",
                f"echo-video:{digest}:{index}".encode(),
                content_type="video/mp4",
            )
            videos.append({"gcsUri": uri, "mimeType": "video/mp4"})
        return OperationStatus.succeeded(videos)
