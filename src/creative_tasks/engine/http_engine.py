"""HTTP generation engine client for predict / long-running predict endpoints."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from creative_tasks.engine.base import (
    EngineInput,
    InputGroup,
    ModelFamily,
    OperationError,
    OperationHandle,
    OperationStatus,
    inputs_by_group,
)
from creative_tasks.engine.params import model_family
from creative_tasks.errors import EngineError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 180.0
DEFAULT_MAX_RETRIES = 1


class HttpGenerationEngine:
    """Engine client speaking the `:predict` / `:predictLongRunning` protocol.

    Image and try-on models answer synchronously with prediction records. Video
    models return an operation name that is checked via `:fetchPredictOperation`.
    Transport retries cover connection establishment only. Without a storage URI
    video models return the generated bytes inline.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        video_storage_uri: str = "",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.video_storage_uri = video_storage_uri
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def invoke(
        self,
        model_id: str,
        prompt: str | None,
        inputs: Sequence[EngineInput],
        parameters: Mapping[str, Any],
    ) -> list[dict[str, Any]] | OperationHandle:
        family = model_family(model_id)
        instance = _build_instance(family, prompt, inputs)
        request_parameters = dict(parameters)
        if family == ModelFamily.VIDEO and self.video_storage_uri:
            request_parameters.setdefault("storageUri", self.video_storage_uri)
        body = {"instances": [instance], "parameters": request_parameters}

        if family == ModelFamily.VIDEO:
            payload = self._post(f"{model_id}:predictLongRunning", body)
            name = payload.get("name")
            if not isinstance(name, str) or not name:
                raise EngineError(f"Model {model_id} returned no operation name.")
            return OperationHandle(name=name, model_id=model_id)

        payload = self._post(f"{model_id}:predict", body)
        predictions = payload.get("predictions") or []
        if not isinstance(predictions, list):
            raise EngineError(f"Model {model_id} returned malformed predictions.")
        logger.info("Model %s returned %d predictions", model_id, len(predictions))
        return [dict(item) if isinstance(item, Mapping) else item for item in predictions]

    def check_operation(self, handle: OperationHandle, model_id: str) -> OperationStatus:
        payload = self._post(
            f"{model_id}:fetchPredictOperation",
            {"operationName": handle.name},
        )
        if not payload.get("done"):
            return OperationStatus.pending()

        error = payload.get("error")
        if error:
            if not isinstance(error, Mapping):
                return OperationStatus.failed(OperationError(code=None, message=str(error)))
            return OperationStatus.failed(
                OperationError(
                    code=error.get("code"),
                    message=str(error.get("message") or "Operation failed."),
                    status=error.get("status"),
                ),
            )

        response = payload.get("response") or {}
        videos = response.get("videos") if isinstance(response, Mapping) else None
        if not videos or not isinstance(videos, list):
            return OperationStatus.failed(
                OperationError(code=None, message="Operation finished without generated videos."),
            )
        # Records keep either gcsUri or bytesBase64Encoded; malformed ones reach the normalizer.
        return OperationStatus.succeeded(
            [
                {**video, "mimeType": video.get("mimeType") or "video/mp4"}
                if isinstance(video, Mapping)
                else video
                for video in videos
            ],
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpGenerationEngine:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _post(self, path: str, body: Mapping[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            response = self._client.post(url, json=body)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling %s", url)
            raise EngineError(f"Timeout calling {url}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling %s: %s", url, error)
            raise EngineError(f"HTTP error calling {url}: {error}") from error

        if not response.is_success:
            raise EngineError(
                f"HTTP {response.status_code} from {url}: {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as error:
            raise EngineError(f"Invalid JSON from {url}") from error
        if not isinstance(payload, dict):
            raise EngineError(f"Unexpected response shape from {url}")
        return payload


def _build_instance(
    family: ModelFamily,
    prompt: str | None,
    inputs: Sequence[EngineInput],
) -> dict[str, Any]:
    if family == ModelFamily.TRY_ON:
        people = inputs_by_group(inputs, InputGroup.PERSON)
        products = inputs_by_group(inputs, InputGroup.PRODUCT)
        if len(people) != 1 or not products:
            raise ValidationError(
                "Try-on requires one person image and at least one product image.",
            )
        return {
            "personImage": {"image": people[0].to_engine_payload()},
            "productImages": [{"image": item.to_engine_payload()} for item in products],
        }

    instance: dict[str, Any] = {"prompt": prompt or ""}
    first_frames = inputs_by_group(inputs, InputGroup.COMMON)
    if first_frames:
        instance["image"] = first_frames[0].to_engine_payload()
    if family == ModelFamily.VIDEO:
        last_frames = inputs_by_group(inputs, InputGroup.LAST_FRAME)
        if last_frames:
            instance["lastFrame"] = last_frames[0].to_engine_payload()
    return instance
