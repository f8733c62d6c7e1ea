"""Schema-validated generation parameters, one dataclass per model family."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from creative_tasks.engine.base import ModelFamily
from creative_tasks.errors import ValidationError

DEFAULT_MODELS = {
    ModelFamily.IMAGE: "imagen-4.0-generate-001",
    ModelFamily.VIDEO: "veo-3.0-generate-preview",
    ModelFamily.TRY_ON: "virtual-try-on-preview-08-04",
}
LONG_RUNNING_FAMILIES = frozenset({ModelFamily.VIDEO})

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _int(*, default: int | None = None, low: int | None = None, high: int | None = None) -> Any:
    return field(default=default, metadata={"kind": "int", "low": low, "high": high})


def _str(*, default: str | None = None, choices: tuple[str, ...] = ()) -> Any:
    return field(default=default, metadata={"kind": "str", "choices": choices})


def _bool(*, default: bool | None = None) -> Any:
    return field(default=default, metadata={"kind": "bool"})


@dataclass(slots=True, frozen=True)
class ImageParameters:
    """Still image generation parameters."""

    sample_count: int | None = _int(default=1, low=1, high=4)
    aspect_ratio: str | None = _str(
        default="1:1",
        choices=("1:1", "9:16", "16:9", "3:4", "4:3"),
    )
    negative_prompt: str | None = _str()
    person_generation: str | None = _str(choices=("dont_allow", "allow_adult", "allow_all"))
    seed: int | None = _int(low=0)
    storage_uri: str | None = _str()


@dataclass(slots=True, frozen=True)
class VideoParameters:
    """Video generation parameters."""

    aspect_ratio: str | None = _str(default="16:9", choices=("16:9", "9:16"))
    duration_seconds: int | None = _int(default=8, low=5, high=8)
    sample_count: int | None = _int(default=1, low=1, high=4)
    person_generation: str | None = _str(
        default="allow_adult",
        choices=("dont_allow", "allow_adult"),
    )
    enhance_prompt: bool | None = _bool(default=True)
    generate_audio: bool | None = _bool()
    negative_prompt: str | None = _str()
    resolution: str | None = _str(choices=("720p", "1080p"))
    compression_quality: str | None = _str(choices=("optimized", "lossless"))
    seed: int | None = _int(low=0)
    storage_uri: str | None = _str()


@dataclass(slots=True, frozen=True)
class TryOnParameters:
    """Virtual try-on parameters."""

    sample_count: int | None = _int(default=1, low=1, high=4)
    person_generation: str | None = _str(choices=("dont_allow", "allow_adult", "allow_all"))
    seed: int | None = _int(low=0)
    storage_uri: str | None = _str()


ModelParameters = ImageParameters | VideoParameters | TryOnParameters

_SCHEMAS: dict[ModelFamily, type[ModelParameters]] = {
    ModelFamily.IMAGE: ImageParameters,
    ModelFamily.VIDEO: VideoParameters,
    ModelFamily.TRY_ON: TryOnParameters,
}


def model_family(model_id: str) -> ModelFamily:
    """Infer the model family from its identifier."""

    normalized = model_id.strip().lower()
    if normalized.startswith("veo"):
        return ModelFamily.VIDEO
    if "try-on" in normalized or "tryon" in normalized:
        return ModelFamily.TRY_ON
    if normalized.startswith("imagen"):
        return ModelFamily.IMAGE
    raise ValidationError(f"Unsupported model: {model_id!r}")


def parse_parameters(model_id: str, raw: Mapping[str, Any] | None) -> ModelParameters:
    """Validate raw key/value parameters against the model family's schema.

    Keys may be camelCase or snake_case. String values `"true"`/`"false"` and
    numeric strings are coerced. Unknown keys and out-of-range values raise
    `ValidationError`.
    """

    schema = _SCHEMAS[model_family(model_id)]
    known = {item.name: item for item in fields(schema)}
    values: dict[str, Any] = {}
    for key, value in (raw or {}).items():
        name = _CAMEL_BOUNDARY.sub("_", key).lower()
        spec = known.get(name)
        if spec is None:
            raise ValidationError(f"Unknown parameter {key!r} for model {model_id!r}.")
        if value is None or value == "":
            continue
        values[name] = _coerce(key, value, spec.metadata)
    return schema(**values)


def to_engine_dict(parameters: ModelParameters) -> dict[str, Any]:
    """camelCase dict of the set parameters, as the engine expects them."""

    payload: dict[str, Any] = {}
    for item in fields(parameters):
        value = getattr(parameters, item.name)
        if value is None:
            continue
        head, *rest = item.name.split("_")
        payload[head + "".join(part.title() for part in rest)] = value
    return payload


def _coerce(key: str, value: Any, rules: Mapping[str, Any]) -> Any:
    kind = rules["kind"]
    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
        raise ValidationError(f"Parameter {key!r} must be a boolean, got {value!r}.")

    if kind == "int":
        if isinstance(value, bool):
            raise ValidationError(f"Parameter {key!r} must be an integer, got {value!r}.")
        try:
            number = int(value)
        except (TypeError, ValueError) as error:
            raise ValidationError(
                f"Parameter {key!r} must be an integer, got {value!r}.",
            ) from error
        if isinstance(value, float) and not value.is_integer():
            raise ValidationError(f"Parameter {key!r} must be an integer, got {value!r}.")
        low, high = rules["low"], rules["high"]
        if (low is not None and number < low) or (high is not None and number > high):
            raise ValidationError(f"Parameter {key!r} out of range: {number}.")
        return number

    text = str(value).strip()
    choices = rules["choices"]
    if choices and text not in choices:
        raise ValidationError(
            f"Parameter {key!r} must be one of {', '.join(choices)}, got {text!r}.",
        )
    return text
