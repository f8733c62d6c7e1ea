"""Generation engine boundary shared by engine implementations."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from creative_tasks.media.models import StorageReference


class ModelFamily(str, Enum):
    """Model families with distinct request shapes and parameter schemas."""

    IMAGE = "image"
    VIDEO = "video"
    TRY_ON = "try_on"


class InputGroup(str, Enum):
    """Role of an input file in an engine request."""

    PERSON = "person"
    PRODUCT = "product"
    COMMON = "common"
    LAST_FRAME = "last_frame"


@dataclass(slots=True, frozen=True)
class EngineInput:
    """One stored input file handed to the engine."""

    group: InputGroup
    reference: StorageReference

    def to_engine_payload(self) -> dict[str, str]:
        reference = self.reference
        if reference.payload_base64 is not None:
            return {
                "bytesBase64Encoded": reference.payload_base64,
                "mimeType": reference.mime_type,
            }
        if reference.uri is not None:
            return {"gcsUri": reference.uri, "mimeType": reference.mime_type}
        raise ValueError("Storage reference has neither payload nor URI.")


@dataclass(slots=True)
class EngineRequest:
    """Everything needed to submit one generation request."""

    prompt: str | None
    inputs: Sequence[EngineInput] = ()
    parameters: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class OperationHandle:
    """Opaque long-running operation token plus the model needed to poll it."""

    name: str
    model_id: str


@dataclass(slots=True, frozen=True)
class OperationError:
    """Error result reported by a finished operation."""

    code: int | None
    message: str
    status: str | None = None


@dataclass(slots=True)
class OperationStatus:
    """Result of a single operation check."""

    done: bool
    result: list[dict[str, Any]] | None = None
    error: OperationError | None = None

    @classmethod
    def pending(cls) -> OperationStatus:
        return cls(done=False)

    @classmethod
    def succeeded(cls, result: list[dict[str, Any]]) -> OperationStatus:
        return cls(done=True, result=result)

    @classmethod
    def failed(cls, error: OperationError) -> OperationStatus:
        return cls(done=True, error=error)


class GenerationEngine(Protocol):
    """External generation service."""

    def invoke(
        self,
        model_id: str,
        prompt: str | None,
        inputs: Sequence[EngineInput],
        parameters: Mapping[str, Any],
    ) -> list[dict[str, Any]] | OperationHandle:
        """Run synchronously and return raw outputs, or start long-running work."""

    def check_operation(self, handle: OperationHandle, model_id: str) -> OperationStatus:
        """Check a long-running operation once without blocking."""


def inputs_by_group(inputs: Sequence[EngineInput], group: InputGroup) -> list[EngineInput]:
    return [item for item in inputs if item.group == group]
