"""Value types shared by the media storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StorageKind(str, Enum):
    """Where an artifact's bytes physically live."""

    INLINE = "inline"
    OBJECT = "object"


@dataclass(slots=True, frozen=True)
class StorageReference:
    """Either an inline base64 payload or a durable object-store URI, never both."""

    kind: StorageKind
    mime_type: str
    uri: str | None = None
    payload_base64: str | None = None
    size_bytes: int | None = None

    def __post_init__(self) -> None:
        if self.kind == StorageKind.INLINE:
            if not self.payload_base64 or self.uri is not None:
                raise ValueError("Inline storage reference requires payload and no URI.")
        elif not self.uri or self.payload_base64 is not None:
            raise ValueError("Object storage reference requires URI and no payload.")

    @classmethod
    def inline(
        cls,
        payload_base64: str,
        *,
        mime_type: str,
        size_bytes: int | None = None,
    ) -> StorageReference:
        return cls(
            kind=StorageKind.INLINE,
            mime_type=mime_type,
            payload_base64=payload_base64,
            size_bytes=size_bytes,
        )

    @classmethod
    def object(
        cls,
        uri: str,
        *,
        mime_type: str,
        size_bytes: int | None = None,
    ) -> StorageReference:
        return cls(
            kind=StorageKind.OBJECT,
            mime_type=mime_type,
            uri=uri,
            size_bytes=size_bytes,
        )

    @property
    def is_inline(self) -> bool:
        return self.kind == StorageKind.INLINE

    def data_url(self) -> str:
        """Build a `data:` URL for an inline reference."""

        if not self.is_inline:
            raise ValueError("Only inline references can be rendered as data URLs.")
        return f"data:{self.mime_type};base64,{self.payload_base64}"


@dataclass(slots=True)
class NormalizedArtifact:
    """Engine output record reduced to a single representation with an access URL."""

    index: int
    id: str
    url: str
    mime_type: str
    storage: StorageReference
    file_name: str
    passthrough: dict[str, Any] = field(default_factory=dict)


class UrlSource(str, Enum):
    """How a resolved access URL was obtained."""

    INLINE = "inline"
    CACHED = "cached"
    REFRESHED = "refreshed"
    UNAVAILABLE = "unavailable"


@dataclass(slots=True, frozen=True)
class ResolvedUrl:
    """Access URL for one artifact plus how it was produced.

    An unavailable result carries no URL; `stale_url` keeps the expired cached
    value for diagnostics only.
    """

    artifact_id: int | None
    url: str | None
    source: UrlSource
    stale_url: str | None = None

    @property
    def available(self) -> bool:
        return self.url is not None
