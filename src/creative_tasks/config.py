"""Runtime configuration for task orchestration, media storage and engine access."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_INLINE_THRESHOLD_BYTES = 10 * 1024 * 1024
SUPPORTED_REPOSITORY_BACKENDS = ("sql", "memory")
SUPPORTED_ENGINE_BACKENDS = ("http", "echo")


@dataclass(slots=True)
class RepositorySettings:
    """Task repository selection."""

    backend: str = "sql"


@dataclass(slots=True)
class StorageSettings:
    """Media storage tiering and signed URL settings."""

    inline_threshold_bytes: int = DEFAULT_INLINE_THRESHOLD_BYTES
    bucket: str = "creative-tasks"
    root_dir: Path = Path(".creative_tasks_objects")
    public_base_url: str = "http://localhost:8000/objects"
    signing_key: str = "dev-signing-key"
    url_ttl_seconds: int = 86_400
    url_expiry_skew_seconds: int = 60
    max_refresh_workers: int | None = None
    input_subfolder: str = "input"
    output_subfolder: str = "output"


@dataclass(slots=True)
class PollingSettings:
    """Long-running operation polling budget."""

    interval_seconds: float = 5.0
    max_attempts: int = 60


@dataclass(slots=True)
class EngineSettings:
    """Generation engine endpoint settings."""

    backend: str = "echo"
    base_url: str = ""
    api_token: str = ""
    request_timeout_seconds: float = 180.0
    max_retries: int = 1
    video_storage_uri: str = ""


@dataclass(slots=True)
class UserContextSettings:
    """User context settings."""

    username: str = "default_user"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".creative_tasks.db")
    sqlite_busy_timeout_ms: int = 5_000
    repository: RepositorySettings = field(default_factory=RepositorySettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("CREATIVE_TASKS_DB_PATH", ".creative_tasks.db")),
            sqlite_busy_timeout_ms=int(os.getenv("CREATIVE_TASKS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            repository=RepositorySettings(
                backend=os.getenv("CREATIVE_TASKS_REPOSITORY_BACKEND", "sql").strip().lower(),
            ),
            storage=StorageSettings(
                inline_threshold_bytes=int(
                    os.getenv(
                        "CREATIVE_TASKS_INLINE_THRESHOLD_BYTES",
                        str(DEFAULT_INLINE_THRESHOLD_BYTES),
                    ),
                ),
                bucket=os.getenv("CREATIVE_TASKS_BUCKET", "creative-tasks"),
                root_dir=Path(
                    os.getenv("CREATIVE_TASKS_OBJECT_ROOT", ".creative_tasks_objects"),
                ),
                public_base_url=os.getenv(
                    "CREATIVE_TASKS_PUBLIC_BASE_URL",
                    "http://localhost:8000/objects",
                ),
                signing_key=os.getenv("CREATIVE_TASKS_SIGNING_KEY", "dev-signing-key"),
                url_ttl_seconds=int(os.getenv("CREATIVE_TASKS_URL_TTL_SECONDS", "86400")),
                url_expiry_skew_seconds=int(
                    os.getenv("CREATIVE_TASKS_URL_EXPIRY_SKEW_SECONDS", "60"),
                ),
                max_refresh_workers=_env_optional_int("CREATIVE_TASKS_MAX_REFRESH_WORKERS"),
            ),
            polling=PollingSettings(
                interval_seconds=float(os.getenv("CREATIVE_TASKS_POLL_INTERVAL_SECONDS", "5.0")),
                max_attempts=int(os.getenv("CREATIVE_TASKS_POLL_MAX_ATTEMPTS", "60")),
            ),
            engine=EngineSettings(
                backend=os.getenv("CREATIVE_TASKS_ENGINE_BACKEND", "echo").strip().lower(),
                base_url=os.getenv("CREATIVE_TASKS_ENGINE_BASE_URL", "").strip(),
                api_token=os.getenv("CREATIVE_TASKS_ENGINE_API_TOKEN", ""),
                request_timeout_seconds=float(
                    os.getenv("CREATIVE_TASKS_ENGINE_TIMEOUT_SECONDS", "180.0"),
                ),
                max_retries=int(os.getenv("CREATIVE_TASKS_ENGINE_MAX_RETRIES", "1")),
                video_storage_uri=os.getenv("CREATIVE_TASKS_ENGINE_VIDEO_STORAGE_URI", "").strip(),
            ),
            user_context=UserContextSettings(
                username=os.getenv("CREATIVE_TASKS_USERNAME", "default_user"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.repository.backend not in SUPPORTED_REPOSITORY_BACKENDS:
            raise ValueError(
                "CREATIVE_TASKS_REPOSITORY_BACKEND must be one of "
                f"{', '.join(SUPPORTED_REPOSITORY_BACKENDS)}, got {self.repository.backend!r}.",
            )
        if self.storage.inline_threshold_bytes <= 0:
            raise ValueError("CREATIVE_TASKS_INLINE_THRESHOLD_BYTES must be > 0.")
        if self.storage.url_ttl_seconds <= 0:
            raise ValueError("CREATIVE_TASKS_URL_TTL_SECONDS must be > 0.")
        if not 0 <= self.storage.url_expiry_skew_seconds < self.storage.url_ttl_seconds:
            raise ValueError(
                "CREATIVE_TASKS_URL_EXPIRY_SKEW_SECONDS must be >= 0 and below the URL TTL.",
            )
        if self.storage.max_refresh_workers is not None and self.storage.max_refresh_workers <= 0:
            raise ValueError("CREATIVE_TASKS_MAX_REFRESH_WORKERS must be > 0.")
        if not self.storage.signing_key:
            raise ValueError("CREATIVE_TASKS_SIGNING_KEY must not be empty.")
        if self.polling.interval_seconds < 0:
            raise ValueError("CREATIVE_TASKS_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.polling.max_attempts <= 0:
            raise ValueError("CREATIVE_TASKS_POLL_MAX_ATTEMPTS must be > 0.")
        if self.engine.backend not in SUPPORTED_ENGINE_BACKENDS:
            raise ValueError(
                "CREATIVE_TASKS_ENGINE_BACKEND must be one of "
                f"{', '.join(SUPPORTED_ENGINE_BACKENDS)}, got {self.engine.backend!r}.",
            )
        if self.engine.backend == "http":
            _validate_base_url(self.engine.base_url)


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid CREATIVE_TASKS_ENGINE_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error
