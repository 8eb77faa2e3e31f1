from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""Config dataclasses for the client roster importer.

These are the typed domain models that roster_import.config.loader builds from
the YAML file. DispatchPolicy is also used directly by callers that embed the
pipeline without any config file.
"""

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "MAX_CHUNK_SIZE",
    "DEFAULT_SIZE_THRESHOLD_BYTES",
    "DEFAULT_MAX_FILE_BYTES",
    "DatabaseConfig",
    "DispatchPolicy",
    "ImportConfig",
    "PacingConfig",
    "TargetConfig",
    "TargetMode",
]

DEFAULT_CHUNK_SIZE = 20
MAX_CHUNK_SIZE = 30
DEFAULT_SIZE_THRESHOLD_BYTES = 4 * 1024 * 1024  # 4MB を超えたら分割送信
DEFAULT_MAX_FILE_BYTES = 50 * 1024 * 1024


@dataclass(frozen=True)
class DispatchPolicy:
    """Chunk size and the direct/chunked decision inputs for one dispatch run.

    Direct submission is chosen when the serialized payload is strictly below
    ``size_threshold_bytes`` and there are at most ``direct_record_limit``
    records; everything else is chunked.
    """
    chunk_size: int = DEFAULT_CHUNK_SIZE
    size_threshold_bytes: int = DEFAULT_SIZE_THRESHOLD_BYTES
    direct_record_limit: int = DEFAULT_CHUNK_SIZE
    pacing_delay_seconds: float = 0.1
    chunk_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be between 1 and {MAX_CHUNK_SIZE}, got {self.chunk_size}")
        if self.size_threshold_bytes <= 0:
            raise ValueError("size_threshold_bytes must be positive")
        if self.direct_record_limit < 1:
            raise ValueError("direct_record_limit must be >= 1")
        if self.pacing_delay_seconds < 0:
            raise ValueError("pacing_delay_seconds must be >= 0")
        if self.chunk_timeout_seconds is not None and self.chunk_timeout_seconds <= 0:
            raise ValueError("chunk_timeout_seconds must be positive when set")


@dataclass(frozen=True)
class PacingConfig:
    """Inter-chunk pacing: fixed delay or exponential backoff after failures."""
    mode: str = "fixed"  # fixed | backoff
    delay_seconds: float = 0.1
    base: float = 0.1
    factor: float = 2.0
    maximum: float = 5.0


class TargetMode(Enum):
    """Where validated chunks are submitted."""
    POSTGRES = "postgres"
    HTTP = "http"
    DRY_RUN = "dry-run"


@dataclass(frozen=True)
class TargetConfig:
    mode: TargetMode
    table: str = "workout_clients"
    url: str | None = None
    api_key_env: str | None = None  # API キーを読む環境変数名
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for one import invocation."""
    target: TargetConfig
    policy: DispatchPolicy = field(default_factory=DispatchPolicy)
    pacing: PacingConfig = field(default_factory=PacingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    log_dir: str = "./logs"
