"""Configuration read from the environment."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from edgeinsights.adapters.frameworks.asgi import DEFAULT_ALLOWED_ORIGINS
from edgeinsights.adapters.llm.openai_client import (
    DEFAULT_COMPLETION_MODEL,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_TIMEOUT,
)
from edgeinsights.core.querygen import DEFAULT_MAX_ROWS
from edgeinsights.services.indexer import DEFAULT_QUEUE_SIZE
from edgeinsights.services.scheduler import DEFAULT_TICK_SECONDS


def _getenv(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key, "")
    return value if value.strip() else default


def _getenv_int(env: Mapping[str, str], key: str, default: int) -> int:
    """Parse an integer environment variable with validation."""
    try:
        return int(_getenv(env, key, str(default)))
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: {env.get(key)}") from None


def _getenv_float(env: Mapping[str, str], key: str, default: float) -> float:
    """Parse a float environment variable with validation."""
    try:
        return float(_getenv(env, key, str(default)))
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: {env.get(key)}") from None


def _getenv_list(env: Mapping[str, str], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Parse a comma-separated environment variable, dropping empty items."""
    raw = env.get(key, "")
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items or default


def _log_level(value: str) -> str:
    level = value.strip().upper()
    return "WARNING" if level == "WARN" else level


@dataclass(frozen=True)
class ServerConfig:
    """HTTP/WebSocket server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    log_level: str = "INFO"


@dataclass(frozen=True)
class StorageConfig:
    """Database configuration."""

    db_path: str = "edgeinsights.db"


@dataclass(frozen=True)
class LLMConfig:
    """OpenAI configuration. Without an API key, AI features report errors."""

    api_key: str = ""
    model: str = DEFAULT_COMPLETION_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    timeout: float = DEFAULT_TIMEOUT

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class PipelineConfig:
    """Background rollup, embedding and query limits."""

    rollup_tick_seconds: float = DEFAULT_TICK_SECONDS
    embedding_queue_size: int = DEFAULT_QUEUE_SIZE
    query_max_rows: int = DEFAULT_MAX_ROWS


@dataclass(frozen=True)
class Settings:
    """Top-level configuration container."""

    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ if env is None else env
        settings = cls(
            server=ServerConfig(
                host=_getenv(env, "SERVER_HOST", ServerConfig.host),
                port=_getenv_int(env, "SERVER_PORT", ServerConfig.port),
                allowed_origins=_getenv_list(
                    env, "ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS
                ),
                log_level=_log_level(_getenv(env, "LOG_LEVEL", ServerConfig.log_level)),
            ),
            storage=StorageConfig(
                db_path=_getenv(env, "EDGEINSIGHTS_DB_PATH", StorageConfig.db_path),
            ),
            llm=LLMConfig(
                api_key=env.get("OPENAI_API_KEY", "").strip(),
                model=_getenv(env, "OPENAI_MODEL", LLMConfig.model),
                embedding_model=_getenv(
                    env, "OPENAI_EMBEDDING_MODEL", LLMConfig.embedding_model
                ),
                timeout=_getenv_float(env, "OPENAI_TIMEOUT", LLMConfig.timeout),
            ),
            pipeline=PipelineConfig(
                rollup_tick_seconds=_getenv_float(
                    env, "ROLLUP_TICK_SECONDS", PipelineConfig.rollup_tick_seconds
                ),
                embedding_queue_size=_getenv_int(
                    env, "EMBEDDING_QUEUE_SIZE", PipelineConfig.embedding_queue_size
                ),
                query_max_rows=_getenv_int(
                    env, "QUERY_MAX_ROWS", PipelineConfig.query_max_rows
                ),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Reject values that would break the server or the background tasks."""
        if not 0 < self.server.port < 65536:
            raise ValueError(f"Invalid value for SERVER_PORT: {self.server.port}")
        if self.pipeline.rollup_tick_seconds <= 0:
            raise ValueError(
                "Invalid value for ROLLUP_TICK_SECONDS: "
                f"{self.pipeline.rollup_tick_seconds}"
            )
        if self.pipeline.embedding_queue_size < 0:
            raise ValueError(
                "Invalid value for EMBEDDING_QUEUE_SIZE: "
                f"{self.pipeline.embedding_queue_size}"
            )
        if self.pipeline.query_max_rows < 1:
            raise ValueError(
                f"Invalid value for QUERY_MAX_ROWS: {self.pipeline.query_max_rows}"
            )
