"""
Configuration management for the agent resource catalog.

Loads environment variables (and a local .env file) once and exposes them as
a typed Settings object. Components never read settings per call; they are
built from these values through their ``from_settings`` factories.
"""

import json
from functools import lru_cache
from typing import Annotated, Any, List, Optional

from loguru import logger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_INLINE_META_FIELDS = ["name", "tags", "type"]


def _mask_key(value: Optional[str]) -> str:
    """Return a masked representation of an API key for safe debug logging."""
    if not value:
        return "<missing>"
    if len(value) <= 8:
        return value[0:1] + "*" * (len(value) - 1)
    return value[0:4] + "*" * (len(value) - 8) + value[-4:]


def _int_or_default(value: Any, default: int, minimum: int = 0) -> int:
    """Coerce to int; anything unparsable or below ``minimum`` yields ``default``."""
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer setting {!r}, using default {}", value, default)
        return default
    if parsed < minimum:
        logger.warning("Setting {} below minimum {}, using default {}", parsed, minimum, default)
        return default
    return parsed


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("1", "true", "yes", "on"):
            return True
        if s in ("0", "false", "no", "off"):
            return False
        return default
    return bool(value)


class TargetSettings(BaseModel):
    """One routed chat model target as declared in ROUTER_TARGETS."""

    id: str
    model: str
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    tools: bool = True
    stream: bool = True
    weight: int = 1

    @field_validator("tools", "stream", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return _to_bool(v, True)

    @field_validator("weight", mode="before")
    @classmethod
    def _coerce_weight(cls, v: Any) -> int:
        return max(1, _int_or_default(v, 1, minimum=1))


class Settings(BaseSettings):
    """
    Loads and validates application settings from the environment / .env file.
    """

    # ========================================================================
    # Logging
    # ========================================================================
    LOG_LEVEL: str = "INFO"
    ENV: str = "production"

    # ========================================================================
    # Chat routing
    # ========================================================================
    ROUTER_ID: str = "router"
    ROUTER_STRATEGY: str = "failover"
    ROUTER_STICKY: bool = True
    ROUTER_STICKY_MODE: str = "global"
    ROUTER_MAX_FAILURES: int = 3
    ROUTER_COOLDOWN_SECONDS: int = 120
    ROUTER_TARGETS: List[TargetSettings] = Field(default_factory=list)

    # ========================================================================
    # Chunking
    # ========================================================================
    CHUNK_MAX_LENGTH: int = 800
    CHUNK_MIN_LENGTH: int = 200
    CHUNK_OVERLAP: int = 50
    CHUNK_INLINE_META_FIELDS: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_INLINE_META_FIELDS)
    )

    # ========================================================================
    # Retrieval
    # ========================================================================
    RETRIEVAL_COLLECTION_KEY: str = "default"
    RETRIEVAL_LIMIT: int = 3
    RETRIEVAL_MIN_SCORE: Optional[float] = 0.75

    # ========================================================================
    # Embedding
    # ========================================================================
    EMBEDDING_MODEL: Optional[str] = None
    EMBEDDING_API_KEY: Optional[str] = None
    EMBEDDING_DIMENSION: int = 1536

    # ========================================================================
    # Qdrant
    # ========================================================================
    QDRANT_URL: Optional[str] = None
    QDRANT_API_KEY: Optional[str] = None

    TIMEOUT: int = 30  # transport timeout in seconds

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("ROUTER_STRATEGY", mode="before")
    @classmethod
    def _normalize_strategy(cls, v: Any) -> str:
        s = str(v or "failover").strip().lower()
        return s if s in ("failover", "roundrobin") else "failover"

    @field_validator("ROUTER_STICKY_MODE", mode="before")
    @classmethod
    def _normalize_sticky_mode(cls, v: Any) -> str:
        s = str(v or "global").strip().lower()
        return "per_op" if s == "per_op" else "global"

    @field_validator("ROUTER_STICKY", mode="before")
    @classmethod
    def _coerce_sticky(cls, v: Any) -> bool:
        return _to_bool(v, True)

    @field_validator("ROUTER_MAX_FAILURES", mode="before")
    @classmethod
    def _coerce_max_failures(cls, v: Any) -> int:
        return _int_or_default(v, 3, minimum=1)

    @field_validator("ROUTER_COOLDOWN_SECONDS", mode="before")
    @classmethod
    def _coerce_cooldown(cls, v: Any) -> int:
        return _int_or_default(v, 120)

    @field_validator("CHUNK_MAX_LENGTH", mode="before")
    @classmethod
    def _coerce_max_length(cls, v: Any) -> int:
        return _int_or_default(v, 800, minimum=1)

    @field_validator("CHUNK_MIN_LENGTH", mode="before")
    @classmethod
    def _coerce_min_length(cls, v: Any) -> int:
        return _int_or_default(v, 200)

    @field_validator("CHUNK_OVERLAP", mode="before")
    @classmethod
    def _coerce_overlap(cls, v: Any) -> int:
        return _int_or_default(v, 50)

    @field_validator("CHUNK_INLINE_META_FIELDS", mode="before")
    @classmethod
    def _split_inline_fields(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            raw = v.strip()
            if raw.startswith("["):
                try:
                    v = json.loads(raw)
                except json.JSONDecodeError:
                    v = raw.strip("[]").split(",")
            else:
                v = raw.split(",")
        if isinstance(v, (list, tuple)):
            items = [str(item).strip().strip("\"'") for item in v]
            items = [item for item in items if item]
            if items:
                return items
        return list(DEFAULT_INLINE_META_FIELDS)

    def validate_keys(self) -> None:
        """Log a warning for each credential the configured backends will need."""
        if self.QDRANT_URL and not self.QDRANT_API_KEY:
            logger.warning("QDRANT_API_KEY is not set; requests to {} are unauthenticated", self.QDRANT_URL)
        if self.EMBEDDING_MODEL and not self.EMBEDDING_API_KEY:
            logger.warning("EMBEDDING_API_KEY is not set for model {}", self.EMBEDDING_MODEL)
        if not self.ROUTER_TARGETS:
            logger.warning("ROUTER_TARGETS is empty; chat routing is unavailable")
        for target in self.ROUTER_TARGETS:
            if not target.api_key:
                logger.warning("api_key is not set for router target {}", target.id)

        logger.debug("  QDRANT_API_KEY: {}", _mask_key(self.QDRANT_API_KEY))
        logger.debug("  EMBEDDING_API_KEY: {}", _mask_key(self.EMBEDDING_API_KEY))
        for target in self.ROUTER_TARGETS:
            logger.debug("  {} api_key: {}", target.id, _mask_key(target.api_key))


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide Settings instance."""
    return Settings()
