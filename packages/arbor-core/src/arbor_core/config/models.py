import hashlib
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class CacheConfig(BaseModel):
    namespace: str = Field(default="hierarchy", min_length=1)
    algorithm: str = "sha256"
    max_depth: int = Field(default=256, gt=0)
    max_conflict_retries: int = Field(default=2, ge=0)

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        if v not in hashlib.algorithms_available:
            raise ValueError(f"unknown hash algorithm: {v}")
        # Variable-length digests (shake_*) need a length for hexdigest()
        if hashlib.new(v).digest_size == 0:
            raise ValueError(f"hash algorithm has no fixed digest size: {v}")
        return v


class StoreConfig(BaseModel):
    provider: Literal["sqlite", "memory"] = "sqlite"
    db_path: str = ".arbor/nodes.db"


class PluginsConfig(BaseModel):
    store: str | None = None


class ArborConfig(BaseModel):
    cache: CacheConfig = Field(default_factory=CacheConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
