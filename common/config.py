from __future__ import annotations

from pathlib import Path
from typing import Tuple

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseModel):
    store_dir: Path = Path("data/store")
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")


class IngestionConfig(BaseModel):
    max_file_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    allowed_mime_types: Tuple[str, ...] = ("application/pdf",)


class ExtractionConfig(BaseModel):
    min_fragment_length: int = Field(default=2, ge=1)
    pdf_library_fallback: bool = True
    # Per-stream cap on Flate output; longer streams are truncated.
    max_inflated_bytes: int = Field(default=16 * 1024 * 1024, gt=0)


class ChunkingConfig(BaseModel):
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    min_chunk_length: int = Field(default=50, ge=0)
    # Average word length (separator included) used to turn the overlap
    # character budget into a word count.
    chars_per_word: int = Field(default=6, gt=0)

    @model_validator(mode="after")
    def _overlap_below_size(self) -> "ChunkingConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


class GlobalYAMLConfig(BaseModel):
    app: AppConfig = AppConfig()
    ingestion: IngestionConfig = IngestionConfig()
    extraction: ExtractionConfig = ExtractionConfig()
    chunking: ChunkingConfig = ChunkingConfig()


class EnvSettings(BaseSettings):
    """Process-level overrides, read from the environment or `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="PDFINGEST_", env_file=".env", extra="ignore"
    )

    config: Path = Path("config/config.yaml")
    log_level: str | None = None
    store_dir: Path | None = None


def load_yaml_config(path: Path = Path("config/config.yaml")) -> GlobalYAMLConfig:
    if not path.exists():
        return GlobalYAMLConfig()
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return GlobalYAMLConfig(**raw)


def _load() -> GlobalYAMLConfig:
    env = EnvSettings()
    cfg = load_yaml_config(env.config)
    if env.log_level:
        cfg.app.log_level = env.log_level.upper()
    if env.store_dir:
        cfg.app.store_dir = env.store_dir
    return cfg


yaml_config = _load()
