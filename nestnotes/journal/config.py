"""Configuration management for the NestNotes journal client."""

from pathlib import Path
from typing import Optional, Dict, List, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


class ApiConfig(BaseModel):
    base_url: str = "http://localhost:5000"
    timeout_seconds: float = 30.0
    upload_timeout_seconds: float = 300.0
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class UploadConfig(BaseModel):
    max_files: int = 1
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    accepted_types: List[str] = Field(default_factory=lambda: ["image/*"])
    max_concurrent: int = 1
    chunk_size: int = 64 * 1024

    @field_validator('max_files', 'max_file_size', 'max_concurrent', 'chunk_size')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class SearchConfig(BaseModel):
    debounce_ms: int = 300
    filter_debounce_ms: int = 500
    limit: int = 20
    mode: Literal["hybrid", "vector", "conversational"] = "hybrid"
    history_size: int = 8

    @field_validator('limit')
    @classmethod
    def validate_limit(cls, v: int) -> int:
        if not 1 <= v <= 50:
            raise ValueError("limit must be between 1 and 50")
        return v

    @field_validator('debounce_ms', 'filter_debounce_ms', 'history_size')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v


class CameraConfig(BaseModel):
    facing_mode: Literal["environment", "user"] = "environment"
    width: int = 1920
    height: int = 1080
    jpeg_quality: int = 80

    @field_validator('jpeg_quality')
    @classmethod
    def validate_quality(cls, v: int) -> int:
        if not 1 <= v <= 95:
            raise ValueError("jpeg_quality must be between 1 and 95")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None
    rotation: str = "1 day"
    retention: str = "7 days"


class Config(BaseModel):
    """Main configuration for the journal client."""

    data_dir: Path = Path("~/.local/share/nestnotes")
    api: ApiConfig = Field(default_factory=ApiConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('data_dir')
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser()

    @staticmethod
    def default_locations() -> List[Path]:
        return [
            Path("nestnotes.yaml"),
            Path.home() / ".config" / "nestnotes" / "config.yaml",
            Path("/etc/nestnotes/config.yaml"),
        ]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            candidates = cls.default_locations()
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    f"No config file found. Searched: {[str(c) for c in candidates]}"
                )

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load_or_default(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration, falling back to defaults when no file exists."""
        try:
            return cls.load(config_path)
        except FileNotFoundError as e:
            logger.debug(f"Using default configuration: {e}")
            return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
