from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from takeoff.exceptions import ConfigurationError
from takeoff.geometry import contract

# Load .env file from project root
_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "default.yaml"


class StyleSettings(BaseModel):
    stroke_color: str = "#ef4444"
    fill_color: str = "transparent"
    stroke_width: float = Field(2.0, gt=0.0)
    opacity: float = Field(100.0, ge=0.0, le=100.0)
    font_size: float = Field(12.0, gt=0.0)
    font_family: str = "Arial"

    @field_validator("stroke_color", "fill_color")
    @classmethod
    def _normalize_color(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("colors must be non-empty")
        return value


class EngineSettings(BaseModel):
    base_render_scale: float = Field(contract.BASE_RENDER_SCALE, gt=0.0)
    snap_radius: float = Field(contract.SNAP_RADIUS, gt=0.0)
    grid_size: float = Field(contract.GRID_SIZE, gt=0.0)
    max_history: int = Field(contract.MAX_HISTORY, ge=1, le=10_000)
    default_scale_unit: str = "ft"
    author: str = "Current User"


class VectorSettings(BaseModel):
    min_line_length: float = Field(contract.MIN_LINE_LENGTH, ge=0.0)
    max_lines_per_page: int = Field(contract.MAX_LINES_PER_PAGE, ge=1)
    curve_samples: int = Field(contract.CURVE_SAMPLE_POINTS, ge=1, le=64)
    max_intersections: int = Field(contract.MAX_INTERSECTIONS, ge=0)
    max_intersection_lines: int = Field(contract.MAX_INTERSECTION_LINES, ge=0)


class ExportSettings(BaseModel):
    label_offset: float = Field(contract.LABEL_OFFSET)
    print_scale: float = Field(contract.BASE_RENDER_SCALE, gt=0.0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = False
    file: str | None = None

    @field_validator("level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = (value or "INFO").upper()
        if value not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return value


class Settings(BaseModel):
    engine: EngineSettings = Field(default_factory=EngineSettings)
    vector: VectorSettings = Field(default_factory=VectorSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    style: StyleSettings = Field(default_factory=StyleSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from a YAML configuration file.

        Args:
            path: Optional path to the configuration file. If not provided, uses
                the TAKEOFF_CONFIG environment variable or config/default.yaml.
                A missing default file yields built-in defaults.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            ConfigurationError: If an explicit file is missing or the content is invalid.
        """
        explicit = path or (Path(os.environ["TAKEOFF_CONFIG"]) if os.getenv("TAKEOFF_CONFIG") else None)
        config_path = explicit or DEFAULT_CONFIG_PATH
        if not config_path.exists():
            if explicit is not None:
                raise ConfigurationError(
                    f"Configuration file not found: {config_path}",
                    {"path": str(config_path)},
                )
            return cls()
        with config_path.open("r", encoding="utf-8") as fp:
            try:
                payload: Any = yaml.safe_load(fp) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Configuration is not valid YAML: {exc}", {"path": str(config_path)}) from exc
        if not isinstance(payload, dict):
            raise ConfigurationError("Configuration root must be a mapping", {"path": str(config_path)})
        try:
            return cls(**payload)
        except Exception as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}", {"path": str(config_path)}) from exc


@lru_cache(maxsize=1)
def get_settings(path: str | None = None) -> Settings:
    return Settings.load(Path(path) if path else None)


__all__ = [
    "Settings",
    "EngineSettings",
    "VectorSettings",
    "ExportSettings",
    "StyleSettings",
    "LoggingSettings",
    "get_settings",
]
