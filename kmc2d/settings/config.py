"""
Configuration module using Pydantic Settings.

Every section can be overridden from the environment or a ``.env`` file with
nested keys, e.g. ``KMC__TEMPERATURE=450`` or ``LOG__LEVEL=debug``.
"""

import logging
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogConfig(BaseSettings):
    """Logging configuration."""

    level: LogLevel = Field(default="INFO", description="Root logging level")
    file: Path | None = Field(
        default=Path("logs/kmc2d.log"), description="Log file path, None for console only"
    )
    console: bool = Field(default=True, description="Also log to stdout")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        description="Log record format",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: object) -> object:
        """Accept level names in any case."""
        return v.upper() if isinstance(v, str) else v


class KMCConfig(BaseSettings):
    """KMC run parameters."""

    temperature: float = Field(default=300.0, description="Temperature in Kelvin", gt=0)
    simulation_time: float = Field(
        default=1.0, description="Stop once simulation time reaches this (s)", gt=0
    )
    max_steps: int = Field(default=100000, description="Maximum number of KMC steps", gt=0)
    snapshot_interval: int = Field(default=100, description="Steps between recorded snapshots", gt=0)
    seed: int | None = Field(default=None, description="Random seed, None for OS entropy")


class LatticeConfig(BaseSettings):
    """Defaults for building lattices."""

    cell_x: float = Field(default=400.0, description="Cell width (scene units)", gt=0)
    cell_y: float = Field(default=400.0, description="Cell height (scene units)", gt=0)

    # Values given to new transitions
    barrier: float = Field(default=1.0, description="Saddle point energy (eV)")
    forward_prefactor: float = Field(default=10.0, description="start -> end attempt frequency (THz)", ge=0)
    backward_prefactor: float = Field(default=10.0, description="end -> start attempt frequency (THz)", ge=0)


class PathConfig(BaseSettings):
    """Input and output locations."""

    data_dir: Path = Field(default=Path("data"), description="Lattice model files")
    results_dir: Path = Field(default=Path("results"), description="Run outputs")

    def output_file(self, name: str) -> Path:
        """Path of a run output, creating the results directory on first use."""
        self.results_dir.mkdir(parents=True, exist_ok=True)
        return self.results_dir / name


class Settings(BaseSettings):
    """Top-level settings, one attribute per configuration section."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = Field(default="kmc2d", description="Project name, also the app logger name")
    environment: Literal["development", "production", "testing"] = Field(
        default="development", description="Environment"
    )

    log: LogConfig = Field(default_factory=LogConfig)
    kmc: KMCConfig = Field(default_factory=KMCConfig)
    lattice: LatticeConfig = Field(default_factory=LatticeConfig)
    paths: PathConfig = Field(default_factory=PathConfig)

    def setup_logging(self) -> logging.Logger:
        """
        Configure the root logger from the ``log`` section.

        Library modules log through ``logging.getLogger(__name__)`` and only
        reach a handler once this has been called.

        Returns:
            The application logger.
        """
        handlers: list[logging.Handler] = []
        if self.log.console:
            handlers.append(logging.StreamHandler(sys.stdout))
        if self.log.file is not None:
            self.log.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.log.file))

        logging.basicConfig(
            level=self.log.level, format=self.log.format, handlers=handlers, force=True
        )

        logger = logging.getLogger(self.project_name)
        logger.info(f"Logging at {self.log.level} ({self.environment})")
        return logger

    def model_dump_summary(self) -> dict[str, dict]:
        """Settings grouped by section, with paths as strings."""
        summary: dict[str, dict] = {
            "project": {"name": self.project_name, "environment": self.environment}
        }
        for section in ("kmc", "lattice", "paths", "log"):
            summary[section] = getattr(self, section).model_dump(mode="json")
        return summary


# Global settings instance
settings = Settings()
