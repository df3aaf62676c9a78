"""
Labor panel harmonization settings.
"""

from pathlib import Path
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directories
    project_root: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent,
        description="Project root directory",
    )
    data_dir: Path = Field(default=Path("data"), description="Data directory")
    output_dir: Path = Field(default=Path("outputs"), description="Output directory")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Panel construction
    min_head_age: int = Field(
        default=15,
        description="Minimum household-head age for diagnostic-flag panels",
    )

    # Monetary conversion
    reference_year: int = Field(
        default=2021, description="Constant-price and PPP reference year"
    )
    merge_mismatch_threshold: float = Field(
        default=0.05,
        description="Share of unmatched rows in a CPI/PPP merge that triggers a loud warning",
    )

    # Transition matrices
    normalization_tolerance: float = Field(
        default=0.01,
        description="Allowed absolute deviation (percentage points) of matrix totals from 100",
    )

    @property
    def raw_data_dir(self) -> Path:
        return self.data_dir / "raw"

    @property
    def processed_data_dir(self) -> Path:
        return self.data_dir / "processed"

    @property
    def panels_dir(self) -> Path:
        return self.processed_data_dir / "panels"

    @property
    def reports_dir(self) -> Path:
        return self.output_dir / "reports"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
