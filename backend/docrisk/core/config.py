"""Application configuration using Pydantic Settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "DocRisk"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Database paths
    data_dir: Path = Field(default_factory=lambda: Path("./data"))
    duckdb_path: Path = Field(default_factory=lambda: Path("./data/docrisk.duckdb"))
    sqlite_path: Path = Field(default_factory=lambda: Path("./data/docrisk_rules.db"))

    # Performance
    max_workers: int = Field(default=4, ge=1)
    score_page_size: int = Field(default=1000, ge=1)
    upsert_max_retries: int = Field(default=3, ge=1)

    # Rule catalog cache
    rule_cache_ttl_seconds: int = 300
    rule_cache_max_size: int = 256

    # Historical windows
    company_window_days: int = Field(default=90, gt=0)
    history_lookback_days: int = Field(default=365, gt=0)
    history_sample_limit: int = Field(default=10000, gt=0)
    duplicate_invoice_window_days: int = Field(default=30, ge=0)

    # Fraud pattern detection
    benford_min_samples: int = Field(default=20, ge=1)
    round_number_min_amount: float = 100.0
    round_number_suspicious_ratio: float = Field(default=0.3, ge=0, le=1)
    timing_min_samples: int = Field(default=10, ge=1)

    # Counterparty analysis
    counterparty_amount_multiplier: float = Field(default=3.0, gt=0)
    counterparty_dormant_days: int = Field(default=90, gt=0)

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Field(default_factory=lambda: Path("./logs"))


settings = Settings()
