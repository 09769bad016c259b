"""Wizard settings using Pydantic Settings.

Centralized configuration for the filing wizard. Every field can be set
through a ``WIZARD_``-prefixed environment variable or a ``.env`` file, e.g.
``WIZARD_DEFAULT_TAX_YEAR=2026`` or ``WIZARD_AUTOSAVE_DEBOUNCE_SECONDS=0.5``.
"""

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class WizardSettings(BaseSettings):
    """Main wizard settings."""

    model_config = SettingsConfigDict(
        env_prefix="WIZARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", description="Environment name")

    # Schema store
    default_tax_year: int = Field(default=2025, description="Tax year for new filings")
    fallback_tax_year: int = Field(
        default=2025,
        description="Schema year used when a filing's year has no schema"
    )
    schema_dir: Optional[Path] = Field(
        default=None,
        description="Directory of <year>/<type>.yaml schemas; defaults to the packaged schemas"
    )

    # Autosave
    autosave_debounce_seconds: float = Field(
        default=1.0,
        description="Quiet period before accumulated answers are saved"
    )

    # Pricing
    default_currency: str = Field(default="CAD", description="Currency when a schema sets none")
    default_tax_rate: Decimal = Field(default=Decimal("0.13"), description="Sales tax rate")
    legacy_base_fee: Decimal = Field(default=Decimal("149.99"), description="Legacy base fee")
    legacy_spouse_fee: Decimal = Field(default=Decimal("49.99"), description="Legacy spouse fee")
    legacy_dependent_fee: Decimal = Field(
        default=Decimal("29.99"), description="Legacy fee per dependent"
    )

    # Submission
    reference_prefix: str = Field(default="JJ", description="Prefix of filing reference numbers")

    # Persistence
    database_path: str = Field(default="wizard_filings.db", description="SQLite database file")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("autosave_debounce_seconds")
    @classmethod
    def _non_negative_debounce(cls, v: float) -> float:
        if v < 0:
            raise ValueError("autosave_debounce_seconds must be >= 0")
        return v

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")


@lru_cache
def get_settings() -> WizardSettings:
    """
    Get cached wizard settings instance.

    Returns:
        WizardSettings: Cached settings loaded from environment.
    """
    return WizardSettings()
