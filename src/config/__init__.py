"""Configuration module for the filing wizard."""

from .settings import WizardSettings, get_settings
from .schema_loader import (
    SchemaConfigurationError,
    TaxSchemaLoader,
    clear_schema_cache,
    get_schema,
    get_schema_loader,
)

__all__ = [
    "WizardSettings",
    "get_settings",
    "SchemaConfigurationError",
    "TaxSchemaLoader",
    "clear_schema_cache",
    "get_schema",
    "get_schema_loader",
]
