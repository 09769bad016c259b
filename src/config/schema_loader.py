"""
Tax Filing Schema Loader.

Loads the declarative wizard schemas from YAML files laid out as::

    tax_schemas/<year>/personal.yaml    INDIVIDUAL filings
    tax_schemas/<year>/corporate.yaml   CORPORATE filings
    tax_schemas/<year>/trust.yaml       TRUST filings

A year without a schema falls back to the configured fallback year for the
same filing type. A filing type with no schema in either year is a
configuration error and is raised to the caller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from wizard.models import FilingType, TaxFilingSchema

logger = logging.getLogger(__name__)

# Default schema directory
SCHEMA_DIR = Path(__file__).parent / "tax_schemas"

SCHEMA_FILES: Dict[FilingType, str] = {
    FilingType.INDIVIDUAL: "personal.yaml",
    FilingType.CORPORATE: "corporate.yaml",
    FilingType.TRUST: "trust.yaml",
}


class SchemaConfigurationError(Exception):
    """Raised when no usable schema exists for a year and filing type."""
    pass


class TaxSchemaLoader:
    """
    Loads and caches TaxFilingSchema objects by year and filing type.

    Schemas are immutable once loaded, so one parsed instance per
    (year, type) is shared by every wizard session.
    """

    def __init__(self, schema_dir: Optional[Path] = None, fallback_year: int = 2025):
        """
        Initialize the schema loader.

        Args:
            schema_dir: Directory containing one sub-directory per tax year.
                       Defaults to src/config/tax_schemas/
            fallback_year: Year whose schema is used when a year has none.
        """
        self.schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.fallback_year = fallback_year
        self._schemas: Dict[Tuple[int, FilingType], TaxFilingSchema] = {}

    def _schema_path(self, year: int, filing_type: FilingType) -> Path:
        return self.schema_dir / str(year) / SCHEMA_FILES[filing_type]

    def _load_file(self, path: Path) -> TaxFilingSchema:
        """Parse and validate one schema file."""
        logger.info(f"Loading filing schema from {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SchemaConfigurationError(f"Invalid YAML in {path}: {e}") from e

        try:
            return TaxFilingSchema.model_validate(raw)
        except ValidationError as e:
            raise SchemaConfigurationError(f"Invalid filing schema {path}: {e}") from e

    def _load(self, year: int, filing_type: FilingType) -> Optional[TaxFilingSchema]:
        key = (year, filing_type)
        if key in self._schemas:
            return self._schemas[key]

        path = self._schema_path(year, filing_type)
        if not path.exists():
            return None

        schema = self._load_file(path)
        self._schemas[key] = schema
        return schema

    def get_schema(self, year: int, filing_type: Union[FilingType, str] = FilingType.INDIVIDUAL) -> TaxFilingSchema:
        """
        Get the schema for a tax year and filing type.

        Args:
            year: Tax year of the filing (e.g., 2025)
            filing_type: INDIVIDUAL, CORPORATE or TRUST

        Returns:
            The year's schema, or the fallback year's schema for the same type

        Raises:
            SchemaConfigurationError: If neither year has a schema for the type
        """
        try:
            filing_type = FilingType(filing_type)
        except ValueError as e:
            raise SchemaConfigurationError(f"Unknown filing type: {filing_type!r}") from e

        schema = self._load(year, filing_type)
        if schema is not None:
            return schema

        if year != self.fallback_year:
            logger.warning(
                f"No {filing_type.value} schema for tax year {year}, "
                f"falling back to {self.fallback_year}"
            )
            schema = self._load(self.fallback_year, filing_type)
            if schema is not None:
                self._schemas[(year, filing_type)] = schema
                return schema

        raise SchemaConfigurationError(
            f"No {filing_type.value} schema configured for tax year {year} "
            f"or fallback year {self.fallback_year}"
        )

    def available_years(self) -> List[int]:
        """Tax years that have a schema directory."""
        if not self.schema_dir.exists():
            return []
        return sorted(
            int(p.name) for p in self.schema_dir.iterdir()
            if p.is_dir() and p.name.isdigit()
        )

    def has_schema(self, year: int, filing_type: Union[FilingType, str]) -> bool:
        """Whether the year itself (ignoring fallback) has a schema for the type."""
        return self._schema_path(year, FilingType(filing_type)).exists()


# Global singleton
_schema_loader: Optional[TaxSchemaLoader] = None


def get_schema_loader() -> TaxSchemaLoader:
    """Get the global schema loader instance."""
    global _schema_loader
    if _schema_loader is None:
        from config.settings import get_settings

        settings = get_settings()
        _schema_loader = TaxSchemaLoader(
            schema_dir=settings.schema_dir,
            fallback_year=settings.fallback_tax_year,
        )
    return _schema_loader


def get_schema(year: int, filing_type: Union[FilingType, str] = FilingType.INDIVIDUAL) -> TaxFilingSchema:
    """
    Convenience function to get a filing schema.

    Example:
        >>> get_schema(2025, "INDIVIDUAL").pricing.base_fee
        Decimal('149.99')
    """
    return get_schema_loader().get_schema(year, filing_type)


def clear_schema_cache() -> None:
    """Clear the schema cache (useful for testing)."""
    global _schema_loader
    _schema_loader = None
