"""
Tests for the YAML schema store and wizard settings.

Verifies:
- Packaged schemas load for every filing type
- Missing years fall back to the fallback year
- Missing types and malformed files raise SchemaConfigurationError
- Settings come from WIZARD_ environment variables
"""

import os
import sys
from decimal import Decimal

import pytest
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config.schema_loader import (
    SchemaConfigurationError,
    TaxSchemaLoader,
    clear_schema_cache,
    get_schema,
    get_schema_loader,
)
from config.settings import WizardSettings, get_settings
from wizard.models import ConditionOperator, FilingType, QuestionType


def write_schema(root, year, filename, raw):
    path = root / str(year) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    return path


MINIMAL = {
    "steps": [{"id": "basics", "title": "Basics", "order": 1}],
    "questions": [{"id": "q1", "name": "basics.name", "step": "basics"}],
}


# =============================================================================
# PACKAGED SCHEMAS
# =============================================================================

class TestPackagedSchemas:

    @pytest.mark.parametrize("filing_type,base_fee", [
        (FilingType.INDIVIDUAL, Decimal("149.99")),
        (FilingType.CORPORATE, Decimal("499.99")),
        (FilingType.TRUST, Decimal("399.99")),
    ])
    def test_every_type_loads(self, schema_loader, filing_type, base_fee):
        schema = schema_loader.get_schema(2025, filing_type)
        assert schema.steps
        assert schema.questions
        assert schema.pricing.base_fee == base_fee

    def test_question_names_are_unique(self, schema_loader):
        for filing_type in FilingType:
            schema = schema_loader.get_schema(2025, filing_type)
            names = [q.name for q in schema.questions]
            assert len(names) == len(set(names)), filing_type

    def test_questions_reference_existing_steps(self, schema_loader):
        for filing_type in FilingType:
            schema = schema_loader.get_schema(2025, filing_type)
            step_ids = {s.id for s in schema.steps}
            assert all(q.step in step_ids for q in schema.questions), filing_type

    def test_camel_case_keys_are_parsed(self, schema_loader):
        schema = schema_loader.get_schema(2025, "INDIVIDUAL")
        by_name = schema.questions_by_name()

        receipts = by_name["selfEmployment.assetReceipts"]
        assert receipts.type == QuestionType.FILE
        assert receipts.conditional.parent_question_id == "selfEmployment.assetTypes"
        assert receipts.conditional.operator == ConditionOperator.HAS_ANY

        change_date = by_name["maritalStatus.changeDate"]
        assert change_date.validation.conditional_required is not None

        dependants = by_name["dependants.list"]
        assert dependants.type == QuestionType.REPEATER
        assert [f.name for f in dependants.fields][:2] == ["fullName", "relationship"]

    def test_yes_no_options_stay_strings(self, schema_loader):
        schema = schema_loader.get_schema(2025, "INDIVIDUAL")
        assert schema.questions_by_name()["selfEmployment.hasCapitalAssets"].is_yes_no

    def test_schema_is_cached(self, schema_loader):
        first = schema_loader.get_schema(2025, FilingType.TRUST)
        assert schema_loader.get_schema(2025, "TRUST") is first

    def test_available_years(self, schema_loader):
        assert 2025 in schema_loader.available_years()


# =============================================================================
# FALLBACK AND ERRORS
# =============================================================================

class TestFallback:

    def test_missing_year_falls_back(self, schema_loader, caplog):
        with caplog.at_level("WARNING"):
            schema = schema_loader.get_schema(2031, FilingType.INDIVIDUAL)
        assert schema is schema_loader.get_schema(2025, FilingType.INDIVIDUAL)
        assert "falling back to 2025" in caplog.text
        assert schema_loader.has_schema(2031, FilingType.INDIVIDUAL) is False

    def test_year_specific_schema_wins(self, tmp_path):
        write_schema(tmp_path, 2025, "personal.yaml", MINIMAL)
        newer = {**MINIMAL, "steps": [{"id": "basics", "title": "Basics 2026", "order": 1}]}
        write_schema(tmp_path, 2026, "personal.yaml", newer)

        loader = TaxSchemaLoader(schema_dir=tmp_path, fallback_year=2025)
        assert loader.get_schema(2026).steps[0].title == "Basics 2026"
        assert loader.get_schema(2024).steps[0].title == "Basics"
        assert loader.available_years() == [2025, 2026]

    def test_missing_type_in_both_years_raises(self, tmp_path):
        write_schema(tmp_path, 2025, "personal.yaml", MINIMAL)
        loader = TaxSchemaLoader(schema_dir=tmp_path, fallback_year=2025)

        with pytest.raises(SchemaConfigurationError, match="No CORPORATE schema"):
            loader.get_schema(2026, FilingType.CORPORATE)

    def test_unknown_filing_type_raises(self, schema_loader):
        with pytest.raises(SchemaConfigurationError, match="Unknown filing type"):
            schema_loader.get_schema(2025, "PARTNERSHIP")

    def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "2025" / "trust.yaml"
        path.parent.mkdir(parents=True)
        path.write_text("steps: [unclosed", encoding="utf-8")

        loader = TaxSchemaLoader(schema_dir=tmp_path)
        with pytest.raises(SchemaConfigurationError, match="Invalid YAML"):
            loader.get_schema(2025, FilingType.TRUST)

    def test_invalid_schema_raises(self, tmp_path):
        write_schema(tmp_path, 2025, "trust.yaml", {"questions": [{"label": "no id or name"}]})
        loader = TaxSchemaLoader(schema_dir=tmp_path)
        with pytest.raises(SchemaConfigurationError, match="Invalid filing schema"):
            loader.get_schema(2025, FilingType.TRUST)


# =============================================================================
# GLOBAL LOADER AND SETTINGS
# =============================================================================

class TestGlobalLoader:

    def test_global_loader_is_a_singleton(self):
        assert get_schema_loader() is get_schema_loader()

    def test_clear_schema_cache(self):
        first = get_schema_loader()
        clear_schema_cache()
        assert get_schema_loader() is not first

    def test_global_loader_uses_settings(self, tmp_path, monkeypatch):
        write_schema(tmp_path, 2024, "corporate.yaml", MINIMAL)
        monkeypatch.setenv("WIZARD_SCHEMA_DIR", str(tmp_path))
        monkeypatch.setenv("WIZARD_FALLBACK_TAX_YEAR", "2024")
        get_settings.cache_clear()
        clear_schema_cache()

        assert get_schema(2030, "CORPORATE").questions[0].name == "basics.name"


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in list(os.environ):
            if name.startswith("WIZARD_"):
                monkeypatch.delenv(name)
        settings = WizardSettings(_env_file=None)
        assert settings.default_tax_year == 2025
        assert settings.autosave_debounce_seconds == 1.0
        assert settings.default_tax_rate == Decimal("0.13")
        assert settings.reference_prefix == "JJ"
        assert settings.is_production is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("WIZARD_AUTOSAVE_DEBOUNCE_SECONDS", "0.25")
        monkeypatch.setenv("WIZARD_LOG_LEVEL", "debug")
        monkeypatch.setenv("WIZARD_ENVIRONMENT", "production")
        settings = WizardSettings(_env_file=None)
        assert settings.autosave_debounce_seconds == 0.25
        assert settings.log_level == "DEBUG"
        assert settings.is_production is True

    def test_negative_debounce_rejected(self):
        with pytest.raises(ValueError):
            WizardSettings(_env_file=None, autosave_debounce_seconds=-1)

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
