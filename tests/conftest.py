"""Pytest configuration and fixtures for the filing wizard test suite."""

import os
import sys
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("WIZARD_ENVIRONMENT", "test")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from wizard.models import TaxFilingSchema


# =============================================================================
# SCHEMAS
# =============================================================================

YES_NO = [{"value": "YES", "label": "Yes"}, {"value": "NO", "label": "No"}]


def build_household_schema(pricing=None) -> TaxFilingSchema:
    """Small personal schema exercising every engine feature."""
    raw = {
        "steps": [
            {"id": "filing_setup", "title": "Setup", "order": 0},
            {"id": "about", "title": "About You", "order": 1},
            {"id": "family", "title": "Family", "order": 2, "visibleForRoles": ["primary"]},
            {"id": "work", "title": "Work", "order": 3},
            {
                "id": "business",
                "title": "Business",
                "order": 4,
                "conditional": {
                    "parentQuestionId": "income.sources",
                    "operator": "contains",
                    "value": "SELF_EMPLOYMENT",
                },
            },
            {
                "id": "extras",
                "title": "Extras",
                "order": 5,
                "conditional": {"anyQuestionVisible": True},
            },
            {"id": "review", "title": "Review", "order": 99},
        ],
        "questions": [
            {
                "id": "q_first_name", "name": "personalInfo.firstName", "type": "text",
                "label": "First name", "step": "about", "order": 1,
                "validation": {"required": True},
            },
            {
                "id": "q_email", "name": "personalInfo.email", "type": "email",
                "label": "Email", "step": "about", "order": 2,
            },
            {
                "id": "q_phone", "name": "personalInfo.phone", "type": "phone",
                "label": "Phone", "step": "about", "order": 3,
            },
            {
                "id": "q_age", "name": "personalInfo.age", "type": "number",
                "label": "Age", "step": "about", "order": 4,
                "validation": {"min": 18, "max": 120},
            },
            {
                "id": "q_marital", "name": "maritalStatus.status", "type": "select",
                "label": "Marital status", "step": "family", "order": 1,
                "validation": {"required": True},
                "options": [
                    {"value": "SINGLE"}, {"value": "MARRIED"},
                    {"value": "COMMON_LAW"}, {"value": "DIVORCED"},
                ],
            },
            {
                "id": "q_spouse_name", "name": "spouse.name", "type": "text",
                "label": "Spouse name", "step": "family", "order": 2,
                "conditional": {
                    "parentQuestionId": "maritalStatus.status",
                    "operator": "in",
                    "values": ["MARRIED", "COMMON_LAW"],
                },
                "validation": {"required": True},
            },
            {
                "id": "q_change_date", "name": "maritalStatus.changeDate", "type": "date",
                "label": "Date of change", "step": "family", "order": 3,
                "validation": {
                    "conditionalRequired": {
                        "when": {
                            "parentQuestionId": "maritalStatus.status",
                            "operator": "equals",
                            "value": "DIVORCED",
                        }
                    }
                },
            },
            {
                "id": "q_dependants", "name": "dependants.list", "type": "repeater",
                "label": "Dependant", "step": "family", "order": 4,
                "fields": [
                    {"name": "fullName", "label": "Full name", "validation": {"required": True}},
                    {"name": "earnsIncome", "label": "Earns income", "type": "radio", "options": YES_NO},
                    {
                        "name": "income", "label": "Income", "type": "number",
                        "conditional": {"field": "earnsIncome", "operator": "equals", "value": "YES"},
                        "validation": {"required": True, "pattern": "^\\d+$"},
                    },
                ],
            },
            {
                "id": "q_sources", "name": "income.sources", "type": "checkbox",
                "label": "Income sources", "step": "work", "order": 1,
                "validation": {"required": True},
                "options": [
                    {"value": "EMPLOYMENT"}, {"value": "SELF_EMPLOYMENT"},
                    {"value": "INVESTMENT"}, {"value": "NONE"},
                ],
            },
            {
                "id": "q_t4", "name": "income.t4Slips", "type": "file",
                "label": "T4 slips", "step": "work", "order": 2,
                "conditional": {
                    "parentQuestionId": "income.sources",
                    "operator": "contains",
                    "value": "EMPLOYMENT",
                },
            },
            {
                "id": "q_has_assets", "name": "selfEmployment.hasCapitalAssets", "type": "radio",
                "label": "Capital assets", "step": "business", "order": 1,
                "options": YES_NO,
            },
            {
                "id": "q_asset_receipts", "name": "selfEmployment.assetReceipts", "type": "file",
                "label": "Asset receipts", "step": "business", "order": 2,
                "conditional": {
                    "parentQuestionId": "selfEmployment.hasCapitalAssets",
                    "operator": "equals",
                    "value": "YES",
                },
            },
            {
                "id": "q_business_name", "name": "selfEmployment.businessName", "type": "text",
                "label": "Business name", "step": "business", "order": 3,
            },
            {
                "id": "q_expense_docs", "name": "selfEmployment.expenseDocuments", "type": "file",
                "label": "Expense documents", "step": "business", "order": 4,
            },
            {
                "id": "q_donations", "name": "extras.donations", "type": "number",
                "label": "Donations", "step": "extras", "order": 1,
                "conditional": {
                    "parentQuestionId": "income.sources",
                    "operator": "contains",
                    "value": "INVESTMENT",
                },
            },
        ],
    }
    if pricing is not None:
        raw["pricing"] = pricing
    return TaxFilingSchema.model_validate(raw)


SELF_EMPLOYMENT_PRICING = {
    "baseFee": 149.99,
    "taxRate": 0.13,
    "rules": [
        {
            "condition": {
                "parentQuestionId": "income.sources",
                "operator": "contains",
                "value": "SELF_EMPLOYMENT",
            },
            "amount": 75,
            "description": "Self-Employment Add-on",
        }
    ],
}


@pytest.fixture
def household_schema():
    """Household schema without pricing."""
    return build_household_schema()


@pytest.fixture
def priced_schema():
    """Household schema with the self-employment pricing rule."""
    return build_household_schema(pricing=SELF_EMPLOYMENT_PRICING)


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

@pytest.fixture
def fast_settings():
    """Settings with a short autosave debounce and no .env file."""
    from config.settings import WizardSettings
    return WizardSettings(_env_file=None, autosave_debounce_seconds=0.05)


@pytest.fixture
def schema_loader():
    """Loader over the packaged YAML schemas."""
    from config.schema_loader import TaxSchemaLoader
    return TaxSchemaLoader(fallback_year=2025)


@pytest.fixture
def memory_store():
    """Fresh in-memory filing store."""
    from database.filing_persistence import InMemoryFilingStore
    return InMemoryFilingStore()
