"""
Pricing Engine

Prices a filing from the pricing rules of its schema. Every personal filing
is priced on its own answers: the base fee plus each rule whose condition
holds for that person's form data. Per-person subtotals are summed, sales tax
is applied to the sum, and every line item is labelled with the person it
belongs to.

When the schema has no pricing section the legacy flat-fee calculation is
used instead (base fee, one spouse fee, one fee per dependent).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
import logging

from wizard._decimal_utils import Numeric, money, percent_of, to_decimal
from wizard.conditional_evaluator import is_satisfied
from wizard.models import Filing, FilingRole, PersonalFiling, PricingRule, TaxFilingSchema

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "CAD"
DEFAULT_TAX_RATE = Decimal("0.13")

_CURRENCY_SYMBOLS = {
    "CAD": "$",
    "USD": "US$",
    "EUR": "€",
    "GBP": "£",
}


@dataclass(frozen=True)
class PricingConfig:
    """Flat fees used by the legacy whole-filing calculation."""
    base_fee: Decimal = Decimal("149.99")
    spouse_fee: Decimal = Decimal("49.99")
    dependent_fee: Decimal = Decimal("29.99")
    currency: str = DEFAULT_CURRENCY
    tax_rate: Decimal = DEFAULT_TAX_RATE


DEFAULT_PRICING = PricingConfig()


@dataclass
class PricingItem:
    label: str
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "amount": float(self.amount)}


@dataclass
class PricingBreakdown:
    """Itemised price of a filing."""
    base_fee: Decimal
    items: List[PricingItem] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseFee": float(self.base_fee),
            "items": [item.to_dict() for item in self.items],
            "subtotal": float(self.subtotal),
            "tax": float(self.tax),
            "total": float(self.total),
            "currency": self.currency,
        }


def _finalize(base_fee: Decimal, items: List[PricingItem], subtotal: Decimal,
              tax_rate: Decimal, currency: str) -> PricingBreakdown:
    subtotal = money(subtotal)
    tax = percent_of(subtotal, tax_rate)
    return PricingBreakdown(
        base_fee=base_fee,
        items=items,
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        currency=currency,
    )


def calculate_legacy(filing: Filing, config: PricingConfig = DEFAULT_PRICING) -> PricingBreakdown:
    """
    Flat-fee pricing used when no schema pricing is configured.

    The spouse and dependents are charged fixed fees regardless of their
    answers; the base fee is carried in ``base_fee`` rather than as an item.
    """
    has_spouse = filing.spouse is not None
    dependent_count = len(filing.dependents)

    items: List[PricingItem] = []
    subtotal = config.base_fee

    if has_spouse:
        subtotal += config.spouse_fee
        items.append(PricingItem("Spouse Return", config.spouse_fee))

    if dependent_count > 0:
        dependents_total = config.dependent_fee * dependent_count
        subtotal += dependents_total
        items.append(
            PricingItem(f"Dependents ({dependent_count} x ${config.dependent_fee})", dependents_total)
        )

    return _finalize(
        config.base_fee, items, subtotal, config.tax_rate, config.currency or DEFAULT_CURRENCY
    )


def person_label(personal_filing: PersonalFiling, dependent_index: int = 0) -> str:
    """Display name of a filer, falling back to their role."""
    data = personal_filing.form_data or {}
    first = data.get("personalInfo.firstName") or personal_filing.first_name or ""
    last = data.get("personalInfo.lastName") or personal_filing.last_name or ""
    if first and last:
        return f"{first} {last}"

    if personal_filing.type == FilingRole.PRIMARY:
        return "Primary Filer"
    if personal_filing.type == FilingRole.SPOUSE:
        return "Spouse"
    return f"Dependent {dependent_index + 1}"


def _price_person(
    label: str,
    form_data: Mapping[str, Any],
    base_fee: Decimal,
    rules: List[PricingRule],
) -> List[PricingItem]:
    items = [PricingItem(f"{label} - Base Fee", base_fee)]
    for rule in rules:
        # Missing fields and unknown operators never add a charge
        if rule.condition is not None and not is_satisfied(
            rule.condition, form_data, unknown_operator_result=False
        ):
            continue
        items.append(PricingItem(f"{label} - {rule.description}", rule.amount))
    return items


def calculate_from_schema(
    filing: Filing,
    schema: Optional[TaxFilingSchema],
    legacy_config: PricingConfig = DEFAULT_PRICING,
) -> PricingBreakdown:
    """
    Price a filing from its schema's pricing rules.

    Args:
        filing: Filing with every personal filing and its form data.
        schema: Schema of the filing's year and type.
        legacy_config: Flat fees used when the schema has no pricing section.

    Returns:
        PricingBreakdown with one base-fee item per person, one item per
        matching rule per person, and tax rounded half-up to cents.
    """
    pricing = schema.pricing if schema is not None else None
    if pricing is None:
        logger.info(f"No schema pricing for filing {filing.id}; using legacy flat fees")
        return calculate_legacy(filing, legacy_config)

    base_fee = pricing.base_fee or Decimal("0")
    items: List[PricingItem] = []
    dependent_index = 0

    for pf in filing.personal_filings:
        label = person_label(pf, dependent_index)
        if pf.type == FilingRole.DEPENDENT:
            dependent_index += 1
        items.extend(_price_person(label, pf.form_data or {}, base_fee, pricing.rules))

    if not filing.personal_filings:
        items.append(PricingItem("Primary Filer - Base Fee", base_fee))

    subtotal = sum((item.amount for item in items), Decimal("0"))
    tax_rate = pricing.tax_rate if pricing.tax_rate is not None else DEFAULT_TAX_RATE

    return _finalize(base_fee, items, subtotal, tax_rate, pricing.currency or DEFAULT_CURRENCY)


def format_price(amount: Numeric, currency: str = DEFAULT_CURRENCY) -> str:
    """Format an amount for display, e.g. ``$1,234.50``."""
    value = money(to_decimal(amount))
    sign = "-" if value < 0 else ""
    symbol = _CURRENCY_SYMBOLS.get(currency)
    if symbol is None:
        return f"{sign}{currency} {abs(value):,.2f}"
    return f"{sign}{symbol}{abs(value):,.2f}"


def format_filing_ref(filing_id: Optional[str], prefix: str = "JJ") -> str:
    """Short display reference built from the last six characters of an id."""
    if not filing_id:
        return f"{prefix}-PENDING"
    return f"{prefix}-{filing_id[-6:].upper()}"
