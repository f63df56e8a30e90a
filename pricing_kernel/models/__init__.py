"""ORM models for pricing rules and tax configuration."""

from pricing_kernel.models.pricing import DiscountTierModel, PricingRuleModel
from pricing_kernel.models.taxation import (
    TaxExemptionModel,
    TaxGroupModel,
    TaxGroupRateModel,
    TaxJurisdictionModel,
    TaxRateModel,
)

__all__ = [
    "PricingRuleModel",
    "DiscountTierModel",
    "TaxRateModel",
    "TaxGroupModel",
    "TaxGroupRateModel",
    "TaxJurisdictionModel",
    "TaxExemptionModel",
]
