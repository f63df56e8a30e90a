"""
Pure domain layer.

This module contains the numeric core and the immutable snapshot, input
and result types with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock
- I/O

All domain objects are immutable and deterministic.
"""

from pricing_kernel.domain.dtos import (
    BulkCalculationResult,
    BulkSummary,
    CalculationContext,
    CalculationResult,
    CalculationWarning,
    CustomerRecord,
    LineItemOutcome,
    LineItemStatus,
    PricingSnapshot,
    ProductDiscountType,
    ProductRecord,
    TaxBreakdownLine,
    TaxMemberLine,
    WarningCode,
)
from pricing_kernel.domain.rules import (
    AdjustmentType,
    DiscountTier,
    PricingMethod,
    PricingRule,
    TierType,
)
from pricing_kernel.domain.taxation import (
    ApplicationType,
    EntityRef,
    EntityType,
    ExemptionType,
    LocationDescriptor,
    TaxExemption,
    TaxGroup,
    TaxGroupRate,
    TaxJurisdiction,
    TaxRate,
    TaxRateType,
    TaxSourceRef,
    TaxSourceType,
)

__all__ = [
    # Rules
    "PricingRule",
    "PricingMethod",
    "AdjustmentType",
    "DiscountTier",
    "TierType",
    # Taxation
    "TaxRate",
    "TaxRateType",
    "TaxGroup",
    "TaxGroupRate",
    "ApplicationType",
    "TaxJurisdiction",
    "LocationDescriptor",
    "TaxExemption",
    "ExemptionType",
    "EntityRef",
    "EntityType",
    "TaxSourceRef",
    "TaxSourceType",
    # Snapshot / input
    "PricingSnapshot",
    "ProductRecord",
    "ProductDiscountType",
    "CustomerRecord",
    "CalculationContext",
    # Results
    "CalculationResult",
    "CalculationWarning",
    "WarningCode",
    "TaxBreakdownLine",
    "TaxMemberLine",
    "LineItemOutcome",
    "LineItemStatus",
    "BulkCalculationResult",
    "BulkSummary",
]
