"""
DTOs -- Calculation inputs, snapshots and results.

Responsibility:
    Defines the immutable data that crosses the engine boundary:
    ``PricingSnapshot`` (read-only rule/tax data fetched by the caller),
    ``CalculationContext`` (one line to price), and the result types
    ``CalculationResult``, ``LineItemOutcome`` and ``BulkCalculationResult``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Results are frozen and created fresh per call; they are never mutated.
    - Money fields on results are already rounded half-up to display scale.
    - ``CalculationContext`` carries ``evaluated_at`` and ``tenant_id``
      explicitly; nothing in the engine reads ambient time or tenant state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from pricing_kernel.domain.rules import AdjustmentType, DiscountTier, PricingRule, TierType
from pricing_kernel.domain.taxation import (
    ApplicationType,
    EntityRef,
    LocationDescriptor,
    TaxExemption,
    TaxGroup,
    TaxJurisdiction,
    TaxRate,
    TaxSourceType,
)
from pricing_kernel.domain.values import ZERO, ensure_non_negative, optional_decimal, to_decimal

# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class ProductDiscountType(str, Enum):
    NONE = "none"
    FLAT = "flat"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class ProductRecord:
    """The slice of product master data the engine needs."""

    product_id: Any
    category_id: Any = None
    buying_price: Decimal | None = None
    discount_type: ProductDiscountType = ProductDiscountType.NONE
    discount_value: Decimal = ZERO

    def __post_init__(self) -> None:
        object.__setattr__(self, "discount_type", ProductDiscountType(self.discount_type))
        object.__setattr__(
            self, "buying_price", optional_decimal(self.buying_price, "buying_price")
        )
        object.__setattr__(
            self, "discount_value", ensure_non_negative(self.discount_value, "discount_value")
        )

    @property
    def discount_adjustment(self) -> AdjustmentType | None:
        if self.discount_type == ProductDiscountType.NONE or self.discount_value == ZERO:
            return None
        return AdjustmentType(self.discount_type.value)


@dataclass(frozen=True)
class CustomerRecord:
    customer_id: Any
    customer_group: str | None = None


@dataclass(frozen=True)
class PricingSnapshot:
    """
    A consistent, read-only view of everything one calculation call needs.

    Callers build one snapshot per batch so every item sees the same rules.
    ``products``/``customers`` are optional catalogues: when given, unknown
    ids in a context fail with NOT_FOUND; when ``None`` they are not checked.
    """

    rules: tuple[PricingRule, ...] = ()
    tiers: tuple[DiscountTier, ...] = ()
    tax_rates: Mapping[Any, TaxRate] = field(default_factory=dict)
    tax_groups: Mapping[Any, TaxGroup] = field(default_factory=dict)
    jurisdictions: tuple[TaxJurisdiction, ...] = ()
    exemptions: tuple[TaxExemption, ...] = ()
    products: Mapping[Any, ProductRecord] | None = None
    customers: Mapping[Any, CustomerRecord] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "tiers", tuple(self.tiers))
        object.__setattr__(self, "jurisdictions", tuple(self.jurisdictions))
        object.__setattr__(self, "exemptions", tuple(self.exemptions))


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalculationContext:
    """
    One line to price and tax.

    Quantity and price are coerced to Decimal here; range checks
    (positive quantity, ceiling) happen in the orchestrator so that a bad
    line in a batch fails on its own.
    """

    product_id: Any
    quantity: Decimal
    base_price: Decimal
    evaluated_at: datetime
    category_id: Any = None
    customer_id: Any = None
    customer_group: str | None = None
    vendor_id: Any = None
    location: LocationDescriptor = field(default_factory=LocationDescriptor)
    tax_group_override_id: Any = None
    tax_rate_override_id: Any = None
    is_tax_inclusive: bool = False
    tier_type: TierType | None = None
    tenant_id: Any = None
    currency: str = "USD"

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity, "quantity"))
        object.__setattr__(self, "base_price", to_decimal(self.base_price, "base_price"))
        if self.tier_type is not None:
            object.__setattr__(self, "tier_type", TierType(self.tier_type))

    def entity_refs(self) -> tuple[EntityRef, ...]:
        """Every entity an exemption could be bound to for this line."""
        refs = [EntityRef.product(self.product_id)]
        if self.category_id is not None:
            refs.append(EntityRef.category(self.category_id))
        if self.customer_id is not None:
            refs.append(EntityRef.customer(self.customer_id))
        if self.vendor_id is not None:
            refs.append(EntityRef.vendor(self.vendor_id))
        return tuple(refs)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class WarningCode(str, Enum):
    """Non-fatal conditions surfaced on a result."""

    AMBIGUOUS_EXEMPTION = "AMBIGUOUS_EXEMPTION"
    NO_JURISDICTION_MATCHED = "NO_JURISDICTION_MATCHED"
    TAX_SOURCE_NOT_EFFECTIVE = "TAX_SOURCE_NOT_EFFECTIVE"


@dataclass(frozen=True)
class CalculationWarning:
    code: WarningCode
    detail: str = ""


@dataclass(frozen=True)
class TaxMemberLine:
    """Tax computed by one member rate of a group (or by a single rate)."""

    rate_id: Any
    rate: Decimal
    is_fixed: bool
    base: Decimal
    amount: Decimal
    apply_on_previous: bool = False


@dataclass(frozen=True)
class TaxBreakdownLine:
    """One tax source's contribution to a line."""

    source_id: Any
    source_type: TaxSourceType
    base: Decimal  # Net amount the tax is computed on
    amount: Decimal  # Tax after exemption
    inclusive: bool
    exempted_amount: Decimal = ZERO
    gross_amount: Decimal = ZERO  # Pre-exemption tax; equals amount when not exempt
    application_type: ApplicationType | None = None
    jurisdiction_id: Any = None
    reverse_charge: bool = False
    exemption_ids: tuple[Any, ...] = ()
    members: tuple[TaxMemberLine, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_type": self.source_type.value,
            "base": str(self.base),
            "amount": str(self.amount),
            "inclusive": self.inclusive,
            "exempted_amount": str(self.exempted_amount),
            "jurisdiction_id": self.jurisdiction_id,
            "reverse_charge": self.reverse_charge,
        }


@dataclass(frozen=True)
class CalculationResult:
    """Priced and taxed line.  Money fields are display-rounded."""

    product_id: Any
    quantity: Decimal
    base_price: Decimal
    unit_price: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    tax_breakdown: tuple[TaxBreakdownLine, ...]
    tax_total: Decimal
    net_amount: Decimal
    grand_total: Decimal
    applied_rule_ids: tuple[Any, ...] = ()
    applied_tier_id: Any = None
    applied_exemption_ids: tuple[Any, ...] = ()
    jurisdiction_ids: tuple[Any, ...] = ()
    no_jurisdiction_matched: bool = False
    reverse_charge: bool = False
    profit_margin: Decimal | None = None
    profit_margin_percentage: Decimal | None = None
    warnings: tuple[CalculationWarning, ...] = ()
    evaluated_at: datetime | None = None
    tenant_id: Any = None
    currency: str = "USD"

    @property
    def warning_codes(self) -> tuple[WarningCode, ...]:
        return tuple(w.code for w in self.warnings)

    def to_dict(self) -> dict[str, Any]:
        """Logical response shape; decimals rendered as strings."""
        return {
            "product_id": self.product_id,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "tax_breakdown": [line.to_dict() for line in self.tax_breakdown],
            "tax_total": str(self.tax_total),
            "grand_total": str(self.grand_total),
            "applied_rule_ids": list(self.applied_rule_ids),
            "applied_exemption_ids": list(self.applied_exemption_ids),
            "no_jurisdiction_matched": self.no_jurisdiction_matched,
            "currency": self.currency,
        }


class LineItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class LineItemOutcome:
    """Typed per-item result: either a CalculationResult or an error code."""

    item_index: int
    status: LineItemStatus
    result: CalculationResult | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == LineItemStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        if self.result is not None:
            return {"status": self.status.value, **self.result.to_dict()}
        return {
            "status": self.status.value,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class BulkSummary:
    subtotal: Decimal = ZERO
    total_discount: Decimal = ZERO
    total_tax: Decimal = ZERO
    grand_total: Decimal = ZERO
    item_count: int = 0
    failed_count: int = 0


@dataclass(frozen=True)
class BulkCalculationResult:
    items: tuple[LineItemOutcome, ...]
    summary: BulkSummary

    @property
    def all_succeeded(self) -> bool:
        return all(item.succeeded for item in self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "summary": {
                "subtotal": str(self.summary.subtotal),
                "total_discount": str(self.summary.total_discount),
                "total_tax": str(self.summary.total_tax),
                "grand_total": str(self.summary.grand_total),
                "item_count": self.summary.item_count,
                "failed_count": self.summary.failed_count,
            },
        }
