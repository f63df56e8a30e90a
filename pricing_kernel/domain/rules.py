"""
Rules -- Pricing rule and discount tier snapshot value objects.

Responsibility:
    Immutable, self-validating representations of the pricing rules and
    quantity-banded discount tiers the engine evaluates.  They are authored
    and stored elsewhere; the engine only ever reads them.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - All amounts and quantities are Decimal (coerced at construction,
      floats rejected).
    - Percentage adjustments are within [0, 100]; markups only need to be
      non-negative.
    - A tier cannot be both a fixed-price tier and a non-zero percentage
      discount.
    - ``days_of_week`` holds values 0-6 with 0 = Sunday.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from pricing_kernel.domain.values import (
    ZERO,
    ensure_non_negative,
    ensure_percentage,
    optional_decimal,
    to_decimal,
)
from pricing_kernel.exceptions import InvalidInputError


class PricingMethod(str, Enum):
    """How a rule changes the running price."""

    FIXED = "fixed"  # Replace with fixed_price
    MARKUP = "markup"  # Increase by adjustment
    MARKDOWN = "markdown"  # Decrease by adjustment
    DISCOUNT = "discount"  # Same arithmetic as markdown


class AdjustmentType(str, Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"


class TierType(str, Enum):
    BUYING = "buying"
    SELLING = "selling"


def _check_quantity_window(
    min_quantity: Decimal | None,
    max_quantity: Decimal | None,
) -> None:
    if min_quantity is not None and min_quantity < ZERO:
        raise InvalidInputError("min_quantity", "must not be negative", min_quantity)
    if (
        min_quantity is not None
        and max_quantity is not None
        and max_quantity < min_quantity
    ):
        raise InvalidInputError(
            "max_quantity", f"must not be below min_quantity {min_quantity}", max_quantity
        )


@dataclass(frozen=True)
class PricingRule:
    """
    A priority-ordered price adjustment with applicability predicates.

    Scope, validity window, time-of-day window, weekdays and quantity window
    decide whether the rule is a candidate; ``pricing_method`` together with
    ``adjustment_type``/``adjustment_value`` or ``fixed_price`` decides what
    it does to the price.
    """

    rule_id: Any
    pricing_method: PricingMethod = PricingMethod.DISCOUNT
    adjustment_type: AdjustmentType = AdjustmentType.PERCENTAGE
    adjustment_value: Decimal = ZERO
    priority: int = 0
    name: str = ""
    code: str | None = None
    tenant_id: Any = None

    # Scope selectors (None = wildcard)
    product_id: Any = None
    category_id: Any = None
    customer_id: Any = None
    customer_group: str | None = None

    # Validity window; a date bound compares against the evaluation date
    valid_from: date | datetime | None = None
    valid_to: date | datetime | None = None

    # Time-of-day window, applied only when both bounds are set
    time_from: time | None = None
    time_to: time | None = None

    days_of_week: frozenset[int] | None = None

    min_quantity: Decimal | None = None
    max_quantity: Decimal | None = None

    fixed_price: Decimal | None = None
    can_compound: bool = False
    exclude_rules: frozenset[Any] = field(default_factory=frozenset)
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "pricing_method", PricingMethod(self.pricing_method))
        object.__setattr__(self, "adjustment_type", AdjustmentType(self.adjustment_type))

        if (
            self.adjustment_type == AdjustmentType.PERCENTAGE
            and self.pricing_method in (PricingMethod.MARKDOWN, PricingMethod.DISCOUNT)
        ):
            value = ensure_percentage(self.adjustment_value, "adjustment_value")
        else:
            value = ensure_non_negative(self.adjustment_value, "adjustment_value")
        object.__setattr__(self, "adjustment_value", value)

        if self.fixed_price is not None:
            object.__setattr__(
                self, "fixed_price", ensure_non_negative(self.fixed_price, "fixed_price")
            )

        min_q = optional_decimal(self.min_quantity, "min_quantity")
        max_q = optional_decimal(self.max_quantity, "max_quantity")
        _check_quantity_window(min_q, max_q)
        object.__setattr__(self, "min_quantity", min_q)
        object.__setattr__(self, "max_quantity", max_q)

        if self.days_of_week is not None:
            days = frozenset(int(d) for d in self.days_of_week)
            if any(d < 0 or d > 6 for d in days):
                raise InvalidInputError("days_of_week", "days must be within 0-6", sorted(days))
            object.__setattr__(self, "days_of_week", days or None)

        object.__setattr__(self, "exclude_rules", frozenset(self.exclude_rules or ()))

    @property
    def is_wildcard_scope(self) -> bool:
        return self.product_id is None and self.category_id is None

    @property
    def is_customer_scoped(self) -> bool:
        return self.customer_id is not None or self.customer_group is not None


@dataclass(frozen=True)
class DiscountTier:
    """
    A quantity band with its own discount, scoped to a product or to the
    pricing rule that owns it.
    """

    tier_id: Any
    min_quantity: Decimal = ZERO
    max_quantity: Decimal | None = None
    discount_type: AdjustmentType = AdjustmentType.PERCENTAGE
    discount_value: Decimal = ZERO
    fixed_price: Decimal | None = None
    tier_type: TierType = TierType.SELLING
    product_id: Any = None
    pricing_rule_id: Any = None
    display_order: int = 0
    label: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "tier_type", TierType(self.tier_type))
        object.__setattr__(self, "discount_type", AdjustmentType(self.discount_type))

        if self.product_id is None and self.pricing_rule_id is None:
            raise InvalidInputError(
                "tier scope", "tier needs a product_id or a pricing_rule_id", self.tier_id
            )

        min_q = to_decimal(self.min_quantity, "min_quantity")
        max_q = optional_decimal(self.max_quantity, "max_quantity")
        _check_quantity_window(min_q, max_q)
        object.__setattr__(self, "min_quantity", min_q)
        object.__setattr__(self, "max_quantity", max_q)

        if self.discount_type == AdjustmentType.PERCENTAGE:
            value = ensure_percentage(self.discount_value, "discount_value")
        else:
            value = ensure_non_negative(self.discount_value, "discount_value")
        object.__setattr__(self, "discount_value", value)

        if self.fixed_price is not None:
            fixed = ensure_non_negative(self.fixed_price, "fixed_price")
            object.__setattr__(self, "fixed_price", fixed)
            if self.discount_type == AdjustmentType.PERCENTAGE and value != ZERO:
                raise InvalidInputError(
                    "discount tier",
                    "fixed_price and a percentage discount are contradictory",
                    self.tier_id,
                )

    def applies_to_quantity(self, quantity: Decimal) -> bool:
        if quantity < self.min_quantity:
            return False
        if self.max_quantity is not None and quantity > self.max_quantity:
            return False
        return True
