"""
Module: pricing_engines.price_resolver
Responsibility:
    Order candidate pricing rules by priority, apply compounding and
    exclusion semantics to reach an adjusted unit price, then apply the
    single best quantity tier (or the product's own discount when no tier
    applies).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Deterministic order: priority descending, then rule id ascending.
    - A non-compounding rule wins alone; it is applied only when nothing
      has been applied yet, and scanning stops after it.
    - Exclusion is mutual: a rule excluded by an applied rule is skipped,
      and so is a rule whose own ``exclude_rules`` names an applied rule.
    - The running price is quantized to the internal scale and floored at
      zero after every step.

Failure modes:
    - None for snapshot-valid input.

Usage:
    from pricing_engines.price_resolver import PriceResolver

    resolution = PriceResolver().resolve(
        candidates=candidates,
        tiers=tiers,
        base_price=Decimal("100"),
        quantity=Decimal("10"),
    )
    resolution.final_price
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pricing_engines.tracer import traced_engine
from pricing_kernel.domain.dtos import ProductRecord
from pricing_kernel.domain.rules import AdjustmentType, DiscountTier, PricingMethod, PricingRule
from pricing_kernel.domain.values import (
    INTERNAL_SCALE,
    add,
    clamp_non_negative,
    id_sort_key,
    percent_of,
    quantize,
    sub,
)
from pricing_kernel.logging_config import get_logger

logger = get_logger("engines.price_resolver")


@dataclass(frozen=True)
class PriceResolution:
    """Outcome of rule and tier application for one unit."""

    final_price: Decimal
    rule_price: Decimal  # Price after rules, before tier/product discount
    applied_rule_ids: tuple[Any, ...] = ()
    applied_tier_id: Any = None
    product_discount_applied: bool = False


def _adjust(
    price: Decimal,
    adjustment_type: AdjustmentType,
    value: Decimal,
    increase: bool,
) -> Decimal:
    if adjustment_type == AdjustmentType.PERCENTAGE:
        delta = percent_of(price, value)
    else:
        delta = value
    return add(price, delta) if increase else sub(price, delta)


def rule_sort_key(rule: PricingRule) -> tuple:
    return (-rule.priority, id_sort_key(rule.rule_id))


def tier_sort_key(tier: DiscountTier) -> tuple:
    """Largest min_quantity first, then display_order, then tier id."""
    return (-tier.min_quantity, tier.display_order, id_sort_key(tier.tier_id))


class PriceResolver:
    """Priority-ordered rule application followed by tier selection."""

    def __init__(self, scale: int = INTERNAL_SCALE):
        self.scale = scale

    def _settle(self, price: Decimal) -> Decimal:
        return quantize(clamp_non_negative(price), self.scale)

    def apply_rule(self, rule: PricingRule, price: Decimal) -> Decimal:
        """Apply one rule's pricing method to the running price."""
        method = rule.pricing_method
        if method == PricingMethod.FIXED:
            if rule.fixed_price is None:
                return price
            return self._settle(rule.fixed_price)
        if method == PricingMethod.MARKUP:
            return self._settle(
                _adjust(price, rule.adjustment_type, rule.adjustment_value, increase=True)
            )
        # MARKDOWN and DISCOUNT share the same arithmetic
        return self._settle(
            _adjust(price, rule.adjustment_type, rule.adjustment_value, increase=False)
        )

    def apply_rules(
        self,
        candidates: Sequence[PricingRule],
        base_price: Decimal,
    ) -> tuple[Decimal, tuple[Any, ...]]:
        """Walk candidates in priority order; return (price, applied ids)."""
        price = self._settle(base_price)
        applied: list[Any] = []
        applied_set: set[Any] = set()
        excluded: set[Any] = set()

        for rule in sorted(candidates, key=rule_sort_key):
            if rule.rule_id in excluded or rule.exclude_rules & applied_set:
                logger.debug("pricing_rule_excluded", extra={"rule_id": rule.rule_id})
                continue

            if not rule.can_compound:
                if applied:
                    # Cannot win alone once compounding rules have applied
                    logger.debug("pricing_rule_skipped_after_compounding", extra={
                        "rule_id": rule.rule_id,
                    })
                    continue
                price = self.apply_rule(rule, price)
                applied.append(rule.rule_id)
                break

            price = self.apply_rule(rule, price)
            applied.append(rule.rule_id)
            applied_set.add(rule.rule_id)
            excluded |= rule.exclude_rules

        return price, tuple(applied)

    def select_tier(
        self,
        tiers: Sequence[DiscountTier],
        quantity: Decimal,
        applied_rule_ids: Iterable[Any] = (),
    ) -> DiscountTier | None:
        """
        Best tier containing ``quantity``.

        Product-scoped tiers are always eligible; rule-scoped tiers only when
        their owning rule was applied.
        """
        owners = set(applied_rule_ids)
        eligible = [
            t for t in tiers
            if t.applies_to_quantity(quantity)
            and (t.pricing_rule_id is None or t.pricing_rule_id in owners)
        ]
        if not eligible:
            return None
        return min(eligible, key=tier_sort_key)

    def apply_tier(self, tier: DiscountTier, price: Decimal) -> Decimal:
        if tier.fixed_price is not None:
            return self._settle(tier.fixed_price)
        return self._settle(
            _adjust(price, tier.discount_type, tier.discount_value, increase=False)
        )

    def apply_product_discount(self, product: ProductRecord, price: Decimal) -> Decimal:
        adjustment = product.discount_adjustment
        if adjustment is None:
            return price
        return self._settle(_adjust(price, adjustment, product.discount_value, increase=False))

    @traced_engine(
        "price_resolver", "1.0",
        fingerprint_fields=("candidates", "tiers", "base_price", "quantity", "product"),
    )
    def resolve(
        self,
        *,
        candidates: Sequence[PricingRule],
        tiers: Sequence[DiscountTier],
        base_price: Decimal,
        quantity: Decimal,
        product: ProductRecord | None = None,
    ) -> PriceResolution:
        """
        Resolve the adjusted unit price.

        Args:
            candidates: Rules that passed the candidate filter.
            tiers: Tiers of the right type scoped to the product or to a
                candidate rule.
            base_price: Unit price before any adjustment.
            quantity: Line quantity, used for tier selection.
            product: Product record; its discount is the fallback when no
                tier applies.
        """
        rule_price, applied_ids = self.apply_rules(candidates, base_price)

        price = rule_price
        tier = self.select_tier(tiers, quantity, applied_ids)
        product_discount_applied = False
        if tier is not None:
            price = self.apply_tier(tier, price)
        elif product is not None and product.discount_adjustment is not None:
            price = self.apply_product_discount(product, price)
            product_discount_applied = True

        logger.info("price_resolution_completed", extra={
            "base_price": str(base_price),
            "quantity": str(quantity),
            "rule_price": str(rule_price),
            "final_price": str(price),
            "applied_rule_ids": list(applied_ids),
            "applied_tier_id": tier.tier_id if tier is not None else None,
            "product_discount_applied": product_discount_applied,
        })

        return PriceResolution(
            final_price=price,
            rule_price=rule_price,
            applied_rule_ids=applied_ids,
            applied_tier_id=tier.tier_id if tier is not None else None,
            product_discount_applied=product_discount_applied,
        )
