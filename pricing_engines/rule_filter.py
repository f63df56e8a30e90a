"""
Module: pricing_engines.rule_filter
Responsibility:
    Select the pricing rules and discount tiers whose applicability
    predicates hold for one calculation context at one instant.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Works over an already-fetched immutable snapshot; never queries.

Invariants enforced:
    - Purity: ``now`` is always passed in, never read from the clock.
    - A rule is a candidate only when every predicate holds: active,
      validity window, weekday, time-of-day window, quantity window,
      product/category scope and customer scope.
    - Input order is preserved; ordering by priority is the resolver's job.

Failure modes:
    - None.  Malformed rules are rejected when the snapshot is built.

Usage:
    from pricing_engines.rule_filter import RuleCandidateFilter

    candidates = RuleCandidateFilter().filter(
        rules=snapshot.rules, ctx=ctx, now=ctx.evaluated_at,
    )
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, time
from decimal import Decimal
from typing import Any

from pricing_engines.tracer import traced_engine
from pricing_kernel.domain.dtos import CalculationContext
from pricing_kernel.domain.rules import DiscountTier, PricingRule, TierType
from pricing_kernel.domain.taxation import is_within_window
from pricing_kernel.logging_config import get_logger

logger = get_logger("engines.rule_filter")


def day_of_week(now: datetime) -> int:
    """Weekday number with 0 = Sunday through 6 = Saturday."""
    return now.isoweekday() % 7


def in_quantity_window(
    quantity: Decimal,
    min_quantity: Decimal | None,
    max_quantity: Decimal | None,
) -> bool:
    if min_quantity is not None and quantity < min_quantity:
        return False
    if max_quantity is not None and quantity > max_quantity:
        return False
    return True


class RuleCandidateFilter:
    """
    Pure predicate filter over pricing rules and discount tiers.

    ``allow_midnight_wraparound`` switches the time-of-day test.  When off,
    ``time_from <= t <= time_to`` is applied literally, so a window such as
    22:00-02:00 never matches.  When on, a window whose start is after its
    end is read as spanning midnight.
    """

    def __init__(self, allow_midnight_wraparound: bool = False):
        self.allow_midnight_wraparound = allow_midnight_wraparound

    # ------------------------------------------------------------------
    # Individual predicates
    # ------------------------------------------------------------------

    def is_currently_valid(self, rule: PricingRule, now: datetime) -> bool:
        """Active, inside the validity window, weekday and time-of-day match."""
        if not rule.is_active:
            return False
        if not is_within_window(now, rule.valid_from, rule.valid_to):
            return False
        if rule.days_of_week is not None and day_of_week(now) not in rule.days_of_week:
            return False
        if rule.time_from is not None and rule.time_to is not None:
            return self.in_time_window(now.time(), rule.time_from, rule.time_to)
        return True

    def in_time_window(self, t: time, time_from: time, time_to: time) -> bool:
        if time_from <= time_to:
            return time_from <= t <= time_to
        if self.allow_midnight_wraparound:
            return t >= time_from or t <= time_to
        return False

    def applies_to_quantity(self, rule: PricingRule, quantity: Decimal) -> bool:
        return in_quantity_window(quantity, rule.min_quantity, rule.max_quantity)

    def matches_scope(self, rule: PricingRule, ctx: CalculationContext) -> bool:
        """Product/category scope AND customer scope."""
        item_match = (
            rule.is_wildcard_scope
            or (rule.product_id is not None and rule.product_id == ctx.product_id)
            or (
                rule.category_id is not None
                and ctx.category_id is not None
                and rule.category_id == ctx.category_id
            )
        )
        if not item_match:
            return False

        if not rule.is_customer_scoped:
            return True
        if rule.customer_id is not None and ctx.customer_id is not None:
            if rule.customer_id == ctx.customer_id:
                return True
        if rule.customer_group is not None and ctx.customer_group is not None:
            if rule.customer_group == ctx.customer_group:
                return True
        return False

    def is_candidate(
        self,
        rule: PricingRule,
        ctx: CalculationContext,
        now: datetime,
    ) -> bool:
        return (
            self.is_currently_valid(rule, now)
            and self.applies_to_quantity(rule, ctx.quantity)
            and self.matches_scope(rule, ctx)
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    @traced_engine("rule_filter", "1.0", fingerprint_fields=("rules", "ctx", "now"))
    def filter(
        self,
        *,
        rules: Sequence[PricingRule],
        ctx: CalculationContext,
        now: datetime,
    ) -> list[PricingRule]:
        """Return the candidate rules for ``ctx`` at ``now``, in input order."""
        candidates = [rule for rule in rules if self.is_candidate(rule, ctx, now)]

        logger.debug("rule_candidates_selected", extra={
            "rule_count": len(rules),
            "candidate_count": len(candidates),
            "candidate_rule_ids": [r.rule_id for r in candidates],
        })
        return candidates

    @traced_engine(
        "rule_filter", "1.0",
        fingerprint_fields=("tiers", "product_id", "rule_ids", "quantity", "tier_type"),
    )
    def filter_tiers(
        self,
        *,
        tiers: Sequence[DiscountTier],
        product_id: Any,
        quantity: Decimal,
        tier_type: TierType = TierType.SELLING,
        rule_ids: Iterable[Any] = (),
    ) -> list[DiscountTier]:
        """
        Tiers of ``tier_type`` whose quantity window contains ``quantity``
        and which are scoped to ``product_id`` or to one of ``rule_ids``.

        Tiers carry no time or weekday constraints.
        """
        owners = set(rule_ids)
        matched: list[DiscountTier] = []
        for tier in tiers:
            if tier.tier_type != tier_type:
                continue
            in_scope = (
                (tier.product_id is not None and tier.product_id == product_id)
                or (tier.pricing_rule_id is not None and tier.pricing_rule_id in owners)
            )
            if in_scope and tier.applies_to_quantity(quantity):
                matched.append(tier)

        logger.debug("tier_candidates_selected", extra={
            "tier_count": len(tiers),
            "candidate_count": len(matched),
            "candidate_tier_ids": [t.tier_id for t in matched],
        })
        return matched
