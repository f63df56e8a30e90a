"""
CalculationOrchestrator -- single-item and bulk price-and-tax calculation.

Contract:
    ``calculate(ctx)`` runs rule filtering, price resolution, tax source
    selection, exemption evaluation and tax aggregation for one line and
    returns a display-rounded ``CalculationResult``.  It raises typed
    ``PricingEngineError`` subclasses.

    ``try_calculate(ctx)`` and ``calculate_bulk(contexts)`` never raise for
    a bad line: each item becomes a ``LineItemOutcome`` carrying either the
    result or the error code, so one failure does not abort the batch.

Architecture: pricing_services.  Composes pricing_engines over an immutable
    ``PricingSnapshot``; never queries storage and never reads the clock.

Invariants enforced:
    - Every item of a bulk call sees the same snapshot and settings.
    - Bulk output order equals input order, also when items run on a
      thread pool.
    - Money fields are rounded half-up to display scale only when the
      result is assembled.  Totals are sums of the rounded lines, so
      tax_total equals the displayed breakdown and net_amount plus
      tax_total equals grand_total.
    - Inclusive sources of one line share a single net amount.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pricing_config.schema import EngineSettings, JurisdictionMode, TimeWindowMode
from pricing_engines.exemption import ExemptionEffect, ExemptionEvaluator
from pricing_engines.jurisdiction import JurisdictionResolver
from pricing_engines.price_resolver import PriceResolution, PriceResolver
from pricing_engines.rule_filter import RuleCandidateFilter
from pricing_engines.tax import TaxAggregator
from pricing_kernel.domain.dtos import (
    BulkCalculationResult,
    BulkSummary,
    CalculationContext,
    CalculationResult,
    CalculationWarning,
    LineItemOutcome,
    LineItemStatus,
    PricingSnapshot,
    ProductRecord,
    TaxBreakdownLine,
    WarningCode,
)
from pricing_kernel.domain.taxation import TaxGroup, TaxJurisdiction, TaxRate, TaxSourceRef, TaxSourceType
from pricing_kernel.domain.values import (
    HUNDRED,
    ZERO,
    add,
    clamp_non_negative,
    div,
    ensure_positive,
    mul,
    quantize,
    round_half_up,
    sub,
    total,
)
from pricing_kernel.exceptions import (
    AmountCeilingExceededError,
    NotFoundError,
    PricingEngineError,
)
from pricing_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.calculation")


@dataclass(frozen=True)
class _TaxEntry:
    source: TaxRate | TaxGroup
    jurisdiction: TaxJurisdiction | None
    effect: ExemptionEffect
    inclusive: bool


class CalculationOrchestrator:
    """Composes the pricing and tax engines over one snapshot.

    Contract:
        - Construct once per snapshot; reuse for any number of calls.
        - ``settings`` defaults to the built-in ``EngineSettings``.
    """

    def __init__(
        self,
        snapshot: PricingSnapshot,
        settings: EngineSettings | None = None,
    ):
        self._snapshot = snapshot
        self._settings = settings or EngineSettings()
        self._rule_filter = RuleCandidateFilter(
            allow_midnight_wraparound=(
                self._settings.time_window_mode == TimeWindowMode.WRAPAROUND
            ),
        )
        self._price_resolver = PriceResolver(scale=self._settings.internal_scale)
        self._jurisdiction_resolver = JurisdictionResolver()
        self._exemption_evaluator = ExemptionEvaluator()
        self._tax_aggregator = TaxAggregator(scale=self._settings.internal_scale)

    @property
    def snapshot(self) -> PricingSnapshot:
        return self._snapshot

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Validation and reference lookups
    # ------------------------------------------------------------------

    def _validate(self, ctx: CalculationContext) -> None:
        quantity = ensure_positive(ctx.quantity, "quantity")
        base_price = ensure_positive(ctx.base_price, "base_price")
        line_amount = mul(base_price, quantity)
        if line_amount > self._settings.max_amount:
            raise AmountCeilingExceededError(
                "line_amount", line_amount, self._settings.max_amount,
            )

    def _resolve_references(
        self,
        ctx: CalculationContext,
    ) -> tuple[CalculationContext, ProductRecord | None]:
        """Check product/customer ids and fill category/group from records."""
        product: ProductRecord | None = None
        products = self._snapshot.products
        if products is not None:
            product = products.get(ctx.product_id)
            if product is None:
                raise NotFoundError("product", ctx.product_id)
            if ctx.category_id is None and product.category_id is not None:
                ctx = replace(ctx, category_id=product.category_id)

        customers = self._snapshot.customers
        if customers is not None and ctx.customer_id is not None:
            customer = customers.get(ctx.customer_id)
            if customer is None:
                raise NotFoundError("customer", ctx.customer_id)
            if ctx.customer_group is None and customer.customer_group is not None:
                ctx = replace(ctx, customer_group=customer.customer_group)

        return ctx, product

    def _lookup_source(self, ref: TaxSourceRef) -> TaxRate | TaxGroup:
        if ref.source_type == TaxSourceType.GROUP:
            group = self._snapshot.tax_groups.get(ref.source_id)
            if group is None:
                raise NotFoundError("tax_group", ref.source_id)
            return group
        rate = self._snapshot.tax_rates.get(ref.source_id)
        if rate is None:
            raise NotFoundError("tax_rate", ref.source_id)
        return rate

    def _select_tax_sources(
        self,
        ctx: CalculationContext,
    ) -> list[tuple[TaxRate | TaxGroup, TaxJurisdiction | None]]:
        """Override group, then override rate, then ranked jurisdictions."""
        if ctx.tax_group_override_id is not None:
            return [(self._lookup_source(TaxSourceRef.group(ctx.tax_group_override_id)), None)]
        if ctx.tax_rate_override_id is not None:
            return [(self._lookup_source(TaxSourceRef.rate(ctx.tax_rate_override_id)), None)]

        matched = self._jurisdiction_resolver.resolve(
            jurisdictions=self._snapshot.jurisdictions,
            location=ctx.location,
        )
        if self._settings.jurisdiction_mode == JurisdictionMode.TOP:
            matched = matched[:1]
        return [(self._lookup_source(j.source), j) for j in matched]

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    def calculate(self, ctx: CalculationContext) -> CalculationResult:
        """Price and tax one line.

        Raises:
            InvalidInputError: Non-positive quantity or price.
            AmountCeilingExceededError: Line amount or priced subtotal above
                ``max_amount``.
            NotFoundError: Unknown product, customer, rate or group.
        """
        with LogContext.bind(
            tenant_id=ctx.tenant_id,
            product_id=ctx.product_id,
            customer_id=ctx.customer_id,
        ):
            return self._calculate(ctx)

    def _calculate(self, ctx: CalculationContext) -> CalculationResult:
        t0 = time.monotonic()
        self._validate(ctx)
        ctx, product = self._resolve_references(ctx)
        now = ctx.evaluated_at
        internal = self._settings.internal_scale

        # Price
        candidates = self._rule_filter.filter(
            rules=self._snapshot.rules, ctx=ctx, now=now,
        )
        tiers = self._rule_filter.filter_tiers(
            tiers=self._snapshot.tiers,
            product_id=ctx.product_id,
            quantity=ctx.quantity,
            tier_type=ctx.tier_type or self._settings.default_tier_type,
            rule_ids=[r.rule_id for r in candidates],
        )
        resolution = self._price_resolver.resolve(
            candidates=candidates,
            tiers=tiers,
            base_price=ctx.base_price,
            quantity=ctx.quantity,
            product=product,
        )
        unit_price = resolution.final_price
        subtotal = quantize(mul(unit_price, ctx.quantity), internal)
        # Markups and fixed-price rules can lift the line past the ceiling
        if subtotal > self._settings.max_amount:
            raise AmountCeilingExceededError(
                "subtotal", subtotal, self._settings.max_amount,
            )

        # Tax
        warnings: list[CalculationWarning] = []
        sources = self._select_tax_sources(ctx)
        no_jurisdiction_matched = not sources
        if no_jurisdiction_matched:
            warnings.append(CalculationWarning(
                WarningCode.NO_JURISDICTION_MATCHED,
                "no tax jurisdiction matched the location",
            ))

        entity_refs = ctx.entity_refs()
        entries: list[_TaxEntry] = []
        for source, jurisdiction in sources:
            ref = source.ref
            if not source.is_effective(now):
                warnings.append(CalculationWarning(
                    WarningCode.TAX_SOURCE_NOT_EFFECTIVE,
                    f"{ref.source_type.value} {ref.source_id} is not effective",
                ))
                continue

            effect = self._exemption_evaluator.evaluate_all(
                exemptions=self._snapshot.exemptions,
                entity_refs=entity_refs,
                target=ref,
                now=now,
            )
            if effect.ambiguous:
                warnings.append(CalculationWarning(
                    WarningCode.AMBIGUOUS_EXEMPTION,
                    f"{len(effect.matched_ids)} exemptions matched "
                    f"{ref.source_type.value} {ref.source_id}",
                ))

            inclusive = source.is_inclusive if isinstance(source, TaxGroup) else ctx.is_tax_inclusive
            entries.append(_TaxEntry(source, jurisdiction, effect, inclusive))

        lines = self._tax_lines(subtotal, entries, now)

        result = self._assemble(
            ctx, product, resolution, subtotal, lines, warnings,
            no_jurisdiction_matched=no_jurisdiction_matched,
        )

        logger.info("calculation_completed", extra={
            "unit_price": str(result.unit_price),
            "subtotal": str(result.subtotal),
            "tax_total": str(result.tax_total),
            "grand_total": str(result.grand_total),
            "applied_rule_ids": list(result.applied_rule_ids),
            "applied_exemption_ids": list(result.applied_exemption_ids),
            "tax_line_count": len(lines),
            "warning_codes": [w.code.value for w in warnings],
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return result

    def _tax_lines(
        self,
        subtotal: Decimal,
        entries: Sequence[_TaxEntry],
        now: datetime,
    ) -> list[TaxBreakdownLine]:
        """Exclusive sources tax the subtotal; inclusive ones share it as one gross."""
        inclusive = [(e.source, e.effect) for e in entries if e.inclusive]
        shared = iter(
            self._tax_aggregator.compute_inclusive(
                gross=subtotal, sources=inclusive, now=now,
            )
            if inclusive else ()
        )

        lines: list[TaxBreakdownLine] = []
        for entry in entries:
            if entry.inclusive:
                line = next(shared)
            else:
                line = self._tax_aggregator.compute(
                    base=subtotal,
                    source=entry.source,
                    now=now,
                    exemption_effect=entry.effect,
                    inclusive=False,
                )
            if entry.jurisdiction is not None:
                line = replace(
                    line,
                    jurisdiction_id=entry.jurisdiction.jurisdiction_id,
                    reverse_charge=entry.jurisdiction.is_reverse_charge,
                )
            lines.append(line)
        return lines

    def _display(self, value: Decimal) -> Decimal:
        return round_half_up(value, self._settings.display_scale)

    def _assemble(
        self,
        ctx: CalculationContext,
        product: ProductRecord | None,
        resolution: PriceResolution,
        subtotal: Decimal,
        lines: list[TaxBreakdownLine],
        warnings: list[CalculationWarning],
        no_jurisdiction_matched: bool = False,
    ) -> CalculationResult:
        r = self._display

        unit_price = resolution.final_price
        discount = clamp_non_negative(mul(sub(ctx.base_price, unit_price), ctx.quantity))

        profit_margin = None
        profit_margin_percentage = None
        if product is not None and product.buying_price is not None and product.buying_price > ZERO:
            margin = sub(unit_price, product.buying_price)
            profit_margin = r(margin)
            profit_margin_percentage = r(div(mul(margin, HUNDRED), product.buying_price))

        exemption_ids: list[Any] = []
        for line in lines:
            for exemption_id in line.exemption_ids:
                if exemption_id not in exemption_ids:
                    exemption_ids.append(exemption_id)

        # Totals are sums of the rounded lines so the breakdown adds up
        display_lines = []
        for line in lines:
            amount = r(line.amount)
            gross_amount = r(line.gross_amount)
            display_lines.append(replace(
                line,
                base=r(line.base),
                amount=amount,
                exempted_amount=sub(gross_amount, amount),
                gross_amount=gross_amount,
            ))
        inclusive_tax = total(line.amount for line in display_lines if line.inclusive)
        exclusive_tax = total(line.amount for line in display_lines if not line.inclusive)
        subtotal_display = r(subtotal)

        return CalculationResult(
            product_id=ctx.product_id,
            quantity=ctx.quantity,
            base_price=r(ctx.base_price),
            unit_price=r(unit_price),
            subtotal=subtotal_display,
            discount_amount=r(discount),
            tax_breakdown=tuple(display_lines),
            tax_total=r(add(inclusive_tax, exclusive_tax)),
            net_amount=r(sub(subtotal_display, inclusive_tax)),
            grand_total=r(add(subtotal_display, exclusive_tax)),
            applied_rule_ids=resolution.applied_rule_ids,
            applied_tier_id=resolution.applied_tier_id,
            applied_exemption_ids=tuple(exemption_ids),
            no_jurisdiction_matched=no_jurisdiction_matched,
            jurisdiction_ids=tuple(
                line.jurisdiction_id for line in lines if line.jurisdiction_id is not None
            ),
            reverse_charge=any(line.reverse_charge for line in lines),
            profit_margin=profit_margin,
            profit_margin_percentage=profit_margin_percentage,
            warnings=tuple(warnings),
            evaluated_at=ctx.evaluated_at,
            tenant_id=ctx.tenant_id,
            currency=ctx.currency,
        )

    def try_calculate(self, ctx: CalculationContext, item_index: int = 0) -> LineItemOutcome:
        """``calculate`` with errors returned as a typed outcome."""
        try:
            result = self.calculate(ctx)
        except PricingEngineError as exc:
            logger.warning("calculation_item_failed", extra={
                "item_index": item_index,
                "error_code": exc.code,
                "error_message": str(exc),
            })
            return LineItemOutcome(
                item_index=item_index,
                status=LineItemStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
            )
        except Exception as exc:
            logger.exception("calculation_item_unhandled_exception", extra={
                "item_index": item_index,
            })
            return LineItemOutcome(
                item_index=item_index,
                status=LineItemStatus.FAILED,
                error_code="UNHANDLED_EXCEPTION",
                error_message=str(exc),
            )
        return LineItemOutcome(
            item_index=item_index,
            status=LineItemStatus.SUCCEEDED,
            result=result,
        )

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def calculate_bulk(
        self,
        contexts: Sequence[CalculationContext],
        batch_id: str | None = None,
    ) -> BulkCalculationResult:
        """Calculate every item independently; output order matches input."""
        t0 = time.monotonic()
        batch_id = batch_id or str(uuid4())
        workers = min(self._settings.bulk_max_workers, max(len(contexts), 1))

        with LogContext.bind(batch_id=batch_id):
            logger.info("bulk_calculation_started", extra={
                "item_count": len(contexts),
                "workers": workers,
            })

            if workers > 1:
                with ThreadPoolExecutor(max_workers=workers) as pool:
                    # Each task gets a copy of the current context so the
                    # batch id reaches the worker threads
                    futures = [
                        pool.submit(copy_context().run, self.try_calculate, ctx, index)
                        for index, ctx in enumerate(contexts)
                    ]
                    outcomes = [f.result() for f in futures]
            else:
                outcomes = [
                    self.try_calculate(ctx, index) for index, ctx in enumerate(contexts)
                ]

            summary = self._summarize(outcomes)
            logger.info("bulk_calculation_completed", extra={
                "item_count": summary.item_count,
                "failed_count": summary.failed_count,
                "total_tax": str(summary.total_tax),
                "grand_total": str(summary.grand_total),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })

        return BulkCalculationResult(items=tuple(outcomes), summary=summary)

    @staticmethod
    def _summarize(outcomes: Sequence[LineItemOutcome]) -> BulkSummary:
        results = [o.result for o in outcomes if o.succeeded and o.result is not None]
        return BulkSummary(
            subtotal=total(r.subtotal for r in results),
            total_discount=total(r.discount_amount for r in results),
            total_tax=total(r.tax_total for r in results),
            grand_total=total(r.grand_total for r in results),
            item_count=len(outcomes),
            failed_count=sum(1 for o in outcomes if not o.succeeded),
        )
