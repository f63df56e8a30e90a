"""
Module: pricing_engines.tax
Responsibility:
    Compute the tax a single rate or a tax group levies on a base amount,
    under the group's aggregation algorithm, for exclusive or inclusive
    pricing, and apply the resolved exemption effect.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Aggregation algorithms (``ApplicationType``):
    compound  Members run in sequence order.  A member flagged
              ``apply_on_previous`` is taxed on the base plus every tax
              computed by earlier members; others are taxed on the base.
    stacked   Every member is taxed on the base; total is the sum.
    highest   Only the member with the largest ``rate`` value is charged.
    average   Mean of the member amounts (base x mean rate for
              percentage members).

    A FIXED rate contributes its flat value once per line.

Inclusive extraction:
    Every algorithm is affine in the base: tax(b) = P*b/100 + F.  Given a
    gross amount g, the net is (g - F) / (1 + P/100) and member amounts
    are recomputed on that net.  With a single 10% rate, 110.00 splits
    into 100.00 net and 10.00 tax.

    When several inclusive sources share one gross (``compute_inclusive``)
    their P and F terms are summed first, so two 10% jurisdictions split
    120.00 into 100.00 net and 10.00 tax each.

    ``highest`` groups hold rates of one type only; otherwise the group
    would compare a flat amount against a percentage.

Invariants enforced:
    - Member amounts are quantized to the internal scale; nothing is
      rounded to display scale here.
    - Tax is never negative.  Extracted tax is gross minus net, so the two
      always add back to the gross.
    - The exemption effect applies after the raw amount is known; the
      breakdown keeps the raw amount and what was waived.

Usage:
    from pricing_engines.tax import TaxAggregator

    line = TaxAggregator().compute(
        base=Decimal("1000"), source=group, now=evaluated_at,
    )
    line.amount  # Decimal("150.0000") for a 10% + 5% stacked group
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from pricing_engines.exemption import ExemptionEffect, ExemptionKind
from pricing_engines.tracer import traced_engine
from pricing_kernel.domain.dtos import TaxBreakdownLine, TaxMemberLine
from pricing_kernel.domain.taxation import (
    ApplicationType,
    TaxGroup,
    TaxGroupRate,
    TaxRate,
    TaxSourceType,
)
from pricing_kernel.domain.values import (
    HUNDRED,
    INTERNAL_SCALE,
    ONE,
    ZERO,
    add,
    clamp_non_negative,
    div,
    percent_of,
    quantize,
    sub,
    total,
)
from pricing_kernel.logging_config import get_logger

logger = get_logger("engines.tax")


@dataclass(frozen=True)
class _Aggregate:
    amount: Decimal
    members: tuple[TaxMemberLine, ...]


@dataclass(frozen=True)
class _Source:
    source_type: TaxSourceType
    source_id: Any
    application_type: ApplicationType | None
    members: tuple[TaxGroupRate, ...]
    inclusive: bool

    @property
    def mode(self) -> ApplicationType:
        return self.application_type or ApplicationType.STACKED


class TaxAggregator:
    """Pure tax computation for one rate or group on one base."""

    def __init__(self, scale: int = INTERNAL_SCALE):
        self.scale = scale

    # ------------------------------------------------------------------
    # Member arithmetic
    # ------------------------------------------------------------------

    def rate_amount(self, rate: TaxRate, base: Decimal) -> Decimal:
        if rate.is_fixed:
            return quantize(rate.rate, self.scale)
        return quantize(percent_of(base, rate.rate), self.scale)

    def _member_line(
        self,
        member: TaxGroupRate,
        base: Decimal,
    ) -> TaxMemberLine:
        return TaxMemberLine(
            rate_id=member.rate.rate_id,
            rate=member.rate.rate,
            is_fixed=member.rate.is_fixed,
            base=quantize(base, self.scale),
            amount=self.rate_amount(member.rate, base),
            apply_on_previous=member.apply_on_previous,
        )

    def _compound(self, members: Sequence[TaxGroupRate], base: Decimal) -> _Aggregate:
        lines: list[TaxMemberLine] = []
        previous = ZERO
        for member in members:
            member_base = add(base, previous) if member.apply_on_previous else base
            line = self._member_line(member, member_base)
            lines.append(line)
            previous = add(previous, line.amount)
        return _Aggregate(amount=previous, members=tuple(lines))

    def _stacked(self, members: Sequence[TaxGroupRate], base: Decimal) -> _Aggregate:
        lines = tuple(self._member_line(m, base) for m in members)
        return _Aggregate(amount=total(line.amount for line in lines), members=lines)

    def _highest(self, members: Sequence[TaxGroupRate], base: Decimal) -> _Aggregate:
        if not members:
            return _Aggregate(amount=ZERO, members=())
        # Members share one rate type (TaxGroup enforces it) and are in
        # sequence order, so max() keeps the earliest on ties
        winner = max(members, key=lambda m: m.rate.rate)
        line = self._member_line(winner, base)
        return _Aggregate(amount=line.amount, members=(line,))

    def _average(self, members: Sequence[TaxGroupRate], base: Decimal) -> _Aggregate:
        if not members:
            return _Aggregate(amount=ZERO, members=())
        lines = tuple(self._member_line(m, base) for m in members)
        mean = div(total(line.amount for line in lines), Decimal(len(lines)))
        return _Aggregate(amount=quantize(mean, self.scale), members=lines)

    def aggregate(
        self,
        application_type: ApplicationType,
        members: Sequence[TaxGroupRate],
        base: Decimal,
    ) -> _Aggregate:
        if application_type == ApplicationType.COMPOUND:
            return self._compound(members, base)
        if application_type == ApplicationType.HIGHEST:
            return self._highest(members, base)
        if application_type == ApplicationType.AVERAGE:
            return self._average(members, base)
        return self._stacked(members, base)

    # ------------------------------------------------------------------
    # Inclusive extraction
    # ------------------------------------------------------------------

    def affine_parts(
        self,
        application_type: ApplicationType,
        members: Sequence[TaxGroupRate],
    ) -> tuple[Decimal, Decimal]:
        """``(pct, fixed)`` such that tax(b) = pct * b / 100 + fixed."""
        fixed_part = self.aggregate(application_type, members, ZERO).amount
        at_hundred = self.aggregate(application_type, members, HUNDRED).amount
        return sub(at_hundred, fixed_part), fixed_part

    def _net_from(self, gross: Decimal, pct: Decimal, fixed_part: Decimal) -> Decimal:
        remaining = sub(gross, fixed_part)
        if remaining <= ZERO:
            return ZERO
        return quantize(div(remaining, add(ONE, div(pct, HUNDRED))), self.scale)

    def extract_net(
        self,
        gross: Decimal,
        application_type: ApplicationType,
        members: Sequence[TaxGroupRate],
    ) -> Decimal:
        """Net amount whose tax plus itself equals ``gross``."""
        pct, fixed_part = self.affine_parts(application_type, members)
        return self._net_from(gross, pct, fixed_part)

    # ------------------------------------------------------------------
    # Line assembly
    # ------------------------------------------------------------------

    def _resolve(
        self,
        source: TaxRate | TaxGroup,
        now: datetime,
        inclusive: bool | None,
    ) -> _Source:
        if isinstance(source, TaxGroup):
            return _Source(
                source_type=TaxSourceType.GROUP,
                source_id=source.group_id,
                application_type=source.application_type,
                members=source.active_members(now) if source.is_effective(now) else (),
                inclusive=source.is_inclusive if inclusive is None else inclusive,
            )
        return _Source(
            source_type=TaxSourceType.RATE,
            source_id=source.rate_id,
            application_type=None,
            members=(TaxGroupRate(rate=source),) if source.is_effective(now) else (),
            inclusive=bool(inclusive),
        )

    def _line(
        self,
        resolved: _Source,
        base: Decimal,
        net: Decimal,
        raw: Decimal,
        members: tuple[TaxMemberLine, ...],
        effect: ExemptionEffect,
    ) -> TaxBreakdownLine:
        if effect.kind == ExemptionKind.FULL:
            exempted = raw
        elif effect.kind == ExemptionKind.PARTIAL:
            exempted = quantize(percent_of(raw, effect.rate), self.scale)
        else:
            exempted = ZERO
        amount = sub(raw, exempted)

        logger.debug("tax_aggregation_completed", extra={
            "source_type": resolved.source_type.value,
            "source_id": resolved.source_id,
            "application_type": (
                resolved.application_type.value if resolved.application_type else None
            ),
            "base": str(base),
            "taxable_base": str(net),
            "raw_amount": str(raw),
            "exempted_amount": str(exempted),
            "amount": str(amount),
            "inclusive": resolved.inclusive,
            "member_count": len(members),
        })

        return TaxBreakdownLine(
            source_id=resolved.source_id,
            source_type=resolved.source_type,
            base=quantize(net, self.scale),
            amount=amount,
            inclusive=resolved.inclusive,
            exempted_amount=exempted,
            gross_amount=raw,
            application_type=resolved.application_type,
            exemption_ids=effect.exemption_ids if effect.is_exempt else (),
            members=members,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    @traced_engine(
        "tax_aggregator", "1.0",
        fingerprint_fields=("base", "source", "exemption_effect", "inclusive", "now"),
    )
    def compute(
        self,
        *,
        base: Decimal,
        source: TaxRate | TaxGroup,
        now: datetime,
        exemption_effect: ExemptionEffect | None = None,
        inclusive: bool | None = None,
    ) -> TaxBreakdownLine:
        """
        Tax levied by ``source`` on ``base``.

        Args:
            base: Line amount.  Net when exclusive, gross when inclusive.
            source: A single rate or a group with resolved members.
            now: Evaluation instant; members not effective on it are skipped.
            exemption_effect: Resolved exemption for this source.
            inclusive: Whether ``base`` already contains the tax.  Defaults
                to the group's ``is_inclusive`` flag, or False for a rate.

        Returns:
            TaxBreakdownLine at internal scale.  Jurisdiction fields are
            left for the caller to fill in.
        """
        effect = exemption_effect or ExemptionEffect.none()
        base = clamp_non_negative(base)
        resolved = self._resolve(source, now, inclusive)

        if resolved.inclusive:
            net = self.extract_net(base, resolved.mode, resolved.members)
            result = self.aggregate(resolved.mode, resolved.members, net)
            # Net plus tax reproduces the gross exactly
            raw = sub(base, net)
        else:
            net = base
            result = self.aggregate(resolved.mode, resolved.members, net)
            raw = result.amount
        raw = quantize(clamp_non_negative(raw), self.scale)

        return self._line(resolved, base, net, raw, result.members, effect)

    @traced_engine(
        "tax_aggregator_inclusive", "1.0",
        fingerprint_fields=("gross", "sources", "now"),
    )
    def compute_inclusive(
        self,
        *,
        gross: Decimal,
        sources: Sequence[tuple[TaxRate | TaxGroup, ExemptionEffect | None]],
        now: datetime,
    ) -> tuple[TaxBreakdownLine, ...]:
        """
        Lines for several tax sources that are all contained in ``gross``.

        The affine parts of every source are summed, so the shared net
        satisfies net + sum(tax_i(net)) == gross.  Each source is then
        taxed on that net.  The quantization residue goes to the last
        lines so net plus every raw amount adds back to ``gross``.
        Exemptions apply after the split; they never move the net.

        With one source this matches ``compute(..., inclusive=True)``.
        """
        gross = clamp_non_negative(gross)
        resolved = [self._resolve(source, now, True) for source, _ in sources]

        pct = fixed_part = ZERO
        for item in resolved:
            p, f = self.affine_parts(item.mode, item.members)
            pct = add(pct, p)
            fixed_part = add(fixed_part, f)
        net = self._net_from(gross, pct, fixed_part)

        results = [self.aggregate(item.mode, item.members, net) for item in resolved]
        raws = [quantize(clamp_non_negative(r.amount), self.scale) for r in results]

        residue = sub(sub(gross, net), total(raws))
        for i in reversed(range(len(raws))):
            if residue == ZERO:
                break
            adjusted = clamp_non_negative(add(raws[i], residue))
            residue = sub(residue, sub(adjusted, raws[i]))
            raws[i] = adjusted

        return tuple(
            self._line(
                item, gross, net, raw, result.members,
                effect or ExemptionEffect.none(),
            )
            for item, raw, result, (_, effect) in zip(resolved, raws, results, sources)
        )
