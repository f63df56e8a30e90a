"""
Module: pricing_engines.exemption
Responsibility:
    Decide whether, and by how much, tax on one rate or group is waived for
    the entities on a calculation line.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - An exemption applies only when its entity equals one of the line's
      entity references, it is active and valid on ``now``, and it is
      either unbound or bound to exactly the target being evaluated.
    - Effects never combine.  ``full`` wins over any ``partial``; among
      partials the largest waived rate wins, ties to the lowest id.
    - More than one match is logged as ``exemption_ambiguous`` and flagged
      on the returned effect.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pricing_engines.tracer import traced_engine
from pricing_kernel.domain.taxation import (
    EntityRef,
    ExemptionType,
    TaxExemption,
    TaxSourceRef,
)
from pricing_kernel.domain.values import HUNDRED, ZERO, id_sort_key
from pricing_kernel.logging_config import get_logger

logger = get_logger("engines.exemption")


class ExemptionKind(str, Enum):
    NONE = "none"
    FULL = "full"
    PARTIAL = "partial"


@dataclass(frozen=True)
class ExemptionEffect:
    """Resolved exemption outcome for one tax target."""

    kind: ExemptionKind = ExemptionKind.NONE
    rate: Decimal = ZERO  # Percentage of the tax waived
    exemption_ids: tuple[Any, ...] = ()  # The winning exemption only
    matched_ids: tuple[Any, ...] = ()
    ambiguous: bool = False

    @classmethod
    def none(cls) -> ExemptionEffect:
        return cls()

    @property
    def is_exempt(self) -> bool:
        return self.kind != ExemptionKind.NONE

    @property
    def waived_rate(self) -> Decimal:
        if self.kind == ExemptionKind.FULL:
            return HUNDRED
        return self.rate


def _precedence(exemption: TaxExemption) -> tuple:
    is_partial = exemption.exemption_type != ExemptionType.FULL
    return (is_partial, -exemption.waived_rate, id_sort_key(exemption.exemption_id))


class ExemptionEvaluator:
    """Applies the full-over-partial, most-favorable-partial policy."""

    def applies(
        self,
        exemption: TaxExemption,
        entity_refs: Sequence[EntityRef],
        target: TaxSourceRef,
        now: datetime,
    ) -> bool:
        if exemption.entity not in entity_refs:
            return False
        if not exemption.is_valid_on(now):
            return False
        bound = exemption.target
        return bound is None or bound == target

    def _choose(
        self,
        matched: list[TaxExemption],
        target: TaxSourceRef,
    ) -> ExemptionEffect:
        if not matched:
            return ExemptionEffect.none()

        winner = min(matched, key=_precedence)
        ambiguous = len(matched) > 1
        matched_ids = tuple(e.exemption_id for e in matched)
        if ambiguous:
            logger.warning("exemption_ambiguous", extra={
                "source_type": target.source_type.value,
                "source_id": target.source_id,
                "matched_exemption_ids": list(matched_ids),
                "chosen_exemption_id": winner.exemption_id,
            })

        if winner.exemption_type == ExemptionType.FULL:
            kind, rate = ExemptionKind.FULL, HUNDRED
        else:
            kind, rate = ExemptionKind.PARTIAL, winner.waived_rate
        return ExemptionEffect(
            kind=kind,
            rate=rate,
            exemption_ids=(winner.exemption_id,),
            matched_ids=matched_ids,
            ambiguous=ambiguous,
        )

    @traced_engine(
        "exemption_evaluator", "1.0",
        fingerprint_fields=("exemptions", "entity_ref", "target", "now"),
    )
    def evaluate(
        self,
        *,
        exemptions: Sequence[TaxExemption],
        entity_ref: EntityRef,
        target: TaxSourceRef,
        now: datetime,
    ) -> ExemptionEffect:
        """Effect of ``exemptions`` on ``target`` for a single entity."""
        matched = [e for e in exemptions if self.applies(e, (entity_ref,), target, now)]
        return self._choose(matched, target)

    @traced_engine(
        "exemption_evaluator", "1.0",
        fingerprint_fields=("exemptions", "entity_refs", "target", "now"),
    )
    def evaluate_all(
        self,
        *,
        exemptions: Sequence[TaxExemption],
        entity_refs: Sequence[EntityRef],
        target: TaxSourceRef,
        now: datetime,
    ) -> ExemptionEffect:
        """
        Effect on ``target`` across every entity on the line (customer,
        product, category, vendor), resolved with the same policy as a
        single entity.
        """
        refs = tuple(entity_refs)
        matched = [e for e in exemptions if self.applies(e, refs, target, now)]
        return self._choose(matched, target)
