"""
Module: pricing_engines.jurisdiction
Responsibility:
    Match a location descriptor against tax jurisdictions and rank the
    matches, most authoritative first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Geocoding of free-text
    addresses happens upstream; only structured codes are compared.

Invariants enforced:
    - An unset jurisdiction field is a wildcard; every set field must equal
      the location's value.  City names compare case-insensitively.
    - Inactive jurisdictions never match.
    - Ranking is priority descending, then specificity descending, then
      jurisdiction id ascending.
"""

from __future__ import annotations

from collections.abc import Sequence

from pricing_engines.tracer import traced_engine
from pricing_kernel.domain.taxation import LocationDescriptor, TaxJurisdiction
from pricing_kernel.domain.values import id_sort_key
from pricing_kernel.logging_config import get_logger

logger = get_logger("engines.jurisdiction")


def _norm(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _field_matches(predicate: str | None, actual: str | None, fold: bool = False) -> bool:
    predicate = _norm(predicate)
    if predicate is None:
        return True
    actual = _norm(actual)
    if actual is None:
        return False
    if fold:
        return predicate.casefold() == actual.casefold()
    return predicate == actual


def ranking_key(jurisdiction: TaxJurisdiction) -> tuple:
    return (
        -jurisdiction.priority,
        -jurisdiction.specificity,
        id_sort_key(jurisdiction.jurisdiction_id),
    )


class JurisdictionResolver:
    """Location predicate matching and deterministic ranking."""

    def matches_location(
        self,
        jurisdiction: TaxJurisdiction,
        location: LocationDescriptor,
    ) -> bool:
        if not jurisdiction.is_active:
            return False
        return (
            _field_matches(jurisdiction.country_code, location.country_code)
            and _field_matches(jurisdiction.state_code, location.state_code)
            and _field_matches(jurisdiction.city_name, location.city_name, fold=True)
            and _field_matches(jurisdiction.postal_code, location.postal_code)
        )

    @traced_engine("jurisdiction_resolver", "1.0", fingerprint_fields=("jurisdictions", "location"))
    def resolve(
        self,
        *,
        jurisdictions: Sequence[TaxJurisdiction],
        location: LocationDescriptor,
    ) -> list[TaxJurisdiction]:
        """Every matching jurisdiction, best ranked first."""
        matched = sorted(
            (j for j in jurisdictions if self.matches_location(j, location)),
            key=ranking_key,
        )

        logger.debug("jurisdictions_resolved", extra={
            "country_code": location.country_code,
            "state_code": location.state_code,
            "jurisdiction_count": len(jurisdictions),
            "matched_ids": [j.jurisdiction_id for j in matched],
        })
        return matched
