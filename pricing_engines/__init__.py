"""
Module: pricing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    pricing and tax engines.  This is the import surface for
    pricing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import pricing_kernel (domain, exceptions, logging_config).
    MUST NOT import pricing_services or pricing_config.

Invariants enforced:
    - Purity: engines never call ``datetime.now()``; the evaluation instant
      is always an explicit argument.
    - Decimal-only arithmetic through ``pricing_kernel.domain.values``.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine entry point is traced via ``@traced_engine`` (see
    ``pricing_engines.tracer``), emitting PRICING_ENGINE_TRACE records with
    engine name, version, input fingerprint and duration.
"""

from pricing_engines.exemption import ExemptionEffect, ExemptionEvaluator, ExemptionKind
from pricing_engines.jurisdiction import JurisdictionResolver
from pricing_engines.price_resolver import PriceResolution, PriceResolver
from pricing_engines.rule_filter import RuleCandidateFilter, day_of_week
from pricing_engines.tax import TaxAggregator
from pricing_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "RuleCandidateFilter",
    "day_of_week",
    "PriceResolver",
    "PriceResolution",
    "JurisdictionResolver",
    "ExemptionEvaluator",
    "ExemptionEffect",
    "ExemptionKind",
    "TaxAggregator",
    "traced_engine",
    "compute_input_fingerprint",
]
