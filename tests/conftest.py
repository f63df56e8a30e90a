"""
Pytest fixtures for the pricing engine test suite.

Snapshot objects are built in memory; only the snapshot loader tests touch
a database (in-memory SQLite).
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from io import StringIO

import pytest

from pricing_kernel.domain import (
    ApplicationType,
    CalculationContext,
    LocationDescriptor,
    TaxGroup,
    TaxGroupRate,
    TaxJurisdiction,
    TaxRate,
)
from pricing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# Wednesday afternoon; day_of_week == 3
NOW = datetime(2024, 6, 12, 14, 30)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pricing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.calculate(ctx)
            logs = captured_logs()
            assert any(r["message"] == "calculation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pricing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def us_ca() -> LocationDescriptor:
    return LocationDescriptor(country_code="US", state_code="CA", city_name="San Francisco")


@pytest.fixture
def make_ctx(us_ca):
    """Factory for CalculationContext with sensible defaults."""

    def _make(**overrides) -> CalculationContext:
        values = {
            "product_id": "P1",
            "quantity": Decimal("1"),
            "base_price": Decimal("100"),
            "evaluated_at": NOW,
            "location": us_ca,
        }
        values.update(overrides)
        return CalculationContext(**values)

    return _make


@pytest.fixture
def rate_10() -> TaxRate:
    return TaxRate(rate_id="R10", rate=Decimal("10"), name="Ten")


@pytest.fixture
def rate_5() -> TaxRate:
    return TaxRate(rate_id="R5", rate=Decimal("5"), name="Five")


@pytest.fixture
def make_group(rate_10, rate_5):
    """Factory for a two-member group: 10% at sequence 1, 5% at sequence 2."""

    def _make(
        application_type: ApplicationType,
        apply_on_previous: bool = False,
        is_inclusive: bool = False,
        group_id: str = "G1",
    ) -> TaxGroup:
        return TaxGroup(
            group_id=group_id,
            members=(
                TaxGroupRate(rate=rate_10, sequence=1),
                TaxGroupRate(rate=rate_5, sequence=2, apply_on_previous=apply_on_previous),
            ),
            application_type=application_type,
            is_inclusive=is_inclusive,
            name=f"{application_type.value} group",
        )

    return _make


@pytest.fixture
def us_rate_jurisdiction() -> TaxJurisdiction:
    return TaxJurisdiction(jurisdiction_id="J-US", tax_rate_id="R10", country_code="US")
