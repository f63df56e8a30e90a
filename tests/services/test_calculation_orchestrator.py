"""
Tests for the Calculation Orchestrator.

Covers:
- Group aggregation modes and inclusive extraction end to end
- Exemptions, reverse charge, non-effective sources
- Jurisdiction selection (all vs top) and the no-match flag
- Rule short-circuit and tier boundaries through calculate()
- Reference checks, input validation and the amount ceiling
- Bulk calculation: order, per-item failures, summary, thread pool
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from pricing_config.schema import EngineSettings, JurisdictionMode
from pricing_kernel.domain import (
    AdjustmentType,
    ApplicationType,
    CustomerRecord,
    DiscountTier,
    EntityRef,
    ExemptionType,
    LineItemStatus,
    LocationDescriptor,
    PricingMethod,
    PricingRule,
    PricingSnapshot,
    ProductRecord,
    TaxExemption,
    TaxJurisdiction,
    TaxRate,
    TaxSourceType,
    WarningCode,
)
from pricing_kernel.exceptions import (
    AmountCeilingExceededError,
    InvalidInputError,
    NotFoundError,
)
from pricing_services import CalculationOrchestrator


@pytest.fixture
def groups(make_group):
    return {
        "STACKED": make_group(ApplicationType.STACKED, group_id="STACKED"),
        "COMPOUND": make_group(
            ApplicationType.COMPOUND, apply_on_previous=True, group_id="COMPOUND",
        ),
        "HIGHEST": make_group(ApplicationType.HIGHEST, group_id="HIGHEST"),
        "AVERAGE": make_group(ApplicationType.AVERAGE, group_id="AVERAGE"),
        "INCL": make_group(ApplicationType.STACKED, is_inclusive=True, group_id="INCL"),
    }


@pytest.fixture
def snapshot(rate_10, rate_5, groups):
    return PricingSnapshot(
        tax_rates={rate_10.rate_id: rate_10, rate_5.rate_id: rate_5},
        tax_groups=groups,
        jurisdictions=(
            TaxJurisdiction(jurisdiction_id="J-US", tax_rate_id="R5", country_code="US"),
            TaxJurisdiction(
                jurisdiction_id="J-CA", tax_rate_id="R10",
                country_code="US", state_code="CA",
            ),
        ),
    )


class TestTaxAggregationModes:
    """Property 5: base 1000.00 with 10% and 5%."""

    @pytest.mark.parametrize("group_id,expected", [
        ("STACKED", "150.00"),
        ("COMPOUND", "155.00"),
        ("HIGHEST", "100.00"),
        ("AVERAGE", "75.00"),
    ])
    def test_group_override(self, snapshot, make_ctx, group_id, expected):
        orchestrator = CalculationOrchestrator(snapshot)
        result = orchestrator.calculate(
            make_ctx(base_price=Decimal("1000"), tax_group_override_id=group_id),
        )
        assert result.tax_total == Decimal(expected)
        assert result.grand_total == Decimal("1000") + Decimal(expected)
        (line,) = result.tax_breakdown
        assert line.source_type == TaxSourceType.GROUP
        assert line.source_id == group_id
        assert line.base == Decimal("1000.00")

    def test_tax_base_is_line_subtotal(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(quantity=Decimal("4"), base_price=Decimal("250"),
                     tax_group_override_id="STACKED"),
        )
        assert result.subtotal == Decimal("1000.00")
        assert result.tax_total == Decimal("150.00")


class TestInclusivePricing:

    def test_single_inclusive_rate(self, snapshot, make_ctx):
        """Property 6: 110.00 at 10% inclusive."""
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(base_price=Decimal("110"), tax_rate_override_id="R10",
                     is_tax_inclusive=True),
        )
        assert result.tax_total == Decimal("10.00")
        assert result.net_amount == Decimal("100.00")
        assert result.grand_total == Decimal("110.00")
        assert result.tax_breakdown[0].inclusive

    def test_inclusive_jurisdictions_share_one_net(self, snapshot, rate_10, make_ctx):
        state_10 = TaxRate(rate_id="S10", rate=Decimal("10"))
        orchestrator = CalculationOrchestrator(replace(
            snapshot,
            tax_rates={"R10": rate_10, "S10": state_10},
            jurisdictions=(
                TaxJurisdiction(jurisdiction_id="J-US", tax_rate_id="R10", country_code="US"),
                TaxJurisdiction(
                    jurisdiction_id="J-CA", tax_rate_id="S10",
                    country_code="US", state_code="CA",
                ),
            ),
        ))
        result = orchestrator.calculate(
            make_ctx(base_price=Decimal("120"), is_tax_inclusive=True),
        )
        assert result.net_amount == Decimal("100.00")
        assert result.tax_total == Decimal("20.00")
        assert result.grand_total == Decimal("120.00")
        assert [line.amount for line in result.tax_breakdown] == [
            Decimal("10.00"), Decimal("10.00"),
        ]
        assert all(line.base == Decimal("100.00") for line in result.tax_breakdown)

    def test_inclusive_lines_and_net_add_back_to_gross(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(base_price=Decimal("100"), is_tax_inclusive=True),
        )
        amounts = [line.amount for line in result.tax_breakdown]
        assert len(amounts) == 2
        assert sum(amounts) == result.tax_total
        assert result.net_amount + result.tax_total == Decimal("100.00")
        assert result.grand_total == Decimal("100.00")

    def test_inclusive_exemption_keeps_shared_net(self, snapshot, make_ctx):
        exemption = TaxExemption(
            exemption_id="EX1", entity=EntityRef.customer("CU1"), tax_rate_id="R10",
        )
        orchestrator = CalculationOrchestrator(replace(snapshot, exemptions=(exemption,)))
        result = orchestrator.calculate(
            make_ctx(base_price=Decimal("115"), customer_id="CU1", is_tax_inclusive=True),
        )
        ca, us = result.tax_breakdown
        assert ca.base == us.base == Decimal("100.00")
        assert ca.amount == Decimal("0.00")
        assert ca.exempted_amount == Decimal("10.00")
        assert us.amount == Decimal("5.00")
        assert result.tax_total == Decimal("5.00")

    def test_inclusive_group_ignores_context_flag(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(base_price=Decimal("1150"), tax_group_override_id="INCL"),
        )
        assert result.tax_total == Decimal("150.00")
        assert result.net_amount == Decimal("1000.00")
        assert result.grand_total == Decimal("1150.00")


class TestExemptions:

    def test_full_exemption(self, snapshot, make_ctx):
        """Property 7: tax zeroed, exempted_amount keeps the raw tax."""
        exemption = TaxExemption(
            exemption_id="EX1",
            entity=EntityRef.customer("CU1"),
            tax_rate_id="R10",
        )
        orchestrator = CalculationOrchestrator(replace(snapshot, exemptions=(exemption,)))
        result = orchestrator.calculate(
            make_ctx(base_price=Decimal("1000"), customer_id="CU1",
                     tax_rate_override_id="R10"),
        )
        assert result.tax_total == Decimal("0.00")
        assert result.tax_breakdown[0].exempted_amount == Decimal("100.00")
        assert result.applied_exemption_ids == ("EX1",)
        assert result.grand_total == Decimal("1000.00")

    def test_ambiguous_exemption_warning(self, snapshot, make_ctx, captured_logs):
        exemptions = (
            TaxExemption(
                exemption_id="EX1", entity=EntityRef.customer("CU1"),
                exemption_type=ExemptionType.PARTIAL, exemption_rate=Decimal("20"),
            ),
            TaxExemption(
                exemption_id="EX2", entity=EntityRef.product("P1"),
                exemption_type=ExemptionType.PARTIAL, exemption_rate=Decimal("50"),
            ),
        )
        orchestrator = CalculationOrchestrator(replace(snapshot, exemptions=exemptions))
        result = orchestrator.calculate(
            make_ctx(base_price=Decimal("1000"), customer_id="CU1",
                     tax_rate_override_id="R10"),
        )
        assert result.tax_total == Decimal("50.00")
        assert result.applied_exemption_ids == ("EX2",)
        assert WarningCode.AMBIGUOUS_EXEMPTION in result.warning_codes
        assert any(r["message"] == "exemption_ambiguous" for r in captured_logs())


class TestJurisdictions:

    def test_all_matching_jurisdictions_apply(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(base_price=Decimal("1000")),
        )
        assert result.jurisdiction_ids == ("J-CA", "J-US")
        assert result.tax_total == Decimal("150.00")

    def test_top_mode_uses_best_ranked_only(self, snapshot, make_ctx):
        settings = EngineSettings(jurisdiction_mode=JurisdictionMode.TOP)
        result = CalculationOrchestrator(snapshot, settings).calculate(
            make_ctx(base_price=Decimal("1000")),
        )
        assert result.jurisdiction_ids == ("J-CA",)
        assert result.tax_total == Decimal("100.00")

    def test_no_jurisdiction_matched(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(location=LocationDescriptor(country_code="DE")),
        )
        assert result.no_jurisdiction_matched
        assert result.tax_total == Decimal("0.00")
        assert result.grand_total == Decimal("100.00")
        assert result.warning_codes == (WarningCode.NO_JURISDICTION_MATCHED,)

    def test_override_skips_jurisdictions(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(location=LocationDescriptor(country_code="DE"),
                     tax_rate_override_id="R5"),
        )
        assert not result.no_jurisdiction_matched
        assert result.tax_total == Decimal("5.00")

    def test_reverse_charge_flagged_and_counted(self, snapshot, make_ctx):
        jurisdiction = TaxJurisdiction(
            jurisdiction_id="J-EU", tax_rate_id="R10",
            country_code="FR", is_reverse_charge=True,
        )
        orchestrator = CalculationOrchestrator(
            replace(snapshot, jurisdictions=(jurisdiction,)),
        )
        result = orchestrator.calculate(
            make_ctx(location=LocationDescriptor(country_code="FR")),
        )
        assert result.reverse_charge
        assert result.tax_breakdown[0].reverse_charge
        assert result.tax_total == Decimal("10.00")

    def test_source_not_effective_warns(self, snapshot, make_ctx):
        expired = TaxRate(rate_id="OLD", rate=Decimal("20"), valid_to=date(2020, 1, 1))
        orchestrator = CalculationOrchestrator(
            replace(snapshot, tax_rates={**snapshot.tax_rates, "OLD": expired}),
        )
        result = orchestrator.calculate(make_ctx(tax_rate_override_id="OLD"))
        assert result.tax_total == Decimal("0.00")
        assert result.tax_breakdown == ()
        assert result.warning_codes == (WarningCode.TAX_SOURCE_NOT_EFFECTIVE,)


class TestPricing:

    def test_exclusive_rule_short_circuit(self, snapshot, make_ctx):
        """Property 4."""
        rules = (
            PricingRule(rule_id="excl", pricing_method=PricingMethod.DISCOUNT,
                        adjustment_value=Decimal("20"), priority=100),
            PricingRule(rule_id="c1", adjustment_value=Decimal("5"),
                        can_compound=True, priority=50),
            PricingRule(rule_id="c2", adjustment_value=Decimal("5"),
                        can_compound=True, priority=10),
        )
        orchestrator = CalculationOrchestrator(replace(snapshot, rules=rules))
        result = orchestrator.calculate(make_ctx(location=LocationDescriptor()))
        assert result.applied_rule_ids == ("excl",)
        assert result.unit_price == Decimal("80.00")
        assert result.discount_amount == Decimal("20.00")

    @pytest.mark.parametrize("quantity,tier_id,unit", [
        ("9", "A", "95.00"),
        ("10", "B", "90.00"),
    ])
    def test_tier_boundary(self, snapshot, make_ctx, quantity, tier_id, unit):
        """Property 8."""
        tiers = (
            DiscountTier(tier_id="A", product_id="P1", min_quantity=Decimal("1"),
                         max_quantity=Decimal("9"), discount_value=Decimal("5")),
            DiscountTier(tier_id="B", product_id="P1", min_quantity=Decimal("10"),
                         discount_value=Decimal("10")),
        )
        orchestrator = CalculationOrchestrator(replace(snapshot, tiers=tiers))
        result = orchestrator.calculate(
            make_ctx(quantity=Decimal(quantity), location=LocationDescriptor()),
        )
        assert result.applied_tier_id == tier_id
        assert result.unit_price == Decimal(unit)

    def test_category_and_group_filled_from_catalogues(self, snapshot, make_ctx):
        rules = (
            PricingRule(rule_id="cat", category_id="C1", customer_group="vip",
                        adjustment_type=AdjustmentType.FLAT, adjustment_value=Decimal("10")),
        )
        orchestrator = CalculationOrchestrator(replace(
            snapshot,
            rules=rules,
            products={"P1": ProductRecord(product_id="P1", category_id="C1")},
            customers={"CU1": CustomerRecord(customer_id="CU1", customer_group="vip")},
        ))
        result = orchestrator.calculate(make_ctx(customer_id="CU1"))
        assert result.applied_rule_ids == ("cat",)
        assert result.unit_price == Decimal("90.00")

    def test_profit_margin(self, snapshot, make_ctx):
        orchestrator = CalculationOrchestrator(replace(
            snapshot,
            products={"P1": ProductRecord(product_id="P1", buying_price=Decimal("80"))},
        ))
        result = orchestrator.calculate(make_ctx())
        assert result.profit_margin == Decimal("20.00")
        assert result.profit_margin_percentage == Decimal("25.00")

    def test_idempotent(self, snapshot, make_ctx):
        """Property 2."""
        orchestrator = CalculationOrchestrator(snapshot)
        ctx = make_ctx(base_price=Decimal("19.99"), quantity=Decimal("3"))
        assert orchestrator.calculate(ctx) == orchestrator.calculate(ctx)

    def test_display_rounding_at_output_only(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(
            make_ctx(base_price=Decimal("0.333"), quantity=Decimal("3"),
                     tax_rate_override_id="R10"),
        )
        # Internal subtotal 0.999 rounds once to 1.00
        assert result.subtotal == Decimal("1.00")
        assert result.unit_price == Decimal("0.33")
        assert result.tax_total == Decimal("0.10")

    def test_tax_total_is_sum_of_displayed_lines(self, snapshot, make_ctx):
        half_a = TaxRate(rate_id="HA", rate=Decimal("0.5"))
        half_b = TaxRate(rate_id="HB", rate=Decimal("0.5"))
        orchestrator = CalculationOrchestrator(replace(
            snapshot,
            tax_rates={"HA": half_a, "HB": half_b},
            jurisdictions=(
                TaxJurisdiction(jurisdiction_id="J-US", tax_rate_id="HA", country_code="US"),
                TaxJurisdiction(
                    jurisdiction_id="J-CA", tax_rate_id="HB",
                    country_code="US", state_code="CA",
                ),
            ),
        ))
        result = orchestrator.calculate(make_ctx(base_price=Decimal("1.00")))
        assert [line.amount for line in result.tax_breakdown] == [
            Decimal("0.01"), Decimal("0.01"),
        ]
        assert result.tax_total == Decimal("0.02")
        assert result.grand_total == Decimal("1.02")
        assert result.net_amount + result.tax_total == result.grand_total


class TestFailures:

    @pytest.mark.parametrize("field,overrides", [
        ("quantity", {"quantity": Decimal("0")}),
        ("quantity", {"quantity": Decimal("-1")}),
        ("base_price", {"base_price": Decimal("0")}),
    ])
    def test_invalid_input(self, snapshot, make_ctx, field, overrides):
        with pytest.raises(InvalidInputError) as exc_info:
            CalculationOrchestrator(snapshot).calculate(make_ctx(**overrides))
        assert exc_info.value.field == field

    def test_amount_ceiling(self, snapshot, make_ctx):
        settings = EngineSettings(max_amount=Decimal("1000"))
        with pytest.raises(AmountCeilingExceededError) as exc_info:
            CalculationOrchestrator(snapshot, settings).calculate(
                make_ctx(base_price=Decimal("500.01"), quantity=Decimal("2")),
            )
        assert exc_info.value.code == "AMOUNT_CEILING_EXCEEDED"

    def test_amount_ceiling_applies_to_priced_subtotal(self, snapshot, make_ctx):
        settings = EngineSettings(max_amount=Decimal("1000"))
        rules = (
            PricingRule(rule_id="up", pricing_method=PricingMethod.MARKUP,
                        adjustment_value=Decimal("50")),
        )
        orchestrator = CalculationOrchestrator(replace(snapshot, rules=rules), settings)
        with pytest.raises(AmountCeilingExceededError) as exc_info:
            orchestrator.calculate(make_ctx(base_price=Decimal("800")))
        assert exc_info.value.field == "subtotal"

    def test_unknown_product(self, snapshot, make_ctx):
        orchestrator = CalculationOrchestrator(replace(snapshot, products={}))
        with pytest.raises(NotFoundError) as exc_info:
            orchestrator.calculate(make_ctx())
        assert exc_info.value.entity_type == "product"

    def test_unknown_customer(self, snapshot, make_ctx):
        orchestrator = CalculationOrchestrator(replace(snapshot, customers={}))
        with pytest.raises(NotFoundError):
            orchestrator.calculate(make_ctx(customer_id="ghost"))

    def test_catalogue_not_checked_when_absent(self, snapshot, make_ctx):
        result = CalculationOrchestrator(snapshot).calculate(make_ctx(customer_id="ghost"))
        assert result.unit_price == Decimal("100.00")

    def test_unknown_override(self, snapshot, make_ctx):
        with pytest.raises(NotFoundError) as exc_info:
            CalculationOrchestrator(snapshot).calculate(make_ctx(tax_group_override_id="NOPE"))
        assert exc_info.value.entity_type == "tax_group"


class TestBulk:

    def test_per_item_failures_do_not_abort(self, snapshot, make_ctx):
        orchestrator = CalculationOrchestrator(snapshot)
        bulk = orchestrator.calculate_bulk([
            make_ctx(product_id="A"),
            make_ctx(product_id="B", quantity=Decimal("0")),
            make_ctx(product_id="C", tax_group_override_id="NOPE"),
            make_ctx(product_id="D", base_price=Decimal("50")),
        ])
        assert [o.item_index for o in bulk.items] == [0, 1, 2, 3]
        assert [o.status for o in bulk.items] == [
            LineItemStatus.SUCCEEDED,
            LineItemStatus.FAILED,
            LineItemStatus.FAILED,
            LineItemStatus.SUCCEEDED,
        ]
        assert bulk.items[1].error_code == "INVALID_INPUT"
        assert bulk.items[2].error_code == "NOT_FOUND"
        assert not bulk.all_succeeded

        summary = bulk.summary
        assert summary.item_count == 4
        assert summary.failed_count == 2
        assert summary.subtotal == Decimal("150.00")
        assert summary.total_tax == Decimal("22.50")
        assert summary.grand_total == Decimal("172.50")

    def test_thread_pool_preserves_order(self, snapshot, make_ctx):
        orchestrator = CalculationOrchestrator(snapshot, EngineSettings(bulk_max_workers=4))
        contexts = [make_ctx(product_id=f"P{i}", quantity=Decimal(i + 1)) for i in range(12)]
        bulk = orchestrator.calculate_bulk(contexts)
        assert [o.result.product_id for o in bulk.items] == [f"P{i}" for i in range(12)]
        assert [o.result.quantity for o in bulk.items] == [Decimal(i + 1) for i in range(12)]

    def test_unhandled_exception_becomes_failed_item(self, snapshot, make_ctx, monkeypatch):
        orchestrator = CalculationOrchestrator(snapshot)

        def _boom(**kwargs):
            raise RuntimeError("resolver exploded")

        monkeypatch.setattr(orchestrator._price_resolver, "resolve", _boom)
        outcome = orchestrator.try_calculate(make_ctx(), item_index=7)
        assert outcome.status == LineItemStatus.FAILED
        assert outcome.error_code == "UNHANDLED_EXCEPTION"
        assert outcome.item_index == 7

    def test_logs_carry_batch_and_product_context(self, snapshot, make_ctx, captured_logs):
        CalculationOrchestrator(snapshot).calculate_bulk(
            [make_ctx(product_id="X1")], batch_id="batch-1",
        )
        logs = captured_logs()
        completed = [r for r in logs if r["message"] == "calculation_completed"]
        assert completed[0]["batch_id"] == "batch-1"
        assert completed[0]["product_id"] == "X1"
        assert any(r["message"] == "bulk_calculation_completed" for r in logs)

    def test_to_dict_shape(self, snapshot, make_ctx):
        bulk = CalculationOrchestrator(snapshot).calculate_bulk([make_ctx()])
        data = bulk.to_dict()
        item = data["items"][0]
        assert item["status"] == "succeeded"
        assert item["unit_price"] == "100.00"
        assert item["tax_breakdown"][0]["source_type"] == "rate"
        assert data["summary"]["item_count"] == 1
