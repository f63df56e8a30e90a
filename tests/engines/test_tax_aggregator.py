"""
Tests for the Tax Aggregator.

Covers:
- Single percentage and fixed rates
- The four group algorithms on base 1000 with 10% and 5%
- Inclusive extraction for rates and groups
- Several inclusive sources sharing one net amount
- Exemption effects
- Members skipped when inactive or not effective
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from pricing_engines.exemption import ExemptionEffect, ExemptionKind
from pricing_engines.tax import TaxAggregator
from pricing_kernel.domain import (
    ApplicationType,
    TaxGroup,
    TaxGroupRate,
    TaxRate,
    TaxRateType,
    TaxSourceType,
)

NOW = datetime(2024, 6, 12, 12, 0)
BASE = Decimal("1000")


class TestSingleRate:

    def setup_method(self):
        self.aggregator = TaxAggregator()

    def test_percentage_rate(self, rate_10):
        line = self.aggregator.compute(base=BASE, source=rate_10, now=NOW)
        assert line.amount == Decimal("100")
        assert line.base == Decimal("1000")
        assert line.source_type == TaxSourceType.RATE
        assert not line.inclusive
        assert line.exempted_amount == Decimal("0")

    def test_fixed_rate_once_per_line(self):
        fixed = TaxRate(rate_id="F", rate=Decimal("2.50"), rate_type=TaxRateType.FIXED)
        line = self.aggregator.compute(base=BASE, source=fixed, now=NOW)
        assert line.amount == Decimal("2.50")

    def test_rate_not_effective_yields_zero(self):
        expired = TaxRate(rate_id="X", rate=Decimal("10"), valid_to=date(2024, 1, 1))
        line = self.aggregator.compute(base=BASE, source=expired, now=NOW)
        assert line.amount == Decimal("0")
        assert line.members == ()

    def test_inclusive_extraction(self, rate_10):
        line = self.aggregator.compute(
            base=Decimal("110"), source=rate_10, now=NOW, inclusive=True,
        )
        assert line.amount == Decimal("10")
        assert line.base == Decimal("100")
        assert line.inclusive

    def test_inclusive_fixed_rate_capped_at_gross(self):
        fixed = TaxRate(rate_id="F", rate=Decimal("5"), rate_type=TaxRateType.FIXED)
        line = self.aggregator.compute(base=Decimal("3"), source=fixed, now=NOW, inclusive=True)
        assert line.amount == Decimal("3")
        assert line.base == Decimal("0")


class TestGroupModes:
    """base = 1000.00, rates 10% and 5%."""

    def setup_method(self):
        self.aggregator = TaxAggregator()

    @pytest.mark.parametrize("mode,expected", [
        (ApplicationType.STACKED, Decimal("150")),
        (ApplicationType.HIGHEST, Decimal("100")),
        (ApplicationType.AVERAGE, Decimal("75")),
        (ApplicationType.COMPOUND, Decimal("150")),
    ])
    def test_modes(self, make_group, mode, expected):
        line = self.aggregator.compute(base=BASE, source=make_group(mode), now=NOW)
        assert line.amount == expected
        assert line.application_type == mode
        assert line.source_type == TaxSourceType.GROUP

    def test_compound_apply_on_previous(self, make_group):
        group = make_group(ApplicationType.COMPOUND, apply_on_previous=True)
        line = self.aggregator.compute(base=BASE, source=group, now=NOW)
        assert line.amount == Decimal("155")
        first, second = line.members
        assert (first.base, first.amount) == (Decimal("1000"), Decimal("100"))
        assert (second.base, second.amount) == (Decimal("1100"), Decimal("55"))

    def test_compound_flag_sees_all_earlier_taxes(self):
        rates = [TaxRate(rate_id=f"R{i}", rate=Decimal("10")) for i in range(3)]
        group = TaxGroup(
            group_id="G",
            members=(
                TaxGroupRate(rate=rates[0], sequence=1),
                TaxGroupRate(rate=rates[1], sequence=2),
                TaxGroupRate(rate=rates[2], sequence=3, apply_on_previous=True),
            ),
            application_type=ApplicationType.COMPOUND,
        )
        line = TaxAggregator().compute(base=BASE, source=group, now=NOW)
        # 100 + 100 + 10% of 1200
        assert line.amount == Decimal("320")

    def test_highest_lists_only_winner(self, make_group):
        line = self.aggregator.compute(
            base=BASE, source=make_group(ApplicationType.HIGHEST), now=NOW,
        )
        assert [m.rate_id for m in line.members] == ["R10"]

    def test_highest_tie_goes_to_lowest_sequence(self):
        a = TaxRate(rate_id="A", rate=Decimal("8"))
        b = TaxRate(rate_id="B", rate=Decimal("8"))
        group = TaxGroup(
            group_id="G",
            members=(TaxGroupRate(rate=b, sequence=2), TaxGroupRate(rate=a, sequence=1)),
            application_type=ApplicationType.HIGHEST,
        )
        line = self.aggregator.compute(base=BASE, source=group, now=NOW)
        assert [m.rate_id for m in line.members] == ["A"]

    def test_inactive_member_skipped(self, rate_10, rate_5):
        group = TaxGroup(
            group_id="G",
            members=(TaxGroupRate(rate=rate_10), TaxGroupRate(rate=rate_5, is_active=False)),
        )
        line = self.aggregator.compute(base=BASE, source=group, now=NOW)
        assert line.amount == Decimal("100")

    def test_empty_group_average(self):
        group = TaxGroup(group_id="G", application_type=ApplicationType.AVERAGE)
        line = self.aggregator.compute(base=BASE, source=group, now=NOW)
        assert line.amount == Decimal("0")


class TestInclusiveGroups:

    def setup_method(self):
        self.aggregator = TaxAggregator()

    def test_group_flag_drives_inclusive(self, make_group):
        group = make_group(ApplicationType.STACKED, is_inclusive=True)
        line = self.aggregator.compute(base=Decimal("1150"), source=group, now=NOW)
        assert line.inclusive
        assert line.base == Decimal("1000")
        assert line.amount == Decimal("150")

    def test_inclusive_compound(self, make_group):
        group = make_group(ApplicationType.COMPOUND, apply_on_previous=True, is_inclusive=True)
        line = self.aggregator.compute(base=Decimal("1155"), source=group, now=NOW)
        assert line.base == Decimal("1000")
        assert line.amount == Decimal("155")

    def test_net_plus_tax_equals_gross(self, make_group):
        group = make_group(ApplicationType.AVERAGE, is_inclusive=True)
        gross = Decimal("99.99")
        line = self.aggregator.compute(base=gross, source=group, now=NOW)
        assert line.base + line.amount == gross


class TestSharedInclusiveNet:

    def setup_method(self):
        self.aggregator = TaxAggregator()

    def test_two_rates_split_one_gross(self, rate_10):
        other_10 = TaxRate(rate_id="S10", rate=Decimal("10"))
        lines = self.aggregator.compute_inclusive(
            gross=Decimal("120"),
            sources=[(rate_10, None), (other_10, None)],
            now=NOW,
        )
        assert [line.base for line in lines] == [Decimal("100"), Decimal("100")]
        assert [line.amount for line in lines] == [Decimal("10"), Decimal("10")]
        assert all(line.inclusive for line in lines)

    def test_residue_keeps_net_plus_tax_at_gross(self, rate_10, rate_5):
        gross = Decimal("100")
        lines = self.aggregator.compute_inclusive(
            gross=gross, sources=[(rate_10, None), (rate_5, None)], now=NOW,
        )
        net = lines[0].base
        assert net == Decimal("86.9565")
        assert net + sum(line.amount for line in lines) == gross

    def test_fixed_and_group_parts_are_summed(self, make_group):
        flat = TaxRate(rate_id="F", rate=Decimal("5"), rate_type=TaxRateType.FIXED)
        group = make_group(ApplicationType.STACKED)
        lines = self.aggregator.compute_inclusive(
            gross=Decimal("1155"), sources=[(group, None), (flat, None)], now=NOW,
        )
        # 1000 net + 150 group tax + 5 flat
        assert lines[0].base == Decimal("1000")
        assert lines[0].amount == Decimal("150")
        assert lines[1].amount == Decimal("5")

    def test_single_source_matches_compute(self, make_group):
        group = make_group(ApplicationType.AVERAGE, is_inclusive=True)
        gross = Decimal("99.99")
        (shared,) = self.aggregator.compute_inclusive(
            gross=gross, sources=[(group, None)], now=NOW,
        )
        alone = self.aggregator.compute(base=gross, source=group, now=NOW)
        assert shared == alone

    def test_exemption_applied_after_split(self, rate_10, rate_5):
        effect = ExemptionEffect(
            kind=ExemptionKind.FULL, rate=Decimal("100"), exemption_ids=("E",),
        )
        lines = self.aggregator.compute_inclusive(
            gross=Decimal("115"), sources=[(rate_10, effect), (rate_5, None)], now=NOW,
        )
        assert lines[0].base == lines[1].base == Decimal("100")
        assert lines[0].amount == Decimal("0")
        assert lines[0].exempted_amount == Decimal("10")
        assert lines[1].amount == Decimal("5")


class TestExemptionEffect:

    def setup_method(self):
        self.aggregator = TaxAggregator()

    def test_full_exemption(self, rate_10):
        effect = ExemptionEffect(
            kind=ExemptionKind.FULL, rate=Decimal("100"), exemption_ids=("E",),
        )
        line = self.aggregator.compute(
            base=BASE, source=rate_10, now=NOW, exemption_effect=effect,
        )
        assert line.amount == Decimal("0")
        assert line.exempted_amount == Decimal("100")
        assert line.gross_amount == Decimal("100")
        assert line.exemption_ids == ("E",)

    def test_partial_exemption(self, make_group):
        effect = ExemptionEffect(
            kind=ExemptionKind.PARTIAL, rate=Decimal("40"), exemption_ids=("E",),
        )
        line = self.aggregator.compute(
            base=BASE,
            source=make_group(ApplicationType.STACKED),
            now=NOW,
            exemption_effect=effect,
        )
        assert line.exempted_amount == Decimal("60")
        assert line.amount == Decimal("90")
