"""
Taxation -- Tax rate, group, jurisdiction and exemption value objects.

Responsibility:
    Immutable snapshot types consumed by the jurisdiction resolver, the
    exemption evaluator and the tax aggregator, plus the two closed
    reference unions the engine matches on: ``EntityRef`` (who an
    exemption is for) and ``TaxSourceRef`` (which rate or group a tax
    line came from).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Percentage rates and exemption rates are within [0, 100].
    - A jurisdiction points at exactly one of a rate or a group.
    - A partial exemption carries an exemption rate.
    - Group membership holds resolved ``TaxRate`` objects; sequence order
      is the evaluation order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pricing_kernel.domain.values import (
    ZERO,
    ensure_non_negative,
    ensure_percentage,
    id_sort_key,
)
from pricing_kernel.exceptions import InvalidInputError


def is_within_window(
    now: datetime,
    valid_from: date | datetime | None,
    valid_to: date | datetime | None,
) -> bool:
    """
    Inclusive validity check with open bounds.

    A plain ``date`` bound is compared against ``now.date()`` so a window
    ending on a date covers that whole day.
    """
    if valid_from is not None:
        if isinstance(valid_from, datetime):
            if now < valid_from:
                return False
        elif now.date() < valid_from:
            return False
    if valid_to is not None:
        if isinstance(valid_to, datetime):
            if now > valid_to:
                return False
        elif now.date() > valid_to:
            return False
    return True


class TaxRateType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class ApplicationType(str, Enum):
    """How the members of a tax group aggregate."""

    COMPOUND = "compound"  # Sequential; flagged members see earlier taxes
    STACKED = "stacked"  # Every member on the original base
    HIGHEST = "highest"  # Only the member with the maximum rate
    AVERAGE = "average"  # Mean of the member amounts


class EntityType(str, Enum):
    CUSTOMER = "customer"
    PRODUCT = "product"
    CATEGORY = "category"
    VENDOR = "vendor"


class ExemptionType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class TaxSourceType(str, Enum):
    RATE = "rate"
    GROUP = "group"


@dataclass(frozen=True)
class EntityRef:
    """Reference to the party or item an exemption is granted to."""

    entity_type: EntityType
    entity_id: Any

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_type", EntityType(self.entity_type))

    @classmethod
    def customer(cls, entity_id: Any) -> EntityRef:
        return cls(EntityType.CUSTOMER, entity_id)

    @classmethod
    def product(cls, entity_id: Any) -> EntityRef:
        return cls(EntityType.PRODUCT, entity_id)

    @classmethod
    def category(cls, entity_id: Any) -> EntityRef:
        return cls(EntityType.CATEGORY, entity_id)

    @classmethod
    def vendor(cls, entity_id: Any) -> EntityRef:
        return cls(EntityType.VENDOR, entity_id)


@dataclass(frozen=True)
class TaxSourceRef:
    """Identifies a tax rate or a tax group."""

    source_type: TaxSourceType
    source_id: Any

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_type", TaxSourceType(self.source_type))

    @classmethod
    def rate(cls, source_id: Any) -> TaxSourceRef:
        return cls(TaxSourceType.RATE, source_id)

    @classmethod
    def group(cls, source_id: Any) -> TaxSourceRef:
        return cls(TaxSourceType.GROUP, source_id)


@dataclass(frozen=True)
class TaxRate:
    """
    A single tax rate.

    ``rate`` is a percentage (10 = 10%) for PERCENTAGE rates and a flat
    amount per line for FIXED rates.
    """

    rate_id: Any
    rate: Decimal
    rate_type: TaxRateType = TaxRateType.PERCENTAGE
    name: str = ""
    code: str | None = None
    valid_from: date | datetime | None = None
    valid_to: date | datetime | None = None
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "rate_type", TaxRateType(self.rate_type))
        if self.rate_type == TaxRateType.PERCENTAGE:
            object.__setattr__(self, "rate", ensure_percentage(self.rate, "rate"))
        else:
            object.__setattr__(self, "rate", ensure_non_negative(self.rate, "rate"))

    @property
    def is_fixed(self) -> bool:
        return self.rate_type == TaxRateType.FIXED

    @property
    def ref(self) -> TaxSourceRef:
        return TaxSourceRef.rate(self.rate_id)

    def is_effective(self, now: datetime) -> bool:
        return self.is_active and is_within_window(now, self.valid_from, self.valid_to)


@dataclass(frozen=True)
class TaxGroupRate:
    """Membership of a rate in a group."""

    rate: TaxRate
    sequence: int = 0
    apply_on_previous: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class TaxGroup:
    """An ordered bundle of rates evaluated under one aggregation algorithm."""

    group_id: Any
    members: tuple[TaxGroupRate, ...] = ()
    application_type: ApplicationType = ApplicationType.STACKED
    is_inclusive: bool = False
    name: str = ""
    code: str | None = None
    effective_from: date | datetime | None = None
    effective_to: date | datetime | None = None
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "application_type", ApplicationType(self.application_type))
        ordered = sorted(
            self.members,
            key=lambda m: (m.sequence, id_sort_key(m.rate.rate_id)),
        )
        object.__setattr__(self, "members", tuple(ordered))

        # A flat amount and a percentage have no common ordering
        if self.application_type == ApplicationType.HIGHEST:
            kinds = {m.rate.is_fixed for m in ordered}
            if len(kinds) > 1:
                raise InvalidInputError(
                    "tax group",
                    "highest groups cannot mix fixed and percentage rates",
                    self.group_id,
                )

    @property
    def ref(self) -> TaxSourceRef:
        return TaxSourceRef.group(self.group_id)

    def is_effective(self, now: datetime) -> bool:
        return self.is_active and is_within_window(now, self.effective_from, self.effective_to)

    def active_members(self, now: datetime) -> tuple[TaxGroupRate, ...]:
        """Members that are active and whose rate is effective on ``now``."""
        return tuple(
            m for m in self.members if m.is_active and m.rate.is_effective(now)
        )


@dataclass(frozen=True)
class LocationDescriptor:
    """Where the sale is taxed.  Unset fields are simply unknown."""

    country_code: str | None = None
    state_code: str | None = None
    city_name: str | None = None
    postal_code: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any(
            (self.country_code, self.state_code, self.city_name, self.postal_code)
        )


@dataclass(frozen=True)
class TaxJurisdiction:
    """
    Location-scoped binding from a geographic predicate to a rate or group.

    Unset predicate fields are wildcards.
    """

    jurisdiction_id: Any
    tax_rate_id: Any = None
    tax_group_id: Any = None
    country_code: str | None = None
    state_code: str | None = None
    city_name: str | None = None
    postal_code: str | None = None
    priority: int = 0
    is_reverse_charge: bool = False
    is_active: bool = True
    name: str = ""
    code: str | None = None

    def __post_init__(self) -> None:
        if (self.tax_rate_id is None) == (self.tax_group_id is None):
            raise InvalidInputError(
                "tax jurisdiction",
                "exactly one of tax_rate_id or tax_group_id must be set",
                self.jurisdiction_id,
            )

    @property
    def source(self) -> TaxSourceRef:
        if self.tax_group_id is not None:
            return TaxSourceRef.group(self.tax_group_id)
        return TaxSourceRef.rate(self.tax_rate_id)

    @property
    def specificity(self) -> int:
        """Count of non-wildcard location predicates."""
        return sum(
            1
            for v in (self.country_code, self.state_code, self.city_name, self.postal_code)
            if v
        )


@dataclass(frozen=True)
class TaxExemption:
    """
    A full or partial waiver of computed tax for one entity.

    Unbound exemptions (no rate and no group) cover every tax source;
    bound ones cover exactly the rate or group they name.
    """

    exemption_id: Any
    entity: EntityRef
    exemption_type: ExemptionType = ExemptionType.FULL
    exemption_rate: Decimal | None = None
    tax_rate_id: Any = None
    tax_group_id: Any = None
    valid_from: date | datetime | None = None
    valid_to: date | datetime | None = None
    is_active: bool = True
    name: str = ""
    certificate_number: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "exemption_type", ExemptionType(self.exemption_type))
        if self.exemption_rate is not None:
            object.__setattr__(
                self,
                "exemption_rate",
                ensure_percentage(self.exemption_rate, "exemption_rate"),
            )
        if self.exemption_type == ExemptionType.PARTIAL and self.exemption_rate is None:
            raise InvalidInputError(
                "exemption_rate", "partial exemption requires a rate", self.exemption_id
            )
        if self.tax_rate_id is not None and self.tax_group_id is not None:
            raise InvalidInputError(
                "tax exemption",
                "bind to a tax rate or a tax group, not both",
                self.exemption_id,
            )

    @property
    def target(self) -> TaxSourceRef | None:
        if self.tax_rate_id is not None:
            return TaxSourceRef.rate(self.tax_rate_id)
        if self.tax_group_id is not None:
            return TaxSourceRef.group(self.tax_group_id)
        return None

    @property
    def waived_rate(self) -> Decimal:
        """Percentage of the tax this exemption waives."""
        if self.exemption_type == ExemptionType.FULL:
            return Decimal("100")
        return self.exemption_rate if self.exemption_rate is not None else ZERO

    def is_valid_on(self, now: datetime) -> bool:
        return self.is_active and is_within_window(now, self.valid_from, self.valid_to)
