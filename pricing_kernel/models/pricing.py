"""
Module: pricing_kernel.models.pricing
Responsibility: ORM persistence for pricing rules and discount tiers.
    Rows are authored by an external rule-management surface; the engine
    only ever reads them through ``SnapshotLoader``.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value objects (for ``to_dto``).

Invariants enforced:
    - Money, quantity and percentage columns are Numeric(38, 9).
    - ``days_of_week`` and ``exclude_rules`` are JSON lists; the domain
      object validates their contents on conversion.

Failure modes:
    - InvalidInputError from ``to_dto`` when a stored row is malformed
      (e.g. a percentage discount above 100).
"""

from datetime import date, time
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from pricing_kernel.db.base import TenantScopedBase, UUIDString
from pricing_kernel.domain.rules import (
    AdjustmentType,
    DiscountTier,
    PricingMethod,
    PricingRule,
    TierType,
)


class PricingRuleModel(TenantScopedBase):
    """A stored pricing rule."""

    __tablename__ = "pricing_rules"

    __table_args__ = (
        Index("idx_pricing_rule_tenant_active", "tenant_id", "is_active"),
        Index("idx_pricing_rule_product", "product_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    pricing_method: Mapped[PricingMethod] = mapped_column(String(20), nullable=False)
    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        String(20), nullable=False, default=AdjustmentType.PERCENTAGE,
    )
    adjustment_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    fixed_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    priority: Mapped[int] = mapped_column(nullable=False, default=0)

    # Scope selectors; NULL is a wildcard
    product_id: Mapped[UUID | None] = mapped_column(nullable=True)
    category_id: Mapped[UUID | None] = mapped_column(nullable=True)
    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    customer_group: Mapped[str | None] = mapped_column(String(50), nullable=True)

    valid_from: Mapped[date | None] = mapped_column(nullable=True)
    valid_to: Mapped[date | None] = mapped_column(nullable=True)
    time_from: Mapped[time | None] = mapped_column(nullable=True)
    time_to: Mapped[time | None] = mapped_column(nullable=True)
    days_of_week: Mapped[list | None] = mapped_column(JSON, nullable=True)

    min_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    can_compound: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Rule ids (as strings) that cannot apply together with this one
    exclude_rules: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> PricingRule:
        return PricingRule(
            rule_id=self.id,
            pricing_method=PricingMethod(self.pricing_method),
            adjustment_type=AdjustmentType(self.adjustment_type),
            adjustment_value=self.adjustment_value,
            priority=self.priority,
            name=self.name,
            code=self.code,
            tenant_id=self.tenant_id,
            product_id=self.product_id,
            category_id=self.category_id,
            customer_id=self.customer_id,
            customer_group=self.customer_group,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            time_from=self.time_from,
            time_to=self.time_to,
            days_of_week=frozenset(self.days_of_week) if self.days_of_week else None,
            min_quantity=self.min_quantity,
            max_quantity=self.max_quantity,
            fixed_price=self.fixed_price,
            can_compound=self.can_compound,
            exclude_rules=frozenset(UUID(str(r)) for r in self.exclude_rules or ()),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<PricingRuleModel {self.name}: {self.pricing_method} p{self.priority}>"


class DiscountTierModel(TenantScopedBase):
    """A quantity band scoped to a product or to its owning pricing rule."""

    __tablename__ = "discount_tiers"

    __table_args__ = (
        Index("idx_discount_tier_product", "product_id"),
        Index("idx_discount_tier_rule", "pricing_rule_id"),
    )

    product_id: Mapped[UUID | None] = mapped_column(nullable=True)
    pricing_rule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("pricing_rules.id", ondelete="CASCADE"),
        nullable=True,
    )

    tier_type: Mapped[TierType] = mapped_column(
        String(20), nullable=False, default=TierType.SELLING,
    )
    min_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    max_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    discount_type: Mapped[AdjustmentType] = mapped_column(
        String(20), nullable=False, default=AdjustmentType.PERCENTAGE,
    )
    discount_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    fixed_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    display_order: Mapped[int] = mapped_column(nullable=False, default=0)
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    def to_dto(self) -> DiscountTier:
        return DiscountTier(
            tier_id=self.id,
            min_quantity=self.min_quantity,
            max_quantity=self.max_quantity,
            discount_type=AdjustmentType(self.discount_type),
            discount_value=self.discount_value,
            fixed_price=self.fixed_price,
            tier_type=TierType(self.tier_type),
            product_id=self.product_id,
            pricing_rule_id=self.pricing_rule_id,
            display_order=self.display_order,
            label=self.label,
        )
