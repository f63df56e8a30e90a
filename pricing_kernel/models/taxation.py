"""
Module: pricing_kernel.models.taxation
Responsibility: ORM persistence for tax rates, tax groups and their
    memberships, tax jurisdictions and tax exemptions.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value objects.

Invariants enforced:
    - A jurisdiction references exactly one of a rate or a group
      (ck_tax_jurisdiction_one_source).
    - A rate appears at most once in a group (uq_tax_group_rate).
    - Group membership resolution happens in ``SnapshotLoader``, which
      fails with NotFoundError when a membership names an unknown rate.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pricing_kernel.db.base import TenantScopedBase, UUIDString
from pricing_kernel.domain.taxation import (
    EntityRef,
    EntityType,
    ExemptionType,
    TaxExemption,
    TaxJurisdiction,
    TaxRate,
    TaxRateType,
)


class TaxRateModel(TenantScopedBase):
    __tablename__ = "tax_rates"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Percentage (10 = 10%) or a flat amount for fixed rates
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    rate_type: Mapped[TaxRateType] = mapped_column(
        String(20), nullable=False, default=TaxRateType.PERCENTAGE,
    )
    valid_from: Mapped[date | None] = mapped_column(nullable=True)
    valid_to: Mapped[date | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> TaxRate:
        return TaxRate(
            rate_id=self.id,
            rate=self.rate,
            rate_type=TaxRateType(self.rate_type),
            name=self.name,
            code=self.code,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            is_active=self.is_active,
        )


class TaxGroupModel(TenantScopedBase):
    __tablename__ = "tax_groups"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    application_type: Mapped[str] = mapped_column(String(20), nullable=False, default="stacked")
    is_inclusive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effective_from: Mapped[date | None] = mapped_column(nullable=True)
    effective_to: Mapped[date | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class TaxGroupRateModel(TenantScopedBase):
    """Membership of a rate in a group."""

    __tablename__ = "tax_group_rates"

    __table_args__ = (
        UniqueConstraint("tax_group_id", "tax_rate_id", name="uq_tax_group_rate"),
    )

    tax_group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tax_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    tax_rate_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False, default=0)
    apply_on_previous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class TaxJurisdictionModel(TenantScopedBase):
    __tablename__ = "tax_jurisdictions"

    __table_args__ = (
        CheckConstraint(
            "(tax_rate_id IS NULL) <> (tax_group_id IS NULL)",
            name="ck_tax_jurisdiction_one_source",
        ),
        Index("idx_tax_jurisdiction_country", "country_code", "state_code"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    state_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    city_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    tax_rate_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("tax_rates.id"), nullable=True,
    )
    tax_group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("tax_groups.id"), nullable=True,
    )
    priority: Mapped[int] = mapped_column(nullable=False, default=0)
    is_reverse_charge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> TaxJurisdiction:
        return TaxJurisdiction(
            jurisdiction_id=self.id,
            tax_rate_id=self.tax_rate_id,
            tax_group_id=self.tax_group_id,
            country_code=self.country_code,
            state_code=self.state_code,
            city_name=self.city_name,
            postal_code=self.postal_code,
            priority=self.priority,
            is_reverse_charge=self.is_reverse_charge,
            is_active=self.is_active,
            name=self.name,
            code=self.code,
        )


class TaxExemptionModel(TenantScopedBase):
    __tablename__ = "tax_exemptions"

    __table_args__ = (
        Index("idx_tax_exemption_entity", "entity_type", "entity_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    certificate_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_type: Mapped[EntityType] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    exemption_type: Mapped[ExemptionType] = mapped_column(
        String(20), nullable=False, default=ExemptionType.FULL,
    )
    exemption_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_rate_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("tax_rates.id"), nullable=True,
    )
    tax_group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("tax_groups.id"), nullable=True,
    )
    valid_from: Mapped[date | None] = mapped_column(nullable=True)
    valid_to: Mapped[date | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> TaxExemption:
        return TaxExemption(
            exemption_id=self.id,
            entity=EntityRef(EntityType(self.entity_type), self.entity_id),
            exemption_type=ExemptionType(self.exemption_type),
            exemption_rate=self.exemption_rate,
            tax_rate_id=self.tax_rate_id,
            tax_group_id=self.tax_group_id,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            is_active=self.is_active,
            name=self.name,
            certificate_number=self.certificate_number,
        )
