"""
Snapshot Loader - Builds the immutable PricingSnapshot for the pure engines.

The SnapshotLoader reads one tenant's pricing rules, discount tiers and tax
configuration once and returns a ``PricingSnapshot``.  Callers build one
snapshot per batch so every item is priced against the same rule set; the
engines themselves never query.
"""

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricing_kernel.domain.dtos import CustomerRecord, PricingSnapshot, ProductRecord
from pricing_kernel.domain.taxation import ApplicationType, TaxGroup, TaxGroupRate, TaxRate
from pricing_kernel.exceptions import NotFoundError
from pricing_kernel.logging_config import get_logger
from pricing_kernel.models.pricing import DiscountTierModel, PricingRuleModel
from pricing_kernel.models.taxation import (
    TaxExemptionModel,
    TaxGroupModel,
    TaxGroupRateModel,
    TaxJurisdictionModel,
    TaxRateModel,
)

logger = get_logger("services.snapshot_loader")


class SnapshotLoader:
    """
    Loads a tenant's pricing and tax configuration into a PricingSnapshot.

    Inactive rows are loaded as well; the engines decide applicability.
    """

    def __init__(self, session: Session):
        self._session = session

    def load(
        self,
        tenant_id: UUID,
        products: Mapping[Any, ProductRecord] | None = None,
        customers: Mapping[Any, CustomerRecord] | None = None,
    ) -> PricingSnapshot:
        """
        Load every pricing and tax row for ``tenant_id``.

        Args:
            tenant_id: Owning tenant.
            products: Optional product catalogue.  When given, calculations
                for unknown product ids fail with NotFoundError.
            customers: Optional customer catalogue, same semantics.

        Raises:
            NotFoundError: A group membership names a rate that does not
                exist for the tenant.
        """
        rules = tuple(m.to_dto() for m in self._load(PricingRuleModel, tenant_id))
        tiers = tuple(m.to_dto() for m in self._load(DiscountTierModel, tenant_id))
        tax_rates = {m.id: m.to_dto() for m in self._load(TaxRateModel, tenant_id)}
        tax_groups = self._load_groups(tenant_id, tax_rates)
        jurisdictions = tuple(
            m.to_dto() for m in self._load(TaxJurisdictionModel, tenant_id)
        )
        exemptions = tuple(m.to_dto() for m in self._load(TaxExemptionModel, tenant_id))

        logger.info("pricing_snapshot_loaded", extra={
            "rule_count": len(rules),
            "tier_count": len(tiers),
            "tax_rate_count": len(tax_rates),
            "tax_group_count": len(tax_groups),
            "jurisdiction_count": len(jurisdictions),
            "exemption_count": len(exemptions),
        })

        return PricingSnapshot(
            rules=rules,
            tiers=tiers,
            tax_rates=tax_rates,
            tax_groups=tax_groups,
            jurisdictions=jurisdictions,
            exemptions=exemptions,
            products=products,
            customers=customers,
        )

    def _load(self, model: type, tenant_id: UUID) -> list:
        return list(
            self._session.execute(
                select(model).where(model.tenant_id == tenant_id).order_by(model.id)
            ).scalars().all()
        )

    def _load_groups(
        self,
        tenant_id: UUID,
        tax_rates: dict[UUID, TaxRate],
    ) -> dict[UUID, TaxGroup]:
        """Resolve group memberships against the loaded rates."""
        members_by_group: dict[UUID, list[TaxGroupRate]] = {}
        for row in self._load(TaxGroupRateModel, tenant_id):
            rate = tax_rates.get(row.tax_rate_id)
            if rate is None:
                raise NotFoundError("tax_rate", row.tax_rate_id)
            members_by_group.setdefault(row.tax_group_id, []).append(
                TaxGroupRate(
                    rate=rate,
                    sequence=row.sequence,
                    apply_on_previous=row.apply_on_previous,
                    is_active=row.is_active,
                )
            )

        groups: dict[UUID, TaxGroup] = {}
        for row in self._load(TaxGroupModel, tenant_id):
            groups[row.id] = TaxGroup(
                group_id=row.id,
                members=tuple(members_by_group.get(row.id, ())),
                application_type=ApplicationType(row.application_type),
                is_inclusive=row.is_inclusive,
                name=row.name,
                code=row.code,
                effective_from=row.effective_from,
                effective_to=row.effective_to,
                is_active=row.is_active,
            )
        return groups
