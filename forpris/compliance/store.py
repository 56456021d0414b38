"""Database access for price observations and compliance evaluations.

Store methods flush but never commit; the caller owns the transaction.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from forpris.compliance.models import (
    ComplianceEvaluation,
    ComplianceIssue,
    PriceObservation,
    ensure_utc,
)
from forpris.compliance.rules import parse_rule_type
from forpris.db.models import PriceHistory, ProductCompliance

logger = logging.getLogger(__name__)


def carry_forward_sale_start(
    previous: Optional[ComplianceEvaluation],
    current: ComplianceEvaluation,
) -> ComplianceEvaluation:
    """
    Keep the stored sale start while a sale stays open across scans.

    If the variant was on sale at the previous evaluation and still is, the
    previous ``sale_start_date`` wins over the freshly derived one.
    """
    if (
        previous is not None
        and previous.is_on_sale
        and current.is_on_sale
        and previous.sale_start_date is not None
    ):
        current.sale_start_date = previous.sale_start_date
    return current


def _to_observation(row: PriceHistory) -> PriceObservation:
    return PriceObservation(
        shop=row.shop,
        product_id=row.product_id,
        variant_id=row.variant_id,
        price=row.price,
        compare_at_price=row.compare_at_price,
        timestamp=ensure_utc(row.timestamp),
        is_reference=row.is_reference,
    )


def _to_evaluation(row: ProductCompliance) -> ComplianceEvaluation:
    return ComplianceEvaluation(
        is_on_sale=row.is_on_sale,
        reference_price=row.reference_price,
        sale_start_date=ensure_utc(row.sale_start_date),
        last_checked=ensure_utc(row.last_checked),
        issues=[
            ComplianceIssue.from_dict({**item, "rule": parse_rule_type(item["rule"])})
            for item in (row.issues or [])
        ],
    )


class PriceObservationStore:
    """Append-only log of price observations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, observation: PriceObservation) -> None:
        """Record one observation."""
        await self.append_many([observation])

    async def append_many(self, observations: Iterable[PriceObservation]) -> int:
        """Record several observations. Returns the number written."""
        count = 0
        for obs in observations:
            self.db.add(
                PriceHistory(
                    shop=obs.shop,
                    product_id=obs.product_id,
                    variant_id=obs.variant_id,
                    price=obs.price,
                    compare_at_price=obs.compare_at_price,
                    timestamp=obs.timestamp,
                    is_reference=obs.is_reference,
                )
            )
            count += 1
        await self.db.flush()
        return count

    async def get_history(
        self,
        shop: str,
        product_id: str,
        variant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[PriceObservation]:
        """
        Get observations for a variant in ascending timestamp order.

        Args:
            shop: Shop domain
            product_id: Product ID
            variant_id: Variant ID
            start: Inclusive lower bound (None = unbounded)
            end: Inclusive upper bound (None = unbounded)

        Returns:
            List of PriceObservation ordered oldest first
        """
        query = select(PriceHistory).where(
            PriceHistory.shop == shop,
            PriceHistory.product_id == product_id,
            PriceHistory.variant_id == variant_id,
        )
        if start is not None:
            query = query.where(PriceHistory.timestamp >= start)
        if end is not None:
            query = query.where(PriceHistory.timestamp <= end)
        query = query.order_by(PriceHistory.timestamp.asc(), PriceHistory.id.asc())

        result = await self.db.execute(query)
        return [_to_observation(row) for row in result.scalars().all()]

    async def get_latest(
        self, shop: str, product_id: str, variant_id: str
    ) -> Optional[PriceObservation]:
        """Get the most recent observation for a variant."""
        query = (
            select(PriceHistory)
            .where(
                PriceHistory.shop == shop,
                PriceHistory.product_id == product_id,
                PriceHistory.variant_id == variant_id,
            )
            .order_by(PriceHistory.timestamp.desc(), PriceHistory.id.desc())
            .limit(1)
        )
        result = await self.db.execute(query)
        row = result.scalar_one_or_none()
        return _to_observation(row) if row else None


class ComplianceStore:
    """Current compliance evaluation per variant."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(
        self, shop: str, product_id: str, variant_id: str
    ) -> Optional[ProductCompliance]:
        result = await self.db.execute(
            select(ProductCompliance).where(
                ProductCompliance.shop == shop,
                ProductCompliance.product_id == product_id,
                ProductCompliance.variant_id == variant_id,
            )
        )
        return result.scalar_one_or_none()

    async def get(
        self, shop: str, product_id: str, variant_id: str
    ) -> Optional[ComplianceEvaluation]:
        """Get the stored evaluation for a variant, if any."""
        row = await self._get_row(shop, product_id, variant_id)
        return _to_evaluation(row) if row else None

    async def upsert(
        self,
        shop: str,
        product_id: str,
        variant_id: str,
        evaluation: ComplianceEvaluation,
    ) -> ComplianceEvaluation:
        """
        Store ``evaluation`` as the variant's current evaluation.

        An ongoing sale keeps the sale start recorded by the previous
        evaluation. Returns the evaluation as stored.
        """
        row = await self._get_row(shop, product_id, variant_id)
        previous = _to_evaluation(row) if row else None
        evaluation = carry_forward_sale_start(previous, evaluation)

        if row is None:
            row = ProductCompliance(shop=shop, product_id=product_id, variant_id=variant_id)
            self.db.add(row)

        row.reference_price = evaluation.reference_price
        row.last_checked = evaluation.last_checked
        row.is_on_sale = evaluation.is_on_sale
        row.sale_start_date = evaluation.sale_start_date
        row.is_compliant = evaluation.is_compliant
        row.issues = [issue.to_dict() for issue in evaluation.issues]

        await self.db.flush()
        return evaluation

    async def list_for_shop(
        self, shop: str, non_compliant_only: bool = False
    ) -> list[tuple[str, str, ComplianceEvaluation]]:
        """List (product_id, variant_id, evaluation) for every variant of a shop."""
        query = select(ProductCompliance).where(ProductCompliance.shop == shop)
        if non_compliant_only:
            query = query.where(ProductCompliance.is_compliant == False)  # noqa: E712
        query = query.order_by(ProductCompliance.product_id, ProductCompliance.variant_id)

        result = await self.db.execute(query)
        return [
            (row.product_id, row.variant_id, _to_evaluation(row))
            for row in result.scalars().all()
        ]

    async def summary(self, shop: str) -> dict:
        """Counts of tracked, non-compliant and on-sale variants for a shop."""
        result = await self.db.execute(
            select(
                func.count(ProductCompliance.id),
                func.count(ProductCompliance.id).filter(ProductCompliance.is_compliant == False),  # noqa: E712
                func.count(ProductCompliance.id).filter(ProductCompliance.is_on_sale == True),  # noqa: E712
            ).where(ProductCompliance.shop == shop)
        )
        total, non_compliant, on_sale = result.one()
        total = total or 0
        non_compliant = non_compliant or 0

        compliance_rate = (
            round((total - non_compliant) / total * 100, 1) if total > 0 else 100.0
        )
        return {
            "totalProductCount": total,
            "nonCompliantCount": non_compliant,
            "onSaleCount": on_sale or 0,
            "complianceRate": compliance_rate,
        }
