"""Compliance status routes (dashboard and storefront widget)."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from forpris.api.deps import get_database, get_scan_runner
from forpris.compliance.errors import InvalidInputError
from forpris.compliance.periods import detect_sale_periods
from forpris.compliance.store import ComplianceStore, PriceObservationStore
from forpris.compliance.models import utc_now
from forpris.config import settings
from forpris.worker.tasks import ScanRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/compliance", tags=["compliance"])


@router.get("")
async def list_compliance(
    shop: str = Query(..., min_length=1),
    non_compliant_only: bool = False,
    db: AsyncSession = Depends(get_database),
):
    """List the current evaluation of every tracked variant in a shop."""
    rows = await ComplianceStore(db).list_for_shop(shop, non_compliant_only=non_compliant_only)
    return [
        {"productId": product_id, "variantId": variant_id, **evaluation.to_dict()}
        for product_id, variant_id, evaluation in rows
    ]


@router.get("/{product_id}/{variant_id}")
async def get_compliance(
    product_id: str,
    variant_id: str,
    shop: str = Query("", description="Shop domain (added by the app proxy)"),
    db: AsyncSession = Depends(get_database),
):
    """
    Current evaluation of a variant plus its recent price history.

    Used by the storefront widget and the variant detail page.
    """
    if not shop:
        raise HTTPException(status_code=400, detail="Shop parameter is required")

    evaluation = await ComplianceStore(db).get(shop, product_id, variant_id)
    if evaluation is None:
        raise HTTPException(status_code=404, detail="No compliance data found for this product")

    history = await PriceObservationStore(db).get_history(
        shop,
        product_id,
        variant_id,
        start=utc_now() - timedelta(days=settings.widget_history_days),
    )

    return {
        "productId": product_id,
        "variantId": variant_id,
        **evaluation.to_dict(),
        "priceHistory": [
            {
                "date": obs.timestamp.isoformat(),
                "price": float(obs.price),
                "compareAtPrice": float(obs.compare_at_price) if obs.compare_at_price is not None else None,
                "isReference": obs.is_reference,
            }
            for obs in history
        ],
        "salePeriods": [period.to_dict() for period in detect_sale_periods(history)],
    }


@router.post("/{product_id}/{variant_id}/recheck")
async def recheck_compliance(
    product_id: str,
    variant_id: str,
    shop: str = Query(..., min_length=1),
    fetch_live: bool = True,
    runner: ScanRunner = Depends(get_scan_runner),
):
    """Re-evaluate a single variant on demand."""
    try:
        evaluation = await runner.recheck_variant(shop, product_id, variant_id, fetch_live=fetch_live)
    except InvalidInputError as e:
        logger.warning(f"Re-check rejected for {shop} {product_id}/{variant_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    if evaluation is None:
        raise HTTPException(status_code=404, detail="No price data found for this product")

    return {"productId": product_id, "variantId": variant_id, **evaluation.to_dict()}
