"""Shop settings, dashboard statistics and manual scans."""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from forpris.api.deps import get_database, get_scan_runner
from forpris.compliance.models import ensure_utc
from forpris.compliance.settings import get_shop_settings, update_shop_settings
from forpris.compliance.store import ComplianceStore
from forpris.worker.tasks import ScanRunner

router = APIRouter(prefix="/api", tags=["shops"])


class ShopSettingsResponse(BaseModel):
    shop: str
    enabled: bool
    tracking_frequency_hours: int
    last_scan: datetime | None
    country_rules: str

    model_config = ConfigDict(from_attributes=True)


class ShopSettingsUpdate(BaseModel):
    enabled: bool | None = None
    tracking_frequency_hours: int | None = Field(default=None, ge=1, le=168)
    country_rules: str | None = Field(default=None, min_length=2)


@router.get("/settings/{shop}", response_model=ShopSettingsResponse)
async def read_settings(shop: str, db: AsyncSession = Depends(get_database)):
    """Get settings for a shop (defaults are created on first access)."""
    shop_settings = await get_shop_settings(db, shop)
    await db.commit()
    return shop_settings


@router.patch("/settings/{shop}", response_model=ShopSettingsResponse)
async def patch_settings(
    shop: str,
    update: ShopSettingsUpdate,
    db: AsyncSession = Depends(get_database),
):
    """Update settings for a shop."""
    changes = update.model_dump(exclude_none=True)
    if "country_rules" in changes:
        changes["country_rules"] = ",".join(
            c.strip().upper() for c in changes["country_rules"].split(",") if c.strip()
        )
    shop_settings = await update_shop_settings(db, shop, **changes)
    await db.commit()
    return shop_settings


@router.get("/dashboard/stats")
async def dashboard_stats(shop: str, db: AsyncSession = Depends(get_database)):
    """Summary statistics for the admin dashboard."""
    stats = await ComplianceStore(db).summary(shop)
    shop_settings = await get_shop_settings(db, shop)
    await db.commit()

    last_scan = ensure_utc(shop_settings.last_scan)
    return {**stats, "lastScan": last_scan.isoformat() if last_scan else None}


@router.post("/scans/{shop}")
async def trigger_scan(shop: str, runner: ScanRunner = Depends(get_scan_runner)):
    """Scan a shop now."""
    summary = await runner.scan_shop(shop, trigger="manual")
    return summary.to_dict()
