"""Scan orchestration: poll prices, append observations, evaluate compliance."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forpris import metrics
from forpris.compliance.engine import ComplianceEvaluator
from forpris.compliance.errors import InvalidInputError
from forpris.compliance.models import (
    ComplianceEvaluation,
    PriceObservation,
    ProductState,
    ensure_utc,
    utc_now,
)
from forpris.compliance.rules import RuleDefinition
from forpris.compliance.settings import get_rule_set, get_shop_settings
from forpris.compliance.store import ComplianceStore, PriceObservationStore
from forpris.config import settings
from forpris.db.models import ShopSettings
from forpris.db.session import AsyncSessionLocal
from forpris.ingest.shopify import ShopifyAdminClient, ShopifyAPIError, VariantPrice
from forpris.logging_config import get_logger

logger = logging.getLogger(__name__)


async def evaluate_variant(
    db: AsyncSession,
    observation: PriceObservation,
    rule_set: list[RuleDefinition],
    now: Optional[datetime] = None,
    append: bool = True,
) -> ComplianceEvaluation:
    """
    Evaluate one variant from its latest observation and store the result.

    Args:
        db: Database session (not committed here)
        observation: Latest observation of the variant
        rule_set: Rules to evaluate against
        now: Evaluation instant (defaults to the current UTC time)
        append: Record ``observation`` in the history before evaluating

    Returns:
        The evaluation as stored
    """
    now = ensure_utc(now) or utc_now()
    observations = PriceObservationStore(db)
    compliance = ComplianceStore(db)

    if append:
        await observations.append(observation)

    history = await observations.get_history(
        observation.shop,
        observation.product_id,
        observation.variant_id,
        start=now - timedelta(days=settings.history_window_days),
    )

    # An ongoing sale keeps the start recorded by earlier scans.
    previous = await compliance.get(observation.shop, observation.product_id, observation.variant_id)
    sale_start = None
    if previous is not None and previous.is_on_sale and observation.on_sale:
        sale_start = previous.sale_start_date

    product = ProductState.from_observation(observation, sale_start_date=sale_start)
    evaluation = ComplianceEvaluator(rule_set).evaluate(product, history, now)

    stored = await compliance.upsert(
        observation.shop, observation.product_id, observation.variant_id, evaluation
    )
    metrics.record_evaluation(stored.is_compliant, [issue.rule.value for issue in stored.issues])
    return stored


@dataclass
class ScanSummary:
    """Outcome of scanning one shop."""

    shop: str
    variants_seen: int = 0
    evaluated: int = 0
    non_compliant: int = 0
    skipped: int = 0
    disabled: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "shop": self.shop,
            "variantsSeen": self.variants_seen,
            "evaluated": self.evaluated,
            "nonCompliant": self.non_compliant,
            "skipped": self.skipped,
            "disabled": self.disabled,
            "errors": self.errors,
        }


class ScanRunner:
    """
    Runs shop scans and single-variant re-checks.

    Each variant is evaluated in its own session so one failing variant
    never rolls back the others.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        client_factory: Callable[[str], ShopifyAdminClient] = ShopifyAdminClient,
        max_concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.max_concurrency = max_concurrency or settings.max_concurrent_evaluations

    async def scan_due_shops(self, now: Optional[datetime] = None) -> list[ScanSummary]:
        """Scan every enabled shop whose tracking interval has elapsed (scheduled trigger)."""
        now = ensure_utc(now) or utc_now()

        async with self.session_factory() as db:
            for shop in settings.shop_domain_list:
                await get_shop_settings(db, shop)
            await db.commit()

            result = await db.execute(
                select(ShopSettings).where(ShopSettings.enabled == True)  # noqa: E712
            )
            due = [
                row.shop
                for row in result.scalars().all()
                if row.last_scan is None
                or ensure_utc(row.last_scan) + timedelta(hours=row.tracking_frequency_hours) <= now
            ]

        if not due:
            logger.info("No shops due for scanning")
            return []

        summaries = []
        for shop in due:
            summaries.append(await self.scan_shop(shop, trigger="scheduled"))
        return summaries

    async def scan_shop(self, shop: str, trigger: str = "manual") -> ScanSummary:
        """
        Poll every variant price of a shop and re-evaluate compliance.

        Args:
            shop: Shop domain
            trigger: "scheduled" | "manual"

        Returns:
            ScanSummary with counts and errors
        """
        started = time.monotonic()
        summary = ScanSummary(shop=shop)
        logger.info(f"Starting scan for {shop} (trigger: {trigger})")

        async with self.session_factory() as db:
            shop_settings = await get_shop_settings(db, shop)
            enabled = shop_settings.enabled
            rule_set = await get_rule_set(db, shop_settings.country_codes)
            await db.commit()

        if not enabled:
            logger.info(f"Tracking disabled for {shop}, skipping scan")
            summary.disabled = True
            return summary

        try:
            async with self.client_factory(shop) as client:
                variants = await client.fetch_variant_prices()
            metrics.record_fetch(True)
        except ShopifyAPIError as e:
            metrics.record_fetch(False)
            metrics.record_scan(shop, trigger, False, time.monotonic() - started)
            logger.error(f"Scan of {shop} failed while fetching prices: {e}")
            summary.errors.append(str(e))
            return summary

        summary.variants_seen = len(variants)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _process(variant: VariantPrice) -> Optional[ComplianceEvaluation]:
            async with semaphore:
                return await self._evaluate_variant_price(variant, rule_set, summary)

        results = await asyncio.gather(*(_process(v) for v in variants))

        for evaluation in results:
            if evaluation is None:
                summary.skipped += 1
                continue
            summary.evaluated += 1
            if not evaluation.is_compliant:
                summary.non_compliant += 1

        async with self.session_factory() as db:
            shop_settings = await get_shop_settings(db, shop)
            shop_settings.last_scan = utc_now()
            await db.commit()

        duration = time.monotonic() - started
        metrics.record_scan(shop, trigger, True, duration)
        logger.info(
            f"Scan of {shop} complete in {duration:.1f}s: {summary.evaluated} evaluated, "
            f"{summary.non_compliant} non-compliant, {summary.skipped} skipped"
        )
        return summary

    async def _evaluate_variant_price(
        self,
        variant: VariantPrice,
        rule_set: list[RuleDefinition],
        summary: ScanSummary,
    ) -> Optional[ComplianceEvaluation]:
        log = get_logger(
            __name__, shop=variant.shop, product_id=variant.product_id, variant_id=variant.variant_id
        )
        try:
            observation = variant.to_observation()
            async with self.session_factory() as db:
                evaluation = await evaluate_variant(db, observation, rule_set)
                await db.commit()
            return evaluation
        except InvalidInputError as e:
            log.warning(f"Skipping variant {variant.product_id}/{variant.variant_id}: {e}")
            metrics.record_variant_skipped("invalid_input")
            summary.errors.append(f"{variant.product_id}/{variant.variant_id}: {e}")
            return None
        except SQLAlchemyError as e:
            log.error(
                f"Database error evaluating {variant.product_id}/{variant.variant_id}: {e}",
                exc_info=True,
            )
            metrics.record_variant_skipped("database_error")
            summary.errors.append(f"{variant.product_id}/{variant.variant_id}: database error")
            return None
        except Exception as e:
            log.error(
                f"Failed to evaluate {variant.product_id}/{variant.variant_id}: {e}",
                exc_info=True,
            )
            metrics.record_variant_skipped("error")
            summary.errors.append(f"{variant.product_id}/{variant.variant_id}: {e}")
            return None

    async def recheck_variant(
        self,
        shop: str,
        product_id: str,
        variant_id: str,
        fetch_live: bool = True,
    ) -> Optional[ComplianceEvaluation]:
        """
        Re-evaluate a single variant on demand.

        Fetches the live price when possible; otherwise re-evaluates the
        latest stored observation. Returns None if the variant has never
        been observed and no live price could be fetched.
        """
        observation: Optional[PriceObservation] = None
        if fetch_live:
            try:
                async with self.client_factory(shop) as client:
                    variant = await client.fetch_variant(product_id, variant_id)
                observation = variant.to_observation()
                metrics.record_fetch(True)
            except ShopifyAPIError as e:
                metrics.record_fetch(False)
                logger.warning(
                    f"Live fetch failed for {shop} {product_id}/{variant_id}, "
                    f"using stored history: {e}"
                )

        async with self.session_factory() as db:
            shop_settings = await get_shop_settings(db, shop)
            rule_set = await get_rule_set(db, shop_settings.country_codes)

            append = observation is not None
            if observation is None:
                observation = await PriceObservationStore(db).get_latest(shop, product_id, variant_id)
                if observation is None:
                    await db.commit()
                    return None

            evaluation = await evaluate_variant(db, observation, rule_set, append=append)
            await db.commit()

        logger.info(
            f"Re-checked {shop} {product_id}/{variant_id}: "
            f"{'compliant' if evaluation.is_compliant else 'non-compliant'}"
        )
        return evaluation


scan_runner = ScanRunner()
