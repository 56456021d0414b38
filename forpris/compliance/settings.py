"""Shop settings and rule configuration stored in the database."""

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forpris.compliance.errors import RuleConfigurationError
from forpris.compliance.rules import RuleDefinition, default_rule_set, parse_rule_type
from forpris.config import settings as app_settings
from forpris.db.models import ComplianceRule, ShopSettings

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("enabled", "tracking_frequency_hours", "country_rules")


def _defaults_for(country_code: str) -> list[RuleDefinition]:
    return default_rule_set(
        country_code,
        lookback_days=app_settings.default_lookback_days,
        max_sale_days=app_settings.default_max_sale_days,
        min_gap_days=app_settings.default_min_gap_days,
    )


async def get_shop_settings(db: AsyncSession, shop: str) -> ShopSettings:
    """Get settings for a shop, creating the defaults on first access."""
    result = await db.execute(select(ShopSettings).where(ShopSettings.shop == shop))
    shop_settings = result.scalar_one_or_none()

    if shop_settings is None:
        shop_settings = ShopSettings(
            shop=shop,
            enabled=True,
            tracking_frequency_hours=app_settings.scan_interval_hours,
            country_rules=app_settings.default_country_code,
        )
        db.add(shop_settings)
        await db.flush()
        logger.info(f"Created default settings for shop {shop}")

    return shop_settings


async def update_shop_settings(db: AsyncSession, shop: str, **changes) -> ShopSettings:
    """
    Update settings for a shop (created if missing).

    Args:
        db: Database session
        shop: Shop domain
        **changes: Any of enabled, tracking_frequency_hours, country_rules;
            None values are ignored

    Raises:
        ValueError: If an unknown field is passed
    """
    unknown = set(changes) - set(_UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown shop settings: {', '.join(sorted(unknown))}")

    shop_settings = await get_shop_settings(db, shop)
    for name, value in changes.items():
        if value is not None:
            setattr(shop_settings, name, value)
    await db.flush()
    return shop_settings


async def initialize_default_rules(db: AsyncSession, country_code: str = "NO") -> int:
    """
    Insert the registered default rules for a country if none are stored.

    Returns:
        Number of rules created (0 when rules already exist)
    """
    country_code = country_code.upper()
    existing = await db.execute(
        select(ComplianceRule.id).where(ComplianceRule.country_code == country_code).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        return 0

    definitions = _defaults_for(country_code)
    for definition in definitions:
        db.add(
            ComplianceRule(
                country_code=definition.country_code,
                rule_type=definition.rule_type.value,
                parameters=definition.parameters,
                description=definition.description,
                active=definition.active,
            )
        )
    await db.flush()
    logger.info(f"Created {len(definitions)} default rules for {country_code}")
    return len(definitions)


def rule_from_model(model: ComplianceRule) -> RuleDefinition:
    """Convert a stored rule row to a RuleDefinition."""
    return RuleDefinition(
        id=model.id,
        rule_type=parse_rule_type(model.rule_type),
        parameters=dict(model.parameters or {}),
        country_code=model.country_code,
        description=model.description,
        active=model.active,
    )


async def get_rule_set(db: AsyncSession, country_codes: Iterable[str]) -> list[RuleDefinition]:
    """
    Active rules for the given countries.

    Countries without stored rules fall back to their registered defaults.
    Stored rules with an unknown type are logged and left out.
    """
    rule_set: list[RuleDefinition] = []
    for country_code in country_codes:
        country_code = country_code.upper()
        result = await db.execute(
            select(ComplianceRule)
            .where(ComplianceRule.country_code == country_code)
            .order_by(ComplianceRule.rule_type.asc(), ComplianceRule.id.asc())
        )
        rows = result.scalars().all()

        if not rows:
            defaults = _defaults_for(country_code)
            if not defaults:
                logger.warning(f"No compliance rules configured for country {country_code}")
            rule_set.extend(defaults)
            continue

        for row in rows:
            if not row.active:
                continue
            try:
                rule_set.append(rule_from_model(row))
            except RuleConfigurationError as e:
                logger.warning(f"Ignoring stored rule {row.id} ({country_code}): {e}")

    return rule_set
