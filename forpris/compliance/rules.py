"""Compliance rule definitions and checks.

Each check is a pure function of the current product state and its
observation history. Thresholds come from a ``RuleDefinition`` so the same
check serves any parameter set; only the Norwegian defaults ship here.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from forpris.compliance.errors import RuleConfigurationError
from forpris.compliance.models import (
    PriceObservation,
    ProductState,
    RuleResult,
    RuleType,
    ensure_utc,
    utc_now,
)
from forpris.compliance.periods import current_sale_start, detect_sale_periods

DEFAULT_LOOKBACK_DAYS = 30
DEFAULT_MAX_SALE_DAYS = 110  # ~30% of a year
DEFAULT_MIN_GAP_DAYS = 28  # 4 weeks

_ONE_DAY = timedelta(days=1)

# Identifiers written by earlier versions of the app
_RULE_TYPE_ALIASES = {
    "referencePrice": RuleType.REFERENCE_PRICE,
    "reference_price": RuleType.REFERENCE_PRICE,
    "førpris": RuleType.REFERENCE_PRICE,
    "forpris": RuleType.REFERENCE_PRICE,
    "saleDuration": RuleType.SALE_DURATION,
    "sale_duration": RuleType.SALE_DURATION,
    "salesDuration": RuleType.SALE_DURATION,
    "saleFrequency": RuleType.SALE_FREQUENCY,
    "sale_frequency": RuleType.SALE_FREQUENCY,
    "salesFrequency": RuleType.SALE_FREQUENCY,
}

_PARAMETER_ALIASES = {
    "minLookbackDays": ("minLookbackDays", "minDays", "lookbackDays"),
    "maxSaleDays": ("maxSaleDays", "maxDays"),
    "minGapDays": ("minGapDays", "minDaysBetween", "minDaysBetweenSales"),
}


def parse_rule_type(value) -> RuleType:
    """Resolve a rule type from its current or legacy identifier."""
    if isinstance(value, RuleType):
        return value
    rule_type = _RULE_TYPE_ALIASES.get(str(value))
    if rule_type is None:
        raise RuleConfigurationError(f"Unknown rule type: {value!r}")
    return rule_type


@dataclass
class RuleDefinition:
    """A jurisdiction's configured rule: type plus numeric parameters."""

    rule_type: RuleType
    parameters: dict = field(default_factory=dict)
    country_code: str = "NO"
    description: Optional[str] = None
    active: bool = True
    id: Optional[int] = None

    def int_parameter(self, name: str, default: int) -> int:
        """
        Read a positive integer parameter, accepting legacy key names.

        Raises:
            RuleConfigurationError: If the stored value is not a positive integer.
        """
        for key in _PARAMETER_ALIASES.get(name, (name,)):
            if key in self.parameters:
                raw = self.parameters[key]
                break
        else:
            return default

        label = f"{self.rule_type.value}.{name}"
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
            raise RuleConfigurationError(f"{label} must be a number, got {raw!r}")
        try:
            number = float(raw)
            value = int(number)
        except (ValueError, OverflowError) as e:
            raise RuleConfigurationError(f"{label} must be a number, got {raw!r}") from e
        if value != number:
            raise RuleConfigurationError(f"{label} must be whole days, got {raw!r}")
        if value <= 0:
            raise RuleConfigurationError(f"{label} must be positive, got {raw!r}")
        return value

    @property
    def lookback_days(self) -> int:
        return self.int_parameter("minLookbackDays", DEFAULT_LOOKBACK_DAYS)

    @property
    def max_sale_days(self) -> int:
        return self.int_parameter("maxSaleDays", DEFAULT_MAX_SALE_DAYS)

    @property
    def min_gap_days(self) -> int:
        return self.int_parameter("minGapDays", DEFAULT_MIN_GAP_DAYS)

    def check(
        self,
        product: ProductState,
        history: Sequence[PriceObservation],
        now: Optional[datetime] = None,
    ) -> RuleResult:
        """Run this rule against a product and its history."""
        return RULE_CHECKS[self.rule_type](product, history, self, now)

    def to_dict(self) -> dict:
        """Convert rule to dictionary."""
        return {
            "id": self.id,
            "countryCode": self.country_code,
            "ruleType": self.rule_type.value,
            "parameters": dict(self.parameters),
            "description": self.description,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RuleDefinition":
        """Create rule from dictionary (camelCase or snake_case keys)."""
        parameters = data.get("parameters") or {}
        if isinstance(parameters, str):
            try:
                parameters = json.loads(parameters)
            except ValueError as e:
                raise RuleConfigurationError(f"Rule parameters are not valid JSON: {parameters!r}") from e
        if not isinstance(parameters, dict):
            raise RuleConfigurationError(f"Rule parameters must be an object, got {parameters!r}")

        return cls(
            id=data.get("id"),
            rule_type=parse_rule_type(data.get("ruleType", data.get("rule_type"))),
            parameters=parameters,
            country_code=data.get("countryCode", data.get("country_code", "NO")),
            description=data.get("description"),
            active=data.get("active", True),
        )


def resolve_sale_start(
    product: ProductState, history: Sequence[PriceObservation]
) -> Optional[datetime]:
    """Sale start supplied by the caller, else derived from the history."""
    if product.sale_start_date is not None:
        return product.sale_start_date
    return current_sale_start(history)


def check_reference_price(
    product: ProductState,
    history: Sequence[PriceObservation],
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> RuleResult:
    """
    Check that the advertised reference price equals the lowest regular price
    in the ``lookback_days`` before the sale started.

    Missing data (no sale start, empty window, only sale prices in the window)
    cannot prove a violation and is treated as compliant.
    """
    if not product.is_on_sale or product.compare_at_price is None:
        return RuleResult.ok()

    sale_start = resolve_sale_start(product, history)
    if sale_start is None:
        return RuleResult.ok()

    window_start = sale_start - timedelta(days=lookback_days)
    regular_prices = [
        obs.price
        for obs in history
        if window_start <= obs.timestamp < sale_start and (obs.is_reference or not obs.on_sale)
    ]
    if not regular_prices:
        return RuleResult.ok()

    lowest_price = min(regular_prices)
    reference_price = product.compare_at_price

    if reference_price == lowest_price:
        return RuleResult.ok()

    if reference_price < lowest_price:
        return RuleResult.violation(
            RuleType.REFERENCE_PRICE,
            f"Reference price is lower than observed lowest regular price "
            f"({reference_price:.2f} < {lowest_price:.2f})",
            severity="warning",
        )

    return RuleResult.violation(
        RuleType.REFERENCE_PRICE,
        f"Reference price {reference_price:.2f} is higher than the lowest price "
        f"{lowest_price:.2f} in the {lookback_days} days before the sale started",
    )


def check_sale_duration(
    product: ProductState,
    history: Sequence[PriceObservation],
    max_days: int = DEFAULT_MAX_SALE_DAYS,
    now: Optional[datetime] = None,
) -> RuleResult:
    """Check that the current sale has not run longer than ``max_days`` whole days."""
    if not product.is_on_sale:
        return RuleResult.ok()

    sale_start = resolve_sale_start(product, history)
    if sale_start is None:
        return RuleResult.ok()

    now = ensure_utc(now) or utc_now()
    duration_days = (now - sale_start) // _ONE_DAY
    if duration_days > max_days:
        return RuleResult.violation(
            RuleType.SALE_DURATION,
            f"Sale has been running for {duration_days} days, "
            f"longer than the maximum of {max_days} days",
        )
    return RuleResult.ok()


def check_sale_frequency(
    product: ProductState,
    history: Sequence[PriceObservation],
    min_gap_days: int = DEFAULT_MIN_GAP_DAYS,
) -> RuleResult:
    """
    Check that consecutive sale periods are at least ``min_gap_days`` apart.

    Only the first violating gap (in chronological order) is reported.
    """
    periods = sorted(detect_sale_periods(history), key=lambda p: p.start)
    if len(periods) < 2:
        return RuleResult.ok()

    for previous, current in zip(periods, periods[1:]):
        gap_days = (current.start - previous.end) // _ONE_DAY
        if gap_days < min_gap_days:
            return RuleResult.violation(
                RuleType.SALE_FREQUENCY,
                f"Only {gap_days} days between the sale ending {previous.end.date().isoformat()} "
                f"and the sale starting {current.start.date().isoformat()}; "
                f"at least {min_gap_days} days are required",
            )
    return RuleResult.ok()


RuleCheck = Callable[
    [ProductState, Sequence[PriceObservation], RuleDefinition, Optional[datetime]],
    RuleResult,
]

RULE_CHECKS: dict[RuleType, RuleCheck] = {
    RuleType.REFERENCE_PRICE: lambda product, history, rule, now: check_reference_price(
        product, history, rule.lookback_days
    ),
    RuleType.SALE_DURATION: lambda product, history, rule, now: check_sale_duration(
        product, history, rule.max_sale_days, now
    ),
    RuleType.SALE_FREQUENCY: lambda product, history, rule, now: check_sale_frequency(
        product, history, rule.min_gap_days
    ),
}


def norwegian_rule_set(
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    max_sale_days: int = DEFAULT_MAX_SALE_DAYS,
    min_gap_days: int = DEFAULT_MIN_GAP_DAYS,
) -> list[RuleDefinition]:
    """Default rules for marketing of sales in Norway."""
    return [
        RuleDefinition(
            rule_type=RuleType.REFERENCE_PRICE,
            parameters={"minLookbackDays": lookback_days},
            country_code="NO",
            description=f"Reference price must be the lowest price from the last {lookback_days} days",
        ),
        RuleDefinition(
            rule_type=RuleType.SALE_DURATION,
            parameters={"maxSaleDays": max_sale_days},
            country_code="NO",
            description=f"Sales should not last longer than {max_sale_days} days",
        ),
        RuleDefinition(
            rule_type=RuleType.SALE_FREQUENCY,
            parameters={"minGapDays": min_gap_days},
            country_code="NO",
            description=f"There should be at least {min_gap_days} days between sales periods",
        ),
    ]


RULE_SETS: dict[str, Callable[..., list[RuleDefinition]]] = {
    "NO": norwegian_rule_set,
}


def default_rule_set(country_code: str, **parameters) -> list[RuleDefinition]:
    """Registered default rules for a country, or an empty list if none exist."""
    factory = RULE_SETS.get(country_code.strip().upper())
    if factory is None:
        return []
    return factory(**parameters)
