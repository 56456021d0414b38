"""Value types shared by the sale period detector, rules and evaluator.

Everything here is pure data: no database or network access. Prices are
``Decimal`` and instants are timezone-aware UTC ``datetime`` objects.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from forpris.compliance.errors import InvalidInputError


class RuleType(str, Enum):
    """Compliance rules known to the engine."""

    REFERENCE_PRICE = "referencePrice"  # compare-at price == lowest price in look-back window
    SALE_DURATION = "saleDuration"  # sale has not run longer than N days
    SALE_FREQUENCY = "saleFrequency"  # at least N days between sale periods


def to_decimal(value) -> Optional[Decimal]:
    """Coerce a price to Decimal (None passes through)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_on_sale_price(price: Decimal, compare_at_price: Optional[Decimal]) -> bool:
    """A variant is on sale only when its compare-at price is strictly above its price."""
    return compare_at_price is not None and compare_at_price > price


@dataclass(frozen=True)
class PriceObservation:
    """A variant had ``price`` (and optionally ``compare_at_price``) at ``timestamp``."""

    shop: str
    product_id: str
    variant_id: str
    price: Decimal
    compare_at_price: Optional[Decimal]
    timestamp: datetime
    is_reference: bool = False  # Explicit regular-price checkpoint

    def __post_init__(self):
        price = to_decimal(self.price)
        if price is None or price <= 0:
            raise InvalidInputError(
                f"Observation price must be positive, got {self.price!r} "
                f"({self.product_id}/{self.variant_id} at {self.timestamp})"
            )
        object.__setattr__(self, "price", price)
        object.__setattr__(self, "compare_at_price", to_decimal(self.compare_at_price))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def on_sale(self) -> bool:
        return is_on_sale_price(self.price, self.compare_at_price)


@dataclass
class ProductState:
    """Current price state of a variant, as supplied to the rules."""

    shop: str
    product_id: str
    variant_id: str
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    is_on_sale: Optional[bool] = None
    sale_start_date: Optional[datetime] = None

    def __post_init__(self):
        self.price = to_decimal(self.price)
        if self.price is None or self.price <= 0:
            raise InvalidInputError(
                f"Product price must be positive, got {self.price!r} "
                f"({self.product_id}/{self.variant_id})"
            )
        self.compare_at_price = to_decimal(self.compare_at_price)
        discounted = is_on_sale_price(self.price, self.compare_at_price)
        # A caller cannot declare a sale without a real discount.
        self.is_on_sale = discounted if self.is_on_sale is None else (self.is_on_sale and discounted)
        self.sale_start_date = ensure_utc(self.sale_start_date)

    @classmethod
    def from_observation(
        cls,
        observation: PriceObservation,
        sale_start_date: Optional[datetime] = None,
    ) -> "ProductState":
        """Build the current state from the latest observation of a variant."""
        return cls(
            shop=observation.shop,
            product_id=observation.product_id,
            variant_id=observation.variant_id,
            price=observation.price,
            compare_at_price=observation.compare_at_price,
            sale_start_date=sale_start_date,
        )


@dataclass(frozen=True)
class SalePeriod:
    """A maximal run of consecutive on-sale observations."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp <= self.end

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class ComplianceIssue:
    """A single rule violation."""

    rule: RuleType
    message: str
    severity: str = "violation"  # "violation" | "warning"

    def to_dict(self) -> dict:
        return {"rule": self.rule.value, "message": self.message, "severity": self.severity}

    @classmethod
    def from_dict(cls, data: dict) -> "ComplianceIssue":
        return cls(
            rule=RuleType(data["rule"]),
            message=data.get("message", ""),
            severity=data.get("severity", "violation"),
        )


@dataclass
class RuleResult:
    """Outcome of one rule check."""

    issues: list[ComplianceIssue] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return not self.issues

    @classmethod
    def ok(cls) -> "RuleResult":
        return cls()

    @classmethod
    def violation(cls, rule: RuleType, message: str, severity: str = "violation") -> "RuleResult":
        return cls(issues=[ComplianceIssue(rule=rule, message=message, severity=severity)])


@dataclass
class ComplianceEvaluation:
    """Aggregated verdict for one variant at one point in time."""

    is_on_sale: bool
    reference_price: Optional[Decimal]
    sale_start_date: Optional[datetime]
    last_checked: datetime
    issues: list[ComplianceIssue] = field(default_factory=list)

    @property
    def is_compliant(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        """Serialise to the external evaluation shape."""
        return {
            "isCompliant": self.is_compliant,
            "isOnSale": self.is_on_sale,
            "referencePrice": float(self.reference_price) if self.reference_price is not None else None,
            "saleStartDate": self.sale_start_date.isoformat() if self.sale_start_date else None,
            "lastChecked": self.last_checked.isoformat(),
            "issues": [issue.to_dict() for issue in self.issues],
        }
