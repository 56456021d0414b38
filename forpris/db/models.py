"""SQLAlchemy database models."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class PriceHistory(Base):
    """Append-only price observations per shop/product/variant."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    compare_at_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )  # Strikethrough/reference price
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    is_reference: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_price_history_variant", "shop", "product_id", "variant_id"),
        Index("ix_price_history_timestamp", "timestamp"),
    )


class ComplianceRule(Base):
    """Configured compliance rule for a country."""

    __tablename__ = "compliance_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    country_code: Mapped[str] = mapped_column(String(8), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(32), nullable=False)
    parameters: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_compliance_rules_country_type", "country_code", "rule_type"),)


class ProductCompliance(Base):
    """Latest compliance evaluation per shop/product/variant."""

    __tablename__ = "product_compliance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reference_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    last_checked: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    is_on_sale: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sale_start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_compliant: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    issues: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    __table_args__ = (
        UniqueConstraint("shop", "product_id", "variant_id", name="uq_product_compliance_variant"),
    )


class ShopSettings(Base):
    """Per-shop tracking configuration."""

    __tablename__ = "shop_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    tracking_frequency_hours: Mapped[int] = mapped_column(Integer, default=12, nullable=False)
    last_scan: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    country_rules: Mapped[str] = mapped_column(String(64), default="NO", nullable=False)

    @property
    def country_codes(self) -> list[str]:
        return [c.strip().upper() for c in self.country_rules.split(",") if c.strip()]
