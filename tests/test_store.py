"""Tests for the observation and compliance stores."""

from datetime import timedelta
from decimal import Decimal

import pytest

from forpris.compliance.models import ComplianceEvaluation, ComplianceIssue, RuleType
from forpris.compliance.store import (
    ComplianceStore,
    PriceObservationStore,
    carry_forward_sale_start,
)
from forpris.db.models import ProductCompliance

from conftest import NOW, SHOP, daily, observation


def evaluation(on_sale=True, start_day=-10, issues=None, checked=NOW):
    return ComplianceEvaluation(
        is_on_sale=on_sale,
        reference_price=Decimal("100") if on_sale else None,
        sale_start_date=NOW + timedelta(days=start_day) if on_sale else None,
        last_checked=checked,
        issues=issues or [],
    )


@pytest.mark.asyncio
async def test_history_is_returned_in_ascending_order(db_session):
    store = PriceObservationStore(db_session)
    history = daily(-5, 0, 100)

    written = await store.append_many(reversed(history))
    await db_session.commit()

    result = await store.get_history(SHOP, "1", "11")
    assert written == 6
    assert [obs.timestamp for obs in result] == [obs.timestamp for obs in history]
    assert all(obs.timestamp.tzinfo is not None for obs in result)


@pytest.mark.asyncio
async def test_history_is_scoped_to_variant_and_window(db_session):
    store = PriceObservationStore(db_session)
    await store.append_many(daily(-10, 0, 100))
    await store.append_many(daily(-10, 0, 50, variant_id="12"))
    await db_session.commit()

    result = await store.get_history(SHOP, "1", "11", start=NOW - timedelta(days=3))

    assert len(result) == 4
    assert {obs.price for obs in result} == {Decimal("100")}


@pytest.mark.asyncio
async def test_observation_fields_round_trip(db_session):
    store = PriceObservationStore(db_session)
    await store.append(observation(0, "79.90", "99.90", is_reference=True))
    await db_session.commit()

    latest = await store.get_latest(SHOP, "1", "11")

    assert latest.price == Decimal("79.90")
    assert latest.compare_at_price == Decimal("99.90")
    assert latest.is_reference is True
    assert latest.timestamp == NOW
    assert await store.get_latest(SHOP, "1", "99") is None


@pytest.mark.asyncio
async def test_upsert_creates_and_replaces(db_session):
    store = ComplianceStore(db_session)
    issue = ComplianceIssue(rule=RuleType.SALE_DURATION, message="too long")

    await store.upsert(SHOP, "1", "11", evaluation(on_sale=False))
    await store.upsert(SHOP, "1", "11", evaluation(on_sale=True, issues=[issue]))
    await db_session.commit()

    stored = await store.get(SHOP, "1", "11")
    assert stored.is_on_sale
    assert not stored.is_compliant
    assert stored.issues == [issue]
    assert len(await store.list_for_shop(SHOP)) == 1


@pytest.mark.asyncio
async def test_upsert_keeps_sale_start_while_sale_continues(db_session):
    store = ComplianceStore(db_session)

    await store.upsert(SHOP, "1", "11", evaluation(start_day=-20))
    stored = await store.upsert(SHOP, "1", "11", evaluation(start_day=-3, checked=NOW + timedelta(days=1)))
    await db_session.commit()

    assert stored.sale_start_date == NOW - timedelta(days=20)
    assert (await store.get(SHOP, "1", "11")).sale_start_date == NOW - timedelta(days=20)


@pytest.mark.asyncio
async def test_upsert_resets_sale_start_after_sale_ends(db_session):
    store = ComplianceStore(db_session)

    await store.upsert(SHOP, "1", "11", evaluation(start_day=-20))
    await store.upsert(SHOP, "1", "11", evaluation(on_sale=False))
    stored = await store.upsert(SHOP, "1", "11", evaluation(start_day=-1))

    assert stored.sale_start_date == NOW - timedelta(days=1)


def test_carry_forward_without_previous():
    current = evaluation(start_day=-2)
    assert carry_forward_sale_start(None, current).sale_start_date == NOW - timedelta(days=2)


@pytest.mark.asyncio
async def test_list_and_summary(db_session):
    store = ComplianceStore(db_session)
    issue = ComplianceIssue(rule=RuleType.REFERENCE_PRICE, message="too high")

    await store.upsert(SHOP, "1", "11", evaluation(issues=[issue]))
    await store.upsert(SHOP, "1", "12", evaluation(on_sale=False))
    await store.upsert(SHOP, "2", "21", evaluation())
    await store.upsert(SHOP, "3", "31", evaluation(on_sale=False))
    await store.upsert("other.myshopify.com", "9", "91", evaluation(issues=[issue]))
    await db_session.commit()

    non_compliant = await store.list_for_shop(SHOP, non_compliant_only=True)
    assert [(pid, vid) for pid, vid, _ in non_compliant] == [("1", "11")]

    summary = await store.summary(SHOP)
    assert summary == {
        "totalProductCount": 4,
        "nonCompliantCount": 1,
        "onSaleCount": 2,
        "complianceRate": 75.0,
    }


@pytest.mark.asyncio
async def test_summary_for_unknown_shop(db_session):
    summary = await ComplianceStore(db_session).summary("empty.myshopify.com")
    assert summary["totalProductCount"] == 0
    assert summary["complianceRate"] == 100.0


@pytest.mark.asyncio
async def test_stored_legacy_issues_are_normalised(db_session):
    db_session.add(
        ProductCompliance(
            shop=SHOP,
            product_id="1",
            variant_id="11",
            last_checked=NOW,
            is_on_sale=True,
            is_compliant=False,
            issues=[
                {"rule": "førpris", "message": "Reference price too high"},
                {"rule": "salesDuration", "message": "Too long", "severity": "warning"},
            ],
        )
    )
    await db_session.flush()

    stored = await ComplianceStore(db_session).get(SHOP, "1", "11")

    assert stored.issues == [
        ComplianceIssue(rule=RuleType.REFERENCE_PRICE, message="Reference price too high"),
        ComplianceIssue(rule=RuleType.SALE_DURATION, message="Too long", severity="warning"),
    ]
