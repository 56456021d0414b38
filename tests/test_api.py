"""Tests for the HTTP API."""

import pytest
from httpx import ASGITransport, AsyncClient

from forpris.api.deps import get_database, get_scan_runner
from forpris.compliance.models import utc_now
from forpris.compliance.store import PriceObservationStore
from forpris.main import app
from forpris.worker.tasks import evaluate_variant

from conftest import SHOP, daily, runner_for, variant_price


@pytest.fixture
def variants():
    return [variant_price("1", "11", 80, 150), variant_price("2", "21", 100)]


@pytest.fixture
async def client(session_factory, variants):
    async def override_database():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_database] = override_database
    app.dependency_overrides[get_scan_runner] = lambda: runner_for(session_factory, variants)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded(session_factory, norwegian_rules):
    """Variant 1/11: 45 days at 100, then a 15-day sale advertised from 150."""
    now = utc_now()
    history = daily(-60, -16, 100, base=now) + daily(-15, 0, 80, compare_at=150, base=now)
    async with session_factory() as db:
        await PriceObservationStore(db).append_many(history[:-1])
        await evaluate_variant(db, history[-1], norwegian_rules, now=now)
        await db.commit()
    return history


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_get_compliance(client, seeded):
    response = await client.get("/api/compliance/1/11", params={"shop": SHOP})

    assert response.status_code == 200
    data = response.json()
    assert data["productId"] == "1"
    assert data["variantId"] == "11"
    assert data["isOnSale"] is True
    assert data["isCompliant"] is False
    assert data["referencePrice"] == 150.0
    assert data["issues"][0]["rule"] == "referencePrice"
    assert len(data["salePeriods"]) == 1
    # Widget history covers the last 30 days only
    assert 29 <= len(data["priceHistory"]) <= 31
    assert data["priceHistory"][-1]["compareAtPrice"] == 150.0


@pytest.mark.asyncio
async def test_get_compliance_requires_shop(client):
    response = await client.get("/api/compliance/1/11")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_get_compliance_unknown_variant(client):
    response = await client.get("/api/compliance/1/404", params={"shop": SHOP})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_compliance(client, seeded):
    response = await client.get("/api/compliance", params={"shop": SHOP, "non_compliant_only": True})

    assert response.status_code == 200
    assert [(item["productId"], item["variantId"]) for item in response.json()] == [("1", "11")]


@pytest.mark.asyncio
async def test_recheck(client):
    response = await client.post("/api/compliance/2/21/recheck", params={"shop": SHOP})

    assert response.status_code == 200
    assert response.json()["isOnSale"] is False
    assert response.json()["isCompliant"] is True


@pytest.mark.asyncio
async def test_recheck_unknown_variant(client):
    response = await client.post("/api/compliance/9/99/recheck", params={"shop": SHOP})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_dashboard_stats(client, seeded):
    response = await client.get("/api/dashboard/stats", params={"shop": SHOP})

    assert response.status_code == 200
    data = response.json()
    assert data["totalProductCount"] == 1
    assert data["nonCompliantCount"] == 1
    assert data["onSaleCount"] == 1
    assert data["complianceRate"] == 0.0
    assert data["lastScan"] is None


@pytest.mark.asyncio
async def test_manual_scan(client):
    response = await client.post(f"/api/scans/{SHOP}")

    assert response.status_code == 200
    assert response.json()["evaluated"] == 2

    stats = (await client.get("/api/dashboard/stats", params={"shop": SHOP})).json()
    assert stats["totalProductCount"] == 2
    assert stats["lastScan"] is not None


@pytest.mark.asyncio
async def test_settings_round_trip(client):
    response = await client.get(f"/api/settings/{SHOP}")
    assert response.status_code == 200
    assert response.json()["enabled"] is True

    response = await client.patch(
        f"/api/settings/{SHOP}",
        json={"enabled": False, "tracking_frequency_hours": 24, "country_rules": "no, se"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["enabled"] is False
    assert data["tracking_frequency_hours"] == 24
    assert data["country_rules"] == "NO,SE"


@pytest.mark.asyncio
async def test_settings_validation(client):
    response = await client.patch(f"/api/settings/{SHOP}", json={"tracking_frequency_hours": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rule_crud(client):
    response = await client.post("/api/rules/defaults")
    assert response.json()["created"] == 3

    response = await client.get("/api/rules", params={"country_code": "no"})
    rules = response.json()
    assert [r["rule_type"] for r in rules] == ["referencePrice", "saleDuration", "saleFrequency"]

    duration = rules[1]
    response = await client.patch(f"/api/rules/{duration['id']}", json={"parameters": {"maxSaleDays": 56}})
    assert response.status_code == 200
    assert response.json()["parameters"] == {"maxSaleDays": 56}

    response = await client.delete(f"/api/rules/{duration['id']}")
    assert response.status_code == 204
    assert (await client.get(f"/api/rules/{duration['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_create_rule_normalises_legacy_type(client):
    response = await client.post(
        "/api/rules",
        json={"country_code": "no", "rule_type": "førpris", "parameters": {"minDays": 30}},
    )

    assert response.status_code == 201
    assert response.json()["rule_type"] == "referencePrice"
    assert response.json()["country_code"] == "NO"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"rule_type": "priceErrors"},
        {"rule_type": "saleDuration", "parameters": {"maxSaleDays": -1}},
        {"rule_type": "saleFrequency", "parameters": {"minGapDays": "often"}},
    ],
)
async def test_create_rule_rejects_bad_configuration(client, payload):
    response = await client.post("/api/rules", json=payload)
    assert response.status_code == 422
