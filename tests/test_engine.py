"""End-to-end tests for the compliance evaluator."""

import logging
from datetime import timedelta

import pytest

from forpris.compliance.engine import ComplianceEvaluator, evaluate
from forpris.compliance.errors import UnsortedHistoryError
from forpris.compliance.models import ProductState, RuleType
from forpris.compliance.rules import RuleDefinition, norwegian_rule_set

from conftest import NOW, SHOP, daily, observation


def current_state(history, **kwargs):
    return ProductState.from_observation(history[-1], **kwargs)


@pytest.fixture
def evaluator():
    return ComplianceEvaluator(norwegian_rule_set(lookback_days=30, max_sale_days=110, min_gap_days=28))


def test_compliant_sale(evaluator):
    history = daily(-60, -16, 100) + daily(-15, 0, 80, compare_at=100)

    result = evaluator.evaluate(current_state(history), history, now=NOW)

    assert result.is_on_sale
    assert result.is_compliant
    assert result.issues == []
    assert result.sale_start_date == NOW - timedelta(days=15)
    assert result.reference_price == 100
    assert result.last_checked == NOW


def test_reference_price_violation(evaluator):
    history = daily(-60, -16, 100) + daily(-15, 0, 80, compare_at=150)

    result = evaluator.evaluate(current_state(history), history, now=NOW)

    assert not result.is_compliant
    assert [issue.rule for issue in result.issues] == [RuleType.REFERENCE_PRICE]


def test_sale_duration_violation(evaluator):
    history = daily(-150, -121, 100) + daily(-120, 0, 80, compare_at=100)

    result = evaluator.evaluate(current_state(history), history, now=NOW)

    assert [issue.rule for issue in result.issues] == [RuleType.SALE_DURATION]
    assert "120" in result.issues[0].message
    assert "110" in result.issues[0].message


def test_sale_frequency_violation(evaluator):
    history = (
        daily(-90, -61, 100)
        + daily(-60, -50, 80, compare_at=100)
        + daily(-49, -36, 100)
        + daily(-35, 0, 80, compare_at=100)
    )

    result = evaluator.evaluate(current_state(history), history, now=NOW)

    assert [issue.rule for issue in result.issues] == [RuleType.SALE_FREQUENCY]
    assert "15" in result.issues[0].message
    assert "28" in result.issues[0].message


def test_issues_from_several_rules_are_collected(evaluator):
    history = (
        daily(-200, -141, 100)
        + daily(-140, -136, 80, compare_at=100)
        + daily(-135, -131, 100)
        + daily(-130, 0, 80, compare_at=150)
    )

    result = evaluator.evaluate(current_state(history), history, now=NOW)

    assert {issue.rule for issue in result.issues} == {
        RuleType.REFERENCE_PRICE,
        RuleType.SALE_DURATION,
        RuleType.SALE_FREQUENCY,
    }
    assert not result.is_compliant


def test_equal_compare_at_is_not_on_sale(evaluator):
    history = daily(-10, 0, 100, compare_at=100)

    result = evaluator.evaluate(current_state(history), history, now=NOW)

    assert not result.is_on_sale
    assert result.sale_start_date is None
    assert result.is_compliant


def test_caller_cannot_force_a_sale(evaluator):
    product = ProductState(shop=SHOP, product_id="1", variant_id="11", price=100, is_on_sale=True)
    assert product.is_on_sale is False


def test_empty_history_is_compliant(evaluator):
    product = ProductState(shop=SHOP, product_id="1", variant_id="11", price=80, compare_at_price=150)

    result = evaluator.evaluate(product, [], now=NOW)

    assert result.is_on_sale
    assert result.is_compliant
    assert result.sale_start_date is None


@pytest.mark.parametrize("history", [[], None])
def test_empty_history_ignores_supplied_sale_start(evaluator, history):
    start = NOW - timedelta(days=120)
    product = ProductState(
        shop=SHOP, product_id="1", variant_id="11", price=80, compare_at_price=150, sale_start_date=start
    )

    result = evaluator.evaluate(product, history, now=NOW)

    assert result.issues == []
    assert result.is_compliant
    assert result.is_on_sale
    assert result.sale_start_date == start


def test_evaluation_is_deterministic(evaluator):
    history = daily(-60, -16, 100) + daily(-15, 0, 80, compare_at=150)
    product = current_state(history)

    first = evaluator.evaluate(product, history, now=NOW)
    second = evaluator.evaluate(product, history, now=NOW)

    assert first.to_dict() == second.to_dict()


def test_unsorted_history_raises(evaluator):
    history = [observation(0, 80, 100), observation(-1, 80, 100)]

    with pytest.raises(UnsortedHistoryError):
        evaluator.evaluate(current_state(history), history, now=NOW)


def test_misconfigured_rule_is_skipped(caplog):
    history = daily(-150, -121, 100) + daily(-120, 0, 80, compare_at=150)
    rules = [
        RuleDefinition(rule_type=RuleType.REFERENCE_PRICE, parameters={"minLookbackDays": 30}),
        RuleDefinition(rule_type=RuleType.SALE_DURATION, parameters={"maxSaleDays": "forever"}),
    ]

    with caplog.at_level(logging.WARNING, logger="forpris.compliance.engine"):
        result = evaluate(current_state(history), history, rules, now=NOW)

    assert [issue.rule for issue in result.issues] == [RuleType.REFERENCE_PRICE]
    assert "misconfigured" in caplog.text


def test_inactive_rules_are_ignored():
    history = daily(-150, -121, 100) + daily(-120, 0, 80, compare_at=100)
    rules = [RuleDefinition(rule_type=RuleType.SALE_DURATION, parameters={"maxSaleDays": 110}, active=False)]

    assert evaluate(current_state(history), history, rules, now=NOW).is_compliant


def test_empty_rule_set_is_compliant():
    history = daily(-150, -121, 100) + daily(-120, 0, 80, compare_at=150)
    assert evaluate(current_state(history), history, [], now=NOW).is_compliant


def test_supplied_sale_start_is_reported(evaluator):
    history = daily(-60, -16, 100) + daily(-15, 0, 80, compare_at=100)
    start = NOW - timedelta(days=15)

    result = evaluator.evaluate(current_state(history, sale_start_date=start), history, now=NOW)

    assert result.sale_start_date == start


def test_to_dict_shape(evaluator):
    history = daily(-60, -16, 100) + daily(-15, 0, 80, compare_at=150)

    data = evaluator.evaluate(current_state(history), history, now=NOW).to_dict()

    assert data["isCompliant"] is False
    assert data["isOnSale"] is True
    assert data["referencePrice"] == 150.0
    assert data["saleStartDate"] == (NOW - timedelta(days=15)).isoformat()
    assert data["lastChecked"] == NOW.isoformat()
    assert data["issues"][0]["rule"] == "referencePrice"
    assert data["issues"][0]["severity"] == "violation"
