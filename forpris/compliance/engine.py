"""Compliance evaluation engine.

Runs a jurisdiction's rule set against one variant and aggregates every
issue into a single ``ComplianceEvaluation``. Pure: history is passed in and
the result is returned; persistence happens in the store.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence

from forpris.compliance.errors import RuleConfigurationError
from forpris.compliance.models import (
    ComplianceEvaluation,
    ComplianceIssue,
    PriceObservation,
    ProductState,
    ensure_utc,
    utc_now,
)
from forpris.compliance.periods import ensure_sorted
from forpris.compliance.rules import RULE_CHECKS, RuleDefinition, resolve_sale_start

logger = logging.getLogger(__name__)


class ComplianceEvaluator:
    """Evaluates product variants against a fixed rule set."""

    def __init__(self, rule_set: Iterable[RuleDefinition]):
        self.rule_set = list(rule_set)

    def evaluate(
        self,
        product: ProductState,
        history: Optional[Sequence[PriceObservation]] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceEvaluation:
        """
        Evaluate a variant against every active rule.

        Args:
            product: Current price state of the variant
            history: Observations sorted ascending by timestamp. An empty
                history is always compliant, whatever the product state.
            now: Evaluation instant (defaults to the current UTC time)

        Returns:
            ComplianceEvaluation carrying every issue raised by every rule

        Raises:
            UnsortedHistoryError: If ``history`` is not in ascending order
        """
        history = list(history or [])
        ensure_sorted(history)
        now = ensure_utc(now) or utc_now()

        issues: list[ComplianceIssue] = []
        # Without observations no rule can prove a violation
        rule_set = self.rule_set if history else []
        for rule in rule_set:
            if not rule.active:
                continue

            check = RULE_CHECKS.get(rule.rule_type)
            if check is None:
                logger.warning(f"No check registered for rule type {rule.rule_type!r}, skipping")
                continue

            try:
                result = check(product, history, rule, now)
            except RuleConfigurationError as e:
                logger.warning(
                    f"Skipping misconfigured {rule.rule_type.value} rule "
                    f"(id={rule.id}, country={rule.country_code}) for "
                    f"{product.product_id}/{product.variant_id}: {e}"
                )
                continue

            issues.extend(result.issues)

        sale_start = resolve_sale_start(product, history) if product.is_on_sale else None

        evaluation = ComplianceEvaluation(
            is_on_sale=product.is_on_sale,
            reference_price=product.compare_at_price,
            sale_start_date=sale_start,
            last_checked=now,
            issues=issues,
        )

        if issues:
            logger.info(
                f"{product.shop} {product.product_id}/{product.variant_id} non-compliant: "
                + "; ".join(issue.message for issue in issues)
            )

        return evaluation


def evaluate(
    product: ProductState,
    history: Optional[Sequence[PriceObservation]],
    rule_set: Iterable[RuleDefinition],
    now: Optional[datetime] = None,
) -> ComplianceEvaluation:
    """Evaluate ``product`` against ``rule_set`` (functional shortcut)."""
    return ComplianceEvaluator(rule_set).evaluate(product, history, now)
