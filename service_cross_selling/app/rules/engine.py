"""
Rule evaluation engine for the Cross-Selling Service.
"""

import asyncio
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Union

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .comparators import (
    compare_contains,
    compare_equals,
    compare_numeric,
    has_compatible_dimensions,
    matches_dimensions,
    to_number,
)
from .fields import MISSING, resolve_field
from .models import (
    ConditionOperator,
    CrossSellingRule,
    MatchType,
    NUMERIC_OPERATORS,
    Product,
    RuleCondition,
    RuleTargetCriteria,
)
from ..catalog.query import CatalogSearch, build_catalog_query


class RuleEngine:
    """Stateless cross-selling rule evaluation engine.

    The engine only reads rules and products; one instance can serve
    concurrent requests.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None, catalog_limit: Optional[int] = None):
        self.logger = get_logger("cross_selling.rule_engine")
        self.metrics = metrics
        self.catalog_limit = catalog_limit

    def evaluate_source_conditions(self, product: Product, conditions: Sequence[RuleCondition]) -> bool:
        """Return True if the product satisfies every condition (vacuously True for none)."""
        return all(self._evaluate_condition(product, condition) for condition in conditions)

    def _evaluate_condition(self, product: Product, condition: RuleCondition) -> bool:
        """Evaluate a single condition."""
        operator = condition.operator

        if operator == ConditionOperator.MATCHES_DIMENSIONS:
            return matches_dimensions(resolve_field(product, "dimensions"), condition.value)

        field_value = resolve_field(product, condition.field)

        if operator == ConditionOperator.EQUALS:
            return compare_equals(field_value, condition.value)

        elif operator == ConditionOperator.NOT_EQUALS:
            return not compare_equals(field_value, condition.value)

        elif operator == ConditionOperator.CONTAINS:
            return compare_contains(field_value, condition.value)

        elif operator == ConditionOperator.NOT_CONTAINS:
            return not compare_contains(field_value, condition.value)

        elif operator in NUMERIC_OPERATORS:
            if field_value is MISSING:
                self.logger.warning(
                    "Numeric condition on missing field",
                    field=condition.field,
                    operator=operator.value
                )
                self._predicate_failed("missing_field")
                return False

            if to_number(field_value) is None or to_number(condition.value) is None:
                self.logger.warning(
                    "Numeric condition on non-numeric value",
                    field=condition.field,
                    operator=operator.value,
                    field_value=repr(field_value),
                    value=repr(condition.value)
                )
                self._predicate_failed("non_numeric")
                return False

            return compare_numeric(operator.value, field_value, condition.value)

        self.logger.warning("Unknown condition operator", operator=str(operator), field=condition.field)
        self._predicate_failed("unknown_operator")
        return False

    def find_matching_products(
        self,
        source_product: Product,
        criteria: Sequence[RuleTargetCriteria],
        population: Sequence[Product],
    ) -> List[Product]:
        """Products from ``population`` satisfying every criterion, in scan order."""
        source_id = resolve_field(source_product, "id")

        matches = [
            candidate for candidate in population
            if resolve_field(candidate, "id") != source_id
            and all(self._evaluate_target_criterion(source_product, candidate, c) for c in criteria)
        ]

        self.logger.debug(
            "Target scan finished",
            source_id=source_id,
            scanned=len(population),
            matched=len(matches)
        )
        return matches

    def _evaluate_target_criterion(
        self,
        source_product: Product,
        target_product: Product,
        criterion: RuleTargetCriteria,
    ) -> bool:
        """Evaluate a candidate against one criterion, relative to the source product."""
        match_type = criterion.match_type

        if match_type == MatchType.EXACT:
            return compare_equals(resolve_field(target_product, criterion.field), criterion.value)

        elif match_type == MatchType.CONTAINS:
            return compare_contains(resolve_field(target_product, criterion.field), criterion.value)

        elif match_type == MatchType.SAME_DIMENSIONS:
            return has_compatible_dimensions(
                resolve_field(source_product, "dimensions"),
                resolve_field(target_product, "dimensions")
            )

        elif match_type == MatchType.SAME_PROPERTY:
            return compare_equals(
                resolve_field(source_product, criterion.field),
                resolve_field(target_product, criterion.field)
            )

        self.logger.warning("Unknown match type", match_type=str(match_type), field=criterion.field)
        self._predicate_failed("unknown_match_type")
        return False

    def suggest_cross_selling(
        self,
        product: Product,
        rules: Sequence[CrossSellingRule],
        population: Union[Sequence[Product], CatalogSearch],
    ) -> Union[List[Product], Awaitable[List[Product]]]:
        """Union of the matches of every applicable active rule.

        With an in-memory population the suggestions are returned directly.
        With a ``CatalogSearch`` an awaitable is returned instead, see
        ``suggest_from_catalog``.
        """
        if isinstance(population, CatalogSearch):
            return self.suggest_from_catalog(product, rules, population)

        suggestions: Dict[Any, Product] = {}
        for rule in self._applicable_rules(product, rules):
            for match in self.find_matching_products(product, rule.target_criteria, population):
                suggestions.setdefault(resolve_field(match, "id"), match)

        return self._finish(product, suggestions)

    async def suggest_from_catalog(
        self,
        product: Product,
        rules: Sequence[CrossSellingRule],
        catalog: CatalogSearch,
        skip_failed_rules: bool = False,
    ) -> List[Product]:
        """Like ``suggest_cross_selling`` but scanning a remote catalog.

        One catalog query per applicable rule is dispatched concurrently.
        Catalog failures propagate unless ``skip_failed_rules`` is set, in
        which case the failing rule contributes no suggestions.
        """
        applicable = self._applicable_rules(product, rules)

        tasks = [
            asyncio.ensure_future(self._scan_catalog(product, rule, catalog, skip_failed_rules))
            for rule in applicable
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # One scan failed; don't leave the others running
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        suggestions: Dict[Any, Product] = {}
        for matches in results:
            for match in matches:
                suggestions.setdefault(resolve_field(match, "id"), match)

        return self._finish(product, suggestions)

    async def _scan_catalog(
        self,
        product: Product,
        rule: CrossSellingRule,
        catalog: CatalogSearch,
        skip_failed_rules: bool,
    ) -> List[Product]:
        query = build_catalog_query(product, rule.target_criteria, limit=self.catalog_limit)
        try:
            candidates = await catalog.search_products(query)
        except Exception as e:
            self._count("cross_selling_catalog_queries_total", status="error")
            if not skip_failed_rules:
                raise
            self.logger.error(
                "Catalog search failed, skipping rule",
                rule_id=rule.id,
                rule_name=rule.name,
                error=str(e)
            )
            return []

        self._count("cross_selling_catalog_queries_total", status="ok")
        return self.find_matching_products(product, rule.target_criteria, candidates)

    def _applicable_rules(self, product: Product, rules: Sequence[CrossSellingRule]) -> List[CrossSellingRule]:
        """Active rules whose source conditions match, in input order."""
        active_rules = [rule for rule in rules if rule.active]
        product_id = resolve_field(product, "id")

        self.logger.info(
            "Processing active rules",
            product_id=product_id,
            active_rules=len(active_rules),
            total_rules=len(rules)
        )

        applicable = []
        for rule in active_rules:
            self._count("cross_selling_rules_evaluated_total")
            if self.evaluate_source_conditions(product, rule.source_conditions):
                self._count("cross_selling_rules_matched_total")
                applicable.append(rule)
                self.logger.debug("Source conditions matched", rule_id=rule.id, rule_name=rule.name)
            else:
                self.logger.debug("Source conditions did not match", rule_id=rule.id, rule_name=rule.name)

        return applicable

    def _finish(self, product: Product, suggestions: Dict[Any, Product]) -> List[Product]:
        # Guard against duplicates of the source product across rules
        suggestions.pop(resolve_field(product, "id"), None)
        result = list(suggestions.values())

        if self.metrics:
            self.metrics.observe_histogram("cross_selling_suggestions_per_request", len(result))
        self.logger.info("Suggestions computed", product_id=resolve_field(product, "id"), suggestions=len(result))
        return result

    def _predicate_failed(self, reason: str):
        self._count("cross_selling_predicate_failures_total", reason=reason)

    def _count(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)
