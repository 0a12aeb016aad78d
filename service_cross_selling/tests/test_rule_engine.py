"""
Unit tests for the Cross-Selling Rule Engine.
"""

import asyncio
import pytest
from typing import List

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.metrics import MetricsCollector
from service_cross_selling.app.catalog.query import CatalogQuery, FILTER_CONTAINS
from service_cross_selling.app.rules.engine import RuleEngine
from service_cross_selling.app.rules.models import (
    ConditionOperator, CrossSellingRule, Dimensions, Manufacturer, MatchType,
    Product, RuleCondition, RuleTargetCriteria
)


def make_product(product_id: str, categories=None, **kwargs) -> Product:
    return Product(
        id=product_id,
        name=kwargs.pop("name", f"Product {product_id}"),
        category_names=categories or [],
        **kwargs
    )


def shelving_rule(rule_id: str = "rule-1", active=True) -> CrossSellingRule:
    return CrossSellingRule(
        id=rule_id,
        name="Shelving accessories",
        active=active,
        source_conditions=[
            RuleCondition(field="categoryNames", operator=ConditionOperator.CONTAINS, value="Shelving")
        ],
        target_criteria=[
            RuleTargetCriteria(field="categoryNames", match_type=MatchType.CONTAINS, value="Shelving")
        ]
    )


def ids(products: List[Product]) -> List[str]:
    return [p.id for p in products]


class FakeCatalog:
    """Catalog returning a fixed population and recording queries."""

    def __init__(self, population: List[Product], fail: bool = False):
        self.population = population
        self.fail = fail
        self.queries: List[CatalogQuery] = []

    async def search_products(self, query: CatalogQuery) -> List[Product]:
        self.queries.append(query)
        if self.fail:
            raise RuntimeError("catalog unavailable")
        return list(self.population)


class TestRuleEngine:
    """Test cases for RuleEngine."""

    @pytest.fixture
    def metrics(self):
        """Create an isolated metrics collector."""
        return MetricsCollector("cross_selling")

    @pytest.fixture
    def rule_engine(self, metrics):
        """Create RuleEngine instance."""
        return RuleEngine(metrics=metrics)

    @pytest.fixture
    def shelf(self):
        return make_product(
            "P1",
            ["Shelving"],
            name="Steel Shelf Unit",
            stock=12,
            manufacturer=Manufacturer(name="Acme"),
            dimensions=Dimensions(width=100, height=200, length=40)
        )

    @pytest.fixture
    def population(self, shelf):
        return [
            shelf,
            make_product("P2", ["Shelving"], manufacturer=Manufacturer(name="Acme")),
            make_product("P3", ["Other"], manufacturer=Manufacturer(name="Other Corp")),
        ]

    def test_empty_conditions_are_vacuously_true(self, rule_engine, shelf):
        """A rule without source conditions applies to every product."""
        assert rule_engine.evaluate_source_conditions(shelf, []) is True
        assert rule_engine.evaluate_source_conditions(make_product("X"), []) is True

    def test_conditions_are_anded(self, rule_engine, shelf):
        """All conditions must hold."""
        in_category = RuleCondition("categoryNames", ConditionOperator.CONTAINS, "Shelving")
        in_stock = RuleCondition("stock", ConditionOperator.GREATER_THAN, 10)
        out_of_stock = RuleCondition("stock", ConditionOperator.LESS_THAN, 5)

        assert rule_engine.evaluate_source_conditions(shelf, [in_category, in_stock]) is True
        assert rule_engine.evaluate_source_conditions(shelf, [in_category, out_of_stock]) is False
        assert rule_engine.evaluate_source_conditions(shelf, [out_of_stock, in_category]) is False

    def test_equals_and_not_equals(self, rule_engine, shelf):
        assert rule_engine.evaluate_source_conditions(
            shelf, [RuleCondition("manufacturer.name", ConditionOperator.EQUALS, "Acme")]
        )
        assert rule_engine.evaluate_source_conditions(
            shelf, [RuleCondition("manufacturer.name", ConditionOperator.NOT_EQUALS, "Other Corp")]
        )
        assert not rule_engine.evaluate_source_conditions(
            shelf, [RuleCondition("manufacturer.name", ConditionOperator.NOT_EQUALS, "Acme")]
        )

    def test_not_equals_on_missing_field(self, rule_engine, shelf):
        """An absent value never equals anything, so notEquals holds."""
        condition = RuleCondition("customFields.color", ConditionOperator.NOT_EQUALS, "red")
        assert rule_engine.evaluate_source_conditions(shelf, [condition]) is True

    def test_contains_is_case_insensitive(self, rule_engine, shelf):
        assert rule_engine.evaluate_source_conditions(
            shelf, [RuleCondition("name", ConditionOperator.CONTAINS, "shelf")]
        )
        assert rule_engine.evaluate_source_conditions(
            shelf, [RuleCondition("name", ConditionOperator.NOT_CONTAINS, "drawer")]
        )

    def test_numeric_conditions_coerce_strings(self, rule_engine):
        product = make_product("P9", custom_fields={"loadCapacity": "150"})

        assert rule_engine.evaluate_source_conditions(
            product, [RuleCondition("customFields.loadCapacity", ConditionOperator.GREATER_THAN_OR_EQUAL, 150)]
        )
        assert not rule_engine.evaluate_source_conditions(
            product, [RuleCondition("customFields.loadCapacity", ConditionOperator.LESS_THAN, "100")]
        )

    def test_numeric_condition_on_missing_field(self, rule_engine, metrics, shelf):
        """Missing or non-numeric operands fail numeric comparisons and are counted."""
        missing = RuleCondition("weight", ConditionOperator.GREATER_THAN, 1)
        text_field = RuleCondition("name", ConditionOperator.GREATER_THAN, 5)
        text_value = RuleCondition("stock", ConditionOperator.LESS_THAN, "plenty")

        assert rule_engine.evaluate_source_conditions(shelf, [missing]) is False
        assert rule_engine.evaluate_source_conditions(shelf, [text_field]) is False
        assert rule_engine.evaluate_source_conditions(shelf, [text_value]) is False
        assert metrics.get_sample_value(
            "cross_selling_predicate_failures_total", {"reason": "missing_field"}
        ) == 1.0
        assert metrics.get_sample_value(
            "cross_selling_predicate_failures_total", {"reason": "non_numeric"}
        ) == 2.0

    def test_numeric_failure_is_not_counted_as_non_numeric(self, rule_engine, metrics, shelf):
        condition = RuleCondition("stock", ConditionOperator.LESS_THAN, 5)

        assert rule_engine.evaluate_source_conditions(shelf, [condition]) is False
        assert metrics.get_sample_value(
            "cross_selling_predicate_failures_total", {"reason": "non_numeric"}
        ) is None

    def test_equals_does_not_mix_booleans_and_numbers(self, rule_engine):
        available = make_product("B1", available=True)
        sold_out = make_product("B2", stock=0)

        assert rule_engine.evaluate_source_conditions(
            available, [RuleCondition("available", ConditionOperator.EQUALS, 1)]
        ) is False
        assert rule_engine.evaluate_source_conditions(
            sold_out, [RuleCondition("stock", ConditionOperator.EQUALS, False)]
        ) is False
        assert rule_engine.evaluate_source_conditions(
            available, [RuleCondition("available", ConditionOperator.EQUALS, True)]
        ) is True

    def test_matches_dimensions_tolerance_boundary(self, rule_engine):
        """Each specified dimension must be within 5% of the wanted value."""
        condition = RuleCondition("dimensions", ConditionOperator.MATCHES_DIMENSIONS, {"height": 100})

        within = make_product("A", dimensions=Dimensions(height=104.9))
        outside = make_product("B", dimensions=Dimensions(height=106))
        no_dimensions = make_product("C")

        assert rule_engine.evaluate_source_conditions(within, [condition]) is True
        assert rule_engine.evaluate_source_conditions(outside, [condition]) is False
        assert rule_engine.evaluate_source_conditions(no_dimensions, [condition]) is False

    def test_unknown_operator_is_false_and_counted(self, rule_engine, metrics, shelf):
        condition = RuleCondition("name", "startsWith", "Steel")

        assert condition.operator == "startsWith"
        assert rule_engine.evaluate_source_conditions(shelf, [condition]) is False
        assert metrics.get_sample_value(
            "cross_selling_predicate_failures_total", {"reason": "unknown_operator"}
        ) == 1.0

    def test_find_matching_products_excludes_source(self, rule_engine, shelf, population):
        """The source product is never its own suggestion."""
        criteria = [RuleTargetCriteria("categoryNames", MatchType.CONTAINS, "Shelving")]

        matches = rule_engine.find_matching_products(shelf, criteria, population)

        assert ids(matches) == ["P2"]

    def test_find_matching_products_without_criteria(self, rule_engine, shelf, population):
        """No criteria selects the whole population except the source."""
        assert ids(rule_engine.find_matching_products(shelf, [], population)) == ["P2", "P3"]

    def test_exact_match_with_list_value(self, rule_engine, shelf, population):
        """A scalar field against a list value is a membership test."""
        criteria = [RuleTargetCriteria("id", MatchType.EXACT, ["P3", "P4"])]

        assert ids(rule_engine.find_matching_products(shelf, criteria, population)) == ["P3"]

    def test_same_property(self, rule_engine, shelf, population):
        criteria = [RuleTargetCriteria("manufacturer.name", MatchType.SAME_PROPERTY)]

        assert ids(rule_engine.find_matching_products(shelf, criteria, population)) == ["P2"]

    def test_same_property_with_field_absent_on_both(self, rule_engine):
        """Absent values are not considered equal."""
        source = make_product("S")
        candidates = [make_product("T")]
        criteria = [RuleTargetCriteria("customFields.series", MatchType.SAME_PROPERTY)]

        assert rule_engine.find_matching_products(source, criteria, candidates) == []

    def test_same_dimensions_needs_one_close_dimension(self, rule_engine, shelf):
        """Any shared dimension within 10% of the larger value is enough."""
        close_width = make_product("W", dimensions=Dimensions(width=108, height=900))
        all_far = make_product("F", dimensions=Dimensions(width=150, height=400, length=80))
        no_dimensions = make_product("N")
        criteria = [RuleTargetCriteria("dimensions", MatchType.SAME_DIMENSIONS)]

        matches = rule_engine.find_matching_products(shelf, criteria, [close_width, all_far, no_dimensions])

        assert ids(matches) == ["W"]

    def test_unknown_match_type_is_false_and_counted(self, rule_engine, metrics, shelf, population):
        criteria = [RuleTargetCriteria("name", "fuzzy", "Shelf")]

        assert rule_engine.find_matching_products(shelf, criteria, population) == []
        assert metrics.get_sample_value(
            "cross_selling_predicate_failures_total", {"reason": "unknown_match_type"}
        ) == 2.0

    def test_suggest_cross_selling_scenario(self, rule_engine, shelf, population):
        """Shelving products suggest other shelving products."""
        suggestions = rule_engine.suggest_cross_selling(shelf, [shelving_rule()], population)

        assert ids(suggestions) == ["P2"]

    def test_suggestions_are_deduplicated_across_rules(self, rule_engine, shelf):
        """Overlapping rule results are unioned by product id."""
        population = [shelf] + [make_product(pid) for pid in ("P2", "P3", "P4")]
        first = CrossSellingRule(
            id="r1", name="First",
            target_criteria=[RuleTargetCriteria("id", MatchType.EXACT, ["P2", "P3"])]
        )
        second = CrossSellingRule(
            id="r2", name="Second",
            target_criteria=[RuleTargetCriteria("id", MatchType.EXACT, ["P3", "P4"])]
        )

        suggestions = rule_engine.suggest_cross_selling(shelf, [first, second], population)

        assert ids(suggestions) == ["P2", "P3", "P4"]

    def test_suggest_cross_selling_is_idempotent(self, rule_engine, shelf, population):
        rules = [shelving_rule()]

        first = rule_engine.suggest_cross_selling(shelf, rules, population)
        second = rule_engine.suggest_cross_selling(shelf, rules, population)

        assert set(ids(first)) == set(ids(second))

    def test_inactive_rules_are_never_evaluated(self, rule_engine, metrics, shelf, population):
        rules = [shelving_rule(active=False), shelving_rule("rule-2", active=0)]

        assert rule_engine.suggest_cross_selling(shelf, rules, population) == []
        assert metrics.get_sample_value("cross_selling_rules_evaluated_total") == 0.0

    def test_rule_counters(self, rule_engine, metrics, shelf, population):
        other = make_product("P3", ["Other"])
        rules = [shelving_rule("a"), shelving_rule("b")]

        rule_engine.suggest_cross_selling(shelf, rules, population)
        rule_engine.suggest_cross_selling(other, rules, population)

        assert metrics.get_sample_value("cross_selling_rules_evaluated_total") == 4.0
        assert metrics.get_sample_value("cross_selling_rules_matched_total") == 2.0

    def test_engine_without_metrics(self, shelf, population):
        engine = RuleEngine()
        condition = RuleCondition("name", "unknown", "x")

        assert engine.evaluate_source_conditions(shelf, [condition]) is False
        assert ids(engine.suggest_cross_selling(shelf, [shelving_rule()], population)) == ["P2"]


class TestCatalogSuggestions:
    """Suggestions scanned from a remote catalog."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("cross_selling")

    @pytest.fixture
    def rule_engine(self, metrics):
        return RuleEngine(metrics=metrics, catalog_limit=250)

    @pytest.fixture
    def shelf(self):
        return make_product("P1", ["Shelving"])

    @pytest.fixture
    def catalog(self, shelf):
        return FakeCatalog([shelf, make_product("P2", ["Shelving"]), make_product("P3", ["Other"])])

    @pytest.mark.asyncio
    async def test_suggest_cross_selling_with_catalog(self, rule_engine, shelf, catalog):
        """A catalog population yields an awaitable."""
        suggestions = await rule_engine.suggest_cross_selling(shelf, [shelving_rule()], catalog)

        assert ids(suggestions) == ["P2"]
        assert len(catalog.queries) == 1
        query = catalog.queries[0]
        assert query.limit == 250
        assert [(f.field, f.type, f.value) for f in query.filters] == [
            ("categoryNames", FILTER_CONTAINS, "Shelving")
        ]

    @pytest.mark.asyncio
    async def test_one_query_per_applicable_rule(self, rule_engine, metrics, shelf, catalog):
        rules = [shelving_rule("a"), shelving_rule("b"), shelving_rule("c", active=False)]

        suggestions = await rule_engine.suggest_from_catalog(shelf, rules, catalog)

        assert ids(suggestions) == ["P2"]
        assert len(catalog.queries) == 2
        assert metrics.get_sample_value("cross_selling_catalog_queries_total", {"status": "ok"}) == 2.0

    @pytest.mark.asyncio
    async def test_no_query_when_no_rule_applies(self, rule_engine, catalog):
        other = make_product("P3", ["Other"])

        assert await rule_engine.suggest_from_catalog(other, [shelving_rule()], catalog) == []
        assert catalog.queries == []

    @pytest.mark.asyncio
    async def test_catalog_failure_propagates(self, rule_engine, metrics, shelf):
        catalog = FakeCatalog([], fail=True)

        with pytest.raises(RuntimeError):
            await rule_engine.suggest_from_catalog(shelf, [shelving_rule()], catalog)

        assert metrics.get_sample_value("cross_selling_catalog_queries_total", {"status": "error"}) == 1.0

    @pytest.mark.asyncio
    async def test_failed_rules_can_be_skipped(self, rule_engine, shelf):
        """A failing rule contributes no suggestions when skipping is enabled."""
        catalog = FakeCatalog([], fail=True)

        suggestions = await rule_engine.suggest_from_catalog(
            shelf, [shelving_rule()], catalog, skip_failed_rules=True
        )

        assert suggestions == []

    @pytest.mark.asyncio
    async def test_failure_cancels_pending_scans(self, rule_engine, shelf):
        """When one rule's scan fails the other catalog queries are cancelled."""

        class SplitCatalog:
            def __init__(self):
                self.calls = 0
                self.cancelled = False

            async def search_products(self, query: CatalogQuery) -> List[Product]:
                self.calls += 1
                if self.calls == 1:
                    await asyncio.sleep(0)
                    raise RuntimeError("catalog unavailable")
                try:
                    await asyncio.sleep(60)
                except asyncio.CancelledError:
                    self.cancelled = True
                    raise
                return []

        catalog = SplitCatalog()

        with pytest.raises(RuntimeError):
            await rule_engine.suggest_from_catalog(shelf, [shelving_rule("a"), shelving_rule("b")], catalog)

        assert catalog.calls == 2
        assert catalog.cancelled is True
