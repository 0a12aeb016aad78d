"""
Unit tests for rule comparators and field resolution.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cross_selling.app.rules.comparators import (
    compare_contains, compare_equals, compare_numeric, has_compatible_dimensions,
    matches_dimensions, to_number
)
from service_cross_selling.app.rules.fields import MISSING, STANDARD_FIELDS, resolve_field
from service_cross_selling.app.rules.models import Dimensions, Manufacturer, Product


class TestCompareEquals:
    """Array-aware equality."""

    def test_arrays_compare_without_order(self):
        assert compare_equals(["a", "b"], ["b", "a"]) is True

    def test_arrays_of_different_length(self):
        assert compare_equals(["a", "b"], ["a", "b", "c"]) is False
        assert compare_equals(["a", "a"], ["a"]) is False

    def test_array_against_scalar_is_membership(self):
        assert compare_equals(["a", "b"], "b") is True
        assert compare_equals(["a", "b"], "c") is False
        assert compare_equals("b", ["a", "b"]) is True

    def test_scalars(self):
        assert compare_equals("Acme", "Acme") is True
        assert compare_equals(5, 5.0) is True
        assert compare_equals("5", 5) is False

    def test_missing_never_equals(self):
        assert compare_equals(MISSING, "x") is False
        assert compare_equals(MISSING, MISSING) is False

    def test_booleans_never_equal_numbers(self):
        assert compare_equals(True, 1) is False
        assert compare_equals(0, False) is False
        assert compare_equals(True, True) is True
        assert compare_equals([True], 1) is False
        assert compare_equals(1, [True, 2]) is False
        assert compare_equals([1, 0], [True, False]) is False
        assert compare_equals([True, 1], [1, True]) is True


class TestCompareContains:

    def test_array_membership(self):
        assert compare_contains(["Shelving", "Steel"], "Steel") is True
        assert compare_contains(["Shelving"], "shelving") is False

    def test_array_overlap(self):
        assert compare_contains(["Shelving", "Steel"], ["Wood", "Steel"]) is True
        assert compare_contains(["Shelving"], ["Wood"]) is False

    def test_array_membership_is_strict(self):
        assert compare_contains([1, 2], True) is False
        assert compare_contains([0], [False]) is False
        assert compare_contains([True], True) is True

    def test_substring_ignores_case(self):
        assert compare_contains("Heavy Duty Shelf", "duty") is True
        assert compare_contains("Heavy Duty Shelf", "drawer") is False

    def test_unsupported_types(self):
        assert compare_contains(42, "4") is False
        assert compare_contains(None, "x") is False
        assert compare_contains(MISSING, "x") is False


class TestNumeric:

    @pytest.mark.parametrize("value,expected", [
        (3, 3.0),
        (2.5, 2.5),
        ("  7.25 ", 7.25),
        (True, 1.0),
        ("", None),
        ("abc", None),
        (float("nan"), None),
        (None, None),
        (MISSING, None),
        ([1], None),
    ])
    def test_to_number(self, value, expected):
        assert to_number(value) == expected

    def test_operators(self):
        assert compare_numeric("greaterThan", 11, 10) is True
        assert compare_numeric("lessThan", "9", 10) is True
        assert compare_numeric("greaterThanOrEqual", 10, "10") is True
        assert compare_numeric("lessThanOrEqual", 10.5, 10) is False

    def test_non_numeric_operands(self):
        assert compare_numeric("greaterThan", "many", 1) is False
        assert compare_numeric("lessThan", MISSING, 1) is False

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            compare_numeric("between", 1, 2)


class TestDimensions:

    def test_only_specified_dimensions_are_checked(self):
        dims = Dimensions(width=50, height=101, length=999)

        assert matches_dimensions(dims, {"height": 100}) is True
        assert matches_dimensions(dims, {"height": 100, "width": 60}) is False

    def test_dimension_missing_on_product_is_skipped(self):
        assert matches_dimensions({"width": 100}, {"width": 102, "height": 50}) is True

    def test_invalid_spec(self):
        dims = Dimensions(width=100)

        assert matches_dimensions(dims, None) is False
        assert matches_dimensions(dims, "100x200") is False
        assert matches_dimensions(MISSING, {"width": 100}) is False

    def test_empty_spec_has_no_constraints(self):
        assert matches_dimensions(Dimensions(height=100), {}) is True

    def test_compatible_dimensions_use_larger_value(self):
        # |100 - 110| = 10 <= 11 (10% of 110)
        assert has_compatible_dimensions({"width": 100}, {"width": 110}) is True
        assert has_compatible_dimensions({"width": 100}, {"width": 112}) is False

    def test_compatible_dimensions_need_a_shared_dimension(self):
        assert has_compatible_dimensions({"width": 100}, {"height": 100}) is False
        assert has_compatible_dimensions(None, {"width": 100}) is False


class TestResolveField:
    """Dotted field-path resolution."""

    @pytest.fixture
    def product(self):
        return Product(
            id="P1",
            product_number="SW-1",
            manufacturer=Manufacturer(name="Acme"),
            dimensions=Dimensions(width=100, height=200),
            category_names=["Shelving"],
            custom_fields={"series": "Pro", "specs": {"load": 120}},
            packagingColor="grey"
        )

    def test_camel_case_paths(self, product):
        assert resolve_field(product, "productNumber") == "SW-1"
        assert resolve_field(product, "manufacturer.name") == "Acme"
        assert resolve_field(product, "dimensions.height") == 200
        assert resolve_field(product, "categoryNames") == ["Shelving"]

    def test_custom_fields(self, product):
        assert resolve_field(product, "customFields.series") == "Pro"
        assert resolve_field(product, "customFields.specs.load") == 120

    def test_extra_catalog_attributes(self, product):
        assert resolve_field(product, "packagingColor") == "grey"

    def test_list_index(self, product):
        assert resolve_field(product, "categoryNames.0") == "Shelving"
        assert resolve_field(product, "categoryNames.3") is MISSING

    def test_absent_values_are_missing(self, product):
        assert resolve_field(product, "ean") is MISSING
        assert resolve_field(product, "dimensions.length") is MISSING
        assert resolve_field(product, "customFields.nothing.deeper") is MISSING
        assert resolve_field(product, "name.length") is MISSING
        assert resolve_field(None, "id") is MISSING

    def test_plain_mappings(self):
        record = {"dimensions": {"width": 10}, "tags": ["a"]}

        assert resolve_field(record, "dimensions.width") == 10
        assert resolve_field(record, "tags") == ["a"]
        assert resolve_field(record, "dimensions.depth") is MISSING

    def test_standard_fields_resolve_on_products(self, product):
        """Every standard field is addressable on a product."""
        for descriptor in STANDARD_FIELDS:
            assert descriptor.field.split(".")[0] in {
                "name", "productNumber", "manufacturerNumber", "ean", "stock", "available",
                "price", "weight", "dimensions", "categoryNames", "manufacturer"
            }
        assert resolve_field(product, "stock") == 0
        assert resolve_field(product, "available") is True
