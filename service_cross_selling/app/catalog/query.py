"""
Catalog search interface consumed by the rule engine.

A catalog query narrows the candidate population for one rule before the
engine applies its target criteria in memory. Narrowing is conservative:
it may return products the criteria reject, never the other way round.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from ..rules.fields import MISSING, resolve_field
from ..rules.models import MatchType, Product, RuleTargetCriteria


FILTER_EQUALS = "equals"
FILTER_EQUALS_ANY = "equalsAny"
FILTER_CONTAINS = "contains"


@dataclass(frozen=True)
class CatalogFilter:
    """Single filter on a product field path."""
    field: str
    type: str
    value: Any


@dataclass
class CatalogQuery:
    """Candidate search narrowed by simple filters."""
    filters: List[CatalogFilter] = field(default_factory=list)
    limit: Optional[int] = None


@runtime_checkable
class CatalogSearch(Protocol):
    """Remote product population the engine can search."""

    async def search_products(self, query: CatalogQuery) -> List[Product]:
        ...


def _scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _filter_for_value(path: str, value: Any, substring: bool = False) -> Optional[CatalogFilter]:
    if isinstance(value, (list, tuple)):
        values = [v for v in value if _scalar(v)]
        if values and len(values) == len(value):
            return CatalogFilter(path, FILTER_EQUALS_ANY, values)
        return None

    if substring and isinstance(value, str):
        return CatalogFilter(path, FILTER_CONTAINS, value)

    if _scalar(value):
        return CatalogFilter(path, FILTER_EQUALS, value)

    return None


def build_catalog_query(
    source: Product,
    criteria: Sequence[RuleTargetCriteria],
    limit: Optional[int] = None,
) -> CatalogQuery:
    """Derive narrowing filters for a rule's target criteria."""
    filters: List[CatalogFilter] = []

    for criterion in criteria:
        if criterion.match_type == MatchType.EXACT:
            catalog_filter = _filter_for_value(criterion.field, criterion.value)
        elif criterion.match_type == MatchType.CONTAINS:
            catalog_filter = _filter_for_value(criterion.field, criterion.value, substring=True)
        elif criterion.match_type == MatchType.SAME_PROPERTY:
            source_value = resolve_field(source, criterion.field)
            if source_value is MISSING:
                catalog_filter = None
            else:
                catalog_filter = _filter_for_value(criterion.field, source_value)
        else:
            # sameDimensions and unknown match types are checked in memory only
            catalog_filter = None

        if catalog_filter is not None:
            filters.append(catalog_filter)

    return CatalogQuery(filters=filters, limit=limit)
