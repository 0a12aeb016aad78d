"""
Rule and product data models for the Cross-Selling Service.
"""

from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .comparators import DIMENSION_KEYS, to_number


class ConditionOperator(str, Enum):
    """Source condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    MATCHES_DIMENSIONS = "matchesDimensions"


class MatchType(str, Enum):
    """Target criterion match types."""
    EXACT = "exact"
    CONTAINS = "contains"
    SAME_DIMENSIONS = "sameDimensions"
    SAME_PROPERTY = "sameProperty"


NUMERIC_OPERATORS = frozenset({
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN_OR_EQUAL,
})


def _coerce_enum(enum_cls, raw):
    # Unknown values stay raw strings; the engine logs and rejects them.
    try:
        return enum_cls(raw)
    except ValueError:
        return raw


def _enum_value(member) -> str:
    return member.value if isinstance(member, Enum) else str(member)


@dataclass
class RuleCondition:
    """Predicate tested against the source product."""
    field: str
    operator: Union[ConditionOperator, str]
    value: Any = None

    def __post_init__(self):
        self.operator = _coerce_enum(ConditionOperator, self.operator)

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": _enum_value(self.operator), "value": self.value}


@dataclass
class RuleTargetCriteria:
    """Predicate tested against a candidate product, optionally relative to the source."""
    field: str
    match_type: Union[MatchType, str]
    value: Any = None

    def __post_init__(self):
        self.match_type = _coerce_enum(MatchType, self.match_type)

    def to_dict(self) -> Dict[str, Any]:
        data = {"field": self.field, "matchType": _enum_value(self.match_type)}
        if self.value is not None:
            data["value"] = self.value
        return data


@dataclass
class CrossSellingRule:
    """Cross-selling rule.

    ``source_conditions`` decide whether the rule applies to a product and
    ``target_criteria`` select the companion products; both lists are ANDed.
    """
    id: str
    name: str
    description: Optional[str] = None
    active: bool = True
    source_conditions: List[RuleCondition] = field(default_factory=list)
    target_criteria: List[RuleTargetCriteria] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


# Catalog product shapes. Field paths in rules use the camelCase names.

class CatalogModel(BaseModel):
    """Base for read-only catalog records addressed by camelCase field paths."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Dimensions(CatalogModel):
    width: Optional[float] = None
    height: Optional[float] = None
    length: Optional[float] = None
    unit: Optional[str] = None


class Manufacturer(CatalogModel):
    name: Optional[str] = None


class ProductPriceRule(CatalogModel):
    quantity: int = 1
    price: float = 0.0
    net_price: Optional[float] = None


class Product(CatalogModel):
    """Product as delivered by the catalog."""
    id: str
    product_number: str = ""
    name: str = ""
    description: Optional[str] = None
    price: float = 0.0
    net_price: float = 0.0
    currency: str = "EUR"
    tax_rate: float = 19.0
    stock: int = 0
    available: bool = True
    manufacturer: Optional[Manufacturer] = None
    manufacturer_number: Optional[str] = None
    ean: Optional[str] = None
    weight: Optional[float] = None
    dimensions: Optional[Dimensions] = None
    category_names: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    price_rules: List[ProductPriceRule] = Field(default_factory=list)
    packaging_unit: Optional[str] = None
    min_order_quantity: Optional[int] = None
    max_order_quantity: Optional[int] = None
    image_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Rule payloads, validated when rules are created, updated or seeded.

def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _is_scalar_or_list(value: Any) -> bool:
    if isinstance(value, list):
        return all(_is_scalar(item) for item in value)
    return _is_scalar(value)


def _check_field_path(value: str) -> str:
    value = value.strip()
    if not value or any(not part for part in value.split(".")):
        raise ValueError("field must be a dotted path such as 'dimensions.height'")
    return value


def _dimension_spec(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        raise ValueError("matchesDimensions expects an object with width, height or length")

    spec = {}
    for key in DIMENSION_KEYS:
        raw = value.get(key)
        if raw is None:
            continue
        number = None if isinstance(raw, bool) else to_number(raw)
        if number is None:
            raise ValueError(f"dimension '{key}' must be numeric")
        spec[key] = number

    if not spec:
        raise ValueError("matchesDimensions needs at least one of width, height or length")
    return spec


class PayloadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RuleConditionPayload(PayloadModel):
    """Incoming source condition; the value shape is checked per operator."""
    field: str = Field(..., description="Dotted product field path, e.g. dimensions.height")
    operator: ConditionOperator
    value: Any = None

    @field_validator("field")
    @classmethod
    def _dotted_path(cls, value: str) -> str:
        return _check_field_path(value)

    @model_validator(mode="after")
    def _value_shape(self):
        if self.operator == ConditionOperator.MATCHES_DIMENSIONS:
            self.value = _dimension_spec(self.value)
        elif self.operator in NUMERIC_OPERATORS:
            if isinstance(self.value, bool) or to_number(self.value) is None:
                raise ValueError(f"{self.operator.value} expects a numeric value")
        elif not _is_scalar_or_list(self.value):
            raise ValueError(f"{self.operator.value} expects a scalar or a list of scalars")
        return self

    def to_condition(self) -> RuleCondition:
        return RuleCondition(field=self.field, operator=self.operator, value=self.value)


class RuleTargetCriteriaPayload(PayloadModel):
    """Incoming target criterion; exact and contains need a value."""
    field: str = Field(..., description="Dotted product field path")
    match_type: MatchType
    value: Any = None

    @field_validator("field")
    @classmethod
    def _dotted_path(cls, value: str) -> str:
        return _check_field_path(value)

    @model_validator(mode="after")
    def _value_shape(self):
        if self.match_type in (MatchType.EXACT, MatchType.CONTAINS):
            if self.value is None or not _is_scalar_or_list(self.value):
                raise ValueError(f"{self.match_type.value} expects a scalar or a list of scalars")
        return self

    def to_criterion(self) -> RuleTargetCriteria:
        return RuleTargetCriteria(field=self.field, match_type=self.match_type, value=self.value)


class RuleCreateRequest(PayloadModel):
    """Request model for creating a rule."""
    name: str = Field(..., min_length=1, description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    active: bool = Field(True, description="Whether the rule participates in suggestions")
    source_conditions: List[RuleConditionPayload] = Field(default_factory=list)
    target_criteria: List[RuleTargetCriteriaPayload] = Field(default_factory=list)

    def to_rule(self, rule_id: str) -> CrossSellingRule:
        return CrossSellingRule(
            id=rule_id,
            name=self.name,
            description=self.description,
            active=self.active,
            source_conditions=[c.to_condition() for c in self.source_conditions],
            target_criteria=[c.to_criterion() for c in self.target_criteria],
        )


class RuleUpdateRequest(PayloadModel):
    """Request model for updating a rule."""
    name: Optional[str] = Field(None, min_length=1, description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    active: Optional[bool] = Field(None, description="Whether the rule is active")
    source_conditions: Optional[List[RuleConditionPayload]] = None
    target_criteria: Optional[List[RuleTargetCriteriaPayload]] = None


class RuleResponse(PayloadModel):
    """Response model for rule operations."""
    id: str
    name: str
    description: Optional[str]
    active: bool
    source_conditions: List[Dict[str, Any]]
    target_criteria: List[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: CrossSellingRule) -> "RuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            active=bool(rule.active),
            source_conditions=[c.to_dict() for c in rule.source_conditions],
            target_criteria=[c.to_dict() for c in rule.target_criteria],
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class RuleListResponse(BaseModel):
    """Response model for rule list."""
    rules: List[RuleResponse]
    total: int
    page: int
    limit: int


class PreviewRequest(PayloadModel):
    """Evaluate rules against a supplied product and population."""
    product: Product
    population: List[Product] = Field(default_factory=list)
    rules: Optional[List[RuleCreateRequest]] = Field(
        None, description="Rules to evaluate; stored rules are used when omitted"
    )


class SuggestionResponse(BaseModel):
    """Cross-selling suggestions for a product."""
    suggestions: List[Product]
