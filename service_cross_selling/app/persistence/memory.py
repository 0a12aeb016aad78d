"""
In-memory rule storage for the Cross-Selling Service.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import ValidationError, NotFoundError
from ..rules.models import CrossSellingRule, RuleCreateRequest


class SeedRule(RuleCreateRequest):
    """Rule record in a seed file; the id is optional."""
    id: Optional[str] = Field(None, description="Stable rule id")


class InMemoryRuleStore:
    """Rule store backed by a dict, optionally seeded from a JSON file.

    Rules keep their insertion order, which is the order the engine sees
    them in.
    """

    def __init__(self, seed_file: Optional[str] = None):
        self.seed_file = seed_file
        self.logger = get_logger("cross_selling.rule_store")
        self._rules: Dict[str, CrossSellingRule] = {}
        self._lock = asyncio.Lock()
        self._seeded = False

    async def start(self):
        """Load seed rules, once."""
        if self._seeded or not self.seed_file:
            self._seeded = True
            return

        rules = self.load_seed_file(self.seed_file)
        async with self._lock:
            for rule in rules:
                self._rules[rule.id] = rule
        self._seeded = True

        self.logger.info("Rule store seeded", seed_file=self.seed_file, rules=len(rules))

    async def stop(self):
        self.logger.info("Rule store stopped", rules=len(self._rules))

    async def health_check(self) -> bool:
        return self._seeded

    def load_seed_file(self, path: str) -> List[CrossSellingRule]:
        """Parse and validate a JSON array of rule records."""
        try:
            with open(path, "r", encoding="utf-8") as handle:
                records = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(
                f"Cannot read rule seed file: {e}",
                details={"seed_file": path}
            ) from e

        if not isinstance(records, list):
            raise ValidationError("Rule seed file must contain a JSON array", details={"seed_file": path})

        rules = []
        for index, record in enumerate(records):
            try:
                seed = SeedRule.model_validate(record)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid rule at index {index} in seed file",
                    details={"seed_file": path, "errors": e.errors(include_url=False, include_context=False)}
                ) from e
            rules.append(seed.to_rule(seed.id or f"seed-{index + 1}"))

        return rules

    async def load_all_rules(self, active: Optional[bool] = None) -> List[CrossSellingRule]:
        """All rules in insertion order, optionally filtered by active flag."""
        async with self._lock:
            rules = list(self._rules.values())

        if active is None:
            return rules
        return [rule for rule in rules if bool(rule.active) == active]

    async def get_rule(self, rule_id: str) -> CrossSellingRule:
        async with self._lock:
            rule = self._rules.get(rule_id)

        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found", details={"rule_id": rule_id})
        return rule

    async def save_rule(self, rule: CrossSellingRule) -> CrossSellingRule:
        """Insert or replace a rule."""
        async with self._lock:
            existing = self._rules.get(rule.id)
            if existing is not None:
                rule.created_at = existing.created_at
                rule.updated_at = datetime.now()
            self._rules[rule.id] = rule

        self.logger.info("Rule saved", rule_id=rule.id, name=rule.name, replaced=existing is not None)
        return rule

    async def delete_rule(self, rule_id: str) -> CrossSellingRule:
        async with self._lock:
            rule = self._rules.pop(rule_id, None)

        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found", details={"rule_id": rule_id})

        self.logger.info("Rule deleted", rule_id=rule_id, name=rule.name)
        return rule

    async def get_rule_stats(self) -> Dict[str, Any]:
        async with self._lock:
            rules = list(self._rules.values())

        active = sum(1 for rule in rules if rule.active)
        return {
            "total_rules": len(rules),
            "active_rules": active,
            "inactive_rules": len(rules) - active,
            "source_conditions": sum(len(rule.source_conditions) for rule in rules),
            "target_criteria": sum(len(rule.target_criteria) for rule in rules),
        }
