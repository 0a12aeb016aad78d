"""
Cross-selling service for the order dashboard.
"""

import dataclasses
import sys
import os
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from fastapi import Query
from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.circuit_breaker import circuit_breaker_manager
from shared.errors import ConfigurationError, NotFoundError
from shared.logging import bind_log_context

from .rules.engine import RuleEngine
from .rules.fields import STANDARD_FIELDS
from .rules.models import (
    PreviewRequest,
    RuleCreateRequest,
    RuleListResponse,
    RuleResponse,
    RuleUpdateRequest,
    SuggestionResponse,
)
from .catalog.shopware import ShopwareClient
from .persistence.memory import InMemoryRuleStore


class CrossSellingService(BaseService):
    """Cross-selling service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, catalog: Optional[Any] = None):
        super().__init__("cross_selling", 8013, config=config)

        if catalog is None and self.config.catalog_configured:
            catalog = ShopwareClient(
                self.config.shopware_url,
                self.config.shopware_api_key,
                self.config.shopware_api_secret,
                page_size=self.config.catalog_page_size,
                max_candidates=self.config.catalog_max_candidates,
                timeout=self.config.catalog_timeout_seconds,
            )

        self.catalog = catalog
        self.rule_engine = RuleEngine(metrics=self.metrics, catalog_limit=self.config.catalog_max_candidates)
        self.rule_store = InMemoryRuleStore(self.config.rules_seed_file)

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_cross_selling_routes()

    def _setup_cross_selling_routes(self):
        """Set up cross-selling routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "cross_selling",
                "message": "Order Dashboard - Cross-Selling Service",
                "version": "1.0.0",
                "capabilities": ["rule_engine", "preview", "catalog_suggestions"],
                "catalog_configured": self.catalog is not None
            }

        @self.app.get("/cross-selling/rules/available-fields")
        async def get_available_fields():
            """Fields rules can address, including the shop's custom fields."""
            if self.catalog is None:
                return {
                    "standardFields": [descriptor.to_dict() for descriptor in STANDARD_FIELDS],
                    "customFields": []
                }
            return await self.catalog.fetch_available_fields()

        @self.app.get("/cross-selling/rules", response_model=RuleListResponse)
        async def get_rules(
            active: Optional[bool] = Query(None, description="Filter by active flag"),
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(50, ge=1, le=100, description="Items per page")
        ):
            """List rules in evaluation order."""
            rules = await self.rule_store.load_all_rules(active=active)

            start_idx = (page - 1) * limit
            paginated_rules = rules[start_idx:start_idx + limit]

            return RuleListResponse(
                rules=[RuleResponse.from_rule(rule) for rule in paginated_rules],
                total=len(rules),
                page=page,
                limit=limit
            )

        @self.app.get("/cross-selling/rules/{rule_id}", response_model=RuleResponse)
        async def get_rule(rule_id: str):
            rule = await self.rule_store.get_rule(rule_id)
            return RuleResponse.from_rule(rule)

        @self.app.post("/cross-selling/rules", response_model=RuleResponse)
        async def create_rule(request: RuleCreateRequest):
            """Create a new rule."""
            rule = request.to_rule(str(uuid.uuid4()))
            await self.rule_store.save_rule(rule)

            self.metrics.record_business_event("rule_created")
            self.logger.info("Rule created", rule_id=rule.id, name=rule.name)

            return RuleResponse.from_rule(rule)

        @self.app.put("/cross-selling/rules/{rule_id}", response_model=RuleResponse)
        async def update_rule(rule_id: str, request: RuleUpdateRequest):
            """Update an existing rule; omitted fields are kept."""
            existing_rule = await self.rule_store.get_rule(rule_id)
            changes: Dict[str, Any] = {}

            if request.name is not None:
                changes["name"] = request.name
            if "description" in request.model_fields_set:
                changes["description"] = request.description
            if request.active is not None:
                changes["active"] = request.active
            if request.source_conditions is not None:
                changes["source_conditions"] = [c.to_condition() for c in request.source_conditions]
            if request.target_criteria is not None:
                changes["target_criteria"] = [c.to_criterion() for c in request.target_criteria]

            rule = await self.rule_store.save_rule(dataclasses.replace(existing_rule, **changes))

            self.metrics.record_business_event("rule_updated")
            self.logger.info("Rule updated", rule_id=rule_id, changed=sorted(changes))

            return RuleResponse.from_rule(rule)

        @self.app.delete("/cross-selling/rules/{rule_id}")
        async def delete_rule(rule_id: str):
            """Delete a rule."""
            await self.rule_store.delete_rule(rule_id)
            self.metrics.record_business_event("rule_deleted")
            return {"success": True, "message": "Rule deleted successfully"}

        @self.app.post("/cross-selling/preview", response_model=SuggestionResponse)
        async def preview(request: PreviewRequest):
            """Evaluate rules against a supplied product and population."""
            bind_log_context(product_id=request.product.id)
            if request.rules is not None:
                rules = [payload.to_rule(f"preview-{index + 1}") for index, payload in enumerate(request.rules)]
            else:
                rules = await self.rule_store.load_all_rules()

            with self.metrics.time_operation("cross_selling_suggestion_duration_seconds"):
                suggestions = self.rule_engine.suggest_cross_selling(request.product, rules, request.population)

            self.metrics.record_business_event("preview_evaluated")
            return SuggestionResponse(suggestions=suggestions)

        @self.app.get("/products/{product_id}/cross-selling-suggestions", response_model=SuggestionResponse)
        async def get_suggestions(product_id: str):
            """Suggestions for a catalog product from the active stored rules."""
            bind_log_context(product_id=product_id)
            if self.catalog is None:
                raise ConfigurationError(
                    "Shopware catalog is not configured",
                    details={"settings": ["shopware_url", "shopware_api_key", "shopware_api_secret"]}
                )

            with self.metrics.time_operation("cross_selling_suggestion_duration_seconds"):
                product = await self.catalog.fetch_product(product_id)
                if product is None:
                    raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

                rules = await self.rule_store.load_all_rules(active=True)
                if not rules:
                    self.logger.info("No active rules", product_id=product_id)
                    return SuggestionResponse(suggestions=[])

                suggestions = await self.rule_engine.suggest_from_catalog(
                    product,
                    rules,
                    self.catalog,
                    skip_failed_rules=self.config.skip_failed_rules
                )

            self.metrics.record_business_event("suggestions_served")
            return SuggestionResponse(suggestions=suggestions)

        @self.app.get("/cross-selling/stats")
        async def get_stats():
            """Get cross-selling service statistics."""
            return {
                "rules": await self.rule_store.get_rule_stats(),
                "circuit_breakers": circuit_breaker_manager.get_all_states(),
                "catalog_configured": self.catalog is not None,
                "timestamp": datetime.now().isoformat()
            }

    async def _check_dependencies(self):
        """Check cross-selling service dependencies."""
        dependencies = {
            "rule_store": "ok" if await self.rule_store.health_check() else "starting",
            "catalog": "configured" if self.catalog is not None else "not_configured",
        }

        if self.catalog is not None and getattr(self.catalog, "circuit_breaker", None) is not None:
            if self.catalog.circuit_breaker.is_open():
                dependencies["catalog"] = "circuit_open"

        return dependencies

    async def start(self):
        """Start cross-selling service components."""
        await self.rule_store.start()
        rules = await self.rule_store.load_all_rules()
        self.logger.info(f"Cross-selling service started with {len(rules)} rules")

    async def stop(self):
        """Stop cross-selling service components."""
        await self.rule_store.stop()
        self.logger.info("Cross-selling service stopped")


def create_app():
    """Create cross-selling service application."""
    service = CrossSellingService()
    return service.app


if __name__ == "__main__":
    service = CrossSellingService()
    service.run()
