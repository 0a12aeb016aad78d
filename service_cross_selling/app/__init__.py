"""
Cross-Selling Service package for the order dashboard.

This package suggests companion products for a product from configurable
cross-selling rules. It provides:

- app.main: API surface for rule management, previews and suggestions.
- app.rules: Rule model, field resolution, comparators and the engine.
- app.catalog: Catalog query narrowing and the Shopware admin API client.
- app.persistence: In-memory rule storage with optional JSON seeding.

Guidelines:
- The engine is stateless; rules and products are passed in per call.
- Rule evaluation never raises for unknown operators or absent fields; it
  logs and counts them instead.
"""
