"""
Catalog access for the rule engine.

- query: Catalog filters derived from a rule's target criteria and the
  ``CatalogSearch`` protocol the engine scans.
- shopware: Shopware admin API client implementing ``CatalogSearch``.
"""
