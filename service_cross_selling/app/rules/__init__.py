"""
Rules engine package.

Defines the cross-selling rule model and the evaluation engine. A rule
applies to a source product when all its source conditions hold, and then
selects every product of a population that satisfies all its target
criteria.

Modules of interest:
- models: Rule dataclasses, catalog product models and API payloads.
- fields: Dotted field-path resolution and the standard field list.
- comparators: Equality, containment, numeric and dimension comparisons.
- engine: Condition evaluation, target matching and suggestion assembly.
"""
