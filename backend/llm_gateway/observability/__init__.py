"""
Observability Package: Logging + Cost Estimation

Provides:
  configure_logging   basicConfig for hosts that have not set up logging
  span / traced       timing of gateway operations through logging
  estimate_*          token / cost / duration projections for bulk jobs

Usage::

    from llm_gateway.observability import configure_logging, estimate_migration_cost

    configure_logging(debug=settings.debug)
    estimate = estimate_migration_cost(project_count=120)
"""

from llm_gateway.observability.cost_estimator import (
    CostEstimate,
    EntityCounts,
    available_models,
    create_usage_metadata,
    estimate_for_counts,
    estimate_migration_cost,
    usage_cost,
)
from llm_gateway.observability.tracing import configure_logging, span, traced

__all__ = [
    "CostEstimate",
    "EntityCounts",
    "available_models",
    "configure_logging",
    "create_usage_metadata",
    "estimate_for_counts",
    "estimate_migration_cost",
    "span",
    "traced",
    "usage_cost",
]
